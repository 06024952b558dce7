"""
Case API Router

  POST   /api/v1/cases                          create a case (201)
  GET    /api/v1/cases?client_id=…              list a client's cases, newest first
  GET    /api/v1/cases/{case_id}
  GET    /api/v1/cases/{case_id}/summary        documents + checklist + counts
  PATCH  /api/v1/cases/{case_id}/status
  POST   /api/v1/cases/{case_id}/refresh-checklist
  POST   /api/v1/cases/{case_id}/documents      multipart upload (201)
  GET    /api/v1/cases/{case_id}/documents

Handlers stay thin: validation and not-found handling live in the services,
which raise HTTPException with a structured ErrorResponse body.
"""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, File, Form, Query, UploadFile, status

from careify.api.dependencies import Cases, Documents
from careify.schemas.cases import (
    CaseCreateRequest,
    CaseDocumentSummary,
    CaseResponse,
    CaseStatusUpdate,
    ChecklistRefreshResponse,
)
from careify.schemas.documents import DocumentResponse, DocumentUploadResponse, ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/cases",
    tags=["Cases"],
)


@router.post(
    "",
    response_model=CaseResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a housing application case",
    responses={422: {"model": ErrorResponse}},
)
async def create_case(body: CaseCreateRequest, cases: Cases) -> CaseResponse:
    return await cases.create_case(body.client_id, body.applicant_data)


@router.get(
    "",
    response_model=list[CaseResponse],
    summary="List a client's cases",
)
async def list_cases(
    cases: Cases,
    client_id: str = Query(..., min_length=1, description="External client id"),
) -> list[CaseResponse]:
    return await cases.list_cases(client_id)


@router.get(
    "/{case_id}",
    response_model=CaseResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_case(case_id: UUID, cases: Cases) -> CaseResponse:
    return await cases.get_case(case_id)


@router.get(
    "/{case_id}/summary",
    response_model=CaseDocumentSummary,
    summary="Documents, checklist and processing counts for a case",
    responses={404: {"model": ErrorResponse}},
)
async def get_case_summary(case_id: UUID, documents: Documents) -> CaseDocumentSummary:
    return await documents.get_case_document_summary(case_id)


@router.patch(
    "/{case_id}/status",
    response_model=CaseResponse,
    responses={404: {"model": ErrorResponse}},
)
async def update_case_status(case_id: UUID, body: CaseStatusUpdate, cases: Cases) -> CaseResponse:
    return await cases.update_status(case_id, body.status)


@router.post(
    "/{case_id}/refresh-checklist",
    response_model=ChecklistRefreshResponse,
    summary="Recompute the document checklist and case status",
    responses={404: {"model": ErrorResponse}},
)
async def refresh_checklist(case_id: UUID, cases: Cases) -> ChecklistRefreshResponse:
    return await cases.refresh_checklist(case_id)


@router.post(
    "/{case_id}/documents",
    response_model=DocumentUploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a supporting document",
    description=(
        "Accepts PDF, JPEG, PNG, WebP or GIF up to 10 MB. "
        "With process=true (default) the pipeline runs before the response; "
        "otherwise the document is queued for the background worker."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Missing file or unsupported type"},
        404: {"model": ErrorResponse, "description": "Case not found"},
        413: {"model": ErrorResponse, "description": "File exceeds the size limit"},
        500: {"model": ErrorResponse, "description": "Storage failure"},
    },
)
async def upload_document(
    case_id:    UUID,
    documents:  Documents,
    file:       UploadFile    = File(..., description="Document image or PDF"),
    created_by: Optional[str] = Form(None),
    process:    bool          = Query(True, description="Run the pipeline inline"),
) -> DocumentUploadResponse:
    content = await file.read()
    return await documents.upload_document(
        case_id,
        file.filename or "",
        content,
        file.content_type or "application/octet-stream",
        process=process,
        created_by=created_by,
    )


@router.get(
    "/{case_id}/documents",
    response_model=list[DocumentResponse],
)
async def list_case_documents(case_id: UUID, documents: Documents) -> list[DocumentResponse]:
    return await documents.list_documents(case_id)
