"""
Document API Router

  GET    /api/v1/documents/{id}
  GET    /api/v1/documents/{id}/versions             document + version history
  GET    /api/v1/documents/{id}/download?version=N   raw bytes
  GET    /api/v1/documents/{id}/extraction?version=N
  GET    /api/v1/documents/{id}/extraction/history
  POST   /api/v1/documents/{id}/process
  POST   /api/v1/documents/{id}/reprocess?queue=B   inline, or queued on the worker
  POST   /api/v1/documents/{id}/versions             upload replacement bytes
  PATCH  /api/v1/documents/{id}/classification       manual category
  DELETE /api/v1/documents/{id}
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote
from uuid import UUID

from fastapi import APIRouter, File, Form, Query, Response, UploadFile, status

from careify.api.dependencies import Documents
from careify.schemas.documents import (
    ClassificationOverride,
    DocumentResponse,
    DocumentUploadResponse,
    DocumentWithVersions,
    ErrorResponse,
    ExtractionVersionResponse,
    ExtractionView,
    ProcessingResult,
    ReprocessQueued,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/documents",
    tags=["Documents"],
)

_NOT_FOUND = {404: {"model": ErrorResponse}}


@router.get("/{document_id}", response_model=DocumentResponse, responses=_NOT_FOUND)
async def get_document(document_id: UUID, documents: Documents) -> DocumentResponse:
    return await documents.get_document(document_id)


@router.get("/{document_id}/versions", response_model=DocumentWithVersions, responses=_NOT_FOUND)
async def get_document_versions(document_id: UUID, documents: Documents) -> DocumentWithVersions:
    return await documents.get_document_with_versions(document_id)


@router.get(
    "/{document_id}/download",
    response_class=Response,
    summary="Download the current or a specific version",
    responses=_NOT_FOUND,
)
async def download_document(
    document_id: UUID,
    documents:   Documents,
    version:     Optional[int] = Query(None, ge=1),
) -> Response:
    download = await documents.download(document_id, version)
    return Response(
        content=download.body,
        media_type=download.content_type,
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(download.file_name)}",
        },
    )


@router.get("/{document_id}/extraction", response_model=ExtractionView, responses=_NOT_FOUND)
async def get_extraction(
    document_id: UUID,
    documents:   Documents,
    version:     Optional[int] = Query(None, ge=1),
) -> ExtractionView:
    return await documents.get_extraction(document_id, version)


@router.get("/{document_id}/extraction/history", response_model=list[ExtractionVersionResponse])
async def get_extraction_history(document_id: UUID, documents: Documents) -> list[ExtractionVersionResponse]:
    return await documents.get_extraction_history(document_id)


@router.post("/{document_id}/process", response_model=ProcessingResult, responses=_NOT_FOUND)
async def process_document(document_id: UUID, documents: Documents) -> ProcessingResult:
    await documents.get_document(document_id)   # 404 before running anything
    return await documents.process(document_id)


@router.post(
    "/{document_id}/reprocess",
    response_model=ProcessingResult | ReprocessQueued,
    summary="Re-run the pipeline inline, or hand it to the worker with ?queue=true",
    responses={**_NOT_FOUND, 202: {"model": ReprocessQueued}},
)
async def reprocess_document(
    document_id: UUID,
    documents:   Documents,
    response:    Response,
    queue:       bool = Query(False),
) -> ProcessingResult | ReprocessQueued:
    if queue:
        queued = await documents.queue_reprocess(document_id)
        if queued:
            response.status_code = status.HTTP_202_ACCEPTED
        return ReprocessQueued(document_id=document_id, queued=queued)

    await documents.get_document(document_id)
    return await documents.reprocess(document_id)


@router.post(
    "/{document_id}/versions",
    response_model=DocumentUploadResponse,
    summary="Upload a new version of a document",
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
    },
)
async def upload_document_version(
    document_id:   UUID,
    documents:     Documents,
    file:          UploadFile    = File(...),
    change_reason: Optional[str] = Form(None),
    created_by:    Optional[str] = Form(None),
) -> DocumentUploadResponse:
    content = await file.read()
    return await documents.update_document_version(
        document_id,
        content,
        file.content_type or "application/octet-stream",
        change_reason=change_reason,
        created_by=created_by,
    )


@router.patch("/{document_id}/classification", response_model=DocumentResponse, responses=_NOT_FOUND)
async def override_classification(
    document_id: UUID,
    body:        ClassificationOverride,
    documents:   Documents,
) -> DocumentResponse:
    return await documents.override_classification(document_id, body.category, reprocess=body.reprocess)


@router.delete(
    "/{document_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    responses=_NOT_FOUND,
)
async def delete_document(document_id: UUID, documents: Documents) -> Response:
    await documents.delete(document_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
