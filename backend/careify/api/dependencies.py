"""
Composed FastAPI Dependencies

Route handlers import their services from here — never from db/session,
storage/s3 or services/* directly. The Database handle, the S3 service and
the vision model client are created once in the application lifespan and
hung on app.state.

This is the single wiring point for the request context.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from careify.db.session import Database
from careify.llm.gateway import VisionClient
from careify.services.cases import CaseService
from careify.services.documents import DocumentService, TaskPublisher, build_document_service
from careify.storage.s3 import S3StorageService


# ---------------------------------------------------------------------------
# 1. Process-wide handles (built in the lifespan)
# ---------------------------------------------------------------------------

def get_database(request: Request) -> Database:
    return request.app.state.db


def get_storage(request: Request) -> S3StorageService:
    return request.app.state.storage


def get_vision_client(request: Request) -> VisionClient:
    return request.app.state.vision


# ---------------------------------------------------------------------------
# 2. Per-request services
# ---------------------------------------------------------------------------

def get_document_service(
    db:      Annotated[Database, Depends(get_database)],
    storage: Annotated[S3StorageService, Depends(get_storage)],
    client:  Annotated[VisionClient, Depends(get_vision_client)],
) -> DocumentService:
    return build_document_service(db, storage=storage, publisher=TaskPublisher(), client=client)


def get_case_service(
    db:        Annotated[Database, Depends(get_database)],
    documents: Annotated[DocumentService, Depends(get_document_service)],
) -> CaseService:
    return CaseService(db, documents)


# ---------------------------------------------------------------------------
# Type aliases for cleaner route signatures
# ---------------------------------------------------------------------------

DatabaseDep   = Annotated[Database,        Depends(get_database)]
Documents     = Annotated[DocumentService, Depends(get_document_service)]
Cases         = Annotated[CaseService,     Depends(get_case_service)]
