"""
Case Service

Case intake and lifecycle:
  - create_case() allocates SH-<year>-<NNNN> and stores the applicant snapshot
  - list / get
  - update_status() for manual transitions (approve, decline, …)
  - refresh_checklist() recomputes the checklist through the document service
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable

from fastapi import HTTPException, status

from careify.db.repositories import Repositories
from careify.db.session import Database
from careify.processing.checklist import ChecklistEngine
from careify.schemas.cases import (
    ApplicantData,
    ApplicationStatus,
    CaseResponse,
    ChecklistRefreshResponse,
)
from careify.schemas.documents import UploadErrors
from careify.services.documents import DocumentService

logger = logging.getLogger(__name__)


class CaseService:
    def __init__(
        self,
        db:           Database,
        documents:    DocumentService,
        *,
        repositories: Callable[..., Repositories] = Repositories,
        clock:        Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._db           = db
        self._documents    = documents
        self._repositories = repositories
        self._clock        = clock

    async def create_case(self, client_id: str, applicant: ApplicantData) -> CaseResponse:
        async with self._db.session() as session:
            repos = self._repositories(session)
            reference = await repos.cases.next_reference_number(self._clock().year)
            case = await repos.cases.create(
                client_id=client_id,
                reference_number=reference,
                applicant_data=applicant.model_dump(mode="json"),
                status=ApplicationStatus.DRAFT.value,
            )
            response = CaseResponse.model_validate(case)

        logger.info("Case created | case=%s ref=%s client=%s", response.id, reference, client_id)
        return response

    async def get_case(self, case_id: uuid.UUID) -> CaseResponse:
        async with self._db.session() as session:
            case = await self._repositories(session).cases.get(case_id)
            if case is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail=UploadErrors.case_not_found(case_id).model_dump(),
                )
            return CaseResponse.model_validate(case)

    async def list_cases(self, client_id: str) -> list[CaseResponse]:
        """Newest first."""
        async with self._db.session() as session:
            cases = await self._repositories(session).cases.list_by_client(client_id)
            return [CaseResponse.model_validate(c) for c in cases]

    async def update_status(self, case_id: uuid.UUID, new_status: ApplicationStatus) -> CaseResponse:
        async with self._db.session() as session:
            repos = self._repositories(session)
            if await repos.cases.get(case_id) is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail=UploadErrors.case_not_found(case_id).model_dump(),
                )
            await repos.cases.update(case_id, status=ApplicationStatus(new_status).value)

        logger.info("Case status changed | case=%s status=%s", case_id, ApplicationStatus(new_status).value)
        return await self.get_case(case_id)

    async def refresh_checklist(self, case_id: uuid.UUID) -> ChecklistRefreshResponse:
        checklist = await self._documents.update_case_checklist(case_id)
        return ChecklistRefreshResponse(
            checklist_status=checklist,
            completeness=ChecklistEngine.calculate_overall_completeness(checklist),
            missing_documents=ChecklistEngine.get_missing_documents(checklist),
        )
