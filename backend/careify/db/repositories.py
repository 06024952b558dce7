"""
Repositories — thin query helpers over one AsyncSession.

Every repository borrows the caller's session; none of them commit. The
unit of work belongs to `Database.session()`, so a service can write a row,
upload a blob and have both roll back together if the upload raises.

    async with db.session() as session:
        repos = Repositories(session)
        doc   = await repos.documents.get(document_id)
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from careify.models.cases import Case, Sequence
from careify.models.documents import Document, DocumentVersion, ExtractionVersion, ProcessingLog

logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "SH"


def format_reference_number(year: int, sequence: int) -> str:
    return f"{REFERENCE_PREFIX}-{year}-{sequence:04d}"


# ---------------------------------------------------------------------------
# Cases
# ---------------------------------------------------------------------------

class CaseRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, case_id: uuid.UUID) -> Optional[Case]:
        return await self._session.get(Case, case_id)

    async def list_by_client(self, client_id: str) -> list[Case]:
        result = await self._session.execute(
            select(Case)
            .where(Case.client_id == client_id)
            .order_by(Case.created_at.desc())
        )
        return list(result.scalars().all())

    async def create(
        self,
        *,
        client_id:        str,
        reference_number: str,
        applicant_data:   dict[str, Any],
        status:           str = "draft",
    ) -> Case:
        case = Case(
            id=uuid.uuid4(),
            client_id=client_id,
            reference_number=reference_number,
            status=status,
            applicant_data=applicant_data,
        )
        self._session.add(case)
        await self._session.flush()
        await self._session.refresh(case)
        return case

    async def update(self, case_id: uuid.UUID, **values: Any) -> None:
        await self._session.execute(
            update(Case).where(Case.id == case_id).values(**values)
        )

    async def next_reference_number(self, year: int) -> str:
        """
        Atomically allocate the next SH-<year>-<NNNN>.

        One INSERT … ON CONFLICT DO UPDATE … RETURNING statement: the first
        call for a year inserts 1, later calls increment under the row lock,
        so concurrent creators never share a value.
        """
        stmt = (
            pg_insert(Sequence)
            .values(name=f"ref_number_{year}", current_value=1)
            .on_conflict_do_update(
                index_elements=[Sequence.name],
                set_={"current_value": Sequence.current_value + 1},
            )
            .returning(Sequence.current_value)
        )
        value = (await self._session.execute(stmt)).scalar_one()
        return format_reference_number(year, value)


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

class DocumentRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, document_id: uuid.UUID) -> Optional[Document]:
        return await self._session.get(Document, document_id)

    async def list_by_case(self, case_id: uuid.UUID) -> list[Document]:
        result = await self._session.execute(
            select(Document)
            .where(Document.case_id == case_id)
            .order_by(Document.created_at.desc())
        )
        return list(result.scalars().all())

    async def create(self, **values: Any) -> Document:
        doc = Document(id=values.pop("id", None) or uuid.uuid4(), **values)
        self._session.add(doc)
        await self._session.flush()
        await self._session.refresh(doc)
        return doc

    async def update(self, document_id: uuid.UUID, **values: Any) -> None:
        await self._session.execute(
            update(Document).where(Document.id == document_id).values(**values)
        )

    async def delete(self, document_id: uuid.UUID) -> None:
        # versions, extraction versions and log rows go with it (ON DELETE CASCADE)
        await self._session.execute(delete(Document).where(Document.id == document_id))


class DocumentVersionRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        document_id:    uuid.UUID,
        version:        int,
        storage_key:    str,
        change_reason:  Optional[str] = None,
        created_by:     Optional[str] = None,
        extracted_data: Optional[dict[str, Any]] = None,
    ) -> DocumentVersion:
        row = DocumentVersion(
            id=uuid.uuid4(),
            document_id=document_id,
            version=version,
            storage_key=storage_key,
            change_reason=change_reason,
            created_by=created_by,
            extracted_data=extracted_data,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def find_by_document_id(self, document_id: uuid.UUID) -> list[DocumentVersion]:
        """All versions, newest first."""
        result = await self._session.execute(
            select(DocumentVersion)
            .where(DocumentVersion.document_id == document_id)
            .order_by(DocumentVersion.version.desc())
        )
        return list(result.scalars().all())

    async def get(self, document_id: uuid.UUID, version: int) -> Optional[DocumentVersion]:
        result = await self._session.execute(
            select(DocumentVersion).where(
                DocumentVersion.document_id == document_id,
                DocumentVersion.version == version,
            )
        )
        return result.scalars().first()


class ExtractionVersionRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        document_id:    uuid.UUID,
        version:        int,
        extracted_data: dict[str, Any],
        model_version:  Optional[str] = None,
        prompt_version: Optional[str] = None,
        storage_key:    Optional[str] = None,
    ) -> ExtractionVersion:
        row = ExtractionVersion(
            id=uuid.uuid4(),
            document_id=document_id,
            version=version,
            extracted_data=extracted_data,
            model_version=model_version,
            prompt_version=prompt_version,
            storage_key=storage_key,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def find_by_document_id(self, document_id: uuid.UUID) -> list[ExtractionVersion]:
        """All extraction runs, newest first."""
        result = await self._session.execute(
            select(ExtractionVersion)
            .where(ExtractionVersion.document_id == document_id)
            .order_by(ExtractionVersion.version.desc())
        )
        return list(result.scalars().all())

    async def get(self, document_id: uuid.UUID, version: int) -> Optional[ExtractionVersion]:
        result = await self._session.execute(
            select(ExtractionVersion).where(
                ExtractionVersion.document_id == document_id,
                ExtractionVersion.version == version,
            )
        )
        return result.scalars().first()


class ProcessingLogRepository:
    """Append-only: no update or delete."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def log(
        self,
        *,
        document_id:   uuid.UUID,
        case_id:       uuid.UUID,
        action:        str,
        status:        str,
        details:       Optional[str] = None,
        error_message: Optional[str] = None,
        duration_ms:   Optional[int] = None,
    ) -> None:
        self._session.add(ProcessingLog(
            document_id=document_id,
            case_id=case_id,
            action=action,
            status=status,
            details=details,
            error_message=error_message,
            duration_ms=duration_ms,
        ))
        await self._session.flush()


# ---------------------------------------------------------------------------
# Bundle
# ---------------------------------------------------------------------------

class Repositories:
    """Every repository bound to the same session (one unit of work)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session             = session
        self.cases               = CaseRepository(session)
        self.documents           = DocumentRepository(session)
        self.document_versions   = DocumentVersionRepository(session)
        self.extraction_versions = ExtractionVersionRepository(session)
        self.logs                = ProcessingLogRepository(session)
