"""
Document Service — Processing Orchestrator

Owns everything that happens to a document after the HTTP layer hands it over:

  upload ──► blob v1 + row + DocumentVersion 1 ──► process (inline or Celery)

  process:
    1. fetch bytes                    status classifying
    2. classify, persist category     status classified          log classification
    3. confident & not unknown?
         yes → extract                status extracting
               success → ExtractionVersion N+1, JSON artifact     log extraction
               failure → status validation_failed                 log extraction failed
         no  → status completed                                   log skipped
    4. recompute the case checklist and case status
    5. status completed (unless validation_failed)
    any unexpected exception → status error, log processing failed,
                               ProcessingResult(success=False)

Concurrency:
  One asyncio.Lock per document id, shared by every DocumentService in the
  process. process / reprocess / update_document_version /
  override_classification / delete hold it for their whole run, so version
  numbers are never allocated by two runs at once.

Units of work:
  Each pipeline step commits on its own so intermediate statuses are visible
  to readers. Blob writes that belong to a new row (upload, new version,
  extraction artifact) run inside that row's transaction: a failed upload
  rolls the row back.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import AsyncGenerator, Callable, Optional

from fastapi import HTTPException, status

from careify.core.config import Settings, settings as default_settings
from careify.db.repositories import Repositories
from careify.db.session import Database
from careify.llm.gateway import VisionClient
from careify.models.documents import Document
from careify.processing.checklist import ChecklistEngine
from careify.processing.classification import ClassificationStage
from careify.processing.extraction import ExtractionStage
from careify.schemas.cases import (
    CaseDocumentSummary,
    CaseResponse,
    DocumentChecklistStatus,
    ProcessingCounts,
    SummaryBlock,
)
from careify.schemas.documents import (
    ClassificationResult,
    DocumentCategory,
    DocumentProcessingStatus,
    DocumentResponse,
    DocumentUploadResponse,
    DocumentVersionResponse,
    DocumentWithVersions,
    ExtractedDocumentData,
    ExtractionResult,
    ExtractionVersionResponse,
    ExtractionView,
    LogStatus,
    ProcessingResult,
    UploadErrors,
)
from careify.storage.s3 import S3StorageService, document_key, stored_filename

logger = logging.getLogger(__name__)

RepositoryFactory = Callable[..., Repositories]

SKIPPED_EXTRACTION_DETAILS = "Skipped - low classification confidence or unknown category"


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


# ---------------------------------------------------------------------------
# Per-document locks
# ---------------------------------------------------------------------------

class DocumentLockRegistry:
    """
    Hands out one asyncio.Lock per document id.
    Entries disappear once no coroutine holds a reference to the lock.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def lock_for(self, document_id: uuid.UUID) -> asyncio.Lock:
        key = str(document_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


document_locks = DocumentLockRegistry()


@dataclass(frozen=True)
class DocumentDownload:
    body:         bytes
    content_type: str
    file_name:    str


# ---------------------------------------------------------------------------
# Document service
# ---------------------------------------------------------------------------

class DocumentService:
    """
    All collaborators are injected; the FastAPI dependencies and the Celery
    tasks build one per request / task.
    """

    def __init__(
        self,
        db:           Database,
        storage:      S3StorageService,
        classifier:   ClassificationStage,
        extractor:    ExtractionStage,
        checklist:    ChecklistEngine | None = None,
        publisher:    "TaskPublisher | None" = None,
        *,
        repositories: RepositoryFactory = Repositories,
        cfg:          Settings | None = None,
        locks:        DocumentLockRegistry | None = None,
        today:        Callable[[], date] = date.today,
    ) -> None:
        self._db           = db
        self._storage      = storage
        self._classifier   = classifier
        self._extractor    = extractor
        self._checklist    = checklist or ChecklistEngine()
        self._publisher    = publisher
        self._repositories = repositories
        self._cfg          = cfg or default_settings
        self._locks        = locks or document_locks
        self._today        = today

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _unit(self) -> AsyncGenerator[Repositories, None]:
        async with self._db.session() as session:
            yield self._repositories(session)

    async def _set_status(self, document_id: uuid.UUID, new_status: DocumentProcessingStatus) -> None:
        async with self._unit() as repos:
            await repos.documents.update(document_id, processing_status=new_status.value)

    @staticmethod
    async def _require_document(repos: Repositories, document_id: uuid.UUID) -> Document:
        doc = await repos.documents.get(document_id)
        if doc is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=UploadErrors.document_not_found(document_id).model_dump(),
            )
        return doc

    def validate_upload(self, file_name: str | None, content: bytes, mime_type: str) -> None:
        """Reject empty, oversized and unsupported uploads before any write."""
        if not file_name or not content:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=UploadErrors.missing_file().model_dump(),
            )
        if len(content) > self._cfg.max_upload_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=UploadErrors.file_too_large(len(content), self._cfg.max_upload_bytes).model_dump(),
            )
        if mime_type not in self._cfg.allowed_mime_types:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=UploadErrors.unsupported_file_type(file_name, mime_type, self._cfg.allowed_mime_types).model_dump(),
            )

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload_document(
        self,
        case_id:    uuid.UUID,
        file_name:  str,
        content:    bytes,
        mime_type:  str,
        *,
        process:    bool = True,
        created_by: Optional[str] = None,
    ) -> DocumentUploadResponse:
        self.validate_upload(file_name, content, mime_type)

        started     = time.perf_counter()
        document_id = uuid.uuid4()
        safe_name   = stored_filename(document_id, file_name)

        async with self._unit() as repos:
            case = await repos.cases.get(case_id)
            if case is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail=UploadErrors.case_not_found(case_id).model_dump(),
                )

            key = document_key(case.client_id, case.id, safe_name, 1)
            doc = await repos.documents.create(
                id=document_id,
                case_id=case.id,
                client_id=case.client_id,
                file_name=safe_name,
                original_file_name=file_name,
                mime_type=mime_type,
                file_size=len(content),
                storage_key=key,
                version=1,
                processing_status=DocumentProcessingStatus.UPLOADED.value,
            )
            await repos.document_versions.create(
                document_id=document_id,
                version=1,
                storage_key=key,
                change_reason="Initial upload",
                created_by=created_by,
            )

            # inside the transaction: a failed upload leaves no row behind
            try:
                await self._storage.upload_document(
                    case.client_id, case.id, safe_name, content, mime_type, version=1,
                )
            except Exception as exc:
                logger.exception("Blob upload failed | case=%s doc=%s", case_id, document_id)
                raise HTTPException(
                    status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                    detail=UploadErrors.storage_error(str(exc)).model_dump(),
                ) from exc

            await repos.logs.log(
                document_id=document_id,
                case_id=case.id,
                action="upload",
                status=LogStatus.COMPLETED.value,
                details=f"Uploaded {file_name} ({len(content)} bytes)",
                duration_ms=_elapsed_ms(started),
            )
            uploaded = DocumentResponse.model_validate(doc)

        logger.info(
            "Document uploaded | case=%s doc=%s key=%s size=%d",
            case_id, document_id, key, len(content),
        )

        if process:
            processing = await self.process(document_id)
            return DocumentUploadResponse(
                document=await self.get_document(document_id),
                processing=processing,
            )

        queued = await self._queue(document_id)
        return DocumentUploadResponse(document=uploaded, queued=queued)

    async def _queue(self, document_id: uuid.UUID, *, reprocess: bool = False) -> bool:
        if self._publisher is None:
            return False
        try:
            await self._publisher.publish_processing_task(document_id, reprocess=reprocess)
        except Exception as exc:
            # The document is stored; POST /documents/{id}/process picks it up later.
            logger.error(
                "Failed to publish processing task | doc=%s reprocess=%s error=%s", document_id, reprocess, exc,
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def process(self, document_id: uuid.UUID) -> ProcessingResult:
        async with self._locks.lock_for(document_id):
            return await self._run_pipeline(document_id)

    async def reprocess(self, document_id: uuid.UUID) -> ProcessingResult:
        async with self._locks.lock_for(document_id):
            await self._set_status(document_id, DocumentProcessingStatus.UPLOADED)
            return await self._run_pipeline(document_id)

    async def queue_reprocess(self, document_id: uuid.UUID) -> bool:
        """Hand a reprocess run to the worker; False when no broker took it."""
        await self.get_document(document_id)
        return await self._queue(document_id, reprocess=True)

    async def _run_pipeline(self, document_id: uuid.UUID) -> ProcessingResult:
        """Caller holds the document's lock."""
        async with self._unit() as repos:
            doc = await repos.documents.get(document_id)
        if doc is None:
            return ProcessingResult(document_id=document_id, success=False, errors=["Document not found"])

        case_id = doc.case_id
        errors: list[str] = []
        classification: ClassificationResult | None = None
        extraction: ExtractionResult | None = None

        try:
            blob = await self._storage.get_object(doc.storage_key)

            # ---- Classification ---------------------------------------
            await self._set_status(document_id, DocumentProcessingStatus.CLASSIFYING)
            started = time.perf_counter()
            classification = await self._classifier.classify(blob.body, doc.mime_type)

            async with self._unit() as repos:
                await repos.documents.update(
                    document_id,
                    category=classification.category.value,
                    classification_confidence=classification.confidence,
                    processing_status=DocumentProcessingStatus.CLASSIFIED.value,
                )
                await repos.logs.log(
                    document_id=document_id,
                    case_id=case_id,
                    action="classification",
                    status=LogStatus.COMPLETED.value,
                    details=f"Category: {classification.category.value}, Confidence: {classification.confidence}",
                    duration_ms=_elapsed_ms(started),
                )

            # ---- Extraction -------------------------------------------
            final_status = DocumentProcessingStatus.COMPLETED
            if (
                classification.category != DocumentCategory.UNKNOWN
                and classification.confidence >= self._cfg.classification_threshold
            ):
                await self._set_status(document_id, DocumentProcessingStatus.EXTRACTING)
                started = time.perf_counter()
                extraction = await self._extractor.extract(blob.body, doc.mime_type, classification.category)

                if extraction.success:
                    await self._save_extraction(document_id, classification, extraction, _elapsed_ms(started))
                else:
                    errors.append("Extraction failed")
                    final_status = DocumentProcessingStatus.VALIDATION_FAILED
                    async with self._unit() as repos:
                        await repos.documents.update(
                            document_id,
                            processing_status=DocumentProcessingStatus.VALIDATION_FAILED.value,
                        )
                        await repos.logs.log(
                            document_id=document_id,
                            case_id=case_id,
                            action="extraction",
                            status=LogStatus.FAILED.value,
                            error_message="; ".join(issue.message for issue in extraction.issues),
                            duration_ms=_elapsed_ms(started),
                        )
            else:
                async with self._unit() as repos:
                    await repos.documents.update(
                        document_id,
                        processing_status=DocumentProcessingStatus.COMPLETED.value,
                    )
                    await repos.logs.log(
                        document_id=document_id,
                        case_id=case_id,
                        action="extraction",
                        status=LogStatus.COMPLETED.value,
                        details=SKIPPED_EXTRACTION_DETAILS,
                    )

            # ---- Checklist --------------------------------------------
            await self.update_case_checklist(case_id)

            if final_status != DocumentProcessingStatus.VALIDATION_FAILED:
                await self._set_status(document_id, DocumentProcessingStatus.COMPLETED)

        except Exception as exc:
            logger.exception("Pipeline failed | doc=%s case=%s", document_id, case_id)
            async with self._unit() as repos:
                await repos.documents.update(document_id, processing_status=DocumentProcessingStatus.ERROR.value)
                await repos.logs.log(
                    document_id=document_id,
                    case_id=case_id,
                    action="processing",
                    status=LogStatus.FAILED.value,
                    error_message=str(exc),
                )
            return ProcessingResult(
                document_id=document_id,
                success=False,
                classification=classification,
                extraction=extraction,
                errors=[*errors, str(exc)],
            )

        logger.info(
            "Pipeline done | doc=%s category=%s extracted=%s errors=%d",
            document_id, classification.category.value,
            bool(extraction and extraction.success), len(errors),
        )
        return ProcessingResult(
            document_id=document_id,
            success=not errors,
            classification=classification,
            extraction=extraction,
            errors=errors,
        )

    async def _save_extraction(
        self,
        document_id:    uuid.UUID,
        classification: ClassificationResult,
        extraction:     ExtractionResult,
        duration_ms:    int,
    ) -> None:
        extracted_data = ExtractedDocumentData(
            document_type=extraction.document_type,
            confidence=classification.confidence,
            extracted_at=datetime.now(timezone.utc),
            fields=extraction.fields,
            raw_text=extraction.raw_text,
        ).model_dump(mode="json")

        async with self._unit() as repos:
            doc = await self._require_document(repos, document_id)
            new_version = doc.extraction_version + 1

            stored = await self._storage.upload_extraction(
                doc.client_id, doc.case_id, document_id, extracted_data, version=new_version,
            )
            await repos.documents.update(
                document_id,
                extracted_data=extracted_data,
                extraction_version=new_version,
                processing_status=DocumentProcessingStatus.EXTRACTED.value,
                completeness_score=extraction.completeness_score,
                completeness_issues=[issue.message for issue in extraction.issues],
            )
            await repos.extraction_versions.create(
                document_id=document_id,
                version=new_version,
                extracted_data=extracted_data,
                model_version=self._cfg.llm_model,
                prompt_version=self._cfg.extraction_prompt_version,
                storage_key=stored.key,
            )
            await repos.logs.log(
                document_id=document_id,
                case_id=doc.case_id,
                action="extraction",
                status=LogStatus.COMPLETED.value,
                details=f"Completeness: {extraction.completeness_score}%, Issues: {len(extraction.issues)}",
                duration_ms=duration_ms,
            )

        logger.info(
            "Extraction saved | doc=%s version=%d completeness=%d key=%s",
            document_id, new_version, extraction.completeness_score, stored.key,
        )

    # ------------------------------------------------------------------
    # Checklist
    # ------------------------------------------------------------------

    async def update_case_checklist(self, case_id: uuid.UUID) -> DocumentChecklistStatus:
        """Re-evaluate the case checklist from its current documents and persist it."""
        async with self._unit() as repos:
            case = await repos.cases.get(case_id)
            if case is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail=UploadErrors.case_not_found(case_id).model_dump(),
                )

            documents = await repos.documents.list_by_case(case_id)
            checklist = self._checklist.evaluate(documents, case.applicant_data, today=self._today())
            case_status = self._checklist.derive_case_status(checklist)

            await repos.cases.update(
                case_id,
                checklist_status=checklist.model_dump(mode="json"),
                status=case_status.value,
            )

        logger.info(
            "Checklist updated | case=%s documents=%d status=%s",
            case_id, len(documents), case_status.value,
        )
        return checklist

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    async def update_document_version(
        self,
        document_id:   uuid.UUID,
        content:       bytes,
        mime_type:     str,
        *,
        change_reason: Optional[str] = None,
        created_by:    Optional[str] = None,
    ) -> DocumentUploadResponse:
        """Store replacement bytes as version N+1 and re-run the pipeline."""
        async with self._locks.lock_for(document_id):
            async with self._unit() as repos:
                doc = await self._require_document(repos, document_id)
                self.validate_upload(doc.original_file_name, content, mime_type)

                new_version = doc.version + 1
                stored = await self._storage.upload_document(
                    doc.client_id, doc.case_id, doc.file_name, content, mime_type, version=new_version,
                )
                await repos.documents.update(
                    document_id,
                    version=new_version,
                    storage_key=stored.key,
                    mime_type=mime_type,
                    file_size=len(content),
                )
                await repos.document_versions.create(
                    document_id=document_id,
                    version=new_version,
                    storage_key=stored.key,
                    change_reason=change_reason or "Document updated",
                    created_by=created_by,
                )

            logger.info("Document version stored | doc=%s version=%d", document_id, new_version)
            processing = await self._run_pipeline(document_id)

        return DocumentUploadResponse(
            document=await self.get_document(document_id),
            processing=processing,
        )

    # ------------------------------------------------------------------
    # Classification override
    # ------------------------------------------------------------------

    async def override_classification(
        self,
        document_id: uuid.UUID,
        category:    DocumentCategory,
        *,
        reprocess:   bool = True,
    ) -> DocumentResponse:
        """Manual category with confidence 1.0; optionally re-run the pipeline."""
        async with self._locks.lock_for(document_id):
            async with self._unit() as repos:
                doc = await self._require_document(repos, document_id)
                await repos.documents.update(
                    document_id,
                    category=DocumentCategory(category).value,
                    classification_confidence=1.0,
                    processing_status=DocumentProcessingStatus.CLASSIFIED.value,
                )
                case_id = doc.case_id

            logger.info("Classification overridden | doc=%s category=%s", document_id, DocumentCategory(category).value)

            if reprocess:
                await self._run_pipeline(document_id)
            else:
                await self.update_case_checklist(case_id)

        return await self.get_document(document_id)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete(self, document_id: uuid.UUID) -> None:
        """Remove every version blob, the current blob and the row; refresh the checklist."""
        async with self._locks.lock_for(document_id):
            async with self._unit() as repos:
                doc = await self._require_document(repos, document_id)
                case_id = doc.case_id

                versions = await repos.document_versions.find_by_document_id(document_id)
                for version in versions:
                    await self._storage.delete_object(version.storage_key)
                await self._storage.delete_object(doc.storage_key)

                await repos.documents.delete(document_id)

            logger.info("Document deleted | doc=%s case=%s versions=%d", document_id, case_id, len(versions))
            await self.update_case_checklist(case_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_document(self, document_id: uuid.UUID) -> DocumentResponse:
        async with self._unit() as repos:
            return DocumentResponse.model_validate(await self._require_document(repos, document_id))

    async def list_documents(self, case_id: uuid.UUID) -> list[DocumentResponse]:
        async with self._unit() as repos:
            return [DocumentResponse.model_validate(d) for d in await repos.documents.list_by_case(case_id)]

    async def get_document_with_versions(self, document_id: uuid.UUID) -> DocumentWithVersions:
        async with self._unit() as repos:
            doc = await self._require_document(repos, document_id)
            versions = await repos.document_versions.find_by_document_id(document_id)
            extractions = await repos.extraction_versions.find_by_document_id(document_id)
            return DocumentWithVersions(
                document=DocumentResponse.model_validate(doc),
                versions=[DocumentVersionResponse.model_validate(v) for v in versions],
                extraction_versions=[ExtractionVersionResponse.model_validate(e) for e in extractions],
            )

    async def download(self, document_id: uuid.UUID, version: Optional[int] = None) -> DocumentDownload:
        """Bytes of the requested version; an unknown version falls back to the current blob."""
        async with self._unit() as repos:
            doc = await self._require_document(repos, document_id)
            key = doc.storage_key
            if version is not None:
                record = await repos.document_versions.get(document_id, version)
                if record is not None:
                    key = record.storage_key
            file_name = doc.original_file_name

        blob = await self._storage.get_object(key)
        return DocumentDownload(body=blob.body, content_type=blob.content_type, file_name=file_name)

    async def get_extraction(self, document_id: uuid.UUID, version: Optional[int] = None) -> ExtractionView:
        async with self._unit() as repos:
            doc = await self._require_document(repos, document_id)
            extracted = doc.extracted_data
            if version is not None:
                record = await repos.extraction_versions.get(document_id, version)
                if record is not None:
                    extracted = record.extracted_data

            return ExtractionView(
                document_id=doc.id,
                category=doc.category,
                completeness_score=doc.completeness_score,
                completeness_issues=list(doc.completeness_issues or []),
                extracted_data=extracted,
                extraction_version=doc.extraction_version,
            )

    async def get_extraction_history(self, document_id: uuid.UUID) -> list[ExtractionVersionResponse]:
        async with self._unit() as repos:
            rows = await repos.extraction_versions.find_by_document_id(document_id)
            return [ExtractionVersionResponse.model_validate(r) for r in rows]

    async def get_case_document_summary(self, case_id: uuid.UUID) -> CaseDocumentSummary:
        async with self._unit() as repos:
            case = await repos.cases.get(case_id)
            if case is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail=UploadErrors.case_not_found(case_id).model_dump(),
                )
            documents = await repos.documents.list_by_case(case_id)

            if case.checklist_status is not None:
                checklist = DocumentChecklistStatus.model_validate(case.checklist_status)
            else:
                checklist = self._checklist.evaluate(documents, case.applicant_data, today=self._today())

            statuses = [d.processing_status for d in documents]
            counts = ProcessingCounts(
                uploaded=statuses.count(DocumentProcessingStatus.UPLOADED.value),
                processing=sum(
                    s in (DocumentProcessingStatus.CLASSIFYING.value, DocumentProcessingStatus.EXTRACTING.value)
                    for s in statuses
                ),
                completed=statuses.count(DocumentProcessingStatus.COMPLETED.value),
                errors=sum(
                    s in (DocumentProcessingStatus.ERROR.value, DocumentProcessingStatus.VALIDATION_FAILED.value)
                    for s in statuses
                ),
            )

            return CaseDocumentSummary(
                case=CaseResponse.model_validate(case),
                documents=[DocumentResponse.model_validate(d) for d in documents],
                checklist_status=checklist,
                summary=SummaryBlock(
                    total_documents=len(documents),
                    completeness_percentage=self._checklist.calculate_overall_completeness(checklist),
                    missing_documents=self._checklist.get_missing_documents(checklist),
                    items_needing_review=self._checklist.get_items_needing_review(checklist),
                    processing_status=counts,
                ),
            )


# ---------------------------------------------------------------------------
# Task publisher — thin abstraction over Celery .apply_async()
# Injected into DocumentService so it can be mocked in tests.
# ---------------------------------------------------------------------------

class TaskPublisher:
    """
    Sends processing tasks to the Celery broker.
    Import is deferred so the broker connection is not required at module load time.
    """

    async def publish_processing_task(self, document_id: uuid.UUID, *, reprocess: bool = False) -> None:
        """Dispatch in a thread executor so the broker round-trip does not block the loop."""
        from careify.workers.tasks import process_document, reprocess_document

        task = reprocess_document if reprocess else process_document
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            lambda: task.apply_async(kwargs={"document_id": str(document_id)}, countdown=2),
        )
        logger.info("Processing task published | doc=%s task=%s", document_id, task.name)


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------

def build_document_service(
    db:        Database,
    *,
    storage:   S3StorageService | None = None,
    publisher: TaskPublisher | None = None,
    client:    VisionClient | None = None,
    cfg:       Settings | None = None,
) -> DocumentService:
    """
    Wire the production collaborators (S3, OpenAI vision model, default policy).
    Pass a long-lived `client` to reuse its model instances across services.
    """
    from careify.llm.gateway import VisionModelClient

    cfg = cfg or default_settings
    client = client or VisionModelClient(cfg)
    return DocumentService(
        db,
        storage or S3StorageService(),
        ClassificationStage(client, max_tokens=cfg.llm_classification_max_tokens),
        ExtractionStage(client, threshold=cfg.extraction_threshold, max_tokens=cfg.llm_max_tokens),
        ChecklistEngine(),
        publisher,
        cfg=cfg,
    )
