"""
Unit tests for DocumentService
══════════════════════════════

All collaborators are in-memory (see conftest): FakeDatabase with rollback,
mocked S3, stub vision client, mocked task publisher.

Coverage targets:
  ✅ Upload validation (empty / too large / unsupported type), limits from injected settings
  ✅ Upload + inline processing → completed, ExtractionVersion 1, case status
  ✅ Upload without processing → queued via publisher (and publisher failure)
  ✅ Blob failure rolls back the document row; same-named uploads get separate keys
  ✅ Low confidence / unknown category skips extraction
  ✅ Extraction failure → validation_failed
  ✅ Unexpected failure → error status + processing log
  ✅ Reprocess and concurrent reprocess allocate distinct extraction versions
  ✅ Reprocess twice: same category, confidence and completeness, next version
  ✅ Failed extraction artifact upload leaves no ExtractionVersion behind
  ✅ Queued reprocess publishes the reprocess task
  ✅ New document version, classification override, delete
  ✅ Reads: download, extraction view/history, case summary
"""

from __future__ import annotations

import asyncio
import uuid

import pytest
from fastapi import HTTPException

from careify.core.config import settings
from careify.schemas.documents import (
    MAX_FILE_SIZE_BYTES,
    DocumentCategory,
    DocumentProcessingStatus,
)
from careify.services.documents import SKIPPED_EXTRACTION_DETAILS, DocumentLockRegistry
from careify.storage.s3 import document_key, stored_filename

from tests.conftest import seed_case


async def _upload(service, case, *, name="Passport Scan.PNG", content=b"\x89PNG-bytes", mime="image/png", **kw):
    return await service.upload_document(case.id, name, content, mime, **kw)


def _blob_key(case, document_id, version: int, name: str = "Passport Scan.PNG") -> str:
    return document_key(case.client_id, case.id, stored_filename(document_id, name), version)


# ─────────────────────────────────────────────────────────────────────────────
# Upload validation
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestUploadValidation:

    async def test_empty_file_rejected(self, make_service, store):
        case = seed_case(store)
        with pytest.raises(HTTPException) as exc_info:
            await _upload(make_service(), case, content=b"")

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail["error_code"] == "MISSING_FILE"
        assert store.documents == {}

    async def test_oversized_file_rejected(self, make_service, store):
        case = seed_case(store)
        with pytest.raises(HTTPException) as exc_info:
            await _upload(make_service(), case, content=b"x" * (MAX_FILE_SIZE_BYTES + 1))

        assert exc_info.value.status_code == 413
        assert exc_info.value.detail["error_code"] == "FILE_TOO_LARGE"

    async def test_unsupported_type_rejected(self, make_service, store, mock_storage):
        case = seed_case(store)
        with pytest.raises(HTTPException) as exc_info:
            await _upload(make_service(), case, name="notes.docx", mime="application/msword")

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail["error_code"] == "UNSUPPORTED_FILE_TYPE"
        mock_storage.upload_document.assert_not_called()

    async def test_limits_come_from_injected_settings(self, make_service, store, mock_storage):
        cfg = settings.model_copy(update={"max_upload_bytes": 16, "allowed_mime_types": ["application/pdf"]})
        service = make_service(cfg=cfg)
        case = seed_case(store)

        with pytest.raises(HTTPException) as too_large:
            await _upload(service, case, name="a.pdf", content=b"x" * 17, mime="application/pdf")
        assert too_large.value.status_code == 413
        assert "limit is 16 bytes" in too_large.value.detail["details"][0]["message"]

        with pytest.raises(HTTPException) as wrong_type:
            await _upload(service, case, content=b"small")
        assert wrong_type.value.detail["error_code"] == "UNSUPPORTED_FILE_TYPE"
        assert wrong_type.value.detail["details"][0]["message"].endswith("Allowed: application/pdf.")

        response = await _upload(service, case, name="a.pdf", content=b"x" * 16, mime="application/pdf", process=False)
        assert response.document.file_size == 16

    async def test_unknown_case_returns_404(self, make_service, store):
        with pytest.raises(HTTPException) as exc_info:
            await make_service().upload_document(uuid.uuid4(), "a.png", b"data", "image/png")

        assert exc_info.value.status_code == 404
        assert exc_info.value.detail["error_code"] == "CASE_NOT_FOUND"
        assert store.documents == {}


# ─────────────────────────────────────────────────────────────────────────────
# Upload + pipeline
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestUploadAndProcess:

    async def test_upload_processes_inline(self, make_service, store, mock_storage, mock_publisher):
        case = seed_case(store)
        response = await _upload(make_service(), case, created_by="caseworker-7")

        doc = response.document
        assert response.queued is False
        assert response.processing.success is True
        assert response.processing.errors == []
        assert doc.file_name == stored_filename(doc.id, "Passport Scan.PNG")
        assert doc.file_name.endswith("_passport_scan.png")
        assert doc.original_file_name == "Passport Scan.PNG"
        assert doc.storage_key == _blob_key(case, doc.id, 1)
        assert doc.category == DocumentCategory.IDENTITY
        assert doc.processing_status == DocumentProcessingStatus.COMPLETED
        assert doc.extraction_version == 1
        assert doc.completeness_score == 100
        assert doc.extracted_data["fields"]["fullName"]["value"] == "Amira Okafor"

        [version] = store.document_versions
        assert (version.version, version.change_reason, version.created_by) == (1, "Initial upload", "caseworker-7")

        [extraction] = store.extraction_versions
        assert extraction.version == 1
        assert extraction.model_version == "gpt-4o"
        assert extraction.storage_key.endswith(f"/extractions/{doc.id}/v1.json")

        actions = [(e.action, e.status) for e in store.logs_for(doc.id)]
        assert actions == [("upload", "completed"), ("classification", "completed"), ("extraction", "completed")]

        stored_case = store.cases[case.id]
        assert stored_case.status == "documents_pending"
        assert stored_case.checklist_status["identity"]["status"] == "verified"
        mock_publisher.publish_processing_task.assert_not_called()

    async def test_upload_without_processing_queues_task(self, make_service, store, mock_publisher, vision):
        case = seed_case(store)
        response = await _upload(make_service(), case, process=False)

        assert response.queued is True
        assert response.processing is None
        assert response.document.processing_status == DocumentProcessingStatus.UPLOADED
        mock_publisher.publish_processing_task.assert_awaited_once_with(response.document.id, reprocess=False)
        assert vision.calls == []

    async def test_publisher_failure_keeps_document(self, make_service, store, mock_publisher):
        mock_publisher.publish_processing_task.side_effect = ConnectionError("broker unreachable")
        case = seed_case(store)

        response = await _upload(make_service(), case, process=False)

        assert response.queued is False
        assert response.document.id in store.documents

    async def test_storage_failure_rolls_back_row(self, make_service, store, fake_db, mock_storage):
        mock_storage.upload_document.side_effect = RuntimeError("S3 unavailable")
        case = seed_case(store)

        with pytest.raises(HTTPException) as exc_info:
            await _upload(make_service(), case)

        assert exc_info.value.status_code == 500
        assert exc_info.value.detail["error_code"] == "STORAGE_ERROR"
        assert store.documents == {}
        assert store.document_versions == []
        assert store.logs == []
        assert fake_db.rollbacks == 1

    async def test_low_confidence_skips_extraction(self, make_service, store, vision):
        vision.classification = {"category": "income", "confidence": 0.55, "reasoning": "Blurry payslip"}
        case = seed_case(store)

        response = await _upload(make_service(), case)

        assert response.processing.success is True
        assert response.processing.extraction is None
        assert response.document.category == DocumentCategory.INCOME
        assert response.document.processing_status == DocumentProcessingStatus.COMPLETED
        assert response.document.extraction_version == 0
        assert vision.count("extraction") == 0

        [skipped] = store.logs_for(response.document.id, "extraction")
        assert skipped.details == SKIPPED_EXTRACTION_DETAILS

    async def test_unknown_category_skips_extraction(self, make_service, store, vision):
        vision.classification = {"category": "unknown", "confidence": 0.99}
        case = seed_case(store)

        response = await _upload(make_service(), case)

        assert response.document.category == DocumentCategory.UNKNOWN
        assert vision.count("extraction") == 0
        assert store.extraction_versions == []

    async def test_extraction_failure_marks_validation_failed(self, make_service, store, vision):
        vision.extraction = "this is not json"
        case = seed_case(store)

        response = await _upload(make_service(), case)

        assert response.processing.success is False
        assert response.processing.errors == ["Extraction failed"]
        assert response.document.processing_status == DocumentProcessingStatus.VALIDATION_FAILED
        assert store.extraction_versions == []

        failed = [e for e in store.logs_for(response.document.id, "extraction") if e.status == "failed"]
        assert len(failed) == 1
        assert failed[0].error_message.startswith("Extraction failed:")

        # the failed identity document is reported on the checklist
        assert store.cases[case.id].checklist_status["identity"]["status"] == "issues"

    async def test_unexpected_failure_marks_error(self, make_service, store, mock_storage):
        case = seed_case(store)
        uploaded = await _upload(make_service(), case, process=False)
        mock_storage.get_object.side_effect = FileNotFoundError("Object not found: gone")

        result = await make_service().process(uploaded.document.id)

        assert result.success is False
        assert result.errors == ["Object not found: gone"]
        doc = store.documents[uploaded.document.id]
        assert doc.processing_status == "error"
        [entry] = store.logs_for(doc.id, "processing")
        assert (entry.status, entry.error_message) == ("failed", "Object not found: gone")

    async def test_process_missing_document(self, make_service):
        result = await make_service().process(uuid.uuid4())
        assert result.success is False
        assert result.errors == ["Document not found"]


# ─────────────────────────────────────────────────────────────────────────────
# Versions
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestVersions:

    async def test_reprocess_creates_next_extraction_version(self, make_service, store, mock_storage):
        service = make_service()
        case = seed_case(store)
        uploaded = await _upload(service, case)

        result = await service.reprocess(uploaded.document.id)

        assert result.success is True
        assert store.documents[uploaded.document.id].extraction_version == 2
        assert mock_storage.upload_extraction.call_args.kwargs["version"] == 2

        history = await service.get_extraction_history(uploaded.document.id)
        assert [h.version for h in history] == [2, 1]

    async def test_reprocess_is_stable_apart_from_version(self, make_service, store):
        service = make_service()
        case = seed_case(store)
        uploaded = await _upload(service, case, process=False)

        runs = []
        for _ in range(2):
            result = await service.reprocess(uploaded.document.id)
            doc = store.documents[uploaded.document.id]
            runs.append((
                result.classification.category,
                result.classification.confidence,
                result.extraction.completeness_score,
                doc.category,
                doc.classification_confidence,
                doc.completeness_score,
                doc.extraction_version,
            ))

        assert runs[0][:6] == runs[1][:6]
        assert runs[0][:3] == (DocumentCategory.IDENTITY, 0.95, 100)
        assert (runs[0][6], runs[1][6]) == (1, 2)

    async def test_failed_artifact_upload_keeps_no_extraction_version(
        self, make_service, store, fake_db, mock_storage,
    ):
        service = make_service()
        case = seed_case(store)
        uploaded = await _upload(service, case, process=False)
        stores_artifact = mock_storage.upload_extraction.side_effect
        mock_storage.upload_extraction.side_effect = RuntimeError("S3 unavailable")
        rollbacks_before = fake_db.rollbacks

        result = await service.process(uploaded.document.id)

        assert result.success is False
        assert result.errors == ["S3 unavailable"]
        assert fake_db.rollbacks == rollbacks_before + 1
        doc = store.documents[uploaded.document.id]
        assert doc.extraction_version == 0
        assert doc.extracted_data is None
        assert doc.processing_status == "error"
        assert store.extraction_versions == []
        assert [e.status for e in store.logs_for(doc.id, "extraction")] == []
        [entry] = store.logs_for(doc.id, "processing")
        assert (entry.status, entry.error_message) == ("failed", "S3 unavailable")

        mock_storage.upload_extraction.side_effect = stores_artifact
        retried = await service.reprocess(doc.id)
        assert retried.success is True
        assert store.documents[doc.id].extraction_version == 1

    async def test_queue_reprocess_publishes_reprocess_task(self, make_service, store, mock_publisher):
        service = make_service()
        case = seed_case(store)
        uploaded = await _upload(service, case)
        mock_publisher.publish_processing_task.reset_mock()

        assert await service.queue_reprocess(uploaded.document.id) is True
        mock_publisher.publish_processing_task.assert_awaited_once_with(uploaded.document.id, reprocess=True)

        mock_publisher.publish_processing_task.side_effect = ConnectionError("broker unreachable")
        assert await service.queue_reprocess(uploaded.document.id) is False

    async def test_queue_reprocess_unknown_document(self, make_service, mock_publisher):
        with pytest.raises(HTTPException) as exc_info:
            await make_service().queue_reprocess(uuid.uuid4())
        assert exc_info.value.status_code == 404
        mock_publisher.publish_processing_task.assert_not_called()

    async def test_concurrent_reprocess_allocates_distinct_versions(self, make_service, store):
        service = make_service()
        case = seed_case(store)
        uploaded = await _upload(service, case)

        await asyncio.gather(
            service.reprocess(uploaded.document.id),
            service.reprocess(uploaded.document.id),
        )

        versions = sorted(e.version for e in store.extraction_versions)
        assert versions == [1, 2, 3]

    async def test_update_document_version(self, make_service, store, mock_storage):
        service = make_service()
        case = seed_case(store)
        uploaded = await _upload(service, case)

        response = await service.update_document_version(
            uploaded.document.id, b"\xff\xd8new-scan", "image/jpeg",
            change_reason="Clearer scan", created_by="caseworker-7",
        )

        doc = response.document
        assert doc.version == 2
        assert doc.mime_type == "image/jpeg"
        assert doc.storage_key == _blob_key(case, doc.id, 2)
        assert response.processing.success is True
        assert doc.extraction_version == 2

        detail = await service.get_document_with_versions(doc.id)
        assert [v.version for v in detail.versions] == [2, 1]
        assert detail.versions[0].change_reason == "Clearer scan"
        assert [e.version for e in detail.extraction_versions] == [2, 1]

    async def test_update_version_of_missing_document(self, make_service):
        with pytest.raises(HTTPException) as exc_info:
            await make_service().update_document_version(uuid.uuid4(), b"data", "image/png")
        assert exc_info.value.status_code == 404

    async def test_override_without_reprocess(self, make_service, store, vision):
        vision.classification = {"category": "unknown", "confidence": 0.2}
        service = make_service()
        case = seed_case(store)
        uploaded = await _upload(service, case)

        doc = await service.override_classification(
            uploaded.document.id, DocumentCategory.INCOME, reprocess=False,
        )

        assert doc.category == DocumentCategory.INCOME
        assert doc.classification_confidence == 1.0
        assert doc.processing_status == DocumentProcessingStatus.CLASSIFIED
        assert vision.count("classification") == 1
        assert store.cases[case.id].checklist_status["income"]["document_ids"] == [str(doc.id)]

    async def test_override_with_reprocess_reruns_pipeline(self, make_service, store, vision):
        vision.classification = {"category": "unknown", "confidence": 0.2}
        service = make_service()
        case = seed_case(store)
        uploaded = await _upload(service, case)

        vision.classification = {"category": "identity", "confidence": 0.92}
        doc = await service.override_classification(uploaded.document.id, DocumentCategory.IDENTITY)

        assert vision.count("classification") == 2
        assert doc.processing_status == DocumentProcessingStatus.COMPLETED
        assert doc.extraction_version == 1


# ─────────────────────────────────────────────────────────────────────────────
# Delete
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestDelete:

    async def test_delete_removes_blobs_rows_and_refreshes_checklist(self, make_service, store, mock_storage):
        service = make_service()
        case = seed_case(store)
        uploaded = await _upload(service, case)
        await service.update_document_version(uploaded.document.id, b"v2-bytes", "image/png")

        await service.delete(uploaded.document.id)

        deleted_keys = {c.args[0] for c in mock_storage.delete_object.await_args_list}
        assert deleted_keys == {
            _blob_key(case, uploaded.document.id, 1),
            _blob_key(case, uploaded.document.id, 2),
        }
        assert store.documents == {}
        assert store.document_versions == []
        assert store.extraction_versions == []
        assert store.cases[case.id].checklist_status["identity"]["status"] == "missing"

        with pytest.raises(HTTPException) as exc_info:
            await service.get_document(uploaded.document.id)
        assert exc_info.value.status_code == 404

    async def test_same_named_uploads_keep_separate_blobs(self, make_service, store, mock_storage):
        service = make_service()
        case = seed_case(store)
        first  = await _upload(service, case, name="scan.png", content=b"PASSPORT", process=False)
        second = await _upload(service, case, name="scan.png", content=b"PAYSLIP", process=False)

        key_a = first.document.storage_key
        key_b = second.document.storage_key
        assert key_a != key_b
        uploaded = {c.args[2]: c.args[3] for c in mock_storage.upload_document.await_args_list}
        assert uploaded == {
            stored_filename(first.document.id, "scan.png"):  b"PASSPORT",
            stored_filename(second.document.id, "scan.png"): b"PAYSLIP",
        }

        await service.delete(second.document.id)

        deleted_keys = {c.args[0] for c in mock_storage.delete_object.await_args_list}
        assert deleted_keys == {key_b}
        assert store.documents[first.document.id].storage_key == key_a

    async def test_delete_missing_document(self, make_service, mock_storage):
        with pytest.raises(HTTPException):
            await make_service().delete(uuid.uuid4())
        mock_storage.delete_object.assert_not_called()


# ─────────────────────────────────────────────────────────────────────────────
# Reads
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestReads:

    async def test_download_specific_and_fallback_versions(self, make_service, store, mock_storage):
        service = make_service()
        case = seed_case(store)
        uploaded = await _upload(service, case, process=False)
        await service.update_document_version(uploaded.document.id, b"v2-bytes", "image/png")

        download = await service.download(uploaded.document.id, version=1)
        assert mock_storage.get_object.call_args.args[0] == _blob_key(case, uploaded.document.id, 1)
        assert download.file_name == "Passport Scan.PNG"
        assert download.content_type == "image/png"

        await service.download(uploaded.document.id, version=9)
        assert mock_storage.get_object.call_args.args[0] == _blob_key(case, uploaded.document.id, 2)

    async def test_get_extraction_view(self, make_service, store):
        service = make_service()
        case = seed_case(store)
        uploaded = await _upload(service, case)
        await service.reprocess(uploaded.document.id)

        view = await service.get_extraction(uploaded.document.id, version=1)

        assert view.extraction_version == 2
        assert view.category == DocumentCategory.IDENTITY
        assert view.extracted_data["document_type"] == "identity"
        assert view.completeness_issues == []

    async def test_case_summary_counts(self, make_service, store, vision):
        service = make_service()
        case = seed_case(store)
        await _upload(service, case, name="passport.png")
        await _upload(service, case, name="payslip.png", process=False)
        vision.extraction = "garbage"
        await _upload(service, case, name="licence.png")

        summary = await service.get_case_document_summary(case.id)

        assert summary.summary.total_documents == 3
        counts = summary.summary.processing_status
        assert (counts.uploaded, counts.processing, counts.completed, counts.errors) == (1, 0, 1, 1)
        assert summary.case.reference_number == case.reference_number
        assert "Proof of income (payslips or employment letter)" in summary.summary.missing_documents

    async def test_case_summary_unknown_case(self, make_service):
        with pytest.raises(HTTPException) as exc_info:
            await make_service().get_case_document_summary(uuid.uuid4())
        assert exc_info.value.status_code == 404


@pytest.mark.unit
class TestLockRegistry:

    async def test_same_document_shares_lock(self):
        registry = DocumentLockRegistry()
        doc_id = uuid.uuid4()
        lock = registry.lock_for(doc_id)
        assert registry.lock_for(doc_id) is lock
        assert registry.lock_for(uuid.uuid4()) is not lock
