"""
Document Intake — Pydantic Schemas

Covers the document side of the intake pipeline:
  - Closed enums (category, processing status, audit outcome, issue severity)
  - Classification and extraction stage results
  - Row projections returned by the HTTP layer (from_attributes)
  - Upload / processing results
  - Structured error bodies and their factories

Design decisions:
  - Every value that crosses a storage boundary (JSONB column, S3 artifact)
    is produced with model_dump(mode="json") so timestamps are ISO-8601 strings.
  - DocumentCategory declaration order is significant: multi-page
    classification breaks ties by it.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from careify.core.config import settings


# ---------------------------------------------------------------------------
# Upload limits — enforced before touching S3
# ---------------------------------------------------------------------------

ALLOWED_CONTENT_TYPES: frozenset[str] = frozenset(settings.allowed_mime_types)

MAX_FILE_SIZE_BYTES: int = settings.max_upload_bytes


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class DocumentCategory(str, Enum):
    """Closed classification label. Order matters for tie-breaking."""
    IDENTITY         = "identity"
    INCOME           = "income"
    BANK_STATEMENT   = "bank_statement"
    WELFARE_BENEFIT  = "welfare_benefit"
    MEDICAL          = "medical"
    TENANCY          = "tenancy"
    PROOF_OF_ADDRESS = "proof_of_address"
    OTHER            = "other"
    UNKNOWN          = "unknown"


class DocumentProcessingStatus(str, Enum):
    """
    Maps to intake.documents.processing_status.
    Transitions: uploaded → classifying → classified → extracting
                 → extracted | validation_failed → completed
    classified → completed when extraction is skipped; error from anywhere.
    """
    UPLOADED          = "uploaded"
    CLASSIFYING       = "classifying"
    CLASSIFIED        = "classified"
    EXTRACTING        = "extracting"
    EXTRACTED         = "extracted"
    VALIDATION_FAILED = "validation_failed"
    COMPLETED         = "completed"
    ERROR             = "error"


class LogStatus(str, Enum):
    STARTED   = "started"
    COMPLETED = "completed"
    FAILED    = "failed"


class IssueSeverity(str, Enum):
    ERROR   = "error"
    WARNING = "warning"
    INFO    = "info"


FieldValue = Union[str, int, float, bool, None]


# ---------------------------------------------------------------------------
# Extraction data
# ---------------------------------------------------------------------------

class ExtractedField(BaseModel):
    """One extracted value with the model's self-reported confidence."""
    value:      FieldValue      = None
    confidence: float           = Field(0.0, ge=0.0, le=1.0)
    source:     Optional[str]   = Field(None, description="Where in the document the value was read")
    issues:     Optional[list[str]] = None


class ExtractedDocumentData(BaseModel):
    """Stored on documents.extracted_data and on every ExtractionVersion row."""
    document_type: DocumentCategory
    confidence:    float = Field(..., ge=0.0, le=1.0, description="Classification confidence")
    extracted_at:  datetime
    fields:        dict[str, ExtractedField] = Field(default_factory=dict)
    raw_text:      Optional[str] = None


class ExtractionIssue(BaseModel):
    field:      str
    severity:   IssueSeverity
    message:    str
    suggestion: Optional[str] = None


class ExtractionResult(BaseModel):
    success:            bool
    document_type:      DocumentCategory
    fields:             dict[str, ExtractedField] = Field(default_factory=dict)
    completeness_score: int = Field(0, ge=0, le=100)
    issues:             list[ExtractionIssue] = Field(default_factory=list)
    raw_text:           Optional[str] = None


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

class AlternativeCategory(BaseModel):
    category:   DocumentCategory
    confidence: float = Field(..., ge=0.0, le=1.0)


class ClassificationResult(BaseModel):
    category:               DocumentCategory
    confidence:             float = Field(..., ge=0.0, le=1.0)
    subtype:                Optional[str] = None
    reasoning:              str
    alternative_categories: Optional[list[AlternativeCategory]] = None


# ---------------------------------------------------------------------------
# Row projections
# ---------------------------------------------------------------------------

class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id:                        UUID
    case_id:                   UUID
    client_id:                 str
    file_name:                 str
    original_file_name:        str
    mime_type:                 str
    file_size:                 int
    storage_key:               str
    version:                   int
    category:                  DocumentCategory
    classification_confidence: float
    processing_status:         DocumentProcessingStatus
    extracted_data:            Optional[dict[str, Any]] = None
    extraction_version:        int
    completeness_score:        int
    completeness_issues:       list[str] = Field(default_factory=list)
    created_at:                Optional[datetime] = None
    updated_at:                Optional[datetime] = None


class DocumentVersionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id:             UUID
    document_id:    UUID
    version:        int
    storage_key:    str
    extracted_data: Optional[dict[str, Any]] = None
    change_reason:  Optional[str] = None
    created_by:     Optional[str] = None
    created_at:     Optional[datetime] = None


class ExtractionVersionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id:             UUID
    document_id:    UUID
    version:        int
    extracted_data: dict[str, Any]
    model_version:  Optional[str] = None
    prompt_version: Optional[str] = None
    storage_key:    Optional[str] = None
    created_at:     Optional[datetime] = None


class DocumentWithVersions(BaseModel):
    document:            DocumentResponse
    versions:            list[DocumentVersionResponse]   = Field(default_factory=list)
    extraction_versions: list[ExtractionVersionResponse] = Field(default_factory=list)


class ExtractionView(BaseModel):
    """GET /documents/{id}/extraction — latest or a specific extraction version."""
    document_id:         UUID
    category:            DocumentCategory
    completeness_score:  int
    completeness_issues: list[str] = Field(default_factory=list)
    extracted_data:      Optional[dict[str, Any]] = None
    extraction_version:  int


# ---------------------------------------------------------------------------
# Pipeline results
# ---------------------------------------------------------------------------

class ProcessingResult(BaseModel):
    """Outcome of one pipeline run. Never raised; always returned."""
    document_id:    UUID
    success:        bool
    classification: Optional[ClassificationResult] = None
    extraction:     Optional[ExtractionResult]     = None
    errors:         list[str] = Field(default_factory=list)


class DocumentUploadResponse(BaseModel):
    """HTTP 201 — the blob and row are committed; processing may still be queued."""
    document:   DocumentResponse
    processing: Optional[ProcessingResult] = Field(
        None,
        description="Present when the pipeline ran inline",
    )
    queued:     bool = Field(False, description="True when handed to the background worker")


class ReprocessQueued(BaseModel):
    """HTTP 202: the reprocess run was handed to the background worker."""
    document_id: UUID
    queued:      bool


class ClassificationOverride(BaseModel):
    category:  DocumentCategory
    reprocess: bool = True


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error — may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str        = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """Uniform error envelope for all 4xx/5xx responses."""
    error_code: str               = Field(..., description="Stable machine-readable code")
    message:    str               = Field(..., description="Human-readable summary")
    details:    list[ErrorDetail] = Field(default_factory=list)
    request_id: str | None        = Field(None, description="Trace ID for log correlation")


# ---------------------------------------------------------------------------
# Error factories
# ---------------------------------------------------------------------------

class UploadErrors:
    """ErrorResponse bodies for the intake API's 4xx and 5xx cases."""

    @staticmethod
    def unsupported_file_type(
        filename:      str,
        detected_type: str,
        allowed:       Iterable[str] = ALLOWED_CONTENT_TYPES,
    ) -> ErrorResponse:
        return ErrorResponse(
            error_code="UNSUPPORTED_FILE_TYPE",
            message=f"File type '{detected_type}' is not supported.",
            details=[
                ErrorDetail(
                    field="file",
                    message=(
                        f"'{filename}' has an unsupported type '{detected_type}'. "
                        f"Allowed: {', '.join(sorted(allowed))}."
                    ),
                    code="UNSUPPORTED_FILE_TYPE",
                )
            ],
        )

    @staticmethod
    def file_too_large(size_bytes: int, max_bytes: int = MAX_FILE_SIZE_BYTES) -> ErrorResponse:
        return ErrorResponse(
            error_code="FILE_TOO_LARGE",
            message=f"File size exceeds maximum allowed ({max_bytes / (1024 * 1024):g}MB)",
            details=[
                ErrorDetail(
                    field="file",
                    message=f"Received {size_bytes:,} bytes; limit is {max_bytes:,} bytes.",
                    code="FILE_TOO_LARGE",
                )
            ],
        )

    @staticmethod
    def missing_file() -> ErrorResponse:
        return ErrorResponse(
            error_code="MISSING_FILE",
            message="Upload a document in the 'file' form field.",
            details=[
                ErrorDetail(
                    field="file",
                    message="The 'file' multipart field is required and must not be empty.",
                    code="MISSING_FILE",
                )
            ],
        )

    @staticmethod
    def document_not_found(document_id: UUID) -> ErrorResponse:
        return ErrorResponse(
            error_code="DOCUMENT_NOT_FOUND",
            message=f"Document '{document_id}' was not found.",
            details=[],
        )

    @staticmethod
    def case_not_found(case_id: UUID) -> ErrorResponse:
        return ErrorResponse(
            error_code="CASE_NOT_FOUND",
            message=f"Case '{case_id}' was not found.",
            details=[],
        )

    @staticmethod
    def storage_error(detail: str | None = None) -> ErrorResponse:
        return ErrorResponse(
            error_code="STORAGE_ERROR",
            message="The document could not be written to storage. Retry the upload.",
            details=(
                [ErrorDetail(field=None, message=detail, code="STORAGE_ERROR")]
                if detail
                else []
            ),
        )

    @staticmethod
    def internal_error(request_id: str | None = None) -> ErrorResponse:
        return ErrorResponse(
            error_code="INTERNAL_ERROR",
            message="The intake service hit an unexpected error.",
            details=[],
            request_id=request_id,
        )
