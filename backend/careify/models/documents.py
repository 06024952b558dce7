"""
SQLAlchemy ORM Models — Documents, Versions & Processing Log

Using SQLAlchemy mapped classes (2.x style) for full async support.

Ownership:
    intake.cases
      └── intake.documents              (ON DELETE CASCADE)
            ├── intake.document_versions    (ON DELETE CASCADE)
            ├── intake.extraction_versions  (ON DELETE CASCADE)
            └── intake.processing_log       (ON DELETE CASCADE)

Cascades are enforced by PostgreSQL foreign keys; the ORM issues a single
DELETE on the parent row and lets the database remove the children.

Schema: intake (set via __table_args__)
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Declarative base — shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Document model — intake.documents
# ---------------------------------------------------------------------------

class Document(Base):
    """
    One supporting document attached to a housing case.

    State machine (processing_status column):
        uploaded          — bytes stored, pipeline not yet started
        classifying       — vision model classifying the document
        classified        — category + confidence persisted
        extracting        — vision model extracting category fields
        extracted         — fields persisted, extraction_version bumped
        validation_failed — extraction returned no usable result
        completed         — pipeline finished (or extraction skipped)
        error             — unexpected failure; safe to reprocess

    version always equals MAX(document_versions.version);
    extraction_version always equals MAX(extraction_versions.version) or 0.
    """

    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(
            "processing_status IN ('uploaded', 'classifying', 'classified', 'extracting', "
            "'extracted', 'validation_failed', 'completed', 'error')",
            name="documents_processing_status_check",
        ),
        CheckConstraint(
            "category IN ('identity', 'income', 'bank_statement', 'welfare_benefit', 'medical', "
            "'tenancy', 'proof_of_address', 'other', 'unknown')",
            name="documents_category_check",
        ),
        CheckConstraint(
            "classification_confidence >= 0 AND classification_confidence <= 1",
            name="documents_confidence_range",
        ),
        CheckConstraint(
            "completeness_score >= 0 AND completeness_score <= 100",
            name="documents_completeness_range",
        ),
        Index("idx_documents_case_id",   "case_id"),
        Index("idx_documents_client_id", "client_id"),
        Index("idx_documents_category",  "category"),
        Index("idx_documents_status",    "processing_status"),
        {"schema": "intake"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    case_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("intake.cases.id", ondelete="CASCADE"),
        nullable=False,
    )
    client_id: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="External client id; first segment of every storage key",
    )

    # File identity
    file_name: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Sanitized, lower-cased file name used in storage keys",
    )
    original_file_name: Mapped[str] = mapped_column(Text, nullable=False)
    mime_type: Mapped[str] = mapped_column(Text, nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    storage_key: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="<client_id>/<case_id>/documents/v<N>/<file_name> of the current version",
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    # Classification
    category: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="unknown",
        server_default="unknown",
    )
    classification_confidence: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
        server_default="0",
    )

    # Pipeline state
    processing_status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="uploaded",
        server_default="uploaded",
    )

    # Extraction
    extracted_data: Mapped[Optional[dict]] = mapped_column(
        JSONB,
        nullable=True,
        comment="ExtractedDocumentData of the latest successful extraction",
    )
    extraction_version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
        comment="0 means never extracted",
    )
    completeness_score: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )
    completeness_issues: Mapped[list] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
        server_default="[]",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<Document id={self.id} case={self.case_id} v{self.version} "
            f"status={self.processing_status} category={self.category}>"
        )


# ---------------------------------------------------------------------------
# DocumentVersion — intake.document_versions (immutable)
# ---------------------------------------------------------------------------

class DocumentVersion(Base):
    """Snapshot written whenever a document's bytes are replaced. Never updated."""

    __tablename__ = "document_versions"
    __table_args__ = (
        UniqueConstraint("document_id", "version", name="uq_document_versions_version"),
        Index("idx_document_versions_document_id", "document_id"),
        {"schema": "intake"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("intake.documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    storage_key: Mapped[str] = mapped_column(Text, nullable=False)
    extracted_data: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    change_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


# ---------------------------------------------------------------------------
# ExtractionVersion — intake.extraction_versions (immutable)
# ---------------------------------------------------------------------------

class ExtractionVersion(Base):
    """
    One successful extraction run. Versions are dense per document, starting
    at 1; (document_id, version) is unique.
    """

    __tablename__ = "extraction_versions"
    __table_args__ = (
        UniqueConstraint("document_id", "version", name="uq_extraction_versions_version"),
        Index("idx_extraction_versions_document_id", "document_id"),
        {"schema": "intake"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("intake.documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    extracted_data: Mapped[dict] = mapped_column(JSONB, nullable=False)
    model_version: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    prompt_version: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    storage_key: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="<client_id>/<case_id>/extractions/<document_id>/v<N>.json",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


# ---------------------------------------------------------------------------
# ProcessingLog — intake.processing_log (append-only)
# ---------------------------------------------------------------------------

class ProcessingLog(Base):
    """
    Append-only audit trail of pipeline steps.
    Written by the document service for uploads, classification, extraction
    and failures. Never updated; read for audit only.
    """

    __tablename__ = "processing_log"
    __table_args__ = (
        CheckConstraint(
            "status IN ('started', 'completed', 'failed')",
            name="processing_log_status_check",
        ),
        Index("idx_processing_log_document_id", "document_id"),
        Index("idx_processing_log_case_id",     "case_id"),
        {"schema": "intake"},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)

    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("intake.documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    case_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("intake.cases.id", ondelete="CASCADE"),
        nullable=False,
    )

    action: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="upload | classification | extraction | processing",
    )
    status: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<ProcessingLog id={self.id} doc={self.document_id} "
            f"action={self.action!r} status={self.status}>"
        )
