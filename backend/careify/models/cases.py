"""
SQLAlchemy ORM Models — Cases & Sequences

A Case is one applicant's housing application. It is never hard-deleted by
the intake service; documents hang off it with ON DELETE CASCADE.

Reference numbers (SH-<year>-<NNNN>) come from intake.sequences, one row per
year, incremented with a single INSERT … ON CONFLICT … RETURNING statement.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from careify.models.documents import Base


class Case(Base):
    """
    Lifecycle (status column):
        draft → documents_pending → documents_processing → documents_review
              → eligibility_check → approved | declined
    """

    __tablename__ = "cases"
    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'documents_pending', 'documents_processing', "
            "'documents_review', 'eligibility_check', 'approved', 'declined')",
            name="cases_status_check",
        ),
        Index("idx_cases_client_id", "client_id"),
        Index("idx_cases_status",    "status"),
        {"schema": "intake"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    client_id: Mapped[str] = mapped_column(Text, nullable=False)
    reference_number: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        unique=True,
        comment="SH-<year>-<4-digit sequence>",
    )
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="draft",
        server_default="draft",
    )
    applicant_data: Mapped[dict] = mapped_column(JSONB, nullable=False)
    checklist_status: Mapped[Optional[dict]] = mapped_column(
        JSONB,
        nullable=True,
        comment="Last computed DocumentChecklistStatus snapshot",
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
        return f"<Case id={self.id} ref={self.reference_number} status={self.status}>"


class Sequence(Base):
    """Named monotonic counters, e.g. ref_number_2025."""

    __tablename__ = "sequences"
    __table_args__ = ({"schema": "intake"},)

    name: Mapped[str] = mapped_column(Text, primary_key=True)
    current_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
