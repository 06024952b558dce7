"""
Case Intake — Pydantic Schemas

Applicant snapshot, checklist status, and the request/response bodies for
the /cases routes. The checklist models are also what gets persisted into
intake.cases.checklist_status (model_dump(mode="json")).
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from careify.schemas.documents import DocumentResponse


# ---------------------------------------------------------------------------
# Case lifecycle
# ---------------------------------------------------------------------------

class ApplicationStatus(str, Enum):
    """Maps to intake.cases.status."""
    DRAFT                = "draft"
    DOCUMENTS_PENDING    = "documents_pending"
    DOCUMENTS_PROCESSING = "documents_processing"
    DOCUMENTS_REVIEW     = "documents_review"
    ELIGIBILITY_CHECK    = "eligibility_check"
    APPROVED             = "approved"
    DECLINED             = "declined"


# ---------------------------------------------------------------------------
# Applicant snapshot
# ---------------------------------------------------------------------------

class Address(BaseModel):
    line1:    str
    line2:    Optional[str] = None
    city:     str
    postcode: str
    country:  str = "United Kingdom"


class HouseholdMember(BaseModel):
    first_name:       str
    last_name:        str
    relationship:     str
    date_of_birth:    str
    requires_support: bool = Field(False, description="Makes medical evidence a required checklist item")


class ApplicantData(BaseModel):
    first_name:                str
    last_name:                 str
    email:                     str
    phone:                     str
    date_of_birth:             str
    national_insurance_number: Optional[str] = None
    address:                   Address
    household_size:            int = Field(1, ge=1)
    household_members:         list[HouseholdMember] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Checklist
# ---------------------------------------------------------------------------

class ChecklistItemStatus(str, Enum):
    MISSING  = "missing"
    PENDING  = "pending"
    VERIFIED = "verified"
    ISSUES   = "issues"


class ChecklistItem(BaseModel):
    required:     bool
    status:       ChecklistItemStatus
    document_ids: list[str] = Field(default_factory=list)
    issues:       Optional[list[str]] = None


class DocumentChecklistStatus(BaseModel):
    """
    Fixed set of checklist slots. The four core slots are always present;
    the conditional slots are always evaluated, with their required flag
    derived from policy and applicant data.
    """
    identity:          ChecklistItem
    income:            ChecklistItem
    bank_statements:   ChecklistItem
    proof_of_address:  ChecklistItem
    welfare_benefit:   Optional[ChecklistItem] = None
    medical_evidence:  Optional[ChecklistItem] = None
    tenancy_agreement: Optional[ChecklistItem] = None

    def items(self) -> list[tuple[str, ChecklistItem]]:
        """(slot name, item) pairs for every populated slot, in declaration order."""
        return [
            (name, item)
            for name in type(self).model_fields
            if (item := getattr(self, name)) is not None
        ]


class ReviewItem(BaseModel):
    category: str
    issues:   list[str]


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class CaseCreateRequest(BaseModel):
    client_id:      str = Field(..., min_length=1, description="External client unique id")
    applicant_data: ApplicantData


class CaseStatusUpdate(BaseModel):
    status: ApplicationStatus


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class CaseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id:               UUID
    client_id:        str
    reference_number: str
    status:           ApplicationStatus
    applicant_data:   dict[str, Any]
    checklist_status: Optional[dict[str, Any]] = None
    created_at:       Optional[datetime] = None
    updated_at:       Optional[datetime] = None


class ProcessingCounts(BaseModel):
    uploaded:   int = 0
    processing: int = Field(0, description="classifying + extracting")
    completed:  int = 0
    errors:     int = Field(0, description="error + validation_failed")


class SummaryBlock(BaseModel):
    total_documents:         int
    completeness_percentage: int
    missing_documents:       list[str]       = Field(default_factory=list)
    items_needing_review:    list[ReviewItem] = Field(default_factory=list)
    processing_status:       ProcessingCounts


class CaseDocumentSummary(BaseModel):
    """GET /cases/{id}/summary"""
    case:             CaseResponse
    documents:        list[DocumentResponse]
    checklist_status: DocumentChecklistStatus
    summary:          SummaryBlock


class ChecklistRefreshResponse(BaseModel):
    checklist_status:  DocumentChecklistStatus
    completeness:      int
    missing_documents: list[str] = Field(default_factory=list)
