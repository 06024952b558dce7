"""
Checklist Engine
════════════════

Derives a case's document checklist from its current documents.

The engine is a pure function of (documents, applicant snapshot, policy,
today): it makes no external calls and keeps no state between evaluations.

  documents ──► group by category ──► one evaluator per checklist slot
                                           │
                                           ▼
                               DocumentChecklistStatus
                                           │
          ┌────────────────────────────────┼──────────────────────────┐
          ▼                                ▼                          ▼
  overall completeness %          missing document labels     items needing review
          │
          ▼
  next case status (documents_pending / documents_review / eligibility_check)

Slot ↔ category mapping:
    identity           ← identity
    income             ← income
    bank_statements    ← bank_statement
    proof_of_address   ← proof_of_address
    welfare_benefit    ← welfare_benefit
    medical_evidence   ← medical
    tenancy_agreement  ← tenancy

Only the identity evaluator looks at processing failures (error /
validation_failed); the other slots judge documents by completeness score
and extracted dates alone.
"""

from __future__ import annotations

import calendar
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence

from careify.processing.extraction import round_half_up
from careify.schemas.cases import (
    ApplicantData,
    ApplicationStatus,
    ChecklistItem,
    ChecklistItemStatus,
    DocumentChecklistStatus,
    ReviewItem,
)
from careify.schemas.documents import DocumentCategory, DocumentProcessingStatus

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Policy — explicit configuration with documented defaults
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class IdentityPolicy:
    required:         bool  = True
    min_documents:    int   = 1
    validity_check:   bool  = True    # flag documents whose expiryDate has passed
    min_confidence:   float = 0.7
    min_completeness: int   = 70


@dataclass(frozen=True)
class IncomePolicy:
    required:            bool = True
    min_documents:       int  = 1
    min_months_coverage: int  = 3     # document count stands in for months covered
    min_completeness:    int  = 70


@dataclass(frozen=True)
class BankStatementsPolicy:
    required:            bool = True
    min_months_coverage: int  = 3
    min_completeness:    int  = 60


@dataclass(frozen=True)
class ProofOfAddressPolicy:
    required:       bool = True
    max_age_months: int  = 3


@dataclass(frozen=True)
class ConditionalPolicy:
    required:         bool          = False
    conditional:      Optional[str] = None
    min_completeness: int           = 70


@dataclass(frozen=True)
class ChecklistPolicy:
    """Requirements for every checklist slot. Replace a slot with dataclasses.replace()."""
    identity:          IdentityPolicy       = field(default_factory=IdentityPolicy)
    income:            IncomePolicy         = field(default_factory=IncomePolicy)
    bank_statements:   BankStatementsPolicy = field(default_factory=BankStatementsPolicy)
    proof_of_address:  ProofOfAddressPolicy = field(default_factory=ProofOfAddressPolicy)
    welfare_benefit:   ConditionalPolicy    = field(
        default_factory=lambda: ConditionalPolicy(conditional="If receiving benefits")
    )
    medical_evidence:  ConditionalPolicy    = field(
        default_factory=lambda: ConditionalPolicy(conditional="If medical/disability needs")
    )
    tenancy_agreement: ConditionalPolicy    = field(
        default_factory=lambda: ConditionalPolicy(conditional="If currently renting", min_completeness=60)
    )


DEFAULT_POLICY = ChecklistPolicy()

MISSING_DOCUMENT_LABELS: Mapping[str, str] = MappingProxyType({
    "identity":          "Identity document (passport or driving licence)",
    "income":            "Proof of income (payslips or employment letter)",
    "bank_statements":   "Bank statements (last 3 months)",
    "proof_of_address":  "Proof of current address",
    "welfare_benefit":   "Benefits letter (if applicable)",
    "medical_evidence":  "Medical evidence (if applicable)",
    "tenancy_agreement": "Current tenancy agreement (if renting)",
})

_STATUS_CREDIT: Mapping[ChecklistItemStatus, float] = MappingProxyType({
    ChecklistItemStatus.VERIFIED: 1.0,
    ChecklistItemStatus.PENDING:  0.5,
    ChecklistItemStatus.ISSUES:   0.25,
    ChecklistItemStatus.MISSING:  0.0,
})

_FAILED_STATUSES = frozenset({
    DocumentProcessingStatus.ERROR.value,
    DocumentProcessingStatus.VALIDATION_FAILED.value,
})

if set(MISSING_DOCUMENT_LABELS) != set(DocumentChecklistStatus.model_fields):
    raise RuntimeError("Missing-document labels do not cover every checklist slot")


# ---------------------------------------------------------------------------
# Document view
# ---------------------------------------------------------------------------

class ChecklistDocument(Protocol):
    """The document attributes the engine reads; ORM Document rows satisfy it."""
    id:                        Any
    original_file_name:        str
    category:                  str
    processing_status:         str
    classification_confidence: float
    completeness_score:        int
    extracted_data:            Optional[Mapping[str, Any]]


def _field_value(doc: ChecklistDocument, name: str) -> Any:
    data = doc.extracted_data or {}
    extracted = (data.get("fields") or {}).get(name)
    if isinstance(extracted, Mapping):
        return extracted.get("value")
    return getattr(extracted, "value", None)


def _parse_date(value: Any) -> Optional[date]:
    """ISO date (or datetime) string → date; anything else → None."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def subtract_months(day: date, months: int) -> date:
    """Calendar month arithmetic, clamping the day (31 Mar - 1 month → 28/29 Feb)."""
    total = day.year * 12 + (day.month - 1) - months
    year, month_index = divmod(total, 12)
    month = month_index + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def _requires_support(applicant: ApplicantData | Mapping[str, Any] | None) -> bool:
    if applicant is None:
        return False
    if isinstance(applicant, ApplicantData):
        return any(m.requires_support for m in applicant.household_members)
    members = applicant.get("household_members") or []
    return any(isinstance(m, Mapping) and m.get("requires_support") for m in members)


def _ids(documents: Sequence[ChecklistDocument]) -> list[str]:
    return [str(d.id) for d in documents]


def _scored_item(required: bool, documents: Sequence[ChecklistDocument], issues: list[str]) -> ChecklistItem:
    return ChecklistItem(
        required=required,
        status=ChecklistItemStatus.PENDING if issues else ChecklistItemStatus.VERIFIED,
        document_ids=_ids(documents),
        issues=issues or None,
    )


def _missing_item(required: bool, issues: Optional[list[str]]) -> ChecklistItem:
    return ChecklistItem(
        required=required,
        status=ChecklistItemStatus.MISSING,
        document_ids=[],
        issues=issues,
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class ChecklistEngine:
    """
    Pure checklist evaluator.

    Usage:
        engine    = ChecklistEngine()                 # DEFAULT_POLICY
        checklist = engine.evaluate(documents, applicant, today=date.today())
        percent   = engine.calculate_overall_completeness(checklist)
    """

    def __init__(self, policy: ChecklistPolicy = DEFAULT_POLICY) -> None:
        self.policy = policy

    # ── Evaluation ───────────────────────────────────────────────────────

    def evaluate(
        self,
        documents: Iterable[ChecklistDocument],
        applicant: ApplicantData | Mapping[str, Any] | None = None,
        today:     Optional[date] = None,
    ) -> DocumentChecklistStatus:
        today = today or date.today()

        groups: dict[DocumentCategory, list[ChecklistDocument]] = defaultdict(list)
        for doc in documents:
            try:
                groups[DocumentCategory(doc.category)].append(doc)
            except ValueError:
                logger.warning("Checklist | skipping document with unknown category | id=%s category=%s",
                               doc.id, doc.category)

        return DocumentChecklistStatus(
            identity=self._identity(groups[DocumentCategory.IDENTITY], today),
            income=self._income(groups[DocumentCategory.INCOME]),
            bank_statements=self._bank_statements(groups[DocumentCategory.BANK_STATEMENT]),
            proof_of_address=self._proof_of_address(groups[DocumentCategory.PROOF_OF_ADDRESS], today),
            welfare_benefit=self._welfare_benefit(groups[DocumentCategory.WELFARE_BENEFIT]),
            medical_evidence=self._medical_evidence(groups[DocumentCategory.MEDICAL], applicant),
            tenancy_agreement=self._tenancy(groups[DocumentCategory.TENANCY]),
        )

    def _identity(self, documents: list[ChecklistDocument], today: date) -> ChecklistItem:
        policy = self.policy.identity
        if not documents:
            return _missing_item(policy.required, ["No identity document uploaded"])

        issues: list[str] = []
        valid = 0
        for doc in documents:
            name = doc.original_file_name

            if getattr(doc.processing_status, "value", doc.processing_status) in _FAILED_STATUSES:
                issues.append(f"{name}: Processing failed")
                continue

            if doc.classification_confidence < policy.min_confidence:
                issues.append(f"{name}: Low classification confidence")

            if policy.validity_check:
                expiry = _parse_date(_field_value(doc, "expiryDate"))
                if expiry is not None and expiry < today:
                    issues.append(f"{name}: Document has expired")
                    continue

            if doc.completeness_score < policy.min_completeness:
                issues.append(f"{name}: Incomplete data extraction ({doc.completeness_score}%)")

            valid += 1

        if valid < policy.min_documents:
            return ChecklistItem(
                required=policy.required,
                status=ChecklistItemStatus.ISSUES,
                document_ids=_ids(documents),
                issues=issues or ["Valid identity document required"],
            )
        return _scored_item(policy.required, documents, issues)

    def _income(self, documents: list[ChecklistDocument]) -> ChecklistItem:
        policy = self.policy.income
        if not documents:
            return _missing_item(policy.required, ["No income documents uploaded"])

        issues: list[str] = []
        if len(documents) < policy.min_documents:
            issues.append(f"Need at least {policy.min_documents} income document(s)")

        issues.extend(
            f"{doc.original_file_name}: Missing key income information"
            for doc in documents
            if doc.completeness_score < policy.min_completeness
        )

        if policy.min_months_coverage and len(documents) < policy.min_months_coverage:
            issues.append(
                f"Recommend {policy.min_months_coverage} months of payslips for income verification"
            )
        return _scored_item(policy.required, documents, issues)

    def _bank_statements(self, documents: list[ChecklistDocument]) -> ChecklistItem:
        policy = self.policy.bank_statements
        if not documents:
            return _missing_item(
                policy.required,
                [f"Bank statements for the last {policy.min_months_coverage} months required"],
            )

        issues: list[str] = []
        if len(documents) < policy.min_months_coverage:
            issues.append(
                f"{policy.min_months_coverage} months of statements recommended, "
                f"only {len(documents)} provided"
            )
        issues.extend(
            f"{doc.original_file_name}: Key statement details missing"
            for doc in documents
            if doc.completeness_score < policy.min_completeness
        )
        return _scored_item(policy.required, documents, issues)

    def _proof_of_address(self, documents: list[ChecklistDocument], today: date) -> ChecklistItem:
        policy = self.policy.proof_of_address
        if not documents:
            return _missing_item(
                policy.required,
                ["Proof of current address required (utility bill, council tax, etc.)"],
            )

        oldest_allowed = subtract_months(today, policy.max_age_months)
        issues: list[str] = []
        for doc in documents:
            issued = _parse_date(_field_value(doc, "documentDate"))
            if issued is not None and issued < oldest_allowed:
                issues.append(f"{doc.original_file_name}: Document is older than {policy.max_age_months} months")
        return _scored_item(policy.required, documents, issues)

    def _welfare_benefit(self, documents: list[ChecklistDocument]) -> ChecklistItem:
        policy = self.policy.welfare_benefit
        if not documents:
            return _missing_item(
                policy.required,
                ["Benefits documentation required"] if policy.required else None,
            )

        issues = [
            f"{doc.original_file_name}: Missing benefit details"
            for doc in documents
            if doc.completeness_score < policy.min_completeness
        ]
        return _scored_item(policy.required, documents, issues)

    def _medical_evidence(
        self,
        documents: list[ChecklistDocument],
        applicant: ApplicantData | Mapping[str, Any] | None,
    ) -> ChecklistItem:
        policy = self.policy.medical_evidence
        required = policy.required or _requires_support(applicant)
        if not documents:
            return _missing_item(
                required,
                ["Medical evidence required for support needs assessment"] if required else None,
            )

        issues = [
            f"{doc.original_file_name}: Missing medical details"
            for doc in documents
            if doc.completeness_score < policy.min_completeness
        ]
        return _scored_item(required, documents, issues)

    def _tenancy(self, documents: list[ChecklistDocument]) -> ChecklistItem:
        policy = self.policy.tenancy_agreement
        if not documents:
            return _missing_item(
                policy.required,
                ["Current tenancy agreement required"] if policy.required else None,
            )

        issues = [
            f"{doc.original_file_name}: Missing tenancy details"
            for doc in documents
            if doc.completeness_score < policy.min_completeness
        ]
        return _scored_item(policy.required, documents, issues)

    # ── Derived views ────────────────────────────────────────────────────

    @staticmethod
    def calculate_overall_completeness(checklist: DocumentChecklistStatus) -> int:
        """
        Weighted completeness 0..100.
        Required items weigh 2, optional items 1; optional items that are
        missing are left out of both sides of the ratio.
        """
        total    = 0.0
        achieved = 0.0
        for _, item in checklist.items():
            if not item.required and item.status == ChecklistItemStatus.MISSING:
                continue
            weight = 2 if item.required else 1
            total    += weight
            achieved += weight * _STATUS_CREDIT[item.status]

        return round_half_up(100 * achieved / total) if total else 0

    @staticmethod
    def get_missing_documents(checklist: DocumentChecklistStatus) -> list[str]:
        return [
            MISSING_DOCUMENT_LABELS[name]
            for name, item in checklist.items()
            if item.required and item.status == ChecklistItemStatus.MISSING
        ]

    @staticmethod
    def get_items_needing_review(checklist: DocumentChecklistStatus) -> list[ReviewItem]:
        return [
            ReviewItem(category=name, issues=list(item.issues))
            for name, item in checklist.items()
            if item.status in (ChecklistItemStatus.ISSUES, ChecklistItemStatus.PENDING) and item.issues
        ]

    @classmethod
    def derive_case_status(cls, checklist: DocumentChecklistStatus) -> ApplicationStatus:
        """Any required slot missing → documents_pending; < 100% → review; else eligibility."""
        if any(item.required and item.status == ChecklistItemStatus.MISSING for _, item in checklist.items()):
            return ApplicationStatus.DOCUMENTS_PENDING
        if cls.calculate_overall_completeness(checklist) < 100:
            return ApplicationStatus.DOCUMENTS_REVIEW
        return ApplicationStatus.ELIGIBILITY_CHECK
