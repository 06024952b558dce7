"""
Field Schema Registry
═════════════════════

Per-category, versioned extraction schemas.

Each DocumentCategory owns a closed, hand-maintained list of SchemaVersion
entries (oldest first) and a pointer to the current one. The current schema
is what the extraction stage sends to the vision model; older versions are
kept so that previously stored extractions can be validated and their
migration path/changelog reported.

The registry is read-only at runtime. The module-level tables are checked at
import time: every DocumentCategory must have a registry whose current
version exists in its version list, otherwise RuntimeError is raised.

Version strings use dotted numeric comparison:
    compare_versions("1.2.0", "1.10.0") == -1
    compare_versions("1.1",   "1.1.0")  ==  0
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

from careify.schemas.documents import DocumentCategory

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA_VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SchemaVersion:
    """
    version         : dotted version string, e.g. "2.0.0"
    created_at      : ISO date the version was introduced
    description     : one-line summary
    schema          : JSON-schema object sent to the model (properties + required)
    required_fields : fields that count towards the completeness score
    changelog       : human-readable list of changes from the previous version
    """
    version:         str
    created_at:      str
    description:     str
    schema:          Mapping[str, Any]
    required_fields: tuple[str, ...]
    changelog:       tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data = {
            "version":         self.version,
            "created_at":      self.created_at,
            "description":     self.description,
            "schema":          self.schema,
            "required_fields": list(self.required_fields),
        }
        if self.changelog:
            data["changelog"] = list(self.changelog)
        return data


@dataclass(frozen=True)
class SchemaRegistry:
    current_version: str
    versions:        tuple[SchemaVersion, ...] = field(default_factory=tuple)

    def find(self, version: str) -> Optional[SchemaVersion]:
        return next((v for v in self.versions if v.version == version), None)

    def index_of(self, version: str) -> int:
        for idx, v in enumerate(self.versions):
            if v.version == version:
                return idx
        return -1


# ---------------------------------------------------------------------------
# Schema building helpers
# ---------------------------------------------------------------------------

def _string(description: str | None = None, enum: list[str] | None = None) -> dict[str, Any]:
    prop: dict[str, Any] = {"type": "string"}
    if enum:
        prop["enum"] = enum
    if description:
        prop["description"] = description
    return prop


def _number(description: str | None = None) -> dict[str, Any]:
    prop: dict[str, Any] = {"type": "number"}
    if description:
        prop["description"] = description
    return prop


def _boolean(description: str | None = None) -> dict[str, Any]:
    prop: dict[str, Any] = {"type": "boolean"}
    if description:
        prop["description"] = description
    return prop


def _string_list(description: str | None = None) -> dict[str, Any]:
    prop: dict[str, Any] = {"type": "array", "items": {"type": "string"}}
    if description:
        prop["description"] = description
    return prop


def _object(properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required is not None:
        schema["required"] = required
    return schema


# ---------------------------------------------------------------------------
# Registry tables
# ---------------------------------------------------------------------------

_IDENTITY = SchemaRegistry(
    current_version="2.0.0",
    versions=(
        SchemaVersion(
            version="1.0.0",
            created_at="2024-01-01",
            description="Initial identity document schema",
            schema=_object({
                "fullName":       _string(),
                "dateOfBirth":    _string(),
                "documentNumber": _string(),
            }),
            required_fields=("fullName", "dateOfBirth"),
        ),
        SchemaVersion(
            version="2.0.0",
            created_at="2024-06-01",
            description="Enhanced identity schema with document subtypes",
            changelog=(
                "Added documentSubtype field",
                "Added expiryDate as required field",
                "Added nationality, issueDate, issuingAuthority fields",
                "Added gender and placeOfBirth fields",
            ),
            schema=_object(
                {
                    "documentSubtype": _string(
                        "Type of identity document",
                        enum=["passport", "driving_licence", "national_id", "birth_certificate", "other"],
                    ),
                    "fullName":         _string("Full name as shown on document"),
                    "dateOfBirth":      _string("Date of birth in YYYY-MM-DD format"),
                    "documentNumber":   _string("Document number/ID"),
                    "expiryDate":       _string("Expiry date in YYYY-MM-DD format"),
                    "nationality":      _string("Nationality if shown"),
                    "issueDate":        _string("Issue date if shown"),
                    "issuingAuthority": _string("Issuing authority/country"),
                    "gender":           _string("Gender if shown"),
                    "placeOfBirth":     _string("Place of birth if shown"),
                },
                required=["documentSubtype", "fullName", "dateOfBirth", "documentNumber"],
            ),
            required_fields=("fullName", "dateOfBirth", "documentNumber", "expiryDate"),
        ),
    ),
)

_INCOME = SchemaRegistry(
    current_version="2.0.0",
    versions=(
        SchemaVersion(
            version="1.0.0",
            created_at="2024-01-01",
            description="Initial income document schema",
            schema=_object({
                "employerName": _string(),
                "grossPay":     _number(),
                "netPay":       _number(),
            }),
            required_fields=("employerName", "grossPay", "netPay"),
        ),
        SchemaVersion(
            version="2.0.0",
            created_at="2024-06-01",
            description="Enhanced income schema with tax details",
            changelog=(
                "Added documentSubtype for income source classification",
                "Added employeeName, employeeAddress fields",
                "Added niNumber, payPeriod, payDate fields",
                "Added tax deduction fields: taxDeducted, niContributions, pensionContributions",
                "Added taxCode field",
            ),
            schema=_object(
                {
                    "documentSubtype": _string(
                        enum=["payslip", "p60", "employment_letter", "self_employment", "other"],
                    ),
                    "employerName":         _string("Name of employer"),
                    "employeeName":         _string("Name of employee"),
                    "employeeAddress":      _string("Employee address if shown"),
                    "niNumber":             _string("National Insurance number"),
                    "payPeriod":            _string('Pay period (e.g., "Monthly", "01/01/2024 - 31/01/2024")'),
                    "payDate":              _string("Payment date in YYYY-MM-DD format"),
                    "grossPay":             _number("Gross pay amount in GBP"),
                    "netPay":               _number("Net pay amount in GBP"),
                    "taxDeducted":          _number("Tax deducted in GBP"),
                    "niContributions":      _number("NI contributions in GBP"),
                    "pensionContributions": _number("Pension contributions if shown"),
                    "taxCode":              _string("Tax code if shown"),
                },
                required=["documentSubtype", "employerName", "employeeName", "grossPay", "netPay"],
            ),
            required_fields=("employerName", "employeeName", "grossPay", "netPay", "payDate"),
        ),
    ),
)

_BANK_STATEMENT = SchemaRegistry(
    current_version="1.1.0",
    versions=(
        SchemaVersion(
            version="1.0.0",
            created_at="2024-01-01",
            description="Initial bank statement schema",
            schema=_object({
                "bankName":             _string(),
                "accountHolder":        _string(),
                "statementPeriodStart": _string(),
                "statementPeriodEnd":   _string(),
                "closingBalance":       _number(),
            }),
            required_fields=("bankName", "accountHolder", "statementPeriodStart", "closingBalance"),
        ),
        SchemaVersion(
            version="1.1.0",
            created_at="2024-06-01",
            description="Added account details and transaction summary",
            changelog=(
                "Added accountNumber and sortCode fields",
                "Added openingBalance field",
                "Added totalCredits and totalDebits fields",
                "Added accountType field",
            ),
            schema=_object(
                {
                    "bankName":             _string("Name of bank"),
                    "accountHolder":        _string("Account holder name"),
                    "accountNumber":        _string("Account number (may be partially masked)"),
                    "sortCode":             _string("Sort code"),
                    "statementPeriodStart": _string("Statement start date YYYY-MM-DD"),
                    "statementPeriodEnd":   _string("Statement end date YYYY-MM-DD"),
                    "openingBalance":       _number("Opening balance in GBP"),
                    "closingBalance":       _number("Closing balance in GBP"),
                    "totalCredits":         _number("Total money in"),
                    "totalDebits":          _number("Total money out"),
                    "accountType":          _string("Type of account if shown"),
                },
                required=["bankName", "accountHolder", "statementPeriodStart", "statementPeriodEnd"],
            ),
            required_fields=("bankName", "accountHolder", "statementPeriodStart", "closingBalance"),
        ),
    ),
)

_WELFARE_BENEFIT = SchemaRegistry(
    current_version="1.1.0",
    versions=(
        SchemaVersion(
            version="1.0.0",
            created_at="2024-01-01",
            description="Initial welfare benefit schema",
            schema=_object({
                "benefitType":   _string(),
                "recipientName": _string(),
                "awardAmount":   _number(),
                "letterDate":    _string(),
            }),
            required_fields=("benefitType", "recipientName", "awardAmount", "letterDate"),
        ),
        SchemaVersion(
            version="1.1.0",
            created_at="2024-06-01",
            description="Enhanced welfare schema with UC housing element",
            changelog=(
                "Added recipientAddress and niNumber fields",
                "Added claimReference field",
                "Added paymentFrequency and award period fields",
                "Added issuingBody field",
                "Added housingElement for Universal Credit claims",
            ),
            schema=_object(
                {
                    "benefitType":      _string("Type of benefit (Universal Credit, Housing Benefit, PIP, ESA, etc.)"),
                    "recipientName":    _string("Name of benefit recipient"),
                    "recipientAddress": _string("Address of recipient"),
                    "niNumber":         _string("National Insurance number"),
                    "claimReference":   _string("Claim reference number"),
                    "awardAmount":      _number("Award amount in GBP"),
                    "paymentFrequency": _string("How often payment is made"),
                    "awardPeriodStart": _string("Award start date YYYY-MM-DD"),
                    "awardPeriodEnd":   _string("Award end date if applicable"),
                    "letterDate":       _string("Date of letter YYYY-MM-DD"),
                    "issuingBody":      _string("DWP, Council, etc."),
                    "housingElement":   _number("Housing element amount if UC"),
                },
                required=["benefitType", "recipientName", "awardAmount", "letterDate"],
            ),
            required_fields=("benefitType", "recipientName", "awardAmount", "letterDate", "issuingBody"),
        ),
    ),
)

_MEDICAL = SchemaRegistry(
    current_version="1.0.0",
    versions=(
        SchemaVersion(
            version="1.0.0",
            created_at="2024-01-01",
            description="Medical document schema",
            schema=_object(
                {
                    "documentSubtype": _string(
                        enum=["gp_letter", "hospital_letter", "assessment", "prescription", "other"],
                    ),
                    "issuerName":          _string("Name of GP/Hospital/Clinic"),
                    "issuerAddress":       _string("Address of issuer"),
                    "patientName":         _string("Patient name"),
                    "patientDOB":          _string("Patient date of birth if shown"),
                    "nhsNumber":           _string("NHS number if shown"),
                    "letterDate":          _string("Date of letter YYYY-MM-DD"),
                    "medicalConditions":   _string_list("List of medical conditions mentioned"),
                    "supportRequirements": _string("Support needs mentioned"),
                    "mobilityIssues":      _boolean("Mobility issues mentioned"),
                    "groundFloorRequired": _boolean("Ground floor accommodation recommended"),
                },
                required=["issuerName", "patientName", "letterDate"],
            ),
            required_fields=("issuerName", "patientName", "letterDate"),
        ),
    ),
)

_TENANCY = SchemaRegistry(
    current_version="1.0.0",
    versions=(
        SchemaVersion(
            version="1.0.0",
            created_at="2024-01-01",
            description="Tenancy document schema",
            schema=_object(
                {
                    "documentSubtype": _string(
                        enum=["tenancy_agreement", "landlord_reference", "eviction_notice", "rent_statement", "other"],
                    ),
                    "landlordName":     _string("Name of landlord/agency"),
                    "landlordAddress":  _string("Landlord address"),
                    "tenantName":       _string("Tenant name"),
                    "propertyAddress":  _string("Address of rented property"),
                    "tenancyStartDate": _string("Tenancy start date YYYY-MM-DD"),
                    "tenancyEndDate":   _string("Tenancy end date if applicable"),
                    "rentAmount":       _number("Rent amount in GBP"),
                    "rentFrequency":    _string("Weekly, Monthly, etc."),
                    "depositAmount":    _number("Deposit amount if shown"),
                    "tenancyType":      _string("AST, Periodic, etc."),
                },
                required=["tenantName", "propertyAddress"],
            ),
            required_fields=("tenantName", "propertyAddress", "landlordName"),
        ),
    ),
)

_PROOF_OF_ADDRESS = SchemaRegistry(
    current_version="1.0.0",
    versions=(
        SchemaVersion(
            version="1.0.0",
            created_at="2024-01-01",
            description="Proof of address schema",
            schema=_object(
                {
                    "documentSubtype": _string(
                        enum=["utility_bill", "council_tax", "official_letter", "bank_letter", "other"],
                    ),
                    "recipientName": _string("Name on document"),
                    "address":       _string("Full address shown"),
                    "documentDate":  _string("Date of document YYYY-MM-DD"),
                    "issuer":        _string("Who issued the document"),
                    "accountNumber": _string("Account/reference number if applicable"),
                },
                required=["recipientName", "address", "documentDate"],
            ),
            required_fields=("recipientName", "address", "documentDate", "issuer"),
        ),
    ),
)

_OTHER = SchemaRegistry(
    current_version="1.0.0",
    versions=(
        SchemaVersion(
            version="1.0.0",
            created_at="2024-01-01",
            description="Generic other document schema",
            schema=_object(
                {
                    "documentDescription": _string("Brief description of document"),
                    "relevantText":        _string("Any relevant text extracted"),
                    "dateOnDocument":      _string("Any date shown YYYY-MM-DD"),
                    "namesOnDocument":     _string_list("Names appearing on document"),
                },
                required=["documentDescription"],
            ),
            required_fields=("documentDescription",),
        ),
    ),
)

_UNKNOWN = SchemaRegistry(
    current_version="1.0.0",
    versions=(
        SchemaVersion(
            version="1.0.0",
            created_at="2024-01-01",
            description="Unknown document schema",
            schema=_object(
                {
                    "possibleType":  _string("Best guess at document type"),
                    "visibleText":   _string("Any readable text"),
                    "qualityIssues": _string_list("Issues preventing identification"),
                },
                required=["qualityIssues"],
            ),
            required_fields=("qualityIssues",),
        ),
    ),
)

SCHEMA_REGISTRIES: Mapping[DocumentCategory, SchemaRegistry] = MappingProxyType({
    DocumentCategory.IDENTITY:         _IDENTITY,
    DocumentCategory.INCOME:           _INCOME,
    DocumentCategory.BANK_STATEMENT:   _BANK_STATEMENT,
    DocumentCategory.WELFARE_BENEFIT:  _WELFARE_BENEFIT,
    DocumentCategory.MEDICAL:          _MEDICAL,
    DocumentCategory.TENANCY:          _TENANCY,
    DocumentCategory.PROOF_OF_ADDRESS: _PROOF_OF_ADDRESS,
    DocumentCategory.OTHER:            _OTHER,
    DocumentCategory.UNKNOWN:          _UNKNOWN,
})


def _validate_registries(registries: Mapping[DocumentCategory, SchemaRegistry]) -> None:
    missing = [c.value for c in DocumentCategory if c not in registries]
    if missing:
        raise RuntimeError(f"Schema registry has no entry for categories: {missing}")
    for category, registry in registries.items():
        if registry.find(registry.current_version) is None:
            raise RuntimeError(
                f"Schema registry for {category.value} points at unknown "
                f"current version {registry.current_version}"
            )


_validate_registries(SCHEMA_REGISTRIES)


# ---------------------------------------------------------------------------
# Registry service
# ---------------------------------------------------------------------------

def _segments(version: str) -> list[int]:
    # non-numeric segments count as 0
    return [int(p) if p.isdigit() else 0 for p in version.split(".")]


def compare_versions(version1: str, version2: str) -> int:
    """Dotted numeric comparison; missing segments count as 0. Returns -1, 0 or 1."""
    parts1 = _segments(version1)
    parts2 = _segments(version2)

    for i in range(max(len(parts1), len(parts2))):
        a = parts1[i] if i < len(parts1) else 0
        b = parts2[i] if i < len(parts2) else 0
        if a > b:
            return 1
        if a < b:
            return -1
    return 0


class FieldSchemaRegistry:
    """
    Read-only view over the per-category schema tables.

    Category arguments accept a DocumentCategory or its string value; an
    unrecognised category behaves like a category with no registry (None /
    empty results) rather than raising.
    """

    def __init__(self, registries: Mapping[DocumentCategory, SchemaRegistry] = SCHEMA_REGISTRIES) -> None:
        _validate_registries(registries)
        self._registries = registries

    def _lookup(self, category: DocumentCategory | str) -> Optional[SchemaRegistry]:
        try:
            return self._registries.get(DocumentCategory(category))
        except ValueError:
            return None

    # ── Lookups ──────────────────────────────────────────────────────────

    def get_registry(self, category: DocumentCategory | str) -> Optional[SchemaRegistry]:
        return self._lookup(category)

    def get_current_version(self, category: DocumentCategory | str) -> str:
        registry = self._lookup(category)
        return registry.current_version if registry else DEFAULT_SCHEMA_VERSION

    def get_current_schema(self, category: DocumentCategory | str) -> Optional[SchemaVersion]:
        registry = self._lookup(category)
        if registry is None:
            return None
        return registry.find(registry.current_version)

    def get_schema_version(self, category: DocumentCategory | str, version: str) -> Optional[SchemaVersion]:
        registry = self._lookup(category)
        if registry is None:
            return None
        return registry.find(version)

    def get_all_versions(self, category: DocumentCategory | str) -> list[SchemaVersion]:
        registry = self._lookup(category)
        return list(registry.versions) if registry else []

    def get_categories(self) -> list[DocumentCategory]:
        return list(self._registries.keys())

    # ── Versioning ───────────────────────────────────────────────────────

    def compare_versions(self, version1: str, version2: str) -> int:
        return compare_versions(version1, version2)

    def needs_migration(self, category: DocumentCategory | str, extracted_version: str) -> bool:
        return compare_versions(extracted_version, self.get_current_version(category)) < 0

    def get_migration_path(
        self,
        category: DocumentCategory | str,
        from_version: str,
        to_version: str,
    ) -> list[SchemaVersion]:
        """Versions strictly after from_version up to and including to_version."""
        registry = self._lookup(category)
        if registry is None:
            return []

        from_idx = registry.index_of(from_version)
        to_idx   = registry.index_of(to_version)
        if from_idx == -1 or to_idx == -1 or from_idx >= to_idx:
            return []

        return list(registry.versions[from_idx + 1 : to_idx + 1])

    def get_changelog(
        self,
        category: DocumentCategory | str,
        from_version: str,
        to_version: str,
    ) -> list[str]:
        lines: list[str] = []
        for version in self.get_migration_path(category, from_version, to_version):
            if version.changelog:
                lines.append(f"v{version.version}: {version.description}")
                lines.extend(f"  - {entry}" for entry in version.changelog)
        return lines

    # ── Validation ───────────────────────────────────────────────────────

    def validate_against_schema(
        self,
        category: DocumentCategory | str,
        version: str,
        data: Mapping[str, Any],
    ) -> tuple[bool, list[str]]:
        """
        Check the JSON-schema `required` list of one version against data.
        Only presence is checked (key exists and value is not None).
        """
        schema_version = self.get_schema_version(category, version)
        if schema_version is None:
            category_name = category.value if isinstance(category, DocumentCategory) else category
            return False, [f"Schema version {version} not found for {category_name}"]

        errors = [
            f"Missing required field: {name}"
            for name in schema_version.schema.get("required", [])
            if data.get(name) is None
        ]
        return not errors, errors

    # ── Export ───────────────────────────────────────────────────────────

    def export_schema_metadata(self) -> dict[str, dict[str, Any]]:
        return {
            category.value: {
                "current_version": registry.current_version,
                "versions":        [v.version for v in registry.versions],
            }
            for category, registry in self._registries.items()
        }


schema_registry = FieldSchemaRegistry()
