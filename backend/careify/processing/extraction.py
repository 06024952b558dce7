"""
Extraction Stage
════════════════

Pulls structured fields out of a classified document image and scores how
complete the result is.

Flow:
  1. Look up the category's current schema in the field schema registry.
  2. Build the extraction prompt (guidelines + response format + schema JSON).
  3. Call the vision model once (JSON mode) and parse the object.
  4. Normalise every raw value into an ExtractedField:
       None                         → value None, confidence 0
       {"value": ..., ...}          → confidence clamped, 0.5 when absent
       any other scalar / list      → confidence 0.7 (model gave none)
  5. Score completeness against the schema version's required_fields:
       present and confidence ≥ threshold  → 1 point
       present, confidence below threshold → 0.5 point + warning issue
       missing (absent / None / "")        → 0 points  + error issue
     score = round_half_up(100 × points / required), 100 when none required.
     Every field-level `issues` entry becomes an extra warning.
  6. Any failure returns success=False with a single "_general" error issue.
"""

from __future__ import annotations

import json
import logging
import re
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import Any, Mapping

from careify.core.config import settings
from careify.llm.gateway import VisionClient
from careify.processing.classification import clamp_confidence
from careify.processing.schema_registry import FieldSchemaRegistry, schema_registry
from careify.schemas.documents import (
    DocumentCategory,
    ExtractedField,
    ExtractionIssue,
    ExtractionResult,
    IssueSeverity,
)

logger = logging.getLogger(__name__)

DEFAULT_FIELD_CONFIDENCE = 0.5   # object-shaped value without a confidence
SCALAR_FIELD_CONFIDENCE  = 0.7   # bare value, model did not self-report
GENERAL_ISSUE_FIELD      = "_general"
DEFAULT_SUGGESTION       = "Please upload a clearer image of this section"


# ---------------------------------------------------------------------------
# Per-category tables
# ---------------------------------------------------------------------------

CATEGORY_DISPLAY_NAMES: Mapping[DocumentCategory, str] = MappingProxyType({
    DocumentCategory.IDENTITY:         "Identity Document",
    DocumentCategory.INCOME:           "Income/Employment Document",
    DocumentCategory.BANK_STATEMENT:   "Bank Statement",
    DocumentCategory.WELFARE_BENEFIT:  "Welfare/Benefits Letter",
    DocumentCategory.MEDICAL:          "Medical Document",
    DocumentCategory.TENANCY:          "Tenancy Document",
    DocumentCategory.PROOF_OF_ADDRESS: "Proof of Address",
    DocumentCategory.OTHER:            "Document",
    DocumentCategory.UNKNOWN:          "Unknown Document",
})

FIELD_SUGGESTIONS: Mapping[DocumentCategory, Mapping[str, str]] = MappingProxyType({
    DocumentCategory.IDENTITY: {
        "fullName":       "Check the main page of the identity document",
        "dateOfBirth":    "Usually found near the photo",
        "documentNumber": "Located at the top or bottom of the document",
        "expiryDate":     "Check the document validity section",
    },
    DocumentCategory.INCOME: {
        "employerName": "Should be at the top of the payslip",
        "grossPay":     'Look for "Gross Pay" or "Total Earnings"',
        "netPay":       'Look for "Net Pay" or "Take Home Pay"',
    },
    DocumentCategory.BANK_STATEMENT: {
        "bankName":       "Usually in the header/logo area",
        "closingBalance": "Found at the end of the statement",
    },
    DocumentCategory.WELFARE_BENEFIT: {
        "awardAmount": "Look for the payment amount section",
        "benefitType": "Usually stated at the top of the letter",
    },
    DocumentCategory.MEDICAL:          {},
    DocumentCategory.TENANCY:          {},
    DocumentCategory.PROOF_OF_ADDRESS: {},
    DocumentCategory.OTHER:            {},
    DocumentCategory.UNKNOWN:          {},
})


def _validate_tables() -> None:
    for name, table in (("display names", CATEGORY_DISPLAY_NAMES), ("suggestions", FIELD_SUGGESTIONS)):
        gaps = [c.value for c in DocumentCategory if c not in table]
        if gaps:
            raise RuntimeError(f"Extraction {name} missing categories: {gaps}")


_validate_tables()


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------

def build_extraction_prompt(category: DocumentCategory, schema: Mapping[str, Any]) -> str:
    display = CATEGORY_DISPLAY_NAMES[category]
    return f"""You are an expert document data extractor for UK social housing applications.

Extract structured data from the {display} shown in the image.

GUIDELINES:
1. Extract every visible value that matches a field in the schema
2. Write all dates as YYYY-MM-DD
3. Write monetary amounts as plain numbers (no currency symbols)
4. If a value is only partly legible, extract what you can and lower its confidence
5. If a value is absent or illegible, set it to null
6. Give every field a confidence score between 0 and 1

RESPONSE FORMAT:
Return one JSON object in which every field has this shape:
{{
  "fieldName": {{
    "value": <extracted value or null>,
    "confidence": <0.0-1.0>,
    "source": "<optional: where on the document the value was found>",
    "issues": ["<optional: problems reading this field>"]
  }}
}}

SCHEMA TO FOLLOW:
{json.dumps(schema, indent=2)}

Prefer null with an issue note over a guess."""


def build_extraction_instruction(category: DocumentCategory) -> str:
    return (
        f"Extract all relevant information from this {CATEGORY_DISPLAY_NAMES[category]} document. "
        "Be precise with dates (use YYYY-MM-DD format) and monetary values. "
        "If a field is not visible or unclear, set its value to null."
    )


# ---------------------------------------------------------------------------
# Normalisation and scoring
# ---------------------------------------------------------------------------

def format_field_name(field_name: str) -> str:
    """camelCase / snake_case → "Title words", e.g. dateOfBirth → "Date Of Birth"."""
    spaced = re.sub(r"([A-Z])", r" \1", field_name).replace("_", " ")
    if spaced:
        spaced = spaced[0].upper() + spaced[1:]
    return spaced.strip()


def field_suggestion(field_name: str, category: DocumentCategory) -> str:
    return FIELD_SUGGESTIONS[category].get(field_name, DEFAULT_SUGGESTION)


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _scalar(value: Any) -> Any:
    # lists and nested objects are stored as their JSON text
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    return json.dumps(value)


def normalize_field(raw: Any) -> ExtractedField:
    if raw is None:
        return ExtractedField(value=None, confidence=0.0)

    if isinstance(raw, Mapping) and "value" in raw:
        confidence = raw.get("confidence")
        issues = raw.get("issues")
        source = raw.get("source")
        return ExtractedField(
            value=_scalar(raw.get("value")),
            confidence=DEFAULT_FIELD_CONFIDENCE if confidence is None else clamp_confidence(confidence),
            source=str(source) if source is not None else None,
            issues=[str(i) for i in issues] if isinstance(issues, list) else None,
        )

    return ExtractedField(value=_scalar(raw), confidence=SCALAR_FIELD_CONFIDENCE)


def normalize_fields(raw_extraction: Mapping[str, Any]) -> dict[str, ExtractedField]:
    return {name: normalize_field(value) for name, value in raw_extraction.items()}


def score_completeness(
    fields:          Mapping[str, ExtractedField],
    required_fields: tuple[str, ...] | list[str],
    category:        DocumentCategory,
    threshold:       float,
) -> tuple[int, list[ExtractionIssue]]:
    """Return (completeness score 0..100, issues) for one extraction."""
    issues: list[ExtractionIssue] = []
    points = 0.0

    for name in required_fields:
        extracted = fields.get(name)
        if extracted is None or extracted.value is None or extracted.value == "":
            issues.append(ExtractionIssue(
                field=name,
                severity=IssueSeverity.ERROR,
                message=f'Required field "{format_field_name(name)}" is missing',
                suggestion=field_suggestion(name, category),
            ))
        elif extracted.confidence < threshold:
            issues.append(ExtractionIssue(
                field=name,
                severity=IssueSeverity.WARNING,
                message=(
                    f'Field "{format_field_name(name)}" has low confidence '
                    f"({round_half_up(extracted.confidence * 100)}%)"
                ),
                suggestion="Please verify this value manually",
            ))
            points += 0.5
        else:
            points += 1.0

    for name, extracted in fields.items():
        for note in extracted.issues or []:
            issues.append(ExtractionIssue(field=name, severity=IssueSeverity.WARNING, message=note))

    score = round_half_up(100 * points / len(required_fields)) if required_fields else 100
    return score, issues


# ---------------------------------------------------------------------------
# Stage
# ---------------------------------------------------------------------------

class ExtractionStage:
    """
    Category-aware field extractor around an injected vision client.

    Usage:
        stage  = ExtractionStage(client)
        result = await stage.extract(image_bytes, "image/png", DocumentCategory.INCOME)
    """

    def __init__(
        self,
        client:     VisionClient,
        registry:   FieldSchemaRegistry | None = None,
        threshold:  float | None = None,
        max_tokens: int | None   = None,
    ) -> None:
        self._client     = client
        self._registry   = registry or schema_registry
        self._threshold  = settings.extraction_threshold if threshold is None else threshold
        self._max_tokens = max_tokens or settings.llm_max_tokens

    async def extract(
        self,
        image:     bytes,
        mime_type: str,
        category:  DocumentCategory,
    ) -> ExtractionResult:
        """Extract fields for one category. Never raises."""
        category = DocumentCategory(category)
        schema_version = self._registry.get_current_schema(category)

        try:
            if schema_version is None:
                raise ValueError(f"No extraction schema registered for {category.value}")

            content = await self._client.call(
                build_extraction_prompt(category, schema_version.schema),
                image,
                mime_type,
                instruction=build_extraction_instruction(category),
                max_tokens=self._max_tokens,
            )
            if not content:
                raise ValueError("No response from extraction model")

            raw = json.loads(content)
            if not isinstance(raw, dict):
                raise ValueError("Extraction response is not a JSON object")

        except Exception as exc:
            logger.warning(
                "Extraction | failed | category=%s mime_type=%s error=%s",
                category.value, mime_type, exc,
            )
            return ExtractionResult(
                success=False,
                document_type=category,
                fields={},
                completeness_score=0,
                issues=[ExtractionIssue(
                    field=GENERAL_ISSUE_FIELD,
                    severity=IssueSeverity.ERROR,
                    message=f"Extraction failed: {exc}",
                )],
            )

        fields = normalize_fields(raw)
        score, issues = score_completeness(
            fields, schema_version.required_fields, category, self._threshold,
        )

        logger.info(
            "Extraction | category=%s schema=%s fields=%d completeness=%d issues=%d",
            category.value, schema_version.version, len(fields), score, len(issues),
        )
        return ExtractionResult(
            success=True,
            document_type=category,
            fields=fields,
            completeness_score=score,
            issues=issues,
        )
