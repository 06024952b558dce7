"""
Classification Stage
════════════════════

Assigns one DocumentCategory to a document image using the vision model.

Single image:
  1. Send CLASSIFICATION_PROMPT + the image to the model (JSON mode).
  2. Parse the JSON object and normalise it:
       - unknown category strings      → "unknown"
       - confidence                    → clamped to [0, 1]
       - missing reasoning             → "No reasoning provided"
       - alternativeCategories         → filtered to the closed enum, clamped
  3. Any failure (transport, timeout, empty or malformed response) returns
     category "unknown" with confidence 0. Nothing is raised past classify().

Multi-page:
  ┌─────────────────────────────────────────────────────────────────┐
  │  no pages                      → unknown / 0                    │
  │  page 1 confidence ≥ 0.85      → page 1 result as-is            │
  │  single page                   → page 1 result as-is            │
  │  otherwise classify pages 2..3 and aggregate:                   │
  │    score[c]   = Σ confidence of pages classified as c           │
  │    winner     = max score, ties → earliest enum member          │
  │    confidence = mean confidence of the pages that agree         │
  │    subtype    = from the most confident agreeing page           │
  │    alternates = other categories with score > 0.3, top 2        │
  └─────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any, Mapping, Sequence

from careify.core.config import settings
from careify.llm.gateway import VisionClient
from careify.schemas.documents import (
    AlternativeCategory,
    ClassificationResult,
    DocumentCategory,
)

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE_SHORTCUT = 0.85   # first page at or above this skips the other pages
MAX_PAGES_CLASSIFIED     = 3
ALTERNATIVE_MIN_SCORE    = 0.3    # strict: a summed score of exactly 0.3 is excluded
MAX_ALTERNATIVES         = 2

CLASSIFICATION_INSTRUCTION = "Please classify this document for a UK social housing application."

CLASSIFICATION_PROMPT = """You classify supporting documents submitted with UK social housing applications.

Look at the document image and assign it to exactly ONE of these categories:

1. **identity** - passport, driving licence, national identity card, birth certificate
2. **income** - payslip, P60, letter from an employer, self-employment accounts
3. **bank_statement** - statement from a bank or building society
4. **welfare_benefit** - Universal Credit, Housing Benefit or other DWP / council benefit letter
5. **medical** - GP or hospital letter, medical assessment, evidence of disability
6. **tenancy** - current tenancy agreement, landlord reference, eviction notice
7. **proof_of_address** - utility bill, council tax bill, official letter showing an address
8. **other** - a real document that fits none of the categories above
9. **unknown** - the type cannot be determined (illegible, poor quality, not a document)

Reply with a single JSON object in exactly this shape:
{
  "category": "<category_name>",
  "confidence": <0.0-1.0>,
  "subtype": "<specific_document_type>",
  "reasoning": "<one or two sentences explaining the choice>",
  "alternativeCategories": [
    {"category": "<category>", "confidence": <0.0-1.0>}
  ]
}

Rules:
- confidence is your certainty; use 0.9 or higher only for clear, unambiguous documents
- subtype is specific, e.g. "passport", "universal_credit_letter", "payslip"
- list at most 2 alternative categories, and only when you are unsure
- for unreadable images answer "unknown" with a low confidence
- expect UK formats: DWP, HMRC, local council and NHS documents"""


# ---------------------------------------------------------------------------
# Normalisation helpers
# ---------------------------------------------------------------------------

def clamp_confidence(value: Any) -> float:
    """Coerce to float in [0, 1]; non-numeric and NaN become 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return max(0.0, min(1.0, number))


def _as_category(value: Any) -> DocumentCategory | None:
    try:
        return DocumentCategory(value)
    except ValueError:
        return None


def normalize_classification(raw: Mapping[str, Any]) -> ClassificationResult:
    """Validate a parsed model response into a ClassificationResult."""
    category = _as_category(raw.get("category")) or DocumentCategory.UNKNOWN

    alternatives = None
    raw_alternatives = raw.get("alternativeCategories", raw.get("alternative_categories"))
    if isinstance(raw_alternatives, list):
        alternatives = [
            AlternativeCategory(category=alt_category, confidence=clamp_confidence(alt.get("confidence")))
            for alt in raw_alternatives
            if isinstance(alt, Mapping)
            if (alt_category := _as_category(alt.get("category"))) is not None
        ]

    subtype = raw.get("subtype")
    return ClassificationResult(
        category=category,
        confidence=clamp_confidence(raw.get("confidence")),
        subtype=str(subtype) if subtype is not None else None,
        reasoning=str(raw.get("reasoning") or "No reasoning provided"),
        alternative_categories=alternatives,
    )


def aggregate_classifications(results: Sequence[ClassificationResult]) -> ClassificationResult:
    """
    Combine per-page results (see module docstring for the rules).

    Categories are scanned in enum declaration order with a strict `>`
    comparison, so on a tied summed score the earliest member wins. When all
    scores are 0 the result is "unknown".
    """
    scores: dict[DocumentCategory, float] = {}
    for result in results:
        scores[result.category] = scores.get(result.category, 0.0) + result.confidence

    best_category = DocumentCategory.UNKNOWN
    best_score    = 0.0
    for category in DocumentCategory:
        score = scores.get(category, 0.0)
        if score > best_score:
            best_score    = score
            best_category = category

    agreeing = [r for r in results if r.category == best_category]
    confidence = sum(r.confidence for r in agreeing) / len(agreeing) if agreeing else 0.0

    best_page = max(agreeing, key=lambda r: r.confidence) if agreeing else None

    alternatives = sorted(
        (
            AlternativeCategory(category=category, confidence=min(score, 1.0))
            for category, score in scores.items()
            if category != best_category and score > ALTERNATIVE_MIN_SCORE
        ),
        key=lambda alt: alt.confidence,
        reverse=True,
    )[:MAX_ALTERNATIVES]

    return ClassificationResult(
        category=best_category,
        confidence=clamp_confidence(confidence),
        subtype=best_page.subtype if best_page else None,
        reasoning=f"Aggregated from {len(results)} pages. {best_page.reasoning if best_page else ''}",
        alternative_categories=alternatives,
    )


# ---------------------------------------------------------------------------
# Stage
# ---------------------------------------------------------------------------

class ClassificationStage:
    """
    Stateless classifier around an injected vision client.

    Usage:
        stage  = ClassificationStage(client)
        result = await stage.classify(image_bytes, "image/png")
    """

    def __init__(self, client: VisionClient, max_tokens: int | None = None) -> None:
        self._client     = client
        self._max_tokens = max_tokens or settings.llm_classification_max_tokens

    async def classify(self, image: bytes, mime_type: str) -> ClassificationResult:
        """Classify one image. Never raises; failures come back as "unknown"."""
        try:
            content = await self._client.call(
                CLASSIFICATION_PROMPT,
                image,
                mime_type,
                instruction=CLASSIFICATION_INSTRUCTION,
                max_tokens=self._max_tokens,
            )
            if not content:
                raise ValueError("No response from classification model")

            raw = json.loads(content)
            if not isinstance(raw, dict):
                raise ValueError("Classification response is not a JSON object")

            result = normalize_classification(raw)

        except Exception as exc:
            logger.warning("Classification | failed | mime_type=%s error=%s", mime_type, exc)
            return ClassificationResult(
                category=DocumentCategory.UNKNOWN,
                confidence=0.0,
                reasoning=f"Classification failed: {exc}",
            )

        logger.info(
            "Classification | category=%s confidence=%.2f subtype=%s",
            result.category.value, result.confidence, result.subtype,
        )
        return result

    async def classify_multi_page(
        self,
        pages:     Sequence[bytes],
        mime_type: str = "image/png",
    ) -> ClassificationResult:
        """Classify a multi-page document from its rendered page images."""
        if not pages:
            return ClassificationResult(
                category=DocumentCategory.UNKNOWN,
                confidence=0.0,
                reasoning="No pages provided for classification",
            )

        first = await self.classify(pages[0], mime_type)
        if first.confidence >= HIGH_CONFIDENCE_SHORTCUT or len(pages) == 1:
            return first

        results = [first]
        for page in pages[1:MAX_PAGES_CLASSIFIED]:
            results.append(await self.classify(page, mime_type))

        aggregated = aggregate_classifications(results)
        logger.info(
            "Classification | aggregated pages=%d category=%s confidence=%.2f",
            len(results), aggregated.category.value, aggregated.confidence,
        )
        return aggregated
