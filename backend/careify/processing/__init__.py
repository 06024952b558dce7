"""
Document Processing Package
════════════════════════════

The intake pipeline stages, leaves first:

  Field Schema Registry → Classification → Extraction → Checklist Engine

Modules
───────
  schema_registry.py  Versioned per-category extraction schemas
  classification.py   Vision-model document classifier with page aggregation
  extraction.py       Vision-model field extractor and completeness scoring
  checklist.py        Pure checklist evaluation over a case's documents

Design principles
─────────────────
  • Stages receive their model client by injection and never raise on model failure.
  • Per-category tables are immutable and checked at import time.
  • The checklist engine is a pure function of its inputs (including `today`).
"""

from careify.processing.checklist import ChecklistEngine, ChecklistPolicy
from careify.processing.classification import ClassificationStage
from careify.processing.extraction import ExtractionStage
from careify.processing.schema_registry import FieldSchemaRegistry, SchemaVersion, schema_registry

__all__ = [
    "ChecklistEngine",
    "ChecklistPolicy",
    "ClassificationStage",
    "ExtractionStage",
    "FieldSchemaRegistry",
    "SchemaVersion",
    "schema_registry",
]
