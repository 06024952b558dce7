"""Read-only view of the field schema registry."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from careify.processing.schema_registry import schema_registry
from careify.schemas.documents import DocumentCategory

router = APIRouter(
    prefix="/schemas",
    tags=["Schemas"],
)


@router.get("", summary="Current and historical schema versions per category")
async def list_schemas() -> dict[str, dict[str, Any]]:
    return schema_registry.export_schema_metadata()


@router.get("/{category}", summary="Every schema version for one category, oldest first")
async def get_category_schemas(category: DocumentCategory) -> dict[str, Any]:
    return {
        "category":        category.value,
        "current_version": schema_registry.get_current_version(category),
        "versions":        [v.to_dict() for v in schema_registry.get_all_versions(category)],
    }
