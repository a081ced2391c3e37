"""Pydantic response models for the HTTP API.

WHY: The catalog endpoint streams hand-framed JSON, so FastAPI cannot
infer its schema from a return type. These models describe the body for
the /docs UI and give tests a schema to validate streamed bodies against.

HOW: TagModel mirrors core.record.TagRecord field for field; TagCatalogModel
wraps the list. Health and error models follow the same pattern.

RULES:
- All models use Field(description=...) for OpenAPI documentation
- TagModel field names and order match the streamed JSON exactly
- Python 3.9+ compatible (no PEP 604 unions, use typing generics)
"""

from __future__ import annotations

from typing import Dict, List

from pydantic import BaseModel, Field


class TagModel(BaseModel):
    """One tag of the exiftool catalog."""

    writable: bool = Field(description="Whether exiftool can write this tag.")
    path: str = Field(description="Qualified tag path, 'Group:Name' when the group is known.")
    group: str = Field(description="Table the tag belongs to, empty when none was declared.")
    type: str = Field(description="Declared value type (e.g. 'string', 'int16u').")
    descriptions: Dict[str, str] = Field(
        description="Human-readable description per language code.",
    )

    model_config = {"json_schema_extra": {
        "examples": [
            {
                "writable": True,
                "path": "EXIF:Make",
                "group": "EXIF",
                "type": "string",
                "descriptions": {"en": "Manufacturer"},
            }
        ]
    }}


class TagCatalogModel(BaseModel):
    """Complete response body of the catalog endpoint.

    RULES:
    - tags are in the order exiftool lists them
    - A body cut off mid-stream does not validate against this model
    """

    tags: List[TagModel] = Field(description="All tags reported by the extractor.")


class ErrorResponse(BaseModel):
    """Standard error response body."""

    detail: str = Field(description="Human-readable error description.")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service health status.", json_schema_extra={"example": "ok"})
    version: str = Field(description="API version string.", json_schema_extra={"example": "0.1.0"})
