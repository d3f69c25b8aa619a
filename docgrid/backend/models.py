"""
Pydantic models for the document extraction pipeline.

Defines strict types for column definitions, extracted values (with
confidence and provenance), processing state and the API payloads.
"""

import math
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class ColumnType(str, Enum):
    """Supported column types for extraction."""

    TEXT = "text"
    DATE = "date"
    PRICE = "price"
    LOCATION = "location"
    PERSON = "person"
    ORGANIZATION = "organization"
    STATUS = "status"
    COLLECTION = "collection"


class ExtractionMethod(str, Enum):
    """How an extracted value was produced."""

    AI = "ai"
    MANUAL = "manual"
    OCR = "ocr"


class ValueStatus(str, Enum):
    """Review status of an extracted value."""

    YES = "yes"
    NO = "no"
    PENDING = "pending"


class AggregationType(str, Enum):
    SINGLE = "single"
    CONCATENATED = "concatenated"


class ProcessingTrigger(str, Enum):
    """What asked for a document to be (re)processed."""

    MANUAL = "manual"
    BULK = "bulk"
    UPLOAD_AUTO = "upload-auto"


def clamp_confidence(value: Any) -> float:
    """
    Coerce an arbitrary confidence into the [0, 1] range.

    Non-numeric and NaN inputs become 0.0.
    """
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return max(0.0, min(1.0, number))


# =============================================================================
# Column Definitions
# =============================================================================


class ColumnDefinition(BaseModel):
    """
    Definition of a single extractable column.

    Attributes:
        id: Stable key used in every extracted-value map.
        name: Human-readable column name.
        prompt: Free-text instruction guiding the AI.
        type: Expected value type.
        ai_model: Model hint (informational only).
        extraction_enabled: Whether the column takes part in extraction.
    """

    id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=200)
    prompt: str = Field(default="", max_length=2000)
    type: ColumnType = Field(default=ColumnType.TEXT)
    ai_model: str | None = Field(default=None)
    extraction_enabled: bool = Field(default=True)


# =============================================================================
# Extracted Values
# =============================================================================


class ExtractedBy(BaseModel):
    """Provenance of an extracted value."""

    method: ExtractionMethod
    model: str | None = None
    version: str | None = None


class ExtractedValue(BaseModel):
    """
    The unit of extraction output for one column.

    Confidence is always clamped into [0, 1] on construction.
    """

    value: str = Field(default="")
    type: ColumnType | None = Field(default=None)
    status: ValueStatus | None = Field(default=None)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    extracted_at: datetime | None = Field(default=None)
    extracted_by: ExtractedBy | None = Field(default=None)

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp(cls, v: Any) -> float:
        """Clamp confidence into range instead of rejecting it."""
        return clamp_confidence(v)

    @field_validator("value", mode="before")
    @classmethod
    def stringify(cls, v: Any) -> str:
        """Store every value as a string; null becomes empty."""
        if v is None:
            return ""
        return v if isinstance(v, str) else str(v)

    @property
    def is_empty(self) -> bool:
        return not self.value.strip()


class AggregatedValue(ExtractedValue):
    """Extracted value merged across the visible documents of a collection."""

    source_documents: list[str] = Field(default_factory=list)
    aggregation_type: AggregationType = Field(default=AggregationType.SINGLE)


# =============================================================================
# Processing State
# =============================================================================


class ProcessingErrorInfo(BaseModel):
    """Structured error stored on a failed document."""

    message: str
    code: str


class ProcessingState(BaseModel):
    """Externally visible processing state of a document."""

    status: str
    progress: int = Field(default=0, ge=0, le=100)
    error: ProcessingErrorInfo | None = None


# =============================================================================
# API Models
# =============================================================================


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str = Field(default="healthy")
    version: str = Field(default="1.0.0")
    message: str = Field(default="")


class ProjectCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=1000)


class ProjectResponse(BaseModel):
    id: str
    name: str
    description: str = ""
    columns: list[ColumnDefinition] = Field(default_factory=list)
    created_at: str


class ColumnCreateRequest(BaseModel):
    """Request to add a column to a project."""

    id: str | None = Field(
        default=None,
        min_length=1,
        max_length=100,
        description="Column key; generated when omitted",
    )
    name: str = Field(..., min_length=1, max_length=200)
    prompt: str = Field(default="", max_length=2000)
    type: ColumnType = Field(default=ColumnType.TEXT)
    ai_model: str | None = None
    extraction_enabled: bool = True


class ColumnUpdateRequest(BaseModel):
    """Partial column update. Only provided fields change."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    prompt: str | None = Field(default=None, max_length=2000)
    type: ColumnType | None = None
    ai_model: str | None = None
    extraction_enabled: bool | None = None


class DocumentCreateRequest(BaseModel):
    """Register an uploaded document stored at an external locator."""

    original_name: str = Field(..., min_length=1, max_length=512)
    content_url: str = Field(..., min_length=1, description="Opaque content locator")
    mime_type: str = Field(default="", max_length=255)
    extension: str | None = Field(default=None, max_length=32)
    size: int | None = Field(default=None, ge=0)
    auto_process: bool = Field(
        default=False,
        description="Start processing immediately (upload-auto trigger)",
    )


class DocumentResponse(BaseModel):
    id: str
    project_id: str
    original_name: str
    mime_type: str
    extension: str
    size: int | None = None
    content_url: str
    processing: ProcessingState
    retry_count: int = 0
    started_at: str | None = None
    completed_at: str | None = None
    extracted_data: dict[str, ExtractedValue] = Field(default_factory=dict)
    created_at: str


class ExtractedValueWriteRequest(BaseModel):
    """Manual write of a single column value."""

    value: str = Field(default="")
    status: ValueStatus | None = Field(default=ValueStatus.YES)
    confidence: float = Field(default=1.0)

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp(cls, v: Any) -> float:
        return clamp_confidence(v)


class ProcessPendingResponse(BaseModel):
    project_id: str
    scheduled: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)


class CollectionCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    document_ids: list[str] = Field(default_factory=list)
    auto_aggregate: bool = True


class CollectionUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    auto_aggregate: bool | None = None


class CollectionMemberRequest(BaseModel):
    document_id: str = Field(..., min_length=1)


class CollectionReorderRequest(BaseModel):
    order: list[str] = Field(default_factory=list)


class CollectionResponse(BaseModel):
    id: str
    project_id: str
    name: str
    documents: list[str] = Field(default_factory=list)
    auto_aggregate: bool = True
    aggregation_order: list[str] = Field(default_factory=list)
    hidden_documents: list[str] = Field(default_factory=list)
    extracted_data: dict[str, AggregatedValue] = Field(default_factory=dict)
    created_at: str
