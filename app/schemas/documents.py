from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class DocumentAccessLevel(str, Enum):
    ALL_SHAREHOLDERS = "all_shareholders"
    BOARD_AND_MANAGEMENT_ONLY = "board_and_management_only"


class DocumentMetadata(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    document_type: str = Field(min_length=1, max_length=100)
    description: str | None = None
    access_level: DocumentAccessLevel = DocumentAccessLevel.ALL_SHAREHOLDERS
    period_start: date | None = None
    period_end: date | None = None
    is_audited: bool = False
    annotation: str | None = None


class DocumentOut(BaseModel):
    id: UUID
    title: str
    description: str | None = None
    document_type: str
    access_level: DocumentAccessLevel
    file_size: int
    period_start: date | None = None
    period_end: date | None = None
    is_audited: bool
    annotation: str | None = None
    uploaded_at: datetime | None = None

    class Config:
        from_attributes = True


class DocumentUploadResponse(BaseModel):
    document_id: UUID
    file_hash: str
