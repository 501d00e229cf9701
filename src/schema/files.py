from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class FileCategory(StrEnum):
    PDF = "pdf"
    EXCEL = "excel"


class StoredFile(BaseModel):
    id: str  # the storage key, also the retrieval handle
    display_name: str
    category: FileCategory
    uploaded_at: datetime
    size_bytes: int = Field(ge=0)
    source_link: str | None = None
    access_url: str


class UploadRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    raw_bytes: bytes = Field(repr=False)
    original_name: str
    declared_mime_type: str
    category: FileCategory
    provenance: str | None = None

    @property
    def size_bytes(self) -> int:
        return len(self.raw_bytes)


class UploadResult(BaseModel):
    key: str
    category: FileCategory
    access_url: str


class ListFilesResponse(BaseModel):
    items: list[StoredFile]


class PresignResponse(BaseModel):
    url: str
    presigned: bool
    expires_in: int | None = None


class ErrorResponse(BaseModel):
    error: str
    detail: str
