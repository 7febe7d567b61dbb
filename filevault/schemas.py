from __future__ import annotations

from datetime import datetime

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .models import AccessLevel, AccessType


class CamelModel(BaseModel):
    # wire format is camelCase, attributes stay snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------- Folders / Files ----------

class FolderRead(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    parent_id: str | None = None
    user_id: str | None = None
    access_type: AccessType
    is_public: bool
    created_at: datetime
    updated_at: datetime


class FolderCreate(CamelModel):
    name: str
    parent_id: str | None = None


class FolderUpdate(CamelModel):
    name: str | None = None
    parent_id: str | None = None
    is_public: bool | None = None


class FileRead(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    filename: str
    original_name: str
    # name under the thumbnail root, served by /api/thumbnails/{name}
    thumbnail_path: str | None = None
    file_size: int
    mime_type: str
    folder_id: str | None = None
    user_id: str | None = None
    access_type: AccessType
    created_at: datetime
    updated_at: datetime

    @field_validator("thumbnail_path")
    @classmethod
    def thumbnail_name(cls, value: str | None) -> str | None:
        return Path(value).name if value else None


class FileRename(CamelModel):
    name: str


class FolderTree(FolderRead):
    files: list[FileRead] = Field(default_factory=list)
    subfolders: list[FolderTree] = Field(default_factory=list)


FolderTree.model_rebuild()


class DownloadInfo(CamelModel):
    path: str
    name: str
    mime_type: str


class UploadPayload(CamelModel):
    """What the upload-handling collaborator hands to the file service."""

    data: bytes
    original_name: str
    mime_type: str
    size: int


# ---------- Shares ----------

class ShareRequest(CamelModel):
    user_ids: list[str]
    # None picks the resource default: read for files, write for folders
    access_level: AccessLevel | None = None


class ShareRead(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    shared_with_user_id: str | None = None
    access_level: AccessLevel
    created_at: datetime


class FileShareRead(ShareRead):
    file_id: str


class FolderShareRead(ShareRead):
    folder_id: str


# ---------- Previews ----------

class FrameRequest(CamelModel):
    file_id: str | None = None
    youtube_url: str | None = None
    timestamp: float = 1.0


class ThumbnailRead(CamelModel):
    thumbnail_path: str
