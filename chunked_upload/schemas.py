from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SessionEndpoints(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    upload_part: str | None = None
    commit: str | None = None
    list_parts: str | None = None
    abort: str | None = None
    status: str | None = None


class UploadSession(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(min_length=1)
    part_size: int = Field(gt=0)
    total_parts: int = Field(default=0, ge=0)
    num_parts_processed: int = Field(default=0, ge=0)
    session_expires_at: str | None = None
    session_endpoints: SessionEndpoints = Field(default_factory=SessionEndpoints)


class CreateSessionRequest(BaseModel):
    file_size: int = Field(gt=0)
    folder_id: str | None = None
    file_name: str | None = Field(default=None, min_length=1)


class UploadPart(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    part_id: str
    offset: int = Field(ge=0)
    size: int = Field(gt=0)
    sha1: str


class PartsPage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    entries: list[UploadPart] = Field(default_factory=list)
    total_count: int = Field(ge=0)
    offset: int = Field(default=0, ge=0)
    limit: int | None = None


class CommitOptions(BaseModel):
    parts: list[UploadPart] | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)


class CommitRequest(BaseModel):
    parts: list[UploadPart]
    attributes: dict[str, Any] = Field(default_factory=dict)
