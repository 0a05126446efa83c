from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class ApiErrorDetail(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: int | None = None
    message: str


class ApiErrorEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    error: ApiErrorDetail


class VideoStatus(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    upload_status: str = Field(alias="uploadStatus")
    rejection_reason: str | None = Field(default=None, alias="rejectionReason")
    failure_reason: str | None = Field(default=None, alias="failureReason")


class VideoItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    kind: str | None = None
    status: VideoStatus


class VideoListResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    items: list[VideoItem] = Field(default_factory=list)


def extract_error_message(body: str) -> str:
    """Return ``error.message`` from a Google-style error body, else the body itself."""
    if not body:
        return ""
    try:
        envelope = ApiErrorEnvelope.model_validate_json(body)
    except ValidationError:
        return body
    return envelope.error.message
