"""Upload relay schemas."""

from datetime import datetime

from pydantic import Field

from rental_engine.schemas.common import BaseSchema


class UploadSessionCreate(BaseSchema):
    """Schema for opening a relay session."""

    photo_slot: str | None = Field(None, max_length=64)


class UploadSessionResponse(BaseSchema):
    """Schema for a freshly opened session."""

    session_id: str
    consumer_url: str
    photo_slot: str | None = None
    expires_at: datetime


class ImageUploadRequest(BaseSchema):
    """Schema for appending an image reference."""

    image_url: str = Field(..., min_length=1, max_length=2048)


class ImageUploadResponse(BaseSchema):
    success: bool = True
    count: int


class UploadPollResponse(BaseSchema):
    """What the polling consumer sees."""

    images: list[str]
    photo_slot: str | None = None
    count: int
