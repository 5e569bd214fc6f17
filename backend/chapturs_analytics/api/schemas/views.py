"""Pydantic request/response schemas for view and progress endpoints."""

from pydantic import BaseModel, Field

# Ids become part of Redis keys, so ':' is not allowed
_ID_PATTERN = r"^[^:]+$"


class TrackViewRequest(BaseModel):
    work_id: str = Field(min_length=1, pattern=_ID_PATTERN)
    section_id: str | None = Field(default=None, min_length=1, pattern=_ID_PATTERN)


class ReadingProgressRequest(BaseModel):
    user_id: str = Field(min_length=1, pattern=_ID_PATTERN)
    work_id: str = Field(min_length=1, pattern=_ID_PATTERN)
    section_id: str = Field(min_length=1, pattern=_ID_PATTERN)
    progress: float = Field(ge=0, le=100)  # percent


class ReadingProgressResponse(BaseModel):
    ok: bool
    milestone: int
    saved: bool
