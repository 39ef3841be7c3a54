from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class PresignUploadRequest(BaseModel):
    kind: Literal["question_image", "profile_image", "quiz_file"]
    file_name: str = Field(min_length=1, max_length=255)
    content_type: str = Field(min_length=1, max_length=200)
    size_bytes: int = Field(gt=0)
    quiz_id: str | None = None
    question_id: str | None = None


class PresignUploadResponse(BaseModel):
    upload_url: str
    object_key: str
    expires_in: int


class PresignDownloadResponse(BaseModel):
    url: str
    expires_in: int
