from __future__ import annotations

from pydantic import BaseModel, Field


class ManualScoreRequest(BaseModel):
    score: float
    remarks: str | None = Field(default=None, max_length=2000)


class EvaluateResponse(BaseModel):
    ok: bool = True
    job_id: str
