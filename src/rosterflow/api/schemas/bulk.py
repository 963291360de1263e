from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

from pydantic import BaseModel, Field


class BulkUpdatePayload(BaseModel):
    # rows stay untyped so one malformed row fails alone instead of the whole request
    rows: List[Dict[str, Any]] = Field(..., min_length=1)
    job_id: str | None = None


class BulkJobResponse(BaseModel):
    job_id: str
    state: str
    total_rows: int
    message: str | None = None
    created_at: datetime
    updated_at: datetime
    cancel_requested_at: datetime | None = None
    completed_at: datetime | None = None
    summary: dict | None = None
