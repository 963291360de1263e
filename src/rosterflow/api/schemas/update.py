from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

from pydantic import BaseModel, Field

from rosterflow.models import UpdateRequest, UpdateSource, ValidationIssue, utcnow


class UpdatePayload(BaseModel):
    player_id: str = Field(..., min_length=1)
    source: UpdateSource
    changes: Dict[str, Any] = Field(default_factory=dict)
    actor: str = "api"
    reason: str | None = None
    timestamp: datetime | None = None

    def to_request(self) -> UpdateRequest:
        return UpdateRequest(
            player_id=self.player_id,
            source=self.source,
            changes=self.changes,
            actor=self.actor,
            reason=self.reason,
            timestamp=self.timestamp or utcnow(),
        )


class ValidateResponse(BaseModel):
    valid: bool
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)


class ImpactPayload(BaseModel):
    player_id: str = Field(..., min_length=1)
    changes: Dict[str, Any] = Field(..., min_length=1)
    source: UpdateSource | None = None
