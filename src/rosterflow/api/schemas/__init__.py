"""Pydantic models for API I/O."""

from .bulk import BulkJobResponse, BulkUpdatePayload
from .player import (
    ChunkResponse,
    DerivedFieldResponse,
    OnboardRequest,
    OnboardResponse,
    PlayerCreateRequest,
    PlayerResponse,
)
from .update import ImpactPayload, UpdatePayload, ValidateResponse

__all__ = [
    "BulkJobResponse",
    "BulkUpdatePayload",
    "ChunkResponse",
    "DerivedFieldResponse",
    "ImpactPayload",
    "OnboardRequest",
    "OnboardResponse",
    "PlayerCreateRequest",
    "PlayerResponse",
    "UpdatePayload",
    "ValidateResponse",
]
