"""Update orchestration for single and bulk updates."""

from .locks import PlayerLockRegistry
from .service import UpdateOrchestrator

__all__ = [
    "PlayerLockRegistry",
    "UpdateOrchestrator",
]
