"""
Rollover Service Layer

Period-boundary detection with exactly-once finalization per boundary.
"""

from app.services.rollover.service import (
    RolloverController,
    RolloverOutcome,
    RolloverResult,
)

__all__ = [
    "RolloverController",
    "RolloverOutcome",
    "RolloverResult",
]
