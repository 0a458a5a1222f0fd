"""
Access Service Layer

Waitlist applications, pending state on join, and the approve-and-grant-once poller.
"""

from app.services.access.service import (
    AccessService,
    GrantSummary,
    normalize_answers,
)
from app.services.access.exceptions import (
    AccessServiceError,
    ApplicationNotFoundError,
)

__all__ = [
    "AccessService",
    "GrantSummary",
    "normalize_answers",
    "AccessServiceError",
    "ApplicationNotFoundError",
]
