"""
Payout Notification Service Layer

Per-period earnings messages, at most one confirmed delivery per recipient and period.
"""

from app.services.payouts.service import (
    PayoutNotifier,
    PayoutSummary,
    format_payout_message,
)

__all__ = [
    "PayoutNotifier",
    "PayoutSummary",
    "format_payout_message",
]
