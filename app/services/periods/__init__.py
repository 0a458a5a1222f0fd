"""
Period Window Service

Calendar-month period keys ("YYYY-MM") in a fixed reference time zone.
"""

from app.services.periods.service import (
    current_period,
    previous_period,
    period_of,
    parse_period,
)
from app.services.periods.exceptions import InvalidPeriodError

__all__ = [
    "current_period",
    "previous_period",
    "period_of",
    "parse_period",
    "InvalidPeriodError",
]
