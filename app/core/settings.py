"""
Engine tunables.

Read from unprefixed environment variables (they are not secrets) and clamped
to safe ranges. Secrets and chat ids live in the root config module.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_REFERENCE_TIMEZONE = "Europe/Amsterdam"

TOP_N_MIN = 3
TOP_N_MAX = 25


@dataclass(frozen=True)
class EngineSettings:
    """
    Immutable engine configuration.

    Environment variables:
    - ROLLOVER_INTERVAL_SECONDS (default: 600, clamped to 60..3600)
    - ACCESS_GRANT_INTERVAL_SECONDS (default: 60, clamped to 10..900)
    - ACCESS_GRANT_BATCH_SIZE (default: 25, clamped to 1..100)
    - INVITE_REFRESH_INTERVAL_SECONDS (default: 60, clamped to 15..900)
    - LEADERBOARD_TOP_N (default: 10, clamped to 3..25)
    - REFERENCE_TIMEZONE (default: Europe/Amsterdam)
    - REFERRAL_PAYOUT_AMOUNT (default: 5)
    - PAYOUT_CURRENCY (default: €)
    - EXTERNAL_CALL_TIMEOUT_SECONDS (default: 10, clamped to 1..60)
    """
    rollover_interval_seconds: int = 600
    access_grant_interval_seconds: int = 60
    access_grant_batch_size: int = 25
    invite_refresh_interval_seconds: int = 60
    top_n: int = 10
    reference_timezone: str = DEFAULT_REFERENCE_TIMEZONE
    payout_amount: int = 5
    payout_currency: str = "€"
    external_call_timeout: float = 10.0


def clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(upper, value))


def clamp_top_n(value: Optional[int]) -> int:
    """Bound leaderboard size to TOP_N_MIN..TOP_N_MAX (None or 0 → default 10)."""
    if not value:
        return 10
    return clamp(value, TOP_N_MIN, TOP_N_MAX)


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {key}={raw!r}, using default {default}")
        return default


def load_engine_settings() -> EngineSettings:
    """Build EngineSettings from the environment."""
    timeout = _int_env("EXTERNAL_CALL_TIMEOUT_SECONDS", 10)
    return EngineSettings(
        rollover_interval_seconds=clamp(_int_env("ROLLOVER_INTERVAL_SECONDS", 600), 60, 3600),
        access_grant_interval_seconds=clamp(_int_env("ACCESS_GRANT_INTERVAL_SECONDS", 60), 10, 900),
        access_grant_batch_size=clamp(_int_env("ACCESS_GRANT_BATCH_SIZE", 25), 1, 100),
        invite_refresh_interval_seconds=clamp(_int_env("INVITE_REFRESH_INTERVAL_SECONDS", 60), 15, 900),
        top_n=clamp_top_n(_int_env("LEADERBOARD_TOP_N", 10)),
        reference_timezone=os.getenv("REFERENCE_TIMEZONE", DEFAULT_REFERENCE_TIMEZONE) or DEFAULT_REFERENCE_TIMEZONE,
        payout_amount=max(0, _int_env("REFERRAL_PAYOUT_AMOUNT", 5)),
        payout_currency=os.getenv("PAYOUT_CURRENCY", "€"),
        external_call_timeout=float(clamp(timeout, 1, 60)),
    )
