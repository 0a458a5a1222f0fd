"""
Module kill switches.

Each engine feature can be turned off during incidents without code changes.

IMPORTANT:
- Flags default to True (enabled)
- Flags are read-only at runtime
- Disabled = log + skip (no exceptions)
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeatureFlags:
    """
    Immutable feature flags for operational control.

    Set via environment variables:
    - FEATURE_INVITE_TRACKING_ENABLED (default: true)
    - FEATURE_LEADERBOARDS_ENABLED (default: true)
    - FEATURE_ACCESS_GRANTS_ENABLED (default: true)
    """
    invite_tracking_enabled: bool
    leaderboards_enabled: bool
    access_grants_enabled: bool

    def __post_init__(self):
        """Validate flags are boolean."""
        for field_name, field_value in self.__dict__.items():
            if not isinstance(field_value, bool):
                raise ValueError(f"Feature flag {field_name} must be boolean, got {type(field_value)}")


_feature_flags: Optional[FeatureFlags] = None


def _parse_bool_env(key: str, default: bool = True) -> bool:
    """
    Parse boolean from environment variable.

    Args:
        key: Environment variable name
        default: Default value if not set or unparseable

    Returns:
        Boolean value
    """
    value = os.getenv(key, "").lower().strip()
    if value in ("true", "1", "yes", "on"):
        return True
    elif value in ("false", "0", "no", "off"):
        return False
    else:
        return default


def get_feature_flags() -> FeatureFlags:
    """Get global feature flags (built once per process)."""
    global _feature_flags

    if _feature_flags is None:
        _feature_flags = FeatureFlags(
            invite_tracking_enabled=_parse_bool_env("FEATURE_INVITE_TRACKING_ENABLED", default=True),
            leaderboards_enabled=_parse_bool_env("FEATURE_LEADERBOARDS_ENABLED", default=True),
            access_grants_enabled=_parse_bool_env("FEATURE_ACCESS_GRANTS_ENABLED", default=True),
        )
        logger.info(
            f"[FEATURE_FLAGS] Initialized: "
            f"invite_tracking={_feature_flags.invite_tracking_enabled}, "
            f"leaderboards={_feature_flags.leaderboards_enabled}, "
            f"access_grants={_feature_flags.access_grants_enabled}"
        )

    return _feature_flags


def reset_feature_flags() -> None:
    """Drop the cached flags so the next call re-reads the environment (tests)."""
    global _feature_flags
    _feature_flags = None
