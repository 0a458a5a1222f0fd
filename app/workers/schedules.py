"""
Background schedules of the engine.

Three tickers:
- rollover: period boundary check + live leaderboard (default every 600 s)
- access_grants: approve-and-grant-once poller (default every 60 s)
- invite_refresh: snapshot baseline refresh (default every 60 s)

Each is gated by its feature flag; disabled schedules are not created.
"""
import logging
from typing import List, Optional

from app.core.feature_flags import FeatureFlags, get_feature_flags
from app.core.ticker import Ticker
from app.engine import InviteEngine

logger = logging.getLogger(__name__)

# Let polling start before the first grant poll
ACCESS_GRANT_INITIAL_DELAY_SECONDS = 10.0


def rollover_tick(engine: InviteEngine):
    async def tick() -> int:
        result = await engine.rollover.tick()
        return len(result.payouts.delivered) if result.payouts else 0
    return tick


def access_grant_tick(engine: InviteEngine):
    async def tick() -> int:
        summary = await engine.access.poll_once()
        return len(summary.granted)
    return tick


def invite_refresh_tick(engine: InviteEngine):
    async def tick() -> int:
        return await engine.invites.refresh_snapshot()
    return tick


def build_tickers(engine: InviteEngine, flags: Optional[FeatureFlags] = None) -> List[Ticker]:
    flags = flags or get_feature_flags()
    settings = engine.settings
    tickers: List[Ticker] = []

    if flags.leaderboards_enabled:
        tickers.append(Ticker(
            "rollover",
            settings.rollover_interval_seconds,
            rollover_tick(engine),
        ))
    else:
        logger.info("SCHEDULE_DISABLED [worker=rollover, flag=FEATURE_LEADERBOARDS_ENABLED]")

    if flags.access_grants_enabled:
        tickers.append(Ticker(
            "access_grants",
            settings.access_grant_interval_seconds,
            access_grant_tick(engine),
            initial_delay_seconds=ACCESS_GRANT_INITIAL_DELAY_SECONDS,
        ))
    else:
        logger.info("SCHEDULE_DISABLED [worker=access_grants, flag=FEATURE_ACCESS_GRANTS_ENABLED]")

    if flags.invite_tracking_enabled:
        tickers.append(Ticker(
            "invite_refresh",
            settings.invite_refresh_interval_seconds,
            invite_refresh_tick(engine),
        ))
    else:
        logger.info("SCHEDULE_DISABLED [worker=invite_refresh, flag=FEATURE_INVITE_TRACKING_ENABLED]")

    return tickers
