"""
Rollover Controller - period boundary state machine

State: last_seen_period (None until the first tick; held in memory only).

On every tick, with now_period = current_period(now):
- last_seen_period is None → adopt now_period, no finalization
- last_seen_period == now_period → nothing to finalize
- otherwise → finalize previous_period(now_period): aggregate,
  publish_final, payout notifications; then adopt now_period
The live leaderboard for now_period is published on every tick.

If aggregation or publish_final fails, last_seen_period is NOT advanced and
the next tick retries the finalization. publish_final is an upsert and payouts
are deduplicated, so the retry is safe. Periods skipped entirely while the
process was down are never finalized.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from app.core.exceptions import CollaboratorError
from app.core.structured_logger import log_event
from app.services.leaderboard.service import LeaderboardService
from app.services.payouts.service import PayoutNotifier, PayoutSummary
from app.services.periods import current_period, previous_period
from app.services.ports import PublicationSink
from app.utils.external_call import guarded_call

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RolloverOutcome(Enum):
    INITIALIZED = "initialized"
    CURRENT = "current"
    FINALIZED = "finalized"
    FINALIZE_FAILED = "finalize_failed"


@dataclass(frozen=True)
class RolloverResult:
    outcome: RolloverOutcome
    period: str
    finalized_period: Optional[str] = None
    live_published: bool = False
    payouts: Optional[PayoutSummary] = None


class RolloverController:
    def __init__(
        self,
        leaderboards: LeaderboardService,
        sink: PublicationSink,
        payouts: PayoutNotifier,
        *,
        reference_timezone: str,
        clock: Clock = utc_now,
        timeout: float = 10.0,
    ):
        self.leaderboards = leaderboards
        self.sink = sink
        self.payouts = payouts
        self.reference_timezone = reference_timezone
        self.clock = clock
        self.timeout = timeout
        self.last_seen_period: Optional[str] = None

    async def tick(self, now: Optional[datetime] = None) -> RolloverResult:
        """One pass of the state machine. Never raises CollaboratorError."""
        now_period = current_period(now or self.clock(), self.reference_timezone)

        outcome = RolloverOutcome.CURRENT
        finalized_period = None
        payouts = None

        if self.last_seen_period is None:
            self.last_seen_period = now_period
            outcome = RolloverOutcome.INITIALIZED
            logger.info(f"ROLLOVER_INITIALIZED [period={now_period}]")
        elif self.last_seen_period != now_period:
            finalized_period = previous_period(now_period)
            payouts = await self.finalize(finalized_period)
            if payouts is None:
                outcome = RolloverOutcome.FINALIZE_FAILED
            else:
                logger.info(
                    f"ROLLOVER_ADVANCED [from={self.last_seen_period}, to={now_period}, "
                    f"finalized={finalized_period}]"
                )
                self.last_seen_period = now_period
                outcome = RolloverOutcome.FINALIZED

        live_published = await self.publish_live(now_period)
        return RolloverResult(
            outcome=outcome,
            period=now_period,
            finalized_period=finalized_period,
            live_published=live_published,
            payouts=payouts,
        )

    async def finalize(self, period: str) -> Optional[PayoutSummary]:
        """
        Publish final results for `period` and notify earners.

        Returns:
            The payout summary, or None if aggregation or publishing failed
        """
        started = time.monotonic()
        try:
            tallies = await self.leaderboards.tally_period(period)
            board = await self.leaderboards.build(period, tallies)
            await guarded_call(
                self.sink.publish_final(period, board),
                timeout=self.timeout, component="sink", operation="publish_final",
            )
        except CollaboratorError as e:
            log_event(
                logger,
                component="rollover",
                operation="finalize_period",
                outcome="failed",
                period=period,
                duration_ms=int((time.monotonic() - started) * 1000),
                reason=str(e),
                level="error",
            )
            return None

        summary = await self.payouts.notify_period(period, tallies)
        log_event(
            logger,
            component="rollover",
            operation="finalize_period",
            outcome="success",
            period=period,
            duration_ms=int((time.monotonic() - started) * 1000),
            reason=f"delivered={len(summary.delivered)} failed={len(summary.failed)}",
        )
        return summary

    async def publish_live(self, period: str) -> bool:
        try:
            board = await self.leaderboards.build(period)
            await guarded_call(
                self.sink.publish_live(period, board),
                timeout=self.timeout, component="sink", operation="publish_live",
            )
        except CollaboratorError as e:
            logger.warning(f"LEADERBOARD_LIVE_PUBLISH_FAILED [period={period}, error={e}]")
            return False
        return True
