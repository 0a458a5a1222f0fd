"""
Periodic ticker for background workers.

A Ticker owns one periodic job:
- fire() runs one tick; if the previous tick is still running the firing is
  skipped (not queued) and False is returned
- every tick is bounded by a timeout and isolated: exceptions are logged,
  never propagated to the loop
- run() fires once immediately (optionally after an initial delay), then every
  `interval` seconds until stop() is called
- stop() does not interrupt an in-flight tick; the loop exits after it

Tests drive fire() directly; no wall-clock waits are needed.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from app.utils.logging_helpers import (
    classify_error,
    log_worker_iteration_end,
    log_worker_iteration_start,
)

logger = logging.getLogger(__name__)

TickFn = Callable[[], Awaitable[Optional[int]]]


class Ticker:
    def __init__(
        self,
        name: str,
        interval_seconds: float,
        tick: TickFn,
        *,
        timeout_seconds: Optional[float] = None,
        initial_delay_seconds: float = 0.0,
    ):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self.name = name
        self.interval_seconds = interval_seconds
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else interval_seconds
        self.initial_delay_seconds = initial_delay_seconds
        self._tick = tick
        self._stop_event = asyncio.Event()
        self._running = False
        self.iteration_number = 0
        self.skipped_count = 0

    @property
    def is_running(self) -> bool:
        """True while a tick is in flight."""
        return self._running

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Request the loop to exit after the current tick."""
        self._stop_event.set()

    async def fire(self) -> bool:
        """
        Run one tick now.

        Returns:
            True if the tick ran (whatever its outcome), False if it was skipped
            because the previous tick is still running.
        """
        if self._running:
            self.skipped_count += 1
            logger.warning(f"TICK_SKIPPED [worker={self.name}, reason=previous_tick_running]")
            return False

        self._running = True
        self.iteration_number += 1
        started = time.monotonic()
        log_worker_iteration_start(worker_name=self.name, iteration_number=self.iteration_number)

        outcome = "success"
        error_type = None
        items_processed = None
        try:
            items_processed = await asyncio.wait_for(self._tick(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(f"WORKER_TIMEOUT worker={self.name} exceeded {self.timeout_seconds}s, tick cancelled")
            outcome = "timeout"
            error_type = "timeout"
        except asyncio.CancelledError:
            outcome = "cancelled"
            raise
        except Exception as e:
            logger.error(f"{self.name}: Unexpected error in tick: {type(e).__name__}: {str(e)[:100]}")
            logger.debug(f"{self.name}: Full traceback for tick", exc_info=True)
            outcome = "failed"
            error_type = classify_error(e)
        finally:
            self._running = False
            log_worker_iteration_end(
                worker_name=self.name,
                outcome=outcome,
                items_processed=items_processed if isinstance(items_processed, int) else None,
                error_type=error_type,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
        return True

    async def _fire_detached(self) -> None:
        try:
            await self.fire()
        except asyncio.CancelledError:
            logger.info(f"{self.name}: tick cancelled")

    async def run(self) -> None:
        """
        Fire on every interval until stop().

        Each firing is scheduled as its own task so a slow tick does not delay
        the schedule; overlapping firings are skipped by fire().
        """
        logger.info(f"TICKER_STARTED [worker={self.name}, interval={self.interval_seconds}s]")
        in_flight: set[asyncio.Task] = set()

        if self.initial_delay_seconds > 0:
            if await self._wait_stop(self.initial_delay_seconds):
                logger.info(f"TICKER_STOPPED [worker={self.name}]")
                return

        try:
            while not self.stopped:
                task = asyncio.create_task(self._fire_detached(), name=f"{self.name}_tick")
                in_flight.add(task)
                task.add_done_callback(in_flight.discard)
                if await self._wait_stop(self.interval_seconds):
                    break
        finally:
            # In-flight ticks are allowed to finish
            if in_flight:
                await asyncio.gather(*in_flight, return_exceptions=True)
            logger.info(f"TICKER_STOPPED [worker={self.name}]")

    async def _wait_stop(self, seconds: float) -> bool:
        """Sleep up to `seconds`; return True if stop() was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False
