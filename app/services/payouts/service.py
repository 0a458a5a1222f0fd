"""
Payout Notification Service - earnings messages deduplicated per period

For each inviter with qualified referrals in the finalized period:
- no member record → skip
- last_notified_period == period → skip (already notified)
- otherwise deliver a direct message; ONLY on confirmed delivery persist
  last_notified_period = period

A failed delivery leaves the marker untouched, so the next finalization pass
retries it. One failing recipient never stops the others.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from app.core.exceptions import CollaboratorError
from app.services.leaderboard.models import InviterTally
from app.services.ports import NotificationChannel, RecordStore
from app.utils.external_call import guarded_call

logger = logging.getLogger(__name__)


@dataclass
class PayoutSummary:
    period: str
    delivered: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.delivered) + len(self.failed)


def format_payout_message(period: str, qualified: int, payout_amount: int, currency: str = "€") -> str:
    earned = qualified * payout_amount
    noun = "referral" if qualified == 1 else "referrals"
    return (
        f"💰 <b>Affiliate Summary — {period}</b>\n\n"
        f"You earned <b>{currency}{earned}</b> from <b>{qualified} qualified {noun}</b>.\n\n"
        f"Thanks for helping grow the community 🤝"
    )


class PayoutNotifier:
    def __init__(
        self,
        store: RecordStore,
        channel: NotificationChannel,
        *,
        payout_amount: int,
        currency: str = "€",
        timeout: float = 10.0,
    ):
        self.store = store
        self.channel = channel
        self.payout_amount = payout_amount
        self.currency = currency
        self.timeout = timeout

    async def notify_period(self, period: str, tallies: Sequence[InviterTally]) -> PayoutSummary:
        """Notify every inviter with qualified > 0 in `period` at most once."""
        summary = PayoutSummary(period=period)

        for tally in tallies:
            if tally.qualified <= 0:
                continue
            member_id = tally.inviter_id
            try:
                outcome = await self._notify_one(period, member_id, tally.qualified)
            except CollaboratorError as e:
                logger.error(f"PAYOUT_NOTIFY_FAILED [member={member_id}, period={period}, error={e}]")
                outcome = "failed"

            if outcome == "delivered":
                summary.delivered.append(member_id)
            elif outcome == "skipped":
                summary.skipped.append(member_id)
            else:
                summary.failed.append(member_id)

        logger.info(
            f"PAYOUT_NOTIFY_DONE [period={period}, delivered={len(summary.delivered)}, "
            f"skipped={len(summary.skipped)}, failed={len(summary.failed)}]"
        )
        return summary

    async def _notify_one(self, period: str, member_id: str, qualified: int) -> str:
        record = await guarded_call(
            self.store.find_member(member_id),
            timeout=self.timeout, component="store", operation="find_member",
        )
        if record is None:
            logger.info(f"PAYOUT_SKIP_NO_RECORD [member={member_id}, period={period}]")
            return "skipped"
        if record.last_notified_period == period:
            logger.debug(f"PAYOUT_SKIP_ALREADY_NOTIFIED [member={member_id}, period={period}]")
            return "skipped"

        content = format_payout_message(period, qualified, self.payout_amount, self.currency)
        delivered = await guarded_call(
            self.channel.deliver_direct_message(member_id, content),
            timeout=self.timeout, component="channel", operation="deliver_direct_message",
        )
        if not delivered:
            logger.warning(f"PAYOUT_DELIVERY_FAILED [member={member_id}, period={period}]")
            return "failed"

        await guarded_call(
            self.store.upsert_member(member_id, {"last_notified_period": period}),
            timeout=self.timeout, component="store", operation="upsert_member",
        )
        logger.info(f"PAYOUT_NOTIFIED [member={member_id}, period={period}, qualified={qualified}]")
        return "delivered"
