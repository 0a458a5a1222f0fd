"""
Leaderboard Service - per-period referral rankings

Aggregation rules:
- counts come from the attribution event log only
- sort by invite count descending; ties keep first-seen order in the log
  (the store returns events ordered by join time, then insertion id)
- the published board is truncated to top-N (3..25)
- earnings = qualified count * payout amount
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from app.core.exceptions import CollaboratorError
from app.core.settings import clamp_top_n
from app.services.leaderboard.models import (
    InviterTally,
    Leaderboard,
    MemberStats,
    PeriodStats,
    RankedEntry,
)
from app.services.models import AttributionEvent
from app.services.periods import current_period, previous_period
from app.services.ports import MembershipDirectory, RecordStore
from app.utils.external_call import guarded_call

logger = logging.getLogger(__name__)


def fallback_name(member_id: str) -> str:
    return f"User {str(member_id)[-4:]}"


def tally_events(events: Iterable[AttributionEvent]) -> List[InviterTally]:
    """Count invites and qualified invites per inviter, in first-seen order."""
    invites: Dict[str, int] = {}
    qualified: Dict[str, int] = {}
    for event in events:
        invites[event.inviter_id] = invites.get(event.inviter_id, 0) + 1
        if event.qualified:
            qualified[event.inviter_id] = qualified.get(event.inviter_id, 0) + 1

    return [
        InviterTally(inviter_id=inviter_id, invites=count, qualified=qualified.get(inviter_id, 0))
        for inviter_id, count in invites.items()
    ]


def rank_by_invites(tallies: Sequence[InviterTally]) -> List[InviterTally]:
    # sorted() is stable: equal counts keep first-seen order
    return sorted(tallies, key=lambda t: -t.invites)


def rank_by_qualified(tallies: Sequence[InviterTally]) -> List[InviterTally]:
    return sorted((t for t in tallies if t.qualified > 0), key=lambda t: -t.qualified)


def _ranked(tallies: Sequence[InviterTally], names: Dict[str, str], payout_amount: int) -> List[RankedEntry]:
    return [
        RankedEntry(
            rank=index + 1,
            inviter_id=tally.inviter_id,
            display_name=names.get(tally.inviter_id) or fallback_name(tally.inviter_id),
            invites=tally.invites,
            qualified=tally.qualified,
            earnings=tally.qualified * payout_amount,
        )
        for index, tally in enumerate(tallies)
    ]


def build_leaderboard(
    period: str,
    tallies: Sequence[InviterTally],
    names: Dict[str, str],
    *,
    top_n: Optional[int],
    payout_amount: int,
    currency: str = "€",
) -> Leaderboard:
    """
    Rank first-seen-ordered tallies, truncate to top-N and attach names and earnings.

    entries ranks by invite count; earners ranks inviters with qualified
    referrals by qualified count.
    """
    limit = clamp_top_n(top_n)
    return Leaderboard(
        period=period,
        entries=_ranked(rank_by_invites(tallies)[:limit], names, payout_amount),
        earners=_ranked(rank_by_qualified(tallies)[:limit], names, payout_amount),
        total_invites=sum(t.invites for t in tallies),
        total_qualified=sum(t.qualified for t in tallies),
        currency=currency,
    )


def stats_of(events: Iterable[AttributionEvent], payout_amount: int) -> PeriodStats:
    invites = 0
    qualified = 0
    for event in events:
        invites += 1
        if event.qualified:
            qualified += 1
    return PeriodStats(invites=invites, qualified=qualified, earnings=qualified * payout_amount)


class NameCache:
    """
    Member id -> display name, kept for the life of the process.

    Only resolved names are cached; fallbacks are retried on the next lookup.
    """

    def __init__(self, store: RecordStore, directory: MembershipDirectory, *, group_id: str, timeout: float = 10.0):
        self.store = store
        self.directory = directory
        self.group_id = group_id
        self.timeout = timeout
        self._names: Dict[str, str] = {}

    async def resolve(self, member_id: str) -> str:
        cached = self._names.get(member_id)
        if cached:
            return cached

        name = ""
        try:
            record = await guarded_call(
                self.store.find_member(member_id),
                timeout=self.timeout, component="store", operation="find_member",
            )
            if record is not None and record.display_name:
                name = record.display_name
            else:
                member = await guarded_call(
                    self.directory.fetch_member(self.group_id, member_id),
                    timeout=self.timeout, component="directory", operation="fetch_member",
                )
                if member is not None and member.display_name:
                    name = member.display_name
        except CollaboratorError as e:
            logger.debug(f"NAME_RESOLVE_FAILED [member={member_id}, error={e}]")

        if not name:
            return fallback_name(member_id)
        self._names[member_id] = name
        return name

    async def resolve_many(self, member_ids: Iterable[str]) -> Dict[str, str]:
        return {member_id: await self.resolve(member_id) for member_id in member_ids}


class LeaderboardService:
    def __init__(
        self,
        store: RecordStore,
        names: NameCache,
        *,
        top_n: int,
        payout_amount: int,
        currency: str,
        reference_timezone: str,
        timeout: float = 10.0,
    ):
        self.store = store
        self.names = names
        self.top_n = clamp_top_n(top_n)
        self.payout_amount = payout_amount
        self.currency = currency
        self.reference_timezone = reference_timezone
        self.timeout = timeout

    async def _events_for_period(self, period: str) -> Sequence[AttributionEvent]:
        return await guarded_call(
            self.store.query_by_period(period),
            timeout=self.timeout, component="store", operation="query_by_period",
        )

    async def tally_period(self, period: str) -> List[InviterTally]:
        """All inviters of the period in first-seen order. Raises CollaboratorError."""
        return tally_events(await self._events_for_period(period))

    async def build(self, period: str, tallies: Optional[Sequence[InviterTally]] = None) -> Leaderboard:
        """
        Ranked top-N leaderboard for a period.

        Raises:
            CollaboratorError: event log unreachable
        """
        if tallies is None:
            tallies = await self.tally_period(period)
        shown = {t.inviter_id: None for t in rank_by_invites(tallies)[:self.top_n]}
        shown.update({t.inviter_id: None for t in rank_by_qualified(tallies)[:self.top_n]})
        names = await self.names.resolve_many(shown)
        return build_leaderboard(
            period,
            tallies,
            names,
            top_n=self.top_n,
            payout_amount=self.payout_amount,
            currency=self.currency,
        )

    async def member_stats(self, member_id: str, now: Optional[datetime] = None) -> MemberStats:
        """
        Invites, qualified invites and earnings of one member for this period,
        the previous period and all time.

        Raises:
            CollaboratorError: event log unreachable
        """
        this_period = current_period(now, self.reference_timezone)
        last_period = previous_period(this_period)
        events = await guarded_call(
            self.store.query_by_inviter(member_id),
            timeout=self.timeout, component="store", operation="query_by_inviter",
        )
        return MemberStats(
            member_id=member_id,
            current_period=this_period,
            previous_period=last_period,
            current=stats_of((e for e in events if e.period == this_period), self.payout_amount),
            previous=stats_of((e for e in events if e.period == last_period), self.payout_amount),
            all_time=stats_of(events, self.payout_amount),
            currency=self.currency,
        )
