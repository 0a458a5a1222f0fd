"""
Engine assembly.

Builds every service from the capability ports once at startup; handlers and
workers receive the same InviteEngine instance.
"""
from dataclasses import dataclass
from typing import Optional

from app.core.settings import EngineSettings
from app.services.access import AccessService
from app.services.invites import InviteService, InviteSnapshotStore
from app.services.leaderboard import LeaderboardService, NameCache
from app.services.payouts import PayoutNotifier
from app.services.ports import (
    AccessGranter,
    MembershipDirectory,
    NotificationChannel,
    PublicationSink,
    RecordStore,
)
from app.services.rollover import RolloverController
from app.services.rollover.service import Clock, utc_now


@dataclass
class InviteEngine:
    settings: EngineSettings
    group_id: str
    snapshots: InviteSnapshotStore
    names: NameCache
    invites: InviteService
    leaderboards: LeaderboardService
    payouts: PayoutNotifier
    rollover: RolloverController
    access: AccessService


def build_engine(
    *,
    directory: MembershipDirectory,
    store: RecordStore,
    channel: NotificationChannel,
    sink: PublicationSink,
    granter: AccessGranter,
    group_id: str,
    settings: Optional[EngineSettings] = None,
    clock: Clock = utc_now,
) -> InviteEngine:
    settings = settings or EngineSettings()
    timeout = settings.external_call_timeout

    snapshots = InviteSnapshotStore()
    names = NameCache(store, directory, group_id=group_id, timeout=timeout)
    invites = InviteService(
        directory,
        store,
        snapshots,
        group_id=group_id,
        reference_timezone=settings.reference_timezone,
        timeout=timeout,
    )
    leaderboards = LeaderboardService(
        store,
        names,
        top_n=settings.top_n,
        payout_amount=settings.payout_amount,
        currency=settings.payout_currency,
        reference_timezone=settings.reference_timezone,
        timeout=timeout,
    )
    payouts = PayoutNotifier(
        store,
        channel,
        payout_amount=settings.payout_amount,
        currency=settings.payout_currency,
        timeout=timeout,
    )
    rollover = RolloverController(
        leaderboards,
        sink,
        payouts,
        reference_timezone=settings.reference_timezone,
        clock=clock,
        timeout=timeout,
    )
    access = AccessService(
        store,
        granter,
        group_id=group_id,
        batch_size=settings.access_grant_batch_size,
        timeout=timeout,
    )
    return InviteEngine(
        settings=settings,
        group_id=group_id,
        snapshots=snapshots,
        names=names,
        invites=invites,
        leaderboards=leaderboards,
        payouts=payouts,
        rollover=rollover,
        access=access,
    )
