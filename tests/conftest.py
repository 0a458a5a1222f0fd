"""
Pytest configuration and shared fixtures for engine tests.

Services are exercised against in-memory collaborators that mirror the
PostgreSQL semantics of database.py:
- inviter_id / invite_code_used are written once, together with the event (record_attribution)
- invite_code / invite_url / invite_created_at keep their first value
- an empty display name never replaces a stored one
- at most one attribution event per invitee
- events come back ordered by join time, then insertion order
"""
import os

# config.py validates these at import time; handlers and adapters import it
os.environ.setdefault("APP_ENV", "local")
_prefix = os.environ["APP_ENV"].upper()
os.environ.setdefault(f"{_prefix}_BOT_TOKEN", "123456:TEST-TOKEN")
os.environ.setdefault(f"{_prefix}_ADMIN_TELEGRAM_ID", "1000")
os.environ.setdefault(f"{_prefix}_COMMUNITY_CHAT_ID", "-100123")

import dataclasses
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pytest

from app.core.settings import EngineSettings
from app.engine import build_engine
from app.services.models import (
    MEMBER_UPSERT_FIELDS,
    ApplicationStatus,
    AttributionEvent,
    DirectoryMember,
    GrantResult,
    InviteRecord,
    MemberRecord,
    WaitlistEntry,
)

GROUP_ID = "-100123"

_WRITE_ONCE = {"invite_code", "invite_url", "invite_created_at"}


class Unavailable(Exception):
    """Raised by fakes switched to failure mode"""
    pass


class FakeRecordStore:
    def __init__(self):
        self.members: Dict[str, MemberRecord] = {}
        self.events: List[Tuple[int, AttributionEvent]] = []
        self.invites: Dict[Tuple[str, str], InviteRecord] = {}
        self.applications: Dict[str, WaitlistEntry] = {}
        self.fail_operations: set = set()
        self._seq = 0

    def _check(self, operation: str) -> None:
        if operation in self.fail_operations or "*" in self.fail_operations:
            raise Unavailable(f"store down: {operation}")

    async def find_member(self, member_id: str) -> Optional[MemberRecord]:
        self._check("find_member")
        record = self.members.get(member_id)
        return dataclasses.replace(record) if record is not None else None

    async def upsert_member(self, member_id: str, fields: Mapping[str, Any]) -> None:
        self._check("upsert_member")
        unknown = set(fields) - MEMBER_UPSERT_FIELDS
        if unknown:
            raise ValueError(f"fields not allowed: {sorted(unknown)}")
        record = self.members.setdefault(member_id, MemberRecord(member_id=member_id))
        for key, value in fields.items():
            if key in _WRITE_ONCE and getattr(record, key) is not None:
                continue
            if key == "display_name" and not value:
                continue
            setattr(record, key, value)

    async def record_attribution(self, event: AttributionEvent) -> bool:
        self._check("record_attribution")
        record = self.members.get(event.invitee_id)
        if record is None or record.inviter_id is not None:
            return False
        record.inviter_id = event.inviter_id
        record.invite_code_used = event.invite_code
        if not any(e.invitee_id == event.invitee_id for _, e in self.events):
            self._seq += 1
            self.events.append((self._seq, event))
        return True

    def _ordered(self, predicate) -> List[AttributionEvent]:
        rows = [(e.joined_at, seq, e) for seq, e in self.events if predicate(e)]
        return [e for _, _, e in sorted(rows, key=lambda r: (r[0], r[1]))]

    async def query_by_period(self, period: str) -> List[AttributionEvent]:
        self._check("query_by_period")
        return self._ordered(lambda e: e.period == period)

    async def query_by_inviter(self, inviter_id: str) -> List[AttributionEvent]:
        self._check("query_by_inviter")
        return self._ordered(lambda e: e.inviter_id == inviter_id)

    async def mark_event_qualified(self, invitee_id: str) -> bool:
        self._check("mark_event_qualified")
        for index, (seq, event) in enumerate(self.events):
            if event.invitee_id == invitee_id:
                self.events[index] = (seq, dataclasses.replace(event, qualified=True))
                return True
        return False

    async def find_invite(self, group_id: str, code: str) -> Optional[InviteRecord]:
        self._check("find_invite")
        return self.invites.get((group_id, code))

    async def save_invite(self, invite: InviteRecord) -> None:
        self._check("save_invite")
        self.invites[(invite.group_id, invite.code)] = invite

    async def query_approved_ungranted(self, limit: int) -> List[WaitlistEntry]:
        self._check("query_approved_ungranted")
        pending = [
            dataclasses.replace(e) for e in self.applications.values()
            if e.status == ApplicationStatus.APPROVED and not e.granted
        ]
        return pending[:limit]

    async def mark_granted(self, member_id: str, granted_at: datetime) -> None:
        self._check("mark_granted")
        entry = self.applications[member_id]
        entry.granted = True
        entry.granted_at = granted_at

    async def find_application(self, member_id: str) -> Optional[WaitlistEntry]:
        self._check("find_application")
        entry = self.applications.get(member_id)
        return dataclasses.replace(entry) if entry is not None else None

    async def save_application(self, entry: WaitlistEntry) -> None:
        self._check("save_application")
        self.applications[entry.member_id] = dataclasses.replace(entry)

    async def set_application_status(self, member_id: str, status: ApplicationStatus) -> bool:
        self._check("set_application_status")
        entry = self.applications.get(member_id)
        if entry is None:
            return False
        entry.status = status
        return True

    # Test helpers

    def add_invite(self, code: str, owner_id: str, group_id: str = GROUP_ID) -> None:
        self.invites[(group_id, code)] = InviteRecord(group_id=group_id, code=code, owner_id=owner_id)

    def add_event(self, invitee_id: str, inviter_id: str, period: str, joined_at: datetime,
                  qualified: bool = False, code: str = "code") -> None:
        self._seq += 1
        self.events.append((self._seq, AttributionEvent(
            invitee_id=invitee_id,
            inviter_id=inviter_id,
            invite_code=code,
            period=period,
            joined_at=joined_at,
            qualified=qualified,
        )))


class FakeDirectory:
    def __init__(self):
        self.snapshot: Dict[str, int] = {}
        self.members: Dict[str, DirectoryMember] = {}
        self.fail = False
        self.fetch_count = 0
        self.created: List[Tuple[str, str]] = []

    async def fetch_invite_snapshot(self, group_id: str) -> Dict[str, int]:
        self.fetch_count += 1
        if self.fail:
            raise Unavailable("directory down")
        return dict(self.snapshot)

    async def fetch_member(self, group_id: str, member_id: str) -> Optional[DirectoryMember]:
        if self.fail:
            raise Unavailable("directory down")
        return self.members.get(member_id)

    async def create_invite(self, group_id: str, owner_id: str, label: str) -> Tuple[str, str]:
        if self.fail:
            raise Unavailable("directory down")
        code = f"inv{owner_id}"
        self.created.append((owner_id, label))
        self.snapshot[code] = 0
        return code, f"https://t.me/+{code}"


class FakeChannel:
    def __init__(self):
        self.sent: List[Tuple[str, str]] = []
        self.undeliverable: set = set()
        self.raising: set = set()

    async def deliver_direct_message(self, member_id: str, content: str) -> bool:
        if member_id in self.raising:
            raise Unavailable("channel down")
        if member_id in self.undeliverable:
            return False
        self.sent.append((member_id, content))
        return True


class FakeSink:
    def __init__(self):
        self.live: Dict[str, Any] = {}
        self.final: Dict[str, Any] = {}
        self.live_calls = 0
        self.final_calls = 0
        self.fail_final = False
        self.fail_live = False

    async def publish_live(self, period: str, leaderboard) -> None:
        self.live_calls += 1
        if self.fail_live:
            raise Unavailable("sink down")
        self.live[period] = leaderboard

    async def publish_final(self, period: str, leaderboard) -> None:
        self.final_calls += 1
        if self.fail_final:
            raise Unavailable("sink down")
        self.final[period] = leaderboard


class FakeGranter:
    def __init__(self):
        self.results: Dict[str, GrantResult] = {}
        self.granted: List[str] = []
        self.restricted: List[str] = []
        self.raising: set = set()

    async def grant(self, group_id: str, member_id: str) -> GrantResult:
        if member_id in self.raising:
            raise Unavailable("granter down")
        result = self.results.get(member_id, GrantResult.GRANTED)
        if result == GrantResult.GRANTED:
            self.granted.append(member_id)
        return result

    async def restrict(self, group_id: str, member_id: str) -> bool:
        if member_id in self.raising:
            raise Unavailable("granter down")
        self.restricted.append(member_id)
        return True


def utc(year: int, month: int, day: int, hour: int = 12, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return FakeRecordStore()


@pytest.fixture
def directory():
    return FakeDirectory()


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def granter():
    return FakeGranter()


@pytest.fixture
def settings():
    """Small, fast settings; UTC keeps period boundaries obvious."""
    return EngineSettings(
        top_n=10,
        reference_timezone="UTC",
        payout_amount=5,
        payout_currency="€",
        external_call_timeout=1.0,
    )


@pytest.fixture
def clock():
    """Mutable clock: set clock.now to move time."""
    class _Clock:
        now = utc(2024, 1, 15)

        def __call__(self):
            return self.now

    return _Clock()


@pytest.fixture
def engine(store, directory, channel, sink, granter, settings, clock):
    return build_engine(
        directory=directory,
        store=store,
        channel=channel,
        sink=sink,
        granter=granter,
        group_id=GROUP_ID,
        settings=settings,
        clock=clock,
    )
