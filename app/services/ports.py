"""
Capability interfaces consumed by the engine.

Concrete implementations live in app.adapters (Telegram + PostgreSQL);
tests use in-memory fakes with the same method signatures.
"""
from datetime import datetime
from typing import TYPE_CHECKING, Any, Mapping, Optional, Protocol, Sequence, Tuple

from app.services.models import (
    ApplicationStatus,
    AttributionEvent,
    DirectoryMember,
    GrantResult,
    InviteRecord,
    MemberRecord,
    WaitlistEntry,
)

if TYPE_CHECKING:
    from app.services.leaderboard.models import Leaderboard


class MembershipDirectory(Protocol):
    async def fetch_invite_snapshot(self, group_id: str) -> Mapping[str, int]:
        """Current use count per invite code of the group."""
        ...

    async def fetch_member(self, group_id: str, member_id: str) -> Optional[DirectoryMember]:
        """The member if currently in the group, else None."""
        ...

    async def create_invite(self, group_id: str, owner_id: str, label: str) -> Tuple[str, str]:
        """Create a permanent invite; returns (code, url)."""
        ...


class RecordStore(Protocol):
    async def find_member(self, member_id: str) -> Optional[MemberRecord]: ...

    async def upsert_member(self, member_id: str, fields: Mapping[str, Any]) -> None: ...

    async def record_attribution(self, event: AttributionEvent) -> bool:
        """
        Atomically write the invitee's inviter + code (only when none is
        recorded) and append the event. True if the inviter was written;
        nothing is written otherwise.
        """
        ...

    async def query_by_period(self, period: str) -> Sequence[AttributionEvent]:
        """Events of a period ordered by join time, then insertion order."""
        ...

    async def query_by_inviter(self, inviter_id: str) -> Sequence[AttributionEvent]: ...

    async def mark_event_qualified(self, invitee_id: str) -> bool: ...

    async def find_invite(self, group_id: str, code: str) -> Optional[InviteRecord]: ...

    async def save_invite(self, invite: InviteRecord) -> None: ...

    async def query_approved_ungranted(self, limit: int) -> Sequence[WaitlistEntry]: ...

    async def mark_granted(self, member_id: str, granted_at: datetime) -> None: ...

    async def find_application(self, member_id: str) -> Optional[WaitlistEntry]: ...

    async def save_application(self, entry: WaitlistEntry) -> None: ...

    async def set_application_status(self, member_id: str, status: ApplicationStatus) -> bool: ...


class NotificationChannel(Protocol):
    async def deliver_direct_message(self, member_id: str, content: str) -> bool:
        """True only on confirmed delivery."""
        ...


class PublicationSink(Protocol):
    """Upsert-by-title: publishing the same period again replaces the previous content."""

    async def publish_live(self, period: str, leaderboard: "Leaderboard") -> None: ...

    async def publish_final(self, period: str, leaderboard: "Leaderboard") -> None: ...


class AccessGranter(Protocol):
    async def grant(self, group_id: str, member_id: str) -> GrantResult: ...

    async def restrict(self, group_id: str, member_id: str) -> bool: ...
