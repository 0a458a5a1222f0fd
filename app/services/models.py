"""
Domain records shared by the engine services.

Member IDs and group IDs are opaque strings; adapters convert platform ids.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional


@dataclass
class MemberRecord:
    """Cached per-member state. The attribution event log is the system of record."""
    member_id: str
    display_name: str = ""
    invite_code: Optional[str] = None
    invite_url: Optional[str] = None
    invite_created_at: Optional[datetime] = None
    inviter_id: Optional[str] = None
    invite_code_used: Optional[str] = None
    joined_at: Optional[datetime] = None
    last_notified_period: Optional[str] = None


@dataclass(frozen=True)
class InviteRecord:
    group_id: str
    code: str
    owner_id: str
    url: str = ""
    uses: int = 0
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class AttributionEvent:
    invitee_id: str
    inviter_id: str
    invite_code: str
    period: str
    joined_at: datetime
    qualified: bool = False


@dataclass(frozen=True)
class DirectoryMember:
    """A member as seen by the membership directory."""
    member_id: str
    display_name: str
    is_bot: bool = False


class ApplicationStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class WaitlistEntry:
    member_id: str
    display_name: str = ""
    status: ApplicationStatus = ApplicationStatus.PENDING
    answers: Dict[str, str] = field(default_factory=dict)
    applied_at: Optional[datetime] = None
    granted: bool = False
    granted_at: Optional[datetime] = None


class GrantResult(Enum):
    GRANTED = "granted"
    NOT_A_MEMBER = "not_a_member"
    FAILED = "failed"


# Member record fields that upsert_member may write. inviter_id / invite_code_used
# are excluded: they are written only through record_attribution.
MEMBER_UPSERT_FIELDS = frozenset({
    "display_name",
    "invite_code",
    "invite_url",
    "invite_created_at",
    "joined_at",
    "last_notified_period",
})
