"""
Invite Service Layer

Snapshot-diff attribution of joins to invite links, first-writer-wins.
"""

from app.services.invites.snapshot import (
    diff_snapshots,
    InviteSnapshotStore,
    SnapshotDiff,
)
from app.services.invites.service import (
    InviteService,
    AttributionOutcome,
    AttributionResult,
    PersonalInvite,
    validate_member_id,
)
from app.services.invites.exceptions import (
    InviteServiceError,
    InviteCreationError,
    InvalidMemberIdError,
)

__all__ = [
    "diff_snapshots",
    "InviteSnapshotStore",
    "SnapshotDiff",
    "InviteService",
    "AttributionOutcome",
    "AttributionResult",
    "PersonalInvite",
    "validate_member_id",
    "InviteServiceError",
    "InviteCreationError",
    "InvalidMemberIdError",
]
