"""
Invite Service - join attribution and personal invites

This module decides who invited a joining member and writes the result to the
record store under a first-writer-wins rule:
- inviter_id is IMMUTABLE (set once, never overwritten)
- at most one attribution event per invitee
- self-invites are ignored
- a failure to reach the directory or the store never rejects the join

No aiogram imports; all platform access goes through the capability ports.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from app.core.exceptions import CollaboratorError
from app.services.invites.exceptions import InvalidMemberIdError, InviteCreationError
from app.services.invites.snapshot import InviteSnapshotStore, SnapshotDiff
from app.services.models import AttributionEvent, InviteRecord
from app.services.periods import period_of
from app.services.ports import MembershipDirectory, RecordStore
from app.utils.external_call import guarded_call

logger = logging.getLogger(__name__)


class AttributionOutcome(Enum):
    """What happened to a join event"""
    ATTRIBUTED = "attributed"
    ALREADY_ATTRIBUTED = "already_attributed"  # inviter was set before
    NO_BASELINE = "no_baseline"  # first snapshot of the group, nothing to diff
    NO_CANDIDATE = "no_candidate"  # no tracked invite count increased
    UNKNOWN_INVITE = "unknown_invite"  # increased code has no owner on record
    SELF_INVITE = "self_invite"
    DIRECTORY_UNAVAILABLE = "directory_unavailable"
    STORE_UNAVAILABLE = "store_unavailable"


@dataclass(frozen=True)
class AttributionResult:
    outcome: AttributionOutcome
    invitee_id: str
    inviter_id: Optional[str] = None
    invite_code: Optional[str] = None
    period: Optional[str] = None
    ambiguous: bool = False

    @property
    def attributed(self) -> bool:
        return self.outcome == AttributionOutcome.ATTRIBUTED


@dataclass(frozen=True)
class PersonalInvite:
    code: str
    url: str
    created: bool


@dataclass
class _IssueLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


def validate_member_id(member_id) -> str:
    """Normalize a member id given by a handler or an operator."""
    value = str(member_id).strip() if member_id is not None else ""
    if not value:
        raise InvalidMemberIdError("Member id must not be empty")
    return value


class InviteService:
    """
    Attribution ledger writer plus personal invite issuer for one group.
    """

    def __init__(
        self,
        directory: MembershipDirectory,
        store: RecordStore,
        snapshots: InviteSnapshotStore,
        *,
        group_id: str,
        reference_timezone: str,
        timeout: float = 10.0,
    ):
        self.directory = directory
        self.store = store
        self.snapshots = snapshots
        self.group_id = group_id
        self.reference_timezone = reference_timezone
        self.timeout = timeout
        # One lock per member with a request in flight; dropped when the last one leaves
        self._issue_locks: Dict[str, _IssueLock] = {}

    async def _store(self, operation: str, awaitable):
        return await guarded_call(awaitable, timeout=self.timeout, component="store", operation=operation)

    async def _fetch_snapshot(self, group_id: str):
        return await guarded_call(
            self.directory.fetch_invite_snapshot(group_id),
            timeout=self.timeout,
            component="directory",
            operation="fetch_invite_snapshot",
        )

    # ------------------------------------------------------------------
    # Snapshot baseline
    # ------------------------------------------------------------------

    async def refresh_snapshot(self) -> int:
        """
        Re-seed the group's snapshot baseline (new codes are added).

        Returns:
            Number of invite codes in the baseline

        Raises:
            CollaboratorError: directory unreachable (baseline kept)
        """
        snapshot = await self.snapshots.seed(self.group_id, self._fetch_snapshot)
        return len(snapshot)

    # ------------------------------------------------------------------
    # Join attribution
    # ------------------------------------------------------------------

    async def handle_member_join(
        self,
        member_id: str,
        display_name: str = "",
        joined_at: Optional[datetime] = None,
    ) -> AttributionResult:
        """
        Apply one join event.

        The snapshot is refreshed on every join so the next diff starts from the
        current counts, whether or not this join gets attributed.
        """
        invitee_id = validate_member_id(member_id)
        if joined_at is None:
            joined_at = datetime.now(timezone.utc)

        diff: Optional[SnapshotDiff]
        try:
            diff = await self.snapshots.refresh_and_diff(self.group_id, self._fetch_snapshot)
        except CollaboratorError as e:
            logger.warning(f"ATTRIBUTION_DIRECTORY_UNAVAILABLE [member={invitee_id}, error={e}]")
            diff = None

        try:
            await self._store("upsert_member", self.store.upsert_member(
                invitee_id,
                {"display_name": display_name, "joined_at": joined_at},
            ))
            record = await self._store("find_member", self.store.find_member(invitee_id))
        except CollaboratorError as e:
            logger.error(f"ATTRIBUTION_STORE_UNAVAILABLE [member={invitee_id}, error={e}]")
            return AttributionResult(AttributionOutcome.STORE_UNAVAILABLE, invitee_id)

        if record is not None and record.inviter_id:
            logger.debug(
                f"ATTRIBUTION_IMMUTABLE [member={invitee_id}, existing_inviter={record.inviter_id}]"
            )
            return AttributionResult(
                AttributionOutcome.ALREADY_ATTRIBUTED,
                invitee_id,
                inviter_id=record.inviter_id,
                invite_code=record.invite_code_used,
            )

        if diff is None:
            return AttributionResult(AttributionOutcome.DIRECTORY_UNAVAILABLE, invitee_id)
        if not diff.has_baseline:
            logger.info(f"ATTRIBUTION_NO_BASELINE [group={self.group_id}, member={invitee_id}]")
            return AttributionResult(AttributionOutcome.NO_BASELINE, invitee_id)
        if diff.code is None:
            logger.info(f"ATTRIBUTION_NO_CANDIDATE [group={self.group_id}, member={invitee_id}]")
            return AttributionResult(AttributionOutcome.NO_CANDIDATE, invitee_id)
        if diff.ambiguous:
            logger.warning(
                f"ATTRIBUTION_AMBIGUOUS [group={self.group_id}, member={invitee_id}, "
                f"candidates={','.join(diff.candidates)}, picked={diff.code}]"
            )

        return await self._attribute(invitee_id, diff, joined_at)

    async def _attribute(self, invitee_id: str, diff: SnapshotDiff, joined_at: datetime) -> AttributionResult:
        code = diff.code
        try:
            invite = await self._store("find_invite", self.store.find_invite(self.group_id, code))
            if invite is None:
                logger.info(f"ATTRIBUTION_UNKNOWN_INVITE [group={self.group_id}, code={code}, member={invitee_id}]")
                return AttributionResult(
                    AttributionOutcome.UNKNOWN_INVITE, invitee_id, invite_code=code, ambiguous=diff.ambiguous
                )

            inviter_id = invite.owner_id
            if inviter_id == invitee_id:
                logger.warning(f"ATTRIBUTION_SELF_INVITE [member={invitee_id}, code={code}]")
                return AttributionResult(
                    AttributionOutcome.SELF_INVITE, invitee_id, invite_code=code, ambiguous=diff.ambiguous
                )

            inviter = await self._store("find_member", self.store.find_member(inviter_id))
            if inviter is None:
                await self._store("upsert_member", self.store.upsert_member(inviter_id, {}))

            period = period_of(joined_at, self.reference_timezone)
            event = AttributionEvent(
                invitee_id=invitee_id,
                inviter_id=inviter_id,
                invite_code=code,
                period=period,
                joined_at=joined_at,
            )
            written = await self._store("record_attribution", self.store.record_attribution(event))
        except CollaboratorError as e:
            logger.error(f"ATTRIBUTION_STORE_UNAVAILABLE [member={invitee_id}, code={code}, error={e}]")
            return AttributionResult(AttributionOutcome.STORE_UNAVAILABLE, invitee_id, invite_code=code)

        if not written:
            logger.debug(f"ATTRIBUTION_IMMUTABLE [member={invitee_id}, attempted_inviter={inviter_id}]")
            return AttributionResult(AttributionOutcome.ALREADY_ATTRIBUTED, invitee_id)

        logger.info(
            f"ATTRIBUTION_RECORDED [member={invitee_id}, inviter={inviter_id}, code={code}, period={period}]"
        )
        return AttributionResult(
            AttributionOutcome.ATTRIBUTED,
            invitee_id,
            inviter_id=inviter_id,
            invite_code=code,
            period=period,
            ambiguous=diff.ambiguous,
        )

    # ------------------------------------------------------------------
    # Qualification
    # ------------------------------------------------------------------

    async def mark_qualified(self, invitee_id: str) -> bool:
        """
        Flag the invitee's attribution event as qualified.

        Returns:
            True if an event was flagged, False if the invitee has no event

        Raises:
            InvalidMemberIdError: empty id
            CollaboratorError: store unreachable
        """
        invitee_id = validate_member_id(invitee_id)
        flagged = await self._store("mark_event_qualified", self.store.mark_event_qualified(invitee_id))
        if flagged:
            logger.info(f"ATTRIBUTION_QUALIFIED [member={invitee_id}]")
        return flagged

    # ------------------------------------------------------------------
    # Personal invites
    # ------------------------------------------------------------------

    async def get_or_create_personal_invite(self, member_id: str, display_name: str = "") -> PersonalInvite:
        """
        Return the member's personal invite, creating it on first request.

        Raises:
            InviteCreationError: the invite could not be created or persisted
        """
        owner_id = validate_member_id(member_id)
        holder = self._issue_locks.get(owner_id)
        if holder is None:
            holder = self._issue_locks[owner_id] = _IssueLock()
        holder.users += 1
        try:
            async with holder.lock:
                return await self._issue(owner_id, display_name)
        finally:
            holder.users -= 1
            if holder.users == 0:
                del self._issue_locks[owner_id]

    async def _issue(self, owner_id: str, display_name: str) -> PersonalInvite:
        try:
            record = await self._store("find_member", self.store.find_member(owner_id))
        except CollaboratorError as e:
            raise InviteCreationError(str(e)) from e

        if record is not None and record.invite_url and record.invite_code:
            await self._reseed(owner_id)
            return PersonalInvite(code=record.invite_code, url=record.invite_url, created=False)

        label = f"invite:{display_name or owner_id}"[:32]
        try:
            code, url = await guarded_call(
                self.directory.create_invite(self.group_id, owner_id, label),
                timeout=self.timeout,
                component="directory",
                operation="create_invite",
            )
            created_at = datetime.now(timezone.utc)
            await self._store("save_invite", self.store.save_invite(InviteRecord(
                group_id=self.group_id,
                code=code,
                owner_id=owner_id,
                url=url,
                uses=0,
                created_at=created_at,
            )))
            await self._store("upsert_member", self.store.upsert_member(owner_id, {
                "display_name": display_name,
                "invite_code": code,
                "invite_url": url,
                "invite_created_at": created_at,
            }))
        except CollaboratorError as e:
            logger.error(f"INVITE_CREATE_FAILED [member={owner_id}, error={e}]")
            raise InviteCreationError(str(e)) from e

        logger.info(f"INVITE_CREATED [member={owner_id}, code={code}]")
        await self._reseed(owner_id)
        return PersonalInvite(code=code, url=url, created=True)

    async def _reseed(self, owner_id: str) -> None:
        try:
            await self.refresh_snapshot()
        except CollaboratorError as e:
            logger.warning(f"INVITE_SNAPSHOT_RESEED_FAILED [member={owner_id}, error={e}]")
