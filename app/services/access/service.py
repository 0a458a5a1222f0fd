"""
Access Service - waitlist and approve-and-grant-once

Lifecycle of a waitlist entry:
    submit_application → pending
    approve (operator)  → approved
    poll_once           → grant side effect, then granted=True

The granted flag is the idempotency key: an entry is marked only after a
successful grant, so a failed or skipped grant is retried on the next poll.
An applicant who re-applies after being granted keeps the granted state.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional

from app.core.exceptions import CollaboratorError
from app.services.access.exceptions import ApplicationNotFoundError
from app.services.invites.service import validate_member_id
from app.services.models import ApplicationStatus, GrantResult, WaitlistEntry
from app.services.ports import AccessGranter, RecordStore
from app.utils.external_call import guarded_call

logger = logging.getLogger(__name__)

ANSWER_FIELDS = ("country", "website", "note")
MAX_ANSWER_LENGTH = 500
# Rows read per poll; non-members in it do not use up the grant batch
MIN_SCAN_WINDOW = 200


@dataclass
class GrantSummary:
    granted: List[str] = field(default_factory=list)
    not_member: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.granted) + len(self.not_member) + len(self.failed)

    @property
    def attempted(self) -> int:
        return len(self.granted) + len(self.failed)


def normalize_answers(answers: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """Keep known answer fields, stripped and length-capped."""
    answers = answers or {}
    return {
        key: str(answers.get(key) or "").strip()[:MAX_ANSWER_LENGTH]
        for key in ANSWER_FIELDS
    }


class AccessService:
    def __init__(
        self,
        store: RecordStore,
        granter: AccessGranter,
        *,
        group_id: str,
        batch_size: int = 25,
        timeout: float = 10.0,
    ):
        self.store = store
        self.granter = granter
        self.group_id = group_id
        self.batch_size = batch_size
        self.scan_window = max(MIN_SCAN_WINDOW, batch_size * 8)
        self.timeout = timeout

    async def _store(self, operation: str, awaitable):
        return await guarded_call(awaitable, timeout=self.timeout, component="store", operation=operation)

    async def submit_application(
        self,
        member_id: str,
        display_name: str,
        answers: Optional[Mapping[str, str]] = None,
        applied_at: Optional[datetime] = None,
    ) -> WaitlistEntry:
        """
        Create or refresh a waitlist entry (one per member).

        Raises:
            CollaboratorError: store unreachable
        """
        member_id = validate_member_id(member_id)
        existing = await self._store("find_application", self.store.find_application(member_id))

        entry = WaitlistEntry(
            member_id=member_id,
            display_name=display_name,
            status=ApplicationStatus.PENDING,
            answers=normalize_answers(answers),
            applied_at=applied_at or datetime.now(timezone.utc),
        )
        if existing is not None and existing.granted:
            entry.status = existing.status
            entry.granted = True
            entry.granted_at = existing.granted_at

        await self._store("save_application", self.store.save_application(entry))
        logger.info(
            f"WAITLIST_APPLICATION_SAVED [member={member_id}, "
            f"updated={existing is not None}, granted={entry.granted}]"
        )
        return entry

    async def approve(self, member_id: str) -> WaitlistEntry:
        """
        Mark an application approved; the poller grants access afterwards.

        Raises:
            InvalidMemberIdError: empty id
            ApplicationNotFoundError: member never applied
            CollaboratorError: store unreachable
        """
        member_id = validate_member_id(member_id)
        updated = await self._store(
            "set_application_status",
            self.store.set_application_status(member_id, ApplicationStatus.APPROVED),
        )
        if not updated:
            raise ApplicationNotFoundError(f"No application for member {member_id}")
        logger.info(f"WAITLIST_APPROVED [member={member_id}]")
        entry = await self._store("find_application", self.store.find_application(member_id))
        return entry

    async def on_member_joined(self, member_id: str) -> bool:
        """
        Put a joining member who has not been granted access into the pending state.

        Returns:
            True if the member was restricted
        """
        member_id = validate_member_id(member_id)
        try:
            entry = await self._store("find_application", self.store.find_application(member_id))
            if entry is not None and entry.granted:
                return False
            restricted = await guarded_call(
                self.granter.restrict(self.group_id, member_id),
                timeout=self.timeout, component="granter", operation="restrict",
            )
        except CollaboratorError as e:
            logger.error(f"ACCESS_RESTRICT_FAILED [member={member_id}, error={e}]")
            return False

        if restricted:
            logger.info(f"ACCESS_PENDING [member={member_id}]")
        return restricted

    async def poll_once(self) -> GrantSummary:
        """
        Grant access to approved, not-yet-granted applicants.

        Reads up to `scan_window` entries and stops after `batch_size` grant
        attempts. Applicants who have not joined yet are skipped without
        counting, so they never hold back the ones behind them. One failing
        entry never prevents the others from being processed.
        """
        summary = GrantSummary()
        try:
            entries = await self._store(
                "query_approved_ungranted",
                self.store.query_approved_ungranted(self.scan_window),
            )
        except CollaboratorError as e:
            logger.error(f"ACCESS_POLL_QUERY_FAILED [error={e}]")
            return summary

        for entry in entries:
            if summary.attempted >= self.batch_size:
                break
            member_id = entry.member_id
            try:
                result = await guarded_call(
                    self.granter.grant(self.group_id, member_id),
                    timeout=self.timeout, component="granter", operation="grant",
                )
            except CollaboratorError as e:
                logger.error(f"ACCESS_GRANT_FAILED [member={member_id}, error={e}]")
                summary.failed.append(member_id)
                continue

            if result == GrantResult.NOT_A_MEMBER:
                logger.debug(f"ACCESS_GRANT_SKIPPED_NOT_MEMBER [member={member_id}]")
                summary.not_member.append(member_id)
                continue
            if result != GrantResult.GRANTED:
                logger.warning(f"ACCESS_GRANT_FAILED [member={member_id}, result={result.value}]")
                summary.failed.append(member_id)
                continue

            try:
                await self._store(
                    "mark_granted",
                    self.store.mark_granted(member_id, datetime.now(timezone.utc)),
                )
            except CollaboratorError as e:
                # Left unmarked; the next poll grants again
                logger.error(f"ACCESS_MARK_GRANTED_FAILED [member={member_id}, error={e}]")
                summary.failed.append(member_id)
                continue
            logger.info(f"ACCESS_GRANTED [member={member_id}]")
            summary.granted.append(member_id)

        if summary.processed:
            logger.info(
                f"ACCESS_POLL_DONE [granted={len(summary.granted)}, "
                f"not_member={len(summary.not_member)}, failed={len(summary.failed)}]"
            )
        return summary
