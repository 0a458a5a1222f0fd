"""
RecordStore backed by the asyncpg queries in database.py.

Rows come back as dicts; this adapter turns them into the domain records.
"""
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

import database
from app.services.models import (
    ApplicationStatus,
    AttributionEvent,
    InviteRecord,
    MemberRecord,
    WaitlistEntry,
)


def _member(row: Optional[Dict[str, Any]]) -> Optional[MemberRecord]:
    if row is None:
        return None
    return MemberRecord(
        member_id=row["member_id"],
        display_name=row.get("display_name") or "",
        invite_code=row.get("invite_code"),
        invite_url=row.get("invite_url"),
        invite_created_at=row.get("invite_created_at"),
        inviter_id=row.get("inviter_id"),
        invite_code_used=row.get("invite_code_used"),
        joined_at=row.get("joined_at"),
        last_notified_period=row.get("last_notified_period"),
    )


def _event(row: Dict[str, Any]) -> AttributionEvent:
    return AttributionEvent(
        invitee_id=row["invitee_id"],
        inviter_id=row["inviter_id"],
        invite_code=row["invite_code"],
        period=row["period"],
        joined_at=row["joined_at"],
        qualified=bool(row.get("qualified")),
    )


def _application(row: Optional[Dict[str, Any]]) -> Optional[WaitlistEntry]:
    if row is None:
        return None
    return WaitlistEntry(
        member_id=row["member_id"],
        display_name=row.get("display_name") or "",
        status=ApplicationStatus(row.get("status") or "pending"),
        answers={
            "country": row.get("country") or "",
            "website": row.get("website") or "",
            "note": row.get("note") or "",
        },
        applied_at=row.get("applied_at"),
        granted=bool(row.get("granted")),
        granted_at=row.get("granted_at"),
    )


class PostgresRecordStore:
    async def find_member(self, member_id: str) -> Optional[MemberRecord]:
        return _member(await database.get_member(member_id))

    async def upsert_member(self, member_id: str, fields: Mapping[str, Any]) -> None:
        await database.upsert_member(member_id, fields)

    async def record_attribution(self, event: AttributionEvent) -> bool:
        return await database.record_attribution(
            event.invitee_id,
            event.inviter_id,
            event.invite_code,
            event.period,
            event.joined_at,
        )

    async def query_by_period(self, period: str) -> List[AttributionEvent]:
        return [_event(row) for row in await database.get_events_by_period(period)]

    async def query_by_inviter(self, inviter_id: str) -> List[AttributionEvent]:
        return [_event(row) for row in await database.get_events_by_inviter(inviter_id)]

    async def mark_event_qualified(self, invitee_id: str) -> bool:
        return await database.mark_event_qualified(invitee_id)

    async def find_invite(self, group_id: str, code: str) -> Optional[InviteRecord]:
        row = await database.get_invite(group_id, code)
        if row is None:
            return None
        return InviteRecord(
            group_id=row["group_id"],
            code=row["code"],
            owner_id=row["owner_id"],
            url=row.get("url") or "",
            uses=row.get("uses") or 0,
            created_at=row.get("created_at"),
        )

    async def save_invite(self, invite: InviteRecord) -> None:
        await database.save_invite(
            invite.group_id,
            invite.code,
            invite.owner_id,
            invite.url,
            invite.created_at,
        )

    async def query_approved_ungranted(self, limit: int) -> List[WaitlistEntry]:
        return [_application(row) for row in await database.get_approved_ungranted(limit)]

    async def mark_granted(self, member_id: str, granted_at: datetime) -> None:
        await database.mark_granted(member_id, granted_at)

    async def find_application(self, member_id: str) -> Optional[WaitlistEntry]:
        return _application(await database.get_application(member_id))

    async def save_application(self, entry: WaitlistEntry) -> None:
        await database.save_application(
            entry.member_id,
            entry.display_name,
            entry.answers.get("country", ""),
            entry.answers.get("website", ""),
            entry.answers.get("note", ""),
            entry.status.value,
            entry.applied_at,
            entry.granted,
            entry.granted_at,
        )

    async def set_application_status(self, member_id: str, status: ApplicationStatus) -> bool:
        return await database.set_application_status(member_id, status.value)
