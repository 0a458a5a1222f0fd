import asyncio
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import asyncpg

import config
from app.utils.retry import retry_async

logger = logging.getLogger(__name__)

# ====================================================================================
# SAFE STARTUP GUARD: database readiness flag
# ====================================================================================
# False until init_db() has created the pool and applied migrations.
# While False the bot runs in degraded mode: handlers reply with an error and
# workers are not started.
# ====================================================================================
DB_READY: bool = False


# ====================================================================================
# UTC HELPERS: DB boundary. TIMESTAMP WITHOUT TIME ZONE holds naive UTC
# ====================================================================================
# All datetimes passed TO asyncpg go through _to_db_utc.
# All datetimes read FROM the DB go through _from_db_utc.
# ====================================================================================

def _to_db_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Aware datetime → naive UTC. Naive input is taken as UTC already."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def _from_db_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Naive DB datetime → aware UTC."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc)
    return dt.replace(tzinfo=timezone.utc)


_TIMESTAMP_COLUMNS = ("invite_created_at", "joined_at", "created_at", "updated_at",
                      "applied_at", "granted_at", "qualified_at")


def _row_to_dict(row: Optional[asyncpg.Record]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    data = dict(row)
    for column in _TIMESTAMP_COLUMNS:
        if column in data:
            data[column] = _from_db_utc(data[column])
    return data


DATABASE_URL = config.DATABASE_URL

# ====================================================================================
# DB POOL CONFIG: ENV-overridable
# ====================================================================================
def _get_pool_config() -> dict:
    """Build asyncpg.create_pool kwargs."""
    return {
        "min_size": int(os.getenv("DB_POOL_MIN_SIZE", "1")),
        "max_size": int(os.getenv("DB_POOL_MAX_SIZE", "5")),
        "max_inactive_connection_lifetime": 300,
        "timeout": int(os.getenv("DB_POOL_ACQUIRE_TIMEOUT", "10")),
        "command_timeout": int(os.getenv("DB_POOL_COMMAND_TIMEOUT", "30")),
    }


if not DATABASE_URL:
    if config.APP_ENV == "prod":
        print(f"ERROR: {config.APP_ENV.upper()}_DATABASE_URL is REQUIRED in PROD!", file=sys.stderr)
        sys.exit(1)
    else:
        logger.warning(f"{config.APP_ENV.upper()}_DATABASE_URL is not set - running in degraded mode")

_pool: Optional[asyncpg.Pool] = None


async def get_pool() -> asyncpg.Pool:
    """
    Return the connection pool, creating it on first use.

    Pool creation is retried on transient Postgres errors only.

    Raises:
        RuntimeError: DATABASE_URL is not configured
    """
    global _pool
    if not DATABASE_URL:
        raise RuntimeError(f"{config.APP_ENV.upper()}_DATABASE_URL is not configured")
    if _pool is None:
        pool_config = _get_pool_config()
        _pool = await retry_async(
            lambda: asyncpg.create_pool(DATABASE_URL, **pool_config),
            retries=1,
            base_delay=0.5,
            max_delay=5.0,
            retry_on=(asyncpg.PostgresError, OSError),
        )
        logger.info(
            "DB_POOL_CONFIG min=%s max=%s acquire_timeout=%s command_timeout=%s",
            pool_config["min_size"], pool_config["max_size"],
            pool_config["timeout"], pool_config["command_timeout"],
        )
    return _pool


async def close_pool():
    global _pool, DB_READY
    if _pool:
        await _pool.close()
        _pool = None
        DB_READY = False
        logger.info("Database connection pool closed")


def ensure_db_ready() -> bool:
    """
    Usage:
        if not ensure_db_ready():
            return  # operation rejected, degraded mode
    """
    if not DB_READY:
        logger.warning("Database not ready - operation rejected (degraded mode)")
        return False
    return True


async def init_db() -> bool:
    """
    Create the pool and apply migrations. Idempotent.

    Returns:
        True when the database is ready, False otherwise
    """
    global DB_READY

    if DB_READY:
        logger.info("Database already initialized (DB_READY=True), skipping init")
        return True

    if not DATABASE_URL:
        logger.error("DATABASE_URL not configured")
        return False

    try:
        pool = await get_pool()
        async with pool.acquire() as conn:
            await conn.execute("SELECT 1")
        logger.info("DB connectivity probe successful")
    except Exception as e:
        logger.error(f"DB connectivity probe failed: {e}")
        return False

    await asyncio.sleep(0)

    import migrations
    if not await migrations.run_migrations_safe(pool):
        logger.error("Migration execution failed")
        return False

    DB_READY = True
    logger.info("DB_READY=True")
    return True


# ====================================================================================
# MEMBERS
# ====================================================================================

# Columns upsert_member may write. inviter_id / invite_code_used are written
# only by record_attribution.
ALLOWED_MEMBER_FIELDS = {
    "display_name",
    "invite_code",
    "invite_url",
    "invite_created_at",
    "joined_at",
    "last_notified_period",
}

# Set at most once: a stored value is never replaced
_WRITE_ONCE_MEMBER_FIELDS = {"invite_code", "invite_url", "invite_created_at"}


async def get_member(member_id: str) -> Optional[Dict[str, Any]]:
    pool = await get_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow("SELECT * FROM members WHERE member_id = $1", member_id)
        return _row_to_dict(row)


async def upsert_member(member_id: str, fields: Mapping[str, Any]) -> None:
    """
    Create the member row if missing and write the given fields.

    Write-once fields keep their stored value; an empty display name never
    replaces a stored one.

    Raises:
        ValueError: a field outside ALLOWED_MEMBER_FIELDS
    """
    unknown = set(fields) - ALLOWED_MEMBER_FIELDS
    if unknown:
        raise ValueError(f"upsert_member: fields not allowed: {sorted(unknown)}")

    columns = sorted(fields)
    values = [
        _to_db_utc(fields[c]) if isinstance(fields[c], datetime) else fields[c]
        for c in columns
    ]
    insert_columns = ", ".join(["member_id"] + columns)
    placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 2))

    assignments = ["updated_at = (NOW() AT TIME ZONE 'UTC')"]
    for column in columns:
        if column in _WRITE_ONCE_MEMBER_FIELDS:
            assignments.append(f"{column} = COALESCE(members.{column}, EXCLUDED.{column})")
        elif column == "display_name":
            assignments.append(
                "display_name = CASE WHEN EXCLUDED.display_name <> '' "
                "THEN EXCLUDED.display_name ELSE members.display_name END"
            )
        else:
            assignments.append(f"{column} = EXCLUDED.{column}")

    sql = (
        f"INSERT INTO members ({insert_columns}) VALUES ({placeholders}) "
        f"ON CONFLICT (member_id) DO UPDATE SET {', '.join(assignments)}"
    )
    pool = await get_pool()
    async with pool.acquire() as conn:
        await conn.execute(sql, member_id, *values)


# ====================================================================================
# ATTRIBUTION (inviter write + event, one transaction)
# ====================================================================================

async def record_attribution(
    invitee_id: str,
    inviter_id: str,
    invite_code: str,
    period: str,
    joined_at: datetime,
) -> bool:
    """
    Record the inviter ONLY if none is recorded (immutable once set) and append
    the invitee's attribution event in the same transaction.

    Returns:
        True if this call wrote the inviter. The event insert is
        ON CONFLICT DO NOTHING, so an invitee never gets a second event.
    """
    pool = await get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            result = await conn.execute(
                """UPDATE members
                   SET inviter_id = $2, invite_code_used = $3, updated_at = (NOW() AT TIME ZONE 'UTC')
                   WHERE member_id = $1 AND inviter_id IS NULL""",
                invitee_id, inviter_id, invite_code,
            )
            if result != "UPDATE 1":
                return False
            inserted = await conn.execute(
                """INSERT INTO attribution_events (invitee_id, inviter_id, invite_code, period, joined_at)
                   VALUES ($1, $2, $3, $4, $5)
                   ON CONFLICT (invitee_id) DO NOTHING""",
                invitee_id, inviter_id, invite_code, period, _to_db_utc(joined_at),
            )
            if inserted != "INSERT 0 1":
                logger.warning(f"ATTRIBUTION_EVENT_EXISTS [member={invitee_id}, inviter={inviter_id}]")
            return True


async def get_events_by_period(period: str) -> List[Dict[str, Any]]:
    pool = await get_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            "SELECT * FROM attribution_events WHERE period = $1 ORDER BY joined_at, id",
            period,
        )
        return [_row_to_dict(row) for row in rows]


async def get_events_by_inviter(inviter_id: str) -> List[Dict[str, Any]]:
    pool = await get_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            "SELECT * FROM attribution_events WHERE inviter_id = $1 ORDER BY joined_at, id",
            inviter_id,
        )
        return [_row_to_dict(row) for row in rows]


async def mark_event_qualified(invitee_id: str) -> bool:
    pool = await get_pool()
    async with pool.acquire() as conn:
        result = await conn.execute(
            """UPDATE attribution_events
               SET qualified = TRUE, qualified_at = COALESCE(qualified_at, (NOW() AT TIME ZONE 'UTC'))
               WHERE invitee_id = $1""",
            invitee_id,
        )
        return result == "UPDATE 1"


# ====================================================================================
# INVITES
# ====================================================================================

async def get_invite(group_id: str, code: str) -> Optional[Dict[str, Any]]:
    pool = await get_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            """SELECT i.*, COALESCE(u.uses, 0) AS uses
               FROM invites i
               LEFT JOIN invite_uses u ON u.group_id = i.group_id AND u.code = i.code
               WHERE i.group_id = $1 AND i.code = $2""",
            group_id, code,
        )
        return _row_to_dict(row)


async def save_invite(group_id: str, code: str, owner_id: str, url: str, created_at: datetime) -> None:
    """
    Store a personal invite and seed its use counter at 0, so the code is in
    the next snapshot before its first join.
    """
    pool = await get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            await conn.execute(
                """INSERT INTO invites (group_id, code, owner_id, url, created_at)
                   VALUES ($1, $2, $3, $4, $5)
                   ON CONFLICT (group_id, code) DO NOTHING""",
                group_id, code, owner_id, url, _to_db_utc(created_at),
            )
            await conn.execute(
                """INSERT INTO invite_uses (group_id, code, uses)
                   VALUES ($1, $2, 0)
                   ON CONFLICT (group_id, code) DO NOTHING""",
                group_id, code,
            )


async def increment_invite_use(group_id: str, code: str) -> int:
    """Count one join through an invite link. Returns the new count."""
    pool = await get_pool()
    async with pool.acquire() as conn:
        return await conn.fetchval(
            """INSERT INTO invite_uses (group_id, code, uses)
               VALUES ($1, $2, 1)
               ON CONFLICT (group_id, code) DO UPDATE
               SET uses = invite_uses.uses + 1, updated_at = (NOW() AT TIME ZONE 'UTC')
               RETURNING uses""",
            group_id, code,
        )


async def get_invite_use_counts(group_id: str) -> Dict[str, int]:
    pool = await get_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            "SELECT code, uses FROM invite_uses WHERE group_id = $1",
            group_id,
        )
        return {row["code"]: row["uses"] for row in rows}


# ====================================================================================
# WAITLIST
# ====================================================================================

async def get_application(member_id: str) -> Optional[Dict[str, Any]]:
    pool = await get_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow("SELECT * FROM waitlist WHERE member_id = $1", member_id)
        return _row_to_dict(row)


async def save_application(
    member_id: str,
    display_name: str,
    country: str,
    website: str,
    note: str,
    status: str,
    applied_at: datetime,
    granted: bool,
    granted_at: Optional[datetime],
) -> None:
    pool = await get_pool()
    async with pool.acquire() as conn:
        await conn.execute(
            """INSERT INTO waitlist
                   (member_id, display_name, country, website, note, status, applied_at, granted, granted_at)
               VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
               ON CONFLICT (member_id) DO UPDATE SET
                   display_name = EXCLUDED.display_name,
                   country = EXCLUDED.country,
                   website = EXCLUDED.website,
                   note = EXCLUDED.note,
                   status = EXCLUDED.status,
                   applied_at = EXCLUDED.applied_at,
                   granted = EXCLUDED.granted,
                   granted_at = EXCLUDED.granted_at""",
            member_id, display_name, country, website, note, status,
            _to_db_utc(applied_at), granted, _to_db_utc(granted_at),
        )


async def set_application_status(member_id: str, status: str) -> bool:
    pool = await get_pool()
    async with pool.acquire() as conn:
        result = await conn.execute(
            "UPDATE waitlist SET status = $2 WHERE member_id = $1",
            member_id, status,
        )
        return result == "UPDATE 1"


async def get_approved_ungranted(limit: int) -> List[Dict[str, Any]]:
    pool = await get_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            """SELECT * FROM waitlist
               WHERE status = 'approved' AND granted = FALSE
               ORDER BY applied_at, member_id
               LIMIT $1""",
            limit,
        )
        return [_row_to_dict(row) for row in rows]


async def mark_granted(member_id: str, granted_at: datetime) -> None:
    pool = await get_pool()
    async with pool.acquire() as conn:
        await conn.execute(
            "UPDATE waitlist SET granted = TRUE, granted_at = $2 WHERE member_id = $1 AND granted = FALSE",
            member_id, _to_db_utc(granted_at),
        )


# ====================================================================================
# PUBLICATIONS
# ====================================================================================

async def get_publication(title: str) -> Optional[Dict[str, Any]]:
    pool = await get_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow("SELECT * FROM publications WHERE title = $1", title)
        return _row_to_dict(row)


async def save_publication(title: str, chat_id: int, message_id: int) -> None:
    pool = await get_pool()
    async with pool.acquire() as conn:
        await conn.execute(
            """INSERT INTO publications (title, chat_id, message_id)
               VALUES ($1, $2, $3)
               ON CONFLICT (title) DO UPDATE SET
                   chat_id = EXCLUDED.chat_id,
                   message_id = EXCLUDED.message_id,
                   updated_at = (NOW() AT TIME ZONE 'UTC')""",
            title, chat_id, message_id,
        )
