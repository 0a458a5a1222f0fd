"""
Database Migration System

Applies versioned SQL files from migrations/ (NNN_name.sql) in numeric order.
Each file runs in its own transaction and is recorded in schema_migrations,
so init_db() can call run_migrations_safe() on every start.
"""
import logging
import re
from pathlib import Path
from typing import List, Set, Tuple

import asyncpg

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"
_MIGRATION_NAME = re.compile(r"^(\d+)_(.+)\.sql$")


async def ensure_migrations_table(conn: asyncpg.Connection):
    await conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)


async def get_applied_migrations(conn: asyncpg.Connection) -> Set[str]:
    rows = await conn.fetch("SELECT version FROM schema_migrations")
    return {row["version"] for row in rows}


def get_migration_files(directory: Path = MIGRATIONS_DIR) -> List[Tuple[str, Path]]:
    """
    Migration files sorted by numeric version.

    Returns:
        [(version, path), ...]
    """
    if not directory.exists():
        logger.warning(f"Migrations directory not found: {directory}")
        return []

    found = []
    for file_path in directory.glob("*.sql"):
        match = _MIGRATION_NAME.match(file_path.name)
        if match:
            found.append((match.group(1), file_path))
        else:
            logger.warning(f"MIGRATION_NAME_IGNORED [file={file_path.name}]")

    found.sort(key=lambda item: int(item[0]))
    return found


def pending_migrations(applied: Set[str], files: List[Tuple[str, Path]]) -> List[Tuple[str, Path]]:
    return [(version, path) for version, path in files if version not in applied]


async def apply_migration(conn: asyncpg.Connection, version: str, migration_path: Path) -> None:
    """
    Execute one migration file and record its version.

    Must be called inside a transaction. SQL errors propagate.
    """
    sql_content = migration_path.read_text(encoding="utf-8")
    if not sql_content.strip():
        logger.warning(f"Migration {version} is empty, skipping")
        return

    logger.info(f"MIGRATION_APPLY [version={version}, file={migration_path.name}]")
    # asyncpg executes multi-statement SQL natively
    await conn.execute(sql_content)
    await conn.execute(
        "INSERT INTO schema_migrations (version) VALUES ($1) ON CONFLICT (version) DO NOTHING",
        version,
    )
    logger.info(f"MIGRATION_APPLIED [version={version}]")


async def run_migrations(conn: asyncpg.Connection) -> bool:
    """
    Apply all pending migrations.

    Returns:
        True if the schema is up to date, False if a migration failed
        (already applied migrations stay applied)
    """
    try:
        await ensure_migrations_table(conn)
        applied = await get_applied_migrations(conn)
        todo = pending_migrations(applied, get_migration_files())
        if not todo:
            logger.info(f"MIGRATIONS_UP_TO_DATE [applied={len(applied)}]")
            return True

        for version, migration_path in todo:
            try:
                async with conn.transaction():
                    await apply_migration(conn, version, migration_path)
            except Exception as e:
                logger.error(f"CRITICAL: Migration {version} ({migration_path.name}) FAILED: {e}")
                raise

        logger.info(f"MIGRATIONS_DONE [applied_now={len(todo)}]")
        return True

    except Exception as e:
        logger.exception(f"Error running migrations: {e}")
        return False


async def run_migrations_safe(pool: asyncpg.Pool) -> bool:
    async with pool.acquire() as conn:
        return await run_migrations(conn)
