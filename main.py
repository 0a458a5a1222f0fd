import asyncio
import hashlib
import logging
import os
import sys
import uuid

# Configure logging FIRST (before any other imports that may log)
# Routes INFO/WARNING → stdout, ERROR/CRITICAL → stderr for correct container classification
from app.core.logging_config import setup_logging
setup_logging()

from aiogram import Bot, Dispatcher
from aiogram.exceptions import TelegramConflictError
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import BotCommand
import config
import database
from app.adapters.record_store import PostgresRecordStore
from app.adapters.telegram import (
    TelegramAccessGranter,
    TelegramMembershipDirectory,
    TelegramNotificationChannel,
    TelegramPublicationSink,
)
from app.core.exceptions import CollaboratorError
from app.core.feature_flags import get_feature_flags
from app.core.settings import load_engine_settings
from app.core.structured_logger import log_event
from app.core.telegram_error_middleware import TelegramErrorBoundaryMiddleware
from app.engine import InviteEngine, build_engine
from app.handlers import router as root_router
from app.workers.schedules import build_tickers

# ====================================================================================
# LOGGING CONTRACT
# ====================================================================================
# Standard log fields: component, operation, correlation_id, outcome,
# duration_ms, reason.
# - Handlers: correlation_id per update, EXIT logged with outcome
# - Workers: ITERATION_START / ITERATION_END per tick
# - Services: TAG [key=value] lines, no per-item spam inside loops
#
# SECURITY: no secrets, no full payloads
# ====================================================================================

logger = logging.getLogger(__name__)


INSTANCE_LOCK_FILE = "/tmp/invite_engine_bot.lock"
DB_RETRY_INTERVAL_SECONDS = 30


async def seed_invite_snapshot(engine: InviteEngine) -> None:
    """Load the first snapshot baseline so the first join can be diffed."""
    try:
        codes = await engine.invites.refresh_snapshot()
        logger.info(f"INVITE_SNAPSHOT_SEEDED [group={engine.group_id}, codes={codes}]")
    except CollaboratorError as e:
        logger.warning(f"INVITE_SNAPSHOT_SEED_FAILED [group={engine.group_id}, error={e}]")


async def main():
    # Single instance guard: prevent multiple bot processes
    if os.path.exists(INSTANCE_LOCK_FILE):
        logger.critical("Another instance detected (lock file exists). Exiting.")
        print("Another instance detected. Exiting.")
        sys.exit(1)
    try:
        with open(INSTANCE_LOCK_FILE, "w") as f:
            f.write(str(os.getpid()))
    except OSError as e:
        logger.warning("Could not create instance lock file: %s", e)

    instance_id = os.getenv("POLLING_INSTANCE_ID", str(uuid.uuid4()))
    logger.info("BOT_INSTANCE_STARTED pid=%s instance_id=%s", os.getpid(), instance_id)
    bot_token_hash = hashlib.sha256(config.BOT_TOKEN.encode()).hexdigest()[:8]
    logger.info("BOT_TOKEN_HASH=%s (first 8 chars of sha256)", bot_token_hash)
    logger.info(f"Starting bot in {config.APP_ENV.upper()} environment")

    flags = get_feature_flags()
    settings = load_engine_settings()
    logger.info(
        f"ENGINE_SETTINGS [timezone={settings.reference_timezone}, top_n={settings.top_n}, "
        f"rollover_interval={settings.rollover_interval_seconds}s, "
        f"grant_interval={settings.access_grant_interval_seconds}s, "
        f"payout={settings.payout_currency}{settings.payout_amount}]"
    )

    bot = Bot(token=config.BOT_TOKEN)
    dp = Dispatcher(storage=MemoryStorage())
    dp.update.middleware(TelegramErrorBoundaryMiddleware())
    dp.include_router(root_router)

    directory = TelegramMembershipDirectory(bot)
    engine = build_engine(
        directory=directory,
        store=PostgresRecordStore(),
        channel=TelegramNotificationChannel(bot),
        sink=TelegramPublicationSink(
            bot,
            leaderboard_chat_id=config.LEADERBOARD_CHAT_ID,
            winners_chat_id=config.WINNERS_CHAT_ID,
        ),
        granter=TelegramAccessGranter(bot),
        group_id=str(config.COMMUNITY_CHAT_ID),
        settings=settings,
    )
    # Injected into handlers by name
    dp["engine"] = engine
    dp["directory"] = directory

    # ====================================================================================
    # SAFE STARTUP GUARD: the bot always starts, even when the DB is down.
    # Without a DB it runs degraded and background schedules wait for recovery.
    # ====================================================================================
    try:
        success = await database.init_db()
        if success:
            logger.info("✅ Database initialized")
        else:
            logger.error("❌ DB INIT FAILED — RUNNING IN DEGRADED MODE")
    except Exception as e:
        logger.exception("❌ DB INIT FAILED — RUNNING IN DEGRADED MODE")
        logger.error(f"Database initialization error: {type(e).__name__}: {e}")
        database.DB_READY = False

    # Centralized lists for graceful shutdown
    background_tasks = []
    tickers = []

    async def start_schedules():
        await seed_invite_snapshot(engine)
        for ticker in build_tickers(engine, flags):
            tickers.append(ticker)
            background_tasks.append(asyncio.create_task(ticker.run(), name=f"{ticker.name}_ticker"))
            logger.info(f"Schedule started [worker={ticker.name}]")

    async def retry_db_init():
        """Retry DB initialization until it succeeds, then start the schedules."""
        logger.info(f"Starting DB initialization retry task (every {DB_RETRY_INTERVAL_SECONDS} seconds)")
        while True:
            try:
                await asyncio.sleep(DB_RETRY_INTERVAL_SECONDS)
                if not database.DB_READY:
                    logger.info("🔄 Retrying database initialization...")
                    if not await database.init_db():
                        logger.warning("Database initialization retry failed, will retry later")
                        continue
                logger.info("✅ DATABASE RECOVERY SUCCESSFUL — RESUMING FULL FUNCTIONALITY")
                await start_schedules()
                break
            except asyncio.CancelledError:
                logger.info("DB retry task cancelled")
                break
            except Exception as e:
                logger.warning(f"Database initialization retry error: {type(e).__name__}: {e}")
                logger.debug("Full retry error details:", exc_info=True)
        logger.info("DB retry task finished")

    if database.DB_READY:
        await start_schedules()
        logger.info("✅ Bot started in full mode")
    else:
        background_tasks.append(asyncio.create_task(retry_db_init(), name="db_retry"))
        logger.warning("⚠️ Bot started in DEGRADED mode (DB unavailable)")

    try:
        await bot.set_my_commands([
            BotCommand(command="invite", description="My personal invite link"),
            BotCommand(command="mystats", description="My invite stats"),
            BotCommand(command="apply", description="Apply for access"),
        ])
        logger.info("Bot commands registered")
    except Exception as e:
        logger.warning(f"Failed to register bot commands: {e}")

    # chat_member updates are only delivered when requested explicitly
    used_updates = sorted(set(dp.resolve_used_update_types()) | {"message", "chat_member"})
    logger.info(f"DISPATCHER_READY updates={used_updates}")

    try:
        while True:
            try:
                await bot.delete_webhook(drop_pending_updates=False)
                logger.info("POLLING_START pid=%s instance_id=%s", os.getpid(), instance_id)
                log_event(
                    logger,
                    component="polling",
                    operation="polling_start",
                    outcome="success",
                    correlation_id=instance_id,
                )
                await dp.start_polling(
                    bot,
                    allowed_updates=used_updates,
                    polling_timeout=30,
                    handle_signals=False,
                )
                break
            except asyncio.CancelledError:
                logger.info("POLLING_STOP reason=cancelled")
                log_event(logger, component="polling", operation="polling_cancelled", outcome="cancelled")
                break
            except TelegramConflictError:
                log_event(
                    logger,
                    component="polling",
                    operation="conflict",
                    outcome="failed",
                    reason="another bot instance is running",
                    level="critical",
                )
                logger.critical("polling conflict traceback", exc_info=True)
                raise SystemExit(1)
            except Exception as e:
                logger.error(
                    "POLLING_EXCEPTION type=%s reason=%s instance_id=%s",
                    type(e).__name__, str(e)[:200], instance_id,
                    exc_info=True,
                )
                log_event(
                    logger,
                    component="polling",
                    operation="polling_crash",
                    outcome="failed",
                    reason=str(e)[:200],
                    level="error",
                )
                logger.info("Restarting polling in 5 seconds...")
                await asyncio.sleep(5)
    finally:
        log_event(logger, component="shutdown", operation="shutdown_start", outcome="success")

        # Tickers finish their in-flight tick before exiting
        for ticker in tickers:
            ticker.stop()
        for task in background_tasks:
            if task.get_name() == "db_retry" and not task.done():
                task.cancel()

        for task in background_tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Error during shutdown of task {task.get_name()}: {e}")

        log_event(
            logger,
            component="shutdown",
            operation="shutdown_tasks_stopped",
            outcome="success",
            reason=f"count={len(background_tasks)}",
        )

        try:
            await database.close_pool()
        except Exception as e:
            logger.error(f"Error closing database pool: {e}")

        try:
            await bot.session.close()
            logger.info("Bot session closed")
        except Exception as e:
            logger.debug(f"Error closing bot session: {e}")

        log_event(logger, component="shutdown", operation="shutdown_completed", outcome="success")

        try:
            if os.path.exists(INSTANCE_LOCK_FILE):
                os.remove(INSTANCE_LOCK_FILE)
                logger.info("Instance lock file removed")
        except OSError as e:
            logger.warning("Could not remove instance lock file: %s", e)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped")
