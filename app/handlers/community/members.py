"""
Community chat_member updates: join attribution and pending state.
"""
import asyncio
import logging
import time
from datetime import timezone

from aiogram import Router
from aiogram.filters import JOIN_TRANSITION, ChatMemberUpdatedFilter
from aiogram.types import ChatMemberUpdated

import database
from app.adapters.telegram import TelegramMembershipDirectory
from app.core.feature_flags import get_feature_flags
from app.engine import InviteEngine
from app.handlers.common.utils import resolve_display_name
from app.utils.logging_helpers import (
    classify_error,
    generate_correlation_id,
    log_handler_exit,
    set_correlation_id,
)

community_router = Router()
logger = logging.getLogger(__name__)

# Counter increment and snapshot diff of one join must not interleave with another join
_join_lock = asyncio.Lock()


async def _record_invite_use(directory: TelegramMembershipDirectory, group_id: str, member_id: str, url: str) -> None:
    try:
        uses = await asyncio.wait_for(directory.record_invite_use(group_id, url), timeout=10)
        logger.debug(f"INVITE_USE_RECORDED [member={member_id}, uses={uses}]")
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.error(f"INVITE_USE_RECORD_FAILED [member={member_id}, error={type(e).__name__}: {str(e)[:100]}]")


@community_router.chat_member(ChatMemberUpdatedFilter(member_status_changed=JOIN_TRANSITION))
async def on_member_joined(event: ChatMemberUpdated, engine: InviteEngine, directory: TelegramMembershipDirectory):
    if str(event.chat.id) != engine.group_id:
        return

    user = event.new_chat_member.user
    if user.is_bot:
        return

    set_correlation_id(generate_correlation_id())
    started = time.monotonic()

    if not database.DB_READY:
        logger.warning(f"MEMBER_JOIN_SKIPPED_DB_NOT_READY [member={user.id}]")
        log_handler_exit("on_member_joined", "degraded", telegram_id=user.id)
        return

    member_id = str(user.id)
    flags = get_feature_flags()

    outcome = "success"
    error_type = None
    try:
        if flags.invite_tracking_enabled:
            async with _join_lock:
                if event.invite_link is not None:
                    await _record_invite_use(directory, engine.group_id, member_id, event.invite_link.invite_link)
                result = await engine.invites.handle_member_join(
                    member_id,
                    resolve_display_name(user),
                    joined_at=event.date.astimezone(timezone.utc) if event.date else None,
                )
            logger.info(f"MEMBER_JOIN_ATTRIBUTION [member={member_id}, outcome={result.outcome.value}]")

        if flags.access_grants_enabled:
            await engine.access.on_member_joined(member_id)
    except Exception as e:
        outcome = "failed"
        error_type = classify_error(e)
        logger.exception(f"MEMBER_JOIN_FAILED [member={member_id}]")
    finally:
        log_handler_exit(
            "on_member_joined",
            outcome,
            telegram_id=user.id,
            error_type=error_type,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
