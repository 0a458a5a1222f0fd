"""
User command: /mystats
"""
import logging

from aiogram import Router
from aiogram.filters import Command
from aiogram.types import Message

from app.adapters.rendering import render_member_stats
from app.core.exceptions import CollaboratorError
from app.engine import InviteEngine
from app.handlers.common.guards import ensure_db_ready_message, is_private

user_router = Router()
logger = logging.getLogger(__name__)


@user_router.message(Command("mystats"))
async def cmd_mystats(message: Message, engine: InviteEngine):
    if not is_private(message):
        return
    if not await ensure_db_ready_message(message):
        return

    try:
        stats = await engine.leaderboards.member_stats(str(message.from_user.id))
    except CollaboratorError as e:
        logger.error(f"MYSTATS_FAILED [user={message.from_user.id}, error={e}]")
        await message.answer("⚠️ Could not load your stats. Please try again in a minute.")
        return

    await message.answer(render_member_stats(stats), parse_mode="HTML")
