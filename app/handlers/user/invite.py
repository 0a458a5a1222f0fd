"""
User command: /invite
"""
import logging

from aiogram import Router
from aiogram.filters import Command
from aiogram.types import Message

from app.core.feature_flags import get_feature_flags
from app.engine import InviteEngine
from app.handlers.common.guards import ensure_db_ready_message, is_private
from app.handlers.common.utils import resolve_display_name
from app.services.invites import InviteCreationError

user_router = Router()
logger = logging.getLogger(__name__)


@user_router.message(Command("invite"))
async def cmd_invite(message: Message, engine: InviteEngine):
    if not is_private(message):
        return
    if not get_feature_flags().invite_tracking_enabled:
        await message.answer("Invite tracking is currently disabled.")
        return
    if not await ensure_db_ready_message(message):
        return

    member_id = str(message.from_user.id)
    try:
        invite = await engine.invites.get_or_create_personal_invite(
            member_id, resolve_display_name(message.from_user)
        )
    except InviteCreationError:
        await message.answer("⚠️ Could not create your invite link. Please try again in a minute.")
        return

    await message.answer(
        "🔗 <b>Your personal invite link</b>\n\n"
        f"{invite.url}\n\n"
        "Everyone who joins through this link is counted for you on the monthly leaderboard. "
        "Use /mystats to see your results.",
        parse_mode="HTML",
        disable_web_page_preview=True,
    )
