"""
Admin commands: /approve <member_id>, /qualify <member_id>
"""
import logging

from aiogram import Router
from aiogram.filters import Command
from aiogram.types import Message

from app.core.exceptions import CollaboratorError
from app.engine import InviteEngine
from app.handlers.common.guards import ensure_db_ready_message, is_admin
from app.handlers.common.utils import command_argument

admin_access_router = Router()
logger = logging.getLogger(__name__)


async def _admin_argument(message: Message, usage: str) -> str:
    """Member id argument of an admin command, or "" after replying."""
    if not is_admin(message):
        logger.warning(f"Unauthorized admin command attempt by user {message.from_user.id}")
        await message.answer("⛔ Access denied.")
        return ""
    if not await ensure_db_ready_message(message):
        return ""
    argument = command_argument(message.text)
    if not argument:
        await message.answer(f"Usage: {usage}")
    return argument


@admin_access_router.message(Command("approve"))
async def cmd_approve(message: Message, engine: InviteEngine):
    """Approve a waitlist application; access is granted on the next poll."""
    member_id = await _admin_argument(message, "/approve <member_id>")
    if not member_id:
        return

    try:
        await engine.access.approve(member_id)
    except ValueError as e:
        await message.answer(f"❌ {e}")
        return
    except CollaboratorError as e:
        logger.error(f"ADMIN_APPROVE_FAILED [member={member_id}, error={e}]")
        await message.answer("⚠️ Store unavailable, try again later.")
        return

    logger.info(f"ADMIN_APPROVED [admin={message.from_user.id}, member={member_id}]")
    await message.answer(f"✅ Approved {member_id}. Access will be granted within a minute.")


@admin_access_router.message(Command("qualify"))
async def cmd_qualify(message: Message, engine: InviteEngine):
    """Mark a referred member as qualified (counts towards the inviter's earnings)."""
    member_id = await _admin_argument(message, "/qualify <member_id>")
    if not member_id:
        return

    try:
        flagged = await engine.invites.mark_qualified(member_id)
    except ValueError as e:
        await message.answer(f"❌ {e}")
        return
    except CollaboratorError as e:
        logger.error(f"ADMIN_QUALIFY_FAILED [member={member_id}, error={e}]")
        await message.answer("⚠️ Store unavailable, try again later.")
        return

    if not flagged:
        await message.answer(f"❌ No attributed join found for {member_id}.")
        return
    logger.info(f"ADMIN_QUALIFIED [admin={message.from_user.id}, member={member_id}]")
    await message.answer(f"✅ Referral of {member_id} marked as qualified.")
