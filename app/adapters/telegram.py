"""
Telegram implementations of the engine ports.

Telegram exposes no per-link usage counters, so invite snapshots are built
from the invite_uses table, which the chat_member join handler increments with
the link each member joined through (see record_invite_use).
"""
import logging
from typing import Dict, Optional, Tuple

from aiogram import Bot
from aiogram.enums import ChatMemberStatus
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError
from aiogram.types import ChatPermissions

import database
from app.adapters.rendering import LIVE_TITLE_PREFIX, final_title, render_leaderboard
from app.services.leaderboard.models import Leaderboard
from app.services.models import DirectoryMember, GrantResult
from app.utils.telegram_safe import safe_send_message

logger = logging.getLogger(__name__)

_ABSENT_STATUSES = {ChatMemberStatus.LEFT, ChatMemberStatus.KICKED}

MEMBER_PERMISSIONS = ChatPermissions(
    can_send_messages=True,
    can_send_audios=True,
    can_send_documents=True,
    can_send_photos=True,
    can_send_videos=True,
    can_send_video_notes=True,
    can_send_voice_notes=True,
    can_send_polls=True,
    can_send_other_messages=True,
    can_add_web_page_previews=True,
    can_invite_users=True,
)

PENDING_PERMISSIONS = ChatPermissions(
    can_send_messages=False,
    can_send_audios=False,
    can_send_documents=False,
    can_send_photos=False,
    can_send_videos=False,
    can_send_video_notes=False,
    can_send_voice_notes=False,
    can_send_polls=False,
    can_send_other_messages=False,
    can_add_web_page_previews=False,
    can_invite_users=False,
)


def invite_code_from_url(url: str) -> str:
    """
    Invite code = last path segment of the link, without the "+" prefix.

    https://t.me/+AbCdEf → AbCdEf, https://t.me/joinchat/AbCdEf → AbCdEf
    """
    segment = str(url or "").rstrip("/").rsplit("/", 1)[-1]
    return segment.lstrip("+")


def _display_name(user) -> str:
    if user is None:
        return ""
    return user.full_name or (f"@{user.username}" if user.username else "")


class TelegramMembershipDirectory:
    def __init__(self, bot: Bot):
        self.bot = bot

    async def fetch_invite_snapshot(self, group_id: str) -> Dict[str, int]:
        return await database.get_invite_use_counts(group_id)

    async def fetch_member(self, group_id: str, member_id: str) -> Optional[DirectoryMember]:
        try:
            member = await self.bot.get_chat_member(int(group_id), int(member_id))
        except TelegramBadRequest as e:
            logger.debug(f"DIRECTORY_MEMBER_NOT_FOUND [member={member_id}, error={str(e)[:100]}]")
            return None
        if member.status in _ABSENT_STATUSES:
            return None
        if member.status == ChatMemberStatus.RESTRICTED and not getattr(member, "is_member", True):
            return None
        return DirectoryMember(
            member_id=str(member.user.id),
            display_name=_display_name(member.user),
            is_bot=bool(member.user.is_bot),
        )

    async def create_invite(self, group_id: str, owner_id: str, label: str) -> Tuple[str, str]:
        link = await self.bot.create_chat_invite_link(chat_id=int(group_id), name=label[:32])
        return invite_code_from_url(link.invite_link), link.invite_link

    async def record_invite_use(self, group_id: str, invite_url: str) -> Optional[int]:
        """Count one join through `invite_url`. Returns the new use count."""
        code = invite_code_from_url(invite_url)
        if not code:
            return None
        return await database.increment_invite_use(group_id, code)


class TelegramNotificationChannel:
    def __init__(self, bot: Bot):
        self.bot = bot

    async def deliver_direct_message(self, member_id: str, content: str) -> bool:
        message = await safe_send_message(
            self.bot, int(member_id), content, parse_mode="HTML", disable_web_page_preview=True
        )
        return message is not None


class TelegramPublicationSink:
    """
    Upsert-by-title publishing.

    The live leaderboard is one pinned message edited in place across periods
    (keyed by its title prefix); each final result gets its own message keyed
    by its full title, edited again if the finalization is retried.
    """

    def __init__(self, bot: Bot, *, leaderboard_chat_id: int, winners_chat_id: int):
        self.bot = bot
        self.leaderboard_chat_id = leaderboard_chat_id
        self.winners_chat_id = winners_chat_id

    async def publish_live(self, period: str, leaderboard: Leaderboard) -> None:
        await self._upsert(
            LIVE_TITLE_PREFIX,
            self.leaderboard_chat_id,
            render_leaderboard(leaderboard, final=False),
            pin=True,
        )

    async def publish_final(self, period: str, leaderboard: Leaderboard) -> None:
        await self._upsert(
            final_title(period),
            self.winners_chat_id,
            render_leaderboard(leaderboard, final=True),
            pin=False,
        )

    async def _upsert(self, key: str, chat_id: int, text: str, *, pin: bool) -> None:
        existing = await database.get_publication(key)
        if existing is not None and existing["chat_id"] == chat_id:
            try:
                await self.bot.edit_message_text(
                    text=text,
                    chat_id=chat_id,
                    message_id=existing["message_id"],
                    parse_mode="HTML",
                )
                return
            except TelegramBadRequest as e:
                if "message is not modified" in str(e).lower():
                    return
                if "message to edit not found" not in str(e).lower():
                    raise
                logger.warning(f"PUBLICATION_MESSAGE_GONE [key={key}, message_id={existing['message_id']}]")

        message = await self.bot.send_message(chat_id, text, parse_mode="HTML")
        await database.save_publication(key, chat_id, message.message_id)
        logger.info(f"PUBLICATION_CREATED [key={key}, chat={chat_id}, message_id={message.message_id}]")
        if pin:
            try:
                await self.bot.pin_chat_message(chat_id, message.message_id, disable_notification=True)
            except (TelegramBadRequest, TelegramForbiddenError) as e:
                logger.warning(f"PUBLICATION_PIN_FAILED [key={key}, error={str(e)[:100]}]")


class TelegramAccessGranter:
    """Pending = restricted member; granted = restrictions lifted."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def grant(self, group_id: str, member_id: str) -> GrantResult:
        try:
            member = await self.bot.get_chat_member(int(group_id), int(member_id))
        except TelegramBadRequest:
            return GrantResult.NOT_A_MEMBER
        if member.status in _ABSENT_STATUSES:
            return GrantResult.NOT_A_MEMBER
        if member.status != ChatMemberStatus.RESTRICTED:
            return GrantResult.GRANTED
        if not getattr(member, "is_member", True):
            return GrantResult.NOT_A_MEMBER

        try:
            await self.bot.restrict_chat_member(int(group_id), int(member_id), permissions=MEMBER_PERMISSIONS)
        except (TelegramBadRequest, TelegramForbiddenError) as e:
            logger.warning(f"ACCESS_LIFT_RESTRICTION_FAILED [member={member_id}, error={str(e)[:100]}]")
            return GrantResult.FAILED
        return GrantResult.GRANTED

    async def restrict(self, group_id: str, member_id: str) -> bool:
        try:
            await self.bot.restrict_chat_member(int(group_id), int(member_id), permissions=PENDING_PERMISSIONS)
        except (TelegramBadRequest, TelegramForbiddenError) as e:
            # Admins and the owner cannot be restricted
            logger.warning(f"ACCESS_RESTRICT_REJECTED [member={member_id}, error={str(e)[:100]}]")
            return False
        return True
