"""
DB readiness and permission guards. Shared across all handler domains.
"""
import logging

import config
import database
from aiogram.types import Message

logger = logging.getLogger(__name__)

SERVICE_UNAVAILABLE_TEXT = "⚠️ Service is temporarily unavailable. Please try again in a minute."


async def ensure_db_ready_message(message: Message) -> bool:
    """
    Reply with a degraded-mode notice when the database is not ready.

    Returns:
        True if the database is ready
    """
    if database.DB_READY:
        return True
    try:
        await message.answer(SERVICE_UNAVAILABLE_TEXT)
    except Exception as e:
        logger.warning(f"Error sending degraded mode message: {e}")
    return False


def is_admin(message: Message) -> bool:
    return bool(message.from_user) and message.from_user.id == config.ADMIN_TELEGRAM_ID


def is_private(message: Message) -> bool:
    return message.chat.type == "private"
