"""
Centralized safe wrapper for bot.send_message.

Handles TelegramBadRequest (chat not found), TelegramForbiddenError (user never
started the bot or blocked it) and network failures without raising, so a
payout or a command reply never breaks the caller.
"""
import logging

from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError, TelegramRetryAfter

logger = logging.getLogger(__name__)


async def safe_send_message(bot, telegram_id: int, text: str, **kwargs):
    """
    Send a Telegram message with graceful error handling.

    Returns:
        Message on success, None on any handled failure.
    """
    try:
        return await bot.send_message(telegram_id, text, **kwargs)

    except TelegramBadRequest as e:
        if "chat not found" in str(e).lower():
            logger.warning(f"SAFE_SEND_SKIP_CHAT_NOT_FOUND user={telegram_id}")
            return None
        logger.warning(f"SAFE_SEND_BAD_REQUEST user={telegram_id} error={str(e)[:100]}")
        return None

    except TelegramForbiddenError:
        logger.warning(f"SAFE_SEND_FORBIDDEN user={telegram_id}")
        return None

    except TelegramRetryAfter as e:
        logger.warning(f"SAFE_SEND_RATE_LIMITED user={telegram_id} retry_after={e.retry_after}")
        return None

    except Exception:
        logger.exception(f"SAFE_SEND_UNKNOWN_ERROR user={telegram_id}")
        return None
