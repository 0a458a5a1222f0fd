"""
Global Telegram update error boundary middleware.

No handler exception reaches the polling loop. CancelledError is never
swallowed.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from aiogram import BaseMiddleware
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError

from app.core.structured_logger import log_event

logger = logging.getLogger(__name__)


def _update_user_id(event: Any) -> Optional[int]:
    """User id of a message or chat_member update, if any."""
    for attr in ("message", "chat_member"):
        inner = getattr(event, attr, None)
        if inner is not None and getattr(inner, "from_user", None) is not None:
            return inner.from_user.id
    return None


class TelegramErrorBoundaryMiddleware(BaseMiddleware):
    """
    TelegramForbiddenError (user blocked the bot) → debug log.
    TelegramBadRequest "message is not modified" → silent.
    Anything else → structured error log; the update is dropped.
    """

    async def __call__(
        self,
        handler: Callable[[Any, Dict[str, Any]], Awaitable[Any]],
        event: Any,
        data: Dict[str, Any],
    ) -> Any:
        try:
            return await handler(event, data)
        except asyncio.CancelledError:
            raise
        except TelegramForbiddenError as e:
            logger.debug("TelegramForbiddenError (user blocked bot or removed from chat): %s", e)
            return None
        except TelegramBadRequest as e:
            if "message is not modified" in str(e).lower():
                return None
            logger.warning("TelegramBadRequest: %s", e)
            return None
        except Exception as e:
            update_id = getattr(event, "update_id", None)
            log_event(
                logger,
                component="telegram",
                operation="update_processing",
                correlation_id=str(update_id) if update_id is not None else None,
                outcome="failed",
                reason=f"{type(e).__name__}: {str(e)[:200]}",
                level="error",
            )
            logger.exception(
                "UNHANDLED_HANDLER_EXCEPTION",
                extra={"update_type": type(event).__name__, "user_id": _update_user_id(event)},
            )
            return None
