"""
Timeout guard for collaborator calls.

Every call the engine makes to the store, the membership directory, the
notification channel or the publication sink goes through `guarded_call`, so
each has a finite timeout and surfaces failures as CollaboratorError.
"""
import asyncio
from typing import Awaitable, TypeVar

from app.core.exceptions import CollaboratorError, CollaboratorTimeoutError

T = TypeVar("T")


async def guarded_call(
    awaitable: Awaitable[T],
    *,
    timeout: float,
    component: str,
    operation: str,
) -> T:
    """
    Await a collaborator call with a timeout.

    Raises:
        CollaboratorTimeoutError: the call did not finish within `timeout` seconds
        CollaboratorError: the call raised any other exception
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise CollaboratorTimeoutError(component, operation, e) from e
    except asyncio.CancelledError:
        raise
    except CollaboratorError:
        raise
    except Exception as e:
        raise CollaboratorError(component, operation, e) from e
