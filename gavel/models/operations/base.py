"""
Shared plumbing for the engine operations: the version-conflict retry loop
and actor lookup.
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Optional, TypeVar

from gavel.clients import VersionedStore
from gavel.exceptions import ConcurrentModification, ConflictError, UnauthorizedError
from gavel.models.entities.users import User
from gavel.utils import log

logger = log.get_logger(__name__)

R = TypeVar("R")

Clock = Callable[[], datetime]


# ---------------------------------------------------------------------------
# Version-conflict retry
# ---------------------------------------------------------------------------

async def with_version_retry(
    attempt: Callable[[], Awaitable[R]],
    max_retries: int = 5,
    operation: str = "update",
    **context,
) -> R:
    """Run *attempt* until it commits without a version conflict.

    *attempt* must re-read everything it depends on, since each retry starts
    from fresh state.  On ``ConflictError`` the helper backs off
    exponentially (10 ms, 20 ms, 40 ms, ...) and tries again; after
    ``max_retries`` retries it raises ``ConcurrentModification``.  Any other
    exception propagates immediately.
    """
    backoff_ms = 10
    for n in range(max_retries + 1):
        try:
            return await attempt()
        except ConflictError as e:
            if n == max_retries:
                logger.warning(f"{operation} gave up after {n + 1} attempts: {e.message}")
                raise ConcurrentModification(
                    f"Concurrent update conflict during {operation}, please retry",
                    attempts=n + 1,
                    **context,
                ) from e
            logger.debug(f"{operation} conflict on attempt {n + 1}, retrying in {backoff_ms}ms")
            await asyncio.sleep(backoff_ms / 1000)
            backoff_ms *= 2
    raise ConcurrentModification(f"Concurrent update conflict during {operation}, please retry", **context)


# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------

async def get_actor(store: VersionedStore, user_id: Optional[str]) -> User:
    """Return the acting user, or raise ``UnauthorizedError`` if unknown or deleted."""
    if not user_id:
        raise UnauthorizedError("No acting user")
    user = await store.get(User, user_id)
    if user is None or user.data.is_deleted:
        raise UnauthorizedError(f"User {user_id} is not permitted to act", user_id=user_id)
    return user
