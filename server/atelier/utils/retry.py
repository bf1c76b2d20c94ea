import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from pymongo.errors import ConnectionFailure

from atelier.core.config import settings
from atelier.services.errors import TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_store_retry(
    operation: Callable[[], Awaitable[T]],
    attempts: int | None = None,
    delay: float | None = None,
) -> T:
    # ConnectionFailure covers AutoReconnect, NetworkTimeout and ServerSelectionTimeoutError
    attempts = max(1, attempts or settings.STORE_RETRY_ATTEMPTS)
    delay = settings.STORE_RETRY_DELAY_SECONDS if delay is None else delay
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except ConnectionFailure as exc:
            if attempt == attempts:
                logger.warning("Store unavailable after %d attempts: %s", attempts, exc)
                raise TransientError("Service temporarily unavailable, please retry") from exc
            logger.info("Store call failed (attempt %d/%d), retrying: %s", attempt, attempts, exc)
            await asyncio.sleep(delay * attempt)
    raise AssertionError("unreachable")
