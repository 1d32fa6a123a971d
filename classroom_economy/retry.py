"""Retry helper for transient storage conflicts with exponential backoff"""

import time
from typing import Callable, TypeVar

from .errors import ConcurrentModificationError
from .logging_config import get_logger
from .storage import StorageInterface

logger = get_logger("classroom_economy.retry")

T = TypeVar("T")


def retry_on_conflict(
    storage: StorageInterface,
    operation: Callable[[], T],
    max_retries: int = 5,
    backoff_base: float = 0.05,
    sleep: Callable[[float], None] = time.sleep
) -> T:
    """
    Run ``operation`` and retry it on ConcurrentModificationError.

    Retry strategy:
    - Exponential backoff: base, 2*base, 4*base, ... (base * 2^(attempt-1))
    - Only the outermost caller retries; inside an open transaction the
      error propagates so the enclosing block rolls back as a whole

    Raises:
        ConcurrentModificationError: When all attempts conflicted
    """
    if storage.in_transaction:
        return operation()

    attempt = 0
    while True:
        try:
            return operation()
        except ConcurrentModificationError:
            attempt += 1
            if attempt >= max_retries:
                logger.error("Giving up after %d conflicting attempts", attempt)
                raise

            backoff = backoff_base * (2 ** (attempt - 1))
            logger.warning("Storage conflict, retrying in %.3fs (attempt %d)", backoff, attempt)
            sleep(backoff)
