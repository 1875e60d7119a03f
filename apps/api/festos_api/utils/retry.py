"""Bounded retry with exponential backoff."""

import logging
import time
from typing import Callable, TypeVar

from festos_api.errors import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_with_backoff(
    func: Callable[[], T],
    attempts: int = 3,
    base_delay: float = 0.5,
    retry_on: tuple = (StorageError,),
    sleep: Callable[[float], None] = time.sleep,
    operation: str = "operation",
) -> T:
    """
    Call ``func`` until it succeeds or ``attempts`` are exhausted.

    Only exceptions in ``retry_on`` are retried; the delay doubles after
    each failed attempt. The last error is re-raised.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    delay = base_delay
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except retry_on as e:
            if attempt == attempts:
                logger.error(f"{operation} failed after {attempts} attempts: {e}")
                raise
            logger.warning(
                f"{operation} attempt {attempt}/{attempts} failed, retrying in {delay:.2f}s: {e}"
            )
            sleep(delay)
            delay *= 2
