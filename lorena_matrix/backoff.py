# SPDX-License-Identifier: MIT
# lorena_matrix/backoff.py
"""
Retry/backoff decorator for async functions.

Only exceptions accepted by ``retry_if`` are retried; everything else
propagates on the first failure.
"""
import asyncio
import functools
import logging
import os
import random
from typing import Any, Callable, Optional

logger = logging.getLogger("lorena_matrix.backoff")


def _maybe_configure_logging() -> None:
    # Mirrors the setup in lorena_matrix.client.
    dbg = (os.getenv("LORENA_MATRIX_DEBUG") or "").strip().lower()
    if dbg in ("1", "true", "yes", "on"):
        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(
                logging.Formatter("[lorena-matrix][backoff] %(levelname)s: %(message)s")
            )
            logger.addHandler(handler)
        logger.setLevel(logging.DEBUG)


_maybe_configure_logging()


def with_backoff(
    max_retries: int = 3,
    base_delay: float = 0.5,
    jitter: float = 0.1,
    retry_if: Optional[Callable[[BaseException], bool]] = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Decorator to retry an async function with exponential backoff and jitter.

    Args:
        max_retries: Number of retry attempts after the first call.
        base_delay: Initial delay in seconds before retry.
        jitter: Max random jitter added to delay.
        retry_if: Predicate selecting which exceptions are retried.
            ``None`` retries every ``Exception``.

    Returns:
        Decorated async function that retries on matching exceptions.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 0
            while True:
                try:
                    return await fn(*args, **kwargs)
                except Exception as e:
                    if retry_if is not None and not retry_if(e):
                        raise
                    attempt += 1
                    if attempt > max_retries:
                        # Exhausted retries: propagate exception
                        raise
                    delay = base_delay * (2 ** (attempt - 1))
                    delay += random.uniform(0, jitter)
                    logger.debug(
                        "retry %d/%d for %s in %.2fs (%s)",
                        attempt, max_retries, fn.__name__, delay, e,
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
