"""Retry handling for write conflicts."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tip_ledger.errors import ConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_with_retry(
    func: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    backoff_base: float = 0.05,
) -> T:
    """
    Execute a transactional operation, retrying on ConflictError.

    ``func`` must open its own transaction so every attempt starts from a
    clean state. The last ConflictError is re-raised once attempts run out.
    """
    for attempt in range(attempts):
        try:
            return await func()
        except ConflictError as exc:
            if attempt >= attempts - 1:
                logger.error("Giving up after %d conflicting attempts: %s", attempts, exc)
                raise
            delay = backoff_base * (2 ** attempt)
            logger.info(
                "Write conflict (attempt %d/%d), retrying in %.3fs: %s",
                attempt + 1,
                attempts,
                delay,
                exc,
            )
            await asyncio.sleep(delay)
    raise RuntimeError("run_with_retry requires at least one attempt")
