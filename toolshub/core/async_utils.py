"""
Thread offloading for blocking calls (SQLAlchemy sessions, the Stripe SDK).

Every store or payment call made from a request handler goes through
run_sync() with an explicit timeout. A timeout means the outcome is
unknown: the worker keeps running, so callers must fail closed.
"""

import asyncio
import logging
import time
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Calls slower than this are logged even when they succeed
SLOW_CALL_S = 1.0


def _describe(func: Callable[..., Any]) -> str:
    return getattr(func, "__qualname__", None) or getattr(func, "__name__", None) or repr(func)


async def run_sync(func: Callable[..., T], *args: Any, timeout: float = 30) -> T:
    """Await ``func(*args)`` on the default executor.

    Raises TimeoutError after *timeout* seconds; exceptions from *func*
    propagate as-is.
    """
    started = time.monotonic()
    try:
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=timeout)
    except asyncio.TimeoutError:
        raise TimeoutError(f"{_describe(func)} did not finish within {timeout}s") from None
    finally:
        elapsed = time.monotonic() - started
        if elapsed >= SLOW_CALL_S:
            logger.warning("Slow blocking call: %s took %.2fs", _describe(func), elapsed)
