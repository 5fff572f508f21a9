"""Run blocking client calls (SQLAlchemy, Stripe SDK) off the event loop with a deadline."""

import asyncio
from typing import Any, Callable, TypeVar

from fastapi.concurrency import run_in_threadpool

from imagefy_backend.core.errors import UpstreamTimeoutError

T = TypeVar("T")


async def run_blocking(fn: Callable[..., T], *args: Any, timeout: float, label: str, **kwargs: Any) -> T:
    """
    Await ``fn(*args, **kwargs)`` in the threadpool, bounded by ``timeout`` seconds.

    The worker thread is not interrupted on expiry; the caller just stops
    waiting for it.

    Raises:
        UpstreamTimeoutError: If the call does not finish in time
    """
    try:
        return await asyncio.wait_for(run_in_threadpool(fn, *args, **kwargs), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise UpstreamTimeoutError(f"{label} timed out after {timeout:g}s") from e
