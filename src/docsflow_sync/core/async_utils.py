"""Async utilities for bridging blocking repository and store calls to async callers."""

import asyncio
import logging
from typing import Any, Callable, Coroutine, Sequence, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


def create_limiter(max_parallel: int = 5) -> asyncio.Semaphore:
    """Semaphore bounding concurrent repository calls for one service."""
    logger.info(
        "Repository request limiter created: max_parallel=%d",
        max_parallel,
    )
    return asyncio.Semaphore(max_parallel)


async def run_sync(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    Does NOT acquire a limiter.

    Example:
        client = GitHubClient(config)
        tree = await run_sync(client.get_tree, "main")
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def run_sync_limited(
    limiter: asyncio.Semaphore | None,
    func: Callable[..., T],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Run a synchronous function in a thread pool, bounded by *limiter*.

    Runs unbounded when *limiter* is ``None``.
    """
    if limiter is None:
        return await asyncio.to_thread(func, *args, **kwargs)
    async with limiter:
        return await asyncio.to_thread(func, *args, **kwargs)


async def gather_limited(
    coros: Sequence[Coroutine[Any, Any, T]],
) -> list[T]:
    """Run coroutines concurrently and return results in input order.

    Each coroutine should use ``run_sync_limited`` internally.
    Exceptions propagate from the first failure.
    """
    return list(await asyncio.gather(*coros))
