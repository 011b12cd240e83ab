"""Async utilities for bridging blocking I/O to async backup operations."""

import asyncio
import logging
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Callable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

# One lock per remote collection URL and event loop, created lazily
_remote_locks: weakref.WeakKeyDictionary[
    asyncio.AbstractEventLoop, dict[str, asyncio.Lock]
] = weakref.WeakKeyDictionary()


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    Used to wrap blocking HTTP requests, zip encoding and file copies.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        client = WebDavClient()
        items = await run_sync(client.list_collection, cfg)
    """
    return await asyncio.to_thread(func, *args, **kwargs)


def get_remote_lock(key: str) -> asyncio.Lock:
    """Return the lock guarding operations against the remote *key*.

    Locks are scoped to the running event loop and dropped with it.
    """
    locks = _remote_locks.setdefault(asyncio.get_running_loop(), {})
    lock = locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        locks[key] = lock
    return lock


@asynccontextmanager
async def remote_operation(key: str) -> AsyncIterator[None]:
    """Serialise whole backup/restore operations per remote collection.

    A second operation on the same remote waits for the first to finish.

    Args:
        key: Identifier of the remote, normally its collection URL.
    """
    lock = get_remote_lock(key)
    if lock.locked():
        logger.info("Waiting for in-flight operation on %s", key)
    async with lock:
        yield
