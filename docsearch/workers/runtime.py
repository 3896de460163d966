"""
Run async pipeline code from synchronous worker callbacks.

Celery tasks and the kombu consumer callback are synchronous. Both drive
coroutines on one event loop per process, so pooled clients (asyncpg,
Elasticsearch) stay bound to the loop that created them.
"""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, TypeVar

T = TypeVar("T")

_loop: asyncio.AbstractEventLoop | None = None


def get_worker_loop() -> asyncio.AbstractEventLoop:
    global _loop
    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
        asyncio.set_event_loop(_loop)
    return _loop


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Execute `coro` to completion on the process-wide worker loop."""
    return get_worker_loop().run_until_complete(coro)


def close_worker_loop() -> None:
    global _loop
    if _loop is not None and not _loop.is_closed():
        _loop.run_until_complete(_loop.shutdown_asyncgens())
        _loop.close()
        asyncio.set_event_loop(None)
    _loop = None
