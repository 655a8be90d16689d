"""Bounded worker pool for blocking Azure SDK calls.

The management SDK clients are synchronous. Calls are pushed onto a thread
pool from asyncio so independent subscriptions and zones are queried in
parallel, while a semaphore caps how many calls are in flight against the
API at once.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

T = TypeVar("T")


class WorkerPool:
    """Runs blocking callables on a bounded thread pool."""

    def __init__(self, max_workers: int) -> None:
        self._max_workers = max_workers
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="zonelink"
        )
        self._semaphore: asyncio.Semaphore | None = None

    @property
    def max_workers(self) -> int:
        return self._max_workers

    async def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run func(*args, **kwargs) on the pool and await its result."""
        if self._semaphore is None:
            # Created lazily so it binds to the running loop
            self._semaphore = asyncio.Semaphore(self._max_workers)
        loop = asyncio.get_running_loop()
        async with self._semaphore:
            return await loop.run_in_executor(
                self._executor, functools.partial(func, *args, **kwargs)
            )

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    async def __aenter__(self) -> WorkerPool:
        return self

    async def __aexit__(self, *args: Any) -> None:
        # Waiting for in-flight calls blocks, so keep it off the event loop
        await asyncio.get_running_loop().run_in_executor(None, self.shutdown)
