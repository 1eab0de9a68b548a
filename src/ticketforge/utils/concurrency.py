"""Bounded async fan-out used by batch jobs such as drift scans."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Sequence

T = TypeVar("T")
R = TypeVar("R")


class CancellationToken:
    """Cooperative cancellation token backed by ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError("operation cancelled")


class BoundedSemaphore:
    """``asyncio.Semaphore`` that tracks how many permits are in use."""

    def __init__(self, limit: int) -> None:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self._limit = limit
        self._semaphore = asyncio.Semaphore(limit)
        self._in_use = 0
        self._peak = 0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def peak(self) -> int:
        return self._peak

    @asynccontextmanager
    async def permit(self) -> AsyncIterator[None]:
        await self._semaphore.acquire()
        self._in_use += 1
        self._peak = max(self._peak, self._in_use)
        try:
            yield
        finally:
            self._in_use -= 1
            self._semaphore.release()


@dataclass(slots=True)
class WorkerPool(Generic[T]):
    """Run awaitables with bounded concurrency.

    A failing awaitable cancels the rest of the batch and its exception is
    re-raised; callers that need per-item isolation catch inside the awaitable.
    """

    max_concurrency: int
    cancel_token: CancellationToken | None = None
    _token: CancellationToken = field(init=False, repr=False)
    _semaphore: BoundedSemaphore = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        self._token = self.cancel_token or CancellationToken()
        self._semaphore = BoundedSemaphore(self.max_concurrency)

    @property
    def peak_concurrency(self) -> int:
        return self._semaphore.peak

    async def run(self, awaitables: Iterable[Awaitable[T]]) -> AsyncIterator[T]:
        """Yield results in completion order."""

        self._token.raise_if_cancelled()
        tasks: set[asyncio.Task[T]] = set()
        for awaitable in awaitables:
            self._token.raise_if_cancelled()
            tasks.add(asyncio.ensure_future(self._run_one(awaitable)))

        try:
            while tasks:
                self._token.raise_if_cancelled()
                done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
                tasks = set(pending)
                for task in done:
                    exc = task.exception()
                    if exc is not None:
                        await self._cancel_all(tasks)
                        raise exc
                    yield task.result()
        except asyncio.CancelledError:
            await self._cancel_all(tasks)
            raise

    async def _run_one(self, awaitable: Awaitable[T]) -> T:
        async with self._semaphore.permit():
            self._token.raise_if_cancelled()
            return await awaitable

    async def _cancel_all(self, tasks: set[asyncio.Task[T]]) -> None:
        for task in tasks:
            task.cancel()
        if tasks:
            with suppress(Exception):
                await asyncio.gather(*tasks, return_exceptions=True)


async def map_in_threads(
    func: Callable[[R], T],
    items: Sequence[R],
    *,
    max_concurrency: int,
    cancel_token: CancellationToken | None = None,
) -> list[T]:
    """Apply blocking ``func`` to each item in worker threads; results keep input order."""

    async def _call(index: int, item: R) -> tuple[int, T]:
        return index, await asyncio.to_thread(func, item)

    pool: WorkerPool[tuple[int, T]] = WorkerPool(max_concurrency, cancel_token=cancel_token)
    ordered: dict[int, T] = {}
    async for index, value in pool.run(_call(i, item) for i, item in enumerate(items)):
        ordered[index] = value
    return [ordered[index] for index in range(len(items))]


__all__ = [
    "BoundedSemaphore",
    "CancellationToken",
    "WorkerPool",
    "map_in_threads",
]
