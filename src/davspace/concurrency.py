"""Cooperative concurrency helpers.

Everything runs on one event loop. There is no locking of the remote tree:
the only guarded operation is connect, and cancellation is a flag checked
between units of work.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from davspace.errors import OperationCancelledError

T = TypeVar("T")


class CancelToken:
    """Cancellation flag checked at the start of each loop iteration.

    Remote calls already in flight are never interrupted.
    """

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self, operation: str = "operation") -> None:
        if self._cancelled:
            raise OperationCancelledError(f"{operation} cancelled")


class SingleFlight(Generic[T]):
    """Share one in-flight coroutine among concurrent callers.

    A second ``run()`` while the first is pending awaits the first's result
    instead of starting its own. Not a queue: once the call settles the next
    ``run()`` starts fresh.
    """

    def __init__(self) -> None:
        self._pending: asyncio.Future[T] | None = None

    @property
    def in_flight(self) -> bool:
        return self._pending is not None

    async def run(self, factory: Callable[[], Awaitable[T]]) -> T:
        if self._pending is not None:
            return await asyncio.shield(self._pending)

        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()
        self._pending = future
        try:
            result = await factory()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved so a failure nobody else awaited is not reported.
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self._pending = None
