"""Detached execution of side effects that must not block a live turn."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque

from .types import utc_timestamp

__all__ = ["BackgroundFailure", "BackgroundTaskQueue"]

LOGGER = logging.getLogger(__name__)

ErrorCallback = Callable[["BackgroundFailure"], None]


@dataclass(slots=True, frozen=True)
class BackgroundFailure:
    """A background job that raised."""

    label: str
    error: BaseException
    timestamp: str = field(default_factory=utc_timestamp)


class BackgroundTaskQueue:
    """Runs coroutine factories on a detached worker, in submission order.

    Jobs are persisted side effects (saving the user message, tool log rows,
    the assistant reply). Failures are logged and recorded on the error channel
    (``errors`` plus the optional ``on_error`` callback) and never propagate to
    the submitter. ``submit`` is synchronous and returns immediately.
    """

    def __init__(
        self,
        *,
        name: str = "background",
        on_error: ErrorCallback | None = None,
        max_recorded_errors: int = 100,
    ) -> None:
        self._name = name
        self._on_error = on_error
        self._queue: asyncio.Queue[tuple[str, Callable[[], Awaitable[Any]]]] | None = None
        self._worker: asyncio.Task[None] | None = None
        self._errors: Deque[BackgroundFailure] = deque(maxlen=max(1, max_recorded_errors))
        self._completed = 0
        self._closed = False

    @property
    def errors(self) -> list[BackgroundFailure]:
        return list(self._errors)

    @property
    def completed(self) -> int:
        """Number of jobs that finished without raising."""
        return self._completed

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def submit(self, label: str, job: Callable[[], Awaitable[Any]]) -> bool:
        """Queue ``job`` for execution; returns False once the queue is closed."""

        if self._closed:
            LOGGER.warning("Background queue %s is closed; dropping job %s", self._name, label)
            return False
        self._ensure_worker()
        assert self._queue is not None
        self._queue.put_nowait((label, job))
        return True

    async def join(self) -> None:
        """Wait until every job submitted so far has finished."""

        if self._queue is not None:
            await self._queue.join()

    async def aclose(self) -> None:
        """Finish queued jobs, then stop the worker."""

        self._closed = True
        await self.join()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    def _ensure_worker(self) -> None:
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(
                self._run(), name=f"{self._name}-worker"
            )

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            label, job = await self._queue.get()
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._record_failure(label, exc)
            else:
                self._completed += 1
            finally:
                self._queue.task_done()

    def _record_failure(self, label: str, exc: Exception) -> None:
        LOGGER.warning("Background job %s failed: %s", label, exc, exc_info=exc)
        failure = BackgroundFailure(label=label, error=exc)
        self._errors.append(failure)
        if self._on_error is None:
            return
        try:
            self._on_error(failure)
        except Exception:
            LOGGER.exception("Background error callback failed for %s", label)
