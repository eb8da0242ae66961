"""
Sequential job queue for the image generation worker.

The Stable Diffusion web UI only works on one request at a time and does not
expose its own queue, so the queue is tracked here. Each queued item wraps an
awaitable (usually an already started request to the worker). Items are
awaited strictly in submission order and every pending job is told its
position whenever the queue moves, so the caller can keep a progress message
up to date or offer a cancel button.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

PositionHandler = Callable[[int], None]
CanceledHandler = Callable[[], None]


def _consume_outcome(future: asyncio.Future) -> None:
    # Marks the exception as retrieved so asyncio does not report it.
    if not future.cancelled():
        future.exception()


class Job(Generic[T]):
    """A queued computation with its identity, position and observers."""

    def __init__(self, computation: Awaitable[T], position: int = 0) -> None:
        self.id = uuid.uuid4().hex
        self._future: asyncio.Future[T] = asyncio.ensure_future(computation)
        self._position = position
        self._canceled = False
        self._position_handlers: list[PositionHandler] = []
        self._canceled_handlers: list[CanceledHandler] = []

    def __repr__(self) -> str:
        return f"<Job {self.id} position={self._position} canceled={self._canceled}>"

    @property
    def position(self) -> int:
        """1-based rank among jobs not yet finished, 0 once finished."""
        return self._position

    @property
    def canceled(self) -> bool:
        return self._canceled

    def done(self) -> bool:
        """Whether the wrapped computation has settled."""
        return self._future.done()

    def _succeeded(self) -> bool:
        return (
            self._future.done()
            and not self._future.cancelled()
            and self._future.exception() is None
        )

    async def wait(self) -> T:
        """
        Wait for the wrapped computation and return its result.

        Every call observes the same outcome; the computation is never
        restarted. Cancelling the caller does not cancel the computation.
        """
        return await asyncio.shield(self._future)

    async def _settled(self) -> None:
        await asyncio.wait({self._future})
        _consume_outcome(self._future)

    def cancel(self) -> None:
        """
        Mark the job as canceled and notify the cancel observers.

        The wrapped computation keeps running if it has already started; its
        failure, if any, is swallowed from here on. Observers are not notified
        when the job has already completed successfully, and never twice.
        """
        if self._canceled:
            return
        self._canceled = True
        self._future.add_done_callback(_consume_outcome)
        handlers, self._canceled_handlers = self._canceled_handlers, []
        self._position_handlers.clear()
        if self._succeeded():
            return
        for handler in handlers:
            _notify(handler)

    def set_position(self, value: int) -> None:
        """
        Update the position. Only the owning queue calls this.

        Position 0 detaches every position observer; any other value is
        pushed to all of them synchronously.
        """
        self._position = value
        if value == 0:
            self._position_handlers.clear()
            return
        for handler in list(self._position_handlers):
            _notify(handler, value)

    def on_position_change(self, handler: PositionHandler) -> PositionHandler:
        """Register `handler(position)`; returns it so it can be a decorator."""
        self._position_handlers.append(handler)
        return handler

    def on_canceled(self, handler: CanceledHandler) -> CanceledHandler:
        """Register `handler()` for cancellation; ignored once the job succeeded or was canceled."""
        if not self._canceled and not self._succeeded():
            self._canceled_handlers.append(handler)
        return handler


def _notify(handler: Callable[..., None], *args: int) -> None:
    try:
        handler(*args)
    except Exception:
        logger.exception("Job observer %r failed", handler)


class Queue:
    """
    FIFO queue that awaits one job at a time.

    ``add`` never suspends: it appends the job and starts the drain task on
    the running event loop if it is idle. Positions of pending jobs always
    form the sequence 1..N (counting the job currently being awaited, if
    any) and only ever decrease.

    A queue belongs to one event loop and is only used from that loop's
    thread. Observers run synchronously and may add or remove jobs.
    """

    def __init__(self) -> None:
        self._pending: list[Job] = []
        self._current: Job | None = None
        self._running = False
        self._task: asyncio.Task | None = None
        # Reentrant so observers fired during an update may call back in.
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def pending(self) -> tuple[Job, ...]:
        """Snapshot of jobs waiting to run, head first."""
        with self._lock:
            return tuple(self._pending)

    @property
    def current(self) -> Job | None:
        """The job the drain loop is awaiting right now."""
        return self._current

    @property
    def running(self) -> bool:
        return self._running

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            if self._current is not None and self._current.id == job_id:
                return self._current
            for job in self._pending:
                if job.id == job_id:
                    return job
        return None

    def add(self, computation: Awaitable[T]) -> Job[T]:
        """Queue `computation` and return its job handle immediately."""
        loop = asyncio.get_running_loop()
        with self._lock:
            job: Job[T] = Job(computation)
            self._pending.append(job)
            ahead = 1 if self._current is not None else 0
            job.set_position(len(self._pending) + ahead)
            logger.debug("Queued job %s at position %d", job.id, job.position)
            if not self._running:
                self._running = True
                self._task = loop.create_task(self._drain())
        return job

    def remove(self, job: Job) -> bool:
        return self.remove_by_id(job.id)

    def remove_by_id(self, job_id: str) -> bool:
        """
        Cancel and drop a pending job.

        Jobs behind it move up by one. Unknown ids and jobs that already left
        the pending list (running or finished) are ignored. Returns whether a
        job was removed.
        """
        with self._lock:
            for index, job in enumerate(self._pending):
                if job.id == job_id:
                    break
            else:
                return False
            del self._pending[index]
            job.cancel()
            for behind in self._pending[index:]:
                if behind in self._pending:
                    behind.set_position(behind.position - 1)
        logger.debug("Removed job %s from the queue", job_id)
        return True

    async def join(self) -> None:
        """Wait until the drain loop has emptied the queue."""
        while self._task is not None and not self._task.done():
            await asyncio.shield(self._task)

    async def _drain(self) -> None:
        try:
            while True:
                with self._lock:
                    if not self._pending:
                        self._running = False
                        return
                    job = self._pending.pop(0)
                    self._current = job
                logger.debug("Running job %s", job.id)
                await job._settled()
                with self._lock:
                    self._current = None
                    job.set_position(0)
                    for waiting in list(self._pending):
                        if waiting in self._pending:
                            waiting.set_position(waiting.position - 1)
                _log_outcome(job)
        except BaseException:
            # Loop torn down (event loop shutdown); the next add restarts it.
            with self._lock:
                self._current = None
                self._running = False
            raise


def _log_outcome(job: Job) -> None:
    future = job._future
    if future.cancelled():
        logger.warning("Job %s was cancelled before it finished", job.id)
    elif future.exception() is not None:
        logger.warning("Job %s failed: %s", job.id, future.exception())
    else:
        logger.debug("Job %s finished", job.id)


__all__ = ["Job", "Queue"]
