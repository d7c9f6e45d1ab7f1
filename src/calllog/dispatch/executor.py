"""Single background worker that runs store operations one at a time.

The worker is one asyncio task draining a FIFO queue. Store I/O happens on
aiosqlite's connection thread, so whoever submits work (the event loop) is
never blocked, and results are handed back to the loop with call_soon rather
than invoked from inside the worker.

Failure isolation: storage faults (disk full, disk I/O error, corrupted or
missing store) are caught where the work runs, logged, and turned into an
Outcome carrying the fault. Any other exception is a programming fault; it
stops the worker and is re-raised from join() and stop().

Usage:
    executor = BackgroundExecutor(store)
    await executor.start()
    executor.submit(token, work, on_complete=registry.on_completion)
    await executor.join()
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from calllog.core.errors import DispatcherClosedError, StorageFault
from calllog.core.logging import get_logger, set_operation_token

if TYPE_CHECKING:
    from calllog.db.store import CallLogStore
    from calllog.dispatch.registry import Token, Work

logger = get_logger(__name__)

OnComplete = Callable[["Token", "Outcome"], None]


@dataclass(frozen=True)
class Outcome:
    """Result of one background operation: a value or a storage fault."""

    result: Any = None
    fault: StorageFault | None = None

    @property
    def ok(self) -> bool:
        return self.fault is None

    def dispose(self) -> None:
        """Close the result if it holds a releasable resource."""
        close = getattr(self.result, "close", None)
        if callable(close):
            close()


async def run_isolated(work: Work, store: CallLogStore, token: Token | None = None) -> Outcome:
    """Run `work` against `store`, converting storage faults into an Outcome.

    Args:
        work: Coroutine function to run
        store: Store passed to `work`
        token: Token of the operation (for logs)

    Returns:
        Outcome with the result, or with the fault if the store failed

    Raises:
        Exception: Anything that is not a StorageFault propagates unchanged
    """
    try:
        return Outcome(result=await work(store))
    except StorageFault as e:
        logger.warning(
            "storage_fault_suppressed",
            token=str(token) if token else None,
            category=e.category,
            operation=e.operation,
            error=str(e),
        )
        return Outcome(fault=e)


@dataclass
class _Job:
    token: Token
    work: Work
    on_complete: OnComplete
    is_cancelled: Callable[[], bool]


class BackgroundExecutor:
    """Runs submitted operations sequentially on one worker task."""

    def __init__(self, store: CallLogStore, name: str = "calllog-worker") -> None:
        """Initialize the executor.

        Args:
            store: Store every job runs against
            name: Name of the worker task
        """
        self._store = store
        self._name = name
        self._queue: asyncio.Queue[_Job] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._failure: BaseException | None = None
        self._closed = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> int:
        """Jobs queued and not yet finished."""
        return self._queue.qsize()

    async def start(self) -> None:
        """Start the worker task on the running loop. Idempotent."""
        if self._closed:
            raise DispatcherClosedError("Background executor was stopped and cannot restart")
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._task = asyncio.create_task(self._run(), name=self._name)
        logger.debug("worker_started", worker=self._name)

    def submit(
        self,
        token: Token,
        work: Work,
        on_complete: OnComplete,
        is_cancelled: Callable[[], bool] = lambda: False,
    ) -> None:
        """Queue `work` without waiting for it.

        Args:
            token: Token the completion is tagged with
            work: Coroutine function run against the store
            on_complete: Called on the loop with (token, outcome)
            is_cancelled: Checked just before the job starts; True skips it

        Raises:
            DispatcherClosedError: If the executor was stopped or has failed
        """
        if self._closed or self._failure is not None:
            raise DispatcherClosedError(
                f"Cannot submit {token}: background worker is not accepting work"
            )
        self._queue.put_nowait(_Job(token, work, on_complete, is_cancelled))

    async def join(self) -> None:
        """Wait until every queued job has run.

        Raises:
            Exception: The programming fault that stopped the worker, if any
        """
        if self._failure is not None:
            raise self._failure
        if self._task is None:
            return

        drained = asyncio.ensure_future(self._queue.join())
        try:
            await asyncio.wait({drained, self._task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not drained.done():
                drained.cancel()

        if self._failure is not None:
            raise self._failure
        # Let completions scheduled by the last job run before returning
        await asyncio.sleep(0)

    async def stop(self) -> None:
        """Drain the queue, then stop the worker. Re-raises a worker failure."""
        if self._closed:
            return
        try:
            await self.join()
        finally:
            self._closed = True
            if self._task is not None and not self._task.done():
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            logger.debug("worker_stopped", worker=self._name)

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._execute(job)
            except Exception as e:
                self._failure = e
                logger.error(
                    "worker_failed",
                    token=str(job.token),
                    error_type=type(e).__name__,
                    dropped_jobs=self._queue.qsize(),
                    exc_info=True,
                )
                self._drop_pending()
                return
            finally:
                set_operation_token(None)
                self._queue.task_done()

    async def _execute(self, job: _Job) -> None:
        if job.is_cancelled():
            logger.debug("cancelled_operation_skipped", token=str(job.token))
            return

        set_operation_token(str(job.token))
        outcome = await run_isolated(job.work, self._store, job.token)

        assert self._loop is not None
        self._loop.call_soon(job.on_complete, job.token, outcome)

    def _drop_pending(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._queue.task_done()
