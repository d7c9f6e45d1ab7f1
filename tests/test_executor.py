"""Tests for the failure-isolating background executor."""

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from typing import Any
from unittest.mock import MagicMock

import pytest

from calllog.core.errors import (
    DispatcherClosedError,
    StorageCorruptError,
    StorageFullError,
    StoreUnavailableError,
)
from calllog.dispatch.executor import BackgroundExecutor, Outcome, run_isolated
from calllog.dispatch.registry import OperationKind, Token


def _token(generation: int, kind: OperationKind = OperationKind.FETCH_LOG) -> Token:
    return Token(kind, generation)


class Completions:
    """Collects (token, outcome) pairs handed back by the executor."""

    def __init__(self) -> None:
        self.received: list[tuple[Token, Outcome]] = []
        self.tasks: list[asyncio.Task[Any] | None] = []

    def __call__(self, token: Token, outcome: Outcome) -> None:
        self.received.append((token, outcome))
        self.tasks.append(asyncio.current_task())


@pytest.fixture
async def executor() -> AsyncGenerator[BackgroundExecutor, None]:
    executor = BackgroundExecutor(store=MagicMock())
    await executor.start()
    yield executor
    with contextlib.suppress(RuntimeError):
        await executor.stop()


class TestRunIsolated:
    """Tests for storage fault suppression."""

    @pytest.mark.asyncio
    async def test_returns_result(self) -> None:
        async def work(store: Any) -> str:
            return "rows"

        outcome = await run_isolated(work, MagicMock())

        assert outcome.ok
        assert outcome.result == "rows"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "fault",
        [
            StorageFullError("database or disk is full"),
            StorageCorruptError("database disk image is malformed"),
            StoreUnavailableError("unable to open database file"),
        ],
    )
    async def test_storage_faults_are_suppressed(self, fault: Exception) -> None:
        async def work(store: Any) -> None:
            raise fault

        outcome = await run_isolated(work, MagicMock(), _token(1))

        assert not outcome.ok
        assert outcome.fault is fault
        assert outcome.result is None

    @pytest.mark.asyncio
    async def test_programming_faults_propagate(self) -> None:
        async def work(store: Any) -> None:
            raise KeyError("bad column")

        with pytest.raises(KeyError):
            await run_isolated(work, MagicMock())


class TestOutcome:
    """Tests for result disposal."""

    def test_dispose_closes_result(self) -> None:
        result = MagicMock()

        Outcome(result=result).dispose()

        result.close.assert_called_once()

    def test_dispose_ignores_plain_values(self) -> None:
        Outcome(result=3).dispose()
        Outcome().dispose()


class TestBackgroundExecutor:
    """Tests for the sequential worker."""

    @pytest.mark.asyncio
    async def test_jobs_run_in_submission_order(self, executor: BackgroundExecutor) -> None:
        order: list[int] = []
        completions = Completions()

        def make_work(n: int) -> Any:
            async def work(store: Any) -> int:
                await asyncio.sleep(0.01 * (3 - n))
                order.append(n)
                return n

            return work

        for n in range(3):
            executor.submit(_token(n + 1), make_work(n), on_complete=completions)
        await executor.join()

        assert order == [0, 1, 2]
        assert [outcome.result for _, outcome in completions.received] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_only_one_job_runs_at_a_time(self, executor: BackgroundExecutor) -> None:
        active = 0
        peak = 0

        async def work(store: Any) -> None:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        for n in range(4):
            executor.submit(_token(n + 1), work, on_complete=Completions())
        await executor.join()

        assert peak == 1

    @pytest.mark.asyncio
    async def test_submit_does_not_wait_for_work(self, executor: BackgroundExecutor) -> None:
        started = asyncio.Event()
        release = asyncio.Event()

        async def work(store: Any) -> None:
            started.set()
            await release.wait()

        executor.submit(_token(1), work, on_complete=Completions())

        assert not started.is_set()
        await started.wait()
        release.set()
        await executor.join()

    @pytest.mark.asyncio
    async def test_completion_runs_on_loop_not_in_worker(
        self, executor: BackgroundExecutor
    ) -> None:
        completions = Completions()

        async def work(store: Any) -> str:
            return "done"

        executor.submit(_token(1), work, on_complete=completions)
        await executor.join()

        assert len(completions.received) == 1
        assert completions.tasks == [None]

    @pytest.mark.asyncio
    async def test_work_receives_store(self) -> None:
        store = MagicMock()
        executor = BackgroundExecutor(store)
        await executor.start()
        seen: list[Any] = []

        async def work(s: Any) -> None:
            seen.append(s)

        executor.submit(_token(1), work, on_complete=Completions())
        await executor.stop()

        assert seen == [store]

    @pytest.mark.asyncio
    async def test_storage_fault_does_not_stop_worker(
        self, executor: BackgroundExecutor
    ) -> None:
        completions = Completions()

        async def failing(store: Any) -> None:
            raise StorageFullError("database or disk is full")

        async def working(store: Any) -> str:
            return "ok"

        executor.submit(_token(1), failing, on_complete=completions)
        executor.submit(_token(2), working, on_complete=completions)
        await executor.join()

        first, second = (outcome for _, outcome in completions.received)
        assert isinstance(first.fault, StorageFullError)
        assert second.result == "ok"
        assert executor.running

    @pytest.mark.asyncio
    async def test_cancelled_job_is_skipped(self, executor: BackgroundExecutor) -> None:
        completions = Completions()
        ran: list[int] = []

        async def work(store: Any) -> None:
            ran.append(1)

        executor.submit(_token(1), work, on_complete=completions, is_cancelled=lambda: True)
        await executor.join()

        assert ran == []
        assert completions.received == []

    @pytest.mark.asyncio
    async def test_programming_fault_stops_worker_and_surfaces(
        self, executor: BackgroundExecutor
    ) -> None:
        completions = Completions()
        ran: list[int] = []

        async def broken(store: Any) -> None:
            raise RuntimeError("malformed query")

        async def later(store: Any) -> None:
            ran.append(1)

        executor.submit(_token(1), broken, on_complete=completions)
        executor.submit(_token(2), later, on_complete=completions)

        with pytest.raises(RuntimeError, match="malformed query"):
            await executor.join()

        assert ran == []
        assert completions.received == []
        assert not executor.running
        with pytest.raises(DispatcherClosedError):
            executor.submit(_token(3), later, on_complete=completions)

    @pytest.mark.asyncio
    async def test_stop_drains_then_refuses_work(self) -> None:
        executor = BackgroundExecutor(store=MagicMock())
        await executor.start()
        completions = Completions()

        async def work(store: Any) -> int:
            await asyncio.sleep(0.01)
            return 1

        executor.submit(_token(1), work, on_complete=completions)
        await executor.stop()

        assert len(completions.received) == 1
        assert not executor.running
        with pytest.raises(DispatcherClosedError):
            executor.submit(_token(2), work, on_complete=completions)
        with pytest.raises(DispatcherClosedError):
            await executor.start()

    @pytest.mark.asyncio
    async def test_join_without_start_returns(self) -> None:
        await BackgroundExecutor(store=MagicMock()).join()
