"""Tests for the sequential command queue."""

import asyncio
import random
from typing import Callable, Optional

import pytest

from branches.command import Command, CommandError
from branches.command_queue import CommandQueue

pytestmark = pytest.mark.asyncio


class StepCommand(Command[str]):
    """Records its start and end in ``log`` and returns ``name``."""

    def __init__(
        self,
        name: str,
        log: list[str],
        gate: Optional[asyncio.Event] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ) -> None:
        super().__init__()
        self.name = name
        self.log = log
        self.gate = gate
        self.error = error
        self.delay = delay

    async def _perform(self) -> str:
        self.log.append(f"start {self.name}")
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(self.delay)
        self.log.append(f"end {self.name}")
        if self.error is not None:
            raise self.error
        return self.name

    def __repr__(self) -> str:
        return f"StepCommand({self.name!r})"


class TrackingCommand(Command[int]):
    """Tracks how many tracking commands run at the same time."""

    def __init__(self, number: int, stats: dict[str, int], order: list[int]) -> None:
        super().__init__()
        self.number = number
        self.stats = stats
        self.order = order

    async def _perform(self) -> int:
        self.stats["running"] += 1
        self.stats["max"] = max(self.stats["max"], self.stats["running"])
        self.order.append(self.number)
        await asyncio.sleep(random.uniform(0, 0.005))
        self.stats["running"] -= 1
        return self.number


async def until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the event loop until ``predicate`` holds."""

    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(poll(), timeout)


class InnerCancelCommand(Command[str]):
    """Awaits a future that was cancelled elsewhere."""

    async def _perform(self) -> str:
        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        future.cancel()
        return await future


class DisposingCommand(Command[str]):
    """Disposes the queue that runs it."""

    def __init__(self, queue: CommandQueue[str]) -> None:
        super().__init__()
        self.queue = queue

    async def _perform(self) -> str:
        await self.queue.dispose()
        return "disposed"


@pytest.fixture
def log() -> list[str]:
    return []


class TestOrdering:
    """Items run one at a time in submission order."""

    async def test_runs_in_submission_order(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        for name in "abcde":
            queue.submit(StepCommand(name, log, delay=0.001))
        await queue.wait_all()
        expected = []
        for name in "abcde":
            expected += [f"start {name}", f"end {name}"]
        assert log == expected

    async def test_never_runs_two_items_at_once(self) -> None:
        queue: CommandQueue[int] = CommandQueue()
        stats = {"running": 0, "max": 0}
        order: list[int] = []
        items = [queue.submit(TrackingCommand(n, stats, order)) for n in range(20)]
        await queue.wait_all()
        assert stats["max"] == 1
        assert order == list(range(20))
        assert [item.result.result().value for item in items] == list(range(20))

    async def test_ids_are_monotonic_and_identifiers_unique_by_default(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        items = [queue.submit(StepCommand(name, log)) for name in "abc"]
        ids = [item.id for item in items]
        assert ids == sorted(ids)
        assert len(set(ids)) == 3
        assert len({item.identifier for item in items}) == 3
        await queue.wait_all()
        later = queue.submit(StepCommand("d", log))
        assert later.id > ids[-1]
        await queue.wait_all()

    async def test_submit_does_not_block(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        gate = asyncio.Event()
        item = queue.submit(StepCommand("a", log, gate=gate))
        assert item is not None
        assert not item.is_started
        assert queue.is_running
        gate.set()
        await queue.wait_all()
        assert item.is_completed


class TestFailures:
    """A failing item never stops the queue."""

    async def test_failure_is_isolated(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        a = queue.submit(StepCommand("a", log))
        b = queue.submit(StepCommand("b", log, error=ValueError("boom")))
        c = queue.submit(StepCommand("c", log))

        await queue.wait_all()

        assert log == ["start a", "end a", "start b", "end b", "start c", "end c"]
        assert a.result.result().value == "a"
        b_result = b.result.result()
        assert b_result.is_error
        assert isinstance(b_result.error, CommandError)
        assert isinstance(b_result.error.cause, ValueError)
        assert "StepCommand('b')" in str(b_result.error)
        assert c.result.result().value == "c"

    async def test_wait_all_does_not_raise_item_errors(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        queue.submit(StepCommand("a", log, error=RuntimeError("nope")))
        await queue.wait_all()
        assert not queue.is_running

    async def test_reexecuted_command_fails_inside_item(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        command = StepCommand("a", log)
        first = queue.submit(command)
        second = queue.submit(command)
        await queue.wait_all()
        assert first.result.result().value == "a"
        assert second.result.result().is_error

    async def test_command_cancelled_from_within_does_not_stop_queue(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        a = queue.submit(InnerCancelCommand())
        b = queue.submit(StepCommand("b", log))

        await asyncio.wait_for(queue.wait_all(), timeout=0.5)

        assert not a.result.cancelled()
        a_result = a.result.result()
        assert isinstance(a_result.error, CommandError)
        assert isinstance(a_result.error.cause, asyncio.CancelledError)
        assert b.result.result().value == "b"
        assert not queue.is_running
        assert len(queue) == 0

    async def test_cancelled_drain_task_cancels_pending_items(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        gate = asyncio.Event()
        running = queue.submit(StepCommand("a", log, gate=gate))
        pending = queue.submit(StepCommand("b", log))
        await until(lambda: running.is_started)

        queue._drain_task.cancel()
        await asyncio.wait_for(queue.wait_all(), timeout=0.5)

        assert running.result.cancelled()
        assert pending.is_canceled
        assert not queue.is_running
        assert log == ["start a"]

    async def test_negative_retention_is_rejected(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        with pytest.raises(ValueError):
            queue.submit(StepCommand("a", log), retention=-1)
        assert len(queue) == 0


class TestIdentifiers:
    """Duplicate submissions are rejected while an identifier is registered."""

    async def test_duplicate_rejected_while_pending(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        gate = asyncio.Event()
        first = queue.submit(StepCommand("a", log, gate=gate), identifier="refresh", reject_if_duplicate=True)
        second = queue.submit(StepCommand("b", log), identifier="refresh", reject_if_duplicate=True)

        assert first is not None
        assert second is None
        assert queue.contains_identifier("refresh")

        gate.set()
        await queue.wait_all()
        assert log == ["start a", "end a"]
        assert not queue.contains_identifier("refresh")

        third = queue.submit(StepCommand("c", log), identifier="refresh", reject_if_duplicate=True)
        assert third is not None
        await queue.wait_all()

    async def test_duplicates_allowed_without_flag(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        first = queue.submit(StepCommand("a", log), identifier="same")
        second = queue.submit(StepCommand("b", log), identifier="same")
        assert first is not None and second is not None
        assert queue.items_with("same") == [first, second]
        await queue.wait_all()
        assert log == ["start a", "end a", "start b", "end b"]
        assert queue.items_with("same") == []

    async def test_identifier_kept_for_retention_after_completion(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        queue.submit(StepCommand("a", log, delay=0.1), identifier="refresh", retention=0.05)

        await queue.wait_all()
        # Retention counts from completion, not from start.
        assert queue.contains_identifier("refresh")
        assert queue.submit(StepCommand("b", log), identifier="refresh", reject_if_duplicate=True) is None

        await asyncio.sleep(0.15)
        assert not queue.contains_identifier("refresh")
        assert log == ["start a", "end a"]

    async def test_retention_cleanup_runs_while_paused(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        queue.submit(StepCommand("a", log), identifier="refresh", retention=0.05)
        await queue.wait_all()
        queue.pause()
        await asyncio.sleep(0.15)
        assert not queue.contains_identifier("refresh")

    async def test_process_returns_result_future(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        future = queue.process(StepCommand("a", log), identifier="x", reject_if_duplicate=True)
        assert future is not None
        assert queue.process(StepCommand("b", log), identifier="x", reject_if_duplicate=True) is None
        result = await future
        assert result.unwrap() == "a"


class TestCancellation:
    """Items can only be canceled before they start."""

    async def test_cancel_before_start(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        gate = asyncio.Event()
        first = queue.submit(StepCommand("a", log, gate=gate))
        second = queue.submit(StepCommand("b", log), identifier="b", retention=10)

        assert queue.on_queue(second)
        assert second.cancel()
        assert second.is_canceled
        assert not queue.contains_identifier("b")
        assert queue.items_with("b") == []

        gate.set()
        await queue.wait_all()
        assert log == ["start a", "end a"]
        assert first.is_completed
        assert not second.is_started
        assert second.result.cancelled()

    async def test_cancel_after_start_is_a_noop(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        gate = asyncio.Event()
        item = queue.submit(StepCommand("a", log, gate=gate))
        await until(lambda: item.is_started)

        assert queue.current is item
        assert item.is_running
        assert not item.cancel()
        assert not item.is_canceled

        gate.set()
        await queue.wait_all()
        assert item.result.result().value == "a"

    async def test_cancel_all_before_start(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        items = [queue.submit(StepCommand(name, log)) for name in "abc"]
        queue.cancel_all()

        assert all(item.is_canceled for item in items)
        await asyncio.wait_for(queue.wait_all(), timeout=0.5)
        assert log == []
        assert not any(item.is_completed for item in items)

    async def test_cancel_all_leaves_running_item(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        gate = asyncio.Event()
        running = queue.submit(StepCommand("a", log, gate=gate))
        pending = queue.submit(StepCommand("b", log))
        await until(lambda: running.is_started)

        queue.cancel_all()
        assert not running.is_canceled
        assert pending.is_canceled

        gate.set()
        await queue.wait_all()
        assert running.result.result().value == "a"
        assert log == ["start a", "end a"]


class TestPause:
    """Pausing holds pending items without touching the running one."""

    async def test_pause_then_resume_keeps_order(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        queue.pause()
        queue.submit(StepCommand("x", log))
        queue.submit(StepCommand("y", log))

        await asyncio.sleep(0.01)
        assert log == []
        assert queue.is_paused
        assert not queue.is_running
        assert len(queue) == 2

        queue.resume()
        await queue.wait_all()
        assert log == ["start x", "end x", "start y", "end y"]

    async def test_pause_lets_running_item_finish(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        gate = asyncio.Event()
        x = queue.submit(StepCommand("x", log, gate=gate))
        y = queue.submit(StepCommand("y", log))
        await until(lambda: x.is_started)

        queue.pause()
        gate.set()
        await x.result
        await until(lambda: not queue.is_running)
        assert not y.is_started
        assert queue.on_queue(y)

        queue.resume()
        await queue.wait_all()
        assert log == ["start x", "end x", "start y", "end y"]

    async def test_pause_and_resume_are_idempotent(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        queue.resume()
        assert not queue.is_paused
        queue.pause()
        queue.pause()
        assert queue.is_paused
        queue.submit(StepCommand("a", log))
        queue.resume()
        queue.resume()
        await queue.wait_all()
        assert log == ["start a", "end a"]

    async def test_wait_all_returns_at_pause_when_asked(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        queue.pause()
        item = queue.submit(StepCommand("a", log))
        await asyncio.wait_for(queue.wait_all(stop_at_pause=True), timeout=0.5)
        assert not item.is_started
        queue.resume()
        await queue.wait_all()

    async def test_wait_all_stops_when_paused_mid_wait(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        gate = asyncio.Event()
        x = queue.submit(StepCommand("x", log, gate=gate))
        y = queue.submit(StepCommand("y", log))
        waiter = asyncio.ensure_future(queue.wait_all(stop_at_pause=True))
        await until(lambda: x.is_started)

        queue.pause()
        gate.set()
        await asyncio.wait_for(waiter, timeout=0.5)
        assert x.is_completed
        assert not y.is_started

        queue.resume()
        await queue.wait_all()

    async def test_wait_all_waits_through_pause(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        queue.pause()
        item = queue.submit(StepCommand("a", log))
        waiter = asyncio.ensure_future(queue.wait_all())

        await asyncio.sleep(0.01)
        assert not waiter.done()

        queue.resume()
        await asyncio.wait_for(waiter, timeout=0.5)
        assert item.is_completed


class TestDispose:
    """Disposing cancels pending work and drains the queue."""

    async def test_dispose_cancels_pending_and_waits_for_running(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        gate = asyncio.Event()
        running = queue.submit(StepCommand("a", log, gate=gate))
        pending = [queue.submit(StepCommand(name, log)) for name in "bc"]
        await until(lambda: running.is_started)

        disposing = asyncio.ensure_future(queue.dispose())
        await asyncio.sleep(0)
        assert all(item.is_canceled for item in pending)
        assert not disposing.done()

        gate.set()
        await asyncio.wait_for(disposing, timeout=0.5)
        assert running.result.result().value == "a"
        assert len(queue) == 0
        assert not queue.is_running
        assert queue.current is None
        assert log == ["start a", "end a"]

    async def test_dispose_paused_queue(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        queue.pause()
        item = queue.submit(StepCommand("a", log))
        await asyncio.wait_for(queue.dispose(), timeout=0.5)
        assert item.is_canceled
        assert not queue.is_paused
        assert not queue.on_queue(item)
        assert log == []

    async def test_dispose_twice(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue(debug_label="twice")
        queue.submit(StepCommand("a", log))
        await queue.dispose()
        await queue.dispose()
        assert not queue.is_running
        assert repr(queue) == "CommandQueue(twice)"

    async def test_dispose_from_running_command(self, log: list[str]) -> None:
        queue: CommandQueue[str] = CommandQueue()
        disposer = queue.submit(DisposingCommand(queue))
        pending = queue.submit(StepCommand("b", log))

        await asyncio.wait_for(asyncio.wait({disposer.result}), timeout=0.5)

        assert disposer.result.result().value == "disposed"
        assert pending.is_canceled
        await asyncio.wait_for(queue.wait_all(), timeout=0.5)
        await until(lambda: not queue.is_running)
        assert log == []
