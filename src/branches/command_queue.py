"""Sequential command queue.

Commands submitted to a :class:`CommandQueue` run one at a time, in
submission order, on a single drain task. Items that have not started yet can
be canceled, the whole queue can be paused and resumed, and repeated requests
can be rejected by identifier while an earlier request is pending or was
completed recently.
"""

import asyncio
import logging
from collections import deque
from typing import Callable, Generic, Optional, TypeVar

from branches.command import Command, CommandError, Result

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CommandQueueItem(Generic[T]):
    """A command waiting in, or taken from, a :class:`CommandQueue`.

    The item starts queued and ends either canceled (before it started) or
    resolved with the command's result. Both states are final.
    """

    def __init__(
        self,
        command: Command[T],
        *,
        id: int,
        identifier: Optional[str] = None,
        retention: float = 0.0,
        on_cancel: Optional[Callable[[], None]] = None,
    ) -> None:
        """Initialize item.

        Args:
            command: The command to run
            id: Queue-assigned, monotonically increasing id
            identifier: Dedup key; defaults to a key unique to this item
            retention: Seconds the identifier stays registered after completion
            on_cancel: Called once when the item is canceled
        """
        self.command = command
        self.id = id
        self.identifier = identifier if identifier is not None else f"CommandQueueItem #{id}"
        self.retention = retention
        self._on_cancel = on_cancel
        self._started = False
        self._canceled = False
        self.task: Optional[asyncio.Task[T]] = None
        self.result: asyncio.Future[Result[T]] = asyncio.get_running_loop().create_future()

    @property
    def is_canceled(self) -> bool:
        return self._canceled

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def is_completed(self) -> bool:
        """True once the command has resolved with a value or an error."""
        return self._started and self.result.done()

    @property
    def is_running(self) -> bool:
        return self._started and not self.result.done()

    def cancel(self) -> bool:
        """Cancel the item if it has not started.

        A canceled item never runs and its result future is cancelled, so
        nothing awaiting it waits forever.

        Returns:
            True if the item is canceled, False if it had already started
        """
        if self._started:
            return False
        if not self._canceled:
            self._canceled = True
            self.result.cancel()
            logger.debug("Canceled %r", self)
            if self._on_cancel is not None:
                self._on_cancel()
        return True

    async def execute_now(self) -> None:
        """Run the command and resolve :attr:`result`.

        Never raises unless the caller itself is cancelled: a failing command,
        including one that is cancelled from within, resolves the result with
        its error.
        """
        if self._canceled or self._started:
            return
        self._started = True
        self.task = asyncio.ensure_future(self.command.run())
        try:
            await asyncio.wait({self.task})
        except asyncio.CancelledError:
            # The caller was cancelled, not the command.
            self.task.cancel()
            self.result.cancel()
            raise
        if self.task.cancelled():
            result: Result[T] = Result.fail(CommandError(self.command, asyncio.CancelledError()))
        elif self.task.exception() is not None:
            result = Result.fail(self.task.exception())
        else:
            result = Result.ok(self.task.result())
        self.result.set_result(result)

    def __repr__(self) -> str:
        return f"CommandQueueItem(#{self.id}, {self.identifier!r}, {self.command!r})"


class CommandQueue(Generic[T]):
    """Runs commands strictly one at a time in submission order."""

    def __init__(self, debug_label: Optional[str] = None) -> None:
        """Initialize queue.

        Args:
            debug_label: Label used to identify the queue in logs
        """
        self.debug_label = debug_label
        self._pending: deque[CommandQueueItem[T]] = deque()
        self._identifiers: dict[int, str] = {}
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._paused = asyncio.Event()
        self._draining = False
        self._drain_task: Optional[asyncio.Task[None]] = None
        self._current: Optional[CommandQueueItem[T]] = None
        self._count = 1

    def submit(
        self,
        command: Command[T],
        identifier: Optional[str] = None,
        reject_if_duplicate: bool = False,
        retention: float = 0.0,
    ) -> Optional[CommandQueueItem[T]]:
        """Add a command to the tail of the queue.

        If the queue is paused, the item waits until :meth:`resume` is called.

        Args:
            command: The command to run
            identifier: Dedup key registered while the item is pending, running
                or inside its retention window
            reject_if_duplicate: Return None instead of queueing when
                ``identifier`` is already registered
            retention: Seconds to keep ``identifier`` registered after the
                item completes

        Returns:
            The queued item, or None if it was rejected as a duplicate

        Raises:
            ValueError: If ``retention`` is negative
        """
        if retention < 0:
            raise ValueError(f"retention must not be negative, got {retention}")
        if reject_if_duplicate and identifier is not None and self.contains_identifier(identifier):
            logger.debug("%r rejected duplicate %r for %r", self, identifier, command)
            return None

        item_id = self._count
        self._count += 1
        item: CommandQueueItem[T] = CommandQueueItem(
            command,
            id=item_id,
            identifier=identifier,
            retention=retention,
            on_cancel=lambda: self._release_identifier(item_id),
        )
        self._identifiers[item.id] = item.identifier
        self._pending.append(item)
        logger.debug("%r queued %r at position %d", self, item, len(self._pending))

        self._start_draining()
        return item

    def process(
        self,
        command: Command[T],
        identifier: Optional[str] = None,
        reject_if_duplicate: bool = False,
        retention: float = 0.0,
    ) -> Optional["asyncio.Future[Result[T]]"]:
        """Submit a command and return a future for its result.

        Takes the same arguments as :meth:`submit`.

        Returns:
            A future resolving to the command's :class:`Result`, or None if the
            command was rejected as a duplicate
        """
        item = self.submit(
            command,
            identifier=identifier,
            reject_if_duplicate=reject_if_duplicate,
            retention=retention,
        )
        return item.result if item is not None else None

    def pause(self) -> None:
        """Stop starting new items.

        A running item still completes. Use :meth:`cancel_all` to drop the
        pending items instead.
        """
        if self.is_paused:
            return
        logger.debug("%r paused", self)
        self._resumed.clear()
        self._paused.set()

    def resume(self) -> None:
        """Start running pending items again."""
        if not self.is_paused:
            return
        logger.debug("%r resumed", self)
        self._paused.clear()
        self._resumed.set()
        self._start_draining()

    def cancel_all(self) -> None:
        """Cancel every pending item. The running item is not affected."""
        for item in self._pending:
            item.cancel()

    async def wait_for_resume(self) -> None:
        """Return once the queue is not paused."""
        await self._resumed.wait()

    async def wait_all(self, stop_at_pause: bool = False) -> None:
        """Wait for the running item and every pending item to finish.

        Failed items count as finished; their errors are not raised here.
        Canceled items are skipped.

        Args:
            stop_at_pause: Return as soon as the queue is paused with items
                still pending, instead of waiting for :meth:`resume`
        """
        items = [item for item in (self._current, *self._pending) if item is not None]
        for item in items:
            while not item.result.done():
                if item.is_started or not self.is_paused:
                    if stop_at_pause and not item.is_started:
                        pause_waiter = asyncio.ensure_future(self._paused.wait())
                        try:
                            await asyncio.wait({item.result, pause_waiter}, return_when=asyncio.FIRST_COMPLETED)
                        finally:
                            pause_waiter.cancel()
                    else:
                        await asyncio.wait({item.result})
                elif stop_at_pause:
                    return
                else:
                    await self.wait_for_resume()

    async def dispose(self) -> None:
        """Cancel pending items and wait until the queue is idle.

        When called from the running command, returns without waiting for
        that command.
        """
        self.cancel_all()
        self._pending.clear()
        self.resume()
        current = self._current
        if current is not None and current.task is asyncio.current_task():
            return
        await self.wait_all()
        task = self._drain_task
        if task is not None and not task.done():
            await task

    def on_queue(self, item: CommandQueueItem[T]) -> bool:
        """Return True if ``item`` is waiting to be executed."""
        return item in self._pending

    def contains_identifier(self, identifier: str) -> bool:
        """Return True if ``identifier`` is registered.

        An identifier stays registered while its item is pending or running,
        and for the item's retention time after it completes. Canceling an
        item releases its identifier immediately.
        """
        return identifier in self._identifiers.values()

    def items_with(self, identifier: str) -> list[CommandQueueItem[T]]:
        """Return the pending, non-canceled items using ``identifier``."""
        return [item for item in self._pending if item.identifier == identifier and not item.is_canceled]

    @property
    def is_paused(self) -> bool:
        return not self._resumed.is_set()

    @property
    def is_running(self) -> bool:
        """True while the drain task is working through the queue."""
        return self._draining

    @property
    def current(self) -> Optional[CommandQueueItem[T]]:
        """The item being executed, if any."""
        return self._current

    def __len__(self) -> int:
        return sum(1 for item in self._pending if not item.is_canceled)

    def __repr__(self) -> str:
        return f"CommandQueue({self.debug_label or hex(id(self))})"

    def _start_draining(self) -> None:
        if self._draining or self.is_paused or not self._pending:
            return
        # Set before the task is scheduled so a second submit in the same
        # tick cannot start another drain task.
        self._draining = True
        self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        try:
            while self._pending and not self.is_paused:
                item = self._pending.popleft()
                if item.is_canceled:
                    continue
                self._current = item
                logger.debug("%r running %r", self, item)
                try:
                    await item.execute_now()
                finally:
                    self._current = None
                    self._schedule_release(item)
                self._log_outcome(item)
        except asyncio.CancelledError:
            self.cancel_all()
            self._pending.clear()
            raise
        finally:
            self._draining = False
            logger.debug("%r drained, %d item(s) left", self, len(self._pending))

    def _log_outcome(self, item: CommandQueueItem[T]) -> None:
        if item.result.cancelled():
            return
        outcome = item.result.result()
        if outcome.is_error:
            logger.info("%r failed: %s", item, outcome.error)
        else:
            logger.debug("%r completed", item)

    def _schedule_release(self, item: CommandQueueItem[T]) -> None:
        if item.retention <= 0:
            self._release_identifier(item.id)
            return
        loop = asyncio.get_running_loop()
        loop.call_later(item.retention, self._release_identifier, item.id)

    def _release_identifier(self, item_id: int) -> None:
        self._identifiers.pop(item_id, None)
