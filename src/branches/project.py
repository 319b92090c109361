"""A repository and the queue that serializes every change to it."""

import asyncio
import logging
from pathlib import Path
from types import TracebackType
from typing import Any, Optional, TypeVar

from branches.command import (
    CheckoutBranchCommand,
    Command,
    CreateBranchCommand,
    DeleteBranchCommand,
    RefreshBranchesCommand,
    RenameBranchCommand,
    Result,
)
from branches.command_queue import CommandQueue
from branches.config import QueueSettings
from branches.models import Branch
from branches.vcs import Vcs

logger = logging.getLogger(__name__)

T = TypeVar("T")

REFRESH_IDENTIFIER = "refresh"


class Project:
    """Branches of one repository.

    Every command goes through a single :class:`CommandQueue`, so operations on
    the working copy never overlap.
    """

    def __init__(self, path: Path, vcs: Optional[Vcs] = None, settings: Optional[QueueSettings] = None) -> None:
        """Initialize project.

        Args:
            path: Repository path
            vcs: Backend to use; detected from ``path`` when omitted
            settings: Queue settings

        Raises:
            VcsError: If no supported repository is found at ``path``
        """
        self.path = Path(path)
        self.vcs = vcs if vcs is not None else Vcs.at(self.path)
        self.settings = settings or QueueSettings()
        self.current_branch = ""
        self._branches: list[Branch] = []
        self._queue: CommandQueue[Any] = CommandQueue(debug_label=str(self.path))

    @property
    def branches(self) -> tuple[Branch, ...]:
        return tuple(self._branches)

    @property
    def queue(self) -> CommandQueue[Any]:
        return self._queue

    @property
    def is_running_command(self) -> bool:
        return self._queue.is_running

    def set_branches(self, branches: list[Branch], current: str = "") -> None:
        """Replace the branch list with freshly loaded data."""
        self._branches = list(branches)
        self.current_branch = current

    def find_branch(self, name: str) -> Optional[Branch]:
        return next((branch for branch in self._branches if branch.name == name), None)

    async def execute(self, command: Command[T]) -> T:
        """Run ``command`` on the queue and return its value.

        Raises:
            CommandError: If the command failed
        """
        item = self._queue.submit(command)
        if item is None:
            raise RuntimeError(f"{self._queue!r} rejected {command!r}")
        return await self._value_of(item.result)

    async def refresh(self, force: bool = False) -> list[Branch]:
        """Reload the branch list.

        Refreshes requested while another one is queued, or shortly after one
        completed, share its outcome instead of running again.

        Args:
            force: Queue a new refresh even if one is pending or recent
        """
        future = self._queue.process(
            RefreshBranchesCommand(self, self.vcs),
            identifier=REFRESH_IDENTIFIER,
            reject_if_duplicate=not force,
            retention=self.settings.refresh_retention,
        )
        if future is None:
            future = self._pending_refresh()
            if future is None:
                logger.debug("Refresh skipped, branch list is recent")
                return list(self._branches)
        return await self._value_of(future)

    async def create_branch(self, name: str, base: Optional[str] = None) -> Branch:
        branch = await self.execute(CreateBranchCommand(self.vcs, name, base_branch=base))
        await self.refresh(force=True)
        return branch

    async def delete_branch(self, name: str, force: bool = False) -> Branch:
        branch = await self.execute(DeleteBranchCommand(self.vcs, name, force=force))
        await self.refresh(force=True)
        return branch

    async def rename_branch(self, old_name: str, new_name: str) -> Branch:
        branch = await self.execute(RenameBranchCommand(self.vcs, old_name, new_name))
        await self.refresh(force=True)
        return branch

    async def checkout_branch(self, name: str) -> Branch:
        branch = await self.execute(CheckoutBranchCommand(self.vcs, name))
        await self.refresh(force=True)
        return branch

    async def wait_all_commands(self) -> None:
        await self._queue.wait_all()

    async def close(self) -> None:
        """Cancel queued commands and wait for the running one."""
        await self._queue.dispose()

    async def __aenter__(self) -> "Project":
        await self.refresh()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        await self.close()

    def _pending_refresh(self) -> Optional["asyncio.Future[Result[Any]]"]:
        pending = self._queue.items_with(REFRESH_IDENTIFIER)
        if pending:
            return pending[-1].result
        current = self._queue.current
        if current is not None and current.identifier == REFRESH_IDENTIFIER:
            return current.result
        return None

    @staticmethod
    async def _value_of(future: "asyncio.Future[Result[T]]") -> T:
        result = await future
        return result.unwrap()
