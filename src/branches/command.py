"""Asynchronous units of work executed by the command queue.

A command performs exactly one side effect and resolves exactly once, either
with a value or with the error that stopped it. Commands know nothing about
the queue that runs them.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, Optional, TypeVar

from branches.models import Branch
from branches.vcs import Vcs

if TYPE_CHECKING:
    from branches.project import Project

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CommandError(Exception):
    """A command resolved with an error."""

    def __init__(self, command: "Command", cause: BaseException) -> None:
        """Initialize error.

        Args:
            command: The command that failed
            cause: The exception raised while executing it
        """
        super().__init__(f"Failed to execute {command!r}: {cause}")
        self.command = command
        self.cause = cause


class CommandStateError(RuntimeError):
    """A command was executed more than once."""


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a command: a value or an error, never both."""

    value: Optional[T] = None
    error: Optional[BaseException] = None

    @classmethod
    def ok(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, error: BaseException) -> "Result[T]":
        return cls(error=error)

    @property
    def is_value(self) -> bool:
        return self.error is None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def unwrap(self) -> T:
        """Return the value or raise the error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


class Command(ABC, Generic[T]):
    """Base class for queueable commands.

    Subclasses implement :meth:`_perform`. Callers use :meth:`execute` to get a
    :class:`Result` or :meth:`run` to get the value directly.
    """

    def __init__(self) -> None:
        self._is_running = False
        self._result: Optional[Result[T]] = None

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def result(self) -> Optional[Result[T]]:
        """The resolved result, or None until the command has finished."""
        return self._result

    @abstractmethod
    async def _perform(self) -> T:
        """Perform the side effect and return its value."""

    async def execute(self) -> Result[T]:
        """Perform the command once and resolve its result.

        Failures are captured into the returned result instead of raised.

        Raises:
            CommandStateError: If the command has already been executed
        """
        if self._is_running or self._result is not None:
            raise CommandStateError(f"{self!r} has already been executed")
        self._is_running = True
        try:
            self._result = Result.ok(await self._perform())
        except Exception as err:
            logger.debug("%r failed: %s", self, err)
            self._result = Result.fail(err)
        finally:
            self._is_running = False
        return self._result

    async def run(self) -> T:
        """Execute the command and return its value.

        Raises:
            CommandError: If the command resolved with an error
        """
        result = await self.execute()
        if result.error is not None:
            raise CommandError(self, result.error) from result.error
        return result.value  # type: ignore[return-value]

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class RefreshBranchesCommand(Command[list[Branch]]):
    """Reload the branch list of a project."""

    def __init__(self, project: "Project", vcs: Vcs) -> None:
        super().__init__()
        self.project = project
        self.vcs = vcs

    async def _perform(self) -> list[Branch]:
        branches = await self.vcs.list_branches()
        current = await self.vcs.current_branch_name()
        self.project.set_branches(branches, current=current)
        return branches


class CreateBranchCommand(Command[Branch]):
    """Create a branch and check it out."""

    def __init__(self, vcs: Vcs, branch_name: str, base_branch: Optional[str] = None) -> None:
        super().__init__()
        self.vcs = vcs
        self.branch_name = branch_name
        self.base_branch = base_branch

    async def _perform(self) -> Branch:
        return await self.vcs.create_branch(self.branch_name, base=self.base_branch)

    def __repr__(self) -> str:
        return f"CreateBranchCommand({self.branch_name!r}, base={self.base_branch!r})"


class DeleteBranchCommand(Command[Branch]):
    """Delete a branch."""

    def __init__(self, vcs: Vcs, branch_name: str, force: bool = False) -> None:
        super().__init__()
        self.vcs = vcs
        self.branch_name = branch_name
        self.force = force

    async def _perform(self) -> Branch:
        return await self.vcs.delete_branch(self.branch_name, force=self.force)

    def __repr__(self) -> str:
        return f"DeleteBranchCommand({self.branch_name!r}, force={self.force})"


class RenameBranchCommand(Command[Branch]):
    """Rename a branch."""

    def __init__(self, vcs: Vcs, old_name: str, new_name: str) -> None:
        super().__init__()
        self.vcs = vcs
        self.old_name = old_name
        self.new_name = new_name

    async def _perform(self) -> Branch:
        return await self.vcs.rename_branch(self.old_name, self.new_name)

    def __repr__(self) -> str:
        return f"RenameBranchCommand({self.old_name!r} -> {self.new_name!r})"


class CheckoutBranchCommand(Command[Branch]):
    """Check out a branch."""

    def __init__(self, vcs: Vcs, branch_name: str) -> None:
        super().__init__()
        self.vcs = vcs
        self.branch_name = branch_name

    async def _perform(self) -> Branch:
        return await self.vcs.checkout_branch(self.branch_name)

    def __repr__(self) -> str:
        return f"CheckoutBranchCommand({self.branch_name!r})"
