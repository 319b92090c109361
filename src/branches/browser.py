"""Interactive branch browser."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from rich.console import Console
from rich.markup import escape

from branches.command import CommandError
from branches.config import DisplayConfig
from branches.display import build_branch_table, page_branches, page_count, page_start, sort_branches
from branches.models import Branch
from branches.project import Project
from branches.vcs import VcsError

logger = logging.getLogger(__name__)

PROMPT = "> "

INSTRUCTIONS = """Commands:
  [number]              - Checkout branch
  -[number]             - Delete branch
  [name]                - Create new branch
  > [number] [new_name] - Rename branch
  < / >                 - Previous/Next page
  q                     - Quit"""


@dataclass(frozen=True)
class ExitAction:
    pass


@dataclass(frozen=True)
class PageAction:
    delta: int


@dataclass(frozen=True)
class CheckoutAction:
    index: int


@dataclass(frozen=True)
class CreateAction:
    name: str


@dataclass(frozen=True)
class DeleteAction:
    index: int


@dataclass(frozen=True)
class RenameAction:
    index: int
    new_name: str


Action = Union[ExitAction, PageAction, CheckoutAction, CreateAction, DeleteAction, RenameAction]


def _parse_number(text: str) -> Optional[int]:
    try:
        return int(text)
    except ValueError:
        return None


def parse_input(text: str) -> Optional[Action]:
    """Translate one line of user input into an action.

    Branch numbers are 1-based as displayed; actions carry 0-based indexes.

    Returns:
        The action, or None if the input is empty or not understood
    """
    trimmed = text.strip()
    if not trimmed:
        return None
    if trimmed in ("q", "quit"):
        return ExitAction()
    if trimmed == "<":
        return PageAction(-1)
    if trimmed == ">":
        return PageAction(1)

    if trimmed.startswith("-"):
        number = _parse_number(trimmed[1:])
        if number is not None:
            return DeleteAction(number - 1)

    if trimmed.startswith(">"):
        parts = trimmed[1:].split()
        if len(parts) >= 2:
            number = _parse_number(parts[0])
            if number is not None:
                return RenameAction(number - 1, " ".join(parts[1:]))

    number = _parse_number(trimmed)
    if number is not None:
        return CheckoutAction(number - 1)

    if " " not in trimmed and not trimmed.startswith(("-", ">")):
        return CreateAction(trimmed)
    return None


class BranchBrowser:
    """Read-act-render loop over a project's branches."""

    def __init__(
        self,
        project: Project,
        config: Optional[DisplayConfig] = None,
        console: Optional[Console] = None,
        read_line: Optional[Callable[[str], str]] = None,
    ) -> None:
        self.project = project
        self.config = config or DisplayConfig()
        self.console = console or Console()
        self._read_line = read_line or self.console.input
        self.page = 0
        self.status = ""

    async def run(self) -> None:
        """Run until the user quits or input ends."""
        await self._guarded(self.project.refresh())
        while True:
            self.render()
            try:
                text = await self._ask(PROMPT)
            except EOFError:
                break
            action = parse_input(text)
            if action is None:
                continue
            if isinstance(action, ExitAction):
                break
            await self.perform(action)

    def sorted_branches(self) -> list[Branch]:
        return sort_branches(self.project.branches, self.config)

    def render(self) -> None:
        branches = self.sorted_branches()
        if self.console.is_terminal:
            self.console.clear()
        self.console.print("[bold]=== Branches ===[/bold]")
        self.console.print(f"Directory: {escape(str(self.project.path))}")
        self.console.print(f"VCS: {type(self.project.vcs).__name__}")
        self.console.print()

        if not branches:
            self.console.print("No branches found.")
        else:
            pages = page_count(len(branches), self.config)
            self.page = min(self.page, pages - 1)
            if self.config.page_size is not None:
                self.console.print(f"Page {self.page + 1} of {pages}")
            self.console.print(
                build_branch_table(
                    page_branches(branches, self.page, self.config),
                    self.config,
                    current=self.project.current_branch,
                    start=page_start(self.page, self.config),
                )
            )
        if self.status:
            self.console.print(self.status)
            self.status = ""
        self.console.print(INSTRUCTIONS, markup=False)

    async def perform(self, action: Action) -> None:
        """Carry out ``action`` and record the outcome in :attr:`status`."""
        if isinstance(action, ExitAction):
            return
        if isinstance(action, PageAction):
            pages = page_count(len(self.project.branches), self.config)
            self.page = max(0, min(self.page + action.delta, pages - 1))
            return
        if isinstance(action, CreateAction):
            if await self._guarded(self.project.create_branch(action.name)):
                self.status = f"[green]Successfully created branch:[/green] {escape(action.name)}"
            return

        branch = self._branch_at(action.index)
        if branch is None:
            self.status = "[yellow]Invalid branch number[/yellow]"
            return
        name = escape(branch.name)

        if isinstance(action, CheckoutAction):
            if await self._guarded(self.project.checkout_branch(branch.name)):
                self.status = f"[green]Successfully checked out branch:[/green] {name}"
        elif isinstance(action, DeleteAction):
            answer = await self._ask(f'Delete branch "{branch.name}"? [y/N] ')
            if answer.strip().lower() not in ("y", "yes"):
                self.status = "[yellow]Deletion cancelled[/yellow]"
                return
            if await self._guarded(self.project.delete_branch(branch.name)):
                self.status = f"[green]Successfully deleted branch:[/green] {name}"
        elif await self._guarded(self.project.rename_branch(branch.name, action.new_name)):
            self.status = f"[green]Successfully renamed branch to:[/green] {escape(action.new_name)}"

    def _branch_at(self, index: int) -> Optional[Branch]:
        branches = self.sorted_branches()
        if 0 <= index < len(branches):
            return branches[index]
        return None

    async def _ask(self, prompt: str) -> str:
        # Read on a worker thread so queued commands keep running.
        return await asyncio.to_thread(self._read_line, escape(prompt))

    async def _guarded(self, operation: Awaitable[Any]) -> bool:
        try:
            await operation
        except (CommandError, VcsError) as err:
            logger.debug("Operation failed", exc_info=True)
            self.status = f"[red]Error:[/red] {escape(str(err))}"
            return False
        return True
