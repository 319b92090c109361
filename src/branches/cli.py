"""Command line interface for branches."""

import asyncio
from pathlib import Path
from typing import Annotated, Awaitable, Callable, Optional, TypeVar

import typer
from rich import print
from rich.console import Console
from rich.markup import escape

from branches.browser import BranchBrowser
from branches.command import CommandError
from branches.config import DisplayConfig
from branches.display import build_branch_table, sort_branches
from branches.log import setup_logging
from branches.project import Project
from branches.vcs import VcsError

T = TypeVar("T")

app = typer.Typer(help="Interactive git branch browser")
console = Console()

PathOption = Annotated[Path, typer.Option("--path", "-d", help="Path to git repository")]
PageSizeOption = Annotated[Optional[int], typer.Option(help="Number of branches to show per page", min=1)]
SortAlphaOption = Annotated[bool, typer.Option("--sort-alpha", help="Sort branches alphabetically instead of by date")]
SortAscOption = Annotated[bool, typer.Option("--sort-asc", help="Sort in ascending order (default is descending)")]
HashLengthOption = Annotated[int, typer.Option(help="Length of commit hash to display", min=1)]
DateOption = Annotated[bool, typer.Option("--date/--no-date", help="Show date column")]
AuthorOption = Annotated[bool, typer.Option("--author/--no-author", help="Show author column")]
HashOption = Annotated[bool, typer.Option("--hash/--no-hash", help="Show commit hash column")]


def get_project(path: Path) -> Project:
    """Get project for the repository at ``path``."""
    if not path.is_dir():
        print(f'[red]Error:[/red] Directory "{escape(str(path))}" does not exist')
        raise typer.Exit(code=1)
    try:
        return Project(path)
    except VcsError as err:
        print(f"[red]Error:[/red] {escape(str(err))}")
        raise typer.Exit(code=1) from err


def run_project(project: Project, operation: Callable[[Project], Awaitable[T]]) -> T:
    """Run ``operation`` on an event loop and close the project afterwards."""

    async def runner() -> T:
        try:
            return await operation(project)
        finally:
            await project.close()

    try:
        return asyncio.run(runner())
    except (CommandError, VcsError) as err:
        print(f"[red]Error:[/red] {escape(str(err))}")
        raise typer.Exit(code=1) from err


def make_config(
    page_size: Optional[int],
    sort_alpha: bool,
    sort_asc: bool,
    hash_length: int,
    date: bool,
    author: bool,
    show_hash: bool,
) -> DisplayConfig:
    return DisplayConfig(
        commit_hash_length=hash_length,
        show_date=date,
        show_author=author,
        show_commit_hash=show_hash,
        sort_by_date=not sort_alpha,
        sort_ascending=sort_asc,
        page_size=page_size,
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging")] = False,
    path: PathOption = Path("."),
    page_size: PageSizeOption = None,
    sort_alpha: SortAlphaOption = False,
    sort_asc: SortAscOption = False,
    hash_length: HashLengthOption = 7,
    date: DateOption = True,
    author: AuthorOption = True,
    show_hash: HashOption = True,
) -> None:
    """Browse and change the branches of a git repository.

    Without a command, starts the interactive browser with the given options.
    """
    setup_logging(verbose)
    if ctx.invoked_subcommand is None:
        browse(path, page_size, sort_alpha, sort_asc, hash_length, date, author, show_hash)


@app.command()
def browse(
    path: PathOption = Path("."),
    page_size: PageSizeOption = None,
    sort_alpha: SortAlphaOption = False,
    sort_asc: SortAscOption = False,
    hash_length: HashLengthOption = 7,
    date: DateOption = True,
    author: AuthorOption = True,
    show_hash: HashOption = True,
) -> None:
    """Browse branches interactively."""
    project = get_project(path)
    config = make_config(page_size, sort_alpha, sort_asc, hash_length, date, author, show_hash)
    browser = BranchBrowser(project, config=config, console=console)
    try:
        run_project(project, lambda _: browser.run())
    except KeyboardInterrupt:
        raise typer.Exit(code=130) from None


@app.command("list")
def list_branches(
    path: PathOption = Path("."),
    sort_alpha: SortAlphaOption = False,
    sort_asc: SortAscOption = False,
    hash_length: HashLengthOption = 7,
    date: DateOption = True,
    author: AuthorOption = True,
    show_hash: HashOption = True,
) -> None:
    """List all branches with their last commit."""
    project = get_project(path)
    config = make_config(None, sort_alpha, sort_asc, hash_length, date, author, show_hash)
    branches = run_project(project, lambda p: p.refresh())
    if not branches:
        console.print("No branches found.")
        return
    console.print(build_branch_table(sort_branches(branches, config), config, current=project.current_branch))


@app.command()
def checkout(
    name: Annotated[str, typer.Argument(help="Branch to check out")],
    path: PathOption = Path("."),
) -> None:
    """Check out a branch."""
    project = get_project(path)
    branch = run_project(project, lambda p: p.checkout_branch(name))
    print(f"[green]Successfully checked out branch:[/green] {escape(branch.name)}")


@app.command()
def create(
    name: Annotated[str, typer.Argument(help="Name of the new branch")],
    base: Annotated[Optional[str], typer.Option("--base", "-b", help="Branch to start from")] = None,
    path: PathOption = Path("."),
) -> None:
    """Create a branch and check it out."""
    project = get_project(path)
    branch = run_project(project, lambda p: p.create_branch(name, base=base))
    print(f"[green]Successfully created branch:[/green] {escape(branch.name)}")


@app.command()
def delete(
    name: Annotated[str, typer.Argument(help="Branch to delete")],
    force: Annotated[bool, typer.Option("--force", "-f", help="Delete even if not fully merged")] = False,
    path: PathOption = Path("."),
) -> None:
    """Delete a branch."""
    project = get_project(path)
    branch = run_project(project, lambda p: p.delete_branch(name, force=force))
    print(f"[green]Successfully deleted branch:[/green] {escape(branch.name)}")


@app.command()
def rename(
    old_name: Annotated[str, typer.Argument(help="Branch to rename")],
    new_name: Annotated[str, typer.Argument(help="New branch name")],
    path: PathOption = Path("."),
) -> None:
    """Rename a branch."""
    project = get_project(path)
    branch = run_project(project, lambda p: p.rename_branch(old_name, new_name))
    print(f"[green]Successfully renamed branch to:[/green] {escape(branch.name)}")


if __name__ == "__main__":
    app()
