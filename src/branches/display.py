"""Branch table rendering."""

import math
from datetime import datetime
from typing import Sequence

from rich.markup import escape
from rich.table import Table

from branches.config import DisplayConfig
from branches.models import Branch


def sort_branches(branches: Sequence[Branch], config: DisplayConfig) -> list[Branch]:
    """Sort by last commit date or by name, newest/last first unless ascending."""
    if config.sort_by_date:
        return sorted(branches, key=lambda b: b.last_commit.date, reverse=not config.sort_ascending)
    return sorted(branches, key=lambda b: b.name, reverse=not config.sort_ascending)


def page_count(total: int, config: DisplayConfig) -> int:
    if config.page_size is None or total == 0:
        return 1
    return math.ceil(total / config.page_size)


def page_start(page: int, config: DisplayConfig) -> int:
    """Index of the first branch shown on ``page``."""
    return 0 if config.page_size is None else page * config.page_size


def page_branches(branches: Sequence[Branch], page: int, config: DisplayConfig) -> list[Branch]:
    if config.page_size is None:
        return list(branches)
    start = page_start(page, config)
    return list(branches[start : start + config.page_size])


def format_date(date: datetime) -> str:
    return date.astimezone().strftime("%Y-%m-%d")


def build_branch_table(
    branches: Sequence[Branch],
    config: DisplayConfig,
    current: str = "",
    start: int = 0,
    title: str = "Branches",
) -> Table:
    """Create a table of branches numbered from ``start + 1``."""
    table = Table(
        title=title,
        show_header=True,
        header_style="bold",
        title_style="bold blue",
        show_edge=True,
    )
    table.add_column("#", justify="right", no_wrap=True)
    table.add_column("Branch", style="cyan", no_wrap=True)
    if config.show_commit_hash:
        table.add_column("Hash", style="magenta", no_wrap=True)
    if config.show_date:
        table.add_column("Date", style="yellow", no_wrap=True)
    if config.show_author:
        table.add_column("Author", style="green", no_wrap=True)

    for offset, branch in enumerate(branches, start=start + 1):
        name = escape(branch.name)
        if branch.name == current:
            name = f"{escape(branch.name)} [turquoise2](current)[/turquoise2]"
        row = [str(offset), name]
        if config.show_commit_hash:
            row.append(branch.last_commit.short_id(config.commit_hash_length))
        if config.show_date:
            row.append(format_date(branch.last_commit.date))
        if config.show_author:
            row.append(escape(branch.last_commit.author.name))
        table.add_row(*row)
    return table
