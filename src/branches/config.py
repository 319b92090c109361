"""Runtime settings."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class DisplayConfig:
    """Branch table display options."""

    commit_hash_length: int = 7
    show_date: bool = True
    show_author: bool = True
    show_commit_hash: bool = True
    sort_by_date: bool = True
    sort_ascending: bool = False
    page_size: Optional[int] = None

    def __post_init__(self) -> None:
        if self.commit_hash_length < 1:
            raise ValueError("commit_hash_length must be at least 1")
        if self.page_size is not None and self.page_size < 1:
            raise ValueError("page_size must be at least 1")


@dataclass(frozen=True)
class QueueSettings:
    """Command queue settings.

    Attributes:
        refresh_retention: Seconds a completed refresh keeps rejecting new
            refresh requests
    """

    refresh_retention: float = 1.0
