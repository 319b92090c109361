"""Repository value objects."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class Author:
    """Commit author."""

    name: str
    email: str


@dataclass(frozen=True)
class Commit:
    """A single commit."""

    id: str
    message: str
    date: datetime
    author: Author

    def short_id(self, length: int = 7) -> str:
        """Return the commit id abbreviated to ``length`` characters."""
        return self.id if len(self.id) <= length else self.id[:length]


@dataclass(frozen=True)
class Branch:
    """A local branch and the commit it points at."""

    name: str
    last_commit: Commit
