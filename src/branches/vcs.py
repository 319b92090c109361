"""Version control backend interface."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from branches.models import Branch


class VcsError(Exception):
    """Version control operation error."""


class Vcs(ABC):
    """Asynchronous branch operations on a working copy.

    Implementations must not be driven concurrently; callers route every
    mutating call through a single command queue per repository.
    """

    @staticmethod
    def at(path: Path) -> "Vcs":
        """Detect the version control system used at ``path``.

        Raises:
            VcsError: If no supported version control system is found
        """
        # Imported here so the interface module does not depend on GitPython.
        from branches.git import GitRepo

        if GitRepo.is_valid_repository(path):
            return GitRepo(path)
        raise VcsError(f"Unsupported VCS at {path}")

    @abstractmethod
    async def list_branches(self) -> list[Branch]:
        """Return all local branches."""

    @abstractmethod
    async def get_branch(self, name: str) -> Branch:
        """Return a single local branch."""

    @abstractmethod
    async def create_branch(self, name: str, base: Optional[str] = None) -> Branch:
        """Create ``name`` from ``base`` (or HEAD) and check it out."""

    @abstractmethod
    async def delete_branch(self, name: str, force: bool = False) -> Branch:
        """Delete ``name`` and return the branch as it was before deletion."""

    @abstractmethod
    async def rename_branch(self, old_name: str, new_name: str) -> Branch:
        """Rename ``old_name`` to ``new_name``."""

    @abstractmethod
    async def checkout_branch(self, name: str) -> Branch:
        """Check out ``name``."""

    @abstractmethod
    async def current_branch_name(self) -> str:
        """Return the checked out branch, or an empty string on a detached HEAD."""
