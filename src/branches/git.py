"""Git repository operations."""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

from branches.models import Author, Branch, Commit
from branches.vcs import Vcs, VcsError

logger = logging.getLogger(__name__)

# %1f is the ASCII unit separator, which never shows up in ref names or subjects.
FIELD_SEPARATOR = "\x1f"
BRANCH_FORMAT = "--format=" + "%1f".join(
    [
        "%(refname:short)",
        "%(objectname)",
        "%(committerdate:unix)",
        "%(subject)",
        "%(authorname)",
        "%(authoremail)",
    ]
)
FIELD_COUNT = 6


class GitError(VcsError):
    """Git operation error."""


def parse_branch_line(line: str) -> Optional[Branch]:
    """Parse one line of ``for-each-ref`` output.

    Returns:
        The branch, or None if the line is blank or malformed
    """
    if not line.strip():
        return None
    parts = line.split(FIELD_SEPARATOR)
    if len(parts) != FIELD_COUNT:
        return None
    name, commit_id, timestamp, message, author_name, author_email = parts
    try:
        date = datetime.fromtimestamp(int(timestamp), tz=timezone.utc)
    except ValueError:
        return None
    commit = Commit(
        id=commit_id,
        message=message,
        date=date,
        author=Author(name=author_name, email=author_email.strip("<>")),
    )
    return Branch(name=name, last_commit=commit)


class GitRepo(Vcs):
    """Git repository operations."""

    def __init__(self, path: Path) -> None:
        """Initialize repository."""
        self.path = Path(path)
        try:
            self.repo: Repo = Repo(self.path, search_parent_directories=True)
            if self.repo.bare:
                raise GitError("Cannot operate on bare repository")
        except (GitCommandError, ValueError, InvalidGitRepositoryError, NoSuchPathError) as err:
            raise GitError(f"Failed to open repository: {err}") from err

    @staticmethod
    def is_valid_repository(path: Path) -> bool:
        """Check whether ``path`` is inside a non-bare git working tree."""
        try:
            return not Repo(path, search_parent_directories=True).bare
        except (InvalidGitRepositoryError, NoSuchPathError, GitCommandError):
            return False

    def _for_each_ref(self, pattern: str) -> list[Branch]:
        output = self.repo.git.for_each_ref(BRANCH_FORMAT, pattern)
        branches = []
        for line in output.splitlines():
            branch = parse_branch_line(line)
            if branch is not None:
                branches.append(branch)
        return branches

    def _list_branches(self) -> list[Branch]:
        try:
            return self._for_each_ref("refs/heads/")
        except GitCommandError as err:
            raise GitError(f"Failed to update branches: {err}") from err

    def _get_branch(self, name: str) -> Branch:
        try:
            found = [branch for branch in self._for_each_ref(f"refs/heads/{name}") if branch.name == name]
        except GitCommandError as err:
            raise GitError(f'Failed to get branch "{name}": {err}') from err
        if not found:
            raise GitError(f'Branch "{name}" not found')
        return found[0]

    def _create_branch(self, name: str, base: Optional[str]) -> Branch:
        args = ["-b", name]
        if base:
            args.append(base)
        try:
            self.repo.git.checkout(*args)
        except GitCommandError as err:
            raise GitError(f'Failed to create branch "{name}": {err}') from err
        return self._get_branch(name)

    def _delete_branch(self, name: str, force: bool) -> Branch:
        branch = self._get_branch(name)
        try:
            self.repo.git.branch("-D" if force else "-d", name)
        except GitCommandError as err:
            raise GitError(f'Failed to delete branch "{name}": {err}') from err
        return branch

    def _rename_branch(self, old_name: str, new_name: str) -> Branch:
        self._get_branch(old_name)
        try:
            self.repo.git.branch("-m", old_name, new_name)
        except GitCommandError as err:
            raise GitError(f'Failed to rename branch from "{old_name}" to "{new_name}": {err}') from err
        return self._get_branch(new_name)

    def _checkout_branch(self, name: str) -> Branch:
        try:
            self.repo.git.checkout(name)
        except GitCommandError as err:
            raise GitError(f'Failed to checkout branch "{name}": {err}') from err
        return self._get_branch(name)

    def get_current_branch_name(self) -> str:
        """Get current branch name."""
        try:
            try:
                return self.repo.active_branch.name
            except TypeError:
                # Detached HEAD
                return ""
        except (GitCommandError, ValueError) as err:
            raise GitError(f"Failed to get current branch: {err}") from err

    async def list_branches(self) -> list[Branch]:
        logger.debug("Listing branches in %s", self.path)
        return await asyncio.to_thread(self._list_branches)

    async def get_branch(self, name: str) -> Branch:
        return await asyncio.to_thread(self._get_branch, name)

    async def create_branch(self, name: str, base: Optional[str] = None) -> Branch:
        logger.debug("Creating branch %s from %s", name, base or "HEAD")
        return await asyncio.to_thread(self._create_branch, name, base)

    async def delete_branch(self, name: str, force: bool = False) -> Branch:
        logger.debug("Deleting branch %s (force=%s)", name, force)
        return await asyncio.to_thread(self._delete_branch, name, force)

    async def rename_branch(self, old_name: str, new_name: str) -> Branch:
        logger.debug("Renaming branch %s to %s", old_name, new_name)
        return await asyncio.to_thread(self._rename_branch, old_name, new_name)

    async def checkout_branch(self, name: str) -> Branch:
        logger.debug("Checking out branch %s", name)
        return await asyncio.to_thread(self._checkout_branch, name)

    async def current_branch_name(self) -> str:
        return await asyncio.to_thread(self.get_current_branch_name)
