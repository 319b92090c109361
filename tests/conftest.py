"""Test configuration and fixtures."""

from pathlib import Path
from typing import Generator

import pytest
from git import Actor, Repo

AUTHOR = Actor("Test User", "test@example.com")


@pytest.fixture
def test_repo(tmp_path: Path) -> Generator[Path, None, None]:
    """Create a repository with a few branches.

    Branches:
        main: initial commit
        feature/test: one commit ahead of main, unmerged
        feature/merged: merged into main
        feature/current: checked out, one commit ahead of main
    """
    local_path = tmp_path / "local"
    local_path.mkdir()
    repo = Repo.init(local_path)
    repo.config_writer().set_value("user", "name", AUTHOR.name).release()
    repo.config_writer().set_value("user", "email", AUTHOR.email).release()

    readme = local_path / "README.md"
    readme.write_text("# Test Repository")
    repo.index.add(["README.md"])
    repo.index.commit("Initial commit", author=AUTHOR, committer=AUTHOR)

    # Ensure we're on main regardless of the init.defaultBranch setting
    if "main" not in repo.heads:
        repo.create_head("main")
    main_branch = repo.heads.main
    main_branch.checkout()
    for head in list(repo.heads):
        if head.name != "main":
            repo.delete_head(head, force=True)

    def create_branch(name: str, content: str, merge: bool = False) -> None:
        main_branch.checkout()
        branch = repo.create_head(name)
        branch.checkout()
        file_name = name.replace("/", "_") + ".txt"
        (local_path / file_name).write_text(content)
        repo.index.add([file_name])
        repo.index.commit(f"Add {name}", author=AUTHOR, committer=AUTHOR)
        if merge:
            main_branch.checkout()
            repo.git.merge(name, "--no-ff")

    create_branch("feature/test", "Test branch content")
    create_branch("feature/merged", "Merged branch content", merge=True)
    create_branch("feature/current", "Current branch content")

    yield local_path
