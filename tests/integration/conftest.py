"""Pytest fixtures for integration tests.

Provides real git repositories in temporary directories: a bare repository
playing the remote, a working repository with a node manifest, and a second
clone standing in for concurrent runs.
"""

from __future__ import annotations

from pathlib import Path

import git
import pytest
from repo_helpers import checkout_new_branch, commit_file, configure_user, set_version


@pytest.fixture
def remote_repo(tmp_path: Path) -> git.Repo:
    """Create the bare repository that serves as the single remote."""
    return git.Repo.init(tmp_path / "remote.git", bare=True)


@pytest.fixture
def work_repo(tmp_path: Path, remote_repo: git.Repo) -> git.Repo:
    """Create a working repository on ``develop`` at version 1.2.0.

    The develop branch is pushed to the remote.
    """
    repo_path = tmp_path / "work"
    repo_path.mkdir()
    repo = git.Repo.init(repo_path)
    configure_user(repo)
    checkout_new_branch(repo, "develop")

    commit_file(repo, "README.md", "# App\n", "Initial commit")
    set_version(repo, "1.2.0")

    repo.create_remote("origin", remote_repo.git_dir)
    repo.git.push("origin", "develop")
    remote_repo.git.symbolic_ref("HEAD", "refs/heads/develop")
    return repo


@pytest.fixture
def other_clone(tmp_path: Path, remote_repo: git.Repo, work_repo: git.Repo) -> git.Repo:
    """A second clone of the remote, standing in for a concurrent run."""
    repo = git.Repo.clone_from(remote_repo.git_dir, tmp_path / "other")
    configure_user(repo)
    return repo
