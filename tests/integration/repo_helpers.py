"""Helpers for building real git repositories in integration tests."""

from __future__ import annotations

import json
from pathlib import Path

import git


def configure_user(repo: git.Repo) -> None:
    with repo.config_writer() as writer:
        writer.set_value("user", "name", "Test User")
        writer.set_value("user", "email", "test@example.com")


def commit_file(repo: git.Repo, path: str, content: str, message: str | None = None) -> str:
    """Write and commit a file, returning the new commit sha."""
    full_path = Path(repo.working_dir) / path
    full_path.parent.mkdir(parents=True, exist_ok=True)
    full_path.write_text(content)
    repo.index.add([path])
    return repo.index.commit(message or f"Update {path}").hexsha


def set_version(repo: git.Repo, version: str) -> str:
    """Commit a package.json declaring version."""
    manifest = json.dumps({"name": "app", "version": version}, indent=2) + "\n"
    return commit_file(repo, "package.json", manifest, f"Version {version}")


def checkout_new_branch(repo: git.Repo, branch: str) -> None:
    repo.git.checkout("-b", branch)
