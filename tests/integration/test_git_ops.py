"""Integration tests for git operations module.

These tests create real git repositories in temporary directories (a bare
remote and clones of it) to verify tag and ancestry operations against
actual git state.
"""

from __future__ import annotations

from pathlib import Path

import git
import pytest
from git import GitCommandError
from repo_helpers import checkout_new_branch, commit_file, configure_user

from releaseflow.errors import ErrorKind, WorkflowError
from releaseflow.pipeline.git_ops import CommitRef, GitManager


@pytest.fixture
def git_manager(work_repo: git.Repo) -> GitManager:
    return GitManager(repo_path=Path(work_repo.working_dir))


class TestRepository:
    """Test repository and remote discovery."""

    def test_not_a_repository(self, tmp_path: Path) -> None:
        with pytest.raises(WorkflowError) as exc_info:
            GitManager(repo_path=tmp_path)
        assert exc_info.value.message == "Action not run within git repository"
        assert exc_info.value.kind is ErrorKind.CONFIGURATION

    def test_missing_path(self, tmp_path: Path) -> None:
        with pytest.raises(WorkflowError, match="Action not run within git repository"):
            GitManager(repo_path=tmp_path / "missing")

    def test_single_remote(self, git_manager: GitManager) -> None:
        assert git_manager.remote == "origin"

    def test_no_remote(self, tmp_path: Path) -> None:
        repo = git.Repo.init(tmp_path / "lonely")
        with pytest.raises(WorkflowError, match="Exactly 1 remote expected in repository"):
            _ = GitManager(Path(repo.working_dir)).remote

    def test_two_remotes(self, git_manager: GitManager, work_repo: git.Repo) -> None:
        work_repo.create_remote("fork", "https://example.com/fork.git")
        with pytest.raises(WorkflowError, match="Exactly 1 remote expected in repository"):
            _ = git_manager.remote

    def test_current_branch(self, git_manager: GitManager, work_repo: git.Repo) -> None:
        assert git_manager.current_branch() == "develop"
        work_repo.git.checkout("--detach")
        assert git_manager.current_branch() is None


class TestCommits:
    """Test commit resolution and file reads."""

    def test_resolve_head(self, git_manager: GitManager, work_repo: git.Repo) -> None:
        head = git_manager.resolve_commit("HEAD")
        assert head == CommitRef(
            sha=work_repo.head.commit.hexsha, tree=work_repo.head.commit.tree.hexsha
        )

    def test_same_content_same_tree(self, git_manager: GitManager, work_repo: git.Repo) -> None:
        before = git_manager.resolve_commit("HEAD")
        commit_file(work_repo, "README.md", "# Changed\n")
        commit_file(work_repo, "README.md", "# App\n")
        after = git_manager.resolve_commit("HEAD")

        assert after.sha != before.sha
        assert after.tree == before.tree

    def test_read_file_at_ref(self, git_manager: GitManager, work_repo: git.Repo) -> None:
        first = work_repo.head.commit.hexsha
        commit_file(work_repo, "README.md", "# Changed\n")

        assert git_manager.read_file("README.md") == "# Changed\n"
        assert git_manager.read_file("README.md", ref=first) == "# App\n"

    def test_read_missing_file(self, git_manager: GitManager) -> None:
        assert git_manager.read_file("missing.txt") is None

    def test_read_file_unknown_ref(self, git_manager: GitManager) -> None:
        assert git_manager.read_file("README.md", ref="refs/remotes/origin/nope") is None


class TestTags:
    """Test fetching, creating and pushing tags."""

    def test_fetch_missing_tag(self, git_manager: GitManager) -> None:
        assert git_manager.fetch_tag("v9.9.9") is False

    def test_fetch_existing_tag(
        self, git_manager: GitManager, other_clone: git.Repo
    ) -> None:
        commit_file(other_clone, "other.txt", "from elsewhere\n")
        other_clone.create_tag("v1.2.0")
        other_clone.git.push("origin", "refs/tags/v1.2.0")

        assert git_manager.fetch_tag("v1.2.0") is True
        tagged = git_manager.resolve_commit("refs/tags/v1.2.0")
        assert tagged.sha == other_clone.head.commit.hexsha

    def test_fetch_replaces_stale_local_tag(
        self, git_manager: GitManager, work_repo: git.Repo, other_clone: git.Repo
    ) -> None:
        work_repo.create_tag("v1.2.0")
        commit_file(other_clone, "other.txt", "from elsewhere\n")
        other_clone.create_tag("v1.2.0")
        other_clone.git.push("origin", "refs/tags/v1.2.0")

        assert git_manager.fetch_tag("v1.2.0") is True
        assert git_manager.resolve_commit("refs/tags/v1.2.0").sha == (
            other_clone.head.commit.hexsha
        )

    def test_fetch_tag_transport_error(
        self, git_manager: GitManager, work_repo: git.Repo, tmp_path: Path
    ) -> None:
        work_repo.remotes.origin.set_url(str(tmp_path / "nowhere.git"))
        with pytest.raises(GitCommandError):
            git_manager.fetch_tag("v1.2.0")

    def test_create_and_push_tag(
        self, git_manager: GitManager, work_repo: git.Repo, remote_repo: git.Repo
    ) -> None:
        tagged = git_manager.create_tag("v1.2.0")
        git_manager.push_tag("v1.2.0")

        assert tagged.sha == work_repo.head.commit.hexsha
        assert remote_repo.tags["v1.2.0"].commit.hexsha == tagged.sha

    def test_push_tag_does_not_force(
        self, git_manager: GitManager, work_repo: git.Repo, other_clone: git.Repo
    ) -> None:
        commit_file(other_clone, "other.txt", "from elsewhere\n")
        other_clone.create_tag("v1.2.0")
        other_clone.git.push("origin", "refs/tags/v1.2.0")

        git_manager.create_tag("v1.2.0")
        with pytest.raises(GitCommandError):
            git_manager.push_tag("v1.2.0")

    def test_delete_local_tag(self, git_manager: GitManager, work_repo: git.Repo) -> None:
        work_repo.create_tag("v1.2.0")
        git_manager.delete_local_tag("v1.2.0")
        assert "v1.2.0" not in work_repo.tags
        git_manager.delete_local_tag("v1.2.0")


class TestBranches:
    """Test fetching branches and ancestry checks."""

    def test_fetch_branch(self, git_manager: GitManager, other_clone: git.Repo) -> None:
        checkout_new_branch(other_clone, "env/prod")
        sha = commit_file(other_clone, "prod.txt", "prod\n")
        other_clone.git.push("origin", "env/prod")

        head = git_manager.fetch_branch("env/prod")

        assert head.sha == sha
        assert git_manager.resolve_commit("refs/remotes/origin/env/prod") == head

    def test_fetch_branch_unshallows(
        self, tmp_path: Path, remote_repo: git.Repo, work_repo: git.Repo
    ) -> None:
        first = work_repo.commit("HEAD~1").hexsha
        shallow = git.Repo.clone_from(
            f"file://{remote_repo.git_dir}", tmp_path / "shallow", depth=1, branch="develop"
        )
        configure_user(shallow)
        git_manager = GitManager(Path(shallow.working_dir))
        assert git_manager.is_shallow() is True

        head = git_manager.fetch_branch("develop")

        assert git_manager.is_shallow() is False
        assert git_manager.is_descendant(first, head.sha) is True

    def test_is_descendant(self, git_manager: GitManager, work_repo: git.Repo) -> None:
        base = work_repo.head.commit.hexsha
        checkout_new_branch(work_repo, "hotfix/fix")
        tip = commit_file(work_repo, "fix.txt", "fix\n")

        assert git_manager.is_descendant(base, tip) is True
        assert git_manager.is_descendant(base, base) is True
        assert git_manager.is_descendant(tip, base) is False

    def test_diverged_is_not_descendant(
        self, git_manager: GitManager, work_repo: git.Repo
    ) -> None:
        checkout_new_branch(work_repo, "env/prod")
        prod = commit_file(work_repo, "prod.txt", "prod\n")
        work_repo.git.checkout("develop")
        dev = commit_file(work_repo, "dev.txt", "dev\n")

        assert git_manager.is_descendant(prod, dev) is False

    def test_create_and_push_branch(
        self, git_manager: GitManager, work_repo: git.Repo, remote_repo: git.Repo
    ) -> None:
        created = git_manager.create_branch("mergeback/prod/1.2.0")
        git_manager.push_branch("mergeback/prod/1.2.0")

        assert created.sha == work_repo.head.commit.hexsha
        assert git_manager.current_branch() == "develop"
        assert remote_repo.heads["mergeback/prod/1.2.0"].commit.hexsha == created.sha
