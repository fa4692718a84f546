"""Git operations wrapper for releaseflow.

This module provides a high-level interface to the git plumbing the workflow
needs, using GitPython: resolving commits and their trees, fetching single
tags and branches from the one configured remote, ancestry checks, and
creating and pushing tags and branches.

Remote lookups rely on git's exit codes rather than on parsing error output:
``git ls-remote --exit-code`` exits with status 2 when no ref matches, and
``git merge-base --is-ancestor`` exits with status 1 when the first commit is
not an ancestor. Any other failure propagates as ``GitCommandError``.

Example usage:
    >>> from pathlib import Path
    >>> from releaseflow.pipeline.git_ops import GitManager
    >>>
    >>> git_manager = GitManager(repo_path=Path("/github/workspace"))
    >>> head = git_manager.resolve_commit("HEAD")
    >>> if git_manager.fetch_tag("v1.2.0"):
    ...     tagged = git_manager.resolve_commit("refs/tags/v1.2.0")
    ...     print(tagged.tree == head.tree)
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import git
from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError
from git.exc import BadName

from releaseflow.errors import ErrorKind, WorkflowError
from releaseflow.logging import get_logger

# Exit status of `git ls-remote --exit-code` when no matching ref exists
_LS_REMOTE_NO_MATCH = 2


@dataclass(frozen=True)
class CommitRef:
    """A resolved commit.

    Two CommitRefs with the same tree have identical content, whatever their
    sha.

    Attributes:
        sha: Commit sha
        tree: Sha of the commit's root tree
    """

    sha: str
    tree: str


class GitManager:
    """Git operations on the workflow's single working directory.

    Attributes:
        repo_path: Path to the git repository
        repo: GitPython Repo object
        logger: Structured logger instance
    """

    def __init__(self, repo_path: Path) -> None:
        """Open the repository at repo_path.

        Args:
            repo_path: Path to the git repository root

        Raises:
            WorkflowError: If repo_path is not inside a git repository
        """
        self.repo_path = repo_path
        self.logger = get_logger(__name__)

        try:
            self.repo = git.Repo(repo_path)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            self.logger.debug(
                "git_manager_init_failed",
                repo_path=str(repo_path),
                error_type=type(e).__name__,
            )
            raise WorkflowError(
                "Action not run within git repository", ErrorKind.CONFIGURATION
            ) from e

    @property
    def remote(self) -> str:
        """Name of the single configured remote.

        Raises:
            WorkflowError: If there is not exactly one remote
        """
        remotes = self.repo.remotes
        if len(remotes) != 1:
            raise WorkflowError(
                "Exactly 1 remote expected in repository", ErrorKind.CONFIGURATION
            )
        return remotes[0].name

    def current_branch(self) -> str | None:
        """Return the checked out branch, or None for a detached HEAD."""
        try:
            return self.repo.active_branch.name
        except TypeError:
            return None

    def resolve_commit(self, ref: str) -> CommitRef:
        """Resolve a ref (branch, tag, sha, ``HEAD``) to its commit and tree.

        Args:
            ref: Any revision git understands

        Returns:
            CommitRef of the commit the ref points to
        """
        commit = self.repo.commit(ref)
        return CommitRef(sha=commit.hexsha, tree=commit.tree.hexsha)

    def read_file(self, path: str, ref: str = "HEAD") -> str | None:
        """Read a tracked file as it is at a given commit.

        Args:
            path: File path relative to the repository root
            ref: Revision to read from

        Returns:
            The file's text, or None if the file is not in that commit
        """
        try:
            blob = self.repo.commit(ref).tree / path
        except (KeyError, ValueError, BadName):
            # ValueError: the revision does not resolve (e.g. no commits yet)
            return None
        return blob.data_stream.read().decode("utf-8")

    def fetch_tag(self, tag: str) -> bool:
        """Fetch a tag from the remote into ``refs/tags/<tag>``.

        Args:
            tag: Tag name without the ``refs/tags/`` prefix

        Returns:
            True if the tag exists on the remote (and is now available
            locally), False if the remote has no such tag

        Raises:
            GitCommandError: On any other git failure
        """
        ref = f"refs/tags/{tag}"
        remote = self.remote
        try:
            self.repo.git.ls_remote("--exit-code", remote, ref)
        except GitCommandError as e:
            if e.status == _LS_REMOTE_NO_MATCH:
                self.logger.debug("remote_tag_not_found", tag=tag, remote=remote)
                return False
            raise

        self.repo.git.fetch("--no-tags", remote, f"+{ref}:{ref}")
        self.logger.debug("remote_tag_fetched", tag=tag, remote=remote)
        return True

    def delete_local_tag(self, tag: str) -> None:
        """Delete a tag from the local repository only (no-op if absent)."""
        if tag in self.repo.tags:
            self.repo.delete_tag(self.repo.tags[tag])
            self.logger.debug("local_tag_deleted", tag=tag)

    def create_tag(self, tag: str, ref: str = "HEAD") -> CommitRef:
        """Create a lightweight tag locally.

        Args:
            tag: Tag name
            ref: Revision to tag

        Returns:
            CommitRef of the tagged commit

        Raises:
            GitCommandError: If the tag already exists locally
        """
        self.repo.create_tag(tag, ref=ref)
        commit = self.resolve_commit(f"refs/tags/{tag}")
        self.logger.info("tag_created", tag=tag, commit_sha=commit.sha)
        return commit

    def push_tag(self, tag: str) -> None:
        """Push a local tag to the remote without forcing.

        Raises:
            GitCommandError: If the remote rejects the tag
        """
        remote = self.remote
        self.repo.git.push(remote, f"refs/tags/{tag}:refs/tags/{tag}")
        self.logger.info("tag_pushed", tag=tag, remote=remote)

    def fetch_branch(self, branch: str) -> CommitRef:
        """Fetch a branch from the remote with its full history.

        Shallow clones are unshallowed first so that ancestry checks against
        the fetched branch can see every commit.

        Args:
            branch: Branch name on the remote

        Returns:
            CommitRef of the remote branch head
        """
        remote = self.remote
        tracking_ref = f"refs/remotes/{remote}/{branch}"
        args = [remote, f"+refs/heads/{branch}:{tracking_ref}"]
        if self.is_shallow():
            args.insert(0, "--unshallow")
        self.repo.git.fetch(*args)
        head = self.resolve_commit(tracking_ref)
        self.logger.debug("remote_branch_fetched", branch=branch, commit_sha=head.sha)
        return head

    def is_shallow(self) -> bool:
        return self.repo.git.rev_parse("--is-shallow-repository") == "true"

    def is_descendant(self, ancestor_sha: str, sha: str) -> bool:
        """Check whether sha descends from ancestor_sha (itself included).

        Both commits must be present locally; see ``fetch_branch``.
        """
        return self.repo.is_ancestor(ancestor_sha, sha)

    def create_branch(self, branch: str, ref: str = "HEAD") -> CommitRef:
        """Create (or reset) a local branch at ref without checking it out."""
        head = self.repo.create_head(branch, ref, force=True)
        commit = CommitRef(sha=head.commit.hexsha, tree=head.commit.tree.hexsha)
        self.logger.debug("branch_created", branch=branch, commit_sha=commit.sha)
        return commit

    def push_branch(self, branch: str) -> None:
        """Push a local branch to the remote without forcing.

        Raises:
            GitCommandError: If the remote rejects the push
        """
        remote = self.remote
        self.repo.git.push(remote, f"refs/heads/{branch}:refs/heads/{branch}")
        self.logger.info("branch_pushed", branch=branch, remote=remote)
