"""Release version lookup.

The version of a repository is read from a tracked manifest file as it is at
a given commit, never from the working tree. The manifest depends on the
configured ``repoType``; only node repositories (``package.json``) exist
today.
"""

from __future__ import annotations

import json
from collections.abc import Callable

from releaseflow.errors import ErrorKind, WorkflowError
from releaseflow.pipeline.git_ops import GitManager

NODE_MANIFEST = "package.json"


def read_node_version(git_manager: GitManager, ref: str = "HEAD") -> str:
    """Read the ``version`` field of package.json at ref.

    Args:
        git_manager: Repository to read from
        ref: Revision to read the manifest at

    Returns:
        The version string

    Raises:
        WorkflowError: If the manifest is missing, not JSON, or has no string
            version field
    """
    contents = git_manager.read_file(NODE_MANIFEST, ref=ref)
    if contents is None:
        raise WorkflowError(
            f"Unable to read version from {NODE_MANIFEST}: file not found at {ref}",
            ErrorKind.VERSION_SOURCE,
        )

    try:
        manifest = json.loads(contents)
    except json.JSONDecodeError as e:
        raise WorkflowError(
            f"Unable to read version from {NODE_MANIFEST}: Invalid JSON: {e}",
            ErrorKind.VERSION_SOURCE,
        ) from e

    version = manifest.get("version") if isinstance(manifest, dict) else None
    if not isinstance(version, str):
        raise WorkflowError(
            f"Invalid version in {NODE_MANIFEST}", ErrorKind.VERSION_SOURCE
        )
    return version


VERSION_READERS: dict[str, Callable[[GitManager, str], str]] = {
    "node": read_node_version,
}


def read_version(git_manager: GitManager, repo_type: str, ref: str = "HEAD") -> str:
    """Read the release version of the repository at ref."""
    return VERSION_READERS[repo_type](git_manager, ref)
