"""Image build orchestration with tag stability checks.

This module implements the ImageBuildOrchestrator, which publishes the
container image for a tag while guaranteeing that a tag never ends up with
images of two different content trees.

Build flow:
1. With a ``CheckBehaviour``, the image already published under the target
   tag is pulled and inspected. If it was built from the current tree there
   is nothing to do. If it was built from another tree, a strict check fails;
   otherwise the ``also_check`` tags are inspected for an image that can be
   retagged instead of rebuilt.
2. The image is retagged from a matching image, or built from HEAD with the
   commit and tree sha embedded.
3. A ``TagCheck`` is evaluated: the git tag the image belongs to must still
   point at the same commit, or must still not exist.
4. Only then is the image pushed.

Example usage:
    >>> orchestrator = ImageBuildOrchestrator(docker, git_manager, repo_path)
    >>> result = await orchestrator.build_and_push(
    ...     "v1.2.0",
    ...     check=CheckBehaviour(strict=True, also_check=["v1.2.0-pre"]),
    ...     check_tag=TagCheck(TagCheckMode.MATCH, "v1.2.0", sha=tag_commit.sha),
    ... )
    >>> print(result.source)
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import structlog

from releaseflow.errors import ErrorKind, WorkflowError
from releaseflow.pipeline.docker_ops import DockerController, ImageMetadata
from releaseflow.pipeline.git_ops import CommitRef, GitManager

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CheckBehaviour:
    """How to treat an image already published under the target tag.

    Attributes:
        strict: Fail when the published image was built from another tree
        also_check: Tags whose image may be retagged instead of rebuilding
    """

    strict: bool = False
    also_check: list[str] = field(default_factory=list)


class TagCheckMode(str, Enum):
    """Condition a git tag must satisfy before an image is pushed.

    Attributes:
        MATCH: The tag must still point at the expected commit
        NON_EXISTENT: The tag must still not exist on the remote
    """

    MATCH = "match"
    NON_EXISTENT = "non-existent"


@dataclass(frozen=True)
class TagCheck:
    """A git tag postcondition checked between build and push.

    Attributes:
        mode: Condition to check
        tag: Git tag name
        sha: Expected commit sha (MATCH only)
        on_violation: Awaited before failing when a NON_EXISTENT tag has
            appeared, e.g. to reject the pull request being built
    """

    mode: TagCheckMode
    tag: str
    sha: str | None = None
    on_violation: Callable[[], Awaitable[None]] | None = None


class ImageSource(str, Enum):
    """Where the image pushed under the target tag came from."""

    EXISTING = "existing"
    RETAGGED = "retagged"
    BUILT = "built"


@dataclass(frozen=True)
class ImageBuildResult:
    """Outcome of ``ImageBuildOrchestrator.build_and_push``.

    Attributes:
        tag: Target tag
        source: How the image was obtained
        retagged_from: Tag the image was copied from (RETAGGED only)
    """

    tag: str
    source: ImageSource
    retagged_from: str | None = None


TagCheckFactory = Callable[[ImageSource], "TagCheck | None"]


class ImageBuildOrchestrator:
    """Decides between reusing, retagging and building an image.

    Attributes:
        docker: Docker controller used for all image operations
        git_manager: Repository the image is built from
        repo_path: Repository root, passed to the build
    """

    def __init__(
        self,
        docker: DockerController,
        git_manager: GitManager,
        repo_path: Path,
    ) -> None:
        self.docker = docker
        self.git_manager = git_manager
        self.repo_path = repo_path

    async def _published_metadata(self, tag: str) -> ImageMetadata | None:
        """Pull the image for a tag and read its metadata, None if absent."""
        if not await self.docker.pull_image(tag):
            return None
        return await self.docker.get_metadata(tag)

    async def _find_existing(
        self, tag: str, head: CommitRef, check: CheckBehaviour
    ) -> tuple[bool, str | None]:
        """Look for a published image built from head's tree.

        Returns:
            ``(up_to_date, retag_from)``: whether the target tag's image is
            already valid, and otherwise which also_check tag to retag from

        Raises:
            WorkflowError: If a strict check finds an image of another tree
        """
        meta = await self._published_metadata(tag)
        if meta is not None:
            if meta.tree_sha == head.tree:
                return True, None
            logger.info(
                "image_tree_mismatch",
                tag=tag,
                image_tree_sha=meta.tree_sha,
                head_tree_sha=head.tree,
            )
            if check.strict:
                raise WorkflowError(
                    f"Image for tag `{tag}` built with different tree",
                    ErrorKind.CONTENT_CONSISTENCY,
                )

        for other_tag in check.also_check:
            other = await self._published_metadata(other_tag)
            if other is not None and other.tree_sha == head.tree:
                return False, other_tag
        return False, None

    async def _verify_tag(self, check: TagCheck) -> None:
        """Re-check a git tag against the remote after a slow operation.

        Raises:
            WorkflowError: If the tag moved or appeared in the meantime
        """
        git_manager = self.git_manager
        if check.mode is TagCheckMode.MATCH:
            git_manager.delete_local_tag(check.tag)
            if not git_manager.fetch_tag(check.tag):
                current = None
            else:
                current = git_manager.resolve_commit(f"refs/tags/{check.tag}").sha
            if current != check.sha:
                logger.error(
                    "tag_changed", tag=check.tag, expected_sha=check.sha, actual_sha=current
                )
                raise WorkflowError("Tag has changed, aborting", ErrorKind.RACE_ABORTED)
        elif git_manager.fetch_tag(check.tag):
            logger.error("tag_created_concurrently", tag=check.tag)
            if check.on_violation is not None:
                await check.on_violation()
            raise WorkflowError(
                f"Tag `{check.tag}` has been created, aborting", ErrorKind.RACE_ABORTED
            )
        logger.debug("tag_check_passed", tag=check.tag, mode=check.mode.value)

    async def build_and_push(
        self,
        tag: str,
        check: CheckBehaviour | None = None,
        check_tag: TagCheck | TagCheckFactory | None = None,
    ) -> ImageBuildResult:
        """Make sure the registry holds an image of HEAD's tree under tag.

        Args:
            tag: Target image tag
            check: Reuse an image already published under tag (or one of
                ``check.also_check``) when it was built from HEAD's tree.
                Without it the image is always rebuilt and overwritten.
            check_tag: Postcondition checked before pushing. A callable
                receives the ImageSource and returns the check to apply, if
                any.

        Returns:
            ImageBuildResult describing what was done

        Raises:
            WorkflowError: On a strict check failure or a detected race
        """
        head = self.git_manager.resolve_commit("HEAD")

        retag_from: str | None = None
        if check is not None:
            up_to_date, retag_from = await self._find_existing(tag, head, check)
            if up_to_date:
                logger.info("image_up_to_date", tag=tag, tree_sha=head.tree)
                return ImageBuildResult(tag=tag, source=ImageSource.EXISTING)

        if retag_from is not None:
            await self.docker.retag_image(retag_from, tag)
            source = ImageSource.RETAGGED
        else:
            await self.docker.run_build(
                self.repo_path,
                tag,
                ImageMetadata(commit_sha=head.sha, tree_sha=head.tree),
            )
            source = ImageSource.BUILT

        postcondition = check_tag(source) if callable(check_tag) else check_tag
        if postcondition is not None:
            await self._verify_tag(postcondition)

        await self.docker.push_image(tag)
        logger.info("image_published", tag=tag, source=source.value, retagged_from=retag_from)
        return ImageBuildResult(tag=tag, source=source, retagged_from=retag_from)
