"""Docker image operations for releaseflow.

This module provides a high-level async interface to the Docker operations
the workflow needs, using docker-py: pulling an image, reading the commit and
tree sha embedded in it, building with live log output, retagging, and (via
``RegistryClient``) logging in and pushing.

Images are always addressed as ``<docker.repository>:<tag>``. The commit and
tree sha are passed to the build as build args and read back from the
image's environment variables, with names taken from the configuration.

Example usage:
    >>> from releaseflow.pipeline.docker_ops import DockerBuildClient, ImageMetadata
    >>>
    >>> client = DockerBuildClient(config.docker)
    >>> await client.login(user="bot", password="token")
    >>> if await client.pull_image("v1.2.0"):
    ...     meta = await client.get_metadata("v1.2.0")
    >>> await client.run_build(cwd=Path("."), tag="v1.2.0", meta=ImageMetadata(
    ...     commit_sha="5f1c...", tree_sha="9ab2..."))
    >>> await client.push_image("v1.2.0")
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any, Protocol

from docker.errors import APIError, BuildError, DockerException
from pydantic import BaseModel, ConfigDict, Field

import docker
from releaseflow.config import DockerSettings
from releaseflow.logging import get_logger
from releaseflow.pipeline.registry import PushResult, RegistryClient


class ImageMetadata(BaseModel):
    """Commit and tree sha embedded in an image at build time.

    An image is valid for a content tree exactly when its ``tree_sha``
    equals that tree's sha.
    """

    model_config = ConfigDict(frozen=True)

    commit_sha: str = Field(description="Commit the image was built from")
    tree_sha: str = Field(description="Tree the image was built from")


class DockerController(Protocol):
    """Container image capability used by the workflow."""

    async def login(self, user: str, password: str) -> None: ...

    async def pull_image(self, tag: str) -> bool: ...

    async def get_metadata(self, tag: str) -> ImageMetadata: ...

    async def run_build(self, cwd: Path, tag: str, meta: ImageMetadata) -> None: ...

    async def retag_image(self, from_tag: str, to_tag: str) -> None: ...

    async def push_image(self, tag: str) -> None: ...

    async def close(self) -> None: ...


class DockerBuildClient:
    """Async Docker client for one configured image repository.

    Attributes:
        config: Docker section of the action configuration
        logger: Structured logger instance
        registry: Registry client sharing this client's connection
    """

    def __init__(self, config: DockerSettings) -> None:
        """Initialize DockerBuildClient with configuration.

        The Docker client connection is deferred until first use.

        Args:
            config: Docker section of the action configuration
        """
        self.config = config
        self.logger = get_logger(__name__)
        self._client: docker.DockerClient | None = None
        self.registry = RegistryClient(config, self._get_client)

    def _get_client(self) -> docker.DockerClient:
        """Get or create the Docker client connection.

        Returns:
            Active Docker client instance

        Raises:
            DockerException: If unable to connect to Docker daemon
        """
        if self._client is None:
            try:
                self._client = docker.DockerClient.from_env()
                self.logger.debug("docker_client_connected")
            except DockerException as e:
                self.logger.error(
                    "docker_client_connection_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise
        return self._client

    async def login(self, user: str, password: str) -> None:
        """Log in to the configured registry (Docker Hub if none)."""
        await self.registry.authenticate(user, password)

    async def pull_image(self, tag: str) -> bool:
        """Try to pull the image for a tag.

        Returns:
            True if the image is now available locally, False if the registry
            could not provide it
        """
        image = self.config.image(tag)
        try:
            client = await asyncio.to_thread(self._get_client)
            await asyncio.to_thread(client.images.pull, self.config.repository, tag=tag)
        except APIError as e:
            self.logger.info("image_not_pulled", image=image, reason=str(e))
            return False

        self.logger.info("image_pulled", image=image)
        return True

    async def get_metadata(self, tag: str) -> ImageMetadata:
        """Read the commit and tree sha from a locally available image.

        Raises:
            ImageNotFound: If the image is not available locally
            ValueError: If the image does not carry both environment variables
        """
        client = await asyncio.to_thread(self._get_client)
        image = await asyncio.to_thread(client.images.get, self.config.image(tag))
        env: list[str] = (image.attrs.get("Config") or {}).get("Env") or []

        names = self.config.environment_variables
        values: dict[str, str] = {}
        for entry in env:
            key, _, value = entry.partition("=")
            values[key] = value

        commit_sha = values.get(names.commit_sha)
        tree_sha = values.get(names.tree_sha)
        if not commit_sha or not tree_sha:
            raise ValueError("Unable to extract treeSha and commitSha from docker image")

        return ImageMetadata(commit_sha=commit_sha, tree_sha=tree_sha)

    def _build_blocking(self, cwd: Path, tag: str, meta: ImageMetadata) -> str | None:
        client = self._get_client()
        args = self.config.args
        response = client.api.build(
            path=str(cwd / self.config.path),
            tag=self.config.image(tag),
            buildargs={args.commit_sha: meta.commit_sha, args.tree_sha: meta.tree_sha},
            rm=True,
            decode=True,
        )

        build_log: list[dict[str, Any]] = []
        image_id: str | None = None
        for chunk in response:
            if not isinstance(chunk, dict):
                continue
            build_log.append(chunk)
            if "error" in chunk:
                self.logger.error("docker_build_output", line=chunk["error"].rstrip())
                raise BuildError(chunk["error"], build_log)
            line = chunk.get("stream")
            if line and line.strip():
                self.logger.info("docker_build_output", line=line.rstrip())
            aux = chunk.get("aux")
            if isinstance(aux, dict) and "ID" in aux:
                image_id = str(aux["ID"])
        return image_id

    async def run_build(self, cwd: Path, tag: str, meta: ImageMetadata) -> None:
        """Build the image for a tag with the commit and tree sha embedded.

        Build output is logged line by line as it arrives.

        Args:
            cwd: Repository root; the build context is ``cwd / docker.path``
            tag: Tag to give the built image
            meta: Commit and tree sha passed as build args

        Raises:
            BuildError: If the build reports an error
        """
        start_time = time.monotonic()
        self.logger.info(
            "docker_build_started",
            image=self.config.image(tag),
            commit_sha=meta.commit_sha,
            tree_sha=meta.tree_sha,
        )

        image_id = await asyncio.to_thread(self._build_blocking, cwd, tag, meta)

        self.logger.info(
            "docker_build_succeeded",
            image=self.config.image(tag),
            image_id=(image_id or "")[:20],
            duration_seconds=round(time.monotonic() - start_time, 2),
        )

    async def retag_image(self, from_tag: str, to_tag: str) -> None:
        """Give a locally available image an additional tag.

        Raises:
            ImageNotFound: If the source image is not available locally
            DockerException: If the daemon refuses the new tag
        """
        client = await asyncio.to_thread(self._get_client)
        image = await asyncio.to_thread(client.images.get, self.config.image(from_tag))
        tagged: bool = await asyncio.to_thread(image.tag, self.config.repository, tag=to_tag)
        if not tagged:
            raise DockerException(
                f"Unable to tag {self.config.image(from_tag)} as {self.config.image(to_tag)}"
            )
        self.logger.info(
            "image_retagged",
            source=self.config.image(from_tag),
            target=self.config.image(to_tag),
        )

    async def push_image(self, tag: str) -> None:
        """Push the image for a tag to the registry."""
        result: PushResult = await self.registry.push_image(self.config.image(tag))
        self.logger.debug(
            "image_push_result",
            image=result.image_tag,
            digest=result.digest,
            push_log=result.push_log,
        )

    async def close(self) -> None:
        """Close the Docker client connection.

        Safe to call multiple times or if the client was never connected.
        """
        if self._client is not None:
            try:
                await asyncio.to_thread(self._client.close)
                self.logger.debug("docker_client_closed")
            finally:
                self._client = None
