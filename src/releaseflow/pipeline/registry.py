"""Docker registry authentication and image push for releaseflow.

This module logs in to the configured registry and pushes images, using the
docker-py connection owned by ``DockerBuildClient``. Failures are raised,
not retried: a run that fails to push is simply re-run.

Example usage:
    >>> registry = RegistryClient(config.docker, get_client)
    >>> await registry.authenticate("bot", "token")
    >>> result = await registry.push_image("ghcr.io/org/app:v1.0.0")
    >>> print(result.digest)
"""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Callable

from docker.errors import APIError
from pydantic import BaseModel, Field

import docker
from releaseflow.config import DockerSettings
from releaseflow.logging import get_logger

# Regex pattern for extracting digest from push output
_DIGEST_PATTERN = re.compile(r"digest:\s*(sha256:[a-f0-9]{64})")


class PushResult(BaseModel):
    """Result of a Docker image push operation.

    Attributes:
        image_tag: Full image reference that was pushed
        digest: Image digest (sha256 hash) reported by the registry
        push_log: Status lines reported while pushing
    """

    image_tag: str = Field(description="Image tag pushed")
    digest: str | None = Field(default=None, description="Image digest from registry")
    push_log: list[str] = Field(default_factory=list, description="Push log lines")


class RegistryClient:
    """Async registry client sharing a docker-py connection.

    Attributes:
        config: Docker section of the action configuration
        logger: Structured logger instance
    """

    def __init__(
        self,
        config: DockerSettings,
        get_client: Callable[[], docker.DockerClient],
    ) -> None:
        """Initialize RegistryClient.

        Args:
            config: Docker section of the action configuration
            get_client: Returns the (lazily created) docker-py client
        """
        self.config = config
        self.logger = get_logger(__name__)
        self._get_client = get_client

    async def authenticate(self, username: str, password: str) -> None:
        """Log in to the configured registry.

        Raises:
            APIError: If the registry rejects the credentials
        """
        client = await asyncio.to_thread(self._get_client)
        login_kwargs: dict[str, str] = {"username": username, "password": password}
        if self.config.registry:
            login_kwargs["registry"] = self.config.registry

        try:
            await asyncio.to_thread(client.login, **login_kwargs)
        except APIError as e:
            self.logger.error(
                "registry_authentication_failed",
                registry=self.config.registry or "docker.io",
                username=username,
                status_code=e.status_code,
            )
            raise

        self.logger.info(
            "registry_authentication_succeeded",
            registry=self.config.registry or "docker.io",
            username=username,
        )

    async def push_image(self, image_tag: str) -> PushResult:
        """Push an image to the registry.

        Args:
            image_tag: Full image reference (e.g. 'ghcr.io/org/app:v1.0.0')

        Returns:
            PushResult with the digest and status lines

        Raises:
            APIError: If the daemon or the registry reports an error
        """
        start_time = time.monotonic()
        self.logger.info("docker_push_started", image_tag=image_tag)

        repository, _, tag = image_tag.rpartition(":")

        def _push() -> tuple[list[str], str | None]:
            client = self._get_client()
            push_log: list[str] = []
            digest: str | None = None
            for log_entry in client.images.push(
                repository=repository, tag=tag, stream=True, decode=True
            ):
                if not isinstance(log_entry, dict):
                    continue
                if "error" in log_entry:
                    push_log.append(f"ERROR: {log_entry['error']}")
                    raise APIError(log_entry["error"])

                status_msg = log_entry.get("status", "")
                if status_msg:
                    push_log.append(status_msg)

                aux = log_entry.get("aux")
                if isinstance(aux, dict):
                    digest = aux.get("Digest") or aux.get("digest") or digest
                elif status_msg:
                    match = _DIGEST_PATTERN.search(status_msg)
                    if match:
                        digest = match.group(1)
            return push_log, digest

        try:
            push_log, digest = await asyncio.to_thread(_push)
        except APIError as e:
            self.logger.error(
                "docker_push_failed",
                image_tag=image_tag,
                error=str(e),
                duration_seconds=round(time.monotonic() - start_time, 2),
            )
            raise

        duration = time.monotonic() - start_time
        self.logger.info(
            "docker_push_succeeded",
            image_tag=image_tag,
            digest=digest,
            duration_seconds=round(duration, 2),
        )
        return PushResult(
            image_tag=image_tag,
            digest=digest,
            push_log=push_log,
        )
