"""Shared pytest fixtures.

Provides a valid action configuration document and in-memory Docker and
Forge controllers. The fakes record every call so tests can assert on what
the workflow did without a Docker daemon or the GitHub API.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import pytest

from releaseflow.config import ActionConfig, parse_action_config
from releaseflow.integrations.github import Deployment, PullRequest, ReviewState
from releaseflow.pipeline.docker_ops import ImageMetadata

CONFIG_DATA: dict[str, Any] = {
    "stagingEnvironmentBranch": "env/staging",
    "developmentEnvironmentBranches": ["env/dev"],
    "repoType": "node",
    "docker": {
        "path": ".",
        "args": {"commitSha": "COMMIT_SHA", "treeSha": "TREE_SHA"},
        "environmentVariables": {
            "commitSha": "APP_COMMIT_SHA",
            "treeSha": "APP_TREE_SHA",
        },
        "repository": "ghcr.io/acme/app",
        "registry": "ghcr.io",
    },
    "ci": ["true"],
}


class FakeDocker:
    """In-memory Docker controller.

    ``published`` plays the registry, ``local`` the daemon's image store.
    ``on_build`` is awaited inside ``run_build`` to simulate concurrent
    activity while an image builds.
    """

    def __init__(self) -> None:
        self.published: dict[str, ImageMetadata] = {}
        self.local: dict[str, ImageMetadata] = {}
        self.calls: list[tuple[Any, ...]] = []
        self.on_build: Any = None
        self.closed = False

    async def login(self, user: str, password: str) -> None:
        self.calls.append(("login", user, password))

    async def pull_image(self, tag: str) -> bool:
        self.calls.append(("pull", tag))
        if tag not in self.published:
            return False
        self.local[tag] = self.published[tag]
        return True

    async def get_metadata(self, tag: str) -> ImageMetadata:
        return self.local[tag]

    async def run_build(self, cwd: Path, tag: str, meta: ImageMetadata) -> None:
        self.calls.append(("build", tag, meta))
        if self.on_build is not None:
            await self.on_build()
        self.local[tag] = meta

    async def retag_image(self, from_tag: str, to_tag: str) -> None:
        self.calls.append(("retag", from_tag, to_tag))
        self.local[to_tag] = self.local[from_tag]

    async def push_image(self, tag: str) -> None:
        self.calls.append(("push", tag))
        self.published[tag] = self.local[tag]

    async def close(self) -> None:
        self.closed = True

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]


class FakeForge:
    """In-memory Forge controller holding open pull requests by head branch."""

    def __init__(self) -> None:
        self.pulls: dict[str, list[PullRequest]] = {}
        self.opened: list[dict[str, Any]] = []
        self.reviews: list[tuple[int, str, ReviewState]] = []
        self.comments: list[tuple[int, str]] = []
        self.deployments: list[Deployment] = []
        self.closed = False

    def add_pull(
        self,
        head: str,
        base: str,
        number: int = 1,
        author: str = "octocat",
    ) -> PullRequest:
        pull = PullRequest(
            number=number,
            base_ref=base,
            head_ref=head,
            author_login=author,
            author_id=1000 + number,
        )
        self.pulls.setdefault(head, []).append(pull)
        return pull

    async def open_pull_request(
        self, base: str, head: str, title: str, labels: list[str]
    ) -> PullRequest:
        self.opened.append({"base": base, "head": head, "title": title, "labels": labels})
        return self.add_pull(head, base, number=100 + len(self.opened))

    async def get_open_pull_requests(self, branch: str) -> list[PullRequest]:
        return list(self.pulls.get(branch, []))

    async def review_pull_request(
        self, pull_request_number: int, body: str, state: ReviewState
    ) -> None:
        self.reviews.append((pull_request_number, body, state))

    async def comment_on_pull_request(self, pull_request_number: int, body: str) -> None:
        self.comments.append((pull_request_number, body))

    async def create_deployment(self, deployment: Deployment) -> None:
        self.deployments.append(deployment)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def config_data() -> dict[str, Any]:
    """Return a fresh, valid configuration document."""
    return copy.deepcopy(CONFIG_DATA)


@pytest.fixture
def action_config(config_data: dict[str, Any]) -> ActionConfig:
    return parse_action_config(config_data)


@pytest.fixture
def fake_docker() -> FakeDocker:
    return FakeDocker()


@pytest.fixture
def fake_forge() -> FakeForge:
    return FakeForge()
