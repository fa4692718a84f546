"""External service integrations for releaseflow."""

from __future__ import annotations

from releaseflow.integrations.github import (
    Deployment,
    ForgeController,
    GitHubClient,
    PullRequest,
    ReviewState,
)

__all__ = [
    "Deployment",
    "ForgeController",
    "GitHubClient",
    "PullRequest",
    "ReviewState",
]
