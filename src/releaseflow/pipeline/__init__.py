"""Pipeline subsystem for releaseflow.

This module provides the git, Docker image, registry and CI command
operations that the workflow is built from.
"""

from __future__ import annotations

from releaseflow.pipeline.ci import run_ci_commands, run_command
from releaseflow.pipeline.docker_ops import DockerBuildClient, DockerController, ImageMetadata
from releaseflow.pipeline.git_ops import CommitRef, GitManager
from releaseflow.pipeline.registry import PushResult, RegistryClient

__all__ = [
    "CommitRef",
    "DockerBuildClient",
    "DockerController",
    "GitManager",
    "ImageMetadata",
    "PushResult",
    "RegistryClient",
    "run_ci_commands",
    "run_command",
]
