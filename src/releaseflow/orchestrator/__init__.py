"""Orchestrator subsystem for releaseflow.

This module implements the image build orchestration, pull request
feedback and the branch workflow engine.
"""

from __future__ import annotations

from releaseflow.orchestrator.feedback import (
    InteractionMode,
    PullRequestFeedback,
    interaction_mode,
)
from releaseflow.orchestrator.image_builder import (
    CheckBehaviour,
    ImageBuildOrchestrator,
    ImageBuildResult,
    ImageSource,
    TagCheck,
    TagCheckMode,
)
from releaseflow.orchestrator.runner import RunState, WorkflowRunner

__all__ = [
    "CheckBehaviour",
    "ImageBuildOrchestrator",
    "ImageBuildResult",
    "ImageSource",
    "InteractionMode",
    "PullRequestFeedback",
    "RunState",
    "TagCheck",
    "TagCheckMode",
    "WorkflowRunner",
    "interaction_mode",
]
