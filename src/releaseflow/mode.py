"""Workflow mode classification.

A push is handled according to the branch it was made to. The mapping from
branch name to mode is fixed:

    env/prod                       -> env-production
    <stagingEnvironmentBranch>     -> env-staging
    <developmentEnvironmentBranch> -> env-development
    env/<anything else>            -> configuration error
    hotfix/*                       -> hotfix
    release/*                      -> release
    develop                        -> develop
    anything else                  -> other
"""

from __future__ import annotations

from enum import Enum

from releaseflow.config import ActionConfig
from releaseflow.errors import ErrorKind, WorkflowError

PRODUCTION_BRANCH = "env/prod"
DEVELOP_BRANCH = "develop"
ENVIRONMENT_PREFIX = "env/"
HOTFIX_PREFIX = "hotfix/"
RELEASE_PREFIX = "release/"
MERGEBACK_PREFIX = "mergeback/"


class Mode(str, Enum):
    """Workflow phase selected for a push."""

    ENV_PRODUCTION = "env-production"
    ENV_STAGING = "env-staging"
    ENV_DEVELOPMENT = "env-development"
    HOTFIX = "hotfix"
    RELEASE = "release"
    DEVELOP = "develop"
    OTHER = "other"


def classify(config: ActionConfig, branch: str) -> Mode:
    """Determine the workflow mode for a branch.

    Args:
        config: Action configuration
        branch: Name of the pushed branch (without ``refs/heads/``)

    Returns:
        The Mode for the branch

    Raises:
        WorkflowError: If the branch is an ``env/`` branch that is neither
            production, staging nor a configured development branch
    """
    if branch == PRODUCTION_BRANCH:
        return Mode.ENV_PRODUCTION
    if branch == config.staging_environment_branch:
        return Mode.ENV_STAGING
    if branch in config.development_environment_branches:
        return Mode.ENV_DEVELOPMENT
    if branch.startswith(ENVIRONMENT_PREFIX):
        allowed = ", ".join(config.development_environment_branches)
        raise WorkflowError(
            f"Invalid development branch: {branch}, must be one of: {allowed}",
            ErrorKind.CONFIGURATION,
        )
    if branch.startswith(HOTFIX_PREFIX):
        return Mode.HOTFIX
    if branch.startswith(RELEASE_PREFIX):
        return Mode.RELEASE
    if branch == DEVELOP_BRANCH:
        return Mode.DEVELOP
    return Mode.OTHER
