"""Configuration management for releaseflow.

Configuration comes from two places:

1. The process environment (``RunnerSettings``), populated by the GitHub
   Actions runner: the path to the JSON config file, forge and registry
   credentials, and the event being processed.
2. A JSON configuration file (``ActionConfig``) checked into the repository
   being built. It holds every option that is not a secret.

Both are loaded once per run and are read-only afterwards.

Example configuration file:
    {
      "stagingEnvironmentBranch": "env/staging",
      "developmentEnvironmentBranches": ["env/dev"],
      "repoType": "node",
      "docker": {
        "path": ".",
        "args": {"commitSha": "COMMIT_SHA", "treeSha": "TREE_SHA"},
        "environmentVariables": {
          "commitSha": "RELEASEFLOW_COMMIT_SHA",
          "treeSha": "RELEASEFLOW_TREE_SHA"
        },
        "repository": "ghcr.io/org/app",
        "registry": "ghcr.io"
      },
      "ci": ["npm ci", "npm test"]
    }
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from releaseflow.errors import ErrorKind, WorkflowError

DEVELOPMENT_BRANCH_PREFIX = "env/"


class LoggingConfig(BaseSettings):
    """Logging configuration.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Log format (actions, json or console)
    """

    model_config = SettingsConfigDict(
        env_prefix="RELEASEFLOW_LOGGING__",
        extra="forbid",
    )

    level: str = Field(default="INFO")
    format: str = Field(default="actions")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level is recognized."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format is recognized."""
        valid_formats = {"actions", "json", "console"}
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Invalid log format: {v}. Must be one of {valid_formats}")
        return v_lower


class RunnerSettings(BaseSettings):
    """Environment variables consumed by a run.

    All fields are optional at the settings layer so that each one can be
    reported with its own message when it is actually needed, see
    ``require``.

    Attributes:
        config_file: Path to the JSON action configuration
        github_token: Token used for the GitHub REST API
        github_repository: Repository in ``owner/repo`` form
        github_event_name: Name of the event that triggered the workflow
        github_event_path: Path to the JSON event payload
        github_api_url: Base URL of the GitHub REST API
        docker_username: Container registry username
        docker_password: Container registry password or token
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
    )

    config_file: str | None = Field(default=None)
    github_token: str | None = Field(default=None)
    github_repository: str | None = Field(default=None)
    github_event_name: str | None = Field(default=None)
    github_event_path: str | None = Field(default=None)
    github_api_url: str = Field(default="https://api.github.com")
    docker_username: str | None = Field(default=None)
    docker_password: str | None = Field(default=None)

    def require(self, field_name: str) -> str:
        """Return a required setting or fail naming its environment variable.

        Args:
            field_name: Attribute name on this model (e.g. ``github_token``)

        Returns:
            The non-empty setting value

        Raises:
            WorkflowError: If the variable is unset or empty
        """
        value = getattr(self, field_name)
        if not value:
            raise WorkflowError(
                f"Environment Variable {field_name.upper()} is required",
                ErrorKind.CONFIGURATION,
            )
        return value


class _ConfigModel(BaseModel):
    """Base for models parsed from the JSON configuration file."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )


class ShaNames(_ConfigModel):
    """Names used to carry the commit and tree sha into an image."""

    commit_sha: str = Field(alias="commitSha")
    tree_sha: str = Field(alias="treeSha")


class DockerSettings(_ConfigModel):
    """Container image build and publication settings.

    Attributes:
        path: Build context, relative to the repository root
        args: Build-arg names receiving the commit and tree sha
        environment_variables: Image environment variable names exposing them
        repository: Image repository, including the registry host if any
        registry: Registry to log in to (None for Docker Hub)
        skip_login: Do not log in before pulling and pushing
    """

    path: str
    args: ShaNames
    environment_variables: ShaNames = Field(alias="environmentVariables")
    repository: str
    registry: str | None = None
    skip_login: bool = Field(default=False, alias="skipLogin")

    def image(self, tag: str) -> str:
        """Return the full image reference for a tag."""
        return f"{self.repository}:{tag}"


class DeploymentBinding(_ConfigModel):
    """Binds an environment branch to a GitHub deployment environment."""

    branch: str
    environment: str


class DeploymentSettings(_ConfigModel):
    environments: list[DeploymentBinding] = Field(default_factory=list)


class AutomationSettings(_ConfigModel):
    """Pull request authors that need special treatment.

    Attributes:
        comment_only_authors: Logins whose pull requests get comments instead
            of reviews, because the workflow token cannot review them
        ignored_authors: Logins whose pull requests get no feedback at all
    """

    comment_only_authors: list[str] = Field(
        default_factory=lambda: ["github-actions[bot]"],
        alias="commentOnlyAuthors",
    )
    ignored_authors: list[str] = Field(
        default_factory=lambda: ["dependabot[bot]"],
        alias="ignoredAuthors",
    )


class ActionConfig(_ConfigModel):
    """Root of the JSON configuration file.

    Attributes:
        staging_environment_branch: Branch tracking the staging environment
        development_environment_branches: Branches tracking dev environments
        repo_type: How the release version is read from the repository
        docker: Image build settings
        ci: Shell commands run as CI checks
        mergeback_labels: Labels applied to mergeback pull requests
        deployments: Branch to deployment environment bindings
        automation: Author identities with special feedback handling
    """

    staging_environment_branch: Literal["env/stage", "env/staging"] = Field(
        alias="stagingEnvironmentBranch"
    )
    development_environment_branches: list[str] = Field(
        alias="developmentEnvironmentBranches"
    )
    repo_type: Literal["node"] = Field(alias="repoType")
    docker: DockerSettings
    ci: list[str]
    mergeback_labels: list[str] = Field(default_factory=list, alias="mergebackLabels")
    deployments: DeploymentSettings = Field(default_factory=DeploymentSettings)
    automation: AutomationSettings = Field(default_factory=AutomationSettings)

    def deployment_environment(self, branch: str) -> str | None:
        """Return the deployment environment bound to a branch, if any."""
        for binding in self.deployments.environments:
            if binding.branch == branch:
                return binding.environment
        return None


def _format_validation_error(error: ValidationError) -> str:
    lines = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"]) or "<root>"
        lines.append(f"{location}: {detail['msg']}")
    return "Invalid Configuration: \n* " + "\n* ".join(lines)


def parse_action_config(data: object) -> ActionConfig:
    """Validate decoded JSON against the configuration schema.

    Args:
        data: Decoded JSON document

    Returns:
        Validated ActionConfig

    Raises:
        WorkflowError: If the document does not describe a valid configuration
    """
    try:
        config = ActionConfig.model_validate(data)
    except ValidationError as e:
        raise WorkflowError(_format_validation_error(e), ErrorKind.CONFIGURATION) from e

    registry = config.docker.registry
    if registry and not config.docker.repository.startswith(f"{registry}/"):
        raise WorkflowError(
            f"Invalid Configuration: Docker repository must start with: {registry}/",
            ErrorKind.CONFIGURATION,
        )

    for branch in config.development_environment_branches:
        if not branch.startswith(DEVELOPMENT_BRANCH_PREFIX):
            raise WorkflowError(
                "Invalid Configuration: All development environment branches "
                f"must start with {DEVELOPMENT_BRANCH_PREFIX}",
                ErrorKind.CONFIGURATION,
            )

    return config


def load_action_config(settings: RunnerSettings) -> ActionConfig:
    """Load the JSON configuration file named by CONFIG_FILE.

    Args:
        settings: Environment settings of the current run

    Returns:
        Validated ActionConfig

    Raises:
        WorkflowError: If CONFIG_FILE is unset, unreadable, not JSON or invalid
    """
    config_file = settings.require("config_file")
    path = Path(config_file)

    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise WorkflowError(
            f'Could not find configuration file "{config_file}" specified in CONFIG_FILE',
            ErrorKind.CONFIGURATION,
        ) from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise WorkflowError(
            f'The configuration file at "{config_file}" is not valid JSON: {e}',
            ErrorKind.CONFIGURATION,
        ) from e

    return parse_action_config(data)
