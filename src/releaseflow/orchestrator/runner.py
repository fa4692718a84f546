"""Branch workflow engine.

This module implements the WorkflowRunner, which handles a single push
event: it validates the environment, classifies the pushed branch into a
``Mode`` and runs the protocol for that mode.

Mode protocols:
- env-production / env-staging: bind the version tag to HEAD's tree,
  publish the image, record a deployment and open a mergeback pull request.
- env-development: rebuild the branch image and record a deployment.
- hotfix / release: gate the pull request on branching policy, publish a
  ``-pre`` image, run CI and approve.
- develop: run CI.
- other: gate the pull request base, run CI and approve.

Nothing is rolled back when a step fails. Every step is safe to repeat, so a
failed run is recovered by running the workflow again.

Example usage:
    >>> runner = WorkflowRunner(RunnerSettings(), repo_path=Path.cwd())
    >>> await runner.run()
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

import structlog

from releaseflow.config import ActionConfig, DockerSettings, RunnerSettings, load_action_config
from releaseflow.errors import ErrorKind, WorkflowError
from releaseflow.events import load_push_event
from releaseflow.integrations.github import (
    Deployment,
    ForgeController,
    GitHubClient,
    PullRequest,
)
from releaseflow.logging import bind_run_context
from releaseflow.mode import (
    DEVELOP_BRANCH,
    ENVIRONMENT_PREFIX,
    HOTFIX_PREFIX,
    MERGEBACK_PREFIX,
    PRODUCTION_BRANCH,
    RELEASE_PREFIX,
    Mode,
    classify,
)
from releaseflow.orchestrator.feedback import PullRequestFeedback
from releaseflow.orchestrator.image_builder import (
    CheckBehaviour,
    ImageBuildOrchestrator,
    ImageSource,
    TagCheck,
    TagCheckFactory,
    TagCheckMode,
)
from releaseflow.pipeline.ci import run_ci_commands
from releaseflow.pipeline.docker_ops import DockerBuildClient, DockerController
from releaseflow.pipeline.git_ops import CommitRef, GitManager
from releaseflow.version import read_version

logger = structlog.get_logger(__name__)

PUSH_EVENT = "push"

DockerFactory = Callable[[DockerSettings], DockerController]
ForgeFactory = Callable[[RunnerSettings], ForgeController]


def _default_forge_factory(settings: RunnerSettings) -> ForgeController:
    return GitHubClient(
        token=settings.require("github_token"),
        repository=settings.require("github_repository"),
        api_url=settings.github_api_url,
    )


@dataclass(frozen=True)
class RunState:
    """Facts established before mode dispatch, shared by all protocols."""

    config: ActionConfig
    git_manager: GitManager
    branch: str
    version: str
    mode: Mode

    @property
    def tag(self) -> str:
        return f"v{self.version}"


class WorkflowRunner:
    """Runs the branch workflow for one push event.

    The Docker and Forge controllers are created on first use through the
    given factories, so a run that never needs one does not require its
    credentials.

    Attributes:
        settings: Environment settings of the run
        repo_path: Root of the checked out repository
    """

    def __init__(
        self,
        settings: RunnerSettings,
        repo_path: Path,
        docker_factory: DockerFactory = DockerBuildClient,
        forge_factory: ForgeFactory = _default_forge_factory,
    ) -> None:
        self.settings = settings
        self.repo_path = repo_path
        self._docker_factory = docker_factory
        self._forge_factory = forge_factory
        self._docker: DockerController | None = None
        self._forge: ForgeController | None = None
        self._handlers: dict[Mode, Callable[[RunState], Awaitable[None]]] = {
            Mode.ENV_PRODUCTION: self._run_environment,
            Mode.ENV_STAGING: self._run_environment,
            Mode.ENV_DEVELOPMENT: self._run_development,
            Mode.HOTFIX: self._run_pull_request_branch,
            Mode.RELEASE: self._run_pull_request_branch,
            Mode.DEVELOP: self._run_develop,
            Mode.OTHER: self._run_other,
        }

    async def _docker_controller(self, config: ActionConfig) -> DockerController:
        """Create the Docker controller and log in, once per run."""
        if self._docker is None:
            self._docker = self._docker_factory(config.docker)
            if config.docker.skip_login:
                logger.info("docker_login_skipped")
            else:
                await self._docker.login(
                    self.settings.require("docker_username"),
                    self.settings.require("docker_password"),
                )
        return self._docker

    def _forge_controller(self) -> ForgeController:
        if self._forge is None:
            self._forge = self._forge_factory(self.settings)
        return self._forge

    async def close(self) -> None:
        """Release controller connections opened during the run."""
        if self._docker is not None:
            await self._docker.close()
            self._docker = None
        if self._forge is not None:
            await self._forge.close()
            self._forge = None

    async def run(self) -> None:
        """Handle the push event described by the environment.

        Raises:
            WorkflowError: When the workflow fails; ``kind`` tells why
        """
        config = load_action_config(self.settings)
        event_name = self.settings.require("github_event_name")
        event_path = self.settings.require("github_event_path")
        if event_name != PUSH_EVENT:
            raise WorkflowError(
                f"Unsupported event {event_name}, only push events are handled",
                ErrorKind.CONFIGURATION,
            )

        event = load_push_event(event_path)
        if event.is_tag:
            logger.info("push_is_for_tag_skipping", ref=event.ref)
            return

        git_manager = GitManager(self.repo_path)
        remote = git_manager.remote
        version = read_version(git_manager, config.repo_type)

        branch = event.branch()
        current = git_manager.current_branch()
        if current != branch:
            raise WorkflowError(
                f"Action checked out on {current} but push event is for {branch}",
                ErrorKind.INTERNAL,
            )

        mode = classify(config, branch)
        bind_run_context(branch=branch, mode=mode.value)
        logger.info("workflow_started", version=version, remote=remote)

        state = RunState(
            config=config,
            git_manager=git_manager,
            branch=branch,
            version=version,
            mode=mode,
        )
        try:
            await self._handlers[mode](state)
        finally:
            await self.close()
        logger.info("workflow_succeeded")

    def _image_builder(self, state: RunState, docker: DockerController) -> ImageBuildOrchestrator:
        return ImageBuildOrchestrator(docker, state.git_manager, self.repo_path)

    async def _create_deployment(self, state: RunState, head: CommitRef, image_tag: str) -> None:
        """Record a deployment when the branch is bound to an environment."""
        environment = state.config.deployment_environment(state.branch)
        if environment is None:
            return
        await self._forge_controller().create_deployment(
            Deployment(
                ref=head.sha,
                environment=environment,
                payload={
                    "docker_tag": image_tag,
                    "docker_image": state.config.docker.image(image_tag),
                },
                production_environment=state.mode is Mode.ENV_PRODUCTION,
            )
        )

    # -- env-production / env-staging -------------------------------------

    def _bind_version_tag(self, state: RunState, head: CommitRef) -> CommitRef | None:
        """Make sure the version tag, if it exists, is bound to HEAD's tree.

        Returns:
            The commit the tag points at, or None if there is no tag
        """
        git_manager = state.git_manager
        tag = state.tag
        if git_manager.fetch_tag(tag):
            tagged = git_manager.resolve_commit(f"refs/tags/{tag}")
            if tagged.tree != head.tree:
                raise WorkflowError(
                    f"New push to {state.branch} without bumping version",
                    ErrorKind.CONTENT_CONSISTENCY,
                )
            logger.info("tag_matches_head", tag=tag, commit_sha=tagged.sha)
            return tagged

        logger.info("tag_not_found", tag=tag)
        return None

    def _create_version_tag(self, state: RunState) -> CommitRef:
        """Create the version tag on HEAD and push it."""
        git_manager = state.git_manager
        git_manager.delete_local_tag(state.tag)
        tagged = git_manager.create_tag(state.tag)
        git_manager.push_tag(state.tag)
        return tagged

    async def _run_environment(self, state: RunState) -> None:
        config = state.config
        head = state.git_manager.resolve_commit("HEAD")
        tag = state.tag
        tagged = self._bind_version_tag(state, head)

        check_tag: TagCheck | TagCheckFactory
        if state.mode is Mode.ENV_PRODUCTION:
            # production releases the version, staging leaves the bare tag alone
            released = tagged or self._create_version_tag(state)
            image_tag = tag
            check = CheckBehaviour(strict=True, also_check=[f"{tag}-pre"])
            check_tag = TagCheck(TagCheckMode.MATCH, tag, sha=released.sha)
        else:
            image_tag = f"{tag}-pre"
            check = CheckBehaviour(strict=False, also_check=[tag])

            def staging_tag_check(source: ImageSource) -> TagCheck | None:
                if tagged is not None:
                    return TagCheck(TagCheckMode.MATCH, tag, sha=tagged.sha)
                if source is ImageSource.BUILT:
                    return TagCheck(TagCheckMode.NON_EXISTENT, tag)
                return None

            check_tag = staging_tag_check

        docker = await self._docker_controller(config)
        await self._image_builder(state, docker).build_and_push(
            image_tag, check=check, check_tag=check_tag
        )

        await self._create_deployment(state, head, image_tag)
        await self._open_mergeback(state)

    async def _open_mergeback(self, state: RunState) -> None:
        """Push the mergeback branch and open its pull request if needed."""
        config = state.config
        git_manager = state.git_manager
        environment = state.branch[len(ENVIRONMENT_PREFIX):]
        mergeback = f"{MERGEBACK_PREFIX}{environment}/{state.version}"
        base = (
            config.staging_environment_branch
            if state.mode is Mode.ENV_PRODUCTION
            else DEVELOP_BRANCH
        )

        git_manager.create_branch(mergeback)
        git_manager.push_branch(mergeback)

        forge = self._forge_controller()
        if await forge.get_open_pull_requests(mergeback):
            logger.info("mergeback_pull_request_exists", branch=mergeback, base=base)
            return
        await forge.open_pull_request(
            base=base,
            head=mergeback,
            title=f"Mergeback {state.version} from {state.branch} into {base}",
            labels=config.mergeback_labels,
        )

    # -- env-development ----------------------------------------------------

    async def _run_development(self, state: RunState) -> None:
        head = state.git_manager.resolve_commit("HEAD")
        image_tag = state.branch.replace("/", "-")
        docker = await self._docker_controller(state.config)
        await self._image_builder(state, docker).build_and_push(image_tag)
        await self._create_deployment(state, head, image_tag)

    # -- hotfix / release ---------------------------------------------------

    async def _get_pull_request(self, branch: str) -> PullRequest:
        """Return the single open pull request for branch.

        Raises:
            WorkflowError: NO_PULL_REQUEST if there is none, PULL_REQUEST if
                there are several
        """
        pulls = await self._forge_controller().get_open_pull_requests(branch)
        if not pulls:
            raise WorkflowError(
                f"The branch {branch} has no pull requests open yet, "
                "so it is not possible to run this workflow.",
                ErrorKind.NO_PULL_REQUEST,
            )
        if len(pulls) > 1:
            raise WorkflowError(
                f"Multiple pull requests found for branch {branch}",
                ErrorKind.PULL_REQUEST,
            )
        logger.info("pull_request_found", number=pulls[0].number, base=pulls[0].base_ref)
        return pulls[0]

    async def _reject(
        self,
        feedback: PullRequestFeedback,
        pull: PullRequest,
        message: str,
        guidance: str,
    ) -> WorkflowError:
        """Post a rejection on the pull request and return the error to raise."""
        await feedback.reject(pull, f"{message}\n\n{guidance}")
        return WorkflowError(message, ErrorKind.PULL_REQUEST_POLICY)

    async def _run_pull_request_branch(self, state: RunState) -> None:
        config = state.config
        git_manager = state.git_manager
        staging = config.staging_environment_branch
        if state.mode is Mode.HOTFIX:
            prefix = HOTFIX_PREFIX
            allowed_bases = [PRODUCTION_BRANCH, staging]
        else:
            prefix = RELEASE_PREFIX
            allowed_bases = [staging]

        pull = await self._get_pull_request(state.branch)
        feedback = PullRequestFeedback(self._forge_controller(), config.automation)
        base = pull.base_ref

        if base not in allowed_bases:
            raise await self._reject(
                feedback,
                pull,
                f"Pull request from {prefix} branch made against {base}",
                f"Branches starting with `{prefix}` can only be merged into "
                + " or ".join(f"`{b}`" for b in allowed_bases)
                + ", please change the base branch of this pull request.",
            )

        base_head = git_manager.fetch_branch(base)

        if state.mode is Mode.HOTFIX:
            base_version = read_version(
                git_manager, config.repo_type, ref=f"refs/remotes/{git_manager.remote}/{base}"
            )
            if base_version == state.version:
                raise await self._reject(
                    feedback,
                    pull,
                    f"Version {state.version} has not been bumped from {base}",
                    "Hotfixes must release a new version, please update the version.",
                )

        tag = state.tag
        if git_manager.fetch_tag(tag):
            raise await self._reject(
                feedback,
                pull,
                f"Tag {tag} already exists",
                "This version has already been released, please update the version.",
            )

        head = git_manager.resolve_commit("HEAD")
        if not git_manager.is_descendant(base_head.sha, head.sha):
            raise await self._reject(
                feedback,
                pull,
                f"Branch {state.branch} is not a descendant of {base}",
                f"Please merge or rebase `{base}` into this branch.",
            )

        image_tag = f"{tag}-pre"
        docker = await self._docker_controller(config)
        await self._image_builder(state, docker).build_and_push(
            image_tag,
            check=CheckBehaviour(strict=False),
            check_tag=TagCheck(
                TagCheckMode.NON_EXISTENT,
                tag,
                on_violation=lambda: feedback.reject(
                    pull,
                    f"Tag `{tag}` was created while this pull request was being built, "
                    "please update the version.",
                ),
            ),
        )

        await run_ci_commands(config.ci, self.repo_path)

        await feedback.approve(
            pull,
            f"Image `{config.docker.image(image_tag)}` has been built and pushed. "
            "It can be deployed for testing before this pull request is merged.",
        )

    # -- develop / other ----------------------------------------------------

    async def _run_develop(self, state: RunState) -> None:
        await run_ci_commands(state.config.ci, self.repo_path)

    async def _run_other(self, state: RunState) -> None:
        config = state.config
        pull = await self._get_pull_request(state.branch)
        feedback = PullRequestFeedback(self._forge_controller(), config.automation)
        base = pull.base_ref
        staging = config.staging_environment_branch

        protected = base == PRODUCTION_BRANCH or (
            base == staging and not state.branch.startswith(MERGEBACK_PREFIX)
        )
        if protected:
            raise await self._reject(
                feedback,
                pull,
                f"Pull request from {state.branch} made against {base}",
                f"Changes reach `{base}` through `{RELEASE_PREFIX}` or "
                f"`{HOTFIX_PREFIX}` branches, please change the base branch "
                "of this pull request.",
            )

        await run_ci_commands(config.ci, self.repo_path)

        await feedback.approve(
            pull, "All checks have passed, this pull request is ready for review."
        )
