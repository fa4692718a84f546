"""Pull request feedback.

Results are reported on a pull request either as a formal review or as a
plain comment, depending on who opened it. The workflow token cannot review
pull requests opened by automation accounts, so those get comments, and
pull requests from dependency-update bots get no feedback at all.
"""

from __future__ import annotations

from enum import Enum

import structlog

from releaseflow.config import AutomationSettings
from releaseflow.integrations.github import ForgeController, PullRequest, ReviewState

logger = structlog.get_logger(__name__)


class InteractionMode(str, Enum):
    """How to give feedback on a pull request."""

    COMMENT = "comment"
    REVIEW = "review"
    SKIP = "skip"


def interaction_mode(pull: PullRequest, automation: AutomationSettings) -> InteractionMode:
    """Choose the interaction mode for a pull request from its author."""
    if pull.author_login in automation.ignored_authors:
        return InteractionMode.SKIP
    if pull.author_login in automation.comment_only_authors:
        return InteractionMode.COMMENT
    return InteractionMode.REVIEW


class PullRequestFeedback:
    """Posts approvals and rejections on pull requests."""

    def __init__(self, forge: ForgeController, automation: AutomationSettings) -> None:
        self.forge = forge
        self.automation = automation

    async def _post(self, pull: PullRequest, body: str, state: ReviewState) -> None:
        mode = interaction_mode(pull, self.automation)
        if mode is InteractionMode.SKIP:
            logger.info(
                "pull_request_feedback_skipped",
                number=pull.number,
                author=pull.author_login,
                state=state.value,
            )
        elif mode is InteractionMode.COMMENT:
            await self.forge.comment_on_pull_request(pull.number, body)
        else:
            await self.forge.review_pull_request(pull.number, body, state)

    async def approve(self, pull: PullRequest, body: str) -> None:
        await self._post(pull, body, ReviewState.APPROVE)

    async def reject(self, pull: PullRequest, body: str) -> None:
        await self._post(pull, body, ReviewState.REQUEST_CHANGES)
