"""GitHub REST API client for pull requests, reviews and deployments."""

from __future__ import annotations

from enum import Enum
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, ConfigDict

from releaseflow.errors import ErrorKind, WorkflowError
from releaseflow.logging import get_logger

GITHUB_API_VERSION = "2022-11-28"


class ReviewState(str, Enum):
    """Outcome of a pull request review."""

    APPROVE = "APPROVE"
    REQUEST_CHANGES = "REQUEST_CHANGES"


class PullRequest(BaseModel):
    """The fields of a pull request the workflow reads."""

    model_config = ConfigDict(frozen=True)

    number: int
    base_ref: str
    head_ref: str
    author_login: str
    author_id: int

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> PullRequest:
        """Build from a pull request object of the REST API."""
        return cls(
            number=data["number"],
            base_ref=data["base"]["ref"],
            head_ref=data["head"]["ref"],
            author_login=data["user"]["login"],
            author_id=data["user"]["id"],
        )


class Deployment(BaseModel):
    """Parameters of a deployment record."""

    ref: str
    task: str = "deploy"
    auto_merge: bool = False
    required_contexts: list[str] = []
    payload: dict[str, Any] = {}
    environment: str
    transient_environment: bool = False
    production_environment: bool = False


class ForgeController(Protocol):
    """Pull request and deployment capability used by the workflow."""

    async def open_pull_request(
        self, base: str, head: str, title: str, labels: list[str]
    ) -> PullRequest: ...

    async def get_open_pull_requests(self, branch: str) -> list[PullRequest]: ...

    async def review_pull_request(
        self, pull_request_number: int, body: str, state: ReviewState
    ) -> None: ...

    async def comment_on_pull_request(self, pull_request_number: int, body: str) -> None: ...

    async def create_deployment(self, deployment: Deployment) -> None: ...

    async def close(self) -> None: ...


class GitHubClient:
    """Client for the GitHub REST API, scoped to one repository."""

    def __init__(
        self,
        token: str,
        repository: str,
        api_url: str = "https://api.github.com",
        timeout_seconds: int = 30,
    ) -> None:
        """Create a client for ``owner/repo``.

        Raises:
            WorkflowError: If repository is not in ``owner/repo`` form
        """
        parts = repository.split("/")
        if len(parts) != 2 or not all(parts):
            raise WorkflowError(
                f"Invalid value for repo: {repository}", ErrorKind.CONFIGURATION
            )
        self.owner, self.repo = parts
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.logger = get_logger(__name__)
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.api_url,
                timeout=self.timeout_seconds,
                headers={
                    "Accept": "application/vnd.github+json",
                    "Authorization": f"Bearer {self.token}",
                    "X-GitHub-Api-Version": GITHUB_API_VERSION,
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        client = await self._get_client()
        url = f"/repos/{self.owner}/{self.repo}{path}"
        response = await client.request(method, url, **kwargs)
        if not response.is_success:
            self.logger.error(
                "github_request_failed",
                method=method,
                path=url,
                status_code=response.status_code,
                response_text=response.text[:200],
            )
        response.raise_for_status()
        return response.json() if response.content else None

    async def open_pull_request(
        self, base: str, head: str, title: str, labels: list[str]
    ) -> PullRequest:
        """Open a pull request and apply labels to it."""
        data = await self._request(
            "POST", "/pulls", json={"title": title, "head": head, "base": base}
        )
        pull = PullRequest.from_api(data)
        if labels:
            await self._request(
                "POST", f"/issues/{pull.number}/labels", json={"labels": labels}
            )
        self.logger.info(
            "pull_request_opened",
            number=pull.number,
            base=base,
            head=head,
            labels=labels,
        )
        return pull

    async def get_open_pull_requests(self, branch: str) -> list[PullRequest]:
        """List open pull requests whose head is branch in this repository."""
        data = await self._request(
            "GET",
            "/pulls",
            params={"state": "open", "head": f"{self.owner}:{branch}", "per_page": 100},
        )
        return [PullRequest.from_api(item) for item in data]

    async def review_pull_request(
        self, pull_request_number: int, body: str, state: ReviewState
    ) -> None:
        await self._request(
            "POST",
            f"/pulls/{pull_request_number}/reviews",
            json={"body": body, "event": state.value},
        )
        self.logger.info(
            "pull_request_reviewed", number=pull_request_number, state=state.value
        )

    async def comment_on_pull_request(self, pull_request_number: int, body: str) -> None:
        await self._request(
            "POST", f"/issues/{pull_request_number}/comments", json={"body": body}
        )
        self.logger.info("pull_request_commented", number=pull_request_number)

    async def create_deployment(self, deployment: Deployment) -> None:
        """Create a deployment record for a ref."""
        await self._request("POST", "/deployments", json=deployment.model_dump())
        self.logger.info(
            "deployment_created",
            ref=deployment.ref,
            environment=deployment.environment,
        )
