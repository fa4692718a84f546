"""Error taxonomy for releaseflow.

Every failure the workflow reports on purpose is a ``WorkflowError``. The
``kind`` attribute tells callers what sort of failure it was, so that they
can branch on it instead of on the exception type:

    >>> try:
    ...     await runner.run()
    ... except WorkflowError as e:
    ...     if e.kind is ErrorKind.NO_PULL_REQUEST:
    ...         ...

Errors raised by third-party libraries (GitPython, docker-py, httpx) are not
wrapped and propagate as they are.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Category of a workflow failure.

    Attributes:
        CONFIGURATION: Missing or invalid configuration, environment or branch naming
        VERSION_SOURCE: The version manifest is missing or malformed
        CONTENT_CONSISTENCY: A tag or image would be bound to different content
        RACE_ABORTED: A concurrent run changed a tag while this run was working
        NO_PULL_REQUEST: The branch has no open pull request yet
        PULL_REQUEST: Pull request lookup failed (e.g. several open)
        PULL_REQUEST_POLICY: The pull request breaks the branching policy
        CI_COMMAND: A configured CI command exited non-zero
        INTERNAL: The environment is not what the workflow expects
    """

    CONFIGURATION = "configuration"
    VERSION_SOURCE = "version_source"
    CONTENT_CONSISTENCY = "content_consistency"
    RACE_ABORTED = "race_aborted"
    NO_PULL_REQUEST = "no_pull_request"
    PULL_REQUEST = "pull_request"
    PULL_REQUEST_POLICY = "pull_request_policy"
    CI_COMMAND = "ci_command"
    INTERNAL = "internal"


class WorkflowError(Exception):
    """Raised when the workflow cannot continue.

    Attributes:
        message: Human readable description, logged verbatim
        kind: Category of the failure
    """

    def __init__(self, message: str, kind: ErrorKind) -> None:
        self.message = message
        self.kind = kind
        super().__init__(message)
