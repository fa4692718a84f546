"""Push event payload handling.

Only the ``ref`` field of the payload GitHub writes to ``GITHUB_EVENT_PATH``
is used. It is either ``refs/heads/<branch>`` or ``refs/tags/<name>``.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError

from releaseflow.errors import ErrorKind, WorkflowError

BRANCH_REF_PREFIX = "refs/heads/"
TAG_REF_PREFIX = "refs/tags/"


class PushEvent(BaseModel):
    """The parts of a push event payload that the workflow reads."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    ref: str | None = None

    @property
    def is_tag(self) -> bool:
        return self.ref is not None and self.ref.startswith(TAG_REF_PREFIX)

    def branch(self) -> str:
        """Return the branch the push was made to.

        Raises:
            WorkflowError: If the ref is missing or not a branch ref
        """
        if self.ref is None or not self.ref.startswith(BRANCH_REF_PREFIX):
            raise WorkflowError(
                f"Unexpected ref in push event: {self.ref}",
                ErrorKind.INTERNAL,
            )
        return self.ref[len(BRANCH_REF_PREFIX):]


def load_push_event(path: str) -> PushEvent:
    """Read and validate the event payload file.

    Args:
        path: Value of GITHUB_EVENT_PATH

    Returns:
        Parsed PushEvent

    Raises:
        WorkflowError: If the file cannot be read or is not a JSON object
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return PushEvent.model_validate(data)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        raise WorkflowError(
            f'Unable to read event payload at "{path}": {e}',
            ErrorKind.CONFIGURATION,
        ) from e
