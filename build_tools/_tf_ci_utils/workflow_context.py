"""GitHub Actions workflow run context.

This module gathers what a workflow step knows about the event that triggered
it: the event name, the webhook payload and the run identifiers. All scripts
that inspect the triggering event should use this module instead of reading
`GITHUB_*` environment variables directly.

The values come from the default environment variables set by the runner:

- GITHUB_EVENT_NAME  = "pull_request", "issue_comment", "schedule", ...
- GITHUB_EVENT_PATH  = path to the JSON webhook payload
- GITHUB_REPOSITORY  = "{owner}/{repo}"
- GITHUB_RUN_ID      = numeric workflow run ID
- GITHUB_SERVER_URL  = "https://github.com" unless on GitHub Enterprise
- GITHUB_WORKFLOW    = workflow name
- GITHUB_ACTOR       = user that triggered the run

See https://docs.github.com/en/actions/reference/variables-reference.

Usage
-----
    from _tf_ci_utils.workflow_context import WorkflowContext

    context = WorkflowContext.from_env()
    print(context.event_name)     # pull_request
    print(context.issue_number)   # 123
    print(context.run_url)        # https://github.com/owner/repo/actions/runs/12345
"""

from dataclasses import dataclass, field
import json
import os
from pathlib import Path
from typing import Mapping


@dataclass(frozen=True)
class WorkflowContext:
    """Event and run metadata for the current workflow run.

    The class is immutable (frozen) so every helper sees the same event.
    """

    event_name: str
    """Name of the triggering event (e.g. 'pull_request')."""

    payload: dict = field(default_factory=dict)
    """Decoded webhook payload for the event."""

    repository: str = ""
    """Repository in 'owner/repo' format."""

    run_id: str = ""
    """GitHub Actions workflow run ID (e.g. '12345678901')."""

    server_url: str = "https://github.com"

    workflow: str = ""

    actor: str = ""

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "WorkflowContext":
        """Builds the context from runner environment variables.

        Raises:
            ValueError: if GITHUB_EVENT_NAME is not set.
        """
        if environ is None:
            environ = os.environ

        event_name = environ.get("GITHUB_EVENT_NAME", "")
        if not event_name:
            raise ValueError("GitHub context is missing or invalid: GITHUB_EVENT_NAME not set")

        payload = {}
        event_path = environ.get("GITHUB_EVENT_PATH")
        if event_path:
            payload = load_event_payload(Path(event_path))

        return cls(
            event_name=event_name,
            payload=payload,
            repository=environ.get("GITHUB_REPOSITORY", ""),
            run_id=environ.get("GITHUB_RUN_ID", ""),
            server_url=environ.get("GITHUB_SERVER_URL") or "https://github.com",
            workflow=environ.get("GITHUB_WORKFLOW", ""),
            actor=environ.get("GITHUB_ACTOR", ""),
        )

    @property
    def owner(self) -> str:
        return self.repository.split("/", 1)[0]

    @property
    def repo(self) -> str:
        return self.repository.split("/", 1)[-1]

    @property
    def run_url(self) -> str:
        """Link to the workflow run in the GitHub UI."""
        return f"{self.server_url}/{self.owner}/{self.repo}/actions/runs/{self.run_id}"

    @property
    def issue_number(self) -> int | None:
        """Issue or pull request number the event refers to, if any."""
        for key in ("issue", "pull_request"):
            number = (self.payload.get(key) or {}).get("number")
            if number is not None:
                return int(number)
        number = self.payload.get("number")
        return int(number) if number is not None else None

    def require_issue_number(self) -> int:
        number = self.issue_number
        if number is None:
            raise ValueError(
                f"No issue or pull request number in '{self.event_name}' event payload"
            )
        return number


def load_event_payload(path: Path) -> dict:
    if not path.exists():
        raise FileNotFoundError(f"GitHub event payload not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)
