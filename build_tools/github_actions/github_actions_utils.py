"""Utilities for working with GitHub Actions from Python.

See also https://pypi.org/project/github-action-utils/.
"""

import contextlib
import json
import os
from pathlib import Path
import sys
from typing import Iterator, Mapping
from urllib.error import HTTPError
from urllib.request import urlopen, Request


def _log(*args, **kwargs):
    print(*args, **kwargs)
    sys.stdout.flush()


class GitHubApiError(Exception):
    """Raised when the GitHub REST API returns an unexpected status."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


def gha_warn_if_not_running_on_ci():
    # https://docs.github.com/en/actions/reference/variables-reference
    if not os.getenv("CI"):
        _log("Warning: 'CI' env var not set, not running under GitHub Actions?")


def gha_warning(message: str):
    """Emits a warning annotation.

    See
      * https://docs.github.com/en/actions/reference/workflow-commands-for-github-actions#setting-a-warning-message
    """
    _log(f"::warning::{message}")


def gha_error(message: str):
    """Emits an error annotation. Callers are responsible for the exit code."""
    _log(f"::error::{message}")


@contextlib.contextmanager
def gha_group(title: str) -> Iterator[None]:
    """Wraps everything logged inside the block in a collapsible log group.

    See
      * https://docs.github.com/en/actions/reference/workflow-commands-for-github-actions#grouping-log-lines
    """
    _log(f"::group::{title}")
    try:
        yield
    finally:
        _log("::endgroup::")


def gha_set_output(vars: Mapping[str, str | Path]):
    """Sets values in a step's output parameters.

    This appends to the file located at the $GITHUB_OUTPUT environment variable.

    See
      * https://docs.github.com/en/actions/reference/workflow-commands-for-github-actions#setting-an-output-parameter
      * https://docs.github.com/en/actions/writing-workflows/choosing-what-your-workflow-does/passing-information-between-jobs
    """
    _log(f"Setting github output:\n{json.dumps({k: str(v) for k, v in vars.items()}, indent=2)}")

    step_output_file = os.getenv("GITHUB_OUTPUT")
    if not step_output_file:
        _log("  Warning: GITHUB_OUTPUT env var not set, can't set github outputs")
        return

    with open(step_output_file, "a") as f:
        for k, v in vars.items():
            print(f"OUTPUT {k}={str(v)}")
            f.write(f"{k}={str(v)}\n")


def gha_append_step_summary(summary: str):
    """Appends a string to the GitHub Actions job summary.

    This appends to the file located at the $GITHUB_STEP_SUMMARY environment variable.

    See
      * https://docs.github.com/en/actions/reference/workflow-commands-for-github-actions#adding-a-job-summary
    """
    _log(f"Writing job summary:\n{summary}")

    step_summary_file = os.getenv("GITHUB_STEP_SUMMARY")
    if not step_summary_file:
        _log("  Warning: GITHUB_STEP_SUMMARY env var not set, can't write job summary")
        return

    with open(step_summary_file, "a") as f:
        # Use double newlines to split sections in markdown.
        f.write(summary + "\n\n")


def gha_get_request_headers():
    """Gets common request headers for use with the GitHub REST API.

    See https://docs.github.com/en/rest.
    """
    headers = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
    }

    # Writes (comments, issues) need a token. Reads only get a lower rate limit
    # without one.
    gh_token = os.getenv("GITHUB_TOKEN", "")
    if gh_token:
        headers["Authorization"] = f"Bearer {gh_token}"
    else:
        _log("Warning: GITHUB_TOKEN not set, requests may be rate limited")

    return headers


def gha_api_url(path: str) -> str:
    api_url = os.getenv("GITHUB_API_URL", "https://api.github.com").rstrip("/")
    return f"{api_url}/{path.lstrip('/')}"


def gha_send_request(url: str, method: str = "GET", data: dict | None = None) -> object:
    """Sends a request to the given GitHub REST API URL and returns the decoded response."""
    headers = gha_get_request_headers()
    body = None
    if data is not None:
        headers["Content-Type"] = "application/json"
        body = json.dumps(data).encode("utf-8")

    _log(f"Sending {method} request to URL: {url}")

    request = Request(url, data=body, headers=headers, method=method)
    try:
        with urlopen(request) as response:
            status = response.status
            payload = response.read()
    except HTTPError as e:
        status = e.code
        payload = b""

    if status == 403:
        raise GitHubApiError(
            f"Access denied (403 Forbidden) for {method} {url}. "
            f"Check if your token has the necessary permissions (e.g. `issues: write`, `pull-requests: write`).",
            status,
        )
    elif status not in (200, 201):
        raise GitHubApiError(
            f"Received unexpected status code {status} for {method} {url}. "
            f"Please verify the URL or check GitHub API status.",
            status,
        )

    if not payload:
        return None
    return json.loads(payload.decode("utf-8"))


def gha_list_issue_comments(github_repository: str, issue_number: int) -> list[dict]:
    """Lists every comment on an issue or pull request.

    Uses the GitHub REST API endpoint: /repos/{repo}/issues/{number}/comments

    All pages are fetched. Comments are returned oldest first.

    See: https://docs.github.com/en/rest/issues/comments#list-issue-comments
    """
    per_page = 100
    comments = []
    page = 1
    while True:
        url = gha_api_url(
            f"repos/{github_repository}/issues/{issue_number}/comments"
            f"?per_page={per_page}&page={page}"
        )
        batch = gha_send_request(url) or []
        comments.extend(batch)
        if len(batch) < per_page:
            return comments
        page += 1


def gha_create_issue_comment(
    github_repository: str, issue_number: int, body: str
) -> dict:
    """Creates a comment on an issue or pull request.

    See: https://docs.github.com/en/rest/issues/comments#create-an-issue-comment
    """
    url = gha_api_url(f"repos/{github_repository}/issues/{issue_number}/comments")
    return gha_send_request(url, method="POST", data={"body": body})


def gha_update_issue_comment(github_repository: str, comment_id: int, body: str) -> dict:
    """Replaces the body of an existing comment.

    See: https://docs.github.com/en/rest/issues/comments#update-an-issue-comment
    """
    url = gha_api_url(f"repos/{github_repository}/issues/comments/{comment_id}")
    return gha_send_request(url, method="PATCH", data={"body": body})


def gha_create_issue(github_repository: str, title: str, body: str) -> dict:
    """Opens a new issue.

    See: https://docs.github.com/en/rest/issues/issues#create-an-issue
    """
    url = gha_api_url(f"repos/{github_repository}/issues")
    return gha_send_request(url, method="POST", data={"title": title, "body": body})


def gha_get_pull_request(github_repository: str, pull_number: int) -> dict:
    """Gets a pull request, including its head and base repositories and SHA.

    See: https://docs.github.com/en/rest/pulls/pulls#get-a-pull-request
    """
    url = gha_api_url(f"repos/{github_repository}/pulls/{pull_number}")
    return gha_send_request(url)
