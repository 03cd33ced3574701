#!/usr/bin/env python3

"""Decides whether Terraform end-to-end tests may run for the triggering event.

Pull requests from forks only run tests after a maintainer approves the exact
head commit by commenting `/allow` on the PR. The approval is recorded as a
comment containing an `APPROVAL_MARKER:<sha>` HTML comment, which later
`pull_request` runs for the same commit look for.

Sets the step output `should_run` to "true" or "false".
"""

from datetime import datetime, timezone
import os
from pathlib import Path
import sys
import time

sys.path.insert(0, os.fspath(Path(__file__).parent.parent))

from _tf_ci_utils.workflow_context import WorkflowContext
from github_actions_utils import (
    GitHubApiError,
    _log,
    gha_create_issue_comment,
    gha_error,
    gha_get_pull_request,
    gha_list_issue_comments,
    gha_set_output,
    gha_warn_if_not_running_on_ci,
)

APPROVE_COMMAND = "/allow"

# Possible `author_association` values:
#   "OWNER"        - repository owner
#   "MEMBER"       - member of the org that owns the repo
#   "COLLABORATOR" - user with write access to the repo
#   "CONTRIBUTOR"  - user who has contributed in the past
#   "NONE"         - no relationship
MAINTAINER_ASSOCIATIONS = ("MEMBER", "OWNER")

ALWAYS_RUN_EVENTS = ("schedule", "workflow_dispatch")
PULL_REQUEST_EVENTS = ("pull_request", "merge_group")


def approval_marker(sha: str) -> str:
    return f"APPROVAL_MARKER:{sha}"


def is_maintainer(comment: dict) -> bool:
    association = comment.get("author_association", "")
    login = (comment.get("user") or {}).get("login", "")
    result = association in MAINTAINER_ASSOCIATIONS
    _log(
        f"Comment from: {login} ({association}) : "
        f"{'✅ Maintainer' if result else '❌ Not Maintainer'}"
    )
    return result


def repo_full_name(pull_request: dict, side: str) -> str | None:
    # `repo` is null when the fork behind the PR was deleted.
    return (pull_request[side].get("repo") or {}).get("full_name")


def is_fork(pull_request: dict) -> bool:
    return repo_full_name(pull_request, "head") != repo_full_name(pull_request, "base")


def find_approval_comment(comments: list[dict], sha: str) -> dict | None:
    """Returns the first maintainer comment approving `sha`, if any."""
    marker = approval_marker(sha)
    for comment in comments:
        if marker in (comment.get("body") or "") and is_maintainer(comment):
            return comment
    return None


def has_approval_record(comments: list[dict], sha: str) -> bool:
    """Returns true if an approval for `sha` was already posted.

    Approval comments are usually posted by the workflow's bot account, so
    bot-authored markers count here in addition to maintainer ones.
    """
    marker = approval_marker(sha)
    for comment in comments:
        if marker not in (comment.get("body") or ""):
            continue
        if (comment.get("user") or {}).get("type") == "Bot" or is_maintainer(comment):
            return True
    return False


def rejection_message(login: str, association: str) -> str:
    return (
        f"@{login} - Sorry, only maintainers can approve tests on fork PRs. "
        f"Required: {' or '.join(MAINTAINER_ASSOCIATIONS)}. Current: {association}"
    )


def approval_message(login: str, sha: str, approved_at: datetime) -> str:
    return "\n".join(
        [
            "## ✅ Test Approved",
            "",
            f"@{login} has approved running terraform tests for commit `{sha}`.",
            "",
            "**Approval Details:**",
            f"- Commit SHA: `{sha}`",
            f"- Approved by: @{login}",
            f"- Approved at: {approved_at.isoformat()}",
            "",
            "**Important:** If new commits are pushed, tests will need to be re-approved.",
            "",
            f"<!-- {approval_marker(sha)} -->",
        ]
    )


def comment_delay_seconds(run_id: str) -> int:
    """Spreads out concurrent `/allow` runs using the last digits of the run ID."""
    digits = run_id[-2:]
    if not digits.isdigit():
        return 0
    return int(digits) % 10


def log_pull_request(pull_request: dict):
    _log(
        f"PR #{pull_request['number']}: {repo_full_name(pull_request, 'head')}"
        f" -> {repo_full_name(pull_request, 'base')}"
        f" <---> Is fork: {is_fork(pull_request)}, SHA: {pull_request['head']['sha']}"
    )


def handle_pull_request(context: WorkflowContext) -> bool:
    pull_request = context.payload.get("pull_request")
    if pull_request is None:
        # merge_group events carry no pull request: the queued commits were
        # already approved on their PRs.
        _log(f"No pull request in '{context.event_name}' payload - running tests")
        return True

    log_pull_request(pull_request)
    if not is_fork(pull_request):
        _log("Internal PR - running tests automatically")
        return True

    sha = pull_request["head"]["sha"]
    comments = gha_list_issue_comments(context.repository, pull_request["number"])
    _log(f"Found {len(comments)} comments")

    comment = find_approval_comment(comments, sha)
    if comment is None:
        _log(f"No maintainer approval found for {sha}")
        return False

    _log(f"Approval found in comment {comment.get('html_url', comment.get('id'))}")
    return True


def handle_issue_comment(context: WorkflowContext, sleep=time.sleep) -> bool:
    issue = context.payload.get("issue") or {}
    comment = context.payload.get("comment") or {}
    if not issue.get("pull_request"):
        _log("Comment is not on a pull request - ignoring")
        return False
    if APPROVE_COMMAND not in (comment.get("body") or ""):
        _log(f"Comment does not contain '{APPROVE_COMMAND}' - ignoring")
        return False

    # Must happen before any read of the comment list below.
    delay = comment_delay_seconds(context.run_id)
    _log(f"Sleeping for {delay}s to avoid racing concurrent runs...")
    sleep(delay)

    issue_number = issue["number"]
    login = (comment.get("user") or {}).get("login", "")
    association = comment.get("author_association", "")

    if not is_maintainer(comment):
        message = rejection_message(login, association)
        comments = gha_list_issue_comments(context.repository, issue_number)
        if any(message in (c.get("body") or "") for c in comments):
            _log("Rejection already posted")
        else:
            gha_create_issue_comment(context.repository, issue_number, message)
        return False

    pull_request = gha_get_pull_request(context.repository, issue_number)
    log_pull_request(pull_request)
    sha = pull_request["head"]["sha"]

    comments = gha_list_issue_comments(context.repository, issue_number)
    if has_approval_record(comments, sha):
        _log(f"Approval for {sha} already posted")
        return True

    gha_create_issue_comment(
        context.repository,
        issue_number,
        approval_message(login, sha, datetime.now(timezone.utc)),
    )
    return True


def should_run_tests(context: WorkflowContext, sleep=time.sleep) -> bool:
    _log(f"event: {context.event_name}")
    if context.event_name in ALWAYS_RUN_EVENTS:
        return True
    if context.event_name in PULL_REQUEST_EVENTS:
        return handle_pull_request(context)
    if context.event_name == "issue_comment":
        return handle_issue_comment(context, sleep=sleep)
    return False


def main():
    gha_warn_if_not_running_on_ci()
    try:
        context = WorkflowContext.from_env()
        should_run = should_run_tests(context)
    except (GitHubApiError, ValueError, OSError, KeyError) as e:
        gha_error(str(e))
        sys.exit(1)

    _log(f"Should run tests: {'✅ Yes' if should_run else '❌ No'}")
    gha_set_output({"should_run": "true" if should_run else "false"})


if __name__ == "__main__":
    main()
