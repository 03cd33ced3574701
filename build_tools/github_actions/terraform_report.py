#!/usr/bin/env python3

"""Posts the results of a Terraform test job to GitHub.

* `schedule` runs open a new issue for the working directory.
* `pull_request` runs keep a single comment per working directory on the PR,
  updating the previous bot comment in place when there is one.

The step fails when `terraform plan` or `terraform test` failed, even though
the report itself was posted.

Inputs are environment variables, see `_tf_ci_utils/report_inputs.py`.
"""

from dataclasses import dataclass
import os
from pathlib import Path
import sys

sys.path.insert(0, os.fspath(Path(__file__).parent.parent))

from _tf_ci_utils.report_inputs import TerraformReportInputs
from _tf_ci_utils.workflow_context import WorkflowContext
from github_actions_utils import (
    GitHubApiError,
    _log,
    gha_create_issue,
    gha_create_issue_comment,
    gha_error,
    gha_group,
    gha_list_issue_comments,
    gha_update_issue_comment,
    gha_warn_if_not_running_on_ci,
    gha_warning,
)

MAX_OUTPUT_LENGTH = 20000
PULL_REQUEST_EVENTS = ("pull_request", "pull_request_target")

ISSUE_HEADER = """
> [!NOTE]
> This issue was automatically created by the GitHub Actions workflow.

"""


@dataclass(frozen=True)
class ReportSection:
    """Captured output of one command, ready to embed in a code block."""

    content: str
    """Raw file content, for the workflow log."""

    truncated_content: str
    """Escaped content, cut at MAX_OUTPUT_LENGTH."""

    truncated_message: str
    """Note shown below the block when the content was cut or unreadable."""

    original_length: int


def escape_markdown(content: str) -> str:
    return content.replace("\\", "\\\\").replace("`", "\\`")


def make_section(content: str, run_id: str, run_url: str) -> ReportSection:
    escaped = escape_markdown(content)
    if len(escaped) <= MAX_OUTPUT_LENGTH:
        return ReportSection(content, escaped, "", len(escaped))
    return ReportSection(
        content=content,
        truncated_content=escaped[:MAX_OUTPUT_LENGTH] + " ...",
        truncated_message=(
            "Output is too long and was truncated. "
            f"You can read full output in the [{run_id}]({run_url}) workflow run."
        ),
        original_length=len(escaped),
    )


def read_section(workdir: str, file_name: str, context: WorkflowContext) -> ReportSection:
    file_path = Path(workdir) / file_name
    try:
        content = ""
        if file_path.exists():
            content = file_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        gha_warning(f"Failed to read file {file_name}: {e}")
        return ReportSection(
            content="",
            truncated_content="File could not be read",
            truncated_message=f"Error reading {file_name}: {e}",
            original_length=0,
        )
    return make_section(content, context.run_id, context.run_url)


def working_directory_tag(workdir: str) -> str:
    # Closing backtick keeps `a` from matching `a-v2`.
    return f"Working Directory: `{workdir}`"


def outcome_badge(outcome: str) -> str:
    return f"`{outcome} {'✅' if outcome == 'success' else '🛑'}`"


def output_block(summary: str, section: ReportSection) -> str:
    return f"""<details><summary>{summary}</summary>

```text
{section.truncated_content}
```

</details>

{section.truncated_message}
"""


@dataclass
class TerraformReport:
    inputs: TerraformReportInputs
    context: WorkflowContext
    validate_stdout: ReportSection
    validate_stderr: ReportSection
    plan: ReportSection
    plan_stdout: ReportSection
    plan_stderr: ReportSection
    test_stdout: ReportSection
    test_stderr: ReportSection

    @classmethod
    def load(cls, inputs: TerraformReportInputs, context: WorkflowContext) -> "TerraformReport":
        def read(file_name):
            return read_section(inputs.workdir, file_name, context)

        return cls(
            inputs=inputs,
            context=context,
            validate_stdout=read(inputs.validate_stdout_file),
            validate_stderr=read(inputs.validate_stderr_file),
            plan=read(inputs.plan_file),
            plan_stdout=read(inputs.plan_stdout_file),
            plan_stderr=read(inputs.plan_stderr_file),
            test_stdout=read(inputs.test_stdout_file),
            test_stderr=read(inputs.test_stderr_file),
        )

    @property
    def failed(self) -> bool:
        return self.inputs.plan_failed or self.inputs.test_failed

    @property
    def pusher(self) -> str:
        if self.context.event_name in PULL_REQUEST_EVENTS:
            return self.context.actor
        return self.inputs.owner

    @property
    def issue_title(self) -> str:
        return f"[bug] E2E Terraform Test Failure in `{self.inputs.workdir}`"

    def test_body(self) -> str:
        inputs = self.inputs
        return f"""
#### 🩺 Terraform Test Exit Code: `{inputs.test_exit_code}`

{output_block("Show Error", self.test_stderr)}
#### 🧪 Terraform Test: {outcome_badge(inputs.test_outcome)}

{output_block("Show Output", self.test_stdout)}"""

    def body(self) -> str:
        inputs = self.inputs
        context = self.context
        if self.failed:
            status = f"An error occurred during the tests for `{inputs.workdir}` ❌"
        else:
            status = f"All tests passed successfully for `{inputs.workdir}` ✅"

        return f"""
{status}

**Workflow Run:** [{context.run_id}]({context.run_url})

#### 🔢 Terraform Version and Platform: `{inputs.tf_version}/{inputs.tf_platform}`

#### 🖌 Terraform Format and Style: {outcome_badge(inputs.fmt_outcome)}

#### ⚙️ Terraform Initialization: {outcome_badge(inputs.init_outcome)}

#### 🤖 Terraform Validation: {outcome_badge(inputs.validate_outcome)}

{output_block("Show Output", self.validate_stdout)}
{output_block("Show Error", self.validate_stderr)}
#### 🩺 Terraform Plan Exit Code: `{inputs.plan_exit_code}`

{output_block("Show Output", self.plan_stdout)}
{output_block("Show Error", self.plan_stderr)}
#### 📖 Terraform Plan: {outcome_badge(inputs.plan_outcome)}

{output_block("Show Output", self.plan)}
{self.test_body() if inputs.tests_ran else ""}

*Pusher: @{self.pusher}, Action: `{context.event_name}`, {working_directory_tag(inputs.workdir)}, Workflow: `{context.workflow}`*
"""


def find_bot_comment(comments: list[dict], workdir: str) -> dict | None:
    """Returns the bot comment holding the report for exactly `workdir`."""
    tag = working_directory_tag(workdir)
    for comment in comments:
        user = comment.get("user") or {}
        if user.get("type") == "Bot" and tag in (comment.get("body") or ""):
            return comment
    return None


def post_report(report: TerraformReport):
    context = report.context
    body = report.body()

    if context.event_name == "schedule":
        issue = gha_create_issue(context.repository, report.issue_title, ISSUE_HEADER + body)
        _log(f"Created issue {(issue or {}).get('html_url', '')}")
    elif context.event_name in PULL_REQUEST_EVENTS:
        issue_number = context.require_issue_number()
        # Re-read right before writing, another run may have commented meanwhile.
        comments = gha_list_issue_comments(context.repository, issue_number)
        comment = find_bot_comment(comments, report.inputs.workdir)
        if comment is not None:
            _log(f"Updating comment {comment['id']}")
            gha_update_issue_comment(context.repository, comment["id"], body)
        else:
            _log(f"Creating comment on #{issue_number}")
            gha_create_issue_comment(context.repository, issue_number, body)
    else:
        _log(f"Not posting a report for '{context.event_name}' events")


def log_outputs(report: TerraformReport):
    with gha_group("📖 Plan Output"):
        _log(report.plan.content)
    with gha_group("📖 Plan Error"):
        _log(report.plan_stderr.content)

    if report.inputs.tests_ran:
        with gha_group("🧪 Test Output"):
            _log(report.test_stdout.content)
        with gha_group("🧪 Test Error"):
            _log(report.test_stderr.content)


def failure_messages(inputs: TerraformReportInputs) -> list[str]:
    messages = []
    if inputs.plan_failed:
        messages.append("Terraform Plan failed")
    if inputs.test_failed:
        messages.append("Terraform Test failed")
    return messages


def main():
    gha_warn_if_not_running_on_ci()
    try:
        context = WorkflowContext.from_env()
        inputs = TerraformReportInputs.from_env()
        report = TerraformReport.load(inputs, context)
    except (ValueError, OSError) as e:
        gha_error(str(e))
        sys.exit(1)

    messages = failure_messages(inputs)
    try:
        post_report(report)
    except (GitHubApiError, ValueError, OSError) as e:
        messages.insert(0, f"Failed to post report: {e}")

    log_outputs(report)

    for message in messages:
        gha_error(message)
    if messages:
        sys.exit(1)


if __name__ == "__main__":
    main()
