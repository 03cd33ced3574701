import os
from pathlib import Path
import sys
import unittest
from unittest.mock import patch, MagicMock

sys.path.insert(0, os.fspath(Path(__file__).parent.parent))

import check_fork_approval
from check_fork_approval import (
    approval_marker,
    comment_delay_seconds,
    find_approval_comment,
    rejection_message,
    should_run_tests,
)
from _tf_ci_utils.workflow_context import WorkflowContext

SHA = "0123456789abcdef0123456789abcdef01234567"


def pull_request(head_repo="acme/infra", base_repo="acme/infra", sha=SHA, number=7):
    return {
        "number": number,
        "head": {"sha": sha, "repo": {"full_name": head_repo}},
        "base": {"repo": {"full_name": base_repo}},
    }


def comment(body, association="NONE", login="someone", user_type="User"):
    return {
        "id": 1,
        "body": body,
        "author_association": association,
        "user": {"login": login, "type": user_type},
    }


class ApprovalGateTestCase(unittest.TestCase):
    def setUp(self):
        self.list_comments = self.patch("gha_list_issue_comments", return_value=[])
        self.create_comment = self.patch("gha_create_issue_comment")
        self.get_pull_request = self.patch("gha_get_pull_request")

    def patch(self, name, **kwargs):
        patcher = patch.object(check_fork_approval, name, **kwargs)
        mocked = patcher.start()
        self.addCleanup(patcher.stop)
        return mocked


class ScheduledEventsTest(ApprovalGateTestCase):
    def test_schedule_always_runs(self):
        self.assertTrue(should_run_tests(WorkflowContext(event_name="schedule")))
        self.list_comments.assert_not_called()

    def test_workflow_dispatch_always_runs(self):
        self.assertTrue(should_run_tests(WorkflowContext(event_name="workflow_dispatch")))
        self.list_comments.assert_not_called()

    def test_unrelated_event_does_not_run(self):
        self.assertFalse(should_run_tests(WorkflowContext(event_name="push")))


class PullRequestEventsTest(ApprovalGateTestCase):
    def context(self, **kwargs):
        return WorkflowContext(
            event_name="pull_request",
            payload={"pull_request": pull_request(**kwargs)},
            repository="acme/infra",
        )

    def test_internal_pr_runs_without_comment_lookup(self):
        self.assertTrue(should_run_tests(self.context()))
        self.list_comments.assert_not_called()

    def test_fork_pr_without_approval(self):
        self.list_comments.return_value = [comment("LGTM", association="MEMBER")]
        self.assertFalse(should_run_tests(self.context(head_repo="fork/infra")))
        self.list_comments.assert_called_once_with("acme/infra", 7)

    def test_fork_pr_with_maintainer_approval(self):
        self.list_comments.return_value = [
            comment(f"<!-- {approval_marker(SHA)} -->", association="OWNER")
        ]
        self.assertTrue(should_run_tests(self.context(head_repo="fork/infra")))

    def test_fork_pr_with_approval_for_older_commit(self):
        self.list_comments.return_value = [
            comment(f"<!-- {approval_marker('f' * 40)} -->", association="MEMBER")
        ]
        self.assertFalse(should_run_tests(self.context(head_repo="fork/infra")))

    def test_fork_pr_with_marker_from_non_maintainer(self):
        self.list_comments.return_value = [
            comment(f"<!-- {approval_marker(SHA)} -->", association="CONTRIBUTOR")
        ]
        self.assertFalse(should_run_tests(self.context(head_repo="fork/infra")))

    def test_deleted_fork_needs_approval(self):
        context = self.context()
        context.payload["pull_request"]["head"]["repo"] = None
        self.assertFalse(should_run_tests(context))
        self.list_comments.assert_called_once_with("acme/infra", 7)

    def test_deleted_fork_with_maintainer_approval(self):
        self.list_comments.return_value = [
            comment(f"<!-- {approval_marker(SHA)} -->", association="MEMBER")
        ]
        context = self.context()
        context.payload["pull_request"]["head"]["repo"] = None
        self.assertTrue(should_run_tests(context))

    def test_merge_group_without_pull_request_runs(self):
        context = WorkflowContext(event_name="merge_group", payload={"merge_group": {}})
        self.assertTrue(should_run_tests(context))


class IssueCommentEventsTest(ApprovalGateTestCase):
    def setUp(self):
        super().setUp()
        self.sleep = MagicMock()
        self.get_pull_request.return_value = pull_request(head_repo="fork/infra")

    def context(self, body="/allow", association="MEMBER", on_pull_request=True):
        issue = {"number": 7}
        if on_pull_request:
            issue["pull_request"] = {"url": "https://api.github.com/repos/acme/infra/pulls/7"}
        return WorkflowContext(
            event_name="issue_comment",
            payload={
                "issue": issue,
                "comment": comment(body, association=association, login="maint"),
            },
            repository="acme/infra",
            run_id="1234567893",
        )

    def test_comment_on_issue_is_ignored(self):
        self.assertFalse(should_run_tests(self.context(on_pull_request=False), self.sleep))
        self.sleep.assert_not_called()
        self.list_comments.assert_not_called()

    def test_comment_without_command_is_ignored(self):
        self.assertFalse(should_run_tests(self.context(body="nice work"), self.sleep))
        self.sleep.assert_not_called()

    def test_maintainer_approval_posts_marker(self):
        self.assertTrue(should_run_tests(self.context(), self.sleep))

        self.sleep.assert_called_once_with(3)
        self.get_pull_request.assert_called_once_with("acme/infra", 7)
        self.create_comment.assert_called_once()
        repository, issue_number, body = self.create_comment.call_args.args
        self.assertEqual((repository, issue_number), ("acme/infra", 7))
        self.assertIn(f"<!-- {approval_marker(SHA)} -->", body)
        self.assertIn("Approved by: @maint", body)

    def test_maintainer_approval_on_deleted_fork(self):
        deleted = pull_request()
        deleted["head"]["repo"] = None
        self.get_pull_request.return_value = deleted
        self.assertTrue(should_run_tests(self.context(), self.sleep))
        self.create_comment.assert_called_once()

    def test_maintainer_approval_is_not_duplicated(self):
        self.list_comments.return_value = [
            comment(
                f"## ✅ Test Approved\n<!-- {approval_marker(SHA)} -->",
                login="github-actions[bot]",
                user_type="Bot",
            )
        ]
        self.assertTrue(should_run_tests(self.context(), self.sleep))
        self.create_comment.assert_not_called()

    def test_sleep_precedes_comment_reads(self):
        calls = []
        self.sleep.side_effect = lambda _: calls.append("sleep")
        self.list_comments.side_effect = lambda *_: calls.append("list") or []
        should_run_tests(self.context(), self.sleep)
        self.assertEqual(calls, ["sleep", "list"])

    def test_non_maintainer_is_rejected(self):
        self.assertFalse(
            should_run_tests(self.context(association="CONTRIBUTOR"), self.sleep)
        )
        self.get_pull_request.assert_not_called()
        self.create_comment.assert_called_once_with(
            "acme/infra", 7, rejection_message("maint", "CONTRIBUTOR")
        )

    def test_rejection_is_not_duplicated(self):
        self.list_comments.return_value = [
            comment(rejection_message("maint", "CONTRIBUTOR"), user_type="Bot")
        ]
        self.assertFalse(
            should_run_tests(self.context(association="CONTRIBUTOR"), self.sleep)
        )
        self.create_comment.assert_not_called()


class HelpersTest(unittest.TestCase):
    def test_comment_delay_seconds(self):
        self.assertEqual(comment_delay_seconds("1234567890"), 0)
        self.assertEqual(comment_delay_seconds("1234567857"), 7)
        self.assertEqual(comment_delay_seconds("1234567819"), 9)
        self.assertEqual(comment_delay_seconds(""), 0)

    def test_find_approval_comment_returns_first_match(self):
        comments = [
            comment("unrelated", association="OWNER"),
            comment(f"ok {approval_marker(SHA)}", association="MEMBER", login="a"),
            comment(f"ok {approval_marker(SHA)}", association="OWNER", login="b"),
        ]
        self.assertEqual(find_approval_comment(comments, SHA)["user"]["login"], "a")

    def test_rejection_message(self):
        self.assertEqual(
            rejection_message("octocat", "NONE"),
            "@octocat - Sorry, only maintainers can approve tests on fork PRs. "
            "Required: MEMBER or OWNER. Current: NONE",
        )


if __name__ == "__main__":
    unittest.main()
