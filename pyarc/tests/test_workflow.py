"""Tests for the end-to-end diff workflow over fake collaborators."""

import io
import random

import pytest

from pyarc.diff.auto_branch import AutoBranchOrchestrator
from pyarc.diff.stacking import ResolutionMethod
from pyarc.diff.workflow import DiffOptions, DiffWorkflow
from pyarc.git import GitError
from pyarc.github import GitHubError
from pyarc.template import TemplateStore
from pyarc.tests.fakes import FakeGit, FakeGitHub, ScriptedEditor, ScriptedPrompter, collision, fill_template
from pyarc.typing import (
    ErrorKind, NoSavedTemplateError, OperationInterruptedError, RunContext,
    TemplateCorruptedError, TemplateValidationError, UserCancelledError,
)


def feature_repo() -> FakeGit:
    git = FakeGit()
    git.create_branch("feature", "main")
    git.commit("feature", "f1", "Add widgets\n\nThey spin.")
    git.current = "feature"
    return git


def make_workflow(config, git, github, tmp_path, editor=None, prompter=None) -> DiffWorkflow:
    prompter = prompter or ScriptedPrompter()
    auto_branch = AutoBranchOrchestrator(config, git, prompter, output=io.StringIO(),
                                         clock=lambda: 1700000000.0, rng=random.Random(0))
    return DiffWorkflow(config, git, github,
                        editor=editor or ScriptedEditor(fill_template()),
                        store=TemplateStore(str(tmp_path)),
                        prompter=prompter,
                        auto_branch=auto_branch)


class TestCreate:

    def test_creates_pr_and_removes_saved_copy(self, ctx, config, tmp_path) -> None:
        git, github = feature_repo(), FakeGitHub()
        editor = ScriptedEditor(fill_template(title="Add widgets", test_plan="pytest"))
        wf = make_workflow(config, git, github, tmp_path, editor=editor)

        result = wf.execute(ctx, DiffOptions())

        assert result.was_created
        assert result.pr is not None
        assert result.pr.title == "Add widgets"
        assert result.pr.draft
        assert "## Test Plan\npytest" in result.pr.body
        assert github.calls[0][:3] == ("create", "feature", "main")
        assert git.pushed() == [("push", "feature")]
        assert wf.store.find() == []
        # Template was pre-filled from the commit
        assert "Add widgets" in editor.seen[0]
        assert "They spin." in editor.seen[0]

    def test_ready_flag_sets_template_default(self, ctx, config, tmp_path) -> None:
        git, github = feature_repo(), FakeGitHub()
        editor = ScriptedEditor(fill_template())
        wf = make_workflow(config, git, github, tmp_path, editor=editor)
        result = wf.execute(ctx, DiffOptions(ready=True))
        assert "# Draft:\n# Set to 'true' or 'false' to control draft status\nfalse" in editor.seen[0]
        assert result.pr is not None
        assert not result.pr.draft

    def test_stacked_create(self, ctx, config, tmp_path) -> None:
        git, github = feature_repo(), FakeGitHub()
        parent = github.add_pr(1, "feature", "main", title="Parent")
        git.create_branch("child", "feature")
        git.commit("child", "c1", "Child change")
        git.current = "child"
        editor = ScriptedEditor(fill_template())

        result = make_workflow(config, git, github, tmp_path, editor=editor).execute(ctx, DiffOptions())

        assert result.is_stacking
        assert result.parent_pr == parent
        assert result.method == ResolutionMethod.AUTO_DETECTED_STACKING
        assert github.calls[-1] == ("create", "child", "feature", "Add widgets", True, 1)
        assert "# 📚 Creating stacked PR on feature (PR #1: Parent)" in editor.seen[0]

    def test_reviewer_suggestions_exclude_self(self, ctx, make_config, tmp_path) -> None:
        config = make_config(repo={'default_reviewers': ["alice", "@me", "@alice", "acme/core"]})
        git, github = feature_repo(), FakeGitHub(user="me")
        editor = ScriptedEditor(fill_template())
        make_workflow(config, git, github, tmp_path, editor=editor).execute(ctx, DiffOptions())
        assert "# Suggestions: @alice, @acme/core\n" in editor.seen[0]

    def test_reviewers_assigned(self, ctx, config, tmp_path) -> None:
        git, github = feature_repo(), FakeGitHub(user="me")
        editor = ScriptedEditor(fill_template(reviewers="@alice, @me"))
        result = make_workflow(config, git, github, tmp_path, editor=editor).execute(ctx, DiffOptions())
        assert result.reviewers_assigned == ["@alice"]
        assert github.calls[-1] == ("assign_reviewers", 100, ("alice",), ())

    def test_current_user_failure_is_a_warning(self, ctx, config, tmp_path) -> None:
        git, github = feature_repo(), FakeGitHub()
        github.user_error = GitHubError("boom")
        result = make_workflow(config, git, github, tmp_path).execute(ctx, DiffOptions())
        assert result.was_created
        assert any("could not determine current user" in m for m in result.messages)

    def test_no_edit_saves_nothing(self, ctx, make_config, tmp_path) -> None:
        config = make_config(require_test_plan=False)
        git, github = feature_repo(), FakeGitHub()
        editor = ScriptedEditor()
        wf = make_workflow(config, git, github, tmp_path, editor=editor)
        result = wf.execute(ctx, DiffOptions(no_edit=True))
        assert result.was_created
        assert result.pr is not None
        assert result.pr.title == "Add widgets"
        assert editor.seen == []
        assert wf.store.find() == []

    def test_editor_cancel_saves_nothing(self, ctx, config, tmp_path) -> None:
        git, github = feature_repo(), FakeGitHub()
        wf = make_workflow(config, git, github, tmp_path, editor=ScriptedEditor(cancel=True))
        with pytest.raises(UserCancelledError):
            wf.execute(ctx, DiffOptions())
        assert wf.store.find() == []
        assert github.calls == []


class TestPersistence:

    def test_validation_failure_keeps_edited_copy(self, ctx, config, tmp_path) -> None:
        git, github = feature_repo(), FakeGitHub()
        editor = ScriptedEditor(fill_template(title="", test_plan=""))
        wf = make_workflow(config, git, github, tmp_path, editor=editor)

        with pytest.raises(TemplateValidationError) as exc_info:
            wf.execute(ctx, DiffOptions())

        err = exc_info.value
        assert err.kind == ErrorKind.TEMPLATE_VALIDATION_FAILED
        assert "Title is required" in err.reasons
        assert err.path is not None
        assert wf.store.find() == [err.path]
        assert wf.store.load(err.path) == fill_template(title="", test_plan="")(editor.seen[0])
        assert git.pushed() == []
        assert github.calls == []

    def test_downstream_failure_keeps_copy(self, ctx, config, tmp_path) -> None:
        git, github = feature_repo(), FakeGitHub()
        github.create_error = GitHubError("502 bad gateway")
        wf = make_workflow(config, git, github, tmp_path)
        with pytest.raises(GitHubError):
            wf.execute(ctx, DiffOptions())
        saved = wf.store.find()
        assert len(saved) == 1
        assert "Add widgets" in wf.store.load(saved[0])

    def test_push_failure_keeps_copy(self, ctx, config, tmp_path) -> None:
        git, github = feature_repo(), FakeGitHub()
        git.push_failures = [GitError("remote hung up")]
        wf = make_workflow(config, git, github, tmp_path)
        with pytest.raises(GitError):
            wf.execute(ctx, DiffOptions())
        assert len(wf.store.find()) == 1
        assert github.calls == []


class TestContinue:

    def test_continue_after_validation_failure(self, ctx, config, tmp_path) -> None:
        git, github = feature_repo(), FakeGitHub()
        wf = make_workflow(config, git, github, tmp_path, editor=ScriptedEditor(fill_template(title="")))
        with pytest.raises(TemplateValidationError):
            wf.execute(ctx, DiffOptions())

        wf.editor = ScriptedEditor(fill_template(title="Fixed title"))
        result = wf.execute(ctx, DiffOptions(continue_mode=True))

        assert result.was_created
        assert result.pr is not None
        assert result.pr.title == "Fixed title"
        assert result.base_branch == "main"
        assert wf.store.find() == []

    def test_continue_failing_again_replaces_copy(self, ctx, config, tmp_path) -> None:
        git, github = feature_repo(), FakeGitHub()
        wf = make_workflow(config, git, github, tmp_path, editor=ScriptedEditor(fill_template(title="")))
        with pytest.raises(TemplateValidationError) as first:
            wf.execute(ctx, DiffOptions())

        with pytest.raises(TemplateValidationError) as second:
            wf.execute(ctx, DiffOptions(continue_mode=True))

        assert second.value.path != first.value.path
        assert wf.store.find() == [second.value.path]

    def test_continue_uses_recorded_base(self, ctx, config, tmp_path) -> None:
        git, github = feature_repo(), FakeGitHub()
        parent = github.add_pr(4, "develop", "main", title="Develop")
        wf = make_workflow(config, git, github, tmp_path, editor=ScriptedEditor())
        wf.store.save("# Creating PR: feature → develop\n# Title:\nT\n# Test Plan:\ndone\n")
        result = wf.execute(ctx, DiffOptions(continue_mode=True))
        assert github.calls[0] == ("create", "feature", "develop", "T", False, 4)
        assert result.parent_pr == parent
        assert result.is_stacking

    def test_failed_removal_of_old_copy_is_reported(self, ctx, config, tmp_path, monkeypatch) -> None:
        git, github = feature_repo(), FakeGitHub()
        wf = make_workflow(config, git, github, tmp_path, editor=ScriptedEditor())
        old = wf.store.save("# Creating PR: feature → main\n# Title:\nT\n# Test Plan:\ndone\n")
        remove = wf.store.remove

        def remove_all_but_old(path):
            if path == old:
                raise PermissionError("denied")
            remove(path)

        monkeypatch.setattr(wf.store, "remove", remove_all_but_old)
        result = wf.execute(ctx, DiffOptions(continue_mode=True))

        assert result.was_created
        assert any("could not remove saved template" in m and "denied" in m for m in result.messages)
        assert wf.store.find() == [old]

    def test_continue_without_saved_copy(self, ctx, config, tmp_path) -> None:
        wf = make_workflow(config, feature_repo(), FakeGitHub(), tmp_path)
        with pytest.raises(NoSavedTemplateError) as exc_info:
            wf.execute(ctx, DiffOptions(continue_mode=True))
        assert exc_info.value.kind == ErrorKind.NO_SAVED_TEMPLATE

    def test_continue_with_corrupted_copy(self, ctx, config, tmp_path) -> None:
        wf = make_workflow(config, feature_repo(), FakeGitHub(), tmp_path)
        path = wf.store.save("# Title:\nNo base marker\n")
        with pytest.raises(TemplateCorruptedError) as exc_info:
            wf.execute(ctx, DiffOptions(continue_mode=True))
        assert exc_info.value.kind == ErrorKind.TEMPLATE_CORRUPTED
        assert exc_info.value.path == path
        assert wf.store.find() == [path]


class TestFastPath:

    def test_pushes_new_commits_without_editing(self, ctx, config, tmp_path) -> None:
        git, github = feature_repo(), FakeGitHub()
        github.add_pr(9, "feature", "main")
        editor = ScriptedEditor()
        result = make_workflow(config, git, github, tmp_path, editor=editor).execute(ctx, DiffOptions())
        assert result.fast_path
        assert result.pushed
        assert "Pushed new commits" in result.messages
        assert editor.seen == []
        assert github.calls == []

    def test_nothing_to_push(self, ctx, config, tmp_path) -> None:
        git, github = feature_repo(), FakeGitHub()
        git.publish("feature")
        github.add_pr(9, "feature", "main")
        result = make_workflow(config, git, github, tmp_path).execute(ctx, DiffOptions())
        assert not result.pushed
        assert git.pushed() == []

    def test_retargets_changed_base(self, ctx, config, tmp_path) -> None:
        git, github = feature_repo(), FakeGitHub()
        github.add_pr(1, "feature", "main")
        git.create_branch("child", "feature")
        git.commit("child", "c1")
        git.current = "child"
        github.add_pr(2, "child", "main")

        result = make_workflow(config, git, github, tmp_path).execute(ctx, DiffOptions())

        assert ("update_base", 2, "feature") in github.calls
        assert result.base_changed_from == "main"
        assert result.pr is not None
        assert result.pr.base_ref == "feature"

    def test_ready_flag_marks_ready(self, ctx, config, tmp_path) -> None:
        git, github = feature_repo(), FakeGitHub()
        git.publish("feature")
        github.add_pr(9, "feature", "main", draft=True)
        result = make_workflow(config, git, github, tmp_path).execute(ctx, DiffOptions(ready=True))
        assert github.calls == [("mark_ready", 9)]
        assert result.draft_changed
        assert "Marked PR as ready for review" in result.messages

    def test_draft_flag_converts(self, ctx, config, tmp_path) -> None:
        git, github = feature_repo(), FakeGitHub()
        git.publish("feature")
        github.add_pr(9, "feature", "main", draft=False)
        make_workflow(config, git, github, tmp_path).execute(ctx, DiffOptions(draft=True))
        assert github.calls == [("convert_to_draft", 9)]

    def test_edit_flag_takes_template_path(self, ctx, config, tmp_path) -> None:
        git, github = feature_repo(), FakeGitHub()
        github.add_pr(9, "feature", "main", title="Existing title", draft=True)
        editor = ScriptedEditor(fill_template(title="New title", draft=False))
        result = make_workflow(config, git, github, tmp_path, editor=editor).execute(ctx, DiffOptions(edit=True))
        assert "Existing title" in editor.seen[0]
        assert [c[0] for c in github.calls] == ["update", "mark_ready"]
        assert not result.was_created
        assert result.draft_changed


class TestAutoBranch:

    def on_trunk(self) -> FakeGit:
        git = FakeGit()
        git.commit("main", "m1", "Fix typo")
        return git

    def test_moves_commits_to_new_branch(self, ctx, make_config, tmp_path) -> None:
        config = make_config(auto_create_branch_from_main=True, auto_branch_name_pattern="fix-{timestamp}")
        git, github = self.on_trunk(), FakeGitHub()
        result = make_workflow(config, git, github, tmp_path).execute(ctx, DiffOptions())

        assert result.auto_branch_used
        assert result.auto_branch_name == "fix-1700000000"
        assert github.calls[0][:3] == ("create", "fix-1700000000", "main")
        assert git.current == "fix-1700000000"
        # The branch is pushed once, by the auto-branch step
        assert git.pushed() == [("push_branch", "HEAD", "fix-1700000000")]

    def test_collision_renames_branch(self, ctx, make_config, tmp_path) -> None:
        config = make_config(auto_create_branch_from_main=True, auto_branch_name_pattern="fix")
        git, github = self.on_trunk(), FakeGitHub()
        git.push_branch_failures = [collision()]
        result = make_workflow(config, git, github, tmp_path).execute(ctx, DiffOptions())
        assert result.auto_branch_name == "fix-1"
        assert result.head_branch == "fix-1"
        assert github.calls[0][1] == "fix-1"

    def test_collision_leaves_other_branch_pr_alone(self, ctx, make_config, tmp_path) -> None:
        config = make_config(auto_create_branch_from_main=True, auto_branch_name_pattern="feature/x")
        git, github = self.on_trunk(), FakeGitHub()
        github.add_pr(7, "feature/x", "main", title="Someone else's work")
        git.push_branch_failures = [collision()]

        result = make_workflow(config, git, github, tmp_path).execute(ctx, DiffOptions())

        assert result.head_branch == "feature/x-1"
        assert result.was_created
        assert result.pr is not None and result.pr.number == 100
        assert github.names() == ["create"]
        assert github.calls[0][1] == "feature/x-1"

    def test_continue_collision_leaves_other_branch_pr_alone(self, ctx, make_config, tmp_path) -> None:
        config = make_config(auto_create_branch_from_main=True, auto_branch_name_pattern="feature/x")
        git, github = self.on_trunk(), FakeGitHub()
        github.add_pr(7, "feature/x", "main", title="Someone else's work")
        git.push_branch_failures = [collision()]
        wf = make_workflow(config, git, github, tmp_path, editor=ScriptedEditor())
        wf.store.save("# Creating PR: feature/x → main\n# Title:\nT\n# Test Plan:\ndone\n")

        result = wf.execute(ctx, DiffOptions(continue_mode=True))

        assert result.head_branch == "feature/x-1"
        assert result.pr is not None and result.pr.number != 7
        assert github.names() == ["create"]

    def test_checkout_failure_still_creates_pr(self, ctx, make_config, tmp_path) -> None:
        config = make_config(auto_create_branch_from_main=True, auto_branch_name_pattern="fix")
        git, github = self.on_trunk(), FakeGitHub()
        git.checkout_error = GitError("local changes would be overwritten")
        result = make_workflow(config, git, github, tmp_path).execute(ctx, DiffOptions())
        assert result.was_created
        assert result.auto_branch_checkout_failed
        assert any("Run 'git checkout fix' manually" in m for m in result.messages)

    def test_declining_confirmation_aborts(self, ctx, config, tmp_path) -> None:
        git, github = self.on_trunk(), FakeGitHub()
        prompter = ScriptedPrompter(confirms=[False])
        wf = make_workflow(config, git, github, tmp_path, prompter=prompter)
        with pytest.raises(UserCancelledError):
            wf.execute(ctx, DiffOptions())
        assert github.calls == []
        assert wf.store.find() == []


class TestDryRun:

    def test_reports_without_mutating(self, ctx, config, tmp_path) -> None:
        git, github = feature_repo(), FakeGitHub()
        parent = github.add_pr(1, "base-work", "main")
        git.create_branch("base-work", "main")
        git.commit("base-work", "b1")
        git.create_branch("stacked", "base-work")
        git.commit("stacked", "s1", "Stacked change")
        git.current = "stacked"
        github.add_pr(3, "grandchild", "stacked")
        editor = ScriptedEditor()
        wf = make_workflow(config, git, github, tmp_path, editor=editor)

        result = wf.execute(ctx, DiffOptions(dry_run=True))

        assert result.dry_run
        assert result.base_branch == "base-work"
        assert result.parent_pr == parent
        assert [d.number for d in result.dependents] == [3]
        assert result.analysis is not None
        assert result.analysis.title == "Stacked change"
        assert github.calls == []
        assert git.pushed() == []
        assert editor.seen == []
        assert wf.store.find() == []

    def test_reports_auto_branch_name(self, ctx, make_config, tmp_path) -> None:
        config = make_config(auto_branch_name_pattern="fix")
        git, github = FakeGit(), FakeGitHub()
        git.commit("main", "m1")
        prompter = ScriptedPrompter()
        result = make_workflow(config, git, github, tmp_path, prompter=prompter).execute(ctx, DiffOptions(dry_run=True))
        assert result.auto_branch_name == "fix"
        assert prompter.asked == []
        assert git.pushed() == []


def test_cancelled_context_stops_before_any_call(config, tmp_path) -> None:
    git, github = feature_repo(), FakeGitHub()
    run_ctx = RunContext()
    run_ctx.cancel("test")
    with pytest.raises(OperationInterruptedError):
        make_workflow(config, git, github, tmp_path).execute(run_ctx, DiffOptions())
    assert git.calls == []
