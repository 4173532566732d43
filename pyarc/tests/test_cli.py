"""Tests for the `arc` command line."""

import json

import pytest
from click.testing import CliRunner

import pyarc
from pyarc.cmd.arc import main as arc_main
from pyarc.cmd.arc.main import EXIT_DECLINED, EXIT_INTERRUPTED, EXIT_VALIDATION, cli, exit_code_for
from pyarc.github import GitHubError
from pyarc.tests.fakes import FakeGit, FakeGitHub, ScriptedEditor, ScriptedPrompter, fill_template
from pyarc.typing import (
    AuthenticationFailedError, NoSavedTemplateError, OperationInterruptedError,
    StaleRemoteDeclinedError, TemplateCorruptedError, UserCancelledError,
)


class InterruptingGit(FakeGit):

    def current_branch(self, ctx):
        raise KeyboardInterrupt()


def feature_repo(git: FakeGit = None) -> FakeGit:
    git = git or FakeGit()
    git.create_branch("feature", "main")
    git.commit("feature", "f1", "Add widgets\n\nThey spin.")
    git.current = "feature"
    return git


@pytest.fixture
def env(monkeypatch, make_config, tmp_path):
    """Wire the command to fakes; returns a namespace to tweak them."""
    class Env:
        config = make_config(template_dir=str(tmp_path))
        git = feature_repo()
        github = FakeGitHub()
        editor = ScriptedEditor(fill_template())
        verbosity = []

    monkeypatch.setattr(arc_main, "setup_git", lambda run_ctx, directory=None: (Env.config, Env.git))
    monkeypatch.setattr(arc_main, "setup_github", lambda config: Env.github)
    monkeypatch.setattr(arc_main, "ClickEditor", lambda: Env.editor)
    monkeypatch.setattr(arc_main, "Prompter", ScriptedPrompter)
    monkeypatch.setattr(pyarc, "setup_logging", Env.verbosity.append)
    return Env


def run(*args: str):
    return CliRunner().invoke(cli, list(args), obj={})


class TestDiffCommand:

    def test_creates_pr(self, env) -> None:
        result = run("diff")
        assert result.exit_code == 0, result.output
        assert "✓ Created PR #100" in result.output
        assert "Success!" in result.output
        assert env.github.calls[0][:3] == ("create", "feature", "main")

    def test_json_output(self, env) -> None:
        env.config.diff.require_test_plan = False
        result = run("diff", "--json", "--no-edit", "--ready")
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["was_created"]
        assert data["pr"]["number"] == 100
        assert data["pr"]["draft"] is False
        assert data["base_branch"] == "main"

    def test_dry_run_changes_nothing(self, env) -> None:
        result = run("diff", "--dry-run")
        assert result.exit_code == 0, result.output
        assert "Dry run mode" in result.output
        assert env.github.calls == []
        assert env.git.pushed() == []

    def test_alias(self, env) -> None:
        cli.add_alias("d", "diff")
        result = run("d", "--dry-run")
        assert result.exit_code == 0, result.output

    def test_verbosity_is_passed_to_logging(self, env) -> None:
        run("diff", "--dry-run", "-vv")
        assert env.verbosity == [2]

    @pytest.mark.parametrize("args", [["--draft", "--ready"], ["--edit", "--no-edit"]])
    def test_conflicting_flags(self, env, args) -> None:
        result = run("diff", *args)
        assert result.exit_code == 2
        assert "mutually exclusive" in result.output
        assert env.github.calls == []

    def test_validation_failure_exit_code(self, env) -> None:
        env.editor = ScriptedEditor(lambda text: text)
        result = run("diff")
        assert result.exit_code == EXIT_VALIDATION
        assert "Template validation failed" in result.output
        assert "arc diff --continue" in result.output
        assert env.github.calls == []

    def test_editor_cancel_exit_code(self, env) -> None:
        env.editor = ScriptedEditor(cancel=True)
        result = run("diff")
        assert result.exit_code == EXIT_DECLINED

    def test_keyboard_interrupt(self, env) -> None:
        env.git = feature_repo(InterruptingGit())
        result = run("diff")
        assert result.exit_code == EXIT_INTERRUPTED

    def test_continue_without_saved_template(self, env) -> None:
        result = run("diff", "--continue")
        assert result.exit_code == 1

    def test_github_failure_is_generic(self, env) -> None:
        env.config.diff.require_test_plan = False
        env.github.create_error = GitHubError("boom")
        result = run("diff", "--no-edit")
        assert result.exit_code == 1


class TestListCommand:

    @pytest.fixture(autouse=True)
    def prs(self, env) -> None:
        env.github.add_pr(1, "feature/a", "main", title="Add a", user_login="me")
        env.github.add_pr(2, "feature/b", "feature/a", title="Add b", draft=True, user_login="me")
        env.github.add_pr(3, "fix/c", "main", title="Fix c", user_login="Alice")

    def test_lists_open_prs(self, env) -> None:
        result = run("list")
        assert result.exit_code == 0, result.output
        assert "#1 Add a" in result.output
        assert "#2 Add b (draft)" in result.output
        assert "Alice  fix/c → main" in result.output
        assert env.github.calls == []

    def test_filters(self, env) -> None:
        result = run("list", "--json", "--author", "me", "--branch", "feature/*", "--status", "ready")
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert [pr["number"] for pr in data] == [1]
        assert data[0]["author"] == "me"
        assert data[0]["head"] == "feature/a"

    def test_author_is_case_insensitive(self, env) -> None:
        result = run("list", "--json", "-a", "alice")
        assert [pr["number"] for pr in json.loads(result.output)] == [3]

    def test_nothing_matches(self, env) -> None:
        result = run("list", "--branch", "release/*")
        assert result.exit_code == 0
        assert "No open pull requests" in result.output

    def test_github_failure(self, env, monkeypatch) -> None:
        def fail(ctx, state="open"):
            raise GitHubError("boom")
        monkeypatch.setattr(env.github, "list_pull_requests", fail)
        assert run("list").exit_code == 1


class TestAuthCommand:

    def test_authenticated(self, env) -> None:
        result = run("auth")
        assert result.exit_code == 0, result.output
        assert "Authenticated as me" in result.output

    def test_json(self, env) -> None:
        result = run("auth", "--json")
        assert json.loads(result.output) == {"authenticated": True, "user": "me"}

    def test_rejected_token(self, env) -> None:
        env.github.user_error = AuthenticationFailedError("Bad credentials")
        result = run("auth", "--json")
        assert result.exit_code == 1
        assert json.loads(result.output) == {"authenticated": False, "error": "Bad credentials"}


class TestVersionCommand:

    def test_text(self) -> None:
        result = run("version")
        assert result.exit_code == 0
        assert result.output.startswith(f"arc {pyarc.__version__} (python ")

    def test_json(self) -> None:
        data = json.loads(run("version", "--json").output)
        assert data["version"] == pyarc.__version__
        assert set(data) == {"version", "python", "platform"}


@pytest.mark.parametrize("err,code", [
    (StaleRemoteDeclinedError("origin/main", 30), EXIT_DECLINED),
    (UserCancelledError(), EXIT_DECLINED),
    (TemplateCorruptedError("/tmp/x.md"), EXIT_VALIDATION),
    (OperationInterruptedError(), EXIT_INTERRUPTED),
    (NoSavedTemplateError(), 1),
    (AuthenticationFailedError("bad token"), 1),
])
def test_exit_codes(err, code) -> None:
    assert exit_code_for(err) == code
