"""Tests for title and summary suggestions."""

import pytest

from pyarc.diff.analysis import FALLBACK_TITLE, analyze_commits, title_from_branch
from pyarc.tests.fakes import FakeGit


@pytest.mark.parametrize("branch,title", [
    ("feature/add-user_login", "Add User Login"),
    ("fix/crash", "Crash"),
    ("plain", "Plain"),
    ("feature/", FALLBACK_TITLE),
])
def test_title_from_branch(branch, title) -> None:
    assert title_from_branch(branch) == title


def test_no_commits_uses_branch_name(ctx) -> None:
    git = FakeGit()
    git.create_branch("feature/empty-branch", "main")
    analysis = analyze_commits(ctx, git, "main", "feature/empty-branch")
    assert analysis.title == "Empty Branch"
    assert analysis.summary == "No commits found in this branch"
    assert analysis.commit_count == 0


def test_single_commit(ctx) -> None:
    git = FakeGit()
    git.create_branch("feature", "main")
    git.commit("feature", "c1", "Add widgets\n\nThey spin.")
    analysis = analyze_commits(ctx, git, "main", "feature")
    assert (analysis.title, analysis.summary) == ("Add widgets", "They spin.")
    assert analysis.base_branch == "main"


def test_several_commits(ctx) -> None:
    git = FakeGit()
    git.create_branch("feature", "main")
    git.commit("feature", "c1", "Add widgets\n\nThey spin.")
    git.commit("feature", "c2", "Merge branch 'main' into feature")
    git.commit("feature", "c3", "Fix typo")
    analysis = analyze_commits(ctx, git, "main", "feature")
    assert analysis.title == "Add widgets"
    assert analysis.summary == "\n".join([
        "## Commits",
        "",
        "- Add widgets",
        "  They spin.",
        "- Merge branch 'main' into feature",
        "- Fix typo",
    ])
    assert analysis.commit_count == 3
    assert analysis.has_merge_commits
