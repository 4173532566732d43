"""Shared fixtures for the unit tests."""

from typing import Any, Callable, Dict

import pytest

from pyarc.config import Config
from pyarc.tests.fakes import FakeGit, FakeGitHub, ScriptedPrompter
from pyarc.typing import RunContext


@pytest.fixture
def ctx() -> RunContext:
    return RunContext()


@pytest.fixture
def make_config() -> Callable[..., Config]:
    """Build a Config; keyword arguments override the diff section."""
    def build(repo: Dict[str, Any] = None, **diff: Any) -> Config:
        repo_section = {
            'github_remote': 'origin',
            'github_branch': 'main',
            'github_repo_owner': 'acme',
            'github_repo_name': 'widgets',
        }
        repo_section.update(repo or {})
        return Config({'repo': repo_section, 'diff': diff, 'user': {}})
    return build


@pytest.fixture
def config(make_config: Callable[..., Config]) -> Config:
    return make_config()


@pytest.fixture
def fake_git() -> FakeGit:
    return FakeGit()


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def prompter() -> ScriptedPrompter:
    return ScriptedPrompter()
