"""Adapter classes to wrap PyGithub objects with our protocol interfaces."""

from typing import List, Optional, Dict, Union
import logging

from github import Github
from github.Repository import Repository
from github.PullRequest import PullRequest as PyGithubPullRequest
from github.NamedUser import NamedUser
from github.AuthenticatedUser import AuthenticatedUser
from github.GithubObject import NotSet

from . import (
    PyGithubProtocol,
    GitHubRepoProtocol,
    GitHubPullRequestProtocol,
    GitHubUserProtocol,
    GitHubRefProtocol,
)
from .types import GitHubRequester, GraphQLResponseType, PyGithubRequesterInternal

logger = logging.getLogger(__name__)


class PyGithubUserAdapter(GitHubUserProtocol):
    """Adapter for PyGithub NamedUser or AuthenticatedUser objects."""

    def __init__(self, user: Union[NamedUser, AuthenticatedUser]) -> None:
        self._user = user

    @property
    def login(self) -> str:
        """Get the user's login name."""
        return self._user.login


class PyGithubPullRequestAdapter(GitHubPullRequestProtocol):
    """Adapter for PyGithub PullRequest objects."""

    def __init__(self, pr: PyGithubPullRequest) -> None:
        self._pr = pr

    @property
    def number(self) -> int:
        return self._pr.number

    @property
    def title(self) -> str:
        return self._pr.title

    @property
    def body(self) -> Optional[str]:
        return self._pr.body

    @property
    def state(self) -> str:
        return self._pr.state

    @property
    def draft(self) -> bool:
        return bool(self._pr.draft)

    @property
    def node_id(self) -> str:
        return self._pr.node_id

    @property
    def html_url(self) -> str:
        return self._pr.html_url

    @property
    def base(self) -> GitHubRefProtocol:
        return self._pr.base

    @property
    def head(self) -> GitHubRefProtocol:
        return self._pr.head

    @property
    def user(self) -> GitHubUserProtocol:
        return PyGithubUserAdapter(self._pr.user)

    def edit(self, title: Optional[str] = None, body: Optional[str] = None,
             state: Optional[str] = None, base: Optional[str] = None) -> None:
        """Edit the pull request."""
        # Convert None to NotSet for PyGithub
        self._pr.edit(
            title=title if title is not None else NotSet,
            body=body if body is not None else NotSet,
            state=state if state is not None else NotSet,
            base=base if base is not None else NotSet
        )

    def create_review_request(self, reviewers: List[str], team_reviewers: List[str]) -> None:
        """Create review request with reviewers."""
        self._pr.create_review_request(
            reviewers=reviewers if reviewers else NotSet,
            team_reviewers=team_reviewers if team_reviewers else NotSet
        )


class PyGithubRepoAdapter(GitHubRepoProtocol):
    """Adapter for PyGithub Repository objects."""

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    def get_pull(self, number: int) -> GitHubPullRequestProtocol:
        """Get a pull request by number."""
        return PyGithubPullRequestAdapter(self._repo.get_pull(number))

    def get_pulls(self, state: str = "open", sort: str = "",
                  direction: str = "", head: str = "", base: str = "") -> List[GitHubPullRequestProtocol]:
        """Get pull requests with optional filtering."""
        # Convert empty strings to NotSet for PyGithub
        pulls = self._repo.get_pulls(
            state=state,
            sort=sort if sort else NotSet,
            direction=direction if direction else NotSet,
            head=head if head else NotSet,
            base=base if base else NotSet
        )
        # Iterating the PaginatedList fetches every page
        return [PyGithubPullRequestAdapter(pr) for pr in pulls]

    def create_pull(self, title: str, body: str, base: str, head: str,
                    maintainer_can_modify: bool = True, draft: bool = False) -> GitHubPullRequestProtocol:
        """Create a new pull request."""
        pr = self._repo.create_pull(
            title=title,
            body=body,
            base=base,
            head=head,
            maintainer_can_modify=maintainer_can_modify,
            draft=draft
        )
        return PyGithubPullRequestAdapter(pr)


class PyGithubRequesterAdapter(GitHubRequester):
    """Adapter for PyGithub's requester to handle GraphQL."""

    def __init__(self, requester: PyGithubRequesterInternal) -> None:
        self._requester = requester

    def requestJsonAndCheck(
        self, verb: str, url: str, parameters: Optional[Dict[str, object]] = None,
        headers: Optional[Dict[str, str]] = None, input: Optional[Dict[str, object]] = None
    ) -> GraphQLResponseType:
        """Make a request and return the response."""
        response_headers, data = self._requester.requestJsonAndCheck(
            verb, url, parameters=parameters, headers=headers, input=input
        )
        # Ensure headers is never None
        return (response_headers or {}, data)


class PyGithubAdapter(PyGithubProtocol):
    """Adapter for the main PyGithub object."""

    def __init__(self, github: Github) -> None:
        self._github = github
        # Cache the requester adapter
        self._requester_adapter: Optional[PyGithubRequesterAdapter] = None

    def get_repo(self, full_name_or_id: str) -> GitHubRepoProtocol:
        """Get a repository by full name."""
        return PyGithubRepoAdapter(self._github.get_repo(full_name_or_id))

    def get_user(self, login: Optional[str] = None) -> Optional[GitHubUserProtocol]:
        """Get a user by login or the authenticated user if login is None."""
        # PyGithub uses NotSet instead of None
        if login is None:
            user = self._github.get_user()
        else:
            user = self._github.get_user(login)
        return PyGithubUserAdapter(user) if user else None

    @property
    def _Github__requester(self) -> GitHubRequester:
        """Access the requester for GraphQL calls."""
        if self._requester_adapter is None:
            # Use getattr to avoid type checker issues with private attributes
            real_requester = getattr(self._github, '_Github__requester')
            self._requester_adapter = PyGithubRequesterAdapter(real_requester)
        return self._requester_adapter
