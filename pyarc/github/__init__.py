"""GitHub interfaces and implementation."""

import os
import fnmatch
import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Protocol, Tuple, runtime_checkable, cast

from github.GithubException import BadCredentialsException, GithubException

from .types import (
    GraphQLResponseType, GitHubRequester,
    MARK_READY_MUTATION, CONVERT_TO_DRAFT_MUTATION,
    parse_draft_mutation_response,
)
from ..config.models import PyarcConfig
from ..typing import AuthenticationFailedError, RunContext
from ..util import ensure

# Get module logger
logger = logging.getLogger(__name__)

GRAPHQL_URL = "https://api.github.com/graphql"
STACKED_ON_MARKER = "📚 **Stacked on:**"


class GitHubError(Exception):
    """A GitHub API call failed."""


@dataclass(frozen=True)
class PullRequest:
    """Pull request info."""
    number: int
    title: str
    head_ref: str
    base_ref: str
    body: str = ""
    draft: bool = False
    node_id: str = ""
    user_login: str = ""
    html_url: str = ""

    def __str__(self) -> str:
        """Convert to string."""
        draft = " (draft)" if self.draft else ""
        return f"PR #{self.number} - {self.title}{draft}"


# Define protocols for GitHub objects
@runtime_checkable
class GitHubUserProtocol(Protocol):
    """Protocol for GitHub user objects (real or fake)."""
    @property
    def login(self) -> str:
        """Get the user's login name."""
        ...

@runtime_checkable
class GitHubRefProtocol(Protocol):
    """Protocol for GitHub ref objects (base/head references)."""
    @property
    def ref(self) -> str:
        """Get the ref name (e.g., 'main', 'feature-branch')."""
        ...

    @property
    def sha(self) -> str:
        """Get the commit SHA."""
        ...

@runtime_checkable
class GitHubPullRequestProtocol(Protocol):
    """Protocol for GitHub pull request objects (real or fake)."""
    @property
    def number(self) -> int: ...

    @property
    def title(self) -> str: ...

    @property
    def body(self) -> Optional[str]: ...

    @property
    def state(self) -> str: ...

    @property
    def draft(self) -> bool: ...

    @property
    def node_id(self) -> str: ...

    @property
    def html_url(self) -> str: ...

    @property
    def base(self) -> GitHubRefProtocol: ...

    @property
    def head(self) -> GitHubRefProtocol: ...

    @property
    def user(self) -> GitHubUserProtocol: ...

    def edit(self, title: Optional[str] = None, body: Optional[str] = None,
             state: Optional[str] = None, base: Optional[str] = None) -> None:
        """Edit the pull request."""
        ...

    def create_review_request(self, reviewers: List[str], team_reviewers: List[str]) -> None:
        """Request reviews from users and teams."""
        ...

@runtime_checkable
class GitHubRepoProtocol(Protocol):
    """Protocol for GitHub repository objects (real or fake)."""
    def get_pull(self, number: int) -> GitHubPullRequestProtocol:
        """Get a pull request by number."""
        ...

    def get_pulls(self, state: str = "open", sort: str = "",
                  direction: str = "", head: str = "", base: str = "") -> List[GitHubPullRequestProtocol]:
        """Get pull requests with optional filtering, all pages."""
        ...

    def create_pull(self, title: str, body: str, base: str, head: str,
                    maintainer_can_modify: bool = True, draft: bool = False) -> GitHubPullRequestProtocol:
        """Create a new pull request."""
        ...

@runtime_checkable
class PyGithubProtocol(Protocol):
    """Protocol for PyGithub implementations (real or fake).

    This protocol defines the interface that both the real PyGithub library
    and our fake implementation must satisfy.
    """
    def get_repo(self, full_name_or_id: str) -> GitHubRepoProtocol:
        """Get a repository by full name or ID."""
        ...

    def get_user(self, login: Optional[str] = None) -> Optional[GitHubUserProtocol]:
        """Get a user by login or the authenticated user if login is None."""
        ...


class GitHubInterface(Protocol):
    """Pull request capabilities used by the diff engine."""
    def list_pull_requests(self, ctx: RunContext, state: str = "open") -> List[PullRequest]: ...
    def find_existing_pr(self, ctx: RunContext, head: str) -> Optional[PullRequest]: ...
    def create_pull_request(self, ctx: RunContext, title: str, head: str, base: str, body: str,
                            draft: bool, parent_pr: Optional[PullRequest] = None) -> PullRequest: ...
    def update_pull_request(self, ctx: RunContext, pr: PullRequest, title: str, body: str,
                            draft: Optional[bool], parent_pr: Optional[PullRequest] = None) -> PullRequest: ...
    def update_pr_base(self, ctx: RunContext, pr: PullRequest, base: str) -> PullRequest: ...
    def mark_ready_for_review(self, ctx: RunContext, pr: PullRequest) -> PullRequest: ...
    def convert_to_draft(self, ctx: RunContext, pr: PullRequest) -> PullRequest: ...
    def assign_reviewers(self, ctx: RunContext, pr: PullRequest,
                         users: List[str], teams: List[str]) -> None: ...
    def get_current_user(self, ctx: RunContext) -> str: ...


def parse_reviewers(reviewers: List[str]) -> Tuple[List[str], List[str]]:
    """Split reviewer handles into (users, teams).

    A leading "@" is dropped. Handles of the form "org/team" are teams and
    are requested by team slug.
    """
    users: List[str] = []
    teams: List[str] = []
    for reviewer in reviewers:
        handle = reviewer.strip().lstrip("@")
        if not handle:
            continue
        if "/" in handle:
            slug = handle.split("/", 1)[1]
            if slug and slug not in teams:
                teams.append(slug)
        elif handle not in users:
            users.append(handle)
    return users, teams


def filter_pull_requests(prs: List[PullRequest], author: str = "", branch: str = "",
                         status: str = "", current_user: str = "") -> List[PullRequest]:
    """Filter PRs for `arc list`.

    author "me" means the current user. branch is a glob matched against
    the head branch. status is "draft" or "ready".
    """
    if author == "me":
        author = current_user
    result = []
    for pr in prs:
        if author and pr.user_login.lower() != author.lower():
            continue
        if branch and not fnmatch.fnmatchcase(pr.head_ref, branch):
            continue
        if status == "draft" and not pr.draft:
            continue
        if status == "ready" and pr.draft:
            continue
        result.append(pr)
    return result


def format_stacking_metadata(parent_pr: PullRequest) -> str:
    """Footer linking a stacked PR to its parent."""
    return "\n".join([
        "---",
        "",
        f"{STACKED_ON_MARKER} #{parent_pr.number} - {parent_pr.title}",
        "",
        f"This PR is part of a stack and builds upon #{parent_pr.number}. Review and merge that PR first.",
    ])


def with_stacking_metadata(body: str, parent_pr: Optional[PullRequest]) -> str:
    """Append the stacking footer unless it is already present."""
    if parent_pr is None or STACKED_ON_MARKER in body:
        return body
    metadata = format_stacking_metadata(parent_pr)
    return f"{body}\n\n{metadata}" if body else metadata


def find_github_token() -> Optional[str]:
    """Find GitHub token from env var or gh CLI config."""
    import yaml
    from pathlib import Path

    # First try environment variable
    for var in ("GITHUB_TOKEN", "GH_TOKEN"):
        token = os.environ.get(var)
        if token:
            return token

    # Then try gh CLI config at ~/.config/gh/hosts.yml
    gh_config_path = Path.home() / ".config" / "gh" / "hosts.yml"
    try:
        if gh_config_path.exists():
            with open(gh_config_path, "r") as f:
                gh_config = yaml.safe_load(f)
                if gh_config and "github.com" in gh_config:
                    github_config: Dict[str, object] = gh_config["github.com"]
                    token = github_config.get("oauth_token")
                    if isinstance(token, str):
                        return token
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error reading gh CLI config: {e}")
    return None


def _to_pull_request(pr: GitHubPullRequestProtocol) -> PullRequest:
    return PullRequest(
        number=pr.number,
        title=pr.title,
        head_ref=pr.head.ref,
        base_ref=pr.base.ref,
        body=pr.body or "",
        draft=bool(pr.draft),
        node_id=pr.node_id or "",
        user_login=pr.user.login if pr.user else "",
        html_url=pr.html_url or "",
    )


class GitHubClient:
    """GitHub client implementation."""
    def __init__(self, config: PyarcConfig, github_client: PyGithubProtocol):
        """Initialize with config and GitHub client implementation.

        Args:
            config: The configuration
            github_client: GitHub client implementation (real or fake)
        """
        self.config = config
        self.client = github_client
        self._repo: Optional[GitHubRepoProtocol] = None
        self._current_user: Optional[str] = None

    @property
    def repo(self) -> GitHubRepoProtocol:
        """Get GitHub repository."""
        if self._repo is None:
            owner = self.config.repo.github_repo_owner
            name = self.config.repo.github_repo_name
            if not owner or not name:
                raise GitHubError("GitHub repository unknown - set repo.github_repo_owner and repo.github_repo_name")
            self._repo = self._call(f"get repo {owner}/{name}", lambda: self.client.get_repo(f"{owner}/{name}"))
        return self._repo

    @repo.setter
    def repo(self, value: GitHubRepoProtocol) -> None:
        """Set the GitHub repository."""
        self._repo = value

    def _call(self, what: str, fn):  # type: ignore[no-untyped-def]
        """Run an API call, mapping PyGithub failures to our errors."""
        try:
            return fn()
        except BadCredentialsException as e:
            raise AuthenticationFailedError(f"GitHub rejected credentials during {what}: {e}") from e
        except GithubException as e:
            raise GitHubError(f"GitHub {what} failed: {e}") from e

    def list_pull_requests(self, ctx: RunContext, state: str = "open") -> List[PullRequest]:
        """All pull requests in the given state, newest update first."""
        ctx.check()
        logger.info(f"> github list pull requests state={state}")
        pulls = self._call("list pull requests",
                           lambda: self.repo.get_pulls(state=state, sort="updated", direction="desc"))
        result = [_to_pull_request(pr) for pr in pulls]
        logger.debug(f"GitHub returned {len(result)} {state} PRs")
        return result

    def find_existing_pr(self, ctx: RunContext, head: str) -> Optional[PullRequest]:
        """Open PR whose head is the given branch, if any."""
        for pr in self.list_pull_requests(ctx):
            if pr.head_ref == head:
                logger.debug(f"Found existing {pr} for branch {head}")
                return pr
        logger.debug(f"No open PR found for branch {head}")
        return None

    def create_pull_request(self, ctx: RunContext, title: str, head: str, base: str, body: str,
                            draft: bool, parent_pr: Optional[PullRequest] = None) -> PullRequest:
        ctx.check()
        final_body = with_stacking_metadata(body, parent_pr)
        logger.info(f"> github create {head} -> {base} : {title}{' (draft)' if draft else ''}")
        gh_pr = self._call("create pull request", lambda: self.repo.create_pull(
            title=title, body=final_body, base=base, head=head,
            maintainer_can_modify=True, draft=draft))
        created = _to_pull_request(gh_pr)
        logger.info(f"Created {created} {created.html_url}")
        return created

    def update_pull_request(self, ctx: RunContext, pr: PullRequest, title: str, body: str,
                            draft: Optional[bool], parent_pr: Optional[PullRequest] = None) -> PullRequest:
        """Update title and body.

        The REST API cannot change draft state, so `draft` only records the
        state the metadata is written under; transitions go through
        mark_ready_for_review / convert_to_draft.
        """
        ctx.check()
        final_body = with_stacking_metadata(body, parent_pr) if body else body
        logger.info(f"> github update #{pr.number} : {title or pr.title}")
        gh_pr = self._call(f"get PR #{pr.number}", lambda: self.repo.get_pull(pr.number))
        self._call(f"update PR #{pr.number}", lambda: gh_pr.edit(
            title=title or None, body=final_body or None))
        return replace(pr,
                       title=title or pr.title,
                       body=final_body or pr.body,
                       draft=pr.draft if draft is None else draft)

    def update_pr_base(self, ctx: RunContext, pr: PullRequest, base: str) -> PullRequest:
        ctx.check()
        logger.info(f"> github update #{pr.number} base {pr.base_ref} -> {base}")
        gh_pr = self._call(f"get PR #{pr.number}", lambda: self.repo.get_pull(pr.number))
        self._call(f"update PR #{pr.number} base", lambda: gh_pr.edit(base=base))
        return replace(pr, base_ref=base)

    def _draft_mutation(self, ctx: RunContext, pr: PullRequest, mutation: str, field: str) -> PullRequest:
        ctx.check()
        if not pr.node_id:
            raise GitHubError(f"PR #{pr.number} has no node id; cannot change draft state")
        req = cast(GitHubRequester, getattr(self.client, '_Github__requester'))
        result: GraphQLResponseType = self._call(f"{field} #{pr.number}", lambda: req.requestJsonAndCheck(
            "POST",
            GRAPHQL_URL,
            input={
                "query": mutation,
                "variables": {"input": {"pullRequestId": pr.node_id}},
            },
        ))
        _headers, resp = result
        parsed = parse_draft_mutation_response(resp)
        if parsed.errors:
            messages = "; ".join(err.message for err in parsed.errors)
            raise GitHubError(f"GitHub {field} #{pr.number} failed: {messages}")
        payload = getattr(ensure(parsed.data), field)
        is_draft = ensure(payload).pullRequest.isDraft
        return replace(pr, draft=is_draft)

    def mark_ready_for_review(self, ctx: RunContext, pr: PullRequest) -> PullRequest:
        logger.info(f"> github mark ready #{pr.number}")
        return self._draft_mutation(ctx, pr, MARK_READY_MUTATION, "markPullRequestReadyForReview")

    def convert_to_draft(self, ctx: RunContext, pr: PullRequest) -> PullRequest:
        logger.info(f"> github convert to draft #{pr.number}")
        return self._draft_mutation(ctx, pr, CONVERT_TO_DRAFT_MUTATION, "convertPullRequestToDraft")

    def assign_reviewers(self, ctx: RunContext, pr: PullRequest,
                         users: List[str], teams: List[str]) -> None:
        ctx.check()
        if not users and not teams:
            return
        logger.info(f"> github add reviewers #{pr.number} : users={users} teams={teams}")
        gh_pr = self._call(f"get PR #{pr.number}", lambda: self.repo.get_pull(pr.number))
        self._call(f"request reviewers on #{pr.number}",
                   lambda: gh_pr.create_review_request(reviewers=users, team_reviewers=teams))

    def get_current_user(self, ctx: RunContext) -> str:
        """Login of the authenticated user, cached per client."""
        ctx.check()
        if self._current_user is None:
            logger.info("> github get current user")
            # PyGithub fetches the authenticated user lazily, on first attribute access
            self._current_user = self._call("get current user", lambda: ensure(self.client.get_user()).login)
        return self._current_user
