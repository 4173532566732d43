"""Creating and updating a pull request."""

import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional

from ..git import GitError, GitInterface
from ..github import GitHubInterface, PullRequest, parse_reviewers
from ..typing import OperationInterruptedError, RunContext

logger = logging.getLogger(__name__)


@dataclass
class PRRequest:
    title: str
    head: str
    base: str
    body: str
    draft: bool
    reviewers: List[str] = field(default_factory=list)
    existing_pr: Optional[PullRequest] = None
    parent_pr: Optional[PullRequest] = None
    current_user: str = ""
    # Head was pushed by the caller, e.g. an auto-created branch
    already_pushed: bool = False


@dataclass
class PROutcome:
    pr: PullRequest
    was_created: bool
    draft_changed: bool = False
    pushed: bool = False
    reviewers_assigned: List[str] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)


class PRLifecycleExecutor:
    """Creates a PR, or updates one, then requests reviews.

    Draft transitions are two calls: title and body are written first under
    the PR's current draft state, then the transition itself is issued.
    """

    def __init__(self, github: GitHubInterface, git_cmd: GitInterface):
        self.github = github
        self.git_cmd = git_cmd

    def execute(self, ctx: RunContext, req: PRRequest) -> PROutcome:
        if req.existing_pr is None:
            outcome = self._create(ctx, req)
        else:
            outcome = self._update(ctx, req, req.existing_pr)

        if req.reviewers:
            try:
                outcome.reviewers_assigned = self.assign_reviewers(ctx, outcome.pr, req.reviewers, req.current_user)
            except OperationInterruptedError:
                raise
            except Exception as e:
                logger.warning(f"Failed to assign reviewers to #{outcome.pr.number}: {e}")
                outcome.messages.append(f"⚠️  Warning: failed to assign reviewers: {e}")
        return outcome

    def _create(self, ctx: RunContext, req: PRRequest) -> PROutcome:
        logger.debug(f"Creating PR {req.head} -> {req.base} draft={req.draft}")
        if not req.already_pushed:
            try:
                self.git_cmd.push(ctx, req.head)
            except GitError as e:
                raise GitError(f"failed to push branch {req.head}: {e}") from e
        pr = self.github.create_pull_request(ctx, req.title, req.head, req.base, req.body,
                                             req.draft, parent_pr=req.parent_pr)
        return PROutcome(pr=pr, was_created=True, pushed=True)

    def _update(self, ctx: RunContext, req: PRRequest, existing: PullRequest) -> PROutcome:
        logger.debug(f"Updating #{existing.number} draft {existing.draft} -> {req.draft}")
        pushed = req.already_pushed
        if pushed:
            unpushed = False
        else:
            try:
                unpushed = self.git_cmd.has_unpushed_commits(ctx, req.head)
            except GitError as e:
                logger.warning(f"Could not check for unpushed commits on {req.head}, pushing anyway: {e}")
                unpushed = True

        if unpushed:
            try:
                self.git_cmd.push(ctx, req.head)
            except GitError as e:
                raise GitError(f"failed to push commits on {req.head}: {e}") from e
            pushed = True

        has_metadata = bool(req.title or req.body)
        if existing.draft and not req.draft:
            if has_metadata:
                self.github.update_pull_request(ctx, existing, req.title, req.body,
                                                draft=True, parent_pr=req.parent_pr)
            pr = self.github.mark_ready_for_review(ctx, existing)
            return PROutcome(pr=self._merge_metadata(pr, req), was_created=False, draft_changed=True, pushed=pushed)

        if not existing.draft and req.draft:
            if has_metadata:
                self.github.update_pull_request(ctx, existing, req.title, req.body,
                                                draft=False, parent_pr=req.parent_pr)
            pr = self.github.convert_to_draft(ctx, existing)
            return PROutcome(pr=self._merge_metadata(pr, req), was_created=False, draft_changed=True, pushed=pushed)

        pr = self.github.update_pull_request(ctx, existing, req.title, req.body,
                                             draft=req.draft, parent_pr=req.parent_pr)
        return PROutcome(pr=pr, was_created=False, pushed=pushed)

    @staticmethod
    def _merge_metadata(pr: PullRequest, req: PRRequest) -> PullRequest:
        """The transition call returns the PR as it was before our edit."""
        return replace(pr, title=req.title or pr.title, body=req.body or pr.body)

    def assign_reviewers(self, ctx: RunContext, pr: PullRequest, reviewers: List[str],
                         current_user: str) -> List[str]:
        """Request reviews, never from the acting user. Returns who was asked."""
        users, teams = parse_reviewers(reviewers)
        me = current_user.lower()
        users = [u for u in users if u.lower() != me]
        if not users and not teams:
            logger.debug(f"No reviewers left for #{pr.number} after removing {current_user}")
            return []
        self.github.assign_reviewers(ctx, pr, users, teams)
        return [r for r in reviewers if "/" in r or r.strip().lstrip("@") in users]

    def update_draft_status(self, ctx: RunContext, pr: PullRequest, want_draft: bool) -> PullRequest:
        """Apply a draft transition on its own, without touching metadata."""
        if pr.draft == want_draft:
            return pr
        if pr.draft:
            return self.github.mark_ready_for_review(ctx, pr)
        return self.github.convert_to_draft(ctx, pr)
