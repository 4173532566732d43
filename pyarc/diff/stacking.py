"""Base branch resolution for stacked PRs."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from ..config.models import PyarcConfig
from ..git import GitInterface
from ..github import GitHubInterface, PullRequest
from ..typing import BranchRef, CommitHash, RunContext
from ..util import short_sha

logger = logging.getLogger(__name__)


class ResolutionMethod(str, Enum):
    """How the base branch was chosen."""
    EXPLICIT_FLAG = "explicit-flag"
    CONFIG_DEFAULT = "config-default"
    STACKING_DISABLED = "stacking-disabled"
    AUTO_DETECTED_STACKING = "auto-detected-stacking"
    DEFAULT_BRANCH = "default-branch"


@dataclass(frozen=True)
class BaseResolution:
    base: str
    is_stacking: bool
    method: ResolutionMethod
    parent_pr: Optional[PullRequest] = None


@dataclass(frozen=True)
class StackCandidate:
    """A branch the current branch may be stacked on."""
    branch: BranchRef
    pr: PullRequest
    divergence: CommitHash


class StackingResolver:
    """Decides which branch a PR for the current branch should target.

    Priority, first match wins: explicit --base, configured default base,
    stacking disabled, detected parent branch with an open PR, trunk.
    """

    def __init__(self, config: PyarcConfig, git_cmd: GitInterface, github: GitHubInterface):
        self.config = config
        self.git_cmd = git_cmd
        self.github = github

    def resolve_base(self, ctx: RunContext, current_branch: str,
                     explicit_base: Optional[str] = None) -> BaseResolution:
        if explicit_base:
            logger.info(f"Using base branch from --base: {explicit_base}")
            return BaseResolution(explicit_base, False, ResolutionMethod.EXPLICIT_FLAG)

        default_base = self.config.diff.default_base
        if default_base:
            logger.info(f"Using configured default base: {default_base}")
            return BaseResolution(default_base, False, ResolutionMethod.CONFIG_DEFAULT)

        trunk = self.git_cmd.default_branch(ctx)
        if not self.config.diff.enable_stacking:
            logger.debug(f"Stacking disabled, targeting {trunk}")
            return BaseResolution(trunk, False, ResolutionMethod.STACKING_DISABLED)

        parent = self.detect_parent(ctx, current_branch, trunk)
        if parent is not None:
            logger.info(f"Stacking {current_branch} on {parent.branch.name} ({parent.pr})")
            return BaseResolution(parent.branch.name, True, ResolutionMethod.AUTO_DETECTED_STACKING,
                                  parent_pr=parent.pr)

        logger.debug(f"No stacking parent found, targeting {trunk}")
        return BaseResolution(trunk, False, ResolutionMethod.DEFAULT_BRANCH)

    def find_candidates(self, ctx: RunContext, current_branch: str, trunk: str) -> List[StackCandidate]:
        """Local branches with an open PR that current was forked from."""
        trunk_base = self.git_cmd.merge_base(ctx, current_branch, trunk)
        if trunk_base is None:
            logger.debug(f"{current_branch} shares no history with {trunk}")
            return []

        prs_by_head: Dict[str, PullRequest] = {}
        for pr in self.github.list_pull_requests(ctx):
            prs_by_head.setdefault(pr.head_ref, pr)

        current_tip = self.git_cmd.rev_parse(ctx, current_branch)
        candidates: List[StackCandidate] = []
        for branch in self.git_cmd.list_branches(ctx):
            if branch.name in (current_branch, trunk):
                continue
            pr = prs_by_head.get(branch.name)
            if pr is None:
                continue

            divergence = self.git_cmd.merge_base(ctx, current_branch, branch.name)
            if divergence is None:
                continue
            if divergence == trunk_base:
                # Both forked from the same trunk commit: siblings, not a stack
                logger.debug(f"Skipping {branch.name}: sibling of {current_branch}")
                continue
            if self.git_cmd.is_ancestor(ctx, divergence, trunk_base):
                # Shared history is trunk history only: an older sibling
                logger.debug(f"Skipping {branch.name}: forked from {trunk} before {current_branch}")
                continue
            if divergence == current_tip:
                # Branch is stacked on top of current, not below it
                logger.debug(f"Skipping {branch.name}: descends from {current_branch}")
                continue
            if not self.git_cmd.is_ancestor(ctx, divergence, current_branch):
                continue
            logger.debug(f"Candidate {branch.name} ({pr}) diverges at {short_sha(divergence)}")
            candidates.append(StackCandidate(branch, pr, divergence))
        return candidates

    def select_closest(self, ctx: RunContext, candidates: List[StackCandidate]) -> Optional[StackCandidate]:
        """Pick the candidate whose divergence point is most recent.

        A candidate loses when its divergence point is a strict ancestor of
        another candidate's. Among candidates sharing the newest point, the
        one no other tied candidate's PR is based on wins.
        """
        if not candidates:
            return None

        newest: List[StackCandidate] = []
        for cand in candidates:
            dominated = any(
                other.divergence != cand.divergence
                and self.git_cmd.is_ancestor(ctx, cand.divergence, other.divergence)
                for other in candidates
            )
            if not dominated:
                newest.append(cand)
        if not newest:
            return None

        tied_branches = {c.branch.name for c in newest}
        for cand in newest:
            if not any(other.pr.base_ref == cand.branch.name for other in newest if other is not cand):
                return cand
        logger.debug(f"Circular stack among {sorted(tied_branches)}, keeping listing order")
        return newest[0]

    def detect_parent(self, ctx: RunContext, current_branch: str, trunk: str) -> Optional[StackCandidate]:
        return self.select_closest(ctx, self.find_candidates(ctx, current_branch, trunk))


def resolve_base(ctx: RunContext, config: PyarcConfig, git_cmd: GitInterface, github: GitHubInterface,
                 current_branch: str, explicit_base: Optional[str] = None) -> BaseResolution:
    """Convenience wrapper around StackingResolver.resolve_base."""
    return StackingResolver(config, git_cmd, github).resolve_base(ctx, current_branch, explicit_base)
