"""Open PRs that target a given branch."""

import logging
from dataclasses import dataclass, field
from typing import List

from ..github import GitHubInterface, PullRequest
from ..typing import RunContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DependentSetResult:
    dependents: List[PullRequest] = field(default_factory=list)

    @property
    def has_dependents(self) -> bool:
        return bool(self.dependents)


class DependentSetFinder:
    """Finds PRs stacked on a branch. Always queries fresh."""

    def __init__(self, github: GitHubInterface):
        self.github = github

    def find_dependents(self, ctx: RunContext, branch: str) -> DependentSetResult:
        dependents = [pr for pr in self.github.list_pull_requests(ctx) if pr.base_ref == branch]
        if dependents:
            logger.info(f"Found {len(dependents)} PR(s) targeting {branch}: "
                        + ", ".join(f"#{pr.number}" for pr in dependents))
        else:
            logger.debug(f"No PRs target {branch}")
        return DependentSetResult(dependents)
