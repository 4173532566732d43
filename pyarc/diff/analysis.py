"""Suggested PR title and summary from the commits on a branch."""

import logging
from dataclasses import dataclass, field
from typing import List

from ..git import GitInterface, parse_commit_message
from ..typing import CommitInfo, RunContext

logger = logging.getLogger(__name__)

BRANCH_PREFIXES = ("feature/", "fix/", "bugfix/", "hotfix/", "chore/", "refactor/")
FALLBACK_TITLE = "Update code"


@dataclass
class CommitAnalysis:
    title: str
    summary: str
    base_branch: str
    commit_count: int = 0
    has_merge_commits: bool = False
    messages: List[str] = field(default_factory=list)


def title_from_branch(branch: str) -> str:
    """'feature/add-user_login' -> 'Add User Login'."""
    for prefix in BRANCH_PREFIXES:
        if branch.startswith(prefix):
            branch = branch[len(prefix):]
            break
    words = branch.replace("-", " ").replace("_", " ").split()
    title = " ".join(w[:1].upper() + w[1:] for w in words)
    return title or FALLBACK_TITLE


def _from_single(commit: CommitInfo) -> tuple:
    subject, body = parse_commit_message(commit.message)
    return subject or FALLBACK_TITLE, body


def _from_several(commits: List[CommitInfo]) -> tuple:
    title, _ = parse_commit_message(commits[0].message)
    if not title:
        title = f"Merge {len(commits)} commits"
    lines = ["## Commits", ""]
    for commit in commits:
        subject, body = parse_commit_message(commit.message)
        if not subject:
            continue
        lines.append(f"- {subject}")
        lines += [f"  {line}" for line in body.splitlines() if line.strip()]
    return title, "\n".join(lines)


def analyze_commits(ctx: RunContext, git_cmd: GitInterface, base: str, head: str) -> CommitAnalysis:
    commits = git_cmd.commits_between(ctx, base, head)
    if not commits:
        logger.debug(f"No commits between {base} and {head}")
        return CommitAnalysis(title_from_branch(head), "No commits found in this branch", base)

    if len(commits) == 1:
        title, summary = _from_single(commits[0])
    else:
        title, summary = _from_several(commits)
    analysis = CommitAnalysis(
        title=title,
        summary=summary,
        base_branch=base,
        commit_count=len(commits),
        has_merge_commits=any(c.message.strip().startswith("Merge") for c in commits),
        messages=[c.message for c in commits],
    )
    logger.debug(f"Analyzed {analysis.commit_count} commit(s): title={analysis.title!r}")
    return analysis
