"""Git interfaces and implementation."""

import os
import re
import shlex
import logging
import time
from datetime import timedelta
from typing import List, Optional, Protocol, Tuple
import git
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from ..typing import (
    AuthenticationFailedError, BranchRef, CommitHash, CommitInfo, RunContext,
)
from ..config.models import PyarcConfig

# Get module logger
logger = logging.getLogger(__name__)

# Unit and record separators used to split `git log` output
FIELD_SEP = "\x1f"
RECORD_SEP = "\x1e"

# Characters git refuses in ref names
INVALID_REF_CHARS = re.compile(r'[~^:?*\[\]\\]')
DASH_RUNS = re.compile(r'-{2,}')


class GitError(Exception):
    """A git command failed."""


class RemoteBranchExistsError(GitError):
    """Push was rejected because the remote already has that branch."""


class GitInterface(Protocol):
    """Git capabilities used by the diff engine.

    Every method takes the run context first and checks it before blocking.
    """
    def run_cmd(self, ctx: RunContext, command: str) -> str: ...
    def remote_url(self, ctx: RunContext, remote: str) -> str: ...
    def current_branch(self, ctx: RunContext) -> str: ...
    def default_branch(self, ctx: RunContext) -> str: ...
    def list_branches(self, ctx: RunContext) -> List[BranchRef]: ...
    def rev_parse(self, ctx: RunContext, ref: str) -> Optional[CommitHash]: ...
    def merge_base(self, ctx: RunContext, ref1: str, ref2: str) -> Optional[CommitHash]: ...
    def is_ancestor(self, ctx: RunContext, ancestor: str, descendant: str) -> bool: ...
    def commits_between(self, ctx: RunContext, base: str, head: str) -> List[CommitInfo]: ...
    def count_commits_ahead(self, ctx: RunContext, base: str, head: str) -> int: ...
    def branch_exists(self, ctx: RunContext, name: str) -> bool: ...
    def get_config(self, ctx: RunContext, key: str) -> str: ...
    def push_branch(self, ctx: RunContext, source: str, target: str) -> None: ...
    def push(self, ctx: RunContext, branch: str) -> None: ...
    def has_unpushed_commits(self, ctx: RunContext, branch: str) -> bool: ...
    def checkout_tracking_branch(self, ctx: RunContext, local: str, remote_ref: str) -> None: ...
    def remote_ref_age(self, ctx: RunContext, remote_ref: str) -> Optional[timedelta]: ...


def sanitize_branch_name(name: str) -> str:
    """Make a string safe to use as a git branch name.

    Lowercases, replaces whitespace and ".." with "-", drops characters
    git forbids in refs and collapses repeated dashes. Applying it twice
    gives the same result as applying it once.
    """
    name = name.strip().lower()
    name = re.sub(r'\s+', '-', name)
    name = INVALID_REF_CHARS.sub('', name)
    while '..' in name:
        name = name.replace('..', '-')
    name = DASH_RUNS.sub('-', name)
    return name.strip('-./')


def parse_commit_log(output: str) -> List[CommitInfo]:
    """Parse `git log --format=%H%x1f%an%x1f%B%x1e` output."""
    commits: List[CommitInfo] = []
    for record in output.split(RECORD_SEP):
        record = record.strip("\n")
        if not record.strip():
            continue
        parts = record.split(FIELD_SEP, 2)
        if len(parts) != 3:
            logger.debug(f"Skipping malformed log record: {record!r}")
            continue
        sha, author, message = parts
        commits.append(CommitInfo(CommitHash(sha.strip()), message.strip(), author.strip()))
    return commits


def parse_commit_message(message: str) -> Tuple[str, str]:
    """Split a commit message into (subject, body)."""
    lines = message.strip().split("\n")
    subject = lines[0].strip() if lines else ""
    body = "\n".join(lines[1:]).strip()
    return subject, body


def is_non_fast_forward(output: str) -> bool:
    return "[rejected]" in output and "non-fast-forward" in output


def is_auth_failure(output: str) -> bool:
    lowered = output.lower()
    return any(marker in lowered for marker in (
        "authentication failed",
        "permission denied",
        "could not read username",
        "invalid username or password",
        "the requested url returned error: 403",
    ))


def is_remote_branch_exists(output: str) -> bool:
    lowered = output.lower()
    return ("already exists" in lowered
            or "fetch first" in lowered
            or ("[rejected]" in lowered and "non-fast-forward" in lowered))


def classify_push_error(target: str, e: GitCommandError) -> Exception:
    """Turn a failed push into the error callers switch on."""
    output = f"{e.stderr or ''}\n{e.stdout or ''}\n{e}"
    if is_auth_failure(output):
        return AuthenticationFailedError(f"authentication failed pushing {target}: {e.stderr or e}")
    if is_remote_branch_exists(output):
        return RemoteBranchExistsError(f"remote branch {target} already exists")
    return GitError(f"failed to push {target}: {e.stderr or e}")


class RealGit:
    """Real Git implementation."""
    def __init__(self, config: PyarcConfig, path: Optional[str] = None):
        """Initialize with config."""
        self.config: PyarcConfig = config
        self.path = path or os.getcwd()
        self._repo: Optional[git.Repo] = None

    @property
    def remote(self) -> str:
        return self.config.repo.github_remote

    def _git(self) -> git.Git:
        if self._repo is None:
            try:
                self._repo = git.Repo(self.path, search_parent_directories=True)
            except (InvalidGitRepositoryError, NoSuchPathError):
                raise GitError(f"Not in a git repository: {self.path}")
        return self._repo.git

    def run_cmd(self, ctx: RunContext, command: str) -> str:
        """Run git command."""
        ctx.check()
        cmd_str = command.strip()
        cmd_parts = shlex.split(cmd_str)
        mutating = cmd_parts[0] in ("push", "checkout")

        if self.config.tool.pretend and cmd_parts[0] == 'push':
            # Pretend mode - just log
            logger.info(f"> git {cmd_str} (pretend)")
            return ""

        if mutating or self.config.user.log_git_commands:
            logger.info(f"> git {cmd_str}")
        else:
            logger.debug(f"> git {cmd_str}")

        git_cmd = self._git()
        method = getattr(git_cmd, cmd_parts[0].replace('-', '_'))
        result = method(*cmd_parts[1:])
        return result if isinstance(result, str) else str(result)

    def must_git(self, ctx: RunContext, command: str) -> str:
        """Run git command, wrapping failures in GitError."""
        try:
            return self.run_cmd(ctx, command)
        except GitCommandError as e:
            raise GitError(f"Git command failed: {e}") from e

    def remote_url(self, ctx: RunContext, remote: str) -> str:
        return self.must_git(ctx, f"remote get-url {remote}").strip()

    def current_branch(self, ctx: RunContext) -> str:
        branch = self.must_git(ctx, "rev-parse --abbrev-ref HEAD").strip()
        if branch == "HEAD":
            raise GitError("HEAD is detached; check out a branch first")
        return branch

    def default_branch(self, ctx: RunContext) -> str:
        """Trunk from origin/HEAD, falling back to the configured branch."""
        try:
            ref = self.run_cmd(ctx, f"symbolic-ref --short refs/remotes/{self.remote}/HEAD").strip()
        except GitCommandError:
            logger.debug(f"No {self.remote}/HEAD, using configured trunk {self.config.repo.github_branch}")
            return self.config.repo.github_branch
        prefix = f"{self.remote}/"
        return ref[len(prefix):] if ref.startswith(prefix) else ref

    def list_branches(self, ctx: RunContext) -> List[BranchRef]:
        output = self.must_git(ctx, "for-each-ref --format=%(refname:short)%x1f%(objectname) refs/heads")
        branches: List[BranchRef] = []
        for line in output.splitlines():
            if FIELD_SEP not in line:
                continue
            name, sha = line.split(FIELD_SEP, 1)
            branches.append(BranchRef(name.strip(), CommitHash(sha.strip())))
        return branches

    def rev_parse(self, ctx: RunContext, ref: str) -> Optional[CommitHash]:
        try:
            return CommitHash(self.run_cmd(ctx, f"rev-parse --verify --quiet {ref}^{{commit}}").strip())
        except GitCommandError:
            return None

    def merge_base(self, ctx: RunContext, ref1: str, ref2: str) -> Optional[CommitHash]:
        """Best common ancestor, None when the histories are unrelated."""
        try:
            sha = self.run_cmd(ctx, f"merge-base {ref1} {ref2}").strip()
        except GitCommandError as e:
            # Exit status 1 with no output means no common ancestor
            if e.status == 1 and not (e.stderr or "").strip():
                return None
            raise GitError(f"merge-base {ref1} {ref2} failed: {e}") from e
        return CommitHash(sha) if sha else None

    def is_ancestor(self, ctx: RunContext, ancestor: str, descendant: str) -> bool:
        try:
            self.run_cmd(ctx, f"merge-base --is-ancestor {ancestor} {descendant}")
            return True
        except GitCommandError as e:
            if e.status == 1:
                return False
            raise GitError(f"ancestor test {ancestor} {descendant} failed: {e}") from e

    def commits_between(self, ctx: RunContext, base: str, head: str) -> List[CommitInfo]:
        """Commits reachable from head but not base, oldest first."""
        output = self.must_git(ctx, f"log --reverse --format=%H%x1f%an%x1f%B%x1e {base}..{head}")
        return parse_commit_log(output)

    def count_commits_ahead(self, ctx: RunContext, base: str, head: str) -> int:
        output = self.must_git(ctx, f"rev-list --count {base}..{head}").strip()
        return int(output or "0")

    def branch_exists(self, ctx: RunContext, name: str) -> bool:
        try:
            self.run_cmd(ctx, f"show-ref --verify --quiet refs/heads/{name}")
            return True
        except GitCommandError:
            return False

    def get_config(self, ctx: RunContext, key: str) -> str:
        """Value of a git config key, empty when unset."""
        try:
            return self.run_cmd(ctx, f"config --get {key}").strip()
        except GitCommandError:
            return ""

    def push_branch(self, ctx: RunContext, source: str, target: str) -> None:
        """Push source to a new remote branch without forcing."""
        try:
            self.run_cmd(ctx, f"push {self.remote} {source}:refs/heads/{target}")
        except GitCommandError as e:
            raise classify_push_error(target, e) from e

    def push(self, ctx: RunContext, branch: str) -> None:
        """Push a branch, retrying with --force-with-lease after a rebase."""
        try:
            self.run_cmd(ctx, f"push {self.remote} {branch}")
            return
        except GitCommandError as e:
            output = f"{e.stderr or ''}\n{e}"
            if is_auth_failure(output):
                raise AuthenticationFailedError(f"authentication failed pushing {branch}") from e
            if not is_non_fast_forward(output):
                raise GitError(f"failed to push branch {branch}: {e.stderr or e}") from e
        logger.info(f"Non-fast-forward push of {branch}, retrying with --force-with-lease")
        try:
            self.run_cmd(ctx, f"push --force-with-lease {self.remote} {branch}")
        except GitCommandError as e:
            raise GitError(f"failed to force push branch {branch}: {e.stderr or e}") from e

    def has_unpushed_commits(self, ctx: RunContext, branch: str) -> bool:
        """True when the remote branch is missing or behind the local one."""
        remote_ref = f"{self.remote}/{branch}"
        if self.rev_parse(ctx, remote_ref) is None:
            return True
        return self.count_commits_ahead(ctx, remote_ref, branch) > 0

    def checkout_tracking_branch(self, ctx: RunContext, local: str, remote_ref: str) -> None:
        if self.branch_exists(ctx, local):
            self.must_git(ctx, f"checkout {local}")
            self.must_git(ctx, f"branch --set-upstream-to={remote_ref} {local}")
            return
        self.must_git(ctx, f"checkout -b {local} --track {remote_ref}")

    def remote_ref_age(self, ctx: RunContext, remote_ref: str) -> Optional[timedelta]:
        """Time since the remote tracking ref was last updated.

        Uses the newest reflog entry, or the commit date when the ref has
        no reflog. None when the ref does not exist.
        """
        if self.rev_parse(ctx, remote_ref) is None:
            return None
        try:
            stamp = self.run_cmd(ctx, f"log -g -n 1 --format=%ct refs/remotes/{remote_ref}").strip()
        except GitCommandError:
            stamp = ""
        if not stamp:
            stamp = self.must_git(ctx, f"log -1 --format=%ct {remote_ref}").strip()
        return timedelta(seconds=max(0, int(time.time()) - int(stamp)))
