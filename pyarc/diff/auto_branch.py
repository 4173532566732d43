"""Moving commits made directly on trunk onto a new feature branch."""

import random
import string
import time
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Collection, IO, List, Optional, Tuple

import click

from ..config.models import PyarcConfig
from ..git import GitError, GitInterface, RemoteBranchExistsError, sanitize_branch_name
from ..prompt import PrompterInterface
from ..typing import (
    AutoBranchCheckoutError, BranchNameExhaustedError, OperationInterruptedError,
    RemoteBranchCollisionError, RunContext, StaleRemoteDeclinedError, UserCancelledError,
)
from ..util import short_sha

logger = logging.getLogger(__name__)

MAX_PUSH_ATTEMPTS = 3
MAX_NAME_SUFFIX = 100
PROMPT_PATTERN = "null"
RANDOM_CHARS = string.ascii_lowercase + string.digits


class AutoBranchState(str, Enum):
    IDLE = "idle"
    DETECTED = "detected"
    PREPARED = "prepared"
    PUSHED = "pushed"
    CHECKED_OUT = "checked-out"
    CHECKOUT_FAILED = "checkout-failed"


@dataclass(frozen=True)
class DetectionResult:
    on_trunk: bool
    commits_ahead: int
    trunk_name: str


@dataclass
class AutoBranchPlan:
    """Name to push under. Only the collision retry changes branch_name."""
    branch_name: str
    should_proceed: bool = True


@dataclass
class AutoBranchExecution:
    branch_name: str
    state: AutoBranchState
    push_attempts: List[str] = field(default_factory=list)
    checkout_error: Optional[AutoBranchCheckoutError] = None


def default_branch_name(now: float) -> str:
    return f"feature/auto-from-main-{int(now)}"


def format_age(hours: float) -> str:
    days, rem = divmod(int(hours), 24)
    if days > 0:
        return f"{days} day(s) and {rem} hour(s)"
    return f"{rem} hour(s)"


class AutoBranchOrchestrator:
    """Drives Idle -> Detected -> Prepared -> Pushed -> CheckedOut.

    A failed checkout ends in CheckoutFailed, which callers treat as a
    warning: the branch exists on the remote and the PR can still be made.
    """

    def __init__(self, config: PyarcConfig, git_cmd: GitInterface, prompter: PrompterInterface,
                 output: Optional[IO[str]] = None, clock: Callable[[], float] = time.time,
                 rng: Optional[random.Random] = None):
        self.config = config
        self.git_cmd = git_cmd
        self.prompter = prompter
        self.output = output
        self.clock = clock
        self.rng = rng or random.Random()
        self.state = AutoBranchState.IDLE

    @property
    def remote(self) -> str:
        return self.config.repo.github_remote

    def _echo(self, text: str = "") -> None:
        click.echo(text, file=self.output)

    def detect(self, ctx: RunContext) -> DetectionResult:
        """Check whether we are on trunk with commits not on its remote."""
        current = self.git_cmd.current_branch(ctx)
        trunk = self.git_cmd.default_branch(ctx)
        if current != trunk:
            logger.debug(f"On {current}, not trunk {trunk}; no auto-branch")
            return DetectionResult(False, 0, trunk)

        remote_ref = f"{self.remote}/{trunk}"
        ahead = self.git_cmd.count_commits_ahead(ctx, remote_ref, current)
        logger.debug(f"{current} is {ahead} commit(s) ahead of {remote_ref}")
        result = DetectionResult(True, ahead, trunk)
        if self.should_auto_branch(result):
            self.state = AutoBranchState.DETECTED
        return result

    @staticmethod
    def should_auto_branch(result: DetectionResult) -> bool:
        return result.on_trunk and result.commits_ahead > 0

    def check_stale_remote(self, ctx: RunContext, trunk: str) -> None:
        """Ask before continuing when the trunk tracking ref is old.

        Raises StaleRemoteDeclinedError when the user says no.
        """
        threshold = self.config.diff.stale_remote_threshold_hours
        if threshold <= 0:
            return
        remote_ref = f"{self.remote}/{trunk}"
        age = self.git_cmd.remote_ref_age(ctx, remote_ref)
        if age is None:
            logger.debug(f"{remote_ref} not found, skipping stale check")
            return
        hours = age.total_seconds() / 3600
        if hours <= threshold:
            return

        self._echo()
        self._echo(f"⚠️  Warning: Your local tracking branch '{remote_ref}' is {format_age(hours)} old.")
        self._echo("This means your local repository may be out of sync with the remote.")
        self._echo(f"Consider running 'git fetch {self.remote}' to update your local tracking branches.")
        self._echo()
        if not self.prompter.confirm(ctx, "Continue anyway?", default=False):
            raise StaleRemoteDeclinedError(remote_ref, hours)
        logger.warning(f"Continuing with stale {remote_ref} ({format_age(hours)} old)")

    def generate_branch_name(self, ctx: RunContext) -> Tuple[str, bool]:
        """Expand the configured pattern. Returns (name, should_prompt)."""
        pattern = self.config.diff.auto_branch_name_pattern
        now = self.clock()
        if pattern == PROMPT_PATTERN:
            return "", True
        if not pattern:
            return default_branch_name(now), False

        stamp = datetime.fromtimestamp(now)
        name = pattern
        if "{timestamp}" in name:
            name = name.replace("{timestamp}", str(int(now)))
        if "{date}" in name:
            name = name.replace("{date}", stamp.strftime("%Y-%m-%d"))
        if "{datetime}" in name:
            name = name.replace("{datetime}", stamp.strftime("%Y-%m-%dT%H%M%S"))
        if "{username}" in name:
            username = sanitize_branch_name(self.git_cmd.get_config(ctx, "user.name")) or "user"
            name = name.replace("{username}", username)
        if "{random}" in name:
            name = name.replace("{random}", "".join(self.rng.choice(RANDOM_CHARS) for _ in range(6)))
        return name, False

    def ensure_unique_branch_name(self, ctx: RunContext, base_name: str,
                                  exclude: Collection[str] = ()) -> str:
        """First of name, name-1 .. name-100 with no local branch.

        Names in `exclude` count as taken.
        """
        def taken(name: str) -> bool:
            return name in exclude or self.git_cmd.branch_exists(ctx, name)

        if not taken(base_name):
            return base_name
        for i in range(1, MAX_NAME_SUFFIX + 1):
            candidate = f"{base_name}-{i}"
            if not taken(candidate):
                logger.debug(f"Using {candidate} after {i} collision(s) on {base_name}")
                return candidate
        raise BranchNameExhaustedError(base_name, MAX_NAME_SUFFIX)

    def _show_commits(self, ctx: RunContext, trunk: str) -> None:
        try:
            commits = self.git_cmd.commits_between(ctx, f"{self.remote}/{trunk}", trunk)
        except GitError as e:
            logger.warning(f"Failed to list commits on {trunk}: {e}")
            return
        if not commits:
            return
        self._echo()
        self._echo(f"The following {len(commits)} commit(s) on the main branch will be moved to a new feature branch:")
        self._echo()
        for commit in commits:
            subject = commit.subject
            if len(subject) > 80:
                subject = subject[:77] + "..."
            self._echo(f"  - {short_sha(commit.sha, 7)} {subject}")
        self._echo()

    def prepare(self, ctx: RunContext, detection: DetectionResult) -> AutoBranchPlan:
        """Confirm with the user and pick a free branch name."""
        self.check_stale_remote(ctx, detection.trunk_name)

        if not self.config.diff.auto_create_branch_from_main:
            self._show_commits(ctx, detection.trunk_name)
            if not self.prompter.confirm(ctx, "Create feature branch automatically?", default=True):
                raise UserCancelledError()

        name, should_prompt = self.generate_branch_name(ctx)
        if should_prompt:
            name = self.prompter.prompt_branch_name(ctx, default_branch_name(self.clock()))

        unique = self.ensure_unique_branch_name(ctx, name)
        logger.info(f"Will create feature branch {unique} from {detection.trunk_name}")
        self.state = AutoBranchState.PREPARED
        return AutoBranchPlan(unique, True)

    def push_with_retry(self, ctx: RunContext, plan: AutoBranchPlan,
                        max_attempts: int = MAX_PUSH_ATTEMPTS) -> List[str]:
        """Push HEAD under plan.branch_name, renaming on remote collisions.

        Each new name is derived from the original requested name. Returns
        the names attempted, the last one being the name that was pushed.
        """
        original = plan.branch_name
        attempted: List[str] = []
        for attempt in range(1, max_attempts + 1):
            attempted.append(plan.branch_name)
            try:
                self.git_cmd.push_branch(ctx, "HEAD", plan.branch_name)
            except RemoteBranchExistsError:
                logger.warning(f"Remote branch {plan.branch_name} already exists (attempt {attempt}/{max_attempts})")
                if attempt == max_attempts:
                    raise RemoteBranchCollisionError(original, max_attempts)
                plan.branch_name = self.ensure_unique_branch_name(ctx, original, exclude=attempted)
                continue
            logger.info(f"Pushed {plan.branch_name} (attempt {attempt})")
            self.state = AutoBranchState.PUSHED
            return attempted
        raise RemoteBranchCollisionError(original, max_attempts)

    def execute(self, ctx: RunContext, plan: AutoBranchPlan) -> AutoBranchExecution:
        """Push the branch then check it out locally.

        Checkout failure does not raise; it is reported in the result.
        """
        attempted = self.push_with_retry(ctx, plan)
        remote_ref = f"{self.remote}/{plan.branch_name}"
        try:
            self.git_cmd.checkout_tracking_branch(ctx, plan.branch_name, remote_ref)
        except OperationInterruptedError:
            raise
        except Exception as e:
            checkout_error = AutoBranchCheckoutError(plan.branch_name, e)
            logger.warning(f"Failed to check out {plan.branch_name}: {e}")
            self.state = AutoBranchState.CHECKOUT_FAILED
            return AutoBranchExecution(plan.branch_name, self.state, attempted, checkout_error)
        self.state = AutoBranchState.CHECKED_OUT
        return AutoBranchExecution(plan.branch_name, self.state, attempted)
