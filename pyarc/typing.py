"""Common types and errors used across the codebase."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, NewType, Optional

# Commit identifiers are compared by equality only
CommitHash = NewType('CommitHash', str)


@dataclass(frozen=True)
class BranchRef:
    """A local branch name and the commit it points to."""
    name: str
    commit: CommitHash


@dataclass(frozen=True)
class CommitInfo:
    """A commit as returned by a range query."""
    sha: CommitHash
    message: str
    author: str = ""

    @property
    def subject(self) -> str:
        return self.message.split("\n", 1)[0].strip()


class ErrorKind(str, Enum):
    """Conditions callers are expected to tell apart."""
    STALE_REMOTE_DECLINED = "stale-remote-declined"
    USER_CANCELLED = "user-cancelled"
    AUTO_BRANCH_CHECKOUT_FAILED = "auto-branch-checkout-failed"
    REMOTE_BRANCH_COLLISION_EXHAUSTED = "remote-branch-collision-exhausted"
    BRANCH_NAME_EXHAUSTED = "branch-name-exhausted"
    AUTHENTICATION_FAILED = "authentication-failed"
    TEMPLATE_VALIDATION_FAILED = "template-validation-failed"
    TEMPLATE_CORRUPTED = "template-corrupted"
    NO_SAVED_TEMPLATE = "no-saved-template"
    OPERATION_INTERRUPTED = "operation-interrupted"


class ArcError(Exception):
    """Base class for conditions with a distinguishable kind."""
    kind: ErrorKind


class StaleRemoteDeclinedError(ArcError):
    """User declined to continue with a stale remote tracking ref."""
    kind = ErrorKind.STALE_REMOTE_DECLINED

    def __init__(self, remote_ref: str, age_hours: float):
        self.remote_ref = remote_ref
        self.age_hours = age_hours
        super().__init__(f"operation declined: {remote_ref} was last fetched {age_hours:.0f} hour(s) ago")


class UserCancelledError(ArcError):
    """User answered no to a confirmation, or gave up answering."""
    kind = ErrorKind.USER_CANCELLED

    def __init__(self, message: str = "operation cancelled by user"):
        super().__init__(message)


class EditorCancelledError(UserCancelledError):
    """Editor closed without saving, or the template was emptied."""

    def __init__(self, message: str = "editor cancelled: template unchanged or empty"):
        super().__init__(message)


class AutoBranchCheckoutError(ArcError):
    """Local checkout of a pushed auto-branch failed.

    This is a non-fatal condition: it is handed back to the caller inside
    the auto-branch result instead of being raised.
    """
    kind = ErrorKind.AUTO_BRANCH_CHECKOUT_FAILED

    def __init__(self, branch_name: str, cause: Exception):
        self.branch_name = branch_name
        self.cause = cause
        super().__init__(f"checkout of {branch_name} failed: {cause}")


class RemoteBranchCollisionError(ArcError):
    """Every push attempt hit an existing remote branch."""
    kind = ErrorKind.REMOTE_BRANCH_COLLISION_EXHAUSTED

    def __init__(self, branch_name: str, attempts: int):
        self.branch_name = branch_name
        self.attempts = attempts
        super().__init__(f"failed to push branch after {attempts} attempts due to name collisions (base: {branch_name})")


class BranchNameExhaustedError(ArcError):
    """No free local branch name was found within the suffix limit."""
    kind = ErrorKind.BRANCH_NAME_EXHAUSTED

    def __init__(self, base_name: str, limit: int):
        self.base_name = base_name
        self.limit = limit
        super().__init__(f"failed to generate unique branch name after {limit} attempts (base: {base_name})")


class AuthenticationFailedError(ArcError):
    """Git or GitHub rejected our credentials."""
    kind = ErrorKind.AUTHENTICATION_FAILED


class TemplateValidationError(ArcError):
    """Edited template is missing required fields."""
    kind = ErrorKind.TEMPLATE_VALIDATION_FAILED

    def __init__(self, reasons: List[str], path: Optional[str], details: str = ""):
        self.reasons = list(reasons)
        self.path = path
        self.details = details
        message = details or "template validation failed: " + "; ".join(self.reasons)
        if path:
            message += f"\n\nTemplate saved to: {path}\nFix the issues and run:\n  arc diff --continue"
        super().__init__(message)


class TemplateCorruptedError(ArcError):
    """Saved template has no recoverable base branch marker."""
    kind = ErrorKind.TEMPLATE_CORRUPTED

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"failed to extract base branch from template {path} (template may be corrupted)")


class NoSavedTemplateError(ArcError):
    """Continue was requested but nothing was persisted."""
    kind = ErrorKind.NO_SAVED_TEMPLATE

    def __init__(self) -> None:
        super().__init__("no saved template found (use 'arc diff --edit' to start fresh)")


class OperationInterruptedError(ArcError):
    """The run context was cancelled before a blocking call."""
    kind = ErrorKind.OPERATION_INTERRUPTED

    def __init__(self, message: str = "operation interrupted"):
        super().__init__(message)


@dataclass
class RunContext:
    """Cancellation token threaded through every collaborator call."""
    cancelled: bool = False
    reason: str = ""
    checks: int = field(default=0, repr=False)

    def cancel(self, reason: str = "interrupted") -> None:
        self.cancelled = True
        self.reason = reason

    def check(self) -> None:
        """Raise if the run was cancelled. Called at every blocking boundary."""
        self.checks += 1
        if self.cancelled:
            raise OperationInterruptedError(f"operation interrupted: {self.reason}")
