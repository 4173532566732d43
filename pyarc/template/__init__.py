"""PR description templates: generation, parsing, validation and persistence."""

import os
import re
import time
import random
import string
import logging
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol

import click

from ..github import PullRequest
from ..typing import EditorCancelledError, RunContext

# Get module logger
logger = logging.getLogger(__name__)

MARKER_TITLE = "# Title:"
MARKER_SUMMARY = "# Summary:"
MARKER_TEST_PLAN = "# Test Plan:"
MARKER_REVIEWERS = "# Reviewers:"
MARKER_REF = "# Ref:"
MARKER_DRAFT = "# Draft:"
MARKER_BASE_BRANCH = "# Base Branch:"

SECTION_START = "# =========="
SECTION_END = "# ----------"

SAVED_PREFIX = "pyarc-diff-saved-"

CREATING_PR_RE = re.compile(r'^# Creating PR:\s*(\S+)\s*→\s*(\S+)')
STACKED_RE = re.compile(r'^# 📚 Creating stacked PR on\s+(\S+)')
BASE_BRANCH_RE = re.compile(r'^# Base Branch:\s*(\S+?)\s*(?:\(read-only\))?\s*$')


@dataclass
class TemplateFields:
    """Fields the user filled in."""
    title: str = ""
    summary: str = ""
    test_plan: str = ""
    reviewers: List[str] = field(default_factory=list)
    ref: List[str] = field(default_factory=list)
    draft: bool = False
    base_branch: str = ""


@dataclass
class StackingContext:
    """Where the PR goes, shown in the template header."""
    is_stacking: bool
    base_branch: str
    current_branch: str
    parent_pr: Optional[PullRequest] = None
    dependent_prs: List[PullRequest] = field(default_factory=list)
    show_dependents: bool = True


class TemplateGenerator:
    """Builds the text the user edits."""

    def __init__(self, stacking: Optional[StackingContext], title: str = "", summary: str = "",
                 reviewers: Optional[List[str]] = None, linear_enabled: bool = False,
                 default_draft: bool = True):
        self.stacking = stacking
        self.title = title
        self.summary = summary
        self.reviewers = reviewers or []
        self.linear_enabled = linear_enabled
        self.default_draft = default_draft

    def generate(self) -> str:
        lines: List[str] = []
        self._header(lines)
        self._fields(lines)
        lines.append("")
        lines.append(SECTION_START)
        editor = os.environ.get("EDITOR", "")
        if "vim" in editor:
            lines.append("# vim: set filetype=gitcommit:")
        return "\n".join(lines) + "\n"

    def _header(self, lines: List[str]) -> None:
        lines += [SECTION_START, "# Pull Request Template", "#"]
        ctx = self.stacking
        if ctx is not None and ctx.is_stacking:
            header = f"# 📚 Creating stacked PR on {ctx.base_branch}"
            if ctx.parent_pr is not None:
                header += f" (PR #{ctx.parent_pr.number}: {ctx.parent_pr.title})"
            lines += [header, "#"]
        elif ctx is not None:
            lines += [f"# Creating PR: {ctx.current_branch} → {ctx.base_branch}", "#"]

        if ctx is not None and ctx.show_dependents and ctx.dependent_prs:
            lines.append("# ⚠️  WARNING: Dependent PRs target this branch:")
            for dep in ctx.dependent_prs:
                author = f" (@{dep.user_login})" if dep.user_login else ""
                lines.append(f"#    • PR #{dep.number}: {dep.title}{author}")
            lines.append("#")

        lines.append("# Fill in the fields below. Lines starting with # are ignored.")
        lines.append("# Required fields: Title, Test Plan")
        lines += [SECTION_END, ""]

    def _fields(self, lines: List[str]) -> None:
        lines.append(MARKER_TITLE)
        if self.title:
            lines.append(self.title)
        lines.append("")

        lines.append(MARKER_SUMMARY)
        lines.append(self.summary if self.summary else "# Optional summary of the changes")
        lines.append("")

        lines += [MARKER_TEST_PLAN, "# Describe how you tested these changes", ""]

        lines += [MARKER_REVIEWERS, "# Comma-separated list of @usernames or @org/team"]
        if self.reviewers:
            lines.append("# Suggestions: " + ", ".join(self.reviewers))
        lines.append("")

        lines += [MARKER_DRAFT, "# Set to 'true' or 'false' to control draft status",
                  "true" if self.default_draft else "false", ""]

        if self.linear_enabled:
            lines += [MARKER_REF, "# Comma-separated Linear issue IDs (e.g., ENG-123, ENG-456)", ""]

        if self.stacking is not None:
            lines.append(f"{MARKER_BASE_BRANCH} {self.stacking.base_branch} (read-only)")


def _split_list(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


_SETTERS: Dict[str, Callable[[TemplateFields, str], None]] = {
    MARKER_TITLE: lambda f, v: setattr(f, "title", v),
    MARKER_SUMMARY: lambda f, v: setattr(f, "summary", v),
    MARKER_TEST_PLAN: lambda f, v: setattr(f, "test_plan", v),
    MARKER_REVIEWERS: lambda f, v: setattr(f, "reviewers", _split_list(v)),
    MARKER_REF: lambda f, v: setattr(f, "ref", _split_list(v)),
    MARKER_DRAFT: lambda f, v: setattr(f, "draft", v.strip().lower() == "true"),
}


def parse_template(content: str) -> TemplateFields:
    """Parse edited template text into fields.

    Text under a marker belongs to that field until the next marker.
    Other lines starting with "#" are comments and are dropped.
    """
    fields = TemplateFields()
    section: Optional[str] = None
    value: List[str] = []

    def flush() -> None:
        if section is not None:
            _SETTERS[section](fields, "\n".join(value).strip())

    for line in content.splitlines():
        marker = next((m for m in _SETTERS if line.startswith(m)), None)
        if marker is not None:
            flush()
            section, value = marker, []
            continue
        if line.startswith(MARKER_BASE_BRANCH):
            flush()
            section, value = None, []
            continue
        if line.startswith("#"):
            continue
        if section is not None:
            value.append(line)
    flush()

    fields.base_branch = extract_base_branch(content) or ""
    return fields


def extract_base_branch(content: str) -> Optional[str]:
    """Recover the base branch recorded in a template, if any."""
    for line in content.splitlines():
        line = line.rstrip()
        for pattern in (CREATING_PR_RE, STACKED_RE, BASE_BRANCH_RE):
            match = pattern.match(line)
            if match:
                return match.groups()[-1]
    return None


def is_template_empty(content: str) -> bool:
    """True when every line is blank or a comment."""
    return all(not line.strip() or line.strip().startswith("#") for line in content.splitlines())


def validate_fields(fields: TemplateFields, require_test_plan: bool,
                    stacking: Optional[StackingContext] = None) -> List[str]:
    """Human-readable reasons the fields cannot be used, empty when valid."""
    reasons: List[str] = []
    stacked = stacking is not None and stacking.is_stacking
    if not fields.title:
        if stacked:
            reasons.append(f"Title is required for stacked PR on {stacking.base_branch}")
        else:
            reasons.append("Title is required")

    if require_test_plan and not fields.test_plan:
        if stacked and stacking.parent_pr is not None:
            reasons.append(f"Test Plan is required for stacked PR on {stacking.base_branch} "
                           f"(PR #{stacking.parent_pr.number})")
        elif stacked:
            reasons.append(f"Test Plan is required for stacked PR on {stacking.base_branch}")
        else:
            reasons.append("Test Plan is required")

    for reviewer in fields.reviewers:
        if not reviewer.startswith("@"):
            reasons.append(f"invalid reviewer format: {reviewer} (should start with @)")
    return reasons


def format_validation_errors(reasons: List[str], stacking: Optional[StackingContext] = None) -> str:
    if not reasons:
        return ""
    out: List[str] = []
    if stacking is not None and stacking.is_stacking:
        out.append("✗ Template validation failed for stacked PR:")
        stack = f"  Stack: {stacking.current_branch} → {stacking.base_branch}"
        if stacking.parent_pr is not None:
            stack += f" (PR #{stacking.parent_pr.number})"
        out += [stack, ""]
    else:
        out.append("✗ Template validation failed:")
    out += [f"  • {reason}" for reason in reasons]
    return "\n".join(out)


def build_pr_body(fields: TemplateFields) -> str:
    """PR body from summary, test plan and refs."""
    body = fields.summary
    if fields.test_plan:
        body += "\n\n## Test Plan\n" + fields.test_plan
    if fields.ref:
        body += "\n\n**Ref:** " + ", ".join(fields.ref)
    return body.strip()


def build_pr_title(fields: TemplateFields, linear_enabled: bool) -> str:
    if linear_enabled and fields.ref:
        return f"{fields.title} [{', '.join(fields.ref)}]"
    return fields.title


class Editor(Protocol):
    def edit(self, ctx: RunContext, text: str) -> str: ...


class ClickEditor:
    """Opens $EDITOR through click."""

    def edit(self, ctx: RunContext, text: str) -> str:
        ctx.check()
        logger.debug("Opening editor")
        edited = click.edit(text, extension=".md", require_save=True)
        # Editing can take arbitrarily long
        ctx.check()
        if edited is None or not edited.strip() or is_template_empty(edited):
            raise EditorCancelledError()
        return edited


class TemplateStore:
    """Persisted PR descriptions, one file per saved copy."""

    def __init__(self, directory: Optional[str] = None):
        self.directory = Path(directory or tempfile.gettempdir())

    def save(self, content: str) -> str:
        """Write content to a new file and return its path."""
        self.directory.mkdir(parents=True, exist_ok=True)
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
        path = self.directory / f"{SAVED_PREFIX}{time.time_ns()}-{suffix}.md"
        path.write_text(content, encoding="utf-8")
        logger.debug(f"Saved template to {path}")
        return str(path)

    def load(self, path: str) -> str:
        if not path:
            raise ValueError("no saved template path provided")
        return Path(path).read_text(encoding="utf-8")

    def find(self) -> List[str]:
        """Saved template paths, newest first."""
        entries = []
        for path in self.directory.glob(f"{SAVED_PREFIX}*.md"):
            try:
                entries.append((path.stat().st_mtime_ns, path.name, str(path)))
            except FileNotFoundError:
                logger.warning(f"Saved template {path} vanished while listing")
        entries.sort(reverse=True)
        return [p for _mtime, _name, p in entries]

    def remove(self, path: Optional[str]) -> None:
        """Delete a saved template. Missing files are not an error."""
        if not path:
            return
        try:
            os.remove(path)
            logger.debug(f"Removed saved template {path}")
        except FileNotFoundError:
            logger.debug(f"Saved template {path} already gone")
