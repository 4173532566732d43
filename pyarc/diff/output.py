"""Human-readable and JSON rendering of arc command results."""

from typing import Any, Dict, List, Optional

import click

from ..github import PullRequest
from .analysis import CommitAnalysis
from .workflow import DiffResult


class OutputStyle:
    """Terminal styling. With use_color off every method returns plain text."""

    def __init__(self, use_color: bool = True):
        self.use_color = use_color

    def _styled(self, symbol: str, message: str, fg: str) -> str:
        if not self.use_color:
            return f"{symbol} {message}"
        return f"{click.style(symbol, fg=fg)} {click.style(message, fg=fg)}"

    def error(self, message: str) -> str:
        return self._styled("✗", message, "red")

    def warning(self, message: str) -> str:
        return self._styled("⚠", message, "yellow")

    def success(self, message: str) -> str:
        return self._styled("✓", message, "green")

    def info(self, message: str) -> str:
        return self._styled("ℹ", message, "blue")

    def highlight(self, text: str) -> str:
        return click.style(text, fg="cyan") if self.use_color else text

    def dim(self, text: str) -> str:
        return click.style(text, dim=True) if self.use_color else text

    def stack(self, message: str) -> str:
        if not self.use_color:
            return f"📚 {message}"
        return f"{click.style('📚', fg='magenta')} {message}"


def format_stacking_output(current: str, base: str, parent_pr: Optional[PullRequest],
                           dependents: List[PullRequest], style: OutputStyle) -> str:
    lines = [style.stack("Stacking Information"), ""]
    if parent_pr is not None:
        lines += [
            f"  Current: {style.highlight(current)}",
            "       ↓",
            f"  Parent:  {style.highlight(base)} {style.dim(f'(PR #{parent_pr.number}: {parent_pr.title})')}",
        ]
    else:
        lines += [
            f"  Branch: {style.highlight(current)}",
            "      ↓",
            f"  Base:   {style.highlight(base)} {style.dim('(trunk)')}",
        ]

    if dependents:
        lines.append("")
        if len(dependents) == 1:
            lines.append(style.warning("1 dependent PR targets this branch:"))
        else:
            lines.append(style.warning(f"{len(dependents)} dependent PRs target this branch:"))
        for dep in dependents:
            lines.append(f"    • PR #{dep.number}: {dep.title} {style.dim(f'by @{dep.user_login}')}")
    return "\n".join(lines)


def format_pr_created(pr: PullRequest, parent_pr: Optional[PullRequest], style: OutputStyle) -> str:
    if parent_pr is not None:
        lines = [
            style.success(f"Created stacked PR #{pr.number}"),
            "",
            f"  {style.stack('Stacking on:')} {style.dim(f'PR #{parent_pr.number} ({parent_pr.head_ref})')}",
        ]
    else:
        lines = [style.success(f"Created PR #{pr.number}")]
    lines += [
        "",
        f"  Title:  {pr.title}",
        f"  Branch: {style.highlight(pr.head_ref)} → {style.highlight(pr.base_ref)}",
        f"  URL:    {style.highlight(pr.html_url)}",
    ]
    if pr.draft:
        lines += ["", style.info("PR is in draft state")]
    return "\n".join(lines)


def format_pr_updated(pr: PullRequest, old_base: Optional[str], style: OutputStyle) -> str:
    lines = [
        style.success(f"Updated PR #{pr.number}"),
        "",
        f"  Title: {pr.title}",
        f"  URL:   {style.highlight(pr.html_url)}",
    ]
    if old_base is not None and old_base != pr.base_ref:
        lines += ["", style.stack(f"Updated base branch: {old_base} → {pr.base_ref}")]
    return "\n".join(lines)


def format_auto_branch_success(branch: str, checkout_failed: bool, style: OutputStyle) -> str:
    lines = [style.success(f"Created feature branch: {style.highlight(branch)}")]
    if checkout_failed:
        lines += [
            "",
            style.warning("Failed to checkout branch automatically"),
            "",
            "  Manual checkout:",
            f"    git checkout {branch}",
        ]
    return "\n".join(lines)


def format_fast_path_output(pr: PullRequest, messages: List[str], style: OutputStyle) -> str:
    lines = [style.success(f"PR #{pr.number} already exists"), f"  {pr.html_url}"]
    if messages:
        lines.append("")
        lines += [f"  {msg}" for msg in messages]
    return "\n".join(lines)


def format_validation_failure(reasons: List[str], path: Optional[str], style: OutputStyle,
                              details: str = "") -> str:
    """Validation errors plus how to resume."""
    if details:
        lines = [style.error(details.splitlines()[0].lstrip("✗ "))] + details.splitlines()[1:]
    else:
        lines = [style.error("Template validation failed:")]
        lines += [f"  • {reason}" for reason in reasons]
    if path:
        lines += ["", f"Template saved to: {path}"]
    lines += ["", "Fix the issues and run:", "  arc diff --continue"]
    return "\n".join(lines)


def format_reviewers_assigned(reviewers: List[str], style: OutputStyle) -> str:
    if not reviewers:
        return ""
    return style.success(f"Assigned reviewers: {', '.join(reviewers)}")


def format_dry_run_output(result: DiffResult, style: OutputStyle) -> str:
    lines = [
        style.info("Dry run mode - no changes will be made"),
        "",
        style.highlight("Detected configuration:"),
        "",
        f"  Current branch: {style.highlight(result.head_branch)}",
        f"  Detected base:  {style.highlight(result.base_branch)}",
    ]
    if result.method is not None:
        lines.append(f"  Resolved by:    {result.method.value}")

    parent = result.parent_pr
    if parent is not None:
        lines += ["", style.stack("Stacking detected:"), f"  Parent PR: #{parent.number} - {parent.title}"]
        if parent.draft:
            lines.append(style.warning("  Warning: Parent PR is in draft state"))

    if result.dependents:
        lines += ["", style.warning(f"Dependent PRs ({len(result.dependents)}):")]
        lines += [f"  • #{dep.number}: {dep.title}" for dep in result.dependents]

    analysis: Optional[CommitAnalysis] = result.analysis
    if analysis is not None:
        lines += [
            "",
            style.highlight("Proposed PR content:"),
            f"  Title:        {analysis.title}",
            f"  Commit count: {analysis.commit_count}",
        ]
        if analysis.has_merge_commits:
            lines.append(style.warning("  Has merge commits"))

    if result.messages:
        lines.append("")
        lines += [f"  {msg}" for msg in result.messages]
    return "\n".join(lines)


def format_diff_result(result: DiffResult, style: OutputStyle) -> str:
    """Render a completed workflow result."""
    if result.dry_run:
        return format_dry_run_output(result, style)
    assert result.pr is not None
    if result.fast_path:
        return format_fast_path_output(result.pr, result.messages, style)

    lines: List[str] = []
    if result.was_created:
        lines.append(format_pr_created(result.pr, result.parent_pr, style))
    else:
        lines.append(format_pr_updated(result.pr, result.base_changed_from, style))

    if result.auto_branch_used:
        lines += ["", format_auto_branch_success(result.auto_branch_name,
                                                 result.auto_branch_checkout_failed, style)]

    if result.draft_changed:
        lines.append("")
        if result.pr.draft:
            lines.append(style.info("Converted PR to draft"))
        else:
            lines.append(style.info("Marked PR as ready for review"))

    if result.reviewers_assigned:
        lines += ["", format_reviewers_assigned(result.reviewers_assigned, style)]

    if result.messages:
        lines.append("")
        lines += [f"  {msg}" for msg in result.messages]

    if result.is_stacking and result.parent_pr is not None:
        lines += ["", style.stack(f"Stacked on PR #{result.parent_pr.number}")]

    lines += ["", style.success("Success!")]
    return "\n".join(lines)


def pr_to_dict(pr: Optional[PullRequest]) -> Optional[Dict[str, Any]]:
    if pr is None:
        return None
    return {
        "number": pr.number,
        "title": pr.title,
        "head": pr.head_ref,
        "base": pr.base_ref,
        "draft": pr.draft,
        "url": pr.html_url,
    }


def result_to_dict(result: DiffResult) -> Dict[str, Any]:
    """JSON-ready view of a workflow result."""
    data: Dict[str, Any] = {
        "head_branch": result.head_branch,
        "base_branch": result.base_branch,
        "is_stacking": result.is_stacking,
        "method": result.method.value if result.method is not None else None,
        "pr": pr_to_dict(result.pr),
        "parent_pr": pr_to_dict(result.parent_pr),
        "dependents": [pr_to_dict(dep) for dep in result.dependents],
        "was_created": result.was_created,
        "draft_changed": result.draft_changed,
        "pushed": result.pushed,
        "fast_path": result.fast_path,
        "dry_run": result.dry_run,
        "reviewers_assigned": list(result.reviewers_assigned),
        "messages": list(result.messages),
    }
    if result.base_changed_from is not None:
        data["base_changed_from"] = result.base_changed_from
    if result.auto_branch_used:
        data["auto_branch"] = {
            "name": result.auto_branch_name,
            "checkout_failed": result.auto_branch_checkout_failed,
        }
    if result.analysis is not None:
        data["analysis"] = {
            "title": result.analysis.title,
            "commit_count": result.analysis.commit_count,
            "has_merge_commits": result.analysis.has_merge_commits,
        }
    return data



def format_pr_list(prs: List[PullRequest], style: OutputStyle) -> str:
    """One line per PR for `arc list`."""
    if not prs:
        return style.info("No open pull requests")
    lines = []
    for pr in prs:
        draft = style.dim(" (draft)") if pr.draft else ""
        lines.append(f"{style.highlight(f'#{pr.number}')} {pr.title}{draft}")
        lines.append(f"    {pr.user_login}  {pr.head_ref} → {pr.base_ref}")
    return "\n".join(lines)
