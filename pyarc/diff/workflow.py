"""The `arc diff` workflow: from local branch to created or updated PR."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..config.models import PyarcConfig
from ..git import GitInterface
from ..github import GitHubInterface, PullRequest
from ..prompt import PrompterInterface
from ..template import (
    Editor, StackingContext, TemplateFields, TemplateGenerator, TemplateStore,
    build_pr_body, build_pr_title, extract_base_branch, format_validation_errors,
    parse_template, validate_fields,
)
from ..typing import (
    NoSavedTemplateError, OperationInterruptedError, RunContext,
    TemplateCorruptedError, TemplateValidationError,
)
from .analysis import CommitAnalysis, analyze_commits
from .auto_branch import AutoBranchOrchestrator, AutoBranchPlan, DetectionResult
from .dependent import DependentSetFinder, DependentSetResult
from .pr_executor import PRLifecycleExecutor, PRRequest
from .stacking import BaseResolution, ResolutionMethod, StackingResolver

logger = logging.getLogger(__name__)


@dataclass
class DiffOptions:
    draft: bool = False
    ready: bool = False
    edit: bool = False
    no_edit: bool = False
    continue_mode: bool = False
    base: Optional[str] = None
    dry_run: bool = False


@dataclass
class DiffResult:
    head_branch: str
    base_branch: str
    pr: Optional[PullRequest] = None
    was_created: bool = False
    draft_changed: bool = False
    pushed: bool = False
    is_stacking: bool = False
    method: Optional[ResolutionMethod] = None
    parent_pr: Optional[PullRequest] = None
    dependents: List[PullRequest] = field(default_factory=list)
    base_changed_from: Optional[str] = None
    auto_branch_used: bool = False
    auto_branch_name: str = ""
    auto_branch_checkout_failed: bool = False
    reviewers_assigned: List[str] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)
    dry_run: bool = False
    fast_path: bool = False
    analysis: Optional[CommitAnalysis] = None
    detection: Optional[DetectionResult] = None


class DiffWorkflow:
    """Runs one `arc diff` invocation.

    Three routes: continue mode (--continue), the fast path (PR exists
    and --edit not given) and the full template editing flow.
    """

    def __init__(self, config: PyarcConfig, git_cmd: GitInterface, github: GitHubInterface,
                 editor: Editor, store: TemplateStore, prompter: PrompterInterface,
                 auto_branch: Optional[AutoBranchOrchestrator] = None):
        self.config = config
        self.git_cmd = git_cmd
        self.github = github
        self.editor = editor
        self.store = store
        self.prompter = prompter
        self.auto_branch = auto_branch or AutoBranchOrchestrator(config, git_cmd, prompter)
        self.resolver = StackingResolver(config, git_cmd, github)
        self.dependents = DependentSetFinder(github)
        self.executor = PRLifecycleExecutor(github, git_cmd)

    def execute(self, ctx: RunContext, opts: DiffOptions) -> DiffResult:
        logger.debug(f"Starting diff workflow: {opts}")
        if opts.continue_mode:
            return self.execute_continue(ctx, opts)
        current = self.git_cmd.current_branch(ctx)
        if opts.dry_run:
            return self.execute_dry_run(ctx, opts, current)
        return self.execute_normal(ctx, opts, current)

    def _prepare_auto_branch(self, ctx: RunContext) -> tuple:
        detection = self.auto_branch.detect(ctx)
        if not self.auto_branch.should_auto_branch(detection):
            return None, detection
        logger.info(f"{detection.commits_ahead} commit(s) on {detection.trunk_name}; a feature branch is needed")
        return self.auto_branch.prepare(ctx, detection), detection

    def _current_user(self, ctx: RunContext, messages: List[str]) -> str:
        try:
            return self.github.get_current_user(ctx)
        except OperationInterruptedError:
            raise
        except Exception as e:
            logger.warning(f"Failed to get current user: {e}")
            messages.append(f"⚠️  Warning: could not determine current user, reviewers not filtered: {e}")
            return ""

    def reviewer_suggestions(self, ctx: RunContext) -> List[str]:
        """Configured default reviewers, de-duplicated, without ourselves."""
        me = ""
        if self.config.repo.default_reviewers:
            me = self._current_user(ctx, []).lower()
        seen = set()
        suggestions: List[str] = []
        for reviewer in self.config.repo.default_reviewers:
            handle = "@" + reviewer.strip().lstrip("@")
            key = handle.lower()
            if handle == "@" or key in seen or key == f"@{me}":
                continue
            seen.add(key)
            suggestions.append(handle)
        return suggestions

    def execute_dry_run(self, ctx: RunContext, opts: DiffOptions, current: str) -> DiffResult:
        """Report what would happen without prompting or mutating anything."""
        detection = self.auto_branch.detect(ctx)
        head = current
        result_messages: List[str] = []
        if self.auto_branch.should_auto_branch(detection):
            name, should_prompt = self.auto_branch.generate_branch_name(ctx)
            head = "<prompted>" if should_prompt else self.auto_branch.ensure_unique_branch_name(ctx, name)
            result_messages.append(f"Would move {detection.commits_ahead} commit(s) from "
                                   f"{detection.trunk_name} to a new branch {head}")

        resolution = self.resolver.resolve_base(ctx, current, opts.base)
        dependents = self.dependents.find_dependents(ctx, current)
        existing = self.github.find_existing_pr(ctx, head) if head == current else None
        analysis = analyze_commits(ctx, self.git_cmd, self._analysis_base(ctx, resolution), current)
        if existing is not None:
            result_messages.append(f"Would update {existing}")
        else:
            result_messages.append(f"Would create PR {head} -> {resolution.base}")
        return DiffResult(
            head_branch=head,
            base_branch=resolution.base,
            pr=existing,
            is_stacking=resolution.is_stacking,
            method=resolution.method,
            parent_pr=resolution.parent_pr,
            dependents=dependents.dependents,
            auto_branch_used=head != current,
            auto_branch_name=head if head != current else "",
            messages=result_messages,
            dry_run=True,
            analysis=analysis,
            detection=detection,
        )

    def execute_normal(self, ctx: RunContext, opts: DiffOptions, current: str) -> DiffResult:
        plan, detection = self._prepare_auto_branch(ctx)
        head = plan.branch_name if plan is not None else current

        resolution = self.resolver.resolve_base(ctx, current, opts.base)
        dependents = self.dependents.find_dependents(ctx, current)
        # An auto-branch may be renamed on push, so its PR is looked up afterwards
        existing = self.github.find_existing_pr(ctx, head) if plan is None else None

        if existing is not None and not opts.edit:
            return self.execute_fast_path(ctx, opts, existing, resolution, current, dependents)
        return self.execute_with_template(ctx, opts, existing, resolution, dependents,
                                          current, plan, detection)

    def execute_fast_path(self, ctx: RunContext, opts: DiffOptions, existing: PullRequest,
                          resolution: BaseResolution, current: str,
                          dependents: DependentSetResult) -> DiffResult:
        """Existing PR without --edit: push, retarget, flip draft state."""
        result = DiffResult(
            head_branch=current,
            base_branch=resolution.base,
            pr=existing,
            is_stacking=resolution.is_stacking,
            method=resolution.method,
            parent_pr=resolution.parent_pr,
            dependents=dependents.dependents,
            fast_path=True,
        )
        try:
            unpushed = self.git_cmd.has_unpushed_commits(ctx, current)
        except OperationInterruptedError:
            raise
        except Exception as e:
            logger.warning(f"Could not check for unpushed commits, pushing anyway: {e}")
            unpushed = True
        if unpushed:
            self.git_cmd.push(ctx, current)
            result.pushed = True
            result.messages.append("Pushed new commits")

        pr = existing
        if existing.base_ref != resolution.base:
            pr = self.github.update_pr_base(ctx, pr, resolution.base)
            result.base_changed_from = existing.base_ref
            result.messages.append(f"Updated base branch: {existing.base_ref} → {resolution.base}")

        if opts.ready and pr.draft:
            pr = self.executor.update_draft_status(ctx, pr, False)
            result.draft_changed = True
            result.messages.append("Marked PR as ready for review")
        elif opts.draft and not pr.draft:
            pr = self.executor.update_draft_status(ctx, pr, True)
            result.draft_changed = True
            result.messages.append("Converted PR to draft")

        result.pr = pr
        return result

    def _analysis_base(self, ctx: RunContext, resolution: BaseResolution) -> str:
        remote_base = f"{self.config.repo.github_remote}/{resolution.base}"
        if self.git_cmd.rev_parse(ctx, remote_base) is None:
            return resolution.base
        return remote_base

    def _draft_default(self, opts: DiffOptions) -> bool:
        if opts.draft:
            return True
        if opts.ready:
            return False
        return self.config.diff.create_as_draft

    def execute_with_template(self, ctx: RunContext, opts: DiffOptions, existing: Optional[PullRequest],
                              resolution: BaseResolution, dependents: DependentSetResult, current: str,
                              plan: Optional[AutoBranchPlan], detection: Optional[DetectionResult]) -> DiffResult:
        head = plan.branch_name if plan is not None else current
        analysis = analyze_commits(ctx, self.git_cmd, self._analysis_base(ctx, resolution), current)
        stacking = StackingContext(
            is_stacking=resolution.is_stacking,
            base_branch=resolution.base,
            current_branch=head,
            parent_pr=resolution.parent_pr,
            dependent_prs=dependents.dependents,
            show_dependents=self.config.diff.show_stacking_warnings and dependents.has_dependents,
        )
        content = TemplateGenerator(
            stacking,
            title=existing.title if existing is not None else analysis.title,
            summary=analysis.summary,
            reviewers=self.reviewer_suggestions(ctx),
            linear_enabled=self.config.diff.linear_enabled,
            default_draft=self._draft_default(opts),
        ).generate()

        saved_path: Optional[str] = None
        if not opts.no_edit:
            content = self.editor.edit(ctx, content)
            # From here on the user's text must survive any failure
            saved_path = self.store.save(content)
            logger.info(f"Saved PR description to {saved_path}")

        fields = parse_template(content)
        reasons = validate_fields(fields, self.config.diff.require_test_plan, stacking)
        if reasons:
            raise TemplateValidationError(
                reasons, saved_path,
                details=format_validation_errors(reasons, stacking))

        result = self._submit(ctx, fields, head, resolution.base, existing, resolution.parent_pr, plan)
        result.is_stacking = resolution.is_stacking
        result.method = resolution.method
        result.dependents = dependents.dependents
        result.analysis = analysis
        result.detection = detection
        self._discard(saved_path, result.messages)
        return result

    def _submit(self, ctx: RunContext, fields: TemplateFields, head: str, base: str,
                existing: Optional[PullRequest], parent_pr: Optional[PullRequest],
                plan: Optional[AutoBranchPlan]) -> DiffResult:
        """Push the auto-branch if any, then create or update the PR."""
        messages: List[str] = []
        checkout_failed = False
        if plan is not None:
            execution = self.auto_branch.execute(ctx, plan)
            head = execution.branch_name
            existing = self.github.find_existing_pr(ctx, head)
            if execution.checkout_error is not None:
                checkout_failed = True
                messages.append(f"⚠️  Note: Failed to checkout {head} locally. "
                                f"Run 'git checkout {head}' manually. ({execution.checkout_error.cause})")

        current_user = self._current_user(ctx, messages)
        outcome = self.executor.execute(ctx, PRRequest(
            title=build_pr_title(fields, self.config.diff.linear_enabled),
            head=head,
            base=base,
            body=build_pr_body(fields),
            draft=fields.draft,
            reviewers=fields.reviewers,
            existing_pr=existing,
            parent_pr=parent_pr,
            current_user=current_user,
            already_pushed=plan is not None,
        ))
        return DiffResult(
            head_branch=head,
            base_branch=base,
            pr=outcome.pr,
            was_created=outcome.was_created,
            draft_changed=outcome.draft_changed,
            pushed=outcome.pushed,
            parent_pr=parent_pr,
            auto_branch_used=plan is not None,
            auto_branch_name=head if plan is not None else "",
            auto_branch_checkout_failed=checkout_failed,
            reviewers_assigned=outcome.reviewers_assigned,
            messages=messages + outcome.messages,
        )

    def _discard(self, path: Optional[str], messages: List[str]) -> None:
        try:
            self.store.remove(path)
        except OSError as e:
            logger.warning(f"Failed to remove saved template {path}: {e}")
            messages.append(f"⚠️  Warning: could not remove saved template {path}: {e}")

    def execute_continue(self, ctx: RunContext, opts: DiffOptions) -> DiffResult:
        """Resume from the newest saved description."""
        saved = self.store.find()
        if not saved:
            raise NoSavedTemplateError()
        saved_path = saved[0]
        content = self.store.load(saved_path)
        logger.info(f"Continuing from {saved_path}")

        base = extract_base_branch(content)
        if not base:
            raise TemplateCorruptedError(saved_path)

        current = self.git_cmd.current_branch(ctx)
        plan, detection = self._prepare_auto_branch(ctx)
        head = plan.branch_name if plan is not None else current

        warnings: List[str] = []
        if not opts.no_edit:
            content = self.editor.edit(ctx, content)
            new_path = self.store.save(content)
            self._discard(saved_path, warnings)
            saved_path = new_path

        fields = parse_template(content)
        reasons = validate_fields(fields, self.config.diff.require_test_plan)
        if reasons:
            raise TemplateValidationError(reasons, saved_path,
                                          details=format_validation_errors(reasons))

        existing = self.github.find_existing_pr(ctx, head) if plan is None else None
        parent_pr = self._parent_for_base(ctx, base)
        result = self._submit(ctx, fields, head, base, existing, parent_pr, plan)
        result.is_stacking = parent_pr is not None
        result.detection = detection
        result.messages = warnings + result.messages
        self._discard(saved_path, result.messages)
        return result

    def _parent_for_base(self, ctx: RunContext, base: str) -> Optional[PullRequest]:
        """Open PR for the recorded base branch, when that base is not trunk."""
        if base == self.git_cmd.default_branch(ctx):
            return None
        return self.github.find_existing_pr(ctx, base)
