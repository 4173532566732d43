"""CLI entry point."""

import os
import platform
import sys
import click
import logging
from typing import Any, Dict, Optional, Tuple
from click import Context
from git import GitCommandError
from github import Github

from ... import __version__
from ...config import Config, default_config
from ...config.config_parser import parse_config
from ...diff.output import (
    OutputStyle, format_diff_result, format_pr_list, format_stacking_output,
    format_validation_failure, pr_to_dict, result_to_dict,
)
from ...diff.workflow import DiffOptions, DiffWorkflow
from ...git import GitError, RealGit
from ...github import GitHubClient, GitHubError, filter_pull_requests, find_github_token
from ...github.adapters import PyGithubAdapter
from ...pretty import print_json
from ...prompt import Prompter
from ...template import ClickEditor, TemplateStore
from ...typing import ArcError, ErrorKind, RunContext, TemplateValidationError

# Get module logger
logger = logging.getLogger(__name__)

EXIT_GENERIC = 1
EXIT_VALIDATION = 2
EXIT_DECLINED = 3
EXIT_INTERRUPTED = 130

EXIT_CODES: Dict[ErrorKind, int] = {
    ErrorKind.TEMPLATE_VALIDATION_FAILED: EXIT_VALIDATION,
    ErrorKind.TEMPLATE_CORRUPTED: EXIT_VALIDATION,
    ErrorKind.STALE_REMOTE_DECLINED: EXIT_DECLINED,
    ErrorKind.USER_CANCELLED: EXIT_DECLINED,
    ErrorKind.OPERATION_INTERRUPTED: EXIT_INTERRUPTED,
}


def exit_code_for(err: ArcError) -> int:
    return EXIT_CODES.get(err.kind, EXIT_GENERIC)


class AliasedGroup(click.Group):
    """Command group with support for aliases."""

    def __init__(self, name: Optional[str] = None, commands: Optional[Dict[str, click.Command]] = None, **attrs: Any) -> None:
        super().__init__(name, commands, **attrs)
        self.aliases: Dict[str, str] = {}

    def add_alias(self, alias: str, command: str) -> None:
        self.aliases[alias] = command

    def get_command(self, ctx: Context, cmd_name: str) -> Optional[click.Command]:
        """Get a command by name, supporting aliases."""
        if cmd_name in self.aliases:
            cmd_name = self.aliases[cmd_name]
        return super().get_command(ctx, cmd_name)


@click.group(cls=AliasedGroup)
@click.pass_context
def cli(ctx: Context) -> None:
    """arc - create and update stacked pull requests on GitHub."""
    ctx.obj = ctx.obj or {}


def setup_git(run_ctx: RunContext, directory: Optional[str] = None) -> Tuple[Config, RealGit]:
    """Setup Git command and config."""
    if directory:
        os.chdir(directory)

    git_cmd = RealGit(default_config())
    try:
        git_cmd.run_cmd(run_ctx, "rev-parse --git-dir")
    except (GitError, GitCommandError) as e:
        logger.error(f"Not in a git repository: {e}")
        sys.exit(EXIT_GENERIC)

    config = Config(parse_config(run_ctx, git_cmd))
    return config, RealGit(config)


def setup_github(config: Config) -> GitHubClient:
    token = find_github_token()
    if not token:
        error_msg = "No GitHub token found. Try one of:\n1. Set GITHUB_TOKEN env var\n2. Log in with 'gh auth login'"
        logger.error(error_msg)
        sys.exit(EXIT_GENERIC)
    return GitHubClient(config, PyGithubAdapter(Github(token)))


@cli.command(name="diff", help="Create or update the pull request for the current branch")
@click.option('-C', '--directory', type=click.Path(exists=True, file_okay=False, dir_okay=True),
              help='Run as if arc was started in DIRECTORY instead of the current working directory')
@click.option('--draft', is_flag=True, help="Create the PR as a draft, or convert an existing PR to draft")
@click.option('--ready', is_flag=True, help="Create the PR ready for review, or mark an existing PR ready")
@click.option('--edit', is_flag=True, help="Edit the description of an existing PR")
@click.option('--no-edit', 'no_edit', is_flag=True, help="Use the generated description without opening an editor")
@click.option('--continue', 'continue_mode', is_flag=True,
              help="Retry with the description saved by a previous failed run")
@click.option('--base', type=str, help="Target BASE instead of detecting it")
@click.option('--dry-run', 'dry_run', is_flag=True, help="Show what would happen without changing anything")
@click.option('--json', 'as_json', is_flag=True, help="Print the result as JSON")
@click.option('-v', '--verbose', count=True, help="Increase verbosity (can be used multiple times for more verbosity)")
@click.pass_context
def diff(ctx: Context, directory: Optional[str], draft: bool, ready: bool, edit: bool, no_edit: bool,
         continue_mode: bool, base: Optional[str], dry_run: bool, as_json: bool, verbose: int) -> None:
    """Diff command."""
    from ... import setup_logging
    setup_logging(verbose)

    if draft and ready:
        raise click.UsageError("--draft and --ready are mutually exclusive")
    if edit and no_edit:
        raise click.UsageError("--edit and --no-edit are mutually exclusive")

    run_ctx = RunContext()
    style = OutputStyle()
    try:
        config, git_cmd = setup_git(run_ctx, directory)
        github = setup_github(config)
        workflow = DiffWorkflow(
            config, git_cmd, github,
            editor=ClickEditor(),
            store=TemplateStore(config.diff.template_dir),
            prompter=Prompter(),
        )
        opts = DiffOptions(draft=draft, ready=ready, edit=edit, no_edit=no_edit,
                           continue_mode=continue_mode, base=base, dry_run=dry_run)
        result = workflow.execute(run_ctx, opts)
    except KeyboardInterrupt:
        run_ctx.cancel("interrupted by user")
        logger.error("Interrupted")
        sys.exit(EXIT_INTERRUPTED)
    except TemplateValidationError as e:
        click.echo(format_validation_failure(e.reasons, e.path, style, e.details), err=True)
        sys.exit(exit_code_for(e))
    except ArcError as e:
        logger.error(f"{e}")
        sys.exit(exit_code_for(e))
    except Exception as e:
        logger.error(f"Error during diff: {e}")
        sys.exit(EXIT_GENERIC)

    if as_json:
        print_json(result_to_dict(result))
        return

    if not result.dry_run and config.diff.show_stacking_warnings and (result.is_stacking or result.dependents):
        click.echo(format_stacking_output(result.head_branch, result.base_branch,
                                          result.parent_pr, result.dependents, style))
        click.echo()
    click.echo(format_diff_result(result, style))


@cli.command(name="list", help="List open pull requests")
@click.option('-C', '--directory', type=click.Path(exists=True, file_okay=False, dir_okay=True),
              help='Run as if arc was started in DIRECTORY instead of the current working directory')
@click.option('-a', '--author', default="", help="Only PRs by AUTHOR ('me' for the authenticated user)")
@click.option('-b', '--branch', default="", help="Only PRs whose head branch matches BRANCH (wildcards allowed)")
@click.option('-s', '--status', type=click.Choice(['draft', 'ready']), default=None, help="Only draft or ready PRs")
@click.option('--json', 'as_json', is_flag=True, help="Print the PRs as JSON")
@click.option('-v', '--verbose', count=True, help="Increase verbosity (can be used multiple times for more verbosity)")
@click.pass_context
def list_prs(ctx: Context, directory: Optional[str], author: str, branch: str, status: Optional[str],
             as_json: bool, verbose: int) -> None:
    """List command."""
    from ... import setup_logging
    setup_logging(verbose)

    run_ctx = RunContext()
    try:
        config, _git_cmd = setup_git(run_ctx, directory)
        github = setup_github(config)
        current_user = github.get_current_user(run_ctx) if author == "me" else ""
        prs = filter_pull_requests(github.list_pull_requests(run_ctx), author=author, branch=branch,
                                   status=status or "", current_user=current_user)
    except KeyboardInterrupt:
        run_ctx.cancel("interrupted by user")
        logger.error("Interrupted")
        sys.exit(EXIT_INTERRUPTED)
    except ArcError as e:
        logger.error(f"{e}")
        sys.exit(exit_code_for(e))
    except Exception as e:
        logger.error(f"Error listing pull requests: {e}")
        sys.exit(EXIT_GENERIC)

    if as_json:
        print_json([dict(pr_to_dict(pr) or {}, author=pr.user_login) for pr in prs])
        return
    click.echo(format_pr_list(prs, OutputStyle()))


@cli.command(name="auth", help="Verify GitHub authentication")
@click.option('--json', 'as_json', is_flag=True, help="Print the status as JSON")
@click.option('-v', '--verbose', count=True, help="Increase verbosity (can be used multiple times for more verbosity)")
@click.pass_context
def auth(ctx: Context, as_json: bool, verbose: int) -> None:
    """Auth command."""
    from ... import setup_logging
    setup_logging(verbose)

    run_ctx = RunContext()
    status: Dict[str, Any] = {"authenticated": False}
    github = setup_github(default_config())
    try:
        status = {"authenticated": True, "user": github.get_current_user(run_ctx)}
    except (ArcError, GitHubError) as e:
        logger.error(f"Failed to get authenticated user: {e}")
        status["error"] = str(e)

    style = OutputStyle()
    if as_json:
        print_json(status)
    elif status["authenticated"]:
        click.echo(style.success(f"Authenticated as {status['user']}"))
    else:
        click.echo(style.error("Not authenticated"))
        click.echo(f"Error: {status['error']}")
        click.echo("\nSet GITHUB_TOKEN or log in with 'gh auth login'")
    if not status["authenticated"]:
        sys.exit(EXIT_GENERIC)


@cli.command(name="version", help="Print version information")
@click.option('--json', 'as_json', is_flag=True, help="Print the version as JSON")
def version(as_json: bool) -> None:
    """Version command."""
    info = {
        "version": __version__,
        "python": platform.python_version(),
        "platform": f"{sys.platform}/{platform.machine()}",
    }
    if as_json:
        print_json(info)
        return
    click.echo(f"arc {info['version']} (python {info['python']}, {info['platform']})")


def main() -> None:
    """Main entry point."""
    cli.aliases['d'] = 'diff'
    cli(obj={})


if __name__ == "__main__":
    main()
