"""Interactive questions asked during `arc diff`."""

import sys
import logging
from typing import IO, Optional, Protocol

import click

from .git import sanitize_branch_name
from .typing import RunContext, UserCancelledError

logger = logging.getLogger(__name__)

MAX_INVALID_ANSWERS = 5


class PrompterInterface(Protocol):
    def confirm(self, ctx: RunContext, question: str, default: bool) -> bool: ...
    def prompt_branch_name(self, ctx: RunContext, suggestion: str) -> str: ...


class Prompter:
    """Line-oriented prompts over a pair of text streams.

    Each question is a bounded loop: after MAX_INVALID_ANSWERS unusable
    answers, or at end of input, the user is treated as having cancelled.
    """

    def __init__(self, input: Optional[IO[str]] = None, output: Optional[IO[str]] = None):
        self.input = input if input is not None else sys.stdin
        self.output = output if output is not None else sys.stdout

    def _ask(self, ctx: RunContext, text: str) -> str:
        ctx.check()
        click.echo(text, file=self.output, nl=False)
        line = self.input.readline()
        # Waiting on the user can take arbitrarily long
        ctx.check()
        if line == "":
            raise UserCancelledError("no answer given (end of input)")
        return line.strip()

    def confirm(self, ctx: RunContext, question: str, default: bool) -> bool:
        hint = "[Y/n]" if default else "[y/N]"
        for _ in range(MAX_INVALID_ANSWERS):
            answer = self._ask(ctx, f"{question} {hint}: ").lower()
            if answer == "":
                return default
            if answer in ("y", "yes"):
                return True
            if answer in ("n", "no"):
                return False
            click.echo("Please answer 'y' or 'n'.", file=self.output)
        raise UserCancelledError(f"no valid answer to '{question}' after {MAX_INVALID_ANSWERS} attempts")

    def prompt_branch_name(self, ctx: RunContext, suggestion: str) -> str:
        """Ask for a branch name; an empty answer takes the suggestion."""
        for _ in range(MAX_INVALID_ANSWERS):
            answer = self._ask(ctx, f"Branch name [{suggestion}]: ")
            if answer == "":
                return suggestion
            name = sanitize_branch_name(answer)
            if name:
                if name != answer:
                    click.echo(f"Using sanitized name: {name}", file=self.output)
                return name
            click.echo("Branch name cannot be empty.", file=self.output)
        raise UserCancelledError(f"no valid branch name after {MAX_INVALID_ANSWERS} attempts")
