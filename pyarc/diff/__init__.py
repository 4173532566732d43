"""Creating and updating pull requests for the current branch."""

from .workflow import DiffOptions, DiffResult, DiffWorkflow

__all__ = ["DiffOptions", "DiffResult", "DiffWorkflow"]
