"""Pydantic models for config types."""

from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field

class RepoConfig(BaseModel):
    """Repository configuration."""
    model_config = ConfigDict(extra="allow")  # Allow extra fields for forward compatibility

    github_remote: str = "origin"
    github_branch: str = "main"
    github_repo_owner: Optional[str] = None
    github_repo_name: Optional[str] = None
    default_reviewers: List[str] = Field(default_factory=list)

class DiffConfig(BaseModel):
    """Settings for creating and updating pull requests."""
    model_config = ConfigDict(extra="allow")

    enable_stacking: bool = True
    default_base: str = ""
    show_stacking_warnings: bool = True
    auto_create_branch_from_main: bool = False
    # "null" means ask the user for a name
    auto_branch_name_pattern: str = ""
    # 0 disables the stale remote check
    stale_remote_threshold_hours: int = 0
    create_as_draft: bool = True
    require_test_plan: bool = True
    linear_enabled: bool = False
    template_dir: Optional[str] = None

class UserConfig(BaseModel):
    """User configuration."""
    model_config = ConfigDict(extra="allow")

    log_git_commands: bool = False

class ToolConfig(BaseModel):
    """Tool configuration."""
    model_config = ConfigDict(extra="allow")

    pretend: bool = False

class PyarcConfig(BaseModel):
    """Full pyarc configuration."""
    model_config = ConfigDict(extra="allow")

    repo: RepoConfig = Field(default_factory=RepoConfig)
    diff: DiffConfig = Field(default_factory=DiffConfig)
    user: UserConfig = Field(default_factory=UserConfig)
    tool: ToolConfig = Field(default_factory=ToolConfig)
