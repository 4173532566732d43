"""Config module."""

from typing import Dict, Any
from .models import RepoConfig, DiffConfig, UserConfig, PyarcConfig, ToolConfig

class Config(PyarcConfig):
    """Config object holding repository, diff and user config.
    
    Built from the raw dict produced by the YAML parser.
    """
    def __init__(self, config: Dict[str, Dict[str, Any]]):
        """Initialize with parsed config dict."""
        repo_config = config.get('repo', {})
        diff_config = config.get('diff', {})
        user_config = config.get('user', {})
        tool_section = config.get('tool', {})
        tool_config = tool_section.get('pyarc', {})
        
        super().__init__(
            repo=RepoConfig.model_validate(repo_config),
            diff=DiffConfig.model_validate(diff_config),
            user=UserConfig.model_validate(user_config),
            tool=ToolConfig.model_validate(tool_config)
        )

def default_config() -> Config:
    """Get default config without parsing git."""
    return Config({
        'repo': {
            'github_remote': 'origin',
            'github_branch': 'main',
        },
        'diff': {},
        'user': {},
        'tool': {
            'pyarc': {
                'pretend': False
            }
        }
    })
