"""Config parser logic."""

from pathlib import Path
from typing import Dict, Optional, Any, TYPE_CHECKING
import logging
import yaml

from ...typing import OperationInterruptedError, RunContext

if TYPE_CHECKING:
    from ...git import GitInterface

# Get module logger
logger = logging.getLogger(__name__)

RepoConfig = Dict[str, Any]  # Use Any since yaml can return various types
Config = Dict[str, RepoConfig]

REPO_CONFIG_FILE = ".arc.yaml"
USER_CONFIG_FILE = ".arc.yaml"

SECTIONS = ('repo', 'diff', 'user')

def _merge_file(config: Config, path: Path) -> None:
    """Overlay the sections found in a YAML config file."""
    try:
        with open(path, 'r') as f:
            logger.info(f"Found {path}, loading...")
            file_config = yaml.safe_load(f)
    except FileNotFoundError:
        logger.debug(f"No {path} found")
        return
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid config file {path}: {e}") from e

    logger.debug(f"Config from {path}: {file_config}")
    if not isinstance(file_config, dict):
        return
    for section in SECTIONS:
        if section in file_config and isinstance(file_config[section], dict):
            config[section].update(file_config[section])
    tool_section = file_config.get('tool')
    if isinstance(tool_section, dict) and isinstance(tool_section.get('pyarc'), dict):
        config['tool']['pyarc'].update(tool_section['pyarc'])

def parse_remote_url(remote_url: str) -> Optional[tuple[str, str]]:
    """Extract (owner, name) from an SSH or HTTPS GitHub remote url."""
    remote_url = remote_url.strip()
    if not remote_url:
        return None
    if "://" not in remote_url and "@" in remote_url:
        # SSH format: git@github.com:owner/repo.git
        repo_part = remote_url.split(":")[-1]
    else:
        # HTTPS format: https://github.com/owner/repo.git
        repo_part = remote_url.split("://", 1)[-1]
        repo_part = repo_part.split("/", 1)[-1] if "/" in repo_part else ""

    if repo_part.endswith(".git"):
        repo_part = repo_part[:-len(".git")]
    parts = [p for p in repo_part.strip("/").split("/") if p]
    if len(parts) < 2:
        return None
    return parts[-2], parts[-1]

def parse_config(ctx: RunContext, git_cmd: "GitInterface",
                 repo_dir: Optional[Path] = None, home_dir: Optional[Path] = None) -> Config:
    """Parse config from user and repository config files."""
    config: Config = {
        'repo': {
            'github_remote': 'origin',
            'github_branch': 'main',
            'default_reviewers': [],
        },
        'diff': {},
        'user': {},
        'tool': {
            'pyarc': {
                'pretend': False
            }
        }
    }

    home = home_dir if home_dir is not None else Path.home()
    repo = repo_dir if repo_dir is not None else Path('.')

    # User config first so the repository file wins
    _merge_file(config, home / USER_CONFIG_FILE)
    _merge_file(config, repo / REPO_CONFIG_FILE)

    # Try to extract repo owner/name from git remote if not in config
    if not config['repo'].get('github_repo_owner') or not config['repo'].get('github_repo_name'):
        remote = config['repo']['github_remote']
        try:
            remote_url = git_cmd.remote_url(ctx, remote)
        except OperationInterruptedError:
            raise
        except Exception as e:
            logger.error(f"Failed to read url of remote {remote}: {e}")
            remote_url = ""
        parsed = parse_remote_url(remote_url)
        if parsed:
            owner, name = parsed
            if not config['repo'].get('github_repo_owner'):
                config['repo']['github_repo_owner'] = owner
            if not config['repo'].get('github_repo_name'):
                config['repo']['github_repo_name'] = name
        elif remote_url:
            logger.warning(f"Could not parse owner/name from remote url {remote_url}")

    return config
