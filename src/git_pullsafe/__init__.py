"""git-pullsafe: check many Git repositories at once and pull the safe ones."""

# Guard against deleted CWD (e.g. directory removed by another process).
# rich crashes on import if os.getcwd() fails, so recover before any imports.
import os

try:
    os.getcwd()
except (OSError, PermissionError):
    os.chdir(os.path.expanduser("~"))

from ._version import __version__
from .config import Config, load_config, load_roots_file, locate_git
from .core import (
    FileState,
    GitOperations,
    GitRepository,
    OperationResult,
    PullManager,
    PullSummary,
    RepositoryStatus,
    StatusSummary,
    app,
    classify_status_code,
    parse_porcelain_status,
)
from .errors import (
    ChannelClosedError,
    ConfigError,
    FetchError,
    GitCommandError,
    GitExecutableNotFoundError,
    GitLaunchError,
    GitPullsafeError,
    GitTimeoutError,
    PullError,
    PullPreconditionError,
)
from .formatters import OutputFormatter
from .output import OutputBatch, OutputChannel, StyledFragment
from .runner import GitRunner
from .scanner import RepositoryScanner

__all__ = [
    # Version
    "__version__",
    # CLI
    "app",
    # Models
    "FileState",
    "OperationResult",
    "PullSummary",
    "RepositoryStatus",
    "StatusSummary",
    # Operations
    "GitOperations",
    "GitRepository",
    "GitRunner",
    "PullManager",
    "RepositoryScanner",
    # Functions
    "classify_status_code",
    "parse_porcelain_status",
    "load_config",
    "load_roots_file",
    "locate_git",
    "Config",
    # Output
    "OutputBatch",
    "OutputChannel",
    "OutputFormatter",
    "StyledFragment",
    # Errors
    "ChannelClosedError",
    "ConfigError",
    "FetchError",
    "GitCommandError",
    "GitExecutableNotFoundError",
    "GitLaunchError",
    "GitPullsafeError",
    "GitTimeoutError",
    "PullError",
    "PullPreconditionError",
]
