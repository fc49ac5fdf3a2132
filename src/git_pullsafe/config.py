"""Configuration loading and git executable discovery."""

from __future__ import annotations

import logging
import os
import shutil
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import ConfigError, GitExecutableNotFoundError
from .runner import DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "GIT_PULLSAFE_CONFIG"
CONFIG_FILE = Path.home() / ".config" / "git-pullsafe" / "config.toml"

WINDOWS_GIT_PATHS = (
    r"C:\Program Files\Git\cmd\git.exe",
    r"C:\Program Files (x86)\Git\cmd\git.exe",
    r"C:\Git\cmd\git.exe",
)
MACOS_GIT_PATHS = ("/usr/local/bin/git", "/usr/bin/git", "/opt/homebrew/bin/git")
POSIX_GIT_PATHS = ("/usr/bin/git", "/usr/local/bin/git")


def expand_path(value: str) -> Path:
    """Expand environment variables first, then tilde."""
    return Path(os.path.expandvars(value)).expanduser()


@dataclass
class Config:
    git_paths: list[Path] = field(default_factory=list)
    timeout: float | None = DEFAULT_TIMEOUT
    roots: list[Path] = field(default_factory=list)
    ignore_paths: list[Path] = field(default_factory=list)
    ignore_names: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        git = _section(data, "git")
        scan = _section(data, "scan")

        config = cls()
        config.git_paths = [expand_path(p) for p in _str_list(git, "possible_paths")]
        config.roots = [expand_path(p) for p in _str_list(scan, "roots")]
        config.ignore_paths = [expand_path(p) for p in _str_list(scan, "ignore_paths")]
        config.ignore_names = _str_list(scan, "ignore_names")

        if "timeout" in git:
            timeout = git["timeout"]
            if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
                raise ConfigError("git.timeout must be a positive number of seconds")
            config.timeout = float(timeout)

        return config

    @classmethod
    def from_file(cls, path: Path) -> Config:
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid config file {path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e
        return cls.from_dict(data)


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{name}] must be a table")
    return section


def _str_list(section: dict[str, Any], key: str) -> list[str]:
    value = section.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"{key} must be a list of strings")
    return [v for v in value if v.strip()]


def resolve_config_file() -> Path | None:
    """Auto-resolve the config file.

    Priority order:
    1. $GIT_PULLSAFE_CONFIG environment variable
    2. ~/.config/git-pullsafe/config.toml
    """
    env_config = os.environ.get(CONFIG_ENV_VAR)
    if env_config:
        env_path = Path(env_config).expanduser()
        if env_path.is_file():
            return env_path
        logger.warning("%s points to %s, which is not a file", CONFIG_ENV_VAR, env_path)

    if CONFIG_FILE.is_file():
        return CONFIG_FILE

    return None


def load_config(path: Path | None = None) -> Config:
    """Load the given config file, or the auto-resolved one, or defaults."""
    if path is None:
        path = resolve_config_file()
    elif not path.expanduser().is_file():
        raise ConfigError(f"Config file not found: {path}")
    if path is None:
        logger.debug("no config file found, using defaults")
        return Config()
    logger.debug("loading config from %s", path)
    return Config.from_file(path.expanduser())


def load_roots_file(roots_file: Path) -> list[Path]:
    """Load repository roots from a file (one path per line).

    Supports:
    - Comments starting with #
    - Environment variables: $HOME, ${HOME}, $DEV_ROOT, etc.
    - Tilde expansion: ~/path
    """
    roots = []
    try:
        with open(roots_file.expanduser()) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#"):
                    roots.append(expand_path(line))
    except OSError as e:
        raise ConfigError(f"Cannot read roots file {roots_file}: {e}") from e
    return roots


def _platform_git_paths() -> tuple[str, ...]:
    if sys.platform == "win32":
        return WINDOWS_GIT_PATHS
    if sys.platform == "darwin":
        return MACOS_GIT_PATHS
    return POSIX_GIT_PATHS


def locate_git(candidates: list[Path] | None = None) -> Path:
    """Return the git executable to use.

    Configured candidates win if they are absolute paths to existing files,
    then the platform's conventional install locations, then PATH.
    """
    for candidate in candidates or []:
        if candidate.is_absolute() and candidate.is_file():
            return candidate
        logger.debug("configured git path %s is not usable", candidate)

    for candidate in _platform_git_paths():
        if os.path.isfile(candidate):
            return Path(candidate)

    found = shutil.which("git")
    if found:
        return Path(found)

    raise GitExecutableNotFoundError("Could not locate the git executable.")
