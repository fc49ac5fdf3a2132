"""Exceptions raised by git-pullsafe."""

from __future__ import annotations

from collections.abc import Sequence


class GitPullsafeError(Exception):
    """Base class for all git-pullsafe errors."""


class ConfigError(GitPullsafeError):
    """Configuration file could not be read or has invalid values."""


class GitExecutableNotFoundError(GitPullsafeError):
    """No usable git executable was found. Nothing can run without one."""


class GitCommandError(GitPullsafeError):
    """A git invocation exited with a non-zero status."""

    def __init__(
        self,
        args: Sequence[str],
        returncode: int | None = None,
        stderr: str = "",
        message: str | None = None,
    ):
        self.git_args = list(args)
        self.returncode = returncode
        self.stderr = stderr
        if message is None:
            message = f"git {' '.join(self.git_args)} failed"
            if returncode is not None:
                message += f" (exit {returncode})"
            if stderr:
                message += f": {stderr}"
        super().__init__(message)


class GitLaunchError(GitCommandError):
    """The git process could not be started at all."""


class GitTimeoutError(GitCommandError):
    """A git invocation did not finish before its deadline and was killed."""


class FetchError(GitPullsafeError):
    """Fetching the upstream remote failed, so unpulled commits are unknown."""


class PullPreconditionError(GitPullsafeError):
    """A pull was requested for a repository with no upstream branch."""


class PullError(GitPullsafeError):
    """git pull failed."""


class ChannelClosedError(GitPullsafeError):
    """A batch was enqueued on an output channel that is already closed."""
