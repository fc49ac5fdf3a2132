"""Run the git executable with a deadline."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
from pathlib import Path

from .errors import GitCommandError, GitLaunchError, GitTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300.0


class GitRunner:
    """Invoke git in a working directory and capture its output.

    Every invocation runs in its own process group. When the deadline expires
    the whole group is killed, so helpers spawned by git (ssh, credential
    helpers) do not outlive it.
    """

    def __init__(self, executable: str | Path = "git", timeout: float | None = DEFAULT_TIMEOUT):
        self.executable = str(executable)
        self.timeout = timeout

    def _popen_kwargs(self) -> dict:
        if sys.platform == "win32":
            return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
        return {"start_new_session": True}

    def _kill(self, process: subprocess.Popen) -> None:
        if sys.platform == "win32":
            process.kill()
            return
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass

    def run(
        self,
        args: list[str],
        cwd: str | Path,
        *,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        """Run ``git <args>`` in ``cwd``.

        Raises GitLaunchError if the process cannot start, GitTimeoutError when
        the deadline expires, and GitCommandError on a non-zero exit when
        ``check`` is set.
        """
        cmd = [self.executable, *args]
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
        logger.debug("running %s in %s", cmd, cwd)
        try:
            process = subprocess.Popen(
                cmd,
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=env,
                **self._popen_kwargs(),
            )
        except OSError as e:
            raise GitLaunchError(
                args,
                message=f"Failed to start git process: git {' '.join(args)}: {e}",
            ) from e

        try:
            stdout, stderr = process.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            self._kill(process)
            process.communicate()
            raise GitTimeoutError(
                args,
                message=f"git {' '.join(args)} timed out after {self.timeout:g}s",
            ) from e

        logger.debug("%s exited with %s", cmd, process.returncode)
        result = subprocess.CompletedProcess(cmd, process.returncode, stdout, stderr)
        if check and result.returncode != 0:
            raise GitCommandError(args, result.returncode, stderr.strip())
        return result

    def output(self, args: list[str], cwd: str | Path) -> str:
        """Run a checked invocation and return its standard output."""
        return self.run(args, cwd).stdout
