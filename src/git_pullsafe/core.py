"""
git-pullsafe: find git repositories, check them in parallel, pull the safe ones.

Every repository under the configured roots is inspected concurrently. A
repository is offered for a pull only when it is behind its upstream and has
no local state a pull could disturb: no working tree or index changes, no
stash entries and no unpushed commits.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, replace
from enum import StrEnum
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from ._version import __version__
from .config import Config, load_config, load_roots_file, locate_git
from .errors import (
    FetchError,
    GitCommandError,
    GitPullsafeError,
    PullError,
    PullPreconditionError,
)
from .formatters import (
    OutputFormatter,
    format_error_report,
    format_pull_report,
    format_status_report,
)
from .output import OutputChannel
from .runner import GitRunner
from .scanner import RepositoryScanner

logger = logging.getLogger(__name__)

# =============================================================================
# Domain Models
# =============================================================================


class FileState(StrEnum):
    """Classification of one porcelain status entry."""

    UNTRACKED = "untracked"
    CONFLICTED = "conflicted"
    MODIFIED = "modified"
    DELETED = "deleted"
    STAGED = "staged"
    IGNORED = "ignored"


@dataclass(frozen=True)
class RepositoryStatus:
    """Snapshot of a repository's local and upstream state.

    A new snapshot is produced by every refresh; snapshots are never updated.
    """

    path: Path
    name: str
    local_branch: str = ""
    remote_branch: str = ""
    untracked: tuple[str, ...] = ()
    modified: tuple[str, ...] = ()
    deleted: tuple[str, ...] = ()
    staged: tuple[str, ...] = ()
    conflicted: tuple[str, ...] = ()
    stashed: tuple[str, ...] = ()
    unpushed_commits: tuple[str, ...] = ()
    unpulled_commits: tuple[str, ...] = ()
    error: str = ""

    @classmethod
    def empty(cls, path: Path) -> RepositoryStatus:
        return cls(path=path, name=path.name)

    @classmethod
    def failed(cls, path: Path, error: str) -> RepositoryStatus:
        return replace(cls.empty(path), error=error)

    @property
    def has_remote_updates(self) -> bool:
        return len(self.unpulled_commits) > 0

    @property
    def has_local_changes(self) -> bool:
        """Anything a pull could disturb or conflict with."""
        return bool(
            self.untracked
            or self.modified
            or self.deleted
            or self.staged
            or self.conflicted
            or self.stashed
            or self.unpushed_commits
        )

    @property
    def is_safe_to_pull(self) -> bool:
        """Both branches known and no local changes. Unpulled commits don't count."""
        if not self.local_branch or not self.remote_branch:
            return False
        return not self.has_local_changes

    @property
    def is_up_to_date(self) -> bool:
        """False for a failed refresh, whose empty lists say nothing about upstream."""
        return not self.error and not self.has_remote_updates

    @property
    def is_pull_candidate(self) -> bool:
        return self.has_remote_updates and self.is_safe_to_pull

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        data = asdict(self)
        data["path"] = str(self.path)
        for key, value in data.items():
            if isinstance(value, tuple):
                data[key] = list(value)
        data["has_remote_updates"] = self.has_remote_updates
        data["is_safe_to_pull"] = self.is_safe_to_pull
        return data


@dataclass
class OperationResult:
    """Result of a Git operation."""

    path: Path
    name: str
    success: bool
    operation: str
    message: str = ""
    error: str = ""

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "name": self.name,
            "success": self.success,
            "operation": self.operation,
            "message": self.message,
            "error": self.error,
        }


@dataclass
class StatusSummary:
    """Counts over a set of repository snapshots."""

    total: int = 0
    up_to_date: int = 0
    behind: int = 0
    safe_to_pull: int = 0
    local_changes: int = 0
    no_upstream: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_statuses(cls, statuses: list[RepositoryStatus]) -> StatusSummary:
        summary = cls(total=len(statuses))
        for status in statuses:
            if status.error:
                summary.errors += 1
                continue
            if status.is_up_to_date:
                summary.up_to_date += 1
            else:
                summary.behind += 1
            if status.is_pull_candidate:
                summary.safe_to_pull += 1
            if status.has_local_changes:
                summary.local_changes += 1
            if not status.remote_branch:
                summary.no_upstream += 1
        return summary


@dataclass
class PullSummary:
    """Summary of pull results."""

    candidates: int = 0
    pulled: int = 0
    failed: int = 0

    @classmethod
    def from_results(cls, results: list[OperationResult]) -> PullSummary:
        return cls(
            candidates=len(results),
            pulled=sum(1 for r in results if r.success),
            failed=sum(1 for r in results if not r.success),
        )


# =============================================================================
# Porcelain Parsing
# =============================================================================

_WORKTREE_MODIFIED = "MTRC"
_INDEX_STAGED = "MTADRC"


def classify_status_code(x: str, y: str) -> FileState:
    """Classify a porcelain entry from its index (x) and worktree (y) codes.

    Rules are checked in order; the first match wins.
    """
    if x == "?" and y == "?":
        return FileState.UNTRACKED
    if x == "U" or y == "U" or (x, y) in (("A", "A"), ("D", "D")):
        return FileState.CONFLICTED
    if y in _WORKTREE_MODIFIED:
        return FileState.MODIFIED
    if y == "D":
        return FileState.DELETED
    if x in _INDEX_STAGED:
        return FileState.STAGED
    return FileState.IGNORED


def parse_porcelain_status(output: str) -> dict[FileState, tuple[str, ...]]:
    """Group ``git status --porcelain`` lines (``XY path``) by FileState.

    Ignored entries and malformed lines are dropped.
    """
    groups: dict[FileState, list[str]] = {
        state: [] for state in FileState if state != FileState.IGNORED
    }
    for line in output.splitlines():
        if not line.strip() or len(line) < 4:
            continue
        state = classify_status_code(line[0], line[1])
        if state != FileState.IGNORED:
            groups[state].append(line[3:])
    return {state: tuple(paths) for state, paths in groups.items()}


def _lines(output: str) -> tuple[str, ...]:
    return tuple(line for line in output.splitlines() if line.strip())


def split_upstream(remote_branch: str) -> tuple[str, str]:
    """Split ``origin/feature/x`` into ``("origin", "feature/x")``."""
    remote, _, branch = remote_branch.partition("/")
    return remote, branch


# =============================================================================
# Git Operations (Low-level)
# =============================================================================


class GitOperations:
    """Low-level Git operations for a single repository."""

    def __init__(self, repo_path: Path, runner: GitRunner):
        self.repo_path = repo_path
        self.runner = runner

    def _output(self, *args: str) -> str:
        return self.runner.output(list(args), self.repo_path)

    def get_file_states(self) -> dict[FileState, tuple[str, ...]]:
        """Classify working tree and index entries."""
        return parse_porcelain_status(self._output("status", "--porcelain", "--no-renames"))

    def get_stash_list(self) -> tuple[str, ...]:
        return _lines(self._output("stash", "list"))

    def get_current_branch(self) -> str:
        """Get current branch name, or "" when detached or unborn."""
        result = self.runner.run(["rev-parse", "--abbrev-ref", "HEAD"], self.repo_path, check=False)
        branch = result.stdout.strip() if result.returncode == 0 else ""
        return "" if branch == "HEAD" else branch

    def get_remote_branch(self) -> str:
        """Get upstream remote branch, or "" when none is configured."""
        result = self.runner.run(
            ["rev-parse", "--abbrev-ref", "--symbolic-full-name", "HEAD@{upstream}"],
            self.repo_path,
            check=False,
        )
        if result.returncode != 0:
            logger.debug("%s has no upstream: %s", self.repo_path, result.stderr.strip())
            return ""
        return result.stdout.strip()

    def get_unpushed_commits(self, remote_branch: str) -> tuple[str, ...]:
        return _lines(self._output("log", f"{remote_branch}..HEAD", "--oneline"))

    def fetch(self, remote: str) -> None:
        try:
            self._output("fetch", remote)
        except GitCommandError as e:
            raise FetchError(f"Fetch of {remote} failed: {e}") from e

    def get_unpulled_commits(self, remote_branch: str) -> tuple[str, ...]:
        return _lines(self._output("log", f"HEAD..{remote_branch}", "--oneline"))

    def pull(self, remote: str, branch: str) -> str:
        try:
            return self._output("pull", remote, branch)
        except GitCommandError as e:
            raise PullError(str(e)) from e


# =============================================================================
# Repository
# =============================================================================


class GitRepository:
    """High-level interface for a single Git repository."""

    def __init__(self, path: Path, runner: GitRunner):
        self.path = path
        self.name = path.name
        self.ops = GitOperations(path, runner)

    def refresh(
        self, on_refreshed: Callable[[RepositoryStatus], None] | None = None
    ) -> RepositoryStatus:
        """Inspect the repository and return a new status snapshot.

        Runs status, stash list, branch lookups and, when an upstream is set,
        the unpushed log, a fetch of the upstream remote and the unpulled log.
        ``on_refreshed`` is called once with the snapshot after all of them
        succeeded.
        """
        files = self.ops.get_file_states()
        stashed = self.ops.get_stash_list()
        local_branch = self.ops.get_current_branch()
        remote_branch = self.ops.get_remote_branch()

        unpushed: tuple[str, ...] = ()
        unpulled: tuple[str, ...] = ()
        if remote_branch:
            unpushed = self.ops.get_unpushed_commits(remote_branch)
            remote, _ = split_upstream(remote_branch)
            self.ops.fetch(remote)
            unpulled = self.ops.get_unpulled_commits(remote_branch)

        status = RepositoryStatus(
            path=self.path,
            name=self.name,
            local_branch=local_branch,
            remote_branch=remote_branch,
            untracked=files[FileState.UNTRACKED],
            modified=files[FileState.MODIFIED],
            deleted=files[FileState.DELETED],
            staged=files[FileState.STAGED],
            conflicted=files[FileState.CONFLICTED],
            stashed=stashed,
            unpushed_commits=unpushed,
            unpulled_commits=unpulled,
        )
        if on_refreshed is not None:
            on_refreshed(status)
        return status

    def pull(self, remote_branch: str) -> str:
        """Pull ``remote_branch`` (e.g. ``origin/main``) and return git's output."""
        if not remote_branch:
            raise PullPreconditionError(f"No remote branch is set for {self.name}.")
        remote, branch = split_upstream(remote_branch)
        if not branch:
            raise PullPreconditionError(
                f"Cannot determine the branch of upstream {remote_branch!r} for {self.name}."
            )
        return self.ops.pull(remote, branch)


# =============================================================================
# Pull Manager
# =============================================================================


class PullManager:
    """Check many repositories in parallel and pull the safe ones."""

    def __init__(
        self,
        roots: list[Path],
        runner: GitRunner,
        *,
        scanner: RepositoryScanner | None = None,
        channel: OutputChannel | None = None,
        max_workers: int | None = None,
    ):
        self.roots = roots
        self.runner = runner
        self.scanner = scanner or RepositoryScanner()
        self.channel = channel
        self.max_workers = max_workers
        self._repositories: list[GitRepository] | None = None

    def discover_repositories(self) -> list[GitRepository]:
        """Discover all Git repositories under the roots."""
        if self._repositories is None:
            self._repositories = [
                GitRepository(path, self.runner) for path in self.scanner.scan(self.roots)
            ]
        return self._repositories

    def _report_status(self, status: RepositoryStatus) -> None:
        if self.channel is None:
            return
        batch = format_status_report(status)
        if batch is not None:
            self.channel.enqueue(batch)

    def _refresh_one(
        self,
        repo: GitRepository,
        on_refreshed: Callable[[RepositoryStatus], None] | None,
    ) -> RepositoryStatus:
        def observe(status: RepositoryStatus) -> None:
            self._report_status(status)
            if on_refreshed is not None:
                on_refreshed(status)

        try:
            return repo.refresh(on_refreshed=observe)
        except (GitPullsafeError, OSError) as e:
            logger.debug("refresh of %s failed", repo.path, exc_info=True)
            if self.channel is not None:
                self.channel.enqueue(format_error_report(repo.name, repo.path, e))
            return RepositoryStatus.failed(repo.path, str(e))

    def refresh_all(
        self, on_refreshed: Callable[[RepositoryStatus], None] | None = None
    ) -> list[RepositoryStatus]:
        """Refresh every repository concurrently, one worker per repository.

        Reports are emitted as each refresh finishes, and ``on_refreshed`` is
        called from the worker thread with every successful snapshot. The
        returned statuses are sorted by path.
        """
        repos = self.discover_repositories()
        if not repos:
            return []

        workers = self.max_workers or len(repos)
        results = []
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="refresh") as executor:
            futures = {
                executor.submit(self._refresh_one, repo, on_refreshed): repo for repo in repos
            }
            for future in as_completed(futures):
                results.append(future.result())

        results.sort(key=lambda s: str(s.path).casefold())
        return results

    @staticmethod
    def pull_candidates(statuses: list[RepositoryStatus]) -> list[RepositoryStatus]:
        """Repositories that are behind their upstream and safe to pull."""
        return [s for s in statuses if s.is_pull_candidate]

    def pull_all(self, candidates: list[RepositoryStatus]) -> list[OperationResult]:
        """Pull each candidate in turn. A failure doesn't stop the others."""
        results = []
        for status in candidates:
            repo = GitRepository(status.path, self.runner)
            try:
                output = repo.pull(status.remote_branch)
            except (GitPullsafeError, OSError) as e:
                logger.debug("pull of %s failed", status.path, exc_info=True)
                result = OperationResult(
                    path=status.path,
                    name=status.name,
                    success=False,
                    operation="pull",
                    error=str(e),
                )
            else:
                result = OperationResult(
                    path=status.path,
                    name=status.name,
                    success=True,
                    operation="pull",
                    message=output.strip(),
                )
            if self.channel is not None:
                self.channel.enqueue(format_pull_report(result))
            results.append(result)
        return results


# =============================================================================
# CLI Application
# =============================================================================


app = typer.Typer(
    name="git-pullsafe",
    help="Check many Git repositories at once and pull the ones that are safe to pull.",
    no_args_is_help=True,
)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"git-pullsafe {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
):
    """git-pullsafe: check many Git repositories and pull the safe ones."""


def configure_logging(verbose: bool) -> None:
    """Send log records to stderr through rich."""
    handler = RichHandler(console=Console(stderr=True), show_path=False)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[handler],
        force=True,
    )


def get_console_and_formatter(json_output: bool) -> tuple[Console, OutputFormatter]:
    """Create console and formatter."""
    console = Console(force_terminal=not json_output)
    formatter = OutputFormatter(console, use_json=json_output)
    return console, formatter


def resolve_roots(paths: list[Path] | None, roots_file: Path | None, config: Config) -> list[Path]:
    """CLI roots replace configured roots; a roots file adds to CLI roots."""
    roots = list(paths or [])
    if roots_file is not None:
        roots.extend(load_roots_file(roots_file))
    return roots or list(config.roots)


def build_manager(
    paths: list[Path] | None,
    roots_file: Path | None,
    config_path: Path | None,
    max_workers: int | None,
    timeout: float | None,
    channel: OutputChannel | None = None,
) -> PullManager:
    """Load configuration, locate git and assemble a PullManager.

    Raises GitPullsafeError subclasses for configuration problems, a missing
    git executable, or when there is nothing to scan.
    """
    config = load_config(config_path)
    roots = resolve_roots(paths, roots_file, config)
    if not roots:
        raise GitPullsafeError(
            "No root directories to scan. Pass paths, use --roots, or set scan.roots in the config."
        )
    executable = locate_git(config.git_paths)
    logger.debug("using git at %s", executable)
    runner = GitRunner(executable, timeout=timeout if timeout is not None else config.timeout)
    scanner = RepositoryScanner(config.ignore_paths, config.ignore_names)
    return PullManager(
        roots,
        runner,
        scanner=scanner,
        channel=channel,
        max_workers=max_workers,
    )


@app.command()
def pull(
    paths: list[Path] = typer.Argument(
        None,
        help="Root directories to scan (overrides configured roots)",
    ),
    roots: Path = typer.Option(
        None,
        "--roots",
        "-r",
        help="File containing repository root paths (one per line)",
    ),
    config: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config.toml",
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Pull without asking for confirmation",
    ),
    max_workers: int = typer.Option(
        None,
        "--max-workers",
        "-w",
        min=1,
        help="Limit concurrent repository checks (default: one per repository)",
    ),
    timeout: float = typer.Option(
        None,
        "--timeout",
        "-t",
        min=0.1,
        help="Seconds before a git command is killed",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log git commands to stderr",
    ),
):
    """Check all repositories, then pull those that are behind and safe to pull."""
    configure_logging(verbose)
    console, formatter = get_console_and_formatter(json_output=False)

    channel = OutputChannel(console)
    results: list[OperationResult] = []
    try:
        try:
            manager = build_manager(paths, roots, config, max_workers, timeout, channel)
        except GitPullsafeError as e:
            channel.enqueue_exception(e, "Error")
            raise typer.Exit(1)

        repos = manager.discover_repositories()
        channel.enqueue(formatter.discovery_batch(len(repos)))
        statuses = manager.refresh_all()
        channel.flush()

        if all(s.is_up_to_date for s in statuses):
            console.print("[green]All repositories are up to date.[/]")
            return

        failed = sum(1 for s in statuses if s.error)
        if failed:
            noun = "repository" if failed == 1 else "repositories"
            console.print(f"[red]{failed} {noun} could not be checked.[/]")

        candidates = manager.pull_candidates(statuses)
        formatter.print_pull_candidates(candidates)
        if not candidates:
            return
        if not yes and not typer.confirm("Pull these repositories?", default=None):
            console.print("[dim]Nothing pulled.[/]")
            return

        results = manager.pull_all(candidates)
    finally:
        channel.close()

    formatter.print_operation_results(results, PullSummary.from_results(results), "pull")
    if any(not r.success for r in results):
        raise typer.Exit(1)


@app.command()
def status(
    paths: list[Path] = typer.Argument(
        None,
        help="Root directories to scan (overrides configured roots)",
    ),
    roots: Path = typer.Option(
        None,
        "--roots",
        "-r",
        help="File containing repository root paths (one per line)",
    ),
    config: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config.toml",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
    max_workers: int = typer.Option(
        None,
        "--max-workers",
        "-w",
        min=1,
        help="Limit concurrent repository checks (default: one per repository)",
    ),
    timeout: float = typer.Option(
        None,
        "--timeout",
        "-t",
        min=0.1,
        help="Seconds before a git command is killed",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log git commands to stderr",
    ),
):
    """Check all repositories and report what needs attention, without pulling."""
    configure_logging(verbose)
    console, formatter = get_console_and_formatter(json_output)

    channel = None if json_output else OutputChannel(console)
    try:
        try:
            manager = build_manager(paths, roots, config, max_workers, timeout, channel)
            if channel is not None:
                channel.enqueue(formatter.discovery_batch(len(manager.discover_repositories())))
            statuses = manager.refresh_all()
        finally:
            if channel is not None:
                channel.close()
    except GitPullsafeError as e:
        console.print(f"[red]Error: {escape(str(e))}[/]")
        raise typer.Exit(1)

    formatter.print_status_list(statuses, StatusSummary.from_statuses(statuses))


@app.command(name="list")
def list_repos(
    paths: list[Path] = typer.Argument(
        None,
        help="Root directories to scan (overrides configured roots)",
    ),
    roots: Path = typer.Option(
        None,
        "--roots",
        "-r",
        help="File containing repository root paths (one per line)",
    ),
    config: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config.toml",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
    paths_only: bool = typer.Option(
        False,
        "--paths",
        "-p",
        help="Output only paths (one per line, for piping to fzf etc.)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log git commands to stderr",
    ),
):
    """List all discovered repositories."""
    configure_logging(verbose)
    console, formatter = get_console_and_formatter(json_output)

    try:
        manager = build_manager(paths, roots, config, None, None)
    except GitPullsafeError as e:
        console.print(f"[red]Error: {escape(str(e))}[/]")
        raise typer.Exit(1)

    repos = manager.discover_repositories()
    if paths_only:
        for repo in repos:
            typer.echo(repo.path)
    else:
        formatter.print_repo_list(repos, manager.roots)
