"""Output formatters for console and JSON display."""

from __future__ import annotations

import json
from collections import defaultdict
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .output import OutputBatch, StyledFragment

if TYPE_CHECKING:
    from .core import (
        GitRepository,
        OperationResult,
        PullSummary,
        RepositoryStatus,
        StatusSummary,
    )


# (label, attribute, tag) in report order
REPORT_SECTIONS = (
    ("Untracked files", "untracked", "untracked"),
    ("Modified files", "modified", "modified"),
    ("Deleted files", "deleted", "deleted"),
    ("Staged files", "staged", "staged"),
    ("Conflicted files", "conflicted", "conflicted"),
    ("Stashed entries", "stashed", "stashed"),
    ("Unpushed commits", "unpushed_commits", "unpushed"),
    ("Unpulled commits", "unpulled_commits", "unpulled"),
)


def _repository_header(name: str, path: Path) -> list[StyledFragment]:
    return [
        StyledFragment("Repository: "),
        StyledFragment(name, fg="white", bg="blue"),
        StyledFragment(f" ({path})\n"),
    ]


def format_status_report(status: RepositoryStatus) -> OutputBatch | None:
    """Build the report for one refreshed repository.

    Returns None when there is nothing to report: both branches are known
    and every list is empty.
    """
    fragments = _repository_header(status.name, status.path)

    if not status.local_branch:
        fragments.append(
            StyledFragment("Local branch is not set or could not be determined.\n", fg="red")
        )
        return tuple(fragments)
    if not status.remote_branch:
        fragments.append(
            StyledFragment("Remote branch is not set or could not be determined.\n", fg="red")
        )
        return tuple(fragments)

    fragments.append(StyledFragment(f"Local Branch: {status.local_branch}\n"))
    fragments.append(StyledFragment(f"Remote Branch: {status.remote_branch}\n"))

    any_findings = False
    for label, attr, tag in REPORT_SECTIONS:
        items = getattr(status, attr)
        if not items:
            continue
        any_findings = True
        fragments.append(StyledFragment(f"{label}: {len(items)}\n"))
        for item in items:
            fragments.append(StyledFragment(f"    [{tag}] {item}\n", fg="yellow"))

    if not any_findings:
        return None
    return tuple(fragments)


def format_error_report(name: str, path: Path, error: BaseException) -> OutputBatch:
    """Report a repository whose refresh failed."""
    return (
        *_repository_header(name, path),
        StyledFragment(f"Error: {error}\n", fg="red"),
    )


def format_pull_report(result: OperationResult) -> OutputBatch:
    if result.success:
        fragments = [StyledFragment(f"Pulled {result.name}\n", fg="green")]
        if result.message:
            fragments.append(StyledFragment(f"{result.message}\n"))
        return tuple(fragments)
    return (
        StyledFragment(f"Pull failed for {result.name}: ", fg="red"),
        StyledFragment(f"{result.error}\n", fg="red"),
    )


def _path_suffix(path: Path, depth: int) -> str:
    return "/".join(path.parts[-depth:])


def _disambiguate(paths: list[Path]) -> dict[Path, str]:
    """Label same-named paths with the fewest trailing components that tell them apart."""
    for depth in range(2, max(len(p.parts) for p in paths) + 1):
        labels = [_path_suffix(p, depth) for p in paths]
        if len(set(labels)) == len(labels):
            return dict(zip(paths, labels))
    return {p: str(p) for p in paths}


def compute_unique_display_names(items: Iterable[Any]) -> dict[Path, str]:
    """Map each item's path to a display name.

    Items are anything with ``name`` and ``path`` (repositories, snapshots,
    pull results). A name shared by several paths gets parent directories
    prepended, e.g. ``work/api`` and ``personal/api``.
    """
    by_name: dict[str, list[Path]] = defaultdict(list)
    for item in items:
        by_name[item.name].append(item.path)

    names: dict[Path, str] = {}
    for name, paths in by_name.items():
        if len(paths) == 1:
            names[paths[0]] = name
        else:
            names.update(_disambiguate(paths))
    return names


class OutputFormatter:
    """Format output for console or JSON."""

    def __init__(self, console: Console, use_json: bool = False):
        self.console = console
        self.use_json = use_json

    def _print_json(self, output: dict) -> None:
        # Bypass rich so long lines are never wrapped.
        typer.echo(json.dumps(output, indent=2, default=str))

    def discovery_batch(self, count: int) -> OutputBatch:
        noun = "repository" if count == 1 else "repositories"
        return (
            StyledFragment("Found "),
            StyledFragment(str(count), fg="bright_white"),
            StyledFragment(f" {noun}\n\n"),
        )

    def print_status_list(self, statuses: list[RepositoryStatus], summary: StatusSummary):
        """Print statuses as JSON, or the summary line after live reports."""
        if self.use_json:
            self._print_json(
                {
                    "repositories": [s.to_dict() for s in statuses],
                    "summary": summary.to_dict(),
                }
            )
        else:
            self._print_summary(summary)

    def _print_summary(self, summary: StatusSummary):
        parts = [f"[bold]Total:[/] {summary.total}"]

        if summary.up_to_date > 0:
            parts.append(f"[green]✓ Up to date:[/] {summary.up_to_date}")
        if summary.behind > 0:
            parts.append(f"[blue]⬇ Behind:[/] {summary.behind}")
        if summary.safe_to_pull > 0:
            parts.append(f"[green]Safe to pull:[/] {summary.safe_to_pull}")
        if summary.local_changes > 0:
            parts.append(f"[yellow]✎ Local changes:[/] {summary.local_changes}")
        if summary.no_upstream > 0:
            parts.append(f"[dim]No upstream:[/] {summary.no_upstream}")
        if summary.errors > 0:
            parts.append(f"[red]✗ Errors:[/] {summary.errors}")

        self.console.print()
        self.console.print(" | ".join(parts))

    def print_pull_candidates(self, candidates: list[RepositoryStatus]):
        """List repositories offered for a pull."""
        if not candidates:
            self.console.print("[yellow]No repositories are safe to pull.[/]")
            return

        display_names = compute_unique_display_names(candidates)
        self.console.print("\n[bold]Repositories safe to pull:[/]")
        for status in candidates:
            repo_display = escape(display_names.get(status.path, status.name))
            count = len(status.unpulled_commits)
            commits = "commit" if count == 1 else "commits"
            upstream = escape(status.remote_branch)
            self.console.print(f"  [cyan]{repo_display}[/] ({upstream}, {count} {commits} behind)")
        self.console.print()

    def print_operation_results(
        self, results: list[OperationResult], summary: PullSummary, operation: str
    ):
        """Print a results table followed by the success count."""
        if not results:
            return

        display_names = compute_unique_display_names(results)

        table = Table(title=f"{operation.title()} Results")
        table.add_column("Repository", style="cyan")
        table.add_column("Status", justify="center")
        table.add_column("Message")

        for result in results:
            repo_display = escape(display_names.get(result.path, result.name))
            if result.success:
                status = "[green]✓[/]"
                message = escape(result.message.splitlines()[-1][:50]) if result.message else "OK"
            else:
                status = "[red]✗[/]"
                message = result.error[:50] if result.error else "Failed"
                message = f"[red]{escape(message)}[/]"

            table.add_row(repo_display, status, message)

        self.console.print()
        self.console.print(table)
        self.console.print(f"\n[bold]Success:[/] {summary.pulled}/{summary.candidates}")

    def print_repo_list(self, repos: list[GitRepository], roots: list[Path]):
        """Print simple repository list."""
        display_names = compute_unique_display_names(repos)
        if self.use_json:
            self._print_json(
                {
                    "roots": [str(r) for r in roots],
                    "count": len(repos),
                    "repositories": [
                        {
                            "path": str(r.path),
                            "name": r.name,
                            "display_name": display_names.get(r.path, r.name),
                        }
                        for r in repos
                    ],
                }
            )
        else:
            root_list = ", ".join(str(r) for r in roots)
            self.console.print(f"[bold]Found {len(repos)} repositories in {escape(root_list)}[/]\n")
            for repo in repos:
                repo_display = escape(display_names.get(repo.path, repo.name))
                self.console.print(f"  [cyan]{repo_display}[/]")
