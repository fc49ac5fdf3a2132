from __future__ import annotations

import io
import shutil

import pytest
from rich.console import Console

from conftest import commit_file, git, make_remote
from git_pullsafe.core import PullManager, RepositoryStatus
from git_pullsafe.output import OutputChannel
from git_pullsafe.runner import GitRunner
from git_pullsafe.scanner import RepositoryScanner


@pytest.fixture
def fleet(tmp_path):
    """Four repositories under one root: in sync, behind, dirty and behind, broken."""
    root = tmp_path / "root"
    remote = make_remote(tmp_path / "upstream")
    in_sync = remote.clone(root / "in-sync")
    behind = remote.clone(root / "behind")
    dirty = remote.clone(root / "dirty")
    (root / "broken" / ".git").mkdir(parents=True)

    remote.publish("upstream.txt")
    git(in_sync, "pull", "origin", "main")
    (dirty / "scratch.txt").write_text("wip\n")
    return root, {"in-sync": in_sync, "behind": behind, "dirty": dirty}


def capture_channel() -> tuple[OutputChannel, io.StringIO]:
    buffer = io.StringIO()
    console = Console(file=buffer, force_terminal=False, color_system=None, width=300)
    return OutputChannel(console), buffer


def test_refresh_all_reports_and_isolates_failures(fleet):
    root, repos = fleet
    channel, buffer = capture_channel()
    manager = PullManager([root], GitRunner(timeout=60), channel=channel)

    statuses = manager.refresh_all()
    channel.close()

    by_name = {s.name: s for s in statuses}
    assert [s.name for s in statuses] == ["behind", "broken", "dirty", "in-sync"]
    assert by_name["broken"].error
    assert by_name["in-sync"].is_up_to_date
    assert by_name["behind"].is_pull_candidate
    assert by_name["dirty"].has_remote_updates
    assert not by_name["dirty"].is_safe_to_pull

    output = buffer.getvalue()
    assert "Repository: broken" in output
    assert "Error:" in output
    assert "[untracked] scratch.txt" in output
    assert "Unpulled commits: 1" in output
    # Nothing to report for a clean, in-sync repository.
    assert "Repository: in-sync" not in output


def test_pull_candidates(fleet):
    root, _ = fleet
    manager = PullManager([root], GitRunner(timeout=60))

    candidates = manager.pull_candidates(manager.refresh_all())

    assert [s.name for s in candidates] == ["behind"]


def test_refresh_all_with_worker_cap(fleet):
    root, _ = fleet
    manager = PullManager([root], GitRunner(timeout=60), max_workers=1)

    assert len(manager.refresh_all()) == 4


def test_refresh_all_without_repositories(tmp_path):
    manager = PullManager([tmp_path], GitRunner())
    assert manager.refresh_all() == []


def test_discover_uses_scanner_ignores(fleet):
    root, _ = fleet
    scanner = RepositoryScanner(ignore_names=["broken", "dirty"])
    manager = PullManager([root], GitRunner(), scanner=scanner)

    assert [r.name for r in manager.discover_repositories()] == ["behind", "in-sync"]


def test_pull_all_continues_after_failure(tmp_path):
    good_remote = make_remote(tmp_path / "good-upstream")
    bad_remote = make_remote(tmp_path / "bad-upstream")
    good = good_remote.clone(tmp_path / "root" / "good")
    bad = bad_remote.clone(tmp_path / "root" / "bad")
    good_remote.publish("new.txt")
    shutil.rmtree(bad_remote.bare)

    channel, buffer = capture_channel()
    manager = PullManager([tmp_path / "root"], GitRunner(timeout=60), channel=channel)
    candidates = [
        RepositoryStatus(path=bad, name="bad", local_branch="main", remote_branch="origin/main"),
        RepositoryStatus(path=good, name="good", local_branch="main", remote_branch="origin/main"),
    ]

    results = manager.pull_all(candidates)
    channel.close()

    assert [(r.name, r.success) for r in results] == [("bad", False), ("good", True)]
    assert results[0].error
    assert (good / "new.txt").exists()
    output = buffer.getvalue()
    assert "Pull failed for bad" in output
    assert "Pulled good" in output


def test_pull_all_reports_missing_upstream(tmp_path):
    path = tmp_path / "solo"
    path.mkdir()
    manager = PullManager([tmp_path], GitRunner())

    results = manager.pull_all([RepositoryStatus.empty(path)])

    assert not results[0].success
    assert "No remote branch" in results[0].error


def test_local_commit_blocks_pull(tmp_path):
    remote = make_remote(tmp_path / "upstream")
    clone = remote.clone(tmp_path / "root" / "ahead")
    commit_file(clone, "mine.txt")
    remote.publish("theirs.txt")

    manager = PullManager([tmp_path / "root"], GitRunner(timeout=60))
    (status,) = manager.refresh_all()

    assert status.has_remote_updates
    assert status.unpushed_commits
    assert manager.pull_candidates([status]) == []


def test_refresh_all_calls_observer_for_each_snapshot(fleet):
    root, _ = fleet
    manager = PullManager([root], GitRunner(timeout=60))
    seen = []

    statuses = manager.refresh_all(on_refreshed=seen.append)

    # The broken repository fails before a snapshot exists.
    assert sorted(s.name for s in seen) == ["behind", "dirty", "in-sync"]
    assert all(s in statuses for s in seen)
