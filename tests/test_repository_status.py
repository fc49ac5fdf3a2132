from __future__ import annotations

from pathlib import Path

import pytest

from git_pullsafe.core import OperationResult, PullSummary, RepositoryStatus, StatusSummary

PATH = Path("/work/project")

LOCAL_CHANGE_FIELDS = [
    "untracked",
    "modified",
    "deleted",
    "staged",
    "conflicted",
    "stashed",
    "unpushed_commits",
]


def make_status(**kwargs) -> RepositoryStatus:
    kwargs.setdefault("local_branch", "main")
    kwargs.setdefault("remote_branch", "origin/main")
    return RepositoryStatus(path=PATH, name=PATH.name, **kwargs)


def test_empty_status():
    status = RepositoryStatus.empty(PATH)
    assert status.name == "project"
    assert status.local_branch == ""
    assert status.remote_branch == ""
    assert not status.is_safe_to_pull
    assert status.is_up_to_date


def test_clean_and_behind_is_pull_candidate():
    status = make_status(unpulled_commits=("abc123 Fix bug", "def456 Add feature"))

    assert status.is_safe_to_pull
    assert status.has_remote_updates
    assert not status.is_up_to_date
    assert status.is_pull_candidate


@pytest.mark.parametrize("field", LOCAL_CHANGE_FIELDS)
def test_any_local_change_is_unsafe(field):
    status = make_status(**{field: ("entry",)}, unpulled_commits=("abc123 Upstream",))

    assert status.has_local_changes
    assert not status.is_safe_to_pull
    assert not status.is_pull_candidate


@pytest.mark.parametrize("field", LOCAL_CHANGE_FIELDS)
def test_local_change_unsafe_even_without_branches(field):
    status = make_status(local_branch="", remote_branch="", **{field: ("entry",)})
    assert not status.is_safe_to_pull


def test_unpulled_count_does_not_affect_safety():
    commits = tuple(f"{i:07x} Commit {i}" for i in range(200))
    assert make_status(unpulled_commits=commits).is_safe_to_pull
    assert make_status().is_safe_to_pull


def test_missing_remote_branch_is_unsafe():
    status = make_status(remote_branch="")
    assert not status.is_safe_to_pull


def test_missing_local_branch_is_unsafe():
    status = make_status(local_branch="")
    assert not status.is_safe_to_pull


def test_failed_status():
    status = RepositoryStatus.failed(PATH, "boom")
    assert status.error == "boom"
    assert not status.is_safe_to_pull
    assert not status.is_pull_candidate
    assert not status.is_up_to_date


def test_snapshot_is_immutable():
    status = make_status()
    with pytest.raises(AttributeError):
        status.local_branch = "other"


def test_to_dict():
    data = make_status(untracked=("a.txt",), unpulled_commits=("abc123 Fix",)).to_dict()

    assert data["path"] == str(PATH)
    assert data["untracked"] == ["a.txt"]
    assert data["unpulled_commits"] == ["abc123 Fix"]
    assert data["has_remote_updates"] is True
    assert data["is_safe_to_pull"] is False


def test_summary_counts():
    statuses = [
        make_status(),
        make_status(unpulled_commits=("a",)),
        make_status(unpulled_commits=("a",), stashed=("stash@{0}: WIP",)),
        make_status(remote_branch=""),
        RepositoryStatus.failed(PATH, "boom"),
    ]

    summary = StatusSummary.from_statuses(statuses)

    assert summary.total == 5
    assert summary.up_to_date == 2
    assert summary.behind == 2
    assert summary.safe_to_pull == 1
    assert summary.local_changes == 1
    assert summary.no_upstream == 1
    assert summary.errors == 1


def test_pull_summary_counts():
    results = [
        OperationResult(path=Path("/a"), name="a", success=True, operation="pull"),
        OperationResult(path=Path("/b"), name="b", success=False, operation="pull", error="x"),
        OperationResult(path=Path("/c"), name="c", success=True, operation="pull"),
    ]

    summary = PullSummary.from_results(results)

    assert summary == PullSummary(candidates=3, pulled=2, failed=1)
