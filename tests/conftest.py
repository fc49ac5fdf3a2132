from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path

import pytest

import git_pullsafe.config as config_mod


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout


def commit_file(repo: Path, filename: str, content: str = "content\n", message: str | None = None):
    path = repo / filename
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    git(repo, "add", filename)
    git(repo, "commit", "-m", message or f"Add {filename}")


@pytest.fixture(autouse=True)
def _isolated_git(tmp_path, tmp_path_factory, monkeypatch):
    """Keep the user's git config and git-pullsafe config out of the tests."""
    home = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(home / ".gitconfig"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path.parent))
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@test.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@test.com")
    monkeypatch.delenv("GIT_PULLSAFE_CONFIG", raising=False)
    monkeypatch.setattr(config_mod, "CONFIG_FILE", home / "missing-config.toml")


@dataclass
class Remote:
    """A bare repository plus a working clone used to publish new commits."""

    bare: Path
    seed: Path

    def clone(self, dest: Path) -> Path:
        dest.parent.mkdir(parents=True, exist_ok=True)
        git(dest.parent, "clone", str(self.bare), dest.name)
        return dest

    def publish(self, filename: str, content: str = "upstream\n") -> None:
        commit_file(self.seed, filename, content, f"Upstream {filename}")
        git(self.seed, "push", "origin", "main")


def make_remote(base: Path) -> Remote:
    bare = base / "remote.git"
    seed = base / "seed"
    base.mkdir(parents=True, exist_ok=True)
    git(base, "init", "--bare", bare.name)
    git(bare, "symbolic-ref", "HEAD", "refs/heads/main")
    git(base, "init", seed.name)
    git(seed, "checkout", "-b", "main")
    commit_file(seed, "README.md", "# Test\n", "init")
    git(seed, "remote", "add", "origin", str(bare))
    git(seed, "push", "-u", "origin", "main")
    return Remote(bare=bare, seed=seed)


@pytest.fixture
def remote(tmp_path) -> Remote:
    return make_remote(tmp_path / "upstream")
