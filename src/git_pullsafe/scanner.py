"""Repository scanner: finds git repositories under root directories."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from pathlib import Path

logger = logging.getLogger(__name__)

REPOSITORY_MARKER = ".git"


def _path_key(path: str | Path) -> str:
    return os.path.normcase(os.path.abspath(path)).casefold()


class RepositoryScanner:
    """Find repository roots, never descending into a repository once found."""

    def __init__(
        self,
        ignore_paths: Iterable[str | Path] = (),
        ignore_names: Iterable[str] = (),
    ):
        self.ignore_paths = {_path_key(p) for p in ignore_paths}
        self.ignore_names = {n.casefold() for n in ignore_names}

    def _is_ignored(self, path: str) -> bool:
        if _path_key(path) in self.ignore_paths:
            logger.debug("skipping ignored path %s", path)
            return True
        if os.path.basename(path).casefold() in self.ignore_names:
            logger.debug("skipping ignored directory name %s", path)
            return True
        return False

    def _subdirectories(self, path: str) -> list[str] | None:
        """List immediate subdirectories, or None if ``path`` can't be read."""
        try:
            with os.scandir(path) as entries:
                return [e.path for e in entries if e.is_dir(follow_symlinks=False)]
        except OSError as e:
            logger.warning("cannot read directory %s: %s", path, e)
            return None

    def scan_root(self, root: str | Path) -> list[Path]:
        """Collect repository roots reachable from a single root directory."""
        start = os.path.abspath(root)
        if not os.path.isdir(start):
            logger.debug("root %s does not exist, skipping", start)
            return []

        found: list[Path] = []
        stack = [start]
        while stack:
            current = stack.pop()
            if self._is_ignored(current):
                continue
            if os.path.isdir(os.path.join(current, REPOSITORY_MARKER)):
                found.append(Path(current))
                continue
            children = self._subdirectories(current)
            if children:
                stack.extend(sorted(children, key=str.casefold, reverse=True))
        return found

    def scan(self, roots: Iterable[str | Path]) -> list[Path]:
        """Return repository roots under all ``roots``.

        Duplicates (compared case-insensitively) are dropped and the result is
        sorted case-insensitively so output is stable across runs.
        """
        unique: dict[str, Path] = {}
        for root in roots:
            for repo in self.scan_root(root):
                unique.setdefault(_path_key(repo), repo)
        return sorted(unique.values(), key=lambda p: str(p).casefold())
