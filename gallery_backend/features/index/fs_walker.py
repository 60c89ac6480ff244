"""
FileSystemWalker: depth-first traversal of the image tree for cold scans and polling.

Iterative `os.scandir` with an explicit stack, so deep trees never hit the
recursion limit. Blocking; run it through `asyncio.to_thread`.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from ...shared import FileKind, classify_file, get_logger
from ...utils import is_under_path

logger = get_logger(__name__)


@dataclass
class WalkResult:
    images: list[str] = field(default_factory=list)
    sidecars: list[str] = field(default_factory=list)
    unreadable: list[str] = field(default_factory=list)
    directories: int = 0


class FileSystemWalker:
    """Collects image and sidecar paths under `root`, skipping ignored and hidden directories."""

    def __init__(
        self,
        root: str | Path,
        *,
        excluded: list[str | Path] | None = None,
        ignored_dirs: frozenset[str] | set[str] = frozenset(),
    ) -> None:
        self.root = os.path.normpath(str(root))
        self._excluded = [os.path.normpath(str(p)) for p in (excluded or [])]
        self._ignored_dirs = {name.lower() for name in ignored_dirs}

    def is_ignored_dir(self, path: str, name: str | None = None) -> bool:
        base = name if name is not None else os.path.basename(path)
        if base.startswith(".") or base.lower() in self._ignored_dirs:
            return True
        return any(is_under_path(path, excluded) for excluded in self._excluded)

    def is_ignored_path(self, path: str) -> bool:
        """True when any directory between the root and `path` is ignored."""
        norm = os.path.normpath(path)
        if any(is_under_path(norm, excluded) for excluded in self._excluded):
            return True
        try:
            rel = os.path.relpath(os.path.dirname(norm), self.root)
        except ValueError:
            return True
        if rel == ".":
            return False
        for part in Path(rel).parts:
            if part == "..":
                return True
            if part.startswith(".") or part.lower() in self._ignored_dirs:
                return True
        return False

    def walk(self) -> WalkResult:
        result = WalkResult()
        stack: list[str] = [self.root]
        while stack:
            current = stack.pop()
            result.directories += 1
            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except OSError as exc:
                logger.warning("Cannot read directory %s: %s", current, exc)
                result.unreadable.append(current)
                continue
            for entry in entries:
                kind = self._classify(entry)
                if kind == "image":
                    result.images.append(entry.path)
                elif kind == "sidecar":
                    result.sidecars.append(entry.path)
                elif self._is_dir(entry) and not self.is_ignored_dir(entry.path, entry.name):
                    stack.append(entry.path)
        return result

    @staticmethod
    def _is_dir(entry: os.DirEntry) -> bool:
        try:
            return entry.is_dir(follow_symlinks=False)
        except OSError:
            return False

    @staticmethod
    def _classify(entry: os.DirEntry) -> FileKind:
        try:
            if not entry.is_file(follow_symlinks=True):
                return "unknown"
        except OSError:
            return "unknown"
        return classify_file(entry.name)
