"""
Utility helpers shared across backend modules.
"""
from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import Any

BOOL_TRUE_VALUES = frozenset({"1", "true", "yes", "on", "enabled"})
BOOL_FALSE_VALUES = frozenset({"0", "false", "no", "off", "disabled"})


def parse_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in BOOL_TRUE_VALUES:
            return True
        if normalized in BOOL_FALSE_VALUES:
            return False
        try:
            return bool(float(normalized))
        except ValueError:
            pass
    return default


def env_bool(name: str, default: bool) -> bool:
    if not name:
        return default
    raw = os.environ.get(name)
    if raw is None:
        return default
    return parse_bool(raw, default)


def relative_key(path: str | Path, root: str | Path) -> str:
    """Path of `path` relative to `root` with POSIX separators ("" for the root itself)."""
    rel = os.path.relpath(os.path.normpath(str(path)), os.path.normpath(str(root)))
    if rel == ".":
        return ""
    return rel.replace(os.sep, "/")


def hash_relative_path(path: str | Path, root: str | Path) -> str:
    """Stable record id: sha256 of the root-relative path."""
    return hashlib.sha256(relative_key(path, root).encode("utf-8")).hexdigest()


def folder_label(path: str | Path, root: str | Path) -> str:
    """Display label for the directory holding `path`, relative to the root."""
    return relative_key(os.path.dirname(os.path.normpath(str(path))), root)


def remove_extension(path: str) -> str:
    return os.path.splitext(path)[0]


def is_under_path(candidate: str, root: str) -> bool:
    if not candidate or not root:
        return False
    candidate = os.path.normcase(os.path.normpath(candidate))
    root = os.path.normcase(os.path.normpath(root))
    try:
        if os.path.commonpath([candidate, root]) == root:
            return True
    except ValueError:
        pass
    root_sep = root if root.endswith(os.sep) else root + os.sep
    return candidate.startswith(root_sep) or candidate == root
