"""
Record model and builders.

All builders are pure functions; records are immutable and replaced wholesale
(`dataclasses.replace`) when a field changes.
"""
from __future__ import annotations

import os
from dataclasses import asdict, dataclass, replace
from typing import Any

from ...utils import folder_label, hash_relative_path


@dataclass(frozen=True)
class ImageRecord:
    id: str
    file: str
    folder: str = ""
    modified_date: int = 0
    created_date: int = 0
    prompt: str | None = None
    workflow: str | None = None

    @property
    def has_metadata(self) -> bool:
        return bool(self.prompt or self.workflow)

    @property
    def name(self) -> str:
        return os.path.basename(self.file)


# Fields whose change turns a cached row into an update.
DIFF_FIELDS = ("file", "folder", "modified_date", "created_date", "prompt", "workflow")


def build_record(
    *,
    path: str,
    root: str,
    modified_date: int = 0,
    created_date: int = 0,
    prompt: str | None = None,
    workflow: str | None = None,
) -> ImageRecord:
    """Fresh record for `path`; id and folder are derived from the root-relative path."""
    abs_path = os.path.abspath(path)
    return ImageRecord(
        id=hash_relative_path(abs_path, root),
        file=abs_path,
        folder=folder_label(abs_path, root),
        modified_date=int(modified_date or 0),
        created_date=int(created_date or 0),
        prompt=prompt or None,
        workflow=workflow or None,
    )


def record_from_row(row: dict[str, Any], *, file: str | None = None, folder: str | None = None) -> ImageRecord:
    """Record from a cache row, optionally refreshing the location fields."""
    return ImageRecord(
        id=str(row.get("id") or ""),
        file=str(file if file is not None else row.get("file") or ""),
        folder=str(folder if folder is not None else row.get("folder") or ""),
        modified_date=int(row.get("modified_date") or 0),
        created_date=int(row.get("created_date") or 0),
        prompt=row.get("prompt") or None,
        workflow=row.get("workflow") or None,
    )


def record_to_row(record: ImageRecord) -> dict[str, Any]:
    return asdict(record)


def record_differs(record: ImageRecord, row: dict[str, Any]) -> bool:
    current = record_to_row(record)
    for key in DIFF_FIELDS:
        old = row.get(key)
        new = current.get(key)
        if key in ("modified_date", "created_date"):
            if int(old or 0) != int(new or 0):
                return True
        elif (old or None) != (new or None):
            return True
    return False


def with_metadata(
    record: ImageRecord,
    *,
    prompt: str | None = None,
    workflow: str | None = None,
) -> ImageRecord:
    return replace(record, prompt=prompt or None, workflow=workflow or None)


def with_dates(record: ImageRecord, modified_date: int, created_date: int) -> ImageRecord:
    return replace(record, modified_date=int(modified_date or 0), created_date=int(created_date or 0))
