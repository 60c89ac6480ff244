"""
Cold-scan indexer.

`IndexScanner.index_files()` reconciles the in-memory index with the image tree
and the persistent cache:

    walk -> adopt cached rows -> stat new files -> sidecar pass -> embedded pass
         -> prompt cache -> unique index -> cache diff -> stale artifact cleanup

Passes are idempotent; a second run with no filesystem changes writes an empty
diff. Overlapping calls are serialized.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
import os
from typing import Any

from ...adapters.db.sqlite import load_legacy_cache
from ...config import LEGACY_CACHE_RENAMED
from ...shared import (
    ErrorCode,
    Result,
    format_elapsed,
    get_logger,
    log_structured,
    log_success,
    ms,
    scan_id_var,
)
from ...utils import folder_label, hash_relative_path, remove_extension
from ..metadata.extractors import SIDECAR_EXTENSIONS, read_embedded_metadata, read_file_dates, read_sidecar_text
from .models import ImageRecord, build_record, record_differs, record_from_row, record_to_row, with_dates, with_metadata
from .state import IndexState

logger = get_logger(__name__)

_SCAN_COUNTER = itertools.count(1)


def _sidecar_rank(path: str) -> int:
    ext = os.path.splitext(path)[1].lower()
    try:
        return SIDECAR_EXTENSIONS.index(ext)
    except ValueError:
        return len(SIDECAR_EXTENSIONS)


def map_sidecars(sidecars: list[str]) -> dict[str, str]:
    """Extensionless path -> preferred sidecar (first in extension priority order)."""
    out: dict[str, str] = {}
    for path in sorted(sidecars, key=_sidecar_rank):
        out.setdefault(remove_extension(path), path)
    return out


class IndexScanner:
    def __init__(self, state: IndexState):
        self._state = state
        self._lock = asyncio.Lock()
        self.scans_completed = 0
        self.last_stats: dict[str, Any] = {}

    @property
    def is_scanning(self) -> bool:
        return self._lock.locked()

    async def index_files(self) -> Result[dict[str, Any]]:
        """Full reconciliation pass; concurrent callers queue behind the running scan."""
        async with self._lock:
            token = scan_id_var.set(f"scan-{next(_SCAN_COUNTER)}")
            try:
                return await self._index_files()
            finally:
                scan_id_var.reset(token)

    async def _load_snapshot(self) -> tuple[dict[str, dict[str, Any]], bool]:
        state = self._state
        loaded = await state.store.aload_all()
        rows = loaded.data if loaded.ok and loaded.data is not None else {}
        if not loaded.ok:
            logger.warning("Cache unavailable (%s); rebuilding from disk", loaded.error)

        legacy_path = state.settings.legacy_cache_path
        if not legacy_path.is_file():
            return rows, False
        legacy = await asyncio.to_thread(load_legacy_cache, legacy_path, state.settings.root)
        if legacy.ok and legacy.data is not None and len(legacy.data) > len(rows):
            logger.info("Using legacy cache %s (%d entries)", legacy_path.name, len(legacy.data))
            return legacy.data, True
        return rows, False

    async def _index_files(self) -> Result[dict[str, Any]]:
        state = self._state
        settings = state.settings
        root = settings.root
        start = ms()
        stats: dict[str, Any] = dict.fromkeys(
            ("found", "cached", "new", "sidecar", "embedded", "with_metadata",
             "added", "updated", "deleted", "cleaned"),
            0,
        )
        track_rings = self.scans_completed > 0

        if not os.path.isdir(root):
            logger.error("Image folder does not exist: %s", root)
            return Result.Err(ErrorCode.NOT_FOUND, f"Image folder not found: {root}")

        await asyncio.to_thread(settings.ensure_directories)
        rows, migrating = await self._load_snapshot()

        logger.info("Scanning %s ...", root)
        walk = await asyncio.to_thread(state.walker.walk)
        stats["found"] = len(walk.images)
        sidecars = map_sidecars(walk.sidecars)

        seen: set[str] = set()
        needs_data: list[ImageRecord] = []
        for path in walk.images:
            abs_path = os.path.abspath(path)
            image_id = hash_relative_path(abs_path, root)
            seen.add(image_id)
            current = state.records.get(image_id)
            if current is not None and current.file == abs_path:
                continue
            row = rows.get(image_id)
            if row is not None:
                state.records[image_id] = record_from_row(row, file=abs_path, folder=folder_label(abs_path, root))
                continue
            needs_data.append(build_record(path=abs_path, root=root))
        stats["cached"] = stats["found"] - len(needs_data)
        stats["new"] = len(needs_data)

        needs_data = await self._fill_dates(needs_data)
        needs_data.sort(key=lambda r: r.modified_date, reverse=True)
        for record in needs_data:
            state.insert(record, fresh=track_rings)

        state.gate.disabled = True
        try:
            remaining = await self._sidecar_pass(needs_data, sidecars, stats)
            await self._embedded_pass(remaining, stats)
            logger.info("Building ComfyUI prompt cache...")
            state.prompts.build(state.records.values())
        finally:
            state.gate.disabled = False

        stale = [
            i for i, r in state.records.items()
            if i not in seen and (not os.path.exists(r.file) or state.walker.is_ignored_path(r.file))
        ]
        for image_id in stale:
            state.evict(image_id, track_deletion=track_rings)

        await self._rebuild_unique(reuse_snapshot=not needs_data)
        await self._write_cache(rows, migrating, stats)

        stats["cleaned"] = await asyncio.to_thread(
            state.artifacts.clean_stale, frozenset(state.records), tmp_before=start / 1000
        )
        stats["with_metadata"] = sum(1 for r in state.records.values() if r.has_metadata)
        stats["elapsed_ms"] = ms() - start
        self.scans_completed += 1
        self.last_stats = stats
        log_success(
            logger,
            "Indexed %d images (%d new, %d cached, %d removed) in %s",
            len(state.records),
            stats["new"],
            stats["cached"],
            stats["deleted"],
            format_elapsed(start),
        )
        log_structured(
            logger, logging.DEBUG, "scan_complete", scan_id=scan_id_var.get(), images=len(state.records), **stats
        )
        return Result.Ok(stats)

    async def _fill_dates(self, records: list[ImageRecord]) -> list[ImageRecord]:
        semaphore = asyncio.Semaphore(self._state.settings.basic_read_concurrency)

        async def _one(record: ImageRecord) -> ImageRecord:
            async with semaphore:
                modified, created = await asyncio.to_thread(read_file_dates, record.file)
            return with_dates(record, modified, created)

        return list(await asyncio.gather(*(_one(r) for r in records)))

    def _apply_metadata(self, record: ImageRecord, prompt: str | None, workflow: str | None) -> bool:
        current = self._state.records.get(record.id)
        if current is None:
            return False
        self._state.insert(with_metadata(current, prompt=prompt, workflow=workflow))
        return True

    async def _sidecar_pass(
        self,
        records: list[ImageRecord],
        sidecars: dict[str, str],
        stats: dict[str, Any],
    ) -> list[ImageRecord]:
        state = self._state
        remaining: list[ImageRecord] = []
        with_sidecar = [(r, sidecars[remove_extension(r.file)]) for r in records if remove_extension(r.file) in sidecars]
        pending = {r.id for r, _ in with_sidecar}
        remaining.extend(r for r in records if r.id not in pending)
        if not with_sidecar:
            return remaining

        logger.info("Reading %d sidecar files...", len(with_sidecar))

        def _job(record: ImageRecord, sidecar: str):
            async def _run() -> None:
                text = await asyncio.to_thread(read_sidecar_text, sidecar)
                if text and self._apply_metadata(record, text, None):
                    stats["sidecar"] += 1
                else:
                    remaining.append(record)
            return _run

        for record, sidecar in with_sidecar:
            state.tasks.add_work(_job(record, sidecar))
        await state.tasks.join()
        return remaining

    async def _embedded_pass(self, records: list[ImageRecord], stats: dict[str, Any]) -> None:
        state = self._state
        if not records:
            return
        logger.info("Reading embedded metadata from %d images...", len(records))

        def _job(record: ImageRecord):
            async def _run() -> None:
                prompt, workflow = await asyncio.to_thread(read_embedded_metadata, record.file)
                if (prompt or workflow) and self._apply_metadata(record, prompt, workflow):
                    stats["embedded"] += 1
            return _run

        previous = state.tasks.limit
        state.tasks.limit = state.settings.embedded_task_limit
        try:
            for record in records:
                state.tasks.add_work(_job(record))
            await state.tasks.join()
        finally:
            state.tasks.limit = previous

    async def _rebuild_unique(self, *, reuse_snapshot: bool) -> None:
        state = self._state
        snapshot = None
        if reuse_snapshot:
            loaded = await state.store.aload_unique()
            snapshot = loaded.data if loaded.ok else None
        reused = await state.unique.rebuild(state.records, snapshot)
        logger.info(
            "Unique prompt index %s with %d prompts",
            "restored" if reused else "built",
            state.unique.prompt_count,
        )
        saved = await state.store.asave_unique(state.unique.snapshot())
        if not saved.ok:
            logger.warning("Failed to persist unique prompt index: %s", saved.error)

    def _diff(self, rows: dict[str, dict[str, Any]]) -> tuple[list[dict[str, Any]], list[dict[str, Any]], list[str]]:
        """Disjoint additions / updates / deletions of the index against cached `rows`."""
        records = self._state.records
        additions: list[dict[str, Any]] = []
        updates: list[dict[str, Any]] = []
        for image_id, record in records.items():
            row = rows.get(image_id)
            if row is None:
                additions.append(record_to_row(record))
            elif record_differs(record, row):
                updates.append(record_to_row(record))
        deletions = [image_id for image_id in rows if image_id not in records]
        return additions, updates, deletions

    async def _write_cache(self, rows: dict[str, dict[str, Any]], migrating: bool, stats: dict[str, Any]) -> None:
        state = self._state
        additions, updates, deletions = self._diff(rows)
        stats["added"], stats["updated"], stats["deleted"] = len(additions), len(updates), len(deletions)

        if migrating:
            written = await state.store.aset_all([record_to_row(r) for r in state.records.values()])
            if written.ok:
                await asyncio.to_thread(self._retire_legacy_cache)
        else:
            written = await state.store.awrite_diff(additions, updates, deletions)
        if not written.ok:
            logger.error("Failed to persist index cache: %s", written.error)

    async def persist(self) -> Result[dict[str, int]]:
        """Write changes made since the last scan (watcher activity) to the cache."""
        async with self._lock:
            loaded = await self._state.store.aload_all()
            if not loaded.ok or loaded.data is None:
                return Result.Err(loaded.code, loaded.error or "Cache unavailable")
            additions, updates, deletions = self._diff(loaded.data)
            written = await self._state.store.awrite_diff(additions, updates, deletions)
            saved = await self._state.store.asave_unique(self._state.unique.snapshot())
            if not saved.ok:
                logger.warning("Failed to persist unique prompt index: %s", saved.error)
            return written

    def _retire_legacy_cache(self) -> None:
        legacy = self._state.settings.legacy_cache_path
        try:
            os.replace(legacy, legacy.with_name(LEGACY_CACHE_RENAMED))
            logger.info("Legacy cache migrated; renamed to %s", LEGACY_CACHE_RENAMED)
        except OSError as exc:
            logger.warning("Failed to rename legacy cache %s: %s", legacy, exc)
