"""
Index Service - owns the index state and exposes the query/mutation API.

This service coordinates the specialized components:
- IndexScanner: cold scan and cache reconciliation
- IndexWatcher: live filesystem changes and the polling fallback
- searcher: boolean matching, duplicate collapse and sorting
- UniquePromptIndex / ComfyPromptCache: derived indexes kept on the state
"""
from __future__ import annotations

import asyncio
import os
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Literal

from ...shared import ErrorCode, FlagKind, Result, SearchMode, get_logger, log_success
from ..metadata.extractors import sidecar_candidates
from ..metadata.interpreter import (
    Dialect,
    detect_dialect,
    get_model,
    get_model_hash,
    text_for_field,
)
from .models import ImageRecord
from .scanner import IndexScanner
from .searcher import search_records, sort_records
from .state import IndexState
from .watcher import IndexWatcher

logger = get_logger(__name__)

PreviewKind = Literal["thumbnail", "compressed"]


def _as_list(ids: str | Iterable[str]) -> list[str]:
    if isinstance(ids, str):
        return [ids]
    return [str(i) for i in ids]


class IndexService:
    """
    Handles indexing, live updates and search over the image folder.

    Readers only see `state.records` and the derived indexes; every mutation
    goes through the scanner, the watcher or the helpers below.
    """

    def __init__(self, state: IndexState):
        self.state = state
        self.scanner = IndexScanner(state)
        self.watcher = IndexWatcher(state, self.scanner)

    # ==================== Lifecycle ====================

    async def start(self) -> Result[dict[str, Any]]:
        """Cold scan, then hand over to the watcher."""
        result = await self.scanner.index_files()
        if not result.ok:
            return result
        await self.watcher.start()
        return result

    async def reconcile(self) -> Result[dict[str, Any]]:
        return await self.scanner.index_files()

    async def shutdown(self) -> None:
        await self.watcher.stop()
        await self.state.unique.cancel()
        await self.state.tasks.cancel()
        persisted = await self.scanner.persist()
        if not persisted.ok:
            logger.warning("Failed to persist index on shutdown: %s", persisted.error)
        await self.state.store.aclose()
        log_success(logger, "Index service stopped")

    # ==================== Queries ====================

    def get_record(self, image_id: str) -> ImageRecord | None:
        return self.state.records.get(image_id)

    def search(
        self,
        query: str,
        filters: list[str] | None = None,
        mode: SearchMode | str = SearchMode.CONTAINS,
        collapse: bool = False,
        since: int | None = None,
    ) -> list[ImageRecord]:
        """
        Records matching `query` and every filter.

        With `since`, only records added after that timestamp (Fresh Ring) are
        considered; with `collapse`, duplicate prompts keep one representative.
        """
        source = self.get_fresh_since(since) if since else self.state.records.values()
        return search_records(
            source,
            query,
            filters,
            mode,
            prompt_cache=self.state.prompts,
            is_unique=self.state.unique.is_unique if collapse else None,
        )

    def sort(self, records: Iterable[ImageRecord], method: str) -> list[ImageRecord]:
        return sort_records(records, method)

    def get_details(self, image_id: str) -> Result[dict[str, Any]]:
        """Interpreted prompt fields for one record."""
        record = self.get_record(image_id)
        if record is None:
            return Result.Err(ErrorCode.NOT_FOUND, f"Image not found: {image_id}")
        prompts = self.state.prompts
        dialect = detect_dialect(record, prompts) if record.has_metadata else None
        return Result.Ok(
            {
                "id": record.id,
                "file": record.file,
                "folder": record.folder,
                "modified_date": record.modified_date,
                "created_date": record.created_date,
                "dialect": dialect.value if isinstance(dialect, Dialect) else None,
                "positive": text_for_field(record, "positive", prompts),
                "negative": text_for_field(record, "negative", prompts),
                "params": text_for_field(record, "params", prompts),
                "model": get_model(record.prompt),
                "model_hash": get_model_hash(record.prompt),
                "flags": [kind.value for kind, ids in self.state.flags.items() if record.id in ids],
            }
        )

    def get_fresh_since(self, timestamp: int) -> list[ImageRecord]:
        """Records added after `timestamp`, newest first; ids no longer indexed are skipped."""
        records = self.state.records
        return [records[e.id] for e in self.state.fresh.since(timestamp) if e.id in records]

    def get_fresh_timestamp(self, image_id: str) -> int | None:
        if not image_id:
            return None
        return self.state.fresh.timestamp_of(image_id)

    def get_deleted_ids_since(self, timestamp: int) -> list[str]:
        return [e.id for e in self.state.deleted.since(timestamp)]

    def stats(self) -> dict[str, Any]:
        state = self.state
        return {
            "images": len(state.records),
            "unique_prompts": state.unique.prompt_count,
            "comfy_prompts": len(state.prompts),
            "fresh": len(state.fresh),
            "deleted": len(state.deleted),
            "flags": {kind.value: len(ids) for kind, ids in state.flags.items()},
            "scanning": self.scanner.is_scanning,
            "scans_completed": self.scanner.scans_completed,
            "last_scan": dict(self.scanner.last_stats),
            "watcher_running": self.watcher.is_running,
            "generation_disabled": state.gate.disabled,
            "tasks": {
                "running": state.tasks.running,
                "pending": state.tasks.pending,
                "completed": state.tasks.completed,
                "failed": state.tasks.failed,
            },
        }

    # ==================== Mutations ====================

    def mark_flag(self, ids: str | Iterable[str], kind: FlagKind | str, on: bool) -> Result[int]:
        """Set or clear `kind` on each id; returns how many ids changed."""
        try:
            flag = FlagKind(kind)
        except ValueError:
            return Result.Err(ErrorCode.INVALID_INPUT, f"Unknown flag: {kind}")
        flagged = self.state.flags[flag]
        changed = 0
        for image_id in _as_list(ids):
            if on and image_id not in flagged:
                flagged.add(image_id)
                changed += 1
            elif not on and image_id in flagged:
                flagged.discard(image_id)
                changed += 1
        return Result.Ok(changed)

    def flagged(self, kind: FlagKind | str) -> set[str]:
        return set(self.state.flags.get(FlagKind(kind), ()))

    async def delete_records(self, ids: str | Iterable[str]) -> Result[dict[str, int]]:
        """Delete image files with their sidecars and artifacts, then evict them."""
        state = self.state
        deleted = 0
        failed = 0
        missing = 0
        for image_id in _as_list(ids):
            record = state.records.get(image_id)
            if record is None:
                missing += 1
                continue
            try:
                await asyncio.to_thread(os.remove, record.file)
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.debug("Failed to delete %s: %s", record.file, exc)
                failed += 1
                continue
            state.evict(image_id)
            await asyncio.to_thread(self._delete_leftovers, record)
            deleted += 1
        if failed:
            logger.warning("Failed to delete %d images", failed)
        return Result.Ok({"deleted": deleted, "failed": failed, "missing": missing})

    def _delete_leftovers(self, record: ImageRecord) -> None:
        for sidecar in sidecar_candidates(record.file):
            try:
                os.remove(sidecar)
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.debug("Failed to delete sidecar %s: %s", sidecar, exc)
        self.state.artifacts.delete(record.id)

    async def resolve_preview(self, image_id: str, kind: PreviewKind = "thumbnail") -> Result[str]:
        """
        Path to serve for a preview of `image_id`.

        Returns the cached artifact when present, the original file when
        generation is disabled or saturated (meta `degraded=True`), else a
        freshly generated artifact.
        """
        state = self.state
        record = self.get_record(image_id)
        if record is None:
            return Result.Err(ErrorCode.NOT_FOUND, f"Image not found: {image_id}")
        if kind == "thumbnail":
            target: Path = state.artifacts.thumbnail_path(image_id)
            generate = state.generator.generate_thumbnail
        elif kind == "compressed":
            target = state.artifacts.compressed_path(image_id)
            generate = state.generator.generate_compressed
        else:
            return Result.Err(ErrorCode.INVALID_INPUT, f"Unknown preview kind: {kind}")

        if target.is_file():
            return Result.Ok(str(target))
        if not state.gate.try_acquire():
            return Result.Ok(record.file, degraded=True)
        try:
            await asyncio.to_thread(state.artifacts.ensure_dirs)
            generated = await generate(record.file, str(target))
        finally:
            state.gate.release()
        if not generated.ok:
            logger.debug("Preview generation failed for %s: %s", record.file, generated.error)
            return Result.Ok(record.file, degraded=True)
        return Result.Ok(str(target))
