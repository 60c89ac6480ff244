"""
Unique-prompt index used to collapse duplicate generations in search results.

Two structures are kept in step: the set of representative ids and the map
from normalized prompt to representative id. The most recently added record
for a normalized prompt is its representative. A size mismatch after a removal
schedules a debounced rebuild from the primary index.
"""
from __future__ import annotations

import asyncio
import re
from collections.abc import Awaitable, Callable, Iterable, Mapping

from ...shared import get_logger, log_success
from .models import ImageRecord

logger = get_logger(__name__)

_SEED_RE = re.compile(r"(, )?seed: \d+", re.IGNORECASE)
_VERSION_RE = re.compile(r"(, )?([^,]*)version: [^,]*", re.IGNORECASE)
# Separates prompt text from the folder label in a normalized key.
FOLDER_SEPARATOR = "\x1f"


def simplify_prompt(prompt: str | None, folder: str | None = None) -> str:
    """Normalized dedup key: first seed token and every version segment removed, folder appended."""
    if prompt is None:
        return ""
    text = _SEED_RE.sub("", prompt, count=1)
    text = _VERSION_RE.sub("", text)
    return f"{text}{FOLDER_SEPARATOR}{folder or ''}"


RecordsProvider = Callable[[], Mapping[str, ImageRecord]]
PersistCallback = Callable[[dict[str, str]], Awaitable[object]]


class UniquePromptIndex:
    def __init__(
        self,
        records_provider: RecordsProvider | None = None,
        persist: PersistCallback | None = None,
        *,
        rebuild_delay_s: float = 5.0,
        chunk_size: int = 1000,
    ):
        self._records_provider = records_provider
        self._persist = persist
        self._rebuild_delay_s = max(0.0, float(rebuild_delay_s))
        self._chunk_size = max(1, int(chunk_size))
        self._representatives: set[str] = set()
        self._by_prompt: dict[str, str] = {}
        self._key_by_id: dict[str, str] = {}
        self._rebuild_handle: asyncio.TimerHandle | None = None
        self._rebuild_task: asyncio.Task | None = None
        self.rebuilds = 0

    def __len__(self) -> int:
        return len(self._representatives)

    @property
    def prompt_count(self) -> int:
        return len(self._by_prompt)

    @property
    def consistent(self) -> bool:
        return len(self._representatives) == len(self._by_prompt)

    def is_unique(self, image_id: str) -> bool:
        return image_id in self._representatives

    def snapshot(self) -> dict[str, str]:
        return dict(self._by_prompt)

    def add(self, record: ImageRecord) -> None:
        """Install `record` as representative of its normalized prompt (last write wins)."""
        if not record.prompt:
            self._drop_id(record.id)
            return
        key = simplify_prompt(record.prompt, record.folder)
        old_key = self._key_by_id.get(record.id)
        if old_key is not None and old_key != key and self._by_prompt.get(old_key) == record.id:
            del self._by_prompt[old_key]
        existing = self._by_prompt.get(key)
        if existing is not None and existing != record.id:
            self._representatives.discard(existing)
            self._key_by_id.pop(existing, None)
        self._representatives.add(record.id)
        self._by_prompt[key] = record.id
        self._key_by_id[record.id] = key

    def remove(self, record: ImageRecord | None) -> None:
        if record is None:
            return
        self._drop_id(record.id, fallback_key=simplify_prompt(record.prompt, record.folder) if record.prompt else None)
        if not self.consistent:
            logger.warning(
                "Unique prompt index out of sync (%d ids, %d prompts); scheduling rebuild",
                len(self._representatives),
                len(self._by_prompt),
            )
            self.schedule_rebuild()

    def _drop_id(self, image_id: str, fallback_key: str | None = None) -> None:
        key = self._key_by_id.pop(image_id, None) or fallback_key
        if key is not None and self._by_prompt.get(key) == image_id:
            del self._by_prompt[key]
        self._representatives.discard(image_id)

    async def rebuild(
        self,
        records: Mapping[str, ImageRecord] | Iterable[ImageRecord],
        snapshot: Mapping[str, str] | None = None,
    ) -> bool:
        """
        Rebuild both structures from `records`.

        A persisted `snapshot` is adopted as-is when it is self-consistent and
        every id it names is still indexed. Returns True when the snapshot was reused.
        """
        items = list(records.values()) if isinstance(records, Mapping) else list(records)
        if snapshot and self._snapshot_usable(snapshot, {r.id: r for r in items}):
            self._install(dict(snapshot))
            logger.debug("Unique prompt index restored from snapshot (%d prompts)", len(snapshot))
            return True

        # Oldest first, so the newest duplicate ends up as representative.
        items.sort(key=lambda r: r.modified_date)
        by_prompt: dict[str, str] = {}
        for start in range(0, len(items), self._chunk_size):
            for record in items[start:start + self._chunk_size]:
                if not record.prompt:
                    continue
                by_prompt[simplify_prompt(record.prompt, record.folder)] = record.id
            await asyncio.sleep(0)
        self._install(by_prompt)
        self.rebuilds += 1
        return False

    @staticmethod
    def _snapshot_usable(snapshot: Mapping[str, str], records: Mapping[str, ImageRecord]) -> bool:
        ids = list(snapshot.values())
        if len(set(ids)) != len(ids):
            return False
        for key, image_id in snapshot.items():
            record = records.get(image_id)
            if record is None or not record.prompt:
                return False
            if simplify_prompt(record.prompt, record.folder) != key:
                return False
        return True

    def _install(self, by_prompt: dict[str, str]) -> None:
        self._by_prompt = by_prompt
        self._key_by_id = {image_id: key for key, image_id in by_prompt.items()}
        self._representatives = set(by_prompt.values())

    def schedule_rebuild(self) -> None:
        """Debounced single-shot rebuild; a newer call supersedes a pending one."""
        if self._records_provider is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; unique rebuild not scheduled")
            return
        if self._rebuild_handle is not None:
            self._rebuild_handle.cancel()
        self._rebuild_handle = loop.call_later(self._rebuild_delay_s, self._start_scheduled_rebuild)

    def _start_scheduled_rebuild(self) -> None:
        self._rebuild_handle = None
        self._rebuild_task = asyncio.ensure_future(self._scheduled_rebuild())

    async def _scheduled_rebuild(self) -> None:
        if self._records_provider is None:
            return
        logger.info("Rebuilding unique prompt index...")
        await self.rebuild(self._records_provider())
        if self._persist is not None:
            await self._persist(self.snapshot())
        log_success(logger, "Unique prompt index rebuilt with %d prompts", len(self._by_prompt))

    async def cancel(self) -> None:
        if self._rebuild_handle is not None:
            self._rebuild_handle.cancel()
            self._rebuild_handle = None
        task = self._rebuild_task
        self._rebuild_task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
