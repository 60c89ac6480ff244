"""
In-memory index state shared by the scanner, the watcher and the service.

`insert` and `evict` are synchronous, so each one runs to completion on the
event loop before any other task observes the index.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from ...adapters.db.sqlite import CacheStore
from ...adapters.previews import ArtifactStore, GenerationGate, PreviewGenerator
from ...config import IndexSettings
from ...shared import FlagKind, ms
from .background import BackgroundTasks
from .fs_walker import FileSystemWalker
from .models import ImageRecord
from .prompt_cache import ComfyPromptCache
from .recency import RecencyRing
from .unique_index import UniquePromptIndex


@dataclass
class IndexState:
    settings: IndexSettings
    store: CacheStore
    generator: PreviewGenerator
    artifacts: ArtifactStore
    gate: GenerationGate
    tasks: BackgroundTasks
    walker: FileSystemWalker
    unique: UniquePromptIndex
    records: dict[str, ImageRecord] = field(default_factory=dict)
    prompts: ComfyPromptCache = field(default_factory=ComfyPromptCache)
    fresh: RecencyRing = field(default_factory=RecencyRing)
    deleted: RecencyRing = field(default_factory=RecencyRing)
    flags: dict[FlagKind, set[str]] = field(default_factory=lambda: {kind: set() for kind in FlagKind})

    @classmethod
    def create(
        cls,
        settings: IndexSettings,
        store: CacheStore,
        generator: PreviewGenerator | None = None,
    ) -> "IndexState":
        records: dict[str, ImageRecord] = {}

        async def _persist_unique(mapping: dict[str, str]) -> object:
            return await store.asave_unique(mapping)

        return cls(
            settings=settings,
            store=store,
            generator=generator or PreviewGenerator(
                settings.thumbnail_size, settings.compressed_size, settings.preview_quality
            ),
            artifacts=ArtifactStore(settings.thumbnail_dir, settings.compressed_dir),
            gate=GenerationGate(settings.preview_gen_limit),
            tasks=BackgroundTasks(settings.task_limit, name="metadata"),
            walker=FileSystemWalker(
                settings.img_folder,
                excluded=[settings.data_dir],
                ignored_dirs=settings.ignored_dirs,
            ),
            unique=UniquePromptIndex(
                lambda: records,
                _persist_unique,
                rebuild_delay_s=settings.unique_rebuild_delay_s,
                chunk_size=settings.unique_chunk_size,
            ),
            records=records,
            fresh=RecencyRing(settings.fresh_limit),
            deleted=RecencyRing(settings.fresh_limit),
        )

    @property
    def root(self) -> str:
        return self.settings.root

    def insert(self, record: ImageRecord, *, fresh: bool = False, timestamp: int | None = None) -> None:
        """Add or replace `record` and update every derived structure."""
        self.records[record.id] = record
        self.unique.add(record)
        self.prompts.add(record)
        if fresh:
            self.fresh.discard(record.id)
            self.fresh.push(record.id, timestamp if timestamp is not None else ms())

    def evict(self, image_id: str, *, track_deletion: bool = True, timestamp: int | None = None) -> ImageRecord | None:
        """Remove `image_id` from the index; returns the removed record, if any."""
        record = self.records.pop(image_id, None)
        if record is None:
            return None
        self.unique.remove(record)
        self.prompts.remove(image_id)
        if track_deletion:
            self.fresh.discard(image_id)
            self.deleted.push(image_id, timestamp if timestamp is not None else ms())
            for ids in self.flags.values():
                ids.discard(image_id)
        return record
