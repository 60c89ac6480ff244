"""
File system watcher that keeps the live index in sync after the cold scan.

The watchdog observer thread only classifies events; every index mutation runs
on the event loop through `asyncio.run_coroutine_threadsafe`, so each handler
executes as one uninterrupted synchronous section between awaits.

Event mapping:
- file created/modified: settle debounce, then `handle_add`
- file deleted: `handle_unlink`
- file moved: `handle_rename` (or add/unlink when only one side is an image)
- directory created/moved: debounced full `index_files()`
- directory deleted: `handle_unlink_dir`
"""
from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable
from concurrent.futures import Future
from typing import Any

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from ...shared import get_logger, is_image
from ...utils import hash_relative_path, is_under_path
from ..metadata.extractors import read_metadata
from .fs_walker import FileSystemWalker
from .models import ImageRecord, build_record
from .scanner import IndexScanner
from .state import IndexState

logger = get_logger(__name__)

AsyncCallback = Callable[..., Awaitable[Any]]


def _log_callback_failure(future: Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.warning("Watcher callback failed: %s", exc)


class GalleryWatchHandler(FileSystemEventHandler):
    """
    Classifies watchdog events and forwards them to the loop.

    New files are held for `settle_s` (re-armed by modify events) so partially
    written images are not read mid-write.
    """

    def __init__(
        self,
        on_file_ready: AsyncCallback,
        on_file_removed: AsyncCallback,
        on_file_moved: AsyncCallback,
        on_dir_changed: AsyncCallback,
        on_dir_removed: AsyncCallback,
        walker: FileSystemWalker,
        loop: asyncio.AbstractEventLoop,
        settle_s: float = 0.5,
    ):
        super().__init__()
        self._on_file_ready = on_file_ready
        self._on_file_removed = on_file_removed
        self._on_file_moved = on_file_moved
        self._on_dir_changed = on_dir_changed
        self._on_dir_removed = on_dir_removed
        self._walker = walker
        self._loop = loop
        self._settle_s = max(0.0, float(settle_s))
        # Loop-thread only.
        self._pending: dict[str, asyncio.TimerHandle] = {}

    @staticmethod
    def _normalize_path(path: str) -> str:
        return os.path.normpath(os.path.abspath(path))

    def _is_ignored_dir(self, path: str) -> bool:
        return self._walker.is_ignored_path(path) or self._walker.is_ignored_dir(path)

    def _is_supported(self, path: str) -> bool:
        return bool(path) and is_image(path) and not self._walker.is_ignored_path(path)

    def get_pending_count(self) -> int:
        return len(self._pending)

    # ---- watchdog callbacks (observer thread) ----

    def on_created(self, event):
        path = self._normalize_path(str(event.src_path))
        if event.is_directory:
            if not self._is_ignored_dir(path):
                self._emit(self._on_dir_changed, path)
            return
        self._handle_file(path)

    def on_modified(self, event):
        if event.is_directory:
            return
        path = self._normalize_path(str(event.src_path))
        if self._is_supported(path):
            self._loop.call_soon_threadsafe(self._rearm_pending, path)

    def on_deleted(self, event):
        path = self._normalize_path(str(event.src_path))
        if event.is_directory:
            self._emit(self._on_dir_removed, path)
            return
        self._handle_deleted_file(path)

    def on_moved(self, event):
        src = self._normalize_path(str(event.src_path))
        dst = self._normalize_path(str(event.dest_path))
        if event.is_directory:
            if not self._is_ignored_dir(dst):
                self._emit(self._on_dir_changed, dst)
            # Records under the old location are evicted by the reindex.
            return
        self._handle_moved_file(src, dst)

    # ---- dispatch ----

    def _handle_file(self, path: str) -> None:
        if not self._is_supported(path):
            return
        self._loop.call_soon_threadsafe(self._arm_pending, path)

    def _handle_deleted_file(self, path: str) -> None:
        if not path or not is_image(path):
            return
        self._loop.call_soon_threadsafe(self._cancel_pending, path)
        self._emit(self._on_file_removed, path)

    def _handle_moved_file(self, src_path: str, dest_path: str) -> None:
        mode = self._moved_file_mode(src_ok=is_image(src_path), dst_ok=self._is_supported(dest_path))
        if mode == "ignore":
            return
        if mode == "delete":
            self._handle_deleted_file(src_path)
            return
        if mode == "create":
            self._handle_file(dest_path)
            return
        self._loop.call_soon_threadsafe(self._cancel_pending, src_path)
        self._emit(self._on_file_moved, src_path, dest_path)

    @staticmethod
    def _moved_file_mode(*, src_ok: bool, dst_ok: bool) -> str:
        if not src_ok and not dst_ok:
            return "ignore"
        if src_ok and not dst_ok:
            return "delete"
        if dst_ok and not src_ok:
            return "create"
        return "move"

    def _emit(self, callback: AsyncCallback, *args: Any) -> Future | None:
        try:
            future = asyncio.run_coroutine_threadsafe(callback(*args), self._loop)
        except RuntimeError as exc:
            logger.debug("Watcher event dropped (%s): %s", exc, args)
            return None
        future.add_done_callback(_log_callback_failure)
        return future

    # ---- settle debounce (loop thread) ----

    def _arm_pending(self, path: str) -> None:
        handle = self._pending.pop(path, None)
        if handle is not None:
            handle.cancel()
        self._pending[path] = self._loop.call_later(self._settle_s, self._settled, path)

    def _rearm_pending(self, path: str) -> None:
        if path in self._pending:
            self._arm_pending(path)

    def _cancel_pending(self, path: str) -> None:
        handle = self._pending.pop(path, None)
        if handle is not None:
            handle.cancel()

    def _settled(self, path: str) -> None:
        self._pending.pop(path, None)
        self._emit(self._on_file_ready, path)

    def cancel_all(self) -> None:
        for handle in self._pending.values():
            handle.cancel()
        self._pending.clear()


class IndexWatcher:
    """
    Applies filesystem changes to the index state.

    Usage:
        watcher = IndexWatcher(state, scanner)
        await watcher.start()
        ...
        await watcher.stop()
    """

    def __init__(self, state: IndexState, scanner: IndexScanner):
        self._state = state
        self._scanner = scanner
        self._observer: Any | None = None
        self._handler: GalleryWatchHandler | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._poll_task: asyncio.Task | None = None
        self._reindex_handle: asyncio.TimerHandle | None = None
        self._reindex_task: asyncio.Task | None = None
        self._running = False
        self.reindexes = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def root(self) -> str:
        return self._state.settings.root

    async def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Start the observer (when enabled) and the polling fallback (when configured)."""
        if self._running:
            return
        settings = self._state.settings
        self._loop = loop or asyncio.get_running_loop()
        if not os.path.isdir(self.root):
            logger.warning("Watcher not started; image folder missing: %s", self.root)
            return

        if settings.watcher_enabled:
            self._handler = GalleryWatchHandler(
                self.handle_add,
                self.handle_unlink,
                self.handle_rename,
                self._on_dir_changed,
                self.handle_unlink_dir,
                self._state.walker,
                self._loop,
                settle_s=settings.watcher_settle_s,
            )
            self._observer = Observer()
            self._observer.schedule(self._handler, self.root, recursive=True)
            self._observer.start()
            logger.info("File watcher started for: %s", self.root)

        if settings.polling_seconds > 0:
            self._poll_task = asyncio.ensure_future(self._poll_loop(settings.polling_seconds))
            logger.info("Polling every %ss for new images", settings.polling_seconds)

        self._running = True

    async def stop(self) -> None:
        if not self._running:
            return
        if self._handler is not None:
            self._handler.cancel_all()
        if self._reindex_handle is not None:
            self._reindex_handle.cancel()
            self._reindex_handle = None
        tasks = [t for t in (self._poll_task, self._reindex_task) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._poll_task = None
        self._reindex_task = None

        if self._observer is not None:
            try:
                self._observer.stop()
                self._observer.join(timeout=2)
            except RuntimeError as exc:
                logger.debug("Watcher stop error: %s", exc)
            self._observer = None
        self._handler = None
        self._running = False
        logger.info("File watcher stopped")

    # ---- file events ----

    async def handle_add(self, path: str, *, track_rings: bool = True) -> ImageRecord | None:
        """Index one image (new or changed); returns the inserted record."""
        state = self._state
        abs_path = os.path.abspath(path)
        if not is_image(abs_path) or state.walker.is_ignored_path(abs_path):
            return None
        if not os.path.isfile(abs_path):
            logger.debug("Skipping vanished file: %s", abs_path)
            return None

        image_id = hash_relative_path(abs_path, self.root)
        await self._generate_artifacts(image_id, abs_path)
        meta = await asyncio.to_thread(read_metadata, abs_path)
        if not meta.modified_date and not os.path.exists(abs_path):
            return None

        record = build_record(
            path=abs_path,
            root=self.root,
            modified_date=meta.modified_date,
            created_date=meta.created_date,
            prompt=meta.prompt,
            workflow=meta.workflow,
        )
        state.insert(record, fresh=track_rings)
        logger.debug("Indexed %s", abs_path)
        return record

    async def handle_unlink(self, path: str, *, track_rings: bool = True) -> bool:
        abs_path = os.path.abspath(path)
        image_id = hash_relative_path(abs_path, self.root)
        record = self._state.evict(image_id, track_deletion=track_rings)
        if record is None:
            return False
        await asyncio.to_thread(self._state.artifacts.delete, image_id)
        logger.debug("Removed %s", abs_path)
        return True

    async def handle_rename(self, src: str, dst: str) -> ImageRecord | None:
        """unlink(src) without ring bookkeeping, then add(dst). Flags follow the file."""
        state = self._state
        old_id = hash_relative_path(os.path.abspath(src), self.root)
        await self.handle_unlink(src, track_rings=False)
        record = await self.handle_add(dst)
        for ids in state.flags.values():
            if old_id not in ids:
                continue
            ids.discard(old_id)
            if record is not None:
                ids.add(record.id)
        return record

    async def handle_unlink_dir(self, path: str) -> int:
        """Evict every record under `path`, exactly like a per-file unlink."""
        state = self._state
        directory = os.path.abspath(path)
        doomed = [image_id for image_id, r in state.records.items() if is_under_path(r.file, directory)]
        for image_id in doomed:
            state.evict(image_id)
        if doomed:
            await asyncio.to_thread(self._delete_artifacts, doomed)
            logger.info("Removed %d images under %s", len(doomed), directory)
        return len(doomed)

    def _delete_artifacts(self, ids: list[str]) -> None:
        for image_id in ids:
            self._state.artifacts.delete(image_id)

    async def _generate_artifacts(self, image_id: str, path: str) -> None:
        state = self._state
        if not state.gate.try_acquire():
            return
        try:
            await asyncio.to_thread(state.artifacts.ensure_dirs)
            compressed = await state.generator.generate_compressed(path, str(state.artifacts.compressed_path(image_id)))
            if not compressed.ok:
                logger.debug("Compressed preview failed for %s: %s", path, compressed.error)
            thumbnail = await state.generator.generate_thumbnail(path, str(state.artifacts.thumbnail_path(image_id)))
            if not thumbnail.ok:
                logger.debug("Thumbnail failed for %s: %s", path, thumbnail.error)
        finally:
            state.gate.release()

    # ---- directory events ----

    async def _on_dir_changed(self, path: str) -> None:
        logger.debug("Directory change: %s", path)
        self.schedule_reindex()

    def schedule_reindex(self) -> None:
        """Debounced full reindex; a newer directory event supersedes a pending one."""
        loop = self._loop or asyncio.get_running_loop()
        if self._reindex_handle is not None:
            self._reindex_handle.cancel()
        self._reindex_handle = loop.call_later(
            self._state.settings.dir_reindex_debounce_s, self._start_reindex
        )

    def _start_reindex(self) -> None:
        self._reindex_handle = None
        self._reindex_task = asyncio.ensure_future(self._reindex())

    async def _reindex(self) -> None:
        self.reindexes += 1
        result = await self._scanner.index_files()
        if not result.ok:
            logger.warning("Reindex after directory change failed: %s", result.error)

    # ---- polling fallback ----

    async def _poll_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.poll_once()
            except Exception as exc:
                logger.warning("Polling pass failed: %s", exc)

    async def poll_once(self) -> int:
        """Walk the tree and add images the index does not know yet."""
        if self._scanner.is_scanning:
            return 0
        state = self._state
        walk = await asyncio.to_thread(state.walker.walk)
        added = 0
        for path in walk.images:
            if hash_relative_path(os.path.abspath(path), self.root) in state.records:
                continue
            if await self.handle_add(path) is not None:
                added += 1
        if added:
            logger.info("Polling picked up %d new images", added)
        return added
