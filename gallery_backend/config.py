"""
Configuration for the prompt gallery index.

Values are read from the environment once at import time; `IndexSettings`
snapshots them and lets callers (and tests) override individual fields.
"""
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .utils import env_bool

logger = logging.getLogger(__name__)


def _env_raw(*names: str, default: str | None = None) -> str | None:
    for name in names:
        if not name:
            continue
        val = os.getenv(name)
        if val is not None and str(val).strip() != "":
            return str(val).strip()
    return default


def _env_int(default: int, *names: str, min_value: int | None = None, max_value: int | None = None) -> int:
    raw = _env_raw(*names)
    if raw is None:
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid integer for %s=%r, using default=%s", names[0] if names else "<unknown>", raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("Value too small for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, min_value)
        value = min_value
    if max_value is not None and value > max_value:
        logger.warning("Value too large for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, max_value)
        value = max_value
    return value


def _env_float(default: float, *names: str, min_value: float | None = None, max_value: float | None = None) -> float:
    raw = _env_raw(*names)
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid float for %s=%r, using default=%s", names[0] if names else "<unknown>", raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("Value too small for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, min_value)
        value = min_value
    if max_value is not None and value > max_value:
        logger.warning("Value too large for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, max_value)
        value = max_value
    return value


def _env_bool(default: bool, *names: str) -> bool:
    for name in names:
        if name and name in os.environ:
            return env_bool(name, default)
    return default


def _resolve_dir(raw: str | None, fallback: Path) -> Path:
    if not raw:
        return fallback
    try:
        return Path(raw).expanduser().resolve()
    except (OSError, RuntimeError):
        logger.warning("Failed to resolve directory %s, using %s", raw, fallback)
        return fallback


# Watched image tree (IMG_FOLDER kept as a legacy alias)
IMG_FOLDER_PATH = _resolve_dir(_env_raw("GALLERY_IMG_FOLDER", "IMG_FOLDER"), Path.cwd() / "images")
IMG_FOLDER = str(IMG_FOLDER_PATH)

# Local data: cache database, thumbnails, compressed previews
DATA_DIR_PATH = _resolve_dir(_env_raw("GALLERY_DATA_DIR"), Path.cwd() / "localData")
DATA_DIR = str(DATA_DIR_PATH)
CACHE_DB_NAME = "metadata.sqlite"
LEGACY_CACHE_NAME = "metadata.json"
LEGACY_CACHE_RENAMED = "metadata-deprecated-delete-this.json"
THUMBNAIL_DIR_NAME = "thumbnails"
COMPRESSED_DIR_NAME = "compressed"

# Polling fallback for filesystems without reliable change notification (0 = disabled)
POLLING_SECONDS = _env_float(0.0, "GALLERY_POLLING_SECONDS", "POLLING_SECONDS", min_value=0.0, max_value=86400.0)
WATCHER_ENABLED = _env_bool(True, "GALLERY_ENABLE_WATCHER")

# Recency rings
FRESH_LIMIT = _env_int(1000, "GALLERY_FRESH_LIMIT", min_value=1, max_value=1_000_000)

# Background work
TASK_LIMIT = _env_int(20, "GALLERY_TASK_LIMIT", min_value=1, max_value=256)
EMBEDDED_TASK_LIMIT = _env_int(5, "GALLERY_EMBEDDED_TASK_LIMIT", min_value=1, max_value=256)
BASIC_READ_CONCURRENCY = _env_int(10, "GALLERY_BASIC_READ_CONCURRENCY", min_value=1, max_value=256)
PREVIEW_GEN_LIMIT = _env_int(10, "GALLERY_PREVIEW_GEN_LIMIT", min_value=0, max_value=256)

# Debounces
DIR_REINDEX_DEBOUNCE_MS = _env_int(2000, "GALLERY_DIR_REINDEX_DEBOUNCE_MS", min_value=0, max_value=600_000)
UNIQUE_REBUILD_DELAY_MS = _env_int(5000, "GALLERY_UNIQUE_REBUILD_DELAY_MS", min_value=0, max_value=600_000)
UNIQUE_CHUNK_SIZE = _env_int(1000, "GALLERY_UNIQUE_CHUNK_SIZE", min_value=1, max_value=1_000_000)
# Quiet period before a newly created file is read (partial writes)
WATCHER_SETTLE_MS = _env_int(500, "GALLERY_WATCHER_SETTLE_MS", min_value=0, max_value=60_000)

# Derived artifacts
THUMBNAIL_SIZE = _env_int(512, "GALLERY_THUMBNAIL_SIZE", min_value=16, max_value=4096)
COMPRESSED_SIZE = _env_int(1920, "GALLERY_COMPRESSED_SIZE", min_value=64, max_value=16384)
PREVIEW_QUALITY = _env_int(80, "GALLERY_PREVIEW_QUALITY", min_value=1, max_value=100)

# Directories never indexed or watched
IGNORED_DIRS = frozenset({"__pycache__", "node_modules", ".git", ".cache", ".thumbs"})


@dataclass(frozen=True)
class IndexSettings:
    """Snapshot of index configuration; use `with_overrides` for per-instance tweaks."""

    img_folder: Path = IMG_FOLDER_PATH
    data_dir: Path = DATA_DIR_PATH
    polling_seconds: float = POLLING_SECONDS
    watcher_enabled: bool = WATCHER_ENABLED
    fresh_limit: int = FRESH_LIMIT
    task_limit: int = TASK_LIMIT
    embedded_task_limit: int = EMBEDDED_TASK_LIMIT
    basic_read_concurrency: int = BASIC_READ_CONCURRENCY
    preview_gen_limit: int = PREVIEW_GEN_LIMIT
    dir_reindex_debounce_s: float = DIR_REINDEX_DEBOUNCE_MS / 1000.0
    unique_rebuild_delay_s: float = UNIQUE_REBUILD_DELAY_MS / 1000.0
    unique_chunk_size: int = UNIQUE_CHUNK_SIZE
    watcher_settle_s: float = WATCHER_SETTLE_MS / 1000.0
    thumbnail_size: int = THUMBNAIL_SIZE
    compressed_size: int = COMPRESSED_SIZE
    preview_quality: int = PREVIEW_QUALITY
    ignored_dirs: frozenset[str] = field(default=IGNORED_DIRS)

    @property
    def root(self) -> str:
        return str(self.img_folder)

    @property
    def cache_db_path(self) -> Path:
        return self.data_dir / CACHE_DB_NAME

    @property
    def legacy_cache_path(self) -> Path:
        return self.data_dir / LEGACY_CACHE_NAME

    @property
    def thumbnail_dir(self) -> Path:
        return self.data_dir / THUMBNAIL_DIR_NAME

    @property
    def compressed_dir(self) -> Path:
        return self.data_dir / COMPRESSED_DIR_NAME

    def with_overrides(self, **overrides: Any) -> "IndexSettings":
        for key in ("img_folder", "data_dir"):
            if key in overrides and overrides[key] is not None:
                overrides[key] = Path(overrides[key]).expanduser().resolve()
        return replace(self, **overrides)

    def ensure_directories(self) -> None:
        for path in (self.data_dir, self.thumbnail_dir, self.compressed_dir):
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                logger.warning("Failed to create %s: %s", path, exc)
