"""
Persistent cache for the image index.

Implementation notes:
- Backed by `aiosqlite` with a single lazily opened connection.
- Writes are serialized by an asyncio lock and applied in one transaction per batch.
- The adapter never raises to callers; it returns `Result(...)`.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
from pathlib import Path
from typing import Any

import aiosqlite

from ...shared import ErrorCode, Result, get_logger
from ...utils import hash_relative_path, is_under_path

logger = get_logger(__name__)

SQLITE_BUSY_TIMEOUT_MS = 5000
SQLITE_CACHE_SIZE_KIB = -32000
SCHEMA_VERSION = 1

IMAGE_COLUMNS = ("id", "file", "folder", "modified_date", "created_date", "prompt", "workflow")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS images (
    id TEXT PRIMARY KEY,
    file TEXT NOT NULL,
    folder TEXT NOT NULL DEFAULT '',
    modified_date INTEGER NOT NULL DEFAULT 0,
    created_date INTEGER NOT NULL DEFAULT 0,
    prompt TEXT,
    workflow TEXT
);
CREATE TABLE IF NOT EXISTS unique_prompts (
    prompt_key TEXT PRIMARY KEY,
    image_id TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT
);
"""

_UPSERT_IMAGE = (
    "INSERT INTO images (id, file, folder, modified_date, created_date, prompt, workflow) "
    "VALUES (?, ?, ?, ?, ?, ?, ?) "
    "ON CONFLICT(id) DO UPDATE SET file=excluded.file, folder=excluded.folder, "
    "modified_date=excluded.modified_date, created_date=excluded.created_date, "
    "prompt=excluded.prompt, workflow=excluded.workflow"
)


def _row_params(row: dict[str, Any]) -> tuple:
    return (
        str(row.get("id") or ""),
        str(row.get("file") or ""),
        str(row.get("folder") or ""),
        int(row.get("modified_date") or 0),
        int(row.get("created_date") or 0),
        row.get("prompt"),
        row.get("workflow"),
    )


class CacheStore:
    """
    Key-value cache mapping image id to its last known record.

    Rows are plain dicts keyed by `IMAGE_COLUMNS`; conversion to records happens
    in the index layer.
    """

    def __init__(self, db_path: str | Path, timeout: float = 5.0):
        self.db_path = Path(db_path)
        self._timeout = float(timeout)
        self._conn: aiosqlite.Connection | None = None
        self._init_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    async def _apply_connection_pragmas(self, conn: aiosqlite.Connection) -> None:
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA synchronous=NORMAL")
        await conn.execute(f"PRAGMA cache_size={SQLITE_CACHE_SIZE_KIB}")
        await conn.execute("PRAGMA temp_store=MEMORY")
        await conn.execute(f"PRAGMA busy_timeout = {SQLITE_BUSY_TIMEOUT_MS}")

    async def _connection(self) -> aiosqlite.Connection:
        if self._conn is not None:
            return self._conn
        async with self._init_lock:
            if self._conn is not None:
                return self._conn
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # Autocommit mode; batches use explicit BEGIN/COMMIT.
            conn = await aiosqlite.connect(str(self.db_path), timeout=self._timeout, isolation_level=None)
            conn.row_factory = sqlite3.Row
            await self._apply_connection_pragmas(conn)
            await conn.executescript(_SCHEMA)
            await conn.execute(
                "INSERT OR IGNORE INTO metadata (key, value) VALUES ('schema_version', ?)",
                (str(SCHEMA_VERSION),),
            )
            self._conn = conn
            logger.debug("Cache database opened: %s", self.db_path)
            return conn

    async def _run_batch(self, statements: list[tuple[str, list[tuple] | None]]) -> None:
        conn = await self._connection()
        async with self._write_lock:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                for sql, params_list in statements:
                    if params_list:
                        await conn.executemany(sql, params_list)
                    elif params_list is None:
                        await conn.execute(sql)
                await conn.execute("COMMIT")
            except Exception:
                await conn.execute("ROLLBACK")
                raise

    async def aload_all(self) -> Result[dict[str, dict[str, Any]]]:
        """Load every cached row keyed by id (empty dict on first run)."""
        try:
            conn = await self._connection()
            async with conn.execute(f"SELECT {', '.join(IMAGE_COLUMNS)} FROM images") as cursor:
                rows = await cursor.fetchall()
            return Result.Ok({str(row["id"]): dict(row) for row in rows})
        except (sqlite3.Error, OSError) as exc:
            logger.error("Failed to load cache: %s", exc)
            return Result.Err(ErrorCode.DB_ERROR, str(exc))

    async def acount(self) -> Result[int]:
        try:
            conn = await self._connection()
            async with conn.execute("SELECT COUNT(*) FROM images") as cursor:
                row = await cursor.fetchone()
            return Result.Ok(int(row[0]) if row else 0)
        except (sqlite3.Error, OSError) as exc:
            logger.error("Failed to count cache rows: %s", exc)
            return Result.Err(ErrorCode.DB_ERROR, str(exc))

    async def awrite_diff(
        self,
        additions: list[dict[str, Any]],
        updates: list[dict[str, Any]],
        deletions: list[str],
    ) -> Result[dict[str, int]]:
        """Apply one additions/updates/deletions batch in a single transaction."""
        stats = {"added": len(additions), "updated": len(updates), "deleted": len(deletions)}
        if not additions and not updates and not deletions:
            return Result.Ok(stats)
        upserts = [_row_params(row) for row in [*additions, *updates]]
        removed = [(str(image_id),) for image_id in deletions]
        try:
            await self._run_batch([
                (_UPSERT_IMAGE, upserts),
                ("DELETE FROM images WHERE id = ?", removed),
            ])
            return Result.Ok(stats)
        except (sqlite3.Error, OSError) as exc:
            logger.error("Failed to write cache diff: %s", exc)
            return Result.Err(ErrorCode.DB_ERROR, str(exc), **stats)

    async def aset_all(self, rows: list[dict[str, Any]]) -> Result[int]:
        """Replace the whole images table (legacy cache migration)."""
        try:
            await self._run_batch([
                ("DELETE FROM images", None),
                (_UPSERT_IMAGE, [_row_params(row) for row in rows]),
            ])
            return Result.Ok(len(rows))
        except (sqlite3.Error, OSError) as exc:
            logger.error("Failed to replace cache: %s", exc)
            return Result.Err(ErrorCode.DB_ERROR, str(exc))

    async def aload_unique(self) -> Result[dict[str, str]]:
        """Load the persisted normalized-prompt -> representative id map."""
        try:
            conn = await self._connection()
            async with conn.execute("SELECT prompt_key, image_id FROM unique_prompts") as cursor:
                rows = await cursor.fetchall()
            return Result.Ok({str(row["prompt_key"]): str(row["image_id"]) for row in rows})
        except (sqlite3.Error, OSError) as exc:
            logger.error("Failed to load unique prompts: %s", exc)
            return Result.Err(ErrorCode.DB_ERROR, str(exc))

    async def asave_unique(self, mapping: dict[str, str]) -> Result[int]:
        try:
            await self._run_batch([
                ("DELETE FROM unique_prompts", None),
                (
                    "INSERT INTO unique_prompts (prompt_key, image_id) VALUES (?, ?)",
                    [(str(k), str(v)) for k, v in mapping.items()],
                ),
            ])
            return Result.Ok(len(mapping))
        except (sqlite3.Error, OSError) as exc:
            logger.error("Failed to persist unique prompts: %s", exc)
            return Result.Err(ErrorCode.DB_ERROR, str(exc))

    async def aclose(self) -> None:
        """Close the connection (safe to call more than once)."""
        conn = self._conn
        self._conn = None
        if conn is None:
            return
        try:
            await conn.close()
        except (sqlite3.Error, ValueError) as exc:
            logger.debug("Cache close error: %s", exc)


def load_legacy_cache(path: str | Path, root: str | Path | None = None) -> Result[dict[str, dict[str, Any]]]:
    """
    Read the legacy JSON cache: a list of `[id, record]` pairs with camelCase keys.

    Legacy ids hash a different path form, so rows whose file lies under `root`
    are re-keyed with the current id scheme.

    Blocking; call through `asyncio.to_thread`.
    """
    p = Path(path)
    if not p.is_file():
        return Result.Err(ErrorCode.NOT_FOUND, f"No legacy cache at {p}")
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Unreadable legacy cache %s: %s", p, exc)
        return Result.Err(ErrorCode.PARSE_ERROR, str(exc))

    rows: dict[str, dict[str, Any]] = {}
    for item in raw if isinstance(raw, list) else []:
        if not isinstance(item, (list, tuple)) or len(item) != 2 or not isinstance(item[1], dict):
            continue
        image_id, rec = str(item[0]), item[1]
        file = str(rec.get("file") or "")
        if root is not None and is_under_path(file, str(root)):
            image_id = hash_relative_path(file, root)
        rows[image_id] = {
            "id": image_id,
            "file": file,
            "folder": rec.get("folder") or "",
            "modified_date": int(rec.get("modifiedDate") or rec.get("modified_date") or 0),
            "created_date": int(rec.get("createdDate") or rec.get("created_date") or 0),
            "prompt": rec.get("prompt"),
            "workflow": rec.get("workflow"),
        }
    return Result.Ok(rows)
