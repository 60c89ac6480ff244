"""
Derived preview artifacts: webp thumbnails and compressed previews.

Artifacts are a best-effort cache keyed by image id. Generation runs Pillow in a
worker thread and writes through a temp file so readers never see partial output.
"""
from __future__ import annotations

import asyncio
import os
from pathlib import Path

from PIL import Image, ImageOps

from ..shared import ErrorCode, Result, get_logger

logger = get_logger(__name__)

ARTIFACT_SUFFIX = ".webp"
TMP_SUFFIX = ".tmp"


def _render_webp(src: str, dest: str, max_size: int, quality: int) -> None:
    dest_path = Path(dest)
    dest_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = dest_path.with_name(dest_path.name + TMP_SUFFIX)
    with Image.open(src) as image:
        img = ImageOps.exif_transpose(image) or image
        if img.mode not in ("RGB", "RGBA"):
            img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
        img.thumbnail((max_size, max_size))
        img.save(tmp_path, "webp", quality=quality)
    os.replace(tmp_path, dest_path)


class PreviewGenerator:
    """Pillow-backed `generate(source, dest) -> success|failure` functions."""

    def __init__(self, thumbnail_size: int = 512, compressed_size: int = 1920, quality: int = 80):
        self.thumbnail_size = int(thumbnail_size)
        self.compressed_size = int(compressed_size)
        self.quality = int(quality)

    async def _generate(self, src: str, dest: str, max_size: int, label: str) -> Result[bool]:
        try:
            await asyncio.to_thread(_render_webp, src, dest, max_size, self.quality)
            return Result.Ok(True)
        except Exception as exc:
            logger.warning("Failed to generate %s for %s: %s", label, src, exc)
            try:
                Path(dest + TMP_SUFFIX).unlink(missing_ok=True)
            except OSError:
                pass
            return Result.Err(ErrorCode.PREVIEW_FAILED, str(exc), source=src)

    async def generate_thumbnail(self, src: str, dest: str) -> Result[bool]:
        return await self._generate(src, dest, self.thumbnail_size, "thumbnail")

    async def generate_compressed(self, src: str, dest: str) -> Result[bool]:
        return await self._generate(src, dest, self.compressed_size, "compressed preview")


class GenerationGate:
    """
    Process-wide switch and in-flight cap for on-demand artifact generation.

    `disabled` is raised by the cold scan while it saturates I/O; callers treat it
    as degraded mode and serve originals instead.
    """

    def __init__(self, limit: int = 10):
        self.limit = max(0, int(limit))
        self.disabled = False
        self.in_flight = 0

    def try_acquire(self) -> bool:
        if self.disabled or self.in_flight >= self.limit:
            return False
        self.in_flight += 1
        return True

    def release(self) -> None:
        self.in_flight = max(0, self.in_flight - 1)


class ArtifactStore:
    """Filesystem layout for thumbnails and compressed previews."""

    def __init__(self, thumbnail_dir: str | Path, compressed_dir: str | Path):
        self.thumbnail_dir = Path(thumbnail_dir)
        self.compressed_dir = Path(compressed_dir)

    def ensure_dirs(self) -> None:
        self.thumbnail_dir.mkdir(parents=True, exist_ok=True)
        self.compressed_dir.mkdir(parents=True, exist_ok=True)

    def thumbnail_path(self, image_id: str) -> Path:
        return self.thumbnail_dir / f"{image_id}{ARTIFACT_SUFFIX}"

    def compressed_path(self, image_id: str) -> Path:
        return self.compressed_dir / f"{image_id}{ARTIFACT_SUFFIX}"

    def delete(self, image_id: str) -> int:
        """Remove both artifacts for `image_id`; returns how many files were removed."""
        removed = 0
        for path in (self.thumbnail_path(image_id), self.compressed_path(image_id)):
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.debug("Failed to delete artifact %s: %s", path, exc)
        return removed

    def clean_stale(self, valid_ids: set[str] | frozenset[str], *, tmp_before: float | None = None) -> int:
        """
        Delete artifacts whose id is not in `valid_ids`.

        Temp files may belong to a generation still in flight; they are removed
        only when last modified before `tmp_before` (epoch seconds).
        """
        removed = 0
        for directory in (self.thumbnail_dir, self.compressed_dir):
            try:
                entries = list(os.scandir(directory))
            except OSError:
                continue
            for entry in entries:
                name = entry.name
                stem = name.split(".", 1)[0]
                if name.endswith(ARTIFACT_SUFFIX) and stem in valid_ids:
                    continue
                try:
                    if name.endswith(TMP_SUFFIX) and (
                        tmp_before is None or entry.stat(follow_symlinks=False).st_mtime >= tmp_before
                    ):
                        continue
                    if entry.is_file(follow_symlinks=False):
                        os.remove(entry.path)
                        removed += 1
                except OSError as exc:
                    logger.debug("Failed to remove stale artifact %s: %s", entry.path, exc)
        return removed
