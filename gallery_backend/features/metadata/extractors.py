"""
Metadata extraction for gallery images.

Sidecar text files beside an image win over embedded metadata. Embedded data is
read with Pillow (`Image.info` text chunks plus EXIF). Every reader here is
blocking and best-effort: failures are logged at debug level and come back as
empty values, never as exceptions.
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any

from PIL import ExifTags, Image

from ...shared import EXTENSIONS, get_logger

logger = get_logger(__name__)

SIDECAR_EXTENSIONS: tuple[str, ...] = EXTENSIONS["sidecar"]

_EXIF_IFD_POINTER = 0x8769
_USER_COMMENT_PREFIXES = (b"ASCII\x00\x00\x00", b"UNICODE\x00", b"JIS\x00\x00\x00\x00\x00", b"\x00" * 8)
# Container details Pillow reports in `info` that are not generation metadata
_STRUCTURAL_INFO_KEYS = frozenset({
    "exif", "icc_profile", "dpi", "gamma", "transparency", "interlace", "progressive", "progression",
    "jfif", "jfif_version", "jfif_unit", "jfif_density", "adobe", "adobe_transform", "loop", "duration",
    "background", "photoshop", "srgb", "chromaticity", "aspect",
})


@dataclass
class ExtractedMetadata:
    prompt: str | None = None
    workflow: str | None = None
    modified_date: int = 0
    created_date: int = 0

    @property
    def has_metadata(self) -> bool:
        return bool(self.prompt or self.workflow)


def read_file_dates(path: str) -> tuple[int, int]:
    """(modified_ms, created_ms); zeros when the file cannot be stat'ed."""
    try:
        st = os.stat(path)
    except OSError as exc:
        logger.debug("stat failed for %s: %s", path, exc)
        return 0, 0
    created = getattr(st, "st_birthtime", None) or st.st_ctime
    return int(st.st_mtime * 1000), int(created * 1000)


def sidecar_candidates(path: str) -> list[str]:
    stem = os.path.splitext(path)[0]
    return [stem + ext for ext in SIDECAR_EXTENSIONS]


def find_sidecar(path: str) -> str | None:
    for candidate in sidecar_candidates(path):
        if os.path.isfile(candidate):
            return candidate
    return None


def read_sidecar_text(path: str) -> str | None:
    """Verbatim content of `path` (a sidecar file), or None when unreadable or empty."""
    try:
        with open(path, encoding="utf-8", errors="replace") as handle:
            text = handle.read()
    except OSError as exc:
        logger.debug("Failed to read sidecar %s: %s", path, exc)
        return None
    return text if text.strip() else None


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        raw = value
        for prefix in _USER_COMMENT_PREFIXES:
            if raw.startswith(prefix):
                raw = raw[len(prefix):]
                if prefix.startswith(b"UNICODE"):
                    for encoding in ("utf-16-be", "utf-16-le"):
                        try:
                            return raw.decode(encoding).strip("\x00") or None
                        except UnicodeDecodeError:
                            continue
                break
        return raw.decode("utf-8", errors="replace").strip("\x00") or None
    text = str(value)
    return text or None


def _exif_text_fields(img: Image.Image) -> dict[str, Any]:
    out: dict[str, Any] = {}
    try:
        exif = img.getexif()
    except (OSError, ValueError, SyntaxError):
        return out
    if not exif:
        return out
    for tag_id, value in exif.items():
        out[ExifTags.TAGS.get(tag_id, str(tag_id))] = value
    try:
        sub = exif.get_ifd(_EXIF_IFD_POINTER)
    except (KeyError, OSError, ValueError):
        sub = {}
    for tag_id, value in (sub or {}).items():
        out[ExifTags.TAGS.get(tag_id, str(tag_id))] = value
    return out


def _serializable(block: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in block.items():
        if isinstance(value, bytes):
            value = _to_text(value)
        elif not isinstance(value, (str, int, float, bool, type(None), list, dict)):
            value = str(value)
        out[str(key)] = value
    return out


def read_embedded_metadata(path: str) -> tuple[str | None, str | None]:
    """
    (prompt, workflow) from embedded image metadata.

    PNG text chunks: `parameters`, then `prompt`, become the prompt; `workflow`
    is kept separately. JPEG/WEBP carry A1111 parameters in EXIF UserComment or
    ImageDescription. Anything else present is serialized as JSON into the prompt.
    """
    try:
        with Image.open(path) as img:
            info = {str(k): v for k, v in (getattr(img, "info", {}) or {}).items()}
            exif_fields = _exif_text_fields(img)
    except Exception as exc:
        logger.debug("Failed to read embedded metadata from %s: %s", path, exc)
        return None, None

    lowered = {k.lower(): v for k, v in info.items()}
    prompt = _to_text(lowered.get("parameters")) or _to_text(lowered.get("prompt"))
    workflow = _to_text(lowered.get("workflow"))
    if prompt is None:
        prompt = _to_text(exif_fields.get("UserComment")) or _to_text(exif_fields.get("ImageDescription"))
    if prompt or workflow:
        return prompt, workflow

    block = {k: v for k, v in info.items() if k.lower() not in _STRUCTURAL_INFO_KEYS}
    block.update({k: v for k, v in exif_fields.items() if isinstance(v, (str, bytes))})
    if not block:
        return None, None
    try:
        return json.dumps(_serializable(block), ensure_ascii=False), None
    except (TypeError, ValueError):
        return None, None


def read_metadata(path: str) -> ExtractedMetadata:
    """Best-effort metadata for one image: sidecar first, then embedded data."""
    modified, created = read_file_dates(path)
    result = ExtractedMetadata(modified_date=modified, created_date=created)

    sidecar = find_sidecar(path)
    if sidecar is not None:
        result.prompt = read_sidecar_text(sidecar)
        if result.prompt:
            return result

    result.prompt, result.workflow = read_embedded_metadata(path)
    return result
