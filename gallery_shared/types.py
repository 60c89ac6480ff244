"""
Shared types, enums, and constants.
"""
import os
from enum import Enum
from typing import Final, Literal

# File type classifications
FileKind = Literal["image", "sidecar", "unknown"]


class ErrorCode(str, Enum):
    """Standardized error codes (string enum)."""

    # Client / validation
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"

    # Feature / service availability
    DEGRADED = "DEGRADED"
    UNSUPPORTED = "UNSUPPORTED"

    # Infrastructure
    DB_ERROR = "DB_ERROR"
    IO_ERROR = "IO_ERROR"

    # Operation errors
    METADATA_FAILED = "METADATA_FAILED"
    PREVIEW_FAILED = "PREVIEW_FAILED"
    PARSE_ERROR = "PARSE_ERROR"


# File extensions by type
EXTENSIONS: Final[dict[FileKind, tuple[str, ...]]] = {
    "image": (".png", ".jpg", ".jpeg", ".webp"),
    # Order matters: the first existing sidecar wins.
    "sidecar": (".txt", ".yaml", ".yml", ".json"),
    "unknown": (),
}


def classify_file(filename: str) -> FileKind:
    """
    Classify file by extension.

    Args:
        filename: File name or path

    Returns:
        File kind (image, sidecar, unknown)
    """
    ext = os.path.splitext(filename)[1].lower()

    for kind, exts in EXTENSIONS.items():
        if ext in exts:
            return kind

    return "unknown"


def is_image(filename: str) -> bool:
    return classify_file(filename) == "image"


class SearchMode(str, Enum):
    """Matching strategies for search clauses."""
    CONTAINS = "contains"
    WORDS = "words"
    REGEX = "regex"


class FlagKind(str, Enum):
    """User-toggled record flags."""
    NSFW = "nsfw"
    FAVORITE = "favorite"
