"""Shared utilities for the prompt gallery index."""
from .log import get_logger, log_structured, log_success, scan_id_var
from .result import Result
from .time import format_elapsed, ms
from .types import (
    EXTENSIONS,
    ErrorCode,
    FileKind,
    FlagKind,
    SearchMode,
    classify_file,
    is_image,
)

__all__ = [
    "Result",
    "get_logger",
    "log_success",
    "log_structured",
    "scan_id_var",
    "ms",
    "format_elapsed",
    "EXTENSIONS",
    "FileKind",
    "FlagKind",
    "SearchMode",
    "ErrorCode",
    "classify_file",
    "is_image",
]
