"""Backend-facing alias for shared utilities.

Backend modules import from here so the `gallery_shared` package stays the
single source of truth for logging, results and file classification.
"""

from __future__ import annotations

import gallery_shared as _root_shared
from gallery_shared.types import EXTENSIONS

Result = _root_shared.Result
ErrorCode = _root_shared.ErrorCode
FileKind = _root_shared.FileKind
FlagKind = _root_shared.FlagKind
SearchMode = _root_shared.SearchMode
get_logger = _root_shared.get_logger
log_success = _root_shared.log_success
log_structured = _root_shared.log_structured
scan_id_var = _root_shared.scan_id_var
classify_file = _root_shared.classify_file
is_image = _root_shared.is_image
ms = _root_shared.ms
format_elapsed = _root_shared.format_elapsed

__all__ = [
    "Result",
    "ErrorCode",
    "FileKind",
    "FlagKind",
    "SearchMode",
    "get_logger",
    "log_success",
    "log_structured",
    "scan_id_var",
    "classify_file",
    "is_image",
    "ms",
    "format_elapsed",
    "EXTENSIONS",
]
