"""
Index feature - cold scan, live watching and search.
"""
from .scanner import IndexScanner
from .service import IndexService
from .state import IndexState
from .watcher import IndexWatcher

__all__ = ["IndexService", "IndexScanner", "IndexState", "IndexWatcher"]
