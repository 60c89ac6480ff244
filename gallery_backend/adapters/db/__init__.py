"""Database adapters."""
from .sqlite import CacheStore, load_legacy_cache

__all__ = ["CacheStore", "load_legacy_cache"]
