"""
Dependency injection - builds services.
Simple, debug-friendly DI without framework magic.
"""
from __future__ import annotations

from .adapters.db.sqlite import CacheStore
from .adapters.previews import PreviewGenerator
from .config import IndexSettings
from .features.index import IndexService, IndexState
from .shared import ErrorCode, Result, get_logger, log_success

logger = get_logger(__name__)


def _init_store_or_error(settings: IndexSettings) -> Result[CacheStore]:
    logger.info("Initializing cache: %s", settings.cache_db_path)
    try:
        settings.ensure_directories()
        return Result.Ok(CacheStore(settings.cache_db_path))
    except OSError as exc:
        logger.error("Failed to initialize cache: %s", exc)
        return Result.Err(ErrorCode.DB_ERROR, f"Failed to initialize cache: {exc}")


def build_services(
    settings: IndexSettings | None = None,
    generator: PreviewGenerator | None = None,
) -> Result[dict]:
    """
    Build all services (DI container).

    Args:
        settings: Index configuration (default: environment-derived `IndexSettings()`)
        generator: Preview generator override (tests pass a fake)

    Returns:
        Result[dict] with "settings", "store", "state" and "index"
    """
    settings = settings or IndexSettings()
    logger.info("Building services for %s", settings.root)

    store_res = _init_store_or_error(settings)
    if not store_res.ok or store_res.data is None:
        return Result.Err(store_res.code, store_res.error or "Cache unavailable")
    store = store_res.data

    state = IndexState.create(settings, store, generator)
    index_service = IndexService(state)
    log_success(logger, "Services ready")
    return Result.Ok(
        {
            "settings": settings,
            "store": store,
            "state": state,
            "index": index_service,
        }
    )
