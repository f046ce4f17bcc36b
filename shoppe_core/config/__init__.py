from shoppe_core.config.settings import (
    SyncSettings,
    DEFAULT_FRESHNESS_WINDOW,
    DEFAULT_DB_PATH,
)

__all__ = ["SyncSettings", "DEFAULT_FRESHNESS_WINDOW", "DEFAULT_DB_PATH"]
