from typing import Optional

from noir_registry.config import Settings
from noir_registry.infrastructure.database import PackageStore
from noir_registry.infrastructure.queries import PackageQueries

_settings: Optional[Settings] = None
_store: Optional[PackageStore] = None
_queries: Optional[PackageQueries] = None

def configure(settings: Settings) -> None:
    global _settings
    _settings = settings

def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings

def get_store() -> PackageStore:
    global _store
    if _store is None:
        _store = PackageStore(db_url=get_settings().database_url)
    return _store

def get_queries() -> PackageQueries:
    global _queries
    if _queries is None:
        _queries = PackageQueries(get_store().engine)
    return _queries
