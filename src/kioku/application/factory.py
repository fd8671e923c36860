"""
Backend Factory
Centralizes the logic for selecting the collaborator adapters.
"""

from dataclasses import dataclass

from kioku.application.config import AppConfig
from kioku.domain.errors import ConfigError
from kioku.domain.ports import BulkEnroller, CardStore, CatalogReader, ProgressTracker
from kioku.infrastructure.adapters.rest_backend import RestBackend
from kioku.infrastructure.adapters.sqlite_store import SqliteBackend
from kioku.infrastructure.adapters.yaml_catalog import YamlCatalog


@dataclass
class Backend:
    """The set of collaborators a review session needs."""

    catalog: CatalogReader
    cards: CardStore
    progress: ProgressTracker
    enroller: BulkEnroller

    async def aclose(self) -> None:
        """Release adapter resources (HTTP clients). Safe to call more than once."""
        seen: set[int] = set()
        for part in (self.catalog, self.cards, self.progress, self.enroller):
            if id(part) in seen:
                continue
            seen.add(id(part))
            close = getattr(part, "aclose", None)
            if close is not None:
                await close()


def get_backend(config: AppConfig) -> Backend:
    """
    Returns the collaborators for the configured backend.
    A YAML catalog file, when configured, replaces the backend's own catalog.
    """
    store: SqliteBackend | RestBackend
    if config.backend == "rest":
        if not config.rest_url:
            raise ConfigError("backend 'rest' requires rest_url")
        store = RestBackend(url=config.rest_url, api_key=config.rest_api_key)
    else:
        store = SqliteBackend(config.db_path)

    catalog: CatalogReader = store
    if config.catalog_path is not None:
        catalog = YamlCatalog(config.catalog_path)

    return Backend(catalog=catalog, cards=store, progress=store, enroller=store)
