# Infrastructure Adapters Package
from .rest_backend import RestBackend
from .sqlite_store import SqliteBackend
from .yaml_catalog import YamlCatalog

__all__ = ["SqliteBackend", "RestBackend", "YamlCatalog"]
