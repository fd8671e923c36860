# Domain Package
from .errors import (
    CollaboratorError,
    ConfigError,
    KiokuError,
    SessionLoadError,
    SessionStateError,
)
from .models import CardState, ItemFilter, LearningItem, Rating, WriteStatus
from .ports import BulkEnroller, CardStore, CatalogReader, ProgressTracker

__all__ = [
    "CardState",
    "ItemFilter",
    "LearningItem",
    "Rating",
    "WriteStatus",
    "CatalogReader",
    "CardStore",
    "ProgressTracker",
    "BulkEnroller",
    "KiokuError",
    "CollaboratorError",
    "SessionLoadError",
    "SessionStateError",
    "ConfigError",
]
