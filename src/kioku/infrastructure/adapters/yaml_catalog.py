"""
YAML catalog: read-only catalog adapter backed by a YAML file.

Expected layout:

    items:
      - id: 日
        level: N5
        meaning: day, sun
        onyomi: ニチ, ジツ
        kunyomi: ひ, -び, -か
"""

import logging
from pathlib import Path
from typing import Any

import yaml

from kioku.domain.errors import CollaboratorError
from kioku.domain.models import ItemFilter, LearningItem
from kioku.domain.ports import CatalogReader

logger = logging.getLogger(__name__)


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    return str(value)


def parse_catalog(text: str) -> list[LearningItem]:
    """Parse catalog YAML into items, skipping entries without an id."""
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise CollaboratorError(f"Invalid catalog YAML: {e}") from e

    raw_items = data.get("items", []) if isinstance(data, dict) else data
    if not isinstance(raw_items, list):
        raise CollaboratorError("Catalog YAML must contain a list of items")

    items: list[LearningItem] = []
    for i, raw in enumerate(raw_items):
        if not isinstance(raw, dict) or not raw.get("id"):
            logger.warning(f"Skipping catalog entry #{i}: missing id")
            continue
        item_id = str(raw["id"])
        items.append(
            LearningItem(
                item_id=item_id,
                text=str(raw.get("text") or item_id),
                level=_as_text(raw.get("level")),
                meaning=_as_text(raw.get("meaning")),
                onyomi=_as_text(raw.get("onyomi")),
                kunyomi=_as_text(raw.get("kunyomi")),
            )
        )
    return items


class YamlCatalog(CatalogReader):
    """Loads the catalog file lazily and keeps it in memory."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._items: list[LearningItem] | None = None

    def load(self) -> list[LearningItem]:
        if self._items is None:
            try:
                text = self.path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise CollaboratorError(f"Cannot read catalog {self.path}: {e}") from e
            self._items = parse_catalog(text)
            logger.debug(f"Loaded {len(self._items)} catalog items from {self.path}")
        return self._items

    async def get_items_by_filter(self, item_filter: ItemFilter) -> list[LearningItem]:
        return [item for item in self.load() if item_filter.matches(item)]
