"""
Ports (interfaces) for the collaborators of the scheduling core.

These define the contract that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete implementations.
Failures are signalled by raising; a normal return means success.
"""

from abc import ABC, abstractmethod

from .models import CardState, ItemFilter, LearningItem, Rating


class CatalogReader(ABC):
    """
    Port for reading learning items (display data).

    Implementations:
        - SqliteBackend: Reads the local `items` table.
        - RestBackend: Reads the remote `kanji` table.
        - YamlCatalog: Reads a YAML catalog file.
    """

    @abstractmethod
    async def get_items_by_filter(self, item_filter: ItemFilter) -> list[LearningItem]:
        """
        Fetch catalog items matching the filter.

        Args:
            item_filter: Level and/or explicit item ids to select.

        Returns:
            Matching items, in catalog order.
        """
        pass


class CardStore(ABC):
    """Port for reading and writing per-user card state."""

    @abstractmethod
    async def get_cards_for_user(self, user_id: str) -> list[CardState]:
        """Return every card the user has enrolled."""
        pass

    @abstractmethod
    async def upsert_card(self, user_id: str, item_id: str, state: CardState) -> None:
        """
        Write the full card record keyed by (user_id, item_id).

        Last write wins; no concurrency token is checked.
        """
        pass


class ProgressTracker(ABC):
    """Port notified of every graded review."""

    @abstractmethod
    async def record_outcome(
        self, user_id: str, item_id: str, correct: bool, rating: Rating
    ) -> None:
        pass


class BulkEnroller(ABC):
    """Port for seeding new cards in bulk."""

    @abstractmethod
    async def seed_cards(
        self, user_id: str, item_ids: list[str], defaults: CardState
    ) -> int:
        """
        Create a card for each item id the user does not have yet.

        Args:
            user_id: Learner to enroll.
            item_ids: Catalog ids to enroll.
            defaults: Template state; its user_id/item_id are replaced per card.

        Returns:
            Number of cards newly created. Existing cards are left untouched.
        """
        pass
