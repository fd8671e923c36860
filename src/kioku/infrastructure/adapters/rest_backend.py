import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

import httpx

from kioku.domain.constants import INITIAL_EASE, REQUEST_TIMEOUT
from kioku.domain.errors import CollaboratorError
from kioku.domain.models import (
    CardState,
    ItemFilter,
    LearningItem,
    Rating,
    ensure_utc,
    utcnow,
)
from kioku.domain.ports import BulkEnroller, CardStore, CatalogReader, ProgressTracker


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class RestBackend(CatalogReader, CardStore, ProgressTracker, BulkEnroller):
    """Adapter for a hosted PostgREST (Supabase-style) backend over HTTP."""

    def __init__(
        self,
        url: str,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.logger = logging.getLogger(__name__)
        self.url = url.rstrip("/")
        self.api_key = api_key
        self._client = client
        self._clock = clock
        self.logger.debug(f"RestBackend initialized with url={self.url}")

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=REQUEST_TIMEOUT)

        headers = self._headers()
        if prefer:
            headers["Prefer"] = prefer

        try:
            resp = await self._client.request(
                method,
                f"{self.url}/rest/v1/{table}",
                params=params,
                json=json,
                headers=headers,
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            self.logger.error(f"{method} {table} failed: {e}")
            raise CollaboratorError(f"{method} {table} failed: {e}") from e

        if not resp.content:
            return None
        return resp.json()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ---------- CatalogReader ----------

    async def get_items_by_filter(self, item_filter: ItemFilter) -> list[LearningItem]:
        params = {"select": "id,level,meaning,onyomi,kunyomi", "order": "id.asc"}
        if item_filter.level is not None:
            params["level"] = f"eq.{item_filter.level}"
        if item_filter.item_ids is not None:
            if not item_filter.item_ids:
                return []
            params["id"] = "in.(" + ",".join(_quote(i) for i in item_filter.item_ids) + ")"

        rows = await self._request("GET", "kanji", params=params) or []
        return [
            LearningItem(
                item_id=row["id"],
                text=row["id"],
                level=row.get("level"),
                meaning=row.get("meaning"),
                onyomi=row.get("onyomi"),
                kunyomi=row.get("kunyomi"),
            )
            for row in rows
        ]

    # ---------- CardStore ----------

    async def get_cards_for_user(self, user_id: str) -> list[CardState]:
        rows = await self._request(
            "GET", "srs_cards", params={"select": "*", "user_id": f"eq.{user_id}"}
        )
        return [self._row_to_card(row) for row in rows or []]

    async def upsert_card(self, user_id: str, item_id: str, state: CardState) -> None:
        await self._request(
            "POST",
            "srs_cards",
            params={"on_conflict": "user_id,kanji_id"},
            json=self._card_to_row(user_id, item_id, state),
            prefer="resolution=merge-duplicates,return=minimal",
        )

    # ---------- ProgressTracker ----------

    async def record_outcome(
        self, user_id: str, item_id: str, correct: bool, rating: Rating
    ) -> None:
        await self._request(
            "POST",
            "review_logs",
            json={
                "user_id": user_id,
                "kanji_id": item_id,
                "correct": correct,
                "rating": Rating.parse(rating).name.lower(),
                "mode": "review",
            },
            prefer="return=minimal",
        )
        await self._request(
            "POST",
            "rpc/increment_daily_progress",
            json={
                "p_user_id": user_id,
                "p_date": ensure_utc(self._clock()).date().isoformat(),
                "p_reviews": 1,
                "p_correct": 1 if correct else 0,
                "p_minutes": 0,
            },
        )

    # ---------- BulkEnroller ----------

    async def seed_cards(
        self, user_id: str, item_ids: list[str], defaults: CardState
    ) -> int:
        if not item_ids:
            return 0
        created = await self._request(
            "POST",
            "srs_cards",
            params={"on_conflict": "user_id,kanji_id"},
            json=[self._card_to_row(user_id, item_id, defaults) for item_id in item_ids],
            prefer="resolution=ignore-duplicates,return=representation",
        )
        return len(created or [])

    # ---------- Mapping ----------

    @staticmethod
    def _card_to_row(user_id: str, item_id: str, state: CardState) -> dict[str, Any]:
        return {
            "user_id": user_id,
            "kanji_id": item_id,
            "ease": state.ease,
            "interval_days": state.interval_days,
            "reps": state.repetition,
            "lapses": state.lapses,
            "due_at": ensure_utc(state.due_at).isoformat(),
            "last_reviewed_at": (
                ensure_utc(state.last_reviewed_at).isoformat()
                if state.last_reviewed_at
                else None
            ),
        }

    @staticmethod
    def _row_to_card(row: dict[str, Any]) -> CardState:
        last = row.get("last_reviewed_at")
        return CardState(
            user_id=row["user_id"],
            item_id=row["kanji_id"],
            ease=float(row["ease"]) if row.get("ease") is not None else INITIAL_EASE,
            interval_days=int(row.get("interval_days") or 0),
            repetition=int(row.get("reps") or 0),
            lapses=int(row.get("lapses") or 0),
            due_at=ensure_utc(datetime.fromisoformat(row["due_at"])),
            last_reviewed_at=ensure_utc(datetime.fromisoformat(last)) if last else None,
        )
