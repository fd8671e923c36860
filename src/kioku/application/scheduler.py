"""
Spaced-repetition scheduler.

Maps a card's prior state and a rating to its next state. This is a pure
computation module with no I/O: the same inputs always give the same output.
"""

import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from kioku.domain import constants as c
from kioku.domain.models import CardState, Rating, ensure_utc


@dataclass(frozen=True)
class SchedulerParams:
    """
    Tuning constants for the scheduling formula.

    Defaults are the authoritative values; override them through config
    rather than editing the formula.
    """

    min_ease: float = c.MIN_EASE
    max_ease: float = c.MAX_EASE
    initial_ease: float = c.INITIAL_EASE
    again_ease_penalty: float = c.AGAIN_EASE_PENALTY
    hard_ease_penalty: float = c.HARD_EASE_PENALTY
    easy_ease_bonus: float = c.EASY_EASE_BONUS
    first_interval_days: int = c.FIRST_INTERVAL_DAYS
    second_interval_days: int = c.SECOND_INTERVAL_DAYS
    hard_interval_factor: float = c.HARD_INTERVAL_FACTOR
    easy_interval_factor: float = c.EASY_INTERVAL_FACTOR
    max_interval_days: int = c.MAX_INTERVAL_DAYS


DEFAULT_PARAMS = SchedulerParams()


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (12.5 -> 13)."""
    return int(math.floor(value + 0.5))


def new_card_state(
    user_id: str,
    item_id: str,
    now: datetime,
    params: SchedulerParams = DEFAULT_PARAMS,
) -> CardState:
    """Default state for a freshly enrolled card: due immediately."""
    return CardState(
        user_id=user_id,
        item_id=item_id,
        ease=params.initial_ease,
        interval_days=0,
        repetition=0,
        lapses=0,
        due_at=ensure_utc(now),
        last_reviewed_at=None,
    )


class Scheduler:
    """
    Computes the next CardState after a graded review.

    Stateless and side-effect free; safe to share between threads.
    """

    def __init__(self, params: SchedulerParams = DEFAULT_PARAMS):
        self.params = params

    def advance(self, state: CardState, rating: Rating, now: datetime) -> CardState:
        """
        Apply one graded review.

        Out-of-domain input (negative counters, ease outside its range) is
        normalized first rather than rejected.
        """
        now = ensure_utc(now)
        state = self.normalize(state)
        rating = Rating.parse(rating)

        if rating is Rating.AGAIN:
            return replace(
                state,
                repetition=0,
                interval_days=0,
                ease=self._clamp_ease(state.ease - self.params.again_ease_penalty),
                lapses=state.lapses + 1,
                last_reviewed_at=now,
                due_at=now,
            )

        repetition = state.repetition + 1
        raw = self._raw_interval(repetition, state.interval_days, state.ease)
        interval, ease = self._apply_rating(rating, raw, state.ease)

        return replace(
            state,
            repetition=repetition,
            interval_days=interval,
            ease=ease,
            last_reviewed_at=now,
            due_at=now + timedelta(days=interval),
        )

    def preview(self, state: CardState, now: datetime) -> dict[Rating, int]:
        """Interval in days that each rating would schedule."""
        return {rating: self.advance(state, rating, now).interval_days for rating in Rating}

    def normalize(self, state: CardState) -> CardState:
        """Repair numeric drift in persisted state."""
        ease = state.ease
        if ease is None or not math.isfinite(ease):
            ease = self.params.initial_ease

        return replace(
            state,
            ease=self._clamp_ease(ease),
            interval_days=self._clamp_interval(int(state.interval_days), minimum=0),
            repetition=max(0, int(state.repetition)),
            lapses=max(0, int(state.lapses)),
            due_at=ensure_utc(state.due_at),
            last_reviewed_at=(
                ensure_utc(state.last_reviewed_at) if state.last_reviewed_at else None
            ),
        )

    def _raw_interval(self, repetition: int, interval_days: int, ease: float) -> int:
        """
        Interval before the per-rating adjustment.

        The first two successes after a reset use fixed bootstrap intervals;
        after that the previous interval grows by the (pre-update) ease.
        """
        if repetition == 1:
            return self._clamp_interval(self.params.first_interval_days)
        if repetition == 2:
            return self._clamp_interval(self.params.second_interval_days)
        return self._clamp_interval(round_half_up(interval_days * ease))

    def _apply_rating(self, rating: Rating, raw: int, ease: float) -> tuple[int, float]:
        p = self.params

        if rating is Rating.HARD:
            interval = self._clamp_interval(round_half_up(raw * p.hard_interval_factor))
            return interval, self._clamp_ease(ease - p.hard_ease_penalty)

        if rating is Rating.EASY:
            easy = max(raw + 1, round_half_up(raw * p.easy_interval_factor))
            interval = self._clamp_interval(easy)
            return interval, self._clamp_ease(ease + p.easy_ease_bonus)

        return raw, self._clamp_ease(ease)

    def _clamp_ease(self, ease: float) -> float:
        clamped = max(self.params.min_ease, min(self.params.max_ease, ease))
        return round(clamped, c.EASE_PRECISION)

    def _clamp_interval(self, days: int, minimum: int = 1) -> int:
        return max(minimum, min(self.params.max_interval_days, days))
