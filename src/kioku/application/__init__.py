# Application Package
from .queue_builder import build_due_queue
from .review_session import ReviewSession, SessionEntry, SessionState
from .scheduler import DEFAULT_PARAMS, Scheduler, SchedulerParams, new_card_state
from .write_queue import BackgroundWriter, RetryPolicy

__all__ = [
    "Scheduler",
    "SchedulerParams",
    "DEFAULT_PARAMS",
    "new_card_state",
    "build_due_queue",
    "ReviewSession",
    "SessionEntry",
    "SessionState",
    "BackgroundWriter",
    "RetryPolicy",
]
