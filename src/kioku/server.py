import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel
from ulid import ULID

from kioku.application.config import AppConfig, resolve_config
from kioku.application.enrollment import enroll_level
from kioku.application.factory import Backend, get_backend
from kioku.application.queue_builder import build_due_queue
from kioku.application.review_session import ReviewSession, SessionEntry, SessionState
from kioku.application.scheduler import Scheduler
from kioku.application.write_queue import BackgroundWriter
from kioku.consts import VERSION
from kioku.domain.errors import KiokuError, SessionLoadError
from kioku.domain.models import Rating, utcnow

logger = logging.getLogger("kioku.server")


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


class CardView(BaseModel):
    item_id: str
    text: str
    level: str | None = None
    meaning: str | None = None
    onyomi: str | None = None
    kunyomi: str | None = None
    due_at: datetime
    interval_days: int
    ease: float
    lapses: int
    # Interval (days) each rating would schedule, keyed by rating name
    preview: dict[str, int] = {}


class SessionResponse(BaseModel):
    session_id: str
    state: str
    remaining: int
    correct_count: int
    wrong_count: int
    enrolled_count: int
    nothing_due: bool
    current: CardView | None = None


class CreateSessionRequest(BaseModel):
    user_id: str | None = None
    limit: int | None = None


class GradeRequest(BaseModel):
    item_id: str
    rating: str


class GradeResponse(BaseModel):
    accepted: bool
    item_id: str
    rating: str | None = None
    interval_days: int | None = None
    due_at: datetime | None = None
    session: SessionResponse


class EnrollRequest(BaseModel):
    level: str


def _card_view(entry: SessionEntry, scheduler: Scheduler) -> CardView:
    card, item = entry.card, entry.item
    preview = scheduler.preview(card, utcnow())
    return CardView(
        item_id=card.item_id,
        text=item.text,
        level=item.level,
        meaning=item.meaning,
        onyomi=item.onyomi,
        kunyomi=item.kunyomi,
        due_at=card.due_at,
        interval_days=card.interval_days,
        ease=card.ease,
        lapses=card.lapses,
        preview={rating.name.lower(): days for rating, days in preview.items()},
    )


def create_app(config: AppConfig | None = None, backend: Backend | None = None) -> FastAPI:
    """
    Build the server. Config and backend are resolved at startup unless given.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Kioku Server v{VERSION} starting up...")
        app.state.config = config or resolve_config()
        app.state.backend = backend or get_backend(app.state.config)
        app.state.scheduler = Scheduler(app.state.config.scheduler_params())
        app.state.writer = BackgroundWriter(app.state.config.retry_policy())
        app.state.sessions = {}
        yield
        logger.info("Kioku Server shutting down...")
        await app.state.writer.drain()
        if backend is None:
            await app.state.backend.aclose()

    app = FastAPI(
        title="Kioku Server",
        description="Spaced-repetition review sessions over HTTP.",
        version=VERSION,
        lifespan=lifespan,
    )
    start_time = time.time()

    def session_response(session_id: str, session: ReviewSession, request: Request):
        current = session.current
        return SessionResponse(
            session_id=session_id,
            state=session.state.value,
            remaining=session.remaining,
            correct_count=session.correct_count,
            wrong_count=session.wrong_count,
            enrolled_count=session.enrolled_count,
            nothing_due=session.nothing_due,
            current=_card_view(current, request.app.state.scheduler) if current else None,
        )

    def get_session(request: Request, session_id: str) -> ReviewSession:
        session = request.app.state.sessions.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Unknown session {session_id}")
        return session

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """
        Simple health check to verify server is reachable.
        """
        return HealthResponse(
            status="ok", version=VERSION, uptime_seconds=time.time() - start_time
        )

    @app.get("/version")
    async def get_version():
        return {"version": VERSION}

    @app.get("/users/{user_id}/due")
    async def list_due(user_id: str, request: Request, limit: int | None = None):
        """List due cards in review order."""
        state = request.app.state
        try:
            cards = await state.backend.cards.get_cards_for_user(user_id)
        except KiokuError as e:
            logger.error(f"Due listing failed: {e}")
            raise HTTPException(status_code=502, detail=str(e)) from e

        if limit is None:
            limit = state.config.session_limit
        queue = build_due_queue(cards, utcnow(), limit)
        return [
            {
                "item_id": card.item_id,
                "due_at": card.due_at.isoformat(),
                "interval_days": card.interval_days,
                "ease": card.ease,
                "repetition": card.repetition,
                "lapses": card.lapses,
            }
            for card in queue
        ]

    @app.post("/users/{user_id}/enroll")
    async def enroll(user_id: str, req: EnrollRequest, request: Request):
        """Enroll every catalog item of a level for the user."""
        state = request.app.state
        try:
            created = await enroll_level(
                state.backend.catalog,
                state.backend.enroller,
                user_id,
                req.level,
                utcnow(),
                state.scheduler.params,
            )
        except KiokuError as e:
            logger.error(f"Enroll failed: {e}")
            raise HTTPException(status_code=502, detail=str(e)) from e
        return {"created": created, "level": req.level}

    @app.post("/sessions", response_model=SessionResponse)
    async def create_session(req: CreateSessionRequest, request: Request):
        """Open a review session and present its first card."""
        state = request.app.state
        config: AppConfig = state.config
        session = ReviewSession(
            req.user_id or config.user_id,
            cards=state.backend.cards,
            catalog=state.backend.catalog,
            progress=state.backend.progress,
            scheduler=state.scheduler,
            writer=state.writer,
            limit=req.limit if req.limit is not None else config.session_limit,
        )
        try:
            await session.open()
        except SessionLoadError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e

        session_id = str(ULID())
        response = session_response(session_id, session, request)
        if session.state is SessionState.COMPLETED:
            return response

        sessions = state.sessions
        while len(sessions) >= config.max_open_sessions:
            stale_id = next(iter(sessions))
            sessions.pop(stale_id).close()
            logger.warning(f"Evicted session {stale_id}: too many open sessions")
        sessions[session_id] = session
        logger.info(f"Session {session_id} opened for user={session.user_id}")
        return response

    @app.get("/sessions/{session_id}", response_model=SessionResponse)
    async def get_session_state(session_id: str, request: Request):
        return session_response(session_id, get_session(request, session_id), request)

    @app.post("/sessions/{session_id}/grade", response_model=GradeResponse)
    async def grade(session_id: str, req: GradeRequest, request: Request):
        """Grade the presented card. Repeat grades of the same card are ignored."""
        session = get_session(request, session_id)
        try:
            rating = Rating.parse(req.rating)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from None

        entry = session.grade(rating, item_id=req.item_id)
        if entry is None:
            return GradeResponse(
                accepted=False,
                item_id=req.item_id,
                session=session_response(session_id, session, request),
            )

        assert entry.new_state is not None
        response = GradeResponse(
            accepted=True,
            item_id=entry.item_id,
            rating=rating.name.lower(),
            interval_days=entry.new_state.interval_days,
            due_at=entry.new_state.due_at,
            session=session_response(session_id, session, request),
        )
        if session.state is SessionState.COMPLETED:
            # Last card graded; its writes keep running without the registry
            del request.app.state.sessions[session_id]
            logger.info(f"Session {session_id} completed")
        return response

    @app.delete("/sessions/{session_id}")
    async def close_session(session_id: str, request: Request):
        """Close a session without waiting for its pending writes."""
        session = get_session(request, session_id)
        session.close()
        del request.app.state.sessions[session_id]
        return {
            "closed": True,
            "graded": len(session.graded),
            "pending_writes": session.pending_writes,
        }

    return app


app = create_app()
