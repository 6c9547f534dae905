import logging
import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from revisit.application.factory import Services, build_services
from revisit.consts import VERSION
from revisit.domain.errors import (
    InvalidStateError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from revisit.domain.models import Performance
from revisit.domain.session import ReviewSession
from revisit.infrastructure.adapters.codec import card_to_dict

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("revisit.server")


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


class CardCreateRequest(BaseModel):
    student_id: str
    topic_id: str | None = None
    subject: str | None = None
    grade_level: int | str = 0
    question_id: str | None = None
    concept_text: str | None = None
    difficulty: int | None = None


class PerformanceRequest(BaseModel):
    # Range checks happen in the domain so errors share one format
    quality: int
    time_spent: float = 0.0
    correct: bool | None = None

    def to_performance(self) -> Performance:
        return Performance(quality=self.quality, time_spent=self.time_spent, correct=self.correct)


class SessionReviewRequest(PerformanceRequest):
    card_id: str


class SessionStartRequest(BaseModel):
    student_id: str
    subject: str | None = None
    target_cards: int | None = None
    max_new_cards: int | None = None


class ArchiveRequest(BaseModel):
    days_old: int | None = None


ERROR_STATUS = {
    ValidationError: 422,
    NotFoundError: 404,
    InvalidStateError: 409,
    StorageError: 503,
}


def session_to_dict(session: ReviewSession) -> dict[str, Any]:
    return {
        "session_id": session.session_id,
        "student_id": session.student_id,
        "subject": session.subject,
        "state": session.state.value,
        "started_at": session.started_at.isoformat(),
        "total_cards": session.total_cards,
        "completed_cards": session.completed_cards,
        "cards": [card_to_dict(c) for c in session.cards],
    }


def create_app(services: Services | None = None) -> FastAPI:
    """
    Build the API. Services are resolved from config on first use when not given.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger.info(f"Revisit Server v{VERSION} starting up...")
        yield
        # Shutdown
        logger.info("Revisit Server shutting down...")

    app = FastAPI(
        title="Revisit Server",
        description="Spaced-repetition scheduling service.",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.start_time = time.time()

    for exc_type, status_code in ERROR_STATUS.items():

        async def handler(request: Request, exc: Exception, status_code: int = status_code):
            if status_code >= 500:
                logger.error(f"{request.method} {request.url.path} failed: {exc}")
            return JSONResponse(status_code=status_code, content={"detail": str(exc)})

        app.add_exception_handler(exc_type, handler)

    def get_services() -> Services:
        if app.state.services is None:
            from revisit.application.config import resolve_config

            app.state.services = build_services(resolve_config())
        return app.state.services

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """
        Simple health check to verify server is reachable.
        """
        return HealthResponse(
            status="ok", version=VERSION, uptime_seconds=time.time() - app.state.start_time
        )

    @app.get("/version")
    async def get_version():
        return {"version": VERSION}

    # ---------- Cards ----------

    @app.post("/cards", status_code=201)
    def create_card(req: CardCreateRequest):
        card = get_services().cards.add_card(**req.model_dump())
        return card_to_dict(card)

    @app.get("/cards/{card_id}")
    def get_card(card_id: str):
        return card_to_dict(get_services().cards.get_card(card_id))

    @app.get("/cards/{card_id}/mastery")
    def card_mastery(card_id: str):
        return {"card_id": card_id, "mastery": get_services().cards.get_mastery(card_id)}

    @app.post("/cards/{card_id}/review")
    def review_card(card_id: str, req: PerformanceRequest):
        result = get_services().cards.review_card(card_id, req.to_performance())
        return result.to_dict()

    @app.post("/cards/{card_id}/reset")
    def reset_card(card_id: str):
        return card_to_dict(get_services().cards.reset_card(card_id))

    # ---------- Students ----------

    @app.get("/students/{student_id}/cards")
    def list_cards(
        student_id: str,
        subject: str | None = None,
        topic_id: str | None = None,
        status: str | None = None,
    ):
        cards = get_services().cards.list_cards(
            student_id, subject=subject, topic_id=topic_id, status=status
        )
        return {"cards": [card_to_dict(c) for c in cards]}

    @app.get("/students/{student_id}/due")
    def due_cards(student_id: str, subject: str | None = None, limit: int | None = None):
        cards = get_services().cards.get_due_cards(student_id, subject, limit=limit)
        return {"cards": [card_to_dict(c) for c in cards]}

    @app.get("/students/{student_id}/stats")
    def review_stats(student_id: str, subject: str | None = None):
        return get_services().cards.get_review_stats(student_id, subject).to_dict()

    @app.get("/students/{student_id}/upcoming")
    def upcoming_reviews(student_id: str, days: int = 30):
        schedule = get_services().cards.get_upcoming_reviews(student_id, days=days)
        return {"days": [d.to_dict() for d in schedule]}

    @app.post("/students/{student_id}/archive")
    def archive(student_id: str, req: ArchiveRequest | None = None):
        days_old = req.days_old if req else None
        archived = get_services().cards.archive_mastered_cards(student_id, days_old)
        logger.info(f"Archive sweep for {student_id}: {archived} retired")
        return {"archived": archived}

    # ---------- Sessions ----------

    @app.post("/sessions", status_code=201)
    def start_session(req: SessionStartRequest):
        session = get_services().sessions.start_session(
            req.student_id,
            req.subject,
            target_cards=req.target_cards,
            max_new_cards=req.max_new_cards,
        )
        return session_to_dict(session)

    @app.get("/sessions/{session_id}")
    def get_session(session_id: str):
        return session_to_dict(get_services().sessions.get_session(session_id))

    @app.post("/sessions/{session_id}/review")
    def review_in_session(session_id: str, req: SessionReviewRequest):
        outcome = get_services().sessions.review_card_in_session(
            session_id, req.card_id, req.to_performance()
        )
        return {"result": outcome.result.to_dict(), "is_complete": outcome.is_complete}

    @app.post("/sessions/{session_id}/complete")
    def complete_session(session_id: str):
        completion = get_services().sessions.complete_session(session_id)
        return {
            "stats": completion.stats.to_dict(),
            "next_session": completion.next_session.to_dict(),
        }

    @app.delete("/sessions/{session_id}")
    def abandon_session(session_id: str):
        session = get_services().sessions.abandon_session(session_id)
        return {"session_id": session.session_id, "state": session.state.value}

    return app


app = create_app()
