"""
Driving Simulator Telemetry: Ingestion API Server
=================================================

Thin HTTP shell over the Ingestor. Submissions are acknowledged
immediately; persistence happens on the background drain loop.

Endpoints:
- GET  /health                              -> queue depth, dead letters, counters
- POST /api/v1/events/{kind}                -> submit one raw event
- GET  /api/v1/sessions/{session_id}        -> live or last persisted stats
- PUT  /api/v1/sessions/{session_id}/score  -> overwrite score (and level)
- POST /api/v1/sessions/{session_id}/score  -> add to score
- GET  /api/v1/users/{user_id}/aggregate    -> totals across sessions
- GET  /api/v1/users/{user_id}/progress     -> latest score and level

Environment:
- SIMTELEMETRY_GATEWAY      memory | sqlite | http   (default: memory)
- SIMTELEMETRY_DB_PATH      SQLite file              (default: data/telemetry.db)
- SIMTELEMETRY_GATEWAY_URL  REST document store base URL (http gateway)
- SIMTELEMETRY_LOG_LEVEL    logging level            (default: INFO)

Usage:
    uvicorn simtelemetry.api.server:app --reload
"""
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Union
import logging
import os

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..contracts.base import PersistenceError
from ..contracts.events import AckStatus
from ..engine import Ingestor
from ..observability import configure_logging
from ..query import QueryService
from ..storage import HttpGateway, InMemoryGateway, PersistenceGateway, SQLiteGateway

logger = logging.getLogger(__name__)


# =============================================================================
# REQUEST MODELS
# =============================================================================

class EventSubmission(BaseModel):
    payload: Union[str, Dict[str, Any]]
    sessionId: Optional[str] = None
    userId: Optional[str] = None


class ScoreUpdate(BaseModel):
    score: int
    level: Optional[int] = None
    userId: Optional[str] = None


class ScoreDelta(BaseModel):
    delta: int
    userId: Optional[str] = None


# =============================================================================
# INFRASTRUCTURE SETUP
# =============================================================================

def gateway_from_env() -> PersistenceGateway:
    """Pick the persistence gateway from SIMTELEMETRY_* variables."""
    backend = os.environ.get("SIMTELEMETRY_GATEWAY", "memory").strip().lower()
    if backend == "sqlite":
        db_path = os.environ.get(
            "SIMTELEMETRY_DB_PATH", os.path.join(os.getcwd(), "data", "telemetry.db")
        )
        return SQLiteGateway(db_path)
    if backend == "http":
        base_url = os.environ.get("SIMTELEMETRY_GATEWAY_URL")
        if not base_url:
            raise RuntimeError("SIMTELEMETRY_GATEWAY_URL is required for the http gateway")
        return HttpGateway(base_url)
    if backend != "memory":
        raise RuntimeError(f"Unknown SIMTELEMETRY_GATEWAY: {backend!r}")
    return InMemoryGateway()


def create_app(ingestor: Optional[Ingestor] = None) -> FastAPI:
    """Build the API around an Ingestor (or one configured from the environment)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        instance = ingestor
        if instance is None:
            configure_logging(os.environ.get("SIMTELEMETRY_LOG_LEVEL", "INFO"))
            gateway = gateway_from_env()
            logger.info("Initializing ingestor with %s", type(gateway).__name__)
            instance = Ingestor.create(gateway)

        app.state.ingestor = instance
        app.state.query = QueryService(instance.aggregator, instance.gateway)
        await instance.start()
        try:
            yield
        finally:
            logger.info("Shutting down ingestor")
            await instance.stop()
            app.state.ingestor = None

    app = FastAPI(
        title="Driving Simulator Telemetry API",
        version="0.1.0",
        description="Event ingestion and session statistics for driving-simulator clients",
        lifespan=lifespan
    )
    app.state.ingestor = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["*"],
    )

    def _ingestor(request: Request) -> Ingestor:
        instance = request.app.state.ingestor
        if instance is None:
            raise HTTPException(status_code=503, detail="Ingestor not initialized")
        return instance

    # =========================================================================
    # ENDPOINTS
    # =========================================================================

    @app.get("/health")
    async def health_check(request: Request):
        """System status."""
        return _ingestor(request).health().to_dict()

    @app.post("/api/v1/events/{kind}")
    def submit_event(kind: str, body: EventSubmission, request: Request):
        """Submit one raw event. Always answers immediately."""
        ack = _ingestor(request).submit(
            body.payload, kind, session_id=body.sessionId, user_id=body.userId
        )
        status_code = 400 if ack.status == AckStatus.REJECTED else 202
        return JSONResponse(status_code=status_code, content=ack.to_dict())

    @app.get("/api/v1/sessions/{session_id}")
    async def get_session(session_id: str, request: Request):
        _ingestor(request)
        try:
            stats = await request.app.state.query.get_session_stats(session_id)
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail=str(e))
        if stats is None:
            raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
        return stats.to_document()

    @app.put("/api/v1/sessions/{session_id}/score")
    def set_score(session_id: str, body: ScoreUpdate, request: Request):
        stats = _ingestor(request).set_score(
            session_id, body.score, level=body.level, user_id=body.userId
        )
        return stats.to_document()

    @app.post("/api/v1/sessions/{session_id}/score")
    def add_score(session_id: str, body: ScoreDelta, request: Request):
        stats = _ingestor(request).add_score(session_id, body.delta, user_id=body.userId)
        return stats.to_document()

    @app.get("/api/v1/users/{user_id}/aggregate")
    async def get_user_aggregate(user_id: str, request: Request):
        _ingestor(request)
        try:
            aggregate = await request.app.state.query.get_user_aggregate(user_id)
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return aggregate.to_dict()

    @app.get("/api/v1/users/{user_id}/progress")
    async def get_latest_progress(user_id: str, request: Request):
        _ingestor(request)
        try:
            progress = await request.app.state.query.get_latest_progress(user_id)
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail=str(e))
        if progress is None:
            raise HTTPException(status_code=404, detail=f"No progress for user: {user_id}")
        return progress

    return app


app = create_app()
