"""
Deep-Check API

FastAPI application exposing:
- GET  /health
- POST /ml-score → AI-likelihood and identity match for client features
- POST /enrollment, GET /enrollment?email= → enrollment profiles
- POST /sessions → open a monitored session
- POST /sessions/{session_id}/events → live biometric signals for a batch
- POST /sessions/{session_id}/end → session scoring result

Signals and scores are advisory; nothing here blocks candidate input.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

import redis
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware

from core.config import Settings
from core.models.scoring import FallbackScorer, HeuristicScorer, OnnxScorer
from core.orchestrator import (
    BiometricOrchestrator,
    EnrollmentRejectedError,
    SessionClosedError,
    SessionNotFoundError,
)
from core.schemas.inputs import (
    EnrollmentRequest,
    MlScoreRequest,
    SessionEventBatch,
    StartSessionRequest,
)
from core.schemas.outputs import (
    EnrollmentResponse,
    EnrollmentSummary,
    MlScoreResponse,
    SessionEventsResponse,
    SessionResult,
    SessionStarted,
)
from persistence.profile_repository import ProfileRepository, ProfileStoreError


load_dotenv()
settings = Settings.from_env()

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


# =============================================================================
# Application State
# =============================================================================

class AppState:
    """Application state container."""
    orchestrator: Optional[BiometricOrchestrator] = None


state = AppState()


def build_profile_repository(config: Settings) -> ProfileRepository:
    """Connect the enrollment store; without Redis, identity matching is disabled."""
    if not config.redis_password:
        logger.warning("REDIS_PASSWORD not set, enrollment store disabled")
        return ProfileRepository(client=None, ttl_days=config.profile_ttl_days)

    client = redis.Redis(
        host=config.redis_host,
        port=config.redis_port,
        password=config.redis_password,
        decode_responses=True,
        socket_timeout=5.0,
    )
    try:
        client.ping()
    except redis.RedisError as e:
        logger.error(f"Enrollment store disabled, Redis at {config.redis_host}:{config.redis_port} unreachable: {e}")
        return ProfileRepository(client=None, ttl_days=config.profile_ttl_days)

    logger.info(f"Enrollment store connected to Redis at {config.redis_host}:{config.redis_port}")
    return ProfileRepository(client=client, ttl_days=config.profile_ttl_days)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting Deep-Check API...")
    if state.orchestrator is None:
        scorer = FallbackScorer(
            primary=OnnxScorer(settings.model_path, settings.scaler_path),
            fallback=HeuristicScorer(),
        )
        await scorer.load()
        state.orchestrator = BiometricOrchestrator(
            scorer=scorer,
            profiles=build_profile_repository(settings),
        )
    logger.info("Deep-Check ready")

    yield

    # Shutdown
    logger.info("Shutting down Deep-Check API...")
    state.orchestrator.scorer.close()
    state.orchestrator = None


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="Deep-Check",
    description="Behavioral keystroke biometrics for assessment integrity",
    version=API_VERSION,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Health Check
# =============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": API_VERSION}


# =============================================================================
# Scoring
# =============================================================================

@app.post("/ml-score", response_model=MlScoreResponse, response_model_by_alias=True)
async def ml_score(payload: MlScoreRequest):
    """
    Score client-computed session features.

    - Classifier when the model is available, heuristic otherwise
    - Identity match when an active enrollment profile is found
    """
    try:
        return await state.orchestrator.score_request(payload)
    except Exception as e:
        logger.error(f"ML score error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal error during scoring"
        )


# =============================================================================
# Enrollment
# =============================================================================

@app.post("/enrollment", response_model=EnrollmentResponse, response_model_by_alias=True)
def create_enrollment(payload: EnrollmentRequest):
    """Store a candidate's enrollment profile (requires at least 50 samples)."""
    try:
        record = state.orchestrator.enroll(payload)
    except EnrollmentRejectedError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e)
        )
    except ProfileStoreError as e:
        logger.error(f"Enrollment store error: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Enrollment store unavailable"
        )

    return EnrollmentResponse(
        profile_id=record.id,
        expires_at=record.expires_at,
        enrollment_hash=record.enrollment_hash,
    )


@app.get("/enrollment", response_model=EnrollmentSummary, response_model_by_alias=True)
def get_enrollment(email: str = Query(..., min_length=3)):
    """Active enrollment metadata for an email (no biometric data)."""
    record = state.orchestrator.find_enrollment(email)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active enrollment profile"
        )

    return EnrollmentSummary(
        id=record.id,
        candidate_name=record.candidate_name,
        candidate_email=record.candidate_email,
        context=record.context,
        created_at=record.created_at,
        expires_at=record.expires_at,
        sample_size=record.profile.sample_size,
        enrollment_hash=record.enrollment_hash,
    )


# =============================================================================
# Monitored Sessions
# =============================================================================

@app.post("/sessions", response_model=SessionStarted, response_model_by_alias=True,
          status_code=status.HTTP_201_CREATED)
def start_session(payload: Optional[StartSessionRequest] = None):
    """Open a monitored typing session."""
    payload = payload or StartSessionRequest()
    session = state.orchestrator.start_session(
        enrollment_profile_id=payload.enrollment_profile_id,
        enrollment_email=payload.enrollment_email,
    )
    return SessionStarted(session_id=session.session_id)


@app.post("/sessions/{session_id}/events", response_model=SessionEventsResponse,
          response_model_by_alias=True)
def session_events(session_id: str, payload: SessionEventBatch):
    """
    Feed a batch of capture events to a session.

    Returns the biometric signals raised by this batch.
    """
    try:
        session = state.orchestrator.get_session(session_id)
        emitted = session.handle_batch(payload.events)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except SessionClosedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except Exception as e:
        logger.error(f"Session events error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal error processing session events"
        )

    return SessionEventsResponse(
        session_id=session_id,
        state=session.detector.state.value,
        events=emitted,
    )


@app.post("/sessions/{session_id}/end", response_model=SessionResult, response_model_by_alias=True)
async def end_session(session_id: str):
    """End a session and return its scoring result."""
    try:
        return await state.orchestrator.end_session(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except SessionClosedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except Exception as e:
        logger.error(f"End session error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal error scoring session"
        )


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
