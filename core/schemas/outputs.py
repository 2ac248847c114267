"""
Deep-Check Output Schemas

Pydantic V2 models that fix the JSON contracts returned by the scoring,
enrollment and session endpoints.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import AwareDatetime, Field

from core.schemas.events import BiometricEvent
from core.schemas.inputs import CamelModel, EnrollmentContext, KeystrokeProfile


# =============================================================================
# Enums
# =============================================================================

class InferenceMethod(str, Enum):
    """Strategy that produced an AI-likelihood score."""
    ONNX = "onnx"
    HEURISTIC = "heuristic"


# =============================================================================
# Enrollment
# =============================================================================

class EnrollmentProfile(CamelModel):
    """Persisted enrollment record."""
    id: str = Field(..., description="Profile identifier (ep_<hex>)")
    candidate_name: str
    candidate_email: str
    context: EnrollmentContext
    created_at: AwareDatetime
    expires_at: AwareDatetime = Field(..., description="Profiles expire 90 days after creation")
    profile: KeystrokeProfile
    enrollment_hash: str = Field(..., description="SHA-256 of the profile for tamper detection")


class EnrollmentResponse(CamelModel):
    """Result of a successful enrollment."""
    success: bool = True
    profile_id: str
    expires_at: datetime
    enrollment_hash: str


class EnrollmentSummary(CamelModel):
    """Profile metadata returned on lookup (no biometric data)."""
    id: str
    candidate_name: str
    candidate_email: str
    context: EnrollmentContext
    created_at: datetime
    expires_at: datetime
    sample_size: int
    enrollment_hash: str


# =============================================================================
# Scoring
# =============================================================================

class MlScoreResponse(CamelModel):
    """Response for /ml-score."""
    success: bool = True
    ml_ai_risk: int = Field(..., ge=0, le=100, description="AI-likelihood risk score")
    identity_match_score: Optional[int] = Field(None, ge=0, le=100)
    inference_method: InferenceMethod
    enrollment_context: Optional[EnrollmentContext] = None
    flags: List[str] = Field(default_factory=list)
    keystrokes: int = 0


# =============================================================================
# Sessions
# =============================================================================

class SessionStarted(CamelModel):
    """Handle for a newly opened monitored session."""
    session_id: str


class SessionEventsResponse(CamelModel):
    """Signals emitted while processing one event batch."""
    session_id: str
    state: str
    events: List[BiometricEvent] = Field(default_factory=list)


class SessionResult(CamelModel):
    """End-of-session scoring result."""
    session_id: str
    features: Dict[str, float] = Field(..., description="18 raw features in canonical order")
    ml_ai_risk: int = Field(..., ge=0, le=100)
    identity_match_score: Optional[int] = Field(None, ge=0, le=100)
    inference_method: InferenceMethod
    flags: List[str] = Field(default_factory=list)
    keystrokes: int = 0
    rhythm_stability: int = Field(100, ge=0, le=100)
    event_counts: Dict[str, int] = Field(default_factory=dict)
