"""
Deep-Check Core Schemas

Public exports for input, event and output Pydantic models.
"""

# Input schemas - Capture events
from core.schemas.inputs import (
    CaptureEvent,
    ContentSample,
    DropEvent,
    KeyboardEvent,
    KeyEventType,
    PasteEvent,
    SessionEventBatch,
    StartSessionRequest,
)

# Input schemas - Scoring and enrollment
from core.schemas.inputs import (
    DigramStats,
    EnrollmentContext,
    EnrollmentRequest,
    KeystrokeProfile,
    MlScoreRequest,
    RawSessionData,
    SessionFeatures,
)

# Biometric events
from core.schemas.events import BiometricEvent, EventSink

# Output schemas
from core.schemas.outputs import (
    EnrollmentProfile,
    EnrollmentResponse,
    EnrollmentSummary,
    InferenceMethod,
    MlScoreResponse,
    SessionEventsResponse,
    SessionResult,
    SessionStarted,
)

__all__ = [
    # Input - Capture
    "KeyEventType",
    "KeyboardEvent",
    "PasteEvent",
    "DropEvent",
    "ContentSample",
    "CaptureEvent",
    "SessionEventBatch",
    "StartSessionRequest",
    # Input - Scoring / Enrollment
    "RawSessionData",
    "DigramStats",
    "KeystrokeProfile",
    "EnrollmentContext",
    "EnrollmentRequest",
    "SessionFeatures",
    "MlScoreRequest",
    # Events
    "BiometricEvent",
    "EventSink",
    # Output
    "InferenceMethod",
    "EnrollmentProfile",
    "EnrollmentResponse",
    "EnrollmentSummary",
    "MlScoreResponse",
    "SessionStarted",
    "SessionEventsResponse",
    "SessionResult",
]
