"""
Deep-Check Input Schemas

Pydantic V2 models for:
- Streamed capture input (key events, paste/drop, content-length samples)
- Session aggregates (RawSessionData)
- Scoring and enrollment requests

HTTP payloads use camelCase aliases so browser clients can post the
same objects they build on the page; Python callers may use field names.
"""

from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model accepting both camelCase aliases and field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Enums
# =============================================================================

class KeyEventType(str, Enum):
    """Keyboard event type for hold/flight time calculation."""
    DOWN = "DOWN"
    UP = "UP"


class EnrollmentContext(str, Enum):
    """Writing context an enrollment profile was captured in."""
    PROSE_ES = "prose_es"
    PROSE_EN = "prose_en"
    CODE_PYTHON = "code_python"
    CODE_JS = "code_js"
    CODE_GENERAL = "code_general"


# =============================================================================
# Capture Input Events
# =============================================================================

class KeyboardEvent(CamelModel):
    """Single keyboard event captured by the client wrapper."""
    kind: Literal["key"] = "key"
    key: str = Field(..., description="Key value as reported by the host (e.g. 'a', 'Shift')")
    event_type: KeyEventType = Field(..., description="DOWN or UP event")
    timestamp: float = Field(..., description="Event timestamp in milliseconds")
    ctrl: bool = Field(False, description="Control held during the event")
    meta: bool = Field(False, description="Meta/Command held during the event")
    alt: bool = Field(False, description="Alt held during the event")


class PasteEvent(CamelModel):
    """Clipboard paste into the monitored editor (length only)."""
    kind: Literal["paste"] = "paste"
    length: int = Field(..., ge=0, description="Pasted text length")
    timestamp: float = Field(..., description="Event timestamp in milliseconds")


class DropEvent(CamelModel):
    """Drag-and-drop text insertion (length only)."""
    kind: Literal["drop"] = "drop"
    length: int = Field(..., ge=0, description="Dropped text length")
    timestamp: float = Field(..., description="Event timestamp in milliseconds")


class ContentSample(CamelModel):
    """Document length observed by the content poller or a change notification."""
    kind: Literal["content"] = "content"
    length: int = Field(..., ge=0, description="Current document length")
    timestamp: float = Field(..., description="Sample timestamp in milliseconds")


CaptureEvent = Annotated[
    Union[KeyboardEvent, PasteEvent, DropEvent, ContentSample],
    Field(discriminator="kind"),
]


class SessionEventBatch(CamelModel):
    """Batch of capture events streamed for one monitored session."""
    events: List[CaptureEvent] = Field(..., description="Ordered capture events")


class StartSessionRequest(CamelModel):
    """Optional enrollment reference used for the end-of-session identity check."""
    enrollment_profile_id: Optional[str] = None
    enrollment_email: Optional[str] = None


# =============================================================================
# Session Aggregates
# =============================================================================

class RawSessionData(CamelModel):
    """Timing statistics accumulated over a whole session."""
    flight_times: List[float] = Field(default_factory=list, description="Inter-key flight times, ms (10-2000)")
    hold_times: List[float] = Field(default_factory=list, description="Key hold durations, ms (10-500)")
    backspace_times: List[float] = Field(default_factory=list, description="Latency from previous key to backspace, ms")
    total_keystrokes: int = Field(0, ge=0)
    total_backspaces: int = Field(0, ge=0)
    burst_count: int = Field(0, ge=0, description="Burst windows detected")
    digrams: Dict[str, List[float]] = Field(default_factory=dict, description="Digram key -> flight times")
    session_duration_ms: float = Field(0.0, ge=0.0)


# =============================================================================
# Enrollment
# =============================================================================

class DigramStats(CamelModel):
    """Running statistics for one digram pair."""
    mean: float
    std: float = Field(..., ge=0.0)
    count: int = Field(..., ge=0)


class KeystrokeProfile(CamelModel):
    """Enrolled typing baseline used for identity matching."""
    flight_mean: float
    flight_std: float = Field(..., ge=0.0)
    hold_mean: float
    hold_std: float = Field(..., ge=0.0)
    digrams: Dict[str, DigramStats] = Field(default_factory=dict)
    entropy: float = Field(..., ge=0.0)
    wpm_min: float = 0.0
    wpm_max: float = 0.0
    sample_size: int = Field(..., ge=0)


class EnrollmentRequest(CamelModel):
    """Enrollment submission from the enroll page or an API integration."""
    candidate_name: str = Field(..., min_length=1)
    candidate_email: str = Field(..., min_length=3)
    context: EnrollmentContext = EnrollmentContext.PROSE_ES
    profile: KeystrokeProfile


# =============================================================================
# Scoring Request
# =============================================================================

class SessionFeatures(CamelModel):
    """
    Feature object posted to /ml-score.

    Carries the 18 session features under their client names, plus an
    optional live digram map for the identity check.
    """
    flight_mean: float
    flight_std: float
    hold_mean: float
    hold_std: float
    entropy: float
    hold_entropy: Optional[float] = None
    skewness: float = 0.0
    kurtosis: float = 0.0
    periodicity_score: float = 0.0
    velocity_gradient: float = 0.0
    fatigue_rate: float = 0.0
    rhythm_consistency: float = 0.0
    impossible_fast_ratio: float = 0.0
    digram_cv_mean: float = 0.5
    backspace_latency_std: float = 0.0
    backspace_count_ratio: float = 0.0
    burst_count_per_100k: float = 0.0
    session_wpm: float = 0.0
    digrams: Optional[Dict[str, DigramStats]] = None


class MlScoreRequest(CamelModel):
    """Scoring request contract for /ml-score."""
    features: SessionFeatures
    enrollment_profile_id: Optional[str] = None
    enrollment_email: Optional[str] = None
    total_keystrokes: int = Field(0, ge=0)
