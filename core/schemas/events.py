"""
Deep-Check Biometric Events

Tagged signals emitted by the capture and detection layers. Each variant
carries only the fields relevant to its tag; consumers dispatch on
``type`` and must ignore tags they do not handle.
"""

from typing import Annotated, Callable, Literal, Optional, Union

from pydantic import Field

from core.schemas.inputs import CamelModel


class KeystrokeSignal(CamelModel):
    """Emitted for every valid keystroke, calibrating or armed."""
    type: Literal["keystroke"] = "keystroke"
    key: str
    hold_time: float
    flight_time: float
    timestamp: float


class PasteSignal(CamelModel):
    """Clipboard paste into the editor."""
    type: Literal["paste"] = "paste"
    length: int
    timestamp: float


class BurstSignal(CamelModel):
    """Keystroke burst or sub-neuromotor gap (debounced)."""
    type: Literal["burst"] = "burst"
    window_count: int = Field(..., description="Keystrokes in the sliding window")
    flight_time: Optional[float] = Field(None, description="Triggering gap when below the plausibility floor")
    timestamp: float


class InconsistencySignal(CamelModel):
    """Flight time far from the calibrated baseline."""
    type: Literal["inconsistency"] = "inconsistency"
    z_score: float
    key: str
    timestamp: float


class LongPauseSignal(CamelModel):
    """Gap between keystrokes long enough to suggest attention drift."""
    type: Literal["long_pause"] = "long_pause"
    flight_time: float
    timestamp: float


class RhythmShiftSignal(CamelModel):
    """
    Typing rhythm change.

    Digram-level shifts carry ``z_score`` and ``digram``; windowed shifts
    carry ``rhythm_delta`` (relative deviation from the baseline mean).
    """
    type: Literal["rhythm_shift"] = "rhythm_shift"
    z_score: Optional[float] = None
    digram: Optional[str] = None
    rhythm_delta: Optional[float] = None
    timestamp: float


class AiScoreUpdateSignal(CamelModel):
    """Rolling AI-likelihood estimate moved noticeably."""
    type: Literal["ai_score_update"] = "ai_score_update"
    ai_score: int = Field(..., ge=0, le=100)
    timestamp: float


class ContentInjectionSignal(CamelModel):
    """Text appeared without matching key or paste input."""
    type: Literal["content_injection"] = "content_injection"
    length: int
    source: Literal["programmatic", "clipboard_bypass"]
    timestamp: float


class DragDropSignal(CamelModel):
    """Raw drag-and-drop notification (length only)."""
    type: Literal["drag_drop"] = "drag_drop"
    length: int
    timestamp: float


BiometricEvent = Annotated[
    Union[
        KeystrokeSignal,
        PasteSignal,
        BurstSignal,
        InconsistencySignal,
        LongPauseSignal,
        RhythmShiftSignal,
        AiScoreUpdateSignal,
        ContentInjectionSignal,
        DragDropSignal,
    ],
    Field(discriminator="type"),
]

EventSink = Callable[[BiometricEvent], None]
