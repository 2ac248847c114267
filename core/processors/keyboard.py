"""
Deep-Check Keyboard Capture

Stateful capture for keyboard biometrics.
Pairs key presses with releases, filters non-text keys, and derives hold
and flight times for each keystroke. SessionRecorder accumulates the
per-session timing arrays that feed the feature extractor at session end.

Only timing statistics are kept; typed content is never reconstructed.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from core.config import DetectorConfig
from core.processors.features import extract_feature_vector, shannon_entropy, mean, std
from core.schemas.inputs import (
    DigramStats,
    KeyboardEvent,
    KeyEventType,
    KeystrokeProfile,
    RawSessionData,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Modifier, navigation and function keys are not text input
NON_TEXT_KEYS = frozenset({
    "Shift", "Control", "Alt", "AltGraph", "Meta", "OS", "CapsLock", "NumLock",
    "ScrollLock", "Fn", "Tab", "Escape", "ContextMenu",
    "ArrowUp", "ArrowDown", "ArrowLeft", "ArrowRight",
    "Home", "End", "PageUp", "PageDown", "Insert",
    "F1", "F2", "F3", "F4", "F5", "F6", "F7", "F8", "F9", "F10", "F11", "F12",
})

# Keys that indicate typing corrections
ERROR_KEYS = frozenset({"Backspace", "Delete"})

DIGRAM_SEPARATOR = "→"

MIN_HOLD_MS = 10.0
MAX_HOLD_MS = 500.0

# Enrollment digrams need this many samples to be kept in a profile
PROFILE_DIGRAM_MIN_SAMPLES = 3


# =============================================================================
# Data Structures
# =============================================================================

@dataclass
class KeystrokeEvent:
    """Completed keystroke with timing derived from its press and release."""
    key: str
    press_time: float    # DOWN timestamp (ms)
    release_time: float  # UP timestamp (ms)
    flight_time: float   # press - previous release; 0 when there is none
    digram_key: Optional[str] = None

    @property
    def hold_time(self) -> float:
        """Time key was held down (ms)."""
        return self.release_time - self.press_time

    @property
    def is_correction(self) -> bool:
        return self.key in ERROR_KEYS


# =============================================================================
# Capture
# =============================================================================

class KeystrokeCapture:
    """
    Pairs raw DOWN/UP events into KeystrokeEvents.

    Ignored at press time:
    - key-repeat (the same key is already held)
    - modifier, navigation and function keys
    - command chords (Control or Meta held with another key)

    A release without a tracked press is dropped.
    """

    def __init__(self) -> None:
        self._active: Dict[str, float] = {}
        self._last_release_time: Optional[float] = None
        self._last_key: Optional[str] = None

    @staticmethod
    def is_text_key(key: str, ctrl: bool = False, meta: bool = False) -> bool:
        """Whether a key press counts as text input."""
        if key in NON_TEXT_KEYS:
            return False
        if ctrl or meta:
            return False
        return True

    def key_down(self, key: str, timestamp: float, ctrl: bool = False, meta: bool = False) -> bool:
        """
        Record a key press.

        Returns:
            True if the press is tracked, False if it was filtered out
        """
        if key in self._active:
            return False
        if not self.is_text_key(key, ctrl=ctrl, meta=meta):
            return False
        self._active[key] = timestamp
        return True

    def key_up(self, key: str, timestamp: float) -> Optional[KeystrokeEvent]:
        """Complete a tracked key press and derive its timing."""
        press_time = self._active.pop(key, None)
        if press_time is None:
            return None

        if self._last_release_time is not None:
            flight_time = press_time - self._last_release_time
        else:
            flight_time = 0.0

        digram_key = None
        if self._last_key is not None:
            digram_key = f"{self._last_key}{DIGRAM_SEPARATOR}{key}"

        self._last_release_time = timestamp
        self._last_key = key

        return KeystrokeEvent(
            key=key,
            press_time=press_time,
            release_time=timestamp,
            flight_time=flight_time,
            digram_key=digram_key,
        )

    def process_event(self, event: KeyboardEvent) -> Optional[KeystrokeEvent]:
        """
        Process a single keyboard event.

        Returns a KeystrokeEvent when a tracked key is released, None otherwise.
        """
        if event.event_type == KeyEventType.DOWN:
            self.key_down(event.key, event.timestamp, ctrl=event.ctrl, meta=event.meta)
            return None
        return self.key_up(event.key, event.timestamp)

    def reset(self) -> None:
        """Reset capture state for a new session."""
        self._active.clear()
        self._last_release_time = None
        self._last_key = None


# =============================================================================
# Session Recorder
# =============================================================================

class SessionRecorder:
    """
    Accumulates a session's timing arrays for end-of-session analysis.

    Flight times are kept within the calibration bounds (default 10-2000ms),
    hold times within 10-500ms. Backspace latency is the flight time that
    preceded a correction key.
    """

    def __init__(self, config: Optional[DetectorConfig] = None) -> None:
        self.config = config or DetectorConfig()
        self._flight_times: List[float] = []
        self._hold_times: List[float] = []
        self._backspace_times: List[float] = []
        self._digrams: Dict[str, List[float]] = {}
        self._total_keystrokes: int = 0
        self._total_backspaces: int = 0
        self._burst_count: int = 0
        self._first_press: Optional[float] = None
        self._last_release: Optional[float] = None

    @property
    def total_keystrokes(self) -> int:
        return self._total_keystrokes

    def record(self, keystroke: KeystrokeEvent) -> None:
        """Add one completed keystroke."""
        self._total_keystrokes += 1
        if self._first_press is None:
            self._first_press = keystroke.press_time
        self._last_release = keystroke.release_time

        flight = keystroke.flight_time
        in_bounds = self.config.min_flight_ms <= flight <= self.config.max_flight_ms

        if keystroke.is_correction:
            self._total_backspaces += 1
            if flight > 0:
                self._backspace_times.append(flight)

        if in_bounds:
            self._flight_times.append(flight)
            if keystroke.digram_key is not None:
                self._record_digram(keystroke.digram_key, flight)

        if MIN_HOLD_MS <= keystroke.hold_time <= MAX_HOLD_MS:
            self._hold_times.append(keystroke.hold_time)

    def _record_digram(self, digram_key: str, flight: float) -> None:
        samples = self._digrams.get(digram_key)
        if samples is None:
            if len(self._digrams) >= self.config.digram_capacity:
                return
            samples = self._digrams[digram_key] = []
        samples.append(flight)

    def note_burst(self) -> None:
        """Count one emitted burst window."""
        self._burst_count += 1

    def to_raw_session_data(self) -> RawSessionData:
        """Snapshot the accumulated arrays."""
        duration = 0.0
        if self._first_press is not None and self._last_release is not None:
            duration = max(0.0, self._last_release - self._first_press)

        return RawSessionData(
            flight_times=list(self._flight_times),
            hold_times=list(self._hold_times),
            backspace_times=list(self._backspace_times),
            total_keystrokes=self._total_keystrokes,
            total_backspaces=self._total_backspaces,
            burst_count=self._burst_count,
            digrams={k: list(v) for k, v in self._digrams.items()},
            session_duration_ms=duration,
        )

    def digram_stats(self, min_samples: int = PROFILE_DIGRAM_MIN_SAMPLES) -> Dict[str, DigramStats]:
        """Per-digram flight statistics for digrams with enough samples."""
        return {
            key: DigramStats(mean=mean(samples), std=std(samples), count=len(samples))
            for key, samples in self._digrams.items()
            if len(samples) >= min_samples
        }

    def build_profile(self) -> KeystrokeProfile:
        """
        Build an enrollment profile from the recorded session.

        Global stats are rounded to whole milliseconds, entropy to two
        decimals; only digrams with at least three samples are kept.
        """
        digrams = self.digram_stats()
        wpm = extract_feature_vector(self.to_raw_session_data())["session_wpm"]

        return KeystrokeProfile(
            flight_mean=round(mean(self._flight_times)),
            flight_std=round(std(self._flight_times)),
            hold_mean=round(mean(self._hold_times)),
            hold_std=round(std(self._hold_times)),
            entropy=round(shannon_entropy(self._flight_times), 2),
            digrams=digrams,
            wpm_min=wpm,
            wpm_max=wpm,
            sample_size=self._total_keystrokes,
        )
