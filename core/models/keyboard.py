"""
Deep-Check Keystroke Anomaly Detector

Online detection over a live keystroke stream. A per-session baseline is
calibrated from the first qualifying flight times; once armed, every
keystroke is checked against the baseline, its digram history and a short
rhythm window. Burst, long-pause, paste and drop signals are raised in
any state.

Digram statistics use River's running variance (Welford's algorithm), so
no per-digram sample history is kept.

All detections are advisory: signals are returned and pushed to the
session's event sink, never used to block input.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, List, Optional, Sequence, Tuple

from river.stats import Var

from core.config import DetectorConfig
from core.processors.features import mean, shannon_entropy, std
from core.processors.keyboard import KeystrokeEvent
from core.schemas.events import (
    AiScoreUpdateSignal,
    BiometricEvent,
    BurstSignal,
    ContentInjectionSignal,
    DragDropSignal,
    EventSink,
    InconsistencySignal,
    KeystrokeSignal,
    LongPauseSignal,
    PasteSignal,
    RhythmShiftSignal,
)
from core.schemas.inputs import DigramStats


logger = logging.getLogger(__name__)


class DetectorState(str, Enum):
    """Detector lifecycle."""
    CALIBRATING = "CALIBRATING"
    ARMED = "ARMED"
    CLOSED = "CLOSED"


def safe_divisor(value: float) -> float:
    """A zero standard deviation is treated as 1 when dividing."""
    return value if value else 1.0


# =============================================================================
# Digram Tracking
# =============================================================================

class DigramTracker:
    """
    Bounded map of digram key -> running flight-time statistics.

    When full, the entry with the lowest count is evicted; ties go to the
    entry updated longest ago.
    """

    def __init__(self, capacity: int = 512) -> None:
        self.capacity = capacity
        self._stats: Dict[str, Var] = {}
        self._last_update: Dict[str, int] = {}
        self._tick: int = 0

    def __len__(self) -> int:
        return len(self._stats)

    def __contains__(self, key: str) -> bool:
        return key in self._stats

    def get(self, key: str) -> Optional[DigramStats]:
        stat = self._stats.get(key)
        if stat is None:
            return None
        return DigramStats(
            mean=stat.mean.get(),
            std=stat.get() ** 0.5,
            count=int(stat.mean.n),
        )

    def update(self, key: str, value: float) -> Optional[DigramStats]:
        """
        Fold one flight time into the digram's statistics.

        Returns:
            The statistics as they were before this sample, or None for a new digram
        """
        prior = self.get(key)
        stat = self._stats.get(key)
        if stat is None:
            if len(self._stats) >= self.capacity:
                self._evict()
            stat = self._stats[key] = Var(ddof=0)

        stat.update(value)
        self._tick += 1
        self._last_update[key] = self._tick
        return prior

    def _evict(self) -> None:
        victim = min(
            self._stats,
            key=lambda k: (self._stats[k].mean.n, self._last_update[k]),
        )
        del self._stats[victim]
        del self._last_update[victim]
        logger.debug(f"Digram map full ({self.capacity}), evicted {victim!r}")

    def snapshot(self, min_count: int = 1) -> Dict[str, DigramStats]:
        """Statistics for every digram with at least ``min_count`` samples."""
        result = {}
        for key in self._stats:
            stats = self.get(key)
            if stats is not None and stats.count >= min_count:
                result[key] = stats
        return result


@dataclass
class BiometricBaseline:
    """Calibrated flight-time reference for one session."""
    mean: float
    std_dev: float
    digrams: DigramTracker = field(default_factory=DigramTracker)


# =============================================================================
# Rolling AI Estimate
# =============================================================================

def rolling_ai_estimate(flights: Sequence[float], holds: Sequence[float]) -> int:
    """
    Live 0-100 estimate of synthetic input from recent timing.

    Automated input shows very low flight and hold variance, an unnaturally
    flat timing histogram and sub-neuromotor gaps.
    """
    if len(flights) < 10:
        return 0
    flight_std = std(flights)
    hold_std = std(holds)
    entropy = shannon_entropy(flights)

    score = 0.0
    if flight_std < 20:
        score += 40
    elif flight_std < 50:
        score += 15
    if hold_std < 5:
        score += 20
    if entropy > 3.2:
        score += 20
    score += sum(1 for f in flights if 0 < f < 8) / len(flights) * 40

    return min(100, int(score + 0.5))


# =============================================================================
# Detector
# =============================================================================

class KeystrokeAnomalyDetector:
    """
    Per-session online anomaly detector (CALIBRATING -> ARMED, CLOSED at session end).

    Calibration:
        Flight times within [min_flight_ms, max_flight_ms] fill a pool; at
        ``calibration_samples`` the baseline mean/std are frozen and the
        detector arms exactly once.

    Armed checks (per keystroke with a flight time):
        - inconsistency: baseline z-score above ``z_threshold``
        - rhythm_shift: digram z-score above ``digram_z_threshold`` once the
          digram has ``digram_min_count`` samples, or the mean of the last
          ``rhythm_window`` flights deviating from the baseline mean by more
          than ``rhythm_shift_threshold`` (relative)
        - ai_score_update: rolling estimate moved by more than ``ai_report_delta``

    Any state:
        - burst: sliding-window count above ``burst_count`` or a gap below
          ``impossible_gap_ms``, at most once per ``burst_cooldown_ms``
        - long_pause: flight time above ``long_pause_ms``
        - keystroke: always
    """

    def __init__(self, config: Optional[DetectorConfig] = None, sink: Optional[EventSink] = None) -> None:
        self.config = config or DetectorConfig()
        self._sink = sink
        self._state = DetectorState.CALIBRATING
        self._baseline: Optional[BiometricBaseline] = None
        self._calibration_pool: List[float] = []

        self._burst_window: Deque[float] = deque()
        self._last_burst_ts: Optional[float] = None
        self._rhythm_flights: Deque[float] = deque(maxlen=self.config.ai_flight_window)
        self._recent_holds: Deque[float] = deque(maxlen=self.config.ai_hold_window)

        self._rhythm_stability: int = 100
        self._ai_score: int = 0
        self._ai_reported: int = 0

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def state(self) -> DetectorState:
        return self._state

    @property
    def baseline(self) -> Optional[BiometricBaseline]:
        return self._baseline

    @property
    def calibration_progress(self) -> Tuple[int, int]:
        """(samples collected, samples required)."""
        if self._baseline is not None:
            return (self.config.calibration_samples, self.config.calibration_samples)
        return (len(self._calibration_pool), self.config.calibration_samples)

    @property
    def rhythm_stability(self) -> int:
        """0-100 display value; decreases as the recent rhythm drifts from baseline."""
        return self._rhythm_stability

    @property
    def ai_score(self) -> int:
        return self._ai_score

    # -------------------------------------------------------------------------
    # Event Sink
    # -------------------------------------------------------------------------

    def publish(self, event: BiometricEvent) -> BiometricEvent:
        """Push a signal to the sink; sink failures never interrupt detection."""
        if self._sink is not None:
            try:
                self._sink(event)
            except Exception as e:
                logger.error(f"Event sink failed on {event.type}: {e}")
        return event

    # -------------------------------------------------------------------------
    # Input Handlers
    # -------------------------------------------------------------------------

    def on_keystroke(self, keystroke: KeystrokeEvent) -> List[BiometricEvent]:
        """Process one completed keystroke and return the signals it raised."""
        if self._state == DetectorState.CLOSED:
            logger.debug("Keystroke after session end ignored")
            return []

        now = keystroke.release_time
        flight = keystroke.flight_time
        emitted: List[BiometricEvent] = []

        self._recent_holds.append(keystroke.hold_time)

        if self._state == DetectorState.CALIBRATING:
            self._calibrate(flight)
        elif flight > 0:
            self._rhythm_flights.append(flight)
            emitted.extend(self._check_armed(keystroke, now))

        emitted.extend(self._check_burst(flight, now))

        if flight > self.config.long_pause_ms:
            emitted.append(LongPauseSignal(flight_time=flight, timestamp=now))

        emitted.append(KeystrokeSignal(
            key=keystroke.key,
            hold_time=keystroke.hold_time,
            flight_time=flight,
            timestamp=now,
        ))

        for event in emitted:
            self.publish(event)
        return emitted

    def on_paste(self, length: int, timestamp: float) -> List[BiometricEvent]:
        """Clipboard paste into the editor."""
        if self._state == DetectorState.CLOSED:
            return []
        return [self.publish(PasteSignal(length=length, timestamp=timestamp))]

    def on_drop(self, length: int, timestamp: float) -> List[BiometricEvent]:
        """Drag-and-drop insertion bypasses the clipboard paste path."""
        if self._state == DetectorState.CLOSED:
            return []
        return [
            self.publish(DragDropSignal(length=length, timestamp=timestamp)),
            self.publish(ContentInjectionSignal(
                length=length,
                source="clipboard_bypass",
                timestamp=timestamp,
            )),
        ]

    def close(self) -> None:
        """Session ended; further input is ignored."""
        self._state = DetectorState.CLOSED

    # -------------------------------------------------------------------------
    # Calibration
    # -------------------------------------------------------------------------

    def _calibrate(self, flight: float) -> None:
        if not self.config.min_flight_ms <= flight <= self.config.max_flight_ms:
            return
        self._calibration_pool.append(flight)
        if len(self._calibration_pool) < self.config.calibration_samples:
            return

        self._baseline = BiometricBaseline(
            mean=mean(self._calibration_pool),
            std_dev=std(self._calibration_pool),
            digrams=DigramTracker(capacity=self.config.digram_capacity),
        )
        self._calibration_pool = []
        self._state = DetectorState.ARMED
        logger.info(
            f"Baseline calibrated: mean={self._baseline.mean:.1f}ms, "
            f"std={self._baseline.std_dev:.1f}ms"
        )

    # -------------------------------------------------------------------------
    # Armed Checks
    # -------------------------------------------------------------------------

    def _check_armed(self, keystroke: KeystrokeEvent, now: float) -> List[BiometricEvent]:
        baseline = self._baseline
        flight = keystroke.flight_time
        emitted: List[BiometricEvent] = []

        # Z-score against the calibrated baseline
        z = abs(flight - baseline.mean) / safe_divisor(baseline.std_dev)
        if z > self.config.z_threshold:
            emitted.append(InconsistencySignal(z_score=z, key=keystroke.key, timestamp=now))

        # Digram-level rhythm (decided on prior stats, updated every time)
        if keystroke.digram_key is not None:
            prior = baseline.digrams.update(keystroke.digram_key, flight)
            if prior is not None and prior.count >= self.config.digram_min_count:
                dz = abs(flight - prior.mean) / safe_divisor(prior.std)
                if dz > self.config.digram_z_threshold:
                    emitted.append(RhythmShiftSignal(
                        z_score=dz,
                        digram=keystroke.digram_key,
                        timestamp=now,
                    ))

        # Windowed rhythm shift
        window = self.config.rhythm_window
        if len(self._rhythm_flights) >= window:
            recent = list(self._rhythm_flights)[-window:]
            delta = abs(mean(recent) - baseline.mean) / safe_divisor(baseline.mean)
            self._rhythm_stability = max(0, int(100 - delta * 60 + 0.5))
            if delta > self.config.rhythm_shift_threshold:
                emitted.append(RhythmShiftSignal(rhythm_delta=delta, timestamp=now))

        # Rolling AI estimate
        if len(self._rhythm_flights) >= self.config.ai_min_flights:
            estimate = rolling_ai_estimate(list(self._rhythm_flights), list(self._recent_holds))
            if abs(estimate - self._ai_reported) > self.config.ai_report_delta:
                emitted.append(AiScoreUpdateSignal(ai_score=estimate, timestamp=now))
                self._ai_reported = estimate
            self._ai_score = estimate

        return emitted

    # -------------------------------------------------------------------------
    # Burst Detection
    # -------------------------------------------------------------------------

    def _check_burst(self, flight: float, now: float) -> List[BiometricEvent]:
        window = self._burst_window
        window.append(now)
        while window and now - window[0] >= self.config.burst_window_ms:
            window.popleft()

        too_many = len(window) > self.config.burst_count
        too_fast = 0 < flight < self.config.impossible_gap_ms
        if not (too_many or too_fast):
            return []

        if (
            self._last_burst_ts is not None
            and now - self._last_burst_ts < self.config.burst_cooldown_ms
        ):
            return []

        self._last_burst_ts = now
        return [BurstSignal(
            window_count=len(window),
            flight_time=flight if too_fast else None,
            timestamp=now,
        )]
