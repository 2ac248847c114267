"""
Deep-Check Orchestrator

Wires the keystroke pipeline for monitored sessions and the stateless
scoring path used by /ml-score.

Session pipeline:
    Capture → Recorder → Anomaly Detector (live signals)
                      ↘ Feature Extractor → Scorer + Identity Match (session end)

Live signals are advisory and are returned to the caller (and pushed to an
optional sink) as they are raised. Sessions live in an in-memory registry.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import Counter
from typing import Dict, List, Optional, Sequence

from core.config import DetectorConfig
from core.models.identity import LiveIdentityVector, compute_identity_match
from core.models.keyboard import DetectorState, KeystrokeAnomalyDetector
from core.models.scoring import FallbackScorer
from core.processors.content import ContentInjectionMonitor
from core.processors.features import FeatureVector, extract_feature_vector
from core.processors.keyboard import KeystrokeCapture, SessionRecorder
from core.schemas.events import BiometricEvent, EventSink
from core.schemas.inputs import (
    CaptureEvent,
    ContentSample,
    DropEvent,
    EnrollmentRequest,
    KeyboardEvent,
    MlScoreRequest,
    PasteEvent,
)
from core.schemas.outputs import EnrollmentProfile, MlScoreResponse, SessionResult
from persistence.profile_repository import ProfileRepository


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MIN_ENROLLMENT_SAMPLES = 50

HIGH_PERIODICITY = 65.0
NO_FATIGUE = 0.02
UNIFORM_BACKSPACE = 8.0
LEPTOKURTIC = 7.0
LOW_ENTROPY = 1.2
HIGH_BURST_RATE = 10.0
AI_BOT_RISK = 70
IDENTITY_MISMATCH = 40


# =============================================================================
# Exceptions
# =============================================================================

class SessionNotFoundError(Exception):
    """Raised when a session id is unknown or already ended."""
    pass


class SessionClosedError(Exception):
    """Raised when input arrives for a session that has ended."""
    pass


class EnrollmentRejectedError(Exception):
    """Raised when an enrollment profile is too small to be trusted."""
    pass


# =============================================================================
# Flags
# =============================================================================

def derive_flags(
    vector: FeatureVector,
    ml_ai_risk: int,
    identity_match_score: Optional[int] = None,
) -> List[str]:
    """Human-readable anomaly tags for a scored session."""
    flags = []
    if vector["periodicity_score"] > HIGH_PERIODICITY:
        flags.append("high_periodicity")
    if abs(vector["fatigue_rate"]) < NO_FATIGUE:
        flags.append("no_fatigue")
    if vector["backspace_latency_std"] < UNIFORM_BACKSPACE:
        flags.append("uniform_backspace")
    if vector["flight_kurtosis"] > LEPTOKURTIC:
        flags.append("leptokurtic")
    if vector["flight_entropy"] < LOW_ENTROPY:
        flags.append("low_entropy")
    if vector["burst_count_per_100k"] > HIGH_BURST_RATE:
        flags.append("high_burst_rate")
    if ml_ai_risk > AI_BOT_RISK:
        flags.append("ai_bot_detected")
    if identity_match_score is not None and identity_match_score < IDENTITY_MISMATCH:
        flags.append("identity_mismatch")
    return flags


# =============================================================================
# Session
# =============================================================================

class BiometricSession:
    """One monitored typing session."""

    def __init__(
        self,
        session_id: str,
        config: Optional[DetectorConfig] = None,
        sink: Optional[EventSink] = None,
        enrollment_profile_id: Optional[str] = None,
        enrollment_email: Optional[str] = None,
    ) -> None:
        self.session_id = session_id
        self.config = config or DetectorConfig()
        self.enrollment_profile_id = enrollment_profile_id
        self.enrollment_email = enrollment_email

        self.capture = KeystrokeCapture()
        self.recorder = SessionRecorder(self.config)
        self.detector = KeystrokeAnomalyDetector(self.config, sink=sink)
        self.content = ContentInjectionMonitor(self.config)
        self.event_counts: Counter = Counter()

    @property
    def closed(self) -> bool:
        return self.detector.state == DetectorState.CLOSED

    def handle(self, event: CaptureEvent) -> List[BiometricEvent]:
        """Route one capture event and return the signals it raised."""
        if self.closed:
            raise SessionClosedError(f"Session {self.session_id} has ended")

        if isinstance(event, KeyboardEvent):
            emitted = self._handle_key(event)
        elif isinstance(event, PasteEvent):
            self.content.note_input(event.timestamp)
            emitted = self.detector.on_paste(event.length, event.timestamp)
        elif isinstance(event, DropEvent):
            self.content.note_input(event.timestamp)
            emitted = self.detector.on_drop(event.length, event.timestamp)
        elif isinstance(event, ContentSample):
            signal = self.content.sample(event.length, event.timestamp)
            emitted = [self.detector.publish(signal)] if signal is not None else []
        else:
            raise TypeError(f"Unsupported capture event: {type(event).__name__}")

        for signal in emitted:
            self.event_counts[signal.type] += 1
        return emitted

    def _handle_key(self, event: KeyboardEvent) -> List[BiometricEvent]:
        keystroke = self.capture.process_event(event)
        if keystroke is None:
            return []
        self.content.note_input(event.timestamp)
        self.recorder.record(keystroke)

        emitted = self.detector.on_keystroke(keystroke)
        for signal in emitted:
            if signal.type == "burst":
                self.recorder.note_burst()
        return emitted

    def handle_batch(self, events: Sequence[CaptureEvent]) -> List[BiometricEvent]:
        emitted: List[BiometricEvent] = []
        for event in events:
            emitted.extend(self.handle(event))
        return emitted

    def close(self) -> FeatureVector:
        """End the session and extract its feature vector."""
        self.detector.close()
        return extract_feature_vector(self.recorder.to_raw_session_data())


# =============================================================================
# Orchestrator
# =============================================================================

class BiometricOrchestrator:
    """
    Entry point for sessions, scoring and enrollment.

    The scorer is injected; it is expected to fall back internally so that
    scoring always yields a result.
    """

    def __init__(
        self,
        scorer: FallbackScorer,
        profiles: Optional[ProfileRepository] = None,
        config: Optional[DetectorConfig] = None,
    ) -> None:
        self.scorer = scorer
        self.profiles = profiles or ProfileRepository(client=None)
        self.config = config or DetectorConfig()

        self._sessions: Dict[str, BiometricSession] = {}
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    def start_session(
        self,
        enrollment_profile_id: Optional[str] = None,
        enrollment_email: Optional[str] = None,
        sink: Optional[EventSink] = None,
    ) -> BiometricSession:
        session = BiometricSession(
            session_id=uuid.uuid4().hex,
            config=self.config,
            sink=sink,
            enrollment_profile_id=enrollment_profile_id,
            enrollment_email=enrollment_email,
        )
        with self._lock:
            self._sessions[session.session_id] = session
        logger.info(f"Session {session.session_id} started")
        return session

    def get_session(self, session_id: str) -> BiometricSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Unknown session {session_id}")
        return session

    def process_events(self, session_id: str, events: Sequence[CaptureEvent]) -> List[BiometricEvent]:
        """Feed a batch of capture events to a session."""
        return self.get_session(session_id).handle_batch(events)

    async def end_session(self, session_id: str) -> SessionResult:
        """Close a session, score it and drop it from the registry."""
        session = self.get_session(session_id)
        if session.closed:
            raise SessionClosedError(f"Session {session_id} has already ended")
        vector = session.close()
        with self._lock:
            self._sessions.pop(session_id, None)

        result = await self.scorer.score(vector)

        profile = self._lookup_profile(session.enrollment_profile_id, session.enrollment_email)
        live = LiveIdentityVector.from_feature_vector(vector, digrams=session.recorder.digram_stats())
        identity = compute_identity_match(live, profile.profile if profile else None)

        logger.info(
            f"Session {session_id} scored: risk={result.risk} ({result.method.value}), "
            f"identity={identity}, keystrokes={session.recorder.total_keystrokes}"
        )

        return SessionResult(
            session_id=session_id,
            features=vector.as_dict(),
            ml_ai_risk=result.risk,
            identity_match_score=identity,
            inference_method=result.method,
            flags=derive_flags(vector, result.risk, identity),
            keystrokes=session.recorder.total_keystrokes,
            rhythm_stability=session.detector.rhythm_stability,
            event_counts=dict(session.event_counts),
        )

    @property
    def active_sessions(self) -> int:
        with self._lock:
            return len(self._sessions)

    # -------------------------------------------------------------------------
    # Stateless Scoring
    # -------------------------------------------------------------------------

    async def score_request(self, request: MlScoreRequest) -> MlScoreResponse:
        """Score a client-computed feature object (/ml-score)."""
        features = request.features
        vector = FeatureVector.from_session_features(features)
        result = await self.scorer.score(vector)

        profile = self._lookup_profile(request.enrollment_profile_id, request.enrollment_email)
        identity = None
        context = None
        if profile is not None:
            identity = compute_identity_match(LiveIdentityVector.from_session_features(features), profile.profile)
            context = profile.context

        return MlScoreResponse(
            ml_ai_risk=result.risk,
            identity_match_score=identity,
            inference_method=result.method,
            enrollment_context=context,
            flags=derive_flags(vector, result.risk, identity),
            keystrokes=request.total_keystrokes,
        )

    # -------------------------------------------------------------------------
    # Enrollment
    # -------------------------------------------------------------------------

    def enroll(self, request: EnrollmentRequest) -> EnrollmentProfile:
        """
        Store an enrollment profile.

        Raises:
            EnrollmentRejectedError: if the profile has fewer than 50 samples
            ProfileStoreError: if the store is unavailable
        """
        if request.profile.sample_size < MIN_ENROLLMENT_SAMPLES:
            raise EnrollmentRejectedError(
                f"Insufficient samples: {request.profile.sample_size} < {MIN_ENROLLMENT_SAMPLES}"
            )
        return self.profiles.save_profile(
            candidate_name=request.candidate_name,
            candidate_email=request.candidate_email,
            context=request.context,
            profile=request.profile,
        )

    def find_enrollment(self, email: str) -> Optional[EnrollmentProfile]:
        return self.profiles.get_profile_by_email(email)

    def _lookup_profile(
        self,
        profile_id: Optional[str],
        email: Optional[str],
    ) -> Optional[EnrollmentProfile]:
        if profile_id:
            profile = self.profiles.get_profile_by_id(profile_id)
            if profile is not None:
                return profile
        if email:
            return self.profiles.get_profile_by_email(email)
        return None
