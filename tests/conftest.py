"""
Deep-Check Test Suite - Shared Pytest Fixtures

This conftest.py provides:
- An in-memory Redis double for the enrollment store
- Keystroke event helpers
- Detector, scorer and orchestrator instances

Usage:
    pytest tests/ -v -s
"""

import fnmatch
import os
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from core.config import DetectorConfig
from core.schemas.inputs import KeyboardEvent, KeyEventType

# =============================================================================
# Path Helpers
# =============================================================================

def get_project_root() -> str:
    """Get the absolute path to the project root."""
    return os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

def get_tests_dir() -> str:
    """Get the absolute path to the tests directory."""
    return os.path.dirname(os.path.abspath(__file__))


# =============================================================================
# In-Memory Redis
# =============================================================================

class InMemoryRedis:
    """
    Minimal stand-in for redis.Redis (decode_responses=True) covering the
    commands used by ProfileRepository. Expiry uses wall-clock time.
    """

    def __init__(self) -> None:
        self.strings: Dict[str, str] = {}
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.expiry: Dict[str, float] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            from redis.exceptions import ConnectionError
            raise ConnectionError("Redis unavailable")

    def _purge(self, key: str) -> None:
        deadline = self.expiry.get(key)
        if deadline is not None and deadline <= time.time():
            self.strings.pop(key, None)
            self.zsets.pop(key, None)
            self.expiry.pop(key, None)

    def ping(self) -> bool:
        self._check()
        return True

    def get(self, key: str) -> Optional[str]:
        self._check()
        self._purge(key)
        return self.strings.get(key)

    def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        self._check()
        self.strings[key] = value
        if ex is not None:
            self.expiry[key] = time.time() + ex
        return True

    def setex(self, key: str, seconds: int, value: str) -> bool:
        return self.set(key, value, ex=seconds)

    def expire(self, key: str, seconds: int) -> bool:
        self._check()
        self.expiry[key] = time.time() + seconds
        return True

    def ttl(self, key: str) -> int:
        deadline = self.expiry.get(key)
        if deadline is None:
            return -1
        return int(deadline - time.time())

    def zadd(self, key: str, mapping: Dict[str, float]) -> int:
        self._check()
        zset = self.zsets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in zset)
        zset.update(mapping)
        return added

    def zrevrange(self, key: str, start: int, end: int) -> List[str]:
        self._check()
        self._purge(key)
        members = sorted(self.zsets.get(key, {}).items(), key=lambda item: item[1], reverse=True)
        names = [name for name, _ in members]
        return names[start:] if end == -1 else names[start:end + 1]

    def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.strings.pop(key, None) is not None or self.zsets.pop(key, None) is not None:
                removed += 1
            self.expiry.pop(key, None)
        return removed

    def keys(self, pattern: str = "*") -> List[str]:
        return [k for k in list(self.strings) + list(self.zsets) if fnmatch.fnmatch(k, pattern)]

    def pipeline(self, transaction: bool = True) -> "InMemoryPipeline":
        return InMemoryPipeline(self)

    def flushdb(self) -> None:
        self.strings.clear()
        self.zsets.clear()
        self.expiry.clear()


class InMemoryPipeline:
    """Buffers commands and applies them on execute()."""

    def __init__(self, client: InMemoryRedis) -> None:
        self._client = client
        self._commands: List[Tuple[str, tuple, dict]] = []

    def __getattr__(self, name: str):
        def queue(*args: Any, **kwargs: Any) -> "InMemoryPipeline":
            self._commands.append((name, args, kwargs))
            return self
        return queue

    def execute(self) -> List[Any]:
        self._client._check()
        results = [getattr(self._client, name)(*args, **kwargs) for name, args, kwargs in self._commands]
        self._commands = []
        return results


@pytest.fixture
def memory_redis() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture
def profile_repository(memory_redis):
    from persistence.profile_repository import ProfileRepository
    return ProfileRepository(client=memory_redis, ttl_days=90)


# =============================================================================
# Event Helpers
# =============================================================================

def make_keyboard_event(
    key: str,
    event_type: KeyEventType,
    timestamp: float,
    ctrl: bool = False,
    meta: bool = False,
) -> KeyboardEvent:
    """Create a KeyboardEvent with the given parameters."""
    return KeyboardEvent(key=key, event_type=event_type, timestamp=timestamp, ctrl=ctrl, meta=meta)


def type_sequence(
    keys: Sequence[str],
    flights: Sequence[float],
    hold: float = 80.0,
    start: float = 1000.0,
) -> List[KeyboardEvent]:
    """
    Build DOWN/UP pairs where ``flights[i]`` is the gap between the release
    of key i-1 and the press of key i (flights[0] is ignored).
    """
    events = []
    t = start
    for i, key in enumerate(keys):
        if i > 0:
            t += flights[i]
        events.append(make_keyboard_event(key, KeyEventType.DOWN, t))
        t += hold
        events.append(make_keyboard_event(key, KeyEventType.UP, t))
    return events


def keystroke(
    key: str,
    press: float,
    hold: float = 80.0,
    flight: float = 0.0,
    digram_key: Optional[str] = None,
):
    """Create a completed KeystrokeEvent directly."""
    from core.processors.keyboard import KeystrokeEvent
    return KeystrokeEvent(
        key=key,
        press_time=press,
        release_time=press + hold,
        flight_time=flight,
        digram_key=digram_key,
    )


class FlightFeeder:
    """
    Feeds keystrokes with given flight times to a detector, chaining
    timestamps and digram keys across calls.
    """

    def __init__(self, detector, keys: str = "abcdefghij", start: float = 0.0) -> None:
        self.detector = detector
        self.keys = keys
        self.t = start
        self._index = 0
        self._previous: Optional[str] = None

    def feed(self, flights: Sequence[float], hold: float = 80.0) -> list:
        """Returns every signal emitted while feeding."""
        emitted = []
        for flight in flights:
            key = self.keys[self._index % len(self.keys)]
            self.t += flight
            digram = f"{self._previous}→{key}" if self._previous is not None else None
            emitted.extend(self.detector.on_keystroke(
                keystroke(key, self.t, hold=hold, flight=flight, digram_key=digram)
            ))
            self.t += hold
            self._previous = key
            self._index += 1
        return emitted


# =============================================================================
# Engine Fixtures
# =============================================================================

@pytest.fixture
def detector_config() -> DetectorConfig:
    return DetectorConfig()


@pytest.fixture
def detector(detector_config):
    from core.models.keyboard import KeystrokeAnomalyDetector
    return KeystrokeAnomalyDetector(detector_config)


@pytest.fixture
def heuristic_scorer():
    from core.models.scoring import FallbackScorer, HeuristicScorer, OnnxScorer
    # Missing model files force the heuristic path
    return FallbackScorer(
        primary=OnnxScorer("/nonexistent/model.onnx", "/nonexistent/scaler.json"),
        fallback=HeuristicScorer(),
    )


@pytest.fixture
def orchestrator(heuristic_scorer, profile_repository):
    from core.orchestrator import BiometricOrchestrator
    return BiometricOrchestrator(scorer=heuristic_scorer, profiles=profile_repository)
