"""
Deep-Check Feature Extractor

Converts a whole session's raw timing arrays into the fixed 18-value
feature vector consumed by the AI-likelihood scorers.

FEATURE_NAMES is the canonical order. It must match the order the
classifier was trained with; normalisation and inference rely on
positional alignment, so the order never varies.
"""

from dataclasses import dataclass
from typing import Dict, List, Mapping, Sequence, Tuple

import numpy as np

from core.schemas.inputs import RawSessionData, SessionFeatures


# =============================================================================
# Constants
# =============================================================================

FEATURE_NAMES: Tuple[str, ...] = (
    "flight_mean", "flight_std", "hold_mean", "hold_std",
    "flight_skewness", "flight_kurtosis", "flight_entropy", "hold_entropy",
    "periodicity_score", "velocity_gradient", "fatigue_rate", "rhythm_consistency",
    "impossible_fast_ratio", "digram_cv_mean",
    "backspace_latency_std", "backspace_count_ratio",
    "burst_count_per_100k", "session_wpm",
)

N_FEATURES = len(FEATURE_NAMES)  # 18

ENTROPY_BINS = 10
PERIODICITY_WINDOW = 64
RHYTHM_WINDOW = 20
RHYTHM_STRIDE = 10
IMPOSSIBLE_FAST_MS = 12.0
DIGRAM_MIN_SAMPLES = 3
DIGRAM_CV_DEFAULT = 0.5

# Client hold entropy is optional on /ml-score; approximated from flight entropy
HOLD_ENTROPY_RATIO = 0.85


# =============================================================================
# Feature Vector
# =============================================================================

@dataclass(frozen=True)
class FeatureVector:
    """Exactly 18 raw feature values in FEATURE_NAMES order."""
    values: Tuple[float, ...]

    def __post_init__(self) -> None:
        if len(self.values) != N_FEATURES:
            raise ValueError(f"Expected {N_FEATURES} feature values, got {len(self.values)}")

    def __getitem__(self, name: str) -> float:
        return self.values[FEATURE_NAMES.index(name)]

    def as_dict(self) -> Dict[str, float]:
        """Raw values keyed by feature name, in canonical order."""
        return dict(zip(FEATURE_NAMES, self.values))

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, float]) -> "FeatureVector":
        """Build a vector from any name -> value mapping; missing names become 0."""
        return cls(values=tuple(float(mapping.get(name, 0.0)) for name in FEATURE_NAMES))

    @classmethod
    def from_session_features(cls, features: SessionFeatures) -> "FeatureVector":
        """Map the client feature object of /ml-score onto the canonical order."""
        hold_entropy = features.hold_entropy
        if hold_entropy is None:
            hold_entropy = features.entropy * HOLD_ENTROPY_RATIO
        return cls.from_mapping({
            "flight_mean": features.flight_mean,
            "flight_std": features.flight_std,
            "hold_mean": features.hold_mean,
            "hold_std": features.hold_std,
            "flight_skewness": features.skewness,
            "flight_kurtosis": features.kurtosis,
            "flight_entropy": features.entropy,
            "hold_entropy": hold_entropy,
            "periodicity_score": features.periodicity_score,
            "velocity_gradient": features.velocity_gradient,
            "fatigue_rate": features.fatigue_rate,
            "rhythm_consistency": features.rhythm_consistency,
            "impossible_fast_ratio": features.impossible_fast_ratio,
            "digram_cv_mean": features.digram_cv_mean,
            "backspace_latency_std": features.backspace_latency_std,
            "backspace_count_ratio": features.backspace_count_ratio,
            "burst_count_per_100k": features.burst_count_per_100k,
            "session_wpm": features.session_wpm,
        })


# =============================================================================
# Statistics Helpers
# =============================================================================

def mean(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.mean(values))


def std(values: Sequence[float]) -> float:
    """Population standard deviation; 0 for fewer than two samples."""
    if len(values) < 2:
        return 0.0
    return float(np.std(values))


def skewness(values: Sequence[float]) -> float:
    if len(values) < 3:
        return 0.0
    arr = np.asarray(values, dtype=float)
    s = arr.std()
    if s == 0:
        return 0.0
    return float(np.mean(((arr - arr.mean()) / s) ** 3))


def kurtosis_excess(values: Sequence[float]) -> float:
    if len(values) < 4:
        return 0.0
    arr = np.asarray(values, dtype=float)
    s = arr.std()
    if s == 0:
        return 0.0
    return float(np.mean(((arr - arr.mean()) / s) ** 4) - 3.0)


def shannon_entropy(values: Sequence[float], bins: int = ENTROPY_BINS) -> float:
    """
    Shannon entropy (bits) of a histogram with equal-width bins.

    A constant series populates a single bin and yields 0.
    """
    if len(values) == 0:
        return 0.0
    arr = np.asarray(values, dtype=float)
    lo, hi = arr.min(), arr.max()
    width = (hi - lo) / bins or 1.0
    idx = np.minimum(bins - 1, np.floor((arr - lo) / width).astype(int))
    counts = np.bincount(idx, minlength=bins)
    p = counts[counts > 0] / len(arr)
    return float(-(p * np.log2(p)).sum())


def periodicity_score(values: Sequence[float], window: int = PERIODICITY_WINDOW) -> float:
    """
    Share of spectral power in the dominant frequency bin, as a percentage.

    Uses the last ``window`` samples, mean-centred, and skips the DC bin.
    """
    if len(values) < 8:
        return 0.0
    n = min(window, len(values))
    centred = np.asarray(values[-n:], dtype=float)
    centred = centred - centred.mean()
    spectrum = np.fft.fft(centred)[1:(n + 1) // 2]
    power = spectrum.real ** 2 + spectrum.imag ** 2
    total = float(power.sum())
    if total == 0:
        return 0.0
    return float(power.max()) / total * 100.0


def velocity_gradient(values: Sequence[float]) -> float:
    """Relative change of the second-half mean over the first half (positive = slowing down)."""
    if len(values) < 10:
        return 0.0
    mid = len(values) // 2
    first = mean(values[:mid])
    second = mean(values[mid:])
    if first == 0:
        return 0.0
    return (second - first) / first


def fatigue_rate(values: Sequence[float]) -> float:
    """Least-squares slope of flight time against keystroke index (ms per keystroke)."""
    n = len(values)
    if n < 10:
        return 0.0
    x = np.arange(n, dtype=float)
    y = np.asarray(values, dtype=float)
    denom = n * (x * x).sum() - x.sum() ** 2
    if denom == 0:
        return 0.0
    return float((n * (x * y).sum() - x.sum() * y.sum()) / denom)


def rhythm_consistency(values: Sequence[float]) -> float:
    """Standard deviation of 20-sample window means taken at stride 10."""
    if len(values) < RHYTHM_WINDOW:
        return 0.0
    window_means = [
        mean(values[i:i + RHYTHM_WINDOW])
        for i in range(0, len(values) - RHYTHM_WINDOW + 1, RHYTHM_STRIDE)
    ]
    return std(window_means)


def impossible_fast_ratio(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    fast = sum(1 for v in values if 0 < v < IMPOSSIBLE_FAST_MS)
    return fast / len(values)


def digram_cv_mean(digrams: Mapping[str, List[float]]) -> float:
    """Mean coefficient of variation across digrams with enough samples."""
    cvs = []
    for samples in digrams.values():
        if len(samples) < DIGRAM_MIN_SAMPLES:
            continue
        mu = mean(samples)
        cvs.append(std(samples) / mu if mu != 0 else 0.0)
    if not cvs:
        return DIGRAM_CV_DEFAULT
    return mean(cvs)


# =============================================================================
# Extraction
# =============================================================================

def extract_feature_vector(data: RawSessionData) -> FeatureVector:
    """
    Extract the 18 session features from raw session data.

    Pure and deterministic: identical input yields identical output.
    """
    flights = data.flight_times
    holds = data.hold_times
    keystrokes = data.total_keystrokes

    session_minutes = data.session_duration_ms / 60000.0
    session_wpm = (keystrokes / 5.0) / session_minutes if session_minutes > 0 else 0.0

    raw = {
        "flight_mean": mean(flights),
        "flight_std": std(flights),
        "hold_mean": mean(holds),
        "hold_std": std(holds),
        "flight_skewness": skewness(flights),
        "flight_kurtosis": kurtosis_excess(flights),
        "flight_entropy": shannon_entropy(flights),
        "hold_entropy": shannon_entropy(holds),
        "periodicity_score": periodicity_score(flights),
        "velocity_gradient": velocity_gradient(flights),
        "fatigue_rate": fatigue_rate(flights),
        "rhythm_consistency": rhythm_consistency(flights),
        "impossible_fast_ratio": impossible_fast_ratio(flights),
        "digram_cv_mean": digram_cv_mean(data.digrams),
        "backspace_latency_std": std(data.backspace_times),
        "backspace_count_ratio": data.total_backspaces / keystrokes if keystrokes > 0 else 0.0,
        "burst_count_per_100k": data.burst_count / keystrokes * 100000.0 if keystrokes > 0 else 0.0,
        "session_wpm": session_wpm,
    }

    return FeatureVector.from_mapping(raw)


def normalise_features(
    values: Sequence[float],
    scaler_mean: Sequence[float],
    scaler_std: Sequence[float],
) -> Tuple[float, ...]:
    """
    Standardise raw values with per-feature scaler parameters.

    A zero (or missing) std is treated as 1.
    """
    if not (len(values) == len(scaler_mean) == len(scaler_std)):
        raise ValueError(
            f"Scaler length mismatch: values={len(values)}, "
            f"mean={len(scaler_mean)}, std={len(scaler_std)}"
        )
    return tuple(
        (float(v) - float(m)) / (float(s) or 1.0)
        for v, m, s in zip(values, scaler_mean, scaler_std)
    )
