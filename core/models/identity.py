"""
Deep-Check Identity Matcher

Compares live session statistics with a stored enrollment profile.

Global distance uses a diagonal Mahalanobis over four dimensions
(flight mean, flight std, hold mean, entropy). Per-dimension variances are
derived from the profile itself, so no population covariance is needed.
When the live session and the profile share enough digrams, a per-digram
similarity is blended in.
"""

import math
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from core.processors.features import FeatureVector
from core.schemas.inputs import DigramStats, KeystrokeProfile, SessionFeatures


# =============================================================================
# Constants
# =============================================================================

FLIGHT_MEAN_SPREAD = 0.6
FLIGHT_STD_SPREAD = 0.5
HOLD_MEAN_SPREAD = 0.6
ENTROPY_VARIANCE = 0.25

DISTANCE_DECAY = 0.12

DIGRAM_TOLERANCE = 0.35
DIGRAM_MIN_OVERLAP = 3
DIGRAM_NEUTRAL_SCORE = 50.0

DISTANCE_WEIGHT = 0.7
DIGRAM_WEIGHT = 0.3


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positive scores."""
    return int(math.floor(value + 0.5))


# =============================================================================
# Live Vector
# =============================================================================

@dataclass(frozen=True)
class LiveIdentityVector:
    """Live statistics compared against an enrollment profile."""
    flight_mean: float
    flight_std: float
    hold_mean: float
    entropy: float
    digrams: Optional[Mapping[str, DigramStats]] = None

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.flight_mean, self.flight_std, self.hold_mean, self.entropy)

    @classmethod
    def from_feature_vector(
        cls,
        vector: FeatureVector,
        digrams: Optional[Mapping[str, DigramStats]] = None,
    ) -> "LiveIdentityVector":
        return cls(
            flight_mean=vector["flight_mean"],
            flight_std=vector["flight_std"],
            hold_mean=vector["hold_mean"],
            entropy=vector["flight_entropy"],
            digrams=digrams,
        )

    @classmethod
    def from_session_features(cls, features: SessionFeatures) -> "LiveIdentityVector":
        return cls(
            flight_mean=features.flight_mean,
            flight_std=features.flight_std,
            hold_mean=features.hold_mean,
            entropy=features.entropy,
            digrams=features.digrams,
        )


# =============================================================================
# Scoring
# =============================================================================

def profile_variances(profile: KeystrokeProfile) -> Tuple[float, float, float, float]:
    """Diagonal variances for the four dimensions; a zero variance becomes 1."""
    variances = (
        (profile.flight_std * FLIGHT_MEAN_SPREAD) ** 2,
        (profile.flight_std * FLIGHT_STD_SPREAD) ** 2,
        (profile.hold_std * HOLD_MEAN_SPREAD) ** 2,
        ENTROPY_VARIANCE,
    )
    return tuple(v or 1.0 for v in variances)


def mahalanobis_distance(live: LiveIdentityVector, profile: KeystrokeProfile) -> float:
    """Diagonal Mahalanobis distance between live statistics and the profile."""
    reference = (profile.flight_mean, profile.flight_std, profile.hold_mean, profile.entropy)
    return math.sqrt(sum(
        (x - mu) ** 2 / var
        for x, mu, var in zip(live.as_tuple(), reference, profile_variances(profile))
    ))


def distance_to_score(distance: float) -> int:
    """Map a distance to 0-100 with exponential decay (0 -> 100)."""
    return max(0, round_half_up(100 * math.exp(-DISTANCE_DECAY * distance)))


def digram_similarity(
    live: Optional[Mapping[str, DigramStats]],
    enrolled: Mapping[str, DigramStats],
) -> Optional[int]:
    """
    Mean per-digram similarity over digrams present in both maps, rounded half up.

    Returns None when fewer than DIGRAM_MIN_OVERLAP digrams are shared.
    """
    if not live or not enrolled:
        return None
    shared = [key for key in live if key in enrolled]
    if len(shared) < DIGRAM_MIN_OVERLAP:
        return None

    scores = []
    for key in shared:
        base = enrolled[key].mean
        if base == 0:
            scores.append(DIGRAM_NEUTRAL_SCORE)
            continue
        deviation = abs(live[key].mean - base) / base
        scores.append(max(0.0, 1.0 - deviation / DIGRAM_TOLERANCE) * 100.0)
    return round_half_up(sum(scores) / len(scores))


def compute_identity_match(
    live: LiveIdentityVector,
    profile: Optional[KeystrokeProfile],
) -> Optional[int]:
    """
    Identity match score (0-100), or None when no profile is available.

    100 means the live statistics equal the enrolled ones.
    """
    if profile is None:
        return None

    distance_score = distance_to_score(mahalanobis_distance(live, profile))
    digram_score = digram_similarity(live.digrams, profile.digrams)
    if digram_score is None:
        return distance_score

    blended = DISTANCE_WEIGHT * distance_score + DIGRAM_WEIGHT * digram_score
    return min(100, max(0, round_half_up(blended)))
