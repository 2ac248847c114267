"""
Deep-Check Core Models

Online anomaly detection, AI-likelihood scoring and identity matching.
"""

from core.models.identity import LiveIdentityVector, compute_identity_match
from core.models.keyboard import DetectorState, DigramTracker, KeystrokeAnomalyDetector
from core.models.scoring import FallbackScorer, HeuristicScorer, OnnxScorer, ScoreResult, Scorer

__all__ = [
    "KeystrokeAnomalyDetector",
    "DetectorState",
    "DigramTracker",
    "Scorer",
    "ScoreResult",
    "OnnxScorer",
    "HeuristicScorer",
    "FallbackScorer",
    "LiveIdentityVector",
    "compute_identity_match",
]
