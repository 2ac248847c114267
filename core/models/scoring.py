"""
Deep-Check AI-Likelihood Scorers

Session-level classification of human vs synthetic typing.

OnnxScorer:
    Trained classifier exported to ONNX, run on CPU with onnxruntime.
    Inputs are standardised with the scaler sidecar shipped beside the model.

HeuristicScorer:
    Weighted rules over the same 18 features; always available.

FallbackScorer:
    Tries the classifier and answers with the heuristic whenever the
    classifier is unavailable or fails. It never raises.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Sequence

import numpy as np
import onnxruntime as ort

from core.models.identity import round_half_up
from core.processors.features import FEATURE_NAMES, FeatureVector, normalise_features
from core.schemas.outputs import InferenceMethod

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoreResult:
    """AI-likelihood risk (0-100) and the strategy that produced it."""
    risk: int
    method: InferenceMethod


class Scorer(Protocol):
    async def load(self) -> bool: ...

    async def score(self, vector: FeatureVector) -> Optional[ScoreResult]: ...

    def close(self) -> None: ...


# =============================================================================
# Heuristic
# =============================================================================

class HeuristicScorer:
    """Rule-based scorer over the canonical feature vector."""

    method = InferenceMethod.HEURISTIC

    async def load(self) -> bool:
        return True

    def score_sync(self, vector: FeatureVector) -> ScoreResult:
        f = vector.as_dict()
        score = 0

        # Neuromotor floor: humans rarely sustain gaps under 12ms
        if f["impossible_fast_ratio"] > 0.05:
            score += 15
        elif f["impossible_fast_ratio"] > 0.01:
            score += 6

        if f["flight_std"] < 20:
            score += 10
        if f["hold_std"] < 5:
            score += 5

        if f["periodicity_score"] > 65:
            score += 25
        elif f["periodicity_score"] > 45:
            score += 12

        # No warm-up or slow-down across the session
        if abs(f["velocity_gradient"]) < 0.01:
            score += 15
        elif abs(f["velocity_gradient"]) < 0.05:
            score += 6

        if abs(f["fatigue_rate"]) < 0.02:
            score += 15
        elif abs(f["fatigue_rate"]) < 0.08:
            score += 5

        # Corrections that are too regular, or absent
        if f["backspace_latency_std"] < 8:
            score += 15
        if f["backspace_count_ratio"] < 0.01:
            score += 8

        if f["flight_kurtosis"] > 7:
            score += 12
        elif f["flight_kurtosis"] > 4:
            score += 5

        if f["flight_entropy"] < 1.0:
            score += 15
        elif f["flight_entropy"] < 1.8:
            score += 7

        if abs(f["flight_skewness"]) < 0.1:
            score += 8

        if f["rhythm_consistency"] < 5:
            score += 10

        return ScoreResult(risk=max(0, min(100, score)), method=self.method)

    async def score(self, vector: FeatureVector) -> Optional[ScoreResult]:
        return self.score_sync(vector)

    def close(self) -> None:
        pass


# =============================================================================
# ONNX Classifier
# =============================================================================

@dataclass(frozen=True)
class ScalerParams:
    """Standardisation parameters saved beside the model at training time."""
    features: List[str]
    mean: List[float]
    std: List[float]

    def __post_init__(self) -> None:
        if not (len(self.features) == len(self.mean) == len(self.std)):
            raise ValueError(
                f"Scaler sidecar is inconsistent: {len(self.features)} features, "
                f"{len(self.mean)} means, {len(self.std)} stds"
            )

    @classmethod
    def from_file(cls, path: str) -> "ScalerParams":
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        return cls(
            features=list(data["features"]),
            mean=[float(v) for v in data["mean"]],
            std=[float(v) for v in data["std"]],
        )


def parse_bot_probability(outputs: Sequence[Any]) -> float:
    """
    Extract P(bot) from a classifier's outputs.

    Accepts, in output order:
    - a sequence of {class: probability} maps (ZipMap)
    - a dense [1, 2] probability tensor
    - a single probability

    Integer tensors are class labels and are skipped.

    Raises:
        ValueError: if no output carries a probability
    """
    for output in outputs:
        if isinstance(output, list) and output and isinstance(output[0], dict):
            probs = output[0]
            p = probs.get(1, probs.get("1"))
            if p is not None:
                return float(p)
            continue

        if isinstance(output, dict):
            p = output.get(1, output.get("1"))
            if p is not None:
                return float(p)
            continue

        arr = np.asarray(output)
        if arr.dtype.kind not in "f":
            continue
        if arr.ndim == 2 and arr.shape[1] == 2:
            return float(arr[0, 1])
        if arr.size == 1:
            return float(arr.reshape(-1)[0])

    raise ValueError("Classifier produced no probability output")


class OnnxScorer:
    """
    ONNX classifier scorer.

    The model and scaler are loaded lazily on first use. Concurrent callers
    share a single in-flight load; a failed load leaves the scorer
    unavailable until ``close()`` resets it.
    """

    method = InferenceMethod.ONNX

    def __init__(
        self,
        model_path: str,
        scaler_path: str,
        providers: Sequence[str] = ("CPUExecutionProvider",),
    ) -> None:
        self.model_path = model_path
        self.scaler_path = scaler_path
        self.providers = list(providers)

        self._session: Optional[ort.InferenceSession] = None
        self._input_name: Optional[str] = None
        self._scaler: Optional[ScalerParams] = None
        self._load_task: Optional[asyncio.Future] = None

    @property
    def available(self) -> bool:
        return self._session is not None and self._scaler is not None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def load(self) -> bool:
        """Load model and scaler once; returns availability."""
        if self.available:
            return True
        if self._load_task is None:
            self._load_task = asyncio.ensure_future(asyncio.to_thread(self._load_blocking))
        elif self._load_task.done() and self._load_task.exception() is not None:
            return False
        try:
            await asyncio.shield(self._load_task)
        except Exception as e:
            logger.warning(f"ONNX model unavailable, heuristic scoring only: {e}")
            return False
        return self.available

    def _load_blocking(self) -> None:
        if not os.path.exists(self.model_path):
            raise FileNotFoundError(f"Model not found: {self.model_path}")
        if not os.path.exists(self.scaler_path):
            raise FileNotFoundError(f"Scaler sidecar not found: {self.scaler_path}")

        scaler = ScalerParams.from_file(self.scaler_path)

        options = ort.SessionOptions()
        options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        session = ort.InferenceSession(self.model_path, sess_options=options, providers=self.providers)

        self._input_name = session.get_inputs()[0].name
        self._scaler = scaler
        self._session = session
        logger.info(f"✅ ONNX classifier loaded from {self.model_path} ({len(scaler.features)} features)")

    def close(self) -> None:
        """Release the inference session."""
        self._session = None
        self._scaler = None
        self._input_name = None
        self._load_task = None

    # -------------------------------------------------------------------------
    # Inference
    # -------------------------------------------------------------------------

    def prepare_input(self, vector: FeatureVector) -> np.ndarray:
        """Reorder by the sidecar's feature list, standardise, shape [1, n]."""
        scaler = self._scaler
        values = vector.as_dict()
        raw = [values[name] if name in FEATURE_NAMES else 0.0 for name in scaler.features]
        normalised = normalise_features(raw, scaler.mean, scaler.std)
        return np.asarray([normalised], dtype=np.float32)

    def _run(self, vector: FeatureVector) -> ScoreResult:
        outputs = self._session.run(None, {self._input_name: self.prepare_input(vector)})
        probability = min(1.0, max(0.0, parse_bot_probability(outputs)))
        return ScoreResult(risk=round_half_up(probability * 100), method=self.method)

    async def score(self, vector: FeatureVector) -> Optional[ScoreResult]:
        if not await self.load():
            return None
        try:
            return await asyncio.to_thread(self._run, vector)
        except Exception as e:
            logger.warning(f"ONNX inference failed: {e}")
            return None


# =============================================================================
# Fallback Composition
# =============================================================================

class FallbackScorer:
    """Primary scorer with heuristic fallback. ``score`` always returns a result."""

    def __init__(self, primary: Scorer, fallback: Optional[HeuristicScorer] = None) -> None:
        self.primary = primary
        self.fallback = fallback or HeuristicScorer()

    async def load(self) -> bool:
        try:
            return await self.primary.load()
        except Exception as e:
            logger.warning(f"Primary scorer failed to load: {e}")
            return False

    async def score(self, vector: FeatureVector) -> ScoreResult:
        try:
            result = await self.primary.score(vector)
        except Exception as e:
            logger.warning(f"Primary scorer raised, falling back to heuristic: {e}")
            result = None
        if result is not None:
            return result
        return self.fallback.score_sync(vector)

    def close(self) -> None:
        self.primary.close()
        self.fallback.close()
