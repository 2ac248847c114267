"""
AI-Likelihood Scorer Unit Tests

Tests for the heuristic rules, classifier output parsing, the ONNX scorer
lifecycle (with a stand-in inference session) and the fallback composition.
"""

import asyncio
import json

import numpy as np
import pytest

from core.models import scoring
from core.models.scoring import (
    FallbackScorer,
    HeuristicScorer,
    OnnxScorer,
    ScalerParams,
    ScoreResult,
    parse_bot_probability,
)
from core.processors.features import FEATURE_NAMES, FeatureVector, extract_feature_vector
from core.schemas.inputs import RawSessionData
from core.schemas.outputs import InferenceMethod


def robotic_vector() -> FeatureVector:
    """Fifty identical 100ms flights with identical holds."""
    return extract_feature_vector(RawSessionData(
        flight_times=[100.0] * 50,
        hold_times=[80.0] * 50,
        total_keystrokes=50,
        session_duration_ms=9000,
    ))


def human_vector() -> FeatureVector:
    return FeatureVector.from_mapping({
        "flight_mean": 180.0,
        "flight_std": 85.0,
        "hold_mean": 95.0,
        "hold_std": 22.0,
        "flight_skewness": 1.4,
        "flight_kurtosis": 2.5,
        "flight_entropy": 2.9,
        "hold_entropy": 2.6,
        "periodicity_score": 18.0,
        "velocity_gradient": 0.12,
        "fatigue_rate": 0.3,
        "rhythm_consistency": 24.0,
        "impossible_fast_ratio": 0.0,
        "digram_cv_mean": 0.35,
        "backspace_latency_std": 70.0,
        "backspace_count_ratio": 0.06,
        "burst_count_per_100k": 0.0,
        "session_wpm": 45.0,
    })


# =============================================================================
# Stand-in Inference Session
# =============================================================================

class FakeInput:
    name = "float_input"


class FakeSession:
    """Mimics onnxruntime.InferenceSession for a binary classifier."""

    def __init__(self, outputs):
        self.outputs = outputs
        self.calls = []

    def get_inputs(self):
        return [FakeInput()]

    def run(self, output_names, feeds):
        self.calls.append(feeds)
        return self.outputs


def write_artifacts(tmp_path, features=FEATURE_NAMES):
    model = tmp_path / "model.onnx"
    model.write_bytes(b"onnx")
    scaler = tmp_path / "scaler.json"
    scaler.write_text(json.dumps({
        "features": list(features),
        "mean": [0.0] * len(features),
        "std": [1.0] * len(features),
    }))
    return str(model), str(scaler)


@pytest.fixture
def fake_ort(monkeypatch):
    """Patch InferenceSession creation; returns a setter for the outputs."""
    state = {"outputs": [np.array([[0.2, 0.8]], dtype=np.float32)], "created": 0, "sessions": []}

    def factory(path, sess_options=None, providers=None):
        state["created"] += 1
        session = FakeSession(state["outputs"])
        state["sessions"].append(session)
        return session

    monkeypatch.setattr(scoring.ort, "InferenceSession", factory)
    return state


# =============================================================================
# Heuristic
# =============================================================================

class TestHeuristicScorer:

    def test_robotic_timing_scores_high(self):
        """Constant flights: periodicity 0 but flat, entropy 0, no fatigue."""
        vector = robotic_vector()
        assert vector["flight_entropy"] == 0.0

        result = HeuristicScorer().score_sync(vector)
        assert result.risk >= 60
        assert result.method == InferenceMethod.HEURISTIC

    def test_human_timing_scores_low(self):
        assert HeuristicScorer().score_sync(human_vector()).risk < 30

    def test_capped_at_100(self):
        vector = FeatureVector.from_mapping({
            "periodicity_score": 90.0,
            "flight_kurtosis": 12.0,
            "impossible_fast_ratio": 0.5,
        })
        assert HeuristicScorer().score_sync(vector).risk == 100

    def test_async_score(self):
        result = asyncio.run(HeuristicScorer().score(robotic_vector()))
        assert isinstance(result, ScoreResult)


# =============================================================================
# Output Parsing
# =============================================================================

class TestParseBotProbability:

    def test_zipmap_sequence(self):
        outputs = [np.array([1], dtype=np.int64), [{0: 0.3, 1: 0.7}]]
        assert parse_bot_probability(outputs) == pytest.approx(0.7)

    def test_dense_two_class(self):
        assert parse_bot_probability([np.array([[0.9, 0.1]], dtype=np.float32)]) == pytest.approx(0.1)

    def test_single_probability(self):
        assert parse_bot_probability([np.array([0.42], dtype=np.float32)]) == pytest.approx(0.42)

    def test_labels_only_rejected(self):
        with pytest.raises(ValueError):
            parse_bot_probability([np.array([1], dtype=np.int64)])


# =============================================================================
# ONNX Scorer
# =============================================================================

class TestOnnxScorer:

    def test_missing_model_unavailable(self, tmp_path):
        scorer = OnnxScorer(str(tmp_path / "missing.onnx"), str(tmp_path / "missing.json"))
        assert asyncio.run(scorer.load()) is False
        assert asyncio.run(scorer.score(robotic_vector())) is None

    def test_scores_with_dense_output(self, tmp_path, fake_ort):
        scorer = OnnxScorer(*write_artifacts(tmp_path))
        result = asyncio.run(scorer.score(human_vector()))

        assert result == ScoreResult(risk=80, method=InferenceMethod.ONNX)
        feeds = fake_ort["sessions"][0].calls[0]
        assert feeds["float_input"].shape == (1, 18)
        assert feeds["float_input"].dtype == np.float32

    def test_probability_clamped(self, tmp_path, fake_ort):
        fake_ort["outputs"] = [np.array([1.7], dtype=np.float32)]
        scorer = OnnxScorer(*write_artifacts(tmp_path))
        assert asyncio.run(scorer.score(human_vector())).risk == 100

    def test_concurrent_loads_share_one_session(self, tmp_path, fake_ort):
        scorer = OnnxScorer(*write_artifacts(tmp_path))

        async def run():
            return await asyncio.gather(*(scorer.load() for _ in range(5)))

        assert asyncio.run(run()) == [True] * 5
        assert fake_ort["created"] == 1

    def test_sidecar_order_respected(self, tmp_path, fake_ort):
        """Inputs follow the sidecar's feature list, unknown names become 0."""
        features = ["session_wpm", "flight_mean", "not_a_feature"]
        scorer = OnnxScorer(*write_artifacts(tmp_path, features=features))
        asyncio.run(scorer.load())

        prepared = scorer.prepare_input(human_vector())
        assert prepared.tolist() == [[45.0, 180.0, 0.0]]

    def test_inference_failure_reported_as_none(self, tmp_path, fake_ort):
        fake_ort["outputs"] = [np.array([3], dtype=np.int64)]
        scorer = OnnxScorer(*write_artifacts(tmp_path))
        assert asyncio.run(scorer.score(human_vector())) is None

    def test_close_releases_session(self, tmp_path, fake_ort):
        scorer = OnnxScorer(*write_artifacts(tmp_path))
        asyncio.run(scorer.load())
        assert scorer.available

        scorer.close()
        assert not scorer.available

    def test_inconsistent_sidecar(self, tmp_path):
        path = tmp_path / "scaler.json"
        path.write_text(json.dumps({"features": ["a", "b"], "mean": [0.0], "std": [1.0, 1.0]}))
        with pytest.raises(ValueError):
            ScalerParams.from_file(str(path))


# =============================================================================
# Fallback
# =============================================================================

class RaisingScorer:
    async def load(self):
        raise RuntimeError("boom")

    async def score(self, vector):
        raise RuntimeError("boom")

    def close(self):
        pass


class TestFallbackScorer:

    def test_uses_primary_when_available(self, tmp_path, fake_ort):
        scorer = FallbackScorer(OnnxScorer(*write_artifacts(tmp_path)))
        assert asyncio.run(scorer.score(human_vector())).method == InferenceMethod.ONNX

    def test_falls_back_when_unavailable(self, heuristic_scorer):
        result = asyncio.run(heuristic_scorer.score(robotic_vector()))
        assert result.method == InferenceMethod.HEURISTIC
        assert result.risk >= 60

    def test_never_raises(self):
        scorer = FallbackScorer(RaisingScorer(), HeuristicScorer())
        assert asyncio.run(scorer.load()) is False
        assert asyncio.run(scorer.score(human_vector())).method == InferenceMethod.HEURISTIC
