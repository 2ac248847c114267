"""
Identity Matcher Unit Tests

Diagonal Mahalanobis distance, score decay and digram blending against
an enrollment profile.
"""

import pytest

from core.models.identity import (
    LiveIdentityVector,
    compute_identity_match,
    digram_similarity,
    distance_to_score,
    mahalanobis_distance,
)
from core.schemas.inputs import DigramStats, KeystrokeProfile


def make_profile(**overrides) -> KeystrokeProfile:
    data = dict(
        flight_mean=150.0,
        flight_std=50.0,
        hold_mean=90.0,
        hold_std=20.0,
        entropy=2.8,
        digrams={
            "t→h": DigramStats(mean=110.0, std=15.0, count=12),
            "h→e": DigramStats(mean=95.0, std=12.0, count=10),
            "e→r": DigramStats(mean=130.0, std=20.0, count=8),
        },
        sample_size=400,
    )
    data.update(overrides)
    return KeystrokeProfile(**data)


def live_from(profile: KeystrokeProfile, **overrides) -> LiveIdentityVector:
    data = dict(
        flight_mean=profile.flight_mean,
        flight_std=profile.flight_std,
        hold_mean=profile.hold_mean,
        entropy=profile.entropy,
        digrams=dict(profile.digrams),
    )
    data.update(overrides)
    return LiveIdentityVector(**data)


class TestDistance:

    def test_identical_is_zero(self):
        profile = make_profile()
        assert mahalanobis_distance(live_from(profile), profile) == 0.0

    def test_flight_mean_scaled_by_profile_spread(self):
        """A deviation of one (flight_std * 0.6) contributes distance 1."""
        profile = make_profile()
        live = live_from(profile, flight_mean=profile.flight_mean + 30.0)
        assert mahalanobis_distance(live, profile) == pytest.approx(1.0)

    def test_zero_variance_treated_as_one(self):
        profile = make_profile(flight_std=0.0, hold_std=0.0)
        live = live_from(profile, flight_mean=profile.flight_mean + 3.0, hold_mean=profile.hold_mean + 4.0)
        assert mahalanobis_distance(live, profile) == pytest.approx(5.0)


class TestScore:

    def test_zero_distance_scores_100(self):
        assert distance_to_score(0.0) == 100

    def test_non_increasing(self):
        scores = [distance_to_score(d) for d in [0, 0.5, 1, 2, 5, 10, 50, 500]]
        assert scores == sorted(scores, reverse=True)
        assert scores[-1] == 0

    def test_exponential_decay(self):
        assert distance_to_score(5.0) == 55


class TestDigramSimilarity:

    def test_requires_three_shared(self):
        profile = make_profile()
        live = {"t→h": DigramStats(mean=110.0, std=10.0, count=5)}
        assert digram_similarity(live, profile.digrams) is None

    def test_identical_means(self):
        profile = make_profile()
        assert digram_similarity(profile.digrams, profile.digrams) == pytest.approx(100.0)

    def test_tolerance(self):
        """A 35% deviation on every shared digram scores 0."""
        profile = make_profile()
        live = {k: DigramStats(mean=v.mean * 1.35, std=v.std, count=v.count) for k, v in profile.digrams.items()}
        assert digram_similarity(live, profile.digrams) == pytest.approx(0.0, abs=1e-9)

    def test_zero_base_neutral(self):
        enrolled = {k: DigramStats(mean=0.0, std=0.0, count=5) for k in ("a→b", "b→c", "c→d")}
        live = {k: DigramStats(mean=100.0, std=0.0, count=5) for k in enrolled}
        assert digram_similarity(live, enrolled) == pytest.approx(50.0)


class TestComputeIdentityMatch:

    def test_baseline_against_itself(self):
        profile = make_profile()
        assert compute_identity_match(live_from(profile), profile) == 100

    def test_no_profile(self):
        profile = make_profile()
        assert compute_identity_match(live_from(profile), None) is None

    def test_blend_weights(self):
        """Distance 4 (score 62) with fully mismatched digrams blends to round(0.7 * 62)."""
        profile = make_profile(flight_std=0.0, hold_std=0.0)
        live = live_from(
            profile,
            flight_mean=profile.flight_mean + 4.0,
            digrams={k: DigramStats(mean=v.mean * 2, std=v.std, count=v.count) for k, v in profile.digrams.items()},
        )
        assert compute_identity_match(live, profile) == 43

    def test_distance_only_without_digrams(self):
        profile = make_profile()
        live = live_from(profile, flight_mean=profile.flight_mean + 30.0, digrams=None)
        assert compute_identity_match(live, profile) == distance_to_score(1.0)

    def test_different_typist_scores_low(self):
        profile = make_profile()
        live = live_from(profile, flight_mean=320.0, flight_std=140.0, hold_mean=160.0, entropy=1.2, digrams=None)
        assert compute_identity_match(live, profile) < 40

    def test_digram_average_rounded_before_blend(self):
        """Digram average 51.6 rounds to 52, so the blend is round(70 + 15.6) = 86."""
        enrolled = {k: DigramStats(mean=100.0, std=10.0, count=9) for k in ("a→b", "b→c", "c→d")}
        profile = make_profile(digrams=enrolled)
        live = live_from(profile, digrams={
            "a→b": DigramStats(mean=100.0, std=10.0, count=9),
            "b→c": DigramStats(mean=115.82, std=10.0, count=9),
            "c→d": DigramStats(mean=200.0, std=10.0, count=9),
        })

        assert digram_similarity(live.digrams, profile.digrams) == 52
        assert compute_identity_match(live, profile) == 86
