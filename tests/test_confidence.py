"""Tests for watcher-level zombie confidence."""

import pytest

from doomsday_watcher.core.confidence import (
    aggregate_confidence,
    confidence_from_scores,
    score_from_risk_descriptor,
)


class TestPrimaryPath:
    def test_average_without_zero_callers(self):
        assert aggregate_confidence(62.0, 0, 4) == 62

    def test_full_zero_caller_boost(self):
        assert aggregate_confidence(62.0, 4, 4) == 72

    def test_partial_boost_rounds(self):
        # 50 + 10 * 1/4 = 52.5
        assert aggregate_confidence(50.0, 1, 4) == 53

    def test_clamped_to_100(self):
        assert aggregate_confidence(97.0, 5, 5) == 100

    def test_clamped_to_zero(self):
        assert aggregate_confidence(-20.0, 0, 3) == 0

    def test_no_candidates_means_no_boost(self):
        assert aggregate_confidence(40.0, 0, 0) == 40

    def test_scores_take_precedence_over_descriptor(self):
        assert aggregate_confidence(20.0, 0, 2, risk_descriptor="high") == 20

    @pytest.mark.parametrize("average", [0.0, 33.3, 50.0, 91.0])
    def test_monotonic_in_zero_caller_ratio(self, average):
        total = 10
        results = [aggregate_confidence(average, zero, total) for zero in range(total + 1)]
        assert results == sorted(results)
        assert all(0 <= r <= 100 for r in results)


class TestFallbackPath:
    @pytest.mark.parametrize(
        "descriptor,expected",
        [
            ("High risk of dead code", 75),
            ("CRITICAL", 75),
            ("medium", 45),
            ("Moderate likelihood", 45),
            ("low", 15),
            ("minimal usage", 15),
            ("unclear", 0),
            ("", 0),
            (None, 0),
        ],
    )
    def test_text_buckets(self, descriptor, expected):
        assert aggregate_confidence(None, 0, 0, descriptor) == expected

    def test_high_wins_over_low(self):
        assert score_from_risk_descriptor("low traffic but high risk") == 75

    def test_json_descriptor_is_serialised(self):
        assert score_from_risk_descriptor({"level": "Moderate", "notes": []}) == 45

    def test_deterministic(self):
        descriptor = {"risk": "low"}
        assert score_from_risk_descriptor(descriptor) == score_from_risk_descriptor(descriptor)


class TestConfidenceFromScores:
    def test_ignores_unscored_candidates_in_average(self):
        # avg(80, 60) = 70, one of three has zero callers -> +3.33
        assert confidence_from_scores([80, None, 60], [0, 2, 5]) == 73

    def test_falls_back_when_nothing_scored(self):
        assert confidence_from_scores([None, None], [0, 0], "critical") == 75
