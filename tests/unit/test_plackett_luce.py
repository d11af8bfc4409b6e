"""Tests for Plackett-Luce podium simulation and odds conversion."""

import numpy as np
import pytest

from podium.odds.plackett_luce import (
    MAX_ODD,
    MIN_ODD,
    podium_probabilities,
    probability_to_odd,
    simulate_podium_counts,
    strength,
    win_probabilities,
)
from podium.rating.glicko import Rating


@pytest.fixture
def small_field() -> dict[str, Rating]:
    return {
        "a": Rating(1600, 80),
        "b": Rating(1550, 80),
        "c": Rating(1500, 80),
        "d": Rating(1450, 80),
    }


class TestStrength:
    def test_higher_rating_is_stronger(self):
        assert strength(Rating(1700, 80)) > strength(Rating(1500, 80))

    @pytest.mark.parametrize("rating", [1700, 1300])
    def test_lower_deviation_is_stronger(self, rating):
        assert strength(Rating(rating, 50)) > strength(Rating(rating, 300))

    def test_settled_competitor_beats_uncertain_one_below_mean(self):
        assert strength(Rating(1400, 30)) > strength(Rating(1390, 350))

    def test_continuous_at_mean(self):
        assert strength(Rating(1500, 30)) == strength(Rating(1500, 350)) == 1.0

    def test_win_probabilities_sum_to_one(self):
        probs = win_probabilities([1.0, 2.0, 3.0, 4.0])
        assert probs.sum() == pytest.approx(1.0)
        assert probs[3] == pytest.approx(0.4)


class TestProbabilityToOdd:
    def test_fair_odd(self):
        assert probability_to_odd(0.5) == 2.0
        assert probability_to_odd(0.25) == 4.0

    def test_zero_probability_gets_ceiling(self):
        assert probability_to_odd(0.0) == MAX_ODD

    def test_clamped(self):
        assert probability_to_odd(0.001) == MAX_ODD
        assert probability_to_odd(0.99) == MIN_ODD


class TestSimulation:
    def test_each_place_filled_once_per_trial(self):
        counts = simulate_podium_counts([1.0, 2.0, 3.0, 0.5, 4.0], trials=12_000, seed=1)
        assert counts.shape == (5, 3)
        assert list(counts.sum(axis=0)) == [12_000, 12_000, 12_000]

    def test_nobody_places_twice_in_a_trial(self):
        counts = simulate_podium_counts([1.0, 1.0, 1.0], trials=6_000, seed=2)
        # Three competitors, three places: everyone is on every podium
        assert list(counts.sum(axis=1)) == [6_000, 6_000, 6_000]

    def test_two_competitors_leave_third_empty(self):
        counts = simulate_podium_counts([1.0, 3.0], trials=5_000, seed=3)
        assert counts[:, 2].sum() == 0
        assert counts[:, 0].sum() == 5_000

    def test_first_place_matches_softmax(self):
        alphas = [1.0, 2.0, 3.0, 4.0]
        counts = simulate_podium_counts(alphas, trials=50_000, seed=4)
        observed = counts[:, 0] / 50_000
        np.testing.assert_allclose(observed, win_probabilities(alphas), atol=0.01)

    def test_seeded_run_is_repeatable_across_workers(self):
        alphas = [1.0, 2.5, 0.7, 3.1, 1.9, 0.2]
        single = simulate_podium_counts(alphas, trials=23_000, seed=99, workers=1)
        threaded = simulate_podium_counts(alphas, trials=23_000, seed=99, workers=4)
        again = simulate_podium_counts(alphas, trials=23_000, seed=99, workers=3)
        assert np.array_equal(single, threaded)
        assert np.array_equal(single, again)

    def test_empty_field(self):
        counts = simulate_podium_counts([], trials=1_000, seed=5)
        assert counts.shape == (0, 3)


class TestPodiumProbabilities:
    def test_zero_competitors_gives_empty_result(self):
        assert podium_probabilities({}, trials=1_000, seed=1) == []

    def test_inverse_odds_sum_to_one(self, small_field):
        results = podium_probabilities(small_field, trials=50_000, seed=7, workers=2)
        for rank in (1, 2, 3):
            total = sum(1 / probability_to_odd(p.for_position(rank)) for p in results)
            assert total == pytest.approx(1.0, abs=0.02)

    def test_stronger_competitor_has_shorter_odds(self, small_field):
        small_field["a"] = Rating(1650, 60)
        small_field["d"] = Rating(1400, 200)
        results = {p.competitor_id: p for p in podium_probabilities(small_field, trials=20_000, seed=8)}
        assert probability_to_odd(results["a"].first) <= probability_to_odd(results["b"].first)
        assert probability_to_odd(results["b"].first) <= probability_to_odd(results["d"].first)

    def test_monotone_below_mean(self):
        field = {
            "settled": Rating(1400, 30),
            "uncertain": Rating(1390, 350),
            "c": Rating(1500, 80),
            "d": Rating(1450, 80),
        }
        results = {p.competitor_id: p for p in podium_probabilities(field, trials=20_000, seed=12)}
        assert probability_to_odd(results["settled"].first) <= probability_to_odd(results["uncertain"].first)

    def test_single_competitor(self):
        [result] = podium_probabilities({"solo": Rating(1500, 100)}, trials=2_000, seed=1)
        assert result.first == 1.0
        assert result.second == 0.0
        assert probability_to_odd(result.first) == MIN_ODD
        assert probability_to_odd(result.second) == MAX_ODD

    def test_result_independent_of_dict_order(self, small_field):
        reordered = dict(reversed(list(small_field.items())))
        first = podium_probabilities(small_field, trials=10_000, seed=11)
        second = podium_probabilities(reordered, trials=10_000, seed=11)
        assert first == second
