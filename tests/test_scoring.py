"""Tests for the match scoring rule, the uniqueness bonus and preseason awards."""

import itertools

import pytest

from prediction_pool.utils.scoring import (
    CORRECT_DIRECTION,
    EXACT,
    MISS,
    OUTCOME_AWAY,
    OUTCOME_DRAW,
    OUTCOME_HOME,
    apply_uniqueness_bonus,
    calculate_match_score,
    calculate_preseason_points,
    find_unique_predictor,
    get_outcome,
    score_match_predictions,
)


class TestMatchScoringRule:
    @pytest.mark.parametrize(
        "home, away, expected",
        [(2, 1, OUTCOME_HOME), (0, 3, OUTCOME_AWAY), (1, 1, OUTCOME_DRAW), (0, 0, OUTCOME_DRAW)],
    )
    def test_outcome(self, home, away, expected):
        assert get_outcome(home, away) == expected

    def test_exact_scoreline(self):
        assert calculate_match_score(2, 1, 2, 1) == (3, EXACT)

    def test_correct_direction(self):
        assert calculate_match_score(1, 0, 2, 1) == (1, CORRECT_DIRECTION)
        assert calculate_match_score(0, 0, 2, 2) == (1, CORRECT_DIRECTION)

    def test_miss(self):
        assert calculate_match_score(0, 1, 2, 1) == (0, MISS)
        assert calculate_match_score(1, 1, 2, 1) == (0, MISS)

    def test_points_are_always_0_1_or_3(self):
        scores = range(4)
        for ph, pa, ah, aa in itertools.product(scores, repeat=4):
            points, classification = calculate_match_score(ph, pa, ah, aa)
            assert points in (0, 1, 3)
            if (ph, pa) == (ah, aa):
                assert (points, classification) == (3, EXACT)


class TestUniquenessBonus:
    def test_single_correct_predictor(self):
        outcomes = {"a": OUTCOME_HOME, "b": OUTCOME_AWAY, "c": OUTCOME_AWAY}
        assert find_unique_predictor(OUTCOME_HOME, outcomes) == "a"

    def test_no_unique_predictor_when_shared(self):
        outcomes = {"a": OUTCOME_HOME, "b": OUTCOME_HOME, "c": OUTCOME_AWAY}
        assert find_unique_predictor(OUTCOME_HOME, outcomes) is None

    def test_nobody_correct(self):
        outcomes = {"a": OUTCOME_AWAY, "b": OUTCOME_DRAW}
        assert find_unique_predictor(OUTCOME_HOME, outcomes) is None

    def test_bonus_doubles_only_positive_scores(self):
        assert apply_uniqueness_bonus((3, EXACT), "a", "a") == (6, EXACT)
        assert apply_uniqueness_bonus((1, CORRECT_DIRECTION), "a", "a") == (2, CORRECT_DIRECTION)
        assert apply_uniqueness_bonus((0, MISS), "a", "a") == (0, MISS)
        assert apply_uniqueness_bonus((3, EXACT), "b", "a") == (3, EXACT)

    def test_two_home_predictors_are_not_doubled(self):
        results = score_match_predictions(
            2, 1, {"a": (2, 1), "b": (1, 0), "c": (0, 2)}
        )
        assert results["a"].points == 3
        assert results["b"].points == 1
        assert results["c"].points == 0
        assert not any(result.is_unique_bet for result in results.values())

    def test_sole_home_predictor_is_doubled(self):
        results = score_match_predictions(
            2, 1, {"a": (1, 0), "b": (0, 1), "c": (1, 3)}
        )
        assert results["a"].points == 2
        assert results["a"].is_correct_direction
        assert results["a"].is_unique_bet
        assert results["b"].points == 0
        assert results["c"].points == 0

    def test_sole_exact_and_direction_predictor_gets_six(self):
        results = score_match_predictions(2, 1, {"a": (2, 1), "b": (1, 1), "c": (0, 0)})
        assert results["a"].points == 6
        assert results["a"].is_exact_result
        assert not results["a"].is_correct_direction
        assert results["a"].is_unique_bet

    def test_single_predictor_on_a_match(self):
        results = score_match_predictions(0, 0, {"a": (1, 1)})
        assert results["a"].points == 2

    def test_counts(self):
        results = score_match_predictions(
            1, 0, {"a": (1, 0), "b": (2, 0), "c": (0, 0)}
        )
        assert (results["a"].correct_count, results["a"].exact_count) == (0, 1)
        assert (results["b"].correct_count, results["b"].exact_count) == (1, 0)
        assert (results["c"].correct_count, results["c"].exact_count) == (0, 0)

    def test_cached_fields(self):
        result = score_match_predictions(1, 0, {"a": (1, 0)})["a"]
        assert result.cached_fields() == {
            "points": 6,
            "is_exact_result": True,
            "is_correct_direction": False,
            "is_unique_bet": True,
        }


class TestPreseasonAwards:
    def test_all_categories(self):
        picks = {
            "champion": "Arsenal",
            "cup": "Chelsea",
            "relegation1": "Luton",
            "relegation2": "Burnley",
            "top_scorer": "Haaland",
            "top_assists": "Saka",
        }
        assert calculate_preseason_points(picks, dict(picks)) == 32

    def test_cup_carries_no_award(self):
        assert calculate_preseason_points({"cup": "Chelsea"}, {"cup": "Chelsea"}) == 0

    def test_unset_outcome_scores_nothing(self):
        picks = {"champion": "Arsenal", "top_scorer": "Haaland"}
        outcomes = {"champion": None, "top_scorer": "Haaland"}
        assert calculate_preseason_points(picks, outcomes) == 7

    def test_unset_pick_scores_nothing(self):
        assert calculate_preseason_points({}, {"champion": "Arsenal"}) == 0
        assert calculate_preseason_points(None, {"champion": None}) == 0

    def test_wrong_pick(self):
        assert calculate_preseason_points({"champion": "Spurs"}, {"champion": "Arsenal"}) == 0
