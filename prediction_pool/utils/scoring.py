"""
Scoring rules for the prediction pool

This module holds the pure scoring logic: the per-match rule, the uniqueness
bonus, and the preseason award table. Loading predictions and applying the
results to aggregates is done by prediction_pool.services.reconciliation.
"""

from collections import namedtuple

EXACT_RESULT_POINTS = 3
CORRECT_DIRECTION_POINTS = 1
UNIQUE_BONUS_MULTIPLIER = 2

OUTCOME_HOME = "home"
OUTCOME_AWAY = "away"
OUTCOME_DRAW = "draw"

EXACT = "exact"
CORRECT_DIRECTION = "correct_direction"
MISS = "miss"

# The cup category is collected but carries no award
PRESEASON_AWARDS = {
    "champion": 10,
    "relegation1": 5,
    "relegation2": 5,
    "top_scorer": 7,
    "top_assists": 5,
}

MatchScore = namedtuple("MatchScore", ["points", "classification"])


class BetResult(
    namedtuple(
        "BetResult",
        ["points", "is_exact_result", "is_correct_direction", "is_unique_bet"],
    )
):
    """Scored outcome of one user's prediction on one match"""

    __slots__ = ()

    @property
    def correct_count(self):
        return 1 if self.is_correct_direction else 0

    @property
    def exact_count(self):
        return 1 if self.is_exact_result else 0

    def cached_fields(self):
        """Fields written back onto the stored bet"""
        return dict(self._asdict())


def get_outcome(home_score, away_score):
    """Classify a scoreline as a home win, away win or draw"""
    if home_score > away_score:
        return OUTCOME_HOME
    if home_score < away_score:
        return OUTCOME_AWAY
    return OUTCOME_DRAW


def calculate_match_score(predicted_home, predicted_away, actual_home, actual_away):
    """
    Score a single predicted scoreline against the actual result.

    Returns:
        MatchScore(3, "exact") for the exact scoreline
        MatchScore(1, "correct_direction") for the right home/draw/away outcome
        MatchScore(0, "miss") otherwise

    The actual score must be present; callers filter out unfinished matches.
    """
    if predicted_home == actual_home and predicted_away == actual_away:
        return MatchScore(EXACT_RESULT_POINTS, EXACT)

    if get_outcome(predicted_home, predicted_away) == get_outcome(actual_home, actual_away):
        return MatchScore(CORRECT_DIRECTION_POINTS, CORRECT_DIRECTION)

    return MatchScore(0, MISS)


def find_unique_predictor(actual_outcome, predicted_outcomes):
    """
    Return the only user whose predicted outcome matches the actual one.

    Args:
        actual_outcome: outcome of the actual result
        predicted_outcomes: mapping of user id -> predicted outcome

    Returns:
        The user id when exactly one user called the outcome, otherwise None
    """
    correct_users = [
        user_id
        for user_id, outcome in predicted_outcomes.items()
        if outcome == actual_outcome
    ]
    if len(correct_users) == 1:
        return correct_users[0]
    return None


def apply_uniqueness_bonus(score, user_id, unique_predictor):
    """Double a positive score when the user is the sole correct predictor"""
    if score.points > 0 and unique_predictor is not None and user_id == unique_predictor:
        return MatchScore(score.points * UNIQUE_BONUS_MULTIPLIER, score.classification)
    return score


def score_match_predictions(actual_home, actual_away, predictions):
    """
    Score every user's prediction for one match.

    Args:
        actual_home, actual_away: the final scoreline
        predictions: mapping of user id -> (predicted_home, predicted_away)

    Returns:
        dict of user id -> BetResult
    """
    actual_outcome = get_outcome(actual_home, actual_away)
    unique_predictor = find_unique_predictor(
        actual_outcome,
        {
            user_id: get_outcome(home, away)
            for user_id, (home, away) in predictions.items()
        },
    )

    results = {}
    for user_id, (home, away) in predictions.items():
        base = calculate_match_score(home, away, actual_home, actual_away)
        final = apply_uniqueness_bonus(base, user_id, unique_predictor)
        results[user_id] = BetResult(
            points=final.points,
            is_exact_result=final.classification == EXACT,
            is_correct_direction=final.classification == CORRECT_DIRECTION,
            is_unique_bet=final.points != base.points,
        )

    return results


def calculate_preseason_points(picks, outcomes):
    """
    Sum preseason awards for one user.

    A category scores only when both the pick and the finalized outcome are
    set and equal.
    """
    points = 0
    for category, award in PRESEASON_AWARDS.items():
        pick = (picks or {}).get(category)
        outcome = (outcomes or {}).get(category)
        if pick and outcome and pick == outcome:
            points += award
    return points
