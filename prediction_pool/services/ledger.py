"""
Aggregate ledger

Maintains each player's running totals for a season. Every write is a
read-current/merge-write on the PlayerBets row; the row's version column
turns a concurrent write into StaleDataError, which run_in_transaction
retries from fresh reads.

Methods here only stage changes on the session. Committing is the caller's
unit of work.
"""

import logging
from collections import namedtuple

from prediction_pool.errors import AggregateInvariantError
from prediction_pool.models import PlayerBets
from prediction_pool.services.prediction_store import PredictionStore
from prediction_pool.utils.cache_utils import cached_query
from prediction_pool.utils.timezone_utils import get_utc_time

logger = logging.getLogger(__name__)


class AggregateDelta(namedtuple("AggregateDelta", ["round_number", "points", "correct", "exact"])):
    """Signed change to one round's contribution to a player's aggregate"""

    __slots__ = ()

    def __neg__(self):
        return AggregateDelta(self.round_number, -self.points, -self.correct, -self.exact)

    def __add__(self, other):
        if other.round_number != self.round_number:
            raise ValueError("Cannot combine deltas for different rounds")
        return AggregateDelta(
            self.round_number,
            self.points + other.points,
            self.correct + other.correct,
            self.exact + other.exact,
        )

    @property
    def is_zero(self):
        return not (self.points or self.correct or self.exact)


def _bump(mapping, round_number, amount):
    """Return a new JSON map with amount added to the round's entry"""
    updated = dict(mapping or {})
    key = str(round_number)
    updated[key] = updated.get(key, 0) + amount
    return updated


def _without(mapping, round_number):
    updated = dict(mapping or {})
    updated.pop(str(round_number), None)
    return updated


def check_conservation(player_bets):
    """Raise AggregateInvariantError unless total == preseason + sum(rounds)"""
    gap = player_bets.conservation_gap()
    if gap:
        raise AggregateInvariantError(
            f"Aggregate for {player_bets.user_id} is off by {gap} points",
            season_id=player_bets.season_id,
            user_id=player_bets.user_id,
            gap=gap,
        )


class AggregateLedger:
    """Season-scoped access to player aggregates"""

    def __init__(self, season_id, store=None):
        self.season_id = season_id
        self.store = store or PredictionStore(season_id)

    def apply_delta(self, user_id, delta, touch_round=True):
        """
        Merge a signed round delta into the player's aggregate

        Args:
            user_id: User identifier
            delta: AggregateDelta for one round
            touch_round: Create the round entry even when the delta is zero,
                so a round scored to zero is distinguishable from an unscored one

        Returns:
            PlayerBets: The updated (not yet committed) record
        """
        player_bets = self.store.get_or_create_player_bets(user_id)

        has_entry = str(delta.round_number) in (player_bets.round_points or {})
        if delta.is_zero and (has_entry or not touch_round):
            return player_bets

        player_bets.total_points = (player_bets.total_points or 0) + delta.points
        player_bets.correct_predictions = (player_bets.correct_predictions or 0) + delta.correct
        player_bets.exact_predictions = (player_bets.exact_predictions or 0) + delta.exact
        player_bets.round_points = _bump(
            player_bets.round_points, delta.round_number, delta.points
        )
        player_bets.correct_predictions_map = _bump(
            player_bets.correct_predictions_map, delta.round_number, delta.correct
        )
        player_bets.exact_predictions_map = _bump(
            player_bets.exact_predictions_map, delta.round_number, delta.exact
        )
        player_bets.last_scored_at = get_utc_time()

        check_conservation(player_bets)
        return player_bets

    def remove_round(self, user_id, round_number, points, correct, exact):
        """
        Subtract a round's recorded contribution and drop its entries

        Returns:
            PlayerBets or None when the user has no aggregate
        """
        player_bets = self.store.get_player_bets(user_id)
        if player_bets is None:
            return None

        stored_round_points = player_bets.round_points_by_round.get(round_number)
        if stored_round_points is not None and stored_round_points != points:
            logger.warning(
                f"Round {round_number} entry for {user_id} is {stored_round_points} "
                f"but recorded bet points sum to {points}"
            )

        player_bets.total_points = (player_bets.total_points or 0) - points
        player_bets.correct_predictions = (player_bets.correct_predictions or 0) - correct
        player_bets.exact_predictions = (player_bets.exact_predictions or 0) - exact
        player_bets.round_points = _without(player_bets.round_points, round_number)
        player_bets.correct_predictions_map = _without(
            player_bets.correct_predictions_map, round_number
        )
        player_bets.exact_predictions_map = _without(
            player_bets.exact_predictions_map, round_number
        )
        if player_bets.round_points or player_bets.preseason_points:
            player_bets.last_scored_at = get_utc_time()
        else:
            # Nothing scored remains: reads as absent again
            player_bets.last_scored_at = None

        check_conservation(player_bets)
        return player_bets

    def set_preseason_points(self, user_id, value):
        """
        Set the preseason contribution, moving the total by the difference

        Repeated calls with the same value leave the aggregate unchanged.
        """
        player_bets = self.store.get_or_create_player_bets(user_id)
        previous = player_bets.preseason_points or 0

        player_bets.preseason_points = value
        player_bets.total_points = (player_bets.total_points or 0) + (value - previous)
        player_bets.last_scored_at = get_utc_time()

        check_conservation(player_bets)
        return player_bets

    def overwrite(self, user_id, preseason_points, round_points, correct_map, exact_map):
        """
        Replace a player's aggregate with freshly computed values

        Args:
            preseason_points: int
            round_points, correct_map, exact_map: dicts keyed by round number
        """
        player_bets = self.store.get_or_create_player_bets(user_id)

        player_bets.preseason_points = preseason_points
        player_bets.round_points = {str(k): v for k, v in round_points.items()}
        player_bets.correct_predictions_map = {str(k): v for k, v in correct_map.items()}
        player_bets.exact_predictions_map = {str(k): v for k, v in exact_map.items()}
        player_bets.correct_predictions = sum(correct_map.values())
        player_bets.exact_predictions = sum(exact_map.values())
        player_bets.total_points = preseason_points + sum(round_points.values())
        player_bets.last_scored_at = get_utc_time()

        check_conservation(player_bets)
        return player_bets

    def get_aggregate(self, user_id):
        """The player's aggregate, or None when the player was never scored"""
        player_bets = self.store.get_player_bets(user_id)
        if player_bets is None or player_bets.last_scored_at is None:
            return None
        return player_bets

    def get_leaderboard(self, limit=None):
        """
        Ranked aggregates for the season

        Ordered by total points descending, then user id ascending.

        Args:
            limit: Maximum entries (None or 0 for all)

        Returns:
            list of dicts with a 1-based rank
        """
        return _leaderboard(self.season_id, limit or 0)


@cached_query("PlayerBets", timeout=300)
def _leaderboard(season_id, limit):
    query = PlayerBets.query.filter_by(season_id=season_id).order_by(
        PlayerBets.total_points.desc(), PlayerBets.user_id.asc()
    )
    if limit:
        query = query.limit(limit)

    entries = []
    for rank, player_bets in enumerate(query.all(), start=1):
        entry = player_bets.to_dict()
        entry["rank"] = rank
        entries.append(entry)
    return entries
