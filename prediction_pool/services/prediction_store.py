"""
Prediction store adapter

Read/write access to the season-scoped documents the scoring engine works on:
seasons, rounds, matches, per-user round predictions and per-user season
records. The engines only go through this class, so another backend can
replace the SQLAlchemy one without touching the scoring code.
"""

import logging

from flask import current_app
from sqlalchemy.orm.exc import StaleDataError

from prediction_pool import db
from prediction_pool.errors import (
    BettingClosedError,
    ConcurrentModificationError,
    InvalidPredictionError,
    RoundNotFoundError,
    SeasonNotFoundError,
)
from prediction_pool.models import Match, PlayerBets, Round, RoundBets, Season
from prediction_pool.models.season import PRESEASON_CATEGORIES
from prediction_pool.utils.season_clock import is_betting_open
from prediction_pool.utils.timezone_utils import get_utc_time

logger = logging.getLogger(__name__)


def _is_score(value):
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def run_in_transaction(unit, description, retries=None):
    """
    Run one unit of work and commit it atomically

    The unit re-reads everything it needs, so it can be replayed after an
    optimistic-concurrency conflict.

    Args:
        unit: Callable doing the reads and writes, returns the unit's result
        description: Human readable unit name for logs and errors
        retries: Attempts before giving up (default AGGREGATE_UPDATE_RETRIES)

    Raises:
        ConcurrentModificationError: every attempt hit a stale version
    """
    if retries is None:
        retries = current_app.config.get("AGGREGATE_UPDATE_RETRIES", 3)

    for attempt in range(1, retries + 1):
        try:
            result = unit()
            db.session.commit()
            return result
        except StaleDataError as e:
            db.session.rollback()
            logger.warning(
                f"Concurrent update on {description} (attempt {attempt}/{retries}): {e}"
            )
        except Exception:
            db.session.rollback()
            raise

    raise ConcurrentModificationError(
        f"Gave up on {description} after {retries} conflicting attempts",
        unit=description,
    )


class PredictionStore:
    """Season-scoped document access for the scoring engines"""

    def __init__(self, season_id):
        self.season_id = season_id

    # Seasons

    def get_season(self):
        return db.session.get(Season, self.season_id)

    def require_season(self):
        season = self.get_season()
        if not season:
            raise SeasonNotFoundError(self.season_id)
        return season

    # Rounds and matches

    def get_round(self, round_number):
        return Round.query.filter_by(
            season_id=self.season_id, number=round_number
        ).first()

    def require_round(self, round_number):
        round_ = self.get_round(round_number)
        if not round_:
            raise RoundNotFoundError(self.season_id, round_number)
        return round_

    def list_rounds(self):
        return (
            Round.query.filter_by(season_id=self.season_id)
            .order_by(Round.number)
            .all()
        )

    def get_matches(self, round_number):
        return self.require_round(round_number).matches

    def mark_points_calculated(self, matches):
        for match in matches:
            match.points_calculated = True

    def delete_round(self, round_):
        """Delete a round and, through the cascade, its matches"""
        db.session.delete(round_)

    # Round predictions

    def get_round_bets(self, user_id, round_number):
        return RoundBets.query.filter_by(
            season_id=self.season_id, user_id=user_id, round_number=round_number
        ).first()

    def get_round_bets_for_round(self, round_number):
        return (
            RoundBets.query.filter_by(
                season_id=self.season_id, round_number=round_number
            )
            .order_by(RoundBets.user_id)
            .all()
        )

    def get_user_round_bets(self, user_id):
        """All of a user's round prediction lists keyed by round number"""
        rows = RoundBets.query.filter_by(
            season_id=self.season_id, user_id=user_id
        ).all()
        return {row.round_number: row for row in rows}

    def has_round_bets(self, user_id, round_number):
        return self.get_round_bets(user_id, round_number) is not None

    def predictions_by_match(self, round_number):
        """match id -> {user id -> (home, away)} for every stored prediction"""
        predictions = {}
        for row in self.get_round_bets_for_round(round_number):
            for bet in row.bets or []:
                predictions.setdefault(bet["match_id"], {})[row.user_id] = (
                    bet["home_score"],
                    bet["away_score"],
                )
        return predictions

    def replace_bets(self, round_bets, bets):
        """Write a new bet list (a fresh list so the JSON change is flushed)"""
        round_bets.bets = [dict(bet) for bet in bets]

    def delete_round_bets(self, round_bets):
        db.session.delete(round_bets)

    def save_round_bets(self, user_id, round_number, bets, display_name=None, now=None):
        """
        Replace a user's predictions for a round

        Args:
            user_id: User identifier
            round_number: Round number
            bets: Iterable of {"match_id", "home_score", "away_score"}
            display_name: Optional display name stored on the season record
            now: Reference instant for the prediction lock (default: now)

        Raises:
            RoundNotFoundError
            BettingClosedError: the round has started or has already been scored
            InvalidPredictionError
        """
        round_ = self.require_round(round_number)
        now = now or get_utc_time()

        if not is_betting_open(round_.start_time, now):
            raise BettingClosedError(
                f"Predictions for round {round_number} closed at {round_.start_time.isoformat()}",
                round_number=round_number,
            )

        # Scored predictions are already in the aggregates
        scored_match_ids = [m.id for m in round_.matches if m.points_calculated]
        if scored_match_ids:
            raise BettingClosedError(
                f"Round {round_number} has already been scored",
                round_number=round_number,
                match_ids=scored_match_ids,
            )

        valid_match_ids = set(round_.match_ids)
        cleaned = []
        seen = set()
        for bet in bets:
            match_id = bet.get("match_id")
            home_score = bet.get("home_score")
            away_score = bet.get("away_score")

            if match_id not in valid_match_ids:
                raise InvalidPredictionError(
                    f"Match {match_id} is not part of round {round_number}",
                    match_id=match_id,
                )
            if match_id in seen:
                raise InvalidPredictionError(
                    f"Duplicate prediction for match {match_id}", match_id=match_id
                )
            if not _is_score(home_score) or not _is_score(away_score):
                raise InvalidPredictionError(
                    f"Predicted scores for match {match_id} must be non-negative integers",
                    match_id=match_id,
                )

            seen.add(match_id)
            cleaned.append(
                {"match_id": match_id, "home_score": home_score, "away_score": away_score}
            )

        round_bets = self.get_round_bets(user_id, round_number)
        if round_bets is not None and round_bets.scored_bets():
            raise BettingClosedError(
                f"Predictions of user {user_id} for round {round_number} have been scored",
                round_number=round_number,
            )
        if round_bets is None:
            round_bets = RoundBets(
                season_id=self.season_id, user_id=user_id, round_number=round_number
            )
            db.session.add(round_bets)

        self.replace_bets(round_bets, cleaned)
        round_bets.submitted_at = now

        self._touch_player_bets(user_id, display_name)
        db.session.commit()

        logger.info(
            f"Saved {len(cleaned)} predictions for user {user_id} "
            f"round {round_number} season {self.season_id}"
        )
        return round_bets

    # Season records

    def get_player_bets(self, user_id):
        return PlayerBets.query.filter_by(
            season_id=self.season_id, user_id=user_id
        ).first()

    def get_or_create_player_bets(self, user_id):
        player_bets = self.get_player_bets(user_id)
        if player_bets is None:
            player_bets = PlayerBets(
                season_id=self.season_id,
                user_id=user_id,
                preseason_bets={},
                round_points={},
                correct_predictions_map={},
                exact_predictions_map={},
                total_points=0,
                preseason_points=0,
                correct_predictions=0,
                exact_predictions=0,
            )
            db.session.add(player_bets)
        return player_bets

    def list_player_bets(self):
        return (
            PlayerBets.query.filter_by(season_id=self.season_id)
            .order_by(PlayerBets.user_id)
            .all()
        )

    def list_user_ids(self):
        """Every user with a season record or any round predictions"""
        user_ids = {row.user_id for row in self.list_player_bets()}
        user_ids.update(
            user_id
            for (user_id,) in db.session.query(RoundBets.user_id)
            .filter_by(season_id=self.season_id)
            .distinct()
        )
        return sorted(user_ids)

    def has_preseason_bets(self, user_id):
        player_bets = self.get_player_bets(user_id)
        return bool(player_bets and player_bets.preseason_bets)

    def save_preseason_bets(self, user_id, picks, display_name=None, now=None):
        """
        Store a user's preseason picks

        Raises:
            SeasonNotFoundError, BettingClosedError, InvalidPredictionError
        """
        season = self.require_season()
        now = now or get_utc_time()

        if not is_betting_open(season.season_start, now):
            raise BettingClosedError(
                f"Preseason predictions for {self.season_id} are closed",
                season_id=self.season_id,
            )

        unknown = sorted(set(picks) - set(PRESEASON_CATEGORIES))
        if unknown:
            raise InvalidPredictionError(
                f"Unknown preseason categories: {', '.join(unknown)}",
                categories=unknown,
            )

        player_bets = self._touch_player_bets(user_id, display_name)
        player_bets.preseason_bets = {
            category: value for category, value in picks.items() if value
        }
        db.session.commit()

        logger.info(f"Saved preseason picks for user {user_id} season {self.season_id}")
        return player_bets

    def _touch_player_bets(self, user_id, display_name):
        player_bets = self.get_or_create_player_bets(user_id)
        if display_name:
            player_bets.display_name = display_name
        return player_bets
