"""Shared fixtures: an in-memory application and builders for pool data."""

from datetime import datetime, timezone

import pytest

from prediction_pool import create_app, db
from prediction_pool.models import Round, Season
from prediction_pool.services.prediction_store import PredictionStore

SEASON_ID = "2025-2026"


class PoolBuilder:
    """Creates rounds, matches, results and predictions for one season"""

    def __init__(self, season_id):
        self.season_id = season_id
        self.store = PredictionStore(season_id)

    def round(self, number, fixtures=2, start_time=None):
        """Round with `fixtures` pending matches; returns the list of match ids"""
        round_ = Round.create_round(self.season_id, number, start_time=start_time)
        for index in range(fixtures):
            round_.add_match(f"Home {number}-{index}", f"Away {number}-{index}")
        db.session.commit()
        return round_.match_ids

    def bet(self, user_id, round_number, predictions):
        """predictions: {match_id: (home, away)}"""
        return self.store.save_round_bets(
            user_id,
            round_number,
            [
                {"match_id": match_id, "home_score": home, "away_score": away}
                for match_id, (home, away) in predictions.items()
            ],
        )

    def results(self, round_number, scores):
        """scores: {match_id: (home, away)}"""
        round_ = self.store.require_round(round_number)
        for match in round_.matches:
            if match.id in scores:
                match.set_result(*scores[match.id])
        db.session.commit()

    def aggregate(self, user_id):
        player_bets = self.store.get_player_bets(user_id)
        db.session.refresh(player_bets)
        return {
            "total_points": player_bets.total_points,
            "preseason_points": player_bets.preseason_points,
            "round_points": player_bets.round_points_by_round,
            "correct_predictions": player_bets.correct_predictions,
            "exact_predictions": player_bets.exact_predictions,
            "correct_by_round": player_bets.correct_by_round,
            "exact_by_round": player_bets.exact_by_round,
        }


@pytest.fixture
def app():
    app = create_app("testing")
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def season(app):
    season = Season.create_season(
        SEASON_ID,
        season_start=datetime(2025, 8, 15, 18, 0, tzinfo=timezone.utc),
        season_end=datetime(2026, 5, 30, tzinfo=timezone.utc),
    )
    db.session.commit()
    return season


@pytest.fixture
def pool(season):
    return PoolBuilder(SEASON_ID)
