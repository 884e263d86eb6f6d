"""Tests for preseason scoring."""

from datetime import datetime, timezone

import pytest

from prediction_pool import db
from prediction_pool.errors import ConcurrentModificationError, SeasonNotFoundError
from prediction_pool.services.locks import reconciliation_locks
from prediction_pool.services.reconciliation import PreseasonReconciler, RoundReconciler
from tests.conftest import SEASON_ID

BEFORE_SEASON = datetime(2025, 8, 1, tzinfo=timezone.utc)


@pytest.fixture
def picks(pool):
    pool.store.save_preseason_bets(
        "alice",
        {
            "champion": "Arsenal",
            "cup": "Chelsea",
            "relegation1": "Luton",
            "relegation2": "Burnley",
            "top_scorer": "Haaland",
            "top_assists": "Saka",
        },
        now=BEFORE_SEASON,
    )
    pool.store.save_preseason_bets(
        "bob", {"champion": "Liverpool", "relegation2": "Luton"}, now=BEFORE_SEASON
    )
    season = pool.store.require_season()
    season.set_preseason_outcomes(
        champion="Arsenal",
        cup="Chelsea",
        relegation1="Luton",
        relegation2="Sheffield United",
        top_scorer="Haaland",
        top_assists="Saka",
    )
    db.session.commit()


def test_awards(pool, picks):
    report = PreseasonReconciler(SEASON_ID).score_preseason()

    assert report.points == {"alice": 27, "bob": 0}
    alice = pool.aggregate("alice")
    assert alice["preseason_points"] == 27
    assert alice["total_points"] == 27


def test_rescoring_does_not_double_count(pool, picks):
    reconciler = PreseasonReconciler(SEASON_ID)
    reconciler.score_preseason()
    reconciler.score_preseason()
    assert pool.aggregate("alice")["total_points"] == 27


def test_corrected_outcome_replaces_previous_award(pool, picks):
    reconciler = PreseasonReconciler(SEASON_ID)
    reconciler.score_preseason()

    pool.store.require_season().set_preseason_outcomes(champion="Liverpool")
    db.session.commit()
    reconciler.score_preseason()

    assert pool.aggregate("alice")["total_points"] == 17
    assert pool.aggregate("bob")["total_points"] == 10


def test_keeps_round_points(pool, picks):
    (m1,) = pool.round(1, fixtures=1)
    pool.bet("alice", 1, {m1: (1, 0)})
    pool.results(1, {m1: (1, 0)})

    RoundReconciler(SEASON_ID).score_round(1)
    PreseasonReconciler(SEASON_ID).score_preseason()

    alice = pool.aggregate("alice")
    assert alice["round_points"] == {1: 6}
    assert alice["total_points"] == 33


def test_without_outcomes(pool):
    pool.store.save_preseason_bets("alice", {"champion": "Arsenal"}, now=BEFORE_SEASON)
    report = PreseasonReconciler(SEASON_ID).score_preseason()
    assert not report.has_outcomes
    assert report.points == {"alice": 0}


def test_unknown_season(app):
    with pytest.raises(SeasonNotFoundError):
        PreseasonReconciler("1990-1991").score_preseason()


def test_preseason_lock(pool, picks):
    with reconciliation_locks.hold(SEASON_ID, "preseason"):
        with pytest.raises(ConcurrentModificationError):
            PreseasonReconciler(SEASON_ID).score_preseason()
