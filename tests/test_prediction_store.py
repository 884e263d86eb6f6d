"""Tests for prediction submission and the transactional unit-of-work helper."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text
from sqlalchemy.orm.exc import StaleDataError

from prediction_pool import db
from prediction_pool.errors import (
    BettingClosedError,
    ConcurrentModificationError,
    InvalidPredictionError,
    RoundNotFoundError,
)
from prediction_pool.models import Match
from prediction_pool.services.prediction_store import PredictionStore, run_in_transaction
from prediction_pool.services.reconciliation import RoundReconciler
from tests.conftest import SEASON_ID

KICKOFF = datetime(2025, 9, 13, 14, 0, tzinfo=timezone.utc)


class TestSaveRoundBets:
    def test_creates_and_replaces_predictions(self, pool):
        m1, m2 = pool.round(1)
        pool.bet("alice", 1, {m1: (1, 0), m2: (2, 2)})
        pool.bet("alice", 1, {m1: (3, 0)})

        round_bets = pool.store.get_round_bets("alice", 1)
        assert round_bets.bets == [{"match_id": m1, "home_score": 3, "away_score": 0}]
        assert pool.store.has_round_bets("alice", 1)
        assert not pool.store.has_round_bets("bob", 1)

    def test_creates_season_record(self, pool):
        (m1,) = pool.round(1, fixtures=1)
        pool.store.save_round_bets(
            "alice", 1, [{"match_id": m1, "home_score": 1, "away_score": 1}], display_name="Alice"
        )
        player_bets = pool.store.get_player_bets("alice")
        assert player_bets.display_name == "Alice"
        assert player_bets.total_points == 0
        assert player_bets.last_scored_at is None

    def test_closed_after_round_start(self, pool):
        (m1,) = pool.round(1, fixtures=1, start_time=KICKOFF)
        bet = [{"match_id": m1, "home_score": 1, "away_score": 0}]

        pool.store.save_round_bets("alice", 1, bet, now=KICKOFF - timedelta(hours=1))
        with pytest.raises(BettingClosedError):
            pool.store.save_round_bets("alice", 1, bet, now=KICKOFF + timedelta(minutes=1))

    def test_closed_once_scored(self, pool):
        (m1,) = pool.round(1, fixtures=1)
        pool.bet("alice", 1, {m1: (1, 0)})
        pool.results(1, {m1: (1, 0)})
        RoundReconciler(SEASON_ID).score_round(1)

        with pytest.raises(BettingClosedError):
            pool.bet("bob", 1, {m1: (0, 0)})

        # With the match flag reset, only users without scored bets may submit
        db.session.get(Match, m1).points_calculated = False
        db.session.commit()
        pool.bet("bob", 1, {m1: (0, 0)})
        with pytest.raises(BettingClosedError):
            pool.bet("alice", 1, {m1: (2, 0)})
        assert pool.store.get_round_bets("alice", 1).bets_by_match()[m1]["points"] == 6

    @pytest.mark.parametrize(
        "bet",
        [
            {"home_score": -1, "away_score": 0},
            {"home_score": 1, "away_score": None},
            {"home_score": "2", "away_score": 0},
            {"home_score": True, "away_score": 0},
        ],
    )
    def test_rejects_bad_scores(self, pool, bet):
        (m1,) = pool.round(1, fixtures=1)
        with pytest.raises(InvalidPredictionError):
            pool.store.save_round_bets("alice", 1, [dict(bet, match_id=m1)])

    def test_rejects_foreign_and_duplicate_matches(self, pool):
        (m1,) = pool.round(1, fixtures=1)
        (m2,) = pool.round(2, fixtures=1)
        with pytest.raises(InvalidPredictionError):
            pool.bet("alice", 1, {m2: (1, 0)})
        with pytest.raises(InvalidPredictionError):
            pool.store.save_round_bets(
                "alice",
                1,
                [
                    {"match_id": m1, "home_score": 1, "away_score": 0},
                    {"match_id": m1, "home_score": 2, "away_score": 0},
                ],
            )

    def test_unknown_round(self, pool):
        with pytest.raises(RoundNotFoundError):
            pool.bet("alice", 5, {})


class TestSavePreseasonBets:
    def test_saves_picks_before_season_start(self, pool):
        pool.store.save_preseason_bets(
            "alice",
            {"champion": "Arsenal", "cup": "", "top_scorer": "Haaland"},
            now=datetime(2025, 8, 1, tzinfo=timezone.utc),
        )
        assert pool.store.get_player_bets("alice").preseason_bets == {
            "champion": "Arsenal",
            "top_scorer": "Haaland",
        }
        assert pool.store.has_preseason_bets("alice")
        assert not pool.store.has_preseason_bets("bob")

    def test_closed_after_season_start(self, pool):
        with pytest.raises(BettingClosedError):
            pool.store.save_preseason_bets(
                "alice", {"champion": "Arsenal"}, now=datetime(2025, 9, 1, tzinfo=timezone.utc)
            )

    def test_unknown_category(self, pool):
        with pytest.raises(InvalidPredictionError):
            pool.store.save_preseason_bets(
                "alice", {"golden_boot": "Haaland"}, now=datetime(2025, 8, 1, tzinfo=timezone.utc)
            )


class TestRunInTransaction:
    def test_commits_result(self, pool):
        pool.round(1, fixtures=0)
        pool.bet("alice", 1, {})

        def unit():
            pool.store.get_player_bets("alice").display_name = "Alice"
            return "done"

        assert run_in_transaction(unit, "rename") == "done"
        db.session.expire_all()
        assert pool.store.get_player_bets("alice").display_name == "Alice"

    def test_retries_after_concurrent_update(self, pool):
        pool.round(1, fixtures=0)
        pool.bet("alice", 1, {})
        attempts = []

        def unit():
            player_bets = pool.store.get_player_bets("alice")
            if not attempts:
                # Another writer bumps the row's version after our read
                db.session.execute(
                    text("UPDATE player_bets SET version = version + 1 WHERE user_id = 'alice'")
                )
            attempts.append(player_bets.version)
            player_bets.total_points = 0
            player_bets.display_name = f"attempt {len(attempts)}"

        run_in_transaction(unit, "update alice")

        assert len(attempts) == 2
        db.session.expire_all()
        assert pool.store.get_player_bets("alice").display_name == "attempt 2"

    def test_gives_up_after_retries(self, app):
        app.config["AGGREGATE_UPDATE_RETRIES"] = 2
        calls = []

        def unit():
            calls.append(1)
            raise StaleDataError("version mismatch")

        with pytest.raises(ConcurrentModificationError):
            run_in_transaction(unit, "always stale")
        assert len(calls) == 2

    def test_other_errors_propagate_unchanged(self, pool):
        def unit():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            run_in_transaction(unit, "failing", retries=3)


def test_reads_are_season_scoped(pool):
    pool.round(1)
    assert pool.store.get_round(1) is not None
    assert PredictionStore("1999-2000").get_round(1) is None
    assert pool.store.season_id == SEASON_ID
