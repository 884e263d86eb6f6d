"""Tests for automated reconciliation, the reconciliation locks and the management CLI."""

import pytest
import redis
from click.testing import CliRunner

from prediction_pool import db
from prediction_pool.errors import ConcurrentModificationError
from prediction_pool.models import Match
from prediction_pool.services.locks import ReconciliationLockManager
from prediction_pool.services.scheduler_service import (
    auto_score_rounds,
    round_ready_for_scoring,
)
from tests.conftest import SEASON_ID


class TestAutoScore:
    def test_scores_only_complete_unscored_rounds(self, pool):
        m1, m2 = pool.round(1)
        m3, m4 = pool.round(2)
        pool.bet("alice", 1, {m1: (1, 0), m2: (0, 0)})
        pool.bet("alice", 2, {m3: (1, 0), m4: (0, 0)})
        pool.results(1, {m1: (1, 0), m2: (0, 0)})
        pool.results(2, {m3: (1, 0)})

        assert auto_score_rounds(SEASON_ID) == [1]
        assert pool.aggregate("alice")["round_points"] == {1: 12}

        # Already scored: nothing left to do
        assert auto_score_rounds(SEASON_ID) == []

    def test_cancelled_matches_do_not_block(self, pool):
        m1, m2 = pool.round(1)
        pool.results(1, {m1: (1, 0)})
        db.session.get(Match, m2).cancel()
        db.session.commit()

        assert round_ready_for_scoring(pool.store.require_round(1))

    def test_round_without_matches_is_not_ready(self, pool):
        pool.round(1, fixtures=0)
        assert not round_ready_for_scoring(pool.store.require_round(1))

    def test_unknown_season(self, app):
        assert auto_score_rounds("1990-1991") == []


class TestLocks:
    def test_memory_lock_is_exclusive(self, app):
        manager = ReconciliationLockManager()
        with manager.hold(SEASON_ID, 3):
            with pytest.raises(ConcurrentModificationError):
                with manager.hold(SEASON_ID, 3):
                    pass
            # Other scopes are independent
            with manager.hold(SEASON_ID, 4):
                pass

        with manager.hold(SEASON_ID, 3):
            pass

    def test_falls_back_when_redis_is_unreachable(self, app, monkeypatch):
        app.config["RECONCILE_LOCK_BACKEND"] = "redis"
        manager = ReconciliationLockManager()

        class UnreachableRedis:
            def lock(self, *args, **kwargs):
                raise redis.exceptions.ConnectionError("connection refused")

        monkeypatch.setattr(manager, "_redis_client", lambda url: UnreachableRedis())

        with manager.hold(SEASON_ID, 1):
            with pytest.raises(ConcurrentModificationError):
                with manager.hold(SEASON_ID, 1):
                    pass


class TestCli:
    @pytest.fixture
    def runner(self):
        return CliRunner()

    def _invoke(self, runner, *args, **kwargs):
        from manage import cli

        return runner.invoke(cli, list(args), catch_exceptions=False, **kwargs)

    def test_round_lifecycle(self, runner, pool):
        result = self._invoke(runner, "round", "create", "1", "--season", SEASON_ID)
        assert "Created round 1" in result.output

        self._invoke(runner, "round", "add-match", "1", "Arsenal", "Spurs", "--season", SEASON_ID)
        (match_id,) = pool.store.require_round(1).match_ids
        pool.bet("alice", 1, {match_id: (2, 0)})

        result = self._invoke(runner, "round", "result", str(match_id), "2", "0")
        assert "2-0" in result.output

        result = self._invoke(runner, "round", "score", "1", "--season", SEASON_ID)
        assert "Scored round 1" in result.output
        assert "alice: 6" in result.output

        result = self._invoke(runner, "player", "show", "alice", "--season", SEASON_ID)
        assert "Total: 6" in result.output

        result = self._invoke(runner, "leaderboard", "--season", SEASON_ID)
        assert "alice" in result.output

        result = self._invoke(runner, "audit", "--season", SEASON_ID)
        assert "consistent" in result.output

        result = self._invoke(runner, "round", "delete", "1", "--season", SEASON_ID, "--yes")
        assert "Deleted round 1" in result.output
        assert pool.aggregate("alice")["total_points"] == 0

    def test_score_asks_before_skipping_incomplete(self, runner, pool):
        m1, _ = pool.round(1)
        pool.results(1, {m1: (1, 0)})

        result = self._invoke(runner, "round", "score", "1", "--season", SEASON_ID, input="n\n")
        assert "Matches without results" in result.output
        assert "Cancelled." in result.output
        assert not db.session.get(Match, m1).points_calculated

    def test_missing_round(self, runner, pool):
        result = self._invoke(runner, "round", "score", "4", "--season", SEASON_ID)
        assert "not found" in result.output

    def test_season_outcomes(self, runner, pool):
        result = self._invoke(runner, "season", "outcomes", SEASON_ID, "--champion", "Arsenal")
        assert "champion: Arsenal" in result.output
        assert pool.store.require_season().champion == "Arsenal"
