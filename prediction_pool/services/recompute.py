"""
Rollback and recompute engine

delete_round takes a round's points back out of every aggregate using the
points recorded on the stored bets (match results may already be gone), then
removes the round. recompute_user rebuilds one player's aggregate from
scratch and is the recovery path whenever cached bet fields and aggregates
disagree.
"""

from sqlalchemy.exc import SQLAlchemyError

from prediction_pool.errors import PlayerNotFoundError, PoolError
from prediction_pool.models import ReconciliationRun
from prediction_pool.models.reconciliation_run import (
    ACTION_DELETE_ROUND,
    ACTION_RECOMPUTE_PLAYER,
    STATUS_COMPLETED,
)
from prediction_pool.models.round_bets import SCORING_FIELDS
from prediction_pool.services.ledger import AggregateLedger
from prediction_pool.services.locks import reconciliation_locks
from prediction_pool.services.prediction_store import (
    PredictionStore,
    run_in_transaction,
)
from prediction_pool.services.reconciliation import record_failure, round_contribution
from prediction_pool.utils.cache_utils import invalidate_standings_cache
from prediction_pool.utils.logging_config import ContextualLogger
from prediction_pool.utils.performance import PerformanceMonitor, timer
from prediction_pool.utils.scoring import (
    calculate_preseason_points,
    score_match_predictions,
)


class RecomputeEngine:
    """Round deletion, full per-player recompute and aggregate audits"""

    def __init__(self, season_id):
        self.season_id = season_id
        self.store = PredictionStore(season_id)
        self.ledger = AggregateLedger(season_id, store=self.store)
        self.log = ContextualLogger(__name__, {"season": season_id})

    def delete_round(self, round_number):
        """
        Remove a round and every point it contributed

        For each user with predictions in the round the recorded points and
        counts are subtracted, the round's entries are dropped from the
        aggregate maps and the predictions are deleted. The round and its
        matches go last, so a failure part way leaves the round in place and
        the call can simply be repeated.

        Returns:
            dict summary with the points removed per user
        """
        log = self.log.bind(round=round_number)

        with reconciliation_locks.hold(self.season_id, round_number):
            self.store.require_round(round_number)
            user_ids = [
                row.user_id for row in self.store.get_round_bets_for_round(round_number)
            ]

            removed = {}
            for user_id in user_ids:
                try:
                    points = run_in_transaction(
                        lambda: self._remove_user_round(user_id, round_number),
                        f"delete round {round_number} for {user_id}",
                    )
                except (PoolError, SQLAlchemyError) as e:
                    log.bind(user=user_id).exception("Round deletion failed")
                    record_failure(
                        self.season_id, ACTION_DELETE_ROUND, e, round_number, user_id
                    )
                    raise
                if points is not None:
                    removed[user_id] = points

            try:
                run_in_transaction(
                    lambda: self.store.delete_round(self.store.require_round(round_number)),
                    f"delete round {round_number}",
                )
            except (PoolError, SQLAlchemyError) as e:
                log.exception("Could not delete round record")
                record_failure(self.season_id, ACTION_DELETE_ROUND, e, round_number)
                raise

            ReconciliationRun.log_run(
                season_id=self.season_id,
                action_type=ACTION_DELETE_ROUND,
                status=STATUS_COMPLETED,
                description=f"Deleted round {round_number} for {len(removed)} users",
                round_number=round_number,
                run_metadata={"points_removed": removed},
            )

        invalidate_standings_cache(f"round {round_number} deleted")
        log.info(f"Round deleted; points removed for {len(removed)} users")
        return {
            "season_id": self.season_id,
            "round": round_number,
            "users_updated": len(removed),
            "points_removed": removed,
        }

    def _remove_user_round(self, user_id, round_number):
        round_bets = self.store.get_round_bets(user_id, round_number)
        if round_bets is None:
            return None

        contribution = round_contribution(round_bets)
        self.ledger.remove_round(
            user_id,
            round_number,
            contribution.points,
            contribution.correct,
            contribution.exact,
        )
        self.store.delete_round_bets(round_bets)
        return contribution.points

    @timer
    def recompute_user(self, user_id):
        """
        Rebuild one player's aggregate from the stored results and predictions

        Only matches whose points have been calculated are replayed. Uniqueness
        is recomputed from every user's current predictions, the user's cached
        bet fields are rewritten to match, preseason points are computed fresh,
        and the aggregate is overwritten rather than merged.

        Raises:
            PlayerNotFoundError: the user has no records in this season
        """
        if (
            self.store.get_player_bets(user_id) is None
            and not self.store.get_user_round_bets(user_id)
        ):
            raise PlayerNotFoundError(self.season_id, user_id)

        log = self.log.bind(user=user_id)
        try:
            player_bets = run_in_transaction(
                lambda: self._recompute_user(user_id), f"recompute {user_id}"
            )
        except (PoolError, SQLAlchemyError) as e:
            log.exception("Recompute failed")
            record_failure(self.season_id, ACTION_RECOMPUTE_PLAYER, e, user_id=user_id)
            raise

        ReconciliationRun.log_run(
            season_id=self.season_id,
            action_type=ACTION_RECOMPUTE_PLAYER,
            status=STATUS_COMPLETED,
            description=f"Recomputed aggregate for {user_id}",
            target_user_id=user_id,
            run_metadata={"total_points": player_bets.total_points},
        )
        invalidate_standings_cache(f"player {user_id} recomputed")
        log.info(f"Recomputed aggregate: total={player_bets.total_points}")
        return player_bets

    def _recompute_user(self, user_id):
        round_bets_by_round = self.store.get_user_round_bets(user_id)

        round_points = {}
        correct_map = {}
        exact_map = {}

        for round_ in self.store.list_rounds():
            round_bets = round_bets_by_round.get(round_.number)
            if round_bets is None:
                continue

            counted = [m for m in round_.matches if m.points_calculated and m.is_scorable]
            predictions = self.store.predictions_by_match(round_.number) if counted else {}
            results = {
                match.id: score_match_predictions(
                    match.actual_home_score,
                    match.actual_away_score,
                    predictions.get(match.id, {}),
                )
                for match in counted
            }

            updated = []
            for bet in round_bets.bets or []:
                bet = dict(bet)
                match_results = results.get(bet["match_id"])
                if match_results is not None and user_id in match_results:
                    bet.update(match_results[user_id].cached_fields())
                else:
                    for field in SCORING_FIELDS:
                        bet.pop(field, None)
                updated.append(bet)
            self.store.replace_bets(round_bets, updated)

            if round_bets.scored_bets():
                correct, exact = round_bets.recorded_counts()
                round_points[round_.number] = round_bets.recorded_points()
                correct_map[round_.number] = correct
                exact_map[round_.number] = exact

        season = self.store.get_season()
        outcomes = season.preseason_outcomes() if season else {}
        player_bets = self.store.get_or_create_player_bets(user_id)
        preseason_points = calculate_preseason_points(player_bets.preseason_bets, outcomes)

        return self.ledger.overwrite(
            user_id, preseason_points, round_points, correct_map, exact_map
        )

    def recompute_season(self):
        """Recompute every player of the season; returns user id -> total"""
        totals = {}
        with PerformanceMonitor(f"recompute_season {self.season_id}"):
            for user_id in self.store.list_user_ids():
                totals[user_id] = self.recompute_user(user_id).total_points
        self.log.info(f"Recomputed {len(totals)} players")
        return totals

    def audit_aggregates(self):
        """
        Check every aggregate against its components and the stored bets

        Returns:
            list of discrepancy dicts (empty when everything is consistent)
        """
        issues = []

        for player_bets in self.store.list_player_bets():
            user_id = player_bets.user_id

            gap = player_bets.conservation_gap()
            if gap:
                issues.append({"user_id": user_id, "kind": "conservation", "gap": gap})

            correct_by_round = player_bets.correct_by_round
            exact_by_round = player_bets.exact_by_round
            if player_bets.correct_predictions != sum(correct_by_round.values()) or (
                player_bets.exact_predictions != sum(exact_by_round.values())
            ):
                issues.append({"user_id": user_id, "kind": "counters"})

            entries = player_bets.round_points_by_round
            round_bets_by_round = self.store.get_user_round_bets(user_id)
            for round_number in sorted(set(entries) | set(round_bets_by_round)):
                round_bets = round_bets_by_round.get(round_number)
                recorded = None
                if round_bets is not None and round_bets.scored_bets():
                    recorded = round_bets.recorded_points()

                if entries.get(round_number) != recorded:
                    issues.append(
                        {
                            "user_id": user_id,
                            "kind": "round_points",
                            "round": round_number,
                            "aggregate": entries.get(round_number),
                            "recorded": recorded,
                        }
                    )

        for issue in issues:
            self.log.warning(f"Aggregate discrepancy: {issue}")
        self.log.info(f"Audited aggregates: {len(issues)} discrepancies")
        return issues
