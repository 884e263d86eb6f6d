"""
Reconciliation engines

Turn match results and stored predictions into points.

Round scoring is idempotent: each user's previously recorded contribution for
the round (read from the cached fields on their bets) is subtracted before the
freshly computed one is added, so re-running a pass converges instead of
double-counting. Each user's round is one unit of work (their prediction list
plus their aggregate, committed together); units already committed stay
committed when a later unit fails, and re-running the pass repairs the rest.
"""

from sqlalchemy.exc import SQLAlchemyError

from prediction_pool.errors import InvalidStateError, PoolError
from prediction_pool.models import ReconciliationRun
from prediction_pool.models.match import (
    RESULT_CANCELLED,
    RESULT_PARTIAL,
    RESULT_PENDING,
)
from prediction_pool.models.reconciliation_run import (
    ACTION_SCORE_PRESEASON,
    ACTION_SCORE_ROUND,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_NEEDS_CONFIRMATION,
)
from prediction_pool.models.round_bets import SCORING_FIELDS
from prediction_pool.services.ledger import AggregateDelta, AggregateLedger
from prediction_pool.services.locks import reconciliation_locks
from prediction_pool.services.prediction_store import (
    PredictionStore,
    run_in_transaction,
)
from prediction_pool.utils.cache_utils import invalidate_standings_cache
from prediction_pool.utils.logging_config import ContextualLogger
from prediction_pool.utils.performance import PerformanceMonitor
from prediction_pool.utils.scoring import (
    calculate_preseason_points,
    score_match_predictions,
)

PRESEASON_SCOPE = "preseason"


def round_contribution(round_bets):
    """AggregateDelta of the points and counts recorded on a user's round bets"""
    correct, exact = round_bets.recorded_counts()
    return AggregateDelta(
        round_bets.round_number, round_bets.recorded_points(), correct, exact
    )


def record_failure(season_id, action_type, error, round_number=None, user_id=None):
    """Store a failed run; never masks the original error"""
    try:
        ReconciliationRun.log_run(
            season_id=season_id,
            action_type=action_type,
            status=STATUS_FAILED,
            description=f"{error.__class__.__name__}: {error}",
            round_number=round_number,
            target_user_id=user_id,
        )
    except SQLAlchemyError:
        ContextualLogger(__name__, {"season": season_id}).exception(
            "Could not record failed reconciliation run"
        )


class RoundScoringReport:
    """Outcome of one score_round call"""

    def __init__(self, season_id, round_number):
        self.season_id = season_id
        self.round_number = round_number
        self.status = STATUS_COMPLETED
        self.scored_match_ids = []
        self.incomplete_match_ids = []
        self.retracted_match_ids = []
        self.users_updated = []
        self.round_points = {}

    @property
    def needs_confirmation(self):
        return self.status == STATUS_NEEDS_CONFIRMATION

    def to_dict(self):
        return {
            "season_id": self.season_id,
            "round": self.round_number,
            "status": self.status,
            "scored_matches": list(self.scored_match_ids),
            "incomplete_matches": list(self.incomplete_match_ids),
            "retracted_matches": list(self.retracted_match_ids),
            "users_updated": len(self.users_updated),
            "round_points": dict(self.round_points),
        }


class RoundReconciler:
    """Scores one round of a season"""

    def __init__(self, season_id):
        self.season_id = season_id
        self.store = PredictionStore(season_id)
        self.ledger = AggregateLedger(season_id, store=self.store)
        self.log = ContextualLogger(__name__, {"season": season_id})

    def score_round(self, round_number, confirm_incomplete=False):
        """
        Score every finished match of a round for every user who predicted it

        Args:
            round_number: Round to score
            confirm_incomplete: Proceed even though some matches have no result;
                those matches are skipped

        Returns:
            RoundScoringReport (status "needs_confirmation" when incomplete
            matches exist and were not confirmed; nothing is written then)

        Raises:
            RoundNotFoundError: the round has no record
            InvalidStateError: a match has only one score, or is cancelled but
                still carries a score
            ConcurrentModificationError: another pass holds the round, or an
                aggregate kept changing underneath this one
        """
        log = self.log.bind(round=round_number)

        with reconciliation_locks.hold(self.season_id, round_number):
            round_ = self.store.require_round(round_number)
            matches = list(round_.matches)
            self._check_match_states(matches, round_number)

            report = RoundScoringReport(self.season_id, round_number)
            scorable = [m for m in matches if m.is_scorable]
            report.scored_match_ids = [m.id for m in scorable]
            report.incomplete_match_ids = [
                m.id for m in matches if m.result_state == RESULT_PENDING
            ]
            cancelled_ids = {
                m.id for m in matches if m.result_state == RESULT_CANCELLED
            }
            # Scored points on these matches no longer count
            retract_ids = cancelled_ids | set(report.incomplete_match_ids)

            if report.incomplete_match_ids and not confirm_incomplete:
                report.status = STATUS_NEEDS_CONFIRMATION
                log.warning(
                    f"Round has matches without results: {report.incomplete_match_ids}; "
                    "confirmation required"
                )
                ReconciliationRun.log_run(
                    season_id=self.season_id,
                    action_type=ACTION_SCORE_ROUND,
                    status=STATUS_NEEDS_CONFIRMATION,
                    description=f"Round {round_number} has matches without results",
                    round_number=round_number,
                    run_metadata={"incomplete_matches": report.incomplete_match_ids},
                )
                return report

            log.info(
                f"Scoring {len(scorable)} matches, skipping {len(report.incomplete_match_ids)} "
                f"incomplete and {len(cancelled_ids)} cancelled"
            )

            with PerformanceMonitor(f"score_round {self.season_id}#{round_number}") as monitor:
                results = self._score_matches(scorable, round_number)
                user_ids = [
                    row.user_id
                    for row in self.store.get_round_bets_for_round(round_number)
                ]

                for user_id in user_ids:
                    user_log = log.bind(user=user_id)
                    try:
                        outcome = run_in_transaction(
                            lambda: self._score_user_round(
                                user_id, round_number, results, retract_ids
                            ),
                            f"round {round_number} for {user_id}",
                        )
                    except (PoolError, SQLAlchemyError) as e:
                        user_log.exception(
                            f"Scoring failed for matches {report.scored_match_ids}"
                        )
                        record_failure(
                            self.season_id, ACTION_SCORE_ROUND, e, round_number, user_id
                        )
                        raise

                    if outcome is None:
                        continue
                    new_points, retracted = outcome
                    report.users_updated.append(user_id)
                    report.round_points[user_id] = new_points
                    for match_id in retracted:
                        if match_id not in report.retracted_match_ids:
                            report.retracted_match_ids.append(match_id)

                try:
                    run_in_transaction(
                        lambda: self._mark_matches(round_number),
                        f"round {round_number} match flags",
                    )
                except (PoolError, SQLAlchemyError) as e:
                    log.exception("Could not mark matches as calculated")
                    record_failure(self.season_id, ACTION_SCORE_ROUND, e, round_number)
                    raise

            ReconciliationRun.log_run(
                season_id=self.season_id,
                action_type=ACTION_SCORE_ROUND,
                status=STATUS_COMPLETED,
                description=(
                    f"Scored round {round_number}: {len(scorable)} matches, "
                    f"{len(report.users_updated)} users"
                ),
                round_number=round_number,
                run_metadata={
                    "scored_matches": report.scored_match_ids,
                    "incomplete_matches": report.incomplete_match_ids,
                    "retracted_matches": report.retracted_match_ids,
                    "duration_ms": monitor.duration_ms,
                },
            )

        invalidate_standings_cache(f"round {round_number} scored")
        log.info(f"Round scored for {len(report.users_updated)} users")
        return report

    def _check_match_states(self, matches, round_number):
        partial = [m.id for m in matches if m.result_state == RESULT_PARTIAL]
        stale = [m.id for m in matches if m.has_stale_result]

        if partial:
            raise InvalidStateError(
                f"Matches {partial} in round {round_number} have only one score set",
                round_number=round_number,
                match_ids=partial,
            )
        if stale:
            raise InvalidStateError(
                f"Cancelled matches {stale} in round {round_number} still carry a score",
                round_number=round_number,
                match_ids=stale,
            )

    def _score_matches(self, scorable, round_number):
        """match id -> {user id -> BetResult} from all users' current predictions"""
        predictions = self.store.predictions_by_match(round_number)
        return {
            match.id: score_match_predictions(
                match.actual_home_score,
                match.actual_away_score,
                predictions.get(match.id, {}),
            )
            for match in scorable
        }

    def _score_user_round(self, user_id, round_number, results, retract_ids):
        """
        One unit of work: rewrite a user's cached bet fields and move their
        aggregate by (new contribution - recorded contribution)

        Returns:
            (new round points, retracted match ids) or None when the user's
            predictions disappeared since the pass started
        """
        round_bets = self.store.get_round_bets(user_id, round_number)
        if round_bets is None:
            return None

        prior = round_contribution(round_bets)

        updated = []
        retracted = []
        for bet in round_bets.bets or []:
            bet = dict(bet)
            match_results = results.get(bet["match_id"])

            if match_results is not None and user_id in match_results:
                bet.update(match_results[user_id].cached_fields())
            elif bet["match_id"] in retract_ids and bet.get("points") is not None:
                # Cancelled or result cleared after it was scored
                for field in SCORING_FIELDS:
                    bet.pop(field, None)
                retracted.append(bet["match_id"])
            updated.append(bet)

        self.store.replace_bets(round_bets, updated)
        current = round_contribution(round_bets)

        if round_bets.scored_bets():
            self.ledger.apply_delta(user_id, current + (-prior))
        elif retracted:
            self.ledger.remove_round(
                user_id, round_number, prior.points, prior.correct, prior.exact
            )

        return current.points, retracted

    def _mark_matches(self, round_number):
        round_ = self.store.require_round(round_number)
        self.store.mark_points_calculated([m for m in round_.matches if m.is_scorable])
        for match in round_.matches:
            if not match.is_scorable:
                match.points_calculated = False


class PreseasonScoringReport:
    def __init__(self, season_id):
        self.season_id = season_id
        self.status = STATUS_COMPLETED
        self.points = {}
        self.has_outcomes = False

    def to_dict(self):
        return {
            "season_id": self.season_id,
            "status": self.status,
            "has_outcomes": self.has_outcomes,
            "preseason_points": dict(self.points),
        }


class PreseasonReconciler:
    """Scores the season-long preseason picks"""

    def __init__(self, season_id):
        self.season_id = season_id
        self.store = PredictionStore(season_id)
        self.ledger = AggregateLedger(season_id, store=self.store)
        self.log = ContextualLogger(__name__, {"season": season_id, "scope": PRESEASON_SCOPE})

    def score_preseason(self):
        """
        Award preseason points to every player from the finalized outcomes

        The ledger sets the preseason contribution and moves the total by the
        difference, so running this again after an outcome is corrected does
        not double-count.
        """
        with reconciliation_locks.hold(self.season_id, PRESEASON_SCOPE):
            season = self.store.require_season()
            outcomes = season.preseason_outcomes()

            report = PreseasonScoringReport(self.season_id)
            report.has_outcomes = season.has_preseason_outcomes()
            if not report.has_outcomes:
                self.log.warning("No preseason outcomes finalized; all players score 0")

            with PerformanceMonitor(f"score_preseason {self.season_id}") as monitor:
                for player_bets in self.store.list_player_bets():
                    user_id = player_bets.user_id
                    try:
                        points = run_in_transaction(
                            lambda: self._score_player(user_id, outcomes),
                            f"preseason for {user_id}",
                        )
                    except (PoolError, SQLAlchemyError) as e:
                        self.log.bind(user=user_id).exception("Preseason scoring failed")
                        record_failure(
                            self.season_id, ACTION_SCORE_PRESEASON, e, user_id=user_id
                        )
                        raise
                    report.points[user_id] = points

            ReconciliationRun.log_run(
                season_id=self.season_id,
                action_type=ACTION_SCORE_PRESEASON,
                status=STATUS_COMPLETED,
                description=f"Scored preseason picks for {len(report.points)} players",
                run_metadata={"outcomes": outcomes, "duration_ms": monitor.duration_ms},
            )

        invalidate_standings_cache("preseason scored")
        self.log.info(f"Preseason scored for {len(report.points)} players")
        return report

    def _score_player(self, user_id, outcomes):
        player_bets = self.store.get_or_create_player_bets(user_id)
        points = calculate_preseason_points(player_bets.preseason_bets, outcomes)
        self.ledger.set_preseason_points(user_id, points)
        return points
