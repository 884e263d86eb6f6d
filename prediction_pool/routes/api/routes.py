from flask import current_app, jsonify, request

from prediction_pool import limiter
from prediction_pool.errors import InvalidPredictionError, PlayerNotFoundError
from prediction_pool.models import ReconciliationRun
from prediction_pool.routes.api import bp
from prediction_pool.services.ledger import AggregateLedger
from prediction_pool.services.prediction_store import PredictionStore
from prediction_pool.services.recompute import RecomputeEngine
from prediction_pool.services.reconciliation import (
    PreseasonReconciler,
    RoundReconciler,
)
from prediction_pool.services.scheduler_service import scheduler_service
from prediction_pool.utils.season_clock import current_round_number, resolve_season_id
from prediction_pool.utils.timezone_utils import get_utc_time

ADMIN_LIMIT = "30 per minute"


def _json_body():
    return request.get_json(silent=True) or {}


@bp.route("/seasons/current")
def current_season():
    """Current season id, its record if present, and the current round"""
    season_id = resolve_season_id()
    store = PredictionStore(season_id)
    season = store.get_season()

    return jsonify(
        {
            "season_id": season_id,
            "season": season.to_dict() if season else None,
            "current_round": (
                current_round_number(store.list_rounds(), get_utc_time())
                if season
                else None
            ),
        }
    )


@bp.route("/seasons/<season_id>/rounds/<int:round_number>")
def round_detail(season_id, round_number):
    round_ = PredictionStore(season_id).require_round(round_number)
    return jsonify(round_.to_dict(include_matches=True))


@bp.route("/seasons/<season_id>/leaderboard")
def leaderboard(season_id):
    """Ranked aggregates, limited to LEADERBOARD_LIMIT unless ?limit= is given"""
    PredictionStore(season_id).require_season()
    limit = request.args.get("limit", type=int)
    if limit is None:
        limit = current_app.config.get("LEADERBOARD_LIMIT", 50)

    entries = AggregateLedger(season_id).get_leaderboard(limit)
    return jsonify({"season_id": season_id, "leaderboard": entries})


@bp.route("/seasons/<season_id>/players/<user_id>")
def player_aggregate(season_id, user_id):
    aggregate = AggregateLedger(season_id).get_aggregate(user_id)
    if aggregate is None:
        raise PlayerNotFoundError(season_id, user_id)
    return jsonify(aggregate.to_dict())


@bp.route("/seasons/<season_id>/rounds/<int:round_number>/bets/<user_id>", methods=["GET"])
def get_round_bets(season_id, round_number, user_id):
    store = PredictionStore(season_id)
    store.require_round(round_number)
    round_bets = store.get_round_bets(user_id, round_number)
    if round_bets is None:
        return jsonify({"error": "No predictions for this round"}), 404
    return jsonify(round_bets.to_dict())


@bp.route("/seasons/<season_id>/rounds/<int:round_number>/bets/<user_id>", methods=["PUT"])
def submit_round_bets(season_id, round_number, user_id):
    """Replace a user's predictions for a round (until the round starts)"""
    data = _json_body()
    bets = data.get("bets")
    if not isinstance(bets, list) or not all(isinstance(bet, dict) for bet in bets):
        raise InvalidPredictionError("'bets' must be a list of predictions")

    round_bets = PredictionStore(season_id).save_round_bets(
        user_id, round_number, bets, display_name=data.get("display_name")
    )
    return jsonify(round_bets.to_dict())


@bp.route("/seasons/<season_id>/preseason/<user_id>", methods=["PUT"])
def submit_preseason_bets(season_id, user_id):
    """Store a user's preseason picks (until the season starts)"""
    data = _json_body()
    picks = data.get("picks")
    if not isinstance(picks, dict):
        raise InvalidPredictionError("'picks' must be an object of category -> pick")

    player_bets = PredictionStore(season_id).save_preseason_bets(
        user_id, picks, display_name=data.get("display_name")
    )
    return jsonify(
        {"user_id": user_id, "season_id": season_id, "picks": player_bets.preseason_bets}
    )


@bp.route("/seasons/<season_id>/rounds/<int:round_number>/score", methods=["POST"])
@limiter.limit(ADMIN_LIMIT)
def score_round(season_id, round_number):
    """Score a round; incomplete matches need confirm_incomplete=true"""
    confirm = bool(_json_body().get("confirm_incomplete", False))
    report = RoundReconciler(season_id).score_round(
        round_number, confirm_incomplete=confirm
    )
    return jsonify(report.to_dict())


@bp.route("/seasons/<season_id>/rounds/<int:round_number>", methods=["DELETE"])
@limiter.limit(ADMIN_LIMIT)
def delete_round(season_id, round_number):
    return jsonify(RecomputeEngine(season_id).delete_round(round_number))


@bp.route("/seasons/<season_id>/preseason/score", methods=["POST"])
@limiter.limit(ADMIN_LIMIT)
def score_preseason(season_id):
    report = PreseasonReconciler(season_id).score_preseason()
    return jsonify(report.to_dict())


@bp.route("/seasons/<season_id>/players/<user_id>/recompute", methods=["POST"])
@limiter.limit(ADMIN_LIMIT)
def recompute_player(season_id, user_id):
    player_bets = RecomputeEngine(season_id).recompute_user(user_id)
    return jsonify(player_bets.to_dict())


@bp.route("/seasons/<season_id>/audit")
@limiter.limit(ADMIN_LIMIT)
def audit(season_id):
    PredictionStore(season_id).require_season()
    issues = RecomputeEngine(season_id).audit_aggregates()
    return jsonify({"season_id": season_id, "consistent": not issues, "issues": issues})


@bp.route("/seasons/<season_id>/runs")
def reconciliation_runs(season_id):
    limit = request.args.get("limit", 20, type=int)
    runs = ReconciliationRun.recent(season_id, limit=limit)
    return jsonify([run.to_dict() for run in runs])


@bp.route("/scheduler/status")
def scheduler_status():
    return jsonify(scheduler_service.get_status())
