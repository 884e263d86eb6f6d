#!/usr/bin/env python3
"""
Prediction Pool Management CLI

This script provides command-line management functionality for the prediction pool:
season setup, round scoring and rollback, preseason scoring, recomputes and audits.
"""

import logging
import os

import click
from flask import current_app
from flask.cli import with_appcontext
from flask_migrate import downgrade, migrate, upgrade
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from prediction_pool import create_app, db
from prediction_pool.errors import PoolError
from prediction_pool.models import Match, ReconciliationRun, Round, Season
from prediction_pool.models.season import PRESEASON_CATEGORIES
from prediction_pool.services.ledger import AggregateLedger
from prediction_pool.services.prediction_store import PredictionStore
from prediction_pool.services.recompute import RecomputeEngine
from prediction_pool.services.reconciliation import (
    PreseasonReconciler,
    RoundReconciler,
)
from prediction_pool.utils.season_clock import current_round_number, resolve_season_id
from prediction_pool.utils.timezone_utils import get_utc_time, parse_iso_datetime

season_option = click.option(
    "--season", "season_id", default=None, help="Season id, e.g. 2025-2026 (default: current)"
)


@click.group()
def cli():
    """Prediction Pool Management CLI"""
    pass


# Season Management Commands
@cli.group()
def season():
    """Season management commands"""
    pass


@season.command()
@click.option("--at", "at", default=None, help="ISO instant to evaluate (default: now)")
@with_appcontext
def current(at):
    """Show the current season and round"""
    now = parse_iso_datetime(at) if at else get_utc_time()
    season_id = resolve_season_id(now=now)
    click.echo(f"Season: {season_id}")

    store = PredictionStore(season_id)
    if store.get_season() is None:
        click.echo("⚠️  Season has no record yet")
        return

    round_number = current_round_number(store.list_rounds(), now)
    click.echo(f"Current round: {round_number if round_number is not None else 'none'}")


@season.command()
@click.argument("season_id")
@click.option("--start", help="Season start / preseason lock (ISO 8601)")
@click.option("--end", help="Season end (ISO 8601)")
@with_appcontext
def create(season_id, start, end):
    """Create a new season"""
    try:
        if db.session.get(Season, season_id):
            click.echo(f"Season {season_id} already exists!")
            return

        Season.create_season(
            season_id,
            season_start=parse_iso_datetime(start) if start else None,
            season_end=parse_iso_datetime(end) if end else None,
        )
        db.session.commit()
        click.echo(f"✅ Created season {season_id}")

    except IntegrityError as e:
        db.session.rollback()
        click.echo(f"❌ Season {season_id} already exists!")
        logging.error(f"Season creation failed - integrity error: {e}")
    except (SQLAlchemyError, ValueError) as e:
        db.session.rollback()
        click.echo(f"❌ Error creating season: {str(e)}")
        logging.error(f"Season creation failed: {e}")


@season.command()
@click.argument("season_id")
@click.option("--champion")
@click.option("--cup")
@click.option("--relegation1")
@click.option("--relegation2")
@click.option("--top-scorer", "top_scorer")
@click.option("--top-assists", "top_assists")
@with_appcontext
def outcomes(season_id, **values):
    """Set finalized preseason outcomes"""
    try:
        season_obj = PredictionStore(season_id).require_season()
        given = {k: v for k, v in values.items() if v is not None}
        if given:
            season_obj.set_preseason_outcomes(**given)
            db.session.commit()
            click.echo(f"✅ Updated outcomes: {', '.join(sorted(given))}")

        for category in PRESEASON_CATEGORIES:
            click.echo(f"  {category}: {getattr(season_obj, category) or '-'}")

    except PoolError as e:
        click.echo(f"❌ {e}")
    except SQLAlchemyError as e:
        db.session.rollback()
        click.echo(f"❌ Database error updating outcomes: {str(e)}")
        logging.error(f"Outcome update failed - SQL error: {e}")


# Round Commands
@cli.group(name="round")
def round_group():
    """Round and match commands"""
    pass


@round_group.command(name="create")
@click.argument("number", type=int)
@click.option("--start", help="Round start / prediction lock (ISO 8601)")
@season_option
@with_appcontext
def create_round(number, start, season_id):
    """Create a round"""
    season_id = resolve_season_id(season_id)
    try:
        PredictionStore(season_id).require_season()
        Round.create_round(
            season_id, number, start_time=parse_iso_datetime(start) if start else None
        )
        db.session.commit()
        click.echo(f"✅ Created round {number} in {season_id}")
    except PoolError as e:
        click.echo(f"❌ {e}")
    except SQLAlchemyError as e:
        db.session.rollback()
        click.echo(f"❌ Database error creating round: {str(e)}")


@round_group.command(name="add-match")
@click.argument("number", type=int)
@click.argument("home_team")
@click.argument("away_team")
@season_option
@with_appcontext
def add_match(number, home_team, away_team, season_id):
    """Add a match to a round"""
    season_id = resolve_season_id(season_id)
    try:
        round_ = PredictionStore(season_id).require_round(number)
        match = round_.add_match(home_team, away_team)
        db.session.commit()
        click.echo(f"✅ Added match {match.id}: {home_team} vs {away_team}")
    except PoolError as e:
        click.echo(f"❌ {e}")
    except SQLAlchemyError as e:
        db.session.rollback()
        click.echo(f"❌ Database error adding match: {str(e)}")


@round_group.command()
@click.argument("match_id", type=int)
@click.argument("home_score", type=int)
@click.argument("away_score", type=int)
@with_appcontext
def result(match_id, home_score, away_score):
    """Record a match result"""
    match = db.session.get(Match, match_id)
    if not match:
        click.echo(f"❌ Match {match_id} not found!")
        return

    try:
        match.set_result(home_score, away_score)
        db.session.commit()
        click.echo(f"✅ Match {match_id}: {home_score}-{away_score}")
    except ValueError as e:
        click.echo(f"❌ {e}")
    except SQLAlchemyError as e:
        db.session.rollback()
        click.echo(f"❌ Database error saving result: {str(e)}")


@round_group.command()
@click.argument("number", type=int)
@click.option("--confirm-incomplete", is_flag=True, help="Skip matches without results")
@season_option
@with_appcontext
def score(number, confirm_incomplete, season_id):
    """Score a round"""
    season_id = resolve_season_id(season_id)
    reconciler = RoundReconciler(season_id)

    try:
        report = reconciler.score_round(number, confirm_incomplete=confirm_incomplete)
        if report.needs_confirmation:
            click.echo(
                f"⚠️  Matches without results: {', '.join(map(str, report.incomplete_match_ids))}"
            )
            if not click.confirm("Score the round without them?"):
                click.echo("Cancelled.")
                return
            report = reconciler.score_round(number, confirm_incomplete=True)
    except PoolError as e:
        click.echo(f"❌ {e}")
        return
    except SQLAlchemyError as e:
        click.echo(f"❌ Database error scoring round {number}: {str(e)}")
        return

    click.echo(
        f"✅ Scored round {number}: {len(report.scored_match_ids)} matches, "
        f"{len(report.users_updated)} users"
    )
    for user_id, points in sorted(report.round_points.items()):
        click.echo(f"  {user_id}: {points}")


@round_group.command()
@click.argument("number", type=int)
@season_option
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@with_appcontext
def delete(number, season_id, yes):
    """⚠️  Delete a round and remove its points"""
    season_id = resolve_season_id(season_id)
    if not yes and not click.confirm(
        f"This will delete round {number} of {season_id} and its points. Are you sure?"
    ):
        click.echo("Cancelled.")
        return

    try:
        summary = RecomputeEngine(season_id).delete_round(number)
    except PoolError as e:
        click.echo(f"❌ {e}")
        return
    except SQLAlchemyError as e:
        click.echo(f"❌ Database error deleting round {number}: {str(e)}")
        return

    click.echo(f"✅ Deleted round {number}; points removed for {summary['users_updated']} users")


@round_group.command(name="status")
@click.argument("number", type=int)
@season_option
@with_appcontext
def round_status(number, season_id):
    """Show match results and scoring state of a round"""
    season_id = resolve_season_id(season_id)
    try:
        round_ = PredictionStore(season_id).require_round(number)
    except PoolError as e:
        click.echo(f"❌ {e}")
        return

    start = round_.start_time.isoformat() if round_.start_time else "not set"
    click.echo(f"Round {number} ({season_id}) - starts {start}")
    for match in round_.matches:
        if match.is_scorable:
            score_text = f"{match.actual_home_score}-{match.actual_away_score}"
        else:
            score_text = match.result_state
        calculated = "✅" if match.points_calculated else "⚪"
        click.echo(f"  {calculated} {match.id}: {match.home_team} vs {match.away_team} {score_text}")


# Preseason Commands
@cli.group()
def preseason():
    """Preseason prediction commands"""
    pass


@preseason.command(name="score")
@season_option
@with_appcontext
def score_preseason(season_id):
    """Award preseason points from the finalized outcomes"""
    season_id = resolve_season_id(season_id)
    try:
        report = PreseasonReconciler(season_id).score_preseason()
    except (PoolError, SQLAlchemyError) as e:
        click.echo(f"❌ {e}")
        return

    click.echo(f"✅ Scored preseason picks for {len(report.points)} players")


# Player Commands
@cli.group()
def player():
    """Player aggregate commands"""
    pass


@player.command()
@click.argument("user_id", required=False)
@click.option("--all", "all_players", is_flag=True, help="Recompute every player")
@season_option
@with_appcontext
def recompute(user_id, all_players, season_id):
    """Rebuild a player's aggregate from stored results and predictions"""
    season_id = resolve_season_id(season_id)
    engine = RecomputeEngine(season_id)

    try:
        if all_players:
            totals = engine.recompute_season()
            click.echo(f"✅ Recomputed {len(totals)} players")
            return
        if not user_id:
            click.echo("❌ Give a user id or --all")
            return

        player_bets = engine.recompute_user(user_id)
        click.echo(f"✅ Recomputed {user_id}: {player_bets.total_points} points")
    except (PoolError, SQLAlchemyError) as e:
        click.echo(f"❌ {e}")


@player.command()
@click.argument("user_id")
@season_option
@with_appcontext
def show(user_id, season_id):
    """Show a player's aggregate"""
    season_id = resolve_season_id(season_id)
    aggregate = AggregateLedger(season_id).get_aggregate(user_id)
    if aggregate is None:
        click.echo(f"No scored aggregate for {user_id} in {season_id}")
        return

    click.echo(f"{aggregate.display_name or user_id} ({season_id})")
    click.echo(f"  Total: {aggregate.total_points}")
    click.echo(f"  Preseason: {aggregate.preseason_points}")
    click.echo(
        f"  Correct: {aggregate.correct_predictions}  Exact: {aggregate.exact_predictions}"
    )
    for round_number, points in sorted(aggregate.round_points_by_round.items()):
        click.echo(f"  Round {round_number}: {points}")


@cli.command()
@click.option("--limit", type=int, default=None, help="Entries to show (0 for all)")
@season_option
@with_appcontext
def leaderboard(limit, season_id):
    """Show the season leaderboard"""
    season_id = resolve_season_id(season_id)
    if limit is None:
        limit = current_app.config.get("LEADERBOARD_LIMIT", 50)

    entries = AggregateLedger(season_id).get_leaderboard(limit)
    if not entries:
        click.echo("No players found.")
        return

    click.echo(f"Leaderboard {season_id}:")
    for entry in entries:
        name = entry["display_name"] or entry["user_id"]
        click.echo(
            f"  {entry['rank']:>3}. {name:<24} {entry['total_points']:>5} "
            f"(exact {entry['exact_predictions']}, correct {entry['correct_predictions']})"
        )


@cli.command()
@season_option
@with_appcontext
def audit(season_id):
    """Check every aggregate against its stored components"""
    season_id = resolve_season_id(season_id)
    issues = RecomputeEngine(season_id).audit_aggregates()
    if not issues:
        click.echo(f"✅ All aggregates in {season_id} are consistent")
        return

    click.echo(f"⚠️  {len(issues)} discrepancies in {season_id}:")
    for issue in issues:
        click.echo(f"  {issue}")
    click.echo("Run 'player recompute <user_id>' to repair affected players.")


# Database Commands
@cli.group()
def db_cmd():
    """Database commands"""
    pass


@db_cmd.command()
@with_appcontext
def init_db():
    """Initialize database tables"""
    try:
        db.create_all()
        click.echo("✅ Database tables created successfully!")
    except SQLAlchemyError as e:
        click.echo(f"❌ Error initializing database: {str(e)}")


@db_cmd.command()
@with_appcontext
def reset():
    """⚠️  DANGER: Drop and recreate all tables"""
    if not click.confirm("This will DELETE ALL DATA. Are you sure?"):
        click.echo("Cancelled.")
        return

    try:
        db.drop_all()
        db.create_all()
        click.echo("✅ Database reset successfully!")
    except SQLAlchemyError as e:
        click.echo(f"❌ Error resetting database: {str(e)}")


# Database Migration Commands
@cli.group()
def db_migrate():
    """Database migration commands"""
    pass


@db_migrate.command()
@with_appcontext
def init_migrations():
    """Initialize migrations repository"""
    if os.path.exists("migrations"):
        click.echo("❌ Migrations directory already exists!")
        return

    from flask_migrate import init as flask_migrate_init

    flask_migrate_init()
    click.echo("✅ Migrations repository initialized!")


@db_migrate.command()
@click.option("-m", "--message", required=True, help="Migration message")
@with_appcontext
def create_migration(message):
    """Create a new migration"""
    migrate(message=message)
    click.echo(f"✅ Migration created: {message}")


@db_migrate.command()
@click.option("--revision", default="head", help="Revision to upgrade to")
@with_appcontext
def apply_migrations(revision):
    """Apply migrations to database"""
    upgrade(revision=revision)
    click.echo(f"✅ Migrations applied to {revision}")


@db_migrate.command()
@click.option("--revision", required=True, help="Revision to downgrade to")
@with_appcontext
def rollback_migration(revision):
    """Rollback migrations to specific revision"""
    downgrade(revision=revision)
    click.echo(f"✅ Rolled back to {revision}")


@cli.command()
@with_appcontext
def status():
    """Show application status"""
    click.echo("⚽ Prediction Pool Status")
    click.echo("=" * 40)

    # Database connection
    try:
        db.session.execute(text("SELECT 1"))
        click.echo("✅ Database: Connected")
    except SQLAlchemyError as e:
        click.echo(f"❌ Database: Error - {str(e)}")
        return

    season_id = resolve_season_id()
    season_obj = db.session.get(Season, season_id)
    if not season_obj:
        click.echo(f"⚠️  Current Season: {season_id} (no record)")
        return

    round_number = current_round_number(PredictionStore(season_id).list_rounds(), get_utc_time())
    click.echo(f"✅ Current Season: {season_id} (round {round_number or '-'})")

    player_count = len(PredictionStore(season_id).list_player_bets())
    click.echo(f"👥 Players: {player_count}")

    for run in ReconciliationRun.recent(season_id, limit=5):
        click.echo(f"  {run.created_at:%Y-%m-%d %H:%M} {run.action_type} {run.status}")


def main():
    app = create_app()
    with app.app_context():
        cli()


if __name__ == "__main__":
    main()
