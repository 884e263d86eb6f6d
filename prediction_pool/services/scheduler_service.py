"""
Prediction pool background scheduler

Runs automated reconciliation with APScheduler: rounds whose matches all have
results are scored without waiting for an operator, and aggregates are audited
once a day.
"""

import atexit
import logging
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError

from prediction_pool import db
from prediction_pool.errors import PoolError
from prediction_pool.models.match import RESULT_PARTIAL, RESULT_PENDING
from prediction_pool.services.prediction_store import PredictionStore
from prediction_pool.services.reconciliation import RoundReconciler
from prediction_pool.services.recompute import RecomputeEngine
from prediction_pool.utils.season_clock import resolve_season_id

logger = logging.getLogger(__name__)


def round_ready_for_scoring(round_):
    """Every match is final or cancelled and at least one final match is unscored"""
    states = [match.result_state for match in round_.matches]
    if not states or RESULT_PENDING in states or RESULT_PARTIAL in states:
        return False
    return any(m.is_scorable and not m.points_calculated for m in round_.matches)


def auto_score_rounds(season_id=None):
    """
    Score every round of the season that is complete but not yet scored

    Returns:
        list of round numbers scored
    """
    season_id = resolve_season_id(season_id)
    store = PredictionStore(season_id)
    if store.get_season() is None:
        return []

    scored = []
    reconciler = RoundReconciler(season_id)
    for round_ in store.list_rounds():
        if not round_ready_for_scoring(round_):
            continue

        round_number = round_.number
        try:
            reconciler.score_round(round_number)
            scored.append(round_number)
        except (PoolError, SQLAlchemyError) as e:
            db.session.rollback()
            logger.error(
                f"Automatic scoring of round {round_number} in {season_id} failed: {e}"
            )

    if scored:
        logger.info(f"Automatically scored rounds {scored} in season {season_id}")
    return scored


class SchedulerService:
    """Manages automatic background reconciliation"""

    def __init__(self, app=None):
        self.scheduler = None
        self.app = app
        self.is_running = False
        self.run_stats = {
            "last_run": None,
            "total_runs": 0,
            "successful_runs": 0,
            "failed_runs": 0,
            "last_error": None,
            "rounds_scored": 0,
            "last_audit_issues": None,
        }

        if app:
            self.init_app(app)

    def init_app(self, app):
        """Initialize scheduler with Flask app"""
        self.app = app
        self.scheduler = BackgroundScheduler(daemon=True, timezone="UTC")

        # Register shutdown
        atexit.register(self.shutdown)

        # Start scheduler if enabled
        if app.config.get("SCHEDULER_ENABLED", True):
            self.start()

    def start(self):
        """Start the background scheduler"""
        if self.is_running:
            return

        try:
            # Clear any existing jobs
            self.scheduler.remove_all_jobs()

            self._add_core_jobs()

            self.scheduler.start()
            self.is_running = True

            logger.info("Scheduler started successfully")

        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")
            raise

    def stop(self):
        """Stop the background scheduler"""
        if not self.is_running:
            return

        try:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            logger.info("Scheduler stopped")

        except Exception as e:
            logger.error(f"Error stopping scheduler: {e}")

    def shutdown(self):
        """Graceful shutdown"""
        self.stop()

    def _add_core_jobs(self):
        """Add core scheduled jobs"""
        interval = self.app.config.get("AUTO_SCORE_INTERVAL_MINUTES", 15)

        self.scheduler.add_job(
            func=self._auto_score,
            trigger=IntervalTrigger(minutes=interval),
            id="auto_score_rounds",
            name="Score Completed Rounds",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )

        # Daily aggregate audit (3 AM UTC)
        self.scheduler.add_job(
            func=self._daily_audit,
            trigger=CronTrigger(hour=3, minute=0),
            id="daily_audit",
            name="Daily Aggregate Audit",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=3600,
        )

        logger.info("Core scheduled jobs added")

    def _auto_score(self):
        with self.app.app_context():
            try:
                scored = auto_score_rounds()
                self._update_stats(True, len(scored))
            except Exception as e:
                db.session.rollback()
                self._update_stats(False)
                self.run_stats["last_error"] = str(e)
                logger.error(f"Error in automatic scoring: {e}", exc_info=True)

    def _daily_audit(self):
        with self.app.app_context():
            try:
                season_id = resolve_season_id()
                issues = RecomputeEngine(season_id).audit_aggregates()
                self.run_stats["last_audit_issues"] = len(issues)
                if issues:
                    logger.warning(
                        f"Daily audit found {len(issues)} aggregate discrepancies in {season_id}; "
                        "run 'player recompute' for the affected users"
                    )
                self._update_stats(True)
            except Exception as e:
                db.session.rollback()
                self._update_stats(False)
                self.run_stats["last_error"] = str(e)
                logger.error(f"Error in daily audit: {e}", exc_info=True)

    def _update_stats(self, success, rounds_scored=0):
        """Update run statistics"""
        self.run_stats["last_run"] = datetime.now(timezone.utc)
        self.run_stats["total_runs"] += 1

        if success:
            self.run_stats["successful_runs"] += 1
            self.run_stats["rounds_scored"] += rounds_scored
            self.run_stats["last_error"] = None
        else:
            self.run_stats["failed_runs"] += 1

    def get_status(self):
        """Get scheduler status information"""
        jobs = []
        if self.scheduler:
            for job in self.scheduler.get_jobs():
                next_run = job.next_run_time
                jobs.append(
                    {
                        "id": job.id,
                        "name": job.name,
                        "next_run": next_run.isoformat() if next_run else None,
                        "trigger": str(job.trigger),
                    }
                )

        return {"is_running": self.is_running, "jobs": jobs, "stats": self.run_stats}


# Global scheduler instance
scheduler_service = SchedulerService()
