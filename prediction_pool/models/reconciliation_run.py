from datetime import datetime, timezone

from prediction_pool import db

ACTION_SCORE_ROUND = "score_round"
ACTION_DELETE_ROUND = "delete_round"
ACTION_SCORE_PRESEASON = "score_preseason"
ACTION_RECOMPUTE_PLAYER = "recompute_player"

STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_NEEDS_CONFIRMATION = "needs_confirmation"


class ReconciliationRun(db.Model):
    __tablename__ = "reconciliation_runs"

    id = db.Column(db.Integer, primary_key=True)

    season_id = db.Column(db.String(20), nullable=False)
    action_type = db.Column(
        db.String(50), nullable=False
    )  # 'score_round', 'delete_round', 'score_preseason', 'recompute_player'
    status = db.Column(db.String(30), nullable=False)
    description = db.Column(db.String(500), nullable=False)

    # Related object identifiers for context
    round_number = db.Column(db.Integer, nullable=True)
    target_user_id = db.Column(db.String(128), nullable=True)

    # Additional context data (JSON)
    run_metadata = db.Column(db.JSON, nullable=True)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.Index("idx_reconciliation_season_round", "season_id", "round_number"),
        db.Index("idx_reconciliation_action", "action_type"),
        db.Index("idx_reconciliation_created", "created_at"),
    )

    def __repr__(self):
        return f"<ReconciliationRun {self.action_type} {self.status} season={self.season_id}>"

    @staticmethod
    def log_run(
        season_id,
        action_type,
        status,
        description,
        round_number=None,
        target_user_id=None,
        run_metadata=None,
        commit=True,
    ):
        """Record an engine invocation in its own transaction"""
        run = ReconciliationRun(
            season_id=season_id,
            action_type=action_type,
            status=status,
            description=description[:500],
            round_number=round_number,
            target_user_id=target_user_id,
            run_metadata=run_metadata or {},
        )

        db.session.add(run)
        if commit:
            db.session.commit()
        return run

    @staticmethod
    def recent(season_id, limit=20):
        return (
            ReconciliationRun.query.filter_by(season_id=season_id)
            .order_by(ReconciliationRun.created_at.desc(), ReconciliationRun.id.desc())
            .limit(limit)
            .all()
        )

    def to_dict(self):
        """Convert run to dictionary for API responses"""
        return {
            "id": self.id,
            "season_id": self.season_id,
            "action_type": self.action_type,
            "status": self.status,
            "description": self.description,
            "round": self.round_number,
            "target_user_id": self.target_user_id,
            "run_metadata": self.run_metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
