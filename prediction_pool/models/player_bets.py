from datetime import datetime, timezone

from prediction_pool import db


def _int_keyed(mapping):
    """JSON objects carry string keys; round numbers are ints"""
    return {int(key): value for key, value in (mapping or {}).items()}


class PlayerBets(db.Model):
    """A user's preseason picks and running totals for one season"""

    __tablename__ = "player_bets"

    id = db.Column(db.Integer, primary_key=True)

    season_id = db.Column(db.String(20), db.ForeignKey("seasons.id"), nullable=False)
    user_id = db.Column(db.String(128), nullable=False)
    display_name = db.Column(db.String(100))

    # Preseason picks: category -> team or player reference
    preseason_bets = db.Column(db.JSON, nullable=False, default=dict)

    # Aggregate totals, written only by the scoring engines
    total_points = db.Column(db.Integer, nullable=False, default=0)
    preseason_points = db.Column(db.Integer, nullable=False, default=0)
    round_points = db.Column(db.JSON, nullable=False, default=dict)
    correct_predictions = db.Column(db.Integer, nullable=False, default=0)
    exact_predictions = db.Column(db.Integer, nullable=False, default=0)
    correct_predictions_map = db.Column(db.JSON, nullable=False, default=dict)
    exact_predictions_map = db.Column(db.JSON, nullable=False, default=dict)
    last_scored_at = db.Column(db.DateTime(timezone=True))

    # Optimistic concurrency check for read-merge-write updates
    version = db.Column(db.Integer, nullable=False)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    season = db.relationship("Season", foreign_keys=[season_id])

    __table_args__ = (
        db.UniqueConstraint("season_id", "user_id", name="unique_season_player"),
        db.Index("idx_player_bets_total", "season_id", "total_points"),
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<PlayerBets {self.user_id} {self.season_id} total={self.total_points}>"

    @property
    def round_points_by_round(self):
        return _int_keyed(self.round_points)

    @property
    def correct_by_round(self):
        return _int_keyed(self.correct_predictions_map)

    @property
    def exact_by_round(self):
        return _int_keyed(self.exact_predictions_map)

    @property
    def latest_round_points(self):
        """Points from the highest-numbered round with an entry"""
        by_round = self.round_points_by_round
        if not by_round:
            return 0
        return by_round[max(by_round)]

    def conservation_gap(self):
        """Difference between the stored total and its components (0 when consistent)"""
        expected = (self.preseason_points or 0) + sum(self.round_points_by_round.values())
        return (self.total_points or 0) - expected

    def to_dict(self):
        """Convert aggregate to dictionary for API responses"""
        return {
            "user_id": self.user_id,
            "display_name": self.display_name,
            "season_id": self.season_id,
            "total_points": self.total_points,
            "preseason_points": self.preseason_points,
            "round_points": self.round_points_by_round,
            "correct_predictions": self.correct_predictions,
            "exact_predictions": self.exact_predictions,
            "correct_predictions_map": self.correct_by_round,
            "exact_predictions_map": self.exact_by_round,
            "latest_round_points": self.latest_round_points,
            "preseason_bets": dict(self.preseason_bets or {}),
            "last_scored_at": (
                self.last_scored_at.isoformat() if self.last_scored_at else None
            ),
        }
