from datetime import datetime, timezone

from prediction_pool import db

RESULT_FINAL = "final"
RESULT_PENDING = "pending"
RESULT_PARTIAL = "partial"
RESULT_CANCELLED = "cancelled"


class Match(db.Model):
    __tablename__ = "matches"

    id = db.Column(db.Integer, primary_key=True)
    round_id = db.Column(db.Integer, db.ForeignKey("rounds.id"), nullable=False)

    # Teams
    home_team = db.Column(db.String(100), nullable=False)
    away_team = db.Column(db.String(100), nullable=False)
    kickoff = db.Column(db.DateTime(timezone=True))

    # Actual result (both present or both absent)
    actual_home_score = db.Column(db.Integer)
    actual_away_score = db.Column(db.Integer)

    # Status
    is_cancelled = db.Column(db.Boolean, default=False, nullable=False)
    points_calculated = db.Column(db.Boolean, default=False, nullable=False)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("idx_match_round", "round_id"),
        db.CheckConstraint("home_team != away_team", name="different_teams"),
    )

    def __repr__(self):
        return f"<Match {self.id} {self.home_team} vs {self.away_team}>"

    @property
    def result_state(self):
        """Classify the stored result of this match"""
        if self.is_cancelled:
            return RESULT_CANCELLED

        home_set = self.actual_home_score is not None
        away_set = self.actual_away_score is not None

        if home_set and away_set:
            return RESULT_FINAL
        if home_set or away_set:
            return RESULT_PARTIAL
        return RESULT_PENDING

    @property
    def is_scorable(self):
        return self.result_state == RESULT_FINAL

    @property
    def has_stale_result(self):
        """A cancelled match must not carry an actual score"""
        return self.is_cancelled and (
            self.actual_home_score is not None or self.actual_away_score is not None
        )

    def set_result(self, home_score, away_score):
        """Record the actual scoreline"""
        for value in (home_score, away_score):
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValueError("Scores must be non-negative integers")

        self.actual_home_score = home_score
        self.actual_away_score = away_score

    def clear_result(self):
        self.actual_home_score = None
        self.actual_away_score = None

    def cancel(self):
        """Cancel the match; cancelled matches carry no result"""
        self.is_cancelled = True
        self.clear_result()

    def to_dict(self):
        """Convert match to dictionary for API responses"""
        return {
            "id": self.id,
            "round": self.round.number if self.round else None,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "kickoff": self.kickoff.isoformat() if self.kickoff else None,
            "actual_home_score": self.actual_home_score,
            "actual_away_score": self.actual_away_score,
            "is_cancelled": self.is_cancelled,
            "points_calculated": self.points_calculated,
            "result_state": self.result_state,
        }
