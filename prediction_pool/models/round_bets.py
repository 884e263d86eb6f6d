from datetime import datetime, timezone

from prediction_pool import db

# Cached scoring fields written on each bet by the last scoring pass
SCORING_FIELDS = ("points", "is_exact_result", "is_correct_direction", "is_unique_bet")


class RoundBets(db.Model):
    """One user's list of match predictions for one round"""

    __tablename__ = "round_bets"

    id = db.Column(db.Integer, primary_key=True)

    season_id = db.Column(db.String(20), db.ForeignKey("seasons.id"), nullable=False)
    user_id = db.Column(db.String(128), nullable=False)
    round_number = db.Column(db.Integer, nullable=False)

    # [{"match_id", "home_score", "away_score", "points", "is_exact_result",
    #   "is_correct_direction", "is_unique_bet"}, ...]
    bets = db.Column(db.JSON, nullable=False, default=list)

    submitted_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        db.UniqueConstraint(
            "season_id", "user_id", "round_number", name="unique_user_round_bets"
        ),
        db.Index("idx_round_bets_round", "season_id", "round_number"),
    )

    def __repr__(self):
        return f"<RoundBets {self.user_id} round={self.round_number} bets={len(self.bets or [])}>"

    def bets_by_match(self):
        """Copies of the stored bets keyed by match id"""
        return {bet["match_id"]: dict(bet) for bet in (self.bets or [])}

    def scored_bets(self):
        """Bets carrying points from a previous scoring pass"""
        return [bet for bet in (self.bets or []) if bet.get("points") is not None]

    def recorded_points(self):
        return sum(bet["points"] for bet in self.scored_bets())

    def recorded_counts(self):
        """(correct-direction, exact) counts recorded on the stored bets"""
        scored = self.scored_bets()
        correct = sum(1 for bet in scored if bet.get("is_correct_direction"))
        exact = sum(1 for bet in scored if bet.get("is_exact_result"))
        return correct, exact

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "season_id": self.season_id,
            "round": self.round_number,
            "bets": [dict(bet) for bet in (self.bets or [])],
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
        }
