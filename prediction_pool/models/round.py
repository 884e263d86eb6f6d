from datetime import datetime, timezone

from prediction_pool import db


class Round(db.Model):
    __tablename__ = "rounds"

    id = db.Column(db.Integer, primary_key=True)

    season_id = db.Column(db.String(20), db.ForeignKey("seasons.id"), nullable=False)
    number = db.Column(db.Integer, nullable=False)

    # Round begins and predictions lock at the same instant
    start_time = db.Column(db.DateTime(timezone=True))
    is_active = db.Column(db.Boolean, default=False)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    matches = db.relationship(
        "Match",
        backref="round",
        lazy="select",
        cascade="all, delete-orphan",
        order_by="Match.id",
    )

    __table_args__ = (
        db.UniqueConstraint("season_id", "number", name="unique_season_round"),
        db.CheckConstraint("number > 0", name="positive_round_number"),
        db.Index("idx_round_season_number", "season_id", "number"),
    )

    def __repr__(self):
        return f"<Round {self.season_id} #{self.number}>"

    @staticmethod
    def create_round(season_id, number, start_time=None):
        """Create a new round"""
        round_ = Round(season_id=season_id, number=number, start_time=start_time)
        db.session.add(round_)
        return round_

    @property
    def match_ids(self):
        return [match.id for match in self.matches]

    def add_match(self, home_team, away_team, kickoff=None):
        """Add a fixture to this round"""
        from .match import Match

        match = Match(home_team=home_team, away_team=away_team, kickoff=kickoff)
        self.matches.append(match)
        return match

    @property
    def is_fully_scored(self):
        """All scorable matches have had their points applied"""
        scorable = [m for m in self.matches if m.is_scorable]
        return bool(scorable) and all(m.points_calculated for m in scorable)

    def to_dict(self, include_matches=False):
        """Convert round to dictionary for API responses"""
        data = {
            "season_id": self.season_id,
            "number": self.number,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "is_active": self.is_active,
            "matches": self.match_ids,
        }

        if include_matches:
            data["matches_details"] = [match.to_dict() for match in self.matches]

        return data
