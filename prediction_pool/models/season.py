from datetime import datetime, timezone

from prediction_pool import db

PRESEASON_CATEGORIES = (
    "champion",
    "cup",
    "relegation1",
    "relegation2",
    "top_scorer",
    "top_assists",
)


class Season(db.Model):
    __tablename__ = "seasons"

    # e.g. "2025-2026"
    id = db.Column(db.String(20), primary_key=True)
    name = db.Column(db.String(50), nullable=False)

    # Preseason predictions close at season_start
    season_start = db.Column(db.DateTime(timezone=True))
    season_end = db.Column(db.DateTime(timezone=True))

    # Final preseason outcomes (team or player references, null until finalized)
    champion = db.Column(db.String(100))
    cup = db.Column(db.String(100))
    relegation1 = db.Column(db.String(100))
    relegation2 = db.Column(db.String(100))
    top_scorer = db.Column(db.String(100))
    top_assists = db.Column(db.String(100))

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    rounds = db.relationship(
        "Round",
        backref="season",
        lazy="dynamic",
        cascade="all, delete-orphan",
        order_by="Round.number",
    )

    def __repr__(self):
        return f"<Season {self.id}>"

    @staticmethod
    def create_season(season_id, season_start=None, season_end=None):
        """Create a new season"""
        season = Season(
            id=season_id,
            name=f"{season_id} Season",
            season_start=season_start,
            season_end=season_end,
        )
        db.session.add(season)
        return season

    def preseason_outcomes(self):
        """Finalized preseason outcomes keyed by category"""
        return {category: getattr(self, category) for category in PRESEASON_CATEGORIES}

    def set_preseason_outcomes(self, **outcomes):
        """Set finalized outcomes for one or more preseason categories"""
        for category, value in outcomes.items():
            if category not in PRESEASON_CATEGORIES:
                raise ValueError(f"Unknown preseason category: {category}")
            setattr(self, category, value or None)

    def has_preseason_outcomes(self):
        return any(value for value in self.preseason_outcomes().values())

    def to_dict(self):
        """Convert season to dictionary for API responses"""
        return {
            "id": self.id,
            "name": self.name,
            "season_start": self.season_start.isoformat() if self.season_start else None,
            "season_end": self.season_end.isoformat() if self.season_end else None,
            "preseason_outcomes": self.preseason_outcomes(),
        }
