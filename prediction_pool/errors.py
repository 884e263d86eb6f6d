"""
Error taxonomy for the scoring engine.

Every engine failure that an operator or a request handler has to act on is a
PoolError. Storage errors are not wrapped; they propagate as SQLAlchemyError.
"""


class PoolError(Exception):
    """Base class for prediction pool errors"""

    status_code = 400
    error_type = "pool_error"

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        """Convert error to dictionary for API responses"""
        data = {"error": self.message, "type": self.error_type}
        if self.details:
            data["details"] = self.details
        return data


class NotFoundError(PoolError):
    status_code = 404
    error_type = "not_found"


class SeasonNotFoundError(NotFoundError):
    def __init__(self, season_id):
        super().__init__(f"Season {season_id} not found", season_id=season_id)
        self.season_id = season_id


class RoundNotFoundError(NotFoundError):
    def __init__(self, season_id, round_number):
        super().__init__(
            f"Round {round_number} not found in season {season_id}",
            season_id=season_id,
            round_number=round_number,
        )
        self.season_id = season_id
        self.round_number = round_number


class PlayerNotFoundError(NotFoundError):
    def __init__(self, season_id, user_id):
        super().__init__(
            f"No predictions recorded for user {user_id} in season {season_id}",
            season_id=season_id,
            user_id=user_id,
        )
        self.season_id = season_id
        self.user_id = user_id


class InvalidStateError(PoolError):
    status_code = 409
    error_type = "invalid_state"


class AggregateInvariantError(InvalidStateError):
    error_type = "aggregate_invariant"


class InvalidPredictionError(PoolError):
    status_code = 400
    error_type = "invalid_prediction"


class BettingClosedError(PoolError):
    status_code = 403
    error_type = "betting_closed"


class ConcurrentModificationError(PoolError):
    status_code = 409
    error_type = "concurrent_modification"
