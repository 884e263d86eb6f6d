from prediction_pool import db  # noqa: F401 - imported for model imports

from .match import Match
from .player_bets import PlayerBets
from .reconciliation_run import ReconciliationRun
from .round import Round
from .round_bets import RoundBets
from .season import Season

__all__ = [
    "Season",
    "Round",
    "Match",
    "PlayerBets",
    "RoundBets",
    "ReconciliationRun",
]
