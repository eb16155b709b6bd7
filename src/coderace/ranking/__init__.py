"""ELO ranking of agents."""

from coderace.ranking.elo import (
    EloUpdate,
    MatchResult,
    calculate_elo,
    determine_k_factor,
    determine_winner,
    expected_score,
)
from coderace.ranking.engine import RankingEngine, TaskCompetitionResult

__all__ = [
    "EloUpdate",
    "MatchResult",
    "RankingEngine",
    "TaskCompetitionResult",
    "calculate_elo",
    "determine_k_factor",
    "determine_winner",
    "expected_score",
]
