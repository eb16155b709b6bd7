"""ELO rating math.

All functions here are pure; persistence lives in :mod:`coderace.ranking.engine`.
"""
from dataclasses import dataclass
from enum import Enum

from coderace.config import defaults
from coderace.errors import AmbiguousOutcomeError
from coderace.storage.models import ExecutionStatus


class MatchResult(float, Enum):
    """Outcome from agent1's point of view, valued as agent1's actual score."""
    AGENT1_WINS = 1.0
    DRAW = 0.5
    AGENT2_WINS = 0.0


@dataclass(frozen=True)
class EloUpdate:
    """Ratings before and after one competition"""
    agent1_old: float
    agent2_old: float
    agent1_new: float
    agent2_new: float
    agent1_delta: float
    agent2_delta: float
    k_factor: float


def expected_score(rating_a: float, rating_b: float) -> float:
    """Probability that A beats B."""
    return 1.0 / (1.0 + 10 ** ((rating_b - rating_a) / 400.0))


def calculate_elo(
    agent1_rating: float,
    agent2_rating: float,
    result: MatchResult,
    k_factor: float = defaults.DEFAULT_K_FACTOR,
) -> EloUpdate:
    """Compute new ratings for both agents.

    agent2's delta is the negation of agent1's, so the pair is zero-sum.
    """
    expected1 = expected_score(agent1_rating, agent2_rating)
    delta1 = k_factor * (result.value - expected1)
    delta2 = -delta1
    return EloUpdate(
        agent1_old=agent1_rating,
        agent2_old=agent2_rating,
        agent1_new=agent1_rating + delta1,
        agent2_new=agent2_rating + delta2,
        agent1_delta=delta1,
        agent2_delta=delta2,
        k_factor=k_factor,
    )


def determine_k_factor(
    games_played: int,
    rating: float,
    *,
    provisional_games: int = defaults.PROVISIONAL_GAMES,
    master_rating: float = defaults.MASTER_RATING,
    provisional_k: float = defaults.MAX_K_FACTOR,
    default_k: float = defaults.DEFAULT_K_FACTOR,
    master_k: float = defaults.MIN_K_FACTOR,
) -> float:
    """K-factor for one agent: high while provisional, low once rated as a master."""
    if games_played < provisional_games:
        return provisional_k
    if rating < master_rating:
        return default_k
    return master_k


def pair_k_factor(k1: float, k2: float) -> float:
    """Effective K for a pair is the mean of both agents' K."""
    return (k1 + k2) / 2.0


def determine_winner(status1: str, status2: str) -> MatchResult:
    """Resolve a pairwise outcome from two executions' stored statuses.

    Raises:
        AmbiguousOutcomeError: if neither execution completed.
    """
    done1 = status1 == ExecutionStatus.COMPLETED.value
    done2 = status2 == ExecutionStatus.COMPLETED.value
    if done1 and done2:
        return MatchResult.DRAW
    if done1:
        return MatchResult.AGENT1_WINS
    if done2:
        return MatchResult.AGENT2_WINS
    raise AmbiguousOutcomeError(
        f"Cannot determine winner: neither execution completed ({status1} vs {status2})"
    )
