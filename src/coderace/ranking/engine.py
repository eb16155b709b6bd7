"""Recording competitions and querying ratings."""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from coderace.config.schema import RankingConfig
from coderace.errors import AmbiguousOutcomeError, NotFoundError, ValidationError
from coderace.ranking.elo import (
    EloUpdate,
    MatchResult,
    calculate_elo,
    determine_k_factor,
    determine_winner,
    pair_k_factor,
)
from coderace.storage.models import Agent, Competition, TaskExecution
from coderace.storage.repository import Repository

logger = logging.getLogger(__name__)

MERGE_NOTES = "Competition recorded from merge selection"
REJECTION_NOTES = "Competition recorded from rejection of execution {execution_id}"
PAIRWISE_NOTES = "Auto-generated from task executions (agent1: {status1}, agent2: {status2})"


@dataclass
class TaskCompetitionResult:
    """Outcome of a batch over one task's executions"""
    task_id: int
    competitions: list[Competition] = field(default_factory=list)
    ambiguous_pairs: list[tuple[int, int]] = field(default_factory=list)

    @property
    def new_competitions(self) -> int:
        return len(self.competitions)


@dataclass
class LeaderboardEntry:
    rank: int
    agent_id: int
    name: str
    rating: float
    games_played: int
    wins: int
    losses: int
    draws: int
    win_rate: float


@dataclass
class AgentHistoryEntry:
    """One competition seen from a single agent's side"""
    competition_id: int
    task_id: int
    opponent_id: int
    outcome: str  # "win" | "loss" | "draw"
    rating_before: float
    rating_after: float
    created_at: datetime

    @property
    def delta(self) -> float:
        return self.rating_after - self.rating_before


@dataclass
class HeadToHead:
    agent_a_id: int
    agent_b_id: int
    total_games: int = 0
    agent_a_wins: int = 0
    agent_b_wins: int = 0
    draws: int = 0
    competitions: list[Competition] = field(default_factory=list)


class RankingEngine:
    """Turns execution outcomes into persisted ELO updates."""

    def __init__(self, repository: Repository, config: RankingConfig | None = None) -> None:
        self.repository = repository
        self.config = config or RankingConfig()

    def k_factor_for(self, agent: Agent) -> float:
        return determine_k_factor(
            agent.games_played,
            agent.elo_rating,
            provisional_games=self.config.provisional_games,
            master_rating=self.config.master_rating,
            provisional_k=self.config.provisional_k_factor,
            default_k=self.config.default_k_factor,
            master_k=self.config.master_k_factor,
        )

    def record_competition(
        self,
        task_id: int,
        agent1_id: int,
        agent2_id: int,
        agent1_execution_id: int,
        agent2_execution_id: int,
        result: MatchResult,
        notes: str = "",
    ) -> Competition | None:
        """Record one pairwise outcome and update both agents.

        Returns None without writing anything if this task and execution
        pair already has a competition, in either order.

        Raises:
            ValidationError: if both sides are the same agent or execution, or
                an execution belongs to another task or agent.
            NotFoundError: if the task, either agent or either execution does
                not exist.
        """
        if agent1_id == agent2_id:
            raise ValidationError("An agent cannot compete against itself")
        if agent1_execution_id == agent2_execution_id:
            raise ValidationError("An execution cannot compete against itself")
        self._require_task(task_id)
        agent1 = self.repository.get_agent(agent1_id)
        if agent1 is None:
            raise NotFoundError("agent", agent1_id)
        agent2 = self.repository.get_agent(agent2_id)
        if agent2 is None:
            raise NotFoundError("agent", agent2_id)
        self._require_execution_of(agent1_execution_id, task_id, agent1_id)
        self._require_execution_of(agent2_execution_id, task_id, agent2_id)

        existing = self.repository.find_competition(
            task_id, agent1_execution_id, agent2_execution_id
        )
        if existing is not None:
            logger.debug(
                "Competition for task %s executions %s/%s exists (id=%s), skipping",
                task_id, agent1_execution_id, agent2_execution_id, existing.id,
            )
            return None

        k_factor = pair_k_factor(self.k_factor_for(agent1), self.k_factor_for(agent2))
        update = calculate_elo(agent1.elo_rating, agent2.elo_rating, result, k_factor)

        competition = self.repository.create_competition(
            Competition(
                task_id=task_id,
                agent1_id=agent1_id,
                agent2_id=agent2_id,
                agent1_execution_id=agent1_execution_id,
                agent2_execution_id=agent2_execution_id,
                winner_agent_id=_winner_id(result, agent1_id, agent2_id),
                agent1_rating_before=update.agent1_old,
                agent2_rating_before=update.agent2_old,
                agent1_rating_after=update.agent1_new,
                agent2_rating_after=update.agent2_new,
                k_factor=k_factor,
                notes=notes,
            )
        )
        self._apply(agent1_id, agent2_id, result, update)

        logger.info(
            "Recorded competition %s on task %s: %s %.1f -> %.1f, %s %.1f -> %.1f (K=%.1f)",
            competition.id, task_id,
            agent1.name, update.agent1_old, update.agent1_new,
            agent2.name, update.agent2_old, update.agent2_new,
            k_factor,
        )
        return competition

    def _apply(
        self, agent1_id: int, agent2_id: int, result: MatchResult, update: EloUpdate
    ) -> None:
        if result is MatchResult.DRAW:
            self.repository.apply_rating_update(agent1_id, rating=update.agent1_new, draws=1)
            self.repository.apply_rating_update(agent2_id, rating=update.agent2_new, draws=1)
        elif result is MatchResult.AGENT1_WINS:
            self.repository.apply_rating_update(agent1_id, rating=update.agent1_new, wins=1)
            self.repository.apply_rating_update(agent2_id, rating=update.agent2_new, losses=1)
        else:
            self.repository.apply_rating_update(agent1_id, rating=update.agent1_new, losses=1)
            self.repository.apply_rating_update(agent2_id, rating=update.agent2_new, wins=1)

    def process_task_competitions(self, task_id: int) -> TaskCompetitionResult:
        """Pairwise mode: resolve every cross-agent pair from stored statuses.

        Pairs where neither execution completed are reported in
        ``ambiguous_pairs`` and left unrecorded.
        """
        self._require_task(task_id)
        executions = self.repository.list_executions(task_id=task_id)
        batch = TaskCompetitionResult(task_id=task_id)

        for i, first in enumerate(executions):
            for second in executions[i + 1:]:
                if first.agent_id == second.agent_id:
                    continue
                if self.repository.find_competition(task_id, first.id, second.id):
                    continue
                try:
                    result = determine_winner(first.status, second.status)
                except AmbiguousOutcomeError as e:
                    logger.info("Skipping executions %s/%s: %s", first.id, second.id, e)
                    batch.ambiguous_pairs.append((first.id, second.id))
                    continue
                competition = self.record_competition(
                    task_id,
                    first.agent_id,
                    second.agent_id,
                    first.id,
                    second.id,
                    result,
                    notes=PAIRWISE_NOTES.format(status1=first.status, status2=second.status),
                )
                if competition is not None:
                    batch.competitions.append(competition)

        logger.info(
            "Pairwise batch for task %s: %d new, %d ambiguous",
            task_id, batch.new_competitions, len(batch.ambiguous_pairs),
        )
        return batch

    def process_task_competitions_with_winner(
        self,
        task_id: int,
        winner_agent_id: int,
        winner_execution_id: int | None = None,
    ) -> TaskCompetitionResult:
        """Winner-declared mode: the winner beats every other agent on the task.

        The winning side is ``winner_execution_id`` when given, otherwise the
        winner's latest execution of the task.

        Raises:
            NotFoundError: if the winner has no execution for the task.
            ValidationError: if ``winner_execution_id`` is not the winner's
                execution of this task.
        """
        executions = self.repository.list_executions(task_id=task_id)
        if winner_execution_id is None:
            winner_execution = _latest_for_agent(executions, winner_agent_id)
            if winner_execution is None:
                raise NotFoundError(f"execution of agent {winner_agent_id} for task", task_id)
        else:
            self._require_execution_of(winner_execution_id, task_id, winner_agent_id)
            winner_execution = self.repository.get_execution(winner_execution_id)

        batch = TaskCompetitionResult(task_id=task_id)
        for other in executions:
            if other.agent_id == winner_agent_id:
                continue
            competition = self.record_competition(
                task_id,
                winner_agent_id,
                other.agent_id,
                winner_execution.id,
                other.id,
                MatchResult.AGENT1_WINS,
                notes=MERGE_NOTES,
            )
            if competition is not None:
                batch.competitions.append(competition)

        logger.info(
            "Merge batch for task %s (winner agent %s): %d new competitions",
            task_id, winner_agent_id, batch.new_competitions,
        )
        return batch

    def process_rejection(self, execution_id: int) -> TaskCompetitionResult:
        """Penalty: every other agent's latest execution beats the rejected one."""
        rejected = self.repository.get_execution(execution_id)
        if rejected is None:
            raise NotFoundError("execution", execution_id)

        executions = self.repository.list_executions(task_id=rejected.task_id)
        latest_by_agent: dict[int, TaskExecution] = {}
        for execution in executions:
            if execution.agent_id != rejected.agent_id:
                latest_by_agent[execution.agent_id] = execution

        batch = TaskCompetitionResult(task_id=rejected.task_id)
        for other in latest_by_agent.values():
            competition = self.record_competition(
                rejected.task_id,
                other.agent_id,
                rejected.agent_id,
                other.id,
                rejected.id,
                MatchResult.AGENT1_WINS,
                notes=REJECTION_NOTES.format(execution_id=rejected.id),
            )
            if competition is not None:
                batch.competitions.append(competition)

        logger.info(
            "Rejection batch for execution %s: %d new competitions",
            execution_id, batch.new_competitions,
        )
        return batch

    def get_leaderboard(self) -> list[LeaderboardEntry]:
        return [
            LeaderboardEntry(
                rank=rank,
                agent_id=agent.id,
                name=agent.name,
                rating=agent.elo_rating,
                games_played=agent.games_played,
                wins=agent.wins,
                losses=agent.losses,
                draws=agent.draws,
                win_rate=agent.win_rate,
            )
            for rank, agent in enumerate(self.repository.list_agents_by_rating(), start=1)
        ]

    def get_agent_history(self, agent_id: int) -> list[AgentHistoryEntry]:
        """Competitions of one agent in recording order, with its rating after each."""
        if self.repository.get_agent(agent_id) is None:
            raise NotFoundError("agent", agent_id)

        history = []
        for competition in self.repository.list_competitions_for_agent(agent_id):
            if competition.agent1_id == agent_id:
                opponent_id = competition.agent2_id
                before, after = competition.agent1_rating_before, competition.agent1_rating_after
            else:
                opponent_id = competition.agent1_id
                before, after = competition.agent2_rating_before, competition.agent2_rating_after

            if competition.winner_agent_id is None:
                outcome = "draw"
            elif competition.winner_agent_id == agent_id:
                outcome = "win"
            else:
                outcome = "loss"

            history.append(AgentHistoryEntry(
                competition_id=competition.id,
                task_id=competition.task_id,
                opponent_id=opponent_id,
                outcome=outcome,
                rating_before=before,
                rating_after=after,
                created_at=competition.created_at,
            ))
        return history

    def get_head_to_head(self, agent_a_id: int, agent_b_id: int) -> HeadToHead:
        for agent_id in (agent_a_id, agent_b_id):
            if self.repository.get_agent(agent_id) is None:
                raise NotFoundError("agent", agent_id)

        record = HeadToHead(agent_a_id=agent_a_id, agent_b_id=agent_b_id)
        for competition in self.repository.list_competitions_between(agent_a_id, agent_b_id):
            record.competitions.append(competition)
            record.total_games += 1
            if competition.winner_agent_id is None:
                record.draws += 1
            elif competition.winner_agent_id == agent_a_id:
                record.agent_a_wins += 1
            else:
                record.agent_b_wins += 1
        return record

    def list_competitions(self, task_id: int | None = None) -> list[Competition]:
        return self.repository.list_competitions(task_id=task_id)

    def get_competition(self, competition_id: int) -> Competition:
        competition = self.repository.get_competition(competition_id)
        if competition is None:
            raise NotFoundError("competition", competition_id)
        return competition

    def _require_execution_of(self, execution_id: int, task_id: int, agent_id: int) -> None:
        execution = self.repository.get_execution(execution_id)
        if execution is None:
            raise NotFoundError("execution", execution_id)
        if execution.task_id != task_id:
            raise ValidationError(f"Execution {execution_id} does not belong to task {task_id}")
        if execution.agent_id != agent_id:
            raise ValidationError(f"Execution {execution_id} was not run by agent {agent_id}")

    def _require_task(self, task_id: int) -> None:
        if self.repository.get_task(task_id) is None:
            raise NotFoundError("task", task_id)


def _winner_id(result: MatchResult, agent1_id: int, agent2_id: int) -> int | None:
    if result is MatchResult.AGENT1_WINS:
        return agent1_id
    if result is MatchResult.AGENT2_WINS:
        return agent2_id
    return None


def _latest_for_agent(executions: list[TaskExecution], agent_id: int) -> TaskExecution | None:
    latest = None
    for execution in executions:
        if execution.agent_id == agent_id:
            latest = execution
    return latest
