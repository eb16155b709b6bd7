"""Tests for RankingEngine"""
import pytest

from coderace.config.schema import RankingConfig
from coderace.errors import NotFoundError, ValidationError
from coderace.ranking.elo import MatchResult
from coderace.ranking.engine import RankingEngine
from coderace.storage.models import ExecutionStatus


def _execution(repository, seeded, agent, status=ExecutionStatus.COMPLETED):
    execution = repository.create_execution(
        seeded.task.id, agent.id, seeded.base_directory.id
    )
    repository.update_execution_status(execution.id, status)
    return repository.get_execution(execution.id)


def test_record_competition_updates_both_agents(repository, seeded, ranking):
    claude, codex, _ = seeded.agents
    e1 = _execution(repository, seeded, claude)
    e2 = _execution(repository, seeded, codex)

    competition = ranking.record_competition(
        seeded.task.id, claude.id, codex.id, e1.id, e2.id, MatchResult.AGENT1_WINS, "manual"
    )

    assert competition is not None
    assert competition.winner_agent_id == claude.id
    # both agents are provisional, so K is 64
    assert competition.k_factor == 64
    assert competition.agent1_rating_after == pytest.approx(1532)
    assert competition.agent2_rating_after == pytest.approx(1468)

    winner = repository.get_agent(claude.id)
    loser = repository.get_agent(codex.id)
    assert (winner.games_played, winner.wins, winner.losses) == (1, 1, 0)
    assert (loser.games_played, loser.wins, loser.losses) == (1, 0, 1)
    assert winner.elo_rating == pytest.approx(1532)
    assert loser.elo_rating == pytest.approx(1468)


def test_record_competition_uses_configured_k_table(repository, seeded):
    engine = RankingEngine(repository, RankingConfig(provisional_games=0, default_k_factor=32))
    claude, codex, _ = seeded.agents
    e1 = _execution(repository, seeded, claude)
    e2 = _execution(repository, seeded, codex)

    engine.record_competition(seeded.task.id, claude.id, codex.id, e1.id, e2.id,
                              MatchResult.AGENT1_WINS)

    assert repository.get_agent(claude.id).elo_rating == pytest.approx(1516)
    assert repository.get_agent(codex.id).elo_rating == pytest.approx(1484)


def test_draw_counts_as_draw_for_both(repository, seeded, ranking):
    claude, codex, _ = seeded.agents
    e1 = _execution(repository, seeded, claude)
    e2 = _execution(repository, seeded, codex)

    competition = ranking.record_competition(
        seeded.task.id, claude.id, codex.id, e1.id, e2.id, MatchResult.DRAW
    )

    assert competition.winner_agent_id is None
    assert repository.get_agent(claude.id).draws == 1
    assert repository.get_agent(codex.id).draws == 1


def test_duplicate_competition_in_either_order_is_skipped(repository, seeded, ranking):
    claude, codex, _ = seeded.agents
    e1 = _execution(repository, seeded, claude)
    e2 = _execution(repository, seeded, codex)

    first = ranking.record_competition(
        seeded.task.id, claude.id, codex.id, e1.id, e2.id, MatchResult.AGENT1_WINS
    )
    again = ranking.record_competition(
        seeded.task.id, claude.id, codex.id, e1.id, e2.id, MatchResult.AGENT1_WINS
    )
    reversed_order = ranking.record_competition(
        seeded.task.id, codex.id, claude.id, e2.id, e1.id, MatchResult.AGENT1_WINS
    )

    assert first is not None
    assert again is None
    assert reversed_order is None
    assert len(repository.list_competitions(task_id=seeded.task.id)) == 1
    assert repository.get_agent(claude.id).games_played == 1


def test_record_competition_unknown_agent(repository, seeded, ranking):
    claude = seeded.agents[0]
    with pytest.raises(NotFoundError):
        ranking.record_competition(seeded.task.id, claude.id, 999, 1, 2, MatchResult.DRAW)


def test_record_competition_unknown_task_or_execution(repository, seeded, ranking):
    claude, codex, _ = seeded.agents
    e1 = _execution(repository, seeded, claude)
    e2 = _execution(repository, seeded, codex)

    with pytest.raises(NotFoundError, match="task 9999"):
        ranking.record_competition(9999, claude.id, codex.id, e1.id, e2.id,
                                   MatchResult.AGENT1_WINS)
    with pytest.raises(NotFoundError, match="execution 888"):
        ranking.record_competition(seeded.task.id, claude.id, codex.id, e1.id, 888,
                                   MatchResult.AGENT1_WINS)

    assert repository.list_competitions() == []
    assert repository.get_agent(claude.id).elo_rating == pytest.approx(1500)


def test_record_competition_execution_of_other_task_or_agent(repository, seeded, ranking):
    claude, codex, gemini = seeded.agents
    e1 = _execution(repository, seeded, claude)
    e2 = _execution(repository, seeded, codex)
    other_task = repository.create_task(seeded.project.id, seeded.base_directory.id, "Other")
    foreign = repository.create_execution(other_task.id, codex.id, seeded.base_directory.id)

    with pytest.raises(ValidationError, match="does not belong to task"):
        ranking.record_competition(seeded.task.id, claude.id, codex.id, e1.id, foreign.id,
                                   MatchResult.AGENT1_WINS)
    with pytest.raises(ValidationError, match="not run by agent"):
        ranking.record_competition(seeded.task.id, claude.id, gemini.id, e1.id, e2.id,
                                   MatchResult.AGENT1_WINS)

    assert repository.list_competitions() == []


def test_record_competition_against_itself(repository, seeded, ranking):
    claude = seeded.agents[0]
    with pytest.raises(ValidationError):
        ranking.record_competition(seeded.task.id, claude.id, claude.id, 1, 2, MatchResult.DRAW)


def test_declared_winner_batch_creates_n_minus_one_then_zero(repository, seeded, ranking):
    claude, codex, gemini = seeded.agents
    winner_execution = _execution(repository, seeded, claude)
    _execution(repository, seeded, codex, ExecutionStatus.FAILED)
    _execution(repository, seeded, gemini, ExecutionStatus.RUNNING)

    batch = ranking.process_task_competitions_with_winner(seeded.task.id, claude.id)

    assert batch.new_competitions == 2
    assert all(c.winner_agent_id == claude.id for c in batch.competitions)
    assert all(c.agent1_execution_id == winner_execution.id for c in batch.competitions)
    assert {c.agent2_id for c in batch.competitions} == {codex.id, gemini.id}
    assert all(c.notes == "Competition recorded from merge selection" for c in batch.competitions)

    rerun = ranking.process_task_competitions_with_winner(seeded.task.id, claude.id)
    assert rerun.new_competitions == 0
    assert len(repository.list_competitions(task_id=seeded.task.id)) == 2


def test_declared_winner_uses_given_execution(repository, seeded, ranking):
    claude, codex, _ = seeded.agents
    merged = _execution(repository, seeded, claude)
    _execution(repository, seeded, codex, ExecutionStatus.FAILED)
    _execution(repository, seeded, claude, ExecutionStatus.FAILED)

    batch = ranking.process_task_competitions_with_winner(seeded.task.id, claude.id, merged.id)

    assert [c.agent1_execution_id for c in batch.competitions] == [merged.id]


def test_declared_winner_execution_must_be_the_winners(repository, seeded, ranking):
    claude, codex, _ = seeded.agents
    _execution(repository, seeded, claude)
    codex_execution = _execution(repository, seeded, codex)

    with pytest.raises(ValidationError):
        ranking.process_task_competitions_with_winner(
            seeded.task.id, claude.id, codex_execution.id
        )


def test_declared_winner_without_execution(repository, seeded, ranking):
    claude, codex, _ = seeded.agents
    _execution(repository, seeded, codex)

    with pytest.raises(NotFoundError):
        ranking.process_task_competitions_with_winner(seeded.task.id, claude.id)


def test_pairwise_batch_resolves_statuses(repository, seeded, ranking):
    claude, codex, gemini = seeded.agents
    done = _execution(repository, seeded, claude, ExecutionStatus.COMPLETED)
    failed = _execution(repository, seeded, codex, ExecutionStatus.FAILED)
    rejected = _execution(repository, seeded, gemini, ExecutionStatus.REJECTED)

    batch = ranking.process_task_competitions(seeded.task.id)

    assert batch.new_competitions == 2
    assert all(c.winner_agent_id == claude.id for c in batch.competitions)
    assert batch.ambiguous_pairs == [(failed.id, rejected.id)]
    assert batch.competitions[0].notes == (
        "Auto-generated from task executions (agent1: completed, agent2: failed)"
    )
    assert batch.competitions[0].agent1_execution_id == done.id

    rerun = ranking.process_task_competitions(seeded.task.id)
    assert rerun.new_competitions == 0
    assert rerun.ambiguous_pairs == [(failed.id, rejected.id)]


def test_pairwise_batch_skips_same_agent_pairs(repository, seeded, ranking):
    claude = seeded.agents[0]
    _execution(repository, seeded, claude, ExecutionStatus.COMPLETED)
    _execution(repository, seeded, claude, ExecutionStatus.FAILED)

    batch = ranking.process_task_competitions(seeded.task.id)

    assert batch.new_competitions == 0
    assert batch.ambiguous_pairs == []


def test_pairwise_batch_unknown_task(ranking):
    with pytest.raises(NotFoundError):
        ranking.process_task_competitions(42)


def test_rejection_loses_to_latest_execution_of_each_other_agent(repository, seeded, ranking):
    claude, codex, gemini = seeded.agents
    rejected = _execution(repository, seeded, claude, ExecutionStatus.REJECTED)
    _execution(repository, seeded, codex, ExecutionStatus.FAILED)
    codex_latest = _execution(repository, seeded, codex, ExecutionStatus.RUNNING)
    gemini_execution = _execution(repository, seeded, gemini, ExecutionStatus.RUNNING)

    batch = ranking.process_rejection(rejected.id)

    assert batch.new_competitions == 2
    assert {c.agent1_execution_id for c in batch.competitions} == {
        codex_latest.id, gemini_execution.id
    }
    assert all(c.agent2_id == claude.id for c in batch.competitions)
    assert all(c.winner_agent_id != claude.id for c in batch.competitions)
    assert repository.get_agent(claude.id).losses == 2

    assert ranking.process_rejection(rejected.id).new_competitions == 0


def test_rating_equals_initial_plus_history_deltas(repository, seeded, ranking):
    claude, codex, gemini = seeded.agents
    _execution(repository, seeded, claude, ExecutionStatus.COMPLETED)
    _execution(repository, seeded, codex, ExecutionStatus.FAILED)
    _execution(repository, seeded, gemini, ExecutionStatus.COMPLETED)
    ranking.process_task_competitions(seeded.task.id)

    for agent in seeded.agents:
        history = ranking.get_agent_history(agent.id)
        current = repository.get_agent(agent.id).elo_rating
        assert current == pytest.approx(1500 + sum(entry.delta for entry in history))


def test_agent_history_outcomes(repository, seeded, ranking):
    claude, codex, _ = seeded.agents
    e1 = _execution(repository, seeded, claude)
    e2 = _execution(repository, seeded, codex)
    ranking.record_competition(seeded.task.id, codex.id, claude.id, e2.id, e1.id,
                               MatchResult.AGENT2_WINS)

    claude_history = ranking.get_agent_history(claude.id)
    codex_history = ranking.get_agent_history(codex.id)

    assert [h.outcome for h in claude_history] == ["win"]
    assert claude_history[0].opponent_id == codex.id
    assert claude_history[0].delta > 0
    assert [h.outcome for h in codex_history] == ["loss"]


def test_agent_history_unknown_agent(ranking):
    with pytest.raises(NotFoundError):
        ranking.get_agent_history(7)


def test_leaderboard_orders_by_rating(repository, seeded, ranking):
    claude, codex, gemini = seeded.agents
    _execution(repository, seeded, gemini)
    _execution(repository, seeded, claude, ExecutionStatus.FAILED)
    _execution(repository, seeded, codex, ExecutionStatus.FAILED)
    ranking.process_task_competitions_with_winner(seeded.task.id, gemini.id)

    board = ranking.get_leaderboard()

    assert board[0].name == "gemini"
    assert board[0].rank == 1
    assert board[0].wins == 2
    assert board[0].win_rate == pytest.approx(1.0)
    assert [entry.rank for entry in board] == [1, 2, 3]


def test_head_to_head(repository, seeded, ranking):
    claude, codex, _ = seeded.agents
    for result in (MatchResult.AGENT1_WINS, MatchResult.AGENT2_WINS, MatchResult.DRAW,
                   MatchResult.AGENT1_WINS):
        e1 = _execution(repository, seeded, claude)
        e2 = _execution(repository, seeded, codex)
        ranking.record_competition(seeded.task.id, claude.id, codex.id, e1.id, e2.id, result)

    record = ranking.get_head_to_head(codex.id, claude.id)

    assert record.total_games == 4
    assert record.agent_a_wins == 1
    assert record.agent_b_wins == 2
    assert record.draws == 1


def test_get_competition(repository, seeded, ranking):
    claude, codex, _ = seeded.agents
    e1 = _execution(repository, seeded, claude)
    e2 = _execution(repository, seeded, codex)
    created = ranking.record_competition(seeded.task.id, claude.id, codex.id, e1.id, e2.id,
                                         MatchResult.DRAW, "tie")

    assert ranking.get_competition(created.id).notes == "tie"
    assert [c.id for c in ranking.list_competitions()] == [created.id]
    with pytest.raises(NotFoundError):
        ranking.get_competition(created.id + 1)
