"""Tests for orchestrator wiring"""
from coderace.execution.subprocess_runner import SubprocessRunner
from coderace.orchestration.factory import build_orchestrator, open_repository


def test_open_repository_creates_schema(test_config):
    repository = open_repository(test_config)
    try:
        assert repository.list_projects() == []
        assert repository.db_path.name == "coderace.db"
    finally:
        repository.close()


def test_build_orchestrator_wires_shared_collaborators(test_config, fake_tmux):
    test_config.waiting.threshold_seconds = 12
    orchestrator = build_orchestrator(test_config, tmux=fake_tmux)
    try:
        assert orchestrator.tmux is fake_tmux
        assert orchestrator.cleanup.tmux is fake_tmux
        assert orchestrator.cleanup.detector is orchestrator.detector
        assert orchestrator.cleanup.repository is orchestrator.repository
        assert orchestrator.ranking.repository is orchestrator.repository
        assert orchestrator.detector.threshold_seconds == 12
        assert orchestrator.session_config.prompt_delay_seconds == 0
        assert isinstance(orchestrator.cleanup.runner, SubprocessRunner)
    finally:
        orchestrator.repository.close()
