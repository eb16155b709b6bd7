"""Wire orchestration components from configuration."""

from coderace.config.schema import CoderaceConfig
from coderace.execution.protocol import CommandRunner
from coderace.execution.subprocess_runner import SubprocessRunner
from coderace.orchestration.background import BackgroundTasks
from coderace.orchestration.cleanup import CleanupPipeline
from coderace.orchestration.executions import ExecutionOrchestrator
from coderace.orchestration.waiting import WaitingDetector
from coderace.ranking.engine import RankingEngine
from coderace.storage.repository import Repository
from coderace.tmux.manager import TmuxManager


def open_repository(config: CoderaceConfig) -> Repository:
    """Open the configured database, creating tables on first use."""
    repository = Repository(
        config.database.resolve_path(),
        busy_timeout_ms=config.database.busy_timeout_ms,
    )
    repository.init_schema()
    return repository


def build_orchestrator(
    config: CoderaceConfig,
    repository: Repository | None = None,
    tmux: TmuxManager | None = None,
    runner: CommandRunner | None = None,
) -> ExecutionOrchestrator:
    """Build an orchestrator with all collaborators; any of them may be injected."""
    repository = repository or open_repository(config)
    tmux = tmux or TmuxManager()
    runner = runner or SubprocessRunner(shell=config.session.shell)

    detector = WaitingDetector(
        capture=tmux.capture,
        list_sessions=tmux.list_session_names,
        threshold_seconds=config.waiting.threshold_seconds,
    )
    cleanup = CleanupPipeline(
        tmux=tmux,
        runner=runner,
        repository=repository,
        detector=detector,
        teardown_timeout=config.cleanup.teardown_timeout_seconds,
    )
    return ExecutionOrchestrator(
        repository=repository,
        tmux=tmux,
        detector=detector,
        cleanup=cleanup,
        ranking=RankingEngine(repository, config.ranking),
        background=BackgroundTasks(),
        session_config=config.session,
    )
