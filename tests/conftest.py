"""Pytest configuration and fixtures."""

from pathlib import Path
from types import SimpleNamespace

import pytest

from coderace.config.schema import CoderaceConfig, SessionConfig
from coderace.errors import SessionError
from coderace.execution.protocol import CommandResult, CommandRunner
from coderace.orchestration.background import BackgroundTasks
from coderace.orchestration.cleanup import CleanupPipeline
from coderace.orchestration.executions import ExecutionOrchestrator
from coderace.orchestration.waiting import WaitingDetector
from coderace.output import formatter as formatter_module
from coderace.ranking.engine import RankingEngine
from coderace.storage.repository import Repository
from coderace.tmux.manager import PaneSnapshot, parse_task_session_name


class FakeTmux:
    """In-memory stand-in for TmuxManager."""

    def __init__(self) -> None:
        self.sessions: dict[str, dict] = {}
        self.killed: list[str] = []
        self.attached: list[str] = []
        self.fail_create = False
        self.fail_keys: set[str] = set()

    def create_session(self, name: str, start_directory: str | None = None) -> str:
        if self.fail_create or name in self.sessions:
            raise SessionError(f"cannot create {name}")
        self.sessions[name] = {"cwd": start_directory, "keys": [], "content": "$ ", "cursor": (2, 0)}
        return name

    def has_session(self, name: str) -> bool:
        return name in self.sessions

    def kill_session(self, name: str) -> None:
        if name not in self.sessions:
            raise SessionError(f"tmux session {name} does not exist")
        del self.sessions[name]
        self.killed.append(name)

    def send_keys(self, name: str, text: str, enter: bool = True, literal: bool = False) -> None:
        if name not in self.sessions:
            raise SessionError(f"tmux session {name} does not exist")
        if text in self.fail_keys:
            raise SessionError(f"send-keys failed for {text!r}")
        session = self.sessions[name]
        session["keys"].append(text)
        session["content"] += text + "\n"

    def keys(self, name: str) -> list[str]:
        return self.sessions[name]["keys"]

    def set_screen(self, name: str, content: str, cursor: tuple[int, int] = (0, 0)) -> None:
        self.sessions[name]["content"] = content
        self.sessions[name]["cursor"] = cursor

    def capture(self, name: str) -> PaneSnapshot:
        if name not in self.sessions:
            raise SessionError(f"tmux session {name} does not exist")
        session = self.sessions[name]
        return PaneSnapshot(content=session["content"], cursor=session["cursor"])

    def list_session_names(self) -> list[str]:
        return list(self.sessions)

    def list_sessions(self, preview_lines: int = 10) -> list[dict]:
        result = []
        for name, session in self.sessions.items():
            ids = parse_task_session_name(name)
            result.append({
                "name": name,
                "created": None,
                "windows": 1,
                "preview": "\n".join(session["content"].splitlines()[-preview_lines:]),
                "is_task": name.startswith("task_"),
                "task_id": ids[0] if ids else None,
                "agent_id": ids[1] if ids else None,
            })
        return result

    def attach(self, name: str) -> None:
        if name not in self.sessions:
            raise SessionError(f"tmux session {name} does not exist")
        self.attached.append(name)


class FakeRunner(CommandRunner):
    """Records commands instead of running them."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str | None]] = []
        self.results: dict[str, CommandResult] = {}

    async def run(self, command, cwd=None, timeout=None) -> CommandResult:
        self.calls.append((command, str(cwd) if cwd else None))
        return self.results.get(command, CommandResult(command=command, exit_code=0, output=""))

    async def health_check(self) -> bool:
        return True


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_formatter():
    """Each test gets a fresh global formatter."""
    formatter_module._formatter = None
    yield
    formatter_module._formatter = None


@pytest.fixture
def fast_session_config() -> SessionConfig:
    return SessionConfig(
        step_settle_seconds=0,
        settle_timeout_seconds=0,
        prompt_delay_seconds=0,
    )


@pytest.fixture
def test_config(tmp_path: Path, fast_session_config: SessionConfig) -> CoderaceConfig:
    config = CoderaceConfig.model_validate({"global": {"color": False}})
    config.database.path = str(tmp_path / "coderace.db")
    config.session = fast_session_config
    return config


@pytest.fixture
def repository(tmp_path: Path):
    repo = Repository(tmp_path / "test.db")
    repo.init_schema()
    yield repo
    repo.close()


@pytest.fixture
def fake_tmux() -> FakeTmux:
    return FakeTmux()


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def detector(fake_tmux: FakeTmux, clock: FakeClock) -> WaitingDetector:
    return WaitingDetector(
        capture=fake_tmux.capture,
        list_sessions=fake_tmux.list_session_names,
        threshold_seconds=30,
        clock=clock,
    )


@pytest.fixture
def ranking(repository: Repository) -> RankingEngine:
    return RankingEngine(repository)


@pytest.fixture
def orchestrator(
    repository: Repository,
    fake_tmux: FakeTmux,
    fake_runner: FakeRunner,
    detector: WaitingDetector,
    ranking: RankingEngine,
    fast_session_config: SessionConfig,
) -> ExecutionOrchestrator:
    cleanup = CleanupPipeline(
        tmux=fake_tmux, runner=fake_runner, repository=repository, detector=detector
    )
    return ExecutionOrchestrator(
        repository=repository,
        tmux=fake_tmux,
        detector=detector,
        cleanup=cleanup,
        ranking=ranking,
        background=BackgroundTasks(),
        session_config=fast_session_config,
    )


@pytest.fixture
def seeded(repository: Repository, tmp_path: Path) -> SimpleNamespace:
    """A project with one base directory, one task and three agents."""
    project = repository.create_project("demo")
    base_directory = repository.create_base_directory(
        project.id,
        str(tmp_path),
        setup_commands="npm install\n\ngit status",
        teardown_commands="rm -rf node_modules",
        dev_server_setup_commands="npm run dev",
        dev_server_teardown_commands="pkill -f vite",
    )
    task = repository.create_task(
        project.id, base_directory.id, "Fix login", "The login form\n  rejects valid emails"
    )
    agents = [
        repository.create_agent("claude", "claude", "--dangerously-skip-permissions"),
        repository.create_agent("codex", "codex"),
        repository.create_agent("gemini", "gemini", "--yolo"),
    ]
    return SimpleNamespace(
        project=project, base_directory=base_directory, task=task, agents=agents
    )
