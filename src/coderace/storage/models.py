"""SQLModel tables for projects, agents, executions and competitions."""

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import Index, Text
from sqlmodel import Field, SQLModel

from coderace.config import defaults


def utc_now() -> datetime:
    """Current UTC timestamp."""
    return datetime.now(tz=UTC)


class TaskStatus(str, Enum):
    """Kanban status of a task."""

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class ExecutionStatus(str, Enum):
    """Lifecycle status of a task execution.

    WAITING is derived at read time from the pane activity and never stored.
    """

    STARTING = "starting"
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"


class Project(SQLModel, table=True):
    __tablename__ = "projects"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    created_at: datetime = Field(default_factory=utc_now)


class BaseDirectory(SQLModel, table=True):
    __tablename__ = "base_directories"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="projects.id", index=True)
    path: str
    git_initialized: bool = False
    setup_commands: str = Field(default="", sa_type=Text)
    teardown_commands: str = Field(default="", sa_type=Text)
    dev_server_setup_commands: str = Field(default="", sa_type=Text)
    dev_server_teardown_commands: str = Field(default="", sa_type=Text)


class Task(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="projects.id", index=True)
    base_directory_id: int = Field(foreign_key="base_directories.id", index=True)
    title: str
    description: str = Field(default="", sa_type=Text)
    status: str = Field(default=TaskStatus.TODO.value, index=True)
    created_at: datetime = Field(default_factory=utc_now)


class Agent(SQLModel, table=True):
    __tablename__ = "agents"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    command: str
    params: str = ""
    elo_rating: float = defaults.DEFAULT_ELO_RATING
    games_played: int = 0
    wins: int = 0
    losses: int = 0
    draws: int = 0
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def launch_command(self) -> str:
        return f"{self.command} {self.params}".strip()

    @property
    def win_rate(self) -> float:
        if self.games_played == 0:
            return 0.0
        return self.wins / self.games_played


class TaskExecution(SQLModel, table=True):
    __tablename__ = "task_executions"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    task_id: int = Field(foreign_key="tasks.id", index=True)
    agent_id: int = Field(foreign_key="agents.id", index=True)
    base_directory_id: int = Field(foreign_key="base_directories.id", index=True)
    status: str = Field(default=ExecutionStatus.STARTING.value, index=True)
    session_name: str | None = None
    dev_session_name: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Competition(SQLModel, table=True):
    """Append-only pairwise outcome.

    Task and execution ids are plain columns so the log outlives deleted
    executions.
    """

    __tablename__ = "competitions"  # type: ignore[bad-override]
    __table_args__ = (
        Index(
            "ix_competitions_task_executions",
            "task_id",
            "agent1_execution_id",
            "agent2_execution_id",
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    task_id: int = Field(index=True)
    agent1_id: int = Field(foreign_key="agents.id", index=True)
    agent2_id: int = Field(foreign_key="agents.id", index=True)
    agent1_execution_id: int
    agent2_execution_id: int
    winner_agent_id: int | None = Field(default=None, foreign_key="agents.id")
    agent1_rating_before: float
    agent2_rating_before: float
    agent1_rating_after: float
    agent2_rating_after: float
    k_factor: float
    competition_type: str = "head_to_head"
    notes: str = Field(default="", sa_type=Text)
    created_at: datetime = Field(default_factory=utc_now)
