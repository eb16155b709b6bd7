"""Data models for execution orchestration."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from coderace.storage.models import ExecutionStatus, TaskExecution


class SessionActivity(str, Enum):
    """Classification of a session pane by the waiting detector"""
    RUNNING = "running"
    WAITING = "waiting"


@dataclass
class ExecutionView:
    """An execution as reported to callers, with its live status"""
    id: int
    task_id: int
    agent_id: int
    base_directory_id: int
    stored_status: ExecutionStatus
    status: ExecutionStatus  # stored status, upgraded to WAITING when idle
    session_name: str | None
    dev_session_name: str | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(
        cls, execution: TaskExecution, status: ExecutionStatus | None = None
    ) -> "ExecutionView":
        stored = ExecutionStatus(execution.status)
        return cls(
            id=execution.id,
            task_id=execution.task_id,
            agent_id=execution.agent_id,
            base_directory_id=execution.base_directory_id,
            stored_status=stored,
            status=status or stored,
            session_name=execution.session_name,
            dev_session_name=execution.dev_session_name,
            created_at=execution.created_at,
            updated_at=execution.updated_at,
        )

    @property
    def needs_attention(self) -> bool:
        return self.status is ExecutionStatus.WAITING


@dataclass
class StepResult:
    """Result of one cleanup step"""
    name: str
    ok: bool
    detail: str = ""


@dataclass
class CleanupReport:
    """Everything the cleanup pipeline attempted for one execution"""
    execution_id: int
    steps: list[StepResult] = field(default_factory=list)
    record_removed: bool = False

    def add(self, name: str, ok: bool, detail: str = "") -> StepResult:
        step = StepResult(name=name, ok=ok, detail=detail)
        self.steps.append(step)
        return step

    @property
    def failures(self) -> list[StepResult]:
        return [s for s in self.steps if not s.ok]

    @property
    def clean(self) -> bool:
        return self.record_removed and not self.failures
