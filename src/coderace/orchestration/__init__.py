"""Execution orchestration: lifecycle, idle detection and cleanup."""

from coderace.orchestration.background import BackgroundTasks
from coderace.orchestration.cleanup import CleanupPipeline
from coderace.orchestration.executions import ExecutionOrchestrator
from coderace.orchestration.factory import build_orchestrator, open_repository
from coderace.orchestration.models import (
    CleanupReport,
    ExecutionView,
    SessionActivity,
    StepResult,
)
from coderace.orchestration.waiting import WaitingDetector

__all__ = [
    "BackgroundTasks",
    "CleanupPipeline",
    "CleanupReport",
    "ExecutionOrchestrator",
    "ExecutionView",
    "SessionActivity",
    "StepResult",
    "WaitingDetector",
    "build_orchestrator",
    "open_repository",
]
