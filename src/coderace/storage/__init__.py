"""Relational storage for coderace."""

from coderace.storage.models import (
    Agent,
    BaseDirectory,
    Competition,
    ExecutionStatus,
    Project,
    Task,
    TaskExecution,
    TaskStatus,
)
from coderace.storage.repository import Repository

__all__ = [
    "Agent",
    "BaseDirectory",
    "Competition",
    "ExecutionStatus",
    "Project",
    "Repository",
    "Task",
    "TaskExecution",
    "TaskStatus",
]
