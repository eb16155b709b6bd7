"""Command execution layer"""
from .protocol import CommandResult, CommandRunner
from .subprocess_runner import SubprocessRunner

__all__ = [
    "CommandResult",
    "CommandRunner",
    "SubprocessRunner",
]
