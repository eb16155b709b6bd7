"""Base interface for running external commands"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path


@dataclass
class CommandResult:
    """Exit status and combined stdout/stderr of one command"""
    command: str
    exit_code: int
    output: str
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


class CommandRunner(ABC):
    """Runs shell commands and reports exit status plus combined output"""

    @abstractmethod
    async def run(
        self,
        command: str,
        cwd: str | Path | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a shell command to completion"""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify the runner can start processes"""
        pass
