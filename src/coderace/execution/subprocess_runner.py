"""Execute shell snippets in a subprocess"""
import asyncio
import logging
import shutil
from pathlib import Path

from coderace.execution.protocol import CommandResult, CommandRunner

logger = logging.getLogger(__name__)


class SubprocessRunner(CommandRunner):
    """Run shell commands with stderr folded into stdout"""

    def __init__(self, shell: str = "bash"):
        self.shell = shell

    async def run(
        self,
        command: str,
        cwd: str | Path | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Execute a shell command and capture its combined output"""
        logger.debug("Running %r in %s", command, cwd or ".")
        try:
            process = await asyncio.create_subprocess_exec(
                self.shell, "-c", command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=str(cwd) if cwd else None,
            )
        except (FileNotFoundError, NotADirectoryError, PermissionError) as e:
            return CommandResult(command=command, exit_code=127, output=str(e))

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            stdout, _ = await process.communicate()
            return CommandResult(
                command=command,
                exit_code=process.returncode if process.returncode is not None else -1,
                output=stdout.decode("utf-8", errors="replace"),
                timed_out=True,
            )

        return CommandResult(
            command=command,
            exit_code=process.returncode or 0,
            output=stdout.decode("utf-8", errors="replace"),
        )

    async def health_check(self) -> bool:
        """Verify the configured shell exists"""
        return shutil.which(self.shell) is not None
