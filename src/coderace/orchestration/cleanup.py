"""Best-effort teardown of an execution."""

import asyncio
import logging

from coderace.config import defaults
from coderace.errors import SessionError
from coderace.execution.protocol import CommandRunner
from coderace.orchestration.models import CleanupReport
from coderace.orchestration.waiting import WaitingDetector
from coderace.storage.models import BaseDirectory, TaskExecution
from coderace.storage.repository import Repository
from coderace.tmux.manager import TmuxManager

logger = logging.getLogger(__name__)


class CleanupPipeline:
    """Kills sessions, runs teardown snippets and removes the execution record.

    Session and teardown failures are collected in the report and never stop
    later steps. Only the final record deletion may raise, and only for a
    database error.
    """

    def __init__(
        self,
        tmux: TmuxManager,
        runner: CommandRunner,
        repository: Repository,
        detector: WaitingDetector | None = None,
        teardown_timeout: float = defaults.DEFAULT_TEARDOWN_TIMEOUT_SECONDS,
    ) -> None:
        self.tmux = tmux
        self.runner = runner
        self.repository = repository
        self.detector = detector
        self.teardown_timeout = teardown_timeout

    async def run(
        self, execution: TaskExecution, base_directory: BaseDirectory | None
    ) -> CleanupReport:
        report = CleanupReport(execution_id=execution.id)

        await self._kill(report, "kill_session", execution.session_name)
        if execution.dev_session_name:
            await self._kill(report, "kill_dev_session", execution.dev_session_name)

        if base_directory is not None:
            await self._teardown(
                report, "dev_server_teardown",
                base_directory.dev_server_teardown_commands, base_directory.path,
            )
            await self._teardown(
                report, "teardown", base_directory.teardown_commands, base_directory.path,
            )

        report.record_removed = self.repository.delete_execution(execution.id)
        report.add(
            "delete_record",
            True,
            "" if report.record_removed else "record was already gone",
        )

        if report.failures:
            logger.warning(
                "Execution %s cleaned up with %d failed step(s): %s",
                execution.id,
                len(report.failures),
                ", ".join(s.name for s in report.failures),
            )
        else:
            logger.info("Execution %s cleaned up", execution.id)
        return report

    async def _kill(self, report: CleanupReport, step: str, session_name: str | None) -> None:
        if not session_name:
            report.add(step, True, "no session")
            return
        if self.detector is not None:
            self.detector.forget(session_name)
        try:
            await asyncio.to_thread(self.tmux.kill_session, session_name)
        except SessionError as e:
            logger.warning("Cleanup step %s failed for %s: %s", step, session_name, e)
            report.add(step, False, str(e))
            return
        report.add(step, True, session_name)

    async def _teardown(self, report: CleanupReport, step: str, commands: str, cwd: str) -> None:
        if not commands.strip():
            return
        result = await self.runner.run(commands, cwd=cwd, timeout=self.teardown_timeout)
        if result.success:
            report.add(step, True, result.output.strip())
            return
        detail = "timed out" if result.timed_out else f"exit {result.exit_code}: {result.output.strip()}"
        logger.warning("Cleanup step %s failed in %s: %s", step, cwd, detail)
        report.add(step, False, detail)
