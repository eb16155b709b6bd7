"""Execution state machine.

An execution moves ``starting -> running -> completed | failed``; it can be
rejected from any state except rejected, and deleted from any state.
``waiting`` is never stored: it is derived at read time from the waiting
detector for running executions that have a session.

Public operations validate input and persist initial state before they
return. Session bring-up, prompt injection and ELO batches run as detached
background tasks.
"""

import asyncio
import logging

from coderace.config import defaults
from coderace.config.schema import SessionConfig
from coderace.errors import NotFoundError, SessionError, ValidationError
from coderace.orchestration.background import BackgroundTasks
from coderace.orchestration.cleanup import CleanupPipeline
from coderace.orchestration.models import CleanupReport, ExecutionView, SessionActivity
from coderace.orchestration.waiting import WaitingDetector
from coderace.ranking.engine import RankingEngine
from coderace.storage.models import (
    BaseDirectory,
    ExecutionStatus,
    Task,
    TaskExecution,
    TaskStatus,
)
from coderace.storage.repository import Repository
from coderace.tmux.manager import PaneSnapshot, TmuxManager

logger = logging.getLogger(__name__)

DEV_SERVER_STARTED = "echo 'Dev server started. Session: {name}'"
DEV_SERVER_NO_SETUP = "echo 'Dev server session created. No setup commands configured.'"


def execution_session_name(task_id: int, agent_id: int, execution_id: int) -> str:
    """Session name for an execution, recognizable by task and agent."""
    return f"{defaults.TASK_SESSION_PREFIX}{task_id}_agent_{agent_id}_exec_{execution_id}"


def dev_session_name(execution_id: int) -> str:
    return f"{defaults.DEV_SESSION_PREFIX}{execution_id}"


def task_prompt(task: Task) -> str:
    """The task's title and description collapsed onto one line."""
    text = f"{task.title}: {task.description}" if task.description.strip() else task.title
    return " ".join(text.split())


def _require_id(value: object, kind: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"Invalid {kind} id: {value!r}")
    return value


class ExecutionOrchestrator:
    """Drives executions through their lifecycle."""

    def __init__(
        self,
        repository: Repository,
        tmux: TmuxManager,
        detector: WaitingDetector,
        cleanup: CleanupPipeline,
        ranking: RankingEngine,
        background: BackgroundTasks | None = None,
        session_config: SessionConfig | None = None,
    ) -> None:
        self.repository = repository
        self.tmux = tmux
        self.detector = detector
        self.cleanup = cleanup
        self.ranking = ranking
        self.background = background or BackgroundTasks()
        self.session_config = session_config or SessionConfig()

    # --- lookups ---

    def _require_execution(self, execution_id: int) -> TaskExecution:
        _require_id(execution_id, "execution")
        execution = self.repository.get_execution(execution_id)
        if execution is None:
            raise NotFoundError("execution", execution_id)
        return execution

    def _require_task(self, task_id: int) -> Task:
        _require_id(task_id, "task")
        task = self.repository.get_task(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    def _require_base_directory(self, base_directory_id: int) -> BaseDirectory:
        base_directory = self.repository.get_base_directory(base_directory_id)
        if base_directory is None:
            raise NotFoundError("base directory", base_directory_id)
        return base_directory

    async def _view(self, execution: TaskExecution) -> ExecutionView:
        if execution.status == ExecutionStatus.RUNNING.value and execution.session_name:
            activity = await asyncio.to_thread(self.detector.check, execution.session_name)
            if activity is SessionActivity.WAITING:
                return ExecutionView.from_record(execution, ExecutionStatus.WAITING)
        return ExecutionView.from_record(execution)

    # --- create and bring-up ---

    async def create_execution(self, task_id: int, agent_id: int) -> ExecutionView:
        """Persist a new execution and start its session in the background.

        Raises:
            ValidationError: if an id is malformed.
            NotFoundError: if the task, agent or base directory does not exist.
        """
        task = self._require_task(task_id)
        _require_id(agent_id, "agent")
        agent = self.repository.get_agent(agent_id)
        if agent is None:
            raise NotFoundError("agent", agent_id)
        base_directory = self._require_base_directory(task.base_directory_id)

        execution = self.repository.create_execution(task.id, agent.id, base_directory.id)
        if task.status == TaskStatus.TODO.value:
            self.repository.update_task_status(task.id, TaskStatus.IN_PROGRESS)
        logger.info(
            "Created execution %s: agent %s on task %s", execution.id, agent.name, task.id
        )

        self.background.spawn(self._bring_up(execution.id), name=f"bring-up-{execution.id}")
        return ExecutionView.from_record(execution)

    async def _bring_up(self, execution_id: int) -> None:
        execution = self.repository.get_execution(execution_id)
        if execution is None:
            logger.warning("Execution %s vanished before bring-up", execution_id)
            return
        agent = self.repository.get_agent(execution.agent_id)
        base_directory = self.repository.get_base_directory(execution.base_directory_id)
        if agent is None or base_directory is None:
            logger.error("Execution %s lost its agent or base directory", execution_id)
            self.repository.update_execution_status(execution_id, ExecutionStatus.FAILED)
            return

        name = execution_session_name(execution.task_id, execution.agent_id, execution.id)
        try:
            await asyncio.to_thread(self.tmux.create_session, name, base_directory.path)
        except SessionError as e:
            logger.error("Bring-up of execution %s failed: %s", execution_id, e)
            self.repository.update_execution_status(execution_id, ExecutionStatus.FAILED)
            return

        if not self.repository.set_execution_session(execution_id, name):
            logger.warning(
                "Execution %s is gone or already has a session, killing %s", execution_id, name
            )
            await self._kill_quietly(name)
            return

        for line in base_directory.setup_commands.splitlines():
            if not line.strip():
                continue
            try:
                await asyncio.to_thread(self.tmux.send_keys, name, line)
            except SessionError as e:
                logger.warning("Setup command failed in %s: %s", name, e)
            await self._settle(name)

        try:
            await asyncio.to_thread(self.tmux.send_keys, name, agent.launch_command)
        except SessionError as e:
            logger.error("Could not launch agent %s in %s: %s", agent.name, name, e)
            self.repository.update_execution_status(execution_id, ExecutionStatus.FAILED)
            return
        await self._settle(name)

        current = self.repository.get_execution(execution_id)
        if current is None or current.status != ExecutionStatus.STARTING.value:
            logger.info("Execution %s left starting during bring-up, not prompting", execution_id)
            return
        self.repository.update_execution_status(execution_id, ExecutionStatus.RUNNING)
        logger.info("Execution %s running in session %s", execution_id, name)

        self.background.spawn(self._inject_prompt(execution_id, name), name=f"prompt-{execution_id}")

    async def _settle(self, name: str) -> None:
        """Wait at least the step delay, then until the pane stops changing or the timeout hits."""
        config = self.session_config
        await asyncio.sleep(config.step_settle_seconds)
        if config.settle_timeout_seconds <= 0:
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + config.settle_timeout_seconds
        previous = await self._capture(name)
        while previous is not None and loop.time() < deadline:
            await asyncio.sleep(config.settle_poll_interval_seconds)
            current = await self._capture(name)
            if current == previous:
                return
            previous = current

    async def _capture(self, name: str) -> PaneSnapshot | None:
        try:
            return await asyncio.to_thread(self.tmux.capture, name)
        except SessionError:
            return None

    async def _kill_quietly(self, name: str) -> None:
        try:
            await asyncio.to_thread(self.tmux.kill_session, name)
        except SessionError as e:
            logger.warning("Could not kill session %s: %s", name, e)

    async def _inject_prompt(self, execution_id: int, session_name: str) -> None:
        await asyncio.sleep(self.session_config.prompt_delay_seconds)
        execution = self.repository.get_execution(execution_id)
        if execution is None or execution.status == ExecutionStatus.REJECTED.value:
            logger.info("Skipping prompt for execution %s", execution_id)
            return
        task = self.repository.get_task(execution.task_id)
        if task is None:
            logger.warning("Task of execution %s is gone, no prompt sent", execution_id)
            return
        try:
            await asyncio.to_thread(self.tmux.send_keys, session_name, task_prompt(task))
        except SessionError as e:
            logger.warning("Prompt injection into %s failed: %s", session_name, e)
            return
        logger.info("Sent task prompt to %s", session_name)

    # --- interaction ---

    async def _live_session(self, execution: TaskExecution) -> str:
        if not execution.session_name:
            raise ValidationError(f"Execution {execution.id} has no session")
        alive = await asyncio.to_thread(self.tmux.has_session, execution.session_name)
        if not alive:
            raise ValidationError(
                f"Session {execution.session_name} of execution {execution.id} is not running"
            )
        return execution.session_name

    async def send_input(self, execution_id: int, text: str) -> None:
        """Type text into the execution's session and press Enter."""
        if not text or not text.strip():
            raise ValidationError("Input text must not be empty")
        execution = self._require_execution(execution_id)
        name = await self._live_session(execution)
        await asyncio.to_thread(self.tmux.send_keys, name, text)
        logger.info("Sent input to execution %s", execution_id)

    async def resend_prompt(self, execution_id: int) -> str:
        """Send the task prompt again; returns the text sent."""
        execution = self._require_execution(execution_id)
        name = await self._live_session(execution)
        task = self._require_task(execution.task_id)
        prompt = task_prompt(task)
        await asyncio.to_thread(self.tmux.send_keys, name, prompt)
        logger.info("Re-sent task prompt to execution %s", execution_id)
        return prompt

    # --- transitions ---

    async def reject(self, execution_id: int) -> ExecutionView:
        """Mark an execution rejected and record its ELO penalty in the background."""
        execution = self._require_execution(execution_id)
        if execution.status == ExecutionStatus.REJECTED.value:
            raise ValidationError(f"Execution {execution_id} is already rejected")
        self.repository.update_execution_status(execution_id, ExecutionStatus.REJECTED)
        logger.info("Rejected execution %s (was %s)", execution_id, execution.status)

        self.background.spawn(
            asyncio.to_thread(self.ranking.process_rejection, execution_id),
            name=f"rejection-{execution_id}",
        )
        return ExecutionView.from_record(self._require_execution(execution_id))

    async def complete_execution(self, execution_id: int) -> ExecutionView:
        execution = self._require_execution(execution_id)
        if execution.status not in (ExecutionStatus.STARTING.value, ExecutionStatus.RUNNING.value):
            raise ValidationError(
                f"Execution {execution_id} cannot be completed from {execution.status}"
            )
        self.repository.update_execution_status(execution_id, ExecutionStatus.COMPLETED)
        logger.info("Completed execution %s", execution_id)
        return ExecutionView.from_record(self._require_execution(execution_id))

    async def merge_execution(self, execution_id: int) -> ExecutionView:
        """Accept an execution's work: it wins against every other agent on the task."""
        execution = self._require_execution(execution_id)
        if execution.status == ExecutionStatus.REJECTED.value:
            raise ValidationError(f"Execution {execution_id} is rejected and cannot be merged")
        self.repository.update_execution_status(execution_id, ExecutionStatus.COMPLETED)
        self.repository.update_task_status(execution.task_id, TaskStatus.DONE)
        logger.info("Merged execution %s into task %s", execution_id, execution.task_id)

        self.background.spawn(
            asyncio.to_thread(
                self.ranking.process_task_competitions_with_winner,
                execution.task_id,
                execution.agent_id,
                execution_id,
            ),
            name=f"merge-{execution_id}",
        )
        return ExecutionView.from_record(self._require_execution(execution_id))

    # --- deletion ---

    async def delete_execution(self, execution_id: int) -> CleanupReport:
        """Tear down an execution; the record is removed even if teardown fails."""
        execution = self._require_execution(execution_id)
        base_directory = self.repository.get_base_directory(execution.base_directory_id)
        return await self.cleanup.run(execution, base_directory)

    async def delete_task(self, task_id: int) -> list[CleanupReport]:
        task = self._require_task(task_id)
        reports = [
            await self.delete_execution(execution.id)
            for execution in self.repository.list_executions(task_id=task.id)
        ]
        self.repository.delete_task(task.id)
        logger.info("Deleted task %s with %d execution(s)", task.id, len(reports))
        return reports

    async def delete_project(self, project_id: int) -> list[CleanupReport]:
        _require_id(project_id, "project")
        if self.repository.get_project(project_id) is None:
            raise NotFoundError("project", project_id)
        reports = []
        for task in self.repository.list_tasks(project_id=project_id):
            reports.extend(await self.delete_task(task.id))
        self.repository.delete_project(project_id)
        logger.info("Deleted project %s", project_id)
        return reports

    # --- queries ---

    async def get_execution(self, execution_id: int) -> ExecutionView:
        return await self._view(self._require_execution(execution_id))

    async def list_executions(self, task_id: int | None = None) -> list[ExecutionView]:
        if task_id is not None:
            _require_id(task_id, "task")
        return [await self._view(e) for e in self.repository.list_executions(task_id=task_id)]

    async def list_needs_attention(self) -> list[ExecutionView]:
        """Executions whose agent appears to be waiting for input."""
        views = await self.list_executions()
        return [v for v in views if v.needs_attention]

    async def sample_needs_attention(
        self, duration: float, interval: float
    ) -> list[ExecutionView]:
        """Observe sessions for ``duration`` seconds, then report who is waiting.

        A detector that has never seen a session reports it running, so a
        fresh process must watch for longer than the waiting threshold
        before a waiting session can show up.

        Raises:
            ValidationError: if ``duration`` is negative or ``interval`` is not
                positive while sampling.
        """
        if duration < 0:
            raise ValidationError("Sample duration must not be negative")
        if duration > 0 and interval <= 0:
            raise ValidationError("Sample interval must be positive")

        views = await self.list_needs_attention()
        elapsed = 0.0
        while elapsed < duration:
            step = min(interval, duration - elapsed)
            await asyncio.sleep(step)
            elapsed += step
            views = await self.list_needs_attention()
        return views

    # --- dev server ---

    async def start_dev_server(self, execution_id: int) -> ExecutionView:
        execution = self._require_execution(execution_id)
        if execution.dev_session_name:
            raise ValidationError(
                f"Dev server already running for execution {execution_id}: "
                f"{execution.dev_session_name}"
            )
        base_directory = self._require_base_directory(execution.base_directory_id)

        name = dev_session_name(execution_id)
        await asyncio.to_thread(self.tmux.create_session, name, base_directory.path)
        self.repository.set_dev_session(execution_id, name)

        setup = base_directory.dev_server_setup_commands
        if setup.strip():
            steps = [setup, "", DEV_SERVER_STARTED.format(name=name)]
        else:
            steps = [DEV_SERVER_NO_SETUP, self.session_config.shell]
        for step in steps:
            await asyncio.to_thread(self.tmux.send_keys, name, step)
        logger.info("Started dev server for execution %s in %s", execution_id, name)
        return ExecutionView.from_record(self._require_execution(execution_id))

    async def stop_dev_server(self, execution_id: int) -> ExecutionView:
        execution = self._require_execution(execution_id)
        if not execution.dev_session_name:
            raise ValidationError(f"No dev server running for execution {execution_id}")
        await self._kill_quietly(execution.dev_session_name)
        self.repository.set_dev_session(execution_id, None)
        logger.info("Stopped dev server for execution %s", execution_id)
        return ExecutionView.from_record(self._require_execution(execution_id))
