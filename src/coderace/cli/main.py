"""Main CLI entry point for coderace."""

import asyncio
import functools
import json
import logging
from collections.abc import Callable, Coroutine
from typing import Any

import click
import toml
from rich.console import Console
from rich.logging import RichHandler

from coderace.config import defaults
from coderace.config.manager import ConfigManager
from coderace.config.schema import CoderaceConfig, get_config_file
from coderace.errors import CoderaceError, NotFoundError, ValidationError
from coderace.orchestration.executions import ExecutionOrchestrator
from coderace.orchestration.factory import build_orchestrator
from coderace.output.formatter import configure_formatter, get_formatter
from coderace.ranking.elo import MatchResult
from coderace.tmux.manager import TmuxManager

RESULTS = {
    "agent1": MatchResult.AGENT1_WINS,
    "agent2": MatchResult.AGENT2_WINS,
    "draw": MatchResult.DRAW,
}


def configure_logging(level: str, color: bool = True) -> None:
    """Route log records through rich on stderr."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True, no_color=not color), show_path=False)],
        force=True,
    )


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Turn coderace errors into a red message and exit code 1."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except CoderaceError as e:
            get_formatter().print_error(str(e))
            raise SystemExit(1)

    return wrapper


def _orchestrator(ctx: click.Context) -> ExecutionOrchestrator:
    obj = ctx.find_root().obj
    if obj.get("orchestrator") is None:
        obj["orchestrator"] = build_orchestrator(obj["config"])
    return obj["orchestrator"]


def _run(ctx: click.Context, make_coro: Callable[[ExecutionOrchestrator], Coroutine[Any, Any, Any]]) -> Any:
    """Run an orchestrator coroutine, then wait for the background work it spawned."""
    orchestrator = _orchestrator(ctx)

    async def runner() -> Any:
        try:
            return await make_coro(orchestrator)
        finally:
            await orchestrator.background.drain()
            for outcome in orchestrator.background.results.values():
                if not outcome.ok:
                    get_formatter().print_warning(
                        f"Background task {outcome.name} failed: {outcome.error}"
                    )
            orchestrator.background.results.clear()

    return asyncio.run(runner())


def _agent_names(orchestrator: ExecutionOrchestrator) -> dict[int, str]:
    return {a.id: a.name for a in orchestrator.repository.list_agents()}


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
@click.option("--no-color", is_flag=True, help="Disable colors")
@click.option("--db", "db_path", type=click.Path(dir_okay=False), help="Database file to use")
@click.version_option(package_name="coderace")
@click.pass_context
@handle_errors
def cli(
    ctx: click.Context,
    verbose: bool,
    no_color: bool,
    db_path: str | None,
) -> None:
    """coderace - race coding agents against each other in tmux.

    \b
    Examples:
        coderace agent add claude claude              # Register an agent
        coderace exec create 3 1                      # Run agent 1 on task 3
        coderace exec attention                       # Who is waiting for input?
        coderace exec merge 12                        # Accept a result, update ELO
        coderace elo leaderboard                      # Ratings
    """
    ctx.ensure_object(dict)
    config = ctx.obj.get("config")
    if config is None:
        config = ConfigManager.get_config(db_path)
    elif db_path:
        config = ConfigManager.with_database(config, db_path)
    color = config.global_.color and not no_color
    verbose = verbose or config.global_.verbose

    ctx.obj["config"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["no_color"] = not color

    configure_logging("DEBUG" if verbose else config.global_.log_level, color=color)
    configure_formatter(color=color, verbose=verbose)


# --- project ---


@cli.group()
def project() -> None:
    """Manage projects."""
    pass


@project.command("create")
@click.argument("name")
@click.pass_context
@handle_errors
def project_create(ctx: click.Context, name: str) -> None:
    """Create a project."""
    if not name.strip():
        raise ValidationError("Project name must not be empty")
    created = _orchestrator(ctx).repository.create_project(name.strip())
    get_formatter().print_success(f"Created project {created.id}: {created.name}")


@project.command("list")
@click.pass_context
def project_list(ctx: click.Context) -> None:
    """List projects."""
    get_formatter().print_projects(_orchestrator(ctx).repository.list_projects())


@project.command("delete")
@click.argument("project_id", type=int)
@click.pass_context
@handle_errors
def project_delete(ctx: click.Context, project_id: int) -> None:
    """Delete a project with all its tasks and executions."""
    reports = _run(ctx, lambda o: o.delete_project(project_id))
    formatter = get_formatter()
    for report in reports:
        formatter.print_cleanup_report(report)
    formatter.print_success(f"Deleted project {project_id}")


# --- base directories ---


@cli.group()
def basedir() -> None:
    """Manage base directories agents work in."""
    pass


@basedir.command("add")
@click.argument("project_id", type=int)
@click.argument("path", type=click.Path(file_okay=False))
@click.option("--git", "git_initialized", is_flag=True, help="Directory is a git repository")
@click.option("--setup", default="", help="Commands sent to each new session, one per line")
@click.option("--teardown", default="", help="Commands run when an execution is deleted")
@click.option("--dev-setup", default="", help="Commands that start the dev server")
@click.option("--dev-teardown", default="", help="Commands run after the dev server is killed")
@click.pass_context
@handle_errors
def basedir_add(
    ctx: click.Context,
    project_id: int,
    path: str,
    git_initialized: bool,
    setup: str,
    teardown: str,
    dev_setup: str,
    dev_teardown: str,
) -> None:
    """Register a base directory for a project."""
    directory = _orchestrator(ctx).repository.create_base_directory(
        project_id,
        path,
        git_initialized=git_initialized,
        setup_commands=setup,
        teardown_commands=teardown,
        dev_server_setup_commands=dev_setup,
        dev_server_teardown_commands=dev_teardown,
    )
    get_formatter().print_success(f"Added base directory {directory.id}: {directory.path}")


@basedir.command("list")
@click.argument("project_id", type=int)
@click.pass_context
def basedir_list(ctx: click.Context, project_id: int) -> None:
    """List base directories of a project."""
    get_formatter().print_base_directories(
        _orchestrator(ctx).repository.list_base_directories(project_id)
    )


# --- tasks ---


@cli.group()
def task() -> None:
    """Manage tasks."""
    pass


@task.command("create")
@click.argument("project_id", type=int)
@click.argument("base_directory_id", type=int)
@click.argument("title")
@click.option("-d", "--description", default="", help="Task description sent with the title")
@click.pass_context
@handle_errors
def task_create(
    ctx: click.Context, project_id: int, base_directory_id: int, title: str, description: str
) -> None:
    """Create a task."""
    if not title.strip():
        raise ValidationError("Task title must not be empty")
    created = _orchestrator(ctx).repository.create_task(
        project_id, base_directory_id, title.strip(), description
    )
    get_formatter().print_success(f"Created task {created.id}: {created.title}")


@task.command("list")
@click.option("-p", "--project", "project_id", type=int, help="Only tasks of this project")
@click.pass_context
def task_list(ctx: click.Context, project_id: int | None) -> None:
    """List tasks."""
    get_formatter().print_tasks(_orchestrator(ctx).repository.list_tasks(project_id=project_id))


@task.command("delete")
@click.argument("task_id", type=int)
@click.pass_context
@handle_errors
def task_delete(ctx: click.Context, task_id: int) -> None:
    """Delete a task and tear down its executions."""
    reports = _run(ctx, lambda o: o.delete_task(task_id))
    formatter = get_formatter()
    for report in reports:
        formatter.print_cleanup_report(report)
    formatter.print_success(f"Deleted task {task_id}")


# --- agents ---


@cli.group()
def agent() -> None:
    """Manage competing agents."""
    pass


@agent.command("add")
@click.argument("name")
@click.argument("command")
@click.option("--params", default="", help="Arguments appended to the command")
@click.pass_context
@handle_errors
def agent_add(ctx: click.Context, name: str, command: str, params: str) -> None:
    """Register an agent CLI."""
    repository = _orchestrator(ctx).repository
    if repository.get_agent_by_name(name) is not None:
        raise ValidationError(f"Agent '{name}' already exists")
    config: CoderaceConfig = ctx.find_root().obj["config"]
    created = repository.create_agent(
        name, command, params, elo_rating=config.ranking.default_rating
    )
    get_formatter().print_success(f"Added agent {created.id}: {created.name}")


@agent.command("list")
@click.pass_context
def agent_list(ctx: click.Context) -> None:
    """List agents."""
    get_formatter().print_agents(_orchestrator(ctx).repository.list_agents())


# --- executions ---


@cli.group("exec")
def exec_group() -> None:
    """Run and manage task executions."""
    pass


@exec_group.command("create")
@click.argument("task_id", type=int)
@click.argument("agent_id", type=int)
@click.pass_context
@handle_errors
def exec_create(ctx: click.Context, task_id: int, agent_id: int) -> None:
    """Start an agent on a task in a new tmux session."""
    view = _run(ctx, lambda o: o.create_execution(task_id, agent_id))
    formatter = get_formatter()
    formatter.print_success(f"Created execution {view.id}")
    formatter.print_execution(_run(ctx, lambda o: o.get_execution(view.id)))


@exec_group.command("show")
@click.argument("execution_id", type=int)
@click.pass_context
@handle_errors
def exec_show(ctx: click.Context, execution_id: int) -> None:
    """Show an execution.

    A single look cannot tell waiting from running; use `exec attention`
    or `exec watch` for that.
    """
    get_formatter().print_execution(_run(ctx, lambda o: o.get_execution(execution_id)))


@exec_group.command("list")
@click.option("-t", "--task", "task_id", type=int, help="Only executions of this task")
@click.pass_context
@handle_errors
def exec_list(ctx: click.Context, task_id: int | None) -> None:
    """List executions.

    Statuses come from a single look at each session, so `waiting` is not
    reported here; use `exec attention` or `exec watch`.
    """
    get_formatter().print_executions(_run(ctx, lambda o: o.list_executions(task_id=task_id)))


@exec_group.command("attention")
@click.option(
    "-s", "--sample", "sample_seconds", type=float,
    help="Seconds to observe sessions first (default: waiting threshold + 1)",
)
@click.option("-i", "--interval", type=float, default=5.0, help="Seconds between samples")
@click.pass_context
@handle_errors
def exec_attention(ctx: click.Context, sample_seconds: float | None, interval: float) -> None:
    """List executions whose agent is waiting for input.

    Sessions are sampled for longer than the waiting threshold, since a
    pane has to stay unchanged that long before it counts as waiting.
    """
    if sample_seconds is None:
        config: CoderaceConfig = ctx.find_root().obj["config"]
        sample_seconds = config.waiting.threshold_seconds + 1
    views = _run(ctx, lambda o: o.sample_needs_attention(sample_seconds, interval))
    formatter = get_formatter()
    if not views:
        formatter.print_info("No executions need attention")
        return
    formatter.print_executions(views, title="Needs Attention")


@exec_group.command("watch")
@click.option("-i", "--interval", type=float, default=5.0, help="Seconds between checks")
@click.option("-n", "--count", type=int, help="Stop after this many checks")
@click.pass_context
@handle_errors
def exec_watch(ctx: click.Context, interval: float, count: int | None) -> None:
    """Repeatedly list executions that need attention."""
    config: CoderaceConfig = ctx.find_root().obj["config"]
    formatter = get_formatter()

    async def watch(orchestrator: ExecutionOrchestrator) -> None:
        stop = asyncio.Event()
        sweeper = asyncio.create_task(
            orchestrator.detector.run_sweeper(config.waiting.sweep_interval_seconds, stop)
        )
        try:
            checks = 0
            while count is None or checks < count:
                views = await orchestrator.list_needs_attention()
                formatter.print_executions(views, title="Needs Attention")
                checks += 1
                if count is None or checks < count:
                    await asyncio.sleep(interval)
        finally:
            stop.set()
            await sweeper

    try:
        _run(ctx, watch)
    except KeyboardInterrupt:
        pass


@exec_group.command("send")
@click.argument("execution_id", type=int)
@click.argument("text", nargs=-1, required=True)
@click.pass_context
@handle_errors
def exec_send(ctx: click.Context, execution_id: int, text: tuple[str, ...]) -> None:
    """Type text into an execution's session."""
    _run(ctx, lambda o: o.send_input(execution_id, " ".join(text)))
    get_formatter().print_success(f"Sent input to execution {execution_id}")


@exec_group.command("resend")
@click.argument("execution_id", type=int)
@click.pass_context
@handle_errors
def exec_resend(ctx: click.Context, execution_id: int) -> None:
    """Send the task prompt again."""
    prompt = _run(ctx, lambda o: o.resend_prompt(execution_id))
    get_formatter().print_success(f"Re-sent prompt: {prompt}")


@exec_group.command("reject")
@click.argument("execution_id", type=int)
@click.pass_context
@handle_errors
def exec_reject(ctx: click.Context, execution_id: int) -> None:
    """Reject an execution; its agent loses to the others on the task."""
    view = _run(ctx, lambda o: o.reject(execution_id))
    get_formatter().print_success(f"Execution {view.id} rejected")


@exec_group.command("complete")
@click.argument("execution_id", type=int)
@click.pass_context
@handle_errors
def exec_complete(ctx: click.Context, execution_id: int) -> None:
    """Mark an execution completed."""
    view = _run(ctx, lambda o: o.complete_execution(execution_id))
    get_formatter().print_success(f"Execution {view.id} completed")


@exec_group.command("merge")
@click.argument("execution_id", type=int)
@click.pass_context
@handle_errors
def exec_merge(ctx: click.Context, execution_id: int) -> None:
    """Merge an execution: its agent beats every other agent on the task."""
    view = _run(ctx, lambda o: o.merge_execution(execution_id))
    orchestrator = _orchestrator(ctx)
    competitions = orchestrator.ranking.list_competitions(task_id=view.task_id)
    formatter = get_formatter()
    formatter.print_success(f"Merged execution {view.id}; task {view.task_id} is done")
    formatter.print_competitions(competitions, _agent_names(orchestrator))


@exec_group.command("delete")
@click.argument("execution_id", type=int)
@click.pass_context
@handle_errors
def exec_delete(ctx: click.Context, execution_id: int) -> None:
    """Delete an execution and tear down its sessions."""
    report = _run(ctx, lambda o: o.delete_execution(execution_id))
    get_formatter().print_cleanup_report(report)


@exec_group.command("dev-start")
@click.argument("execution_id", type=int)
@click.pass_context
@handle_errors
def exec_dev_start(ctx: click.Context, execution_id: int) -> None:
    """Start the dev server session for an execution."""
    view = _run(ctx, lambda o: o.start_dev_server(execution_id))
    get_formatter().print_success(f"Dev server running in {view.dev_session_name}")


@exec_group.command("dev-stop")
@click.argument("execution_id", type=int)
@click.pass_context
@handle_errors
def exec_dev_stop(ctx: click.Context, execution_id: int) -> None:
    """Stop the dev server session for an execution."""
    _run(ctx, lambda o: o.stop_dev_server(execution_id))
    get_formatter().print_success(f"Dev server of execution {execution_id} stopped")


@exec_group.command("attach")
@click.argument("execution_id", type=int)
@click.option("--dev", is_flag=True, help="Attach to the dev server session instead")
@click.pass_context
@handle_errors
def exec_attach(ctx: click.Context, execution_id: int, dev: bool) -> None:
    """Attach the terminal to an execution's session."""
    orchestrator = _orchestrator(ctx)
    execution = orchestrator.repository.get_execution(execution_id)
    if execution is None:
        raise NotFoundError("execution", execution_id)
    name = execution.dev_session_name if dev else execution.session_name
    if not name:
        raise ValidationError(f"Execution {execution_id} has no such session")
    orchestrator.tmux.attach(name)


# --- ranking ---


@cli.group()
def elo() -> None:
    """ELO ratings and competitions."""
    pass


@elo.command("leaderboard")
@click.pass_context
def elo_leaderboard(ctx: click.Context) -> None:
    """Show agents ordered by rating."""
    get_formatter().print_leaderboard(_orchestrator(ctx).ranking.get_leaderboard())


@elo.command("history")
@click.argument("agent_id", type=int)
@click.pass_context
@handle_errors
def elo_history(ctx: click.Context, agent_id: int) -> None:
    """Show an agent's competitions and rating after each."""
    orchestrator = _orchestrator(ctx)
    entries = orchestrator.ranking.get_agent_history(agent_id)
    names = _agent_names(orchestrator)
    get_formatter().print_agent_history(names.get(agent_id, str(agent_id)), entries, names)


@elo.command("h2h")
@click.argument("agent_a", type=int)
@click.argument("agent_b", type=int)
@click.pass_context
@handle_errors
def elo_h2h(ctx: click.Context, agent_a: int, agent_b: int) -> None:
    """Head-to-head record of two agents."""
    orchestrator = _orchestrator(ctx)
    record = orchestrator.ranking.get_head_to_head(agent_a, agent_b)
    get_formatter().print_head_to_head(record, _agent_names(orchestrator))


@elo.command("record")
@click.argument("task_id", type=int)
@click.argument("agent1_id", type=int)
@click.argument("agent2_id", type=int)
@click.argument("execution1_id", type=int)
@click.argument("execution2_id", type=int)
@click.option(
    "-r", "--result", type=click.Choice(sorted(RESULTS)), required=True,
    help="Which side won",
)
@click.option("--notes", default="", help="Free-text notes")
@click.pass_context
@handle_errors
def elo_record(
    ctx: click.Context,
    task_id: int,
    agent1_id: int,
    agent2_id: int,
    execution1_id: int,
    execution2_id: int,
    result: str,
    notes: str,
) -> None:
    """Record a competition manually."""
    orchestrator = _orchestrator(ctx)
    competition = orchestrator.ranking.record_competition(
        task_id, agent1_id, agent2_id, execution1_id, execution2_id, RESULTS[result], notes
    )
    formatter = get_formatter()
    if competition is None:
        formatter.print_warning("Competition already recorded, nothing changed")
        return
    formatter.print_competition(competition, _agent_names(orchestrator))


@elo.command("process")
@click.argument("task_id", type=int)
@click.option("-w", "--winner", "winner_agent_id", type=int, help="Declared winner agent")
@click.option(
    "-e", "--winner-execution", "winner_execution_id", type=int,
    help="Winning execution (default: the winner's latest)",
)
@click.pass_context
@handle_errors
def elo_process(
    ctx: click.Context,
    task_id: int,
    winner_agent_id: int | None,
    winner_execution_id: int | None,
) -> None:
    """Record competitions for a task from its executions."""
    ranking = _orchestrator(ctx).ranking
    if winner_agent_id is None:
        if winner_execution_id is not None:
            raise ValidationError("--winner-execution requires --winner")
        batch = ranking.process_task_competitions(task_id)
    else:
        batch = ranking.process_task_competitions_with_winner(
            task_id, winner_agent_id, winner_execution_id
        )
    get_formatter().print_batch_result(batch)


@elo.command("competitions")
@click.option("-t", "--task", "task_id", type=int, help="Only competitions of this task")
@click.pass_context
def elo_competitions(ctx: click.Context, task_id: int | None) -> None:
    """List recorded competitions."""
    orchestrator = _orchestrator(ctx)
    get_formatter().print_competitions(
        orchestrator.ranking.list_competitions(task_id=task_id), _agent_names(orchestrator)
    )


@elo.command("competition")
@click.argument("competition_id", type=int)
@click.pass_context
@handle_errors
def elo_competition(ctx: click.Context, competition_id: int) -> None:
    """Show one competition."""
    orchestrator = _orchestrator(ctx)
    get_formatter().print_competition(
        orchestrator.ranking.get_competition(competition_id), _agent_names(orchestrator)
    )


# --- tmux sessions ---


@cli.group()
def session() -> None:
    """Inspect tmux sessions."""
    pass


@session.command("list")
@click.option("--all", "show_all", is_flag=True, help="Include sessions not started by coderace")
@click.option("--preview", is_flag=True, help="Show the last lines of each session")
@click.pass_context
@handle_errors
def session_list(ctx: click.Context, show_all: bool, preview: bool) -> None:
    """List tmux sessions."""
    formatter = get_formatter()
    if not TmuxManager.is_available():
        formatter.print_error("tmux is not installed")
        raise SystemExit(1)
    sessions = _orchestrator(ctx).tmux.list_sessions()
    if not show_all:
        sessions = [
            s for s in sessions
            if s["is_task"] or s["name"].startswith(defaults.DEV_SESSION_PREFIX)
        ]
    formatter.print_sessions(sessions, show_preview=preview)


@session.command("attach")
@click.argument("name")
@click.pass_context
@handle_errors
def session_attach(ctx: click.Context, name: str) -> None:
    """Attach to a tmux session by name."""
    _orchestrator(ctx).tmux.attach(name)


# --- config ---


@cli.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration."""
    current: CoderaceConfig = ctx.find_root().obj["config"]
    config_dict = current.model_dump(by_alias=True)
    get_formatter().print_json(json.dumps(config_dict, indent=2))


@config.command("path")
def config_path() -> None:
    """Print the user config file path."""
    click.echo(str(get_config_file()))


@config.command("get")
@click.argument("key")
@click.pass_context
@handle_errors
def config_get(ctx: click.Context, key: str) -> None:
    """Print one value, e.g. `coderace config get waiting.threshold_seconds`."""
    click.echo(repr(ConfigManager.get_value(key, ctx.find_root().obj["config"])))


@config.command("set")
@click.argument("key")
@click.argument("value")
@handle_errors
def config_set(key: str, value: str) -> None:
    """Set a value in the user config, e.g. `coderace config set waiting.threshold_seconds 45`."""
    try:
        parsed: Any = toml.loads(f"value = {value}")["value"]
    except toml.TomlDecodeError:
        parsed = value
    ConfigManager.set_value(key, parsed)
    get_formatter().print_success(f"{key} = {parsed!r}")


if __name__ == "__main__":
    cli()
