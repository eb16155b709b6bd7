"""Output formatting using Rich for terminal tables and panels."""

from collections.abc import Iterable
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

from coderace.orchestration.models import CleanupReport, ExecutionView
from coderace.ranking.engine import (
    AgentHistoryEntry,
    HeadToHead,
    LeaderboardEntry,
    TaskCompetitionResult,
)
from coderace.storage.models import Agent, BaseDirectory, Competition, Project, Task

CODERACE_THEME = Theme(
    {
        "status.starting": "cyan",
        "status.running": "blue",
        "status.waiting": "yellow bold",
        "status.completed": "green",
        "status.failed": "red",
        "status.rejected": "magenta",
        "success": "green",
        "error": "red bold",
        "warning": "yellow",
        "info": "blue",
        "metadata": "dim",
    }
)


def _status(status: str) -> str:
    return f"[status.{status}]{status}[/status.{status}]"


def _ts(value: Any) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else ""


class OutputFormatter:
    """Handles all output formatting for coderace."""

    def __init__(self, color: bool = True, verbose: bool = False) -> None:
        self.console = Console(theme=CODERACE_THEME, force_terminal=color, highlight=color)
        self.verbose = verbose

    def print_error(self, message: str) -> None:
        """Print an error message."""
        self.console.print(f"[error]Error: {message}[/error]")

    def print_success(self, message: str) -> None:
        """Print a success message."""
        self.console.print(f"[success]{message}[/success]")

    def print_info(self, message: str) -> None:
        """Print an info message."""
        self.console.print(f"[info]{message}[/info]")

    def print_warning(self, message: str) -> None:
        """Print a warning message."""
        self.console.print(f"[warning]{message}[/warning]")

    def print_json(self, data: str) -> None:
        self.console.print_json(data)

    # --- catalogue ---

    def print_projects(self, projects: list[Project]) -> None:
        table = Table(title="Projects")
        table.add_column("ID", justify="right")
        table.add_column("Name", style="cyan")
        table.add_column("Created", style="metadata")
        for project in projects:
            table.add_row(str(project.id), project.name, _ts(project.created_at))
        self.console.print(table)

    def print_base_directories(self, directories: list[BaseDirectory]) -> None:
        table = Table(title="Base Directories")
        table.add_column("ID", justify="right")
        table.add_column("Path", style="cyan")
        table.add_column("Git", justify="center")
        table.add_column("Setup")
        table.add_column("Teardown")
        for directory in directories:
            table.add_row(
                str(directory.id),
                directory.path,
                "yes" if directory.git_initialized else "no",
                str(len(directory.setup_commands.splitlines())),
                str(len(directory.teardown_commands.splitlines())),
            )
        self.console.print(table)

    def print_tasks(self, tasks: list[Task]) -> None:
        table = Table(title="Tasks")
        table.add_column("ID", justify="right")
        table.add_column("Project", justify="right")
        table.add_column("Title", style="cyan")
        table.add_column("Status")
        for task in tasks:
            table.add_row(str(task.id), str(task.project_id), task.title, task.status)
        self.console.print(table)

    def print_agents(self, agents: list[Agent]) -> None:
        table = Table(title="Agents")
        table.add_column("ID", justify="right")
        table.add_column("Name", style="cyan")
        table.add_column("Command")
        table.add_column("Rating", justify="right")
        table.add_column("Games", justify="right")
        for agent in agents:
            table.add_row(
                str(agent.id),
                agent.name,
                agent.launch_command,
                f"{agent.elo_rating:.1f}",
                str(agent.games_played),
            )
        self.console.print(table)

    # --- executions ---

    def print_executions(self, views: list[ExecutionView], title: str = "Executions") -> None:
        table = Table(title=title)
        table.add_column("ID", justify="right")
        table.add_column("Task", justify="right")
        table.add_column("Agent", justify="right")
        table.add_column("Status")
        table.add_column("Session", style="metadata")
        table.add_column("Dev Server", style="metadata")
        for view in views:
            table.add_row(
                str(view.id),
                str(view.task_id),
                str(view.agent_id),
                _status(view.status.value),
                view.session_name or "-",
                view.dev_session_name or "-",
            )
        self.console.print(table)

    def print_execution(self, view: ExecutionView) -> None:
        lines = [
            f"Task: {view.task_id}",
            f"Agent: {view.agent_id}",
            f"Status: {_status(view.status.value)}",
            f"Session: {view.session_name or '-'}",
            f"Dev server: {view.dev_session_name or '-'}",
        ]
        if self.verbose:
            lines.append(f"[metadata]stored status={view.stored_status.value}, "
                         f"updated={_ts(view.updated_at)}[/metadata]")
        self.console.print(Panel("\n".join(lines), title=f"Execution {view.id}", border_style="info"))

    def print_cleanup_report(self, report: CleanupReport) -> None:
        table = Table(show_header=True)
        table.add_column("Step")
        table.add_column("Result", justify="center")
        table.add_column("Detail", style="metadata")
        for step in report.steps:
            result = "[success]ok[/success]" if step.ok else "[error]failed[/error]"
            table.add_row(step.name, result, step.detail)
        border = "success" if report.clean else "warning"
        self.console.print(Panel(table, title=f"Cleanup of execution {report.execution_id}",
                                 border_style=border))

    # --- ranking ---

    def print_batch_result(self, batch: TaskCompetitionResult) -> None:
        lines = [f"[success]{batch.new_competitions} new competition(s)[/success]"]
        for competition in batch.competitions:
            lines.append(
                f"#{competition.id}: agent {competition.agent1_id} vs agent "
                f"{competition.agent2_id}, winner {competition.winner_agent_id or 'draw'}"
            )
        if batch.ambiguous_pairs:
            pairs = ", ".join(f"{a}/{b}" for a, b in batch.ambiguous_pairs)
            lines.append(f"[warning]Ambiguous execution pairs (not recorded): {pairs}[/warning]")
        self.console.print(Panel("\n".join(lines), title=f"Task {batch.task_id}",
                                 border_style="info"))

    def print_leaderboard(self, entries: list[LeaderboardEntry]) -> None:
        table = Table(title="Leaderboard")
        table.add_column("#", justify="right")
        table.add_column("Agent", style="cyan")
        table.add_column("Rating", justify="right", style="bold")
        table.add_column("Games", justify="right")
        table.add_column("W", justify="right")
        table.add_column("L", justify="right")
        table.add_column("D", justify="right")
        table.add_column("Win %", justify="right")
        for entry in entries:
            table.add_row(
                str(entry.rank),
                entry.name,
                f"{entry.rating:.1f}",
                str(entry.games_played),
                str(entry.wins),
                str(entry.losses),
                str(entry.draws),
                f"{entry.win_rate * 100:.0f}",
            )
        self.console.print(table)

    def print_agent_history(
        self, agent_name: str, entries: list[AgentHistoryEntry], names: dict[int, str]
    ) -> None:
        table = Table(title=f"History of {agent_name}")
        table.add_column("Competition", justify="right")
        table.add_column("Task", justify="right")
        table.add_column("Opponent", style="cyan")
        table.add_column("Outcome")
        table.add_column("Rating", justify="right")
        table.add_column("Delta", justify="right")
        styles = {"win": "success", "loss": "error", "draw": "warning"}
        for entry in entries:
            style = styles[entry.outcome]
            table.add_row(
                str(entry.competition_id),
                str(entry.task_id),
                names.get(entry.opponent_id, str(entry.opponent_id)),
                f"[{style}]{entry.outcome}[/{style}]",
                f"{entry.rating_after:.1f}",
                f"{entry.delta:+.1f}",
            )
        self.console.print(table)

    def print_head_to_head(self, record: HeadToHead, names: dict[int, str]) -> None:
        name_a = names.get(record.agent_a_id, str(record.agent_a_id))
        name_b = names.get(record.agent_b_id, str(record.agent_b_id))
        self.console.print(Panel(
            f"Games: {record.total_games}\n"
            f"{name_a} wins: {record.agent_a_wins}\n"
            f"{name_b} wins: {record.agent_b_wins}\n"
            f"Draws: {record.draws}",
            title=f"{name_a} vs {name_b}",
            border_style="info",
        ))
        if self.verbose and record.competitions:
            self.print_competitions(record.competitions, names)

    def print_competitions(self, competitions: Iterable[Competition], names: dict[int, str]) -> None:
        table = Table(title="Competitions")
        table.add_column("ID", justify="right")
        table.add_column("Task", justify="right")
        table.add_column("Agent 1", style="cyan")
        table.add_column("Agent 2", style="cyan")
        table.add_column("Winner")
        table.add_column("K", justify="right")
        for competition in competitions:
            winner = (
                names.get(competition.winner_agent_id, str(competition.winner_agent_id))
                if competition.winner_agent_id is not None
                else "draw"
            )
            table.add_row(
                str(competition.id),
                str(competition.task_id),
                f"{names.get(competition.agent1_id, competition.agent1_id)} "
                f"({competition.agent1_rating_before:.0f}->{competition.agent1_rating_after:.0f})",
                f"{names.get(competition.agent2_id, competition.agent2_id)} "
                f"({competition.agent2_rating_before:.0f}->{competition.agent2_rating_after:.0f})",
                winner,
                f"{competition.k_factor:.0f}",
            )
        self.console.print(table)

    def print_competition(self, competition: Competition, names: dict[int, str]) -> None:
        self.print_competitions([competition], names)
        if competition.notes:
            self.console.print(f"[metadata]{competition.notes}[/metadata]")

    # --- tmux ---

    def print_sessions(self, sessions: list[dict[str, Any]], show_preview: bool = False) -> None:
        table = Table(title="tmux Sessions")
        table.add_column("Name", style="cyan")
        table.add_column("Task", justify="right")
        table.add_column("Agent", justify="right")
        table.add_column("Windows", justify="right")
        for session in sessions:
            table.add_row(
                session["name"],
                str(session["task_id"] or "-"),
                str(session["agent_id"] or "-"),
                str(session["windows"]),
            )
        self.console.print(table)
        if show_preview:
            for session in sessions:
                if session["preview"]:
                    self.console.print(Panel(session["preview"], title=session["name"],
                                             border_style="metadata"))


# Global formatter instance
_formatter: OutputFormatter | None = None


def get_formatter(color: bool = True, verbose: bool = False) -> OutputFormatter:
    """Get or create the global formatter instance."""
    global _formatter
    if _formatter is None:
        _formatter = OutputFormatter(color=color, verbose=verbose)
    return _formatter


def configure_formatter(color: bool = True, verbose: bool = False) -> OutputFormatter:
    """Replace the global formatter, e.g. when CLI flags change."""
    global _formatter
    _formatter = OutputFormatter(color=color, verbose=verbose)
    return _formatter
