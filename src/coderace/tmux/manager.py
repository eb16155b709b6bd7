"""tmux session management for agent executions."""

import logging
import re
import shutil
import subprocess
from dataclasses import dataclass
from typing import Any

import libtmux
from libtmux import exc

from coderace.config import defaults
from coderace.errors import SessionError

logger = logging.getLogger(__name__)

_TASK_SESSION_RE = re.compile(rf"^{re.escape(defaults.TASK_SESSION_PREFIX)}(\d+)_agent_(\d+)")


@dataclass(frozen=True)
class PaneSnapshot:
    """Visible content and cursor position of a session's active pane."""

    content: str
    cursor: tuple[int, int]


def parse_task_session_name(name: str) -> tuple[int, int] | None:
    """Extract (task_id, agent_id) from a ``task_{task}_agent_{agent}...`` name."""
    match = _TASK_SESSION_RE.match(name)
    if match is None:
        return None
    return int(match.group(1)), int(match.group(2))


class TmuxManager:
    """Creates, drives and inspects detached tmux sessions by name."""

    def __init__(self, server: libtmux.Server | None = None) -> None:
        self._server = server

    @staticmethod
    def is_available() -> bool:
        """Check if tmux is available on the system."""
        return shutil.which("tmux") is not None

    @property
    def server(self) -> libtmux.Server:
        """Get or create the tmux server connection."""
        if self._server is None:
            self._server = libtmux.Server()
        return self._server

    def _get_session(self, name: str) -> libtmux.Session:
        try:
            session = self.server.sessions.get(session_name=name, default=None)
        except exc.LibTmuxException as e:
            raise SessionError(f"Failed to look up tmux session {name}: {e}") from e
        if session is None:
            raise SessionError(f"tmux session {name} does not exist")
        return session

    def _get_pane(self, name: str) -> libtmux.Pane:
        session = self._get_session(name)
        try:
            pane = session.active_window.active_pane
        except exc.LibTmuxException as e:
            raise SessionError(f"Failed to find the active pane of {name}: {e}") from e
        if pane is None:
            raise SessionError(f"tmux session {name} has no active pane")
        return pane

    def create_session(self, name: str, start_directory: str | None = None) -> str:
        """Create a detached session and return its name.

        Raises:
            SessionError: if the session exists already or tmux fails.
        """
        try:
            session = self.server.new_session(
                session_name=name,
                attach=False,
                start_directory=start_directory,
            )
        except exc.LibTmuxException as e:
            raise SessionError(f"Failed to create tmux session {name}: {e}") from e
        logger.info("Created tmux session %s in %s", name, start_directory or ".")
        return session.name or name

    def has_session(self, name: str) -> bool:
        """Check whether a session with exactly this name is alive."""
        try:
            return self.server.has_session(name)
        except exc.LibTmuxException:
            return False

    def kill_session(self, name: str) -> None:
        """Kill a session.

        Raises:
            SessionError: if the session is gone or tmux fails.
        """
        session = self._get_session(name)
        try:
            session.kill()
        except exc.LibTmuxException as e:
            raise SessionError(f"Failed to kill tmux session {name}: {e}") from e
        logger.info("Killed tmux session %s", name)

    def send_keys(self, name: str, text: str, enter: bool = True, literal: bool = False) -> None:
        """Type text into the session's active pane, optionally pressing Enter."""
        pane = self._get_pane(name)
        try:
            pane.send_keys(text, enter=enter, suppress_history=False, literal=literal)
        except exc.LibTmuxException as e:
            raise SessionError(f"Failed to send keys to {name}: {e}") from e

    def capture(self, name: str) -> PaneSnapshot:
        """Capture the visible pane content and cursor coordinates."""
        pane = self._get_pane(name)
        try:
            lines = pane.capture_pane()
            cursor_out = pane.cmd("display-message", "-p", "#{cursor_x},#{cursor_y}")
        except exc.LibTmuxException as e:
            raise SessionError(f"Failed to capture {name}: {e}") from e

        if isinstance(lines, str):
            lines = lines.splitlines()
        return PaneSnapshot(
            content="\n".join(lines),
            cursor=_parse_cursor(cursor_out.stdout),
        )

    def list_session_names(self) -> list[str]:
        """Names of all live sessions.

        Raises:
            SessionError: if tmux cannot be queried.
        """
        try:
            return [s.name for s in self.server.sessions if s.name]
        except exc.LibTmuxException as e:
            raise SessionError(f"Failed to list tmux sessions: {e}") from e

    def list_sessions(self, preview_lines: int = 10) -> list[dict[str, Any]]:
        """List all tmux sessions with a short preview of their content."""
        sessions = []
        for session in self.server.sessions:
            name = session.name or ""
            preview = ""
            try:
                preview_content = self.capture(name).content.strip().splitlines()
                preview = "\n".join(preview_content[-preview_lines:])
            except SessionError:
                pass

            ids = parse_task_session_name(name)
            sessions.append({
                "name": name,
                "created": session.session_created,
                "windows": len(session.windows),
                "preview": preview,
                "is_task": name.startswith(defaults.TASK_SESSION_PREFIX),
                "task_id": ids[0] if ids else None,
                "agent_id": ids[1] if ids else None,
            })
        return sessions

    def attach(self, name: str) -> None:
        """Attach the current terminal to a session."""
        if not self.has_session(name):
            raise SessionError(f"tmux session {name} does not exist")
        subprocess.run(["tmux", "attach-session", "-t", name])


def _parse_cursor(stdout: list[str]) -> tuple[int, int]:
    if not stdout:
        return (0, 0)
    x, _, y = stdout[0].strip().partition(",")
    try:
        return (int(x), int(y))
    except ValueError:
        return (0, 0)
