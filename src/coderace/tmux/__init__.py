"""tmux integration."""

from coderace.tmux.manager import PaneSnapshot, TmuxManager, parse_task_session_name

__all__ = ["PaneSnapshot", "TmuxManager", "parse_task_session_name"]
