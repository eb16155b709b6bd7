"""Idle detection for agent sessions.

A session is classified as waiting once its visible pane content and
cursor have not changed for longer than a threshold. The detector only
reports; it never touches persisted execution status.
"""

import asyncio
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from coderace.config import defaults
from coderace.orchestration.models import SessionActivity
from coderace.tmux.manager import PaneSnapshot

logger = logging.getLogger(__name__)


@dataclass
class SessionState:
    """Last observation of one session"""
    session_name: str
    content: str
    cursor: tuple[int, int]
    unchanged_since: float
    waiting: bool = False


class WaitingDetector:
    """Tracks pane snapshots per session name and derives waiting/running.

    Args:
        capture: returns the current snapshot of a session, raising on failure.
        list_sessions: returns the names of all live sessions.
        threshold_seconds: how long a pane must stay unchanged to count as waiting.
        clock: monotonic time source in seconds.
    """

    def __init__(
        self,
        capture: Callable[[str], PaneSnapshot],
        list_sessions: Callable[[], list[str]],
        threshold_seconds: float = defaults.DEFAULT_WAITING_THRESHOLD_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._capture = capture
        self._list_sessions = list_sessions
        self.threshold_seconds = threshold_seconds
        self._clock = clock
        self._states: dict[str, SessionState] = {}
        self._lock = threading.Lock()

    def check(self, session_name: str) -> SessionActivity:
        """Snapshot a session and classify it. Never raises."""
        try:
            snapshot = self._capture(session_name)
        except Exception as e:
            logger.debug("Capture of %s failed, reporting running: %s", session_name, e)
            return SessionActivity.RUNNING

        now = self._clock()
        with self._lock:
            state = self._states.get(session_name)
            if state is None:
                self._states[session_name] = SessionState(
                    session_name=session_name,
                    content=snapshot.content,
                    cursor=snapshot.cursor,
                    unchanged_since=now,
                )
                return SessionActivity.RUNNING

            if state.content != snapshot.content or state.cursor != snapshot.cursor:
                state.content = snapshot.content
                state.cursor = snapshot.cursor
                state.unchanged_since = now
                state.waiting = False
                return SessionActivity.RUNNING

            was_waiting = state.waiting
            state.waiting = now - state.unchanged_since > self.threshold_seconds

        if state.waiting and not was_waiting:
            logger.info("Session %s is waiting for input", session_name)
        return SessionActivity.WAITING if state.waiting else SessionActivity.RUNNING

    def is_waiting(self, session_name: str) -> bool:
        return self.check(session_name) is SessionActivity.WAITING

    def forget(self, session_name: str) -> None:
        """Drop the state kept for a session."""
        with self._lock:
            self._states.pop(session_name, None)

    def tracked(self) -> list[str]:
        with self._lock:
            return list(self._states)

    def sweep(self) -> list[str]:
        """Purge state for sessions that no longer exist.

        Returns:
            The purged session names; empty if live sessions could not be listed.
        """
        try:
            live = set(self._list_sessions())
        except Exception as e:
            logger.warning("Skipping sweep, could not list sessions: %s", e)
            return []

        with self._lock:
            stale = [name for name in self._states if name not in live]
            for name in stale:
                del self._states[name]

        if stale:
            logger.debug("Swept %d stale session states: %s", len(stale), ", ".join(stale))
        return stale

    async def run_sweeper(
        self,
        interval: float = defaults.DEFAULT_SWEEP_INTERVAL_SECONDS,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Sweep every ``interval`` seconds until ``stop_event`` is set."""
        stop_event = stop_event or asyncio.Event()
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                await asyncio.to_thread(self.sweep)
