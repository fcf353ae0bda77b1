"""tmux operations for launching and driving worker sessions."""

import subprocess
import time
from pathlib import Path
from typing import Optional
import logging

from .errors import DuplicateSession, TmuxError

logger = logging.getLogger(__name__)


class TmuxController:
    """Controls tmux sessions that host worker CLIs."""

    def __init__(self, config: Optional[dict] = None):
        self.config = config or {}

        # Load timeout configuration with fallbacks
        timeouts = self.config.get("timeouts", {})
        tmux_timeouts = timeouts.get("tmux", {})

        self.command_timeout_seconds = tmux_timeouts.get("command_timeout_seconds", 5)
        self.shell_settle_seconds = tmux_timeouts.get("shell_settle_seconds", 0.3)

        session_config = self.config.get("session", {})
        self.default_width = session_config.get("width", 80)
        self.default_height = session_config.get("height", 40)

    def _run_tmux(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        """Run a tmux command.

        Raises:
            TmuxError: if the command fails (when ``check``) or times out
        """
        cmd = ["tmux"] + list(args)
        logger.debug(f"Running tmux command: {' '.join(cmd[:4])}")
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=check,
                timeout=self.command_timeout_seconds,
            )
        except subprocess.CalledProcessError as e:
            raise TmuxError(f"tmux {args[0]} failed", stderr=(e.stderr or "").strip()) from e
        except subprocess.TimeoutExpired as e:
            raise TmuxError(f"tmux {args[0]} timed out after {self.command_timeout_seconds}s") from e
        except FileNotFoundError as e:
            raise TmuxError("tmux is not installed") from e

    def session_exists(self, session_name: str) -> bool:
        """Check if a tmux session exists."""
        result = self._run_tmux("has-session", "-t", session_name, check=False)
        return result.returncode == 0

    def create_session(
        self,
        session_name: str,
        working_dir: str,
        command: str,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ) -> None:
        """
        Create a detached session and type the launch command into its shell.

        Args:
            session_name: Name for the tmux session
            working_dir: Directory the shell starts in
            command: Full shell command line that starts the worker
            width: Initial pane width (default from config)
            height: Initial pane height (default from config)

        Raises:
            DuplicateSession: if a session with this name already exists
            TmuxError: if tmux fails
        """
        if self.session_exists(session_name):
            raise DuplicateSession(session_name)

        working_path = Path(working_dir).expanduser()
        if not working_path.is_dir():
            raise TmuxError(f"Working directory does not exist: {working_dir}")

        try:
            self._run_tmux(
                "new-session",
                "-d",
                "-s", session_name,
                "-x", str(width or self.default_width),
                "-y", str(height or self.default_height),
                "-c", str(working_path),
            )
        except TmuxError as e:
            # Lost a race with another creator between has-session and new-session
            if "duplicate session" in e.stderr:
                raise DuplicateSession(session_name) from e
            raise

        # Give the login shell time to print its prompt before typing into it
        time.sleep(self.shell_settle_seconds)

        self._run_tmux("send-keys", "-t", session_name, "--", command)
        self._run_tmux("send-keys", "-t", session_name, "Enter")
        logger.info(f"Created session {session_name} in {working_path}")

    def set_status_bar(self, session_name: str, label: str) -> None:
        """Show ``label`` in the session's status bar."""
        self._run_tmux(
            "set-option",
            "-t", session_name,
            "status-left",
            f"[{label}] ",
        )
        logger.info(f"Updated status bar for {session_name} to show '{label}'")

    def send_literal(self, session_name: str, text: str) -> None:
        """Type text into the session without pressing any key after it."""
        self._run_tmux("send-keys", "-t", session_name, "-l", "--", text)
        logger.debug(f"Sent {len(text)} chars to {session_name}")

    def send_key(self, session_name: str, key: str) -> None:
        """
        Send a single named key to a tmux session (e.g. 'Enter', 'Escape').

        Args:
            session_name: Target session name
            key: tmux key name
        """
        self._run_tmux("send-keys", "-t", session_name, key)
        logger.debug(f"Sent key to {session_name}: {key}")

    def kill_session(self, session_name: str) -> bool:
        """
        Kill a tmux session.

        Returns:
            True if a session was killed, False if it was already gone
        """
        if not self.session_exists(session_name):
            logger.warning(f"Session {session_name} does not exist")
            return False

        self._run_tmux("kill-session", "-t", session_name)
        logger.info(f"Killed session {session_name}")
        return True

    def list_sessions(self) -> list[str]:
        """List all tmux sessions."""
        result = self._run_tmux("list-sessions", "-F", "#{session_name}", check=False)
        if result.returncode != 0:
            return []
        return [s.strip() for s in result.stdout.strip().split("\n") if s.strip()]

    def capture_pane(self, session_name: str, lines: int = 50) -> str:
        """
        Capture the visible screen plus ``lines`` of scrollback.

        Raises:
            TmuxError: if the session is gone or tmux fails
        """
        result = self._run_tmux(
            "capture-pane",
            "-t", session_name,
            "-p",  # Print to stdout
            "-S", f"-{lines}",  # Start from N lines back
        )
        return result.stdout
