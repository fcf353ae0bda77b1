"""Starts worker sessions and waits for their UI to come up."""

import logging
from typing import Optional

from .errors import TmuxError
from .models import ReadinessOutcome, WorkerProgram
from .patterns import classify_screen, patterns_for, screen_tail
from .polling import Clock, PollPolicy, poll_until
from .tmux_controller import TmuxController

logger = logging.getLogger(__name__)


class SessionLauncher:
    """Launch plus readiness detection for one worker session at a time."""

    def __init__(self, tmux: TmuxController, config: Optional[dict] = None, clock: Optional[Clock] = None):
        self.tmux = tmux
        self.config = config or {}
        self.clock = clock or Clock()

        defaults = self.config.get("launch_defaults", {})
        self.startup_timeout_seconds = defaults.get("startup_timeout_seconds", 20)
        self.poll_interval_seconds = defaults.get("poll_interval_seconds", 0.5)
        self.shell_prompt_grace_seconds = defaults.get("shell_prompt_grace_seconds", 5)

        session_config = self.config.get("session", {})
        self.width = session_config.get("width", 80)
        self.height = session_config.get("height", 40)
        self.capture_lines = session_config.get("capture_lines", 50)

    def launch(
        self,
        session_name: str,
        shell_command: str,
        working_dir: str,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ) -> None:
        """
        Create the session and start the worker command in it.

        Raises:
            DuplicateSession: name already in use; nothing was started
            TmuxError: tmux failed
        """
        self.tmux.create_session(
            session_name,
            working_dir,
            shell_command,
            width=width or self.width,
            height=height or self.height,
        )

    def poll_policy(self) -> PollPolicy:
        return PollPolicy(interval=self.poll_interval_seconds, max_duration=self.startup_timeout_seconds)

    async def wait_until_ready(
        self,
        session_name: str,
        worker: WorkerProgram,
        policy: Optional[PollPolicy] = None,
    ) -> ReadinessOutcome:
        """Poll the screen until the worker is ready, blocked, or back at a shell.

        Per tick: a permission dialog wins, then ready markers, then a bare shell
        prompt (only after the grace period). Dialogs are never answered here.
        """
        patterns = patterns_for(worker)
        policy = policy or self.poll_policy()

        async def check(elapsed: float) -> Optional[ReadinessOutcome]:
            try:
                screen = self.tmux.capture_pane(session_name, lines=self.capture_lines)
            except TmuxError as e:
                # Session may not be capturable yet
                logger.debug(f"Capture of {session_name} failed at {elapsed:.1f}s: {e}")
                return None

            evidence = classify_screen(screen, patterns)
            if evidence.dialog_pending:
                logger.warning(f"{worker.name} in {session_name} is showing a permission dialog")
                return ReadinessOutcome.PENDING_ACCEPTANCE
            if evidence.ready:
                logger.info(f"{worker.name} ready in {session_name} after {elapsed:.1f}s")
                return ReadinessOutcome.READY
            if evidence.shell_prompt and elapsed > self.shell_prompt_grace_seconds:
                logger.error(
                    f"{worker.name} failed to start in {session_name}, shell prompt detected. "
                    f"Screen tail: {screen_tail(screen)!r}"
                )
                return ReadinessOutcome.SHELL_PROMPT
            return None

        outcome = await poll_until(check, policy, self.clock)
        if outcome is None:
            logger.warning(
                f"{worker.name} may not have started in {session_name} "
                f"after {policy.max_duration}s, proceeding with caution"
            )
            return ReadinessOutcome.TIMED_OUT
        return outcome

    def capture_tail(self, session_name: str, chars: int = 300) -> str:
        """Screen tail for error reports. Empty if the session cannot be captured."""
        try:
            return screen_tail(self.tmux.capture_pane(session_name, lines=self.capture_lines), chars)
        except TmuxError:
            return ""
