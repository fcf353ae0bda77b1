"""Delivers text into a running worker session with bounded retry."""

import logging
from typing import List, Optional

from .errors import TmuxError
from .models import AckState, InjectionResult, WorkerProgram
from .patterns import GENERIC_ACK_MARKERS, classify_injection, patterns_for
from .polling import Clock
from .tmux_controller import TmuxController

logger = logging.getLogger(__name__)


class CommandInjector:
    """Types text, presses the activation key separately, then checks the screen.

    The screen is captured before typing so that only markers new since then
    count as acknowledgement.

    Never sends an interrupt key: a worker that is busy would abort whatever
    it was doing.
    """

    def __init__(self, tmux: TmuxController, config: Optional[dict] = None, clock: Optional[Clock] = None):
        self.tmux = tmux
        self.config = config or {}
        self.clock = clock or Clock()

        injection = self.config.get("timeouts", {}).get("injection", {})
        self.max_attempts = injection.get("max_attempts", 3)
        self.text_settle_seconds = injection.get("text_settle_seconds", 0.1)
        self.ack_wait_seconds = injection.get("ack_wait_seconds", 2.0)
        self.key_retry_wait_seconds = injection.get("key_retry_wait_seconds", 0.5)
        self.ambiguous_wait_seconds = injection.get("ambiguous_wait_seconds", 2.0)
        self.error_retry_seconds = injection.get("error_retry_seconds", 1.0)
        self.activation_key = injection.get("activation_key", "Enter")
        self.capture_lines = self.config.get("session", {}).get("capture_lines", 50)

    def _ack_markers(self, worker: Optional[WorkerProgram]) -> List[str]:
        if worker is None:
            return list(GENERIC_ACK_MARKERS)
        return patterns_for(worker).ack_markers

    async def inject(
        self,
        session_name: str,
        text: str,
        max_attempts: Optional[int] = None,
        worker: Optional[WorkerProgram] = None,
    ) -> InjectionResult:
        """
        Deliver ``text`` to ``session_name``.

        Returns:
            InjectionResult with delivered=False if no attempt could confirm
            delivery. That is a soft outcome: the session keeps running.
        """
        max_attempts = max_attempts or self.max_attempts
        ack_markers = self._ack_markers(worker)
        text_sent = False
        baseline = ""
        state = AckState.AMBIGUOUS

        for attempt in range(1, max_attempts + 1):
            try:
                if not text_sent:
                    baseline = self.tmux.capture_pane(session_name, lines=self.capture_lines)
                    self.tmux.send_literal(session_name, text)
                    text_sent = True
                    await self.clock.sleep(self.text_settle_seconds)
                    self.tmux.send_key(session_name, self.activation_key)
                    await self.clock.sleep(self.ack_wait_seconds)
                elif state == AckState.UNSENT:
                    logger.info(f"Attempt {attempt}: text still in input of {session_name}, resending {self.activation_key}")
                    self.tmux.send_key(session_name, self.activation_key)
                    await self.clock.sleep(self.key_retry_wait_seconds)
                else:
                    logger.info(f"Attempt {attempt}: input to {session_name} likely in progress, waiting")
                    await self.clock.sleep(self.ambiguous_wait_seconds)

                screen = self.tmux.capture_pane(session_name, lines=self.capture_lines)
                state = classify_injection(screen, text, ack_markers, baseline=baseline)
            except TmuxError as e:
                logger.error(f"Attempt {attempt} to inject into {session_name} failed: {e} {e.stderr}")
                # Text typed but key not confirmed: next attempt presses the key only
                state = AckState.UNSENT if text_sent else AckState.AMBIGUOUS
                await self.clock.sleep(self.error_retry_seconds)
                continue

            if state == AckState.ACKNOWLEDGED:
                logger.info(f"Input acknowledged by {session_name} on attempt {attempt}")
                return InjectionResult(delivered=True, attempts=attempt, state=state)

        logger.warning(
            f"Input to {session_name} may not have been executed after {max_attempts} attempts "
            f"(last state: {state.value})"
        )
        return InjectionResult(delivered=False, attempts=max_attempts, state=state)
