"""Routes follow-up input to the worker that owns a task."""

import logging
from typing import Awaitable, Callable, Optional

from .identity import session_name_for
from .injector import CommandInjector
from .models import LifecycleSignal, ResumeResult, WorkerProgram
from .polling import Clock, PollPolicy, poll_until
from .signals import LifecycleSignalStore
from .task_store import TaskStore
from .tmux_controller import TmuxController

logger = logging.getLogger(__name__)

ResumeRequest = Callable[[str, LifecycleSignal], Awaitable[None]]
WorkerLookup = Callable[[str], Optional[WorkerProgram]]


class ResumeCoordinator:
    """Inject into a live session, resume a paused one, or report that a fresh spawn is needed.

    Reasons reported when nothing was resumed: ``task-closed``,
    ``not-assigned``, ``not-paused`` and ``resume-timeout``. The first three
    mean the caller should spawn a new worker instead.
    """

    def __init__(
        self,
        tmux: TmuxController,
        injector: CommandInjector,
        signals: LifecycleSignalStore,
        task_store: TaskStore,
        request_resume: ResumeRequest,
        config: Optional[dict] = None,
        clock: Optional[Clock] = None,
        worker_lookup: Optional[WorkerLookup] = None,
    ):
        self.tmux = tmux
        self.injector = injector
        self.signals = signals
        self.task_store = task_store
        self.request_resume = request_resume
        self.config = config or {}
        self.clock = clock or Clock()
        self.worker_lookup = worker_lookup or (lambda _name: None)

        self.prefix = self.config.get("session", {}).get("prefix", "dispatch")
        resume_timeouts = self.config.get("timeouts", {}).get("resume", {})
        self.session_wait_seconds = resume_timeouts.get("session_wait_seconds", 30)
        self.poll_interval_seconds = resume_timeouts.get("poll_interval_seconds", 1.0)
        self.settle_seconds = resume_timeouts.get("settle_seconds", 5.0)

    async def _inject(self, session_name: str, text: str) -> ResumeResult:
        result = await self.injector.inject(session_name, text, worker=self.worker_lookup(session_name))
        reason = "injected" if result.delivered else "injection-uncertain"
        return ResumeResult(resumed=True, session_name=session_name, reason=reason)

    async def resume(self, task_id: str, followup_text: str, project: Optional[str] = None) -> ResumeResult:
        """
        Deliver ``followup_text`` to whoever holds ``task_id``.

        Raises:
            TaskStoreError: the task could not be read
        """
        task = self.task_store.show(task_id, project)
        if task.is_closed:
            logger.info(f"Task {task_id} is closed, a fresh worker is needed")
            return ResumeResult(resumed=False, reason="task-closed")
        if not task.assignee:
            return ResumeResult(resumed=False, reason="not-assigned")

        session_name = session_name_for(task.assignee, self.prefix)

        if self.tmux.session_exists(session_name):
            logger.info(f"Session {session_name} is live, injecting follow-up for {task_id}")
            return await self._inject(session_name, followup_text)

        signal = self.signals.read(session_name)
        if signal is None or not signal.resumable:
            state = signal.type.value if signal else "none"
            logger.info(f"Session {session_name} is gone and not resumable (signal: {state})")
            return ResumeResult(resumed=False, session_name=session_name, reason="not-paused")

        logger.info(f"Resuming paused session {session_name} for {task_id}")
        await self.request_resume(session_name, signal)

        async def session_up(_elapsed: float) -> Optional[bool]:
            return True if self.tmux.session_exists(session_name) else None

        policy = PollPolicy(interval=self.poll_interval_seconds, max_duration=self.session_wait_seconds)
        if not await poll_until(session_up, policy, self.clock):
            logger.warning(f"Session {session_name} did not come back within {self.session_wait_seconds}s")
            return ResumeResult(resumed=False, session_name=session_name, reason="resume-timeout")

        await self.clock.sleep(self.settle_seconds)
        return await self._inject(session_name, followup_text)
