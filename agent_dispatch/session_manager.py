"""Session registry and worker lifecycle orchestration."""

import asyncio
import json
import logging
import shlex
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Coroutine, Optional

from .cache import LookupCache
from .command_builder import CommandBuilder
from .credentials import CredentialResolver
from .errors import (
    ConfigurationError,
    LaunchFailed,
    SessionNotFound,
    TaskAlreadyActive,
    TaskStoreError,
    TmuxError,
)
from .identity import (
    agent_name_from_session,
    generate_agent_name,
    session_name_for,
    taken_names,
    write_identity_file,
)
from .injector import CommandInjector
from .launcher import SessionLauncher
from .model_catalog import ModelCatalog
from .models import (
    InjectionResult,
    LifecycleSignal,
    ReadinessOutcome,
    Selection,
    Session,
    SessionMode,
    SignalType,
    SpawnResult,
    Task,
    WorkerModel,
    WorkerProgram,
)
from .notifier import WebhookNotifier
from .polling import Clock
from .resume import ResumeCoordinator
from .routing import WorkerSelector
from .signals import LifecycleSignalStore, write_json_atomic
from .task_store import TaskStore
from .tmux_controller import TmuxController
from .workers import WorkerRegistry

logger = logging.getLogger(__name__)


class SessionManager:
    """Spawns workers into tmux sessions and keeps track of them.

    Operations on one session name are serialized; different sessions never
    wait on each other.
    """

    def __init__(
        self,
        config: Optional[dict] = None,
        tmux: Optional[TmuxController] = None,
        task_store: Optional[TaskStore] = None,
        clock: Optional[Clock] = None,
        cache: Optional[LookupCache] = None,
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        self.config = config or {}
        paths = self.config.get("paths", {})
        self.state_file = Path(paths.get("state_file", "/tmp/agent-dispatch/sessions.json")).expanduser()
        self.log_dir = Path(paths.get("log_dir", "/tmp/agent-dispatch/logs")).expanduser()
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        session_config = self.config.get("session", {})
        self.prefix = session_config.get("prefix", "dispatch")
        self.scrollback_lines = session_config.get("scrollback_lines", 10000)
        self.launch_defaults = self.config.get("launch_defaults", {})
        self.restart_settle_seconds = self.config.get("timeouts", {}).get("tmux", {}).get("restart_settle_seconds", 0.5)

        self.clock = clock or Clock()
        self.cache = cache or LookupCache(clock=self.clock)
        self.tmux = tmux or TmuxController(self.config)
        self.task_store = task_store or TaskStore(self.config)
        self.credentials = CredentialResolver(self.config)
        self.registry = WorkerRegistry(self.config, self.credentials, which=which)
        self.selector = WorkerSelector(self.registry, self.config)
        self.builder = CommandBuilder(self.config, self.credentials)
        self.launcher = SessionLauncher(self.tmux, self.config, self.clock)
        self.injector = CommandInjector(self.tmux, self.config, self.clock)
        self.signals = LifecycleSignalStore(self.config)
        self.catalog = ModelCatalog(self.cache, self.credentials, self.config)
        self.notifier = WebhookNotifier(self.config)
        self.resumer = ResumeCoordinator(
            self.tmux,
            self.injector,
            self.signals,
            self.task_store,
            request_resume=self.request_resume,
            config=self.config,
            clock=self.clock,
            worker_lookup=self._worker_for_session,
        )

        self.sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._background_tasks: set[asyncio.Task] = set()

        # Load existing sessions from state file
        self._load_state()

    # ------------------------------------------------------------------
    # Registry persistence
    # ------------------------------------------------------------------

    def _load_state(self) -> bool:
        """
        Load the session registry, dropping sessions whose tmux session is gone.

        Returns:
            True if state loaded successfully (or no state file exists)
        """
        if not self.state_file.exists():
            return True
        try:
            with open(self.state_file) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load state from {self.state_file}: {e}")
            return False

        reaped = 0
        for session_data in data.get("sessions", []):
            try:
                session = Session.from_dict(session_data)
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping malformed session record: {e}")
                continue
            if self.tmux.session_exists(session.session_name):
                self.sessions[session.session_name] = session
                logger.info(f"Restored session: {session.session_name}")
            else:
                reaped += 1
                logger.info(f"Reaped session {session.session_name}, tmux session no longer exists")

        if reaped:
            self._save_state()
        return True

    def _save_state(self) -> bool:
        """Save the registry atomically. Returns False (and logs) on failure."""
        data = {"sessions": [s.to_dict() for s in self.sessions.values()]}
        try:
            write_json_atomic(self.state_file, data)
            return True
        except OSError as e:
            logger.error(f"CRITICAL: Failed to save state to {self.state_file}: {e}")
            return False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock_for(self, session_name: str) -> asyncio.Lock:
        lock = self._locks.get(session_name)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_name] = lock
        return lock

    def _worker_for_session(self, session_name: str) -> Optional[WorkerProgram]:
        session = self.sessions.get(session_name)
        return self.registry.get(session.worker_id) if session else None

    def _run_in_background(self, coro: Coroutine[Any, Any, Any], label: str) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._background_tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.warning(f"Background {label} failed: {t.exception()}")

        task.add_done_callback(_done)
        return task

    async def wait_for_background_tasks(self) -> None:
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    def resolve_project(self, project: Optional[str] = None, task_id: Optional[str] = None) -> str:
        """
        Resolve the project directory.

        Order: explicit path, configured project name, task id prefix,
        ``default_project``. Results are cached per key.

        Raises:
            ConfigurationError: nothing resolves to an existing directory
        """
        candidates = []
        if project:
            candidates.append(project)
        if task_id and "-" in task_id:
            candidates.append(task_id[: task_id.rindex("-")])
        default_project = self.config.get("default_project")
        if default_project:
            candidates.append(default_project)

        for key in candidates:
            cache_key = f"project:{key}"
            cached = self.cache.get(cache_key)
            if cached:
                return cached
            path = self._project_path(key)
            if path:
                self.cache.set(cache_key, path)
                return path

        raise ConfigurationError(
            f"Cannot resolve project (project={project!r}, task={task_id!r})"
        )

    def _project_path(self, key: str) -> Optional[str]:
        if "/" in key or key.startswith("~"):
            path = Path(key).expanduser()
            return str(path) if path.is_dir() else None

        projects = self.config.get("projects", {}) or {}
        entry = projects.get(key)
        if isinstance(entry, dict):
            entry = entry.get("path")
        if entry:
            path = Path(entry).expanduser()
            return str(path) if path.is_dir() else None

        projects_root = self.config.get("paths", {}).get("projects_root")
        if projects_root:
            path = Path(projects_root).expanduser() / key
            if path.is_dir():
                return str(path)
        return None

    def _refresh_state(self, session: Session) -> Session:
        signal = self.signals.read(session.session_name)
        if signal:
            session.state = signal.type
        return session

    # ------------------------------------------------------------------
    # Spawn
    # ------------------------------------------------------------------

    async def spawn(
        self,
        task_id: Optional[str] = None,
        worker_id: Optional[str] = None,
        model: Optional[str] = None,
        project: Optional[str] = None,
        mode: SessionMode = SessionMode.TASK,
    ) -> SpawnResult:
        """
        Start a worker for a task (or a bare planning session).

        Raises:
            ConfigurationError, RoutingUnavailable: no usable worker/model
            TaskAlreadyActive: task is in progress with a live session
            TaskStoreError: task could not be read or assigned
            DuplicateSession: generated session name is taken
            LaunchFailed: worker returned to the shell prompt
        """
        project_path = self.resolve_project(project, task_id)
        task = self.task_store.show(task_id, project_path) if task_id else None

        if task and task.status == "in_progress" and task.assignee:
            active = session_name_for(task.assignee, self.prefix)
            if self.tmux.session_exists(active):
                raise TaskAlreadyActive(task.id, task.assignee, active)

        selection = self.selector.select(worker_id, model, task)
        logger.info(
            f"Selected {selection.worker.id}/{selection.model.id} for "
            f"{task.id if task else 'untasked session'} ({selection.reason})"
        )

        taken = taken_names(
            self.tmux.list_sessions(),
            [s.agent_name for s in self.sessions.values()],
            self.prefix,
        )
        agent_name = generate_agent_name(taken)
        session_name = session_name_for(agent_name, self.prefix)

        async with self._lock_for(session_name):
            return await self._start_worker(
                session_name, agent_name, selection, project_path, task, mode,
                assign_task=bool(task) and mode == SessionMode.TASK,
            )

    async def _start_worker(
        self,
        session_name: str,
        agent_name: str,
        selection: Selection,
        project_path: str,
        task: Optional[Task],
        mode: SessionMode,
        extra_args: Optional[list[str]] = None,
        initial_injection: bool = True,
        assign_task: bool = False,
    ) -> SpawnResult:
        """Launch, publish the initial signal, wait for readiness and hand over the task.

        With ``assign_task`` the task is assigned to the agent only after its
        session was created.
        """
        worker, model = selection.worker, selection.model

        try:
            write_identity_file(project_path, session_name, agent_name)
        except OSError as e:
            logger.warning(f"Could not write identity file for {session_name}: {e}")

        command = self.builder.build(
            worker, model, project_path, self.launch_defaults,
            task=task, agent_name=agent_name, mode=mode,
            extra_args=extra_args, include_brief=initial_injection,
        )
        logger.info(f"Launching {session_name}: {command.redacted}")
        self.launcher.launch(session_name, command.shell_command, project_path)

        session = Session(
            session_name=session_name,
            agent_name=agent_name,
            worker_id=worker.id,
            model_id=model.id,
            project_path=project_path,
            task_id=task.id if task else None,
            mode=mode,
            state=SignalType.PLANNING if mode == SessionMode.PLAN else SignalType.STARTING,
        )
        self.sessions[session_name] = session
        self._save_state()

        if assign_task and task:
            try:
                self.task_store.assign(
                    task.id, agent_name, project_path,
                    worker_id=worker.id, model_id=model.id,
                )
            except TaskStoreError as e:
                logger.error(f"{session_name} is running but {task.id} could not be assigned to {agent_name}: {e}")
                raise

        self.signals.write(LifecycleSignal(
            type=session.state,
            session_id=session_name,
            task_id=session.task_id,
            payload={
                "agentName": agent_name,
                "project": project_path,
                "model": model.id,
                "worker": worker.id,
                "taskTitle": task.title if task else None,
            },
        ))

        readiness = await self.launcher.wait_until_ready(session_name, worker)
        if readiness == ReadinessOutcome.PENDING_ACCEPTANCE:
            return SpawnResult(
                status="pending_acceptance",
                session=session,
                selection=selection,
                readiness=readiness,
                hint=f"tmux attach-session -t {session_name}",
            )
        if readiness == ReadinessOutcome.SHELL_PROMPT:
            raise LaunchFailed(
                f"{worker.name} failed to start",
                session_name=session_name,
                screen_tail=self.launcher.capture_tail(session_name),
            )

        injection = None
        if initial_injection and command.requires_post_launch_injection:
            text = self.builder.start_command(worker, agent_name, task)
            if text:
                injection = await self.injector.inject(session_name, text, worker=worker)

        self._run_in_background(self._post_spawn_hooks(session, worker), "post-spawn hooks")
        return SpawnResult(
            status="started",
            session=session,
            selection=selection,
            injection=injection,
            readiness=readiness,
        )

    async def _post_spawn_hooks(self, session: Session, worker: WorkerProgram) -> None:
        try:
            self.tmux.set_status_bar(session.session_name, f"{session.agent_name} {worker.name}")
        except TmuxError as e:
            logger.warning(f"Failed to set status bar for {session.session_name}: {e}")
        await self.notifier.notify(
            "spawned",
            session.session_name,
            agent=session.agent_name,
            worker=session.worker_id,
            model=session.model_id,
            task=session.task_id,
        )

    # ------------------------------------------------------------------
    # Follow-ups and input
    # ------------------------------------------------------------------

    async def send_followup(self, task_id: str, text: str, project: Optional[str] = None) -> dict:
        """
        Deliver follow-up text for a task, spawning a fresh worker when nobody can take it.

        Returns:
            ``{"resume": ResumeResult, "spawn": SpawnResult|None, "injection": InjectionResult|None}``
        """
        project_path = self.resolve_project(project, task_id)
        result = await self.resumer.resume(task_id, text, project_path)
        outcome = {"resume": result, "spawn": None, "injection": None}
        if result.resumed or result.reason == "resume-timeout":
            return outcome

        logger.info(f"Follow-up for {task_id} needs a fresh worker ({result.reason})")
        spawned = await self.spawn(task_id=task_id, project=project_path)
        outcome["spawn"] = spawned
        if spawned.status == "started":
            outcome["injection"] = await self.injector.inject(
                spawned.session.session_name, text, worker=spawned.selection.worker
            )
        return outcome

    async def send_input(self, session_name: str, text: str) -> InjectionResult:
        """Inject text directly into a live session."""
        if not self.tmux.session_exists(session_name):
            raise SessionNotFound(f"Session '{session_name}' is not running")
        async with self._lock_for(session_name):
            return await self.injector.inject(session_name, text, worker=self._worker_for_session(session_name))

    # ------------------------------------------------------------------
    # Pause / resume / restart / kill
    # ------------------------------------------------------------------

    def _append_session_log(self, session_name: str, scrollback: str, reason: Optional[str]) -> Path:
        log_path = self.log_dir / f"session-{session_name}.log"
        header = f"Paused {datetime.now().isoformat()}"
        if reason:
            header += f" ({reason})"
        with open(log_path, "a") as f:
            f.write(f"\n{'=' * 60}\n{header}\n{'=' * 60}\n")
            f.write(scrollback)
            if not scrollback.endswith("\n"):
                f.write("\n")
        return log_path

    async def pause(
        self,
        session_name: str,
        task_id: Optional[str] = None,
        reason: Optional[str] = None,
        kill: bool = True,
    ) -> LifecycleSignal:
        """
        Mark a session paused and resumable, archive its scrollback, and by default kill it.

        Raises:
            SessionNotFound: session neither registered nor running
        """
        session = self.sessions.get(session_name)
        alive = self.tmux.session_exists(session_name)
        if session is None and not alive:
            raise SessionNotFound(f"Session '{session_name}' not found")

        async with self._lock_for(session_name):
            payload = {
                "agentName": session.agent_name if session else agent_name_from_session(session_name, self.prefix),
                "reason": reason,
                "resumable": True,
            }
            if session:
                payload.update({
                    "project": session.project_path,
                    "worker": session.worker_id,
                    "model": session.model_id,
                })
            signal = LifecycleSignal(
                type=SignalType.PAUSED,
                session_id=session_name,
                task_id=task_id or (session.task_id if session else None),
                payload=payload,
            )
            self.signals.write(signal)

            if alive:
                try:
                    scrollback = self.tmux.capture_pane(session_name, lines=self.scrollback_lines)
                    log_path = self._append_session_log(session_name, scrollback, reason)
                    logger.info(f"Archived scrollback of {session_name} to {log_path}")
                except (TmuxError, OSError) as e:
                    logger.warning(f"Could not archive scrollback of {session_name}: {e}")
                if kill:
                    self.tmux.kill_session(session_name)

            if session:
                session.state = SignalType.PAUSED
                self._save_state()
            logger.info(f"Paused {session_name} (kill={kill})")
            return signal

    async def request_resume(self, session_name: str, signal: LifecycleSignal) -> None:
        """Relaunch a paused worker under the same session name with its resume flag."""
        payload = signal.payload
        session = self.sessions.get(session_name)

        worker_id = payload.get("worker") or (session.worker_id if session else None)
        worker = self.registry.get(worker_id) if worker_id else None
        if worker is None:
            raise ConfigurationError(f"Cannot resume {session_name}: unknown worker '{worker_id}'")

        model_id = payload.get("model") or (session.model_id if session else None)
        model = self.registry.get_model(worker, model_id) or (WorkerModel(id=model_id) if model_id else None)
        if model is None:
            model = self.registry.default_model(worker)
        if model is None:
            raise ConfigurationError(f"Cannot resume {session_name}: no model for worker '{worker.id}'")

        agent_name = (
            payload.get("agentName")
            or (session.agent_name if session else None)
            or agent_name_from_session(session_name, self.prefix)
            or session_name
        )
        project_path = payload.get("project") or (session.project_path if session else None)
        if not project_path:
            project_path = self.resolve_project(task_id=signal.task_id)

        extra_args = shlex.split(worker.resume_flag) if worker.resume_flag else None
        task = Task(id=signal.task_id) if signal.task_id else None

        async with self._lock_for(session_name):
            self.sessions.pop(session_name, None)
            await self._start_worker(
                session_name, agent_name,
                Selection(worker=worker, model=model, reason="resume"),
                project_path, task, SessionMode.TASK,
                extra_args=extra_args, initial_injection=False,
            )

    async def restart(self, session_name: str) -> SpawnResult:
        """Kill and relaunch a session with the same identity, worker, model and task."""
        session = self.sessions.get(session_name)
        if session is None:
            raise SessionNotFound(f"Session '{session_name}' not found")

        worker = self.registry.get(session.worker_id)
        if worker is None:
            raise ConfigurationError(f"Worker '{session.worker_id}' is no longer configured")
        model = self.registry.get_model(worker, session.model_id) or WorkerModel(id=session.model_id)
        task = self.task_store.show(session.task_id, session.project_path) if session.task_id else None

        async with self._lock_for(session_name):
            self.tmux.kill_session(session_name)
            await self.clock.sleep(self.restart_settle_seconds)
            self.sessions.pop(session_name, None)
            logger.info(f"Restarting {session_name}")
            return await self._start_worker(
                session_name, session.agent_name,
                Selection(worker=worker, model=model, reason="restart"),
                session.project_path, task, session.mode,
            )

    async def kill(self, session_name: str) -> bool:
        """Kill a session and drop it from the registry."""
        session = self.sessions.get(session_name)
        alive = self.tmux.session_exists(session_name)
        if session is None and not alive:
            raise SessionNotFound(f"Session '{session_name}' not found")

        async with self._lock_for(session_name):
            if alive:
                self.tmux.kill_session(session_name)
            self.sessions.pop(session_name, None)
            self._save_state()
        self._locks.pop(session_name, None)
        logger.info(f"Killed session {session_name}")
        return True

    def list_sessions(self) -> list[Session]:
        return [self._refresh_state(s) for s in self.sessions.values()]

    def get_session(self, session_name: str) -> Optional[Session]:
        session = self.sessions.get(session_name)
        return self._refresh_state(session) if session else None

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    def list_workers(self) -> list[dict]:
        workers = []
        for worker in self.registry.list():
            info = worker.to_dict()
            reason = self.registry.unavailable_reason(worker)
            info["available"] = reason is None
            info["unavailable_reason"] = reason
            workers.append(info)
        return workers

    async def list_models(self, worker_id: str) -> dict:
        worker = self.registry.get(worker_id)
        if worker is None:
            raise ConfigurationError(f"Unknown worker '{worker_id}'")
        return await self.catalog.list_models(worker)
