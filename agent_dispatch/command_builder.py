"""Composes the shell command line that starts a worker."""

import logging
import shlex
from pathlib import Path
from typing import List, Optional, Tuple

from .credentials import CredentialResolver, mask_api_key
from .models import (
    AuthType,
    LaunchCommand,
    ModelFlagStyle,
    SessionMode,
    TaskInjection,
    Task,
    WorkerModel,
    WorkerProgram,
)

logger = logging.getLogger(__name__)

REDACTED_BRIEF = "'<brief>'"


def task_brief(
    task: Optional[Task],
    agent_name: Optional[str],
    brand: str = "dispatch",
    conventions_file: str = "CLAUDE.md",
) -> str:
    """Self-contained task brief for workers that take their task on the command line."""
    parts = [f"You are a {brand} agent working on a software development task."]
    if task:
        parts.append(f"Task ID: {task.id}")
        if task.title:
            parts.append(f"Task: {task.title}")
    if agent_name:
        parts.append(f"Your agent name is: {agent_name}")
    parts.append(f"Read the {conventions_file} file in the project root for workflow instructions.")
    parts.append("Start by understanding the task and implementing it.")
    return " ".join(parts)


def plan_brief(project_path: str, brand: str = "dispatch") -> str:
    """Advisory brief used instead of a task brief in plan mode."""
    project_name = Path(project_path).name or "project"
    return (
        f"You are a planning assistant for the {project_name} project. "
        "Help the user plan features, discuss architecture, and think through requirements. "
        f"Do not start work on any task. This is a {brand} planning session."
    )


def bootstrap_line(worker: WorkerProgram, brand: str = "dispatch") -> str:
    """System prompt for workers that receive their task after startup."""
    if worker.start_command:
        return f"You are a {brand} agent. Run {worker.start_command.split()[0]} to begin work."
    return f"You are a {brand} agent. Wait for your task assignment."


class CommandBuilder:
    """Builds ``LaunchCommand`` objects from a worker's calling conventions."""

    def __init__(self, config: Optional[dict] = None, credentials: Optional[CredentialResolver] = None):
        self.config = config or {}
        self.credentials = credentials or CredentialResolver(self.config)

    def model_flag_value(self, worker: WorkerProgram, model: WorkerModel) -> str:
        style = worker.model_flag_style
        if style == ModelFlagStyle.SHORT_NAME:
            return model.short_name
        if style == ModelFlagStyle.PROVIDER_PREFIXED and "/" not in model.id:
            provider = worker.auth.provider or "anthropic"
            return f"{provider}/{model.id}"
        return model.id

    def build_env(self, worker: WorkerProgram, launch_defaults: dict) -> dict:
        env = {str(k): str(v) for k, v in (launch_defaults.get("env") or {}).items()}
        if worker.auth.type == AuthType.API_KEY:
            var = self.credentials.env_var_for(worker.auth.provider, worker.auth.env_var)
            key = self.credentials.resolve(worker.auth.provider, worker.auth.env_var)
            if var and key:
                env[var] = key
        return env

    def _brief(
        self,
        worker: WorkerProgram,
        project_path: str,
        task: Optional[Task],
        agent_name: Optional[str],
        plan: bool,
        brand: str,
        conventions_file: str,
    ) -> Tuple[Optional[str], List[str], bool]:
        """Return (brief, command line arguments carrying it, requires post-launch injection)."""
        if plan:
            brief = plan_brief(project_path, brand)
            if worker.system_prompt_flag:
                return brief, [worker.system_prompt_flag, shlex.quote(brief)], False
            if worker.task_injection == TaskInjection.PROMPT_FLAG and worker.prompt_flag:
                return brief, [worker.prompt_flag, shlex.quote(brief)], False
            if worker.task_injection == TaskInjection.ARGUMENT:
                return brief, [shlex.quote(brief)], False
            return None, [], False

        if worker.task_injection == TaskInjection.POST_LAUNCH:
            if worker.system_prompt_flag:
                brief = bootstrap_line(worker, brand)
                return brief, [worker.system_prompt_flag, shlex.quote(brief)], True
            return None, [], True

        if not task and not agent_name:
            return None, [], False
        brief = task_brief(task, agent_name, brand, conventions_file)
        if worker.task_injection == TaskInjection.PROMPT_FLAG and worker.prompt_flag:
            return brief, [worker.prompt_flag, shlex.quote(brief)], False
        return brief, [shlex.quote(brief)], False

    def build(
        self,
        worker: WorkerProgram,
        model: WorkerModel,
        project_path: str,
        launch_defaults: Optional[dict] = None,
        task: Optional[Task] = None,
        agent_name: Optional[str] = None,
        mode: SessionMode = SessionMode.TASK,
        extra_args: Optional[List[str]] = None,
        include_brief: bool = True,
    ) -> LaunchCommand:
        """
        Compose the full launch command.

        Args:
            worker: Worker program to launch
            model: Resolved model
            project_path: Directory the worker runs in
            launch_defaults: ``launch_defaults`` config section
            task: Task for the brief (task mode only)
            agent_name: Identity assigned to the worker
            mode: Task or plan mode
            extra_args: Arguments appended verbatim before the brief (e.g. a resume flag)
            include_brief: False when relaunching a worker that already has its task

        Returns:
            LaunchCommand with the shell line, the environment it sets, and a
            redacted rendering for logs
        """
        launch_defaults = launch_defaults if launch_defaults is not None else self.config.get("launch_defaults", {})
        brand = launch_defaults.get("brand", "dispatch")
        conventions_file = launch_defaults.get("conventions_file", "CLAUDE.md")
        autonomous = bool(launch_defaults.get("autonomous_mode", False))
        plan = mode == SessionMode.PLAN

        env = self.build_env(worker, launch_defaults)

        # Static flags never carry the permission flag; autonomous_mode alone decides it
        flags = [f for f in worker.flags if f != worker.permission_flag]
        if plan:
            flags.extend(worker.plan_flags)
        elif autonomous and worker.permission_flag:
            flags.append(worker.permission_flag)
        if extra_args:
            flags.extend(extra_args)

        model_value = self.model_flag_value(worker, model)
        if worker.startup_pattern:
            invocation = (
                worker.startup_pattern
                .replace("{command}", worker.command)
                .replace("{model}", shlex.quote(model_value))
                .replace("{flags}", " ".join(shlex.quote(f) for f in flags))
            )
        else:
            parts = [worker.command, worker.model_flag, shlex.quote(model_value)]
            parts.extend(shlex.quote(f) for f in flags)
            invocation = " ".join(parts)

        brief, brief_args, requires_injection = None, [], False
        if include_brief:
            brief, brief_args, requires_injection = self._brief(
                worker, project_path, task, agent_name, plan, brand, conventions_file
            )

        env_prefix = " ".join(f"{k}={shlex.quote(v)}" for k, v in env.items())
        head = f"cd {shlex.quote(project_path)} &&"
        command_line = " ".join(p for p in [head, env_prefix, invocation, *brief_args] if p)

        redacted_env = " ".join(
            f"{k}={mask_api_key(v) if k not in (launch_defaults.get('env') or {}) else shlex.quote(v)}"
            for k, v in env.items()
        )
        redacted_brief = [a if a != shlex.quote(brief) else REDACTED_BRIEF for a in brief_args] if brief else brief_args
        redacted = " ".join(p for p in [head, redacted_env, invocation, *redacted_brief] if p)

        return LaunchCommand(
            shell_command=command_line,
            env=env,
            requires_post_launch_injection=requires_injection,
            redacted=redacted,
        )

    def start_command(self, worker: WorkerProgram, agent_name: str, task: Optional[Task]) -> Optional[str]:
        """Text to inject once a post-launch worker is ready."""
        if worker.start_command:
            return worker.start_command.format(agent=agent_name, task=task.id if task else "").strip()
        if task:
            defaults = self.config.get("launch_defaults", {})
            return task_brief(
                task, agent_name, defaults.get("brand", "dispatch"), defaults.get("conventions_file", "CLAUDE.md")
            )
        return None
