"""Data models for Agent Dispatch."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, List


class TaskInjection(Enum):
    """How a worker receives its initial task."""
    ARGUMENT = "argument"        # Positional argument on the command line
    PROMPT_FLAG = "prompt_flag"  # Via the worker's prompt flag
    POST_LAUNCH = "post_launch"  # Typed into the session once it is ready


class ModelFlagStyle(Enum):
    """Syntax of the model flag value."""
    SHORT_NAME = "short_name"                # --model opus
    FULL_ID = "full_id"                      # --model claude-opus-4-1
    PROVIDER_PREFIXED = "provider_prefixed"  # --model anthropic/claude-opus-4-1


class AuthType(Enum):
    NONE = "none"
    SUBSCRIPTION = "subscription"
    API_KEY = "api_key"


class SessionMode(Enum):
    """Launch mode for a session."""
    TASK = "task"  # Work on a task autonomously
    PLAN = "plan"  # Advisory planning session, no task brief


class SignalType(Enum):
    """Lifecycle states published by sessions."""
    STARTING = "starting"
    WORKING = "working"
    NEEDS_INPUT = "needs_input"
    REVIEW = "review"
    COMPLETED = "completed"
    PLANNING = "planning"
    PAUSED = "paused"


class ReadinessOutcome(Enum):
    """Result of waiting for a freshly launched worker."""
    READY = "ready"
    PENDING_ACCEPTANCE = "pending_acceptance"  # Permission dialog on screen
    SHELL_PROMPT = "shell_prompt"              # Worker exited back to the shell
    TIMED_OUT = "timed_out"


class AckState(Enum):
    """Classification of the screen after an injection attempt."""
    ACKNOWLEDGED = "acknowledged"  # Worker visibly started processing
    UNSENT = "unsent"              # Text still sits in the input line
    AMBIGUOUS = "ambiguous"        # Neither, keep waiting


@dataclass
class Task:
    """Task descriptor as returned by the task store."""
    id: str
    title: str = ""
    description: str = ""
    type: str = ""
    labels: List[str] = field(default_factory=list)
    priority: Optional[int] = None
    project: str = ""
    assignee: Optional[str] = None
    status: str = "open"

    def __post_init__(self):
        if not self.project and "-" in self.id:
            self.project = self.id[: self.id.rindex("-")]

    @property
    def is_closed(self) -> bool:
        return self.status == "closed"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "labels": list(self.labels),
            "priority": self.priority,
            "project": self.project,
            "assignee": self.assignee,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        # Task store uses issue_type for the type field
        task_type = data.get("type") or data.get("issue_type") or ""
        priority = data.get("priority")
        if isinstance(priority, str) and priority.lstrip("pP").isdigit():
            priority = int(priority.lstrip("pP"))
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            description=data.get("description", "") or "",
            type=task_type,
            labels=list(data.get("labels") or []),
            priority=priority,
            project=data.get("project", "") or "",
            assignee=data.get("assignee") or None,
            status=data.get("status", "open"),
        )


@dataclass
class WorkerModel:
    """A model a worker can run."""
    id: str
    short_name: str = ""
    name: str = ""

    def __post_init__(self):
        if not self.short_name:
            self.short_name = self.id
        if not self.name:
            self.name = self.short_name

    @property
    def provider(self) -> Optional[str]:
        if "/" in self.id:
            return self.id.split("/", 1)[0]
        return None

    def to_dict(self) -> dict:
        return {"id": self.id, "short_name": self.short_name, "name": self.name}

    @classmethod
    def from_dict(cls, data: dict) -> "WorkerModel":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class AuthRequirement:
    """What a worker needs before it can run."""
    type: AuthType = AuthType.NONE
    provider: Optional[str] = None
    env_var: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "AuthRequirement":
        if not data:
            return cls()
        return cls(
            type=AuthType(data.get("type", "none")),
            provider=data.get("provider"),
            env_var=data.get("env_var"),
        )

    def to_dict(self) -> dict:
        return {"type": self.type.value, "provider": self.provider, "env_var": self.env_var}


@dataclass
class WorkerPatterns:
    """Screen patterns overriding the built-in ones for a worker."""
    ready: List[str] = field(default_factory=list)
    dialog: List[str] = field(default_factory=list)
    ack: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "WorkerPatterns":
        if not data:
            return cls()
        return cls(
            ready=list(data.get("ready", [])),
            dialog=list(data.get("dialog", [])),
            ack=list(data.get("ack", [])),
        )


@dataclass
class WorkerProgram:
    """A configured worker CLI and its calling conventions."""
    id: str
    command: str
    name: str = ""
    task_injection: TaskInjection = TaskInjection.POST_LAUNCH
    model_flag: str = "--model"
    model_flag_style: ModelFlagStyle = ModelFlagStyle.FULL_ID
    permission_flag: Optional[str] = None
    auth: AuthRequirement = field(default_factory=AuthRequirement)
    flags: List[str] = field(default_factory=list)
    plan_flags: List[str] = field(default_factory=list)
    system_prompt_flag: Optional[str] = None
    prompt_flag: Optional[str] = None
    start_command: Optional[str] = None  # e.g. "/work:start {agent} {task}"
    resume_flag: Optional[str] = None
    startup_pattern: Optional[str] = None  # e.g. "{command} {model} {flags}"
    default_model: Optional[str] = None
    models: List[WorkerModel] = field(default_factory=list)
    patterns: WorkerPatterns = field(default_factory=WorkerPatterns)
    enabled: bool = True

    def __post_init__(self):
        if not self.name:
            self.name = self.id

    @property
    def binary(self) -> str:
        """Executable name, without any arguments baked into the command."""
        return self.command.split()[0] if self.command.strip() else self.command

    @classmethod
    def from_dict(cls, worker_id: str, data: dict) -> "WorkerProgram":
        return cls(
            id=worker_id,
            command=data.get("command", worker_id),
            name=data.get("name", ""),
            task_injection=TaskInjection(data.get("task_injection", "post_launch")),
            model_flag=data.get("model_flag", "--model"),
            model_flag_style=ModelFlagStyle(data.get("model_flag_style", "full_id")),
            permission_flag=data.get("permission_flag"),
            auth=AuthRequirement.from_dict(data.get("auth")),
            flags=list(data.get("flags", [])),
            plan_flags=list(data.get("plan_flags", [])),
            system_prompt_flag=data.get("system_prompt_flag"),
            prompt_flag=data.get("prompt_flag"),
            start_command=data.get("start_command"),
            resume_flag=data.get("resume_flag"),
            startup_pattern=data.get("startup_pattern"),
            default_model=data.get("default_model"),
            models=[WorkerModel.from_dict(m) for m in data.get("models", [])],
            patterns=WorkerPatterns.from_dict(data.get("patterns")),
            enabled=data.get("enabled", True),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "command": self.command,
            "task_injection": self.task_injection.value,
            "model_flag_style": self.model_flag_style.value,
            "auth": self.auth.to_dict(),
            "default_model": self.default_model,
            "models": [m.to_dict() for m in self.models],
            "enabled": self.enabled,
        }


@dataclass
class RuleCondition:
    """A single predicate over a task field."""
    field: str
    operator: str
    value: Any = None

    @classmethod
    def from_dict(cls, data: dict) -> "RuleCondition":
        return cls(field=data["field"], operator=data.get("operator", "equals"), value=data.get("value"))


@dataclass
class RoutingRule:
    """Maps matching tasks to a worker and optional model."""
    id: str
    worker: str
    name: str = ""
    enabled: bool = True
    match: str = "all"  # "all" or "any"
    conditions: List[RuleCondition] = field(default_factory=list)
    model: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "RoutingRule":
        return cls(
            id=str(data["id"]),
            worker=data["worker"],
            name=data.get("name", ""),
            enabled=data.get("enabled", True),
            match=data.get("match", "all"),
            conditions=[RuleCondition.from_dict(c) for c in data.get("conditions", [])],
            model=data.get("model"),
        )


@dataclass
class Selection:
    """Resolved worker and model for a launch."""
    worker: WorkerProgram
    model: WorkerModel
    matched_rule: Optional[RoutingRule] = None
    reason: str = ""

    def to_dict(self) -> dict:
        return {
            "worker": self.worker.id,
            "model": self.model.id,
            "matched_rule": self.matched_rule.id if self.matched_rule else None,
            "reason": self.reason,
        }


@dataclass
class LaunchCommand:
    """Composed shell command for starting a worker."""
    shell_command: str
    env: dict = field(default_factory=dict)
    requires_post_launch_injection: bool = False
    redacted: str = ""

    def __post_init__(self):
        if not self.redacted:
            self.redacted = self.shell_command


@dataclass
class Session:
    """A worker running in a named tmux session."""
    session_name: str
    agent_name: str
    worker_id: str
    model_id: str
    project_path: str
    task_id: Optional[str] = None
    mode: SessionMode = SessionMode.TASK
    state: SignalType = SignalType.STARTING
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert session to dictionary for JSON serialization."""
        return {
            "session_name": self.session_name,
            "agent_name": self.agent_name,
            "worker_id": self.worker_id,
            "model_id": self.model_id,
            "project_path": self.project_path,
            "task_id": self.task_id,
            "mode": self.mode.value,
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        """Create session from dictionary."""
        return cls(
            session_name=data["session_name"],
            agent_name=data["agent_name"],
            worker_id=data["worker_id"],
            model_id=data["model_id"],
            project_path=data["project_path"],
            task_id=data.get("task_id"),
            mode=SessionMode(data.get("mode", "task")),
            state=SignalType(data.get("state", "starting")),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass
class LifecycleSignal:
    """Last known state of a session, as published to observers."""
    type: SignalType
    session_id: str
    task_id: Optional[str] = None
    payload: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def resumable(self) -> bool:
        return self.type == SignalType.PAUSED and bool(self.payload.get("resumable"))

    def to_dict(self) -> dict:
        data = dict(self.payload)
        data.update({
            "type": self.type.value,
            "sessionId": self.session_id,
            "taskId": self.task_id,
            "timestamp": self.timestamp.isoformat(),
        })
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "LifecycleSignal":
        payload = {
            k: v for k, v in data.items()
            if k not in ("type", "sessionId", "taskId", "timestamp")
        }
        timestamp = data.get("timestamp")
        return cls(
            type=SignalType(data["type"]),
            session_id=data.get("sessionId", ""),
            task_id=data.get("taskId"),
            payload=payload,
            timestamp=datetime.fromisoformat(timestamp) if timestamp else datetime.now(),
        )


@dataclass(frozen=True)
class ScreenClassification:
    """Evidence read from one capture of a worker's screen."""
    dialog_pending: bool = False
    ready: bool = False
    shell_prompt: bool = False


@dataclass
class InjectionResult:
    """Outcome of delivering text into a session."""
    delivered: bool
    attempts: int
    state: AckState

    @property
    def uncertain(self) -> bool:
        return not self.delivered


@dataclass
class ResumeResult:
    """Outcome of routing a follow-up to an existing worker."""
    resumed: bool
    session_name: Optional[str] = None
    reason: Optional[str] = None  # injected, injection-uncertain, task-closed, not-assigned, not-paused, resume-timeout

    def to_dict(self) -> dict:
        return {"resumed": self.resumed, "session_name": self.session_name, "reason": self.reason}


@dataclass
class SpawnResult:
    """Outcome of a spawn request."""
    status: str  # "started" or "pending_acceptance"
    session: Session
    selection: Selection
    injection: Optional[InjectionResult] = None
    readiness: Optional[ReadinessOutcome] = None
    hint: Optional[str] = None

    @property
    def pending_acceptance(self) -> bool:
        return self.status == "pending_acceptance"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "session": self.session.to_dict(),
            "selection": self.selection.to_dict(),
            "readiness": self.readiness.value if self.readiness else None,
            "injection": {
                "delivered": self.injection.delivered,
                "attempts": self.injection.attempts,
                "state": self.injection.state.value,
            } if self.injection else None,
            "hint": self.hint,
        }
