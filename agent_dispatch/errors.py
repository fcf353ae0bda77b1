"""Error types for the dispatch orchestrator.

Results that need a human (a pending permission dialog) or that are soft
(an injection that could not be confirmed) are not exceptions; see
``models.SpawnResult`` and ``models.InjectionResult``.
"""

from typing import Optional


class DispatchError(Exception):
    """Base exception for dispatch errors.

    Use this for user-facing errors that should have actionable messages.
    """


class ConfigurationError(DispatchError):
    """Fatal configuration problem (unknown worker, unavailable fallback, unknown model)."""


class RoutingUnavailable(DispatchError):
    """A routing rule matched but the worker it selects is unavailable."""

    def __init__(self, message: str, rule_id: Optional[str] = None, worker_id: Optional[str] = None):
        super().__init__(message)
        self.rule_id = rule_id
        self.worker_id = worker_id


class DuplicateSession(DispatchError):
    """A terminal session with this name already exists."""

    def __init__(self, session_name: str):
        super().__init__(f"Session '{session_name}' already exists")
        self.session_name = session_name


class TaskAlreadyActive(DispatchError):
    """The task is in progress with a live session for its assignee."""

    def __init__(self, task_id: str, assignee: str, session_name: str):
        super().__init__(
            f"Task {task_id} is already in progress with {assignee} (session {session_name})"
        )
        self.task_id = task_id
        self.assignee = assignee
        self.session_name = session_name


class LaunchFailed(DispatchError):
    """The worker did not start. The session is left running for inspection."""

    def __init__(self, message: str, session_name: str, screen_tail: str = ""):
        super().__init__(message)
        self.session_name = session_name
        self.screen_tail = screen_tail

    @property
    def recovery_hint(self) -> str:
        return f"Try: tmux attach-session -t {self.session_name}"


class SessionNotFound(DispatchError):
    """No session with this name is known or alive."""


class TmuxError(DispatchError):
    """A tmux command failed or timed out."""

    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr


class TaskStoreError(DispatchError):
    """The task store CLI exited non-zero or timed out."""

    def __init__(self, message: str, stderr: str = "", returncode: Optional[int] = None):
        super().__init__(f"{message}: {stderr}" if stderr else message)
        self.stderr = stderr
        self.returncode = returncode
