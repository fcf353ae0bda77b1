"""Shared pytest fixtures for Agent Dispatch tests."""

import json
import os
from pathlib import Path
from typing import Optional
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from agent_dispatch.models import Task
from agent_dispatch.polling import FakeClock
from agent_dispatch.server import create_app
from agent_dispatch.session_manager import SessionManager
from agent_dispatch.task_store import TaskStore
from agent_dispatch.tmux_controller import TmuxController

# Claude UI up, with a tool call in the output area and the prompt box at the bottom
READY_SCREEN = "\n".join([
    "╭───────────────────────────────╮",
    "│ ✻ Welcome to Claude Code!     │",
    "╰───────────────────────────────╯",
    "● Reading the task description",
    "╭───────────────────────────────╮",
    "│ >                             │",
    "╰───────────────────────────────╯",
    "  ? for shortcuts",
])

DIALOG_SCREEN = "\n".join([
    "Do you trust the files in this folder?",
    "",
    "  /home/dev/webapp",
    "",
    "❯ 1. Yes, proceed",
    "  2. No, exit",
])

SHELL_SCREEN = "\n".join([
    "Last login: Mon Oct 12 09:14:03 on ttys001",
    "dev@box:~/webapp$ ",
])

# A worker without its own UI patterns, before and after it picks up input
BUSY_SCREEN = "✻ Working… (esc to interrupt)\n\na\nb\nc\nd"
IDLE_SCREEN = "Done.\n\na\nb\nc\nd"


def screen_with_tool_calls(count: int) -> str:
    """READY_SCREEN with ``count`` more tool-call lines above the prompt box."""
    rows = READY_SCREEN.split("\n")
    tool_calls = [f"● Bash(npm test -- --shard={i})" for i in range(1, count + 1)]
    return "\n".join(rows[:4] + tool_calls + rows[4:])


def show_screens(mock_tmux: MagicMock, before: str, after: Optional[str] = None) -> None:
    """Serve ``before`` until a key has been sent to the session, then ``after``."""
    after = before if after is None else after
    mock_tmux.capture_pane.side_effect = lambda *a, **k: after if mock_tmux.send_key.called else before


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    path = tmp_path / "webapp"
    path.mkdir()
    return path


@pytest.fixture
def credentials_file(tmp_path: Path) -> Path:
    path = tmp_path / "credentials.json"
    path.write_text(json.dumps({"apiKeys": {"openai": {"key": "sk-test-openai-key-1234"}}}))
    os.chmod(path, 0o600)
    return path


@pytest.fixture
def config(tmp_path: Path, project_dir: Path, credentials_file: Path) -> dict:
    """
    Configuration with every path under tmp_path and two workers.

    claude receives its task after launch; codex takes it as an argument.
    """
    return {
        "paths": {
            "state_file": str(tmp_path / "state" / "sessions.json"),
            "log_dir": str(tmp_path / "logs"),
            "signal_dir": str(tmp_path / "signals"),
        },
        "projects": {"webapp": str(project_dir)},
        "default_project": "webapp",
        "credentials": {"file": str(credentials_file)},
        "launch_defaults": {"autonomous_mode": True},
        "workers": {
            "claude": {
                "name": "Claude Code",
                "command": "claude",
                "task_injection": "post_launch",
                "model_flag_style": "short_name",
                "permission_flag": "--dangerously-skip-permissions",
                "system_prompt_flag": "--append-system-prompt",
                "start_command": "/work:start {agent} {task}",
                "resume_flag": "--continue",
                "default_model": "sonnet",
                "models": [
                    {"id": "claude-sonnet-4-5", "short_name": "sonnet"},
                    {"id": "claude-opus-4-1", "short_name": "opus"},
                ],
            },
            "codex": {
                "name": "Codex",
                "command": "codex",
                "task_injection": "argument",
                "permission_flag": "--yolo",
                "auth": {"type": "api_key", "provider": "openai"},
                "models": [{"id": "gpt-5-codex", "short_name": "codex"}],
            },
        },
        "routing": {
            "rules": [
                {
                    "id": "bugs",
                    "worker": "codex",
                    "conditions": [{"field": "type", "operator": "equals", "value": "bug"}],
                },
                {
                    "id": "architecture",
                    "worker": "claude",
                    "model": "opus",
                    "conditions": [{"field": "labels", "operator": "contains", "value": "architecture"}],
                },
            ],
            "fallback": {"worker": "claude", "model": "sonnet"},
        },
    }


@pytest.fixture
def mock_tmux() -> MagicMock:
    """
    Mock TmuxController for testing without actual tmux sessions.

    Returns:
        MagicMock whose screen shows a ready Claude UI that prints one more
        tool call for every key sent to it
    """
    mock = MagicMock(spec=TmuxController)
    mock.session_exists.return_value = False
    mock.create_session.return_value = None
    mock.send_literal.return_value = None
    mock.send_key.return_value = None
    mock.kill_session.return_value = True
    mock.list_sessions.return_value = []
    mock.capture_pane.side_effect = lambda *a, **k: screen_with_tool_calls(mock.send_key.call_count)
    mock.set_status_bar.return_value = None
    return mock


@pytest.fixture
def sample_task() -> Task:
    return Task(id="webapp-42", title="Add password reset", type="feature", labels=["auth"], priority=2)


@pytest.fixture
def mock_task_store(sample_task: Task) -> MagicMock:
    mock = MagicMock(spec=TaskStore)
    mock.show.return_value = sample_task
    mock.assign.return_value = None
    return mock


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session_manager(
    config: dict,
    mock_tmux: MagicMock,
    mock_task_store: MagicMock,
    fake_clock: FakeClock,
) -> SessionManager:
    """
    SessionManager with mocked tmux and task store, and every binary "installed".
    """
    return SessionManager(
        config=config,
        tmux=mock_tmux,
        task_store=mock_task_store,
        clock=fake_clock,
        which=lambda binary: f"/usr/bin/{binary}",
    )


@pytest.fixture
def test_client(session_manager: SessionManager) -> TestClient:
    """
    Create a FastAPI TestClient for testing API endpoints.

    Args:
        session_manager: SessionManager fixture to inject into app

    Returns:
        TestClient configured with the app and session_manager
    """
    app = create_app(session_manager=session_manager, config=session_manager.config)
    return TestClient(app)
