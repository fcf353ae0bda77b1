"""Tests for text injection with acknowledgement checks."""

from unittest.mock import MagicMock, call

import pytest

from agent_dispatch.errors import TmuxError
from agent_dispatch.injector import CommandInjector
from agent_dispatch.models import AckState, WorkerProgram
from agent_dispatch.polling import FakeClock
from agent_dispatch.tmux_controller import TmuxController

from conftest import BUSY_SCREEN, IDLE_SCREEN, READY_SCREEN, screen_with_tool_calls

CLAUDE = WorkerProgram(id="claude", command="claude")
TEXT = "/work:start SwiftRiver webapp-42"
WORKING_SCREEN = screen_with_tool_calls(1)


def screen_with_input(text: str = "", tool_calls: int = 0) -> str:
    return "\n".join([
        "Welcome to Claude Code",
        *[f"● Bash(pytest -q tests/test_{i}.py)" for i in range(tool_calls)],
        "● Done.",
        "╭──────────────────────────────────────╮",
        f"│ > {text}",
        "╰──────────────────────────────────────╯",
        "  ? for shortcuts",
    ])


@pytest.fixture
def tmux():
    return MagicMock(spec=TmuxController)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def injector(tmux, clock):
    return CommandInjector(tmux, {}, clock)


class TestInject:
    @pytest.mark.asyncio
    async def test_acknowledged_first_attempt(self, injector, tmux, clock):
        tmux.capture_pane.side_effect = [READY_SCREEN, WORKING_SCREEN]

        result = await injector.inject("s", TEXT, worker=CLAUDE)

        assert result.delivered
        assert result.attempts == 1
        assert result.state == AckState.ACKNOWLEDGED
        tmux.send_literal.assert_called_once_with("s", TEXT)
        tmux.send_key.assert_called_once_with("s", "Enter")
        # Text settles before the key, then the screen is checked
        assert clock.sleeps == [0.1, 2.0]

    @pytest.mark.asyncio
    async def test_baseline_is_captured_before_typing(self, injector, tmux):
        order = []
        tmux.capture_pane.side_effect = lambda *a, **k: order.append("capture") or READY_SCREEN
        tmux.send_literal.side_effect = lambda *a: order.append("type")

        await injector.inject("s", TEXT, max_attempts=1, worker=CLAUDE)

        assert order == ["capture", "type", "capture"]

    @pytest.mark.asyncio
    async def test_unsent_resends_key_only(self, injector, tmux):
        tmux.capture_pane.side_effect = [screen_with_input(), screen_with_input(TEXT), WORKING_SCREEN]

        result = await injector.inject("s", TEXT, worker=CLAUDE)

        assert result.delivered
        assert result.attempts == 2
        assert tmux.send_literal.call_count == 1
        assert tmux.send_key.call_args_list == [call("s", "Enter"), call("s", "Enter")]

    @pytest.mark.asyncio
    async def test_earlier_output_does_not_acknowledge_pending_text(self, injector, tmux):
        # A busy worker: tool calls from earlier work fill the output area
        before = screen_with_input(tool_calls=3)
        pending = screen_with_input(TEXT, tool_calls=3)
        picked_up = screen_with_input(tool_calls=4)
        tmux.capture_pane.side_effect = [before, pending, picked_up]

        result = await injector.inject("s", TEXT, worker=CLAUDE)

        assert result.delivered
        assert result.attempts == 2
        assert tmux.send_key.call_args_list == [call("s", "Enter"), call("s", "Enter")]

    @pytest.mark.asyncio
    async def test_unchanged_output_is_not_acknowledged(self, injector, tmux):
        tmux.capture_pane.return_value = screen_with_input(tool_calls=3)

        result = await injector.inject("s", TEXT, worker=CLAUDE)

        assert not result.delivered
        assert result.state == AckState.AMBIGUOUS

    @pytest.mark.asyncio
    async def test_ambiguous_waits_without_sending(self, injector, tmux, clock):
        tmux.capture_pane.side_effect = [screen_with_input(), screen_with_input(), WORKING_SCREEN]

        result = await injector.inject("s", TEXT, worker=CLAUDE)

        assert result.delivered
        assert tmux.send_key.call_count == 1
        assert clock.sleeps == [0.1, 2.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, injector, tmux):
        tmux.capture_pane.return_value = screen_with_input()

        result = await injector.inject("s", TEXT, worker=CLAUDE)

        assert not result.delivered
        assert result.uncertain
        assert result.attempts == 3
        assert result.state == AckState.AMBIGUOUS
        assert tmux.send_literal.call_count == 1

    @pytest.mark.asyncio
    async def test_max_attempts_override(self, injector, tmux):
        tmux.capture_pane.return_value = screen_with_input()
        result = await injector.inject("s", TEXT, max_attempts=1, worker=CLAUDE)
        assert result.attempts == 1
        # Baseline plus one check
        assert tmux.capture_pane.call_count == 2

    @pytest.mark.asyncio
    async def test_tmux_error_after_typing_retries_key(self, injector, tmux):
        tmux.send_key.side_effect = [TmuxError("tmux send-keys failed"), None]
        tmux.capture_pane.side_effect = [READY_SCREEN, WORKING_SCREEN]

        result = await injector.inject("s", TEXT, worker=CLAUDE)

        assert result.delivered
        assert result.attempts == 2
        assert tmux.send_literal.call_count == 1
        assert tmux.send_key.call_count == 2

    @pytest.mark.asyncio
    async def test_tmux_error_before_typing_retries_everything(self, injector, tmux):
        tmux.send_literal.side_effect = [TmuxError("tmux send-keys failed"), None]
        tmux.capture_pane.side_effect = [READY_SCREEN, READY_SCREEN, WORKING_SCREEN]

        result = await injector.inject("s", TEXT, worker=CLAUDE)

        assert result.delivered
        assert result.attempts == 2
        assert tmux.send_literal.call_count == 2

    @pytest.mark.asyncio
    async def test_never_sends_interrupt_keys(self, injector, tmux):
        tmux.capture_pane.return_value = screen_with_input(TEXT)

        await injector.inject("s", TEXT, worker=CLAUDE)

        keys = {c.args[1] for c in tmux.send_key.call_args_list}
        assert keys == {"Enter"}

    @pytest.mark.asyncio
    async def test_generic_markers_without_worker(self, injector, tmux):
        tmux.capture_pane.side_effect = [IDLE_SCREEN, BUSY_SCREEN]
        result = await injector.inject("s", "hello", max_attempts=1)
        assert result.delivered

    @pytest.mark.asyncio
    async def test_configured_activation_key(self, tmux, clock):
        injector = CommandInjector(tmux, {"timeouts": {"injection": {"activation_key": "C-m"}}}, clock)
        tmux.capture_pane.side_effect = [READY_SCREEN, WORKING_SCREEN]
        await injector.inject("s", TEXT, worker=CLAUDE)
        tmux.send_key.assert_called_once_with("s", "C-m")
