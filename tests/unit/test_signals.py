"""Tests for lifecycle signal files and agent identity helpers."""

import json
import random

from agent_dispatch.identity import (
    agent_name_from_session,
    generate_agent_name,
    session_name_for,
    taken_names,
    write_identity_file,
)
from agent_dispatch.models import LifecycleSignal, SignalType
from agent_dispatch.signals import LifecycleSignalStore, write_json_atomic


class TestLifecycleSignalStore:
    def test_path_layout(self, tmp_path):
        store = LifecycleSignalStore({"paths": {"signal_dir": str(tmp_path)}, "session": {"prefix": "jat"}})
        assert store.path_for("jat-SwiftRiver") == tmp_path / "jat-signal-tmux-jat-SwiftRiver.json"

    def test_write_and_read(self, tmp_path):
        store = LifecycleSignalStore({"paths": {"signal_dir": str(tmp_path / "signals")}})
        store.write(LifecycleSignal(
            type=SignalType.WORKING,
            session_id="dispatch-SwiftRiver",
            task_id="webapp-42",
            payload={"agentName": "SwiftRiver"},
        ))

        raw = json.loads(store.path_for("dispatch-SwiftRiver").read_text())
        assert raw["type"] == "working"
        assert raw["sessionId"] == "dispatch-SwiftRiver"
        assert raw["taskId"] == "webapp-42"
        assert raw["agentName"] == "SwiftRiver"

        signal = store.read("dispatch-SwiftRiver")
        assert signal.type == SignalType.WORKING
        assert signal.task_id == "webapp-42"
        assert signal.payload == {"agentName": "SwiftRiver"}

    def test_last_write_wins(self, tmp_path):
        store = LifecycleSignalStore({"paths": {"signal_dir": str(tmp_path)}})
        store.write(LifecycleSignal(type=SignalType.COMPLETED, session_id="s"))
        store.write(LifecycleSignal(type=SignalType.STARTING, session_id="s"))
        assert store.read("s").type == SignalType.STARTING

    def test_missing_and_corrupt_files(self, tmp_path):
        store = LifecycleSignalStore({"paths": {"signal_dir": str(tmp_path)}})
        assert store.read("nobody") is None
        store.path_for("broken").write_text("{")
        assert store.read("broken") is None
        store.path_for("unknown-type").write_text(json.dumps({"type": "dancing"}))
        assert store.read("unknown-type") is None

    def test_clear(self, tmp_path):
        store = LifecycleSignalStore({"paths": {"signal_dir": str(tmp_path)}})
        store.write(LifecycleSignal(type=SignalType.PAUSED, session_id="s"))
        assert store.clear("s")
        assert not store.clear("s")
        assert store.read("s") is None

    def test_resumable_requires_paused_and_flag(self):
        assert LifecycleSignal(type=SignalType.PAUSED, session_id="s", payload={"resumable": True}).resumable
        assert not LifecycleSignal(type=SignalType.PAUSED, session_id="s").resumable
        assert not LifecycleSignal(type=SignalType.WORKING, session_id="s", payload={"resumable": True}).resumable

    def test_atomic_write_leaves_no_temp_file(self, tmp_path):
        path = tmp_path / "state.json"
        write_json_atomic(path, {"sessions": []})
        assert json.loads(path.read_text()) == {"sessions": []}
        assert list(tmp_path.iterdir()) == [path]


class TestIdentity:
    def test_generated_name_avoids_taken_case_insensitively(self):
        rng = random.Random(7)
        first = generate_agent_name(set(), rng=random.Random(7))
        name = generate_agent_name({first.lower()}, rng=rng, max_attempts=50)
        assert name.lower() != first.lower()

    def test_numeric_suffix_when_everything_collides(self):
        class Stuck(random.Random):
            def choice(self, seq):
                return seq[0]

        name = generate_agent_name({"SwiftRiver"}, rng=Stuck(), max_attempts=3)
        assert name.startswith("SwiftRiver")
        assert name != "SwiftRiver"
        assert name[len("SwiftRiver"):].isdigit()

    def test_session_names(self):
        assert session_name_for("SwiftRiver") == "dispatch-SwiftRiver"
        assert agent_name_from_session("dispatch-SwiftRiver") == "SwiftRiver"
        assert agent_name_from_session("other-session") is None

    def test_taken_names(self):
        names = taken_names(["dispatch-CalmLake", "main", "jat-BoldMesa"], ["DeepCove"], prefix="dispatch")
        assert names == {"CalmLake", "DeepCove"}

    def test_identity_file(self, tmp_path):
        path = write_identity_file(str(tmp_path), "dispatch-SwiftRiver", "SwiftRiver")
        assert path == tmp_path / ".claude" / "sessions" / ".tmux-agent-dispatch-SwiftRiver"
        assert path.read_text() == "SwiftRiver"
