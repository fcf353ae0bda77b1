"""Per-session lifecycle signal documents."""

import json
import logging
from pathlib import Path
from typing import Optional

from .models import LifecycleSignal

logger = logging.getLogger(__name__)


def write_json_atomic(path: Path, data: dict) -> None:
    """Write JSON via temp file + rename so readers never see a partial document."""
    temp_file = path.with_suffix(path.suffix + ".tmp")
    try:
        with open(temp_file, "w") as f:
            json.dump(data, f, indent=2)
        # Atomic rename (POSIX guarantees atomicity)
        temp_file.replace(path)
    except OSError:
        if temp_file.exists():
            temp_file.unlink()
        raise


class LifecycleSignalStore:
    """Last-write-wins state documents, one file per session.

    Files live at ``<signal_dir>/<prefix>-signal-tmux-<session>.json`` where
    other tools (dashboards, hooks inside the worker) read and write them.
    No transition rules are enforced: any state overwrites any other.
    """

    def __init__(self, config: Optional[dict] = None):
        self.config = config or {}
        self.signal_dir = Path(self.config.get("paths", {}).get("signal_dir", "/tmp")).expanduser()
        self.prefix = self.config.get("session", {}).get("prefix", "dispatch")

    def path_for(self, session_name: str) -> Path:
        return self.signal_dir / f"{self.prefix}-signal-tmux-{session_name}.json"

    def write(self, signal: LifecycleSignal) -> None:
        self.signal_dir.mkdir(parents=True, exist_ok=True)
        write_json_atomic(self.path_for(signal.session_id), signal.to_dict())
        logger.info(f"Signal {signal.type.value} written for {signal.session_id}")

    def read(self, session_name: str) -> Optional[LifecycleSignal]:
        path = self.path_for(session_name)
        if not path.exists():
            return None
        try:
            with open(path) as f:
                data = json.load(f)
            data.setdefault("sessionId", session_name)
            return LifecycleSignal.from_dict(data)
        except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning(f"Unreadable signal file {path}: {e}")
            return None

    def clear(self, session_name: str) -> bool:
        path = self.path_for(session_name)
        if path.exists():
            path.unlink()
            logger.info(f"Signal cleared for {session_name}")
            return True
        return False
