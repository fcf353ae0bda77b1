"""Agent names and the identity hand-off file."""

import logging
import random
from pathlib import Path
from typing import Collection, Optional

logger = logging.getLogger(__name__)

ADJECTIVES = [
    "Swift", "Calm", "Warm", "Cool", "Crisp", "Brisk", "Gentle", "Quiet",
    "Bright", "Pale", "Vivid", "Amber", "Azure", "Ivory", "Jade", "Coral",
    "Grand", "Vast", "Broad", "Deep", "High", "Steep", "Open", "Round",
    "Bold", "Keen", "Wise", "True", "Free", "Wild", "Clear", "Prime",
    "Misty", "Sunny", "Windy", "Early", "Silver", "Golden", "Lucky", "Nimble",
]

NOUNS = [
    "River", "Ocean", "Lake", "Creek", "Brook", "Falls", "Cove", "Fjord",
    "Mountain", "Valley", "Canyon", "Basin", "Mesa", "Ridge", "Cliff", "Bluff",
    "Forest", "Grove", "Glade", "Meadow", "Prairie", "Heath", "Orchard", "Field",
    "Shore", "Dune", "Cape", "Reef", "Isle", "Harbor", "Delta", "Lagoon",
    "Cloud", "Storm", "Frost", "Dawn", "Dusk", "Stone", "Slate", "Granite",
]


def generate_agent_name(
    taken: Collection[str],
    rng: Optional[random.Random] = None,
    max_attempts: int = 100,
) -> str:
    """
    Pick an Adjective+Noun name not in ``taken`` (case-insensitive).

    Falls back to a numeric suffix when every attempt collides.
    """
    rng = rng or random.Random()
    taken_lower = {name.lower() for name in taken}
    for _ in range(max_attempts):
        name = rng.choice(ADJECTIVES) + rng.choice(NOUNS)
        if name.lower() not in taken_lower:
            return name
    while True:
        name = f"{rng.choice(ADJECTIVES)}{rng.choice(NOUNS)}{rng.randint(0, 999)}"
        if name.lower() not in taken_lower:
            return name


def session_name_for(agent_name: str, prefix: str = "dispatch") -> str:
    return f"{prefix}-{agent_name}"


def agent_name_from_session(session_name: str, prefix: str = "dispatch") -> Optional[str]:
    marker = f"{prefix}-"
    if session_name.startswith(marker):
        return session_name[len(marker):]
    return None


def write_identity_file(project_path: str, session_name: str, agent_name: str) -> Path:
    """Record which agent a session belongs to, for tools running inside the worker.

    Written to ``<project>/.claude/sessions/.tmux-agent-<session>``.
    """
    sessions_dir = Path(project_path).expanduser() / ".claude" / "sessions"
    sessions_dir.mkdir(parents=True, exist_ok=True)
    path = sessions_dir / f".tmux-agent-{session_name}"
    path.write_text(agent_name)
    logger.info(f"Wrote identity file {path} for {agent_name}")
    return path


def taken_names(
    live_sessions: Collection[str],
    registry_agents: Collection[str],
    prefix: str = "dispatch",
) -> set[str]:
    """Agent names already in use, from live tmux sessions and the registry."""
    names = set(registry_agents)
    for session_name in live_sessions:
        agent = agent_name_from_session(session_name, prefix)
        if agent:
            names.add(agent)
    return names
