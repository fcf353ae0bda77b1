"""Screen text patterns and pure classifiers for worker terminals."""

import re
from dataclasses import dataclass, field
from typing import Iterable, List

from .models import AckState, ScreenClassification, WorkerProgram

# Regex to match ANSI escape codes
ANSI_ESCAPE_RE = re.compile(
    r'\x1b\[[0-9;?]*[a-zA-Z]|'  # CSI sequences (including private modes like ?2026h)
    r'\x1b\][^\x07]*\x07|'       # OSC sequences (title, etc.)
    r'\x1b[\(\)][AB012]|'        # Character set selection
    r'\x1b[=>78]'                # Keypad modes, save/restore cursor
)


def strip_ansi(text: str) -> str:
    """Remove ANSI escape codes from captured text."""
    return ANSI_ESCAPE_RE.sub('', text)


# Markers that a worker's interactive UI is up and accepting input, keyed by command.
# None may match the launch line the shell echoes while starting the worker.
READY_PATTERNS = {
    "claude": [
        r'Claude Code',
        r'bypass permissions',
        r'\? for shortcuts',
        r'^\s*>\s*$',
        r'╭─',
    ],
    "codex": [
        r'OpenAI Codex',
        r'\? for shortcuts',
        r'context left',
        r'^\s*›',
    ],
    "gemini": [
        r'Gemini CLI',
        r'Type your message',
        r'context left\)',
    ],
    "opencode": [
        r'ctrl\+p commands',
        r'tab switch agent',
    ],
}

# Permission dialogs that block startup until a human answers
DIALOG_PATTERNS = {
    "claude": [
        r'WARNING: Claude Code running in Bypass Permissions mode',
        r'Bypass Permissions mode.*\n(?:.*\n)*?.*Yes, I accept',
        r'Do you trust the files in this folder\?',
    ],
    "codex": [
        r'Allow Codex to work in this folder',
        r'Approval mode',
    ],
    "gemini": [
        r'Do you trust this folder\?',
    ],
}

# Signs the worker started processing injected input
ACK_MARKERS = {
    "claude": ["is running", "STARTING", "Bash(", "● "],
    "codex": ["Working", "• ", "esc to interrupt"],
    "gemini": ["esc to cancel", "✦ "],
}

GENERIC_ACK_MARKERS = ["esc to interrupt", "STARTING"]

# A bare shell prompt on the last non-empty line
SHELL_PROMPT_PATTERNS = [
    r'[$%#] ?$',
    r'❯ ?$',
    r'➜ ',
    r'^\S+@\S+[:\s].*[$%#>] ?$',
]

_shell_prompt_re = re.compile('|'.join(SHELL_PROMPT_PATTERNS))

# Shell errors printed when the worker binary cannot be started
START_FAILURE_PATTERNS = [
    r'command not found',
    r'No such file or directory',
    r'not recognized as',
]

_start_failure_re = re.compile('|'.join(START_FAILURE_PATTERNS))

# Lines at the bottom of the screen that belong to the input box and status line
INPUT_AREA_LINES = 4


@dataclass
class ScreenPatterns:
    """Compiled patterns for one worker."""
    command_name: str
    ready: List[re.Pattern] = field(default_factory=list)
    dialog: List[re.Pattern] = field(default_factory=list)
    ack_markers: List[str] = field(default_factory=list)


def _compile(patterns: Iterable[str]) -> List[re.Pattern]:
    return [re.compile(p, re.MULTILINE) for p in patterns]


def patterns_for(worker: WorkerProgram) -> ScreenPatterns:
    """Built-in patterns for the worker's command, with configured overrides taking precedence."""
    command_name = worker.binary.rsplit("/", 1)[-1]
    ready = worker.patterns.ready or READY_PATTERNS.get(command_name, [])
    dialog = worker.patterns.dialog or DIALOG_PATTERNS.get(command_name, [])
    ack = worker.patterns.ack or ACK_MARKERS.get(command_name, GENERIC_ACK_MARKERS)
    return ScreenPatterns(
        command_name=command_name,
        ready=_compile(ready),
        dialog=_compile(dialog),
        ack_markers=list(ack),
    )


def _last_nonempty_line(text: str) -> str:
    for line in reversed(text.splitlines()):
        if line.strip():
            return line.rstrip()
    return ""


def looks_like_shell_prompt(text: str) -> bool:
    """True when the last non-empty line of ``text`` looks like an interactive shell prompt."""
    return bool(_shell_prompt_re.search(_last_nonempty_line(text)))


def classify_screen(buffer: str, patterns: ScreenPatterns) -> ScreenClassification:
    """Classify one captured screen.

    The shell-prompt flag is raised when the screen is back at a shell prompt
    and either never mentions the worker's command or shows a shell error for
    it. The bare command echo during startup never counts as a failed start.
    Callers decide precedence: dialog, then ready, then shell prompt.
    """
    text = strip_ansi(buffer)
    dialog_pending = any(p.search(text) for p in patterns.dialog)
    ready = any(p.search(text) for p in patterns.ready)
    mentions_command = patterns.command_name.lower() in text.lower()
    start_failed = bool(_start_failure_re.search(text))
    shell_prompt = (not mentions_command or start_failed) and looks_like_shell_prompt(text)
    return ScreenClassification(
        dialog_pending=dialog_pending,
        ready=ready,
        shell_prompt=shell_prompt,
    )


def split_screen(buffer: str, input_lines: int = INPUT_AREA_LINES) -> tuple[str, str]:
    """Split a capture into (output area, input area).

    The input area is the last ``input_lines`` non-blank lines: the prompt box
    and the status line under it.
    """
    lines = strip_ansi(buffer).rstrip("\n").splitlines()
    while lines and not lines[-1].strip():
        lines.pop()
    if len(lines) <= input_lines:
        return "", "\n".join(lines)
    return "\n".join(lines[:-input_lines]), "\n".join(lines[-input_lines:])


def _squash(text: str) -> str:
    return re.sub(r'\s+', '', text)


def _new_markers(area: str, baseline_area: str, ack_markers: List[str]) -> bool:
    """True if any marker occurs more often in ``area`` than in ``baseline_area``."""
    return any(area.count(marker) > baseline_area.count(marker) for marker in ack_markers)


def classify_injection(
    buffer: str,
    text: str,
    ack_markers: List[str],
    baseline: str = "",
    input_lines: int = INPUT_AREA_LINES,
    tail_chars: int = 40,
) -> AckState:
    """Decide whether injected ``text`` was accepted by the worker.

    ``baseline`` is the screen captured before the text was typed. Only
    markers that are new since then count, so output left over from earlier
    work never acknowledges a new injection.

    UNSENT if the tail of the text still sits in the input area (whitespace
    ignored, since the input box wraps long lines) and no new marker shows
    there. ACKNOWLEDGED if a new ack marker shows in the output area.
    Otherwise AMBIGUOUS.
    """
    output_area, input_area = split_screen(buffer, input_lines)
    baseline_output, baseline_input = split_screen(baseline, input_lines) if baseline else ("", "")

    needle = _squash(text)[-tail_chars:]
    if needle and needle in _squash(input_area):
        if not _new_markers(input_area, baseline_input, ack_markers):
            return AckState.UNSENT

    if _new_markers(output_area, baseline_output, ack_markers):
        return AckState.ACKNOWLEDGED
    return AckState.AMBIGUOUS


def screen_tail(buffer: str, chars: int = 300) -> str:
    """Last ``chars`` characters of a capture, ANSI stripped, for error messages."""
    return strip_ansi(buffer).rstrip()[-chars:]

