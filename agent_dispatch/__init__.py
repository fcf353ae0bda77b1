"""Agent Dispatch - launch coding-agent workers in tmux and route follow-up input to them."""

__version__ = "0.1.0"
