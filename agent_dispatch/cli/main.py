"""Main entry point for the dispatch CLI tool."""

import argparse
import sys

from .client import DispatchClient
from . import commands


def main():
    """Main entry point for dispatch CLI."""
    parser = argparse.ArgumentParser(
        prog="dispatch",
        description="Agent Dispatch CLI - launch coding agents and route follow-ups to them",
    )
    parser.add_argument("--url", help="API base URL (default: $AGENT_DISPATCH_URL or http://127.0.0.1:8430)")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # dispatch spawn [task-id]
    spawn_parser = subparsers.add_parser("spawn", help="Start a worker for a task")
    spawn_parser.add_argument("task_id", nargs="?", help="Task ID (omit with --plan)")
    spawn_parser.add_argument("--worker", help="Worker program to use (skips routing rules)")
    spawn_parser.add_argument("--model", help="Model short name or ID")
    spawn_parser.add_argument("--project", help="Project name or path")
    spawn_parser.add_argument("--plan", action="store_true", help="Start a planning session with no task")

    # dispatch followup <task-id> "<text>"
    followup_parser = subparsers.add_parser("followup", help="Send follow-up text to the holder of a task")
    followup_parser.add_argument("task_id", help="Task ID")
    followup_parser.add_argument("text", help="Follow-up text")
    followup_parser.add_argument("--project", help="Project name or path")

    # dispatch send <session> "<text>"
    send_parser = subparsers.add_parser("send", help="Send input to a session")
    send_parser.add_argument("session_name", help="Target session")
    send_parser.add_argument("text", help="Text to send")

    # dispatch pause <session>
    pause_parser = subparsers.add_parser("pause", help="Pause a session so a follow-up resumes it")
    pause_parser.add_argument("session_name", help="Session to pause")
    pause_parser.add_argument("--task", dest="task_id", help="Task ID (default: the session's task)")
    pause_parser.add_argument("--reason", help="Why the session is paused")
    pause_parser.add_argument("--keep-running", action="store_true", help="Do not kill the tmux session")

    # dispatch restart <session>
    restart_parser = subparsers.add_parser("restart", help="Kill and relaunch a session")
    restart_parser.add_argument("session_name", help="Session to restart")

    # dispatch kill <session>
    kill_parser = subparsers.add_parser("kill", help="Kill a session")
    kill_parser.add_argument("session_name", help="Session to kill")

    # dispatch list
    subparsers.add_parser("list", help="List sessions")

    # dispatch workers
    subparsers.add_parser("workers", help="List worker programs")

    # dispatch models <worker>
    models_parser = subparsers.add_parser("models", help="List models for a worker")
    models_parser.add_argument("worker_id", help="Worker ID")

    # dispatch signal <session> [type]
    signal_parser = subparsers.add_parser("signal", help="Read or write a session's lifecycle signal")
    signal_parser.add_argument("session_name", help="Session name")
    signal_parser.add_argument("type", nargs="?", help="Signal type to write (omit to read)")
    signal_parser.add_argument("--task", dest="task_id", help="Task ID")
    signal_parser.add_argument("--payload", help="JSON object with extra signal fields")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    client = DispatchClient(args.url)

    if args.command == "spawn":
        if not args.task_id and not args.plan:
            print("Error: task_id is required unless --plan is given", file=sys.stderr)
            sys.exit(1)
        mode = "plan" if args.plan else "task"
        sys.exit(commands.cmd_spawn(client, args.task_id, args.worker, args.model, args.project, mode))
    elif args.command == "followup":
        sys.exit(commands.cmd_followup(client, args.task_id, args.text, args.project))
    elif args.command == "send":
        sys.exit(commands.cmd_send(client, args.session_name, args.text))
    elif args.command == "pause":
        sys.exit(commands.cmd_pause(client, args.session_name, args.task_id, args.reason, args.keep_running))
    elif args.command == "restart":
        sys.exit(commands.cmd_restart(client, args.session_name))
    elif args.command == "kill":
        sys.exit(commands.cmd_kill(client, args.session_name))
    elif args.command == "list":
        sys.exit(commands.cmd_list(client))
    elif args.command == "workers":
        sys.exit(commands.cmd_workers(client))
    elif args.command == "models":
        sys.exit(commands.cmd_models(client, args.worker_id))
    elif args.command == "signal":
        sys.exit(commands.cmd_signal(client, args.session_name, args.type, args.task_id, args.payload))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
