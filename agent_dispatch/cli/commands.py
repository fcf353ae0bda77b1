"""Command implementations for the dispatch CLI."""

import json
import sys
from typing import Optional

from .client import DispatchClient


def _report_failure(data: Optional[dict], unavailable: bool) -> int:
    """Print an API failure to stderr and return the exit code."""
    if unavailable:
        print("Error: Agent Dispatch server unavailable", file=sys.stderr)
        return 2
    detail = (data or {}).get("detail") or "request failed"
    print(f"Error: {detail}", file=sys.stderr)
    hint = (data or {}).get("recovery_hint")
    if hint:
        print(hint, file=sys.stderr)
    return 1


def _print_spawn(result: dict):
    session = result["session"]
    selection = result["selection"]
    print(
        f"{session['session_name']} | {session['agent_name']} | "
        f"{selection['worker']} {selection['model']} ({selection['reason']})"
    )
    if result.get("status") == "pending_acceptance":
        print("Waiting for a permission dialog to be answered.")
        if result.get("hint"):
            print(f"Run: {result['hint']}")


def cmd_spawn(
    client: DispatchClient,
    task_id: Optional[str],
    worker: Optional[str] = None,
    model: Optional[str] = None,
    project: Optional[str] = None,
    mode: str = "task",
) -> int:
    """
    Start a worker for a task, or a plan session.

    Exit codes:
        0: Worker started or waiting on a dialog
        1: Spawn failed
        2: Server unavailable
    """
    data, success, unavailable = client.spawn(task_id, worker, model, project, mode)
    if not success:
        return _report_failure(data, unavailable)
    _print_spawn(data)
    return 0


def cmd_send(client: DispatchClient, session_name: str, text: str) -> int:
    """
    Inject text into a session.

    Exit codes:
        0: Delivered
        1: Not delivered or session not found
        2: Server unavailable
    """
    data, success, unavailable = client.send_input(session_name, text)
    if not success:
        return _report_failure(data, unavailable)
    if not data.get("delivered"):
        print(
            f"Error: input not confirmed after {data.get('attempts')} attempts ({data.get('state')})",
            file=sys.stderr,
        )
        return 1
    print(f"Input sent to {session_name}")
    return 0


def cmd_followup(client: DispatchClient, task_id: str, text: str, project: Optional[str] = None) -> int:
    """
    Send follow-up text to the worker holding a task.

    Exit codes:
        0: Delivered to an existing or newly spawned worker
        1: Delivery failed
        2: Server unavailable
    """
    data, success, unavailable = client.followup(task_id, text, project)
    if not success:
        return _report_failure(data, unavailable)

    resume = data["resume"]
    if resume["resumed"]:
        print(f"Delivered to {resume['session_name']} ({resume['reason']})")
        return 0

    spawned = data.get("spawn")
    if spawned:
        print(f"No resumable worker ({resume['reason']}), spawned a new one")
        _print_spawn(spawned)
        injection = data.get("injection")
        if injection and not injection["delivered"]:
            print("Warning: follow-up text not confirmed", file=sys.stderr)
        return 0

    print(f"Error: follow-up not delivered ({resume['reason']})", file=sys.stderr)
    return 1


def cmd_pause(
    client: DispatchClient,
    session_name: str,
    task_id: Optional[str] = None,
    reason: Optional[str] = None,
    keep_running: bool = False,
) -> int:
    """Pause a session so a later follow-up resumes it."""
    data, success, unavailable = client.pause(session_name, task_id, reason, kill=not keep_running)
    if not success:
        return _report_failure(data, unavailable)
    print(f"Paused {session_name}")
    return 0


def cmd_restart(client: DispatchClient, session_name: str) -> int:
    """Kill and relaunch a session with the same identity."""
    data, success, unavailable = client.restart(session_name)
    if not success:
        return _report_failure(data, unavailable)
    _print_spawn(data)
    return 0


def cmd_kill(client: DispatchClient, session_name: str) -> int:
    """Kill a session."""
    data, success, unavailable = client.kill(session_name)
    if not success:
        return _report_failure(data, unavailable)
    print(f"Killed {session_name}")
    return 0


def cmd_list(client: DispatchClient) -> int:
    """
    List registered sessions.

    Exit codes:
        0: Sessions listed (possibly none)
        2: Server unavailable
    """
    sessions = client.list_sessions()
    if sessions is None:
        print("Error: Agent Dispatch server unavailable", file=sys.stderr)
        return 2
    if not sessions:
        print("No sessions")
        return 0
    for s in sessions:
        task = s.get("task_id") or "-"
        print(f"{s['session_name']} | {s['state']} | {s['worker_id']} {s['model_id']} | {task} | {s['project_path']}")
    return 0


def cmd_workers(client: DispatchClient) -> int:
    """List configured workers and their availability."""
    workers = client.list_workers()
    if workers is None:
        print("Error: Agent Dispatch server unavailable", file=sys.stderr)
        return 2
    for w in workers:
        status = "available" if w.get("available") else f"unavailable: {w.get('unavailable_reason')}"
        print(f"{w['id']} | {w.get('name') or w['id']} | {status}")
    return 0


def cmd_models(client: DispatchClient, worker_id: str) -> int:
    """List models for a worker."""
    data, success, unavailable = client.list_models(worker_id)
    if not success:
        return _report_failure(data, unavailable)
    for m in data.get("models", []):
        print(f"{m['short_name']} | {m['id']} | {m['name']}")
    print(f"({data.get('source')})")
    return 0


def cmd_signal(
    client: DispatchClient,
    session_name: str,
    signal_type: Optional[str] = None,
    task_id: Optional[str] = None,
    payload: Optional[str] = None,
) -> int:
    """
    Read a session's signal, or write one when a type is given.

    Exit codes:
        0: Success
        1: No signal, bad payload, or rejected type
        2: Server unavailable
    """
    if signal_type is None:
        data, success, unavailable = client.get_signal(session_name)
        if not success:
            return _report_failure(data, unavailable)
        print(json.dumps(data, indent=2))
        return 0

    parsed = {}
    if payload:
        try:
            parsed = json.loads(payload)
        except ValueError as e:
            print(f"Error: payload is not valid JSON: {e}", file=sys.stderr)
            return 1
        if not isinstance(parsed, dict):
            print("Error: payload must be a JSON object", file=sys.stderr)
            return 1

    data, success, unavailable = client.set_signal(session_name, signal_type, task_id, parsed)
    if not success:
        return _report_failure(data, unavailable)
    print(f"Signal for {session_name}: {data['type']}")
    return 0
