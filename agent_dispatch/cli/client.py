"""HTTP client for the Agent Dispatch API."""

import json
import os
import urllib.error
import urllib.request
from typing import Optional

# Default API endpoint
DEFAULT_API_URL = "http://127.0.0.1:8430"
API_TIMEOUT = 5  # seconds
# Spawns wait for the worker to become ready
SPAWN_TIMEOUT = 120


class DispatchClient:
    """Client for the Agent Dispatch API."""

    def __init__(self, api_url: Optional[str] = None):
        """
        Initialize client.

        Args:
            api_url: Base URL for API (default: http://127.0.0.1:8430)
        """
        self.api_url = (api_url or os.environ.get("AGENT_DISPATCH_URL", DEFAULT_API_URL)).rstrip("/")

    def _request(
        self,
        method: str,
        path: str,
        data: Optional[dict] = None,
        timeout: Optional[int] = None,
    ) -> tuple[Optional[dict], bool, bool]:
        """
        Make an HTTP request.

        Returns:
            Tuple of (response_data, success, unavailable)
            - success=True, unavailable=False: Request succeeded
            - success=False, unavailable=True: Connection error (server unavailable)
            - success=False, unavailable=False: API error; response_data holds the error body
        """
        url = f"{self.api_url}{path}"
        request_timeout = timeout if timeout is not None else API_TIMEOUT

        headers = {"Content-Type": "application/json"}
        body = json.dumps(data).encode() if data is not None else None
        req = urllib.request.Request(url, data=body, headers=headers, method=method)

        try:
            with urllib.request.urlopen(req, timeout=request_timeout) as response:
                payload = response.read().decode()
                return (json.loads(payload) if payload else {}), True, False
        except urllib.error.HTTPError as e:
            # API responded with an error status
            try:
                return json.loads(e.read().decode()), False, False
            except ValueError:
                return {"detail": str(e)}, False, False
        except (urllib.error.URLError, TimeoutError, ConnectionError):
            return None, False, True

    def spawn(
        self,
        task_id: Optional[str] = None,
        worker: Optional[str] = None,
        model: Optional[str] = None,
        project: Optional[str] = None,
        mode: str = "task",
    ) -> tuple[Optional[dict], bool, bool]:
        """Start a worker."""
        data = {"task_id": task_id, "worker": worker, "model": model, "project": project, "mode": mode}
        return self._request("POST", "/work/spawn", data, timeout=SPAWN_TIMEOUT)

    def followup(self, task_id: str, text: str, project: Optional[str] = None) -> tuple[Optional[dict], bool, bool]:
        """Send follow-up text to the holder of a task."""
        return self._request(
            "POST", f"/tasks/{task_id}/followup", {"text": text, "project": project}, timeout=SPAWN_TIMEOUT
        )

    def send_input(self, session_name: str, text: str) -> tuple[Optional[dict], bool, bool]:
        """Inject text into a running session."""
        return self._request("POST", f"/sessions/{session_name}/input", {"text": text}, timeout=30)

    def pause(
        self,
        session_name: str,
        task_id: Optional[str] = None,
        reason: Optional[str] = None,
        kill: bool = True,
    ) -> tuple[Optional[dict], bool, bool]:
        """Pause a session."""
        data = {"task_id": task_id, "reason": reason, "kill": kill}
        return self._request("POST", f"/sessions/{session_name}/pause", data, timeout=30)

    def restart(self, session_name: str) -> tuple[Optional[dict], bool, bool]:
        """Kill and relaunch a session."""
        return self._request("POST", f"/sessions/{session_name}/restart", {}, timeout=SPAWN_TIMEOUT)

    def kill(self, session_name: str) -> tuple[Optional[dict], bool, bool]:
        """Kill a session."""
        return self._request("DELETE", f"/sessions/{session_name}")

    def list_sessions(self) -> Optional[list]:
        """List all sessions."""
        data, success, _ = self._request("GET", "/sessions")
        if success and data:
            return data.get("sessions", [])
        return None

    def list_workers(self) -> Optional[list]:
        """List configured workers."""
        data, success, _ = self._request("GET", "/workers")
        if success and data:
            return data.get("workers", [])
        return None

    def list_models(self, worker_id: str) -> tuple[Optional[dict], bool, bool]:
        """List models for a worker."""
        return self._request("GET", f"/workers/{worker_id}/models", timeout=15)

    def set_signal(
        self,
        session_name: str,
        signal_type: str,
        task_id: Optional[str] = None,
        payload: Optional[dict] = None,
    ) -> tuple[Optional[dict], bool, bool]:
        """Write a lifecycle signal for a session."""
        data = {"type": signal_type, "task_id": task_id, "payload": payload or {}}
        return self._request("PUT", f"/sessions/{session_name}/signal", data)

    def get_signal(self, session_name: str) -> tuple[Optional[dict], bool, bool]:
        """Read a session's lifecycle signal."""
        return self._request("GET", f"/sessions/{session_name}/signal")
