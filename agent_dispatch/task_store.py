"""Client for the task store CLI (``bd`` by default)."""

import json
import logging
import subprocess
from typing import List, Optional

from .errors import TaskStoreError
from .models import Task

logger = logging.getLogger(__name__)


class TaskStore:
    """Reads and assigns tasks by shelling out to the task store CLI."""

    def __init__(self, config: Optional[dict] = None):
        self.config = config or {}
        store_config = self.config.get("task_store", {})
        self.command = store_config.get("command", "bd")
        self.assignment_labels = store_config.get("assignment_labels", True)
        self.label_flag = store_config.get("label_flag", "--add-label")
        self.timeout_seconds = self.config.get("timeouts", {}).get("task_store", {}).get("command_timeout_seconds", 10)

    def _run(self, args: List[str], cwd: Optional[str] = None) -> str:
        cmd = [self.command] + args
        logger.debug(f"Running task store command: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                cwd=cwd,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired as e:
            raise TaskStoreError(f"{self.command} {args[0]} timed out after {self.timeout_seconds}s") from e
        except FileNotFoundError as e:
            raise TaskStoreError(f"Task store command '{self.command}' not found") from e

        if result.returncode != 0:
            raise TaskStoreError(
                f"{self.command} {args[0]} failed",
                stderr=result.stderr.strip(),
                returncode=result.returncode,
            )
        return result.stdout

    def show(self, task_id: str, project_path: Optional[str] = None) -> Task:
        """
        Fetch one task.

        Raises:
            TaskStoreError: the CLI failed or returned something that is not a task
        """
        output = self._run(["show", task_id, "--json"], cwd=project_path)
        try:
            data = json.loads(output)
        except json.JSONDecodeError as e:
            raise TaskStoreError(f"Unparseable output from {self.command} show {task_id}") from e
        # bd returns a one-element list
        if isinstance(data, list):
            if not data:
                raise TaskStoreError(f"Task {task_id} not found")
            data = data[0]
        if not isinstance(data, dict) or "id" not in data:
            raise TaskStoreError(f"Unexpected output from {self.command} show {task_id}")
        return Task.from_dict(data)

    def assign(
        self,
        task_id: str,
        agent_name: str,
        project_path: Optional[str] = None,
        worker_id: Optional[str] = None,
        model_id: Optional[str] = None,
    ) -> None:
        """Mark the task in progress and assign it to ``agent_name``."""
        args = ["update", task_id, "--status", "in_progress", "--assignee", agent_name]
        if self.assignment_labels:
            if worker_id:
                args.extend([self.label_flag, f"worker:{worker_id}"])
            if model_id:
                args.extend([self.label_flag, f"model:{model_id}"])
        self._run(args, cwd=project_path)
        logger.info(f"Assigned {task_id} to {agent_name}")
