"""Configured worker programs and their availability."""

import logging
import re
import shutil
from typing import Callable, Dict, List, Optional

from .credentials import CredentialResolver
from .errors import ConfigurationError
from .models import AuthType, WorkerModel, WorkerProgram

logger = logging.getLogger(__name__)

# provider/model identifiers from external catalogs, e.g. "openrouter/qwen/qwen3-coder"
EXTERNAL_MODEL_RE = re.compile(r'^[a-z0-9][a-z0-9._-]*/[A-Za-z0-9._:/-]+$')


class WorkerRegistry:
    """Workers loaded from the ``workers`` config section."""

    def __init__(
        self,
        config: Optional[dict] = None,
        credentials: Optional[CredentialResolver] = None,
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        self.config = config or {}
        self.credentials = credentials or CredentialResolver(self.config)
        self.which = which
        self.check_installed = self.config.get("launch_defaults", {}).get("check_installed", True)

        self.workers: Dict[str, WorkerProgram] = {}
        for worker_id, data in (self.config.get("workers") or {}).items():
            try:
                self.workers[worker_id] = WorkerProgram.from_dict(worker_id, data or {})
            except (KeyError, ValueError) as e:
                raise ConfigurationError(f"Invalid worker '{worker_id}': {e}") from e

    def get(self, worker_id: str) -> Optional[WorkerProgram]:
        return self.workers.get(worker_id)

    def list(self) -> List[WorkerProgram]:
        return list(self.workers.values())

    def is_installed(self, worker: WorkerProgram) -> bool:
        if not self.check_installed:
            return True
        return self.which(worker.binary) is not None

    def auth_satisfied(self, worker: WorkerProgram) -> bool:
        if worker.auth.type != AuthType.API_KEY:
            return True
        return self.credentials.resolve(worker.auth.provider, worker.auth.env_var) is not None

    def unavailable_reason(self, worker: WorkerProgram) -> Optional[str]:
        """Why a worker cannot run right now, or None if it can."""
        if not worker.enabled:
            return "disabled"
        if not self.is_installed(worker):
            return f"'{worker.binary}' is not installed"
        if not self.auth_satisfied(worker):
            return f"no API key for provider '{worker.auth.provider}'"
        return None

    def is_available(self, worker: WorkerProgram) -> bool:
        return self.unavailable_reason(worker) is None

    def get_model(self, worker: WorkerProgram, model: Optional[str]) -> Optional[WorkerModel]:
        """Resolve a model identifier for ``worker``.

        Matches a configured model by short name or id. A well-formed
        ``provider/model`` identifier that is not configured is accepted as-is.
        """
        if not model:
            return None
        for candidate in worker.models:
            if model in (candidate.short_name, candidate.id):
                return candidate
        if EXTERNAL_MODEL_RE.match(model):
            return WorkerModel(id=model)
        return None

    def default_model(self, worker: WorkerProgram) -> Optional[WorkerModel]:
        if worker.default_model:
            return self.get_model(worker, worker.default_model)
        return worker.models[0] if worker.models else None
