"""API key lookup: credentials file first, then environment."""

import json
import logging
import os
import stat
from pathlib import Path
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_CREDENTIALS_FILE = "~/.config/agent-dispatch/credentials.json"

# Environment variable consulted when the credentials file has no key for a provider
PROVIDER_ENV_VARS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "google": "GEMINI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}


def mask_api_key(key: str) -> str:
    """Show only enough of a key to tell keys apart in logs."""
    if not key or len(key) < 12:
        return "****"
    return f"{key[:6]}...{key[-4:]}"


class CredentialResolver:
    """Resolves provider API keys.

    File layout: ``{"apiKeys": {"<provider>": {"key": "..."}}}``. The file is
    expected to be mode 0600; a looser mode is logged but still honoured.
    """

    def __init__(self, config: Optional[dict] = None, environ: Optional[Mapping[str, str]] = None):
        self.config = config or {}
        cred_config = self.config.get("credentials", {})
        self.path = Path(cred_config.get("file", DEFAULT_CREDENTIALS_FILE)).expanduser()
        self.env_vars = dict(PROVIDER_ENV_VARS)
        self.env_vars.update(cred_config.get("env_vars", {}))
        self.environ = environ if environ is not None else os.environ

    def _load_file(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            mode = stat.S_IMODE(self.path.stat().st_mode)
            if mode & 0o077:
                logger.warning(f"Credentials file {self.path} has mode {oct(mode)}, expected 0o600")
            with open(self.path) as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read credentials file {self.path}: {e}")
            return {}

    def resolve(self, provider: Optional[str], env_var: Optional[str] = None) -> Optional[str]:
        """Return the API key for ``provider``, or None if none is configured."""
        if not provider and not env_var:
            return None

        if provider:
            entry = self._load_file().get("apiKeys", {}).get(provider) or {}
            key = entry.get("key") if isinstance(entry, dict) else None
            if key:
                return key

        name = env_var or self.env_vars.get(provider or "")
        if name:
            value = self.environ.get(name)
            if value:
                return value
        return None

    def env_var_for(self, provider: Optional[str], env_var: Optional[str] = None) -> Optional[str]:
        """Name of the environment variable a worker reads its key from."""
        return env_var or self.env_vars.get(provider or "")
