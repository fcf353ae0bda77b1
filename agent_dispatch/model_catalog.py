"""Model lists for workers: configured models merged with provider catalogs."""

import logging
from typing import Callable, Dict, List, Optional

import httpx

from .cache import LookupCache
from .credentials import CredentialResolver
from .models import WorkerModel, WorkerProgram

logger = logging.getLogger(__name__)


def _anthropic(data: dict) -> List[WorkerModel]:
    return [
        WorkerModel(id=m["id"], short_name=m["id"], name=m.get("display_name") or m["id"])
        for m in data.get("data", [])
        if m.get("id") and "embed" not in m["id"]
    ]


def _openai(data: dict) -> List[WorkerModel]:
    keep = ("gpt", "o1", "o3", "o4", "codex")
    return [
        WorkerModel(id=m["id"])
        for m in data.get("data", [])
        if m.get("id") and any(k in m["id"] for k in keep)
    ]


def _google(data: dict) -> List[WorkerModel]:
    models = []
    for m in data.get("models", []):
        name = m.get("name", "")
        if "gemini" not in name:
            continue
        model_id = name.replace("models/", "")
        models.append(WorkerModel(id=model_id, name=m.get("displayName") or model_id))
    return models


def _openrouter(data: dict) -> List[WorkerModel]:
    return [
        WorkerModel(id=f"openrouter/{m['id']}", name=m.get("name") or m["id"])
        for m in data.get("data", [])
        if m.get("id")
    ]


PROVIDER_CATALOGS: Dict[str, dict] = {
    "anthropic": {
        "url": "https://api.anthropic.com/v1/models",
        "headers": lambda key: {"x-api-key": key, "anthropic-version": "2023-06-01"},
        "transform": _anthropic,
    },
    "openai": {
        "url": "https://api.openai.com/v1/models",
        "headers": lambda key: {"Authorization": f"Bearer {key}"},
        "transform": _openai,
    },
    "google": {
        "url": "https://generativelanguage.googleapis.com/v1beta/models",
        "headers": lambda key: {"x-goog-api-key": key},
        "transform": _google,
    },
    "openrouter": {
        "url": "https://openrouter.ai/api/v1/models",
        "headers": lambda key: {"Authorization": f"Bearer {key}"},
        "transform": _openrouter,
    },
}


class ModelCatalog:
    """Lists the models a worker can run.

    Provider catalogs are fetched with the worker's API key and cached in the
    orchestrator's ``LookupCache``. Any failure falls back to the configured
    model list.
    """

    def __init__(
        self,
        cache: LookupCache,
        credentials: CredentialResolver,
        config: Optional[dict] = None,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
    ):
        self.cache = cache
        self.credentials = credentials
        self.config = config or {}
        catalog_config = self.config.get("model_catalog", {})
        self.ttl_seconds = catalog_config.get("ttl_seconds", 600)
        self.timeout_seconds = catalog_config.get("timeout_seconds", 10.0)
        self.client_factory = client_factory or (lambda: httpx.AsyncClient(timeout=self.timeout_seconds))

    async def _fetch(self, provider: str, api_key: str) -> List[WorkerModel]:
        spec = PROVIDER_CATALOGS[provider]
        async with self.client_factory() as client:
            response = await client.get(spec["url"], headers=spec["headers"](api_key))
            response.raise_for_status()
            return spec["transform"](response.json())

    async def list_models(self, worker: WorkerProgram) -> dict:
        """
        Return ``{"models": [...], "source": "provider"|"config"|"cache", "provider": ...}``.
        """
        configured = [m.to_dict() for m in worker.models]
        provider = worker.auth.provider
        if not provider or provider not in PROVIDER_CATALOGS:
            return {"models": configured, "source": "config", "provider": provider}

        cache_key = f"models:{worker.id}:{provider}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return {"models": cached, "source": "cache", "provider": provider}

        api_key = self.credentials.resolve(provider, worker.auth.env_var)
        if not api_key:
            return {"models": configured, "source": "config", "provider": provider}

        try:
            fetched = await self._fetch(provider, api_key)
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.warning(f"Model catalog fetch for {provider} failed, using configured models: {e}")
            return {"models": configured, "source": "config", "provider": provider}

        # Configured models first so their short names stay selectable
        seen = {m["id"] for m in configured}
        models = configured + [m.to_dict() for m in fetched if m.id not in seen]
        self.cache.set(cache_key, models, ttl=self.ttl_seconds)
        logger.info(f"Fetched {len(fetched)} models from {provider}")
        return {"models": models, "source": "provider", "provider": provider}
