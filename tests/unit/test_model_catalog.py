"""Tests for provider model catalogs and webhook notifications."""

import json

import httpx
import pytest

from agent_dispatch.cache import LookupCache
from agent_dispatch.credentials import CredentialResolver
from agent_dispatch.model_catalog import ModelCatalog
from agent_dispatch.models import AuthRequirement, AuthType, WorkerModel, WorkerProgram
from agent_dispatch.notifier import WebhookNotifier
from agent_dispatch.polling import FakeClock

CODEX = WorkerProgram(
    id="codex",
    command="codex",
    auth=AuthRequirement(type=AuthType.API_KEY, provider="openai"),
    models=[WorkerModel(id="gpt-5-codex", short_name="codex")],
)


def make_catalog(handler, environ=None, clock=None):
    credentials = CredentialResolver(
        {"credentials": {"file": "/nonexistent/credentials.json"}},
        environ=environ if environ is not None else {"OPENAI_API_KEY": "sk-openai", "GEMINI_API_KEY": "gm"},
    )
    return ModelCatalog(
        LookupCache(clock=clock or FakeClock()),
        credentials,
        {"model_catalog": {"ttl_seconds": 60}},
        client_factory=lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestModelCatalog:
    @pytest.mark.asyncio
    async def test_fetches_and_merges_after_configured(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"data": [
                {"id": "gpt-5"}, {"id": "whisper-1"}, {"id": "gpt-5-codex"},
            ]})

        result = await make_catalog(handler).list_models(CODEX)

        assert result["source"] == "provider"
        assert result["provider"] == "openai"
        assert [m["id"] for m in result["models"]] == ["gpt-5-codex", "gpt-5"]
        assert result["models"][0]["short_name"] == "codex"
        assert requests[0].headers["Authorization"] == "Bearer sk-openai"

    @pytest.mark.asyncio
    async def test_cached_until_ttl(self):
        calls = []
        clock = FakeClock()

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"data": [{"id": "gpt-5"}]})

        catalog = make_catalog(handler, clock=clock)
        await catalog.list_models(CODEX)
        second = await catalog.list_models(CODEX)
        assert second["source"] == "cache"
        assert len(calls) == 1

        clock.now = 61
        assert (await catalog.list_models(CODEX))["source"] == "provider"
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_provider_error_falls_back_to_config(self):
        catalog = make_catalog(lambda request: httpx.Response(500, text="upstream down"))
        result = await catalog.list_models(CODEX)
        assert result["source"] == "config"
        assert [m["id"] for m in result["models"]] == ["gpt-5-codex"]

    @pytest.mark.asyncio
    async def test_malformed_payload_falls_back_to_config(self):
        catalog = make_catalog(lambda request: httpx.Response(200, content=b"<html>"))
        assert (await catalog.list_models(CODEX))["source"] == "config"

    @pytest.mark.asyncio
    async def test_no_key_uses_config(self):
        def handler(request):
            raise AssertionError("no request expected")

        result = await make_catalog(handler, environ={}).list_models(CODEX)
        assert result["source"] == "config"

    @pytest.mark.asyncio
    async def test_worker_without_provider(self):
        worker = WorkerProgram(id="claude", command="claude", models=[WorkerModel(id="claude-opus-4-1", short_name="opus")])

        def handler(request):
            raise AssertionError("no request expected")

        result = await make_catalog(handler).list_models(worker)
        assert result == {"models": [{"id": "claude-opus-4-1", "short_name": "opus", "name": "opus"}], "source": "config", "provider": None}

    @pytest.mark.asyncio
    async def test_google_catalog(self):
        worker = WorkerProgram(id="gemini", command="gemini", auth=AuthRequirement(type=AuthType.API_KEY, provider="google"))
        seen = {}

        def handler(request):
            seen["key"] = request.headers["x-goog-api-key"]
            return httpx.Response(200, json={"models": [
                {"name": "models/gemini-2.5-pro", "displayName": "Gemini 2.5 Pro"},
                {"name": "models/text-embedding-004"},
            ]})

        result = await make_catalog(handler).list_models(worker)
        assert seen["key"] == "gm"
        assert result["models"] == [{"id": "gemini-2.5-pro", "short_name": "gemini-2.5-pro", "name": "Gemini 2.5 Pro"}]


class TestWebhookNotifier:
    @pytest.mark.asyncio
    async def test_disabled_without_url(self):
        notifier = WebhookNotifier({})
        assert not notifier.enabled
        assert await notifier.notify("spawned", "dispatch-SwiftRiver") is False

    @pytest.mark.asyncio
    async def test_posts_event(self):
        received = []

        def handler(request):
            received.append(json.loads(request.content))
            return httpx.Response(204)

        notifier = WebhookNotifier(
            {"notify": {"webhook_url": "https://hooks.example.com/dispatch"}},
            transport=httpx.MockTransport(handler),
        )
        assert await notifier.notify("spawned", "dispatch-SwiftRiver", worker="claude")
        assert received[0]["event"] == "spawned"
        assert received[0]["session"] == "dispatch-SwiftRiver"
        assert received[0]["worker"] == "claude"

    @pytest.mark.asyncio
    async def test_failures_are_swallowed(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        notifier = WebhookNotifier(
            {"notify": {"webhook_url": "https://hooks.example.com/dispatch"}},
            transport=httpx.MockTransport(handler),
        )
        assert await notifier.notify("spawned", "s") is False

    @pytest.mark.asyncio
    async def test_error_status(self):
        notifier = WebhookNotifier(
            {"notify": {"webhook_url": "https://hooks.example.com/dispatch"}},
            transport=httpx.MockTransport(lambda request: httpx.Response(404, text="no such hook")),
        )
        assert await notifier.notify("spawned", "s") is False
