"""Tests for the AI chat completions client."""
import json

import httpx
import pytest

from prizma.config import Settings
from prizma.exceptions import ConfigurationError, ExternalServiceError
from prizma.services.ai_client import AIServiceClient, create_ai_client


def completion(content):
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


def make_client(responses, max_retries=3):
    """Client whose transport replays responses (or raises exceptions) in order."""
    requests = []

    def handler(request):
        requests.append(request)
        result = responses[min(len(requests), len(responses)) - 1]
        if isinstance(result, Exception):
            raise result
        return result

    client = AIServiceClient(
        api_key="test-key",
        base_url="https://ai.test/v1/",
        model="test-model",
        max_retries=max_retries,
        backoff_seconds=0,
        transport=httpx.MockTransport(handler),
    )
    return client, requests


class TestComplete:
    async def test_returns_message_content(self):
        client, requests = make_client([completion('{"category": "bakery"}')])

        assert await client.complete("system", "Хляб") == '{"category": "bakery"}'

        request = requests[0]
        assert str(request.url) == "https://ai.test/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer test-key"
        body = json.loads(request.content)
        assert body["model"] == "test-model"
        assert body["messages"][1] == {"role": "user", "content": "Хляб"}
        await client.aclose()

    async def test_retries_server_errors(self):
        client, requests = make_client([httpx.Response(503), completion("ok")])

        assert await client.complete("s", "u") == "ok"
        assert len(requests) == 2
        await client.aclose()

    async def test_retries_transport_errors(self):
        client, requests = make_client([httpx.ConnectError("connection refused"), completion("ok")])

        assert await client.complete("s", "u") == "ok"
        assert len(requests) == 2
        await client.aclose()

    async def test_gives_up_after_max_retries(self):
        client, requests = make_client([httpx.Response(429, text="slow down")], max_retries=3)

        with pytest.raises(ExternalServiceError) as exc_info:
            await client.complete("s", "u")

        assert exc_info.value.status_code == 429
        assert exc_info.value.retryable
        assert len(requests) == 3
        await client.aclose()

    async def test_client_errors_are_not_retried(self):
        client, requests = make_client([httpx.Response(400, text="bad request")])

        with pytest.raises(ExternalServiceError) as exc_info:
            await client.complete("s", "u")

        assert exc_info.value.status_code == 400
        assert not exc_info.value.retryable
        assert len(requests) == 1
        await client.aclose()

    async def test_malformed_body(self):
        client, _ = make_client([httpx.Response(200, json={"choices": []})])

        with pytest.raises(ExternalServiceError):
            await client.complete("s", "u")
        await client.aclose()

    def test_backoff_doubles(self):
        client = AIServiceClient(api_key="k", backoff_seconds=1.5)
        assert [client._backoff(n) for n in (1, 2, 3)] == [1.5, 3.0, 6.0]


class TestCreateAiClient:
    def test_disabled_returns_none(self):
        assert create_ai_client(Settings(ai_enabled=False)) is None

    def test_missing_key_is_fatal(self):
        with pytest.raises(ConfigurationError):
            create_ai_client(Settings(ai_enabled=True, ai_api_key=None))

    async def test_builds_client_from_settings(self):
        settings = Settings(ai_enabled=True, ai_api_key="secret", ai_model="m", ai_max_retries=5)
        client = create_ai_client(settings)

        assert client.model == "m"
        assert client.max_retries == 5
        await client.aclose()
