"""Tests for the OpenAI-compatible streaming client."""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from quillagent.ai.client import (
    AIClient,
    ClientSettings,
    ModelEndpointError,
    is_retryable_endpoint_error,
)
from quillagent.ai.streaming import FinishSignal, TextDelta, ToolCallDelta
from quillagent.ai.tools.definitions import openai_tools
from tests.helpers import DONE_FRAME, finish_frame, text_frame, tool_frame

_MESSAGES = [{"role": "user", "content": "hello"}]


def _stream_body(*frames: bytes) -> bytes:
    return b"".join(frames)


def _make_client(
    handler: Callable[[httpx.Request], httpx.Response],
    **overrides: Any,
) -> AIClient:
    options: dict[str, Any] = {
        "base_url": "https://llm.test/v1",
        "api_key": "sk-test",
        "model": "test-model",
        "retry_min_seconds": 0,
        "retry_max_seconds": 0,
    }
    options.update(overrides)
    return AIClient(ClientSettings(**options), transport=httpx.MockTransport(handler))


async def _collect(client: AIClient, **kwargs: Any) -> list:
    return [chunk async for chunk in client.stream_chat(_MESSAGES, **kwargs)]


class TestStreamChat:
    """Tests for AIClient.stream_chat."""

    @pytest.mark.asyncio
    async def test_posts_streaming_payload(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=_stream_body(text_frame("Hi"), DONE_FRAME))

        client = _make_client(handler, temperature=0.3, max_completion_tokens=512, organization="org-9")
        tools = openai_tools(["read_content"])

        chunks = await _collect(client, tools=tools, tool_choice="auto")

        assert chunks == [TextDelta("Hi")]
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert request.headers["OpenAI-Organization"] == "org-9"
        payload = json.loads(request.content)
        assert payload["model"] == "test-model"
        assert payload["stream"] is True
        assert payload["messages"] == _MESSAGES
        assert payload["tools"] == tools
        assert payload["tool_choice"] == "auto"
        assert payload["temperature"] == 0.3
        assert payload["max_completion_tokens"] == 512

    @pytest.mark.asyncio
    async def test_tool_choice_omitted_without_tools(self):
        payloads: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            payloads.append(json.loads(request.content))
            return httpx.Response(200, content=DONE_FRAME)

        client = _make_client(handler)
        await _collect(client, tool_choice="auto")

        assert "tools" not in payloads[0]
        assert "tool_choice" not in payloads[0]

    @pytest.mark.asyncio
    async def test_decodes_tool_call_fragments(self):
        body = _stream_body(
            tool_frame(0, call_id="call_1", name="read_content", arguments='{"contentId"'),
            tool_frame(0, arguments=': "c-1"}'),
            finish_frame("tool_calls"),
            DONE_FRAME,
        )
        client = _make_client(lambda request: httpx.Response(200, content=body))

        chunks = await _collect(client)

        assert chunks == [
            ToolCallDelta(index=0, id="call_1", name_part="read_content", arguments_part='{"contentId"'),
            ToolCallDelta(index=0, arguments_part=': "c-1"}'),
            FinishSignal("tool_calls"),
        ]

    @pytest.mark.asyncio
    async def test_requires_messages(self):
        client = _make_client(lambda request: httpx.Response(200, content=DONE_FRAME))

        with pytest.raises(ValueError):
            async for _chunk in client.stream_chat([]):
                pass


class TestRetries:
    """Retry behaviour while opening the stream."""

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            if calls["count"] == 1:
                return httpx.Response(503, json={"error": {"message": "overloaded"}})
            return httpx.Response(200, content=_stream_body(text_frame("ok"), DONE_FRAME))

        client = _make_client(handler)

        assert await _collect(client) == [TextDelta("ok")]
        assert calls["count"] == 2

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self):
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            return httpx.Response(400, json={"error": {"message": "bad tools"}})

        client = _make_client(handler)

        with pytest.raises(ModelEndpointError) as excinfo:
            await _collect(client)

        assert calls["count"] == 1
        assert excinfo.value.status_code == 400
        assert excinfo.value.retryable is False
        assert "bad tools" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_rate_limit_exhausts_attempts(self):
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            return httpx.Response(429, text="slow down")

        client = _make_client(handler, max_retries=2)

        with pytest.raises(ModelEndpointError) as excinfo:
            await _collect(client)

        assert calls["count"] == 2
        assert excinfo.value.status_code == 429

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self):
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            if calls["count"] < 3:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, content=DONE_FRAME)

        client = _make_client(handler)

        assert await _collect(client) == []
        assert calls["count"] == 3


class TestModelEndpointError:
    def test_retryable_statuses(self):
        assert ModelEndpointError.from_status(429, "").retryable
        assert ModelEndpointError.from_status(502, "").retryable
        assert not ModelEndpointError.from_status(401, "").retryable

    def test_error_message_prefers_json_error(self):
        error = ModelEndpointError.from_status(400, json.dumps({"error": {"message": "nope"}}))
        assert error.message == "Model endpoint returned HTTP 400: nope"

    def test_is_retryable_endpoint_error(self):
        assert is_retryable_endpoint_error(httpx.ReadTimeout("slow"))
        assert not is_retryable_endpoint_error(ValueError("x"))
