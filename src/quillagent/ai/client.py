"""Async client for OpenAI-compatible chat completion endpoints."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Protocol, Sequence, cast, runtime_checkable

import httpx
from openai.types.chat import (
    ChatCompletionMessageParam,
    ChatCompletionToolChoiceOptionParam,
    ChatCompletionToolParam,
)
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from ..utils.logging import redact_payload
from .streaming import StreamChunk, StreamDecoder

__all__ = [
    "AIClient",
    "ChatModel",
    "ClientSettings",
    "ModelEndpointError",
    "is_retryable_endpoint_error",
]

LOGGER = logging.getLogger(__name__)
_COMPLETIONS_PATH = "chat/completions"
_ERROR_BODY_PREVIEW = 500


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the AI client."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    temperature: float | None = None
    max_completion_tokens: int | None = None
    default_headers: Mapping[str, str] | None = None
    metadata: Mapping[str, str] | None = None
    debug_logging: bool = False


class ModelEndpointError(RuntimeError):
    """Raised when the model endpoint rejects a streamed completion request."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body
        self.retryable = retryable

    @classmethod
    def from_status(cls, status_code: int, body: str) -> "ModelEndpointError":
        retryable = status_code == 429 or status_code >= 500
        detail = _extract_error_message(body) or httpx.codes.get_reason_phrase(status_code)
        return cls(
            f"Model endpoint returned HTTP {status_code}: {detail}",
            status_code=status_code,
            body=body,
            retryable=retryable,
        )


@runtime_checkable
class ChatModel(Protocol):
    """Anything that can stream a chat completion as :data:`StreamChunk` values."""

    def stream_chat(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        tools: Iterable[ChatCompletionToolParam] | None = None,
        tool_choice: ChatCompletionToolChoiceOptionParam | None = None,
    ) -> AsyncIterator[StreamChunk]:
        ...


def is_retryable_endpoint_error(exc: BaseException) -> bool:
    """Return True for errors worth retrying while opening a completion stream."""

    if isinstance(exc, ModelEndpointError):
        return exc.retryable
    return isinstance(exc, httpx.TransportError)


class AIClient:
    """Async client providing streaming helpers with retry semantics.

    Retries (429, 5xx and transport failures) only cover opening the stream.
    Once the first byte has been handed to the decoder, failures propagate to
    the caller so partially delivered output is never replayed.
    """

    def __init__(
        self,
        settings: ClientSettings,
        *,
        http_client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._owns_client = http_client is None
        self._http = http_client or self._build_client(settings, transport=transport)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def stream_chat(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        tools: Iterable[ChatCompletionToolParam] | None = None,
        tool_choice: ChatCompletionToolChoiceOptionParam | None = None,
        temperature: float | None = None,
        max_completion_tokens: int | None = None,
        metadata: Mapping[str, str] | None = None,
        **extra_params: Any,
    ) -> AsyncIterator[StreamChunk]:
        """Stream chat completions for the provided messages."""

        payload = self._build_chat_payload(
            messages=self._coerce_messages(messages),
            tools=tools,
            tool_choice=tool_choice,
            temperature=temperature,
            max_completion_tokens=max_completion_tokens,
            metadata=metadata,
            extra_params=extra_params,
        )
        LOGGER.debug(
            "Starting streamed chat completion via %s with %s message(s) and %s tool(s)",
            self._settings.model,
            len(payload["messages"]),
            len(payload.get("tools", ())),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        response = await self._open_stream(payload)
        decoder = StreamDecoder()
        try:
            async for chunk in decoder.decode(response.aiter_bytes()):
                yield chunk
        finally:
            await response.aclose()
            if decoder.skipped_frames:
                LOGGER.warning(
                    "Stream finished with %s malformed frame(s) skipped", decoder.skipped_frames
                )

    async def _open_stream(self, payload: Mapping[str, Any]) -> httpx.Response:
        async for attempt in self._retrying():
            with attempt:
                request = self._http.build_request("POST", _COMPLETIONS_PATH, json=payload)
                response = await self._http.send(request, stream=True)
                if response.status_code >= 400:
                    raw = await response.aread()
                    await response.aclose()
                    error = ModelEndpointError.from_status(
                        response.status_code, raw.decode("utf-8", errors="replace")
                    )
                    LOGGER.warning(
                        "Model endpoint request failed (attempt %s): %s",
                        attempt.retry_state.attempt_number,
                        error.message,
                    )
                    raise error
                return response
        raise ModelEndpointError("Model endpoint retry loop exited without a response")

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception(is_retryable_endpoint_error),
        )

    def _build_client(
        self,
        settings: ClientSettings,
        *,
        transport: httpx.AsyncBaseTransport | None,
    ) -> httpx.AsyncClient:
        headers: Dict[str, str] = {
            "Accept": "text/event-stream",
            "Content-Type": "application/json",
        }
        if settings.api_key:
            headers["Authorization"] = f"Bearer {settings.api_key}"
        if settings.organization:
            headers["OpenAI-Organization"] = settings.organization
        if settings.default_headers:
            headers.update(settings.default_headers)
        return httpx.AsyncClient(
            base_url=settings.base_url,
            headers=headers,
            timeout=settings.request_timeout,
            transport=transport,
        )

    def _coerce_messages(
        self, messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam]
    ) -> List[ChatCompletionMessageParam]:
        normalized: List[ChatCompletionMessageParam] = []
        for message in messages:
            try:
                normalized.append(cast(ChatCompletionMessageParam, dict(message)))
            except (TypeError, ValueError) as exc:
                raise TypeError("Messages must be mapping-like objects") from exc
        if not normalized:
            raise ValueError("At least one message is required to start a chat")
        return normalized

    def _build_chat_payload(
        self,
        *,
        messages: Sequence[ChatCompletionMessageParam],
        tools: Iterable[ChatCompletionToolParam] | None,
        tool_choice: ChatCompletionToolChoiceOptionParam | None,
        temperature: float | None,
        max_completion_tokens: int | None,
        metadata: Mapping[str, str] | None,
        extra_params: Mapping[str, Any],
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": list(messages),
            "stream": True,
        }

        merged_metadata = self._merge_metadata(metadata)
        if merged_metadata:
            payload["metadata"] = merged_metadata
        tool_list = list(tools) if tools else []
        if tool_list:
            payload["tools"] = tool_list
            if tool_choice:
                payload["tool_choice"] = tool_choice
        if temperature is None:
            temperature = self._settings.temperature
        if temperature is not None:
            payload["temperature"] = temperature
        if max_completion_tokens is None:
            max_completion_tokens = self._settings.max_completion_tokens
        if max_completion_tokens is not None:
            payload["max_completion_tokens"] = max_completion_tokens
        if extra_params:
            payload.update(extra_params)

        return payload

    def _merge_metadata(self, runtime_metadata: Mapping[str, str] | None) -> Dict[str, str] | None:
        combined: Dict[str, str] = {}
        if self._settings.metadata:
            combined.update(self._settings.metadata)
        if runtime_metadata:
            combined.update(runtime_metadata)
        return combined or None

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        safe_payload = redact_payload(payload)
        try:
            serialized = json.dumps(safe_payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("AI prompt payload (unserializable): %s", safe_payload)
        else:
            LOGGER.debug("AI prompt payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying HTTP client when this instance created it."""

        if self._owns_client:
            await self._http.aclose()


def _extract_error_message(body: str) -> str:
    if not body:
        return ""
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return body[:_ERROR_BODY_PREVIEW]
    if isinstance(data, Mapping):
        error = data.get("error")
        if isinstance(error, Mapping) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if data.get("message"):
            return str(data["message"])
    return body[:_ERROR_BODY_PREVIEW]
