"""Chat model adapters: a protocol plus an OpenAI chat/completions implementation."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterator, Sequence
from typing import Any, Protocol
from urllib import error, request

from plan_executor.agent.events import ChatMessage, ModelEvent, TextChunk, ToolCallRequest
from plan_executor.config.settings import Settings
from plan_executor.errors import ModelProviderError

logger = logging.getLogger(__name__)


class ChatModel(Protocol):
    def stream(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[dict[str, Any]],
    ) -> Iterator[ModelEvent]: ...


class OpenAIChatModel:
    """Function-calling chat model over the OpenAI-compatible HTTP API."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str,
        timeout_s: float = 60.0,
        max_retries: int = 1,
        backoff_s: float = 1.0,
    ) -> None:
        if not api_key:
            raise ModelProviderError("OPENAI_API_KEY is missing")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.backoff_s = backoff_s

    def stream(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[dict[str, Any]],
    ) -> Iterator[ModelEvent]:
        request_body: dict[str, Any] = {
            "model": self.model,
            "temperature": 0,
            "messages": to_openai_messages(messages),
        }
        if tools:
            request_body["tools"] = list(tools)
            request_body["tool_choice"] = "auto"
        response_json = self._request_with_retry(request_body)
        yield from parse_completion(response_json)

    def _request_with_retry(self, request_body: dict[str, Any]) -> dict[str, Any]:
        last_error: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                return self._request_once(request_body)
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                logger.warning(
                    "chat_model event=request_failed attempt=%s error=%s", attempt + 1, exc
                )
                if attempt < self.max_retries and self.backoff_s > 0:
                    time.sleep(self.backoff_s)
        raise ModelProviderError(f"Model request failed: {last_error}") from last_error

    def _request_once(self, request_body: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url.rstrip('/')}/chat/completions"
        req = request.Request(
            url=url,
            data=json.dumps(request_body).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            with request.urlopen(req, timeout=self.timeout_s) as response:
                raw = response.read().decode("utf-8")
        except error.HTTPError as exc:
            message = exc.read().decode("utf-8", errors="replace")
            raise RuntimeError(
                f"Model request failed with status {exc.code}: {message[:400]}"
            ) from exc
        except error.URLError as exc:
            raise RuntimeError(f"Model request failed: {exc.reason}") from exc

        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise RuntimeError("Model returned non-JSON response") from exc


def to_openai_messages(messages: Sequence[ChatMessage]) -> list[dict[str, Any]]:
    payload: list[dict[str, Any]] = []
    for message in messages:
        if message.tool_results:
            for result in message.tool_results:
                payload.append(
                    {"role": "tool", "tool_call_id": result.call_id, "content": result.content}
                )
            if message.text:
                payload.append({"role": message.role, "content": message.text})
            continue
        if message.tool_calls:
            payload.append(
                {
                    "role": "assistant",
                    "content": message.text or None,
                    "tool_calls": [
                        {
                            "id": call.call_id,
                            "type": "function",
                            "function": {
                                "name": call.name,
                                "arguments": json.dumps(call.arguments, ensure_ascii=True),
                            },
                        }
                        for call in message.tool_calls
                    ],
                }
            )
            continue
        payload.append({"role": message.role, "content": message.text})
    return payload


def parse_completion(response_json: dict[str, Any]) -> list[ModelEvent]:
    try:
        message = response_json["choices"][0]["message"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ModelProviderError("Model response is missing choices[0].message") from exc

    events: list[ModelEvent] = []
    content = message.get("content")
    if isinstance(content, str) and content:
        events.append(TextChunk(text=content))
    for index, call in enumerate(message.get("tool_calls") or []):
        function = call.get("function") or {}
        raw_arguments = function.get("arguments") or "{}"
        try:
            arguments = json.loads(raw_arguments)
        except json.JSONDecodeError:
            arguments = {"_raw": raw_arguments}
        if not isinstance(arguments, dict):
            arguments = {"_raw": arguments}
        events.append(
            ToolCallRequest(
                call_id=str(call.get("id") or f"call_{index}"),
                name=str(function.get("name") or ""),
                arguments=arguments,
            )
        )
    return events


def build_chat_model(settings: Settings) -> ChatModel:
    provider = settings.llm_provider.lower().strip()
    if provider != "openai":
        raise ModelProviderError(f"Unsupported LLM provider: {settings.llm_provider}")
    return OpenAIChatModel(
        api_key=settings.resolved_openai_api_key(),
        model=settings.llm_model,
        base_url=settings.llm_base_url,
        timeout_s=settings.llm_timeout_s,
        max_retries=settings.llm_max_retries,
        backoff_s=settings.llm_backoff_s,
    )
