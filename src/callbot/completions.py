"""Streaming chat-completion client utilities."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import (
    Any,
    AsyncGenerator,
    AsyncIterator,
    Iterable,
    Mapping,
    Optional,
    Protocol,
    Sequence,
)

import httpx
from fastapi import status

from .config import Settings

logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """Wrap transport or API failures when streaming a completion."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


@dataclass(frozen=True)
class CompletionChunk:
    """One content fragment yielded by the provider."""

    content: str
    finish_reason: Optional[str] = None


@dataclass
class ServerSentEvent:
    """Represents a parsed Server-Sent Event."""

    data: str
    event: str = "message"
    event_id: Optional[str] = None


class CompletionProvider(Protocol):
    def stream_completion(
        self, messages: Sequence[Mapping[str, Any]]
    ) -> AsyncIterator[CompletionChunk]: ...


class CompletionClient:
    """Client responsible for streaming chat completions over HTTP."""

    _client_lock: asyncio.Lock = asyncio.Lock()
    _client_pool: dict[tuple[str, float], httpx.AsyncClient] = {}

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings
        self._http_client = http_client

    def _client_key(self) -> tuple[str, float]:
        return (self._base_url, float(self._settings.request_timeout))

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client

        key = self._client_key()
        client = self.__class__._client_pool.get(key)
        if client is not None:
            return client

        async with self.__class__._client_lock:
            client = self.__class__._client_pool.get(key)
            if client is None:
                timeout = httpx.Timeout(self._settings.request_timeout, connect=10.0)
                limits = httpx.Limits(
                    max_connections=50,
                    max_keepalive_connections=20,
                )
                client = httpx.AsyncClient(
                    timeout=timeout,
                    limits=limits,
                    http2=True,
                )
                self.__class__._client_pool[key] = client
        return client

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._settings.completion_api_key.get_secret_value()}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }

    @property
    def _base_url(self) -> str:
        return str(self._settings.completion_base_url).rstrip("/")

    def build_payload(self, messages: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
        return {
            "model": self._settings.completion_model,
            "messages": [dict(message) for message in messages],
            "stream": True,
        }

    async def stream_completion(
        self, messages: Sequence[Mapping[str, Any]]
    ) -> AsyncGenerator[CompletionChunk, None]:
        """Stream a completion for ``messages`` as content fragments."""

        url = f"{self._base_url}/chat/completions"
        payload = self.build_payload(messages)

        client = await self._get_http_client()
        try:
            async with client.stream(
                "POST",
                url,
                headers=self._headers,
                json=payload,
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    detail = self._extract_error_detail(body)
                    raise CompletionError(response.status_code, detail)

                async for event in self._iter_events(response):
                    if event.data == "[DONE]":
                        break
                    chunk = self._parse_chunk(event.data)
                    if chunk is not None:
                        yield chunk
        except httpx.HTTPError as exc:
            raise CompletionError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

    @staticmethod
    def _parse_chunk(data: str) -> Optional[CompletionChunk]:
        if not data:
            return None
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("Skipping undecodable stream frame: %.80s", data)
            return None

        choices = payload.get("choices") if isinstance(payload, dict) else None
        if not isinstance(choices, list) or not choices:
            # Usage-only frames carry no choices.
            return None

        choice = choices[0] if isinstance(choices[0], dict) else {}
        delta = choice.get("delta") or {}
        content = delta.get("content") if isinstance(delta, dict) else None
        return CompletionChunk(
            content=content if isinstance(content, str) else "",
            finish_reason=choice.get("finish_reason"),
        )

    @classmethod
    async def aclose_shared(cls) -> None:
        async with cls._client_lock:
            clients = list(cls._client_pool.values())
            cls._client_pool.clear()
        for client in clients:
            try:
                await client.aclose()
            except Exception:  # pragma: no cover - best effort cleanup
                logger.debug("Failed to close pooled HTTP client", exc_info=True)

    async def _iter_events(
        self, response: httpx.Response
    ) -> AsyncGenerator[ServerSentEvent, None]:
        buffer: list[str] = []
        async for line in response.aiter_lines():
            if not line:
                if buffer:
                    yield self._parse_event(buffer)
                    buffer.clear()
                continue
            if line.startswith(":"):
                continue
            buffer.append(line)
        if buffer:
            yield self._parse_event(buffer)

    def _parse_event(self, lines: Iterable[str]) -> ServerSentEvent:
        event_name: Optional[str] = None
        event_id: Optional[str] = None
        data_lines: list[str] = []

        for line in lines:
            field, _, value = line.partition(":")
            value = value.lstrip(" ")
            if field == "event":
                event_name = value or None
            elif field == "data":
                data_lines.append(value)
            elif field == "id":
                event_id = value or None

        return ServerSentEvent(
            data="\n".join(data_lines), event=event_name or "message", event_id=event_id
        )

    @staticmethod
    def _extract_error_detail(raw: bytes) -> Any:
        if not raw:
            return "Completion provider returned an empty error response."
        text = raw.decode("utf-8", errors="ignore")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(payload, dict):
            return payload.get("error") or payload
        return payload


__all__ = [
    "CompletionChunk",
    "CompletionClient",
    "CompletionError",
    "CompletionProvider",
    "ServerSentEvent",
]
