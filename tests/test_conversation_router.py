from __future__ import annotations

import asyncio
from pathlib import Path

from fastapi.testclient import TestClient
from pydantic import SecretStr

from callbot.app import create_app
from callbot.completions import CompletionChunk, CompletionError
from callbot.config import DEFAULT_FALLBACK_MESSAGE, Settings


class StaticProvider:
    def __init__(self, *parts: str) -> None:
        self._parts = parts
        self.calls: list[list[dict]] = []

    async def stream_completion(self, messages):
        self.calls.append([dict(message) for message in messages])
        for part in self._parts:
            yield CompletionChunk(part)
        yield CompletionChunk("", "stop")


class SlowProvider:
    """Pauses between two segments so a second utterance can arrive mid-turn."""

    def __init__(self, pause: float) -> None:
        self._pause = pause
        self.calls = 0

    async def stream_completion(self, messages):
        self.calls += 1
        yield CompletionChunk("one•")
        await asyncio.sleep(self._pause)
        yield CompletionChunk("two•", "stop")


class FailingProvider:
    async def stream_completion(self, messages):
        raise CompletionError(503, "provider down")
        yield  # pragma: no cover - makes this an async generator


def make_client(provider, tmp_path: Path, **overrides) -> TestClient:
    settings = Settings(
        completion_api_key=SecretStr("test"),
        conversation_log_dir=tmp_path / "conversations",
        logging_settings_path=tmp_path / "logging_settings.conf",
        **overrides,
    )
    return TestClient(create_app(settings, provider=provider))


def receive_turn(ws) -> list[dict]:
    """Collect messages up to and including the turn_end marker."""
    messages = []
    while True:
        message = ws.receive_json()
        messages.append(message)
        if message["type"] == "turn_end":
            return messages


def test_utterance_streams_reply_segments(tmp_path: Path) -> None:
    provider = StaticProvider("Hi there•", " how can I help?")
    client = make_client(provider, tmp_path)

    with client.websocket_connect("/api/conversation/ws?session_tag=CA42") as ws:
        ws.send_json({"type": "utterance", "text": "hello", "turn": 3})
        messages = receive_turn(ws)
        ws.send_json({"type": "stop"})

    assert messages == [
        {
            "type": "reply_segment",
            "turn": 3,
            "segment_index": 0,
            "text": "Hi there",
            "session_tag": "CA42",
        },
        {
            "type": "reply_segment",
            "turn": 3,
            "segment_index": 1,
            "text": "how can I help?",
            "session_tag": "CA42",
        },
        {"type": "turn_end", "turn": 3},
    ]
    assert provider.calls[0][-1] == {"role": "user", "content": "hello"}
    assert list((tmp_path / "conversations").rglob("session_CA42.log"))


def test_turn_numbers_default_to_connection_counter(tmp_path: Path) -> None:
    client = make_client(StaticProvider("ok"), tmp_path)

    with client.websocket_connect("/api/conversation/ws") as ws:
        ws.send_json({"type": "utterance", "text": "one"})
        first = receive_turn(ws)[0]
        ws.send_json({"type": "utterance", "text": "two"})
        second = receive_turn(ws)[0]

    assert (first["turn"], first["segment_index"], first["session_tag"]) == (1, 0, None)
    assert (second["turn"], second["segment_index"]) == (2, 1)


def test_reset_message_restarts_segment_index(tmp_path: Path) -> None:
    client = make_client(StaticProvider("ok"), tmp_path)

    with client.websocket_connect("/api/conversation/ws") as ws:
        ws.send_json({"type": "utterance", "text": "one", "turn": 1})
        assert receive_turn(ws)[0]["segment_index"] == 0
        ws.send_json({"type": "reset"})
        ws.send_json({"type": "utterance", "text": "two", "turn": 2})
        assert receive_turn(ws)[0]["segment_index"] == 0


def test_long_transcript_is_trimmed_after_answer(tmp_path: Path) -> None:
    provider = StaticProvider("ok")
    client = make_client(provider, tmp_path, trim_threshold=4)

    with client.websocket_connect("/api/conversation/ws") as ws:
        for turn in range(1, 4):
            ws.send_json({"type": "utterance", "text": f"turn {turn}", "turn": turn})
            receive_turn(ws)

    # Turn 1 grows the transcript to 4, turn 2 to 6 (then reset), turn 3 starts fresh.
    assert len(provider.calls[1]) == 5
    assert [m["content"] for m in provider.calls[2][2:]] == ["turn 3"]


def test_exhausted_provider_sends_error_then_fallback(tmp_path: Path) -> None:
    client = make_client(FailingProvider(), tmp_path, retry_limit=1)

    with client.websocket_connect("/api/conversation/ws") as ws:
        ws.send_json({"type": "utterance", "text": "hello", "turn": 1})
        messages = receive_turn(ws)

    assert [m["type"] for m in messages] == ["error", "reply_segment", "turn_end"]
    assert messages[0]["message"] == "provider down"
    assert messages[1]["text"] == DEFAULT_FALLBACK_MESSAGE


def test_blank_utterance_is_ignored(tmp_path: Path) -> None:
    provider = StaticProvider("ok")
    client = make_client(provider, tmp_path)

    with client.websocket_connect("/api/conversation/ws") as ws:
        ws.send_json({"type": "utterance", "text": "   "})
        ws.send_json({"type": "utterance", "text": "real"})
        messages = receive_turn(ws)

    assert messages[-1] == {"type": "turn_end", "turn": 1}
    assert len(provider.calls) == 1


def test_health_reports_model(tmp_path: Path) -> None:
    with make_client(StaticProvider("ok"), tmp_path) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "model": "gpt-4-1106-preview",
        "retry_limit": 3,
    }


def test_dropped_utterance_does_not_trim_running_turn(tmp_path: Path) -> None:
    provider = SlowProvider(pause=0.5)
    client = make_client(provider, tmp_path, trim_threshold=2)

    with client.websocket_connect("/api/conversation/ws") as ws:
        ws.send_json({"type": "utterance", "text": "first", "turn": 1})
        first = ws.receive_json()
        ws.send_json({"type": "utterance", "text": "second", "turn": 2})
        messages = [first] + receive_turn(ws)
        if messages[-1]["turn"] == 2:
            messages += receive_turn(ws)
        ws.send_json({"type": "stop"})

    segments = [m for m in messages if m["type"] == "reply_segment"]
    assert [(m["turn"], m["segment_index"], m["text"]) for m in segments] == [
        (1, 0, "one"),
        (1, 1, "two"),
    ]
    assert {m["turn"] for m in messages if m["type"] == "turn_end"} == {1, 2}
    assert provider.calls == 1
