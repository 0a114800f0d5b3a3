"""Conversation session that streams completions into speakable segments."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from ..completions import CompletionProvider
from ..config import DEFAULT_FALLBACK_MESSAGE, Settings
from ..schemas.conversation import ReplySegment, Turn
from .conversation_logging import ConversationLogWriter
from .events import ERROR, REPLY_SEGMENT, EventEmitter, Listener

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class ConversationSession:
    """Owns one conversation transcript and streams replies for it.

    ``submit_turn`` appends the inbound utterance, streams a completion over the
    whole transcript and publishes ``reply-segment`` events each time the
    buffered reply ends on the boundary marker or the provider finishes. At most
    one turn is processed at a time; a turn submitted while busy is dropped.
    Failed streams are retried with exponential backoff and, once retries are
    exhausted, a fallback segment is published alongside an ``error`` event.
    """

    def __init__(
        self,
        provider: CompletionProvider,
        *,
        system_prompt: str,
        greeting: str,
        retry_limit: int = 3,
        backoff_base: float = 2.0,
        trim_threshold: int = 10,
        boundary_marker: str = "•",
        fallback_message: str = DEFAULT_FALLBACK_MESSAGE,
        log_writer: Optional[ConversationLogWriter] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if retry_limit < 1:
            raise ValueError("retry_limit must be at least 1")
        if backoff_base <= 1:
            raise ValueError("backoff_base must be greater than 1")
        if len(boundary_marker) != 1:
            raise ValueError("boundary_marker must be a single character")

        self._provider = provider
        self._transcript: list[Turn] = [
            Turn(role="system", content=system_prompt),
            Turn(role="assistant", content=greeting),
        ]
        self._retry_limit = retry_limit
        self._backoff_base = backoff_base
        self._trim_threshold = trim_threshold
        self._boundary_marker = boundary_marker
        self._fallback_message = fallback_message
        self._log_writer = log_writer
        self._sleep = sleep

        self._events = EventEmitter()
        self._reply_index = 0
        self._session_tag: Optional[str] = None
        self._busy = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        provider: CompletionProvider,
        *,
        log_writer: Optional[ConversationLogWriter] = None,
    ) -> "ConversationSession":
        return cls(
            provider,
            system_prompt=settings.system_prompt,
            greeting=settings.greeting,
            retry_limit=settings.retry_limit,
            backoff_base=settings.backoff_base,
            trim_threshold=settings.trim_threshold,
            boundary_marker=settings.boundary_marker,
            fallback_message=settings.fallback_message,
            log_writer=log_writer,
        )

    @property
    def transcript(self) -> list[Turn]:
        return list(self._transcript)

    @property
    def reply_index(self) -> int:
        return self._reply_index

    @property
    def session_tag(self) -> Optional[str]:
        return self._session_tag

    @property
    def busy(self) -> bool:
        return self._busy

    def on(self, event: str, listener: Listener) -> None:
        self._events.on(event, listener)

    def off(self, event: str, listener: Listener) -> None:
        self._events.off(event, listener)

    def set_session_tag(self, session_tag: Optional[str]) -> None:
        self._session_tag = session_tag
        logger.info(f"Session tag set: {session_tag}")

    def reset(self) -> None:
        """Drop everything after the system prompt and greeting."""

        del self._transcript[2:]
        self._reply_index = 0
        logger.info("Conversation context reset")

    def dispose(self) -> None:
        self.reset()
        self._events.remove_all_listeners()
        self._busy = False
        logger.info("Conversation session disposed")

    def should_trim(self) -> bool:
        return len(self._transcript) > self._trim_threshold

    async def submit_turn(
        self,
        text: str,
        turn_number: int,
        role: str = "user",
        name: Optional[str] = None,
    ) -> bool:
        """Answer ``text`` by publishing reply segments tagged with ``turn_number``.

        Never raises for provider failures; callers observe outcomes through
        the ``reply-segment`` and ``error`` events only. Returns False when the
        turn was dropped because another turn was still in flight.
        """

        if self._busy:
            logger.info(
                f"Already processing a response, dropping turn {turn_number}"
            )
            return False

        self._busy = True
        try:
            logger.info(f"Processing completion for turn {turn_number}")
            self._transcript.append(Turn(role=role, content=text, name=name))
            await self._complete_with_retries(turn_number)
            await self._write_snapshot()
        except Exception as exc:
            logger.error(
                f"Fatal error in completion for turn {turn_number}: {exc}",
                exc_info=True,
            )
            await self._events.emit(ERROR, exc)
            await self._publish(self._fallback_message, turn_number)
        finally:
            self._busy = False
        return True

    async def _complete_with_retries(self, turn_number: int) -> str:
        attempt = 0
        while True:
            attempt += 1
            try:
                response = await self._stream_reply(turn_number)
            except Exception as exc:
                logger.warning(f"Attempt {attempt}/{self._retry_limit} failed: {exc}")
                if attempt >= self._retry_limit:
                    raise
                await self._sleep(self._backoff_base**attempt)
                continue

            self._transcript.append(Turn(role="assistant", content=response))
            logger.debug(f"Transcript length: {len(self._transcript)}")
            return response

    async def _stream_reply(self, turn_number: int) -> str:
        messages = [turn.to_message() for turn in self._transcript]
        complete: list[str] = []
        partial = ""

        async for chunk in self._provider.stream_completion(messages):
            complete.append(chunk.content)
            partial += chunk.content

            # Only the final character of the buffer counts as a boundary.
            if (
                partial.strip()[-1:] == self._boundary_marker
                or chunk.finish_reason is not None
            ):
                await self._publish_partial(partial, turn_number)
                partial = ""

        if partial.strip():
            await self._publish_partial(partial, turn_number)

        return "".join(complete)

    async def _publish_partial(self, partial: str, turn_number: int) -> None:
        text = partial.strip()
        if text.endswith(self._boundary_marker):
            text = text[: -len(self._boundary_marker)].rstrip()
        if text:
            await self._publish(text, turn_number)

    async def _publish(self, text: str, turn_number: int) -> None:
        segment = ReplySegment(
            segment_index=self._reply_index,
            text=text,
            session_tag=self._session_tag,
        )
        self._reply_index += 1
        await self._events.emit(REPLY_SEGMENT, segment, turn_number)

    async def _write_snapshot(self) -> None:
        if self._log_writer is None:
            return
        try:
            await self._log_writer.write(
                session_tag=self._session_tag,
                transcript=[turn.to_message() for turn in self._transcript],
            )
        except Exception as exc:
            logger.warning(f"Failed to write transcript snapshot: {exc}", exc_info=True)


__all__ = ["ConversationSession"]
