"""Text-to-speech playback across a privileged and a standard speech engine.

The privileged engine (for example an extension-level TTS API) is preferred
whenever it is present; otherwise playback falls back to the standard
speech-synthesis engine. When neither can list voices a placeholder voice is
offered so callers always have something to select.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from pydantic import BaseModel

logger = logging.getLogger(__name__)

SpeechEventHandler = Callable[[str], Union[Awaitable[None], None]]
EngineEventCallback = Callable[[str], Awaitable[None]]


class SpeechUnavailableError(RuntimeError):
    """Raised when no speech engine can play text."""


class Voice(BaseModel):
    name: str
    lang: str
    voice_uri: str


DEFAULT_VOICE = Voice(name="Default Voice", lang="en-US", voice_uri="default")


class SpeechEngine(Protocol):
    name: str

    def available(self) -> bool: ...

    async def list_voices(self) -> list[Voice]: ...

    async def speak(
        self, text: str, voice_uri: str, on_event: EngineEventCallback
    ) -> None: ...


async def resolve_voices(
    primary: Optional[SpeechEngine],
    fallback: Optional[SpeechEngine],
) -> tuple[list[Voice], str]:
    """Return the voices to offer and the URI selected by default."""

    for engine in (primary, fallback):
        if engine is None or not engine.available():
            continue
        try:
            voices = await engine.list_voices()
        except Exception as exc:
            logger.error(f"Error fetching voices from {engine.name}: {exc}")
            continue
        if voices:
            return voices, voices[0].voice_uri
        logger.warning(f"No voices found in {engine.name}")

    logger.error("No speech engine available, using placeholder voice")
    return [DEFAULT_VOICE], DEFAULT_VOICE.voice_uri


class SpeechPlayer:
    """Play text on the first available engine and track the loading state."""

    def __init__(
        self,
        primary: Optional[SpeechEngine],
        fallback: Optional[SpeechEngine],
        *,
        settle_delay: float = 0.5,
    ) -> None:
        self._primary = primary
        self._fallback = fallback
        self._settle_delay = settle_delay
        self._loading = False
        self._settle_task: Optional[asyncio.Task[Any]] = None

    @property
    def loading(self) -> bool:
        return self._loading

    def _select_engine(self) -> tuple[SpeechEngine, bool]:
        if self._primary is not None and self._primary.available():
            return self._primary, True
        if self._fallback is not None and self._fallback.available():
            return self._fallback, False
        raise SpeechUnavailableError("No speech engine is available")

    async def play(
        self,
        text: str,
        voice_uri: str,
        on_event: Optional[SpeechEventHandler] = None,
    ) -> None:
        if not text.strip():
            return

        engine, privileged = self._select_engine()
        # A settle timer from an earlier play must not end this one.
        if self._settle_task is not None and not self._settle_task.done():
            self._settle_task.cancel()
        self._loading = True

        async def handle_event(event_type: str) -> None:
            if event_type in ("end", "error"):
                self._loading = False
            if on_event is not None:
                result = on_event(event_type)
                if inspect.isawaitable(result):
                    await result

        try:
            await engine.speak(text, voice_uri, handle_event)
        except Exception:
            self._loading = False
            raise

        if privileged:
            # The privileged engine may never report end; clear after a grace period.
            self._settle_task = asyncio.create_task(self._settle())

    async def _settle(self) -> None:
        await asyncio.sleep(self._settle_delay)
        self._loading = False


__all__ = [
    "DEFAULT_VOICE",
    "SpeechEngine",
    "SpeechPlayer",
    "SpeechUnavailableError",
    "Voice",
    "resolve_voices",
]
