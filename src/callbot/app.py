"""Application factory for the FastAPI service."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .completions import CompletionClient, CompletionProvider
from .config import PROJECT_ROOT, Settings, get_settings
from .logging_settings import LoggingSettings, parse_logging_settings
from .routers.conversation import router as conversation_router
from .services.conversation_logging import ConversationLogWriter
from .services.conversation_session import ConversationSession

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _configure_logging(logging_settings: LoggingSettings) -> None:
    """Configure logging from LOG_LEVEL/LOG_FILE and the logging settings file."""
    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT)

    handlers: list[logging.Handler] = []

    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    # terminal = off silences the console entirely
    if logging_settings.terminal_level is not None:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.setLevel(logging_settings.terminal_level)
        handlers.append(console_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers or [logging.NullHandler()],
        force=True,
    )
    logging.getLogger("callbot").setLevel(log_level)
    logging.getLogger("uvicorn").setLevel(log_level)

    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


def _resolve_under_root(path: Path) -> Path:
    if path.is_absolute():
        return path
    return (PROJECT_ROOT / path).resolve()


def create_app(
    settings: Optional[Settings] = None,
    provider: Optional[CompletionProvider] = None,
) -> FastAPI:
    load_dotenv()

    settings = settings or get_settings()
    logging_settings = parse_logging_settings(
        _resolve_under_root(settings.logging_settings_path)
    )
    _configure_logging(logging_settings)

    completion_provider = provider or CompletionClient(settings)
    log_writer = ConversationLogWriter(
        _resolve_under_root(settings.conversation_log_dir),
        min_level=logging_settings.conversations_level,
    )

    def session_factory() -> ConversationSession:
        return ConversationSession.from_settings(
            settings, completion_provider, log_writer=log_writer
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            log_writer.prune(logging_settings.retention_hours)
        except OSError as exc:
            logging.warning("Transcript log pruning failed: %s", exc)
        try:
            yield
        finally:
            await CompletionClient.aclose_shared()

    app = FastAPI(
        title="Callbot Conversation Backend",
        version="0.1.0",
        description="Streams chat completions as speakable reply segments.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.session_factory = session_factory

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(conversation_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str | int]:
        return {
            "status": "ok",
            "model": settings.completion_model,
            "retry_limit": settings.retry_limit,
        }

    return app


__all__ = ["create_app"]
