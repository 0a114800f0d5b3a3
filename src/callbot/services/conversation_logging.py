"""Utilities for persisting per-session transcript snapshots."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional, Sequence

logger = logging.getLogger(__name__)

_DELIMITER = "=" * 80
_UNSAFE_TAG_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class ConversationLogWriter:
    """Persist transcript snapshots to date-stamped log files."""

    def __init__(self, base_dir: Path, *, min_level: int | None) -> None:
        self._base_dir = base_dir.resolve()
        self._min_level = min_level

    @property
    def enabled(self) -> bool:
        # Snapshots are INFO-level events.
        return self._min_level is not None and logging.INFO >= self._min_level

    async def write(
        self,
        *,
        session_tag: Optional[str],
        transcript: Sequence[dict[str, Any]],
        current_time: datetime | None = None,
    ) -> Path | None:
        """Append a structured snapshot for a session if enabled."""

        if not self.enabled:
            return None

        timestamp = (current_time or datetime.now(timezone.utc)).astimezone(
            timezone.utc
        )
        safe_tag = _UNSAFE_TAG_CHARS.sub("_", session_tag or "untagged")

        entry = {
            "type": "transcript_snapshot",
            "logged_at": timestamp.isoformat(),
            "session_tag": session_tag,
            "message_count": len(transcript),
            "transcript": list(transcript),
        }
        rendered = json.dumps(entry, ensure_ascii=False, indent=2)
        header = timestamp.strftime("%Y-%m-%d %H:%M:%S UTC")
        payload = f"{header}\n{_DELIMITER}\n{rendered}\n{_DELIMITER}\n"

        log_path = (
            self._base_dir / timestamp.strftime("%Y-%m-%d") / f"session_{safe_tag}.log"
        )
        await asyncio.to_thread(self._append_entry, log_path, payload)
        return log_path

    def _append_entry(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(content)

    def prune(self, retention_hours: int) -> tuple[int, int]:
        """Delete snapshot files older than ``retention_hours``.

        Returns a ``(files_deleted, errors)`` tuple. A retention of 0 disables
        pruning.
        """

        if retention_hours <= 0 or not self._base_dir.exists():
            return (0, 0)

        cutoff = datetime.now(timezone.utc) - timedelta(hours=retention_hours)
        deleted = 0
        errors = 0

        for log_file in self._base_dir.rglob("*.log"):
            try:
                mtime = datetime.fromtimestamp(log_file.stat().st_mtime, tz=timezone.utc)
                if mtime < cutoff:
                    log_file.unlink()
                    deleted += 1
            except OSError as exc:
                errors += 1
                logger.warning(f"Failed to delete {log_file}: {exc}")

        for date_dir in self._base_dir.iterdir():
            if date_dir.is_dir() and not any(date_dir.iterdir()):
                try:
                    date_dir.rmdir()
                except OSError:
                    errors += 1

        if deleted:
            logger.info(f"Transcript log pruning removed {deleted} file(s)")
        return (deleted, errors)


__all__ = ["ConversationLogWriter"]
