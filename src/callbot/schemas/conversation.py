"""Pydantic models for transcript turns and emitted reply segments."""

from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Turn(BaseModel):
    """A single transcript message sent to the completion provider."""

    role: Literal["system", "user", "assistant"]
    content: str
    name: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    def to_message(self) -> Dict[str, Any]:
        """Serialize the turn in chat-completion message form."""

        return self.model_dump(exclude_none=True)


class ReplySegment(BaseModel):
    """A chunk of assistant output that can be spoken on its own."""

    segment_index: int = Field(ge=0)
    text: str
    session_tag: Optional[str] = None


__all__ = ["ReplySegment", "Turn"]
