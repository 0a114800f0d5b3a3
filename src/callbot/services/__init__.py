from .conversation_logging import ConversationLogWriter
from .conversation_session import ConversationSession
from .events import ERROR, REPLY_SEGMENT, EventEmitter

__all__ = [
    "ERROR",
    "REPLY_SEGMENT",
    "ConversationLogWriter",
    "ConversationSession",
    "EventEmitter",
]
