from .conversation import ReplySegment, Turn

__all__ = ["ReplySegment", "Turn"]
