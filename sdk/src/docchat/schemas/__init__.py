"""Public schema exports for the docchat SDK."""

from docchat.schemas.chat import (
    ChatContext,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ChatResponseChunk,
    ChatRole,
    DataPoint,
    HistoryMessage,
    RetrievalMode,
)

__all__ = [
    "ChatContext",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ChatResponseChunk",
    "ChatRole",
    "DataPoint",
    "HistoryMessage",
    "RetrievalMode",
]
