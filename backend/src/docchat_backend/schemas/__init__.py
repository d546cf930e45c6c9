"""Pydantic schemas for the docchat backend API."""

from docchat.schemas.chat import ChatRequest, ChatResponse, ChatResponseChunk

from docchat_backend.schemas.errors import (
    ApiError,
    ApiErrorResponse,
    error_response,
    request_id_for,
)

__all__ = [
    "ApiError",
    "ApiErrorResponse",
    "ChatRequest",
    "ChatResponse",
    "ChatResponseChunk",
    "error_response",
    "request_id_for",
]
