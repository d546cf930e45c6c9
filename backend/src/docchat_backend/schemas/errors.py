from __future__ import annotations

import re
import uuid
from typing import Final

from fastapi import Request
from pydantic import BaseModel, ConfigDict, Field

REQUEST_ID_HEADER: Final[str] = "x-request-id"
_REQUEST_ID_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


class ApiError(BaseModel):
    """Error body shared by every non-2xx chat response and by the stream's error line."""

    model_config = ConfigDict(extra="forbid")

    code: str = Field(..., description="chat_failed, stream_interrupted or not_configured")
    message: str = Field(..., description="What went wrong, suitable for display")
    recoverable: bool = Field(..., description="True when resending the same request may succeed")
    request_id: str = Field(..., description="Echo of x-request-id, or a generated id")


class ApiErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error: ApiError


def request_id_for(request: Request) -> str:
    """Use the caller's ``x-request-id`` when it is well formed, otherwise mint one."""

    supplied = request.headers.get(REQUEST_ID_HEADER, "").strip()
    if _REQUEST_ID_PATTERN.match(supplied):
        return supplied
    return uuid.uuid4().hex


def error_response(
    *,
    code: str,
    message: str,
    recoverable: bool,
    request_id: str,
) -> ApiErrorResponse:
    return ApiErrorResponse(
        error=ApiError(
            code=code,
            message=message,
            recoverable=recoverable,
            request_id=request_id,
        )
    )
