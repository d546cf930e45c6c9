from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Final, cast

from docchat import Docchat
from docchat.schemas.chat import ChatRequest, ChatResponse, ChatResponseChunk
from docchat.services.rag_chat_orchestrator import RagChatOrchestrator
from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse

from docchat_backend.schemas.errors import (
    REQUEST_ID_HEADER,
    ApiErrorResponse,
    error_response,
    request_id_for,
)

logger = logging.getLogger(__name__)

NDJSON_MEDIA_TYPE: Final[str] = "application/x-ndjson"


async def _get_orchestrator(request: Request) -> RagChatOrchestrator:
    """Return the configured orchestrator, building it from the environment once.

    The built orchestrator's clients are registered on ``app.state.resources``
    and closed when the application shuts down.
    """

    state = request.app.state
    if state.rag_orchestrator is None:
        async with state.orchestrator_lock:
            if state.rag_orchestrator is None:
                state.rag_orchestrator = await state.resources.enter_async_context(
                    Docchat().session()
                )
    return cast(RagChatOrchestrator, state.rag_orchestrator)


def _chat_failed(exc: Exception, request_id: str) -> JSONResponse:
    payload = error_response(
        code="chat_failed",
        message=str(exc) or "Chat request failed",
        recoverable=True,
        request_id=request_id,
    )
    return JSONResponse(
        status_code=500,
        content=payload.model_dump(),
        headers={REQUEST_ID_HEADER: request_id},
    )


def _ndjson_line(chunk: ChatResponseChunk) -> str:
    return chunk.model_dump_json(exclude_none=True) + "\n"


def build_chat_router() -> APIRouter:
    router = APIRouter(prefix="/v1", tags=["chat"])

    @router.post(
        "/chat",
        response_model=ChatResponse,
        status_code=200,
        responses={
            500: {"model": ApiErrorResponse},
        },
        summary="Answer the latest turn of a conversation from the search index",
    )
    async def post_chat(request: Request, body: ChatRequest) -> ChatResponse | JSONResponse:
        request_id = request_id_for(request)
        orchestrator = await _get_orchestrator(request)
        try:
            return await orchestrator.run(body.history, body.context)
        except Exception as exc:
            logger.exception("Chat request %s failed", request_id)
            return _chat_failed(exc, request_id)

    @router.post(
        "/chat/stream",
        response_model=None,
        status_code=200,
        responses={
            500: {"model": ApiErrorResponse},
        },
        summary="Stream the answer as newline-delimited JSON chunks",
    )
    async def post_chat_stream(request: Request, body: ChatRequest) -> Response:
        request_id = request_id_for(request)
        orchestrator = await _get_orchestrator(request)
        stream = orchestrator.run_with_streaming(body.history, body.context)

        # Pull the first chunk up front so pipeline failures still map to a 500.
        first_chunk: ChatResponseChunk | None = None
        try:
            first_chunk = await anext(stream)
        except StopAsyncIteration:
            first_chunk = None
        except Exception as exc:
            logger.exception("Chat stream %s failed before the first chunk", request_id)
            return _chat_failed(exc, request_id)

        async def ndjson_stream() -> AsyncIterator[str]:
            try:
                if first_chunk is not None:
                    yield _ndjson_line(first_chunk)
                async for chunk in stream:
                    yield _ndjson_line(chunk)
            except Exception as exc:
                logger.exception("Chat stream %s failed mid-answer", request_id)
                payload = error_response(
                    code="stream_interrupted",
                    message=str(exc) or "Chat stream failed",
                    recoverable=True,
                    request_id=request_id,
                )
                yield payload.model_dump_json() + "\n"
            finally:
                await stream.aclose()

        return StreamingResponse(
            ndjson_stream(),
            media_type=NDJSON_MEDIA_TYPE,
            headers={
                "cache-control": "no-cache",
                "x-accel-buffering": "no",
                REQUEST_ID_HEADER: request_id,
            },
        )

    return router
