import asyncio
import logging
import os
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Final

import uvicorn
from docchat.config import DocchatConfigurationError
from docchat.services.rag_chat_orchestrator import RagChatOrchestrator
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from docchat_backend.api import build_chat_router, build_health_router
from docchat_backend.schemas.errors import REQUEST_ID_HEADER, error_response, request_id_for

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME: Final[str] = "docchat-backend"
DEFAULT_HOST: Final[str] = "0.0.0.0"
DEFAULT_PORT: Final[int] = 8000


async def _configuration_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Pipeline is not configured: %s", exc)
    request_id = request_id_for(request)
    payload = error_response(
        code="not_configured",
        message=str(exc) or "Service is not configured",
        recoverable=False,
        request_id=request_id,
    )
    return JSONResponse(
        status_code=500,
        content=payload.model_dump(),
        headers={REQUEST_ID_HEADER: request_id},
    )


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    try:
        yield
    finally:
        # Closes the HTTP clients of a lazily built orchestrator.
        await app.state.resources.aclose()


def create_app(
    *,
    service_name: str = DEFAULT_SERVICE_NAME,
    orchestrator: RagChatOrchestrator | None = None,
) -> FastAPI:
    normalized_service_name = service_name.strip()
    if not normalized_service_name:
        raise ValueError("service_name must not be empty")

    app = FastAPI(
        title="docchat-backend",
        version="0.1.0",
        lifespan=_lifespan,
    )

    # Built from the environment on first use when not injected.
    app.state.rag_orchestrator = orchestrator
    app.state.orchestrator_lock = asyncio.Lock()
    app.state.resources = AsyncExitStack()

    app.add_exception_handler(DocchatConfigurationError, _configuration_error_handler)
    app.include_router(build_health_router(service_name=normalized_service_name))
    app.include_router(build_chat_router())
    return app


app = create_app()


def _read_server_host() -> str:
    configured_host = os.getenv("DOCCHAT_BACKEND_HOST", DEFAULT_HOST).strip()
    if not configured_host:
        raise ValueError("DOCCHAT_BACKEND_HOST must not be empty")

    return configured_host


def _read_server_port() -> int:
    configured_port = os.getenv("DOCCHAT_BACKEND_PORT", str(DEFAULT_PORT)).strip()
    if not configured_port:
        raise ValueError("DOCCHAT_BACKEND_PORT must not be empty")

    port = int(configured_port)
    if port <= 0:
        raise ValueError("DOCCHAT_BACKEND_PORT must be greater than zero")

    return port


def main() -> None:
    uvicorn.run(
        "docchat_backend.app:app",
        host=_read_server_host(),
        port=_read_server_port(),
        reload=False,
    )
