from typing import Final, Literal

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict

STATUS_OK: Final[Literal["ok"]] = "ok"

PipelineState = Literal["ready", "lazy"]


class HealthResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: Literal["ok"]
    service: str
    pipeline: PipelineState


def build_health_router(*, service_name: str) -> APIRouter:
    router = APIRouter(tags=["system"])

    @router.get("/health", response_model=HealthResponse, summary="Health check")
    async def health(request: Request) -> HealthResponse:
        # "lazy" means the pipeline is built from the environment on the first chat request.
        orchestrator = getattr(request.app.state, "rag_orchestrator", None)
        return HealthResponse(
            status=STATUS_OK,
            service=service_name,
            pipeline="ready" if orchestrator is not None else "lazy",
        )

    return router
