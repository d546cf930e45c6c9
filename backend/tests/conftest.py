import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager

import pytest
import pytest_asyncio
from docchat.schemas.chat import (
    ChatContext,
    ChatResponse,
    ChatResponseChunk,
    DataPoint,
    HistoryMessage,
)
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from docchat_backend.app import create_app

DATA_POINTS = [
    DataPoint(
        identifier="support.pdf#page=2",
        excerpt="Payment errors are retried once.",
        score=2.5,
    )
]
THOUGHTS = "Searched for:<br>payment errors<br><br>Conversations:<br>user: q"


class FakeOrchestrator:
    def __init__(
        self,
        *,
        tokens: Sequence[str] = ("Retried", " once", "."),
        fail_before_first_chunk: bool = False,
        fail_after_first_chunk: bool = False,
    ) -> None:
        self._tokens = list(tokens)
        self._fail_before_first_chunk = fail_before_first_chunk
        self._fail_after_first_chunk = fail_after_first_chunk
        self.calls: list[tuple[list[HistoryMessage], ChatContext | None]] = []

    async def run(
        self, history: list[HistoryMessage], context: ChatContext | None = None
    ) -> ChatResponse:
        self.calls.append((history, context))
        if self._fail_before_first_chunk:
            raise RuntimeError("search index unreachable")
        return ChatResponse(
            answer="".join(self._tokens), data_points=DATA_POINTS, thoughts=THOUGHTS
        )

    async def run_with_streaming(
        self, history: list[HistoryMessage], context: ChatContext | None = None
    ) -> AsyncIterator[ChatResponseChunk]:
        self.calls.append((history, context))
        if self._fail_before_first_chunk:
            raise RuntimeError("search index unreachable")
        for index, token in enumerate(self._tokens):
            if index == 0:
                yield ChatResponseChunk(answer=token, data_points=DATA_POINTS, thoughts=THOUGHTS)
                if self._fail_after_first_chunk:
                    raise RuntimeError("completion stream dropped")
            else:
                yield ChatResponseChunk(answer=token)


class SessionTracker:
    """Counts orchestrator sessions opened and closed through a stand-in ``Docchat``."""

    def __init__(self) -> None:
        self.opened = 0
        self.closed = 0

    def docchat_factory(self) -> type:
        tracker = self

        class _TrackedDocchat:
            @asynccontextmanager
            async def session(self) -> AsyncIterator[FakeOrchestrator]:
                tracker.opened += 1
                # Let a concurrent request reach the same point.
                await asyncio.sleep(0)
                try:
                    yield FakeOrchestrator()
                finally:
                    tracker.closed += 1

        return _TrackedDocchat


@pytest.fixture
def session_tracker(monkeypatch: pytest.MonkeyPatch) -> SessionTracker:
    tracker = SessionTracker()
    monkeypatch.setattr("docchat_backend.api.chat.Docchat", tracker.docchat_factory())
    return tracker


@pytest.fixture
def orchestrator(request: pytest.FixtureRequest) -> FakeOrchestrator:
    # Tests tweak the fake with parametrize(..., indirect=True).
    return FakeOrchestrator(**getattr(request, "param", {}))


@pytest.fixture
def app(orchestrator: FakeOrchestrator) -> FastAPI:
    return create_app(service_name="docchat-test", orchestrator=orchestrator)  # type: ignore[arg-type]


@pytest_asyncio.fixture()
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://testserver",
    ) as async_client:
        yield async_client
