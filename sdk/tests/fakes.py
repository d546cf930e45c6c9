"""Test doubles for the completion service, the search index and the token meter."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from types import SimpleNamespace
from typing import Any

from docchat.retrieval.types import EvidenceDocument, SearchOptions
from docchat.schemas.chat import ChatMessage


class WordMeter:
    """Counts whitespace-separated words; easy to reason about in assertions."""

    def __init__(self, limit: int = 4000) -> None:
        self.limit = limit

    def cost_of(self, message: ChatMessage) -> int:
        return len(message.content.split())

    def cost_of_messages(self, messages: Sequence[ChatMessage]) -> int:
        return sum(self.cost_of(message) for message in messages)


def completion(text: str | None) -> Any:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


def stream_chunk(content: str | None) -> Any:
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


async def fake_stream(chunks: Sequence[Any]) -> AsyncIterator[Any]:
    for chunk in chunks:
        yield chunk


class FakeCompletions:
    def __init__(self, responses: Sequence[Any]) -> None:
        self._responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeEmbeddings:
    def __init__(self, vector: Sequence[float]) -> None:
        self._vector = list(vector)
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        return SimpleNamespace(data=[SimpleNamespace(embedding=list(self._vector))])


class FakeOpenAI:
    def __init__(
        self, responses: Sequence[Any], *, embedding: Sequence[float] = (0.1, 0.2, 0.3)
    ) -> None:
        self.completions = FakeCompletions(responses)
        self.chat = SimpleNamespace(completions=self.completions)
        self.embeddings = FakeEmbeddings(embedding)


class FakeSearchIndex:
    def __init__(
        self,
        documents: Sequence[EvidenceDocument] = (),
        *,
        error: Exception | None = None,
    ) -> None:
        self._documents = list(documents)
        self._error = error
        self.calls: list[tuple[str, SearchOptions]] = []

    async def search(self, query: str, *, options: SearchOptions) -> list[EvidenceDocument]:
        self.calls.append((query, options))
        if self._error is not None:
            raise self._error
        return list(self._documents)


DOCUMENTS = [
    EvidenceDocument(
        identifier="support.pdf#page=2",
        excerpt="Payment errors are retried once before the booking is cancelled.",
        score=2.5,
    ),
    EvidenceDocument(
        identifier="terms.pdf#page=7",
        excerpt="Refunds are issued within 14 days.",
        score=1.25,
    ),
]
