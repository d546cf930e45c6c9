from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from docchat.schemas.chat import ChatContext, DataPoint, RetrievalMode

DEFAULT_TOP = 3


@dataclass(frozen=True)
class EvidenceDocument:
    identifier: str
    excerpt: str
    score: float

    def to_data_point(self) -> DataPoint:
        return DataPoint(identifier=self.identifier, excerpt=self.excerpt, score=self.score)


@dataclass(frozen=True)
class SearchOptions:
    top: int = DEFAULT_TOP
    filter: str | None = None
    semantic_ranker: bool = False
    semantic_captions: bool = False
    retrieval_mode: RetrievalMode = "text"
    # Embedding of the search query; required unless retrieval_mode is "text".
    vector: tuple[float, ...] | None = None

    @property
    def uses_text(self) -> bool:
        return self.retrieval_mode != "vectors"

    @property
    def uses_vectors(self) -> bool:
        return self.retrieval_mode != "text"

    @classmethod
    def from_context(cls, context: ChatContext | None) -> SearchOptions:
        if context is None:
            return cls()
        search_filter = None
        if context.exclude_category:
            escaped = context.exclude_category.replace("'", "''")
            search_filter = f"category ne '{escaped}'"
        return cls(
            top=context.top or DEFAULT_TOP,
            filter=search_filter,
            semantic_ranker=context.semantic_ranker,
            semantic_captions=context.semantic_captions,
            retrieval_mode=context.retrieval_mode,
        )


class SearchIndex(Protocol):
    async def search(self, query: str, *, options: SearchOptions) -> list[EvidenceDocument]: ...


def render_evidence_block(documents: Sequence[EvidenceDocument]) -> str:
    return "\n".join(f"{document.identifier}: {document.excerpt}" for document in documents)
