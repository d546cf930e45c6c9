from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ChatRole = Literal["system", "user", "assistant"]
RetrievalMode = Literal["text", "vectors", "hybrid"]


class HistoryMessage(BaseModel):
    """One conversational turn. Either side may be missing."""

    model_config = ConfigDict(extra="forbid")

    user: str | None = None
    bot: str | None = None


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    role: ChatRole
    content: str


class DataPoint(BaseModel):
    """A retrieved document as returned to callers."""

    model_config = ConfigDict(extra="forbid")

    identifier: str
    excerpt: str
    score: float | None = None


class ChatContext(BaseModel):
    """Optional per-request overrides."""

    model_config = ConfigDict(extra="forbid")

    suggest_followup_questions: bool = False
    prompt_template: str | None = Field(
        default=None,
        description="Replaces the injected instructions, or appends to them when prefixed with >>>",
    )
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    top: int | None = Field(default=None, ge=1, le=50)
    exclude_category: str | None = None
    semantic_ranker: bool = False
    semantic_captions: bool = False
    retrieval_mode: RetrievalMode = Field(
        default="text",
        description="Keyword search, query-embedding search, or both",
    )


class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    history: list[HistoryMessage] = Field(..., min_length=1)
    context: ChatContext | None = None

    @field_validator("history")
    @classmethod
    def _latest_turn_has_question(cls, value: list[HistoryMessage]) -> list[HistoryMessage]:
        latest = value[-1].user
        if latest is None or not latest.strip():
            raise ValueError("the last history turn must contain user text")
        return value


class ChatResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    answer: str
    data_points: list[DataPoint]
    thoughts: str


class ChatResponseChunk(BaseModel):
    """Incremental answer text; only the first chunk of a stream has metadata."""

    model_config = ConfigDict(extra="forbid")

    answer: str
    data_points: list[DataPoint] | None = None
    thoughts: str | None = None
