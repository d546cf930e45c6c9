from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Sequence
from dataclasses import dataclass, replace
from typing import Any

from docchat.config import DEFAULT_EMBEDDING_MODEL
from docchat.retrieval.types import (
    EvidenceDocument,
    SearchIndex,
    SearchOptions,
    render_evidence_block,
)
from docchat.schemas.chat import (
    ChatContext,
    ChatMessage,
    ChatResponse,
    ChatResponseChunk,
    DataPoint,
    HistoryMessage,
)
from docchat.services.message_builder import build_messages, messages_to_string
from docchat.services.prompts import (
    NO_QUERY_SENTINEL,
    QUERY_INSTRUCTION_PREFIX,
    QUERY_PROMPT_FEW_SHOTS,
    QUERY_PROMPT_TEMPLATE,
    parse_prompt_override,
    render_system_prompt,
)
from docchat.services.token_meter import TokenMeter

logger = logging.getLogger(__name__)

_QUERY_TEMPERATURE = 0.0
_QUERY_MAX_TOKENS = 32
_ANSWER_TEMPERATURE = 0.7
_ANSWER_MAX_TOKENS = 1024


@dataclass(frozen=True)
class CompletionRequest:
    model: str
    messages: list[ChatMessage]
    temperature: float
    max_tokens: int
    n: int = 1

    def to_openai_kwargs(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [message.model_dump() for message in self.messages],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "n": self.n,
        }


@dataclass(frozen=True)
class QueryRewrite:
    query: str
    messages: list[ChatMessage]


@dataclass(frozen=True)
class RetrievalResult:
    query: str
    documents: list[EvidenceDocument]
    content: str


@dataclass(frozen=True)
class SynthesisResult:
    messages: list[ChatMessage]
    data_points: list[DataPoint]
    thoughts: str


@dataclass(frozen=True)
class PreparedCompletion:
    request: CompletionRequest
    data_points: list[DataPoint]
    thoughts: str


def _latest_question(history: Sequence[HistoryMessage]) -> str:
    if not history:
        raise ValueError("history must contain at least one turn")
    return history[-1].user or ""


class RagChatOrchestrator:
    """Chat-read-retrieve-read: rewrite the question, search, then answer.

    One instance can serve concurrent requests; every call keeps its state in
    local variables.
    """

    def __init__(
        self,
        *,
        openai_client: Any,
        search_index: SearchIndex,
        chat_model: str,
        deployment: str | None = None,
        embedding_deployment: str = DEFAULT_EMBEDDING_MODEL,
        meter: TokenMeter | None = None,
    ) -> None:
        self._openai_client = openai_client
        self._search_index = search_index
        self._chat_model = chat_model
        self._deployment = deployment or chat_model
        self._embedding_deployment = embedding_deployment
        self._meter = meter or TokenMeter(chat_model)
        self._token_limit = self._meter.limit

    @property
    def chat_model(self) -> str:
        return self._chat_model

    @property
    def search_index(self) -> SearchIndex:
        return self._search_index

    async def run(
        self,
        history: Sequence[HistoryMessage],
        context: ChatContext | None = None,
    ) -> ChatResponse:
        prepared = await self.build_completion_request(history, context)
        completion = await self._openai_client.chat.completions.create(
            **prepared.request.to_openai_kwargs()
        )
        answer = completion.choices[0].message.content or ""
        return ChatResponse(
            answer=answer,
            data_points=prepared.data_points,
            thoughts=prepared.thoughts,
        )

    async def run_with_streaming(
        self,
        history: Sequence[HistoryMessage],
        context: ChatContext | None = None,
    ) -> AsyncGenerator[ChatResponseChunk, None]:
        prepared = await self.build_completion_request(history, context)
        stream = await self._openai_client.chat.completions.create(
            **prepared.request.to_openai_kwargs(),
            stream=True,
        )

        first = True
        async for chunk in stream:
            # Azure sends a content-filter preamble with no choices.
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta.content or ""
            if first:
                first = False
                yield ChatResponseChunk(
                    answer=delta,
                    data_points=prepared.data_points,
                    thoughts=prepared.thoughts,
                )
            else:
                yield ChatResponseChunk(answer=delta)

        if first:
            # Nothing was generated; the caller still gets the evidence.
            yield ChatResponseChunk(
                answer="",
                data_points=prepared.data_points,
                thoughts=prepared.thoughts,
            )

    async def build_completion_request(
        self,
        history: Sequence[HistoryMessage],
        context: ChatContext | None = None,
    ) -> PreparedCompletion:
        rewrite = await self.rewrite_query(history)
        retrieval = await self.retrieve(rewrite.query, context)
        synthesis = self.synthesize(history, retrieval, context, query_messages=rewrite.messages)

        temperature = _ANSWER_TEMPERATURE
        if context is not None and context.temperature is not None:
            temperature = context.temperature

        return PreparedCompletion(
            request=CompletionRequest(
                model=self._deployment,
                messages=synthesis.messages,
                temperature=temperature,
                max_tokens=_ANSWER_MAX_TOKENS,
            ),
            data_points=synthesis.data_points,
            thoughts=synthesis.thoughts,
        )

    async def rewrite_query(self, history: Sequence[HistoryMessage]) -> QueryRewrite:
        question = _latest_question(history)
        instruction = QUERY_INSTRUCTION_PREFIX + question
        budget = self._token_limit - self._meter.cost_of(
            ChatMessage(role="user", content=instruction)
        )

        messages = build_messages(
            system_prompt=QUERY_PROMPT_TEMPLATE,
            history=history,
            user_content=instruction,
            meter=self._meter,
            few_shots=QUERY_PROMPT_FEW_SHOTS,
            max_tokens=budget,
        )
        request = CompletionRequest(
            model=self._deployment,
            messages=messages,
            temperature=_QUERY_TEMPERATURE,
            max_tokens=_QUERY_MAX_TOKENS,
        )
        completion = await self._openai_client.chat.completions.create(
            **request.to_openai_kwargs()
        )

        query = (completion.choices[0].message.content or "").strip()
        if not query or query == NO_QUERY_SENTINEL:
            logger.info("Query rewrite produced no query; searching with the raw question")
            query = question
        logger.debug("Search query: %r", query)
        return QueryRewrite(query=query, messages=messages)

    async def embed_query(self, query: str) -> tuple[float, ...]:
        response = await self._openai_client.embeddings.create(
            model=self._embedding_deployment,
            input=query,
        )
        return tuple(response.data[0].embedding)

    async def retrieve(self, query: str, context: ChatContext | None = None) -> RetrievalResult:
        options = SearchOptions.from_context(context)
        if options.uses_vectors:
            options = replace(options, vector=await self.embed_query(query))
        documents = await self._search_index.search(query, options=options)
        return RetrievalResult(
            query=query,
            documents=documents,
            content=render_evidence_block(documents),
        )

    def synthesize(
        self,
        history: Sequence[HistoryMessage],
        retrieval: RetrievalResult,
        context: ChatContext | None = None,
        *,
        query_messages: Sequence[ChatMessage] = (),
    ) -> SynthesisResult:
        context = context or ChatContext()
        system_prompt = render_system_prompt(
            parse_prompt_override(context.prompt_template),
            suggest_followup_questions=context.suggest_followup_questions,
        )

        # Sources ride on the latest user turn, not the system prompt.
        messages = build_messages(
            system_prompt=system_prompt,
            history=history,
            user_content=f"{_latest_question(history)}\n\nSources:\n{retrieval.content}",
            meter=self._meter,
            max_tokens=self._token_limit,
        )

        conversation = messages_to_string(query_messages).replace("\n", "<br>")
        thoughts = f"Searched for:<br>{retrieval.query}<br><br>Conversations:<br>{conversation}"
        return SynthesisResult(
            messages=messages,
            data_points=[document.to_data_point() for document in retrieval.documents],
            thoughts=thoughts,
        )
