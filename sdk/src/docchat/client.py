from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator, Awaitable, Callable, Coroutine, Sequence
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, TypeVar, cast

from docchat.config import (
    AppConfig,
    DocchatConfigurationError,
    DocchatError,
    DocchatQueryError,
    load_config,
)
from docchat.retrieval.azure_search import AzureSearchIndex
from docchat.retrieval.types import SearchIndex
from docchat.schemas.chat import (
    ChatContext,
    ChatRequest,
    ChatResponse,
    ChatResponseChunk,
    HistoryMessage,
)
from docchat.services.openai_client import build_openai_client
from docchat.services.rag_chat_orchestrator import RagChatOrchestrator
from docchat.services.token_meter import TokenMeter

__all__ = [
    "Docchat",
    "DocchatConfigurationError",
    "DocchatError",
    "DocchatQueryError",
]

T = TypeVar("T")


def _run_awaitable(factory: Callable[[], Awaitable[T]]) -> T:
    """Run an awaitable factory from sync code.

    If an event loop is already running in the current thread (e.g., Jupyter),
    the coroutine is executed in a dedicated thread via asyncio.run.
    """

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(cast(Coroutine[Any, Any, T], factory()))

    if not loop.is_running():
        return loop.run_until_complete(factory())

    result: dict[str, T] = {}
    error: dict[str, BaseException] = {}

    def _target() -> None:
        try:
            result["value"] = asyncio.run(cast(Coroutine[Any, Any, T], factory()))
        except BaseException as exc:  # pragma: no cover
            error["exc"] = exc

    thread = threading.Thread(target=_target, daemon=True)
    thread.start()
    thread.join()

    if "exc" in error:
        raise error["exc"]

    if "value" not in result:  # pragma: no cover
        raise RuntimeError("Async execution failed without an exception")

    return result["value"]


def _conversation(
    question: str, history: Sequence[HistoryMessage | dict[str, str]] | None
) -> list[HistoryMessage]:
    turns = [
        turn if isinstance(turn, HistoryMessage) else HistoryMessage.model_validate(turn)
        for turn in history or []
    ]
    request = ChatRequest(history=[*turns, HistoryMessage(user=question)])
    return request.history


class Docchat:
    """docchat SDK facade.

    Answers questions about an Azure AI Search index with a chat model:

    - ``ask``: rewrite the question into a search query -> search -> answer
    - ``astream``: the same pipeline, yielding the answer as it is generated

    Parameters
    ----------
    config:
        Settings for the search index and the completion service. Read from
        the environment with :func:`docchat.config.load_config` when omitted.
    openai_client:
        Optional pre-built async OpenAI client.
    search_index:
        Optional search index implementation. Defaults to Azure AI Search.
    meter:
        Optional token meter. Defaults to a tiktoken meter for the configured model.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        openai_client: Any | None = None,
        search_index: SearchIndex | None = None,
        meter: TokenMeter | None = None,
    ) -> None:
        self._config = config or load_config()
        self._openai_client = openai_client
        self._search_index = search_index
        self._meter = meter

    @property
    def config(self) -> AppConfig:
        return self._config

    def _build_search_index(self) -> AzureSearchIndex:
        return AzureSearchIndex(
            service=self._config.search_service,
            index=self._config.search_index,
            api_key=self._config.search_api_key,
            source_page_field=self._config.source_page_field,
            content_field=self._config.content_field,
            vector_field=self._config.vector_field,
            api_version=self._config.search_api_version,
            endpoint=self._config.search_endpoint,
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[RagChatOrchestrator]:
        """Yield an orchestrator whose HTTP clients live on the running event loop.

        Clients built here are closed on exit. Injected collaborators are used
        as-is and left open.
        """

        async with AsyncExitStack() as stack:
            openai_client = self._openai_client
            if openai_client is None:
                openai_client = await stack.enter_async_context(
                    build_openai_client(self._config)
                )
            search_index = self._search_index
            if search_index is None:
                search_index = await stack.enter_async_context(self._build_search_index())

            yield RagChatOrchestrator(
                openai_client=openai_client,
                search_index=search_index,
                chat_model=self._config.chat_model,
                deployment=self._config.chat_deployment,
                embedding_deployment=self._config.embedding_deployment,
                meter=self._meter,
            )

    async def aask(
        self,
        question: str,
        *,
        history: Sequence[HistoryMessage | dict[str, str]] | None = None,
        context: ChatContext | None = None,
    ) -> ChatResponse:
        conversation = _conversation(question, history)
        try:
            async with self.session() as orchestrator:
                return await orchestrator.run(conversation, context)
        except DocchatError:
            raise
        except Exception as exc:
            raise DocchatQueryError(str(exc) or "Query failed") from exc

    def ask(
        self,
        question: str,
        *,
        history: Sequence[HistoryMessage | dict[str, str]] | None = None,
        context: ChatContext | None = None,
    ) -> ChatResponse:
        """Answer ``question`` given the preceding ``history`` turns."""

        return _run_awaitable(lambda: self.aask(question, history=history, context=context))

    async def astream(
        self,
        question: str,
        *,
        history: Sequence[HistoryMessage | dict[str, str]] | None = None,
        context: ChatContext | None = None,
    ) -> AsyncIterator[ChatResponseChunk]:
        conversation = _conversation(question, history)
        try:
            async with self.session() as orchestrator:
                async for chunk in orchestrator.run_with_streaming(conversation, context):
                    yield chunk
        except DocchatError:
            raise
        except Exception as exc:
            raise DocchatQueryError(str(exc) or "Query failed") from exc
