from __future__ import annotations

import logging
from types import TracebackType
from typing import Any, Final

import httpx

from docchat.retrieval.types import EvidenceDocument, SearchOptions

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION: Final[str] = "2023-11-01"
DEFAULT_TIMEOUT_SECONDS: Final[float] = 30.0
# Nearest neighbours fetched before hybrid fusion with the keyword results.
HYBRID_VECTOR_CANDIDATES: Final[int] = 50
_SEMANTIC_CONFIGURATION: Final[str] = "default"
_CAPTION_SEPARATOR: Final[str] = " . "


def _collapse_newlines(text: str) -> str:
    return text.replace("\r", " ").replace("\n", " ")


def search_endpoint_for(service: str) -> str:
    return f"https://{service}.search.windows.net"


class AzureSearchIndex:
    """Keyword, vector or hybrid search against an Azure AI Search index."""

    def __init__(
        self,
        *,
        service: str,
        index: str,
        api_key: str,
        source_page_field: str = "sourcepage",
        content_field: str = "content",
        vector_field: str = "embedding",
        api_version: str = DEFAULT_API_VERSION,
        endpoint: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        base_url = (endpoint or search_endpoint_for(service)).rstrip("/")
        self._url = f"{base_url}/indexes/{index}/docs/search"
        self._api_key = api_key
        self._api_version = api_version
        self._source_page_field = source_page_field
        self._content_field = content_field
        self._vector_field = vector_field
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECONDS)

    async def __aenter__(self) -> AzureSearchIndex:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _payload(self, query: str, options: SearchOptions) -> dict[str, Any]:
        payload: dict[str, Any] = {"top": options.top}
        if options.uses_text:
            payload["search"] = query
        if options.uses_vectors:
            if options.vector is None:
                raise ValueError(f"{options.retrieval_mode} retrieval requires a query vector")
            payload["vectorQueries"] = [
                {
                    "kind": "vector",
                    "vector": list(options.vector),
                    "k": HYBRID_VECTOR_CANDIDATES if options.uses_text else options.top,
                    "fields": self._vector_field,
                }
            ]
        if options.filter:
            payload["filter"] = options.filter
        # Semantic reranking works on the keyword query text.
        if options.semantic_ranker and options.uses_text:
            payload["queryType"] = "semantic"
            payload["semanticConfiguration"] = _SEMANTIC_CONFIGURATION
            payload["queryLanguage"] = "en-us"
            if options.semantic_captions:
                payload["captions"] = "extractive"
        return payload

    def _to_evidence(self, hit: dict[str, Any], options: SearchOptions) -> EvidenceDocument:
        identifier = str(hit.get(self._source_page_field) or "")
        captions = hit.get("@search.captions") or []
        if options.semantic_ranker and options.semantic_captions and captions:
            excerpt = _CAPTION_SEPARATOR.join(str(caption.get("text", "")) for caption in captions)
        else:
            excerpt = _collapse_newlines(str(hit.get(self._content_field) or ""))

        score = hit.get("@search.rerankerScore")
        if score is None:
            score = hit.get("@search.score", 0.0)
        return EvidenceDocument(identifier=identifier, excerpt=excerpt, score=float(score))

    async def search(self, query: str, *, options: SearchOptions) -> list[EvidenceDocument]:
        response = await self._client.post(
            self._url,
            params={"api-version": self._api_version},
            headers={"api-key": self._api_key},
            json=self._payload(query, options),
        )
        response.raise_for_status()

        documents: list[EvidenceDocument] = []
        seen: set[str] = set()
        for hit in response.json().get("value", []):
            document = self._to_evidence(hit, options)
            # Answers cite sources by identifier, so a repeated page would be ambiguous.
            if document.identifier in seen:
                continue
            seen.add(document.identifier)
            documents.append(document)

        logger.debug(
            "%s search for %r returned %d documents",
            options.retrieval_mode,
            query,
            len(documents),
        )
        return documents
