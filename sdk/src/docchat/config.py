from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Final

from docchat.services.token_meter import UnknownModelError, get_token_limit

DEFAULT_CHAT_MODEL: Final[str] = "gpt-35-turbo"
DEFAULT_SEARCH_API_VERSION: Final[str] = "2023-11-01"
DEFAULT_AZURE_OPENAI_API_VERSION: Final[str] = "2024-02-01"
DEFAULT_EMBEDDING_MODEL: Final[str] = "text-embedding-ada-002"


class DocchatError(RuntimeError):
    """Base error for the docchat SDK."""


class DocchatConfigurationError(DocchatError):
    """Raised when required settings are missing or invalid."""


class DocchatQueryError(DocchatError):
    """Raised when answering a question fails."""


@dataclass(frozen=True)
class AppConfig:
    search_service: str
    search_index: str
    search_api_key: str
    openai_api_key: str
    search_api_version: str = DEFAULT_SEARCH_API_VERSION
    content_field: str = "content"
    source_page_field: str = "sourcepage"
    vector_field: str = "embedding"
    search_endpoint: str | None = None
    chat_model: str = DEFAULT_CHAT_MODEL
    chat_deployment: str = DEFAULT_CHAT_MODEL
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_deployment: str = DEFAULT_EMBEDDING_MODEL
    azure_openai_endpoint: str | None = None
    azure_openai_api_version: str = DEFAULT_AZURE_OPENAI_API_VERSION


def _read(environ: Mapping[str, str], *names: str) -> str | None:
    for name in names:
        value = environ.get(name, "").strip()
        if value:
            return value
    return None


def _search_endpoint(environ: Mapping[str, str]) -> str | None:
    endpoint = _read(environ, "AZURE_SEARCH_ENDPOINT")
    return endpoint.rstrip("/") if endpoint else None


def _azure_openai_endpoint(environ: Mapping[str, str]) -> str | None:
    endpoint = _read(environ, "AZURE_OPENAI_ENDPOINT")
    if endpoint:
        return endpoint.rstrip("/")
    service = _read(environ, "AZURE_OPENAI_SERVICE")
    if service:
        return f"https://{service}.openai.azure.com"
    return None


def load_config(environ: Mapping[str, str] | None = None) -> AppConfig:
    """Build the configuration from environment variables.

    Every missing required variable is reported in a single error.
    """

    env = os.environ if environ is None else environ

    required = {
        "AZURE_SEARCH_SERVICE": _read(env, "AZURE_SEARCH_SERVICE"),
        "AZURE_SEARCH_INDEX": _read(env, "AZURE_SEARCH_INDEX"),
        "AZURE_SEARCH_API_KEY": _read(env, "AZURE_SEARCH_API_KEY"),
        "OPENAI_API_KEY": _read(env, "OPENAI_API_KEY", "AZURE_OPENAI_API_KEY"),
    }
    missing = [name for name, value in required.items() if value is None]
    if missing:
        raise DocchatConfigurationError(
            f"{', '.join(missing)} environment variable(s) must be set"
        )

    chat_model = _read(env, "DOCCHAT_CHAT_MODEL") or DEFAULT_CHAT_MODEL
    embedding_model = _read(env, "AZURE_OPENAI_EMBEDDING_MODEL") or DEFAULT_EMBEDDING_MODEL
    try:
        get_token_limit(chat_model)
    except UnknownModelError as exc:
        raise DocchatConfigurationError(str(exc)) from exc

    return AppConfig(
        search_service=required["AZURE_SEARCH_SERVICE"] or "",
        search_index=required["AZURE_SEARCH_INDEX"] or "",
        search_api_key=required["AZURE_SEARCH_API_KEY"] or "",
        openai_api_key=required["OPENAI_API_KEY"] or "",
        search_api_version=_read(env, "AZURE_SEARCH_API_VERSION") or DEFAULT_SEARCH_API_VERSION,
        content_field=_read(env, "KB_FIELDS_CONTENT") or "content",
        source_page_field=_read(env, "KB_FIELDS_SOURCEPAGE") or "sourcepage",
        vector_field=_read(env, "KB_FIELDS_EMBEDDING") or "embedding",
        search_endpoint=_search_endpoint(env),
        chat_model=chat_model,
        chat_deployment=_read(env, "AZURE_OPENAI_CHATGPT_DEPLOYMENT") or chat_model,
        embedding_model=embedding_model,
        embedding_deployment=_read(env, "AZURE_OPENAI_EMB_DEPLOYMENT") or embedding_model,
        azure_openai_endpoint=_azure_openai_endpoint(env),
        azure_openai_api_version=(
            _read(env, "AZURE_OPENAI_API_VERSION") or DEFAULT_AZURE_OPENAI_API_VERSION
        ),
    )
