from __future__ import annotations

from openai import AsyncAzureOpenAI, AsyncOpenAI

from docchat.config import AppConfig


def build_openai_client(config: AppConfig) -> AsyncOpenAI:
    """Azure OpenAI when an endpoint is configured, api.openai.com otherwise."""

    if config.azure_openai_endpoint:
        return AsyncAzureOpenAI(
            api_key=config.openai_api_key,
            azure_endpoint=config.azure_openai_endpoint,
            api_version=config.azure_openai_api_version,
        )
    return AsyncOpenAI(api_key=config.openai_api_key)
