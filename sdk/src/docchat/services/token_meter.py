from __future__ import annotations

from collections.abc import Iterable
from typing import Final

import tiktoken

from docchat.schemas.chat import ChatMessage

MODEL_TOKEN_LIMITS: Final[dict[str, int]] = {
    "gpt-35-turbo": 4000,
    "gpt-3.5-turbo": 4000,
    "gpt-35-turbo-16k": 16000,
    "gpt-3.5-turbo-16k": 16000,
    "gpt-4": 8100,
    "gpt-4-32k": 32000,
    "gpt-4o": 128000,
    "gpt-4o-mini": 128000,
}

# Azure deployment names drop the dot; tiktoken only knows the OpenAI spelling.
_AZURE_TO_OPENAI_MODEL: Final[dict[str, str]] = {
    "gpt-35-turbo": "gpt-3.5-turbo",
    "gpt-35-turbo-16k": "gpt-3.5-turbo-16k",
}

_FALLBACK_ENCODING: Final[str] = "cl100k_base"

# Every message is framed by a start and an end marker in the chat format.
_MESSAGE_OVERHEAD_TOKENS: Final[int] = 2


class UnknownModelError(ValueError):
    """Raised when no context window is known for a model."""


def get_token_limit(model: str) -> int:
    try:
        return MODEL_TOKEN_LIMITS[model]
    except KeyError:
        supported = ", ".join(sorted(MODEL_TOKEN_LIMITS))
        raise UnknownModelError(
            f"Unknown model {model!r}. Expected one of: {supported}."
        ) from None


def _encoding_for(model: str) -> tiktoken.Encoding:
    name = _AZURE_TO_OPENAI_MODEL.get(model, model)
    try:
        return tiktoken.encoding_for_model(name)
    except KeyError:
        return tiktoken.get_encoding(_FALLBACK_ENCODING)


class TokenMeter:
    """Measures chat messages in model tokens.

    Counts are an estimate of what the completion service bills; they are
    meant for comparing against a budget, not for exact accounting.
    """

    def __init__(self, model: str) -> None:
        self.model = model
        self._encoding = _encoding_for(model)

    @property
    def limit(self) -> int:
        return get_token_limit(self.model)

    def count_text(self, text: str) -> int:
        if not text:
            return 0
        return len(self._encoding.encode(text, disallowed_special=()))

    def cost_of(self, message: ChatMessage) -> int:
        return (
            _MESSAGE_OVERHEAD_TOKENS
            + self.count_text(message.role)
            + self.count_text(message.content)
        )

    def cost_of_messages(self, messages: Iterable[ChatMessage]) -> int:
        return sum(self.cost_of(message) for message in messages)
