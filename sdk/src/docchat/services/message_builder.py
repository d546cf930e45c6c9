from __future__ import annotations

from collections import deque
from collections.abc import Sequence

from docchat.schemas.chat import ChatMessage, HistoryMessage
from docchat.services.token_meter import TokenMeter


def build_messages(
    *,
    system_prompt: str,
    history: Sequence[HistoryMessage],
    user_content: str,
    meter: TokenMeter,
    few_shots: Sequence[ChatMessage] = (),
    max_tokens: int = 4096,
) -> list[ChatMessage]:
    """Assemble a chat prompt that keeps as much recent history as fits.

    The result is ordered system prompt, few-shot examples, history (oldest
    kept turn first), then ``user_content``. The system prompt, the few-shots
    and ``user_content`` are always present. History excluding the last turn
    is added newest-first until the running token count exceeds
    ``max_tokens``; the turn that crosses the budget is kept.
    """

    head = [ChatMessage(role="system", content=system_prompt), *few_shots]
    tail = ChatMessage(role="user", content=user_content)
    total = meter.cost_of_messages(head) + meter.cost_of(tail)

    kept: deque[ChatMessage] = deque()
    for turn in reversed(history[:-1]):
        if turn.bot:
            message = ChatMessage(role="assistant", content=turn.bot)
            kept.appendleft(message)
            total += meter.cost_of(message)
        if turn.user:
            message = ChatMessage(role="user", content=turn.user)
            kept.appendleft(message)
            total += meter.cost_of(message)
        if total > max_tokens:
            break

    return [*head, *kept, tail]


def messages_to_string(messages: Sequence[ChatMessage]) -> str:
    return "\n\n".join(f"{message.role}: {message.content}" for message in messages)
