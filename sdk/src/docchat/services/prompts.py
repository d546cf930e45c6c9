from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from docchat.schemas.chat import ChatMessage

SYSTEM_MESSAGE_CHAT_CONVERSATION: Final[str] = """\
Assistant helps the Consto Real Estate company customers with support questions regarding terms of service, privacy policy, and questions about support requests. Be brief in your answers.
Answer ONLY with the facts listed in the list of sources below. If there isn't enough information below, say you don't know. Do not generate answers that don't use the sources below. If asking a clarifying question to the user would help, ask the question.
For tabular information return it as an html table. Do not return markdown format. If the question is not in English, answer in the language used in the question.
Each source has a name followed by colon and the actual information, always include the source name for each fact you use in the response. Use square brackets to reference the source, e.g. [info1.txt]. Don't combine sources, list each source separately, e.g. [info1.txt][info2.pdf].
{follow_up_questions_prompt}
{injected_prompt}
"""

FOLLOW_UP_QUESTIONS_PROMPT_CONTENT: Final[str] = """\
Generate three very brief follow-up questions that the user would likely ask next about rentals.
Use double angle brackets to reference the questions, e.g. <<Am I allowed to invite friends for a party?>>.
Try not to repeat questions that have already been asked.
Only generate questions and do not generate any text before or after the questions, such as 'Next Questions'"""

QUERY_PROMPT_TEMPLATE: Final[str] = """\
Below is a history of the conversation so far, and a new question asked by the user that needs to be answered by searching in a knowledge base about terms of service, privacy policy, and questions about support requests.
Generate a search query based on the conversation and the new question.
Do not include cited source filenames and document names e.g info.txt or doc.pdf in the search query terms.
Do not include any text inside [] or <<>> in the search query terms.
Do not include any special characters like '+'.
If the question is not in English, translate the question to English before generating the search query.
If you cannot generate a search query, return just the number 0.
"""

QUERY_PROMPT_FEW_SHOTS: Final[tuple[ChatMessage, ...]] = (
    ChatMessage(role="user", content="What happens if a payment error occurs?"),
    ChatMessage(role="assistant", content="Show support for payment errors"),
    ChatMessage(role="user", content="can I get refunded if cannot travel?"),
    ChatMessage(role="assistant", content="Refund policy"),
)

QUERY_INSTRUCTION_PREFIX: Final[str] = "Generate search query for: "

# The query prompt asks the model to answer with this literal when it gives up.
NO_QUERY_SENTINEL: Final[str] = "0"

PROMPT_APPEND_PREFIX: Final[str] = ">>>"


@dataclass(frozen=True)
class DefaultPrompt:
    pass


@dataclass(frozen=True)
class AppendPrompt:
    text: str


@dataclass(frozen=True)
class ReplacePrompt:
    text: str


PromptOverride = DefaultPrompt | AppendPrompt | ReplacePrompt


def parse_prompt_override(raw: str | None) -> PromptOverride:
    if not raw:
        return DefaultPrompt()
    if raw.startswith(PROMPT_APPEND_PREFIX):
        return AppendPrompt(raw[len(PROMPT_APPEND_PREFIX) :])
    return ReplacePrompt(raw)


def _injected_prompt(override: PromptOverride) -> str:
    match override:
        case AppendPrompt(text=text):
            return text + "\n"
        case ReplacePrompt(text=text):
            return text
        case _:
            return ""


def render_system_prompt(
    override: PromptOverride,
    *,
    suggest_followup_questions: bool = False,
    template: str = SYSTEM_MESSAGE_CHAT_CONVERSATION,
) -> str:
    follow_up = FOLLOW_UP_QUESTIONS_PROMPT_CONTENT if suggest_followup_questions else ""
    return template.replace("{follow_up_questions_prompt}", follow_up).replace(
        "{injected_prompt}", _injected_prompt(override)
    )
