from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated

import typer
from docchat import Docchat, DocchatConfigurationError, DocchatError
from docchat.schemas.chat import ChatContext, HistoryMessage
from pydantic import ValidationError

app = typer.Typer(add_completion=False, help="docchat CLI (SDK-powered).")


def _print_json(payload: object) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def _build_client() -> Docchat:
    try:
        return Docchat()
    except DocchatConfigurationError as exc:
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(code=2) from exc


def _load_history(path: Path | None) -> list[HistoryMessage]:
    if path is None:
        return []
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(
            f"History file is not valid JSON: {exc}", param_hint="--history-file"
        ) from exc
    if not isinstance(raw, list):
        raise typer.BadParameter(
            "History file must contain a JSON list of turns.", param_hint="--history-file"
        )
    try:
        return [HistoryMessage.model_validate(turn) for turn in raw]
    except ValidationError as exc:
        raise typer.BadParameter(
            f"Invalid history turn: {exc}", param_hint="--history-file"
        ) from exc


def _build_context(**options: object) -> ChatContext:
    try:
        return ChatContext.model_validate(options)
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc


async def _stream_answer(
    client: Docchat,
    question: str,
    history: list[HistoryMessage],
    context: ChatContext,
) -> str:
    parts: list[str] = []
    async for chunk in client.astream(question, history=history, context=context):
        parts.append(chunk.answer)
        typer.echo(chunk.answer, nl=False)
    typer.echo("")
    return "".join(parts)


async def _chat_loop(client: Docchat, context: ChatContext) -> None:
    history: list[HistoryMessage] = []
    while True:
        try:
            text = await asyncio.to_thread(typer.prompt, ">")
        except (EOFError, KeyboardInterrupt, typer.Abort):
            typer.echo("\nBye.")
            return

        if not text.strip():
            continue
        if text.strip().lower() in {"exit", "quit"}:
            return

        try:
            answer = await _stream_answer(client, text, history, context)
        except DocchatError as exc:
            typer.echo(f"Error: {exc}", err=True)
            continue
        history.append(HistoryMessage(user=text, bot=answer))
        typer.echo("")


@app.command()
def ask(
    question: Annotated[str, typer.Argument(help="Question to answer.")],
    history_file: Annotated[
        Path | None,
        typer.Option(
            "--history-file",
            exists=True,
            readable=True,
            dir_okay=False,
            help='JSON list of earlier turns: [{"user": "...", "bot": "..."}].',
        ),
    ] = None,
    prompt_template: Annotated[
        str | None,
        typer.Option(
            "--prompt-template",
            help="Replace the injected instructions, or append to them with a >>> prefix.",
        ),
    ] = None,
    temperature: Annotated[
        float | None, typer.Option("--temperature", min=0.0, max=2.0)
    ] = None,
    top: Annotated[
        int | None, typer.Option("--top", min=1, max=50, help="Documents to retrieve.")
    ] = None,
    exclude_category: Annotated[
        str | None, typer.Option("--exclude-category", help="Skip documents in this category.")
    ] = None,
    retrieval_mode: Annotated[
        str,
        typer.Option(
            "--retrieval-mode", help="text|vectors|hybrid (vectors embed the search query)."
        ),
    ] = "text",
    suggest_followups: Annotated[
        bool, typer.Option("--suggest-followups", help="Ask for follow-up questions.")
    ] = False,
    stream: Annotated[bool, typer.Option("--stream", help="Print the answer as it arrives.")] = False,
    json_output: Annotated[bool, typer.Option("--json", help="Emit JSON output.")] = False,
) -> None:
    """Rewrite the question into a search query, search, and answer from the results."""

    if not question.strip():
        raise typer.BadParameter("Question must not be blank.", param_hint="QUESTION")
    history = _load_history(history_file)
    context = _build_context(
        suggest_followup_questions=suggest_followups,
        prompt_template=prompt_template,
        temperature=temperature,
        top=top,
        exclude_category=exclude_category,
        retrieval_mode=retrieval_mode,
    )
    client = _build_client()

    try:
        if stream and not json_output:
            asyncio.run(_stream_answer(client, question, history, context))
            return
        result = client.ask(question, history=history, context=context)
    except DocchatError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    if json_output:
        _print_json(result.model_dump())
        return

    typer.echo(result.answer)


@app.command()
def chat(
    suggest_followups: Annotated[
        bool, typer.Option("--suggest-followups", help="Ask for follow-up questions.")
    ] = False,
    retrieval_mode: Annotated[
        str, typer.Option("--retrieval-mode", help="text|vectors|hybrid.")
    ] = "text",
) -> None:
    """Interactive chat loop (earlier turns are kept for this process only)."""

    client = _build_client()
    context = _build_context(
        suggest_followup_questions=suggest_followups, retrieval_mode=retrieval_mode
    )

    typer.echo("Enter questions. Type 'exit' or 'quit' to leave.")
    asyncio.run(_chat_loop(client, context))


if __name__ == "__main__":
    app()
