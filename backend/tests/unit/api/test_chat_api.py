from __future__ import annotations

import asyncio
import json
import re
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from docchat_backend.app import create_app

_REQUEST = {
    "history": [
        {"user": "Can I cancel?", "bot": "Yes, within 24 hours."},
        {"user": "What happens if a payment error occurs?"},
    ],
    "context": {"top": 5, "prompt_template": ">>>Answer briefly."},
}

_SEARCH_ENV = (
    "AZURE_SEARCH_SERVICE",
    "AZURE_SEARCH_INDEX",
    "AZURE_SEARCH_API_KEY",
    "OPENAI_API_KEY",
    "AZURE_OPENAI_API_KEY",
)


def _ndjson(text: str) -> list[dict[str, Any]]:
    return [json.loads(line) for line in text.splitlines() if line.strip()]


@pytest.mark.asyncio
async def test_chat_returns_answer_data_points_and_thoughts(
    client: AsyncClient, orchestrator: Any
) -> None:
    response = await client.post("/v1/chat", json=_REQUEST)

    assert response.status_code == 200
    body = response.json()
    assert body["answer"] == "Retried once."
    assert body["data_points"] == [
        {
            "identifier": "support.pdf#page=2",
            "excerpt": "Payment errors are retried once.",
            "score": 2.5,
        }
    ]
    assert body["thoughts"].startswith("Searched for:<br>")

    history, context = orchestrator.calls[0]
    assert [turn.user for turn in history] == [
        "Can I cancel?",
        "What happens if a payment error occurs?",
    ]
    assert context.top == 5
    assert context.prompt_template == ">>>Answer briefly."


@pytest.mark.asyncio
async def test_chat_stream_emits_ndjson_with_metadata_first(client: AsyncClient) -> None:
    response = await client.post("/v1/chat/stream", json=_REQUEST)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/x-ndjson")
    assert response.headers["cache-control"] == "no-cache"

    lines = _ndjson(response.text)
    assert [line["answer"] for line in lines] == ["Retried", " once", "."]
    assert lines[0]["data_points"][0]["identifier"] == "support.pdf#page=2"
    assert "thoughts" in lines[0]
    for line in lines[1:]:
        assert set(line) == {"answer"}


@pytest.mark.asyncio
@pytest.mark.parametrize("orchestrator", [{"fail_before_first_chunk": True}], indirect=True)
async def test_chat_failure_maps_to_error_payload(client: AsyncClient) -> None:
    response = await client.post("/v1/chat", json=_REQUEST)

    assert response.status_code == 500
    error = response.json()["error"]
    assert error["code"] == "chat_failed"
    assert error["message"] == "search index unreachable"
    assert error["recoverable"] is True
    assert error["request_id"]


@pytest.mark.asyncio
@pytest.mark.parametrize("orchestrator", [{"fail_before_first_chunk": True}], indirect=True)
async def test_chat_stream_failure_before_first_chunk_is_a_500(client: AsyncClient) -> None:
    response = await client.post("/v1/chat/stream", json=_REQUEST)

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "chat_failed"


@pytest.mark.asyncio
@pytest.mark.parametrize("orchestrator", [{"fail_after_first_chunk": True}], indirect=True)
async def test_chat_stream_failure_mid_answer_ends_with_error_line(client: AsyncClient) -> None:
    response = await client.post("/v1/chat/stream", json=_REQUEST)

    assert response.status_code == 200
    lines = _ndjson(response.text)
    assert lines[0]["answer"] == "Retried"
    assert lines[-1]["error"]["code"] == "stream_interrupted"
    assert lines[-1]["error"]["message"] == "completion stream dropped"
    assert len(lines) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"history": []},
        {"history": [{"user": "   "}]},
        {"history": [{"user": "Hi", "bot": "Hello"}, {"bot": "no question"}]},
        {"history": [{"user": "Hi"}], "context": {"top": 0}},
        {"history": [{"user": "Hi"}], "unexpected": True},
    ],
)
async def test_invalid_requests_are_rejected(
    client: AsyncClient, orchestrator: Any, payload: dict[str, Any]
) -> None:
    response = await client.post("/v1/chat", json=payload)

    assert response.status_code == 422
    assert orchestrator.calls == []


@pytest.mark.asyncio
async def test_missing_configuration_maps_to_not_configured(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    for name in _SEARCH_ENV:
        monkeypatch.delenv(name, raising=False)

    transport = ASGITransport(app=create_app(service_name="docchat-test"))
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.post("/v1/chat", json=_REQUEST)

    assert response.status_code == 500
    error = response.json()["error"]
    assert error["code"] == "not_configured"
    assert error["recoverable"] is False
    assert "AZURE_SEARCH_SERVICE" in error["message"]


@pytest.mark.asyncio
@pytest.mark.parametrize("orchestrator", [{"fail_before_first_chunk": True}], indirect=True)
async def test_error_payload_echoes_caller_request_id(client: AsyncClient) -> None:
    response = await client.post(
        "/v1/chat", json=_REQUEST, headers={"x-request-id": "req-42.retry_1"}
    )

    assert response.status_code == 500
    assert response.json()["error"]["request_id"] == "req-42.retry_1"
    assert response.headers["x-request-id"] == "req-42.retry_1"


@pytest.mark.asyncio
@pytest.mark.parametrize("orchestrator", [{"fail_after_first_chunk": True}], indirect=True)
async def test_stream_error_line_carries_the_stream_request_id(client: AsyncClient) -> None:
    response = await client.post(
        "/v1/chat/stream", json=_REQUEST, headers={"x-request-id": "stream-7"}
    )

    assert response.headers["x-request-id"] == "stream-7"
    assert _ndjson(response.text)[-1]["error"]["request_id"] == "stream-7"


@pytest.mark.asyncio
@pytest.mark.parametrize("orchestrator", [{"fail_before_first_chunk": True}], indirect=True)
async def test_malformed_request_id_is_replaced(client: AsyncClient) -> None:
    response = await client.post(
        "/v1/chat", json=_REQUEST, headers={"x-request-id": "has spaces; and=junk"}
    )

    request_id = response.json()["error"]["request_id"]
    assert re.fullmatch(r"[0-9a-f]{32}", request_id)
    assert response.headers["x-request-id"] == request_id


@pytest.mark.asyncio
async def test_lazy_pipeline_is_built_once_and_closed_on_shutdown(session_tracker: Any) -> None:
    app = create_app(service_name="docchat-test")

    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            responses = await asyncio.gather(
                client.post("/v1/chat", json=_REQUEST),
                client.post("/v1/chat", json=_REQUEST),
            )
            health = await client.get("/health")

        assert [response.status_code for response in responses] == [200, 200]
        assert health.json()["pipeline"] == "ready"
        assert session_tracker.opened == 1
        assert session_tracker.closed == 0

    assert session_tracker.closed == 1
