from __future__ import annotations

import json

from fastapi import FastAPI
from fastapi.testclient import TestClient

from common.middleware.request_trace import (
    REQUEST_ID_HEADER,
    SPAN_ID_HEADER,
    RequestTraceMiddleware,
    redact_body,
)


def test_redact_body_masks_sensitive_fields() -> None:
    body = json.dumps({"type": "watchAd", "initData": "user=...", "action_id": "abc"})

    assert json.loads(redact_body(body)) == {
        "type": "watchAd",
        "initData": "***",
        "action_id": "***",
    }


def test_redact_body_truncates_non_json() -> None:
    assert redact_body("x" * 5000) == "x" * 1024


def _app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(RequestTraceMiddleware)

    @app.post("/echo")
    async def echo(payload: dict) -> dict:
        return payload

    return app


def test_trace_headers_are_propagated_and_body_still_readable() -> None:
    client = TestClient(_app())

    resp = client.post(
        "/echo",
        json={"initData": "secret"},
        headers={REQUEST_ID_HEADER: "req-1", SPAN_ID_HEADER: "3"},
    )

    assert resp.status_code == 200
    assert resp.json() == {"initData": "secret"}
    assert resp.headers[REQUEST_ID_HEADER] == "req-1"
    assert resp.headers[SPAN_ID_HEADER] == "3"


def test_request_id_is_generated_when_missing() -> None:
    resp = TestClient(_app()).post("/echo", json={})

    assert len(resp.headers[REQUEST_ID_HEADER]) == 32
    assert resp.headers[SPAN_ID_HEADER] == "0"
