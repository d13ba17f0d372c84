from fastapi import FastAPI
from fastapi.testclient import TestClient

from wren.logging_config import REDACTED, redact_secrets
from wren.middleware import RequestLoggingMiddleware


def test_redact_secrets_masks_known_keys():
    event = {
        "event": "submitted",
        "sessionId": "abc",
        "signed_transaction": "AQID",
        "headers": {"X-Stamp": "stamp", "accept": "json"},
        "transaction_id": "sig",
    }

    redacted = redact_secrets(None, "info", event)

    assert redacted["sessionId"] == REDACTED
    assert redacted["signed_transaction"] == REDACTED
    assert redacted["headers"] == {"X-Stamp": REDACTED, "accept": "json"}
    assert redacted["transaction_id"] == "sig"


def test_request_id_is_echoed():
    app = FastAPI()
    app.add_middleware(RequestLoggingMiddleware)

    @app.get("/ping")
    async def ping():
        return {"ok": True}

    client = TestClient(app)

    assert client.get("/ping", headers={"x-request-id": "req-1"}).headers["x-request-id"] == "req-1"
    assert client.get("/ping").headers["x-request-id"]
