"""
HTTP tests for the wallet service, wired end to end against the fake ledger.
"""

import pytest
from fastapi.testclient import TestClient
from solders.keypair import Keypair
from solders.signature import Signature

from wren.auth.sessions import MemorySessionBackend, SessionStore
from wren.config import Settings
from wren.container import ServiceContainer
from wren.core.execution import co_sign, decode_transaction
from wren.main import create_app

REGISTRATION = {
    "email": "a@example.com",
    "challenge": "challenge",
    "attestation": {"credentialId": "abc"},
}


@pytest.fixture
def wallet_key():
    return Keypair()


@pytest.fixture
def container(tmp_path, ledger, accounts, wallet_key, make_turnkey):
    settings = Settings(
        _env_file=None,
        database_path=tmp_path / "wren.db",
        confirm_timeout_seconds=0.1,
        token_account_confirm_timeout_seconds=0.1,
        airdrop_wait_timeout_seconds=0.5,
    )
    return ServiceContainer.build(
        settings,
        accounts=accounts,
        sessions=SessionStore(MemorySessionBackend()),
        rpc=ledger,
        turnkey=make_turnkey(sol_address=str(wallet_key.pubkey())),
    )


@pytest.fixture
def client(container):
    with TestClient(create_app(services=container)) as test_client:
        yield test_client


def _register(client) -> str:
    response = client.post("/api/register", json=REGISTRATION)
    assert response.status_code == 200
    return response.json()["sessionId"]


# =============================================================================
# Authentication
# =============================================================================

@pytest.mark.parametrize(
    "method,path,body",
    [
        ("post", "/api/transfer", {"toAddress": "x", "amount": "1"}),
        ("post", "/api/send", {"signedTransaction": "AAAA"}),
        ("post", "/api/drop", None),
        ("get", "/api/whoami", None),
        ("get", "/api/drop/run-1", None),
    ],
)
def test_unauthenticated_requests_never_touch_ledger(client, ledger, method, path, body):
    before = ledger.total_calls

    missing = getattr(client, method)(path, json=body) if body else getattr(client, method)(path)
    unknown = (
        getattr(client, method)(path, json=body, headers={"sessionId": "nope"})
        if body
        else getattr(client, method)(path, headers={"sessionId": "nope"})
    )

    assert missing.status_code == 401
    assert unknown.status_code == 401
    assert ledger.total_calls == before


def test_registration_status_and_duplicate(client):
    assert client.get("/api/registration-status/a@example.com").json() == {"registered": False}

    _register(client)

    assert client.get("/api/registration-status/A@Example.com").json() == {"registered": True}
    duplicate = client.post("/api/register", json=REGISTRATION)
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"]["error"] == "conflict"


def test_authenticate_with_forwarded_whoami(client, container):
    _register(client)
    container.turnkey.whoami_org = "org-1"

    response = client.post(
        "/api/authenticate",
        json={
            "signedWhoamiRequest": {
                "url": "https://api.turnkey.com/public/v1/query/whoami",
                "body": '{"organizationId":"org-1"}',
                "stamp": {"stampHeaderName": "X-Stamp-Webauthn", "stampHeaderValue": "stamp"},
            }
        },
    )

    assert response.status_code == 200
    session_id = response.json()["sessionId"]
    whoami = client.get("/api/whoami", headers={"sessionId": session_id}).json()
    assert whoami["identity"]["email"] == "a@example.com"


def test_logout_ends_session(client):
    session_id = _register(client)

    assert client.post("/api/logout", headers={"sessionId": session_id}).status_code == 200
    assert client.get("/api/whoami", headers={"sessionId": session_id}).status_code == 401


# =============================================================================
# Transfers
# =============================================================================

def test_register_then_transfer_then_send(client, container, ledger, wallet_key):
    recipient = Keypair().pubkey()
    ledger.add_account(container.token_accounts.address_for(wallet_key.pubkey()))
    ledger.add_account(container.token_accounts.address_for(recipient))
    ledger.balances[wallet_key.pubkey()] = 1_000_000_000

    session_id = _register(client)
    response = client.post(
        "/api/transfer",
        json={"toAddress": str(recipient), "amount": "0.02"},
        headers={"sessionId": session_id},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["organizationId"] == "org-1"
    tx = decode_transaction(body["unsignedTransaction"])
    assert tx.message.account_keys[0] == wallet_key.pubkey()
    assert len(tx.message.instructions) == 2

    signed = co_sign(body["unsignedTransaction"], wallet_key)
    sent = client.post("/api/send", json={"signedTransaction": signed}, headers={"sessionId": session_id})

    assert sent.status_code == 200
    assert sent.json()["status"] == "confirmed"
    assert sent.json()["transactionId"] == str(decode_transaction(signed).signatures[0])


def test_transfer_rejects_bad_amount(client, container, ledger, wallet_key):
    recipient = Keypair().pubkey()
    ledger.add_account(container.token_accounts.address_for(wallet_key.pubkey()))
    session_id = _register(client)
    before = ledger.calls["send_raw_transaction"]

    response = client.post(
        "/api/transfer",
        json={"toAddress": str(recipient), "amount": "lots"},
        headers={"sessionId": session_id},
    )

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "invalid_input"
    assert ledger.calls["send_raw_transaction"] == before


def test_send_rejects_unsigned_transaction(client, container, ledger, wallet_key):
    recipient = Keypair().pubkey()
    ledger.add_account(container.token_accounts.address_for(wallet_key.pubkey()))
    ledger.add_account(container.token_accounts.address_for(recipient))
    session_id = _register(client)
    unsigned = client.post(
        "/api/transfer",
        json={"toAddress": str(recipient), "amount": 1},
        headers={"sessionId": session_id},
    ).json()["unsignedTransaction"]
    assert Signature.default() in list(decode_transaction(unsigned).signatures)
    before = ledger.calls["send_raw_transaction"]

    response = client.post("/api/send", json={"signedTransaction": unsigned}, headers={"sessionId": session_id})

    assert response.status_code == 400
    assert ledger.calls["send_raw_transaction"] == before


# =============================================================================
# Airdrops and health
# =============================================================================

def test_drop_status_is_owner_scoped(client):
    session_id = _register(client)

    response = client.get("/api/drop/does-not-exist", headers={"sessionId": session_id})

    assert response.status_code == 404


def test_drop_is_accepted(client, container, ledger, wallet_key):
    ledger.add_account(container.token_accounts.address_for(wallet_key.pubkey()))
    session_id = _register(client)

    response = client.post("/api/drop", headers={"sessionId": session_id})

    assert response.status_code == 202
    run_id = response.json()["runId"]
    status = client.get(f"/api/drop/{run_id}", headers={"sessionId": session_id})
    assert status.status_code == 200
    assert status.json()["runId"] == run_id


def test_healthz_reports_nonce(client):
    body = client.get("/healthz").json()

    assert body["status"] == "healthy"
    assert body["checks"]["nonce"]["status"] == "healthy"
