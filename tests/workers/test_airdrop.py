"""
Airdrop orchestrator tests: state machine, token-account wait, resume.
"""

from decimal import Decimal

import pytest
import pytest_asyncio
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from wren.auth.models import Identity, IdentityWithWallet, Wallet
from wren.core.execution import (
    DurableNonceCoordinator,
    LedgerError,
    SubmissionPipeline,
    TokenAccountService,
    TransferBuilder,
)
from wren.db.store import Database
from wren.workers import (
    TOKEN_ACCOUNT_CREATED,
    AirdropOrchestrator,
    AirdropRun,
    AirdropState,
    InvalidTransitionError,
    WorkflowRuntime,
)
from wren.workers.airdrop import WalletNotProvisionedError


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(tmp_path / "wren.db")
    await database.connect()
    yield database
    await database.close()


@pytest_asyncio.fixture
async def runtime():
    rt = WorkflowRuntime()
    yield rt
    await rt.stop()


@pytest.fixture
def orchestrator(db, runtime, ledger, accounts):
    nonces = DurableNonceCoordinator(ledger, accounts)
    pipeline = SubmissionPipeline(ledger, confirm_timeout=0.05, poll_interval=0.01)
    token_accounts = TokenAccountService(ledger, accounts, nonces, pipeline, confirm_timeout=0.05)
    return AirdropOrchestrator(
        runtime=runtime,
        store=db,
        rpc=ledger,
        accounts=accounts,
        builder=TransferBuilder(accounts, nonces, token_accounts),
        pipeline=pipeline,
        token_accounts=token_accounts,
        amount=Decimal("1"),
        wait_timeout=0.2,
    )


@pytest_asyncio.fixture
async def subject(db):
    recipient = Keypair().pubkey()
    user_id = await db.create_user("a@example.com", "org-1")
    await db.save_wallet(user_id, "wallet-1", "0xabc", str(recipient))
    return IdentityWithWallet(
        identity=Identity(identity_id=user_id, external_org_id="org-1", email="a@example.com"),
        wallet=Wallet(wallet_id="wallet-1", eth_address="0xabc", sol_address=str(recipient)),
    )


def _recipient_ata(orchestrator, subject):
    return orchestrator._token_accounts.address_for(Pubkey.from_string(subject.wallet.sol_address))


# =============================================================================
# State machine
# =============================================================================

def test_allowed_transitions():
    run = AirdropRun.new(identity_id=1, wallet_id="w", recipient="r")

    waiting = run.transition(AirdropState.WAITING_FOR_TOKEN_ACCOUNT)
    dropping = waiting.transition(AirdropState.DROPPING, token_account="ata")
    done = dropping.transition(AirdropState.DONE, transaction_id="sig")

    assert done.state == AirdropState.DONE
    assert done.token_account == "ata"
    assert run.transition(AirdropState.DROPPING).state == AirdropState.DROPPING
    assert run.state == AirdropState.REQUESTED


@pytest.mark.parametrize(
    "path",
    [
        [AirdropState.DONE],
        [AirdropState.DROPPING, AirdropState.WAITING_FOR_TOKEN_ACCOUNT],
        [AirdropState.FAILED, AirdropState.DROPPING],
        [AirdropState.DROPPING, AirdropState.DONE, AirdropState.FAILED],
    ],
)
def test_invalid_transitions(path):
    run = AirdropRun.new(identity_id=1, wallet_id="w", recipient="r")

    with pytest.raises(InvalidTransitionError):
        for state in path:
            run = run.transition(state)


def test_record_round_trip():
    run = AirdropRun.new(identity_id=7, wallet_id="w", recipient="r").transition(AirdropState.DROPPING)

    assert AirdropRun.from_record(run.to_record()) == run


# =============================================================================
# Workflow
# =============================================================================

@pytest.mark.asyncio
async def test_drop_with_existing_token_account(orchestrator, runtime, ledger, accounts, subject, db):
    ledger.add_account(_recipient_ata(orchestrator, subject))
    await db.set_token_account("wallet-1", str(_recipient_ata(orchestrator, subject)))

    run = await orchestrator.request(subject)
    assert run.state == AirdropState.REQUESTED
    await runtime.drain()

    finished = await orchestrator.get_run(run.run_id)
    assert finished.state == AirdropState.DONE
    assert finished.transaction_id

    drop = ledger.sent[-1]
    assert drop.message.account_keys[0] == accounts.chest.pubkey()
    assert len(drop.message.instructions) == 2
    assert Signature.default() not in list(drop.signatures)


@pytest.mark.asyncio
async def test_waits_for_token_account_then_drops(orchestrator, runtime, ledger, subject, db):
    ata = _recipient_ata(orchestrator, subject)
    ledger.add_account(ata)

    run = await orchestrator.request(subject)
    await runtime.drain()

    finished = await orchestrator.get_run(run.run_id)
    assert finished.state == AirdropState.DONE
    assert finished.token_account == str(ata)
    wallet = await db.find_wallet_by_identity(subject.identity.identity_id)
    assert wallet["token_account_address"] == str(ata)


@pytest.mark.asyncio
async def test_token_account_timeout_fails_run(orchestrator, runtime, ledger, subject):
    # ATA never appears on the ledger, so provisioning fails and no event is emitted.
    run = await orchestrator.request(subject)
    await runtime.drain()

    finished = await orchestrator.get_run(run.run_id)
    assert finished.state == AirdropState.FAILED
    assert finished.transaction_id is None


@pytest.mark.asyncio
async def test_failed_drop_is_not_retried(orchestrator, runtime, ledger, subject, db):
    ata = _recipient_ata(orchestrator, subject)
    ledger.add_account(ata)
    await db.set_token_account("wallet-1", str(ata))
    ledger.send_errors = [LedgerError("down"), LedgerError("down")]

    run = await orchestrator.request(subject)
    await runtime.drain()

    finished = await orchestrator.get_run(run.run_id)
    assert finished.state == AirdropState.FAILED
    assert ledger.calls["send_raw_transaction"] == 2


@pytest.mark.asyncio
async def test_request_without_wallet_is_rejected(orchestrator, subject):
    no_wallet = IdentityWithWallet(identity=subject.identity, wallet=None)

    with pytest.raises(WalletNotProvisionedError):
        await orchestrator.request(no_wallet)


@pytest.mark.asyncio
async def test_resume_fails_dropping_and_restarts_requested(orchestrator, runtime, ledger, subject, db):
    ata = _recipient_ata(orchestrator, subject)
    ledger.add_account(ata)
    await db.set_token_account("wallet-1", str(ata))

    interrupted = AirdropRun.new(subject.identity.identity_id, "wallet-1", subject.wallet.sol_address)
    interrupted = interrupted.transition(AirdropState.DROPPING, token_account=str(ata))
    pending = AirdropRun.new(subject.identity.identity_id, "wallet-1", subject.wallet.sol_address)
    await db.save_airdrop_run(interrupted.to_record())
    await db.save_airdrop_run(pending.to_record())

    assert await orchestrator.resume() == 2
    await runtime.drain()

    assert (await orchestrator.get_run(interrupted.run_id)).state == AirdropState.FAILED
    assert (await orchestrator.get_run(pending.run_id)).state == AirdropState.DONE
    # Only the restarted run sent a drop.
    assert ledger.calls["send_raw_transaction"] == 1


# =============================================================================
# Wallet setup
# =============================================================================

@pytest.mark.asyncio
async def test_fund_wallet_only_below_minimum(orchestrator, ledger):
    poor = Keypair().pubkey()
    rich = Keypair().pubkey()
    ledger.balances[rich] = 2_000_000_000

    assert await orchestrator.fund_wallet(str(poor)) == "airdrop-signature"
    assert await orchestrator.fund_wallet(str(rich)) is None
    assert ledger.calls["request_airdrop"] == 1


@pytest.mark.asyncio
async def test_fund_wallet_swallows_ledger_errors(orchestrator, ledger):
    async def broken(address):
        raise LedgerError("down")

    ledger.get_balance = broken

    assert await orchestrator.fund_wallet(str(Keypair().pubkey())) is None


@pytest.mark.asyncio
async def test_provision_emits_event(orchestrator, runtime, ledger, subject):
    ata = _recipient_ata(orchestrator, subject)
    ledger.add_account(ata)
    waiter = runtime.subscribe(TOKEN_ACCOUNT_CREATED, {"walletId": "wallet-1"})

    address = await orchestrator.provision_token_account(subject)
    payload = await waiter.wait(timeout=1.0)

    assert address == str(ata)
    assert payload == {"walletId": "wallet-1", "tokenAccount": str(ata)}


# =============================================================================
# Runtime events
# =============================================================================

@pytest.mark.asyncio
async def test_wait_for_event_matches_payload(runtime):
    waiter = runtime.subscribe("thing.happened", {"id": 2})

    await runtime.emit_event("thing.happened", {"id": 1})
    await runtime.emit_event("other.event", {"id": 2})
    await runtime.emit_event("thing.happened", {"id": 2, "extra": True})

    assert await waiter.wait(timeout=1.0) == {"id": 2, "extra": True}


@pytest.mark.asyncio
async def test_wait_for_event_times_out(runtime):
    assert await runtime.wait_for_event("never", timeout=0.01) is None


@pytest.mark.asyncio
async def test_spawned_failures_are_contained(runtime):
    async def boom():
        raise RuntimeError("boom")

    runtime.spawn("boom", boom())
    await runtime.drain()

    assert runtime.inflight == 0
