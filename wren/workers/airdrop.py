"""
Airdrop orchestration.

Each drop request is a small persisted state machine run in the background:

    REQUESTED ──► WAITING_FOR_TOKEN_ACCOUNT ──► DROPPING ──► DONE
        └─────────────────────────────────────────┘
    (any non-terminal state) ──► FAILED

A run that reaches DROPPING is never re-dropped: if the process dies there,
the outcome is unknown and the run is marked FAILED on restart.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Set

from solders.pubkey import Pubkey

from wren.auth.models import IdentityWithWallet
from wren.config import Settings
from wren.core.execution import (
    LedgerAccounts,
    LedgerError,
    SolanaRpcClient,
    SubmissionPipeline,
    SubmissionReceipt,
    TokenAccountService,
    TransactionStatus,
    TransferBuilder,
    co_sign,
)
from wren.db.store import Database
from wren.errors import ErrorKind, WrenError

from .runtime import WorkflowRuntime

logger = logging.getLogger(__name__)

TOKEN_ACCOUNT_CREATED = "wallet/token-account.created"


class AirdropState(str, Enum):
    REQUESTED = "requested"
    WAITING_FOR_TOKEN_ACCOUNT = "waiting_for_token_account"
    DROPPING = "dropping"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES: Set[AirdropState] = {AirdropState.DONE, AirdropState.FAILED}

TRANSITIONS: Dict[AirdropState, Set[AirdropState]] = {
    AirdropState.REQUESTED: {
        AirdropState.WAITING_FOR_TOKEN_ACCOUNT,
        AirdropState.DROPPING,
        AirdropState.FAILED,
    },
    AirdropState.WAITING_FOR_TOKEN_ACCOUNT: {
        AirdropState.DROPPING,
        AirdropState.FAILED,
    },
    AirdropState.DROPPING: {
        AirdropState.DONE,
        AirdropState.FAILED,
    },
    AirdropState.DONE: set(),
    AirdropState.FAILED: set(),
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: AirdropState, to_state: AirdropState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid airdrop transition from {from_state.value} to {to_state.value}")


class WalletNotProvisionedError(WrenError):
    kind = ErrorKind.RESOURCE_UNAVAILABLE
    detail = "Wallet is not provisioned"


class TokenAccountTimeoutError(WrenError):
    kind = ErrorKind.RESOURCE_UNAVAILABLE
    detail = "Token account was not created in time"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True, slots=True)
class AirdropRun:
    run_id: str
    identity_id: int
    wallet_id: str
    recipient: str
    state: AirdropState = AirdropState.REQUESTED
    token_account: Optional[str] = None
    transaction_id: Optional[str] = None
    error: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def new(cls, identity_id: int, wallet_id: str, recipient: str, token_account: Optional[str] = None) -> "AirdropRun":
        now = _now()
        return cls(
            run_id=str(uuid.uuid4()),
            identity_id=identity_id,
            wallet_id=wallet_id,
            recipient=recipient,
            token_account=token_account,
            created_at=now,
            updated_at=now,
        )

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, to_state: AirdropState, **changes: Any) -> "AirdropRun":
        if to_state not in TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state, to_state)
        return replace(self, state=to_state, updated_at=_now(), **changes)

    def to_record(self) -> Dict[str, Any]:
        record = asdict(self)
        record["user_id"] = record.pop("identity_id")
        record["state"] = self.state.value
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "AirdropRun":
        return cls(
            run_id=record["run_id"],
            identity_id=int(record["user_id"]),
            wallet_id=record["wallet_id"],
            recipient=record["recipient"],
            state=AirdropState(record["state"]),
            token_account=record.get("token_account"),
            transaction_id=record.get("transaction_id"),
            error=record.get("error"),
            created_at=record["created_at"],
            updated_at=record["updated_at"],
        )

    def to_response(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "state": self.state.value,
            "tokenAccount": self.token_account,
            "transactionId": self.transaction_id,
            "error": self.error,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


class AirdropOrchestrator:
    """Runs airdrops and the wallet setup jobs they depend on."""

    def __init__(
        self,
        *,
        runtime: WorkflowRuntime,
        store: Database,
        rpc: SolanaRpcClient,
        accounts: LedgerAccounts,
        builder: TransferBuilder,
        pipeline: SubmissionPipeline,
        token_accounts: TokenAccountService,
        amount: Decimal = Decimal("1"),
        wait_timeout: float = 60.0,
        sol_airdrop_lamports: int = 1_000_000_000,
        sol_min_balance_lamports: int = 500_000_000,
    ) -> None:
        self._runtime = runtime
        self._store = store
        self._rpc = rpc
        self._accounts = accounts
        self._builder = builder
        self._pipeline = pipeline
        self._token_accounts = token_accounts
        self._amount = amount
        self._wait_timeout = wait_timeout
        self._sol_airdrop_lamports = sol_airdrop_lamports
        self._sol_min_balance_lamports = sol_min_balance_lamports

    @classmethod
    def from_settings(cls, settings: Settings, **collaborators: Any) -> "AirdropOrchestrator":
        return cls(
            amount=settings.airdrop_amount,
            wait_timeout=settings.airdrop_wait_timeout_seconds,
            sol_airdrop_lamports=settings.sol_airdrop_lamports,
            sol_min_balance_lamports=settings.sol_airdrop_min_balance_lamports,
            **collaborators,
        )

    # ---------------------------
    # Requests
    # ---------------------------
    async def request(self, subject: IdentityWithWallet) -> AirdropRun:
        """Persist a new run and start it in the background."""
        wallet = subject.wallet
        if wallet is None:
            raise WalletNotProvisionedError(f"Identity {subject.identity.identity_id} has no wallet")

        run = AirdropRun.new(
            identity_id=subject.identity.identity_id,
            wallet_id=wallet.wallet_id,
            recipient=wallet.sol_address,
            token_account=wallet.token_account_address,
        )
        await self._store.save_airdrop_run(run.to_record())
        logger.info("Airdrop %s requested for wallet %s", run.run_id, run.wallet_id)

        self._runtime.spawn(f"airdrop:{run.run_id}", self._execute(run))
        return run

    async def get_run(self, run_id: str) -> Optional[AirdropRun]:
        record = await self._store.get_airdrop_run(run_id)
        return AirdropRun.from_record(record) if record else None

    async def resume(self) -> int:
        """Restart unfinished runs after a restart. Returns how many were picked up."""
        records = await self._store.list_unfinished_airdrop_runs([s.value for s in TERMINAL_STATES])
        for record in records:
            run = AirdropRun.from_record(record)
            if run.state == AirdropState.DROPPING:
                logger.warning("Airdrop %s was interrupted while dropping; not retrying", run.run_id)
                await self._save(run.transition(AirdropState.FAILED, error="interrupted while dropping"))
                continue
            logger.info("Resuming airdrop %s from %s", run.run_id, run.state.value)
            self._runtime.spawn(f"airdrop:{run.run_id}", self._execute(run))
        return len(records)

    # ---------------------------
    # Workflow
    # ---------------------------
    async def _execute(self, run: AirdropRun) -> AirdropRun:
        try:
            token_account = run.token_account or await self._stored_token_account(run)
            if token_account is None:
                if run.state == AirdropState.REQUESTED:
                    run = await self._save(run.transition(AirdropState.WAITING_FOR_TOKEN_ACCOUNT))
                token_account = await self._wait_for_token_account(run)

            run = await self._save(run.transition(AirdropState.DROPPING, token_account=token_account))
            receipt = await self._drop(run)
            if receipt.status == TransactionStatus.FAILED:
                return await self._save(
                    run.transition(
                        AirdropState.FAILED,
                        transaction_id=receipt.transaction_id,
                        error=receipt.error or "drop failed on ledger",
                    )
                )
            run = await self._save(run.transition(AirdropState.DONE, transaction_id=receipt.transaction_id))
            logger.info("Airdrop %s done: %s", run.run_id, receipt.transaction_id)
            return run
        except Exception as exc:  # noqa: BLE001
            logger.warning("Airdrop %s failed in %s: %s", run.run_id, run.state.value, exc)
            if run.is_terminal:
                return run
            return await self._save(run.transition(AirdropState.FAILED, error=str(exc) or type(exc).__name__))

    async def _wait_for_token_account(self, run: AirdropRun) -> str:
        waiter = self._runtime.subscribe(TOKEN_ACCOUNT_CREATED, {"walletId": run.wallet_id})
        try:
            existing = await self._stored_token_account(run)
            if existing:
                return existing
            self._runtime.spawn(
                f"token-account:{run.wallet_id}",
                self._provision(run.wallet_id, run.recipient),
            )
            payload = await waiter.wait(self._wait_timeout)
        finally:
            waiter.cancel()

        if payload is None:
            raise TokenAccountTimeoutError(f"No token account for wallet {run.wallet_id} after {self._wait_timeout}s")
        return payload["tokenAccount"]

    async def _drop(self, run: AirdropRun) -> SubmissionReceipt:
        chest = self._accounts.chest
        unsigned = await self._builder.build_transfer(str(chest.pubkey()), run.recipient, self._amount)
        signed = co_sign(unsigned.unsigned_transaction, chest)
        return await self._pipeline.submit(signed)

    async def _stored_token_account(self, run: AirdropRun) -> Optional[str]:
        wallet = await self._store.find_wallet_by_identity(run.identity_id)
        if wallet is None:
            return None
        return wallet.get("token_account_address")

    async def _save(self, run: AirdropRun) -> AirdropRun:
        await self._store.save_airdrop_run(run.to_record())
        return run

    # ---------------------------
    # Wallet setup jobs
    # ---------------------------
    def schedule_wallet_setup(self, subject: IdentityWithWallet) -> None:
        """Fund a new wallet with test SOL and create its token account in the background."""
        wallet = subject.wallet
        if wallet is None:
            return
        self._runtime.spawn(f"fund:{wallet.wallet_id}", self.fund_wallet(wallet.sol_address))
        self._runtime.spawn(f"token-account:{wallet.wallet_id}", self.provision_token_account(subject))

    async def provision_token_account(self, subject: IdentityWithWallet) -> Optional[str]:
        wallet = subject.wallet
        if wallet is None:
            return None
        return await self._provision(wallet.wallet_id, wallet.sol_address)

    async def _provision(self, wallet_id: str, owner: str) -> str:
        address = str(await self._token_accounts.ensure(Pubkey.from_string(owner)))
        if not await self._store.set_token_account(wallet_id, address):
            logger.debug("Token account for wallet %s was already recorded", wallet_id)
        await self._runtime.emit_event(TOKEN_ACCOUNT_CREATED, {"walletId": wallet_id, "tokenAccount": address})
        return address

    async def fund_wallet(self, address: str) -> Optional[str]:
        """Request test SOL when the balance is below the minimum. Failures are only logged."""
        try:
            owner = Pubkey.from_string(address)
            balance = await self._rpc.get_balance(owner)
            if balance >= self._sol_min_balance_lamports:
                return None
            signature = await self._rpc.request_airdrop(owner, self._sol_airdrop_lamports)
            logger.info("Requested %d lamports for %s: %s", self._sol_airdrop_lamports, address, signature)
            return signature
        except (LedgerError, ValueError) as exc:
            logger.warning("Could not fund %s: %s", address, exc)
            return None
