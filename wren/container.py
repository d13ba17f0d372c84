"""
Service wiring.

Builds every collaborator once from settings and hands them to the app. The
shared ledger accounts are parsed here and injected read-only; nothing else
reads secrets from configuration.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .auth.service import AuthService
from .auth.sessions import SessionStore
from .config import Settings
from .core.execution import (
    DurableNonceCoordinator,
    LedgerAccounts,
    SolanaRpcClient,
    SubmissionPipeline,
    TokenAccountService,
    TransferBuilder,
)
from .db.store import Database
from .providers.turnkey import TurnkeyClient
from .workers.airdrop import AirdropOrchestrator
from .workers.runtime import WorkflowRuntime

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    accounts: LedgerAccounts
    store: Database
    sessions: SessionStore
    rpc: SolanaRpcClient
    turnkey: TurnkeyClient
    nonces: DurableNonceCoordinator
    pipeline: SubmissionPipeline
    token_accounts: TokenAccountService
    builder: TransferBuilder
    runtime: WorkflowRuntime
    airdrops: AirdropOrchestrator
    auth: AuthService

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        accounts: Optional[LedgerAccounts] = None,
        store: Optional[Database] = None,
        sessions: Optional[SessionStore] = None,
        rpc: Optional[SolanaRpcClient] = None,
        turnkey: Optional[TurnkeyClient] = None,
    ) -> "ServiceContainer":
        """Wire the object graph. Any leaf collaborator may be supplied instead of built."""
        accounts = accounts or LedgerAccounts.from_settings(settings)
        store = store or Database(settings.database_path)
        sessions = sessions or SessionStore.from_settings(settings)
        rpc = rpc or SolanaRpcClient.from_settings(settings)
        turnkey = turnkey or TurnkeyClient.from_settings(settings)

        nonces = DurableNonceCoordinator(rpc, accounts)
        pipeline = SubmissionPipeline.from_settings(rpc, settings)
        token_accounts = TokenAccountService(
            rpc,
            accounts,
            nonces,
            pipeline,
            confirm_timeout=settings.token_account_confirm_timeout_seconds,
        )
        builder = TransferBuilder(accounts, nonces, token_accounts)
        runtime = WorkflowRuntime()
        airdrops = AirdropOrchestrator.from_settings(
            settings,
            runtime=runtime,
            store=store,
            rpc=rpc,
            accounts=accounts,
            builder=builder,
            pipeline=pipeline,
            token_accounts=token_accounts,
        )
        auth = AuthService(
            store=store,
            sessions=sessions,
            turnkey=turnkey,
            rpc=rpc,
            airdrops=airdrops,
        )

        return cls(
            settings=settings,
            accounts=accounts,
            store=store,
            sessions=sessions,
            rpc=rpc,
            turnkey=turnkey,
            nonces=nonces,
            pipeline=pipeline,
            token_accounts=token_accounts,
            builder=builder,
            runtime=runtime,
            airdrops=airdrops,
            auth=auth,
        )

    async def start(self) -> None:
        if not self.store.is_connected:
            await self.store.connect()
        resumed = await self.airdrops.resume()
        if resumed:
            logger.info("Resumed %d unfinished airdrops", resumed)

    async def close(self) -> None:
        await self.runtime.stop()
        await self.sessions.close()
        await self.rpc.close()
        await self.store.close()
