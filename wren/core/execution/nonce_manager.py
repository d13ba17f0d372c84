"""
Durable nonce coordination.

Every transaction the service builds uses the shared durable nonce account
as its recent blockhash instead of a live blockhash, so a transaction handed
to the client for signing does not expire while the user signs it.

The coordinator never locks and never caches: each build fetches its own
handle. When two builds race on the same nonce value, the ledger accepts the
first and rejects the second as stale.
"""

import logging
import struct
from dataclasses import dataclass
from typing import Optional

from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.system_program import (
    ID as SYSTEM_PROGRAM_ID,
    AdvanceNonceAccountParams,
    advance_nonce_account,
)

from .models import LedgerAccounts, LedgerError, NonceHandle
from .solana_rpc import SolanaRpcClient

logger = logging.getLogger(__name__)

# bincode: u32 version, u32 state, authority[32], durable nonce[32], u64 lamports per signature
NONCE_ACCOUNT_LAYOUT = struct.Struct("<II32s32sQ")
NONCE_ACCOUNT_LENGTH = NONCE_ACCOUNT_LAYOUT.size    # 80
NONCE_STATE_INITIALIZED = 1


@dataclass(frozen=True)
class NonceAccountState:
    """Decoded contents of an initialized nonce account."""
    version: int
    authority: Pubkey
    durable_nonce: Hash
    lamports_per_signature: int


def parse_nonce_account(data: bytes) -> Optional[NonceAccountState]:
    """Decode raw nonce account data, or None when it is not an initialized nonce."""
    if len(data) != NONCE_ACCOUNT_LENGTH:
        return None
    version, state, authority, durable_nonce, fee = NONCE_ACCOUNT_LAYOUT.unpack(data)
    if state != NONCE_STATE_INITIALIZED:
        return None
    return NonceAccountState(
        version=version,
        authority=Pubkey.from_bytes(authority),
        durable_nonce=Hash(durable_nonce),
        lamports_per_signature=fee,
    )


def encode_nonce_account(authority: Pubkey, durable_nonce: Hash, lamports_per_signature: int = 5000) -> bytes:
    """Serialize an initialized nonce account (current version)."""
    return NONCE_ACCOUNT_LAYOUT.pack(
        1,
        NONCE_STATE_INITIALIZED,
        bytes(authority),
        bytes(durable_nonce),
        lamports_per_signature,
    )


class DurableNonceCoordinator:
    """
    Reads the shared nonce account and produces single-use handles.

    Usage:
        coordinator = DurableNonceCoordinator(rpc, accounts)
        handle = await coordinator.fetch()
        if handle is None:
            raise NonceUnavailableError()
        ixs = [handle.advance_instruction, transfer_ix]
    """

    def __init__(self, rpc: SolanaRpcClient, accounts: LedgerAccounts):
        self._rpc = rpc
        self._accounts = accounts

    @property
    def nonce_account(self) -> Pubkey:
        return self._accounts.nonce_account

    async def fetch(self) -> Optional[NonceHandle]:
        """
        Read the current nonce value.

        Returns:
            A fresh handle, or None when the nonce is unavailable. Not retried.
        """
        address = self._accounts.nonce_account
        try:
            info = await self._rpc.get_account_info(address)
        except LedgerError as e:
            logger.warning("Nonce account %s could not be read: %s", address, e)
            return None

        if info is None:
            logger.warning("Nonce account %s does not exist", address)
            return None
        if info.owner != SYSTEM_PROGRAM_ID:
            logger.warning("Account %s is not owned by the system program", address)
            return None

        state = parse_nonce_account(info.data)
        if state is None:
            logger.warning("Account %s is not an initialized nonce account", address)
            return None

        authority = self._accounts.nonce_authority
        if state.authority != authority.pubkey():
            logger.warning(
                "Nonce authority mismatch for %s: on-chain %s, configured %s",
                address,
                state.authority,
                authority.pubkey(),
            )

        advance = advance_nonce_account(
            AdvanceNonceAccountParams(
                nonce_pubkey=address,
                authorized_pubkey=authority.pubkey(),
            )
        )
        return NonceHandle(
            current_value=state.durable_nonce,
            advance_instruction=advance,
            authority=authority,
        )
