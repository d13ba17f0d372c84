"""
Associated token accounts for the Wren mint.

Creation is billed to the chest and goes through the durable nonce like any
other transaction the service builds.
"""

import logging
from typing import TYPE_CHECKING

from solders.pubkey import Pubkey
from spl.token.instructions import create_associated_token_account, get_associated_token_address

from .models import (
    LedgerAccounts,
    NonceUnavailableError,
    SubmissionError,
    TokenAccountUnavailableError,
)
from .nonce_manager import DurableNonceCoordinator
from .solana_rpc import SolanaRpcClient
from .tx_builder import sign_partial

if TYPE_CHECKING:
    from .executor import SubmissionPipeline

logger = logging.getLogger(__name__)


class TokenAccountService:
    """
    Check-then-create for a wallet's Wren token account.

    Two callers may both see the account missing and both try to create it;
    the loser's transaction fails on the ledger, and the re-read afterwards
    finds the winner's account, so both report success.
    """

    def __init__(
        self,
        rpc: SolanaRpcClient,
        accounts: LedgerAccounts,
        nonces: DurableNonceCoordinator,
        pipeline: "SubmissionPipeline",
        confirm_timeout: float = 30.0,
    ):
        self._rpc = rpc
        self._accounts = accounts
        self._nonces = nonces
        self._pipeline = pipeline
        self._confirm_timeout = confirm_timeout

    def address_for(self, owner: Pubkey) -> Pubkey:
        """Deterministic token account address for ``owner``."""
        return get_associated_token_address(owner, self._accounts.mint)

    async def ensure(self, owner: Pubkey) -> Pubkey:
        """
        Return ``owner``'s token account, creating it first if missing.

        Raises:
            NonceUnavailableError: When creation is needed and the nonce cannot be read
            TokenAccountUnavailableError: When the account still does not exist afterwards
            LedgerError: When the account cannot be read at all
        """
        address = self.address_for(owner)
        if await self._rpc.get_account_info(address) is not None:
            return address

        handle = await self._nonces.fetch()
        if handle is None:
            raise NonceUnavailableError("Durable nonce could not be read")

        chest = self._accounts.chest
        create_ix = create_associated_token_account(chest.pubkey(), owner, self._accounts.mint)
        tx = sign_partial(
            payer=chest.pubkey(),
            instructions=[handle.advance_instruction, create_ix],
            recent_blockhash=handle.current_value,
            signers=[handle.authority, chest],
        )

        logger.info("Creating token account %s for %s", address, owner)
        try:
            receipt = await self._pipeline.submit_transaction(tx, confirm_timeout=self._confirm_timeout)
        except SubmissionError as e:
            logger.warning("Token account creation for %s was not submitted: %s", owner, e)
        else:
            if receipt.error:
                logger.warning(
                    "Token account creation %s failed: %s",
                    receipt.transaction_id,
                    receipt.error,
                )

        if await self._rpc.get_account_info(address) is None:
            raise TokenAccountUnavailableError(f"Token account {address} was not created")
        return address
