"""
Transaction builder for Wren token transfers.

Every transfer is a v0 message whose first instruction advances the shared
durable nonce and whose recent blockhash is the nonce value. The builder
signs only with keys the server holds; the sender's slot is left empty for
the client to fill.
"""

import base64
import binascii
import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING, Iterable, List, Union

from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0, to_bytes_versioned
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import transfer
from spl.token.models import TransferParams

from .models import (
    MAX_MINOR_UNITS,
    MINOR_UNITS_PER_MAJOR_UNIT,
    TOKEN_DECIMALS,
    InvalidAddressError,
    InvalidAmountError,
    LedgerAccounts,
    NonceUnavailableError,
    UnsignedTransfer,
)
from .nonce_manager import DurableNonceCoordinator

if TYPE_CHECKING:
    from .token_accounts import TokenAccountService

logger = logging.getLogger(__name__)

Amount = Union[str, int, float, Decimal]

_MINOR_QUANTUM = Decimal(1)
_MAJOR_QUANTUM = Decimal(1).scaleb(-TOKEN_DECIMALS)     # 0.01


# =============================================================================
# Amounts
# =============================================================================

def to_minor_units(amount_major: Amount) -> int:
    """
    Convert a major-unit amount to minor units, rounding half-up.

    ``1.23`` → ``123``. Floats go through ``str`` first so ``0.1`` stays 10.

    Raises:
        InvalidAmountError: For negative, non-finite, non-numeric or
            out-of-range input
    """
    if isinstance(amount_major, bool):
        raise InvalidAmountError(f"Not an amount: {amount_major!r}")
    try:
        value = amount_major if isinstance(amount_major, Decimal) else Decimal(str(amount_major).strip())
    except (InvalidOperation, ValueError) as e:
        raise InvalidAmountError(f"Not an amount: {amount_major!r}") from e

    if not value.is_finite() or value < 0:
        raise InvalidAmountError(f"Amount out of range: {amount_major!r}")

    try:
        minor = int((value * MINOR_UNITS_PER_MAJOR_UNIT).quantize(_MINOR_QUANTUM, rounding=ROUND_HALF_UP))
    except ArithmeticError as e:
        raise InvalidAmountError(f"Amount out of range: {amount_major!r}") from e

    if minor > MAX_MINOR_UNITS:
        raise InvalidAmountError(f"Amount out of range: {amount_major!r}")
    return minor


def to_major_units(amount_minor: int) -> Decimal:
    """Convert minor units back to a major-unit amount with two decimals."""
    return (Decimal(amount_minor) / MINOR_UNITS_PER_MAJOR_UNIT).quantize(_MAJOR_QUANTUM)


def parse_address(address: str) -> Pubkey:
    try:
        return Pubkey.from_string(address.strip())
    except Exception as e:  # noqa: BLE001 - solders parse errors vary by version
        raise InvalidAddressError(f"Invalid address: {address!r}") from e


# =============================================================================
# Signing
# =============================================================================

def sign_partial(
    payer: Pubkey,
    instructions: List[Instruction],
    recent_blockhash: Hash,
    signers: Iterable[Keypair],
) -> VersionedTransaction:
    """
    Compile a v0 message and sign it with the given keys only.

    Required signer slots without a matching key keep the default (all-zero)
    signature.
    """
    message = MessageV0.try_compile(payer, instructions, [], recent_blockhash)
    signatures = [Signature.default()] * message.header.num_required_signatures
    return _apply_signatures(message, signatures, signers)


def co_sign(payload: str, keypair: Keypair) -> str:
    """Add ``keypair``'s signature to a base64 transaction and return it re-encoded."""
    tx = decode_transaction(payload)
    signed = _apply_signatures(tx.message, list(tx.signatures), [keypair])
    return encode_transaction(signed)


def encode_transaction(tx: VersionedTransaction) -> str:
    return base64.b64encode(bytes(tx)).decode("ascii")


def decode_transaction(payload: str) -> VersionedTransaction:
    """
    Decode a base64 serialized versioned transaction.

    Raises:
        ValueError: If the payload is not base64 or not a transaction
    """
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, TypeError) as e:
        raise ValueError("Payload is not valid base64") from e
    if not raw:
        raise ValueError("Payload is empty")
    try:
        return VersionedTransaction.from_bytes(raw)
    except Exception as e:  # noqa: BLE001 - solders raises its own parse errors
        raise ValueError(f"Payload is not a transaction: {e}") from e


def _apply_signatures(
    message: MessageV0,
    signatures: List[Signature],
    signers: Iterable[Keypair],
) -> VersionedTransaction:
    required = message.header.num_required_signatures
    signer_keys = list(message.account_keys[:required])
    message_bytes = to_bytes_versioned(message)

    for keypair in signers:
        pubkey = keypair.pubkey()
        if pubkey not in signer_keys:
            raise ValueError(f"{pubkey} is not a required signer of this transaction")
        signatures[signer_keys.index(pubkey)] = keypair.sign_message(message_bytes)

    return VersionedTransaction.populate(message, signatures)


# =============================================================================
# Transfers
# =============================================================================

class TransferBuilder:
    """
    Builds unsigned Wren transfers against the durable nonce.

    Usage:
        builder = TransferBuilder(accounts, nonces, token_accounts)
        unsigned = await builder.build_transfer(sender, recipient, "0.02", org_id)
        # client signs unsigned.unsigned_transaction, then SubmissionPipeline.submit
    """

    def __init__(
        self,
        accounts: LedgerAccounts,
        nonces: DurableNonceCoordinator,
        token_accounts: "TokenAccountService",
    ):
        self._accounts = accounts
        self._nonces = nonces
        self._token_accounts = token_accounts

    async def build_transfer(
        self,
        sender: str,
        recipient: str,
        amount_major: Amount,
        organization_id: str = "",
    ) -> UnsignedTransfer:
        """
        Build a transfer of ``amount_major`` Wren from ``sender`` to ``recipient``.

        Args:
            sender: Sender wallet address (fee payer and token owner)
            recipient: Recipient wallet address
            amount_major: Amount in whole tokens, e.g. ``"0.02"``
            organization_id: Signing organization echoed back to the client

        Returns:
            UnsignedTransfer carrying only the nonce authority's signature

        Raises:
            InvalidAddressError, InvalidAmountError, NonceUnavailableError,
            TokenAccountUnavailableError
        """
        sender_key = parse_address(sender)
        recipient_key = parse_address(recipient)
        amount_minor = to_minor_units(amount_major)

        # Creating the recipient account advances the nonce, so it happens first.
        recipient_ata = await self._token_accounts.ensure(recipient_key)
        sender_ata = self._token_accounts.address_for(sender_key)

        handle = await self._nonces.fetch()
        if handle is None:
            raise NonceUnavailableError("Durable nonce could not be read")

        transfer_ix = transfer(
            TransferParams(
                program_id=TOKEN_PROGRAM_ID,
                source=sender_ata,
                dest=recipient_ata,
                owner=sender_key,
                amount=amount_minor,
                signers=[],
            )
        )

        tx = sign_partial(
            payer=sender_key,
            instructions=[handle.advance_instruction, transfer_ix],
            recent_blockhash=handle.current_value,
            signers=[handle.authority],
        )

        logger.info(
            "Built transfer of %s minor units from %s to %s",
            amount_minor,
            sender_key,
            recipient_key,
        )

        return UnsignedTransfer(
            unsigned_transaction=encode_transaction(tx),
            organization_id=organization_id,
            amount_minor=amount_minor,
            nonce=str(handle.current_value),
        )
