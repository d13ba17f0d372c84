"""
Transaction execution models and types.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from wren.config import Settings
from wren.errors import ErrorKind, WrenError


# Wren token has two decimal places
TOKEN_DECIMALS = 2
MINOR_UNITS_PER_MAJOR_UNIT = 10 ** TOKEN_DECIMALS
# SPL token amounts are u64
MAX_MINOR_UNITS = 2 ** 64 - 1


class LedgerError(WrenError):
    """Error talking to the ledger network."""
    kind = ErrorKind.LEDGER_UNAVAILABLE
    detail = "Ledger network is unavailable"


class BuildError(WrenError):
    """Transaction could not be constructed."""
    pass


class InvalidAddressError(BuildError):
    kind = ErrorKind.INVALID_INPUT
    detail = "Invalid address"


class InvalidAmountError(BuildError):
    kind = ErrorKind.INVALID_INPUT
    detail = "Amount must be a non-negative number"


class NonceUnavailableError(BuildError):
    kind = ErrorKind.RESOURCE_UNAVAILABLE
    detail = "Durable nonce is unavailable"


class TokenAccountUnavailableError(BuildError):
    kind = ErrorKind.RESOURCE_UNAVAILABLE
    detail = "Token account is unavailable"


class SubmitErrorKind(str, Enum):
    MALFORMED = "malformed"
    EXHAUSTED = "exhausted"


class SubmissionError(WrenError):
    """Signed transaction could not be submitted."""

    def __init__(self, submit_kind: SubmitErrorKind, message: str = "") -> None:
        super().__init__(message or submit_kind.value)
        self.submit_kind = submit_kind

    @property
    def kind(self) -> ErrorKind:  # type: ignore[override]
        if self.submit_kind is SubmitErrorKind.MALFORMED:
            return ErrorKind.INVALID_INPUT
        return ErrorKind.LEDGER_UNAVAILABLE

    @property
    def detail(self) -> str:  # type: ignore[override]
        if self.submit_kind is SubmitErrorKind.MALFORMED:
            return "Signed transaction is malformed"
        return "Transaction could not be submitted"


class TransactionStatus(str, Enum):
    """Outcome of a submission as far as we could observe it."""
    SUBMITTED = "submitted"      # Accepted for broadcast, confirmation unknown
    CONFIRMED = "confirmed"      # Seen at confirmed/finalized commitment
    FAILED = "failed"            # Ledger reported an execution error


@dataclass(frozen=True)
class LedgerAccounts:
    """Process-wide ledger accounts, read-only and injected at construction."""
    mint: Pubkey
    chest: Keypair
    nonce_account: Pubkey
    nonce_authority: Keypair

    @classmethod
    def from_settings(cls, settings: Settings) -> "LedgerAccounts":
        if not settings.has_ledger_accounts:
            raise ValueError(
                "WREN_TOKEN_MINT_ADDRESS, WREN_CHEST_SECRET_KEY, WREN_NONCE_ACCOUNT_ADDRESS "
                "and WREN_NONCE_AUTHORITY_SECRET_KEY must all be set"
            )
        return cls(
            mint=Pubkey.from_string(settings.token_mint_address),
            chest=Keypair.from_base58_string(settings.chest_secret_key),
            nonce_account=Pubkey.from_string(settings.nonce_account_address),
            nonce_authority=Keypair.from_base58_string(settings.nonce_authority_secret_key),
        )


@dataclass(frozen=True)
class AccountInfo:
    """Raw on-ledger account."""
    address: Pubkey
    lamports: int
    owner: Pubkey
    data: bytes
    executable: bool = False


@dataclass(frozen=True)
class NonceHandle:
    """
    A freshly read durable nonce.

    Single use: feed it to exactly one transaction build and fetch a new one
    for the next.
    """
    current_value: Hash
    advance_instruction: Instruction
    authority: Keypair


@dataclass(frozen=True)
class UnsignedTransfer:
    """Partially signed transfer, ready for the sender's signature."""
    unsigned_transaction: str                   # base64 serialized VersionedTransaction
    organization_id: str
    amount_minor: int
    nonce: str


@dataclass(frozen=True)
class SubmissionReceipt:
    """Result of handing a signed transaction to the ledger."""
    transaction_id: str
    status: TransactionStatus = TransactionStatus.SUBMITTED
    error: Optional[str] = None

    @property
    def is_confirmed(self) -> bool:
        return self.status == TransactionStatus.CONFIRMED
