"""
Transaction execution: nonce, building, submission and the ledger client.
"""

from .models import (
    MINOR_UNITS_PER_MAJOR_UNIT,
    TOKEN_DECIMALS,
    AccountInfo,
    BuildError,
    InvalidAddressError,
    InvalidAmountError,
    LedgerAccounts,
    LedgerError,
    NonceHandle,
    NonceUnavailableError,
    SubmissionError,
    SubmissionReceipt,
    SubmitErrorKind,
    TokenAccountUnavailableError,
    TransactionStatus,
    UnsignedTransfer,
)
from .solana_rpc import SolanaRpcClient, SolanaRpcConfig, TokenBalance
from .nonce_manager import DurableNonceCoordinator
from .tx_builder import (
    TransferBuilder,
    co_sign,
    decode_transaction,
    encode_transaction,
    sign_partial,
    to_major_units,
    to_minor_units,
)
from .executor import EXHAUSTED, UNCONFIRMED, SubmissionPipeline
from .token_accounts import TokenAccountService

__all__ = [
    # Models
    "AccountInfo",
    "LedgerAccounts",
    "NonceHandle",
    "SubmissionReceipt",
    "TransactionStatus",
    "UnsignedTransfer",
    "MINOR_UNITS_PER_MAJOR_UNIT",
    "TOKEN_DECIMALS",
    # Errors
    "BuildError",
    "InvalidAddressError",
    "InvalidAmountError",
    "LedgerError",
    "NonceUnavailableError",
    "SubmissionError",
    "SubmitErrorKind",
    "TokenAccountUnavailableError",
    # Ledger
    "SolanaRpcClient",
    "SolanaRpcConfig",
    "TokenBalance",
    # Nonce
    "DurableNonceCoordinator",
    # Builder
    "TransferBuilder",
    "co_sign",
    "decode_transaction",
    "encode_transaction",
    "sign_partial",
    "to_major_units",
    "to_minor_units",
    # Submission
    "EXHAUSTED",
    "UNCONFIRMED",
    "SubmissionPipeline",
    # Token accounts
    "TokenAccountService",
]
