"""
Shared fakes for the ledger and the identity provider.
"""

from collections import Counter
from typing import Any, Callable, Dict, List, Optional

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.transaction import VersionedTransaction
from spl.token.constants import TOKEN_PROGRAM_ID

from wren.core.execution import AccountInfo, LedgerAccounts, TokenBalance
from wren.core.execution.nonce_manager import encode_nonce_account
from wren.providers.turnkey import IdentityProviderError, SubOrganization

NONCE_VALUE = Hash(bytes(range(32)))


class FakeLedger:
    """In-memory stand-in for SolanaRpcClient that counts every call."""

    def __init__(self) -> None:
        self.accounts: Dict[Pubkey, AccountInfo] = {}
        self.balances: Dict[Pubkey, int] = {}
        self.token_balances: Dict[Pubkey, int] = {}
        self.calls: Counter = Counter()
        self.sent: List[VersionedTransaction] = []
        self.send_errors: List[Exception] = []
        self.status: Optional[Dict[str, Any]] = {"confirmationStatus": "confirmed", "err": None}
        self.on_send: Optional[Callable[[VersionedTransaction], None]] = None

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    def add_account(self, address: Pubkey, owner: Pubkey = TOKEN_PROGRAM_ID, data: bytes = b"", lamports: int = 2_039_280) -> None:
        self.accounts[address] = AccountInfo(address=address, lamports=lamports, owner=owner, data=data)

    def add_nonce_account(self, address: Pubkey, authority: Pubkey, value: Hash = NONCE_VALUE) -> None:
        self.add_account(address, owner=SYSTEM_PROGRAM_ID, data=encode_nonce_account(authority, value), lamports=1_447_680)

    async def get_account_info(self, address: Pubkey) -> Optional[AccountInfo]:
        self.calls["get_account_info"] += 1
        return self.accounts.get(address)

    async def get_balance(self, address: Pubkey) -> int:
        self.calls["get_balance"] += 1
        return self.balances.get(address, 0)

    async def get_token_account_balance(self, address: Pubkey) -> TokenBalance:
        self.calls["get_token_account_balance"] += 1
        amount = self.token_balances.get(address, 0)
        return TokenBalance(amount=amount, decimals=2, ui_amount_string=f"{amount / 100:g}")

    async def send_raw_transaction(self, raw: bytes, max_retries: Optional[int] = None, skip_preflight: bool = False) -> str:
        self.calls["send_raw_transaction"] += 1
        if self.send_errors:
            raise self.send_errors.pop(0)
        tx = VersionedTransaction.from_bytes(raw)
        self.sent.append(tx)
        if self.on_send is not None:
            self.on_send(tx)
        return str(tx.signatures[0])

    async def get_signature_statuses(self, signatures: List[str]) -> List[Optional[Dict[str, Any]]]:
        self.calls["get_signature_statuses"] += 1
        return [self.status for _ in signatures]

    async def request_airdrop(self, address: Pubkey, lamports: int) -> str:
        self.calls["request_airdrop"] += 1
        self.balances[address] = self.balances.get(address, 0) + lamports
        return "airdrop-signature"

    async def close(self) -> None:
        return None


class FakeTurnkey:
    """Identity provider stub returning fixed wallets."""

    def __init__(self, sol_address: str, eth_address: str = "0x" + "ab" * 20) -> None:
        self.sol_address = sol_address
        self.eth_address = eth_address
        self.organizations: Dict[str, str] = {}
        self.created: List[str] = []
        self.whoami_org: Optional[str] = None

    async def create_sub_organization(self, email: str, challenge: str, attestation: Dict[str, Any]) -> SubOrganization:
        self.created.append(email)
        org_id = f"org-{len(self.created)}"
        return SubOrganization(
            sub_org_id=org_id,
            wallet_id=f"wallet-{len(self.created)}",
            addresses=[self.eth_address, self.sol_address],
        )

    async def forward_signed_request(self, url: str, body: str, stamp_header_name: str, stamp_header_value: str) -> str:
        if self.whoami_org is None:
            raise IdentityProviderError("unexpected forward")
        return self.whoami_org


@pytest.fixture
def accounts() -> LedgerAccounts:
    return LedgerAccounts(
        mint=Keypair().pubkey(),
        chest=Keypair(),
        nonce_account=Keypair().pubkey(),
        nonce_authority=Keypair(),
    )


@pytest.fixture
def ledger(accounts: LedgerAccounts) -> FakeLedger:
    fake = FakeLedger()
    fake.add_nonce_account(accounts.nonce_account, accounts.nonce_authority.pubkey())
    return fake


@pytest.fixture
def make_turnkey() -> Callable[..., FakeTurnkey]:
    return FakeTurnkey
