"""
Authentication service for passkey-backed Turnkey wallets.

Flow:
1. Client checks GET /api/registration-status/{email}
2. New users run the passkey ceremony in the browser and POST /api/register
   with the challenge and attestation; we create a Turnkey sub-organization
   holding their wallet, persist the identity, and open a session
3. Returning users stamp a Turnkey ``whoami`` request with their passkey and
   POST it to /api/authenticate; we forward it and map the organization
   back to an identity
4. The session id travels in the ``sessionId`` header from then on
"""

import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, Optional

from solders.pubkey import Pubkey

from wren.config import LAMPORTS_PER_SOL
from wren.core.execution import SolanaRpcClient
from wren.db.store import Database, DuplicateEmailError
from wren.providers.turnkey import TurnkeyClient

from .models import (
    AlreadyRegisteredError,
    Identity,
    IdentityWithWallet,
    RegistrationError,
    SessionExpiredError,
    SignedRequest,
    UnknownIdentityError,
    Wallet,
    WalletWithBalance,
)
from .sessions import SessionStore

if TYPE_CHECKING:
    from wren.workers.airdrop import AirdropOrchestrator

logger = logging.getLogger(__name__)


def _identity_from_row(row: Dict[str, Any]) -> Identity:
    return Identity(
        identity_id=row["user_id"],
        external_org_id=row["sub_org_id"],
        email=row["user_email"],
    )


def _wallet_from_row(row: Dict[str, Any]) -> Wallet:
    return Wallet(
        wallet_id=row["wallet_id"],
        eth_address=row["eth_address"],
        sol_address=row["sol_address"],
        token_account_address=row.get("token_account_address"),
    )


def _normalize_email(email: str) -> str:
    normalized = (email or "").strip().lower()
    local, _, domain = normalized.partition("@")
    if not local or not domain:
        raise RegistrationError(f"Invalid email: {email!r}")
    return normalized


def _lamports_to_sol(lamports: int) -> str:
    return f"{Decimal(lamports) / Decimal(LAMPORTS_PER_SOL):f}"


class AuthService:
    """Registration, sign-in and session lookups."""

    def __init__(
        self,
        *,
        store: Database,
        sessions: SessionStore,
        turnkey: TurnkeyClient,
        rpc: SolanaRpcClient,
        airdrops: Optional["AirdropOrchestrator"] = None,
    ):
        self.store = store
        self.sessions = sessions
        self.turnkey = turnkey
        self.rpc = rpc
        self.airdrops = airdrops

    async def registration_status(self, email: str) -> bool:
        return await self.store.find_user_by_email(_normalize_email(email)) is not None

    async def register(self, email: str, challenge: str, attestation: Dict[str, Any]) -> str:
        """
        Create the identity and its Turnkey wallet, then open a session.

        Wallet funding and token-account creation are scheduled in the
        background and do not delay the response.

        Returns:
            Session id
        """
        email = _normalize_email(email)
        if not challenge or not attestation:
            raise RegistrationError("challenge and attestation are required")
        if await self.store.find_user_by_email(email) is not None:
            raise AlreadyRegisteredError(email)

        sub_org = await self.turnkey.create_sub_organization(email, challenge, attestation)
        if not sub_org.sol_address:
            raise RegistrationError(f"Sub-organization {sub_org.sub_org_id} has no Solana account")

        try:
            user_id = await self.store.create_user(email, sub_org.sub_org_id)
        except DuplicateEmailError as e:
            raise AlreadyRegisteredError(email) from e

        await self.store.save_wallet(
            user_id,
            sub_org.wallet_id,
            sub_org.eth_address,
            sub_org.sol_address,
        )

        subject = IdentityWithWallet(
            identity=Identity(identity_id=user_id, external_org_id=sub_org.sub_org_id, email=email),
            wallet=Wallet(
                wallet_id=sub_org.wallet_id,
                eth_address=sub_org.eth_address,
                sol_address=sub_org.sol_address,
            ),
        )
        logger.info("Registered identity %s (org %s)", user_id, sub_org.sub_org_id)

        if self.airdrops is not None:
            self.airdrops.schedule_wallet_setup(subject)

        return await self.sessions.create(subject.to_session())

    async def authenticate(self, signed_request: SignedRequest) -> str:
        """Forward a passkey-stamped ``whoami`` and open a session for its organization."""
        organization_id = await self.turnkey.forward_signed_request(
            signed_request.url,
            signed_request.body,
            signed_request.stamp.stamp_header_name,
            signed_request.stamp.stamp_header_value,
        )

        row = await self.store.find_user_by_sub_org(organization_id)
        if row is None:
            raise UnknownIdentityError(f"No identity for organization {organization_id}")

        identity = _identity_from_row(row)
        wallet_row = await self.store.find_wallet_by_identity(identity.identity_id)
        subject = IdentityWithWallet(
            identity=identity,
            wallet=_wallet_from_row(wallet_row) if wallet_row else None,
        )
        logger.info("Authenticated identity %s", identity.identity_id)
        return await self.sessions.create(subject.to_session())

    async def current(self, session_id: Optional[str]) -> IdentityWithWallet:
        """
        Resolve a session to its identity.

        A snapshot without a token account is refreshed from the store and
        the wallet is merged back into the session once the account exists.

        Raises:
            SessionExpiredError: For empty, unknown or expired sessions
        """
        payload = await self.sessions.get(session_id)
        if payload is None:
            raise SessionExpiredError("Session is absent or expired")

        subject = IdentityWithWallet.from_session(payload)
        if subject.wallet is not None and subject.wallet.token_account_address:
            return subject

        wallet_row = await self.store.find_wallet_by_identity(subject.identity.identity_id)
        if wallet_row is None:
            return subject

        wallet = _wallet_from_row(wallet_row)
        if wallet != subject.wallet:
            subject = IdentityWithWallet(identity=subject.identity, wallet=wallet)
            await self.sessions.merge(session_id, {"wallet": wallet.model_dump(mode="json")})
        return subject

    async def whoami(self, subject: IdentityWithWallet) -> Dict[str, Any]:
        """Identity plus wallet with live balances."""
        wallet = subject.wallet
        wallet_with_balance = None
        if wallet is not None:
            owner = Pubkey.from_string(wallet.sol_address)
            lamports = await self.rpc.get_balance(owner)
            wren_balance = None
            if wallet.token_account_address:
                balance = await self.rpc.get_token_account_balance(
                    Pubkey.from_string(wallet.token_account_address)
                )
                wren_balance = balance.ui_amount_string
            wallet_with_balance = WalletWithBalance(
                wallet_id=wallet.wallet_id,
                eth_address=wallet.eth_address,
                sol_address=wallet.sol_address,
                sol_balance=_lamports_to_sol(lamports),
                token_account_address=wallet.token_account_address,
                wren_balance=wren_balance,
            )

        return {
            "identity": subject.identity,
            "wallet": wallet_with_balance,
        }

    async def logout(self, session_id: Optional[str]) -> None:
        await self.sessions.delete(session_id)
