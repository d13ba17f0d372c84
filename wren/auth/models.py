"""
Authentication models and exceptions.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from wren.errors import ErrorKind, WrenError


class AuthError(WrenError):
    """Base authentication error."""
    kind = ErrorKind.UNAUTHENTICATED
    detail = "Authentication required"


class SessionExpiredError(AuthError):
    """Session is absent or past its TTL."""
    pass


class RegistrationError(WrenError):
    """Registration input was rejected."""
    kind = ErrorKind.INVALID_INPUT
    detail = "Registration request is invalid"


class AlreadyRegisteredError(RegistrationError):
    """An identity already exists for this email."""
    kind = ErrorKind.CONFLICT
    detail = "Email is already registered"


class UnknownIdentityError(AuthError):
    """The identity provider vouched for an organization we do not know."""
    detail = "No user found for this credential"


class Identity(BaseModel):
    """Registered identity. Immutable once created."""
    model_config = ConfigDict(frozen=True)

    identity_id: int
    external_org_id: str
    email: str


class Wallet(BaseModel):
    """Wallet provisioned by the identity provider."""
    model_config = ConfigDict(frozen=True)

    wallet_id: str
    eth_address: str
    sol_address: str
    token_account_address: Optional[str] = None


class IdentityWithWallet(BaseModel):
    """Identity enriched with its wallet."""
    model_config = ConfigDict(frozen=True)

    identity: Identity
    wallet: Optional[Wallet] = None

    @classmethod
    def from_session(cls, payload: Dict[str, Any]) -> "IdentityWithWallet":
        return cls(
            identity=Identity.model_validate(payload["identity"]),
            wallet=Wallet.model_validate(payload["wallet"]) if payload.get("wallet") else None,
        )

    def to_session(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class WalletWithBalance(BaseModel):
    """Wallet plus live balances."""
    model_config = ConfigDict(frozen=True)

    wallet_id: str
    eth_address: str
    sol_address: str
    sol_balance: str
    token_account_address: Optional[str] = None
    wren_balance: Optional[str] = None


class Stamp(BaseModel):
    """Signature header produced by the client's passkey ceremony."""
    stamp_header_name: str = Field(alias="stampHeaderName")
    stamp_header_value: str = Field(alias="stampHeaderValue")

    model_config = ConfigDict(populate_by_name=True)


class SignedRequest(BaseModel):
    """A client-stamped identity provider request to be forwarded."""
    url: str
    body: str
    stamp: Stamp
