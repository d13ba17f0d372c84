from .service import AuthService
from .sessions import SessionStore
from .models import (
    AlreadyRegisteredError,
    AuthError,
    Identity,
    IdentityWithWallet,
    RegistrationError,
    SessionExpiredError,
    SignedRequest,
    Stamp,
    UnknownIdentityError,
    Wallet,
    WalletWithBalance,
)
from .middleware import SESSION_HEADER, get_auth_service, require_session, session_scheme

__all__ = [
    "AuthService",
    "SessionStore",
    "AlreadyRegisteredError",
    "AuthError",
    "Identity",
    "IdentityWithWallet",
    "RegistrationError",
    "SessionExpiredError",
    "SignedRequest",
    "Stamp",
    "UnknownIdentityError",
    "Wallet",
    "WalletWithBalance",
    "SESSION_HEADER",
    "get_auth_service",
    "require_session",
    "session_scheme",
]
