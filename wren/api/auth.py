"""
Authentication API endpoints.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from wren.auth import (
    AuthService,
    Identity,
    IdentityWithWallet,
    SignedRequest,
    WalletWithBalance,
    get_auth_service,
    require_session,
    session_scheme,
)
from wren.errors import WrenError

from .errors import http_error


router = APIRouter(prefix="/api", tags=["auth"])


class RegistrationStatusResponse(BaseModel):
    registered: bool


class RegisterRequest(BaseModel):
    """Passkey registration: the browser's challenge and attestation."""
    email: str
    challenge: str
    attestation: Dict[str, Any]


class AuthenticateRequest(BaseModel):
    """A Turnkey ``whoami`` request stamped by the user's passkey."""
    model_config = ConfigDict(populate_by_name=True)

    signed_whoami_request: SignedRequest = Field(alias="signedWhoamiRequest")


class SessionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")


class WhoamiResponse(BaseModel):
    identity: Identity
    wallet: Optional[WalletWithBalance] = None


class MessageResponse(BaseModel):
    message: str


@router.get("/registration-status/{email}", response_model=RegistrationStatusResponse)
async def registration_status(
    email: str,
    auth_service: AuthService = Depends(get_auth_service),
):
    try:
        registered = await auth_service.registration_status(email)
    except WrenError as e:
        raise http_error(e)
    return RegistrationStatusResponse(registered=registered)


@router.post("/register", response_model=SessionResponse)
async def register(
    request: RegisterRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Register a new identity.

    Creates the Turnkey sub-organization and wallet, stores the identity, and
    schedules wallet funding and token-account creation in the background.
    """
    try:
        session_id = await auth_service.register(
            request.email,
            request.challenge,
            request.attestation,
        )
    except WrenError as e:
        raise http_error(e)
    return SessionResponse(session_id=session_id)


@router.post("/authenticate", response_model=SessionResponse)
async def authenticate(
    request: AuthenticateRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """Sign in by forwarding a passkey-stamped whoami request."""
    try:
        session_id = await auth_service.authenticate(request.signed_whoami_request)
    except WrenError as e:
        raise http_error(e)
    return SessionResponse(session_id=session_id)


@router.get("/whoami", response_model=WhoamiResponse)
async def whoami(
    subject: IdentityWithWallet = Depends(require_session),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Current identity with live wallet balances."""
    try:
        result = await auth_service.whoami(subject)
    except WrenError as e:
        raise http_error(e)
    return WhoamiResponse(**result)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    _: IdentityWithWallet = Depends(require_session),
    session_id: Optional[str] = Depends(session_scheme),
    auth_service: AuthService = Depends(get_auth_service),
):
    await auth_service.logout(session_id)
    return MessageResponse(message="Logged out")
