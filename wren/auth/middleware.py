"""
FastAPI authentication dependencies.
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader

from .models import AuthError, IdentityWithWallet
from .service import AuthService


SESSION_HEADER = "sessionId"

# Session token header scheme
session_scheme = APIKeyHeader(name=SESSION_HEADER, auto_error=False)


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.services.auth


async def require_session(
    session_id: Optional[str] = Depends(session_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> IdentityWithWallet:
    """
    Require a live session for an endpoint.

    Raises HTTPException 401 if the header is missing or the session is
    absent or expired.
    """
    if not session_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )

    try:
        return await auth_service.current(session_id)
    except AuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.detail,
        )
