"""
Error taxonomy shared by every layer.

Each error carries a fixed ``kind`` and the HTTP status it maps to at the
API boundary. Messages are for logs; clients only ever see the kind and a
fixed detail string.
"""

from enum import Enum


class ErrorKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    UNAUTHENTICATED = "unauthenticated"
    CONFLICT = "conflict"
    RESOURCE_UNAVAILABLE = "resource_unavailable"
    LEDGER_UNAVAILABLE = "ledger_unavailable"


_STATUS = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.CONFLICT: 409,
    ErrorKind.RESOURCE_UNAVAILABLE: 500,
    ErrorKind.LEDGER_UNAVAILABLE: 502,
}


class WrenError(Exception):
    """Base error for the wallet service."""

    kind: ErrorKind = ErrorKind.RESOURCE_UNAVAILABLE
    detail: str = "Request could not be completed"

    @property
    def status_code(self) -> int:
        return _STATUS[self.kind]
