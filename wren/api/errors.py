import logging

from fastapi import HTTPException

from wren.errors import WrenError

logger = logging.getLogger(__name__)


def http_error(exc: WrenError) -> HTTPException:
    """Map a domain error to its HTTP status with a fixed detail. The message stays in the logs."""
    log = logger.error if exc.status_code >= 500 else logger.info
    log("%s: %s", type(exc).__name__, exc)
    return HTTPException(
        status_code=exc.status_code,
        detail={"error": exc.kind.value, "message": exc.detail},
    )
