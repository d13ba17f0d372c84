from typing import Any, Dict

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/healthz")
async def health_check(request: Request) -> Dict[str, Any]:
    """Health check endpoint that verifies the durable nonce, ledger and stores"""
    services = request.app.state.services

    checks: Dict[str, Dict[str, Any]] = {}

    handle = await services.nonces.fetch()
    checks["nonce"] = (
        {"status": "healthy", "value": str(handle.current_value)}
        if handle is not None
        else {"status": "unavailable"}
    )

    checks["database"] = {"status": "healthy" if services.store.is_connected else "unavailable"}
    checks["sessions"] = {"status": "healthy", "ttl_seconds": services.sessions.ttl_seconds}
    checks["workflows"] = {"status": "healthy" if services.runtime.is_running else "stopped",
                           "inflight": services.runtime.inflight}

    all_healthy = all(check["status"] == "healthy" for check in checks.values())

    return {
        "status": "healthy" if all_healthy else "degraded",
        "checks": checks,
    }
