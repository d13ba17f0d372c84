"""
Structured logging configuration using structlog.

Every wren module logs through stdlib ``logging``; records are rendered by
structlog as JSON lines or as a colored console view. Session tokens,
transactions in flight and key material are masked before rendering.
"""

import logging
import sys
from typing import Any, MutableMapping, Optional

import structlog

from .config import settings

REDACTED = "[redacted]"

SENSITIVE_KEYS = frozenset(
    {
        "sessionid",
        "session_id",
        "signed_transaction",
        "unsigned_transaction",
        "chest_secret_key",
        "nonce_authority_secret_key",
        "turnkey_api_private_key",
        "stamp_header_value",
        "x-stamp",
    }
)


def redact_secrets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask values whose key names a secret. Nested dicts are masked one level down."""
    for key, value in list(event_dict.items()):
        if key.lower() in SENSITIVE_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(value, dict):
            event_dict[key] = {
                k: (REDACTED if str(k).lower() in SENSITIVE_KEYS else v) for k, v in value.items()
            }
    return event_dict


def _use_console(log_format: str, level: int) -> bool:
    if log_format == "console":
        return True
    if log_format == "json":
        return False
    return level == logging.DEBUG or sys.stdout.isatty()


def setup_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Configure structlog and route stdlib logging through it.

    Args:
        log_level: Override log level (default: settings.log_level)
        log_format: ``json``, ``console`` or ``auto`` (default: settings.log_format)
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    console = _use_console((log_format or settings.log_format).lower(), level)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if console:
        renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer()
    else:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # RPC and identity-provider traffic is logged by our own clients
    for name in ("uvicorn.access", "httpcore", "httpx", "aiosqlite", "solana"):
        logging.getLogger(name).setLevel(logging.WARNING)
