from .runtime import EventWaiter, RuntimeEvent, WorkflowRuntime
from .airdrop import (
    TOKEN_ACCOUNT_CREATED,
    AirdropOrchestrator,
    AirdropRun,
    AirdropState,
    InvalidTransitionError,
    TRANSITIONS,
)

__all__ = [
    "AirdropOrchestrator",
    "AirdropRun",
    "AirdropState",
    "EventWaiter",
    "InvalidTransitionError",
    "RuntimeEvent",
    "TOKEN_ACCOUNT_CREATED",
    "TRANSITIONS",
    "WorkflowRuntime",
]
