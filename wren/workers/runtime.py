from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Coroutine, Dict, List, Optional


@dataclass(slots=True)
class RuntimeEvent:
    type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EventWaiter:
    """Pending interest in one event matching ``type`` and every ``match`` key."""

    def __init__(self, runtime: "WorkflowRuntime", event_type: str, match: Dict[str, Any]) -> None:
        self._runtime = runtime
        self.event_type = event_type
        self.match = dict(match)
        self._future: asyncio.Future[RuntimeEvent] = asyncio.get_running_loop().create_future()

    def matches(self, event: RuntimeEvent) -> bool:
        if event.type != self.event_type:
            return False
        return all(event.payload.get(key) == value for key, value in self.match.items())

    def resolve(self, event: RuntimeEvent) -> None:
        if not self._future.done():
            self._future.set_result(event)

    async def wait(self, timeout: float) -> Optional[Dict[str, Any]]:
        """Payload of the matching event, or None after ``timeout`` seconds."""
        try:
            event = await asyncio.wait_for(asyncio.shield(self._future), timeout=timeout)
            return event.payload
        except asyncio.TimeoutError:
            return None
        finally:
            self.cancel()

    def cancel(self) -> None:
        self._runtime._unsubscribe(self)
        if not self._future.done():
            self._future.cancel()


class WorkflowRuntime:
    """In-process runtime for background workflows and the events they wait on."""

    def __init__(self, *, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("workflow_runtime")
        self._inflight: set[asyncio.Task] = set()
        self._waiters: Dict[str, List[EventWaiter]] = {}
        self._running = True

    # ---------------------------
    # Tasks
    # ---------------------------
    def spawn(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        if not self._running:
            coro.close()
            raise RuntimeError("Workflow runtime is stopped")
        task = asyncio.create_task(self._run(name, coro), name=name)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _run(self, name: str, coro: Coroutine[Any, Any, Any]) -> Any:
        try:
            return await coro
        except asyncio.CancelledError:
            self.logger.info("Workflow %s cancelled", name)
            raise
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("Workflow %s failed: %s", name, exc, exc_info=True)
            return None

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def drain(self) -> None:
        """Wait for every in-flight workflow, including ones spawned meanwhile."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # ---------------------------
    # Events
    # ---------------------------
    def subscribe(self, event_type: str, match: Optional[Dict[str, Any]] = None) -> EventWaiter:
        waiter = EventWaiter(self, event_type, match or {})
        self._waiters.setdefault(event_type, []).append(waiter)
        return waiter

    def _unsubscribe(self, waiter: EventWaiter) -> None:
        waiters = self._waiters.get(waiter.event_type)
        if waiters and waiter in waiters:
            waiters.remove(waiter)
            if not waiters:
                self._waiters.pop(waiter.event_type, None)

    async def emit_event(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> None:
        event = RuntimeEvent(type=event_type, payload=dict(payload or {}))
        self.logger.debug("Event %s emitted", event_type)
        for waiter in list(self._waiters.get(event_type, [])):
            if waiter.matches(event):
                waiter.resolve(event)

    async def wait_for_event(
        self,
        event_type: str,
        match: Optional[Dict[str, Any]] = None,
        timeout: float = 60.0,
    ) -> Optional[Dict[str, Any]]:
        return await self.subscribe(event_type, match).wait(timeout)

    # ---------------------------
    # Lifecycle
    # ---------------------------
    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self.logger.info("Workflow runtime stopping with %d in-flight", len(self._inflight))

        for waiters in list(self._waiters.values()):
            for waiter in list(waiters):
                waiter.cancel()

        for task in list(self._inflight):
            task.cancel()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        self._inflight.clear()

    @property
    def is_running(self) -> bool:
        return self._running
