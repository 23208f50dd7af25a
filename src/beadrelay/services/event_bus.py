from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Coroutine

logger = logging.getLogger(__name__)

Listener = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]

RUN_STARTED = "run_started"
RUN_FINISHED = "run_finished"
STEP_STARTED = "step_started"
STEP_TRANSITION = "step_transition"
STEP_FINISHED = "step_finished"
WORKER_DISPATCHED = "worker_dispatched"
WORKER_RETURNED = "worker_returned"
DECISION_POINT = "decision_point"


class EventBus:
    """Async pub/sub for orchestration progress.

    Listeners subscribe to an event type (or "*" for all events) and are
    awaited one after another in subscription order. A failing listener is
    logged and does not stop the others or the run.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def subscribe(self, event_type: str, listener: Listener) -> None:
        self._listeners.setdefault(event_type, []).append(listener)

    def unsubscribe(self, event_type: str, listener: Listener) -> None:
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    async def publish(self, event_type: str, data: dict[str, Any]) -> None:
        event = {
            "type": event_type,
            "timestamp": datetime.now().isoformat(),
            **data,
        }
        targets = [*self._listeners.get(event_type, []), *self._listeners.get("*", [])]
        for listener in targets:
            try:
                await listener(event)
            except Exception:
                logger.exception("Event listener error for %s", event_type)
