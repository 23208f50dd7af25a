from __future__ import annotations

import pytest

from beadrelay.services import event_bus as events
from beadrelay.services.event_bus import EventBus


@pytest.mark.asyncio
class TestEventBus:
    async def test_subscribe_and_publish(self, event_bus: EventBus) -> None:
        received: list[dict] = []

        async def listener(event: dict) -> None:
            received.append(event)

        event_bus.subscribe(events.STEP_STARTED, listener)
        await event_bus.publish(events.STEP_STARTED, {"anchor": "step-1", "bead_id": "bd-1"})

        assert len(received) == 1
        assert received[0]["type"] == "step_started"
        assert received[0]["bead_id"] == "bd-1"
        assert "timestamp" in received[0]

    async def test_wildcard_subscription(self, event_bus: EventBus) -> None:
        received: list[dict] = []

        async def listener(event: dict) -> None:
            received.append(event)

        event_bus.subscribe("*", listener)

        await event_bus.publish(events.WORKER_DISPATCHED, {"worker": "strategist"})
        await event_bus.publish(events.WORKER_RETURNED, {"worker": "strategist"})

        assert [e["type"] for e in received] == ["worker_dispatched", "worker_returned"]

    async def test_specific_listeners_run_before_wildcard(self, event_bus: EventBus) -> None:
        order: list[str] = []

        async def wildcard(event: dict) -> None:
            order.append("wildcard")

        async def specific(event: dict) -> None:
            order.append("specific")

        event_bus.subscribe("*", wildcard)
        event_bus.subscribe(events.DECISION_POINT, specific)
        await event_bus.publish(events.DECISION_POINT, {"kind": "drift"})

        assert order == ["specific", "wildcard"]

    async def test_unsubscribe(self, event_bus: EventBus) -> None:
        received: list[dict] = []

        async def listener(event: dict) -> None:
            received.append(event)

        event_bus.subscribe(events.RUN_STARTED, listener)
        await event_bus.publish(events.RUN_STARTED, {"run_id": "a"})
        assert len(received) == 1

        event_bus.unsubscribe(events.RUN_STARTED, listener)
        await event_bus.publish(events.RUN_STARTED, {"run_id": "b"})
        assert len(received) == 1  # no new events

    async def test_no_listeners(self, event_bus: EventBus) -> None:
        # Should not raise
        await event_bus.publish("unheard_event", {"data": "ignored"})

    async def test_listener_error_does_not_break_others(self, event_bus: EventBus) -> None:
        received: list[dict] = []

        async def bad_listener(event: dict) -> None:
            raise RuntimeError("boom")

        async def good_listener(event: dict) -> None:
            received.append(event)

        event_bus.subscribe(events.STEP_FINISHED, bad_listener)
        event_bus.subscribe(events.STEP_FINISHED, good_listener)

        await event_bus.publish(events.STEP_FINISHED, {"state": "done"})
        assert len(received) == 1
