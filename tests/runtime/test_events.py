"""Unit tests for EventBus."""

from __future__ import annotations

from councilflow.runtime.events import EventBus
from councilflow.runtime.models.enums import EventType
from councilflow.runtime.models.events import PipelineEvent


async def test_emit_delivers_envelope() -> None:
    bus = EventBus()
    received: list[PipelineEvent] = []
    bus.on(EventType.RUN_STARTED, received.append)

    envelope = await bus.emit(EventType.RUN_STARTED, run_id="run_1", pipelineId="p")

    assert received == [envelope]
    assert envelope.event_type == "run:started"
    assert envelope.run_id == "run_1"
    assert envelope.payload == {"pipelineId": "p"}
    assert envelope.event_id
    assert envelope.timestamp is not None


async def test_wildcard_receives_everything() -> None:
    bus = EventBus()
    seen: list[str] = []
    bus.on("*", lambda e: seen.append(e.event_type))

    await bus.emit("a")
    await bus.emit("b")

    assert seen == ["a", "b"]


async def test_off_and_unsubscribe() -> None:
    bus = EventBus()
    seen: list[str] = []

    def listener(event: PipelineEvent) -> None:
        seen.append(event.event_type)

    unsubscribe = bus.on("a", listener)
    bus.on("b", listener)
    unsubscribe()
    bus.off("b", listener)
    bus.off("never", listener)

    await bus.emit("a")
    await bus.emit("b")
    assert seen == []
    assert bus.listener_count() == 0


async def test_once_delivers_a_single_time() -> None:
    bus = EventBus()
    seen: list[int] = []
    bus.once("tick", lambda e: seen.append(e.payload["n"]))

    await bus.emit("tick", n=1)
    await bus.emit("tick", n=2)

    assert seen == [1]
    assert bus.listener_count("tick") == 0


async def test_failing_listener_does_not_stop_others() -> None:
    bus = EventBus()
    seen: list[str] = []

    def broken(event: PipelineEvent) -> None:
        raise RuntimeError("listener bug")

    async def broken_async(event: PipelineEvent) -> None:
        raise ValueError("async listener bug")

    bus.on("a", broken)
    bus.on("a", broken_async)
    bus.on("a", lambda e: seen.append("sync"))

    await bus.emit("a")
    assert seen == ["sync"]


async def test_async_listeners_are_awaited_in_order() -> None:
    bus = EventBus()
    order: list[str] = []

    async def first(event: PipelineEvent) -> None:
        order.append("first")

    bus.on("a", first)
    bus.on("a", lambda e: order.append("second"))
    bus.on("*", lambda e: order.append("wildcard"))

    await bus.emit("a")
    assert order == ["first", "second", "wildcard"]


def test_listener_count_and_clear() -> None:
    bus = EventBus()
    bus.on("a", print)
    bus.on("a", repr)
    bus.on("b", print)

    assert bus.listener_count("a") == 2
    assert bus.listener_count() == 3
    bus.clear()
    assert bus.listener_count() == 0
