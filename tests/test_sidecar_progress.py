import asyncio

import pytest

from capslap.sidecar.core.protocol import ProgressEvent
from capslap.sidecar.progress import ProgressBroker


def _event(rid: str, progress: float = 0.5) -> ProgressEvent:
    return ProgressEvent(id=rid, status="working", progress=progress)


def test_request_routing_delivers_only_to_matching_id():
    broker = ProgressBroker("request")
    seen_a: list[ProgressEvent] = []
    seen_b: list[ProgressEvent] = []
    broker.subscribe("A", seen_a.append)
    broker.subscribe("B", seen_b.append)
    assert broker.publish(_event("A")) is True
    assert broker.publish(_event("B", 0.7)) is True
    assert [e.id for e in seen_a] == ["A"]
    assert [e.id for e in seen_b] == ["B"]


def test_request_routing_drops_unknown_and_unsubscribed_ids():
    broker = ProgressBroker("request")
    seen: list[ProgressEvent] = []
    broker.subscribe("A", seen.append)
    broker.unsubscribe("A")
    assert broker.publish(_event("A")) is False
    assert broker.publish(_event("nobody")) is False
    assert seen == []


def test_latest_routing_sends_everything_to_most_recent_handler():
    broker = ProgressBroker("latest")
    first: list[ProgressEvent] = []
    second: list[ProgressEvent] = []
    broker.subscribe("A", first.append)
    broker.publish(_event("A", 0.1))
    broker.subscribe("B", second.append)
    # events for A now reach B's handler: one shared handler, not per call
    broker.publish(_event("A", 0.2))
    broker.publish(_event("B", 0.3))
    assert [e.progress for e in first] == [0.1]
    assert [(e.id, e.progress) for e in second] == [("A", 0.2), ("B", 0.3)]
    broker.unsubscribe("B")
    assert broker.active_handler is not None


def test_handler_exception_is_contained(log_messages):
    broker = ProgressBroker()

    def boom(_):
        raise RuntimeError("ui gone")

    broker.subscribe("A", boom)
    assert broker.publish(_event("A")) is True
    assert any("Progress handler failed" in m for m in log_messages)


def test_unknown_routing_mode_rejected():
    with pytest.raises(ValueError):
        ProgressBroker("broadcast")  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_async_handler_is_scheduled():
    broker = ProgressBroker()
    seen: list[float] = []
    done = asyncio.Event()

    async def handler(event: ProgressEvent) -> None:
        seen.append(event.progress)
        done.set()

    broker.subscribe("A", handler)
    broker.publish(_event("A", 0.9))
    await asyncio.wait_for(done.wait(), 1.0)
    assert seen == [0.9]
