from __future__ import annotations

import asyncio
from datetime import timezone

from telephony.events import CallEnded, CallStarted, EventBus, EventDispatcher


def _stasis_start(call_id: str, **caller) -> dict:
    return {
        "type": "StasisStart",
        "timestamp": "2024-03-07T10:15:30.123+0000",
        "channel": {"id": call_id, "name": f"PJSIP/{call_id}", "caller": caller},
    }


def _stasis_end(call_id: str) -> dict:
    return {"type": "StasisEnd", "channel": {"id": call_id}}


def _drain(subscription) -> list:
    events = []
    while subscription.pending:
        events.append(subscription.get_nowait())
    return events


def test_stasis_start_becomes_call_started_with_caller_identity():
    async def _run():
        bus = EventBus()
        sub = bus.subscribe()
        await EventDispatcher(bus).dispatch(_stasis_start("C1", name="Alice", number="555-0100"))
        return _drain(sub)

    [event] = asyncio.run(_run())
    assert isinstance(event, CallStarted)
    assert event.call_id == "C1"
    assert event.caller.name == "Alice"
    assert event.caller.number == "555-0100"
    assert event.timestamp.tzinfo is not None
    assert event.timestamp.astimezone(timezone.utc).hour == 10


def test_missing_caller_fields_default_to_empty_strings():
    async def _run():
        bus = EventBus()
        sub = bus.subscribe()
        dispatcher = EventDispatcher(bus)
        await dispatcher.dispatch({"type": "StasisStart", "channel": {"id": "C1"}})
        await dispatcher.dispatch({"type": "StasisStart", "channel": {"id": "C2", "caller": None}})
        return _drain(sub)

    events = asyncio.run(_run())
    assert [(e.caller.name, e.caller.number) for e in events] == [("", ""), ("", "")]


def test_end_is_only_published_after_its_start():
    async def _run():
        bus = EventBus()
        sub = bus.subscribe()
        dispatcher = EventDispatcher(bus)
        await dispatcher.dispatch(_stasis_end("C1"))
        await dispatcher.dispatch(_stasis_start("C1"))
        await dispatcher.dispatch(_stasis_end("C1"))
        await dispatcher.dispatch(_stasis_end("C1"))
        return _drain(sub)

    events = asyncio.run(_run())
    assert [type(e) for e in events] == [CallStarted, CallEnded]
    assert all(e.call_id == "C1" for e in events)


def test_malformed_event_does_not_block_following_events():
    async def _run():
        bus = EventBus()
        sub = bus.subscribe()
        dispatcher = EventDispatcher(bus)
        await dispatcher.dispatch({"type": "StasisStart", "channel": "garbage"})
        await dispatcher.dispatch({"type": "StasisStart"})
        await dispatcher.dispatch({})
        await dispatcher.dispatch(_stasis_start("C2", number="555-0101"))
        return _drain(sub)

    events = asyncio.run(_run())
    assert [e.call_id for e in events] == ["C2"]


def test_media_events_go_to_media_handler_only():
    received = []

    async def _run():
        bus = EventBus()
        sub = bus.subscribe()

        async def media_handler(event):
            received.append(event["type"])

        dispatcher = EventDispatcher(bus, media_handler=media_handler)
        await dispatcher.dispatch({"type": "PlaybackFinished", "playback": {"id": "p1"}})
        await dispatcher.dispatch({"type": "RecordingStarted", "recording": {"name": "r1"}})
        await dispatcher.dispatch({"type": "ChannelDtmfReceived", "digit": "1"})
        return _drain(sub)

    assert asyncio.run(_run()) == []
    assert received == ["PlaybackFinished", "RecordingStarted"]


def test_failing_media_handler_is_contained():
    async def _run():
        bus = EventBus()
        sub = bus.subscribe()

        def media_handler(event):
            raise RuntimeError("boom")

        dispatcher = EventDispatcher(bus, media_handler=media_handler)
        await dispatcher.dispatch({"type": "PlaybackFinished", "playback": {"id": "p1"}})
        await dispatcher.dispatch(_stasis_start("C3"))
        return _drain(sub)

    assert [e.call_id for e in asyncio.run(_run())] == ["C3"]


def test_every_subscriber_sees_events_in_order():
    async def _run():
        bus = EventBus()
        first, second = bus.subscribe(), bus.subscribe()
        dispatcher = EventDispatcher(bus)
        for call_id in ["A", "B"]:
            await dispatcher.dispatch(_stasis_start(call_id))
        await dispatcher.dispatch(_stasis_end("A"))
        second.close()
        await dispatcher.dispatch(_stasis_end("B"))
        return _drain(first), _drain(second), bus.subscriber_count

    first, second, remaining = asyncio.run(_run())
    assert [(type(e).__name__, e.call_id) for e in first] == [
        ("CallStarted", "A"),
        ("CallStarted", "B"),
        ("CallEnded", "A"),
        ("CallEnded", "B"),
    ]
    assert len(second) == 3
    assert remaining == 1


def test_channel_destroyed_ends_call_once():
    async def _run():
        bus = EventBus()
        sub = bus.subscribe()
        dispatcher = EventDispatcher(bus)
        await dispatcher.dispatch(_stasis_start("C1"))
        await dispatcher.dispatch({"type": "ChannelDestroyed", "channel": {"id": "C1"}, "cause": 16})
        await dispatcher.dispatch(_stasis_end("C1"))
        return _drain(sub)

    events = asyncio.run(_run())
    assert [type(e) for e in events] == [CallStarted, CallEnded]


def test_open_calls_are_bounded_and_oldest_is_forgotten():
    async def _run():
        bus = EventBus()
        sub = bus.subscribe()
        dispatcher = EventDispatcher(bus, max_open_calls=2)
        for call_id in ("C1", "C2", "C3"):
            await dispatcher.dispatch(_stasis_start(call_id))
        _drain(sub)
        for call_id in ("C1", "C2", "C3"):
            await dispatcher.dispatch(_stasis_end(call_id))
        return _drain(sub)

    events = asyncio.run(_run())
    assert [e.call_id for e in events] == ["C2", "C3"]
    assert all(isinstance(e, CallEnded) for e in events)
