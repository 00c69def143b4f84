"""Call lifecycle events and the dispatcher that derives them from raw ARI events."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

LOGGER = logging.getLogger(__name__)

# Raw ARI event types consumed by CallActions rather than the orchestrator.
MEDIA_EVENT_TYPES = frozenset(
    {
        "PlaybackStarted",
        "PlaybackFinished",
        "RecordingStarted",
        "RecordingFinished",
        "RecordingFailed",
    }
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class CallerIdentity:
    name: str = ""
    number: str = ""


@dataclass(frozen=True, slots=True)
class CallStarted:
    call_id: str
    caller: CallerIdentity = field(default_factory=CallerIdentity)
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True, slots=True)
class CallEnded:
    call_id: str
    timestamp: datetime = field(default_factory=_utcnow)


CallLifecycleEvent = Union[CallStarted, CallEnded]


class Subscription:
    """FIFO view of an EventBus for one consumer."""

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self._queue: asyncio.Queue[CallLifecycleEvent] = asyncio.Queue()

    def put(self, event: CallLifecycleEvent) -> None:
        self._queue.put_nowait(event)

    async def get(self) -> CallLifecycleEvent:
        return await self._queue.get()

    def get_nowait(self) -> CallLifecycleEvent:
        return self._queue.get_nowait()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self._bus.unsubscribe(self)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> CallLifecycleEvent:
        return await self.get()


class EventBus:
    """Broadcast channel for call lifecycle events.

    Each subscriber gets its own unbounded queue, so publishing never blocks
    and every subscriber sees events in publish order.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscription] = []

    def subscribe(self) -> Subscription:
        subscription = Subscription(self)
        self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def publish(self, event: CallLifecycleEvent) -> None:
        for subscription in list(self._subscribers):
            subscription.put(event)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


MediaHandler = Callable[[dict[str, Any]], Awaitable[None] | None]


class EventDispatcher:
    """Turns raw ARI notifications into CallStarted/CallEnded on the bus.

    StasisStart becomes CallStarted; StasisEnd (or ChannelDestroyed, should
    StasisEnd be lost) becomes CallEnded. Playback and recording events are
    handed to ``media_handler`` untouched. A CallEnded is only
    published for channels whose CallStarted went out first, and one broken
    payload is logged and skipped without affecting the next.
    """

    def __init__(
        self,
        bus: EventBus,
        *,
        media_handler: MediaHandler | None = None,
        max_open_calls: int = 10_000,
    ) -> None:
        self._bus = bus
        self._media_handler = media_handler
        self._max_open_calls = max_open_calls
        # Insertion-ordered so the oldest channel is dropped first when full.
        self._open_calls: OrderedDict[str, None] = OrderedDict()

    def set_media_handler(self, handler: MediaHandler) -> None:
        self._media_handler = handler

    async def dispatch(self, event: dict[str, Any]) -> None:
        event_type = str(event.get("type") or "")
        try:
            if event_type == "StasisStart":
                self._on_stasis_start(event)
            elif event_type in ("StasisEnd", "ChannelDestroyed"):
                self._on_stasis_end(event)
            elif event_type in MEDIA_EVENT_TYPES and self._media_handler is not None:
                result = self._media_handler(event)
                if inspect.isawaitable(result):
                    await result
        except Exception:
            LOGGER.exception("Failed to dispatch ARI event %s", event_type or "<untyped>")

    def _on_stasis_start(self, event: dict[str, Any]) -> None:
        channel = _as_dict(event.get("channel"))
        call_id = str(channel.get("id") or "")
        if not call_id:
            LOGGER.warning("StasisStart without channel id; ignoring")
            return

        caller = _as_dict(channel.get("caller"))
        identity = CallerIdentity(
            name=str(caller.get("name") or ""),
            number=str(caller.get("number") or ""),
        )
        self._open_calls[call_id] = None
        self._open_calls.move_to_end(call_id)
        while len(self._open_calls) > self._max_open_calls:
            stale, _ = self._open_calls.popitem(last=False)
            LOGGER.warning(
                "Forgetting channel %s: no StasisEnd within %d newer calls", stale, self._max_open_calls
            )
        LOGGER.info("Incoming call %s from %s", call_id, identity.number or "<unknown>")
        self._bus.publish(
            CallStarted(call_id=call_id, caller=identity, timestamp=_event_time(event))
        )

    def _on_stasis_end(self, event: dict[str, Any]) -> None:
        channel = _as_dict(event.get("channel"))
        call_id = str(channel.get("id") or "")
        if call_id not in self._open_calls:
            LOGGER.debug("End of unknown channel %r; ignoring", call_id)
            return

        del self._open_calls[call_id]
        LOGGER.info("Call %s left the application", call_id)
        self._bus.publish(CallEnded(call_id=call_id, timestamp=_event_time(event)))


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _event_time(event: dict[str, Any]) -> datetime:
    raw = event.get("timestamp")
    if isinstance(raw, str) and raw:
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            # Older Asterisk releases use +0000 offsets.
            try:
                parsed = datetime.strptime(raw, "%Y-%m-%dT%H:%M:%S.%f%z")
            except ValueError:
                return _utcnow()
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return _utcnow()
