"""In-process event bus for ticket events with replay and a persistence hook."""

from __future__ import annotations

import asyncio
import inspect
import threading
from collections import deque
from collections.abc import Awaitable, Callable, Coroutine, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Final, cast

from ticketforge.domain._fields import as_datetime, utc_now
from ticketforge.domain.events import EventType, TicketEvent, as_json_object
from ticketforge.domain.ids import generate_event_id

Subscriber = Callable[[TicketEvent], object]
PersistenceCallback = Callable[[TicketEvent], object]

_DEFAULT_ERROR_BUFFER: Final[int] = 1024
DEFAULT_PERSISTED_EVENT_TYPES: Final[frozenset[EventType]] = frozenset(
    {
        EventType.TICKET_DRIFTED,
        EventType.TICKET_LOCK_FORCED,
        EventType.TICKET_GENERATION_TIMED_OUT,
        EventType.DRIFT_CHECK_FAILED,
    }
)


@dataclass(frozen=True, slots=True)
class DispatchError:
    """Subscriber or persistence failure captured without interrupting publishers."""

    stage: str
    event_id: str
    target: str
    error_type: str
    message: str


@dataclass(frozen=True, slots=True)
class _Subscription:
    token: int
    event_type: EventType | None
    callback: Subscriber


class EventBus:
    """Event bus with sync and async subscribers and a bounded replay buffer.

    Events whose type is in ``persisted_event_types`` are handed to
    ``persist_event`` before subscribers run. Failures in either are recorded
    as ``DispatchError`` and returned, never raised to the publisher.
    """

    def __init__(
        self,
        *,
        buffer_size: int = 512,
        persist_event: PersistenceCallback | None = None,
        persisted_event_types: Sequence[str | EventType] | None = None,
    ) -> None:
        if not isinstance(buffer_size, int) or isinstance(buffer_size, bool):
            raise ValueError(f"buffer_size must be an integer, got {type(buffer_size).__name__}")
        if buffer_size <= 0:
            raise ValueError("buffer_size must be > 0")
        if persist_event is not None and not callable(persist_event):
            raise ValueError("persist_event must be callable")

        self._buffer = deque[TicketEvent](maxlen=buffer_size)
        self._subscriptions: dict[int, _Subscription] = {}
        self._pending_async_tasks: set[asyncio.Task[None]] = set()
        self._dispatch_errors = deque[DispatchError](maxlen=_DEFAULT_ERROR_BUFFER)
        self._next_token = 1
        self._lock = threading.RLock()
        self._persist_event = persist_event
        self._persisted_types = (
            DEFAULT_PERSISTED_EVENT_TYPES
            if persisted_event_types is None
            else frozenset(EventType(item) for item in persisted_event_types)
        )

    def subscribe(self, event_type: str | EventType | None, callback: Subscriber) -> int:
        """Subscribe to one event type, or to all events when ``event_type`` is ``None``."""

        if not callable(callback):
            raise ValueError("callback must be callable")
        normalized = None if event_type is None else EventType(event_type)
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscriptions[token] = _Subscription(token, normalized, callback)
        return token

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            return self._subscriptions.pop(token, None) is not None

    def publish(self, event: TicketEvent) -> tuple[DispatchError, ...]:
        """Publish from synchronous code.

        Async subscribers are scheduled on the running loop when there is one
        (await ``drain_async`` to settle them) and run to completion otherwise.
        """

        persistence, subscriptions = self._record(event)
        running_loop = _current_running_loop()
        errors: list[DispatchError] = []

        if persistence is not None and event.event_type in self._persisted_types:
            error = self._invoke(persistence, event, stage="persistence", loop=running_loop)
            if error is not None:
                errors.append(error)

        for subscription in subscriptions:
            if subscription.event_type not in (None, event.event_type):
                continue
            error = self._invoke(
                subscription.callback, event, stage="subscriber", loop=running_loop
            )
            if error is not None:
                errors.append(error)

        return self._keep_errors(errors)

    async def publish_async(self, event: TicketEvent) -> tuple[DispatchError, ...]:
        """Publish from async code, awaiting async subscribers in order."""

        persistence, subscriptions = self._record(event)
        errors: list[DispatchError] = []

        if persistence is not None and event.event_type in self._persisted_types:
            error = await self._invoke_async(persistence, event, stage="persistence")
            if error is not None:
                errors.append(error)

        for subscription in subscriptions:
            if subscription.event_type not in (None, event.event_type):
                continue
            error = await self._invoke_async(subscription.callback, event, stage="subscriber")
            if error is not None:
                errors.append(error)

        return self._keep_errors(errors)

    def emit(
        self,
        event_type: str | EventType,
        payload: Mapping[str, object],
        *,
        correlation_id: str | None = None,
        timestamp: datetime | None = None,
    ) -> tuple[TicketEvent, tuple[DispatchError, ...]]:
        event = build_event(event_type, payload, correlation_id=correlation_id, timestamp=timestamp)
        return event, self.publish(event)

    async def emit_async(
        self,
        event_type: str | EventType,
        payload: Mapping[str, object],
        *,
        correlation_id: str | None = None,
        timestamp: datetime | None = None,
    ) -> tuple[TicketEvent, tuple[DispatchError, ...]]:
        event = build_event(event_type, payload, correlation_id=correlation_id, timestamp=timestamp)
        return event, await self.publish_async(event)

    async def drain_async(self) -> tuple[DispatchError, ...]:
        """Await async subscriber tasks scheduled by ``publish``."""

        with self._lock:
            pending = tuple(self._pending_async_tasks)
            self._pending_async_tasks.clear()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        return self.dispatch_errors()

    def replay(
        self,
        *,
        since: datetime | str | None = None,
        event_type: str | EventType | None = None,
        limit: int | None = None,
    ) -> tuple[TicketEvent, ...]:
        """Buffered events in publish order, optionally filtered."""

        since_dt = None if since is None else as_datetime(since, "since")
        type_filter = None if event_type is None else EventType(event_type)
        with self._lock:
            events = tuple(self._buffer)

        filtered = [
            event
            for event in events
            if (since_dt is None or event.timestamp > since_dt)
            and (type_filter is None or event.event_type is type_filter)
        ]
        if limit is not None:
            if limit <= 0:
                return ()
            filtered = filtered[-limit:]
        return tuple(filtered)

    def dispatch_errors(self) -> tuple[DispatchError, ...]:
        with self._lock:
            return tuple(self._dispatch_errors)

    def _record(
        self, event: TicketEvent
    ) -> tuple[PersistenceCallback | None, tuple[_Subscription, ...]]:
        if not isinstance(event, TicketEvent):
            raise ValueError(f"event must be TicketEvent, got {type(event).__name__}")
        with self._lock:
            self._buffer.append(event)
            return self._persist_event, tuple(self._subscriptions.values())

    def _keep_errors(self, errors: list[DispatchError]) -> tuple[DispatchError, ...]:
        if errors:
            with self._lock:
                self._dispatch_errors.extend(errors)
        return tuple(errors)

    def _invoke(
        self,
        callback: Callable[[TicketEvent], object],
        event: TicketEvent,
        *,
        stage: str,
        loop: asyncio.AbstractEventLoop | None,
    ) -> DispatchError | None:
        target = _callback_name(callback)
        try:
            result = callback(event)
            if inspect.isawaitable(result):
                coroutine = _as_coroutine(result)
                if loop is None:
                    asyncio.run(coroutine)
                    return None
                task = loop.create_task(coroutine)
                with self._lock:
                    self._pending_async_tasks.add(task)
                task.add_done_callback(
                    lambda done: self._on_task_done(done, stage=stage, target=target, event=event)
                )
            return None
        except Exception as exc:  # noqa: BLE001
            return _dispatch_error(stage=stage, event=event, target=target, exc=exc)

    async def _invoke_async(
        self,
        callback: Callable[[TicketEvent], object],
        event: TicketEvent,
        *,
        stage: str,
    ) -> DispatchError | None:
        try:
            result = callback(event)
            if inspect.isawaitable(result):
                await result
            return None
        except Exception as exc:  # noqa: BLE001
            return _dispatch_error(
                stage=stage, event=event, target=_callback_name(callback), exc=exc
            )

    def _on_task_done(
        self,
        task: asyncio.Task[None],
        *,
        stage: str,
        target: str,
        event: TicketEvent,
    ) -> None:
        with self._lock:
            self._pending_async_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, Exception):
            error = _dispatch_error(stage=stage, event=event, target=target, exc=exc)
            with self._lock:
                self._dispatch_errors.append(error)


def build_event(
    event_type: str | EventType,
    payload: Mapping[str, object],
    *,
    correlation_id: str | None = None,
    timestamp: datetime | None = None,
) -> TicketEvent:
    return TicketEvent(
        event_id=generate_event_id(),
        event_type=EventType(event_type),
        timestamp=utc_now() if timestamp is None else timestamp,
        correlation_id=correlation_id,
        payload=as_json_object(payload, "payload"),
    )


def _callback_name(callback: object) -> str:
    name = getattr(callback, "__name__", None)
    if isinstance(name, str) and name:
        return name
    return callback.__class__.__name__


def _current_running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _as_coroutine(value: object) -> Coroutine[Any, Any, None]:
    if inspect.iscoroutine(value):
        return cast("Coroutine[Any, Any, None]", value)
    return _await(cast("Awaitable[None]", value))


async def _await(awaitable: Awaitable[None]) -> None:
    await awaitable


def _dispatch_error(
    *, stage: str, event: TicketEvent, target: str, exc: Exception
) -> DispatchError:
    return DispatchError(
        stage=stage,
        event_id=event.event_id,
        target=target,
        error_type=exc.__class__.__name__,
        message=str(exc),
    )


__all__ = [
    "DEFAULT_PERSISTED_EVENT_TYPES",
    "DispatchError",
    "EventBus",
    "PersistenceCallback",
    "Subscriber",
    "build_event",
]
