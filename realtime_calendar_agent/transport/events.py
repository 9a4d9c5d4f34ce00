from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Generic, TypeVar

EventT = TypeVar("EventT", bound=dict)


EventHandler = Callable[[EventT], Awaitable[None]]


def get_type(ev: dict) -> str:
    return ev.get("type", "")


class Dispatcher(Generic[EventT]):
    """Routes each event to the single handler registered for its type.

    Registering a second handler for the same type is an error, which keeps
    the set of handled events explicit. Events of other types are ignored.

    The :meth:`on` method can be used either as a decorator::

        dispatcher = Dispatcher()


        @dispatcher.on("event.type")
        async def handler(event): ...

    or called directly::

        dispatcher.on("event.type", handler)

    """

    def __init__(self) -> None:
        self._handlers: dict[str, EventHandler[EventT]] = {}

    def on(
        self, event_type: str, handler: EventHandler[EventT] | None = None
    ) -> EventHandler[EventT] | Callable[[EventHandler[EventT]], EventHandler[EventT]]:
        """Register ``handler`` for ``event_type``.

        If ``handler`` is ``None`` this functions as a decorator factory.
        """

        if handler is not None:
            self._add(event_type, handler)
            return handler

        def decorator(func: EventHandler[EventT]) -> EventHandler[EventT]:
            self._add(event_type, func)
            return func

        return decorator

    def on_many(self, event_types: Iterable[str], handler: EventHandler[EventT]) -> None:
        for event_type in event_types:
            self._add(event_type, handler)

    def _add(self, event_type: str, handler: EventHandler[EventT]) -> None:
        if event_type in self._handlers:
            raise ValueError(f"handler already registered for {event_type!r}")
        self._handlers[event_type] = handler

    @property
    def event_types(self) -> frozenset[str]:
        return frozenset(self._handlers)

    def clear(self) -> None:
        self._handlers.clear()

    async def dispatch(self, event: EventT) -> None:
        handler = self._handlers.get(get_type(event))
        if handler is None:
            logging.getLogger(__name__).debug(
                "unhandled_event", extra={"event_type": get_type(event)}
            )
            return
        await handler(event)
