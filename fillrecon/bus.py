from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, DefaultDict, List, Type, TypeVar

T = TypeVar("T")


class EventBus:
    """Tiny in-process pub/sub bus between the engine and its presentation layer.

    Handlers run synchronously on the publishing thread. A failing handler is
    logged and never propagates back into the engine.
    """

    def __init__(self) -> None:
        self._handlers: DefaultDict[Type[Any], List[Callable[[Any], None]]] = defaultdict(list)
        self._log = logging.getLogger("bus")

    def subscribe(self, event_type: Type[T], handler: Callable[[T], None]) -> None:
        self._handlers[event_type].append(handler)  # type: ignore[arg-type]

    def unsubscribe(self, event_type: Type[T], handler: Callable[[T], None]) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)  # type: ignore[arg-type]

    def publish(self, event: Any) -> None:
        et = type(event)
        for h in list(self._handlers.get(et, [])):
            try:
                h(event)
            except Exception:
                self._log.exception("handler_failed", extra={"event_type": et.__name__})
