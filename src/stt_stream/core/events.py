from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

Listener = Callable[..., Any]


def event_key(event: str | Enum) -> str:
    if isinstance(event, Enum):
        return str(event.value)
    return str(event)


@dataclass(slots=True, eq=False)
class _Registration:
    listener: Listener
    once: bool = False


class EventEmitter:
    """Minimal synchronous event emitter.

    Listeners run in registration order inside `emit`. A listener returning an
    awaitable is scheduled on the running loop. Emitting `error` with no
    listener raises the error, so failures cannot go unnoticed.
    """

    def __init__(self) -> None:
        self._registrations: dict[str, list[_Registration]] = {}
        self._pending: set[asyncio.Future[Any]] = set()

    def on(self, event: str | Enum, listener: Listener) -> EventEmitter:
        return self._add(event, listener, once=False)

    def once(self, event: str | Enum, listener: Listener) -> EventEmitter:
        return self._add(event, listener, once=True)

    def off(self, event: str | Enum, listener: Listener) -> EventEmitter:
        regs = self._registrations.get(event_key(event))
        if not regs:
            return self
        for idx, reg in enumerate(regs):
            if reg.listener == listener:
                del regs[idx]
                break
        return self

    def listeners(self, event: str | Enum) -> list[Listener]:
        return [reg.listener for reg in self._registrations.get(event_key(event), [])]

    def listener_count(self, event: str | Enum) -> int:
        return len(self._registrations.get(event_key(event), []))

    def emit(self, event: str | Enum, *args: Any) -> bool:
        key = event_key(event)
        regs = self._registrations.get(key)
        if not regs:
            if key == "error":
                err = args[0] if args else None
                if isinstance(err, BaseException):
                    raise err
                raise RuntimeError(f"Unhandled error event: {err!r}")
            return False

        for reg in list(regs):
            if reg.once and reg in regs:
                regs.remove(reg)
            result = reg.listener(*args)
            if inspect.isawaitable(result):
                future = asyncio.ensure_future(result)
                self._pending.add(future)
                future.add_done_callback(self._pending.discard)
        return True

    def _add(self, event: str | Enum, listener: Listener, *, once: bool) -> EventEmitter:
        key = event_key(event)
        self._on_new_listener(key)
        self._registrations.setdefault(key, []).append(_Registration(listener, once=once))
        return self

    def _on_new_listener(self, event: str) -> None:
        """Hook for subclasses; called before a listener is added."""
