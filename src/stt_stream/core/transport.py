from __future__ import annotations

from typing import Callable, Mapping, Protocol

Frame = str | bytes


class Transport(Protocol):
    """Opaque bidirectional message channel used by a recognize stream.

    Implementations report lifecycle through the callback attributes, all of
    which are invoked from the event loop thread. A transport whose callback
    raised sets an optional `failure` attribute before reporting the close.
    """

    on_open: Callable[[], None] | None
    on_message: Callable[[Frame], None] | None
    on_error: Callable[[BaseException], None] | None
    on_close: Callable[[int, str], None] | None

    @property
    def buffered_amount(self) -> int: ...

    def open(self, url: str, headers: Mapping[str, str]) -> None: ...
    def send(self, frame: Frame) -> None: ...
    def close(self, code: int = 1000, reason: str = "") -> None: ...


class DrainableTransport(Transport, Protocol):
    async def wait_drained(self, limit: int) -> None: ...


TransportFactory = Callable[[], Transport]
