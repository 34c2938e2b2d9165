from __future__ import annotations

from typing import Any

from stt_stream.core.events import EventEmitter, event_key
from stt_stream.core.streams import ConsumeMode, Readable
from stt_stream.domain.events import SIDE_CHANNEL_EVENTS, StreamEvent

# data and end already flow through the pass-through itself
_NOT_RELAYED = {StreamEvent.DATA.value, StreamEvent.END.value}


class ResultStream(Readable):
    """Pass-through stream that also relays events from the streams feeding it.

    Sources are attached with `propagate_errors_from` (errors only) or
    `propagate_events_from` (every event). Wiring happens when a source is
    attached, for all side-channel events and for every event name that has
    been listened for on this stream; a listener for a new custom event name
    wires that name to the sources attached so far.
    """

    def __init__(self, *, mode: ConsumeMode = ConsumeMode.PULL) -> None:
        super().__init__(mode=mode)
        self.error_sources: list[EventEmitter] = []
        self.all_event_sources: list[EventEmitter] = []
        self.propagated_events: list[str] = [e.value for e in SIDE_CHANNEL_EVENTS]
        self._wired: set[tuple[int, str]] = set()

    async def write(self, chunk: Any) -> None:
        self.push(chunk)

    async def end(self) -> None:
        self.emit(StreamEvent.FINISH)
        self.push(None)

    def propagate_errors_from(self, source: EventEmitter) -> ResultStream:
        self.error_sources.append(source)
        self._wire(source, StreamEvent.ERROR.value)
        return self

    def propagate_events_from(self, source: EventEmitter) -> ResultStream:
        """Relay every event from `source`.

        Chained sources may each raise their own `close`, so such events can
        arrive here more than once.
        """
        self.all_event_sources.append(source)
        for name in self.propagated_events:
            self._wire(source, name)
        return self

    def attach_source(self, source: EventEmitter, *, errors_only: bool = False) -> ResultStream:
        if errors_only:
            return self.propagate_errors_from(source)
        return self.propagate_events_from(source)

    async def collect(self, stream: Readable | None = None) -> str | list[Any]:
        """Collect `stream`, or this stream when none is given; see `Readable.collect`."""
        if stream is None or stream is self:
            return await super().collect()
        return await stream.collect()

    def _on_new_listener(self, event: str) -> None:
        if event in _NOT_RELAYED or event in self.propagated_events:
            return
        self.propagated_events.append(event)
        sources = self.all_event_sources
        if event == StreamEvent.ERROR.value:
            sources = self.error_sources + self.all_event_sources
        for source in sources:
            self._wire(source, event)

    def _wire(self, source: EventEmitter, event: str) -> None:
        key = (id(source), event_key(event))
        if key in self._wired:
            return
        self._wired.add(key)
        source.on(event, self._relay(event))

    def _relay(self, event: str):
        def relay(*args: Any) -> None:
            if event == StreamEvent.ERROR.value and not self.listener_count(event):
                # nobody handles it here either: behave as if the source had no listener
                err = args[0] if args else None
                if isinstance(err, BaseException):
                    raise err
                raise RuntimeError(f"Unhandled error event: {err!r}")
            self.emit(event, *args)

        return relay
