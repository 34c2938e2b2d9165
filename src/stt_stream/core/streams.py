from __future__ import annotations

import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Any, AsyncIterator, Protocol

from stt_stream.core.events import EventEmitter
from stt_stream.domain.events import StreamEvent

logger = logging.getLogger(__name__)


class ConsumeMode(str, Enum):
    """How the readable side hands chunks to consumers.

    PULL buffers chunks until `read()` / `async for` asks for them.
    FLOWING emits every chunk as a `data` event as soon as it is pushed.
    """

    PULL = "pull"
    FLOWING = "flowing"


class Writable(Protocol):
    async def write(self, chunk: Any) -> None: ...
    async def end(self) -> None: ...


class Readable(EventEmitter):
    """Push-fed readable side shared by recognize and result streams."""

    def __init__(self, *, mode: ConsumeMode = ConsumeMode.PULL) -> None:
        super().__init__()
        self._mode = mode
        self._buffer: deque[Any] = deque()
        self._ended = False
        self._end_emitted = False
        self._readable = asyncio.Event()
        self._pipe_task: asyncio.Task[None] | None = None
        self._failure: BaseException | None = None

    @property
    def mode(self) -> ConsumeMode:
        return self._mode

    @property
    def ended(self) -> bool:
        """True once end-of-output has been pushed."""
        return self._ended

    @property
    def end_emitted(self) -> bool:
        return self._end_emitted

    @property
    def failure(self) -> BaseException | None:
        """Error the stream was ended with by `fail()`, if any."""
        return self._failure

    def push(self, chunk: Any) -> bool:
        """Queue a chunk for consumers; `None` marks end-of-output."""
        if self._ended:
            if chunk is not None:
                logger.warning("push() after end-of-output; chunk dropped")
            return False

        if chunk is None:
            self._ended = True
        else:
            self._buffer.append(chunk)
        self._readable.set()

        if self._mode == ConsumeMode.FLOWING:
            self._flow()
        return chunk is not None

    def fail(self, exc: BaseException) -> None:
        """End the stream with an error.

        Chunks already buffered are still delivered; after them `read()` and
        `async for` raise `exc` instead of finishing.
        """
        if self._failure is None:
            self._failure = exc
        self._readable.set()
        self.push(None)

    def resume(self) -> None:
        """Switch to flowing mode and flush anything already buffered."""
        if self._mode == ConsumeMode.FLOWING:
            return
        self._mode = ConsumeMode.FLOWING
        self._flow()

    async def read(self) -> Any | None:
        """Next chunk, or None once the stream has ended."""
        if self._mode == ConsumeMode.FLOWING:
            raise RuntimeError("read() is not available in flowing mode")
        while not self._buffer:
            if self._ended:
                if self._failure is not None:
                    raise self._failure
                self._emit_end()
                return None
            self._readable.clear()
            await self._readable.wait()
        chunk = self._buffer.popleft()
        self.emit(StreamEvent.DATA, chunk)
        return chunk

    def __aiter__(self) -> AsyncIterator[Any]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Any]:
        while True:
            chunk = await self.read()
            if chunk is None:
                return
            yield chunk

    def pipe(self, dest: Writable) -> Writable:
        """Copy every chunk into `dest` in the background, then end it."""
        if self._pipe_task is not None:
            raise RuntimeError("stream is already piped")
        self._pipe_task = asyncio.create_task(self._pipe_to(dest))
        return dest

    async def _pipe_to(self, dest: Writable) -> None:
        try:
            async for chunk in self:
                await dest.write(chunk)
        except Exception as exc:
            fail = getattr(dest, "fail", None)
            if fail is None:
                raise
            fail(exc)
            return
        await dest.end()

    def _flow(self) -> None:
        while self._buffer:
            self.emit(StreamEvent.DATA, self._buffer.popleft())
        if self._ended:
            self._emit_end()

    def _emit_end(self) -> None:
        if self._end_emitted:
            return
        self._end_emitted = True
        self.emit(StreamEvent.END)

    async def collect(self) -> str | list[Any]:
        """Wait for the stream to end and return everything it produced.

        Byte chunks are joined and decoded as UTF-8 text; any other chunks are
        returned as a list in arrival order. The first `error` emitted before
        the end, or the error the stream failed with, is raised here.
        """
        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        chunks: list[Any] = []

        def _on_data(chunk: Any) -> None:
            chunks.append(chunk)

        def _on_end() -> None:
            if not done.done():
                done.set_result(None)

        def _on_error(err: BaseException) -> None:
            if not done.done():
                done.set_exception(err)

        self.on(StreamEvent.DATA, _on_data)
        self.on(StreamEvent.END, _on_end)
        self.on(StreamEvent.ERROR, _on_error)
        try:
            self.resume()
            if self._end_emitted and not done.done():
                done.set_result(None)
            await done
        finally:
            self.off(StreamEvent.DATA, _on_data)
            self.off(StreamEvent.END, _on_end)
            self.off(StreamEvent.ERROR, _on_error)

        if self._failure is not None:
            raise self._failure
        if chunks and isinstance(chunks[0], (bytes, bytearray)):
            return b"".join(chunks).decode("utf-8")
        return chunks
