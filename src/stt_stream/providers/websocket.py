"""WebSocket transport for recognize streams.

Wraps a `websockets` asyncio client connection behind the callback-style
Transport protocol: an ordered send queue feeds the socket while a receive loop
dispatches inbound frames.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

import websockets
from websockets.exceptions import ConnectionClosedError

from stt_stream.core.transport import Frame

logger = logging.getLogger(__name__)

ABNORMAL_CLOSE = 1006
INTERNAL_ERROR_CLOSE = 1011


def _frame_size(frame: Frame) -> int:
    if isinstance(frame, str):
        return len(frame.encode("utf-8"))
    return len(frame)


@dataclass(slots=True)
class WebSocketTransport:
    open_timeout_s: float = 10.0
    ping_interval_s: float | None = None

    on_open: Callable[[], None] | None = field(default=None, repr=False)
    on_message: Callable[[Frame], None] | None = field(default=None, repr=False)
    on_error: Callable[[BaseException], None] | None = field(default=None, repr=False)
    on_close: Callable[[int, str], None] | None = field(default=None, repr=False)

    _ws: Any = field(init=False, default=None, repr=False)
    _run_task: asyncio.Task[None] | None = field(init=False, default=None, repr=False)
    _close_task: asyncio.Task[None] | None = field(init=False, default=None, repr=False)
    _notify_task: asyncio.Task[None] | None = field(init=False, default=None, repr=False)
    _send_q: asyncio.Queue[Frame] = field(init=False, repr=False)
    _drained: asyncio.Condition = field(init=False, repr=False)
    _pending_bytes: int = field(init=False, default=0)
    _closing: bool = field(init=False, default=False)
    _closed: bool = field(init=False, default=False)
    _close_reported: bool = field(init=False, default=False)
    failure: BaseException | None = field(init=False, default=None, repr=False)

    def __post_init__(self) -> None:
        if self.open_timeout_s <= 0:
            raise ValueError("open_timeout_s must be > 0")
        self._send_q = asyncio.Queue()
        self._drained = asyncio.Condition()

    @property
    def buffered_amount(self) -> int:
        size = self._pending_bytes
        transport = getattr(self._ws, "transport", None)
        if transport is not None:
            with contextlib.suppress(Exception):
                size += int(transport.get_write_buffer_size())
        return size

    @property
    def closed(self) -> bool:
        return self._closed

    def open(self, url: str, headers: Mapping[str, str]) -> None:
        if self._run_task is not None:
            raise RuntimeError("transport is already open")
        self._run_task = asyncio.create_task(self._run(url, dict(headers)), name="stt-websocket")

    def send(self, frame: Frame) -> None:
        if self._closing or self._closed:
            logger.debug("[STT] send() on closed transport; frame dropped")
            return
        self._pending_bytes += _frame_size(frame)
        self._send_q.put_nowait(frame)

    def close(self, code: int = 1000, reason: str = "") -> None:
        if self._closing or self._closed:
            return
        self._closing = True
        self._notify_task = asyncio.create_task(self._notify_drained())
        if self._ws is not None:
            self._close_task = asyncio.create_task(self._ws.close(code, reason))
        elif self._run_task is not None:
            self._run_task.cancel()
            self._report_close(code, reason or "closed before connection was established")

    async def wait_drained(self, limit: int) -> None:
        # The socket-level buffer is bounded by websockets' own write limit,
        # so only the queued bytes are waited on here.
        async with self._drained:
            await self._drained.wait_for(
                lambda: self._closed or self._closing or self._pending_bytes <= limit
            )

    async def _run(self, url: str, headers: dict[str, str]) -> None:
        try:
            ws = await websockets.connect(
                url,
                additional_headers=headers or None,
                open_timeout=self.open_timeout_s,
                ping_interval=self.ping_interval_s,
                max_size=None,
            )
        except asyncio.CancelledError:
            logger.debug("[STT] WebSocket connect cancelled")
            return
        except Exception as exc:
            logger.warning(f"[STT] WebSocket connect failed: {exc}")
            self._dispatch(self._fire_error, exc)
            self._dispatch(self._report_close, ABNORMAL_CLOSE, str(exc))
            return

        self._ws = ws
        logger.info("[STT] WebSocket connected")
        sender = asyncio.create_task(self._send_loop(ws))
        try:
            if self.on_open is not None:
                self.on_open()
            async for message in ws:
                if self.on_message is not None:
                    self.on_message(message)
        except ConnectionClosedError as exc:
            if not self._closing:
                logger.warning(f"[STT] WebSocket closed abnormally: {exc}")
                self._dispatch(self._fire_error, exc)
        except Exception as exc:
            logger.error(f"[STT] Transport callback failed: {exc!r}")
            self._set_failure(exc)
        finally:
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)
            with contextlib.suppress(Exception):
                if self.failure is not None:
                    await ws.close(INTERNAL_ERROR_CLOSE, "client error")
                else:
                    await ws.close()
            self._closed = True
            await self._notify_drained()
            code = ws.close_code if ws.close_code is not None else ABNORMAL_CLOSE
            self._dispatch(self._report_close, code, ws.close_reason or "")

    async def _send_loop(self, ws: Any) -> None:
        while True:
            frame = await self._send_q.get()
            try:
                await ws.send(frame)
            finally:
                self._pending_bytes -= _frame_size(frame)
                await self._notify_drained()

    async def _notify_drained(self) -> None:
        async with self._drained:
            self._drained.notify_all()

    def _set_failure(self, exc: BaseException) -> None:
        if self.failure is None:
            self.failure = exc

    def _dispatch(self, callback: Callable[..., None], *args: Any) -> None:
        # callbacks run inside the connection task; keep their errors for the owner
        try:
            callback(*args)
        except Exception as exc:
            logger.error(f"[STT] Transport callback failed: {exc!r}")
            self._set_failure(exc)

    def _fire_error(self, exc: BaseException) -> None:
        if self.on_error is not None:
            self.on_error(exc)

    def _report_close(self, code: int, reason: str) -> None:
        if self._close_reported:
            return
        self._close_reported = True
        self._closed = True
        logger.info(f"[STT] WebSocket closed (code={code}, reason={reason!r})")
        if self.on_close is not None:
            self.on_close(code, reason)


import contextlib  # placed at bottom to keep the main logic compact
