"""Recognize stream: one socket session to the speech-to-text service.

Binary audio written to the stream is forwarded to the service once it reports
that it is listening; finalized transcripts come back out of the readable side.
Everything else the service says is surfaced as events:

- ``connect``: opening message sent
- ``listening``: service ready for audio
- ``message``: every decoded JSON payload
- ``results``: the whole results list of an update
- ``result``: each entry of that list, interim or final
- ``error``: transport, protocol or service error (``RecognizeError``)
- ``close``: transport closed, with ``(code, reason)``
- ``stop``: ``stop()`` was called
"""

from __future__ import annotations

import asyncio
import json
import logging
from functools import partial

from stt_stream.config.settings import (
    AppSettings,
    ConnectionSettings,
    RecognizeSettings,
    StreamSettings,
)
from stt_stream.core.audio import content_type as content_types
from stt_stream.core.streams import ConsumeMode, Readable
from stt_stream.core.stt.protocol import (
    build_headers,
    build_url,
    encode_opening_message,
    encode_stop_message,
)
from stt_stream.core.transport import Frame, Transport, TransportFactory
from stt_stream.domain.errors import ProtocolError, RecognizeError, ServiceError, TransportError
from stt_stream.domain.events import SessionState, StreamEvent
from stt_stream.domain.messages import (
    ErrorNotice,
    ListeningState,
    ResultsUpdate,
    decode_message,
)
from stt_stream.providers.websocket import WebSocketTransport

logger = logging.getLogger(__name__)


class RecognizeStream(Readable):
    def __init__(
        self,
        *,
        connection: ConnectionSettings | None = None,
        recognize: RecognizeSettings | None = None,
        stream: StreamSettings | None = None,
        transport_factory: TransportFactory | None = None,
        mode: ConsumeMode = ConsumeMode.PULL,
    ) -> None:
        super().__init__(mode=mode)
        self.connection = connection or ConnectionSettings()
        self.recognize = recognize or RecognizeSettings()
        self.stream_settings = stream or StreamSettings()
        self.connection.validate()
        self.recognize.validate()
        self.stream_settings.validate()

        self._transport_factory = transport_factory or self._default_transport
        self._transport: Transport | None = None
        self._content_type: str | None = self.recognize.content_type

        self._initialized = False
        self._connected = False
        self._listening = False
        self._finished = False
        self._drained = False
        self._closed = False
        self._hard_stopped = False
        self._input_ended = False

        self._write_lock = asyncio.Lock()
        self._closed_event = asyncio.Event()

    @classmethod
    def from_settings(cls, settings: AppSettings, **kwargs) -> RecognizeStream:
        return cls(
            connection=settings.connection,
            recognize=settings.recognize,
            stream=settings.stream,
            **kwargs,
        )

    @staticmethod
    def get_content_type(buffer: bytes) -> str | None:
        return content_types.from_header(buffer)

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def listening(self) -> bool:
        return self._listening

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def content_type(self) -> str | None:
        return self._content_type

    @property
    def state(self) -> SessionState:
        if self._closed:
            return SessionState.CLOSED
        if self._listening:
            return SessionState.LISTENING
        if self._connected:
            return SessionState.CONNECTED
        if self._initialized:
            return SessionState.CONNECTING
        return SessionState.DISCONNECTED

    async def write(self, chunk: bytes) -> None:
        """Send one chunk of audio; returns once the transport has room for more."""
        if self._input_ended:
            self._emit_error(RecognizeError("write() after end()"))
            return
        if not chunk:
            return
        if self._closed:
            logger.warning(f"[STT] Session already closed; dropped {len(chunk)} bytes")
            return

        async with self._write_lock:
            if self._listening:
                self._send_audio(chunk)
            else:
                if not self._initialized:
                    self._initialize(chunk)
                if not await self._send_when_listening(chunk):
                    logger.warning(
                        f"[STT] Session closed before listening; dropped {len(chunk)} bytes"
                    )
                    return
            await self._after_send()

    async def end(self, chunk: bytes | None = None) -> None:
        """Signal end of audio input once every pending write has gone out."""
        if chunk:
            await self.write(chunk)
        if self._input_ended:
            return
        self._input_ended = True
        async with self._write_lock:
            pass
        self.emit(StreamEvent.FINISH)
        if not self._initialized:
            logger.info("[STT] No audio written; nothing to recognize")
            self._end_without_session()
            return
        self.finish()

    def finish(self) -> None:
        # Reached from both end() and stop(); the stop message goes out only once.
        if self._finished:
            return
        self._finished = True
        if self._connected:
            self._send_stop()
        else:
            self.once(StreamEvent.CONNECT, self._send_stop)

    def stop(self, hard: bool = False) -> None:
        """Stop recognition.

        A soft stop asks the service to finish and flush pending results. A hard
        stop closes the socket right away; pending results may be lost.
        """
        self.emit(StreamEvent.STOP)
        if hard:
            self._hard_stopped = True
            if self._transport is not None:
                self._transport.close()
            else:
                self._end_without_session()
        else:
            self.finish()

    async def wait_closed(self) -> None:
        """Wait for the session to close; re-raises an error that aborted it."""
        await self._closed_event.wait()
        if self.failure is not None:
            raise self.failure

    def _end_without_session(self) -> None:
        self._closed = True
        self.push(None)
        self._closed_event.set()

    def _default_transport(self) -> Transport:
        return WebSocketTransport(open_timeout_s=self.connection.open_timeout_s)

    def _initialize(self, first_chunk: bytes) -> None:
        if self._content_type is None:
            self._content_type = (
                self.get_content_type(first_chunk) or self.stream_settings.default_content_type
            )
            logger.info(f"[STT] Content type resolved to {self._content_type!r}")

        url = build_url(self.connection)
        opening = encode_opening_message(self.recognize, content_type=self._content_type)

        transport = self._transport_factory()
        transport.on_open = partial(self._on_open, opening)
        transport.on_message = self._on_message
        transport.on_error = self._on_transport_error
        transport.on_close = self._on_transport_close
        self._transport = transport
        self._initialized = True

        logger.info(f"[STT] Connecting to {url.split('?', 1)[0]} (model={self.connection.model})")
        transport.open(url, build_headers(self.connection))

    async def _send_when_listening(self, chunk: bytes) -> bool:
        if self._closed:
            return False

        sent: asyncio.Future[bool] = asyncio.get_running_loop().create_future()

        def _on_listening() -> None:
            if not sent.done():
                self._send_audio(chunk)
                sent.set_result(True)

        def _on_close(*_args: object) -> None:
            if not sent.done():
                sent.set_result(False)

        self.once(StreamEvent.LISTENING, _on_listening)
        self.once(StreamEvent.CLOSE, _on_close)
        try:
            return await sent
        finally:
            self.off(StreamEvent.LISTENING, _on_listening)
            self.off(StreamEvent.CLOSE, _on_close)

    def _send_audio(self, chunk: bytes) -> None:
        assert self._transport is not None
        self._transport.send(bytes(chunk))

    async def _after_send(self) -> None:
        transport = self._transport
        if transport is None:
            return
        limit = self.stream_settings.high_water_mark
        wait_drained = getattr(transport, "wait_drained", None)
        if wait_drained is not None:
            await wait_drained(limit)
            return
        while not (self._closed or self._hard_stopped) and transport.buffered_amount > limit:
            await asyncio.sleep(self.stream_settings.drain_poll_interval_s)

    def _send_stop(self) -> None:
        if self._transport is None or self._closed:
            return
        self._transport.send(encode_stop_message())
        logger.info("[STT] Stop message sent")

    def _on_open(self, opening: str) -> None:
        assert self._transport is not None
        self._transport.send(opening)
        self._connected = True
        logger.debug(f"[STT] Opening message sent: {opening}")
        self.emit(StreamEvent.CONNECT)

    def _on_message(self, frame: Frame) -> None:
        if not isinstance(frame, str):
            self._emit_error(
                ProtocolError("Unexpected binary data received from server", raw=frame)
            )
            return

        try:
            payload = json.loads(frame)
        except json.JSONDecodeError as exc:
            err = ProtocolError(f"Invalid JSON received from service: {exc}", raw=frame)
            err.__cause__ = exc
            self._emit_error(err)
            return

        self.emit(StreamEvent.MESSAGE, payload)

        try:
            message = decode_message(payload)
        except ProtocolError as exc:
            exc.raw = frame
            self._emit_error(exc)
            return

        if isinstance(message, ErrorNotice):
            self._emit_error(ServiceError(message.error, raw=frame))
        elif isinstance(message, ListeningState):
            self._on_listening()
        elif isinstance(message, ResultsUpdate):
            self._on_results(message)

    def _on_listening(self) -> None:
        # Sent once when the service is ready, and again after the stop message
        # once it has processed everything.
        if self._drained:
            logger.debug("[STT] Ignoring listening report after drain")
            return
        if not self._listening:
            self._listening = True
            logger.info("[STT] Service is listening")
            self.emit(StreamEvent.LISTENING)
            return

        self._listening = False
        self._drained = True
        logger.info("[STT] Service finished processing; closing session")
        self.push(None)
        if self._transport is not None:
            self._transport.close()

    def _on_results(self, update: ResultsUpdate) -> None:
        self.emit(StreamEvent.RESULTS, list(update.results))
        # currently the service sends zero or one entries per update
        for result in update.results:
            self.emit(StreamEvent.RESULT, result)
            if result.final and result.alternatives:
                self.push(result.alternatives[0].transcript)

    def _on_transport_error(self, exc: BaseException) -> None:
        self._listening = False
        err = TransportError(str(exc) or exc.__class__.__name__)
        err.__cause__ = exc
        self._emit_error(err)

    def _on_transport_close(self, code: int, reason: str) -> None:
        self._closed = True
        self._listening = False
        failure = getattr(self._transport, "failure", None)
        if failure is not None:
            logger.error(f"[STT] Session aborted by an unhandled error: {failure!r}")
            self.fail(failure)
        if not self.ended:
            if self._initialized and not (self._drained or self._hard_stopped):
                logger.warning(f"[STT] Session closed unexpectedly (code={code}, reason={reason!r})")
            self.push(None)
        self._closed_event.set()
        self.emit(StreamEvent.CLOSE, code, reason)

    def _emit_error(self, err: RecognizeError) -> None:
        logger.warning(f"[STT] {err.__class__.__name__}: {err}")
        self.emit(StreamEvent.ERROR, err)
