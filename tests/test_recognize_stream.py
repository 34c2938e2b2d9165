from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field

import pytest

from stt_stream.config.settings import ConnectionSettings, RecognizeSettings, StreamSettings
from stt_stream.core.streams import ConsumeMode
from stt_stream.core.stt.recognize_stream import RecognizeStream
from stt_stream.domain.errors import ProtocolError, RecognizeError, ServiceError, TransportError
from stt_stream.domain.events import SessionState, StreamEvent

LISTENING = json.dumps({"state": "listening"})
STOP = json.dumps({"action": "stop"})


def _results(transcript: str, *, final: bool) -> str:
    return json.dumps(
        {
            "result_index": 0,
            "results": [{"alternatives": [{"transcript": transcript}], "final": final}],
        }
    )


@dataclass(slots=True)
class FakeTransport:
    on_open: object = None
    on_message: object = None
    on_error: object = None
    on_close: object = None
    buffered_amount: int = 0
    url: str | None = None
    headers: dict | None = None
    sent: list = field(default_factory=list)
    close_calls: int = 0

    def open(self, url, headers) -> None:
        self.url = url
        self.headers = dict(headers)

    def send(self, frame) -> None:
        self.sent.append(frame)

    def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls += 1
        self.on_close(code, reason)


def _stream(fake: FakeTransport, **kwargs) -> RecognizeStream:
    return RecognizeStream(transport_factory=lambda: fake, **kwargs)


async def _listening_stream(fake: FakeTransport, **kwargs) -> RecognizeStream:
    stream = _stream(fake, **kwargs)
    first = asyncio.create_task(stream.write(b"A"))
    await asyncio.sleep(0)
    fake.on_open()
    fake.on_message(LISTENING)
    await first
    return stream


def test_nothing_is_sent_before_the_first_write():
    async def run():
        fake = FakeTransport()
        stream = _stream(fake)
        await asyncio.sleep(0)
        assert fake.url is None
        assert stream.state == SessionState.DISCONNECTED

    asyncio.run(run())


def test_opening_message_sent_once_after_open():
    async def run():
        fake = FakeTransport()
        stream = _stream(fake)
        connects = []
        stream.on(StreamEvent.CONNECT, lambda: connects.append(True))

        task = asyncio.create_task(stream.write(b"A"))
        await asyncio.sleep(0)
        assert fake.url == (
            "wss://stream.watsonplatform.net/speech-to-text/api/v1/recognize"
            "?model=en-US_BroadbandModel"
        )
        assert fake.sent == []
        assert stream.state == SessionState.CONNECTING

        fake.on_open()
        assert len(fake.sent) == 1
        opening = json.loads(fake.sent[0])
        assert opening["action"] == "start"
        assert opening["content-type"] == "audio/wav"
        assert opening["interim_results"] is True
        assert connects == [True]
        assert stream.connected

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    asyncio.run(run())


def test_audio_waits_for_listening_and_keeps_write_order():
    async def run():
        fake = FakeTransport()
        stream = _stream(fake)

        first = asyncio.create_task(stream.write(b"A"))
        second = asyncio.create_task(stream.write(b"B"))
        await asyncio.sleep(0)
        fake.on_open()
        await asyncio.sleep(0)
        assert len(fake.sent) == 1  # opening only

        fake.on_message(LISTENING)
        await first
        await second
        await stream.write(b"C")

        assert fake.sent[1:] == [b"A", b"B", b"C"]
        assert stream.state == SessionState.LISTENING

    asyncio.run(run())


def test_write_waits_while_transport_is_above_high_water_mark():
    async def run():
        fake = FakeTransport()
        stream = await _listening_stream(
            fake, stream=StreamSettings(high_water_mark=100, drain_poll_interval_s=0.001)
        )

        fake.buffered_amount = 1000
        task = asyncio.create_task(stream.write(b"B"))
        queued = asyncio.create_task(stream.write(b"C"))
        await asyncio.sleep(0.02)
        assert b"B" in fake.sent
        assert b"C" not in fake.sent
        assert not task.done()

        fake.buffered_amount = 0
        await asyncio.wait_for(task, timeout=1.0)
        await asyncio.wait_for(queued, timeout=1.0)
        assert fake.sent[-2:] == [b"B", b"C"]

    asyncio.run(run())


def test_end_sends_stop_once_even_with_stop():
    async def run():
        fake = FakeTransport()
        stream = await _listening_stream(fake)
        finishes = []
        stream.on(StreamEvent.FINISH, lambda: finishes.append(True))

        await stream.end()
        stream.stop()
        stream.finish()

        assert fake.sent.count(STOP) == 1
        assert fake.sent[-1] == STOP
        assert finishes == [True]

    asyncio.run(run())


def test_soft_stop_before_connect_waits_for_the_handshake():
    async def run():
        fake = FakeTransport()
        stream = _stream(fake)
        stops = []
        stream.on(StreamEvent.STOP, lambda: stops.append(True))

        task = asyncio.create_task(stream.write(b"A"))
        await asyncio.sleep(0)
        stream.stop()
        assert fake.sent == []

        fake.on_open()
        assert json.loads(fake.sent[0])["action"] == "start"
        assert fake.sent[1] == STOP
        assert stops == [True]

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    asyncio.run(run())


def test_final_results_come_out_and_second_listening_ends_output():
    async def run():
        fake = FakeTransport()
        stream = await _listening_stream(fake)
        results, ends, closes = [], [], []
        stream.on(StreamEvent.RESULT, results.append)
        stream.on(StreamEvent.END, lambda: ends.append(True))
        stream.on(StreamEvent.CLOSE, lambda code, reason: closes.append(code))

        fake.on_message(_results("hel", final=False))
        fake.on_message(_results("hello world", final=True))
        await stream.end()
        fake.on_message(LISTENING)
        fake.on_message(LISTENING)

        chunks = [chunk async for chunk in stream]

        assert chunks == ["hello world"]
        assert [r.final for r in results] == [False, True]
        assert ends == [True]
        assert fake.close_calls == 1
        assert closes == [1000]
        assert stream.state == SessionState.CLOSED

    asyncio.run(run())


def test_interim_result_only_raises_events():
    async def run():
        fake = FakeTransport()
        stream = await _listening_stream(fake, mode=ConsumeMode.FLOWING)
        data, updates, results = [], [], []
        stream.on(StreamEvent.DATA, data.append)
        stream.on(StreamEvent.RESULTS, updates.append)
        stream.on(StreamEvent.RESULT, results.append)

        fake.on_message(_results("partial", final=False))

        assert data == []
        assert len(updates) == 1 and len(updates[0]) == 1
        assert results[0].transcript == "partial"

        fake.on_message(_results("done", final=True))
        assert data == ["done"]

    asyncio.run(run())


def test_every_json_payload_is_raised_as_message():
    async def run():
        fake = FakeTransport()
        stream = await _listening_stream(fake)
        messages = []
        stream.on(StreamEvent.MESSAGE, messages.append)

        fake.on_message(_results("x", final=False))

        assert messages[0]["result_index"] == 0

    asyncio.run(run())


def test_malformed_json_reports_one_error_and_keeps_session():
    async def run():
        fake = FakeTransport()
        stream = await _listening_stream(fake)
        errors, closes = [], []
        stream.on(StreamEvent.ERROR, errors.append)
        stream.on(StreamEvent.CLOSE, lambda *a: closes.append(a))

        fake.on_message("{not json")

        assert len(errors) == 1
        assert isinstance(errors[0], ProtocolError)
        assert "Invalid JSON received from service" in str(errors[0])
        assert errors[0].raw == "{not json"
        assert closes == []
        assert fake.close_calls == 0
        assert stream.listening

    asyncio.run(run())


def test_binary_frame_is_a_protocol_error():
    async def run():
        fake = FakeTransport()
        stream = await _listening_stream(fake)
        errors = []
        stream.on(StreamEvent.ERROR, errors.append)

        fake.on_message(b"\x00\x01")

        assert isinstance(errors[0], ProtocolError)
        assert str(errors[0]) == "Unexpected binary data received from server"

    asyncio.run(run())


def test_unrecognised_and_service_errors():
    async def run():
        fake = FakeTransport()
        stream = await _listening_stream(fake)
        errors = []
        stream.on(StreamEvent.ERROR, errors.append)

        fake.on_message(json.dumps({"hello": 1}))
        fake.on_message(json.dumps({"error": "bad audio"}))

        assert isinstance(errors[0], ProtocolError)
        assert str(errors[0]) == "Unrecognised message from server"
        assert isinstance(errors[1], ServiceError)
        assert str(errors[1]) == "bad audio"

    asyncio.run(run())


def test_error_without_listener_raises():
    async def run():
        fake = FakeTransport()
        await _listening_stream(fake)
        with pytest.raises(ProtocolError):
            fake.on_message(b"\x00")

    asyncio.run(run())


def test_transport_error_is_wrapped():
    async def run():
        fake = FakeTransport()
        stream = await _listening_stream(fake)
        errors = []
        stream.on(StreamEvent.ERROR, errors.append)

        cause = ConnectionResetError("reset by peer")
        fake.on_error(cause)

        assert isinstance(errors[0], TransportError)
        assert errors[0].__cause__ is cause
        assert not stream.listening

    asyncio.run(run())


def test_close_while_listening_ends_output():
    async def run():
        fake = FakeTransport()
        stream = await _listening_stream(fake)
        closes = []
        stream.on(StreamEvent.CLOSE, lambda code, reason: closes.append((code, reason)))

        fake.on_close(1006, "gone")

        assert [chunk async for chunk in stream] == []
        assert closes == [(1006, "gone")]
        await asyncio.wait_for(stream.wait_closed(), timeout=1.0)

    asyncio.run(run())


def test_pending_write_is_dropped_when_closed_before_listening():
    async def run():
        fake = FakeTransport()
        stream = _stream(fake)

        task = asyncio.create_task(stream.write(b"A"))
        await asyncio.sleep(0)
        fake.on_close(1006, "refused")
        await asyncio.wait_for(task, timeout=1.0)

        assert fake.sent == []
        assert stream.ended
        await stream.write(b"B")
        assert fake.sent == []

    asyncio.run(run())


def test_hard_stop_closes_transport_immediately():
    async def run():
        fake = FakeTransport()
        stream = await _listening_stream(fake)
        stops = []
        stream.on(StreamEvent.STOP, lambda: stops.append(True))

        stream.stop(hard=True)

        assert stops == [True]
        assert fake.close_calls == 1
        assert STOP not in fake.sent
        assert [chunk async for chunk in stream] == []

    asyncio.run(run())


def test_end_without_audio_ends_output_without_connecting():
    async def run():
        fake = FakeTransport()
        stream = _stream(fake)

        await stream.end()

        assert fake.url is None
        assert [chunk async for chunk in stream] == []
        await asyncio.wait_for(stream.wait_closed(), timeout=1.0)

    asyncio.run(run())


def test_write_after_end_reports_error():
    async def run():
        fake = FakeTransport()
        stream = await _listening_stream(fake)
        errors = []
        stream.on(StreamEvent.ERROR, errors.append)

        await stream.end()
        await stream.write(b"late")

        assert isinstance(errors[0], RecognizeError)
        assert b"late" not in fake.sent

    asyncio.run(run())


@pytest.mark.parametrize(
    ("first_chunk", "expected"),
    [
        (b"RIFF\x00\x00\x00\x00WAVE", "audio/wav"),
        (b"fLaC\x00\x00", "audio/flac"),
        (b"OggS\x00\x02", "audio/ogg; codecs=opus"),
        (b"\x00\x11\x22\x33", "audio/wav"),
    ],
)
def test_content_type_is_inferred_from_first_chunk(first_chunk, expected):
    async def run():
        fake = FakeTransport()
        stream = _stream(fake)
        task = asyncio.create_task(stream.write(first_chunk))
        await asyncio.sleep(0)
        fake.on_open()

        assert json.loads(fake.sent[0])["content-type"] == expected
        assert stream.content_type == expected

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    asyncio.run(run())


def test_configured_content_type_wins_over_inference():
    async def run():
        fake = FakeTransport()
        stream = _stream(fake, recognize=RecognizeSettings(content_type="audio/l16; rate=16000"))
        task = asyncio.create_task(stream.write(b"RIFF...."))
        await asyncio.sleep(0)
        fake.on_open()

        assert json.loads(fake.sent[0])["content-type"] == "audio/l16; rate=16000"

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    asyncio.run(run())


def test_token_model_and_headers_reach_the_transport():
    async def run():
        fake = FakeTransport()
        stream = _stream(
            fake,
            connection=ConnectionSettings(
                url="https://example.test/api/",
                model="en-GB_NarrowbandModel",
                token="a+b/c==",
                learning_opt_out=True,
            ),
        )
        task = asyncio.create_task(stream.write(b"A"))
        await asyncio.sleep(0)

        assert fake.url == (
            "wss://example.test/api/v1/recognize?model=en-GB_NarrowbandModel&watson-token=a+b/c=="
        )
        assert fake.headers == {"X-Watson-Learning-Opt-Out": "1"}

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    asyncio.run(run())


def test_invalid_settings_are_rejected_at_construction():
    with pytest.raises(ValueError):
        RecognizeStream(stream=StreamSettings(high_water_mark=-1))


def test_collect_returns_final_transcripts():
    async def run():
        fake = FakeTransport()
        stream = await _listening_stream(fake)
        collected = asyncio.create_task(stream.collect())
        await asyncio.sleep(0)

        fake.on_message(_results("one", final=True))
        fake.on_message(_results("two", final=True))
        await stream.end()
        fake.on_message(LISTENING)

        return await asyncio.wait_for(collected, timeout=1.0)

    assert asyncio.run(run()) == ["one", "two"]


def test_collect_rejects_on_session_error():
    async def run():
        fake = FakeTransport()
        stream = await _listening_stream(fake)
        collected = asyncio.create_task(stream.collect())
        await asyncio.sleep(0)

        fake.on_message(json.dumps({"error": "no speech"}))

        with pytest.raises(ServiceError, match="no speech"):
            await asyncio.wait_for(collected, timeout=1.0)

    asyncio.run(run())


def test_transport_failure_aborts_the_session():
    async def run():
        fake = FailingTransport()
        stream = await _listening_stream(fake)
        cause = RuntimeError("result listener blew up")

        fake.fail_and_close(cause)

        with pytest.raises(RuntimeError, match="blew up"):
            await stream.read()
        with pytest.raises(RuntimeError, match="blew up"):
            await stream.wait_closed()

    asyncio.run(run())


@dataclass(slots=True)
class FailingTransport(FakeTransport):
    failure: BaseException | None = None

    def fail_and_close(self, exc: BaseException) -> None:
        self.failure = exc
        self.on_close(1011, "client error")
