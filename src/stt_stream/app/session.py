from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TextIO

from stt_stream.app.wiring import create_result_stream
from stt_stream.core.audio.source import ByteSource
from stt_stream.core.stt.recognize_stream import RecognizeStream
from stt_stream.domain.errors import RecognizeError
from stt_stream.domain.events import SessionState, StreamEvent
from stt_stream.domain.messages import Result

logger = logging.getLogger(__name__)

Feeder = Callable[[RecognizeStream], Awaitable[None]]


async def run_recognition(
    stream: RecognizeStream,
    feed: Feeder,
    *,
    out: TextIO,
    interim: bool = False,
) -> int:
    """Drive one session: feed audio in, print transcripts as they come out.

    Returns 0 when the session finished cleanly, 1 if any error was reported.
    """
    results = create_result_stream(stream)
    errors: list[RecognizeError] = []

    def _on_error(err: RecognizeError) -> None:
        errors.append(err)

    def _on_result(result: Result) -> None:
        if not result.final:
            print(f"... {result.transcript}", file=out, flush=True)

    results.on(StreamEvent.ERROR, _on_error)
    if interim:
        results.on(StreamEvent.RESULT, _on_result)

    stream.pipe(results)
    feed_task = asyncio.create_task(_feed_or_abort(stream, feed))
    try:
        async for transcript in results:
            print(transcript, file=out, flush=True)
    finally:
        if not feed_task.done():
            feed_task.cancel()
            stream.stop(hard=True)
        await asyncio.gather(feed_task, return_exceptions=True)

    if not feed_task.cancelled() and feed_task.exception() is not None:
        logger.error(f"[STT] Audio input failed: {feed_task.exception()}")
        return 1

    if errors:
        logger.error(f"[STT] Session finished with {len(errors)} error(s); last: {errors[-1]}")
        return 1
    return 0


async def _feed_or_abort(stream: RecognizeStream, feed: Feeder) -> None:
    try:
        await feed(stream)
    except Exception:
        stream.stop(hard=True)
        raise


async def feed_chunks(source: ByteSource, stream: RecognizeStream) -> None:
    """Write every chunk of `source` into `stream`, then end the stream's input."""
    async for chunk in source.chunks():
        if stream.state == SessionState.CLOSED:
            return
        await stream.write(chunk)
    await stream.end()
