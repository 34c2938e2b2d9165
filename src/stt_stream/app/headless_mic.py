from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from dataclasses import dataclass
from functools import partial
from typing import Callable, TextIO

from stt_stream.app.session import feed_chunks, run_recognition
from stt_stream.app.wiring import create_recognize_stream
from stt_stream.config.settings import AppSettings
from stt_stream.core.audio import content_type as content_types
from stt_stream.core.audio.source import ByteSource, MicrophoneByteSource, find_input_device
from stt_stream.core.transport import TransportFactory

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class HeadlessMicRunner:
    """Stream microphone audio as PCM16 until Ctrl+C or `duration_s` elapses."""

    settings: AppSettings
    duration_s: float | None = None
    interim: bool = False
    transport_factory: TransportFactory | None = None
    source_factory: Callable[[], ByteSource] | None = None
    out: TextIO | None = None

    async def run(self) -> int:
        stream = create_recognize_stream(
            self.settings,
            content_type=content_types.l16(self.settings.audio.sample_rate_hz),
            transport_factory=self.transport_factory,
        )
        source = (self.source_factory or self._open_microphone)()

        stop_task = None
        if self.duration_s is not None:
            stop_task = asyncio.create_task(self._stop_after(source, self.duration_s))

        try:
            return await run_recognition(
                stream,
                partial(feed_chunks, source),
                out=self.out or sys.stdout,
                interim=self.interim,
            )
        except KeyboardInterrupt:
            return 0
        finally:
            if stop_task is not None:
                stop_task.cancel()
            with contextlib.suppress(Exception):
                await source.close()

    def _open_microphone(self) -> MicrophoneByteSource:
        audio = self.settings.audio
        return MicrophoneByteSource(
            sample_rate_hz=audio.sample_rate_hz,
            device=find_input_device(audio.input_device, host_api=audio.input_host_api),
        )

    async def _stop_after(self, source: ByteSource, delay_s: float) -> None:
        await asyncio.sleep(delay_s)
        logger.info(f"[Audio] Capture time of {delay_s:.1f}s reached; finishing")
        await source.close()
