from __future__ import annotations

import sys
from dataclasses import dataclass
from functools import partial
from typing import TextIO

from stt_stream.app.session import feed_chunks, run_recognition
from stt_stream.app.wiring import create_recognize_stream
from stt_stream.config.settings import AppSettings
from stt_stream.core.audio.source import ByteSource
from stt_stream.core.transport import TransportFactory


@dataclass(slots=True)
class HeadlessFileRunner:
    settings: AppSettings
    source: ByteSource
    interim: bool = False
    transport_factory: TransportFactory | None = None
    out: TextIO | None = None

    async def run(self) -> int:
        stream = create_recognize_stream(self.settings, transport_factory=self.transport_factory)
        return await run_recognition(
            stream,
            partial(feed_chunks, self.source),
            out=self.out or sys.stdout,
            interim=self.interim,
        )
