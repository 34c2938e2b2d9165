from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, BinaryIO, Protocol

import janus
import numpy as np

from stt_stream.core.audio import content_type as content_types
from stt_stream.core.audio.format import AudioFrameF32, to_pcm16le_mono

logger = logging.getLogger(__name__)


class ByteSource(Protocol):
    async def chunks(self) -> AsyncIterator[bytes]: ...


@dataclass(slots=True)
class FileByteSource(ByteSource):
    """Encoded audio read from a file, or from stdin when `path` is None."""

    path: Path | None = None
    chunk_bytes: int = 8192

    def __post_init__(self) -> None:
        if self.chunk_bytes <= 0:
            raise ValueError("chunk_bytes must be > 0")

    async def chunks(self) -> AsyncIterator[bytes]:
        loop = asyncio.get_running_loop()
        if self.path is None:
            stream: BinaryIO = sys.stdin.buffer
            owned = False
        else:
            stream = await loop.run_in_executor(None, self.path.open, "rb")
            owned = True

        try:
            while True:
                chunk = await loop.run_in_executor(None, stream.read, self.chunk_bytes)
                if not chunk:
                    return
                yield chunk
        finally:
            if owned:
                stream.close()


@dataclass(slots=True)
class MicrophoneByteSource(ByteSource):
    """Microphone capture delivered as mono little-endian PCM16 blocks.

    Capture is attempted at `sample_rate_hz`; a device that refuses that rate is
    opened at its default rate and resampled in the audio callback, so the
    chunks always match `content_type`.
    """

    sample_rate_hz: int = 16000
    device: int | str | None = None
    block_ms: int = 100
    max_queue_blocks: int = 50

    _queue: janus.Queue[bytes | None] = field(init=False, repr=False)
    _stream: Any = field(init=False, default=None, repr=False)
    _capture_rate_hz: int = field(init=False, default=0)
    _dropped_blocks: int = field(init=False, default=0)
    _closed: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        if self.sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be > 0")
        if self.block_ms <= 0:
            raise ValueError("block_ms must be > 0")
        if self.max_queue_blocks <= 0:
            raise ValueError("max_queue_blocks must be > 0")

        import sounddevice as sd  # type: ignore

        # unbounded so the end marker always fits; _on_block enforces max_queue_blocks
        self._queue = janus.Queue()
        try:
            stream = self._open(sd, self.sample_rate_hz)
        except sd.PortAudioError as exc:
            logger.warning(
                f"[Audio] Device rejected {self.sample_rate_hz} Hz ({exc}); using its default rate"
            )
            stream = self._open(sd, None)
        self._stream = stream
        self._capture_rate_hz = int(stream.samplerate)
        stream.start()
        logger.info(
            f"[Audio] Capturing at {self._capture_rate_hz} Hz, sending {self.content_type!r}"
        )

    @property
    def content_type(self) -> str:
        return content_types.l16(self.sample_rate_hz)

    @property
    def dropped_blocks(self) -> int:
        return self._dropped_blocks

    async def chunks(self) -> AsyncIterator[bytes]:
        while True:
            payload = await self._queue.async_q.get()
            if payload is None:
                break
            yield payload
        self._queue.close()
        await self._queue.wait_closed()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        with contextlib.suppress(Exception):
            self._stream.stop()
        with contextlib.suppress(Exception):
            self._stream.close()
        if self._dropped_blocks:
            logger.warning(f"[Audio] Dropped {self._dropped_blocks} block(s) while behind")

        with contextlib.suppress(RuntimeError):
            self._queue.sync_q.put_nowait(None)

    def _open(self, sd: Any, samplerate: int | None) -> Any:
        blocksize = 0
        if samplerate is not None:
            blocksize = samplerate * self.block_ms // 1000
        return sd.InputStream(
            samplerate=samplerate,
            channels=1,
            dtype="float32",
            callback=self._on_block,
            device=self.device,
            blocksize=blocksize,
        )

    def _on_block(self, indata, _frames, _time, status) -> None:  # PortAudio thread
        if self._closed:
            return
        if status:
            logger.warning(f"[Audio] Input status: {status}")
        rate = self._capture_rate_hz or self.sample_rate_hz
        frame = AudioFrameF32(samples=np.asarray(indata, dtype=np.float32), sample_rate_hz=rate)
        payload = to_pcm16le_mono(frame, target_sample_rate_hz=self.sample_rate_hz)
        if not payload:
            return
        if self._queue.sync_q.qsize() >= self.max_queue_blocks:
            self._dropped_blocks += 1
            return
        with contextlib.suppress(RuntimeError):
            self._queue.sync_q.put_nowait(payload)


def find_input_device(device: str = "", *, host_api: str = "") -> int | None:
    """Input device index for a configured index or name fragment.

    Returns None (PortAudio default) when nothing is configured or nothing matches.
    """
    device = (device or "").strip()
    host_api = (host_api or "").strip().lower()
    if not device and not host_api:
        return None

    import sounddevice as sd  # type: ignore

    host_names = [str(api.get("name", "")).lower() for api in sd.query_hostapis()]
    candidates = [
        (idx, info)
        for idx, info in enumerate(sd.query_devices())
        if int(info.get("max_input_channels", 0) or 0) > 0
        and (not host_api or host_names[int(info.get("hostapi", 0))] == host_api)
    ]

    if device.isdigit():
        wanted = int(device)
        return wanted if any(idx == wanted for idx, _ in candidates) else None
    for idx, info in candidates:
        if not device or device.lower() in str(info.get("name", "")).lower():
            return idx
    logger.warning(f"[Audio] No input device matches {device!r} (host API {host_api!r})")
    return None


import contextlib  # keep main logic compact
