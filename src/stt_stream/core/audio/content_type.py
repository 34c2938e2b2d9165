from __future__ import annotations

from pathlib import PurePath

# first four bytes of the container -> content type
HEADER_CONTENT_TYPES: dict[bytes, str] = {
    b"fLaC": "audio/flac",
    b"RIFF": "audio/wav",
    b"OggS": "audio/ogg; codecs=opus",
    b"\x1aE\xdf\xa3": "audio/webm",
}

EXTENSION_CONTENT_TYPES: dict[str, str] = {
    ".flac": "audio/flac",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg; codecs=opus",
    ".opus": "audio/ogg; codecs=opus",
    ".webm": "audio/webm",
    ".mp3": "audio/mp3",
    ".l16": "audio/l16",
    ".pcm": "audio/l16",
}


def from_header(buffer: bytes) -> str | None:
    """Guess the content type from the magic number at the start of `buffer`."""
    return HEADER_CONTENT_TYPES.get(bytes(buffer[:4]))


def from_filename(name: str | PurePath) -> str | None:
    return EXTENSION_CONTENT_TYPES.get(PurePath(name).suffix.lower())


def l16(sample_rate_hz: int, *, channels: int = 1) -> str:
    """Content type for raw little-endian PCM16 audio."""
    return f"audio/l16; rate={sample_rate_hz}; channels={channels}; endianness=little-endian"
