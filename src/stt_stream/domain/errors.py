from __future__ import annotations


class RecognizeError(Exception):
    """Base error reported through a stream's `error` event.

    `raw` holds the offending inbound frame when there is one.
    """

    def __init__(self, message: str, *, raw: object | None = None) -> None:
        super().__init__(message)
        self.raw = raw


class TransportError(RecognizeError):
    """Socket-level failure (connect refused, abnormal close, ...)."""


class ProtocolError(RecognizeError):
    """Inbound frame that does not match the recognition protocol."""


class ServiceError(RecognizeError):
    """Error reported by the recognition service itself."""
