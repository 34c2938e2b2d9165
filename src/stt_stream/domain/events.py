from __future__ import annotations

from enum import Enum


class SessionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    LISTENING = "LISTENING"
    CLOSED = "CLOSED"


class StreamEvent(str, Enum):
    """Event names raised by recognize and result streams."""

    # side channel
    CONNECT = "connect"
    LISTENING = "listening"
    MESSAGE = "message"
    RESULTS = "results"
    RESULT = "result"
    ERROR = "error"
    CLOSE = "close"
    STOP = "stop"

    # stream plumbing
    DATA = "data"
    END = "end"
    FINISH = "finish"


SIDE_CHANNEL_EVENTS: tuple[StreamEvent, ...] = (
    StreamEvent.CONNECT,
    StreamEvent.LISTENING,
    StreamEvent.MESSAGE,
    StreamEvent.RESULTS,
    StreamEvent.RESULT,
    StreamEvent.ERROR,
    StreamEvent.CLOSE,
    StreamEvent.STOP,
)
