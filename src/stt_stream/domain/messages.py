from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from .errors import ProtocolError


@dataclass(frozen=True, slots=True)
class Alternative:
    transcript: str
    confidence: float | None = None
    timestamps: list[Any] | None = None
    word_confidence: list[Any] | None = None


@dataclass(frozen=True, slots=True)
class Result:
    alternatives: tuple[Alternative, ...]
    final: bool
    keywords_result: Mapping[str, Any] | None = None
    word_alternatives: list[Any] | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def transcript(self) -> str | None:
        """Best alternative's transcript, if any."""
        if not self.alternatives:
            return None
        return self.alternatives[0].transcript


@dataclass(frozen=True, slots=True)
class ListeningState:
    listening: bool = True


@dataclass(frozen=True, slots=True)
class ResultsUpdate:
    results: tuple[Result, ...]
    result_index: int | None = None


@dataclass(frozen=True, slots=True)
class ErrorNotice:
    error: str


InboundMessage = ListeningState | ResultsUpdate | ErrorNotice


def _parse_alternative(data: Any) -> Alternative:
    if not isinstance(data, Mapping):
        raise ProtocolError("alternative must be an object", raw=data)
    confidence = data.get("confidence")
    return Alternative(
        transcript=str(data.get("transcript", "") or ""),
        confidence=float(confidence) if isinstance(confidence, (int, float)) else None,
        timestamps=data.get("timestamps"),
        word_confidence=data.get("word_confidence"),
    )


def parse_result(data: Any) -> Result:
    if not isinstance(data, Mapping):
        raise ProtocolError("result must be an object", raw=data)
    alternatives = data.get("alternatives") or []
    if not isinstance(alternatives, list):
        raise ProtocolError("result alternatives must be a list", raw=data)
    return Result(
        alternatives=tuple(_parse_alternative(a) for a in alternatives),
        final=bool(data.get("final")),
        keywords_result=data.get("keywords_result"),
        word_alternatives=data.get("word_alternatives"),
        raw=data,
    )


def decode_message(payload: Any) -> InboundMessage:
    """Turn a decoded JSON payload into one of the inbound message variants."""
    if not isinstance(payload, Mapping):
        raise ProtocolError("Unrecognised message from server", raw=payload)

    if payload.get("error"):
        return ErrorNotice(error=str(payload["error"]))

    if payload.get("state") == "listening":
        return ListeningState(listening=True)

    results = payload.get("results")
    if isinstance(results, list):
        index = payload.get("result_index")
        return ResultsUpdate(
            results=tuple(parse_result(r) for r in results),
            result_index=int(index) if isinstance(index, int) else None,
        )

    raise ProtocolError("Unrecognised message from server", raw=payload)
