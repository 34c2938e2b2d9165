from __future__ import annotations

import os
from dataclasses import replace
from typing import Mapping

from stt_stream.config.settings import AppSettings
from stt_stream.core.streams import ConsumeMode
from stt_stream.core.stt.recognize_stream import RecognizeStream
from stt_stream.core.stt.result_stream import ResultStream
from stt_stream.core.transport import TransportFactory

TOKEN_ENV = "STT_STREAM_TOKEN"


def resolve_token(settings: AppSettings, *, environ: Mapping[str, str] | None = None) -> str:
    """Access token from settings, falling back to the environment."""
    if settings.connection.token:
        return settings.connection.token
    environ = os.environ if environ is None else environ
    return (environ.get(TOKEN_ENV) or "").strip()


def with_resolved_token(
    settings: AppSettings, *, environ: Mapping[str, str] | None = None
) -> AppSettings:
    token = resolve_token(settings, environ=environ)
    if token == settings.connection.token:
        return settings
    return replace(settings, connection=replace(settings.connection, token=token))


def create_recognize_stream(
    settings: AppSettings,
    *,
    content_type: str | None = None,
    transport_factory: TransportFactory | None = None,
    environ: Mapping[str, str] | None = None,
) -> RecognizeStream:
    settings = with_resolved_token(settings, environ=environ)
    if content_type is not None:
        settings = replace(settings, recognize=replace(settings.recognize, content_type=content_type))
    return RecognizeStream.from_settings(settings, transport_factory=transport_factory)


def create_result_stream(source: RecognizeStream) -> ResultStream:
    """Pass-through for `source` that relays all of its events."""
    results = ResultStream(mode=ConsumeMode.PULL)
    results.propagate_events_from(source)
    return results
