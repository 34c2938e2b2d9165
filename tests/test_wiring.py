from __future__ import annotations

from stt_stream.app.wiring import (
    TOKEN_ENV,
    create_recognize_stream,
    create_result_stream,
    resolve_token,
    with_resolved_token,
)
from stt_stream.config.settings import AppSettings, ConnectionSettings
from stt_stream.domain.events import StreamEvent


def test_settings_token_wins_over_environment():
    settings = AppSettings(connection=ConnectionSettings(token="from-settings"))
    assert resolve_token(settings, environ={TOKEN_ENV: "from-env"}) == "from-settings"


def test_environment_token_is_used_when_settings_have_none():
    settings = AppSettings()
    assert resolve_token(settings, environ={TOKEN_ENV: " from-env "}) == "from-env"
    assert resolve_token(settings, environ={}) == ""


def test_with_resolved_token_returns_same_settings_when_unchanged():
    settings = AppSettings()
    assert with_resolved_token(settings, environ={}) is settings
    updated = with_resolved_token(settings, environ={TOKEN_ENV: "t"})
    assert updated.connection.token == "t"


def test_create_recognize_stream_applies_content_type_and_token():
    stream = create_recognize_stream(
        AppSettings(),
        content_type="audio/l16; rate=16000",
        environ={TOKEN_ENV: "tok"},
    )
    assert stream.content_type == "audio/l16; rate=16000"
    assert stream.connection.token == "tok"


def test_create_result_stream_relays_events():
    stream = create_recognize_stream(AppSettings(), environ={})
    results = create_result_stream(stream)
    stops = []
    results.on(StreamEvent.STOP, lambda: stops.append(True))

    stream.emit(StreamEvent.STOP)

    assert stops == [True]
    assert results.all_event_sources == [stream]
