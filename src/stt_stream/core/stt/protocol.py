from __future__ import annotations

import json
import re
from typing import Any
from urllib.parse import quote

from stt_stream.config.settings import ConnectionSettings, RecognizeSettings

RECOGNIZE_PATH = "/v1/recognize"
TOKEN_QUERY_PARAM = "watson-token"
LEARNING_OPT_OUT_HEADER = "X-Watson-Learning-Opt-Out"

OPENING_MESSAGE_DEFAULTS: dict[str, Any] = {
    "content-type": "audio/wav",
    "continuous": True,
    "interim_results": True,
    "word_confidence": True,
    "timestamps": True,
    "max_alternatives": 3,
    "inactivity_timeout": 30,
}

# settings field -> opening message key
OPENING_MESSAGE_PARAMS_ALLOWED: dict[str, str] = {
    "content_type": "content-type",
    "continuous": "continuous",
    "interim_results": "interim_results",
    "word_confidence": "word_confidence",
    "timestamps": "timestamps",
    "max_alternatives": "max_alternatives",
    "inactivity_timeout": "inactivity_timeout",
    "keywords": "keywords",
    "keywords_threshold": "keywords_threshold",
    "word_alternatives_threshold": "word_alternatives_threshold",
}

STOP_MESSAGE: dict[str, str] = {"action": "stop"}

_ENCODE_SAFE = "-_.!~*'()"


def build_query_params(connection: ConnectionSettings) -> dict[str, str]:
    params = {"model": connection.model}
    if connection.token:
        params[TOKEN_QUERY_PARAM] = connection.token
    return params


def build_query_string(params: dict[str, str]) -> str:
    parts = []
    for key, value in params.items():
        # the service rejects a percent-encoded token
        encoded = value if key == TOKEN_QUERY_PARAM else quote(str(value), safe=_ENCODE_SAFE)
        parts.append(f"{key}={encoded}")
    return "&".join(parts)


def build_url(connection: ConnectionSettings) -> str:
    base = re.sub(r"^http", "ws", connection.url.rstrip("/"))
    return f"{base}{RECOGNIZE_PATH}?{build_query_string(build_query_params(connection))}"


def build_headers(connection: ConnectionSettings) -> dict[str, str]:
    headers = dict(connection.headers)
    if connection.learning_opt_out:
        headers.setdefault(LEARNING_OPT_OUT_HEADER, "1")
    return headers


def build_opening_message(recognize: RecognizeSettings, *, content_type: str | None) -> dict[str, Any]:
    message: dict[str, Any] = {"action": "start", **OPENING_MESSAGE_DEFAULTS}
    for field_name, key in OPENING_MESSAGE_PARAMS_ALLOWED.items():
        value = getattr(recognize, field_name)
        if value is None:
            continue
        message[key] = list(value) if isinstance(value, tuple) else value
    if content_type:
        message["content-type"] = content_type
    return message


def encode_opening_message(recognize: RecognizeSettings, *, content_type: str | None) -> str:
    return json.dumps(build_opening_message(recognize, content_type=content_type))


def encode_stop_message() -> str:
    return json.dumps(STOP_MESSAGE)
