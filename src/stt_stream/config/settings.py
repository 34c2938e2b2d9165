from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping

logger = logging.getLogger(__name__)

DEFAULT_URL = "wss://stream.watsonplatform.net/speech-to-text/api"
DEFAULT_MODEL = "en-US_BroadbandModel"
DEFAULT_CONTENT_TYPE = "audio/wav"


@dataclass(frozen=True, slots=True)
class ConnectionSettings:
    url: str = DEFAULT_URL
    model: str = DEFAULT_MODEL
    token: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    learning_opt_out: bool = False
    open_timeout_s: float = 10.0

    def validate(self) -> None:
        if not self.url:
            raise ValueError("url must be non-empty")
        if not self.url.startswith(("ws://", "wss://", "http://", "https://")):
            raise ValueError("url must use ws, wss, http or https")
        if not self.model:
            raise ValueError("model must be non-empty")
        if self.open_timeout_s <= 0:
            raise ValueError("open_timeout_s must be > 0")


@dataclass(frozen=True, slots=True)
class RecognizeSettings:
    """Opening-message overrides; None keeps the protocol default."""

    content_type: str | None = None
    continuous: bool | None = None
    interim_results: bool | None = None
    word_confidence: bool | None = None
    timestamps: bool | None = None
    max_alternatives: int | None = None
    inactivity_timeout: int | None = None
    keywords: tuple[str, ...] | None = None
    keywords_threshold: float | None = None
    word_alternatives_threshold: float | None = None

    def validate(self) -> None:
        if self.content_type is not None and not self.content_type:
            raise ValueError("content_type must be non-empty when set")
        if self.max_alternatives is not None and self.max_alternatives < 1:
            raise ValueError("max_alternatives must be >= 1")
        if self.inactivity_timeout is not None and (
            self.inactivity_timeout != -1 and self.inactivity_timeout <= 0
        ):
            raise ValueError("inactivity_timeout must be > 0 or -1 (infinite)")
        for name in ("keywords_threshold", "word_alternatives_threshold"):
            value = getattr(self, name)
            if value is not None and not (0.0 <= value <= 1.0):
                raise ValueError(f"{name} must be in 0.0..1.0")


@dataclass(frozen=True, slots=True)
class StreamSettings:
    high_water_mark: int = 16384
    drain_poll_interval_s: float = 0.01
    default_content_type: str = DEFAULT_CONTENT_TYPE

    def validate(self) -> None:
        if self.high_water_mark < 0:
            raise ValueError("high_water_mark must be >= 0")
        if self.drain_poll_interval_s <= 0:
            raise ValueError("drain_poll_interval_s must be > 0")
        if not self.default_content_type:
            raise ValueError("default_content_type must be non-empty")


@dataclass(frozen=True, slots=True)
class AudioSettings:
    sample_rate_hz: int = 16000
    input_host_api: str = ""
    input_device: str = ""
    file_chunk_bytes: int = 8192

    def validate(self) -> None:
        if self.sample_rate_hz not in (8000, 16000, 22050, 44100, 48000):
            raise ValueError("sample_rate_hz must be one of 8000, 16000, 22050, 44100, 48000")
        if self.file_chunk_bytes <= 0:
            raise ValueError("file_chunk_bytes must be > 0")


@dataclass(frozen=True, slots=True)
class AppSettings:
    connection: ConnectionSettings = field(default_factory=ConnectionSettings)
    recognize: RecognizeSettings = field(default_factory=RecognizeSettings)
    stream: StreamSettings = field(default_factory=StreamSettings)
    audio: AudioSettings = field(default_factory=AudioSettings)

    def validate(self) -> None:
        self.connection.validate()
        self.recognize.validate()
        self.stream.validate()
        self.audio.validate()


# Spellings accepted by normalize_options() for a field, highest precedence first.
# The wire spellings outrank the field name, and the current opt-out header
# outranks the legacy one.
OPTION_ALIASES: dict[str, tuple[str, ...]] = {
    "token": ("watson-token", "token"),
    "content_type": ("content-type", "content_type"),
    "learning_opt_out": ("X-Watson-Learning-Opt-Out", "X-WDC-PL-OPT-OUT", "learning_opt_out"),
}
_ALIAS_NAMES = {name for names in OPTION_ALIASES.values() for name in names}

_SECTIONS: dict[str, type] = {
    "connection": ConnectionSettings,
    "recognize": RecognizeSettings,
    "stream": StreamSettings,
    "audio": AudioSettings,
}


def _field_names(cls: type) -> set[str]:
    return {f.name for f in fields(cls)}


def _coerce(name: str, value: Any) -> Any:
    if name == "keywords" and value is not None:
        if isinstance(value, str):
            return tuple(k.strip() for k in value.split(",") if k.strip())
        return tuple(str(k) for k in value)
    if name == "headers" and value is not None:
        return {str(k): str(v) for k, v in dict(value).items()}
    if name == "learning_opt_out":
        return value not in (False, None, "", "0", 0, "false")
    return value


def normalize_options(options: Mapping[str, Any], *, base: AppSettings | None = None) -> AppSettings:
    """Build settings from a flat options mapping.

    Every accepted alias is mapped to its canonical field once, here; unknown
    keys are ignored.
    """
    canonical = {key: value for key, value in options.items() if key not in _ALIAS_NAMES}
    for target, names in OPTION_ALIASES.items():
        for name in names:
            if name in options:
                canonical[target] = options[name]
                break

    settings = base or AppSettings()
    claimed: set[str] = set()
    for section, cls in _SECTIONS.items():
        names = _field_names(cls) & canonical.keys()
        if not names:
            continue
        claimed |= names
        current = getattr(settings, section)
        updated = replace(current, **{name: _coerce(name, canonical[name]) for name in names})
        settings = replace(settings, **{section: updated})

    for key in canonical.keys() - claimed:
        logger.debug(f"Ignoring unknown option `{key}`")

    settings.validate()
    return settings


def to_dict(settings: AppSettings) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for section in _SECTIONS:
        obj = getattr(settings, section)
        entry: dict[str, Any] = {}
        for f in fields(obj):
            value = getattr(obj, f.name)
            if isinstance(value, tuple):
                value = list(value)
            elif isinstance(value, dict):
                value = dict(value)
            entry[f.name] = value
        data[section] = entry
    return data


def from_dict(data: Mapping[str, Any]) -> AppSettings:
    kwargs: dict[str, Any] = {}
    for section, cls in _SECTIONS.items():
        raw = data.get(section) or {}
        if not isinstance(raw, Mapping):
            raise ValueError(f"`{section}` must be a JSON object")
        known = _field_names(cls)
        kwargs[section] = cls(**{k: _coerce(k, v) for k, v in raw.items() if k in known})
    settings = AppSettings(**kwargs)
    settings.validate()
    return settings


def load_settings(path: Path) -> AppSettings:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("settings file must contain a JSON object")
    return from_dict(raw)


def save_settings(path: Path, settings: AppSettings) -> None:
    settings.validate()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(to_dict(settings), ensure_ascii=False, indent=2), encoding="utf-8")
