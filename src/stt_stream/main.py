from __future__ import annotations

import argparse
import asyncio
import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from stt_stream.app.headless_file import HeadlessFileRunner
from stt_stream.app.headless_mic import HeadlessMicRunner
from stt_stream.app.wiring import with_resolved_token
from stt_stream.config.paths import default_settings_path
from stt_stream.config.settings import AppSettings, load_settings, normalize_options, to_dict
from stt_stream.core.audio import content_type as content_types
from stt_stream.core.audio.source import FileByteSource

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%H:%M:%S"
LOG_FILE_MAX_BYTES = 1024 * 1024


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stt-stream")
    parser.add_argument("--version", action="store_true", help="Print version and exit")

    parser.add_argument(
        "--config",
        type=Path,
        default=default_settings_path(),
        help="Path to settings JSON (default: user config dir)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file")

    sub = parser.add_subparsers(dest="command")

    recognize = sub.add_parser("recognize", help="Transcribe an audio file (or '-' for stdin)")
    recognize.add_argument("path", help="Audio file path, or '-' to read stdin")
    _add_session_options(recognize)
    recognize.add_argument(
        "--content-type",
        default=None,
        help="Audio content type (default: from the file extension or header)",
    )
    recognize.add_argument("--chunk-size", type=int, default=None, help="Bytes per write")

    mic = sub.add_parser("run-mic", help="Transcribe microphone audio until Ctrl+C")
    _add_session_options(mic)
    mic.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop capturing after this many seconds and wait for final results",
    )

    sub.add_parser("print-config", help="Print the effective settings as JSON")

    return parser


def _add_session_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--interim", action="store_true", help="Also print interim results")
    parser.add_argument("--model", default=None, help="Recognition model name")
    parser.add_argument(
        "--token",
        default=None,
        help="Access token (default: settings, then $STT_STREAM_TOKEN)",
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        from . import __version__

        print(__version__)
        return 0

    configure_logging(level=args.log_level, log_file=args.log_file)

    try:
        settings = _apply_overrides(_load_settings_or_default(args.config), args)
    except (ValueError, OSError) as exc:
        print(f"Error: invalid configuration: {exc}", flush=True)
        return 2

    if args.command == "print-config":
        data = to_dict(with_resolved_token(settings))
        if data["connection"]["token"]:
            data["connection"]["token"] = "***"
        print(json.dumps(data, ensure_ascii=False, indent=2))
        return 0

    if args.command == "recognize":
        path = None if args.path == "-" else Path(args.path)
        if path is not None and not path.is_file():
            print(f"Error: audio file not found: {path}", flush=True)
            return 2
        if path is not None and settings.recognize.content_type is None:
            guessed = content_types.from_filename(path)
            if guessed is not None:
                settings = normalize_options({"content_type": guessed}, base=settings)
        runner = HeadlessFileRunner(
            settings=settings,
            source=FileByteSource(path=path, chunk_bytes=settings.audio.file_chunk_bytes),
            interim=args.interim,
        )
        return asyncio.run(runner.run())

    if args.command == "run-mic":
        runner = HeadlessMicRunner(
            settings=settings,
            duration_s=args.duration,
            interim=args.interim,
        )
        try:
            return asyncio.run(runner.run())
        except KeyboardInterrupt:
            return 0

    parser.print_help()
    return 2


def configure_logging(*, level: str = "INFO", log_file: Path | None = None) -> None:
    logging.basicConfig(level=getattr(logging, level), format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    if log_file is None:
        return
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=0, encoding="utf-8"
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
    logging.getLogger().addHandler(handler)


def _load_settings_or_default(path: Path) -> AppSettings:
    if path.exists():
        return load_settings(path)
    return AppSettings()


def _apply_overrides(settings: AppSettings, args: argparse.Namespace) -> AppSettings:
    options: dict[str, Any] = {}
    for name in ("model", "token", "content_type"):
        value = getattr(args, name, None)
        if value is not None:
            options[name] = value
    chunk_size = getattr(args, "chunk_size", None)
    if chunk_size is not None:
        options["file_chunk_bytes"] = chunk_size
    if getattr(args, "interim", False):
        options["interim_results"] = True
    if not options:
        return settings
    return normalize_options(options, base=settings)


if __name__ == "__main__":
    raise SystemExit(main())
