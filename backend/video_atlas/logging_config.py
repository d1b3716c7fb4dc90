from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

import structlog
from structlog.typing import EventDict, Processor

from backend.video_atlas.config import AppSettings
from backend.video_atlas.telemetry import TELEMETRY_LOGGER_NAME

ROOT_LOGGER_NAME = "video_atlas"
LOG_FILE_NAME = "video-atlas.log"
TELEMETRY_LOG_FILE_NAME = "video-atlas-telemetry.log"

# The discovery client logs a cache warning on every build() without a file cache.
_QUIETED_LOGGERS: tuple[str, ...] = (
    "googleapiclient.discovery",
    "googleapiclient.discovery_cache",
)


@dataclass(frozen=True)
class LoggingPaths:
    log_file: Path
    telemetry_log_file: Path


def configure_application_logging(
    settings: AppSettings,
    *,
    console_stream: TextIO | None = None,
) -> LoggingPaths:
    """Route `video_atlas.*` records to the console and JSON-lines files.

    Telemetry events go to their own file only. Calling this again replaces the
    handlers installed by the previous call.
    """
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    paths = LoggingPaths(
        log_file=settings.log_dir / LOG_FILE_NAME,
        telemetry_log_file=settings.log_dir / TELEMETRY_LOG_FILE_NAME,
    )
    stream = console_stream if console_stream is not None else sys.stdout

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            *_common_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    console_handler = logging.StreamHandler(stream)
    console_handler.setLevel(_level_from_name(settings.log_level))
    console_handler.setFormatter(_console_formatter(colors=_is_terminal(stream)))

    _install_handlers(
        ROOT_LOGGER_NAME,
        level=logging.DEBUG,
        handlers=[console_handler, _json_file_handler(paths.log_file, level=logging.DEBUG)],
    )
    _install_handlers(
        TELEMETRY_LOGGER_NAME,
        level=logging.INFO,
        handlers=[_json_file_handler(paths.telemetry_log_file, level=logging.INFO)],
    )
    for name in _QUIETED_LOGGERS:
        logging.getLogger(name).setLevel(logging.ERROR)

    logging.getLogger(ROOT_LOGGER_NAME).info(
        "logging configured console_level=%s path=%s telemetry_path=%s",
        logging.getLevelName(console_handler.level),
        paths.log_file,
        paths.telemetry_log_file,
    )
    return paths


def _install_handlers(
    logger_name: str,
    *,
    level: int,
    handlers: list[logging.Handler],
) -> None:
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    for handler in handlers:
        logger.addHandler(handler)


def _level_from_name(name: str) -> int:
    level = logging.getLevelNamesMapping().get(name.strip().upper())
    return level if level is not None else logging.INFO


def _common_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
    ]


def _json_file_handler(path: Path, *, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_common_processors(),
            processors=[
                _add_source_location,
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(sort_keys=True),
            ],
        )
    )
    return handler


def _console_formatter(*, colors: bool) -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_common_processors(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
    )


def _add_source_location(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord):
        event_dict.update(
            module=record.module,
            lineno=record.lineno,
            thread_name=record.threadName,
        )
    return event_dict


def _is_terminal(stream: TextIO) -> bool:
    try:
        return stream.isatty()
    except (AttributeError, OSError, ValueError):
        return False
