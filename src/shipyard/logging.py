"""Logging configuration for Shipyard.

structlog renders through the standard library so that one set of handlers
serves both our loggers and third-party ones. Console output is coloured in
development and JSON otherwise; optional rotating files always get JSON.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

from shipyard.config import get_settings

_SHARED_PROCESSORS: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.StackInfoRenderer(),
    structlog.dev.set_exc_info,
    structlog.processors.TimeStamper(fmt="iso"),
]


def _formatter(renderer: structlog.types.Processor) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_SHARED_PROCESSORS,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )


def _file_handler(path: str, max_bytes: int, backups: int, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backups, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
    return handler


def setup_logging() -> None:
    """Configure structured logging."""
    settings = get_settings()

    # Set log level
    log_level = getattr(logging, str(settings.log_level).upper(), logging.INFO)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    structlog.configure(
        processors=[
            *_SHARED_PROCESSORS,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", level=log_level, handlers=[])
    root = logging.getLogger()
    root.setLevel(log_level)

    # Logs go to stderr; stdout carries command results.
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(
        _formatter(
            structlog.dev.ConsoleRenderer(colors=True)
            if settings.is_development
            else structlog.processors.JSONRenderer()
        )
    )
    root.addHandler(console)

    if settings.log_to_file:
        try:
            Path(settings.log_directory).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            settings.log_to_file = False
            print(f"File logging disabled: {exc}", file=sys.stderr)

    if settings.log_to_file:
        try:
            root.addHandler(
                _file_handler(
                    settings.log_file_path,
                    settings.log_file_max_bytes,
                    settings.log_file_backup_count,
                    log_level,
                )
            )
            if settings.log_error_file_enabled:
                root.addHandler(
                    _file_handler(
                        settings.error_log_file_path,
                        settings.log_file_max_bytes,
                        settings.log_file_backup_count,
                        logging.WARNING,
                    )
                )
        except OSError as exc:
            print(f"File logging disabled: {exc}", file=sys.stderr)

    # Reduce noise from httpx
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)
