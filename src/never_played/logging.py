"""Logging configuration for the never-played CLI.

Command results are printed to stdout as JSON, so every log line goes to
stderr instead. Queue and Steam client events are structlog key/value
events: rendered for humans in development and as JSON lines otherwise.
When ``LOG_TO_FILE`` is set, the same events are also appended as JSON to a
rotating file so a long friend-verification run can be inspected later.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

from never_played.config import Settings, get_settings


def _open_log_file(settings: Settings) -> RotatingFileHandler | None:
    """Open the rotating log file, or return None when it is unavailable."""
    try:
        Path(settings.log_directory).mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(
            filename=settings.log_file_path,
            maxBytes=settings.log_file_max_bytes,
            backupCount=settings.log_file_backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        # Logging setup must not stop the command itself
        print(f"Warning: file logging disabled: {e}", file=sys.stderr)
        return None


def setup_logging(level: str | None = None) -> None:
    """Route structlog events to stderr and, if enabled, a rotating file.

    Args:
        level: Level name from the ``--log-level`` option. Falls back to the
            ``LOG_LEVEL`` setting when omitted.
    """
    settings = get_settings()
    log_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", level=log_level, handlers=[])

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(log_level)
    stderr_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                (
                    structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())  # type: ignore[list-item]
                    if settings.is_development
                    else structlog.processors.JSONRenderer()
                ),
            ]
        )
    )
    logging.root.addHandler(stderr_handler)

    file_handler = _open_log_file(settings) if settings.log_to_file else None
    if file_handler is not None:
        file_handler.setLevel(log_level)
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.JSONRenderer(),
                ]
            )
        )
        logging.root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # httpx logs every request at INFO; the queue already logs attempts
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger for a never_played module."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]
