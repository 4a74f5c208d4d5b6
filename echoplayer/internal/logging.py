import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional

import structlog

from echoplayer.internal import paths

_LOGGING_CONFIGURED = False

_FOREIGN_PRE_CHAIN = [
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso"),
]


def setup_logging(
    log_level_name: str = "INFO",
    log_file_path: Optional[Path] = None,
    console_output: bool = False,
) -> None:
    """
    Configure logging for the application.
    - Uses structlog for structured logging.
    - Writes JSON logs to a rotating file when log_file_path is provided.
    - Can optionally send human-readable logs to the console (stderr).
    - Log level can be set with the ECHOPLAYER_LOG_LEVEL environment variable or argument.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    effective_log_level_name = os.environ.get("ECHOPLAYER_LOG_LEVEL", log_level_name).upper()
    log_level = getattr(logging, effective_log_level_name, logging.INFO)

    handlers: list[logging.Handler] = []

    if log_file_path:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file_path,
            maxBytes=5 * 1024 * 1024,  # 5 MB
            backupCount=5,
            encoding="utf-8",
        )
        renderer = (
            structlog.processors.JSONRenderer()
            if log_file_path.name.endswith(".json")
            else structlog.dev.ConsoleRenderer(colors=False)
        )
        file_handler.setFormatter(structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=_FOREIGN_PRE_CHAIN,
        ))
        handlers.append(file_handler)

    # stdout belongs to command output, console logs go to stderr
    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(),
            foreign_pre_chain=_FOREIGN_PRE_CHAIN,
        ))
        handlers.append(console_handler)

    if not handlers:
        handlers.append(logging.NullHandler())

    # Mute noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,
    )
    _LOGGING_CONFIGURED = True


def setup_default_logging(console_output: bool = True) -> None:
    """
    Entry point configuration: JSON file in the app data logs dir plus console.
    """
    setup_logging(log_file_path=paths.get_log_file(), console_output=console_output)


def get_logger(name: str | None = None):
    return structlog.get_logger(name)
