"""
Structured logging for the okxfeed client.

Configures structlog on top of the standard library so that every module logs
snake_case events with key/value fields, rendered either as JSON (production)
or as colored console lines (development).

Example Usage:
    ```python
    from okxfeed.utils import LogConfig, add_context, get_logger, setup_logging

    setup_logging(LogConfig(level="DEBUG", format="pretty"))

    logger = get_logger(__name__)
    logger.info("websocket_connected", connection="public")

    with add_context(connection="business"):
        logger.warning("websocket_stale", silent_for=31.2)
    ```
"""

from contextlib import contextmanager
from dataclasses import dataclass
import logging
from pathlib import Path
import sys
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor

SENSITIVE_KEYS = frozenset(
    {
        "api_key",
        "apikey",
        "api_secret",
        "secret",
        "secret_key",
        "passphrase",
        "password",
        "token",
        "access_token",
        "sign",
    }
)


@dataclass
class LogConfig:
    """Configuration for the logging system.

    Attributes:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: "json" for production, "pretty" for development
        file_path: Optional path to a JSON log file
        include_timestamp: Whether to include ISO timestamps
        include_caller_info: Whether to include caller file/line/function
        console_output: Whether to write to stdout
        max_string_length: Longest string value kept before truncation; raw
            frames logged on parse failures can be large
        environment: Environment name (dev, staging, prod)
        app_version: Application version string
    """

    level: str = "INFO"
    format: Literal["json", "pretty"] = "pretty"
    file_path: str | None = None
    include_timestamp: bool = True
    include_caller_info: bool = True
    console_output: bool = True
    max_string_length: int = 1000
    environment: str = "dev"
    app_version: str = "0.1.0"


def add_app_info(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Tag every entry with the application name, environment and version."""
    event_dict["app"] = "okxfeed"
    event_dict["environment"] = getattr(add_app_info, "environment", "unknown")
    event_dict["version"] = getattr(add_app_info, "version", "unknown")
    return event_dict


def filter_sensitive(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask credential-like values anywhere in the event, including nested dicts."""

    def mask_value(value: Any) -> Any:
        if isinstance(value, str) and len(value) > 4:
            return f"{value[:2]}***{value[-2:]}"
        return "***"

    def recursive_mask(data: Any) -> Any:
        if isinstance(data, dict):
            return {
                key: mask_value(value)
                if isinstance(key, str) and key.lower() in SENSITIVE_KEYS
                else recursive_mask(value)
                for key, value in data.items()
            }
        if isinstance(data, (list, tuple)):
            return type(data)(recursive_mask(item) for item in data)
        return data

    return recursive_mask(event_dict)  # type: ignore[return-value]


def truncate_strings(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Truncate long string values to prevent log bloat."""
    max_length = getattr(truncate_strings, "max_length", 1000)

    def truncate_value(value: Any) -> Any:
        if isinstance(value, str) and len(value) > max_length:
            return f"{value[:max_length]}... [truncated]"
        if isinstance(value, dict):
            return {k: truncate_value(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return type(value)(truncate_value(item) for item in value)
        return value

    return {key: truncate_value(value) for key, value in event_dict.items()}


def _shared_processors(config: LogConfig) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        add_app_info,
        filter_sensitive,
        truncate_strings,
    ]

    if config.include_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso"))

    if config.include_caller_info:
        processors.append(
            structlog.processors.CallsiteParameterAdder(
                [
                    structlog.processors.CallsiteParameter.FILENAME,
                    structlog.processors.CallsiteParameter.LINENO,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                ]
            )
        )

    processors.append(structlog.processors.StackInfoRenderer())
    processors.append(structlog.processors.format_exc_info)
    return processors


def setup_logging(config: LogConfig) -> None:
    """Initialize structlog and the stdlib root logger from ``config``.

    Console output is rendered with the configured format. When ``file_path``
    is set, the same events are also appended to that file as JSON lines.
    """
    add_app_info.environment = config.environment
    add_app_info.version = config.app_version
    truncate_strings.max_length = config.max_string_length

    level = getattr(logging, config.level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if config.console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.processors.JSONRenderer()
                if config.format == "json"
                else structlog.dev.ConsoleRenderer(colors=True),
                foreign_pre_chain=_shared_processors(config),
            )
        )
        root_logger.addHandler(console_handler)

    if config.file_path:
        file_path = Path(config.file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(file_path)
        file_handler.setLevel(level)
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.processors.JSONRenderer(),
                foreign_pre_chain=_shared_processors(config),
            )
        )
        root_logger.addHandler(file_handler)

    structlog.configure(
        processors=[
            *_shared_processors(config),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance, typically for ``__name__`` of the calling module."""
    return structlog.get_logger(name)


@contextmanager
def add_context(**kwargs: Any):
    """Bind key/value pairs to every log entry emitted inside the block.

    Context is stored in contextvars, so each asyncio task sees its own copy.

    Example:
        ```python
        with add_context(connection="public"):
            logger.info("resubscribing", keys=3)
        ```
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield


def set_log_level(level: str) -> None:
    """Change the root logging level, and that of its handlers, at runtime."""
    numeric_level = getattr(logging, level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in root_logger.handlers:
        handler.setLevel(numeric_level)


def clear_context() -> None:
    """Drop all bound context variables."""
    structlog.contextvars.clear_contextvars()
