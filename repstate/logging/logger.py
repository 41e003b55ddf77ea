"""
Logger Implementation
=====================

structlog configuration for the engine.

- JSON lines in production, colored console output in development
- Identity secrets and credentials are redacted before rendering
- Field elements are shortened in console output (full values in JSON)
- Replay position and epoch can be bound for the duration of a block of work

Version: 0.1.0
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, TextIO

import structlog
from structlog.types import Processor


if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger


SENSITIVE_KEYS = frozenset(
    {
        "password",
        "secret",
        "trapdoor",
        "identity_nullifier",
        "private_key",
        "api_key",
    }
)

# Integers at or above this are treated as field elements when shortening.
FIELD_ELEMENT_THRESHOLD = 2**64

QUIET_LOGGERS = ("asyncio", "pymongo", "motor")


def _add_service_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    event_dict.setdefault("service", "repstate")
    event_dict.setdefault("version", "0.1.0")
    return event_dict


def _add_timestamp(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Add ISO timestamp to log entries."""
    import datetime

    event_dict["timestamp"] = datetime.datetime.now(datetime.UTC).isoformat()
    return event_dict


def _censor_secrets(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Censor identity secrets and credentials, including nested proof inputs."""

    def censor(value: Any) -> Any:
        if isinstance(value, dict):
            return {
                k: "***REDACTED***" if any(s in str(k).lower() for s in SENSITIVE_KEYS) else censor(v)
                for k, v in value.items()
            }
        if isinstance(value, list):
            return [censor(v) for v in value]
        return value

    return censor(event_dict)


def _shorten(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value >= FIELD_ELEMENT_THRESHOLD:
        digits = f"{value:x}"
        return f"0x{digits[:8]}..{digits[-4:]}"
    if isinstance(value, dict):
        return {k: _shorten(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_shorten(v) for v in value]
    return value


def _shorten_field_elements(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Render roots, leaves and nullifiers as short hex in console output."""
    return {k: _shorten(v) for k, v in event_dict.items()}


def _build_processors(json_logs: bool) -> tuple[list[Processor], Processor]:
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        _add_timestamp,
        _add_service_context,
        _censor_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        shared_processors.append(structlog.processors.format_exc_info)
        return shared_processors, structlog.processors.JSONRenderer()

    shared_processors.extend([_shorten_field_elements, structlog.dev.set_exc_info])
    renderer = structlog.dev.ConsoleRenderer(
        colors=True,
        exception_formatter=structlog.dev.RichTracebackFormatter(
            show_locals=False,
            max_frames=10,
        ),
    )
    return shared_processors, renderer


def setup_logging(
    log_level: str | None = None,
    json_logs: bool | None = None,
    service_name: str = "repstate",
    stream: TextIO | None = None,
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        log_level: Logging level name; defaults to ``settings.log_level``
        json_logs: JSON output; defaults to ``settings.json_logs``, and is
            forced on in production
        service_name: Bound as ``service`` on every entry
        stream: Output stream for the root handler; defaults to stdout
    """
    from repstate.config import settings

    level = (log_level or settings.log_level.value).upper()
    if json_logs is None:
        json_logs = settings.json_logs or settings.is_production

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    shared_processors, renderer = _build_processors(json_logs)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    structlog.contextvars.bind_contextvars(service=service_name)


def get_logger(name: str | None = None) -> "BoundLogger":
    """
    Get a structured logger instance.

    Example:
        logger = get_logger(__name__)
        logger.info("event_applied", kind="UserSignedUp", block_number=12)
    """
    return structlog.stdlib.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """
    Bind context variables to all subsequent logs in this async context.

    Example:
        bind_context(epoch=3)
        logger.info("epoch_sealed")  # Will include epoch
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def bound_context(**kwargs: Any) -> Iterator[None]:
    """Bind context for a block of work and restore the previous values after."""
    tokens = structlog.contextvars.bind_contextvars(**kwargs)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
