"""Loguru structured logging configuration.

Human-readable text goes to stderr; records bound with ``json_output=True``
are additionally serialized as JSON.  Security events (denied assignments,
blocked permission checks, rolled back batches) are bound with
``security_event=True`` and, when a ``log_dir`` is configured, also land in a
dedicated ``security.log`` that rotates daily.
"""

import sys
from pathlib import Path

from loguru import logger

_LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} | {message}"


def _is_security_event(record: dict) -> bool:
    return bool(record["extra"].get("security_event", False))


def setup_logging(log_level: str = "INFO", log_dir: str | None = None) -> None:
    """Configure Loguru sinks.

    Args:
        log_level: Minimum log level to emit.
        log_dir: Optional directory for log files.  When set, a rotating
            application log and a separate security event log are added
            (rotated every 24 hours, retained 7 and 90 days respectively).
    """
    level = log_level.upper()
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format=_LOG_FORMAT,
        serialize=False,
    )
    logger.add(
        sys.stderr,
        level=level,
        serialize=True,
        filter=lambda record: record["extra"].get("json_output", False),
    )

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path / "portal-rbac.log",
            level=level,
            format=_LOG_FORMAT,
            rotation="24h",
            retention="7 days",
        )
        logger.add(
            log_path / "security.log",
            level="INFO",
            serialize=True,
            filter=_is_security_event,
            rotation="24h",
            retention="90 days",
        )


security_logger = logger.bind(security_event=True)
