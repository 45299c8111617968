import sys
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

_CONSOLE_FORMAT = "<level>{level:<8}</level> | <cyan>{name}</cyan> - <level>{message}</level>"
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}"
_AUDIT_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {extra[log_type]:<7} | {message}"


@runtime_checkable
class LogConsumer(Protocol):
    def register(self, level: str) -> None: ...
    def describe(self, level: str) -> str: ...


class ConsoleLogConsumer:
    def register(self, level: str) -> None:
        logger.add(sys.stderr, level=level, format=_CONSOLE_FORMAT)

    def describe(self, level: str) -> str:
        return f"console (stderr, {level})"


class FileLogConsumer:
    def __init__(self, path: str = ".campus/portal.log", rotation: str = "5 MB", retention: int = 5):
        self._path = path
        self._rotation = rotation
        self._retention = retention

    def register(self, level: str) -> None:
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(self._path, level=level, format=_FILE_FORMAT, rotation=self._rotation, retention=self._retention)

    def describe(self, level: str) -> str:
        return f"file ({self._path}, {level})"


class AuditTrailConsumer:
    """Mirrors audit entries (records bound with ``audit=True``) into their own file."""

    def __init__(self, path: str = ".campus/audit.log", rotation: str = "1 MB"):
        self._path = path
        self._rotation = rotation

    def register(self, level: str) -> None:
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            self._path,
            level=level,
            format=_AUDIT_FORMAT,
            rotation=self._rotation,
            filter=lambda record: record["extra"].get("audit", False),
        )

    def describe(self, level: str) -> str:
        return f"audit trail ({self._path})"


_CONSUMER_TYPES: dict[str, type] = {
    "console": ConsoleLogConsumer,
    "file": FileLogConsumer,
    "audit": AuditTrailConsumer,
}

# Console output shares the terminal with the prompt; keep it to warnings.
_DEFAULT_CONSUMERS = [
    {"type": "console", "level": "WARNING"},
    {"type": "file"},
]


def setup_logging(level: str = "INFO", consumers: list[dict[str, Any]] | None = None) -> list[str]:
    """Replace loguru's sinks with the configured consumers. Returns their descriptions."""
    logger.remove()
    level = level.upper()

    descriptions: list[str] = []
    for config in consumers if consumers is not None else _DEFAULT_CONSUMERS:
        sink_type = config.get("type", "")
        consumer_cls = _CONSUMER_TYPES.get(sink_type)
        if consumer_cls is None:
            logger.warning(f"Unknown log consumer type: {sink_type!r}")
            continue

        options = {k: v for k, v in config.items() if k not in ("type", "level")}
        sink_level = str(config.get("level", level)).upper()
        consumer = consumer_cls(**options)
        consumer.register(sink_level)
        descriptions.append(consumer.describe(sink_level))

    return descriptions
