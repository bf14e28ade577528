"""Recent importer activity kept in memory for GET /api/logs."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

ROOT_LOGGER = "scratchers"
BUFFER_SIZE = 200


@dataclass(frozen=True)
class ActivityEntry:
    timestamp: str
    level: str
    logger: str
    message: str

    @classmethod
    def from_record(cls, record: logging.LogRecord, message: str) -> "ActivityEntry":
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return cls(
            timestamp=created.strftime("%Y-%m-%d %H:%M:%S UTC"),
            level=record.levelname,
            logger=record.name,
            message=message,
        )


class BufferHandler(logging.Handler):
    """Ring buffer of formatted records from the scratchers.* loggers."""

    def __init__(self, maxlen: int = BUFFER_SIZE) -> None:
        super().__init__(level=logging.INFO)
        self._entries: deque[ActivityEntry] = deque(maxlen=maxlen)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._entries.append(ActivityEntry.from_record(record, self.format(record)))
        except Exception:
            self.handleError(record)

    def entries(self, limit: int = 100, level: str | None = None) -> list[dict]:
        """Newest first. *level* keeps only records of exactly that level name."""
        if limit <= 0:
            return []
        wanted = level.upper() if level else None
        selected: list[dict] = []
        for entry in reversed(self._entries):
            if wanted and entry.level != wanted:
                continue
            selected.append(asdict(entry))
            if len(selected) == limit:
                break
        return selected


_handler: BufferHandler | None = None


def get_buffer_handler() -> BufferHandler:
    global _handler
    if _handler is None:
        _handler = BufferHandler()
        _handler.setFormatter(logging.Formatter("%(message)s"))
    return _handler


def install_buffer_handler() -> BufferHandler:
    """Attach the buffer to the package logger; child loggers propagate to it."""
    handler = get_buffer_handler()
    package_logger = logging.getLogger(ROOT_LOGGER)
    if handler not in package_logger.handlers:
        package_logger.addHandler(handler)
    if package_logger.level == logging.NOTSET or package_logger.level > logging.INFO:
        package_logger.setLevel(logging.INFO)
    return handler
