from __future__ import annotations
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Deque, List, Optional

MAX_LOGS = 100

LOG_TYPES = ("api", "queue", "error", "system")
LOG_MODULES = ("translate", "chat", "github", "search", "navigation", "grid")


@dataclass
class QueueStatus:
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0


@dataclass
class LogEntry:
    type: str
    module: str
    message: str
    status: Optional[Any] = None
    duration: Optional[float] = None
    details: Optional[Any] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:7])
    timestamp: float = field(default_factory=time.time)


class Monitor:
    """Activity log plus a mirror of the translation queue counters."""

    def __init__(self, logger: logging.Logger | None = None, max_logs: int = MAX_LOGS) -> None:
        self.logger = logger or logging.getLogger("plugin-hub")
        self._logs: Deque[LogEntry] = deque(maxlen=max_logs)
        self.queue_status = QueueStatus()
        self._unwatch: List[Callable[[], None]] = []

    @property
    def logs(self) -> List[LogEntry]:
        # newest first
        return list(reversed(self._logs))

    def add_log(self, type: str, module: str, message: str, **extra: Any) -> LogEntry:
        entry = LogEntry(type=type, module=module, message=message, **extra)
        self._logs.append(entry)
        suffix = f" (status={entry.status})" if entry.status is not None else ""
        if entry.duration is not None:
            suffix += f" [{entry.duration:.0f}ms]"
        line = f"[{module}] {message}{suffix}"
        if type == "error":
            self.logger.warning(line)
        elif type == "queue":
            self.logger.debug(line)
        else:
            self.logger.info(line)
        return entry

    def clear_logs(self) -> None:
        self._logs.clear()

    def update_queue_status(self, status: QueueStatus) -> None:
        self.queue_status = replace(status)

    def watch(self, worker) -> None:
        self.update_queue_status(worker.status())
        self._unwatch.append(worker.on_status_change(self.update_queue_status))

    def unwatch_all(self) -> None:
        for fn in self._unwatch:
            fn()
        self._unwatch.clear()
