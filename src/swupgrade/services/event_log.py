"""Append-only upgrade log shown to the user."""

import logging

from swupgrade.models.events import InfoMessage
from swupgrade.models.progress import LogEntry
from swupgrade.models.status import LogTag, Severity
from swupgrade.utils.severity import combined_severity, format_log_message

_PY_LEVELS = {
    Severity.ERROR: logging.ERROR,
    Severity.WARNING: logging.WARNING,
    Severity.SUCCESS: logging.INFO,
    Severity.NOTICE: logging.INFO,
    Severity.CMD_OUTPUT: logging.INFO,
    Severity.INFO: logging.INFO,
    Severity.DEBUG: logging.DEBUG,
}


class EventLog:
    """Upgrade log entries, cleared at the start of every attempt.

    Every entry is also written to the ``swupgrade.log`` logger.
    """

    def __init__(self):
        self.logger = logging.getLogger("swupgrade.log")
        self._entries: list[LogEntry] = []

    def append(self, tag: LogTag, severity: Severity, message: str) -> LogEntry:
        entry = LogEntry(tag=tag, severity=severity, message=message)
        self._entries.append(entry)
        self.logger.log(_PY_LEVELS[severity], f"[{tag.value}] {message}")
        return entry

    def log_ui(self, severity: Severity, message: str) -> LogEntry:
        """Log a line generated by the client itself."""
        return self.append(LogTag.UI, severity, message)

    def log_device(self, info: InfoMessage) -> LogEntry:
        """Log a line reported by the device in an ``info`` event."""
        return self.append(
            LogTag.DEVICE, combined_severity(info), format_log_message(info.msg)
        )

    def clear(self) -> None:
        self._entries.clear()

    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
