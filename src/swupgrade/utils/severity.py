"""Mapping of SWUpdate status/level codes to display severities.

Pure functions, no state.
"""

import re

from swupgrade.models.events import InfoMessage
from swupgrade.models.status import LevelCode, Severity, StatusCode

CMD_OUTPUT_PREFIX = "[run_system_cmd] : "

_SOURCE_TAG = re.compile(r"^\[[^\]]*\] : ")

_SUCCESS_STATUSES = {StatusCode.START, StatusCode.SUCCESS, StatusCode.DONE}

_LEVELS = {
    LevelCode.ERROR: Severity.ERROR,
    LevelCode.WARNING: Severity.WARNING,
    LevelCode.INFO: Severity.INFO,
    LevelCode.DEBUG: Severity.DEBUG,
    LevelCode.TRACE: Severity.DEBUG,
}


def status_to_severity(message: str, status: int) -> Severity:
    """Severity implied by a status code.

    RUN lines produced by subprocesses get their own severity so command
    output can be styled apart from ordinary info.
    """
    if status == StatusCode.RUN and message.startswith(CMD_OUTPUT_PREFIX):
        return Severity.CMD_OUTPUT
    if status in _SUCCESS_STATUSES:
        return Severity.SUCCESS
    return Severity.INFO


def level_to_severity(level: int) -> Severity:
    """Severity implied by a log level, DEBUG for unknown levels."""
    try:
        return _LEVELS[LevelCode(level)]
    except ValueError:
        return Severity.DEBUG


def combined_severity(info: InfoMessage) -> Severity:
    """Severity of a device log line.

    The error flag wins. Otherwise the status severity wins unless it is
    plain INFO, in which case the level decides.
    """
    if info.error:
        return Severity.ERROR
    by_status = status_to_severity(info.msg, info.status)
    if by_status == Severity.INFO:
        return level_to_severity(info.level)
    return by_status


def format_log_message(message: str) -> str:
    """Strip the leading ``[source] : `` tag."""
    return _SOURCE_TAG.sub("", message, count=1)
