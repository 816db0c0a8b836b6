"""Status enums and protocol codes for the firmware upgrade client."""

from enum import Enum, IntEnum


class StageEnum(str, Enum):
    """User-visible upgrade stages.

    State transitions:
    idle → checking → uploading → installing → rebooting → success
              ↓           ↓            ↓            ↓
            failed ←────────────────────────────────
    """

    IDLE = "idle"
    CHECKING = "checking"
    UPLOADING = "uploading"
    INSTALLING = "installing"
    REBOOTING = "rebooting"
    SUCCESS = "success"
    FAILED = "failed"


class PhaseEnum(str, Enum):
    """Sequential phases of one upgrade attempt."""

    ACCESS = "access"
    UPLOAD = "upload"
    INSTALL = "install"
    REBOOT = "reboot"


class StatusCode(IntEnum):
    """SWUpdate status codes (must match include/swupdate_status.h)."""

    IDLE = 0
    START = 1
    RUN = 2
    SUCCESS = 3
    FAILURE = 4
    DOWNLOAD = 5
    DONE = 6
    SUBPROCESS = 7
    PROGRESS = 8


class LevelCode(IntEnum):
    """SWUpdate log levels (must match include/util.h)."""

    ERROR = 1
    WARNING = 2
    INFO = 3
    DEBUG = 4
    TRACE = 5


class Severity(str, Enum):
    """Unified log severity used for display."""

    ERROR = "error"
    WARNING = "warning"
    SUCCESS = "success"
    NOTICE = "notice"
    CMD_OUTPUT = "cmd_output"
    INFO = "info"
    DEBUG = "debug"


class LogTag(str, Enum):
    """Origin of a log entry."""

    UI = "ui"
    DEVICE = "swu"
