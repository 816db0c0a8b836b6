"""Exception types raised by the upgrade phases."""


class UpgradeError(Exception):
    """Base class for fatal upgrade errors.

    ``code`` is the machine-readable prefix stored in the status error field,
    ``message`` the user-facing text.
    """

    code = "UPGRADE_FAILED"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class AuthorizationError(UpgradeError):
    """Session lacks the permission to upload firmware."""

    code = "ACCESS_DENIED"


class TransportError(UpgradeError):
    """The firmware upload failed."""

    code = "UPLOAD_FAILED"


class StallTimeoutError(UpgradeError):
    """No install heartbeat within the stall window."""

    code = "INSTALL_TIMEOUT"


class DeviceReportedFailure(UpgradeError):
    """The device reported FAILURE on the install stream."""

    code = "INSTALL_FAILED"


class ReconnectTimeoutError(UpgradeError):
    """The device did not come back after reboot."""

    code = "RECONNECT_TIMEOUT"


class UpgradeInProgressError(UpgradeError):
    """Another upgrade is already running."""

    code = "UPGRADE_IN_PROGRESS"


class EventStreamNotConnectedError(UpgradeError):
    """The event stream is not open."""

    code = "EVENT_STREAM_DISCONNECTED"


class ProtocolParseError(ValueError):
    """Malformed event payload. Never fatal."""
