"""Runtime settings for the upgrade client."""

import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field

_ENV_PREFIX = "SWUPGRADE_"


class UpgraderSettings(BaseModel):
    """Endpoints, timer intervals and logging options.

    Intervals are in seconds.
    """

    device_url: str = Field(
        "http://192.168.1.1", pattern=r"^https?://.+", description="Device base URL"
    )
    session_id: str = Field(
        "00000000000000000000000000000000", description="LuCI/ubus session id"
    )
    upload_path: str = "/cgi-bin/cgi-swupdate"
    ubus_path: str = "/ubus"
    event_topic: str = "swupdate"
    reboot_state_file: str = "/tmp/swu_reboot_state"

    install_timeout: float = Field(15.0, gt=0, description="Stall-timeout tick")
    install_check_interval: float = Field(1.0, gt=0, description="Completion-poll tick")
    upload_speed_clear_timeout: float = Field(2.0, gt=0)
    upload_failure_delay: float = Field(2.5, ge=0)
    reboot_settle_delay: float = Field(1.5, ge=0)
    event_retry: float = Field(0.5, gt=0, description="Default reconnect interval")
    reconnect_initial_delay: float = Field(10.0, ge=0)
    reconnect_poll_interval: float = Field(5.0, gt=0)
    reconnect_timeout: Optional[float] = Field(None, gt=0)

    log_file: Optional[str] = "./logs/swupgrade.log"
    log_level: str = "INFO"
    api_host: str = "127.0.0.1"
    api_port: int = Field(12316, gt=0, lt=65536)

    @property
    def upload_url(self) -> str:
        return f"{self.device_url.rstrip('/')}{self.upload_path}"

    @property
    def ubus_url(self) -> str:
        return f"{self.device_url.rstrip('/')}{self.ubus_path}"

    @property
    def event_stream_url(self) -> str:
        return (
            f"{self.device_url.rstrip('/')}/ubus/subscribe/{self.event_topic}"
            f"?{self.session_id}"
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "UpgraderSettings":
        """Create settings from ``SWUPGRADE_*`` environment variables.

        Example:
            SWUPGRADE_DEVICE_URL=http://10.0.0.1 SWUPGRADE_INSTALL_TIMEOUT=30
        """
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            key = f"{_ENV_PREFIX}{name.upper()}"
            if key in environ:
                values[name] = environ[key]
        return cls(**values)
