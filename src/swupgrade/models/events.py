"""Event stream records and the SWUpdate payloads they carry."""

import json
import math
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def lenient_int(value: Any) -> int:
    """Coerce a payload number, 0 when it is missing or not numeric."""
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0


def lenient_float(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def lenient_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


class StreamEvent(BaseModel):
    """One decoded event stream record."""

    model_config = ConfigDict(frozen=True)

    type: str = Field("message", description="Event name from the 'event:' field")
    data: str = Field(..., description="Concatenated 'data:' lines")
    id: Optional[str] = Field(None, description="Last event id seen on the stream")


class InfoMessage(BaseModel):
    """Payload of an ``info`` event (a swupdate log line)."""

    model_config = ConfigDict(extra="ignore")

    msg: str = Field("", description="Log line, may start with a [source] : tag")
    status: int = Field(0, description="StatusCode value")
    level: int = Field(0, description="LevelCode value")
    error: int = Field(0, description="Non-zero when swupdate flags an error")

    @field_validator("status", "level", "error", mode="before")
    @classmethod
    def _number(cls, value):
        return lenient_int(value)

    @field_validator("msg", mode="before")
    @classmethod
    def _text(cls, value):
        return lenient_str(value)


class ProgressMessage(BaseModel):
    """Payload of a ``progress`` event.

    Fields that are null or of an unexpected type fall back to their
    defaults; a payload never fails validation once it is a JSON object.

    Example:
        {
            "status": 8,
            "dwl_percent": 0,
            "nsteps": 2,
            "cur_step": 1,
            "cur_percent": 40,
            "cur_image": "rootfs.ext4.gz",
            "hnd_name": "raw",
            "source": 3,
            "info": ""
        }
    """

    model_config = ConfigDict(extra="ignore")

    status: int = Field(0, description="StatusCode value")
    dwl_percent: int = Field(0, description="Download percentage")
    nsteps: int = Field(0, description="Number of install steps")
    cur_step: int = Field(0, description="Current step (1-based)")
    cur_percent: float = Field(0, description="Percentage of the current step")
    cur_image: str = Field("", description="Image being installed")
    hnd_name: str = Field("", description="Handler name")
    source: int = Field(0, description="Update source")
    info: str = Field("", description="JSON payload for RUN status")

    @field_validator("status", "dwl_percent", "nsteps", "cur_step", "source", mode="before")
    @classmethod
    def _number(cls, value):
        return lenient_int(value)

    @field_validator("cur_percent", mode="before")
    @classmethod
    def _percent(cls, value):
        return lenient_float(value)

    @field_validator("cur_image", "hnd_name", "info", mode="before")
    @classmethod
    def _text(cls, value):
        return lenient_str(value)
