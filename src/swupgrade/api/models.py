"""Pydantic models for HTTP API requests and responses."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from swupgrade.models.progress import InstallState, UploadProgress
from swupgrade.models.status import LogTag, Severity, StageEnum


class UpgradeRequest(BaseModel):
    """POST /api/v1.0/upgrade payload.

    Starts an upgrade with an image already on the client host.

    Example:
        {
            "file_path": "/srv/images/core-image.stable.alpha.swu",
            "clear_user_data": false,
            "dry_run": false
        }
    """

    file_path: str = Field(
        ...,
        min_length=1,
        description="Path of the .swu image",
        examples=["/srv/images/core-image.stable.alpha.swu"],
    )
    clear_user_data: bool = Field(False, description="Erase user data during install")
    dry_run: bool = Field(False, description="Simulate install and reboot")


class ProgressData(BaseModel):
    """Progress data nested in response."""

    stage: StageEnum = Field(..., description="Current stage")
    progress: int = Field(..., ge=0, le=100, description="Percentage of the current stage")
    message: str = Field(..., description="Human-readable status description")
    error: Optional[str] = Field(None, description="'<CODE>: <text>' if stage == failed")
    upload: UploadProgress = Field(default_factory=UploadProgress)
    install: InstallState = Field(default_factory=InstallState)


class ProgressResponse(BaseModel):
    """GET /api/v1.0/progress response."""

    code: int = Field(..., description="Application-level status code (200/500)")
    msg: str = Field(..., description="Status message or error description")
    data: ProgressData = Field(..., description="Progress data")


class LogLine(BaseModel):
    """One log entry as returned by GET /api/v1.0/log."""

    tag: LogTag
    severity: Severity
    message: str
    timestamp: datetime


class LogResponse(BaseModel):
    """GET /api/v1.0/log response."""

    code: int = Field(200, description="Application-level status code")
    msg: str = Field("success")
    data: list[LogLine] = Field(default_factory=list)


class CommandResponse(BaseModel):
    """Response of POST /upgrade.

    HTTP status code is always 200, real status in 'code' field
    (200/400/409/503).
    """

    code: int = Field(200, description="Application-level status code")
    msg: str = Field("success", description="Result or error description")
    stage: Optional[StageEnum] = Field(None, description="Current stage on conflicts")
