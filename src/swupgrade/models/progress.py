"""Transient progress models for the upload and install phases."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from swupgrade.models.status import LogTag, PhaseEnum, Severity


class UploadProgress(BaseModel):
    """Upload snapshot owned by UploadService for one upload call.

    Speeds stay None ("unknown") until two samples have been observed.
    """

    bytes_uploaded: int = Field(0, ge=0)
    bytes_total: int = Field(0, ge=0)
    percent: float = Field(0.0, ge=0)
    current_speed: Optional[float] = Field(None, description="Bytes/s over the last interval")
    average_speed: Optional[float] = Field(None, description="Bytes/s since the first sample")
    samples: int = Field(0, ge=0)


class InstallState(BaseModel):
    """Install snapshot owned by InstallWatchdog, reset per attempt."""

    heartbeat: int = Field(0, ge=0, description="Incremented per progress event")
    success: bool = False
    failure: bool = False
    step: int = Field(0, ge=0, description="Highest 1-based step seen")
    step_count: int = Field(0, ge=0, description="Highest nsteps seen")
    items_to_install: int = Field(-1, description="-1 until reported")
    items_to_install_received: bool = False
    version: Optional[str] = None
    percent: float = Field(0.0, description="Last displayed aggregate percentage")


class LogEntry(BaseModel):
    """One line of the upgrade log."""

    model_config = ConfigDict(frozen=True)

    tag: LogTag
    severity: Severity
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)


class PhaseOutcome(BaseModel):
    """Tagged result of one phase."""

    model_config = ConfigDict(frozen=True)

    phase: PhaseEnum
    ok: bool
    message: str = ""
    error: Optional[str] = Field(None, description="'<CODE>: <text>' when ok is False")

    @classmethod
    def success(cls, phase: PhaseEnum, message: str = "") -> "PhaseOutcome":
        return cls(phase=phase, ok=True, message=message)

    @classmethod
    def failure(cls, phase: PhaseEnum, message: str, error: str) -> "PhaseOutcome":
        return cls(phase=phase, ok=False, message=message, error=error)


class SessionResult(BaseModel):
    """Outcome of a whole upgrade attempt."""

    outcomes: list[PhaseOutcome] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.outcomes) and all(o.ok for o in self.outcomes)

    @property
    def failed_phase(self) -> Optional[PhaseEnum]:
        for outcome in self.outcomes:
            if not outcome.ok:
                return outcome.phase
        return None
