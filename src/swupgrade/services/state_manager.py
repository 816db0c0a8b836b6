"""State manager for the user-visible upgrade status."""

import logging
from typing import Optional

from swupgrade.api.models import ProgressData
from swupgrade.models.progress import InstallState, UploadProgress
from swupgrade.models.status import StageEnum


class StateManager:
    """Singleton holder of the status shown to the user.

    Manages:
    - Stage, progress, message and error (for GET /progress)
    - Latest upload and install snapshots published by the phases
    """

    _instance: Optional["StateManager"] = None

    def __new__(cls):
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize state manager (only once due to singleton)."""
        if self._initialized:
            return

        self.logger = logging.getLogger("swupgrade.state_manager")
        self._initialized = True
        self.reset()
        self.logger.info("StateManager initialized")

    def get_status(self) -> ProgressData:
        """Get current status for GET /progress endpoint."""
        return ProgressData(
            stage=self._current_stage,
            progress=self._current_progress,
            message=self._current_message,
            error=self._current_error,
            upload=self._upload.model_copy(),
            install=self._install.model_copy(),
        )

    def update_status(
        self,
        stage: StageEnum,
        progress: Optional[int] = None,
        message: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Update in-memory status state.

        Args:
            stage: Current stage
            progress: Percentage (0-100), unchanged if None
            message: Human-readable description, unchanged if None
            error: '<CODE>: <text>' when stage == failed
        """
        self._current_stage = stage
        if progress is not None:
            self._current_progress = max(0, min(100, int(progress)))
        if message is not None:
            self._current_message = message
        self._current_error = error
        self.logger.debug(
            f"Status updated: stage={stage.value}, progress={self._current_progress}%, "
            f"message={self._current_message}"
        )

    def update_upload(self, progress: UploadProgress) -> None:
        """Publish the latest upload snapshot."""
        self._upload = progress.model_copy()
        if self._current_stage == StageEnum.UPLOADING:
            self._current_progress = int(progress.percent)

    def update_install(self, state: InstallState) -> None:
        """Publish the latest install snapshot."""
        self._install = state.model_copy()
        if self._current_stage == StageEnum.INSTALLING:
            self._current_progress = max(0, min(100, int(state.percent)))

    @property
    def stage(self) -> StageEnum:
        return self._current_stage

    def reset(self) -> None:
        """Reset to idle (start of a new attempt)."""
        self._current_stage = StageEnum.IDLE
        self._current_progress = 0
        self._current_message = "Ready for upgrade"
        self._current_error = None
        self._upload = UploadProgress()
        self._install = InstallState()
        self.logger.info("State reset to idle")
