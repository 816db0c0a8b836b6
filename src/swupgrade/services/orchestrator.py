"""Upgrade session orchestrator: access → upload → install → reboot."""

import logging
from typing import Awaitable, Callable, Optional

from swupgrade.errors import (
    EventStreamNotConnectedError,
    UpgradeError,
    UpgradeInProgressError,
)
from swupgrade.models.progress import InstallState, PhaseOutcome, SessionResult
from swupgrade.models.session import UpgradeSession
from swupgrade.models.status import PhaseEnum, Severity, StageEnum
from swupgrade.services.event_log import EventLog
from swupgrade.services.event_stream import ConnectionState, EventStreamClient
from swupgrade.services.reboot import RebootService
from swupgrade.services.state_manager import StateManager
from swupgrade.services.ubus import SessionAccessChecker
from swupgrade.services.upload import UploadService
from swupgrade.services.watchdog import InstallWatchdog


class UpgradeOrchestrator:
    """Runs the phases of one upgrade in order.

    Each phase returns a PhaseOutcome; the first failed outcome stops the
    pipeline and becomes the terminal status.
    """

    def __init__(
        self,
        event_stream: EventStreamClient,
        access: SessionAccessChecker,
        upload: UploadService,
        watchdog: InstallWatchdog,
        reboot: RebootService,
        event_log: Optional[EventLog] = None,
        state_manager: Optional[StateManager] = None,
        stream_factory: Optional[Callable[[], EventStreamClient]] = None,
    ):
        """Initialize orchestrator.

        Args:
            event_stream: Open device event stream
            access: Session access probe
            upload: Upload phase
            watchdog: Install phase
            reboot: Reboot phase
            event_log: Upgrade log
            state_manager: StateManager instance (uses singleton if None)
            stream_factory: Builds a replacement stream once a reboot closed
                the current one
        """
        self.logger = logging.getLogger("swupgrade.orchestrator")
        self.event_stream = event_stream
        self.access = access
        self.upload = upload
        self.watchdog = watchdog
        self.reboot = reboot
        self.event_log = event_log or EventLog()
        self.state_manager = state_manager or StateManager()
        self.stream_factory = stream_factory
        self._running = False
        self._reserved = False
        self._install: Optional[InstallState] = None

    @property
    def running(self) -> bool:
        return self._running

    def ensure_ready(self) -> None:
        """Raises unless a new upgrade may start now."""
        if self._running:
            raise UpgradeInProgressError("Upgrade already in progress")
        if not self.event_stream.is_open:
            raise EventStreamNotConnectedError("Event stream is not connected")

    def reserve(self) -> None:
        """Claim the orchestrator for the next run() call.

        The API calls this before scheduling run() in the background, so a
        second request is refused before the first attempt starts.
        """
        self.ensure_ready()
        self._running = True
        self._reserved = True

    async def run(self, session: UpgradeSession) -> SessionResult:
        """Run a whole upgrade attempt.

        Raises:
            UpgradeInProgressError: If another attempt is running
            EventStreamNotConnectedError: If the event stream is not open
        """
        if not self._reserved:
            self.reserve()
        self._reserved = False
        result = SessionResult()
        try:
            self._prepare(session)
            phases: list[tuple[PhaseEnum, Callable[[UpgradeSession], Awaitable[str]]]] = [
                (PhaseEnum.ACCESS, self._check_access),
                (PhaseEnum.UPLOAD, self._upload),
                (PhaseEnum.INSTALL, self._install_phase),
                (PhaseEnum.REBOOT, self._reboot),
            ]
            for phase, func in phases:
                outcome = await self._run_phase(phase, func, session)
                result.outcomes.append(outcome)
                if not outcome.ok:
                    self.state_manager.update_status(
                        stage=StageEnum.FAILED, message=outcome.message, error=outcome.error
                    )
                    return result

            self.state_manager.update_status(
                stage=StageEnum.SUCCESS, progress=100, message="Successfully completed"
            )
            return result
        finally:
            self.watchdog.detach()
            self.logger.info(
                f"Upgrade finished: ok={result.ok}, failed_phase={result.failed_phase}"
            )
            try:
                await self._renew_event_stream()
            finally:
                self._running = False

    async def _renew_event_stream(self) -> None:
        """Open a new stream when the attempt left the current one closed."""
        if self.stream_factory is None:
            return
        if self.event_stream.state != ConnectionState.CLOSED:
            return
        stream = self.stream_factory()
        self.event_stream = stream
        self.watchdog.event_stream = stream
        self.reboot.event_stream = stream
        await stream.connect()
        self.logger.info("Opened a new event stream after reboot")

    def _prepare(self, session: UpgradeSession) -> None:
        self.event_log.clear()
        self.state_manager.reset()
        self.state_manager.update_status(
            stage=StageEnum.CHECKING, progress=0, message="Upgrade in progress, please wait..."
        )
        # The device installs while the image streams in, so listen from the start
        self.watchdog.attach()
        self._install = None
        self.logger.info(
            f"Starting upgrade: file={session.file_name}, size={session.file_size}, "
            f"clear_user_data={session.clear_user_data}, dry_run={session.dry_run}"
        )

    async def _run_phase(
        self,
        phase: PhaseEnum,
        func: Callable[[UpgradeSession], Awaitable[str]],
        session: UpgradeSession,
    ) -> PhaseOutcome:
        try:
            message = await func(session)
        except UpgradeError as e:
            self.logger.error(f"Phase {phase.value} failed: {e}")
            return PhaseOutcome.failure(phase, e.message, str(e))
        except Exception as e:
            self.logger.error(f"Unexpected error in phase {phase.value}: {e}", exc_info=True)
            self.event_log.log_ui(Severity.ERROR, f"Unexpected error: {e}")
            return PhaseOutcome.failure(phase, "Upgrade failed", f"UPGRADE_FAILED: {e}")
        return PhaseOutcome.success(phase, message)

    async def _check_access(self, session: UpgradeSession) -> str:
        self.event_log.log_ui(Severity.INFO, "Checking permissions...")
        try:
            await self.access.require_access()
        except UpgradeError:
            self.event_log.log_ui(Severity.ERROR, "Not enough permissions")
            raise
        return "Access granted"

    async def _upload(self, session: UpgradeSession) -> str:
        self.state_manager.update_status(stage=StageEnum.UPLOADING, progress=0)
        progress = await self.upload.upload(session)
        return f"Uploaded {progress.bytes_uploaded} bytes"

    async def _install_phase(self, session: UpgradeSession) -> str:
        self.state_manager.update_status(
            stage=StageEnum.INSTALLING,
            progress=int(self.watchdog.state.percent),
            message="Installation in progress, please wait...",
        )
        self._install = await self.watchdog.await_install(session)
        return f"Installed {max(self._install.items_to_install, 0)} item(s)"

    async def _reboot(self, session: UpgradeSession) -> str:
        return await self.reboot.await_reboot(session, self._install or self.watchdog.state)
