"""Install phase watchdog fed by the device event stream."""

import asyncio
import json
import logging
from typing import Optional

from pydantic import ValidationError

from swupgrade.errors import DeviceReportedFailure, ProtocolParseError, StallTimeoutError
from swupgrade.models.events import InfoMessage, ProgressMessage, StreamEvent
from swupgrade.models.progress import InstallState
from swupgrade.models.session import UpgradeSession
from swupgrade.models.status import Severity, StatusCode
from swupgrade.services.event_log import EventLog
from swupgrade.services.event_stream import EventStreamClient
from swupgrade.services.state_manager import StateManager
from swupgrade.utils.formatting import format_percent


def parse_event(event: StreamEvent, model):
    """Decode the JSON data of an event into ``model``.

    Valid JSON that is not an object decodes to the model defaults.

    Raises:
        ProtocolParseError: If the data is not JSON
    """
    try:
        payload = json.loads(event.data)
    except ValueError as e:
        raise ProtocolParseError(f"Bad '{event.type}' event data: {e}") from e
    if not isinstance(payload, dict):
        payload = {}
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise ProtocolParseError(f"Bad '{event.type}' event data: {e}") from e


class InstallWatchdog:
    """Tracks install progress and decides when the install phase is over.

    Two timers run while ``await_install`` waits:
    - stall timer: fails the phase when no progress event arrived since its
      previous tick
    - completion poll: once the item count is known, resolves on success or
      zero items and rejects on failure

    All state lives in ``self.state`` and is only touched from the event
    loop (stream listeners and timer tasks).
    """

    def __init__(
        self,
        event_stream: EventStreamClient,
        event_log: Optional[EventLog] = None,
        state_manager: Optional[StateManager] = None,
        install_timeout: float = 15.0,
        check_interval: float = 1.0,
    ):
        """Initialize install watchdog.

        Args:
            event_stream: Source of 'info' and 'progress' events
            event_log: Upgrade log
            state_manager: StateManager instance (uses singleton if None)
            install_timeout: Stall-timeout tick in seconds
            check_interval: Completion-poll tick in seconds
        """
        self.logger = logging.getLogger("swupgrade.watchdog")
        self.event_stream = event_stream
        self.event_log = event_log or EventLog()
        self.state_manager = state_manager or StateManager()
        self.install_timeout = install_timeout
        self.check_interval = check_interval

        self.state = InstallState()
        self._attached = False
        self._outcome: Optional[asyncio.Future] = None
        self._timers: list[asyncio.Task] = []

    @property
    def attached(self) -> bool:
        return self._attached

    def attach(self) -> None:
        """Reset the install state and start listening to the stream."""
        self.detach()
        self.state = InstallState()
        self.state_manager.update_install(self.state)
        self.event_stream.add_listener("info", self.handle_info_event)
        self.event_stream.add_listener("progress", self.handle_progress_event)
        self._attached = True

    def detach(self) -> None:
        if not self._attached:
            return
        self.event_stream.remove_listener("info", self.handle_info_event)
        self.event_stream.remove_listener("progress", self.handle_progress_event)
        self._attached = False

    async def await_install(self, session: UpgradeSession) -> InstallState:
        """Wait for the device to finish installing.

        Resets and subscribes unless ``attach()`` already ran for this
        attempt.

        Returns:
            Final install state

        Raises:
            StallTimeoutError: If the heartbeat stopped for a whole stall tick
            DeviceReportedFailure: If the device reported FAILURE
        """
        if not self._attached:
            self.attach()

        self.logger.info(
            f"Waiting for installation of {session.file_name} "
            f"(dry_run={session.dry_run})"
        )
        loop = asyncio.get_running_loop()
        self._outcome = loop.create_future()
        self._timers = [
            asyncio.create_task(self._stall_timer()),
            asyncio.create_task(self._completion_timer()),
        ]
        try:
            return await self._outcome
        finally:
            # Covers cancellation of the caller as well
            self._stop_timers()
            self.detach()

    def _settle(self, error: Optional[Exception] = None) -> None:
        """Resolve or reject the phase once, stopping both timers."""
        if self._outcome is None or self._outcome.done():
            return
        self._stop_timers()
        if error is None:
            self._outcome.set_result(self.state.model_copy())
        else:
            self._outcome.set_exception(error)

    def _stop_timers(self) -> None:
        current = asyncio.current_task()
        for task in self._timers:
            if task is not current and not task.done():
                task.cancel()
        self._timers = []

    async def _stall_timer(self) -> None:
        last_heartbeat = self.state.heartbeat
        while True:
            await asyncio.sleep(self.install_timeout)
            if self.state.heartbeat == last_heartbeat:
                self.logger.error(
                    f"No install progress for {self.install_timeout}s "
                    f"(heartbeat={last_heartbeat})"
                )
                self.event_log.log_ui(Severity.ERROR, "Installation timed out")
                self._settle(StallTimeoutError("Installation timed out"))
                return
            last_heartbeat = self.state.heartbeat

    async def _completion_timer(self) -> None:
        while True:
            await asyncio.sleep(self.check_interval)
            if self._check_completion():
                return

    def _check_completion(self) -> bool:
        """One completion-poll tick, True when the phase settled."""
        state = self.state
        if not state.items_to_install_received:
            return False

        if state.items_to_install == 0:
            self.logger.info("Nothing to install")
            self._settle()
            return True

        if state.failure:
            self.event_log.log_ui(Severity.ERROR, "Installation failure")
            self._settle(DeviceReportedFailure("Installation failure"))
            return True

        if state.success:
            self.logger.info("Installation finished successfully")
            self._settle()
            return True

        return False

    def handle_info_event(self, event: StreamEvent) -> None:
        try:
            info = parse_event(event, InfoMessage)
        except ProtocolParseError as e:
            self.logger.debug(str(e))
            self.event_log.log_ui(
                Severity.WARNING, "Failed to parse received 'info' event data"
            )
            return
        self.event_log.log_device(info)

    def handle_progress_event(self, event: StreamEvent) -> None:
        try:
            message = parse_event(event, ProgressMessage)
        except ProtocolParseError as e:
            self.logger.debug(str(e))
            self.event_log.log_ui(
                Severity.WARNING, "Failed to parse received 'progress' event data"
            )
            return
        self.apply_progress(message)
        self.state_manager.update_install(self.state)

    def apply_progress(self, message: ProgressMessage) -> None:
        """Update the install state from one progress message."""
        state = self.state
        state.heartbeat += 1

        if message.status == StatusCode.FAILURE:
            state.failure = True
        elif message.status == StatusCode.SUCCESS:
            state.success = True
            state.percent = 100.0
        elif message.status == StatusCode.RUN:
            self._apply_run_info(message.info)
        elif message.status == StatusCode.PROGRESS:
            self._apply_step_progress(message)

    def _apply_run_info(self, info: str) -> None:
        if not info:
            return
        try:
            payload = json.loads(info)
        except ValueError:
            return
        if not isinstance(payload, dict) or not isinstance(payload.get("0"), dict):
            return

        details = payload["0"]
        if "VERSION" in details:
            self.state.version = str(details["VERSION"])
            self.logger.info(f"Firmware version: {self.state.version}")

        if "ITEMS_TO_INSTALL" in details:
            try:
                items = int(details["ITEMS_TO_INSTALL"])
            except (TypeError, ValueError):
                return
            self.state.items_to_install = items
            self.state.items_to_install_received = True
            if items:
                self.event_log.log_ui(Severity.NOTICE, f"Installing {items} item(s)...")
            else:
                self.event_log.log_ui(Severity.NOTICE, "No items to install")

    def _apply_step_progress(self, message: ProgressMessage) -> None:
        state = self.state
        step = message.cur_step
        nsteps = message.nsteps

        if nsteps > state.step_count:
            state.step_count = nsteps
        if step > state.step:
            state.step = step

        # Regressed steps only count as heartbeat
        if step > 0 and step >= state.step and nsteps > 0:
            state.percent = ((step - 1) * 100 + message.cur_percent) / nsteps
            self.logger.debug(
                f"Install step {step} of {nsteps}: {format_percent(state.percent)}"
            )
