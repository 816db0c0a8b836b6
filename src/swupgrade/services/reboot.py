"""Reboot phase: decide whether to wait for the device to come back."""

import asyncio
import logging
import time
from typing import Optional

import httpx

from swupgrade.errors import ReconnectTimeoutError
from swupgrade.models.progress import InstallState
from swupgrade.models.session import UpgradeSession
from swupgrade.models.status import Severity, StageEnum
from swupgrade.services.event_log import EventLog
from swupgrade.services.event_stream import EventStreamClient
from swupgrade.services.state_manager import StateManager
from swupgrade.services.ubus import RebootStateReader

MSG_NOTHING_UPGRADED = (
    "The current device firmware fully matches the uploaded firmware. "
    "Firmware upgrade has not been done since it is not required"
)
MSG_DRY_RUN = "Dry run is successfully completed"
MSG_COMPLETED = "Successfully completed"


class ReconnectWaiter:
    """Polls the device address until it answers HTTP again."""

    def __init__(
        self,
        url: str,
        initial_delay: float = 10.0,
        poll_interval: float = 5.0,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize reconnect waiter.

        Args:
            url: Original device URL
            initial_delay: Time for the device to actually go down
            poll_interval: Delay between probes
            timeout: Give up after this many seconds (None waits forever)
            client: Shared httpx client
        """
        self.logger = logging.getLogger("swupgrade.reconnect")
        self.url = url
        self.initial_delay = initial_delay
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._client = client

    async def _probe(self, client: httpx.AsyncClient) -> bool:
        try:
            await client.get(self.url, timeout=self.poll_interval)
        except httpx.HTTPError as e:
            self.logger.debug(f"Device not reachable yet: {e}")
            return False
        return True

    async def wait(self) -> None:
        """Block until the device is reachable.

        Raises:
            ReconnectTimeoutError: If ``timeout`` elapses first
        """
        started = time.monotonic()
        self.logger.info(f"Waiting for {self.url} to come back")
        await asyncio.sleep(self.initial_delay)

        client = self._client or httpx.AsyncClient(verify=False)
        try:
            while True:
                if await self._probe(client):
                    self.logger.info(
                        f"Device reachable again after {time.monotonic() - started:.1f}s"
                    )
                    return
                if self.timeout is not None and time.monotonic() - started >= self.timeout:
                    raise ReconnectTimeoutError(
                        f"Device did not come back within {self.timeout:.0f}s"
                    )
                await asyncio.sleep(self.poll_interval)
        finally:
            if self._client is None:
                await client.aclose()


class RebootService:
    """Final phase of an upgrade."""

    def __init__(
        self,
        reboot_state: RebootStateReader,
        event_stream: EventStreamClient,
        reconnect: ReconnectWaiter,
        event_log: Optional[EventLog] = None,
        state_manager: Optional[StateManager] = None,
        settle_delay: float = 1.5,
    ):
        self.logger = logging.getLogger("swupgrade.reboot")
        self.reboot_state = reboot_state
        self.event_stream = event_stream
        self.reconnect = reconnect
        self.event_log = event_log or EventLog()
        self.state_manager = state_manager or StateManager()
        self.settle_delay = settle_delay

    async def await_reboot(self, session: UpgradeSession, install: InstallState) -> str:
        """Finish the upgrade, waiting for a reboot when one is pending.

        Returns:
            Completion message

        Raises:
            ReconnectTimeoutError: If the device never came back
        """
        reboot_required = await self.reboot_state.reboot_required()
        self.logger.info(
            f"Reboot decision: dry_run={session.dry_run}, "
            f"items_to_install={install.items_to_install}, reboot_required={reboot_required}"
        )

        if session.dry_run or install.items_to_install == 0 or not reboot_required:
            await asyncio.sleep(self.settle_delay)
            if install.items_to_install == 0:
                message = MSG_NOTHING_UPGRADED
            elif session.dry_run:
                message = MSG_DRY_RUN
            else:
                message = MSG_COMPLETED
            self.event_log.log_ui(Severity.SUCCESS, message)
            return message

        self.event_log.log_ui(Severity.INFO, "Rebooting device...")
        self.state_manager.update_status(
            stage=StageEnum.REBOOTING, progress=100, message="Rebooting, please wait..."
        )
        await self.event_stream.close()

        self.event_log.log_ui(
            Severity.NOTICE,
            "Waiting for the new system to be started after firmware upgrade...",
        )
        await self.reconnect.wait()
        self.event_log.log_ui(Severity.SUCCESS, "Device is back online")
        return MSG_COMPLETED
