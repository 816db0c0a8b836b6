"""FastAPI application for the SWUpdate firmware upgrade client."""

from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI

from swupgrade.api.routes import router
from swupgrade.config import UpgraderSettings
from swupgrade.models.status import Severity
from swupgrade.services.event_log import EventLog
from swupgrade.services.event_stream import EventStreamClient
from swupgrade.services.orchestrator import UpgradeOrchestrator
from swupgrade.services.reboot import RebootService, ReconnectWaiter
from swupgrade.services.state_manager import StateManager
from swupgrade.services.ubus import RebootStateReader, SessionAccessChecker, UbusClient
from swupgrade.services.upload import HttpxUploadTransport, UploadService
from swupgrade.services.watchdog import InstallWatchdog
from swupgrade.utils.logging import setup_logger


def build_orchestrator(
    settings: UpgraderSettings,
    client: Optional[httpx.AsyncClient] = None,
    event_log: Optional[EventLog] = None,
    state_manager: Optional[StateManager] = None,
) -> UpgradeOrchestrator:
    """Wire the phase services for one device."""
    event_log = event_log or EventLog()
    state_manager = state_manager or StateManager()

    def make_event_stream() -> EventStreamClient:
        stream = EventStreamClient(
            settings.event_stream_url, client=client, retry_interval=settings.event_retry
        )
        stream.on_open = lambda: event_log.log_ui(Severity.NOTICE, "Event stream connected")
        # close() is only ever called on purpose (reboot, shutdown)
        stream.on_close = lambda: event_log.log_ui(Severity.NOTICE, "Event stream closed")
        return stream

    event_stream = make_event_stream()

    ubus = UbusClient(settings.ubus_url, settings.session_id, client=client)
    upload = UploadService(
        settings.upload_url,
        settings.session_id,
        transport=HttpxUploadTransport(client),
        event_log=event_log,
        state_manager=state_manager,
        speed_clear_timeout=settings.upload_speed_clear_timeout,
        failure_delay=settings.upload_failure_delay,
    )
    watchdog = InstallWatchdog(
        event_stream,
        event_log=event_log,
        state_manager=state_manager,
        install_timeout=settings.install_timeout,
        check_interval=settings.install_check_interval,
    )
    reboot = RebootService(
        RebootStateReader(ubus, settings.reboot_state_file),
        event_stream,
        ReconnectWaiter(
            settings.device_url,
            initial_delay=settings.reconnect_initial_delay,
            poll_interval=settings.reconnect_poll_interval,
            timeout=settings.reconnect_timeout,
            client=client,
        ),
        event_log=event_log,
        state_manager=state_manager,
        settle_delay=settings.reboot_settle_delay,
    )
    return UpgradeOrchestrator(
        event_stream,
        SessionAccessChecker(ubus),
        upload,
        watchdog,
        reboot,
        event_log=event_log,
        state_manager=state_manager,
        stream_factory=make_event_stream,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown hooks.

    Startup:
    - Initialize logger
    - Build the phase services and open the event stream

    Shutdown:
    - Close the event stream and the shared HTTP client
    """
    settings: UpgraderSettings = app.state.settings
    logger = setup_logger("swupgrade", settings.log_file, level=settings.log_level)
    logger.info(f"Upgrade client starting up for {settings.device_url}")

    client = httpx.AsyncClient(timeout=10.0, verify=False)
    event_log = EventLog()
    orchestrator = build_orchestrator(settings, client=client, event_log=event_log)
    app.state.event_log = event_log
    app.state.orchestrator = orchestrator

    await orchestrator.event_stream.connect()
    logger.info(f"Upgrade client ready on port {settings.api_port}")

    yield

    logger.info("Upgrade client shutting down...")
    await orchestrator.event_stream.close()
    await client.aclose()


def create_app(settings: Optional[UpgraderSettings] = None) -> FastAPI:
    app = FastAPI(
        title="SWUpdate Upgrade Client",
        description="Firmware upload and install monitoring for SWUpdate devices",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings or UpgraderSettings.from_env()
    app.include_router(router)

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {"status": "ok", "service": "swupgrade", "version": "1.0.0"}

    return app


# Create FastAPI application
app = create_app()


def main():
    """Main entry point for running the server."""
    settings = UpgraderSettings.from_env()
    uvicorn.run(
        create_app(settings),
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
        access_log=True,
    )


if __name__ == "__main__":
    main()
