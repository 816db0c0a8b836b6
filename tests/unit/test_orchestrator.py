"""Unit tests for UpgradeOrchestrator."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from swupgrade.errors import (
    AuthorizationError,
    EventStreamNotConnectedError,
    StallTimeoutError,
    TransportError,
    UpgradeInProgressError,
)
from swupgrade.models.progress import InstallState, UploadProgress
from swupgrade.models.session import UpgradeSession
from swupgrade.models.status import PhaseEnum, Severity, StageEnum
from swupgrade.services.event_stream import ConnectionState
from swupgrade.services.orchestrator import UpgradeOrchestrator
from swupgrade.services.state_manager import StateManager


@pytest.fixture
def parts():
    """Mocked phase services with a successful default behaviour."""
    event_stream = MagicMock()
    event_stream.is_open = True
    event_stream.state = ConnectionState.OPEN

    access = MagicMock()
    access.require_access = AsyncMock()

    upload = MagicMock()
    upload.upload = AsyncMock(
        return_value=UploadProgress(bytes_uploaded=4096, bytes_total=4096, percent=100)
    )

    watchdog = MagicMock()
    watchdog.state = InstallState()
    watchdog.await_install = AsyncMock(
        return_value=InstallState(items_to_install=2, items_to_install_received=True, success=True)
    )

    reboot = MagicMock()
    reboot.await_reboot = AsyncMock(return_value="Successfully completed")

    return {
        "event_stream": event_stream,
        "access": access,
        "upload": upload,
        "watchdog": watchdog,
        "reboot": reboot,
    }


@pytest.fixture
def orchestrator(parts, event_log):
    return UpgradeOrchestrator(
        parts["event_stream"],
        parts["access"],
        parts["upload"],
        parts["watchdog"],
        parts["reboot"],
        event_log=event_log,
        state_manager=StateManager(),
    )


@pytest.fixture
def session(sample_image):
    return UpgradeSession.from_file(sample_image)


@pytest.mark.unit
class TestUpgradeOrchestrator:
    """Test phase ordering and terminal status."""

    @pytest.mark.asyncio
    async def test_successful_pipeline(self, orchestrator, parts, session):
        result = await orchestrator.run(session)

        assert result.ok is True
        assert [o.phase for o in result.outcomes] == [
            PhaseEnum.ACCESS,
            PhaseEnum.UPLOAD,
            PhaseEnum.INSTALL,
            PhaseEnum.REBOOT,
        ]
        parts["watchdog"].attach.assert_called_once()
        parts["watchdog"].detach.assert_called()
        install_state = parts["watchdog"].await_install.return_value
        parts["reboot"].await_reboot.assert_awaited_once_with(session, install_state)

        status = StateManager().get_status()
        assert status.stage == StageEnum.SUCCESS
        assert status.progress == 100
        assert status.message == "Successfully completed"
        assert orchestrator.running is False

    @pytest.mark.asyncio
    async def test_access_failure_stops_pipeline(self, orchestrator, parts, session, event_log):
        parts["access"].require_access.side_effect = AuthorizationError("Not enough permissions")

        result = await orchestrator.run(session)

        assert result.ok is False
        assert result.failed_phase == PhaseEnum.ACCESS
        parts["upload"].upload.assert_not_awaited()
        parts["watchdog"].await_install.assert_not_awaited()

        status = StateManager().get_status()
        assert status.stage == StageEnum.FAILED
        assert status.error == "ACCESS_DENIED: Not enough permissions"
        assert [e.message for e in event_log.entries()] == [
            "Checking permissions...",
            "Not enough permissions",
        ]

    @pytest.mark.asyncio
    async def test_upload_failure_skips_install(self, orchestrator, parts, session):
        parts["upload"].upload.side_effect = TransportError("Uploading failure")

        result = await orchestrator.run(session)

        assert result.failed_phase == PhaseEnum.UPLOAD
        parts["watchdog"].await_install.assert_not_awaited()
        parts["reboot"].await_reboot.assert_not_awaited()
        assert StateManager().get_status().error == "UPLOAD_FAILED: Uploading failure"

    @pytest.mark.asyncio
    async def test_install_timeout_skips_reboot(self, orchestrator, parts, session):
        parts["watchdog"].await_install.side_effect = StallTimeoutError("Installation timed out")

        result = await orchestrator.run(session)

        assert result.failed_phase == PhaseEnum.INSTALL
        parts["reboot"].await_reboot.assert_not_awaited()
        status = StateManager().get_status()
        assert status.stage == StageEnum.FAILED
        assert status.message == "Installation timed out"

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_failure(self, orchestrator, parts, session):
        parts["reboot"].await_reboot.side_effect = RuntimeError("boom")

        result = await orchestrator.run(session)

        assert result.failed_phase == PhaseEnum.REBOOT
        assert StateManager().get_status().error == "UPGRADE_FAILED: boom"
        assert orchestrator.running is False

    @pytest.mark.asyncio
    async def test_refuses_when_stream_not_open(self, orchestrator, parts, session):
        parts["event_stream"].is_open = False

        with pytest.raises(EventStreamNotConnectedError):
            await orchestrator.run(session)

        parts["access"].require_access.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refuses_concurrent_run(self, orchestrator, parts, session):
        seen = []

        async def second_attempt():
            with pytest.raises(UpgradeInProgressError):
                orchestrator.ensure_ready()
            seen.append(orchestrator.running)

        parts["access"].require_access.side_effect = second_attempt

        await orchestrator.run(session)

        assert seen == [True]

    @pytest.mark.asyncio
    async def test_reserved_run_starts(self, orchestrator, parts, session):
        orchestrator.reserve()

        with pytest.raises(UpgradeInProgressError):
            orchestrator.reserve()

        result = await orchestrator.run(session)

        assert result.ok is True
        parts["access"].require_access.assert_awaited_once()
        assert orchestrator.running is False

    def test_reserve_refuses_closed_stream(self, orchestrator, parts):
        parts["event_stream"].is_open = False

        with pytest.raises(EventStreamNotConnectedError):
            orchestrator.reserve()

        assert orchestrator.running is False

    @pytest.mark.asyncio
    async def test_new_attempt_clears_log(self, orchestrator, session, event_log):
        event_log.log_ui(Severity.INFO, "old")

        await orchestrator.run(session)

        assert "old" not in [e.message for e in event_log.entries()]

    @pytest.mark.asyncio
    async def test_closed_stream_is_replaced(self, parts, event_log, session):
        fresh = MagicMock()
        fresh.connect = AsyncMock()
        factory = MagicMock(return_value=fresh)
        orchestrator = UpgradeOrchestrator(
            parts["event_stream"],
            parts["access"],
            parts["upload"],
            parts["watchdog"],
            parts["reboot"],
            event_log=event_log,
            state_manager=StateManager(),
            stream_factory=factory,
        )

        async def reboot(session, install):
            parts["event_stream"].state = ConnectionState.CLOSED
            return "Successfully completed"

        parts["reboot"].await_reboot.side_effect = reboot

        await orchestrator.run(session)

        fresh.connect.assert_awaited_once()
        assert orchestrator.event_stream is fresh
        assert parts["watchdog"].event_stream is fresh
        assert parts["reboot"].event_stream is fresh

    @pytest.mark.asyncio
    async def test_open_stream_is_kept(self, parts, event_log, session):
        factory = MagicMock()
        orchestrator = UpgradeOrchestrator(
            parts["event_stream"],
            parts["access"],
            parts["upload"],
            parts["watchdog"],
            parts["reboot"],
            event_log=event_log,
            state_manager=StateManager(),
            stream_factory=factory,
        )

        await orchestrator.run(session)

        factory.assert_not_called()
        assert orchestrator.event_stream is parts["event_stream"]
