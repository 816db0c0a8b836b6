"""Global pytest fixtures and configuration."""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from swupgrade.config import UpgraderSettings  # noqa: E402
from swupgrade.services.event_log import EventLog  # noqa: E402
from swupgrade.services.state_manager import StateManager  # noqa: E402


@pytest.fixture(autouse=True)
def reset_state_manager():
    """Give every test a fresh StateManager singleton."""
    StateManager._instance = None
    yield
    StateManager._instance = None


@pytest.fixture
def event_log():
    return EventLog()


@pytest.fixture
def mock_state_manager():
    """Mock StateManager for unit tests."""
    manager = MagicMock()
    manager.update_status = MagicMock()
    manager.update_upload = MagicMock()
    manager.update_install = MagicMock()
    return manager


@pytest.fixture
def fast_settings():
    """Settings with timers short enough for unit tests."""
    return UpgraderSettings(
        device_url="http://device.test",
        session_id="a" * 32,
        install_timeout=0.2,
        install_check_interval=0.02,
        upload_speed_clear_timeout=0.05,
        upload_failure_delay=0.01,
        reboot_settle_delay=0.0,
        event_retry=0.01,
        reconnect_initial_delay=0.0,
        reconnect_poll_interval=0.01,
        log_file=None,
    )


@pytest.fixture
def sample_image(tmp_path):
    """A small firmware image with a four-part name."""
    image = tmp_path / "core-image.stable.alpha.swu"
    image.write_bytes(b"\x00" * 4096)
    return image
