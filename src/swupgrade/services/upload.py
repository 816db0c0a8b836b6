"""Firmware upload phase: multipart transfer with speed reporting."""

import asyncio
import json
import logging
import os
import time
from pathlib import Path
from typing import Callable, Optional

import httpx

from swupgrade.errors import TransportError
from swupgrade.models.progress import UploadProgress
from swupgrade.models.session import UpgradeSession
from swupgrade.models.status import Severity
from swupgrade.services.event_log import EventLog
from swupgrade.services.state_manager import StateManager
from swupgrade.utils.formatting import format_size, format_speed

ProgressCallback = Callable[[int, int], None]


class UploadSpeedMeter:
    """Turns (loaded, total) samples into an UploadProgress.

    The first sample only records the start time; speeds need a delta.
    """

    def __init__(self):
        self.progress = UploadProgress()
        self._start: Optional[float] = None
        self._last_time: Optional[float] = None
        self._last_loaded = 0

    def update(self, loaded: int, total: int, now: float) -> UploadProgress:
        progress = self.progress
        progress.bytes_uploaded = loaded
        progress.bytes_total = total
        progress.percent = (loaded / total * 100.0) if total > 0 else 0.0

        if progress.samples == 0:
            self._start = self._last_time = now
            self._last_loaded = loaded
            progress.samples = 1
            return progress

        delta = now - self._last_time
        if delta <= 0:
            return progress

        progress.current_speed = (loaded - self._last_loaded) / delta
        progress.average_speed = loaded / (now - self._start)
        progress.samples += 1
        self._last_time = now
        self._last_loaded = loaded
        return progress

    def clear_current_speed(self) -> UploadProgress:
        """Back to 'unknown' after a quiet period."""
        self.progress.current_speed = None
        return self.progress


class ProgressReader:
    """File wrapper that reports how much of the file has been read."""

    def __init__(self, fileobj, total: int, callback: ProgressCallback):
        self._file = fileobj
        self._total = total
        self._callback = callback
        self._loaded = 0

    def read(self, size: int = -1) -> bytes:
        chunk = self._file.read(size)
        if chunk:
            self._loaded += len(chunk)
            self._callback(self._loaded, self._total)
        return chunk

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        position = self._file.seek(offset, whence)
        self._loaded = self._file.tell()
        return position

    def tell(self) -> int:
        return self._file.tell()

    def fileno(self) -> int:
        return self._file.fileno()


class HttpxUploadTransport:
    """Multipart POST of the image using httpx."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self.logger = logging.getLogger("swupgrade.upload.transport")
        self._client = client
        # Uploads may take many minutes on slow links
        self._timeout = httpx.Timeout(None, connect=10.0)

    async def post(
        self,
        url: str,
        fields: dict[str, str],
        file_field: str,
        file_path: Path,
        file_name: str,
        progress: ProgressCallback,
    ) -> str:
        """Upload the file, return the response body.

        Raises:
            httpx.HTTPError: On transport errors and non-2xx responses
        """
        total = file_path.stat().st_size
        with open(file_path, "rb") as f:
            reader = ProgressReader(f, total, progress)
            files = {file_field: (file_name, reader, "application/octet-stream")}
            if self._client is not None:
                response = await self._client.post(
                    url, data=fields, files=files, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(url, data=fields, files=files)
        response.raise_for_status()
        return response.text


class UploadService:
    """Drives the upload phase of one session."""

    def __init__(
        self,
        upload_url: str,
        session_id: str,
        transport: Optional[HttpxUploadTransport] = None,
        event_log: Optional[EventLog] = None,
        state_manager: Optional[StateManager] = None,
        speed_clear_timeout: float = 2.0,
        failure_delay: float = 2.5,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize upload service.

        Args:
            upload_url: CGI endpoint receiving the image
            session_id: Credential token sent with the form
            transport: Upload transport (httpx by default)
            event_log: Upgrade log
            state_manager: StateManager instance (uses singleton if None)
            speed_clear_timeout: Quiet period before current speed is unknown
            failure_delay: Settling delay before a failure is reported
            clock: Monotonic time source in seconds
        """
        self.logger = logging.getLogger("swupgrade.upload")
        self.upload_url = upload_url
        self.session_id = session_id
        self.transport = transport or HttpxUploadTransport()
        self.event_log = event_log or EventLog()
        self.state_manager = state_manager or StateManager()
        self.speed_clear_timeout = speed_clear_timeout
        self.failure_delay = failure_delay
        self.clock = clock

    def build_fields(self, session: UpgradeSession) -> dict[str, str]:
        """Form fields sent before the image part."""
        return {
            "sessionid": self.session_id,
            "filename": session.file_name,
            "postupdate": "1",
            "cleardata": "1" if session.clear_user_data else "0",
            "dryrun": "1" if session.dry_run else "0",
            "swu_software_set": session.software_set,
            "swu_running_mode": session.running_mode,
        }

    async def upload(self, session: UpgradeSession) -> UploadProgress:
        """Upload the session's image.

        Returns:
            Final upload snapshot

        Raises:
            TransportError: After the settling delay, if the upload failed
        """
        loop = asyncio.get_running_loop()
        meter = UploadSpeedMeter()
        clear_handle: Optional[asyncio.TimerHandle] = None

        def clear_current_speed() -> None:
            self.state_manager.update_upload(meter.clear_current_speed().model_copy())

        def on_progress(loaded: int, total: int) -> None:
            nonlocal clear_handle
            progress = meter.update(loaded, total, self.clock())
            self.state_manager.update_upload(progress.model_copy())
            if progress.samples < 2:
                return
            self.logger.debug(
                f"Uploaded {format_size(loaded)} of {format_size(total)}, "
                f"current {format_speed(progress.current_speed)}, "
                f"average {format_speed(progress.average_speed)}"
            )
            if clear_handle is not None:
                clear_handle.cancel()
            clear_handle = loop.call_later(self.speed_clear_timeout, clear_current_speed)

        self.event_log.log_ui(Severity.INFO, "Uploading firmware file into device...")
        self.logger.info(
            f"Starting upload: file={session.file_name}, size={session.file_size} bytes, "
            f"software_set={session.software_set!r}, running_mode={session.running_mode!r}"
        )

        try:
            body = await self.transport.post(
                self.upload_url,
                self.build_fields(session),
                "swupdatedata",
                session.file_path,
                session.file_name,
                on_progress,
            )
            failure = parse_upload_failure(body)
            if failure:
                raise TransportError(failure)
        except (httpx.HTTPError, OSError, TransportError) as e:
            self.logger.error(f"Upload failed: {e}")
            if clear_handle is not None:
                clear_handle.cancel()
            await asyncio.sleep(self.failure_delay)
            self.event_log.log_ui(Severity.ERROR, "Could not upload firmware file")
            if isinstance(e, TransportError):
                raise TransportError(f"Uploading failure: {e.message}") from e
            raise TransportError("Uploading failure") from e

        if clear_handle is not None:
            clear_handle.cancel()
        self.state_manager.update_upload(meter.clear_current_speed().model_copy())
        self.logger.info(f"Upload complete: {meter.progress.bytes_uploaded} bytes")
        return meter.progress.model_copy()


def parse_upload_failure(body: str) -> Optional[str]:
    """Failure text from a CGI response body, None when it reports success.

    The CGI answers 200 with ``{"message": ..., "failure": [errno, text]}``
    on rejected uploads and ``{}`` on success.
    """
    try:
        data = json.loads(body)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict) or "failure" not in data:
        return None
    if data.get("message"):
        return str(data["message"])
    failure = data["failure"]
    if isinstance(failure, list) and len(failure) > 1:
        return str(failure[1])
    return "Upload rejected by device"
