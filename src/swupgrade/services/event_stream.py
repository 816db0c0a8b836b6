"""Event stream (text/event-stream) client with automatic reconnect."""

import asyncio
import logging
from collections import defaultdict
from enum import IntEnum
from typing import Callable, Optional

import httpx

from swupgrade.models.events import StreamEvent

Listener = Callable[[StreamEvent], None]


class ConnectionState(IntEnum):
    """Connection states, same values as the browser EventSource."""

    CONNECTING = 0
    OPEN = 1
    CLOSED = 2


class EventStreamDecoder:
    """Decodes the line protocol into StreamEvent records.

    Records are separated by blank lines and made of ``event:``, ``data:``,
    ``id:`` and ``retry:`` fields. The id cursor and retry interval survive
    reconnects; a partially received record does not.
    """

    def __init__(self):
        self.last_event_id: Optional[str] = None
        self.retry_ms: Optional[int] = None
        self._event_type = ""
        self._data: list[str] = []

    def reset(self) -> None:
        """Drop the record being assembled (new connection)."""
        self._event_type = ""
        self._data = []

    def feed_line(self, line: str) -> Optional[StreamEvent]:
        """Consume one line, return an event when a record completes."""
        line = line.rstrip("\r\n")

        if not line:
            return self._dispatch()

        if line.startswith(":"):
            return None

        if ":" in line:
            field, value = line.split(":", 1)
            if value.startswith(" "):
                value = value[1:]
        else:
            field, value = line, ""

        if field == "event":
            self._event_type = value
        elif field == "data":
            self._data.append(value)
        elif field == "id":
            if "\0" not in value:
                # A bare "id" resets the cursor
                self.last_event_id = value or None
        elif field == "retry":
            if value.isdigit():
                self.retry_ms = int(value)
        return None

    def _dispatch(self) -> Optional[StreamEvent]:
        if not self._data:
            self._event_type = ""
            return None
        event = StreamEvent(
            type=self._event_type or "message",
            data="\n".join(self._data),
            id=self.last_event_id,
        )
        self.reset()
        return event


class EventStreamClient:
    """Long-lived subscription to an event stream endpoint.

    Any disconnect other than ``close()`` puts the client back in CONNECTING
    and reconnects after the server's ``retry:`` interval, resending the last
    event id as ``Last-Event-ID``.
    """

    def __init__(
        self,
        url: str,
        client: Optional[httpx.AsyncClient] = None,
        retry_interval: float = 0.5,
        read_timeout: Optional[float] = 60.0,
    ):
        """Initialize event stream client.

        Args:
            url: Stream URL (e.g. http://192.168.1.1/ubus/subscribe/swupdate?<sid>)
            client: Shared httpx client (a private one is created if None)
            retry_interval: Reconnect delay until the server sends ``retry:``
            read_timeout: Idle time before the connection is recycled
        """
        self.logger = logging.getLogger("swupgrade.event_stream")
        self.url = url
        self.retry_interval = retry_interval
        self.decoder = EventStreamDecoder()

        self._client = client
        self._owns_client = client is None
        self._timeout = httpx.Timeout(10.0, read=read_timeout)
        self._state = ConnectionState.CONNECTING
        self._opened = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

        self.on_open: Optional[Callable[[], None]] = None
        self.on_error: Optional[Callable[[Optional[Exception]], None]] = None
        self.on_close: Optional[Callable[[], None]] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == ConnectionState.OPEN

    @property
    def last_event_id(self) -> Optional[str]:
        return self.decoder.last_event_id

    def add_listener(self, event_type: str, listener: Listener) -> None:
        self._listeners[event_type].append(listener)

    def remove_listener(self, event_type: str, listener: Listener) -> None:
        """Remove one registration of ``listener``, ignore unknown ones."""
        listeners = self._listeners.get(event_type)
        if listeners and listener in listeners:
            listeners.remove(listener)

    async def connect(self) -> None:
        """Start the background connection task.

        Raises:
            RuntimeError: If the client was closed
        """
        if self._state == ConnectionState.CLOSED:
            raise RuntimeError("Event stream is closed")
        if self._task and not self._task.done():
            return
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        self.logger.info(f"Connecting event stream: {self.url}")
        self._task = asyncio.create_task(self._run())

    async def wait_open(self, timeout: Optional[float] = None) -> bool:
        """Wait until the stream is OPEN, False on timeout or close."""
        if self.is_open:
            return True
        try:
            await asyncio.wait_for(self._opened.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return self.is_open

    async def close(self) -> None:
        """Close the stream for good. Calling it again does nothing."""
        if self._state == ConnectionState.CLOSED:
            return
        self._state = ConnectionState.CLOSED
        self._opened.clear()

        task = self._task
        if task and not task.done():
            task.cancel()
            if task is not asyncio.current_task():
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        if self._owns_client and self._client is not None:
            await self._client.aclose()

        self.logger.info("Event stream closed")
        if self.on_close:
            self.on_close()

    async def _run(self) -> None:
        while self._state != ConnectionState.CLOSED:
            error: Optional[Exception] = None
            try:
                await self._stream_once()
                self.logger.info("Event stream ended by server")
            except httpx.HTTPError as e:
                error = e
                self.logger.warning(f"Event stream disconnected: {e}")
            except Exception as e:
                error = e
                self.logger.error(f"Event stream failure: {e}", exc_info=True)

            if self._state == ConnectionState.CLOSED:
                break

            self._state = ConnectionState.CONNECTING
            self._opened.clear()
            if self.on_error:
                self.on_error(error)

            await asyncio.sleep(self._reconnect_delay())

    async def _stream_once(self) -> None:
        headers = {
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
        }
        if self.decoder.last_event_id is not None:
            headers["Last-Event-ID"] = self.decoder.last_event_id

        async with self._client.stream(
            "GET", self.url, headers=headers, timeout=self._timeout
        ) as response:
            response.raise_for_status()

            if self._state == ConnectionState.CONNECTING:
                self._state = ConnectionState.OPEN
                self._opened.set()
                self.logger.info("Event stream connected")
                if self.on_open:
                    self.on_open()

            self.decoder.reset()
            async for line in response.aiter_lines():
                event = self.decoder.feed_line(line)
                if event is not None:
                    self._dispatch(event)

    def _reconnect_delay(self) -> float:
        if self.decoder.retry_ms is not None:
            return self.decoder.retry_ms / 1000.0
        return self.retry_interval

    def _dispatch(self, event: StreamEvent) -> None:
        for listener in list(self._listeners.get(event.type, ())):
            try:
                listener(event)
            except Exception as e:
                self.logger.error(
                    f"Listener for '{event.type}' event failed: {e}", exc_info=True
                )
