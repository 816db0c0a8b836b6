"""Minimal ubus JSON-RPC client (the /ubus endpoint of uhttpd)."""

import itertools
import logging
from typing import Any, Optional

import httpx

from swupgrade.errors import AuthorizationError

UBUS_STATUS_OK = 0


class UbusError(RuntimeError):
    """ubus call returned a non-zero status or a JSON-RPC error."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class UbusClient:
    """Calls ``object.method`` on the device on behalf of a session."""

    def __init__(
        self,
        url: str,
        session_id: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.logger = logging.getLogger("swupgrade.ubus")
        self.url = url
        self.session_id = session_id
        self.timeout = timeout
        self._client = client
        self._ids = itertools.count(1)

    async def call(self, obj: str, method: str, params: Optional[dict] = None) -> dict:
        """Invoke a ubus method.

        Returns:
            Result data of the call ({} when the method returns nothing)

        Raises:
            UbusError: If ubus reports an error status
            httpx.HTTPError: If the request fails
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": "call",
            "params": [self.session_id, obj, method, params or {}],
        }
        self.logger.debug(f"ubus call {obj}.{method}")

        if self._client is not None:
            response = await self._client.post(self.url, json=payload, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=payload)
        response.raise_for_status()
        body = response.json()

        if "error" in body:
            error = body["error"] or {}
            raise UbusError(
                f"ubus {obj}.{method} failed: {error.get('message', 'unknown error')}",
                status=error.get("code"),
            )

        result: Any = body.get("result") or []
        status = result[0] if result else UBUS_STATUS_OK
        if status != UBUS_STATUS_OK:
            raise UbusError(f"ubus {obj}.{method} returned status {status}", status=status)
        return result[1] if len(result) > 1 and isinstance(result[1], dict) else {}


class SessionAccessChecker:
    """Probe whether the session may perform the firmware upload."""

    def __init__(self, ubus: UbusClient):
        self.logger = logging.getLogger("swupgrade.access")
        self.ubus = ubus

    async def has_access(
        self, scope: str = "cgi-swupdate", obj: str = "update", function: str = "write"
    ) -> bool:
        """Return the access flag, False when the probe itself fails."""
        try:
            result = await self.ubus.call(
                "session",
                "access",
                {"scope": scope, "object": obj, "function": function},
            )
        except (UbusError, httpx.HTTPError, ValueError) as e:
            self.logger.warning(f"Session access probe failed: {e}")
            return False
        return bool(result.get("access", False))

    async def require_access(self) -> None:
        """Raises AuthorizationError unless the session may upload firmware."""
        if not await self.has_access():
            raise AuthorizationError("Not enough permissions")


class RebootStateReader:
    """Reads the persisted 'reboot required' flag left by the install."""

    def __init__(self, ubus: UbusClient, path: str = "/tmp/swu_reboot_state"):
        self.logger = logging.getLogger("swupgrade.reboot_state")
        self.ubus = ubus
        self.path = path

    async def reboot_required(self) -> bool:
        """True when the file holds an integer > 0; missing or unreadable is False."""
        try:
            result = await self.ubus.call("file", "read", {"path": self.path})
        except (UbusError, httpx.HTTPError, ValueError) as e:
            self.logger.info(f"Reboot state unavailable ({e}), assuming no reboot")
            return False
        return parse_reboot_state(result.get("data", "0"))


def parse_reboot_state(data: str) -> bool:
    """True when the state file starts with an integer greater than zero."""
    digits = ""
    for ch in str(data).strip():
        if ch.isdigit() or (ch in "+-" and not digits):
            digits += ch
        else:
            break
    try:
        return int(digits) > 0
    except ValueError:
        return False
