"""Low-level API client for the Sleepme developer API.

This module provides direct HTTP communication with the Sleepme API. The raw
``request`` method returns (status_code, response_data) tuples; the device
methods build on it, parse responses into models and raise on failure.
"""

from __future__ import annotations

import asyncio
import logging
from http import HTTPStatus
from typing import TYPE_CHECKING, Any

from aiohttp import ClientError, ClientSession, ClientTimeout

from pysleepme.const import DEFAULT_BASE_URL, DEFAULT_TIMEOUT, THERMAL_STATUSES
from pysleepme.exceptions import (
    AuthenticationError,
    InvalidParameterError,
    RateLimitError,
    SleepmeApiError,
    SleepmeConnectionError,
    SleepmeTimeoutError,
)
from pysleepme.parsers import parse_control, parse_device_status, parse_devices


# Maximum number of rate-limit retries inside a single request
MAX_RATE_LIMIT_RETRIES = 3

if TYPE_CHECKING:
    from types import TracebackType

    from pysleepme.models import Control, Device, DeviceStatus
    from pysleepme.resilience import RateLimiter

_LOGGER = logging.getLogger(__name__)

_SUCCESS_STATUSES = (HTTPStatus.OK, HTTPStatus.CREATED, HTTPStatus.NO_CONTENT)


class SleepmeAPI:
    """Low-level API client for the Sleepme developer API.

    Example:
        ```python
        from pysleepme.api import SleepmeAPI

        async with SleepmeAPI(api_key="token") as api:
            devices = await api.get_devices()
            status = await api.get_device_status(devices[0].device_id)
            control = await api.set_thermal_control_status(devices[0].device_id, "active")
        ```

    Attributes:
        base_url: Base URL for the API (default: https://api.developer.sleep.me).
    """

    def __init__(
        self,
        *,
        api_key: str,
        session: ClientSession | None = None,
        base_url: str = DEFAULT_BASE_URL,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        """Initialize the API client.

        Args:
            api_key: Sleepme developer API token.
            session: Optional aiohttp ClientSession. If not provided, one will be
                created when entering the context manager.
            base_url: Base URL for the API. Defaults to the Sleepme production API.
            rate_limiter: Optional RateLimiter for handling 429 responses.
        """
        self._api_key = api_key
        self._session = session
        self._owns_session = session is None
        self._base_url = base_url.rstrip("/")
        self._rate_limiter = rate_limiter

    async def __aenter__(self) -> SleepmeAPI:
        """Enter the context manager, creating a session if needed."""
        if self._session is None:
            self._session = ClientSession()
            self._owns_session = True
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit the context manager, closing the session if it was created here."""
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        json_data: dict[str, Any] | None = None,
    ) -> tuple[int, Any]:
        """Make an authenticated API request.

        Handles the bearer header, bounded 429 retries (when a rate limiter is
        configured) and JSON parsing.

        Args:
            method: HTTP method (GET, PATCH).
            endpoint: API endpoint path (e.g., "/devices").
            json_data: Optional JSON data for request body.

        Returns:
            Tuple of (status_code, response_data). Response data is None for
            unsuccessful responses and {} for successful non-JSON ones.

        Raises:
            RuntimeError: If session is not initialized or is closed.
            SleepmeTimeoutError: If request times out.
            SleepmeConnectionError: If connection fails.
        """
        if self._session is None:
            msg = "Session not initialized. Use 'async with' or provide a session."
            raise RuntimeError(msg)

        if self._session.closed:
            msg = "Session is closed. Cannot make request."
            raise RuntimeError(msg)

        url = f"{self._base_url}/v1{endpoint}"
        headers = {"Authorization": f"Bearer {self._api_key}"}
        timeout = ClientTimeout(total=DEFAULT_TIMEOUT)
        rate_limit_retries = 0

        while True:
            try:
                async with self._session.request(
                    method,
                    url,
                    json=json_data,
                    headers=headers,
                    timeout=timeout,
                ) as response:
                    if (
                        response.status == HTTPStatus.TOO_MANY_REQUESTS
                        and self._rate_limiter is not None
                        and rate_limit_retries < MAX_RATE_LIMIT_RETRIES
                    ):
                        delay = self._rate_limiter.get_retry_delay(
                            response.status, response.headers.get("Retry-After")
                        )
                        rate_limit_retries += 1
                        _LOGGER.warning(
                            "Rate limited (429), waiting %.2fs before retry (attempt %d/%d)",
                            delay,
                            rate_limit_retries,
                            MAX_RATE_LIMIT_RETRIES,
                        )
                        await asyncio.sleep(delay)
                        continue

                    response_data: Any = None
                    if response.status in _SUCCESS_STATUSES:
                        if "application/json" in response.content_type:
                            response_data = await response.json()
                        else:
                            response_data = {}

                    return response.status, response_data

            except TimeoutError as exc:
                _LOGGER.debug("Request to %s timed out", url)
                msg = f"Request to {endpoint} timed out"
                raise SleepmeTimeoutError(msg) from exc

            except ClientError as exc:
                _LOGGER.debug("Connection error for %s: %s", url, exc)
                msg = f"Connection error for {endpoint}: {exc}"
                raise SleepmeConnectionError(msg) from exc

    @staticmethod
    def _raise_for_status(status: int, action: str) -> None:
        """Raise the matching exception for an unsuccessful status code."""
        if status in _SUCCESS_STATUSES:
            return
        msg = f"Failed to {action}: HTTP {status}"
        if status in (HTTPStatus.UNAUTHORIZED, HTTPStatus.FORBIDDEN):
            raise AuthenticationError(msg, status_code=status)
        if status == HTTPStatus.TOO_MANY_REQUESTS:
            raise RateLimitError(msg, status_code=status)
        raise SleepmeApiError(msg, status_code=status)

    # -------------------------------------------------------------------------
    # Device Endpoints
    # -------------------------------------------------------------------------

    async def get_devices(self) -> list[Device]:
        """Get all devices registered to the API key.

        Returns:
            List of Device entries.
        """
        status, data = await self.request("GET", "/devices")
        self._raise_for_status(status, "get devices")
        return parse_devices(data if isinstance(data, list) else [])

    async def get_device_status(self, device_id: str) -> DeviceStatus:
        """Get the full status (about, control, status) of a device.

        Args:
            device_id: Device's unique identifier.

        Returns:
            Parsed DeviceStatus.
        """
        status, data = await self.request("GET", f"/devices/{device_id}")
        self._raise_for_status(status, f"get status of {device_id}")
        return parse_device_status(device_id, data or {})

    async def set_temperature_fahrenheit(self, device_id: str, temperature: float) -> Control:
        """Set the target temperature in Fahrenheit.

        Args:
            device_id: Device's unique identifier.
            temperature: Target in Fahrenheit (999 = max heat, -1 = max cool).

        Returns:
            Control state reported by the API.
        """
        return await self._update_control(device_id, {"set_temperature_f": temperature}, "set temperature")

    async def set_thermal_control_status(self, device_id: str, thermal_status: str) -> Control:
        """Switch thermal control between "standby" and "active".

        Raises:
            InvalidParameterError: If the status is not a known value.
        """
        if thermal_status not in THERMAL_STATUSES:
            msg = f"Thermal control status must be one of {THERMAL_STATUSES}, got {thermal_status!r}"
            raise InvalidParameterError(msg, parameter_name="thermal_status", value=thermal_status)
        return await self._update_control(
            device_id, {"thermal_control_status": thermal_status}, "set thermal control status"
        )

    async def _update_control(self, device_id: str, payload: dict[str, Any], action: str) -> Control:
        status, data = await self.request("PATCH", f"/devices/{device_id}", json_data=payload)
        self._raise_for_status(status, f"{action} on {device_id}")
        _LOGGER.debug("Updated device %s control: %s", device_id, payload)
        return parse_control(data or {})
