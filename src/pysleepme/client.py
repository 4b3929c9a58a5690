"""Device manager and coordinator for Sleepme devices.

This module provides high-level device management, coordinating between
the low-level API layer and stateful device objects.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from aiohttp import ClientSession  # noqa: TC002 - Used at runtime for type hints

from pysleepme.api import SleepmeAPI
from pysleepme.config import SleepmeConfig
from pysleepme.const import DEFAULT_BASE_URL
from pysleepme.devices import SleepmeDevice
from pysleepme.exceptions import SleepmeApiError
from pysleepme.polling import AdaptivePoller
from pysleepme.resilience import RetryCoordinator
from pysleepme.scheduler import RequestScheduler


if TYPE_CHECKING:
    from types import TracebackType

    from pysleepme.models import Device
    from pysleepme.resilience import ExponentialBackoff, RateLimiter

_LOGGER = logging.getLogger(__name__)


class SleepmeClient:
    """Device manager and coordinator for Sleepme devices.

    This class manages the lifecycle of SleepmeDevice objects. Every device gets
    its own RequestScheduler, RetryCoordinator and AdaptivePoller built from the
    client's SleepmeConfig.

    Example:
        Basic usage with automatic session management:

        ```python
        from pysleepme import SleepmeClient

        async with SleepmeClient(api_key="token") as client:
            devices = await client.get_devices()

            for device in devices:
                await device.start()
                await device.set_target_temperature(20.0)
        ```

        Configuration and session injection:

        ```python
        from aiohttp import ClientSession
        from pysleepme import SleepmeClient, SleepmeConfig

        config = SleepmeConfig.from_dict({"api_key": "token", "active_polling_interval_seconds": 15})

        async with ClientSession() as session, SleepmeClient(config=config, session=session) as client:
            devices = await client.get_devices()
        ```

        Several accounts, discovered together:

        ```python
        config = SleepmeConfig(api_keys=["token-a", "token-b"])

        async with SleepmeClient(config=config) as client:
            devices = await client.get_devices()  # devices of both accounts
        ```

    Attributes:
        apis: One low-level SleepmeAPI per configured API key.
        config: Settings applied to every device.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = DEFAULT_BASE_URL,
        *,
        config: SleepmeConfig | None = None,
        session: ClientSession | None = None,
        backoff: ExponentialBackoff | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        """Initialize the Sleepme client.

        Args:
            api_key: Sleepme developer API token. Ignored when config is given;
                use ``SleepmeConfig.api_keys`` for several accounts.
            base_url: Base URL for the API. Ignored when config is given.
            config: Optional full configuration.
            session: Optional aiohttp ClientSession. If not provided, one will be
                created when entering the context manager.
            backoff: Optional ExponentialBackoff used for status poll retries.
            rate_limiter: Optional RateLimiter for handling 429 responses.

        Raises:
            InvalidParameterError: If no usable API key is provided.
        """
        if config is None:
            config = SleepmeConfig(api_keys=[api_key] if api_key else [], base_url=base_url)

        self._config = config
        self._backoff = backoff
        self._apis = [
            SleepmeAPI(api_key=key, session=session, base_url=config.base_url, rate_limiter=rate_limiter)
            for key in config.api_keys
        ]

        # Device cache for coordinated management
        self._devices: dict[str, SleepmeDevice] = {}

    @property
    def apis(self) -> list[SleepmeAPI]:
        """Get the underlying API clients, one per API key.

        This provides direct access to low-level API methods for advanced use cases.
        """
        return list(self._apis)

    @property
    def config(self) -> SleepmeConfig:
        """Get the client configuration."""
        return self._config

    @property
    def devices(self) -> list[SleepmeDevice]:
        """Get the cached device objects."""
        return list(self._devices.values())

    async def __aenter__(self) -> SleepmeClient:
        """Enter the context manager, creating sessions if needed."""
        for api in self._apis:
            await api.__aenter__()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit the context manager.

        Shuts down all devices (stops polling and request schedulers) and closes the API clients.
        """
        await self.shutdown()
        for api in self._apis:
            await api.__aexit__(exc_type, exc_val, exc_tb)

    async def get_devices(self) -> list[SleepmeDevice]:
        """Get all devices registered to the configured API keys.

        Each key is listed in turn. A key whose listing fails is logged and
        skipped while another key still answers. A device seen under several
        keys is controlled through the first one. New devices fetch their
        status concurrently; known devices return their cached objects.

        Returns:
            List of SleepmeDevice instances.

        Raises:
            SleepmeApiError: If device discovery fails for every API key.
        """
        listings: list[tuple[SleepmeAPI, list[Device]]] = []
        errors: list[SleepmeApiError] = []
        for index, api in enumerate(self._apis, start=1):
            try:
                listings.append((api, await api.get_devices()))
            except SleepmeApiError as exc:
                _LOGGER.error("Failed to discover devices for API key %d: %s", index, exc)
                errors.append(exc)

        if errors and not listings:
            raise errors[0]

        devices: list[SleepmeDevice] = []
        new_devices: list[SleepmeDevice] = []
        for api, listing in listings:
            _LOGGER.debug("Found %d device(s)", len(listing))
            for entry in listing:
                device = self._devices.get(entry.device_id)
                if device is None:
                    device = self._create_device(api, entry)
                    self._devices[entry.device_id] = device
                    new_devices.append(device)
                if device not in devices:
                    devices.append(device)

        if new_devices:
            await asyncio.gather(*[device.refresh() for device in new_devices])

        return devices

    async def get_device(self, device_id: str, *, force_refresh: bool = False) -> SleepmeDevice | None:
        """Get a specific device by ID.

        Cached devices are returned without an API call unless force_refresh is
        set. Unknown IDs trigger a fresh discovery.

        Returns:
            SleepmeDevice instance if found, None otherwise.
        """
        device = self._devices.get(device_id)
        if device is None:
            await self.get_devices()
            return self._devices.get(device_id)

        if force_refresh:
            await device.refresh()
        return device

    async def refresh_all(self) -> None:
        """Refresh status for all cached devices."""
        if not self._devices:
            return

        await asyncio.gather(*[device.refresh() for device in self._devices.values()])

    async def start_all(self) -> None:
        """Start adaptive polling for all cached devices."""
        for device in self._devices.values():
            await device.start()

    async def shutdown(self) -> None:
        """Shut down every cached device."""
        for device in self._devices.values():
            await device.shutdown()

    def _create_device(self, api: SleepmeAPI, entry: Device) -> SleepmeDevice:
        config = self._config
        scheduler = RequestScheduler(
            api,
            min_request_interval=config.min_request_interval,
            max_retries=config.max_retries,
            retry_backoff=config.retry_backoff,
            consistency_check_interval=config.consistency_check_interval,
        )
        retry = RetryCoordinator(entry.name, backoff=self._backoff)
        poller = AdaptivePoller(
            entry.name,
            retry,
            active_interval=config.active_polling_interval_seconds,
            standby_interval_minutes=config.standby_polling_interval_minutes,
        )
        _LOGGER.debug("Creating device %s (%s)", entry.name, entry.device_id)
        return SleepmeDevice(api, entry, scheduler=scheduler, retry=retry, poller=poller)
