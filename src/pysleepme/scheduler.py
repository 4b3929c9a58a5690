"""Coalescing, rate-limited request scheduler with state reconciliation.

This module serializes every outbound request for a device:
- Coalesces repeated requests per (device, operation) key, newest parameters win
- Enforces a minimum interval between dispatches across the whole queue
- Retries transport failures with linear backoff
- Tracks a speculative pending state and verifies it against confirmed status
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from pysleepme.const import (
    DEFAULT_CONSISTENCY_CHECK_INTERVAL,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MIN_REQUEST_INTERVAL,
    DEFAULT_RETRY_BACKOFF,
)
from pysleepme.exceptions import InvalidParameterError, SleepmeError
from pysleepme.models import (
    Control,
    DeviceState,
    DeviceStatus,
    LastError,
    Operation,
    QueuedRequest,
    RequestResult,
)


if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from pysleepme.api import SleepmeAPI

    RequestCallback = Callable[[RequestResult], None]

_LOGGER = logging.getLogger(__name__)

RequestKey = tuple[str, Operation]

# Control field owned by each control operation
_OPERATION_FIELDS: dict[Operation, str] = {
    Operation.SET_TEMPERATURE: "set_temperature_f",
    Operation.SET_CONTROL_STATUS: "thermal_control_status",
}


@dataclass
class RequestStore:
    """Shared maps owned by one scheduler.

    Attributes:
        queue: At most one not-yet-dispatched request per (device, operation).
        device_states: Reconciliation record per device.
        callbacks: Completion callbacks waiting on the next settle of a key.
    """

    queue: dict[RequestKey, QueuedRequest] = field(default_factory=dict)
    device_states: dict[str, DeviceState] = field(default_factory=dict)
    callbacks: dict[RequestKey, list[RequestCallback]] = field(default_factory=dict)

    def device_state(self, device_id: str) -> DeviceState:
        """Get the record for a device, creating it on first use."""
        return self.device_states.setdefault(device_id, DeviceState())


class RequestScheduler:
    """Single-stream request scheduler for Sleepme devices.

    Example:
        ```python
        scheduler = RequestScheduler(api, min_request_interval=1.0)

        # Coalesces: only "standby" is sent
        scheduler.enqueue(device_id, Operation.SET_CONTROL_STATUS, ["active"])
        scheduler.enqueue(device_id, Operation.SET_CONTROL_STATUS, ["standby"], on_done)

        # Optimistic reads see the pending patch immediately
        scheduler.get_device_state(device_id).pending_state.thermal_control_status  # "standby"
        ```
    """

    def __init__(
        self,
        api: SleepmeAPI,
        *,
        min_request_interval: float = DEFAULT_MIN_REQUEST_INTERVAL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF,
        consistency_check_interval: float = DEFAULT_CONSISTENCY_CHECK_INTERVAL,
        store: RequestStore | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            api: Device API used to dispatch requests.
            min_request_interval: Minimum seconds between dispatch starts.
            max_retries: Queue-level retries after the first failed dispatch.
            retry_backoff: Base seconds of linear retry backoff.
            consistency_check_interval: Idle seconds before verifying pending states.
            store: Optional pre-built store (mostly for tests).
        """
        self._api = api
        self._min_request_interval = min_request_interval
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff
        self._consistency_check_interval = consistency_check_interval
        self._store = store if store is not None else RequestStore()

        self._processing = False
        self._last_dispatch: datetime | None = None
        self._dispatch_timer: asyncio.TimerHandle | None = None
        self._consistency_timer: asyncio.TimerHandle | None = None
        self._dispatch_task: asyncio.Task[None] | None = None
        self._in_flight: tuple[QueuedRequest, list[RequestCallback]] | None = None

    @property
    def store(self) -> RequestStore:
        """Get the underlying store."""
        return self._store

    @property
    def pending_count(self) -> int:
        """Get number of queued requests."""
        return len(self._store.queue)

    @property
    def pending_keys(self) -> list[RequestKey]:
        """Get keys of queued requests."""
        return list(self._store.queue.keys())

    @property
    def is_processing(self) -> bool:
        """Check if a dispatch is in flight."""
        return self._processing

    # -------------------------------------------------------------------------
    # Public interface
    # -------------------------------------------------------------------------

    def enqueue(
        self,
        device_id: str,
        operation: Operation,
        params: Iterable[Any] = (),
        callback: RequestCallback | None = None,
    ) -> None:
        """Queue a request, replacing any queued request with the same key.

        Control operations patch the device's pending state before this method
        returns, so optimistic reads see the new value right away. Must be
        called with a running event loop.

        Args:
            device_id: Target device.
            operation: Operation to dispatch.
            params: Operation parameters (the new value for control operations).
            callback: Optional callable invoked once with the RequestResult.
        """
        request = QueuedRequest(device_id=device_id, operation=operation, params=tuple(params))
        key = request.key

        if operation.is_control and not request.params:
            _LOGGER.error("Dropping %s request for %s without a value", operation.value, device_id)
            error = InvalidParameterError(f"{operation.value} requires a value", parameter_name="params", value=())
            self._notify([callback] if callback is not None else [], RequestResult(success=False, error=error))
            return

        if callback is not None:
            self._store.callbacks.setdefault(key, []).append(callback)

        if operation.is_control:
            self._update_pending_state(device_id, operation, request.params)

        previous = self._store.queue.get(key)
        if previous is not None:
            _LOGGER.debug("Coalescing %s request for %s: %s -> %s", operation.value, device_id, previous.params, request.params)

        self._store.queue[key] = request
        _LOGGER.debug("Enqueued request: %s - %s %s", device_id, operation.value, request.params)

        self._schedule_processing()

    async def enqueue_and_wait(
        self,
        device_id: str,
        operation: Operation,
        params: Iterable[Any] = (),
        timeout: float | None = None,
    ) -> RequestResult:
        """Queue a request and wait for its coalesced outcome.

        Raises:
            TimeoutError: If the request does not settle within ``timeout``.
        """
        future: asyncio.Future[RequestResult] = asyncio.get_running_loop().create_future()

        def resolve(result: RequestResult) -> None:
            if not future.done():
                future.set_result(result)

        self.enqueue(device_id, operation, params, resolve)

        if timeout is None:
            return await future
        return await asyncio.wait_for(future, timeout=timeout)

    def get_device_state(self, device_id: str) -> DeviceState:
        """Get a snapshot of a device's reconciliation record."""
        state = self._store.device_states.get(device_id)
        return state.copy() if state is not None else DeviceState()

    def discard_pending(self, device_id: str, operation: Operation) -> None:
        """Stop tracking the pending value of a control operation the caller gave up on.

        The field falls back to its last confirmed value, so later status
        fetches and consistency checks do not re-send it. Nothing changes while
        a newer request for the same operation is still queued.
        """
        field_name = _OPERATION_FIELDS.get(operation)
        state = self._store.device_states.get(device_id)
        if field_name is None or state is None or state.pending_state is None:
            return
        if (device_id, operation) in self._store.queue:
            return

        confirmed = state.last_successful_state or Control()
        setattr(state.pending_state, field_name, getattr(confirmed, field_name))
        if not self._drifted_operations(confirmed, state.pending_state):
            state.pending_state = None
        _LOGGER.debug("Discarded pending %s for %s", operation.value, device_id)

    def record_confirmed_state(self, device_id: str, control: Control) -> None:
        """Merge a control state confirmed outside the queue into the device record."""
        state = self._store.device_state(device_id)
        state.last_successful_state = (state.last_successful_state or Control()).merged(control)

    def refresh_all_devices(self) -> None:
        """Queue a status fetch for every known device."""
        for device_id in list(self._store.device_states):
            self.enqueue(device_id, Operation.GET_STATUS)

    async def shutdown(self) -> None:
        """Stop dispatching and fail every waiting callback."""
        task = self._dispatch_task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._dispatch_task = None

        self._cancel_timers()

        waiting: list[RequestCallback] = []
        if self._in_flight is not None:
            waiting.extend(self._in_flight[1])
            self._in_flight = None
        for callbacks in self._store.callbacks.values():
            waiting.extend(callbacks)

        count = len(self._store.queue)
        self._store.queue.clear()
        self._store.callbacks.clear()
        self._processing = False

        self._notify(waiting, RequestResult(success=False, error=SleepmeError("Request scheduler shut down")))
        _LOGGER.debug("Request scheduler shutdown complete, dropped %d requests", count)

    # -------------------------------------------------------------------------
    # Dispatch loop
    # -------------------------------------------------------------------------

    def _schedule_processing(self) -> None:
        """Arm the dispatch timer for the next eligible request."""
        if self._consistency_timer is not None:
            self._consistency_timer.cancel()
            self._consistency_timer = None

        if self._processing or not self._store.queue:
            return

        if self._dispatch_task is not None and not self._dispatch_task.done():
            return

        if self._dispatch_timer is not None:
            self._dispatch_timer.cancel()

        delay = self._next_dispatch_delay()
        _LOGGER.debug("Scheduling queue processing in %.3fs", delay)
        self._dispatch_timer = asyncio.get_running_loop().call_later(delay, self._start_dispatch)

    def _next_dispatch_delay(self) -> float:
        now = datetime.now(UTC)
        delay = 0.0
        if self._last_dispatch is not None:
            elapsed = (now - self._last_dispatch).total_seconds()
            delay = max(0.0, self._min_request_interval - elapsed)

        earliest = min(request.timestamp for request in self._store.queue.values())
        return max(delay, (earliest - now).total_seconds())

    def _start_dispatch(self) -> None:
        self._dispatch_timer = None
        self._dispatch_task = asyncio.get_running_loop().create_task(self._process_queue())

    def _next_ready_request(self) -> QueuedRequest | None:
        """Oldest request whose ready time has passed (ties broken by key)."""
        now = datetime.now(UTC)
        ready = [request for request in self._store.queue.values() if request.timestamp <= now]
        if not ready:
            return None
        return min(ready, key=lambda r: (r.timestamp, r.device_id, r.operation.value))

    def _claim_next_request(self) -> QueuedRequest | None:
        """Pop the next request if the rate floor allows a dispatch now."""
        if not self._store.queue:
            return None

        if self._last_dispatch is not None:
            elapsed = (datetime.now(UTC) - self._last_dispatch).total_seconds()
            if elapsed < self._min_request_interval:
                return None

        request = self._next_ready_request()
        if request is not None:
            del self._store.queue[request.key]
        return request

    async def _process_queue(self) -> None:
        """Dispatch one request, then arm the next dispatch or a consistency check."""
        try:
            request = self._claim_next_request()
            if request is None:
                return

            self._processing = True
            self._last_dispatch = datetime.now(UTC)
            callbacks = self._store.callbacks.pop(request.key, [])
            self._in_flight = (request, callbacks)

            _LOGGER.debug(
                "Processing request: %s - %s %s (retry %d)",
                request.device_id,
                request.operation.value,
                request.params,
                request.retry_count,
            )
            try:
                data = await self._execute(request)
            except Exception as exc:  # noqa: BLE001 - every failure is recorded and retried
                self._handle_error(request, exc, callbacks)
            else:
                self._handle_success(request, data, callbacks)
        finally:
            self._processing = False
            self._dispatch_task = None
            if self._store.queue:
                self._schedule_processing()
            else:
                self._schedule_consistency_check()

    async def _execute(self, request: QueuedRequest) -> Control | DeviceStatus:
        device_id = request.device_id
        if request.operation is Operation.GET_STATUS:
            return await self._api.get_device_status(device_id)
        if request.operation is Operation.SET_TEMPERATURE:
            return await self._api.set_temperature_fahrenheit(device_id, request.params[0])
        if request.operation is Operation.SET_CONTROL_STATUS:
            return await self._api.set_thermal_control_status(device_id, request.params[0])
        msg = f"Unsupported operation: {request.operation}"
        raise ValueError(msg)

    # -------------------------------------------------------------------------
    # Settling
    # -------------------------------------------------------------------------

    def _handle_success(
        self,
        request: QueuedRequest,
        data: Control | DeviceStatus,
        callbacks: list[RequestCallback],
    ) -> None:
        _LOGGER.debug("Request successful: %s - %s", request.device_id, request.operation.value)
        state = self._store.device_state(request.device_id)

        if request.operation.is_control and isinstance(data, Control):
            state.last_successful_state = data.copy()
            state.pending_state = None
            state.last_error = None
        elif isinstance(data, DeviceStatus):
            self._reconcile_status(request.device_id, state, data.control)

        self._in_flight = None
        self._notify(callbacks, RequestResult(success=True, data=data))

    def _reconcile_status(self, device_id: str, state: DeviceState, confirmed: Control) -> None:
        """Compare a fetched control state against the pending patch."""
        if state.pending_state is None:
            state.last_successful_state = confirmed.copy()
            return

        drifted = self._drifted_operations(confirmed, state.pending_state)
        if not drifted:
            state.last_successful_state = confirmed.copy()
            state.pending_state = None
            return

        _LOGGER.warning("Device state mismatch detected for %s, re-applying settings", device_id)
        for operation, value in drifted:
            if (device_id, operation) in self._store.queue:
                continue
            self.enqueue(device_id, operation, [value])

    @staticmethod
    def _drifted_operations(confirmed: Control, pending: Control) -> list[tuple[Operation, Any]]:
        """Operations whose explicitly set pending field disagrees with the confirmed state."""
        drifted: list[tuple[Operation, Any]] = []
        for operation, field_name in _OPERATION_FIELDS.items():
            expected = getattr(pending, field_name)
            if expected is not None and getattr(confirmed, field_name) != expected:
                drifted.append((operation, expected))
        return drifted

    def _handle_error(self, request: QueuedRequest, error: Exception, callbacks: list[RequestCallback]) -> None:
        status_code = getattr(error, "status_code", None)
        message = str(error) or type(error).__name__
        key = request.key

        _LOGGER.error(
            "API error for %s - %s: %s %s",
            request.device_id,
            request.operation.value,
            status_code or 0,
            message,
        )

        state = self._store.device_state(request.device_id)
        state.last_error = LastError(message=message, code=status_code or 0, timestamp=datetime.now(UTC))
        self._in_flight = None

        if request.retry_count < self._max_retries:
            backoff = self._retry_backoff * (request.retry_count + 1)
            _LOGGER.info(
                "Retrying request after %.1fs (attempt %d/%d)",
                backoff,
                request.retry_count + 1,
                self._max_retries,
            )
            if key in self._store.queue:
                _LOGGER.debug("Newer %s request for %s supersedes retry", request.operation.value, request.device_id)
            else:
                self._store.queue[key] = replace(
                    request,
                    retry_count=request.retry_count + 1,
                    timestamp=datetime.now(UTC) + timedelta(seconds=backoff),
                )
            if callbacks:
                self._store.callbacks[key] = callbacks + self._store.callbacks.get(key, [])
            return

        _LOGGER.error(
            "Max retries (%d) exceeded for %s - %s",
            self._max_retries,
            request.device_id,
            request.operation.value,
        )
        self._notify(callbacks, RequestResult(success=False, error=error, status_code=status_code))

    @staticmethod
    def _notify(callbacks: list[RequestCallback], result: RequestResult) -> None:
        """Invoke callbacks in registration order, each with its own copy of the data."""
        for callback in callbacks:
            data = result.data.copy() if result.data is not None else None
            try:
                callback(replace(result, data=data))
            except Exception:
                _LOGGER.exception("Error in request callback")

    # -------------------------------------------------------------------------
    # Pending state and consistency checks
    # -------------------------------------------------------------------------

    def _update_pending_state(self, device_id: str, operation: Operation, params: tuple[Any, ...]) -> None:
        field_name = _OPERATION_FIELDS.get(operation)
        if field_name is None or not params:
            return

        state = self._store.device_state(device_id)
        base = state.pending_state or state.last_successful_state or Control()
        state.pending_state = base.merged(Control(**{field_name: params[0]}))

    def _schedule_consistency_check(self) -> None:
        if self._consistency_timer is not None:
            self._consistency_timer.cancel()
            self._consistency_timer = None

        if not any(state.pending_state is not None for state in self._store.device_states.values()):
            return

        _LOGGER.debug("Scheduling consistency check in %.1fs", self._consistency_check_interval)
        self._consistency_timer = asyncio.get_running_loop().call_later(
            self._consistency_check_interval, self._perform_consistency_check
        )

    def _perform_consistency_check(self) -> None:
        self._consistency_timer = None
        _LOGGER.debug("Performing consistency check")

        for device_id, state in list(self._store.device_states.items()):
            if state.pending_state is not None:
                self.enqueue(device_id, Operation.GET_STATUS)

    def _cancel_timers(self) -> None:
        for timer in (self._dispatch_timer, self._consistency_timer):
            if timer is not None:
                timer.cancel()
        self._dispatch_timer = None
        self._consistency_timer = None
