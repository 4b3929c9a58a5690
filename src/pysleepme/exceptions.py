"""Custom exceptions for pysleepme library."""

from __future__ import annotations

from typing import Any


class SleepmeError(Exception):
    """Base exception for all Sleepme errors."""


class SleepmeApiError(SleepmeError):
    """Exception raised for transport or API failures.

    Attributes:
        status_code: HTTP status code of the failed response, if any.
    """

    def __init__(self, message: str = "", status_code: int | None = None) -> None:
        """Initialize SleepmeApiError.

        Args:
            message: Error message.
            status_code: Optional HTTP status code of the failed response.
        """
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(SleepmeApiError):
    """Exception raised when the API key is rejected."""


class SleepmeConnectionError(SleepmeApiError):
    """Exception raised for connection failures."""


class SleepmeTimeoutError(SleepmeApiError):
    """Exception raised when API requests timeout."""


class RateLimitError(SleepmeApiError):
    """Exception raised when API rate limit is exceeded.

    Attributes:
        retry_after: Optional number of seconds to wait before retrying.
    """

    def __init__(
        self,
        message: str = "",
        status_code: int | None = 429,
        retry_after: float | None = None,
    ) -> None:
        """Initialize RateLimitError.

        Args:
            message: Error message.
            status_code: HTTP status code (429 unless told otherwise).
            retry_after: Optional number of seconds to wait before retrying.
        """
        super().__init__(message, status_code)
        self.retry_after = retry_after


class DeviceError(SleepmeError):
    """Exception raised for device-related errors.

    Attributes:
        device_id: Optional device ID associated with the error.
    """

    def __init__(self, message: str = "", device_id: str | None = None) -> None:
        """Initialize DeviceError.

        Args:
            message: Error message.
            device_id: Optional device ID associated with the error.
        """
        super().__init__(message)
        self.device_id = device_id


class InvalidParameterError(SleepmeError):
    """Exception raised for invalid parameter or configuration values.

    Attributes:
        parameter_name: Optional name of the invalid parameter.
        value: Optional value that was invalid.
    """

    def __init__(
        self,
        message: str = "",
        parameter_name: str | None = None,
        value: Any = None,
    ) -> None:
        """Initialize InvalidParameterError.

        Args:
            message: Error message.
            parameter_name: Optional name of the invalid parameter.
            value: Optional value that was invalid.
        """
        super().__init__(message)
        self.parameter_name = parameter_name
        self.value = value
