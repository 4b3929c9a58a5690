"""Configuration for pysleepme clients.

``SleepmeConfig`` is a Pydantic model: numeric settings given as strings are
coerced, unknown keys are ignored and any validation failure surfaces as
``InvalidParameterError``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field, ValidationError, ValidationInfo, field_validator, model_validator

from pysleepme.const import (
    DEFAULT_BASE_URL,
    DEFAULT_CONSISTENCY_CHECK_INTERVAL,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MIN_REQUEST_INTERVAL,
    DEFAULT_RETRY_BACKOFF,
)
from pysleepme.exceptions import InvalidParameterError


_LOGGER = logging.getLogger(__name__)


def _invalid_parameter(exc: ValidationError) -> InvalidParameterError:
    """Convert the first validation error into an InvalidParameterError."""
    error = exc.errors()[0]
    location = error.get("loc") or ("config",)
    name = str(location[0])
    return InvalidParameterError(f"Invalid {name}: {error['msg']}", parameter_name=name, value=error.get("input"))


class SleepmeConfig(BaseModel):
    """Settings shared by every device of a client.

    Every API key is a separate Sleepme account; devices are discovered across
    all of them. Poll intervals are left as configured; ``AdaptivePoller``
    clamps them to their floors.

    Example:
        >>> config = SleepmeConfig(api_keys=["token"], min_request_interval=2)
        >>> config.max_retries
        3
    """

    model_config = {"validate_assignment": True}

    api_keys: list[str] = Field(..., min_length=1, description="Sleepme developer API tokens")
    base_url: str = Field(default=DEFAULT_BASE_URL, min_length=1, description="API base URL")
    min_request_interval: float = Field(
        default=DEFAULT_MIN_REQUEST_INTERVAL, description="Minimum seconds between dispatched requests"
    )
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, description="Queue-level retries after a failed request")
    retry_backoff: float = Field(default=DEFAULT_RETRY_BACKOFF, description="Base seconds of linear retry backoff")
    consistency_check_interval: float = Field(
        default=DEFAULT_CONSISTENCY_CHECK_INTERVAL, description="Idle seconds before pending states are verified"
    )
    active_polling_interval_seconds: float | None = Field(
        default=None, description="Poll interval while active (None = default)"
    )
    standby_polling_interval_minutes: float | None = Field(
        default=None, description="Poll interval while in standby (None = default)"
    )

    def __init__(self, **data: Any) -> None:
        """Validate settings, raising InvalidParameterError on failure."""
        try:
            super().__init__(**data)
        except ValidationError as exc:
            raise _invalid_parameter(exc) from exc

    @model_validator(mode="before")
    @classmethod
    def _normalize_keys(cls, data: Any) -> Any:
        # Drop unset values and accept a single api_key for one-account setups
        if not isinstance(data, Mapping):
            return data
        data = {key: value for key, value in data.items() if value is not None}
        if "api_key" in data and "api_keys" not in data:
            data["api_keys"] = [data.pop("api_key")]
        return data

    @field_validator("api_keys")
    @classmethod
    def _check_api_keys(cls, keys: list[str]) -> list[str]:
        keys = [key.strip() for key in keys]
        if any(not key for key in keys):
            msg = "API keys must not be blank"
            raise ValueError(msg)
        return keys

    @field_validator("min_request_interval", "max_retries", "retry_backoff", "consistency_check_interval")
    @classmethod
    def _clamp_negative(cls, value: float, info: ValidationInfo) -> float:
        if value < 0:
            _LOGGER.warning("%s must not be negative, got %s. Using 0.", info.field_name, value)
            return type(value)(0)
        return value

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SleepmeConfig:
        """Build a config from a plain mapping (e.g. parsed plugin JSON).

        Accepts ``api_keys`` (list) or a single ``api_key``. Unknown keys are
        ignored and numeric settings may be given as strings.

        Raises:
            InvalidParameterError: If no usable API key is given or a setting
                cannot be converted.
        """
        try:
            return cls.model_validate(dict(data))
        except ValidationError as exc:
            raise _invalid_parameter(exc) from exc
