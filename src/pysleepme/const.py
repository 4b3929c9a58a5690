"""Constants for pysleepme library."""

from __future__ import annotations


# API Configuration
DEFAULT_BASE_URL = "https://api.developer.sleep.me"
DEFAULT_TIMEOUT = 30  # seconds

# Thermal control states
THERMAL_STATUS_ACTIVE = "active"
THERMAL_STATUS_STANDBY = "standby"
THERMAL_STATUSES = (THERMAL_STATUS_STANDBY, THERMAL_STATUS_ACTIVE)

# Temperature mapping (the API treats 999F as max heat and -1F as max cool)
HIGH_TEMP_THRESHOLD_F = 115
HIGH_TEMP_TARGET_F = 999
LOW_TEMP_THRESHOLD_F = 55
LOW_TEMP_TARGET_F = -1
HIGH_TEMP_DISPLAY_C = 46.7
LOW_TEMP_DISPLAY_C = 12.2

# Accepted target range in Celsius
MIN_TARGET_TEMPERATURE_C = 12.0
MAX_TARGET_TEMPERATURE_C = 46.7

# Request Scheduler Configuration
DEFAULT_MIN_REQUEST_INTERVAL = 1.0  # seconds between dispatch starts
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF = 5.0  # seconds, multiplied by (retry_count + 1)
DEFAULT_CONSISTENCY_CHECK_INTERVAL = 30.0  # seconds of idle queue

# Retry Coordinator Configuration
INITIAL_RETRY_DELAY = 15.0  # seconds: 15, 30, 60
STATE_MISMATCH_RETRY_DELAY = 5.0  # seconds
MAX_STATE_MISMATCH_RETRIES = 3

# Polling Configuration
DEFAULT_ACTIVE_POLLING_INTERVAL_SECONDS = 30
DEFAULT_STANDBY_POLLING_INTERVAL_MINUTES = 15
MIN_ACTIVE_POLLING_INTERVAL_SECONDS = 5
MIN_STANDBY_POLLING_INTERVAL_MINUTES = 1
