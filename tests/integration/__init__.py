"""Integration tests for pysleepme library.

These tests use a real API key from .env file and make actual API calls.
They are marked with @pytest.mark.integration and skipped by default.

To run integration tests:
    pytest tests/integration -v -m integration

Environment variables read from .env:
    SLEEPME_API_KEY: Developer API token (comma-separate several accounts)
    SLEEPME_API_BASE_URL: API base URL (optional, defaults to production)
    SLEEPME_TEST_DEVICE_ID: Device to control (optional, defaults to the first one)
"""
