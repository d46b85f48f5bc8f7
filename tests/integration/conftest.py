"""Fixtures for tests that talk to a real Redis server."""

import os
import socket
from urllib.parse import urlparse

import pytest


def is_service_available(url: str) -> bool:
    """True when a TCP connection to the url's host and port succeeds."""
    parsed = urlparse(url)
    try:
        with socket.create_connection((parsed.hostname or "localhost", parsed.port or 6379), timeout=2):
            return True
    except OSError:
        return False


@pytest.fixture
def redis_url():
    # DB 15 keeps lock keys away from anything else on a dev server
    return os.environ.get("MEMORY_KEEPER_TEST_REDIS_URL", "redis://localhost:6379/15")


@pytest.fixture
def skip_if_no_redis(redis_url):
    if not is_service_available(redis_url):
        pytest.skip(f"Redis not available at {redis_url}")
