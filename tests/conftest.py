"""
Pytest configuration and fixtures for Mitthi tests.

Created by orpheus497

Provides common fixtures and test utilities for unit and integration tests.
Key derivation is deliberately slow, so derived keys are shared per session.
"""

import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest

from mitthi.keys import RoomKey, derive_key
from mitthi.randomness import RandomSource

TEST_ROOM_CODE = "correct-horse-battery"
TEST_SALT = bytes(range(16))
OTHER_SALT = bytes(range(16, 32))


class CountingRandomSource(RandomSource):
    """Deterministic source that never returns the same bytes twice."""

    def __init__(self, seed: int = 0):
        self.counter = seed
        self.calls = 0

    def token_bytes(self, n: int) -> bytes:
        self.calls += 1
        self.counter += 1
        return self.counter.to_bytes(n, "big")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for test data.

    Yields:
        Path: Temporary directory path
    """
    tmp = Path(tempfile.mkdtemp(prefix="mitthi_test_"))
    try:
        yield tmp
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def counting_source() -> CountingRandomSource:
    return CountingRandomSource()


@pytest.fixture(scope="session")
def room_key() -> RoomKey:
    """Key for TEST_ROOM_CODE under TEST_SALT."""
    return derive_key(TEST_ROOM_CODE, TEST_SALT)


@pytest.fixture(scope="session")
def other_key() -> RoomKey:
    """Key for a different room code and salt."""
    return derive_key("wrong-room-code", OTHER_SALT)


def pytest_configure(config):
    """
    Configure pytest markers.

    Args:
        config: Pytest configuration object
    """
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


def pytest_collection_modifyitems(config, items):
    """
    Modify test collection to add markers based on test location.

    Args:
        config: Pytest configuration
        items: List of collected test items
    """
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
