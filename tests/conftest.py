"""
Pytest configuration and fixtures for the AniDB UDP engine tests.

This module provides:
- structlog configuration for test output
- Scaled-down engine configuration and test credentials
- Mock AniDB server and loopback transport fixtures
- Wire vector loading

Async scenarios run through ``asyncio.run`` inside ordinary test functions;
fixtures here only build plain objects, so nothing is bound to a loop.

Set ANIDB_LOG_LEVEL=debug to see per-packet engine logs.
"""

from __future__ import annotations

import os
from pathlib import Path

import json5
import pytest

from anidb_udp import Credentials, EngineConfig
from anidb_udp.log import configure_logging
from lib.loopback import ALICE, fast_config
from lib.mock_server import MockServer

VECTORS_DIR = Path(__file__).parent / "vectors"

configure_logging(os.environ.get("ANIDB_LOG_LEVEL", "warning"))


# =============================================================================
# Session-scoped fixtures
# =============================================================================


@pytest.fixture(scope="session")
def wire_vectors() -> dict:
    """Hand-written plaintext wire vectors."""
    with (VECTORS_DIR / "wire_vectors.json5").open() as f:
        return json5.load(f)


@pytest.fixture(scope="session")
def credentials() -> Credentials:
    """Account known to the mock server."""
    return ALICE


# =============================================================================
# Per-test fixtures
# =============================================================================


@pytest.fixture
def config() -> EngineConfig:
    """Engine configuration with millisecond intervals and timeouts."""
    return fast_config()


@pytest.fixture
def server() -> MockServer:
    """Fresh mock AniDB server."""
    return MockServer()


# =============================================================================
# Markers
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: tests that take more than a second")
    config.addinivalue_line("markers", "network: tests that open real UDP sockets")
