"""
Root conftest.py - Global fixtures and configuration for all test layers.

Test Layers:
    - component/  : Component tests (mocked repository and event bus)
    - unit/       : Unit tests (pure functions, no I/O)
"""
import os
import sys

import pytest

# Set testing environment BEFORE any project imports
os.environ.setdefault("ENV", "testing")
os.environ.setdefault("NATS_ENABLED", "false")

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from tests.fixtures import FakeClock, make_test_settings


def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
    config.addinivalue_line("markers", "component: marks tests as component tests")
    config.addinivalue_line("markers", "api: marks tests as API tests")


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def clock() -> FakeClock:
    """Controllable clock starting at 2024-01-01T12:00Z"""
    return FakeClock()


@pytest.fixture
def test_settings():
    """Service configuration with tiny retry backoff"""
    return make_test_settings()
