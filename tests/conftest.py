"""
Pytest configuration and shared fixtures for the test suite.
"""
import sys
from pathlib import Path

import pytest

# Add project root (for tests.fixtures) and src (for the packages) to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
sys.path.insert(0, str(project_root / "src"))

from connectors.ekuatia.agent import EkuatiaInvoiceAgent  # noqa: E402
from connectors.ekuatia.cache import ConfigurationCache, InMemoryStore  # noqa: E402
from tests.fixtures.ekuatia_fakes import (  # noqa: E402
    FakeRemoteService,
    RecordingSleep,
    ScriptedConfirmationChannel,
    create_credentials,
    create_invoice_request,
)


@pytest.fixture
def remote():
    """Fake Ekuatia service with the default test taxpayer."""
    return FakeRemoteService()


@pytest.fixture
def channel():
    """Confirmation channel that approves everything."""
    return ScriptedConfirmationChannel()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def cache(store):
    return ConfigurationCache(store)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def agent(remote, channel, cache, recording_sleep):
    """Agent wired with fakes and a sleep that does not wait."""
    return EkuatiaInvoiceAgent(remote, channel, cache=cache, sleep=recording_sleep)


@pytest.fixture
def credentials():
    return create_credentials()


@pytest.fixture
def invoice_request():
    return create_invoice_request()


@pytest.fixture
def mock_env_vars(monkeypatch):
    """Mock environment variables for testing."""
    test_env = {
        "EKUATIA_CACHE_PATH": "/tmp/ekuatia_test_cache",
        "EKUATIA_CACHE_TTL_DAYS": "30",
        "EKUATIA_RETRY_ATTEMPTS": "5",
        "EKUATIA_LOG_LEVEL": "DEBUG",
        "EKUATIA_LOG_JSON": "false",
    }

    for key, value in test_env.items():
        monkeypatch.setenv(key, value)

    return test_env


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
