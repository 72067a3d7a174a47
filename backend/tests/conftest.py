from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from config.settings import get_settings


@pytest.fixture(autouse=True)
def gateway_env(monkeypatch):
    """Every test runs with a known secret and default flags."""
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    monkeypatch.setenv("ENV", "dev")
    monkeypatch.delenv("SS58_ADDRESS_PREFIX", raising=False)
    monkeypatch.delenv("LOGIN_REQUIRE_REGISTERED_DEVICE", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
