"""
Pytest fixtures and configuration for Maps Scraper test suite.
"""

import pytest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.captcha_solver import CaptchaResult
from core.models import BusinessRecord
from core.pacing import PacingPolicy

from fake_maps import FakeMapsDriver, make_place


# === Test Data Fixtures ===

@pytest.fixture
def places():
    """Five Seattle coffee shops."""
    return [make_place(i) for i in range(1, 6)]


@pytest.fixture
def fake_driver(places):
    return FakeMapsDriver(places)


@pytest.fixture
def instant_pacing():
    """Pacing policy that never actually waits."""
    return PacingPolicy(min_delay_ms=0, max_delay_ms=0, sleep=AsyncMock())


@pytest.fixture
def mock_gateway():
    """CAPTCHA gateway that solves everything."""
    gateway = MagicMock()
    gateway.initialize = AsyncMock(return_value=3.5)
    gateway.solve = AsyncMock(return_value=CaptchaResult(success=True, solution="solved-token", job_id="42"))
    gateway.close = AsyncMock()
    gateway.get_stats = MagicMock(return_value={"solved": 0, "failed": 0, "timed_out": 0})
    return gateway


@pytest.fixture
def sample_records():
    """Two extracted records, one with every field set."""
    return [
        BusinessRecord(
            name="Victrola Coffee",
            address="411 15th Ave E, Seattle, WA 98112",
            phone="(206) 325-6520",
            website="https://www.victrolacoffee.com/",
            latitude=47.6227,
            longitude=-122.3127,
            rating=4.5,
            review_count=1234,
            categories=("Coffee shop", "Cafe"),
            hours={"Monday": "6AM-7PM", "Tuesday": "6AM-7PM"},
            additional_details={"Service options": "Dine-in"},
        ),
        BusinessRecord(name="Corner Espresso"),
    ]


# === Markers ===

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "integration: End-to-end session runs against the fake maps site")
    config.addinivalue_line("markers", "network: Tests of HTTP clients with mocked sessions")
