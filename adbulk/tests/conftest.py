"""Shared fixtures for the bulk tests."""

import pytest

from adbulk.auth.credentials import StaticTokenProvider
from adbulk.bulk.models import (
    Campaign, Day, DayTimeTargetBid, DistanceUnit, LocationTargetBid, Minute, RadiusTargetBid
)
from adbulk.bulk.operations import BulkServiceManager
from adbulk.bulk.sandbox import SandboxBulkApi

@pytest.fixture
def sandbox(tmp_path):
    """Create a sandbox service that finishes uploads on the third poll."""
    return SandboxBulkApi(storage_directory=tmp_path / "sandbox", polls_to_complete=3)

@pytest.fixture
def credentials():
    return StaticTokenProvider("test-token")

@pytest.fixture
def manager(sandbox, credentials):
    """Create a service manager with a short poll interval."""
    return BulkServiceManager(sandbox, credentials, account_id=1, poll_interval=0.01, timeout=5.0)

@pytest.fixture
def campaign():
    return Campaign(
        name="Women's Shoes",
        description="Red shoes line.",
        monthly_budget=1000.0,
        time_zone="PacificTimeUSCanadaTijuana"
    )

@pytest.fixture
def day_time_bids():
    return [
        DayTimeTargetBid(bid_adjustment=10, day=Day.FRIDAY, from_hour=11, from_minute=Minute.ZERO,
                         to_hour=13, to_minute=Minute.FIFTEEN),
        DayTimeTargetBid(bid_adjustment=20, day=Day.SATURDAY, from_hour=11, from_minute=Minute.ZERO,
                         to_hour=13, to_minute=Minute.FIFTEEN),
    ]

@pytest.fixture
def location_bids():
    return {
        "city_bids": [LocationTargetBid(bid_adjustment=15, location="Toronto, Toronto ON CA")],
        "state_bids": [LocationTargetBid(bid_adjustment=15, location="US-WA")],
    }

@pytest.fixture
def radius_bids():
    return [
        RadiusTargetBid(bid_adjustment=50, latitude_degrees=47.755367, longitude_degrees=-122.091827,
                        radius=11, radius_unit=DistanceUnit.KILOMETERS)
    ]
