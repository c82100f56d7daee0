"""
Pytest configuration and shared fixtures.
"""

import pytest
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from deal_engine.models import AssetType, FacilityMetrics


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "scenario: marks worked-example tests")


@pytest.fixture
def snf_facility():
    """120-bed skilled nursing facility."""
    return FacilityMetrics(
        facility_id="snf-1",
        name="Oak Grove SNF",
        asset_type=AssetType.SNF,
        beds=120,
        occupancy=0.85,
        revenue=12_000_000,
        expenses=10_600_000,
        noi=1_000_000,
        ebitdar=1_400_000,
        current_rent=800_000,
        state="OH",
        city="Columbus",
    )


@pytest.fixture
def alf_facility():
    """80-bed assisted living facility."""
    return FacilityMetrics(
        facility_id="alf-1",
        name="Maple Court ALF",
        asset_type=AssetType.ALF,
        beds=80,
        occupancy=0.90,
        revenue=6_000_000,
        expenses=4_800_000,
        noi=900_000,
        ebitdar=1_200_000,
        current_rent=500_000,
        state="IN",
        city="Indianapolis",
    )


@pytest.fixture
def weak_facility():
    """SNF whose EBITDAR barely covers market rent."""
    return FacilityMetrics(
        facility_id="snf-2",
        name="Riverside SNF",
        asset_type=AssetType.SNF,
        beds=100,
        occupancy=0.72,
        revenue=8_000_000,
        expenses=7_700_000,
        noi=600_000,
        ebitdar=500_000,
        state="OH",
        city="Dayton",
    )


@pytest.fixture
def portfolio_facilities(snf_facility, alf_facility, weak_facility):
    return [snf_facility, alf_facility, weak_facility]
