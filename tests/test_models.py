"""
Tests for the shared data model.
"""

import pytest
from pydantic import ValidationError

from deal_engine.models import AssetType, FacilityMetrics


class TestFacilityMetrics:
    """Test the facility snapshot record."""

    def test_snapshot_is_immutable(self, snf_facility):
        with pytest.raises(ValidationError):
            snf_facility.noi = 2_000_000

    def test_model_copy_leaves_original(self, snf_facility):
        updated = snf_facility.model_copy(update={"asset_type": AssetType.ALF})
        assert updated.asset_type == AssetType.ALF
        assert snf_facility.asset_type == AssetType.SNF

    def test_hashable(self, snf_facility):
        """Frozen snapshots can key a dict."""
        assert {snf_facility: 1}[snf_facility] == 1

    def test_beds_must_be_positive(self):
        with pytest.raises(ValidationError):
            FacilityMetrics(facility_id="x", name="X", beds=0, noi=1.0, ebitdar=1.0)
