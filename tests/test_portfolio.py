"""
Tests for sale-leaseback portfolio analysis.
"""

import pytest

from deal_engine.exceptions import InvalidParameter
from deal_engine.models import AssetType
from deal_engine.calculations.portfolio import (
    PortfolioAnalysisInput,
    analyze_all_or_nothing,
    analyze_portfolio,
    calculate_exclusion_scenario,
    find_optimal_portfolio_composition,
)


@pytest.fixture
def passing_portfolio(portfolio_facilities):
    """Portfolio passes on aggregate while two facilities fall short."""
    return PortfolioAnalysisInput(facilities=portfolio_facilities, buyer_yield_requirement=0.09)


@pytest.fixture
def failing_portfolio(portfolio_facilities):
    return PortfolioAnalysisInput(facilities=portfolio_facilities, buyer_yield_requirement=0.11)


class TestPortfolioAnalysis:
    """Test portfolio roll-up metrics."""

    def test_totals(self, passing_portfolio):
        result = analyze_portfolio(passing_portfolio)
        assert result.total_purchase_price == pytest.approx(8_000_000 + 10_000_000 + 4_800_000)
        assert result.total_annual_rent == pytest.approx(22_800_000 * 0.09)
        assert result.portfolio_coverage_ratio == pytest.approx(3_100_000 / (22_800_000 * 0.09))
        assert result.portfolio_coverage_pass_fail

    def test_contributions_sum_to_one(self, passing_portfolio):
        result = analyze_portfolio(passing_portfolio)
        contributions = result.facility_contributions
        assert sum(c.percent_of_total_purchase_price for c in contributions) == pytest.approx(1.0)
        assert sum(c.percent_of_total_beds for c in contributions) == pytest.approx(1.0)
        assert sum(c.percent_of_total_rent for c in contributions) == pytest.approx(1.0)

    def test_asset_type_breakdown(self, passing_portfolio):
        result = analyze_portfolio(passing_portfolio)
        by_type = {b.asset_type: b for b in result.asset_type_breakdown}
        assert set(by_type) == {AssetType.SNF, AssetType.ALF}
        assert by_type[AssetType.SNF].facility_count == 2
        assert by_type[AssetType.SNF].total_beds == 220

    def test_geographic_breakdown_sorted_by_price(self, passing_portfolio):
        result = analyze_portfolio(passing_portfolio)
        states = [g.state for g in result.geographic_breakdown]
        assert states == ["OH", "IN"]
        assert result.geographic_breakdown[0].total_purchase_price == pytest.approx(12_800_000)

    def test_missing_state_is_unknown(self, snf_facility):
        facility = snf_facility.model_copy(update={"state": None})
        result = analyze_portfolio(
            PortfolioAnalysisInput(facilities=[facility], buyer_yield_requirement=0.09)
        )
        assert result.geographic_breakdown[0].state == "Unknown"

    def test_concentration_and_diversification(self, passing_portfolio):
        result = analyze_portfolio(passing_portfolio)
        assert result.largest_facility_concentration == pytest.approx(10_000_000 / 22_800_000)
        assert result.diversification_score == 59

    def test_blended_cap_rate(self, passing_portfolio):
        result = analyze_portfolio(passing_portfolio)
        assert result.blended_cap_rate == pytest.approx(2_500_000 / 22_800_000)
        assert result.implied_portfolio_yield == pytest.approx(0.09)

    def test_cap_rate_override(self, passing_portfolio):
        inputs = passing_portfolio.model_copy(update={"cap_rates": {"snf-1": 0.10}})
        result = analyze_portfolio(inputs)
        assert result.total_purchase_price == pytest.approx(10_000_000 + 10_000_000 + 4_800_000)

    def test_empty_portfolio_rejected(self):
        with pytest.raises(InvalidParameter):
            analyze_portfolio(PortfolioAnalysisInput(facilities=[], buyer_yield_requirement=0.09))


class TestAllOrNothing:
    """Test master lease viability."""

    def test_negotiate_when_portfolio_passes_with_weak_facilities(self, passing_portfolio):
        result = analyze_portfolio(passing_portfolio)
        analysis = analyze_all_or_nothing(result, 1.40)
        assert analysis.recommended_action == "negotiate"
        assert analysis.worst_facility.facility_id == "snf-2"
        assert not analysis.worst_facility.is_dealkiller
        assert len(analysis.facilities_at_risk) == 2

    def test_pass_when_several_facilities_fail(self, failing_portfolio):
        analysis = analyze_all_or_nothing(analyze_portfolio(failing_portfolio), 1.40)
        assert analysis.recommended_action == "pass"

    def test_single_weak_facility_is_dealkiller(self, snf_facility, weak_facility):
        inputs = PortfolioAnalysisInput(
            facilities=[snf_facility, weak_facility], buyer_yield_requirement=0.11
        )
        analysis = analyze_all_or_nothing(analyze_portfolio(inputs), 1.40)
        assert analysis.recommended_action == "exclude_weak"
        assert analysis.worst_facility.is_dealkiller
        assert analysis.portfolio_drag_effect > 0

    def test_proceed_when_everything_passes(self, snf_facility):
        inputs = PortfolioAnalysisInput(facilities=[snf_facility], buyer_yield_requirement=0.09)
        analysis = analyze_all_or_nothing(analyze_portfolio(inputs), 1.40)
        assert analysis.recommended_action == "proceed"
        assert analysis.facilities_at_risk == []


class TestComposition:
    """Test exclusion scenarios."""

    def test_exclusion_scenario(self, failing_portfolio):
        result = calculate_exclusion_scenario(failing_portfolio, ["snf-2"])
        assert len(result.facility_results) == 2

    def test_optimal_composition_drops_weakest_first(self, failing_portfolio):
        composition = find_optimal_portfolio_composition(failing_portfolio)
        assert composition.excluded_facilities == ["snf-2", "alf-1"]
        assert composition.included_facilities == ["snf-1"]
        assert composition.result.portfolio_coverage_pass_fail
