"""
Tests for sale-leaseback sensitivity analysis.
"""

import pytest

from deal_engine.exceptions import InvalidParameter
from deal_engine.models import AssetType
from deal_engine.calculations.sale_leaseback import SaleLeasebackInput, run_full_analysis
from deal_engine.calculations.sensitivity import (
    RentEscalationScenario,
    SensitivityRange,
    analyze_cap_rate_sensitivity,
    analyze_occupancy_sensitivity,
    analyze_rent_escalation_scenarios,
    analyze_two_way_sensitivity,
    analyze_yield_sensitivity,
    default_ranges,
    find_breakeven_cap_rate,
    find_breakeven_yield,
    standard_escalation_scenarios,
)


@pytest.fixture
def base_inputs():
    return SaleLeasebackInput(
        property_noi=1_000_000,
        cap_rate=0.125,
        buyer_yield_requirement=0.125,
        facility_ebitdar=1_400_000,
        minimum_coverage_ratio=1.40,
        beds=120,
        total_revenue=10_000_000,
        asset_type=AssetType.SNF,
    )


class TestSensitivityRange:
    """Test inclusive grids."""

    def test_grid_includes_endpoint(self):
        values = SensitivityRange(min=0.10, max=0.15, step=0.01).values()
        assert values == pytest.approx([0.10, 0.11, 0.12, 0.13, 0.14, 0.15])

    def test_fine_step_keeps_endpoint(self):
        values = SensitivityRange(min=0.065, max=0.105, step=0.005).values()
        assert len(values) == 9
        assert values[-1] == pytest.approx(0.105)

    def test_invalid_step(self):
        with pytest.raises(InvalidParameter):
            SensitivityRange(min=0.1, max=0.2, step=0).values()

    def test_inverted_range_is_empty(self):
        assert SensitivityRange(min=0.2, max=0.1, step=0.01).values() == []


class TestOneWaySensitivity:
    """Test single-variable sweeps."""

    def test_cap_rate_sweep_reprices(self, base_inputs):
        results = analyze_cap_rate_sensitivity(
            base_inputs, SensitivityRange(min=0.10, max=0.14, step=0.02)
        )
        assert [r.purchase_price for r in results] == pytest.approx(
            [10_000_000, 1_000_000 / 0.12, 1_000_000 / 0.14]
        )
        # Lower price means lower rent, so coverage rises with cap rate
        assert results[0].coverage_ratio < results[-1].coverage_ratio

    def test_yield_sweep_strictly_lowers_coverage(self, base_inputs):
        results = analyze_yield_sensitivity(
            base_inputs, 8_000_000, SensitivityRange(min=0.08, max=0.14, step=0.01)
        )
        coverages = [r.coverage_ratio for r in results]
        assert all(a > b for a, b in zip(coverages, coverages[1:]))

    def test_yield_sweep_boundary_passes(self, base_inputs):
        results = analyze_yield_sensitivity(
            base_inputs, 8_000_000, SensitivityRange(min=0.125, max=0.125, step=0.01)
        )
        assert results[0].coverage_ratio == pytest.approx(1.40)
        assert results[0].coverage_pass_fail

    def test_occupancy_flows_through_variable_margin(self, base_inputs):
        base_result = run_full_analysis(base_inputs)
        results = analyze_occupancy_sensitivity(base_inputs, base_result, [-0.10, 0.0, 0.10])
        margin = 1_400_000 / 10_000_000
        assert results[0].adjusted_ebitdar == pytest.approx(
            1_400_000 - 1_000_000 * margin * 0.7
        )
        assert results[1].adjusted_ebitdar == pytest.approx(1_400_000)
        assert not results[0].coverage_pass_fail
        assert results[2].coverage_pass_fail

    def test_occupancy_without_revenue_is_flat(self, base_inputs):
        inputs = base_inputs.model_copy(update={"total_revenue": 0.0})
        base_result = run_full_analysis(inputs)
        results = analyze_occupancy_sensitivity(inputs, base_result)
        assert all(r.adjusted_ebitdar == pytest.approx(1_400_000) for r in results)


class TestTwoWaySensitivity:
    """Test the cap rate x yield matrix."""

    def test_matrix_shape_and_values(self, base_inputs):
        result = analyze_two_way_sensitivity(
            base_inputs,
            SensitivityRange(min=0.10, max=0.125, step=0.025),
            SensitivityRange(min=0.10, max=0.125, step=0.025),
        )
        assert len(result.matrix) == 2
        assert all(len(row) == 2 for row in result.matrix)
        cell = result.matrix[1][1]
        assert cell.purchase_price == pytest.approx(8_000_000)
        assert cell.annual_rent == pytest.approx(1_000_000)
        assert cell.coverage_ratio == pytest.approx(1.40)

    def test_matrix_rejects_zero_cap(self, base_inputs):
        with pytest.raises(InvalidParameter):
            analyze_two_way_sensitivity(
                base_inputs,
                SensitivityRange(min=0.0, max=0.01, step=0.01),
                SensitivityRange(min=0.10, max=0.10, step=0.01),
            )


class TestEscalationScenarios:
    """Test rent escalation scenarios."""

    def test_flat_scenario(self, base_inputs):
        base_result = run_full_analysis(base_inputs)
        results = analyze_rent_escalation_scenarios(
            base_inputs, base_result, [RentEscalationScenario("Flat", 0.0, 15)]
        )
        flat = results[0]
        assert flat.year10_rent == pytest.approx(1_000_000)
        assert flat.total_rent_over_term == pytest.approx(15_000_000)
        assert flat.year10_coverage == pytest.approx(1.40)

    def test_escalation_erodes_coverage(self, base_inputs):
        base_result = run_full_analysis(base_inputs)
        results = analyze_rent_escalation_scenarios(base_inputs, base_result)
        assert len(results) == len(standard_escalation_scenarios())
        escalating = results[-1]
        assert escalating.year5_rent == pytest.approx(1_000_000 * 1.035 ** 4)
        assert escalating.year10_coverage < escalating.year1_coverage

    def test_short_lease_has_no_year10(self, base_inputs):
        base_result = run_full_analysis(base_inputs)
        results = analyze_rent_escalation_scenarios(
            base_inputs, base_result, [RentEscalationScenario("Short", 0.02, 5)]
        )
        assert results[0].year10_rent == 0.0
        assert results[0].year10_coverage == 0.0


class TestBreakevens:
    """Test breakeven solvers."""

    def test_breakeven_cap_rate(self):
        cap = find_breakeven_cap_rate(1_000_000, 1_400_000, 0.125, 1.40)
        assert cap == pytest.approx(0.125)

    def test_breakeven_yield(self):
        assert find_breakeven_yield(8_000_000, 1_400_000, 1.40) == pytest.approx(0.125)

    def test_breakeven_rejects_bad_inputs(self):
        with pytest.raises(InvalidParameter):
            find_breakeven_cap_rate(1_000_000, 0, 0.125, 1.40)
        with pytest.raises(InvalidParameter):
            find_breakeven_yield(0, 1_400_000, 1.40)

    def test_default_ranges_center_on_asset_cap_rate(self):
        ranges = default_ranges(AssetType.SNF)
        cap_values = ranges["cap_rate"].values()
        assert cap_values[0] == pytest.approx(0.105)
        assert cap_values[-1] == pytest.approx(0.145)
        assert len(ranges["occupancy"]) == 5
