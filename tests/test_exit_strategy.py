"""
Tests for exit strategy analysis.
"""

import pytest

from deal_engine.exceptions import InvalidParameter
from deal_engine.models import AssetType
from deal_engine.calculations.exit_strategy import (
    CurrentFinancing,
    EquityPosition,
    ExitAnalysisInput,
    ExitScenarioSummary,
    HoldAssumptions,
    PropertyMetrics,
    RefinanceAssumptions,
    SaleAssumptions,
    analyze_hold,
    analyze_refinance,
    analyze_sale,
    calculate_property_value,
    compare_exit_strategies,
    default_hold_assumptions,
    estimate_hold_loan_balance,
    select_exit,
)


@pytest.fixture
def exit_inputs():
    """Flat NOI so every figure can be checked by hand."""
    return ExitAnalysisInput(
        property=PropertyMetrics(
            current_noi=1_000_000,
            current_ebitdar=1_300_000,
            stabilized_noi=1_000_000,
            stabilized_ebitdar=1_300_000,
            noi_growth_rate=0.0,
            beds=100,
        ),
        current_financing=CurrentFinancing(
            original_loan_amount=6_000_000,
            current_balance=5_000_000,
            interest_rate=0.06,
            remaining_term=20,
            annual_debt_service=500_000,
            prepayment_penalty=0.01,
        ),
        equity=EquityPosition(total_equity_invested=3_000_000),
        exit_year=2,
    )


def _summary(scenario, irr, risk_level):
    return ExitScenarioSummary(
        scenario=scenario,
        equity_multiple=1.5,
        irr=irr,
        total_cash_returned=1_000_000,
        risk_level=risk_level,
        recommendation="",
    )


class TestPropertyValue:
    def test_direct_capitalization(self):
        assert calculate_property_value(1_000_000, 0.10) == pytest.approx(10_000_000)

    def test_zero_cap_rate_rejected(self):
        with pytest.raises(InvalidParameter):
            calculate_property_value(1_000_000, 0.0)

    def test_negative_cap_rate_rejected(self):
        with pytest.raises(InvalidParameter):
            calculate_property_value(1_000_000, -0.05)


class TestSale:
    """Test the sale exit."""

    def test_proceeds(self, exit_inputs):
        result = analyze_sale(exit_inputs, SaleAssumptions(exit_cap_rate=0.10))

        assert result.gross_sale_price == pytest.approx(10_000_000)
        assert result.price_per_bed == pytest.approx(100_000)
        assert result.selling_costs == pytest.approx(200_000)
        assert result.prepayment_penalty == pytest.approx(50_000)
        assert result.net_sale_proceeds == pytest.approx(4_750_000)

    def test_cash_flows(self, exit_inputs):
        result = analyze_sale(exit_inputs, SaleAssumptions(exit_cap_rate=0.10))

        assert result.cash_flows == pytest.approx([-3_000_000, 500_000, 5_250_000])
        assert result.total_cash_returned == pytest.approx(5_750_000)
        assert result.equity_multiple == pytest.approx(5_750_000 / 3_000_000)
        assert result.irr > 0


class TestRefinance:
    """Test the refinance exit."""

    def test_ltv_sizing(self, exit_inputs):
        result = analyze_refinance(exit_inputs, RefinanceAssumptions(), exit_cap_rate=0.10)

        assert result.property_value == pytest.approx(10_000_000)
        assert result.new_loan_amount == pytest.approx(7_000_000)
        assert result.refinance_costs == pytest.approx(70_000)
        assert result.cash_out_to_equity == pytest.approx(1_930_000)
        assert result.new_ltv == pytest.approx(0.70)
        assert result.dscr_pass_fail

    def test_forward_flows(self, exit_inputs):
        result = analyze_refinance(exit_inputs, RefinanceAssumptions(), exit_cap_rate=0.10)

        assert len(result.forward_cash_flows) == 6
        assert result.forward_cash_flows[0] == pytest.approx(-3_000_000)
        assert 0 < result.forward_loan_balance < result.new_loan_amount

    def test_cash_out_limits_loan(self, exit_inputs):
        result = analyze_refinance(
            exit_inputs, RefinanceAssumptions(cash_out_amount=1_000_000), exit_cap_rate=0.10
        )
        assert result.new_loan_amount == pytest.approx(6_070_000)

    def test_high_leverage_fails_dscr(self, exit_inputs):
        result = analyze_refinance(
            exit_inputs,
            RefinanceAssumptions(new_ltv=0.95, new_interest_rate=0.10),
            exit_cap_rate=0.10,
        )
        assert result.new_dscr < 1.25
        assert not result.dscr_pass_fail

    def test_default_cap_rate_by_asset_type(self, exit_inputs):
        result = analyze_refinance(exit_inputs, RefinanceAssumptions())
        assert result.property_value == pytest.approx(1_000_000 / 0.125)


class TestHold:
    """Test continuing to hold."""

    def test_loan_balance_approximation(self):
        assert estimate_hold_loan_balance(1_000_000, 5) == pytest.approx(725_000)
        assert estimate_hold_loan_balance(1_000_000, 40) == pytest.approx(500_000)

    def test_hold_flows(self, exit_inputs):
        result = analyze_hold(exit_inputs, HoldAssumptions(additional_hold_years=3), 0.10)

        assert result.projected_cash_flows == pytest.approx([500_000] * 3)
        assert result.estimated_loan_balance == pytest.approx(3_625_000)
        assert result.projected_net_proceeds == pytest.approx(6_175_000)
        assert result.total_equity_returned == pytest.approx(5 * 500_000 + 6_175_000)

    def test_capex_reduces_flows(self, exit_inputs):
        result = analyze_hold(
            exit_inputs,
            HoldAssumptions(additional_hold_years=2, capex_requirements=[100_000]),
            0.10,
        )
        assert result.projected_cash_flows == pytest.approx([400_000, 500_000])

    def test_risk_measures(self, exit_inputs):
        result = analyze_hold(exit_inputs, HoldAssumptions(), 0.10)
        assert result.break_even_occupancy == pytest.approx(0.5 * 0.85)
        assert result.noi_decline_tolerance == pytest.approx(0.5)

    def test_default_hold_assumptions(self):
        assumptions = default_hold_assumptions(100)
        assert assumptions.additional_hold_years == 5
        assert assumptions.capex_requirements == [150_000] * 5


class TestSelectExit:
    """High-risk winners give way to a close, safer runner-up."""

    def test_highest_irr_wins(self):
        comparison = [
            _summary("sale", 0.12, "low"),
            _summary("hold", 0.18, "medium"),
        ]
        assert select_exit(comparison) == "hold"

    def test_safer_runner_up_preferred(self):
        comparison = [
            _summary("refinance", 0.20, "high"),
            _summary("sale", 0.18, "low"),
        ]
        assert select_exit(comparison) == "sale"

    def test_distant_runner_up_not_preferred(self):
        comparison = [
            _summary("refinance", 0.20, "high"),
            _summary("sale", 0.16, "low"),
        ]
        assert select_exit(comparison) == "refinance"


class TestCompareExits:
    """Test the full exit comparison."""

    def test_three_scenarios(self, exit_inputs):
        result = compare_exit_strategies(exit_inputs)

        assert [c.scenario for c in result.comparison] == ["sale", "refinance", "hold"]
        assert result.recommended_exit in ("sale", "refinance", "hold")
        assert result.comparison[0].risk_level == "low"

    def test_default_sale_cap_rate(self, exit_inputs):
        result = compare_exit_strategies(exit_inputs)
        assert result.sale_analysis.implied_cap_rate == pytest.approx(0.125)

    def test_refinance_multiple_and_factors(self, exit_inputs):
        inputs = exit_inputs.model_copy(
            update={"sale_assumptions": SaleAssumptions(exit_cap_rate=0.10)}
        )
        result = compare_exit_strategies(inputs)
        refinance = result.comparison[1]

        assert refinance.equity_multiple == pytest.approx(1_930_000 / 3_000_000 + 1)
        assert refinance.risk_level == "medium"
        assert (
            "Refinance allows significant cash out while maintaining ownership"
            in result.key_factors
        )

    def test_asset_type_default(self, exit_inputs):
        alf = exit_inputs.model_copy(
            update={
                "property": exit_inputs.property.model_copy(
                    update={"asset_type": AssetType.ALF}
                )
            }
        )
        result = compare_exit_strategies(alf)
        assert result.sale_analysis.implied_cap_rate == pytest.approx(0.09)

    def test_zero_exit_cap_rate_rejected(self, exit_inputs):
        """A zero cap rate is not replaced by the asset-type default."""
        inputs = exit_inputs.model_copy(
            update={"sale_assumptions": SaleAssumptions(exit_cap_rate=0.0)}
        )
        with pytest.raises(InvalidParameter):
            compare_exit_strategies(inputs)

    def test_refinance_zero_cap_rate_rejected(self, exit_inputs):
        with pytest.raises(InvalidParameter):
            analyze_refinance(exit_inputs, RefinanceAssumptions(), exit_cap_rate=0.0)
