"""
Tests for the IRR / NPV engine.
"""

import pytest

from deal_engine.exceptions import InvalidParameter
from deal_engine.calculations.irr import (
    CashFlowItem,
    IRRNPVInput,
    calculate_irr,
    calculate_irr_bisection,
    calculate_mirr,
    calculate_multiple,
    calculate_npv,
    calculate_payback_period,
    calculate_profit,
    calculate_profitability_index,
    calculate_required_exit_cap_rate,
    calculate_terminal_value,
    run_full_analysis,
    run_sensitivity_analysis,
)


class TestNPV:
    """Test net present value."""

    def test_npv_discounts_each_period(self):
        """Each flow is discounted by its period index."""
        npv = calculate_npv([-100, 110], 0.10)
        assert npv == pytest.approx(0.0, abs=1e-9)

    def test_npv_at_zero_rate_is_sum(self):
        assert calculate_npv([-100, 30, 40, 50], 0.0) == pytest.approx(20.0)

    def test_npv_positive_when_returns_exceed_cost(self):
        assert calculate_npv([-100, 50, 50, 50], 0.10) > 0

    def test_npv_rejects_total_loss_rate(self):
        with pytest.raises(InvalidParameter):
            calculate_npv([-100, 110], -1.0)

    def test_npv_long_series_at_high_rate(self):
        """Discount factors shrink toward zero instead of overflowing."""
        npv = calculate_npv([-1.0, 10.0] + [0.0] * 398, 9.0)
        assert npv == pytest.approx(0.0, abs=1e-9)


class TestIRR:
    """Test IRR root finding."""

    def test_irr_simple(self):
        """Investment of 100 returning 110 after one year is 10%."""
        assert calculate_irr([-100, 110]) == pytest.approx(0.10, abs=1e-6)

    def test_irr_multi_period(self):
        cash_flows = [-100, 20, 20, 20, 20, 120]
        assert calculate_irr(cash_flows) == pytest.approx(0.20, abs=1e-4)

    @pytest.mark.parametrize("rate", [0.05, 0.12, 0.25])
    def test_irr_round_trip(self, rate):
        """IRR recovers the rate that generated a single terminal payoff."""
        principal = 1_000_000
        cash_flows = [-principal, 0, 0, principal * (1 + rate) ** 3]
        assert calculate_irr(cash_flows) == pytest.approx(rate, abs=1e-4)

    def test_irr_negative_returns(self):
        """Total return below investment gives a negative IRR."""
        assert calculate_irr([-100, 40, 40, 10]) < 0

    def test_irr_undefined_for_short_series(self):
        assert calculate_irr([]) == 0.0
        assert calculate_irr([-100]) == 0.0

    def test_irr_never_raises_on_bad_flows(self):
        """All-positive flows have no root; a bounded estimate comes back."""
        result = calculate_irr([100, 100, 100])
        assert -0.99 <= result <= 10.0

    def test_irr_long_series_with_early_payoff(self):
        """Four hundred periods with a tenfold payoff in year one."""
        cash_flows = [-1.0, 10.0] + [0.0] * 398
        assert calculate_irr(cash_flows) == pytest.approx(9.0, abs=1e-5)

    def test_irr_long_series_with_balloon(self):
        """Newton overshoots toward -99%; bisection still finds the root."""
        cash_flows = [-1000.0] + [5.0] * 200 + [500000.0]
        irr = calculate_irr(cash_flows)
        assert 0.03 < irr < 0.035
        assert calculate_npv(cash_flows, irr) == pytest.approx(0.0, abs=1.0)

    def test_bisection_matches_newton(self):
        cash_flows = [-1000, 300, 400, 500]
        assert calculate_irr_bisection(cash_flows) == pytest.approx(
            calculate_irr(cash_flows), abs=1e-5
        )


class TestReturnMetrics:
    """Test MIRR, payback, multiple and terminal value."""

    def test_profit(self):
        assert calculate_profit([-1000, 300, 400, 500]) == pytest.approx(200)

    def test_mirr_degenerate_without_outflows(self):
        assert calculate_mirr([100, 100], 0.08, 0.10) == 0.0

    def test_mirr_between_finance_and_irr(self):
        cash_flows = [-1000, 300, 400, 500]
        mirr = calculate_mirr(cash_flows, 0.08, 0.08)
        assert 0.08 < mirr < calculate_irr(cash_flows)

    def test_payback_interpolates(self):
        """Cumulative crosses zero halfway through year 3."""
        assert calculate_payback_period([-250, 100, 100, 100]) == pytest.approx(2.5)

    def test_payback_never_reached(self):
        cash_flows = [-1000, 100, 100]
        assert calculate_payback_period(cash_flows) == float(len(cash_flows))

    def test_terminal_value(self):
        assert calculate_terminal_value(1_000_000, 0.10, 0.02) == pytest.approx(9_800_000)

    def test_terminal_value_rejects_zero_cap(self):
        with pytest.raises(InvalidParameter):
            calculate_terminal_value(1_000_000, 0.0)

    def test_multiple(self):
        assert calculate_multiple([-100, 50, 100]) == pytest.approx(1.5)
        assert calculate_multiple([50, 100]) == 0.0

    def test_profitability_index(self):
        assert calculate_profitability_index(50, 100) == pytest.approx(1.5)
        assert calculate_profitability_index(50, 0) == 0.0


@pytest.fixture
def base_investment():
    return IRRNPVInput(
        initial_investment=10_000_000,
        cash_flows=[CashFlowItem(year=y, operating_cash_flow=1_000_000) for y in range(1, 6)],
        discount_rate=0.10,
        exit_cap_rate=0.10,
        exit_year=5,
        noi=1_000_000,
        noi_growth_rate=0.0,
    )


def _flows(result):
    return [-10_000_000] + [item.net_cash_flow for item in result.cash_flows]


class TestFullAnalysis:
    """Test the combined IRR / NPV analysis."""

    def test_full_analysis_includes_terminal_value(self, base_investment):
        result = run_full_analysis(base_investment)
        assert result.exit_value == pytest.approx(9_800_000)
        assert result.exit_year == 5
        assert result.cash_flows[-1].net_cash_flow == pytest.approx(1_000_000 + 9_800_000)

    def test_full_analysis_metrics_consistent(self, base_investment):
        result = run_full_analysis(base_investment)
        flows = _flows(result)
        assert result.npv == pytest.approx(calculate_npv(flows, 0.10))
        assert result.irr == pytest.approx(calculate_irr(flows), abs=1e-9)
        assert result.equity_multiple == pytest.approx(14_800_000 / 10_000_000)
        assert result.average_cash_on_cash == pytest.approx(0.10)

    def test_sensitivity_flexes_one_variable_at_a_time(self, base_investment):
        points = run_sensitivity_analysis(
            base_investment, [0.09, 0.10, 0.11], [0.08, 0.10], [0.0, 0.02]
        )
        assert len(points) == 3 + 2 + 2
        assert [p.variable for p in points[:3]] == ["exit_cap_rate"] * 3

    def test_higher_exit_cap_lowers_irr(self, base_investment):
        low_cap, high_cap = run_sensitivity_analysis(base_investment, [0.08, 0.12])
        assert low_cap.irr > high_cap.irr

    def test_required_exit_cap_rate_hits_target(self, base_investment):
        base = run_full_analysis(base_investment)
        cap = calculate_required_exit_cap_rate(base_investment, base.irr)
        assert cap == pytest.approx(0.10, abs=1e-3)
