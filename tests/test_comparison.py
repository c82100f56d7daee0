"""
Tests for deal structure comparison.
"""

import pytest

from deal_engine.exceptions import InvalidParameter
from deal_engine.calculations.comparison import (
    CashPurchaseAnalysis,
    CashPurchaseTerms,
    ConventionalTerms,
    DealComparisonInput,
    DealComparisonResult,
    LeaseBuyoutAnalysis,
    LeaseBuyoutTerms,
    LeasebackTerms,
    ReitLeasebackAnalysis,
    ReitLeasebackTerms,
    SaleLeasebackAnalysis,
    _buyout_acquisitions,
    build_comparison_matrix,
    rank_structures,
    run_comparison,
    score_structures,
)
from deal_engine.calculations.proforma import GrowthAssumptions


@pytest.fixture
def base_inputs(snf_facility):
    """Flat NOI, 10% exit cap and no selling costs: cash purchase IRR is 10%."""
    return DealComparisonInput(
        facilities=[snf_facility],
        purchase_price=10_000_000,
        hold_period_years=5,
        discount_rate=0.10,
        exit_cap_rate=0.10,
        noi_growth_rate=0.0,
        selling_costs=0.0,
    )


@pytest.fixture
def leaseback_terms():
    return LeasebackTerms(cap_rate=0.10, buyer_yield_requirement=0.09)


def _structure(result, name):
    return next(s for s in result.structures if s.structure == name)


class TestCashPurchase:
    """Test the all-cash baseline."""

    def test_returns(self, base_inputs):
        result = run_comparison(base_inputs)
        cash = _structure(result, "purchase_cash")

        assert cash.equity_required == pytest.approx(10_000_000)
        assert cash.irr == pytest.approx(0.10, abs=1e-6)
        assert cash.npv == pytest.approx(0.0, abs=1e-3)
        assert cash.equity_multiple == pytest.approx(1.5)
        assert cash.cash_on_cash == pytest.approx(0.10)
        assert cash.year1_cash_flow == pytest.approx(1_000_000)
        assert cash.risk_score == 2

    def test_only_structure_is_recommended(self, base_inputs):
        result = run_comparison(base_inputs)
        assert result.recommended_structure == "purchase_cash"
        assert result.deal_name == "Oak Grove SNF"
        assert result.pro_forma is None


class TestConventional:
    def test_leverage(self, base_inputs):
        inputs = base_inputs.model_copy(
            update={"conventional_financing": ConventionalTerms(ltv=0.70, interest_rate=0.07)}
        )
        result = run_comparison(inputs)
        conventional = _structure(result, "conventional_financing")

        assert conventional.debt_amount == pytest.approx(7_000_000)
        assert conventional.dscr == pytest.approx(1_000_000 / (7 * 7_067.79 * 12), rel=1e-4)
        assert conventional.risk_score == 4
        assert conventional.coverage_pass_fail

    def test_exit_repays_loan_balance(self, base_inputs):
        inputs = base_inputs.model_copy(
            update={"conventional_financing": ConventionalTerms(ltv=0.70, interest_rate=0.07)}
        )
        conventional = _structure(run_comparison(inputs), "conventional_financing")
        balance = conventional.financing.loan_schedule[4].ending_balance

        assert conventional.net_exit_proceeds == pytest.approx(10_000_000 - balance)

    def test_portfolio_uses_strictest_dscr(self, snf_facility, alf_facility):
        """An SNF anywhere in the portfolio sets the 1.25x lender minimum."""
        inputs = DealComparisonInput(
            facilities=[alf_facility, snf_facility],
            purchase_price=20_000_000,
            exit_cap_rate=0.10,
            conventional_financing=ConventionalTerms(ltv=0.70, interest_rate=0.07),
        )
        conventional = _structure(run_comparison(inputs), "conventional_financing")
        assert conventional.financing.minimum_dscr == pytest.approx(1.25)


class TestLeaseback:
    """Test the operator's view of a sale-leaseback."""

    def test_operator_economics(self, base_inputs, leaseback_terms):
        inputs = base_inputs.model_copy(update={"sale_leaseback": leaseback_terms})
        slb = _structure(run_comparison(inputs), "sale_leaseback")

        assert slb.equity_required == 0.0
        assert slb.total_capitalization == pytest.approx(10_000_000)
        assert slb.cash_flows[0] == pytest.approx(-10_000_000)
        assert slb.cash_flows[1] == pytest.approx(1_400_000 - 900_000)
        assert slb.cash_flows[2] == pytest.approx(1_400_000 - 900_000 * 1.025)
        assert slb.rent_coverage == pytest.approx(1_400_000 / 900_000)
        assert slb.risk_score == 3
        assert slb.coverage_pass_fail

    def test_reit_name(self, base_inputs):
        terms = ReitLeasebackTerms(
            cap_rate=0.10, buyer_yield_requirement=0.09, reit_name="Acme Health REIT"
        )
        inputs = base_inputs.model_copy(update={"reit_leaseback": terms})
        reit = _structure(run_comparison(inputs), "reit_leaseback")
        assert reit.structure_name == "REIT Sale-Leaseback (Acme Health REIT)"

    def test_explicit_minimum_coverage(self, base_inputs):
        terms = LeasebackTerms(
            cap_rate=0.10, buyer_yield_requirement=0.09, minimum_coverage_ratio=1.60
        )
        inputs = base_inputs.model_copy(update={"sale_leaseback": terms})
        slb = _structure(run_comparison(inputs), "sale_leaseback")
        assert not slb.coverage_pass_fail


class TestLeaseBuyout:
    """Test lease buyout in the comparison."""

    def test_uses_current_rent(self, base_inputs):
        terms = LeaseBuyoutTerms(buyout_amount=1_000_000, remaining_lease_years=10)
        inputs = base_inputs.model_copy(update={"lease_buyout": terms})
        buyout = _structure(run_comparison(inputs), "lease_buyout")

        assert buyout.buyout.total_existing_annual_rent == pytest.approx(800_000)
        assert buyout.buyout.amortization_years == 10
        assert buyout.rent_coverage == pytest.approx(
            1_400_000 / (800_000 + buyout.buyout.total_buyout_amortization)
        )
        assert buyout.risk_score == 6

    def test_existing_rent_split_by_ebitdar(self, snf_facility, alf_facility):
        terms = LeaseBuyoutTerms(
            buyout_amount=1_000_000, existing_rent=1_300_000, remaining_lease_years=10
        )
        acquisitions = _buyout_acquisitions([snf_facility, alf_facility], terms)
        rents = [a.existing_lease.current_annual_rent for a in acquisitions]
        assert rents == pytest.approx([700_000, 600_000])

    def test_missing_rent_rejected(self, weak_facility):
        inputs = DealComparisonInput(
            facilities=[weak_facility],
            purchase_price=5_000_000,
            lease_buyout=LeaseBuyoutTerms(buyout_amount=500_000, remaining_lease_years=5),
        )
        with pytest.raises(InvalidParameter):
            run_comparison(inputs)


class TestRankingAndScoring:
    """Test rankings, scores and the recommendation."""

    def test_rankings(self, base_inputs, leaseback_terms):
        inputs = base_inputs.model_copy(update={"sale_leaseback": leaseback_terms})
        result = run_comparison(inputs)

        assert result.rankings.by_irr == ["purchase_cash", "sale_leaseback"]
        assert result.rankings.by_risk == ["purchase_cash", "sale_leaseback"]
        assert result.rankings.by_equity_required == ["sale_leaseback", "purchase_cash"]

    def test_scores_and_recommendation(self, base_inputs, leaseback_terms):
        inputs = base_inputs.model_copy(update={"sale_leaseback": leaseback_terms})
        result = run_comparison(inputs)

        assert result.scores == {"purchase_cash": 7, "sale_leaseback": 5}
        assert result.recommended_structure == "purchase_cash"
        assert result.recommendation_rationale[:3] == [
            "Highest IRR at 10.0%",
            "Lowest risk profile",
            "Meets coverage requirements",
        ]

    def test_ties_keep_declaration_order(self, base_inputs, leaseback_terms):
        inputs = base_inputs.model_copy(update={"sale_leaseback": leaseback_terms})
        cash, slb = run_comparison(inputs).structures
        twin = slb.model_copy(update={"irr": cash.irr, "risk_score": cash.risk_score})

        rankings = rank_structures([cash, twin])
        assert rankings.by_irr == ["purchase_cash", "sale_leaseback"]
        assert rankings.by_risk == ["purchase_cash", "sale_leaseback"]

        reversed_rankings = rank_structures([twin, cash])
        assert reversed_rankings.by_irr == ["sale_leaseback", "purchase_cash"]

    def test_third_place_scores(self, base_inputs, leaseback_terms):
        inputs = base_inputs.model_copy(
            update={
                "sale_leaseback": leaseback_terms,
                "conventional_financing": ConventionalTerms(),
            }
        )
        result = run_comparison(inputs)
        scores = score_structures(result.structures, result.rankings)
        assert scores == result.scores
        assert all(1 <= score <= 7 for score in scores.values())


class TestResultShape:
    def test_variants_survive_round_trip(self, base_inputs, leaseback_terms):
        inputs = base_inputs.model_copy(
            update={
                "sale_leaseback": leaseback_terms,
                "reit_leaseback": ReitLeasebackTerms(cap_rate=0.10, buyer_yield_requirement=0.09),
                "lease_buyout": LeaseBuyoutTerms(buyout_amount=1_000_000, remaining_lease_years=10),
            }
        )
        result = run_comparison(inputs)
        restored = DealComparisonResult.model_validate(result.model_dump())

        assert [type(s) for s in restored.structures] == [
            CashPurchaseAnalysis,
            SaleLeasebackAnalysis,
            ReitLeasebackAnalysis,
            LeaseBuyoutAnalysis,
        ]

    def test_comparison_matrix(self, base_inputs, leaseback_terms):
        inputs = base_inputs.model_copy(update={"sale_leaseback": leaseback_terms})
        matrix = build_comparison_matrix(run_comparison(inputs).structures)

        assert [row["metric"] for row in matrix] == [
            "Equity Required",
            "IRR",
            "Equity Multiple",
            "Cash-on-Cash",
            "Year 1 Cash Flow",
            "DSCR",
            "Rent Coverage",
            "Risk Score",
        ]
        assert matrix[0]["purchase_cash"] == "$10.00M"
        assert matrix[1]["purchase_cash"] == "10.0%"
        assert matrix[5]["purchase_cash"] == "N/A"
        assert matrix[6]["sale_leaseback"] == "1.56x"
        assert matrix[7]["sale_leaseback"] == "3/10"

    def test_portfolio_deal_name(self, snf_facility, alf_facility):
        result = run_comparison(
            DealComparisonInput(
                facilities=[snf_facility, alf_facility],
                purchase_price=20_000_000,
                exit_cap_rate=0.10,
            )
        )
        assert result.deal_name == "2-Facility Portfolio"
        assert result.total_beds == 200


class TestProFormaOperations:
    def test_growth_assumptions_drive_projection(self, base_inputs):
        growth = GrowthAssumptions(
            revenue_growth=0.03,
            occupancy_improvement=0.0,
            target_occupancy=0.85,
            rate_increases=0.0,
            expense_growth=0.02,
            labor_inflation=0.02,
            agency_reduction=0.0,
            target_agency_percent=0.15,
        )
        result = run_comparison(base_inputs.model_copy(update={"growth_assumptions": growth}))

        assert result.pro_forma is not None
        assert result.pro_forma.hold_period == 5
        cash = _structure(result, "purchase_cash")
        assert cash.year1_cash_flow == pytest.approx(
            result.pro_forma.portfolio_yearly_totals[0].total_noi
        )


class TestValidation:
    def test_no_facilities(self):
        with pytest.raises(InvalidParameter):
            run_comparison(DealComparisonInput(facilities=[], purchase_price=1_000_000))

    def test_no_structures_enabled(self, base_inputs):
        inputs = base_inputs.model_copy(
            update={"cash_purchase": CashPurchaseTerms(enabled=False)}
        )
        with pytest.raises(InvalidParameter):
            run_comparison(inputs)

    def test_zero_exit_cap_rate(self, base_inputs):
        with pytest.raises(InvalidParameter):
            run_comparison(base_inputs.model_copy(update={"exit_cap_rate": 0.0}))
