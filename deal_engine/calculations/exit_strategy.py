"""
Exit Strategy Analysis

Compares selling, refinancing and continuing to hold an asset from a given
point in the holding period, all measured with the same IRR engine.
"""

import logging
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field

from deal_engine.exceptions import InvalidParameter
from deal_engine.models import AssetType
from deal_engine.calculations.irr import calculate_irr
from deal_engine.calculations.amortization import (
    calculate_dscr,
    calculate_payment,
    calculate_remaining_balance,
)

logger = logging.getLogger(__name__)

ExitType = Literal["sale", "refinance", "hold"]
RiskLevel = Literal["low", "medium", "high"]

DEFAULT_EXIT_CAP_RATES: Dict[AssetType, float] = {
    AssetType.SNF: 0.125,
    AssetType.ALF: 0.090,
    AssetType.ILF: 0.085,
}

DEFAULT_SELLING_COSTS = 0.02
REFINANCE_MIN_DSCR = 1.25
FORWARD_HOLD_YEARS = 5
DEFAULT_CAPEX_PER_BED = 1500
ASSUMED_OCCUPANCY = 0.85
TARGET_IRR = 0.15
RUNNER_UP_IRR_SHARE = 0.85

# Hold-scenario debt paydown approximation
BASE_PRINCIPAL_PAID = 0.15
PRINCIPAL_PAID_PER_YEAR = 0.025
MAX_PRINCIPAL_PAID = 0.5


class PropertyMetrics(BaseModel):
    current_noi: float
    current_ebitdar: float
    stabilized_noi: float
    stabilized_ebitdar: float
    noi_growth_rate: float = 0.02
    beds: int = Field(gt=0)
    asset_type: AssetType = AssetType.SNF


class CurrentFinancing(BaseModel):
    original_loan_amount: float = 0.0
    current_balance: float = 0.0
    interest_rate: float = 0.0
    remaining_term: int = 0
    annual_debt_service: float = 0.0
    prepayment_penalty: float = 0.0


class EquityPosition(BaseModel):
    total_equity_invested: float = Field(gt=0)
    cumulative_cash_distributions: float = 0.0
    current_equity_value: Optional[float] = None


class SaleAssumptions(BaseModel):
    exit_cap_rate: float
    selling_costs: float = DEFAULT_SELLING_COSTS
    time_to_close: int = 3  # months


class RefinanceAssumptions(BaseModel):
    new_ltv: float = 0.70
    new_interest_rate: float = 0.07
    new_amortization: int = 25
    new_loan_term: int = 10
    refinance_costs: float = 0.01
    cash_out_amount: Optional[float] = None


class HoldAssumptions(BaseModel):
    additional_hold_years: int = 5
    capex_requirements: List[float] = Field(default_factory=list)
    projected_noi: List[float] = Field(default_factory=list)


class ExitAnalysisInput(BaseModel):
    property: PropertyMetrics
    current_financing: CurrentFinancing
    equity: EquityPosition
    exit_year: int = Field(gt=0)
    sale_assumptions: Optional[SaleAssumptions] = None
    refinance_assumptions: Optional[RefinanceAssumptions] = None
    hold_assumptions: Optional[HoldAssumptions] = None


class SaleExitResult(BaseModel):
    exit_type: Literal["sale"] = "sale"
    gross_sale_price: float
    price_per_bed: float
    implied_cap_rate: float
    selling_costs: float
    prepayment_penalty: float
    loan_payoff: float
    net_sale_proceeds: float
    equity_proceeds: float
    total_cash_returned: float
    equity_multiple: float
    irr: float
    cash_flows: List[float]


class RefinanceExitResult(BaseModel):
    exit_type: Literal["refinance"] = "refinance"
    property_value: float
    new_loan_amount: float
    new_monthly_payment: float
    new_annual_debt_service: float
    proceeds_from_refi: float
    refinance_costs: float
    cash_out_to_equity: float
    new_dscr: float
    dscr_pass_fail: bool
    new_ltv: float
    remaining_equity: float
    monthly_payment_change: float
    annual_cash_flow_change: float
    forward_loan_balance: float
    forward_irr: float
    forward_cash_flows: List[float]


class HoldExitResult(BaseModel):
    exit_type: Literal["hold"] = "hold"
    additional_years: int
    projected_cash_flows: List[float]
    total_additional_cash_flow: float
    projected_exit_noi: float
    projected_exit_value: float
    estimated_loan_balance: float
    projected_net_proceeds: float
    total_equity_returned: float
    equity_multiple: float
    irr: float
    break_even_occupancy: float
    noi_decline_tolerance: float


class ExitScenarioSummary(BaseModel):
    scenario: ExitType
    equity_multiple: float
    irr: float
    total_cash_returned: float
    risk_level: RiskLevel
    recommendation: str


class ExitComparisonResult(BaseModel):
    recommended_exit: ExitType
    sale_analysis: SaleExitResult
    refinance_analysis: RefinanceExitResult
    hold_analysis: HoldExitResult
    comparison: List[ExitScenarioSummary]
    key_factors: List[str]


def calculate_property_value(noi: float, cap_rate: float) -> float:
    """Direct capitalization. Raises InvalidParameter for a non-positive cap rate."""
    if cap_rate <= 0:
        raise InvalidParameter("Cap rate must be greater than 0")
    return noi / cap_rate


def default_sale_assumptions(asset_type: AssetType) -> SaleAssumptions:
    return SaleAssumptions(exit_cap_rate=DEFAULT_EXIT_CAP_RATES[asset_type])


def default_hold_assumptions(beds: int) -> HoldAssumptions:
    return HoldAssumptions(
        additional_hold_years=FORWARD_HOLD_YEARS,
        capex_requirements=[beds * DEFAULT_CAPEX_PER_BED] * FORWARD_HOLD_YEARS,
    )


def analyze_sale(inputs: ExitAnalysisInput, assumptions: SaleAssumptions) -> SaleExitResult:
    """
    Sell at the exit year.

    Exit price capitalizes stabilized NOI grown to the exit year. Operating
    years use current NOI grown annually, net of existing debt service.
    """
    prop = inputs.property
    financing = inputs.current_financing
    equity = inputs.equity
    exit_year = inputs.exit_year
    growth = prop.noi_growth_rate

    exit_noi = prop.stabilized_noi * (1 + growth) ** exit_year
    gross_price = calculate_property_value(exit_noi, assumptions.exit_cap_rate)

    selling_costs = gross_price * assumptions.selling_costs
    prepayment_penalty = financing.current_balance * financing.prepayment_penalty
    loan_payoff = financing.current_balance
    net_proceeds = gross_price - selling_costs - prepayment_penalty - loan_payoff

    cash_flows = [-equity.total_equity_invested]
    for year in range(1, exit_year + 1):
        noi = prop.current_noi * (1 + growth) ** year
        cash_flows.append(noi - financing.annual_debt_service)
    cash_flows[-1] += net_proceeds

    total_cash_returned = sum(cash_flows[1:])

    return SaleExitResult(
        gross_sale_price=gross_price,
        price_per_bed=gross_price / prop.beds,
        implied_cap_rate=assumptions.exit_cap_rate,
        selling_costs=selling_costs,
        prepayment_penalty=prepayment_penalty,
        loan_payoff=loan_payoff,
        net_sale_proceeds=net_proceeds,
        equity_proceeds=net_proceeds,
        total_cash_returned=total_cash_returned,
        equity_multiple=total_cash_returned / equity.total_equity_invested,
        irr=calculate_irr(cash_flows),
        cash_flows=cash_flows,
    )


def analyze_refinance(
    inputs: ExitAnalysisInput,
    assumptions: RefinanceAssumptions,
    exit_cap_rate: Optional[float] = None,
    selling_costs: float = DEFAULT_SELLING_COSTS,
) -> RefinanceExitResult:
    """
    Refinance at the exit year and keep the asset.

    The new loan is sized by LTV against projected value (optionally limited
    to what a desired cash-out needs). Forward IRR assumes five more years
    and a sale, with the loan balance taken from its amortization.
    """
    prop = inputs.property
    financing = inputs.current_financing
    equity = inputs.equity
    growth = prop.noi_growth_rate
    cap_rate = (
        exit_cap_rate if exit_cap_rate is not None else DEFAULT_EXIT_CAP_RATES[prop.asset_type]
    )

    refi_noi = prop.stabilized_noi * (1 + growth) ** inputs.exit_year
    property_value = calculate_property_value(refi_noi, cap_rate)

    max_new_loan = property_value * assumptions.new_ltv
    if assumptions.cash_out_amount is not None:
        needed = (
            financing.current_balance
            + assumptions.cash_out_amount
            + max_new_loan * assumptions.refinance_costs
        )
        new_loan = min(max_new_loan, needed)
    else:
        new_loan = max_new_loan

    amortization_months = assumptions.new_amortization * 12
    monthly_payment = calculate_payment(
        new_loan, assumptions.new_interest_rate, amortization_months
    )
    annual_debt_service = monthly_payment * 12

    refinance_costs = new_loan * assumptions.refinance_costs
    proceeds = new_loan - financing.current_balance - refinance_costs
    cash_out = max(0.0, proceeds)

    new_dscr = calculate_dscr(refi_noi, annual_debt_service)
    remaining_equity = property_value - new_loan

    forward_flows = [
        -remaining_equity if cash_out > 0 else -equity.total_equity_invested
    ]
    for year in range(1, FORWARD_HOLD_YEARS + 1):
        noi = refi_noi * (1 + growth) ** year
        forward_flows.append(noi - annual_debt_service)

    forward_exit_noi = refi_noi * (1 + growth) ** FORWARD_HOLD_YEARS
    forward_exit_value = calculate_property_value(forward_exit_noi, cap_rate)
    forward_balance = calculate_remaining_balance(
        new_loan,
        assumptions.new_interest_rate,
        amortization_months,
        FORWARD_HOLD_YEARS * 12,
    )
    forward_flows[-1] += forward_exit_value * (1 - selling_costs) - forward_balance

    return RefinanceExitResult(
        property_value=property_value,
        new_loan_amount=new_loan,
        new_monthly_payment=monthly_payment,
        new_annual_debt_service=annual_debt_service,
        proceeds_from_refi=proceeds,
        refinance_costs=refinance_costs,
        cash_out_to_equity=cash_out,
        new_dscr=new_dscr,
        dscr_pass_fail=new_dscr >= REFINANCE_MIN_DSCR,
        new_ltv=new_loan / property_value if property_value > 0 else 0.0,
        remaining_equity=remaining_equity,
        monthly_payment_change=monthly_payment - financing.annual_debt_service / 12,
        annual_cash_flow_change=financing.annual_debt_service - annual_debt_service,
        forward_loan_balance=forward_balance,
        forward_irr=calculate_irr(forward_flows),
        forward_cash_flows=forward_flows,
    )


def estimate_hold_loan_balance(current_balance: float, years_of_payments: int) -> float:
    """
    Declining-balance approximation of debt remaining at a later exit.

    Assumes 15% plus 2.5% per year of principal repaid, capped at half.
    """
    paid = BASE_PRINCIPAL_PAID + years_of_payments * PRINCIPAL_PAID_PER_YEAR
    return current_balance * (1 - min(MAX_PRINCIPAL_PAID, paid))


def analyze_hold(
    inputs: ExitAnalysisInput,
    assumptions: HoldAssumptions,
    eventual_sale_cap_rate: float,
    selling_costs: float = DEFAULT_SELLING_COSTS,
) -> HoldExitResult:
    """Keep operating for the additional hold years, then sell."""
    prop = inputs.property
    financing = inputs.current_financing
    equity = inputs.equity
    exit_year = inputs.exit_year
    growth = prop.noi_growth_rate
    total_years = exit_year + assumptions.additional_hold_years

    projected = []
    for year in range(assumptions.additional_hold_years):
        if year < len(assumptions.projected_noi):
            noi = assumptions.projected_noi[year]
        else:
            noi = prop.stabilized_noi * (1 + growth) ** (exit_year + year)
        capex = (
            assumptions.capex_requirements[year]
            if year < len(assumptions.capex_requirements)
            else 0.0
        )
        projected.append(noi - financing.annual_debt_service - capex)

    exit_noi = prop.stabilized_noi * (1 + growth) ** total_years
    exit_value = calculate_property_value(exit_noi, eventual_sale_cap_rate)
    loan_balance = estimate_hold_loan_balance(financing.current_balance, total_years)
    net_proceeds = exit_value * (1 - selling_costs) - loan_balance

    cash_flows = [-equity.total_equity_invested]
    for year in range(1, exit_year + 1):
        noi = prop.current_noi * (1 + growth) ** year
        cash_flows.append(noi - financing.annual_debt_service)
    cash_flows.extend(projected)
    cash_flows[-1] += net_proceeds

    total_returned = sum(cash_flows[1:])

    if prop.stabilized_noi > 0:
        coverage_share = financing.annual_debt_service / prop.stabilized_noi
        break_even_occupancy = coverage_share * ASSUMED_OCCUPANCY
        noi_decline_tolerance = 1 - coverage_share
    else:
        break_even_occupancy = 0.0
        noi_decline_tolerance = 0.0

    return HoldExitResult(
        additional_years=assumptions.additional_hold_years,
        projected_cash_flows=projected,
        total_additional_cash_flow=sum(projected),
        projected_exit_noi=exit_noi,
        projected_exit_value=exit_value,
        estimated_loan_balance=loan_balance,
        projected_net_proceeds=net_proceeds,
        total_equity_returned=total_returned,
        equity_multiple=total_returned / equity.total_equity_invested,
        irr=calculate_irr(cash_flows),
        break_even_occupancy=break_even_occupancy,
        noi_decline_tolerance=noi_decline_tolerance,
    )


def select_exit(comparison: List[ExitScenarioSummary]) -> ExitType:
    """
    Highest IRR wins unless it is high risk and the runner-up is not
    high risk and earns at least 85% of its IRR.
    """
    ranked = sorted(comparison, key=lambda c: c.irr, reverse=True)
    best = ranked[0]
    if len(ranked) > 1:
        runner_up = ranked[1]
        if (
            best.risk_level == "high"
            and runner_up.risk_level != "high"
            and runner_up.irr >= best.irr * RUNNER_UP_IRR_SHARE
        ):
            logger.debug(
                "Preferring %s over high-risk %s", runner_up.scenario, best.scenario
            )
            return runner_up.scenario
    return best.scenario


def compare_exit_strategies(inputs: ExitAnalysisInput) -> ExitComparisonResult:
    """Analyze all three exits and recommend one."""
    prop = inputs.property
    equity = inputs.equity.total_equity_invested

    sale_assumptions = inputs.sale_assumptions or default_sale_assumptions(prop.asset_type)
    refi_assumptions = inputs.refinance_assumptions or RefinanceAssumptions()
    hold_assumptions = inputs.hold_assumptions or default_hold_assumptions(prop.beds)
    cap_rate = sale_assumptions.exit_cap_rate

    sale = analyze_sale(inputs, sale_assumptions)
    refinance = analyze_refinance(
        inputs, refi_assumptions, cap_rate, sale_assumptions.selling_costs
    )
    hold = analyze_hold(inputs, hold_assumptions, cap_rate, sale_assumptions.selling_costs)

    comparison = [
        ExitScenarioSummary(
            scenario="sale",
            equity_multiple=sale.equity_multiple,
            irr=sale.irr,
            total_cash_returned=sale.total_cash_returned,
            risk_level="low",
            recommendation=(
                "Attractive exit" if sale.irr >= TARGET_IRR else "Below target returns"
            ),
        ),
        ExitScenarioSummary(
            scenario="refinance",
            equity_multiple=refinance.cash_out_to_equity / equity + 1,
            irr=refinance.forward_irr,
            total_cash_returned=refinance.cash_out_to_equity,
            risk_level="medium" if refinance.dscr_pass_fail else "high",
            recommendation=(
                "Viable refi with cash out"
                if refinance.dscr_pass_fail
                else "DSCR too tight for refinance"
            ),
        ),
        ExitScenarioSummary(
            scenario="hold",
            equity_multiple=hold.equity_multiple,
            irr=hold.irr,
            total_cash_returned=hold.total_equity_returned,
            risk_level="medium" if hold.noi_decline_tolerance > 0.2 else "high",
            recommendation=(
                "Hold for better returns"
                if hold.irr > sale.irr
                else "Consider sale over continued hold"
            ),
        ),
    ]

    key_factors = []
    if sale.irr >= TARGET_IRR:
        key_factors.append("Sale IRR exceeds 15% target")
    if refinance.cash_out_to_equity > equity * 0.5:
        key_factors.append("Refinance allows significant cash out while maintaining ownership")
    if hold.irr > sale.irr:
        key_factors.append("Continued hold projects higher returns than immediate sale")
    if hold.noi_decline_tolerance < 0.15:
        key_factors.append("Limited NOI decline tolerance - elevated risk in hold scenario")
    if not refinance.dscr_pass_fail:
        key_factors.append("Refinance constrained by DSCR requirements")

    return ExitComparisonResult(
        recommended_exit=select_exit(comparison),
        sale_analysis=sale,
        refinance_analysis=refinance,
        hold_analysis=hold,
        comparison=comparison,
        key_factors=key_factors,
    )
