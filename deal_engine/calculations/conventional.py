"""
Conventional Financing Calculations

Models traditional bank financing for facility acquisitions: loan sizing
by LTV, fixed or floating rate amortization, DSCR testing against
asset-type minimums, and the effective cost of the loan.
"""

import logging
from typing import Dict, List, Literal, Optional
from datetime import date
from pydantic import BaseModel, Field

from deal_engine.models import AssetType, LoanScheduleRow
from deal_engine.calculations.amortization import (
    calculate_all_in_cost,
    calculate_cash_on_cash,
    calculate_dscr,
    calculate_variable_rate_path,
    generate_loan_schedule,
)

logger = logging.getLogger(__name__)


MINIMUM_DSCR: Dict[AssetType, float] = {
    AssetType.SNF: 1.25,
    AssetType.ALF: 1.20,
    AssetType.ILF: 1.20,
}

DEFAULT_ORIGINATION_FEE = 0.01


class ConventionalFinancingInput(BaseModel):
    """Property and loan terms for a bank-financed acquisition."""

    purchase_price: float = Field(gt=0)
    property_noi: float
    facility_ebitdar: float
    asset_type: AssetType = AssetType.SNF
    beds: int = Field(gt=0)

    loan_type: Literal["fixed", "variable"] = "fixed"
    ltv: float = Field(default=0.70, ge=0, le=1)
    interest_rate: float
    amortization_years: int = 25
    loan_term_years: int = 10

    # Floating rate terms
    index_rate: Optional[float] = None
    spread: Optional[float] = None
    rate_cap: Optional[float] = None
    rate_floor: Optional[float] = None
    index_path: Optional[List[float]] = None

    origination_fee: float = DEFAULT_ORIGINATION_FEE
    closing_costs: float = 0.0

    # Overrides purchase price less loan amount
    equity_required: Optional[float] = None
    start_date: Optional[date] = None


class ConventionalFinancingResult(BaseModel):
    """Loan sizing, coverage and return metrics."""

    loan_amount: float
    equity_required: float
    total_capitalization: float

    monthly_payment: float
    annual_debt_service: float

    dscr: float
    dscr_ebitdar: float
    dscr_pass_fail: bool
    minimum_dscr: float

    cash_on_cash: float
    equity_multiple: float

    loan_schedule: List[LoanScheduleRow]

    balloon_payment: float
    balloon_year: int

    total_origination_costs: float
    all_in_cost: float

    loan_per_bed: float
    equity_per_bed: float


class FixedVsVariableComparison(BaseModel):
    fixed: ConventionalFinancingResult
    variable: ConventionalFinancingResult


def build_rate_path(inputs: ConventionalFinancingInput) -> List[float]:
    """Annual rate for each loan year."""
    years = max(inputs.loan_term_years, 1)
    if (
        inputs.loan_type == "variable"
        and inputs.index_rate is not None
        and inputs.spread is not None
    ):
        return calculate_variable_rate_path(
            inputs.index_rate,
            inputs.spread,
            years,
            rate_cap=inputs.rate_cap,
            rate_floor=inputs.rate_floor,
            index_path=inputs.index_path,
        )
    return [inputs.interest_rate] * years


def run_full_analysis(inputs: ConventionalFinancingInput) -> ConventionalFinancingResult:
    """
    Run full conventional financing analysis.

    Year-one payment and debt service drive DSCR and cash-on-cash; the
    schedule carries any later rate changes.
    """
    loan_amount = inputs.purchase_price * inputs.ltv
    equity_required = (
        inputs.equity_required
        if inputs.equity_required is not None
        else inputs.purchase_price - loan_amount
    )

    rate_path = build_rate_path(inputs)
    loan_schedule = generate_loan_schedule(
        loan_amount,
        rate_path[0],
        inputs.amortization_years,
        inputs.loan_term_years,
        rate_path=rate_path,
        start_date=inputs.start_date,
    )

    annual_debt_service = loan_schedule[0].payment if loan_schedule else 0.0
    monthly_payment = annual_debt_service / 12

    dscr = calculate_dscr(inputs.property_noi, annual_debt_service)
    dscr_ebitdar = calculate_dscr(inputs.facility_ebitdar, annual_debt_service)
    minimum_dscr = MINIMUM_DSCR[inputs.asset_type]

    balloon_payment = loan_schedule[-1].ending_balance if loan_schedule else 0.0
    total_origination_costs = loan_amount * inputs.origination_fee + inputs.closing_costs

    all_in_cost = calculate_all_in_cost(
        loan_amount,
        rate_path[0],
        inputs.origination_fee,
        inputs.closing_costs,
        inputs.amortization_years,
        inputs.loan_term_years,
    )

    # Levered cash flow over the term, then sale at cost less the balloon
    total_cash_flow = sum(inputs.property_noi - row.payment for row in loan_schedule)
    exit_proceeds = inputs.purchase_price - balloon_payment
    equity_multiple = (
        (total_cash_flow + exit_proceeds) / equity_required if equity_required > 0 else 0.0
    )

    logger.debug(
        "Conventional loan %.2f at %.4f: DSCR %.3f vs minimum %.2f",
        loan_amount,
        rate_path[0],
        dscr,
        minimum_dscr,
    )

    return ConventionalFinancingResult(
        loan_amount=loan_amount,
        equity_required=equity_required,
        total_capitalization=loan_amount + equity_required,
        monthly_payment=monthly_payment,
        annual_debt_service=annual_debt_service,
        dscr=dscr,
        dscr_ebitdar=dscr_ebitdar,
        dscr_pass_fail=dscr >= minimum_dscr,
        minimum_dscr=minimum_dscr,
        cash_on_cash=calculate_cash_on_cash(
            inputs.property_noi, annual_debt_service, equity_required
        ),
        equity_multiple=equity_multiple,
        loan_schedule=loan_schedule,
        balloon_payment=balloon_payment,
        balloon_year=inputs.loan_term_years,
        total_origination_costs=total_origination_costs,
        all_in_cost=all_in_cost,
        loan_per_bed=loan_amount / inputs.beds,
        equity_per_bed=equity_required / inputs.beds,
    )


def compare_fixed_vs_variable(
    inputs: ConventionalFinancingInput,
    fixed_rate: float,
    index_rate: float,
    spread: float,
    rate_cap: Optional[float] = None,
    rate_floor: Optional[float] = None,
) -> FixedVsVariableComparison:
    """Run the same deal once at a fixed rate and once floating."""
    fixed = run_full_analysis(
        inputs.model_copy(update={"loan_type": "fixed", "interest_rate": fixed_rate})
    )
    variable = run_full_analysis(
        inputs.model_copy(
            update={
                "loan_type": "variable",
                "interest_rate": index_rate + spread,
                "index_rate": index_rate,
                "spread": spread,
                "rate_cap": rate_cap,
                "rate_floor": rate_floor,
            }
        )
    )
    return FixedVsVariableComparison(fixed=fixed, variable=variable)
