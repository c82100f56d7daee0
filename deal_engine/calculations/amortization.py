"""
Loan Amortization Calculations

Implements loan payment and amortization schedule calculations,
matching Excel's PMT, IPMT, and PPMT functions. Schedules are simulated
month by month so that per-year rate changes on variable loans are
captured exactly.
"""

import logging
from typing import List, Optional
from datetime import date
from dateutil.relativedelta import relativedelta

from deal_engine.config import get_settings
from deal_engine.exceptions import InvalidParameter
from deal_engine.models import LoanScheduleRow, MonthlyPaymentRow
from deal_engine.calculations.irr import calculate_irr

logger = logging.getLogger(__name__)


def calculate_payment(
    principal: float, annual_rate: float, amortization_months: int
) -> float:
    """
    Calculate monthly loan payment.

    Matches Excel's PMT() function.

    Args:
        principal: Loan principal amount
        annual_rate: Annual interest rate as decimal (e.g., 0.05 for 5%)
        amortization_months: Total amortization period in months

    Returns:
        Monthly payment amount (positive number)
    """
    if principal <= 0:
        return 0.0
    if amortization_months <= 0:
        return 0.0

    monthly_rate = annual_rate / 12

    if monthly_rate == 0:
        return principal / amortization_months

    payment = (
        principal
        * monthly_rate
        * ((1 + monthly_rate) ** amortization_months)
        / (((1 + monthly_rate) ** amortization_months) - 1)
    )

    return payment


def calculate_remaining_balance(
    principal: float,
    annual_rate: float,
    amortization_months: int,
    payments_completed: int,
) -> float:
    """Calculate remaining loan balance after N payments."""
    monthly_rate = annual_rate / 12
    payment = calculate_payment(principal, annual_rate, amortization_months)

    if monthly_rate == 0:
        return max(0.0, principal - payment * payments_completed)

    balance = principal * ((1 + monthly_rate) ** payments_completed) - payment * (
        ((1 + monthly_rate) ** payments_completed - 1) / monthly_rate
    )

    return max(0.0, balance)


def calculate_variable_rate_path(
    index_rate: float,
    spread: float,
    years: int,
    rate_cap: Optional[float] = None,
    rate_floor: Optional[float] = None,
    index_step: Optional[float] = None,
    index_path: Optional[List[float]] = None,
) -> List[float]:
    """
    Project the effective annual rate of a floating loan for each year.

    Effective rate = index + spread, clamped to [floor, cap]. Without an
    explicit index path the index drifts by ``index_step`` per year.
    """
    if index_step is None:
        index_step = get_settings().variable_index_step

    rates = []
    for year in range(years):
        if index_path:
            index = index_path[min(year, len(index_path) - 1)]
        else:
            index = index_rate + year * index_step

        rate = index + spread
        if rate_cap is not None:
            rate = min(rate, rate_cap)
        if rate_floor is not None:
            rate = max(rate, rate_floor)
        rates.append(rate)

    return rates


def _rate_for_period(rate_path: List[float], period: int) -> float:
    year_index = (period - 1) // 12
    return rate_path[min(year_index, len(rate_path) - 1)]


def generate_monthly_schedule(
    principal: float,
    rate_path: List[float],
    amortization_months: int,
    io_months: int = 0,
    total_months: int = 120,
    start_date: Optional[date] = None,
) -> List[MonthlyPaymentRow]:
    """
    Generate a month-by-month amortization schedule.

    Args:
        principal: Loan principal amount
        rate_path: Annual interest rate for each loan year; the last entry
            carries forward if the path is shorter than the term
        amortization_months: Amortization period in months
        io_months: Interest-only period in months
        total_months: Total loan term in months
        start_date: Date of first payment; rows are undated when omitted

    Returns:
        List of monthly rows
    """
    if not rate_path:
        raise InvalidParameter("Rate path must contain at least one rate")

    schedule = []
    balance = principal

    for period in range(1, total_months + 1):
        annual_rate = _rate_for_period(rate_path, period)
        monthly_rate = annual_rate / 12

        # Calculate interest for this period
        interest = balance * monthly_rate

        if period <= io_months:
            # Interest-only period
            principal_pmt = 0.0
            payment = interest
        else:
            # Re-amortize what is left over the remaining months at this period's rate
            remaining_amort_periods = amortization_months - (period - io_months - 1)
            if remaining_amort_periods > 0:
                payment = calculate_payment(balance, annual_rate, remaining_amort_periods)
                principal_pmt = min(payment - interest, balance)
                payment = principal_pmt + interest
            else:
                # Pay off remaining balance
                principal_pmt = balance
                payment = balance + interest

        ending_balance = max(0.0, balance - principal_pmt)

        schedule.append(
            MonthlyPaymentRow(
                period=period,
                period_date=(
                    start_date + relativedelta(months=period - 1) if start_date else None
                ),
                beginning_balance=balance,
                payment=payment,
                interest=interest,
                principal=principal_pmt,
                ending_balance=ending_balance,
                rate=annual_rate,
            )
        )

        balance = ending_balance

        # Stop if balance is paid off
        if balance == 0:
            break

    return schedule


def generate_loan_schedule(
    principal: float,
    annual_rate: float,
    amortization_years: int,
    loan_term_years: int,
    rate_path: Optional[List[float]] = None,
    start_date: Optional[date] = None,
) -> List[LoanScheduleRow]:
    """
    Generate a year-by-year loan schedule.

    Each year is the roll-up of its twelve monthly sub-periods, so a rate
    change at a year boundary re-amortizes the outstanding balance instead
    of being approximated annually.
    """
    rate_path = rate_path or [annual_rate] * max(loan_term_years, 1)
    monthly = generate_monthly_schedule(
        principal,
        rate_path,
        amortization_months=amortization_years * 12,
        total_months=loan_term_years * 12,
        start_date=start_date,
    )

    schedule = []
    for year in range(1, loan_term_years + 1):
        rows = monthly[(year - 1) * 12 : year * 12]
        if not rows:
            break
        schedule.append(
            LoanScheduleRow(
                year=year,
                period_date=rows[0].period_date,
                beginning_balance=rows[0].beginning_balance,
                payment=sum(row.payment for row in rows),
                principal=sum(row.principal for row in rows),
                interest=sum(row.interest for row in rows),
                ending_balance=rows[-1].ending_balance,
                rate=rows[0].rate,
            )
        )

    return schedule


def calculate_total_interest(schedule: List[MonthlyPaymentRow]) -> float:
    """Calculate total interest paid over loan term."""
    return sum(row.interest for row in schedule)


def calculate_debt_service(
    schedule: List[MonthlyPaymentRow], start_period: int, end_period: int
) -> float:
    """Calculate total debt service (P+I) for a range of periods."""
    return sum(
        row.payment
        for row in schedule
        if start_period <= row.period <= end_period
    )


def calculate_dscr(noi: float, debt_service: float) -> float:
    """
    Calculate Debt Service Coverage Ratio (DSCR).

    Args:
        noi: Net Operating Income for the period
        debt_service: Debt service for the period

    Returns:
        DSCR ratio; 0 when there is no debt service
    """
    if debt_service <= 0:
        return 0.0
    return noi / debt_service


def calculate_cash_on_cash(noi: float, debt_service: float, equity: float) -> float:
    """Year-one levered cash flow over equity invested."""
    if equity <= 0:
        return 0.0
    return (noi - debt_service) / equity


def calculate_loan_constant(
    principal: float, annual_rate: float, amortization_years: int
) -> float:
    """Calculate loan constant (annual debt service / loan amount)."""
    monthly_payment = calculate_payment(principal, annual_rate, amortization_years * 12)
    annual_debt_service = monthly_payment * 12
    return annual_debt_service / principal if principal > 0 else 0.0


def calculate_max_loan_by_dscr(
    noi: float, annual_rate: float, amortization_years: int, target_dscr: float
) -> float:
    """Largest principal whose debt service keeps DSCR at the target."""
    if target_dscr <= 0:
        raise InvalidParameter("Target DSCR must be greater than 0")
    if noi <= 0:
        return 0.0

    max_monthly_payment = noi / target_dscr / 12
    monthly_rate = annual_rate / 12
    num_payments = amortization_years * 12

    if monthly_rate == 0:
        return max_monthly_payment * num_payments

    return (
        max_monthly_payment
        * ((1 + monthly_rate) ** num_payments - 1)
        / (monthly_rate * (1 + monthly_rate) ** num_payments)
    )


def calculate_all_in_cost(
    loan_amount: float,
    annual_rate: float,
    origination_fee: float,
    closing_costs: float,
    amortization_years: int,
    loan_term_years: int,
) -> float:
    """
    Effective annual borrowing cost including fees.

    Solves for the monthly rate at which the net proceeds (loan less fees)
    equal the present value of the stated payments plus the balloon at
    maturity, then annualizes it.
    """
    if loan_amount <= 0 or loan_term_years <= 0:
        return 0.0

    net_proceeds = loan_amount - loan_amount * origination_fee - closing_costs
    amortization_months = amortization_years * 12
    term_months = loan_term_years * 12

    payment = calculate_payment(loan_amount, annual_rate, amortization_months)
    balloon = calculate_remaining_balance(
        loan_amount, annual_rate, amortization_months, term_months
    )

    flows = [-net_proceeds] + [payment] * term_months
    flows[-1] += balloon

    monthly_cost = calculate_irr(flows, guess=annual_rate / 12)
    logger.debug(
        "All-in cost %.6f for stated rate %.6f (fees %.2f)",
        monthly_cost * 12,
        annual_rate,
        loan_amount - net_proceeds,
    )
    return monthly_cost * 12
