"""
IRR and NPV Calculations

Implements IRR using Newton-Raphson with a bisection fallback, matching
Excel's IRR() for periodic (annual) cash flows.
"""

import math
import logging
from typing import List, Optional
from pydantic import BaseModel

from deal_engine.config import get_settings
from deal_engine.exceptions import InvalidParameter

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 1000
TOLERANCE = 1e-7
DEFAULT_GUESS = 0.1
MIN_RATE = -0.99
MAX_RATE = 10.0
DEFAULT_SELLING_COSTS = 0.02


def calculate_npv(cash_flows: List[float], discount_rate: float) -> float:
    """
    Calculate NPV (Net Present Value) of cash flows.

    The discount factor is accumulated period by period, so long series at
    extreme rates give an infinite or NaN result instead of raising.

    Args:
        cash_flows: Array of cash flows (negative = outflow, positive = inflow)
        discount_rate: Annual discount rate (e.g., 0.10 for 10%)

    Returns:
        NPV value
    """
    if discount_rate <= -1:
        raise InvalidParameter("Discount rate must be greater than -100%")

    npv = 0.0
    factor = 1.0
    for cf in cash_flows:
        if cf:
            npv += cf * factor
        factor /= 1 + discount_rate
    return npv


def _npv_derivative(cash_flows: List[float], rate: float) -> float:
    """Calculate derivative of NPV with respect to rate (for Newton-Raphson)."""
    dnpv = 0.0
    factor = 1.0 / (1 + rate)
    for period, cf in enumerate(cash_flows):
        if cf:
            dnpv -= period * cf * factor
        factor /= 1 + rate
    return dnpv


def calculate_irr(cash_flows: List[float], guess: float = DEFAULT_GUESS) -> float:
    """
    Calculate IRR (Internal Rate of Return) using Newton-Raphson method.

    Each step is clamped to [-0.99, 10]. A vanishing derivative or a failure
    to converge within MAX_ITERATIONS hands over to bisection, so this never
    raises: the result is always a bounded estimate.

    Args:
        cash_flows: Array of periodic cash flows, index 0 = initial outlay
        guess: Initial guess for rate (default 0.1 = 10%)

    Returns:
        Periodic IRR as decimal (e.g., 0.15 for 15%); 0.0 when fewer than
        two cash flows are supplied.
    """
    if len(cash_flows) < 2:
        logger.debug("IRR undefined for %d cash flow(s); returning 0", len(cash_flows))
        return 0.0

    rate = max(MIN_RATE, min(MAX_RATE, guess))

    for _ in range(MAX_ITERATIONS):
        npv = calculate_npv(cash_flows, rate)
        if not math.isfinite(npv):
            break
        if abs(npv) < TOLERANCE:
            return rate

        dnpv = _npv_derivative(cash_flows, rate)
        if dnpv == 0 or not math.isfinite(dnpv):
            break

        new_rate = max(MIN_RATE, min(MAX_RATE, rate - npv / dnpv))

        if abs(new_rate - rate) < TOLERANCE:
            return new_rate

        rate = new_rate

    logger.debug("Newton-Raphson did not converge from guess %s; using bisection", guess)
    return calculate_irr_bisection(cash_flows)


def calculate_irr_bisection(cash_flows: List[float]) -> float:
    """
    Calculate IRR by bisection on [-0.99, 10].

    Guaranteed to converge for cash flows with a single sign change. For
    other series it still returns the midpoint of the final interval.
    An infinite NPV is bisected by its sign; NaN only occurs near -100%
    and raises the lower bound.
    """
    low = MIN_RATE
    high = MAX_RATE

    for _ in range(MAX_ITERATIONS):
        mid = (low + high) / 2
        npv = calculate_npv(cash_flows, mid)

        if abs(npv) < TOLERANCE:
            return mid

        if math.isnan(npv) or npv > 0:
            low = mid
        else:
            high = mid

        if high - low < TOLERANCE:
            return mid

    estimate = (low + high) / 2
    logger.warning("IRR bisection ended outside tolerance; estimate %.6f", estimate)
    return estimate


def calculate_mirr(
    cash_flows: List[float], finance_rate: float, reinvest_rate: float
) -> float:
    """
    Calculate Modified IRR.

    Outflows are discounted at the finance rate, inflows compounded to the
    final period at the reinvestment rate.
    """
    n = len(cash_flows) - 1
    if n <= 0:
        return 0.0

    pv_negative = 0.0
    fv_positive = 0.0

    for i, cf in enumerate(cash_flows):
        if cf < 0:
            pv_negative += cf / ((1 + finance_rate) ** i)
        else:
            fv_positive += cf * ((1 + reinvest_rate) ** (n - i))

    if pv_negative >= 0:
        return 0.0

    return (fv_positive / -pv_negative) ** (1 / n) - 1


def calculate_payback_period(cash_flows: List[float]) -> float:
    """
    Calculate payback period in periods.

    Interpolates linearly inside the period where cumulative cash flow turns
    non-negative. Returns len(cash_flows) when the investment is never
    recovered.
    """
    cumulative = 0.0

    for i, cf in enumerate(cash_flows):
        previous = cumulative
        cumulative += cf

        if i > 0 and cumulative >= 0 and cf > 0:
            return (i - 1) + (-previous / cf)

    return float(len(cash_flows))


def calculate_terminal_value(
    noi: float, exit_cap_rate: float, selling_cost_pct: float = DEFAULT_SELLING_COSTS
) -> float:
    """Calculate net terminal value from exit NOI and cap rate."""
    if exit_cap_rate <= 0:
        raise InvalidParameter("Exit cap rate must be greater than 0")
    return noi / exit_cap_rate * (1 - selling_cost_pct)


def calculate_multiple(cash_flows: List[float]) -> float:
    """
    Calculate equity multiple.

    Args:
        cash_flows: Array of cash flows (investments are negative)

    Returns:
        Multiple (e.g., 2.0 = 2.0x return); 0 when there is no investment
    """
    total_inflows = sum(cf for cf in cash_flows if cf > 0)
    total_outflows = abs(sum(cf for cf in cash_flows if cf < 0))

    if total_outflows == 0:
        return 0.0

    return total_inflows / total_outflows


def calculate_profit(cash_flows: List[float]) -> float:
    """Calculate profit (total inflows minus total outflows)."""
    return sum(cash_flows)


def calculate_profitability_index(npv: float, initial_investment: float) -> float:
    """PV of future flows per dollar invested."""
    if initial_investment <= 0:
        return 0.0
    return (npv + initial_investment) / initial_investment


class CashFlowItem(BaseModel):
    """One year of an investment's cash flows."""

    year: int
    operating_cash_flow: float = 0.0
    capital_expenditures: float = 0.0
    acquisition_cost: float = 0.0
    disposition_proceeds: float = 0.0
    net_cash_flow: Optional[float] = None


class IRRNPVInput(BaseModel):
    """Input for a full return analysis."""

    cash_flows: List[CashFlowItem]
    initial_investment: float
    discount_rate: Optional[float] = None
    exit_cap_rate: Optional[float] = None
    exit_year: Optional[int] = None
    noi: Optional[float] = None
    noi_growth_rate: Optional[float] = None


class IRRNPVResult(BaseModel):
    """Return metrics for a cash flow series."""

    irr: float
    npv: float
    discount_rate: float
    equity_multiple: float
    cash_on_cash: List[float]
    average_cash_on_cash: float
    payback_period: float
    exit_value: Optional[float] = None
    exit_year: Optional[int] = None
    total_distributions: float
    profitability_index: float
    cash_flows: List[CashFlowItem]


class SensitivityPoint(BaseModel):
    """Return metrics at one value of a flexed variable."""

    variable: str
    value: float
    irr: float
    npv: float
    equity_multiple: float


def _net_cash_flow(item: CashFlowItem) -> float:
    if item.net_cash_flow is not None:
        return item.net_cash_flow
    return (
        item.operating_cash_flow
        - item.capital_expenditures
        - item.acquisition_cost
        + item.disposition_proceeds
    )


def run_full_analysis(inputs: IRRNPVInput) -> IRRNPVResult:
    """
    Run a full IRR/NPV analysis.

    When exit cap rate, NOI and exit year are all supplied, a terminal value
    (NOI grown to the exit year, net of selling costs) is added to the exit
    year's cash flow. If the series has no year 0 entry the initial
    investment is prepended as an outflow.
    """
    settings = get_settings()
    discount_rate = (
        inputs.discount_rate
        if inputs.discount_rate is not None
        else settings.default_discount_rate
    )
    growth = (
        inputs.noi_growth_rate
        if inputs.noi_growth_rate is not None
        else settings.default_noi_growth_rate
    )

    items = [
        item.model_copy(update={"net_cash_flow": _net_cash_flow(item)})
        for item in sorted(inputs.cash_flows, key=lambda cf: cf.year)
    ]

    exit_value = None
    exit_year = None
    if inputs.exit_cap_rate and inputs.noi and inputs.exit_year:
        for i, item in enumerate(items):
            if item.year == inputs.exit_year:
                projected_noi = inputs.noi * (1 + growth) ** inputs.exit_year
                exit_value = calculate_terminal_value(projected_noi, inputs.exit_cap_rate)
                exit_year = item.year
                items[i] = item.model_copy(
                    update={
                        "disposition_proceeds": item.disposition_proceeds + exit_value,
                        "net_cash_flow": item.net_cash_flow + exit_value,
                    }
                )
                break

    flows = [item.net_cash_flow for item in items]
    if not any(item.year == 0 for item in items):
        flows.insert(0, -inputs.initial_investment)

    irr = calculate_irr(flows)
    npv = calculate_npv(flows, discount_rate)
    payback = calculate_payback_period(flows)

    operating_items = [item for item in items if item.year > 0]
    total_distributions = sum(item.net_cash_flow for item in operating_items)

    investment = inputs.initial_investment
    equity_multiple = total_distributions / investment if investment > 0 else 0.0
    cash_on_cash = [
        item.operating_cash_flow / investment if investment > 0 else 0.0
        for item in operating_items
    ]
    average_cash_on_cash = sum(cash_on_cash) / len(cash_on_cash) if cash_on_cash else 0.0

    if exit_value is None:
        exit_item = next((item for item in items if item.disposition_proceeds > 0), None)
        if exit_item:
            exit_value = exit_item.disposition_proceeds
            exit_year = exit_item.year

    return IRRNPVResult(
        irr=irr,
        npv=npv,
        discount_rate=discount_rate,
        equity_multiple=equity_multiple,
        cash_on_cash=cash_on_cash,
        average_cash_on_cash=average_cash_on_cash,
        payback_period=payback,
        exit_value=exit_value,
        exit_year=exit_year,
        total_distributions=total_distributions,
        profitability_index=calculate_profitability_index(npv, investment),
        cash_flows=items,
    )


def run_sensitivity_analysis(
    base_input: IRRNPVInput,
    exit_cap_rates: Optional[List[float]] = None,
    discount_rates: Optional[List[float]] = None,
    noi_growth_rates: Optional[List[float]] = None,
) -> List[SensitivityPoint]:
    """Flex exit cap rate, discount rate and NOI growth one at a time."""
    results = []
    variables = [
        ("exit_cap_rate", exit_cap_rates),
        ("discount_rate", discount_rates),
        ("noi_growth_rate", noi_growth_rates),
    ]

    for name, values in variables:
        for value in values or []:
            result = run_full_analysis(base_input.model_copy(update={name: value}))
            results.append(
                SensitivityPoint(
                    variable=name,
                    value=value,
                    irr=result.irr,
                    npv=result.npv,
                    equity_multiple=result.equity_multiple,
                )
            )

    return results


def calculate_required_exit_cap_rate(
    base_input: IRRNPVInput, target_irr: float
) -> float:
    """Bisect exit cap rate in [4%, 20%] until the analysis hits the target IRR."""
    low = 0.04
    high = 0.20

    for _ in range(100):
        mid = (low + high) / 2
        result = run_full_analysis(base_input.model_copy(update={"exit_cap_rate": mid}))

        if abs(result.irr - target_irr) < 0.0001:
            return mid

        # Higher cap rate means lower exit value and lower IRR
        if result.irr > target_irr:
            low = mid
        else:
            high = mid

    return (low + high) / 2
