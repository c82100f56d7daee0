"""
Sale-Leaseback Sensitivity Analysis

Sweeps cap rate, buyer yield, occupancy and rent escalation around a base
sale-leaseback deal.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional
import numpy as np
from pydantic import BaseModel

from deal_engine.exceptions import InvalidParameter
from deal_engine.models import AssetType
from deal_engine.calculations.sale_leaseback import (
    DEFAULT_CAP_RATES,
    SaleLeasebackInput,
    SaleLeasebackResult,
    calculate_annual_rent,
    calculate_coverage_ratio,
    calculate_purchase_price,
    calculate_rent_projections,
    check_coverage,
    resolve_min_coverage,
)

logger = logging.getLogger(__name__)

# Share of operating costs that move with revenue
VARIABLE_COST_RATIO = 0.7
DEFAULT_OCCUPANCY_CHANGES = [-0.10, -0.05, 0.0, 0.05, 0.10]


@dataclass
class SensitivityRange:
    """Inclusive sweep range."""

    min: float
    max: float
    step: float

    def values(self) -> List[float]:
        """
        Grid points from min to max inclusive.

        Built from a point count rather than by repeated addition so the
        endpoint is never lost to float drift.
        """
        if self.step <= 0:
            raise InvalidParameter("Sensitivity step must be greater than 0")
        if self.max < self.min:
            return []
        count = int(round((self.max - self.min) / self.step)) + 1
        grid = self.min + self.step * np.arange(count)
        return [float(v) for v in np.round(grid, 10) if v <= self.max + 1e-12]


@dataclass
class RentEscalationScenario:
    name: str
    escalation_rate: float
    lease_term_years: int


class CapRateSensitivityResult(BaseModel):
    cap_rate: float
    purchase_price: float
    annual_rent: float
    coverage_ratio: float
    coverage_pass_fail: bool
    operator_cash_flow_after_rent: float


class YieldSensitivityResult(BaseModel):
    yield_requirement: float
    annual_rent: float
    coverage_ratio: float
    coverage_pass_fail: bool
    operator_cash_flow_after_rent: float
    rent_per_bed: float


class OccupancySensitivityResult(BaseModel):
    occupancy_change: float
    adjusted_ebitdar: float
    coverage_ratio: float
    coverage_pass_fail: bool
    operator_cash_flow_after_rent: float


class TwoWaySensitivityCell(BaseModel):
    cap_rate: float
    yield_requirement: float
    coverage_ratio: float
    coverage_pass_fail: bool
    purchase_price: float
    annual_rent: float


class TwoWaySensitivityResult(BaseModel):
    cap_rates: List[float]
    yield_requirements: List[float]
    matrix: List[List[TwoWaySensitivityCell]]


class RentEscalationResult(BaseModel):
    scenario_name: str
    escalation_rate: float
    lease_term_years: int
    year1_rent: float
    year5_rent: float
    year10_rent: float
    total_rent_over_term: float
    average_annual_rent: float
    year1_coverage: float
    year5_coverage: float
    year10_coverage: float


def analyze_cap_rate_sensitivity(
    base_input: SaleLeasebackInput, cap_rate_range: SensitivityRange
) -> List[CapRateSensitivityResult]:
    """Reprice the deal at each cap rate, holding buyer yield fixed."""
    minimum = resolve_min_coverage(base_input)
    results = []

    for cap_rate in cap_rate_range.values():
        purchase_price = calculate_purchase_price(base_input.property_noi, cap_rate)
        annual_rent = calculate_annual_rent(purchase_price, base_input.buyer_yield_requirement)
        coverage = calculate_coverage_ratio(base_input.facility_ebitdar, annual_rent)
        results.append(
            CapRateSensitivityResult(
                cap_rate=cap_rate,
                purchase_price=purchase_price,
                annual_rent=annual_rent,
                coverage_ratio=coverage,
                coverage_pass_fail=check_coverage(coverage, minimum),
                operator_cash_flow_after_rent=base_input.facility_ebitdar - annual_rent,
            )
        )

    return results


def analyze_yield_sensitivity(
    base_input: SaleLeasebackInput,
    purchase_price: float,
    yield_range: SensitivityRange,
) -> List[YieldSensitivityResult]:
    """Vary buyer yield at a fixed purchase price."""
    minimum = resolve_min_coverage(base_input)
    results = []

    for yield_requirement in yield_range.values():
        annual_rent = calculate_annual_rent(purchase_price, yield_requirement)
        coverage = calculate_coverage_ratio(base_input.facility_ebitdar, annual_rent)
        results.append(
            YieldSensitivityResult(
                yield_requirement=yield_requirement,
                annual_rent=annual_rent,
                coverage_ratio=coverage,
                coverage_pass_fail=check_coverage(coverage, minimum),
                operator_cash_flow_after_rent=base_input.facility_ebitdar - annual_rent,
                rent_per_bed=annual_rent / base_input.beds,
            )
        )

    return results


def analyze_occupancy_sensitivity(
    base_input: SaleLeasebackInput,
    base_result: SaleLeasebackResult,
    occupancy_changes: Optional[List[float]] = None,
) -> List[OccupancySensitivityResult]:
    """
    Stress coverage for revenue swings driven by occupancy.

    Only the variable-cost share of the EBITDAR margin flows through:
    change in EBITDAR = change in revenue x EBITDAR margin x 0.70.
    """
    if occupancy_changes is None:
        occupancy_changes = DEFAULT_OCCUPANCY_CHANGES

    minimum = resolve_min_coverage(base_input)
    revenue = base_input.total_revenue
    ebitdar_margin = base_input.facility_ebitdar / revenue if revenue > 0 else 0.0
    if revenue <= 0:
        logger.debug("No revenue on base deal; occupancy changes leave EBITDAR flat")

    results = []
    for change in occupancy_changes:
        revenue_change = revenue * change
        adjusted_ebitdar = (
            base_input.facility_ebitdar + revenue_change * ebitdar_margin * VARIABLE_COST_RATIO
        )
        coverage = calculate_coverage_ratio(adjusted_ebitdar, base_result.annual_rent)
        results.append(
            OccupancySensitivityResult(
                occupancy_change=change,
                adjusted_ebitdar=adjusted_ebitdar,
                coverage_ratio=coverage,
                coverage_pass_fail=check_coverage(coverage, minimum),
                operator_cash_flow_after_rent=adjusted_ebitdar - base_result.annual_rent,
            )
        )

    return results


def analyze_two_way_sensitivity(
    base_input: SaleLeasebackInput,
    cap_rate_range: SensitivityRange,
    yield_range: SensitivityRange,
) -> TwoWaySensitivityResult:
    """Coverage matrix with cap rates as rows and buyer yields as columns."""
    cap_rates = cap_rate_range.values()
    yields = yield_range.values()
    if any(cap_rate <= 0 for cap_rate in cap_rates):
        raise InvalidParameter("Cap rate must be greater than 0")

    minimum = resolve_min_coverage(base_input)

    prices = base_input.property_noi / np.array(cap_rates)
    rents = np.outer(prices, np.array(yields))
    with np.errstate(divide="ignore", invalid="ignore"):
        coverage = np.where(rents > 0, base_input.facility_ebitdar / rents, 0.0)

    matrix = [
        [
            TwoWaySensitivityCell(
                cap_rate=cap_rate,
                yield_requirement=yield_requirement,
                coverage_ratio=float(coverage[i, j]),
                coverage_pass_fail=check_coverage(float(coverage[i, j]), minimum),
                purchase_price=float(prices[i]),
                annual_rent=float(rents[i, j]),
            )
            for j, yield_requirement in enumerate(yields)
        ]
        for i, cap_rate in enumerate(cap_rates)
    ]

    return TwoWaySensitivityResult(cap_rates=cap_rates, yield_requirements=yields, matrix=matrix)


def analyze_rent_escalation_scenarios(
    base_input: SaleLeasebackInput,
    base_result: SaleLeasebackResult,
    scenarios: Optional[List[RentEscalationScenario]] = None,
) -> List[RentEscalationResult]:
    """
    Project rent and coverage at years 1, 5 and 10 for each escalation scenario.

    EBITDAR is held flat, so later-year coverage is a stress case.
    """
    scenarios = scenarios or standard_escalation_scenarios()
    ebitdar = base_input.facility_ebitdar
    results = []

    for scenario in scenarios:
        projections = calculate_rent_projections(
            base_result.annual_rent, scenario.lease_term_years, scenario.escalation_rate
        )
        by_year = {p.year: p.annual_rent for p in projections}
        total = projections[-1].cumulative_rent if projections else 0.0

        year5_rent = by_year.get(5, 0.0)
        year10_rent = by_year.get(10, 0.0)

        results.append(
            RentEscalationResult(
                scenario_name=scenario.name,
                escalation_rate=scenario.escalation_rate,
                lease_term_years=scenario.lease_term_years,
                year1_rent=base_result.annual_rent,
                year5_rent=year5_rent,
                year10_rent=year10_rent,
                total_rent_over_term=total,
                average_annual_rent=(
                    total / scenario.lease_term_years if scenario.lease_term_years else 0.0
                ),
                year1_coverage=calculate_coverage_ratio(ebitdar, base_result.annual_rent),
                year5_coverage=calculate_coverage_ratio(ebitdar, year5_rent),
                year10_coverage=calculate_coverage_ratio(ebitdar, year10_rent),
            )
        )

    return results


def find_breakeven_cap_rate(
    property_noi: float,
    facility_ebitdar: float,
    buyer_yield_requirement: float,
    minimum_coverage_ratio: float,
) -> float:
    """Cap rate at which coverage lands exactly on the minimum."""
    if facility_ebitdar <= 0:
        raise InvalidParameter("EBITDAR must be greater than 0")
    return minimum_coverage_ratio * property_noi * buyer_yield_requirement / facility_ebitdar


def find_breakeven_yield(
    purchase_price: float, facility_ebitdar: float, minimum_coverage_ratio: float
) -> float:
    """Buyer yield at which coverage lands exactly on the minimum."""
    if purchase_price <= 0 or minimum_coverage_ratio <= 0:
        raise InvalidParameter("Purchase price and minimum coverage must be greater than 0")
    return facility_ebitdar / (purchase_price * minimum_coverage_ratio)


def default_ranges(asset_type: AssetType) -> Dict[str, object]:
    """
    Sweep ranges centered on the asset type's default cap rate.

    Cap rate +/-200 bps; yield from 100 bps below to 300 bps above the cap
    rate; both in 50 bps steps.
    """
    base = DEFAULT_CAP_RATES[asset_type]
    return {
        "cap_rate": SensitivityRange(min=base - 0.02, max=base + 0.02, step=0.005),
        "yield": SensitivityRange(min=base - 0.01, max=base + 0.03, step=0.005),
        "occupancy": list(DEFAULT_OCCUPANCY_CHANGES),
    }


def standard_escalation_scenarios() -> List[RentEscalationScenario]:
    return [
        RentEscalationScenario("Flat", 0.0, 15),
        RentEscalationScenario("CPI-Linked (2%)", 0.02, 15),
        RentEscalationScenario("Fixed 2.5%", 0.025, 15),
        RentEscalationScenario("Fixed 3%", 0.03, 15),
        RentEscalationScenario("Aggressive 3.5%", 0.035, 15),
    ]
