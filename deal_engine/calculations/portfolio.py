"""
Sale-Leaseback Portfolio Analysis

Portfolio-level roll-ups for multi-facility sale-leasebacks: facility
contributions, asset-type and geographic mix, concentration and the
all-or-nothing decision for a master lease.
"""

import math
import logging
from typing import Dict, List, Literal
from pydantic import BaseModel, Field

from deal_engine.exceptions import InvalidParameter
from deal_engine.models import AssetType, FacilityMetrics
from deal_engine.calculations.sale_leaseback import (
    FacilitySaleLeasebackInput,
    PortfolioSaleLeasebackResult,
    default_cap_rate,
    run_portfolio_analysis,
)

logger = logging.getLogger(__name__)

RecommendedAction = Literal["proceed", "negotiate", "exclude_weak", "pass"]


class PortfolioAnalysisInput(BaseModel):
    """A master-lease portfolio and the buyer's terms."""

    facilities: List[FacilityMetrics]
    buyer_yield_requirement: float
    minimum_coverage_ratio: float = 1.40
    lease_term_years: int = 15
    rent_escalation: float = 0.025
    # Per-facility cap rate overrides keyed by facility_id
    cap_rates: Dict[str, float] = Field(default_factory=dict)


class FacilityContribution(BaseModel):
    facility_id: str
    facility_name: str
    asset_type: AssetType
    beds: int
    percent_of_total_beds: float
    purchase_price: float
    percent_of_total_purchase_price: float
    annual_rent: float
    percent_of_total_rent: float
    ebitdar: float
    percent_of_total_ebitdar: float
    individual_coverage_ratio: float
    individual_coverage_pass_fail: bool
    operator_cash_flow: float


class AssetTypeBreakdown(BaseModel):
    asset_type: AssetType
    facility_count: int
    total_beds: int
    total_purchase_price: float
    total_annual_rent: float
    total_ebitdar: float
    blended_coverage_ratio: float
    average_cap_rate: float


class GeographicBreakdown(BaseModel):
    state: str
    facility_count: int
    total_beds: int
    total_purchase_price: float
    percent_of_portfolio: float


class PortfolioDetailedResult(PortfolioSaleLeasebackResult):
    facility_contributions: List[FacilityContribution]
    asset_type_breakdown: List[AssetTypeBreakdown]
    geographic_breakdown: List[GeographicBreakdown]
    blended_cap_rate: float
    implied_portfolio_yield: float
    largest_facility_concentration: float
    diversification_score: int


class WorstFacility(BaseModel):
    facility_id: str
    facility_name: str
    coverage_ratio: float
    is_dealkiller: bool


class FacilityAtRisk(BaseModel):
    facility_id: str
    facility_name: str
    coverage_ratio: float
    coverage_gap: float


class AllOrNothingAnalysis(BaseModel):
    worst_facility: WorstFacility
    facilities_at_risk: List[FacilityAtRisk]
    portfolio_drag_effect: float
    recommended_action: RecommendedAction
    recommendation: str


class OptimalComposition(BaseModel):
    included_facilities: List[str]
    excluded_facilities: List[str]
    result: PortfolioDetailedResult


def _facility_inputs(inputs: PortfolioAnalysisInput) -> List[FacilitySaleLeasebackInput]:
    return [
        FacilitySaleLeasebackInput(
            facility_id=facility.facility_id,
            facility_name=facility.name,
            state=facility.state,
            property_noi=facility.noi,
            cap_rate=inputs.cap_rates.get(
                facility.facility_id, default_cap_rate(facility.asset_type)
            ),
            buyer_yield_requirement=inputs.buyer_yield_requirement,
            facility_ebitdar=facility.ebitdar,
            minimum_coverage_ratio=inputs.minimum_coverage_ratio,
            lease_term_years=inputs.lease_term_years,
            rent_escalation=inputs.rent_escalation,
            beds=facility.beds,
            total_revenue=facility.revenue,
            asset_type=facility.asset_type,
        )
        for facility in inputs.facilities
    ]


def analyze_portfolio(inputs: PortfolioAnalysisInput) -> PortfolioDetailedResult:
    """Run the base roll-up and add contribution, mix and concentration metrics."""
    if not inputs.facilities:
        raise InvalidParameter("Portfolio analysis requires at least one facility")

    base = run_portfolio_analysis(_facility_inputs(inputs), inputs.minimum_coverage_ratio)

    contributions = calculate_facility_contributions(
        inputs.facilities, base, inputs.minimum_coverage_ratio
    )
    geographic = calculate_geographic_breakdown(inputs.facilities, base)
    total_noi = sum(f.noi for f in inputs.facilities)

    return PortfolioDetailedResult(
        **base.model_dump(),
        facility_contributions=contributions,
        asset_type_breakdown=calculate_asset_type_breakdown(inputs.facilities, base),
        geographic_breakdown=geographic,
        blended_cap_rate=(
            total_noi / base.total_purchase_price if base.total_purchase_price > 0 else 0.0
        ),
        implied_portfolio_yield=(
            base.total_annual_rent / base.total_purchase_price
            if base.total_purchase_price > 0
            else 0.0
        ),
        largest_facility_concentration=calculate_largest_concentration(base),
        diversification_score=calculate_diversification_score(
            inputs.facilities, base, geographic
        ),
    )


def calculate_facility_contributions(
    facilities: List[FacilityMetrics],
    base: PortfolioSaleLeasebackResult,
    minimum_coverage_ratio: float,
) -> List[FacilityContribution]:
    def share(part: float, total: float) -> float:
        return part / total if total > 0 else 0.0

    results = {r.facility_id: r for r in base.facility_results}
    contributions = []

    for facility in facilities:
        result = results[facility.facility_id]
        contributions.append(
            FacilityContribution(
                facility_id=facility.facility_id,
                facility_name=facility.name,
                asset_type=facility.asset_type,
                beds=facility.beds,
                percent_of_total_beds=share(facility.beds, base.total_beds),
                purchase_price=result.purchase_price,
                percent_of_total_purchase_price=share(
                    result.purchase_price, base.total_purchase_price
                ),
                annual_rent=result.annual_rent,
                percent_of_total_rent=share(result.annual_rent, base.total_annual_rent),
                ebitdar=facility.ebitdar,
                percent_of_total_ebitdar=share(facility.ebitdar, base.total_ebitdar),
                individual_coverage_ratio=result.coverage_ratio,
                individual_coverage_pass_fail=result.coverage_ratio >= minimum_coverage_ratio,
                operator_cash_flow=result.operator_cash_flow_after_rent,
            )
        )

    return contributions


def calculate_asset_type_breakdown(
    facilities: List[FacilityMetrics], base: PortfolioSaleLeasebackResult
) -> List[AssetTypeBreakdown]:
    results = {r.facility_id: r for r in base.facility_results}
    breakdown = []

    for asset_type in AssetType:
        group = [f for f in facilities if f.asset_type == asset_type]
        if not group:
            continue

        total_price = sum(results[f.facility_id].purchase_price for f in group)
        total_rent = sum(results[f.facility_id].annual_rent for f in group)
        total_ebitdar = sum(f.ebitdar for f in group)
        total_noi = sum(f.noi for f in group)

        breakdown.append(
            AssetTypeBreakdown(
                asset_type=asset_type,
                facility_count=len(group),
                total_beds=sum(f.beds for f in group),
                total_purchase_price=total_price,
                total_annual_rent=total_rent,
                total_ebitdar=total_ebitdar,
                blended_coverage_ratio=total_ebitdar / total_rent if total_rent > 0 else 0.0,
                average_cap_rate=total_noi / total_price if total_price > 0 else 0.0,
            )
        )

    return breakdown


def calculate_geographic_breakdown(
    facilities: List[FacilityMetrics], base: PortfolioSaleLeasebackResult
) -> List[GeographicBreakdown]:
    """Per-state totals, largest purchase price first. Missing state is 'Unknown'."""
    results = {r.facility_id: r for r in base.facility_results}
    states: Dict[str, Dict[str, float]] = {}

    for facility in facilities:
        totals = states.setdefault(
            facility.state or "Unknown", {"count": 0, "beds": 0, "price": 0.0}
        )
        totals["count"] += 1
        totals["beds"] += facility.beds
        totals["price"] += results[facility.facility_id].purchase_price

    total_price = base.total_purchase_price
    breakdown = [
        GeographicBreakdown(
            state=state,
            facility_count=int(totals["count"]),
            total_beds=int(totals["beds"]),
            total_purchase_price=totals["price"],
            percent_of_portfolio=totals["price"] / total_price if total_price > 0 else 0.0,
        )
        for state, totals in states.items()
    ]
    return sorted(breakdown, key=lambda g: g.total_purchase_price, reverse=True)


def calculate_largest_concentration(base: PortfolioSaleLeasebackResult) -> float:
    """Share of total purchase price held by the single largest facility."""
    if not base.facility_results or base.total_purchase_price == 0:
        return 0.0
    largest = max(r.purchase_price for r in base.facility_results)
    return largest / base.total_purchase_price


def calculate_diversification_score(
    facilities: List[FacilityMetrics],
    base: PortfolioSaleLeasebackResult,
    geographic: List[GeographicBreakdown],
) -> int:
    """
    Score portfolio diversification from 0 to 100.

    Up to 25 points each for facility count, geographic spread, asset-type
    mix and size distribution.
    """
    count_score = min(len(facilities) * 5, 25)

    max_state_share = max((g.percent_of_portfolio for g in geographic), default=1.0)
    geo_score = min(len(geographic) * 5, 15) + (1 - max_state_share) * 10

    asset_type_score = min(len({f.asset_type for f in facilities}) * 8, 25)

    size_score = (1 - calculate_largest_concentration(base)) * 25

    return int(math.floor(count_score + geo_score + asset_type_score + size_score + 0.5))


def analyze_all_or_nothing(
    result: PortfolioDetailedResult, minimum_coverage_ratio: float
) -> AllOrNothingAnalysis:
    """
    Decide whether an all-or-nothing master lease is viable.

    Drag effect is the coverage of the passing facilities alone minus the
    portfolio coverage.
    """
    by_ratio = sorted(result.facility_results, key=lambda r: r.coverage_ratio)
    worst = by_ratio[0]

    at_risk = [
        FacilityAtRisk(
            facility_id=r.facility_id,
            facility_name=r.facility_name,
            coverage_ratio=r.coverage_ratio,
            coverage_gap=minimum_coverage_ratio - r.coverage_ratio,
        )
        for r in by_ratio
        if r.coverage_ratio < minimum_coverage_ratio
    ]

    ebitdar_by_id = {c.facility_id: c.ebitdar for c in result.facility_contributions}
    strong = [r for r in result.facility_results if r.coverage_ratio >= minimum_coverage_ratio]
    strong_ebitdar = sum(ebitdar_by_id.get(r.facility_id, 0.0) for r in strong)
    strong_rent = sum(r.annual_rent for r in strong)
    strong_coverage = strong_ebitdar / strong_rent if strong_rent > 0 else 0.0
    drag_effect = strong_coverage - result.portfolio_coverage_ratio

    passes = result.portfolio_coverage_pass_fail
    failing = len(at_risk)

    if passes and failing == 0:
        action = "proceed"
        recommendation = "All facilities meet coverage requirements. Deal structure is viable."
    elif passes:
        action = "negotiate"
        recommendation = (
            f"Portfolio coverage meets minimum, but {failing} individual facility(ies) "
            "fall below. Consider negotiating a lower cap rate on weak facilities or "
            "operational improvements."
        )
    elif failing <= 1:
        action = "exclude_weak"
        recommendation = (
            f"Portfolio fails coverage due to one weak facility. Consider excluding "
            f"{worst.facility_name} to improve deal viability."
        )
    else:
        action = "pass"
        recommendation = (
            f"Portfolio coverage of {result.portfolio_coverage_ratio:.2f}x is below the "
            f"{minimum_coverage_ratio:.2f}x minimum. Deal structure needs significant "
            "restructuring."
        )

    logger.debug("All-or-nothing: %s with %d facilities below minimum", action, failing)

    return AllOrNothingAnalysis(
        worst_facility=WorstFacility(
            facility_id=worst.facility_id,
            facility_name=worst.facility_name,
            coverage_ratio=worst.coverage_ratio,
            is_dealkiller=not passes and failing == 1,
        ),
        facilities_at_risk=at_risk,
        portfolio_drag_effect=drag_effect,
        recommended_action=action,
        recommendation=recommendation,
    )


def calculate_exclusion_scenario(
    inputs: PortfolioAnalysisInput, exclude_facility_ids: List[str]
) -> PortfolioDetailedResult:
    """Re-run the portfolio without the given facilities."""
    excluded = set(exclude_facility_ids)
    remaining = [f for f in inputs.facilities if f.facility_id not in excluded]
    return analyze_portfolio(inputs.model_copy(update={"facilities": remaining}))


def find_optimal_portfolio_composition(inputs: PortfolioAnalysisInput) -> OptimalComposition:
    """Drop the weakest facility until portfolio coverage passes or one remains."""
    current = inputs
    excluded: List[str] = []
    result = analyze_portfolio(current)

    while not result.portfolio_coverage_pass_fail and len(current.facilities) > 1:
        worst_id = min(result.facility_results, key=lambda r: r.coverage_ratio).facility_id
        excluded.append(worst_id)
        current = current.model_copy(
            update={"facilities": [f for f in current.facilities if f.facility_id != worst_id]}
        )
        result = analyze_portfolio(current)

    return OptimalComposition(
        included_facilities=[f.facility_id for f in current.facilities],
        excluded_facilities=excluded,
        result=result,
    )
