"""
Sale-Leaseback Calculations

Core identities of a sale-leaseback:
- Purchase Price = Property NOI / Cap Rate
- Annual Rent = Purchase Price x Buyer Yield Requirement
- Coverage Ratio = Facility EBITDAR / Annual Rent
- Operator Cash Flow = EBITDAR - Rent
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field

from deal_engine.config import get_settings
from deal_engine.exceptions import InvalidParameter
from deal_engine.models import AssetType, FacilityMetrics

logger = logging.getLogger(__name__)


DEFAULT_CAP_RATES: Dict[AssetType, float] = {
    AssetType.SNF: 0.125,
    AssetType.ALF: 0.09,
    AssetType.ILF: 0.085,
}

DEFAULT_MIN_COVERAGE_RATIOS: Dict[AssetType, float] = {
    AssetType.SNF: 1.40,
    AssetType.ALF: 1.35,
    AssetType.ILF: 1.30,
}

DEFAULT_PORTFOLIO_MIN_COVERAGE = 1.40

# Share of EBITDAR assumed to reach NOI when NOI is not reported
NOI_FROM_EBITDAR = 0.95
RANGE_FACTOR = 0.15
MAX_RENT_COVERAGES = (1.40, 1.25, 1.10)

CoverageStatus = Literal["healthy", "warning", "critical"]


class SaleLeasebackInput(BaseModel):
    """Deal terms for a single facility sale-leaseback."""

    property_noi: float
    cap_rate: float
    buyer_yield_requirement: float
    facility_ebitdar: float
    minimum_coverage_ratio: Optional[float] = None
    lease_term_years: int = 15
    rent_escalation: float = 0.025
    beds: int = Field(gt=0)
    total_revenue: float = 0.0
    asset_type: AssetType = AssetType.SNF


class FacilitySaleLeasebackInput(SaleLeasebackInput):
    facility_id: str
    facility_name: str
    state: Optional[str] = None


class SaleLeasebackResult(BaseModel):
    purchase_price: float
    annual_rent: float
    monthly_rent: float
    coverage_ratio: float
    coverage_pass_fail: bool
    minimum_coverage_ratio: float
    operator_cash_flow_after_rent: float
    effective_rent_per_bed: float
    rent_as_percent_of_revenue: float
    implied_yield_on_cost: float
    spread_over_cap_rate: float


class FacilitySaleLeasebackResult(SaleLeasebackResult):
    facility_id: str
    facility_name: str
    beds: int


class PortfolioSaleLeasebackResult(BaseModel):
    total_purchase_price: float
    total_annual_rent: float
    total_monthly_rent: float
    portfolio_coverage_ratio: float
    portfolio_coverage_pass_fail: bool
    total_operator_cash_flow_after_rent: float
    weighted_avg_rent_per_bed: float
    weighted_avg_rent_as_percent_of_revenue: float
    total_beds: int
    total_ebitdar: float
    total_revenue: float
    facility_results: List[FacilitySaleLeasebackResult]
    facilities_passing_coverage: int
    facilities_failing_coverage: int


class RentProjection(BaseModel):
    year: int
    annual_rent: float
    cumulative_rent: float


def calculate_purchase_price(noi: float, cap_rate: float) -> float:
    """Calculate purchase price using the cap rate method (NOI / cap rate)."""
    if cap_rate <= 0:
        raise InvalidParameter("Cap rate must be greater than 0")
    return noi / cap_rate


def calculate_annual_rent(purchase_price: float, yield_requirement: float) -> float:
    """Calculate annual rent from the buyer's yield requirement."""
    return purchase_price * yield_requirement


def calculate_coverage_ratio(ebitdar: float, annual_rent: float) -> float:
    """
    Calculate EBITDAR rent coverage.

    Returns 0 when there is no rent obligation.
    """
    if annual_rent <= 0:
        return 0.0
    return ebitdar / annual_rent


def check_coverage(coverage_ratio: float, minimum_coverage: float) -> bool:
    """Coverage passes when it meets or exceeds the minimum."""
    return coverage_ratio >= minimum_coverage


def calculate_operator_cash_flow(ebitdar: float, annual_rent: float) -> float:
    return ebitdar - annual_rent


def calculate_rent_per_bed(annual_rent: float, beds: int) -> float:
    if beds <= 0:
        return 0.0
    return annual_rent / beds


def calculate_rent_as_percent_of_revenue(annual_rent: float, total_revenue: float) -> float:
    if total_revenue <= 0:
        return 0.0
    return annual_rent / total_revenue


def calculate_implied_yield(purchase_price: float, annual_rent: float) -> float:
    """Yield on cost the buyer actually receives."""
    if purchase_price <= 0:
        return 0.0
    return annual_rent / purchase_price


def calculate_implied_cap_rate(purchase_price: float, noi: float) -> float:
    if purchase_price <= 0:
        return 0.0
    return noi / purchase_price


def default_cap_rate(asset_type: AssetType) -> float:
    return DEFAULT_CAP_RATES[asset_type]


def default_min_coverage(asset_type: AssetType) -> float:
    return DEFAULT_MIN_COVERAGE_RATIOS[asset_type]


def resolve_min_coverage(inputs: SaleLeasebackInput) -> float:
    """Explicit minimum coverage, else the asset type's requirement."""
    if inputs.minimum_coverage_ratio is not None:
        return inputs.minimum_coverage_ratio
    return default_min_coverage(inputs.asset_type)


def run_full_analysis(inputs: SaleLeasebackInput) -> SaleLeasebackResult:
    """Run full sale-leaseback analysis for a single facility."""
    minimum_coverage = resolve_min_coverage(inputs)

    purchase_price = calculate_purchase_price(inputs.property_noi, inputs.cap_rate)
    annual_rent = calculate_annual_rent(purchase_price, inputs.buyer_yield_requirement)
    coverage_ratio = calculate_coverage_ratio(inputs.facility_ebitdar, annual_rent)

    return SaleLeasebackResult(
        purchase_price=purchase_price,
        annual_rent=annual_rent,
        monthly_rent=annual_rent / 12,
        coverage_ratio=coverage_ratio,
        coverage_pass_fail=check_coverage(coverage_ratio, minimum_coverage),
        minimum_coverage_ratio=minimum_coverage,
        operator_cash_flow_after_rent=calculate_operator_cash_flow(
            inputs.facility_ebitdar, annual_rent
        ),
        effective_rent_per_bed=calculate_rent_per_bed(annual_rent, inputs.beds),
        rent_as_percent_of_revenue=calculate_rent_as_percent_of_revenue(
            annual_rent, inputs.total_revenue
        ),
        implied_yield_on_cost=calculate_implied_yield(purchase_price, annual_rent),
        spread_over_cap_rate=inputs.buyer_yield_requirement - inputs.cap_rate,
    )


def facility_input_from_metrics(
    facility: FacilityMetrics,
    cap_rate: Optional[float] = None,
    buyer_yield_requirement: Optional[float] = None,
    minimum_coverage_ratio: Optional[float] = None,
    lease_term_years: int = 15,
    rent_escalation: float = 0.025,
) -> FacilitySaleLeasebackInput:
    """Build sale-leaseback terms for a facility snapshot, filling asset-type defaults."""
    settings = get_settings()
    return FacilitySaleLeasebackInput(
        facility_id=facility.facility_id,
        facility_name=facility.name,
        state=facility.state,
        property_noi=facility.noi,
        cap_rate=cap_rate if cap_rate is not None else default_cap_rate(facility.asset_type),
        buyer_yield_requirement=(
            buyer_yield_requirement
            if buyer_yield_requirement is not None
            else settings.default_slb_yield
        ),
        facility_ebitdar=facility.ebitdar,
        minimum_coverage_ratio=minimum_coverage_ratio,
        lease_term_years=lease_term_years,
        rent_escalation=rent_escalation,
        beds=facility.beds,
        total_revenue=facility.revenue,
        asset_type=facility.asset_type,
    )


def run_portfolio_analysis(
    facilities: List[FacilitySaleLeasebackInput],
    portfolio_min_coverage: Optional[float] = None,
) -> PortfolioSaleLeasebackResult:
    """
    Run sale-leaseback analysis across multiple facilities.

    Portfolio coverage is total EBITDAR over total rent, not an average of
    facility ratios.
    """
    if not facilities:
        raise InvalidParameter("Portfolio analysis requires at least one facility")

    facility_results = []
    total_purchase_price = 0.0
    total_annual_rent = 0.0
    total_ebitdar = 0.0
    total_revenue = 0.0
    total_beds = 0
    passing = 0

    for facility in facilities:
        result = run_full_analysis(facility)
        facility_results.append(
            FacilitySaleLeasebackResult(
                **result.model_dump(),
                facility_id=facility.facility_id,
                facility_name=facility.facility_name,
                beds=facility.beds,
            )
        )

        total_purchase_price += result.purchase_price
        total_annual_rent += result.annual_rent
        total_ebitdar += facility.facility_ebitdar
        total_revenue += facility.total_revenue
        total_beds += facility.beds
        if result.coverage_pass_fail:
            passing += 1

    portfolio_coverage = calculate_coverage_ratio(total_ebitdar, total_annual_rent)
    minimum = (
        portfolio_min_coverage
        if portfolio_min_coverage is not None
        else DEFAULT_PORTFOLIO_MIN_COVERAGE
    )

    return PortfolioSaleLeasebackResult(
        total_purchase_price=total_purchase_price,
        total_annual_rent=total_annual_rent,
        total_monthly_rent=total_annual_rent / 12,
        portfolio_coverage_ratio=portfolio_coverage,
        portfolio_coverage_pass_fail=check_coverage(portfolio_coverage, minimum),
        total_operator_cash_flow_after_rent=total_ebitdar - total_annual_rent,
        weighted_avg_rent_per_bed=total_annual_rent / total_beds if total_beds > 0 else 0.0,
        weighted_avg_rent_as_percent_of_revenue=(
            total_annual_rent / total_revenue if total_revenue > 0 else 0.0
        ),
        total_beds=total_beds,
        total_ebitdar=total_ebitdar,
        total_revenue=total_revenue,
        facility_results=facility_results,
        facilities_passing_coverage=passing,
        facilities_failing_coverage=len(facilities) - passing,
    )


def calculate_rent_projections(
    initial_annual_rent: float, lease_term_years: int, annual_escalation: float
) -> List[RentProjection]:
    """Project escalating rent over the lease term."""
    projections = []
    cumulative = 0.0
    rent = initial_annual_rent

    for year in range(1, lease_term_years + 1):
        if year > 1:
            rent *= 1 + annual_escalation
        cumulative += rent
        projections.append(RentProjection(year=year, annual_rent=rent, cumulative_rent=cumulative))

    return projections


def calculate_present_value_of_lease(
    initial_annual_rent: float,
    lease_term_years: int,
    annual_escalation: float,
    discount_rate: float,
) -> float:
    """Present value of escalating end-of-year rent payments."""
    present_value = 0.0
    rent = initial_annual_rent

    for year in range(1, lease_term_years + 1):
        if year > 1:
            rent *= 1 + annual_escalation
        present_value += rent / (1 + discount_rate) ** year

    return present_value


def calculate_max_purchase_price(
    ebitdar: float, buyer_yield_requirement: float, minimum_coverage_ratio: float
) -> float:
    """Largest price whose rent still meets the coverage minimum."""
    if buyer_yield_requirement <= 0 or minimum_coverage_ratio <= 0:
        raise InvalidParameter("Yield and minimum coverage must be greater than 0")
    max_rent = ebitdar / minimum_coverage_ratio
    return max_rent / buyer_yield_requirement


def calculate_required_ebitdar(
    purchase_price: float, buyer_yield_requirement: float, minimum_coverage_ratio: float
) -> float:
    """EBITDAR needed to support the rent on a given price."""
    return purchase_price * buyer_yield_requirement * minimum_coverage_ratio


# Coverage-first rent suggestions


@dataclass
class RentAssumptions:
    """Market assumptions for rent suggestions."""

    cap_rate: float = 0.075
    yield_rate: float = 0.085
    min_coverage_ratio: float = 1.40
    warning_coverage_ratio: float = 1.25

    @classmethod
    def from_settings(cls) -> "RentAssumptions":
        settings = get_settings()
        return cls(
            cap_rate=settings.default_slb_cap_rate,
            yield_rate=settings.default_slb_yield,
            min_coverage_ratio=settings.default_min_coverage,
            warning_coverage_ratio=settings.warning_coverage,
        )


class ValueRange(BaseModel):
    low: float
    mid: float
    high: float


class RentSuggestion(BaseModel):
    """Suggested price and rent for one facility."""

    facility_id: str
    facility_name: str
    beds: int
    state: Optional[str] = None

    ttm_revenue: float
    ttm_ebitdar: float
    ttm_noi: float

    suggested_purchase_price: float
    suggested_annual_rent: float
    suggested_monthly_rent: float
    purchase_price_range: ValueRange
    annual_rent_range: ValueRange

    coverage_ratio: float
    coverage_status: CoverageStatus

    max_rent_at_140_coverage: float
    max_rent_at_125_coverage: float
    max_rent_at_110_coverage: float

    price_per_bed: float
    rent_per_bed: float
    noi_per_bed: float
    ebitdar_per_bed: float


class PortfolioRentSuggestion(BaseModel):
    facilities: List[RentSuggestion]

    total_beds: int
    total_revenue: float
    total_ebitdar: float
    total_noi: float
    total_purchase_price: float
    total_annual_rent: float
    total_monthly_rent: float
    purchase_price_range: ValueRange
    annual_rent_range: ValueRange

    weighted_cap_rate: float
    weighted_yield: float
    weighted_coverage_ratio: float
    portfolio_coverage_status: CoverageStatus

    avg_price_per_bed: float
    avg_rent_per_bed: float
    avg_noi_per_bed: float

    healthy_count: int
    warning_count: int
    critical_count: int


def calculate_rent_from_coverage(ebitdar: float, target_coverage: float = 1.40) -> float:
    """Annual rent that produces exactly the target coverage."""
    if target_coverage <= 0:
        raise InvalidParameter("Target coverage must be greater than 0")
    return ebitdar / target_coverage


def coverage_status(
    coverage_ratio: float, assumptions: Optional[RentAssumptions] = None
) -> CoverageStatus:
    assumptions = assumptions or RentAssumptions.from_settings()
    if coverage_ratio >= assumptions.min_coverage_ratio:
        return "healthy"
    if coverage_ratio >= assumptions.warning_coverage_ratio:
        return "warning"
    return "critical"


def _value_range(mid: float) -> ValueRange:
    return ValueRange(low=mid * (1 - RANGE_FACTOR), mid=mid, high=mid * (1 + RANGE_FACTOR))


def suggest_facility_rent(
    facility: FacilityMetrics, assumptions: Optional[RentAssumptions] = None
) -> RentSuggestion:
    """
    Suggest purchase price and rent for a facility.

    If NOI is not reported it is estimated as 95% of EBITDAR.
    """
    assumptions = assumptions or RentAssumptions.from_settings()

    noi = facility.noi if facility.noi > 0 else facility.ebitdar * NOI_FROM_EBITDAR
    purchase_price = calculate_purchase_price(noi, assumptions.cap_rate)
    annual_rent = calculate_annual_rent(purchase_price, assumptions.yield_rate)
    coverage = calculate_coverage_ratio(facility.ebitdar, annual_rent)
    beds = facility.beds

    max_140, max_125, max_110 = (
        facility.ebitdar / target for target in MAX_RENT_COVERAGES
    )

    return RentSuggestion(
        facility_id=facility.facility_id,
        facility_name=facility.name,
        beds=beds,
        state=facility.state,
        ttm_revenue=facility.revenue,
        ttm_ebitdar=facility.ebitdar,
        ttm_noi=noi,
        suggested_purchase_price=purchase_price,
        suggested_annual_rent=annual_rent,
        suggested_monthly_rent=annual_rent / 12,
        purchase_price_range=_value_range(purchase_price),
        annual_rent_range=_value_range(annual_rent),
        coverage_ratio=coverage,
        coverage_status=coverage_status(coverage, assumptions),
        max_rent_at_140_coverage=max_140,
        max_rent_at_125_coverage=max_125,
        max_rent_at_110_coverage=max_110,
        price_per_bed=purchase_price / beds,
        rent_per_bed=annual_rent / beds,
        noi_per_bed=noi / beds,
        ebitdar_per_bed=facility.ebitdar / beds,
    )


def suggest_portfolio_rent(
    facilities: List[FacilityMetrics], assumptions: Optional[RentAssumptions] = None
) -> PortfolioRentSuggestion:
    """Aggregate rent suggestions across a portfolio."""
    if not facilities:
        raise InvalidParameter("Rent suggestions require at least one facility")

    assumptions = assumptions or RentAssumptions.from_settings()
    suggestions = [suggest_facility_rent(f, assumptions) for f in facilities]

    total_beds = sum(s.beds for s in suggestions)
    total_noi = sum(s.ttm_noi for s in suggestions)
    total_ebitdar = sum(s.ttm_ebitdar for s in suggestions)
    total_price = sum(s.suggested_purchase_price for s in suggestions)
    total_rent = sum(s.suggested_annual_rent for s in suggestions)

    weighted_coverage = total_ebitdar / total_rent if total_rent > 0 else 0.0
    statuses = [s.coverage_status for s in suggestions]

    return PortfolioRentSuggestion(
        facilities=suggestions,
        total_beds=total_beds,
        total_revenue=sum(s.ttm_revenue for s in suggestions),
        total_ebitdar=total_ebitdar,
        total_noi=total_noi,
        total_purchase_price=total_price,
        total_annual_rent=total_rent,
        total_monthly_rent=total_rent / 12,
        purchase_price_range=ValueRange(
            low=sum(s.purchase_price_range.low for s in suggestions),
            mid=total_price,
            high=sum(s.purchase_price_range.high for s in suggestions),
        ),
        annual_rent_range=ValueRange(
            low=sum(s.annual_rent_range.low for s in suggestions),
            mid=total_rent,
            high=sum(s.annual_rent_range.high for s in suggestions),
        ),
        weighted_cap_rate=total_noi / total_price if total_price > 0 else assumptions.cap_rate,
        weighted_yield=total_rent / total_price if total_price > 0 else assumptions.yield_rate,
        weighted_coverage_ratio=weighted_coverage,
        portfolio_coverage_status=coverage_status(weighted_coverage, assumptions),
        avg_price_per_bed=total_price / total_beds,
        avg_rent_per_bed=total_rent / total_beds,
        avg_noi_per_bed=total_noi / total_beds,
        healthy_count=statuses.count("healthy"),
        warning_count=statuses.count("warning"),
        critical_count=statuses.count("critical"),
    )
