"""
Lease Buyout Calculations

Models acquiring lease rights from an operator. The buyout amount is
allocated across facilities and amortized as additional rent, so the
question is whether facility EBITDAR still covers the higher rent.
"""

import math
import logging
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field

from deal_engine.config import get_settings
from deal_engine.exceptions import InvalidParameter
from deal_engine.models import AssetType
from deal_engine.calculations.irr import calculate_npv

logger = logging.getLogger(__name__)

DEFAULT_BUYOUT_INTEREST_RATE = 0.08
DEFAULT_EBITDAR_GROWTH = 0.02
REMAINING_LEASE_DISCOUNT_RATE = 0.08
BUYOUT_NPV_DISCOUNT_RATE = 0.10

MINIMUM_COVERAGE_RATIOS: Dict[AssetType, float] = {
    AssetType.SNF: 1.40,
    AssetType.ALF: 1.30,
    AssetType.ILF: 1.25,
}

AllocationMethod = Literal["rent", "ebitdar", "beds", "equal"]


class ExistingLeaseTerms(BaseModel):
    current_annual_rent: float = Field(ge=0)
    remaining_years: int = Field(gt=0)
    annual_escalation: float = 0.025


class LeaseAcquisition(BaseModel):
    """A facility whose lease rights are being bought out."""

    facility_id: str
    facility_name: str
    asset_type: AssetType = AssetType.SNF
    beds: int = Field(gt=0)
    existing_lease: ExistingLeaseTerms
    facility_ebitdar: float
    facility_revenue: float = 0.0


class LeaseBuyoutInput(BaseModel):
    facilities: List[LeaseAcquisition]
    buyout_amount: float = Field(ge=0)
    allocation_method: AllocationMethod = "rent"

    amortization_years: Optional[int] = None
    buyout_interest_rate: Optional[float] = None
    ebitdar_growth: Optional[float] = None

    new_base_rent: Optional[float] = None
    new_escalation: Optional[float] = None

    minimum_coverage_ratio: Optional[float] = None


class BuyoutAmortizationRow(BaseModel):
    year: int
    buyout_amortization: float
    base_rent: float
    total_rent: float
    facility_ebitdar: float
    coverage_ratio: float
    operator_cash_flow: float


class FacilityBuyoutAnalysis(BaseModel):
    facility_id: str
    facility_name: str
    asset_type: AssetType
    beds: int

    existing_annual_rent: float
    remaining_lease_value: float

    allocated_buyout_amount: float
    buyout_per_bed: float

    new_base_rent: float
    buyout_amortization_per_year: float
    total_new_annual_rent: float
    rent_increase: float
    rent_increase_percent: float

    existing_coverage_ratio: float
    new_coverage_ratio: float
    coverage_impact: float

    amortization_schedule: List[BuyoutAmortizationRow]


class LeaseBuyoutResult(BaseModel):
    total_buyout_amount: float
    total_facilities: int
    total_beds: int
    amortization_years: int

    total_existing_annual_rent: float
    total_remaining_lease_value: float

    total_new_base_rent: float
    total_buyout_amortization: float
    total_new_annual_rent: float
    portfolio_rent_increase: float
    portfolio_rent_increase_percent: float

    portfolio_existing_coverage: float
    portfolio_new_coverage: float
    coverage_pass_fail: bool
    minimum_coverage_required: float

    buyout_multiple: float
    payback_years: float
    npv_of_buyout: float

    facility_analyses: List[FacilityBuyoutAnalysis]
    year_by_year_projection: List[BuyoutAmortizationRow]


def calculate_remaining_lease_value(
    current_rent: float,
    remaining_years: int,
    escalation: float,
    discount_rate: float = REMAINING_LEASE_DISCOUNT_RATE,
) -> float:
    """Present value of the rent left on the existing lease."""
    value = 0.0
    rent = current_rent

    for year in range(1, remaining_years + 1):
        value += rent / (1 + discount_rate) ** year
        rent *= 1 + escalation

    return value


def calculate_buyout_amortization(
    buyout_amount: float, years: int, interest_rate: float = DEFAULT_BUYOUT_INTEREST_RATE
) -> float:
    """Level annual payment that amortizes the buyout over ``years``."""
    if years <= 0:
        raise InvalidParameter("Amortization years must be greater than 0")
    if interest_rate == 0:
        return buyout_amount / years

    growth = (1 + interest_rate) ** years
    return buyout_amount * interest_rate * growth / (growth - 1)


def allocate_buyout_amount(
    total_buyout: float,
    facilities: List[LeaseAcquisition],
    method: AllocationMethod = "rent",
) -> Dict[str, float]:
    """
    Split the buyout across facilities in proportion to the chosen basis.

    A zero basis total falls back to an equal split.
    """
    if not facilities:
        raise InvalidParameter("Buyout allocation requires at least one facility")

    basis = {
        "rent": lambda f: f.existing_lease.current_annual_rent,
        "ebitdar": lambda f: f.facility_ebitdar,
        "beds": lambda f: float(f.beds),
        "equal": lambda f: 1.0,
    }[method]

    weights = {f.facility_id: basis(f) for f in facilities}
    total = sum(weights.values())

    if total <= 0:
        logger.debug("Zero %s basis for buyout allocation; splitting equally", method)
        return {f.facility_id: total_buyout / len(facilities) for f in facilities}

    return {fid: total_buyout * weight / total for fid, weight in weights.items()}


def generate_amortization_schedule(
    base_rent: float,
    buyout_amortization: float,
    facility_ebitdar: float,
    years: int,
    rent_escalation: float,
    ebitdar_growth: float = DEFAULT_EBITDAR_GROWTH,
) -> List[BuyoutAmortizationRow]:
    """Year-by-year rent and coverage with escalating base rent and growing EBITDAR."""
    schedule = []
    rent = base_rent
    ebitdar = facility_ebitdar

    for year in range(1, years + 1):
        total_rent = rent + buyout_amortization
        schedule.append(
            BuyoutAmortizationRow(
                year=year,
                buyout_amortization=buyout_amortization,
                base_rent=rent,
                total_rent=total_rent,
                facility_ebitdar=ebitdar,
                coverage_ratio=ebitdar / total_rent if total_rent > 0 else 0.0,
                operator_cash_flow=ebitdar - total_rent,
            )
        )
        rent *= 1 + rent_escalation
        ebitdar *= 1 + ebitdar_growth

    return schedule


def analyze_facility(
    facility: LeaseAcquisition,
    allocated_buyout: float,
    amortization_years: int,
    buyout_interest_rate: float = DEFAULT_BUYOUT_INTEREST_RATE,
    new_base_rent: Optional[float] = None,
    new_escalation: Optional[float] = None,
    ebitdar_growth: float = DEFAULT_EBITDAR_GROWTH,
) -> FacilityBuyoutAnalysis:
    lease = facility.existing_lease
    existing_rent = lease.current_annual_rent

    amortization = calculate_buyout_amortization(
        allocated_buyout, amortization_years, buyout_interest_rate
    )
    base_rent = new_base_rent if new_base_rent is not None else existing_rent
    escalation = new_escalation if new_escalation is not None else lease.annual_escalation
    total_new_rent = base_rent + amortization
    rent_increase = total_new_rent - existing_rent

    existing_coverage = facility.facility_ebitdar / existing_rent if existing_rent > 0 else 0.0
    new_coverage = facility.facility_ebitdar / total_new_rent if total_new_rent > 0 else 0.0

    return FacilityBuyoutAnalysis(
        facility_id=facility.facility_id,
        facility_name=facility.facility_name,
        asset_type=facility.asset_type,
        beds=facility.beds,
        existing_annual_rent=existing_rent,
        remaining_lease_value=calculate_remaining_lease_value(
            existing_rent, lease.remaining_years, lease.annual_escalation
        ),
        allocated_buyout_amount=allocated_buyout,
        buyout_per_bed=allocated_buyout / facility.beds,
        new_base_rent=base_rent,
        buyout_amortization_per_year=amortization,
        total_new_annual_rent=total_new_rent,
        rent_increase=rent_increase,
        rent_increase_percent=rent_increase / existing_rent if existing_rent > 0 else 0.0,
        existing_coverage_ratio=existing_coverage,
        new_coverage_ratio=new_coverage,
        coverage_impact=new_coverage - existing_coverage,
        amortization_schedule=generate_amortization_schedule(
            base_rent,
            amortization,
            facility.facility_ebitdar,
            amortization_years,
            escalation,
            ebitdar_growth,
        ),
    )


def resolve_amortization_years(
    facilities: List[LeaseAcquisition], amortization_years: Optional[int] = None
) -> int:
    """Lesser of the requested term and the average remaining lease term (rounded up)."""
    average_remaining = sum(f.existing_lease.remaining_years for f in facilities) / len(
        facilities
    )
    remaining_term = math.ceil(average_remaining)
    if amortization_years is None:
        return remaining_term
    return max(1, min(amortization_years, remaining_term))


def _sum_rows(year: int, rows: List[BuyoutAmortizationRow]) -> BuyoutAmortizationRow:
    total_rent = sum(r.total_rent for r in rows)
    ebitdar = sum(r.facility_ebitdar for r in rows)
    return BuyoutAmortizationRow(
        year=year,
        buyout_amortization=sum(r.buyout_amortization for r in rows),
        base_rent=sum(r.base_rent for r in rows),
        total_rent=total_rent,
        facility_ebitdar=ebitdar,
        coverage_ratio=ebitdar / total_rent if total_rent > 0 else 0.0,
        operator_cash_flow=sum(r.operator_cash_flow for r in rows),
    )


def run_full_analysis(inputs: LeaseBuyoutInput) -> LeaseBuyoutResult:
    """
    Run full lease buyout analysis.

    Without an explicit minimum, coverage is tested against the most
    restrictive asset-type requirement in the portfolio.
    """
    facilities = inputs.facilities
    if not facilities:
        raise InvalidParameter("Lease buyout analysis requires at least one facility")

    settings = get_settings()
    rate = (
        inputs.buyout_interest_rate
        if inputs.buyout_interest_rate is not None
        else settings.buyout_interest_rate
    )
    growth = (
        inputs.ebitdar_growth if inputs.ebitdar_growth is not None else settings.ebitdar_growth_rate
    )
    years = resolve_amortization_years(facilities, inputs.amortization_years)

    allocation = allocate_buyout_amount(inputs.buyout_amount, facilities, inputs.allocation_method)
    analyses = [
        analyze_facility(
            facility,
            allocation[facility.facility_id],
            years,
            rate,
            inputs.new_base_rent,
            inputs.new_escalation,
            growth,
        )
        for facility in facilities
    ]

    total_existing_rent = sum(a.existing_annual_rent for a in analyses)
    total_new_rent = sum(a.total_new_annual_rent for a in analyses)
    total_amortization = sum(a.buyout_amortization_per_year for a in analyses)
    total_ebitdar = sum(f.facility_ebitdar for f in facilities)
    rent_increase = total_new_rent - total_existing_rent

    existing_coverage = total_ebitdar / total_existing_rent if total_existing_rent > 0 else 0.0
    new_coverage = total_ebitdar / total_new_rent if total_new_rent > 0 else 0.0

    minimum = (
        inputs.minimum_coverage_ratio
        if inputs.minimum_coverage_ratio is not None
        else max(MINIMUM_COVERAGE_RATIOS[f.asset_type] for f in facilities)
    )

    # Buyer's view: PV of the amortization stream it will collect
    npv_of_buyout = calculate_npv([0.0] + [total_amortization] * years, BUYOUT_NPV_DISCOUNT_RATE)

    projection = [
        _sum_rows(year, [a.amortization_schedule[year - 1] for a in analyses])
        for year in range(1, years + 1)
    ]

    logger.debug(
        "Lease buyout %.2f over %d years: coverage %.3f -> %.3f (minimum %.2f)",
        inputs.buyout_amount,
        years,
        existing_coverage,
        new_coverage,
        minimum,
    )

    return LeaseBuyoutResult(
        total_buyout_amount=inputs.buyout_amount,
        total_facilities=len(facilities),
        total_beds=sum(f.beds for f in facilities),
        amortization_years=years,
        total_existing_annual_rent=total_existing_rent,
        total_remaining_lease_value=sum(a.remaining_lease_value for a in analyses),
        total_new_base_rent=sum(a.new_base_rent for a in analyses),
        total_buyout_amortization=total_amortization,
        total_new_annual_rent=total_new_rent,
        portfolio_rent_increase=rent_increase,
        portfolio_rent_increase_percent=(
            rent_increase / total_existing_rent if total_existing_rent > 0 else 0.0
        ),
        portfolio_existing_coverage=existing_coverage,
        portfolio_new_coverage=new_coverage,
        coverage_pass_fail=new_coverage >= minimum,
        minimum_coverage_required=minimum,
        buyout_multiple=inputs.buyout_amount / rent_increase if rent_increase > 0 else 0.0,
        payback_years=(
            inputs.buyout_amount / total_amortization if total_amortization > 0 else 0.0
        ),
        npv_of_buyout=npv_of_buyout,
        facility_analyses=analyses,
        year_by_year_projection=projection,
    )


def calculate_max_buyout_for_coverage(
    facilities: List[LeaseAcquisition],
    target_coverage: float,
    amortization_years: int,
    buyout_interest_rate: float = DEFAULT_BUYOUT_INTEREST_RATE,
) -> float:
    """
    Largest buyout whose amortization keeps portfolio coverage at the target.

    Returns 0 when existing rent already uses up the coverage headroom.
    """
    if target_coverage <= 0:
        raise InvalidParameter("Target coverage must be greater than 0")
    if amortization_years <= 0:
        raise InvalidParameter("Amortization years must be greater than 0")

    total_ebitdar = sum(f.facility_ebitdar for f in facilities)
    total_existing_rent = sum(f.existing_lease.current_annual_rent for f in facilities)
    headroom = total_ebitdar / target_coverage - total_existing_rent

    if headroom <= 0:
        return 0.0

    r = buyout_interest_rate
    n = amortization_years
    if r == 0:
        return headroom * n

    return headroom * ((1 + r) ** n - 1) / (r * (1 + r) ** n)
