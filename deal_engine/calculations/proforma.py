"""
Pro Forma Projections

Generates year-by-year operating projections for healthcare facilities.
Each year is derived only from the previous year's occupancy, revenue and
expense run-rates plus static growth assumptions.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Union
from pydantic import BaseModel, Field

from deal_engine.exceptions import InvalidParameter
from deal_engine.models import AssetType, FacilityMetrics
from deal_engine.calculations.amortization import generate_loan_schedule

logger = logging.getLogger(__name__)

DEFAULT_AGENCY_PERCENT = 0.15
DEFAULT_LABOR_COST_PERCENT = 0.55
DEFAULT_INTEREST_RATE = 0.07
DEFAULT_AMORTIZATION_YEARS = 25
DEFAULT_RENT_ESCALATION = 0.025


@dataclass
class GrowthAssumptions:
    """Annual operating growth assumptions."""

    revenue_growth: float
    occupancy_improvement: float  # absolute points per year
    target_occupancy: float
    rate_increases: float

    expense_growth: float
    labor_inflation: float
    agency_reduction: float  # absolute points per year
    target_agency_percent: float

    capex_per_bed: float = 1500.0
    capex_growth: float = 0.02
    management_fee_percent: float = 0.05


DEFAULT_GROWTH_ASSUMPTIONS: Dict[AssetType, GrowthAssumptions] = {
    AssetType.SNF: GrowthAssumptions(
        revenue_growth=0.025,
        occupancy_improvement=0.02,
        target_occupancy=0.92,
        rate_increases=0.03,
        expense_growth=0.03,
        labor_inflation=0.035,
        agency_reduction=0.05,
        target_agency_percent=0.05,
        capex_per_bed=1500,
        capex_growth=0.02,
        management_fee_percent=0.05,
    ),
    AssetType.ALF: GrowthAssumptions(
        revenue_growth=0.03,
        occupancy_improvement=0.025,
        target_occupancy=0.94,
        rate_increases=0.035,
        expense_growth=0.028,
        labor_inflation=0.03,
        agency_reduction=0.03,
        target_agency_percent=0.03,
        capex_per_bed=1200,
        capex_growth=0.02,
        management_fee_percent=0.05,
    ),
    AssetType.ILF: GrowthAssumptions(
        revenue_growth=0.035,
        occupancy_improvement=0.03,
        target_occupancy=0.95,
        rate_increases=0.04,
        expense_growth=0.025,
        labor_inflation=0.025,
        agency_reduction=0.02,
        target_agency_percent=0.02,
        capex_per_bed=1000,
        capex_growth=0.02,
        management_fee_percent=0.04,
    ),
}


@dataclass
class FinancingAssumptions:
    """Debt and lease obligations carried through the projection."""

    loan_amount: Optional[float] = None
    interest_rate: float = DEFAULT_INTEREST_RATE
    amortization_years: int = DEFAULT_AMORTIZATION_YEARS
    annual_rent: Optional[float] = None
    rent_escalation: float = DEFAULT_RENT_ESCALATION


class FacilityBaseData(BaseModel):
    """Starting operating position of a facility."""

    facility_id: str
    facility_name: str
    asset_type: AssetType = AssetType.SNF
    beds: int = Field(gt=0)
    current_occupancy: float = Field(ge=0, le=1.5)

    current_revenue: float = Field(ge=0)
    current_expenses: float = Field(ge=0)
    labor_cost_percent: float = DEFAULT_LABOR_COST_PERCENT
    agency_usage_percent: float = DEFAULT_AGENCY_PERCENT

    current_noi: float = 0.0
    current_ebitdar: float = 0.0

    @classmethod
    def from_metrics(cls, facility: FacilityMetrics) -> "FacilityBaseData":
        return cls(
            facility_id=facility.facility_id,
            facility_name=facility.name,
            asset_type=facility.asset_type,
            beds=facility.beds,
            current_occupancy=facility.occupancy,
            current_revenue=facility.revenue,
            current_expenses=facility.expenses,
            current_noi=facility.noi,
            current_ebitdar=facility.ebitdar,
        )


class ProFormaYear(BaseModel):
    year: int

    beds: int
    occupancy: float
    average_daily_census: float
    patient_days: float

    gross_revenue: float
    revenue_per_patient_day: float
    revenue_growth_rate: float

    total_expenses: float
    labor_costs: float
    agency_costs: float
    other_operating_expenses: float
    management_fee: float
    expense_growth_rate: float

    ebitda: float
    ebitda_margin: float
    ebitdar: float
    ebitdar_margin: float
    noi: float
    noi_margin: float

    revenue_per_bed: float
    expense_per_bed: float
    noi_per_bed: float
    ebitdar_per_bed: float

    rent_expense: float
    debt_service: float
    interest_expense: float
    principal_payment: float

    cash_flow_before_debt: float
    cash_flow_after_debt: float
    cash_flow_after_rent: float

    debt_service_coverage_ratio: float
    rent_coverage_ratio: float
    fixed_charge_coverage: float

    capital_expenditures: float
    free_cash_flow: float


class ProFormaResult(BaseModel):
    facility_id: str
    facility_name: str
    asset_type: AssetType

    hold_period: int
    total_revenue: float
    total_expenses: float
    total_noi: float
    total_ebitdar: float
    total_cash_flow: float

    revenue_cagr: float
    expense_cagr: float
    noi_cagr: float
    ebitdar_cagr: float

    year1_revenue: float
    final_year_revenue: float
    year1_noi: float
    final_year_noi: float
    year1_ebitdar: float
    final_year_ebitdar: float

    year_to_stabilization: Optional[int] = None
    stabilized_noi: float
    stabilized_ebitdar: float

    yearly_projections: List[ProFormaYear]
    growth: GrowthAssumptions
    financing: FinancingAssumptions


class PortfolioYearTotals(BaseModel):
    year: int
    total_revenue: float
    total_expenses: float
    total_noi: float
    total_ebitdar: float
    total_rent: float
    total_debt_service: float
    portfolio_cash_flow: float
    portfolio_dscr: float
    portfolio_rent_coverage: float


class PortfolioProFormaResult(BaseModel):
    facilities: List[ProFormaResult]
    total_beds: int
    hold_period: int
    portfolio_yearly_totals: List[PortfolioYearTotals]
    total_revenue: float
    total_noi: float
    total_ebitdar: float
    portfolio_revenue_cagr: float
    portfolio_noi_cagr: float


def calculate_cagr(start_value: float, end_value: float, periods: int) -> float:
    """Compound annual growth rate; 0 when undefined."""
    if start_value <= 0 or end_value < 0 or periods <= 0:
        return 0.0
    return (end_value / start_value) ** (1 / periods) - 1


def _margin(value: float, revenue: float) -> float:
    return value / revenue if revenue > 0 else 0.0


def generate_facility_proforma(
    facility: FacilityBaseData,
    growth: Optional[GrowthAssumptions] = None,
    financing: Optional[FinancingAssumptions] = None,
    hold_period: int = 10,
) -> ProFormaResult:
    """
    Project a facility's operations over the hold period.

    Per year:
    - occupancy steps toward target (never pulled down if already above it)
    - revenue grows by occupancy lift, base growth and half of rate increases
    - labor inflates while agency usage steps down to its floor
    - EBITDA is after rent, EBITDAR adds rent back, NOI is EBITDAR less
      the management fee
    """
    if hold_period <= 0:
        raise InvalidParameter("Hold period must be at least one year")

    growth = growth or DEFAULT_GROWTH_ASSUMPTIONS[facility.asset_type]
    financing = financing or FinancingAssumptions()

    occupancy = facility.current_occupancy
    revenue = facility.current_revenue
    expenses = facility.current_expenses
    agency_percent = facility.agency_usage_percent
    labor_share = facility.labor_cost_percent
    beds = facility.beds

    loan_rows = []
    if financing.loan_amount:
        loan_rows = generate_loan_schedule(
            financing.loan_amount,
            financing.interest_rate,
            financing.amortization_years,
            min(hold_period, financing.amortization_years),
        )

    year_to_stabilization = None
    projections = []

    for year in range(1, hold_period + 1):
        # Occupancy
        if occupancy < growth.target_occupancy:
            new_occupancy = min(
                occupancy + growth.occupancy_improvement, growth.target_occupancy
            )
        else:
            new_occupancy = occupancy
        if year_to_stabilization is None and new_occupancy >= growth.target_occupancy:
            year_to_stabilization = year

        occupancy_gain = new_occupancy - occupancy
        occupancy_lift = occupancy_gain * revenue / occupancy if occupancy > 0 else 0.0
        occupancy = new_occupancy

        census = beds * occupancy
        patient_days = census * 365

        # Revenue
        new_revenue = (
            revenue
            + occupancy_lift
            + revenue * growth.revenue_growth
            + revenue * growth.rate_increases * 0.5
        )
        revenue_growth_rate = (new_revenue - revenue) / revenue if revenue > 0 else 0.0
        revenue = new_revenue

        # Expenses
        labor = expenses * labor_share
        new_agency_percent = max(
            agency_percent - growth.agency_reduction, growth.target_agency_percent
        )
        agency_savings = labor * (agency_percent - new_agency_percent)
        agency_percent = new_agency_percent

        new_labor = labor * (1 + growth.labor_inflation) - agency_savings
        new_other = expenses * (1 - labor_share) * (1 + growth.expense_growth)
        new_expenses = new_labor + new_other
        expense_growth_rate = (new_expenses - expenses) / expenses if expenses > 0 else 0.0
        expenses = new_expenses

        management_fee = revenue * growth.management_fee_percent

        rent = (
            financing.annual_rent * (1 + financing.rent_escalation) ** (year - 1)
            if financing.annual_rent
            else 0.0
        )

        ebitda = revenue - expenses - rent
        ebitdar = ebitda + rent
        noi = ebitdar - management_fee

        # Financing
        loan_row = loan_rows[year - 1] if year <= len(loan_rows) else None
        debt_service = loan_row.payment if loan_row else 0.0
        interest = loan_row.interest if loan_row else 0.0
        principal = loan_row.principal if loan_row else 0.0

        fixed_charges = debt_service + rent
        capex = growth.capex_per_bed * beds * (1 + growth.capex_growth) ** (year - 1)

        projections.append(
            ProFormaYear(
                year=year,
                beds=beds,
                occupancy=occupancy,
                average_daily_census=census,
                patient_days=patient_days,
                gross_revenue=revenue,
                revenue_per_patient_day=revenue / patient_days if patient_days > 0 else 0.0,
                revenue_growth_rate=revenue_growth_rate,
                total_expenses=expenses,
                labor_costs=new_labor,
                agency_costs=new_labor * agency_percent,
                other_operating_expenses=new_other,
                management_fee=management_fee,
                expense_growth_rate=expense_growth_rate,
                ebitda=ebitda,
                ebitda_margin=_margin(ebitda, revenue),
                ebitdar=ebitdar,
                ebitdar_margin=_margin(ebitdar, revenue),
                noi=noi,
                noi_margin=_margin(noi, revenue),
                revenue_per_bed=revenue / beds,
                expense_per_bed=expenses / beds,
                noi_per_bed=noi / beds,
                ebitdar_per_bed=ebitdar / beds,
                rent_expense=rent,
                debt_service=debt_service,
                interest_expense=interest,
                principal_payment=principal,
                cash_flow_before_debt=noi,
                cash_flow_after_debt=noi - debt_service,
                cash_flow_after_rent=ebitdar - rent,
                debt_service_coverage_ratio=noi / debt_service if debt_service > 0 else 0.0,
                rent_coverage_ratio=ebitdar / rent if rent > 0 else 0.0,
                fixed_charge_coverage=ebitdar / fixed_charges if fixed_charges > 0 else 0.0,
                capital_expenditures=capex,
                free_cash_flow=noi - debt_service - rent - capex,
            )
        )

    year1 = projections[0]
    final = projections[-1]
    stabilized = projections[year_to_stabilization - 1] if year_to_stabilization else final
    periods = hold_period - 1

    logger.debug(
        "Pro forma %s: %d years, stabilizes in year %s",
        facility.facility_id,
        hold_period,
        year_to_stabilization,
    )

    return ProFormaResult(
        facility_id=facility.facility_id,
        facility_name=facility.facility_name,
        asset_type=facility.asset_type,
        hold_period=hold_period,
        total_revenue=sum(p.gross_revenue for p in projections),
        total_expenses=sum(p.total_expenses for p in projections),
        total_noi=sum(p.noi for p in projections),
        total_ebitdar=sum(p.ebitdar for p in projections),
        total_cash_flow=sum(p.free_cash_flow for p in projections),
        revenue_cagr=calculate_cagr(year1.gross_revenue, final.gross_revenue, periods),
        expense_cagr=calculate_cagr(year1.total_expenses, final.total_expenses, periods),
        noi_cagr=calculate_cagr(year1.noi, final.noi, periods),
        ebitdar_cagr=calculate_cagr(year1.ebitdar, final.ebitdar, periods),
        year1_revenue=year1.gross_revenue,
        final_year_revenue=final.gross_revenue,
        year1_noi=year1.noi,
        final_year_noi=final.noi,
        year1_ebitdar=year1.ebitdar,
        final_year_ebitdar=final.ebitdar,
        year_to_stabilization=year_to_stabilization,
        stabilized_noi=stabilized.noi,
        stabilized_ebitdar=stabilized.ebitdar,
        yearly_projections=projections,
        growth=growth,
        financing=financing,
    )


def generate_portfolio_proforma(
    facilities: List[FacilityBaseData],
    growth: Union[GrowthAssumptions, Dict[str, GrowthAssumptions], None] = None,
    financing: Optional[FinancingAssumptions] = None,
    hold_period: int = 10,
) -> PortfolioProFormaResult:
    """
    Project each facility and total the portfolio year by year.

    ``growth`` may be one set of assumptions for every facility or a mapping
    by facility_id; anything unmapped uses its asset type's defaults.
    """
    if not facilities:
        raise InvalidParameter("Portfolio pro forma requires at least one facility")

    def assumptions_for(facility: FacilityBaseData) -> GrowthAssumptions:
        if isinstance(growth, GrowthAssumptions):
            return growth
        if growth and facility.facility_id in growth:
            return growth[facility.facility_id]
        return DEFAULT_GROWTH_ASSUMPTIONS[facility.asset_type]

    results = [
        generate_facility_proforma(f, assumptions_for(f), financing, hold_period)
        for f in facilities
    ]

    totals = []
    for index in range(hold_period):
        years = [r.yearly_projections[index] for r in results]
        noi = sum(y.noi for y in years)
        ebitdar = sum(y.ebitdar for y in years)
        rent = sum(y.rent_expense for y in years)
        debt_service = sum(y.debt_service for y in years)
        totals.append(
            PortfolioYearTotals(
                year=index + 1,
                total_revenue=sum(y.gross_revenue for y in years),
                total_expenses=sum(y.total_expenses for y in years),
                total_noi=noi,
                total_ebitdar=ebitdar,
                total_rent=rent,
                total_debt_service=debt_service,
                portfolio_cash_flow=sum(y.free_cash_flow for y in years),
                portfolio_dscr=noi / debt_service if debt_service > 0 else 0.0,
                portfolio_rent_coverage=ebitdar / rent if rent > 0 else 0.0,
            )
        )

    first, last = totals[0], totals[-1]
    return PortfolioProFormaResult(
        facilities=results,
        total_beds=sum(f.beds for f in facilities),
        hold_period=hold_period,
        portfolio_yearly_totals=totals,
        total_revenue=sum(t.total_revenue for t in totals),
        total_noi=sum(t.total_noi for t in totals),
        total_ebitdar=sum(t.total_ebitdar for t in totals),
        portfolio_revenue_cagr=calculate_cagr(
            first.total_revenue, last.total_revenue, hold_period - 1
        ),
        portfolio_noi_cagr=calculate_cagr(first.total_noi, last.total_noi, hold_period - 1),
    )
