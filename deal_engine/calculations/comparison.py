"""
Deal Structure Comparison

Runs the same deal through each acquisition/financing structure, builds
comparable cash-flow series (outlay at period 0, operating cash flow net of
the structure's debt or rent cost, terminal proceeds in the final period),
ranks the structures and recommends one.
"""

import logging
from typing import Annotated, Dict, List, Literal, Optional, Tuple, Union
from pydantic import BaseModel, Field

from deal_engine.config import get_settings
from deal_engine.exceptions import InvalidParameter
from deal_engine.models import AssetType, FacilityMetrics
from deal_engine.calculations.irr import (
    calculate_irr,
    calculate_npv,
    calculate_terminal_value,
)
from deal_engine.calculations import conventional, lease_buyout, sale_leaseback
from deal_engine.calculations.proforma import (
    FacilityBaseData,
    GrowthAssumptions,
    PortfolioProFormaResult,
    generate_portfolio_proforma,
)

logger = logging.getLogger(__name__)

DealStructure = Literal[
    "purchase_cash",
    "conventional_financing",
    "sale_leaseback",
    "reit_leaseback",
    "lease_buyout",
]

# Risk scores, 1-10 scale
CASH_RISK_SCORE = 2
CONVENTIONAL_RISK_SCORES = ((1.40, 4), (1.25, 6))
CONVENTIONAL_RISK_FLOOR = 8
LEASEBACK_RISK_SCORES = ((1.50, 3), (1.30, 5))
LEASEBACK_RISK_FLOOR = 7
BUYOUT_RISK_SCORES = ((1.50, 4), (1.30, 6))
BUYOUT_RISK_FLOOR = 8

DEFAULT_OCCUPANCY = 0.85


class CashPurchaseTerms(BaseModel):
    enabled: bool = True


class ConventionalTerms(BaseModel):
    enabled: bool = True
    ltv: float = Field(default=0.70, ge=0, le=1)
    interest_rate: float = 0.07
    amortization_years: int = 25
    loan_term_years: int = 10
    loan_type: Literal["fixed", "variable"] = "fixed"
    index_rate: Optional[float] = None
    spread: Optional[float] = None


class LeasebackTerms(BaseModel):
    enabled: bool = True
    cap_rate: float
    buyer_yield_requirement: float
    lease_term_years: int = 15
    rent_escalation: float = 0.025
    minimum_coverage_ratio: Optional[float] = None


class ReitLeasebackTerms(LeasebackTerms):
    master_lease: bool = False
    reit_name: Optional[str] = None


class LeaseBuyoutTerms(BaseModel):
    enabled: bool = True
    buyout_amount: float = Field(gt=0)
    # Falls back to the facilities' current rent
    existing_rent: Optional[float] = None
    remaining_lease_years: int = Field(gt=0)
    existing_escalation: float = 0.025


class DealComparisonInput(BaseModel):
    facilities: List[FacilityMetrics]
    purchase_price: float = Field(gt=0)
    closing_costs: float = 0.0

    cash_purchase: CashPurchaseTerms = Field(default_factory=CashPurchaseTerms)
    conventional_financing: Optional[ConventionalTerms] = None
    sale_leaseback: Optional[LeasebackTerms] = None
    reit_leaseback: Optional[ReitLeasebackTerms] = None
    lease_buyout: Optional[LeaseBuyoutTerms] = None

    hold_period_years: int = Field(default=10, gt=0)
    discount_rate: Optional[float] = None
    exit_cap_rate: Optional[float] = None
    noi_growth_rate: Optional[float] = None
    selling_costs: Optional[float] = None

    # When set, operating NOI/EBITDAR come from the portfolio pro forma
    growth_assumptions: Optional[Union[GrowthAssumptions, Dict[str, GrowthAssumptions]]] = None


class StructureAnalysisBase(BaseModel):
    structure_name: str

    equity_required: float
    debt_amount: float
    total_capitalization: float

    irr: float
    equity_multiple: float
    cash_on_cash: float
    npv: float

    dscr: float
    rent_coverage: float
    coverage_pass_fail: bool

    year1_cash_flow: float
    avg_annual_cash_flow: float
    total_cash_flow: float
    cash_flows: List[float]

    exit_value: float
    net_exit_proceeds: float

    break_even_occupancy: float
    risk_score: int

    pros: List[str]
    cons: List[str]


class CashPurchaseAnalysis(StructureAnalysisBase):
    structure: Literal["purchase_cash"] = "purchase_cash"


class ConventionalAnalysis(StructureAnalysisBase):
    structure: Literal["conventional_financing"] = "conventional_financing"
    financing: conventional.ConventionalFinancingResult


class SaleLeasebackAnalysis(StructureAnalysisBase):
    structure: Literal["sale_leaseback"] = "sale_leaseback"
    leaseback: sale_leaseback.SaleLeasebackResult


class ReitLeasebackAnalysis(StructureAnalysisBase):
    structure: Literal["reit_leaseback"] = "reit_leaseback"
    leaseback: sale_leaseback.SaleLeasebackResult
    reit_name: Optional[str] = None
    master_lease: bool = False


class LeaseBuyoutAnalysis(StructureAnalysisBase):
    structure: Literal["lease_buyout"] = "lease_buyout"
    buyout: lease_buyout.LeaseBuyoutResult


StructureAnalysis = Annotated[
    Union[
        CashPurchaseAnalysis,
        ConventionalAnalysis,
        SaleLeasebackAnalysis,
        ReitLeasebackAnalysis,
        LeaseBuyoutAnalysis,
    ],
    Field(discriminator="structure"),
]


class StructureRankings(BaseModel):
    by_irr: List[DealStructure]
    by_equity_multiple: List[DealStructure]
    by_cash_on_cash: List[DealStructure]
    by_equity_required: List[DealStructure]
    by_risk: List[DealStructure]


class DealComparisonResult(BaseModel):
    deal_name: str
    total_facilities: int
    total_beds: int
    total_noi: float
    total_ebitdar: float
    purchase_price: float

    structures: List[StructureAnalysis]
    rankings: StructureRankings
    scores: Dict[str, int]

    recommended_structure: DealStructure
    recommendation_rationale: List[str]
    comparison_matrix: List[Dict[str, str]]

    pro_forma: Optional[PortfolioProFormaResult] = None


class _DealContext(BaseModel):
    """Resolved deal-level figures shared by every structure."""

    total_noi: float
    total_ebitdar: float
    total_beds: int
    occupancy: float
    asset_type: AssetType
    noi_by_year: List[float]
    ebitdar_by_year: List[float]
    discount_rate: float
    exit_cap_rate: float
    selling_costs: float


def _score_by_thresholds(value: float, thresholds: Tuple[Tuple[float, int], ...], floor: int) -> int:
    for minimum, score in thresholds:
        if value >= minimum:
            return score
    return floor


def _weighted_occupancy(facilities: List[FacilityMetrics]) -> float:
    beds = sum(f.beds for f in facilities)
    if beds <= 0:
        return DEFAULT_OCCUPANCY
    return sum(f.occupancy * f.beds for f in facilities) / beds


def _most_restrictive_asset_type(facilities: List[FacilityMetrics]) -> AssetType:
    """Asset type with the highest lender DSCR minimum; first listed on ties."""
    return max((f.asset_type for f in facilities), key=lambda t: conventional.MINIMUM_DSCR[t])


def project_operations(
    inputs: DealComparisonInput,
) -> Tuple[List[float], List[float], Optional[PortfolioProFormaResult]]:
    """
    NOI and EBITDAR for hold years 1..N.

    Flat growth off current totals, or the portfolio pro forma when growth
    assumptions are supplied.
    """
    hold = inputs.hold_period_years

    if inputs.growth_assumptions is not None:
        pro_forma = generate_portfolio_proforma(
            [FacilityBaseData.from_metrics(f) for f in inputs.facilities],
            inputs.growth_assumptions,
            hold_period=hold,
        )
        totals = pro_forma.portfolio_yearly_totals
        return [t.total_noi for t in totals], [t.total_ebitdar for t in totals], pro_forma

    settings = get_settings()
    growth = (
        inputs.noi_growth_rate
        if inputs.noi_growth_rate is not None
        else settings.default_noi_growth_rate
    )
    total_noi = sum(f.noi for f in inputs.facilities)
    total_ebitdar = sum(f.ebitdar for f in inputs.facilities)
    noi = [total_noi * (1 + growth) ** year for year in range(1, hold + 1)]
    ebitdar = [total_ebitdar * (1 + growth) ** year for year in range(1, hold + 1)]
    return noi, ebitdar, None


def _summarize_flows(cash_flows: List[float], hold: int) -> Dict[str, float]:
    total = sum(cash_flows[1:])
    return {
        "year1_cash_flow": cash_flows[1],
        "total_cash_flow": total,
        "avg_annual_cash_flow": total / hold,
    }


def analyze_cash_purchase(inputs: DealComparisonInput, ctx: _DealContext) -> CashPurchaseAnalysis:
    hold = inputs.hold_period_years
    equity = inputs.purchase_price + inputs.closing_costs

    cash_flows = [-equity] + list(ctx.noi_by_year)
    exit_value = ctx.noi_by_year[-1] / ctx.exit_cap_rate
    net_exit = calculate_terminal_value(ctx.noi_by_year[-1], ctx.exit_cap_rate, ctx.selling_costs)
    operating_year1 = cash_flows[1]
    cash_flows[-1] += net_exit

    summary = _summarize_flows(cash_flows, hold)
    summary["year1_cash_flow"] = operating_year1

    return CashPurchaseAnalysis(
        structure_name="All-Cash Purchase",
        equity_required=equity,
        debt_amount=0.0,
        total_capitalization=equity,
        irr=calculate_irr(cash_flows),
        equity_multiple=summary["total_cash_flow"] / equity,
        cash_on_cash=operating_year1 / equity,
        npv=calculate_npv(cash_flows, ctx.discount_rate),
        dscr=0.0,
        rent_coverage=0.0,
        coverage_pass_fail=True,
        cash_flows=cash_flows,
        exit_value=exit_value,
        net_exit_proceeds=net_exit,
        break_even_occupancy=0.0,
        risk_score=CASH_RISK_SCORE,
        pros=[
            "No debt service obligations",
            "Maximum operational flexibility",
            "No refinance/maturity risk",
            "Immediate full ownership",
        ],
        cons=[
            "Highest equity requirement",
            "Lower levered returns",
            "Capital intensive - limits portfolio growth",
            "No tax shield from interest",
        ],
        **summary,
    )


def analyze_conventional(
    inputs: DealComparisonInput, ctx: _DealContext, terms: ConventionalTerms
) -> ConventionalAnalysis:
    hold = inputs.hold_period_years
    financing = conventional.run_full_analysis(
        conventional.ConventionalFinancingInput(
            purchase_price=inputs.purchase_price,
            property_noi=ctx.total_noi,
            facility_ebitdar=ctx.total_ebitdar,
            asset_type=ctx.asset_type,
            beds=ctx.total_beds,
            loan_type=terms.loan_type,
            ltv=terms.ltv,
            interest_rate=terms.interest_rate,
            amortization_years=terms.amortization_years,
            loan_term_years=terms.loan_term_years,
            index_rate=terms.index_rate,
            spread=terms.spread,
            closing_costs=inputs.closing_costs,
        )
    )
    schedule = financing.loan_schedule

    cash_flows = [-financing.equity_required]
    for year, noi in enumerate(ctx.noi_by_year, start=1):
        debt_service = (
            schedule[year - 1].payment if year <= len(schedule) else financing.annual_debt_service
        )
        cash_flows.append(noi - debt_service)
    operating_year1 = cash_flows[1]

    exit_value = ctx.noi_by_year[-1] / ctx.exit_cap_rate
    if schedule:
        loan_balance = schedule[min(hold, len(schedule)) - 1].ending_balance
    else:
        loan_balance = financing.balloon_payment
    net_exit = exit_value * (1 - ctx.selling_costs) - loan_balance
    cash_flows[-1] += net_exit

    summary = _summarize_flows(cash_flows, hold)
    summary["year1_cash_flow"] = operating_year1
    equity = financing.equity_required

    return ConventionalAnalysis(
        structure_name="Conventional Bank Financing",
        equity_required=equity,
        debt_amount=financing.loan_amount,
        total_capitalization=financing.total_capitalization,
        irr=calculate_irr(cash_flows),
        equity_multiple=summary["total_cash_flow"] / equity if equity > 0 else 0.0,
        cash_on_cash=financing.cash_on_cash,
        npv=calculate_npv(cash_flows, ctx.discount_rate),
        dscr=financing.dscr,
        rent_coverage=0.0,
        coverage_pass_fail=financing.dscr_pass_fail,
        cash_flows=cash_flows,
        exit_value=exit_value,
        net_exit_proceeds=net_exit,
        break_even_occupancy=(
            financing.annual_debt_service / ctx.total_noi * ctx.occupancy
            if ctx.total_noi > 0
            else 0.0
        ),
        risk_score=_score_by_thresholds(
            financing.dscr, CONVENTIONAL_RISK_SCORES, CONVENTIONAL_RISK_FLOOR
        ),
        financing=financing,
        pros=[
            "Lower equity requirement",
            "Leverage amplifies returns",
            "Tax-deductible interest",
            "Preserve capital for other opportunities",
        ],
        cons=[
            "Debt service obligations",
            "Refinance/maturity risk",
            "Personal guarantees may be required",
            f"DSCR of {financing.dscr:.2f}x "
            f"{'passes' if financing.dscr_pass_fail else 'fails'} requirements",
        ],
        **summary,
    )


def _leaseback_figures(
    inputs: DealComparisonInput, ctx: _DealContext, terms: LeasebackTerms
) -> Tuple[sale_leaseback.SaleLeasebackResult, Dict[str, object]]:
    """
    Operator-side economics shared by sale-leaseback and REIT leaseback.

    The operator puts in no equity; the sale proceeds are treated as the
    capital base so IRR reads as the cost of the rent stream.
    """
    hold = inputs.hold_period_years
    settings = get_settings()
    minimum = (
        terms.minimum_coverage_ratio
        if terms.minimum_coverage_ratio is not None
        else settings.default_min_coverage
    )
    result = sale_leaseback.run_full_analysis(
        sale_leaseback.SaleLeasebackInput(
            property_noi=ctx.total_noi,
            cap_rate=terms.cap_rate,
            buyer_yield_requirement=terms.buyer_yield_requirement,
            facility_ebitdar=ctx.total_ebitdar,
            minimum_coverage_ratio=minimum,
            lease_term_years=terms.lease_term_years,
            rent_escalation=terms.rent_escalation,
            beds=ctx.total_beds,
            total_revenue=sum(f.revenue for f in inputs.facilities),
            asset_type=ctx.asset_type,
        )
    )
    price = result.purchase_price
    rent = result.annual_rent

    cash_flows = [-price]
    for year, ebitdar in enumerate(ctx.ebitdar_by_year, start=1):
        cash_flows.append(ebitdar - rent * (1 + terms.rent_escalation) ** (year - 1))

    summary = _summarize_flows(cash_flows, hold)
    summary["year1_cash_flow"] = result.operator_cash_flow_after_rent
    coverage = result.coverage_ratio

    fields = dict(
        equity_required=0.0,
        debt_amount=0.0,
        total_capitalization=price,
        irr=calculate_irr(cash_flows),
        equity_multiple=summary["total_cash_flow"] / price + 1,
        cash_on_cash=result.operator_cash_flow_after_rent / price,
        npv=calculate_npv(cash_flows, ctx.discount_rate),
        dscr=0.0,
        rent_coverage=coverage,
        coverage_pass_fail=result.coverage_pass_fail,
        cash_flows=cash_flows,
        exit_value=0.0,
        net_exit_proceeds=0.0,
        break_even_occupancy=(
            rent / ctx.total_ebitdar * ctx.occupancy if ctx.total_ebitdar > 0 else 0.0
        ),
        risk_score=_score_by_thresholds(coverage, LEASEBACK_RISK_SCORES, LEASEBACK_RISK_FLOOR),
        pros=[
            "Immediate capital release",
            "No debt on balance sheet",
            "Monetize real estate value",
            "Maintain operational control",
            f"Coverage ratio of {coverage:.2f}x "
            f"{'passes' if result.coverage_pass_fail else 'fails'} requirements",
        ],
        cons=[
            "Ongoing rent obligations",
            "Loss of real estate ownership/appreciation",
            "Lease escalations reduce future margins",
            "Less flexibility than ownership",
        ],
        **summary,
    )
    return result, fields


def analyze_sale_leaseback(
    inputs: DealComparisonInput, ctx: _DealContext, terms: LeasebackTerms
) -> SaleLeasebackAnalysis:
    result, fields = _leaseback_figures(inputs, ctx, terms)
    return SaleLeasebackAnalysis(structure_name="Sale-Leaseback", leaseback=result, **fields)


def analyze_reit_leaseback(
    inputs: DealComparisonInput, ctx: _DealContext, terms: ReitLeasebackTerms
) -> ReitLeasebackAnalysis:
    result, fields = _leaseback_figures(inputs, ctx, terms)
    name = "REIT Sale-Leaseback"
    if terms.reit_name:
        name = f"{name} ({terms.reit_name})"
    return ReitLeasebackAnalysis(
        structure_name=name,
        leaseback=result,
        reit_name=terms.reit_name,
        master_lease=terms.master_lease,
        **fields,
    )


def _buyout_acquisitions(
    facilities: List[FacilityMetrics], terms: LeaseBuyoutTerms
) -> List[lease_buyout.LeaseAcquisition]:
    """
    Lease positions being bought out.

    An explicit existing rent is spread across facilities by EBITDAR;
    otherwise each facility's current rent is used.
    """
    total_ebitdar = sum(f.ebitdar for f in facilities)
    if terms.existing_rent is None and all(f.current_rent is None for f in facilities):
        raise InvalidParameter("Lease buyout requires existing rent or facility current rent")

    acquisitions = []
    for f in facilities:
        if terms.existing_rent is not None:
            if total_ebitdar > 0:
                rent = terms.existing_rent * f.ebitdar / total_ebitdar
            else:
                rent = terms.existing_rent / len(facilities)
        else:
            rent = f.current_rent or 0.0
        acquisitions.append(
            lease_buyout.LeaseAcquisition(
                facility_id=f.facility_id,
                facility_name=f.name,
                asset_type=f.asset_type,
                beds=f.beds,
                existing_lease=lease_buyout.ExistingLeaseTerms(
                    current_annual_rent=rent,
                    remaining_years=terms.remaining_lease_years,
                    annual_escalation=terms.existing_escalation,
                ),
                facility_ebitdar=f.ebitdar,
                facility_revenue=f.revenue,
            )
        )
    return acquisitions


def analyze_lease_buyout(
    inputs: DealComparisonInput, ctx: _DealContext, terms: LeaseBuyoutTerms
) -> LeaseBuyoutAnalysis:
    hold = inputs.hold_period_years
    buyout = lease_buyout.run_full_analysis(
        lease_buyout.LeaseBuyoutInput(
            facilities=_buyout_acquisitions(inputs.facilities, terms),
            buyout_amount=terms.buyout_amount,
        )
    )
    existing_rent = buyout.total_existing_annual_rent
    payment = buyout.total_buyout_amortization
    new_rent = existing_rent + payment
    coverage = buyout.portfolio_new_coverage
    amount = terms.buyout_amount

    cash_flows = [-amount]
    for year, ebitdar in enumerate(ctx.ebitdar_by_year, start=1):
        rent = existing_rent * (1 + terms.existing_escalation) ** (year - 1)
        if year <= buyout.amortization_years:
            rent += payment
        cash_flows.append(ebitdar - rent)

    summary = _summarize_flows(cash_flows, hold)
    operator_cash_flow = ctx.total_ebitdar - new_rent
    summary["year1_cash_flow"] = operator_cash_flow

    return LeaseBuyoutAnalysis(
        structure_name="Lease Buyout",
        equity_required=amount,
        debt_amount=0.0,
        total_capitalization=amount,
        irr=calculate_irr(cash_flows),
        equity_multiple=summary["total_cash_flow"] / amount,
        cash_on_cash=operator_cash_flow / amount,
        npv=calculate_npv(cash_flows, ctx.discount_rate),
        dscr=0.0,
        rent_coverage=coverage,
        coverage_pass_fail=buyout.coverage_pass_fail,
        cash_flows=cash_flows,
        exit_value=0.0,
        net_exit_proceeds=0.0,
        break_even_occupancy=(
            new_rent / ctx.total_ebitdar * ctx.occupancy if ctx.total_ebitdar > 0 else 0.0
        ),
        risk_score=_score_by_thresholds(coverage, BUYOUT_RISK_SCORES, BUYOUT_RISK_FLOOR),
        buyout=buyout,
        pros=[
            "Acquire operational control",
            "Transfer existing lease obligations",
            "Lower capital than full purchase",
            f"Buyout amortizes over {buyout.amortization_years} years",
        ],
        cons=[
            "Ongoing rent obligations continue",
            "Buyout increases effective rent temporarily",
            f"Coverage ratio drops to {coverage:.2f}x during amortization",
            "No real estate ownership/appreciation",
        ],
        **summary,
    )


def rank_structures(structures: List[StructureAnalysisBase]) -> StructureRankings:
    """Rankings are stable: equal values keep declaration order."""

    def order(key, descending: bool) -> List[str]:
        ranked = sorted(structures, key=lambda s: -key(s) if descending else key(s))
        return [s.structure for s in ranked]

    return StructureRankings(
        by_irr=order(lambda s: s.irr, True),
        by_equity_multiple=order(lambda s: s.equity_multiple, True),
        by_cash_on_cash=order(lambda s: s.cash_on_cash, True),
        by_equity_required=order(lambda s: s.equity_required, False),
        by_risk=order(lambda s: s.risk_score, False),
    )


def score_structures(
    structures: List[StructureAnalysisBase], rankings: StructureRankings
) -> Dict[str, int]:
    """
    Recommendation score: 3/2/1 by IRR rank, 2/1/0 by risk rank, plus 2
    when coverage passes.
    """
    irr_points = (3, 2)
    risk_points = (2, 1)
    scores = {}
    for s in structures:
        irr_rank = rankings.by_irr.index(s.structure)
        risk_rank = rankings.by_risk.index(s.structure)
        scores[s.structure] = (
            (irr_points[irr_rank] if irr_rank < len(irr_points) else 1)
            + (risk_points[risk_rank] if risk_rank < len(risk_points) else 0)
            + (2 if s.coverage_pass_fail else 0)
        )
    return scores


def build_comparison_matrix(structures: List[StructureAnalysisBase]) -> List[Dict[str, str]]:
    """Display-formatted metrics, one row per metric and one column per structure."""

    def row(metric: str, fmt) -> Dict[str, str]:
        values = {"metric": metric}
        values.update({s.structure: fmt(s) for s in structures})
        return values

    return [
        row("Equity Required", lambda s: f"${s.equity_required / 1_000_000:.2f}M"),
        row("IRR", lambda s: f"{s.irr * 100:.1f}%"),
        row("Equity Multiple", lambda s: f"{s.equity_multiple:.2f}x"),
        row("Cash-on-Cash", lambda s: f"{s.cash_on_cash * 100:.1f}%"),
        row("Year 1 Cash Flow", lambda s: f"${s.year1_cash_flow / 1000:.0f}K"),
        row("DSCR", lambda s: f"{s.dscr:.2f}x" if s.dscr > 0 else "N/A"),
        row("Rent Coverage", lambda s: f"{s.rent_coverage:.2f}x" if s.rent_coverage > 0 else "N/A"),
        row("Risk Score", lambda s: f"{s.risk_score}/10"),
    ]


def _rationale(recommended: StructureAnalysisBase, rankings: StructureRankings) -> List[str]:
    reasons = []
    if rankings.by_irr[0] == recommended.structure:
        reasons.append(f"Highest IRR at {recommended.irr * 100:.1f}%")
    if rankings.by_risk[0] == recommended.structure:
        reasons.append("Lowest risk profile")
    if recommended.coverage_pass_fail:
        reasons.append("Meets coverage requirements")
    reasons.append(f"Equity multiple of {recommended.equity_multiple:.2f}x")
    return reasons


def run_comparison(inputs: DealComparisonInput) -> DealComparisonResult:
    """
    Analyze every enabled structure and recommend one.

    Raises:
        InvalidParameter: no facilities, no enabled structures, or a
            non-positive exit cap rate.
    """
    facilities = inputs.facilities
    if not facilities:
        raise InvalidParameter("Deal comparison requires at least one facility")

    settings = get_settings()
    exit_cap_rate = (
        inputs.exit_cap_rate if inputs.exit_cap_rate is not None else settings.default_exit_cap_rate
    )
    if exit_cap_rate <= 0:
        raise InvalidParameter("Exit cap rate must be greater than 0")

    noi_by_year, ebitdar_by_year, pro_forma = project_operations(inputs)

    ctx = _DealContext(
        total_noi=sum(f.noi for f in facilities),
        total_ebitdar=sum(f.ebitdar for f in facilities),
        total_beds=sum(f.beds for f in facilities),
        occupancy=_weighted_occupancy(facilities),
        asset_type=_most_restrictive_asset_type(facilities),
        noi_by_year=noi_by_year,
        ebitdar_by_year=ebitdar_by_year,
        discount_rate=(
            inputs.discount_rate
            if inputs.discount_rate is not None
            else settings.default_discount_rate
        ),
        exit_cap_rate=exit_cap_rate,
        selling_costs=(
            inputs.selling_costs
            if inputs.selling_costs is not None
            else settings.default_selling_costs
        ),
    )

    structures: List[StructureAnalysisBase] = []
    if inputs.cash_purchase.enabled:
        structures.append(analyze_cash_purchase(inputs, ctx))
    if inputs.conventional_financing and inputs.conventional_financing.enabled:
        structures.append(analyze_conventional(inputs, ctx, inputs.conventional_financing))
    if inputs.sale_leaseback and inputs.sale_leaseback.enabled:
        structures.append(analyze_sale_leaseback(inputs, ctx, inputs.sale_leaseback))
    if inputs.reit_leaseback and inputs.reit_leaseback.enabled:
        structures.append(analyze_reit_leaseback(inputs, ctx, inputs.reit_leaseback))
    if inputs.lease_buyout and inputs.lease_buyout.enabled:
        structures.append(analyze_lease_buyout(inputs, ctx, inputs.lease_buyout))

    if not structures:
        raise InvalidParameter("At least one deal structure must be enabled")

    rankings = rank_structures(structures)
    scores = score_structures(structures, rankings)

    # max() keeps the first of equal scores, i.e. declaration order
    recommended = max(structures, key=lambda s: scores[s.structure])

    logger.debug(
        "Compared %d structures; recommending %s (scores %s)",
        len(structures),
        recommended.structure,
        scores,
    )

    return DealComparisonResult(
        deal_name=(
            facilities[0].name if len(facilities) == 1 else f"{len(facilities)}-Facility Portfolio"
        ),
        total_facilities=len(facilities),
        total_beds=ctx.total_beds,
        total_noi=ctx.total_noi,
        total_ebitdar=ctx.total_ebitdar,
        purchase_price=inputs.purchase_price,
        structures=structures,
        rankings=rankings,
        scores=scores,
        recommended_structure=recommended.structure,
        recommendation_rationale=_rationale(recommended, rankings),
        comparison_matrix=build_comparison_matrix(structures),
        pro_forma=pro_forma,
    )
