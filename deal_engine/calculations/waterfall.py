"""
Waterfall Distribution Calculations

Distributes partnership cash flows between LPs and GPs through ordered
promote tiers.

Each period:
1. Preferred return accrues on every LP's outstanding capital
2. Capital calls are added to capital balances
3. Distributable cash runs through the tiers in order; LP shares pay
   preferred, then capital, then profit; GP shares are promote
4. Cash left after the last tier follows the last tier's split

State is carried in an immutable WaterfallState; each period folds the
previous state into a new one.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Dict, List, Literal, Optional, Tuple
from pydantic import BaseModel, Field

from deal_engine.exceptions import InvalidParameter
from deal_engine.calculations.irr import calculate_irr

logger = logging.getLogger(__name__)

ThresholdType = Literal["multiple", "irr"]
PartnerType = Literal["lp", "gp"]

DEFAULT_PREFERRED_RETURN = 0.08
SHARE_TOLERANCE = 1e-9


@dataclass
class WaterfallTier:
    """Configuration for a single tier in the waterfall."""

    tier_id: str
    name: str
    threshold: float  # Equity multiple (e.g., 1.5) or IRR (e.g., 0.08)
    threshold_type: ThresholdType
    lp_share: float  # LP's share at this tier (e.g., 0.80 for 80%)
    gp_share: float  # GP's share at this tier (e.g., 0.20 for 20%)
    is_catch_up: bool = False
    catch_up_target: Optional[float] = None  # GP share of profits to catch up to


STANDARD_WATERFALL_STRUCTURES: Dict[str, List[WaterfallTier]] = {
    # Simple preferred with 80/20 promote after 8% pref
    "simple_preferred": [
        WaterfallTier("1", "Return of Capital", 1.0, "multiple", 1.0, 0.0),
        WaterfallTier("2", "Preferred Return (8%)", 0.08, "irr", 1.0, 0.0),
        WaterfallTier("3", "Profit Split", 999, "irr", 0.80, 0.20),
    ],
    # Institutional with GP catch-up
    "institutional": [
        WaterfallTier("1", "Return of Capital", 1.0, "multiple", 1.0, 0.0),
        WaterfallTier("2", "Preferred Return (8%)", 0.08, "irr", 1.0, 0.0),
        WaterfallTier(
            "3", "GP Catch-Up", 0.10, "irr", 0.0, 1.0, is_catch_up=True, catch_up_target=0.20
        ),
        WaterfallTier("4", "80/20 Split", 0.15, "irr", 0.80, 0.20),
        WaterfallTier("5", "70/30 Above 15%", 999, "irr", 0.70, 0.30),
    ],
    # Aggressive multiple-based promote
    "aggressive": [
        WaterfallTier("1", "Return of Capital", 1.0, "multiple", 1.0, 0.0),
        WaterfallTier("2", "Preferred Return (6%)", 0.06, "irr", 1.0, 0.0),
        WaterfallTier("3", "85/15 to 1.5x", 1.5, "multiple", 0.85, 0.15),
        WaterfallTier("4", "75/25 to 2.0x", 2.0, "multiple", 0.75, 0.25),
        WaterfallTier("5", "65/35 Above 2.0x", 999, "multiple", 0.65, 0.35),
    ],
}


class Partner(BaseModel):
    partner_id: str
    name: str
    partner_type: PartnerType
    capital_commitment: float = Field(default=0.0, ge=0)
    capital_contributed: float = Field(default=0.0, ge=0)
    ownership_percent: float = Field(ge=0, le=1)


class WaterfallCashFlow(BaseModel):
    period: int
    period_date: Optional[date] = None
    operating_cash_flow: float = 0.0
    capital_event: float = 0.0  # Sale / refinance proceeds
    capital_call: float = 0.0


class WaterfallInput(BaseModel):
    partners: List[Partner]
    tiers: List[WaterfallTier]
    cash_flows: List[WaterfallCashFlow]
    total_equity: Optional[float] = None  # Defaults to total capital contributed
    preferred_return: float = DEFAULT_PREFERRED_RETURN
    periods_per_year: int = Field(default=1, gt=0)


@dataclass(frozen=True)
class PartnerState:
    """Running position of one partner."""

    capital_balance: float
    initial_contribution: float = 0.0
    pref_accrued: float = 0.0
    # One entry per processed period
    calls: Tuple[float, ...] = ()
    distributions: Tuple[float, ...] = ()
    preferred_received: float = 0.0
    capital_received: float = 0.0
    profit_received: float = 0.0

    @property
    def total_distributions(self) -> float:
        return self.preferred_received + self.capital_received + self.profit_received

    @property
    def total_contributions(self) -> float:
        return self.initial_contribution + sum(self.calls)


@dataclass(frozen=True)
class WaterfallState:
    """Accumulator folded over the cash-flow periods."""

    partners: Dict[str, PartnerState]
    total_capital: float
    distributed: float = 0.0
    preferred_paid: float = 0.0
    capital_returned: float = 0.0
    profit_paid: float = 0.0
    gp_promote: float = 0.0
    tier_totals: Dict[str, Tuple[float, float]] = field(default_factory=dict)


class PartnerDistribution(BaseModel):
    partner_id: str
    partner_name: str
    preferred_return: float
    return_of_capital: float
    profit_distribution: float
    total_distribution: float
    capital_call: float
    cumulative_distributions: float
    remaining_capital: float


class TierDistribution(BaseModel):
    tier_id: str
    tier_name: str
    amount_distributed: float
    lp_amount: float
    gp_amount: float


class PeriodDistribution(BaseModel):
    period: int
    period_date: Optional[date] = None
    total_distribution: float
    capital_call: float
    preferred_return: float
    return_of_capital: float
    profit_distribution: float
    partner_distributions: List[PartnerDistribution]
    tier_distributions: List[TierDistribution]
    cumulative_distributions: float
    cumulative_preferred: float
    cumulative_return_of_capital: float
    cumulative_profit: float


class PartnerSummary(BaseModel):
    partner_id: str
    partner_name: str
    partner_type: PartnerType
    capital_commitment: float
    capital_contributed: float
    total_distributions: float
    preferred_return_received: float
    return_of_capital_received: float
    profit_share_received: float
    promote_received: float
    equity_multiple: float
    irr: float
    base_ownership: float
    effective_ownership: float


class TierAnalysis(BaseModel):
    tier_id: str
    tier_name: str
    total_distributed: float
    lp_amount: float
    gp_amount: float
    percent_of_distributions: float


class WaterfallResult(BaseModel):
    total_capital_contributed: float
    total_distributions: float
    total_profit: float
    project_irr: float
    project_multiple: float
    distributions: List[PeriodDistribution]
    partner_summaries: List[PartnerSummary]
    gp_promote_total: float
    gp_promote_as_percent_of_profit: float
    lp_total_distributions: float
    lp_equity_multiple: float
    lp_irr: float
    tier_analysis: List[TierAnalysis]


def calculate_preferred_accrual(
    capital_balance: float, preferred_rate: float, periods_per_year: int = 1
) -> float:
    """Simple (non-compounding) preferred return for one period."""
    return capital_balance * preferred_rate / periods_per_year


def _multiple(distributions: float, contributions: float) -> float:
    if contributions <= 0:
        return 0.0
    return distributions / contributions


def _irr(cash_flows: List[float]) -> float:
    """IRR, or 0 when the flows never change sign."""
    if not any(cf < 0 for cf in cash_flows) or not any(cf > 0 for cf in cash_flows):
        return 0.0
    return calculate_irr(cash_flows)


def validate_waterfall(partners: List[Partner], tiers: List[WaterfallTier]) -> None:
    """
    Check the tier and partner set can be run.

    Raises:
        InvalidParameter: no tiers, shares not summing to 1, or a tier that
            pays LPs or GPs with no such partner.
    """
    if not tiers:
        raise InvalidParameter("Waterfall requires at least one tier")

    lp_ownership = sum(p.ownership_percent for p in partners if p.partner_type == "lp")
    gp_ownership = sum(p.ownership_percent for p in partners if p.partner_type == "gp")

    for index, tier in enumerate(tiers):
        if abs(tier.lp_share + tier.gp_share - 1.0) > SHARE_TOLERANCE:
            raise InvalidParameter(
                f"Tier {tier.tier_id} shares must sum to 1.0 "
                f"(got {tier.lp_share + tier.gp_share:.4f})"
            )
        if tier.lp_share > 0 and lp_ownership <= 0:
            raise InvalidParameter(f"Tier {tier.tier_id} pays LPs but no LP has ownership")
        if tier.gp_share > 0 and gp_ownership <= 0:
            raise InvalidParameter(f"Tier {tier.tier_id} pays GPs but no GP has ownership")
        if tier.is_catch_up and tier.catch_up_target is not None and tier.gp_share <= tier.catch_up_target:
            raise InvalidParameter(
                f"Catch-up tier {tier.tier_id} GP share must exceed its target"
            )
        if (
            tier.threshold_type == "irr"
            and not tier.is_catch_up
            and index < len(tiers) - 1
        ):
            logger.warning(
                "IRR tier %s (%s) distributes all remaining cash; later tiers "
                "only receive cash in periods it does not reach",
                tier.tier_id,
                tier.name,
            )


def initial_state(partners: List[Partner], total_equity: Optional[float] = None) -> WaterfallState:
    """Opening positions: each partner's contributed capital is outstanding."""
    contributed = sum(p.capital_contributed for p in partners)
    return WaterfallState(
        partners={
            p.partner_id: PartnerState(
                capital_balance=p.capital_contributed,
                initial_contribution=p.capital_contributed,
            )
            for p in partners
        },
        total_capital=total_equity if total_equity is not None else contributed,
    )


def accrue_preferred(
    state: WaterfallState,
    partners: List[Partner],
    preferred_rate: float,
    periods_per_year: int = 1,
) -> WaterfallState:
    positions = dict(state.partners)
    for p in partners:
        if p.partner_type != "lp":
            continue
        position = positions[p.partner_id]
        accrual = calculate_preferred_accrual(
            position.capital_balance, preferred_rate, periods_per_year
        )
        positions[p.partner_id] = replace(position, pref_accrued=position.pref_accrued + accrual)
    return replace(state, partners=positions)


def apply_capital_call(
    state: WaterfallState, partners: List[Partner], call_amount: float
) -> Tuple[WaterfallState, Dict[str, float]]:
    """Partners fund a call by ownership; returns each partner's share."""
    if call_amount <= 0:
        return state, {p.partner_id: 0.0 for p in partners}

    positions = dict(state.partners)
    calls = {}
    for p in partners:
        amount = call_amount * p.ownership_percent
        position = positions[p.partner_id]
        positions[p.partner_id] = replace(
            position, capital_balance=position.capital_balance + amount
        )
        calls[p.partner_id] = amount

    logger.debug("Capital call of %.2f", call_amount)
    return replace(state, partners=positions, total_capital=state.total_capital + call_amount), calls


def tier_capacity(state: WaterfallState, tier: WaterfallTier, available: float) -> float:
    """
    Cash the tier can absorb before its threshold is met.

    Multiple tiers fill up to threshold x total capital. Catch-up tiers fill
    until the GP holds the target share of profits (preferred plus profit).
    IRR tiers take everything.
    """
    if tier.is_catch_up and tier.catch_up_target is not None:
        profits = state.preferred_paid + state.profit_paid
        gp_take = state.gp_promote
        target = tier.catch_up_target
        needed = (target * profits - gp_take) / (tier.gp_share - target)
        return min(available, max(0.0, needed))

    if tier.threshold_type == "multiple":
        target_amount = tier.threshold * state.total_capital
        return min(available, max(0.0, target_amount - state.distributed))

    return available


def _pay_lp(position: PartnerState, amount: float) -> Tuple[PartnerState, float, float, float]:
    """Apply an LP distribution to preferred, then capital, then profit."""
    pref_paid = min(amount, position.pref_accrued)
    remaining = amount - pref_paid
    capital_paid = min(remaining, position.capital_balance)
    profit_paid = remaining - capital_paid

    updated = replace(
        position,
        pref_accrued=position.pref_accrued - pref_paid,
        capital_balance=position.capital_balance - capital_paid,
        preferred_received=position.preferred_received + pref_paid,
        capital_received=position.capital_received + capital_paid,
        profit_received=position.profit_received + profit_paid,
    )
    return updated, pref_paid, capital_paid, profit_paid


def distribute_tier(
    state: WaterfallState,
    tier: WaterfallTier,
    amount: float,
    partners: List[Partner],
) -> WaterfallState:
    """Split one tier's amount and pay it out to the partners."""
    lp_amount = amount * tier.lp_share
    gp_amount = amount * tier.gp_share

    lps = [p for p in partners if p.partner_type == "lp"]
    gps = [p for p in partners if p.partner_type == "gp"]
    lp_ownership = sum(p.ownership_percent for p in lps)
    gp_ownership = sum(p.ownership_percent for p in gps)

    positions = dict(state.partners)
    preferred = capital = profit = 0.0

    if lp_amount > 0:
        for p in lps:
            share = lp_amount * p.ownership_percent / lp_ownership
            positions[p.partner_id], pref_paid, capital_paid, profit_paid = _pay_lp(
                positions[p.partner_id], share
            )
            preferred += pref_paid
            capital += capital_paid
            profit += profit_paid

    if gp_amount > 0:
        for p in gps:
            share = gp_amount * p.ownership_percent / gp_ownership
            position = positions[p.partner_id]
            positions[p.partner_id] = replace(
                position, profit_received=position.profit_received + share
            )
            profit += share

    tier_lp, tier_gp = state.tier_totals.get(tier.tier_id, (0.0, 0.0))
    tier_totals = dict(state.tier_totals)
    tier_totals[tier.tier_id] = (tier_lp + lp_amount, tier_gp + gp_amount)

    return replace(
        state,
        partners=positions,
        distributed=state.distributed + amount,
        preferred_paid=state.preferred_paid + preferred,
        capital_returned=state.capital_returned + capital,
        profit_paid=state.profit_paid + profit,
        gp_promote=state.gp_promote + gp_amount,
        tier_totals=tier_totals,
    )


def distribute_cash(
    state: WaterfallState,
    available: float,
    partners: List[Partner],
    tiers: List[WaterfallTier],
) -> WaterfallState:
    """Run one period's distributable cash through every tier."""
    remaining = available
    for tier in tiers:
        if remaining <= 0:
            break
        amount = tier_capacity(state, tier, remaining)
        if amount <= 0:
            continue
        state = distribute_tier(state, tier, amount, partners)
        remaining -= amount

    if remaining > 0:
        state = distribute_tier(state, tiers[-1], remaining, partners)

    return state


def apply_period(
    state: WaterfallState,
    cash_flow: WaterfallCashFlow,
    inputs: WaterfallInput,
) -> Tuple[WaterfallState, PeriodDistribution]:
    """Fold one cash-flow period into the state."""
    partners = inputs.partners
    start = accrue_preferred(state, partners, inputs.preferred_return, inputs.periods_per_year)
    called, calls = apply_capital_call(start, partners, cash_flow.capital_call)

    distributable = cash_flow.operating_cash_flow + cash_flow.capital_event
    if distributable > 0:
        after = distribute_cash(called, distributable, partners, inputs.tiers)
    else:
        after = called
        distributable = 0.0

    positions = {}
    partner_rows = []
    for p in partners:
        before = called.partners[p.partner_id]
        position = after.partners[p.partner_id]
        paid = position.total_distributions - before.total_distributions
        positions[p.partner_id] = replace(
            position,
            calls=position.calls + (calls[p.partner_id],),
            distributions=position.distributions + (paid,),
        )
        partner_rows.append(
            PartnerDistribution(
                partner_id=p.partner_id,
                partner_name=p.name,
                preferred_return=position.preferred_received - before.preferred_received,
                return_of_capital=position.capital_received - before.capital_received,
                profit_distribution=position.profit_received - before.profit_received,
                total_distribution=paid,
                capital_call=calls[p.partner_id],
                cumulative_distributions=position.total_distributions,
                remaining_capital=position.capital_balance,
            )
        )
    after = replace(after, partners=positions)

    tier_rows = []
    for tier in inputs.tiers:
        lp_before, gp_before = called.tier_totals.get(tier.tier_id, (0.0, 0.0))
        lp_after, gp_after = after.tier_totals.get(tier.tier_id, (0.0, 0.0))
        lp_amount = lp_after - lp_before
        gp_amount = gp_after - gp_before
        tier_rows.append(
            TierDistribution(
                tier_id=tier.tier_id,
                tier_name=tier.name,
                amount_distributed=lp_amount + gp_amount,
                lp_amount=lp_amount,
                gp_amount=gp_amount,
            )
        )

    detail = PeriodDistribution(
        period=cash_flow.period,
        period_date=cash_flow.period_date,
        total_distribution=distributable,
        capital_call=cash_flow.capital_call,
        preferred_return=after.preferred_paid - called.preferred_paid,
        return_of_capital=after.capital_returned - called.capital_returned,
        profit_distribution=after.profit_paid - called.profit_paid,
        partner_distributions=partner_rows,
        tier_distributions=tier_rows,
        cumulative_distributions=after.distributed,
        cumulative_preferred=after.preferred_paid,
        cumulative_return_of_capital=after.capital_returned,
        cumulative_profit=after.profit_paid,
    )
    return after, detail


def partner_cash_flows(position: PartnerState) -> List[float]:
    """
    Partner cash flows for IRR: initial contribution as an outflow, then
    each period's distributions net of capital calls.
    """
    flows = [-position.initial_contribution]
    for call, paid in zip(position.calls, position.distributions):
        flows.append(paid - call)
    return flows


def _summarize_partner(
    partner: Partner, position: PartnerState, total_distributed: float
) -> PartnerSummary:
    contributed = position.total_contributions
    distributions = position.total_distributions
    is_gp = partner.partner_type == "gp"

    return PartnerSummary(
        partner_id=partner.partner_id,
        partner_name=partner.name,
        partner_type=partner.partner_type,
        capital_commitment=partner.capital_commitment,
        capital_contributed=contributed,
        total_distributions=distributions,
        preferred_return_received=position.preferred_received,
        return_of_capital_received=position.capital_received,
        profit_share_received=0.0 if is_gp else position.profit_received,
        promote_received=position.profit_received if is_gp else 0.0,
        equity_multiple=_multiple(distributions, contributed),
        irr=_irr(partner_cash_flows(position)),
        base_ownership=partner.ownership_percent,
        effective_ownership=distributions / total_distributed if total_distributed > 0 else 0.0,
    )


def run_waterfall(inputs: WaterfallInput) -> WaterfallResult:
    """
    Run the full waterfall over all cash-flow periods.

    Raises:
        InvalidParameter: see validate_waterfall.
    """
    if len(inputs.partners) != len({p.partner_id for p in inputs.partners}):
        raise InvalidParameter("Partner IDs must be unique")
    validate_waterfall(inputs.partners, inputs.tiers)

    state = initial_state(inputs.partners, inputs.total_equity)
    periods = []
    for cash_flow in inputs.cash_flows:
        state, detail = apply_period(state, cash_flow, inputs)
        periods.append(detail)

    summaries = [
        _summarize_partner(p, state.partners[p.partner_id], state.distributed)
        for p in inputs.partners
    ]

    total_contributed = sum(s.capital_contributed for s in summaries)
    project_flows = [-sum(p.capital_contributed for p in inputs.partners)]
    for cf in inputs.cash_flows:
        project_flows.append(cf.operating_cash_flow + cf.capital_event - cf.capital_call)

    lp_ids = {p.partner_id for p in inputs.partners if p.partner_type == "lp"}
    lp_summaries = [s for s in summaries if s.partner_id in lp_ids]
    lp_distributions = sum(s.total_distributions for s in lp_summaries)
    lp_contributions = sum(s.capital_contributed for s in lp_summaries)

    lp_flows = [0.0] * (len(inputs.cash_flows) + 1)
    for partner_id in lp_ids:
        for i, cf in enumerate(partner_cash_flows(state.partners[partner_id])):
            lp_flows[i] += cf

    gp_promote_total = sum(s.promote_received for s in summaries)

    tier_analysis = []
    for tier in inputs.tiers:
        lp_amount, gp_amount = state.tier_totals.get(tier.tier_id, (0.0, 0.0))
        total = lp_amount + gp_amount
        tier_analysis.append(
            TierAnalysis(
                tier_id=tier.tier_id,
                tier_name=tier.name,
                total_distributed=total,
                lp_amount=lp_amount,
                gp_amount=gp_amount,
                percent_of_distributions=total / state.distributed if state.distributed > 0 else 0.0,
            )
        )

    logger.debug(
        "Waterfall: %d periods, %.2f distributed, %.2f promote",
        len(periods),
        state.distributed,
        gp_promote_total,
    )

    return WaterfallResult(
        total_capital_contributed=total_contributed,
        total_distributions=state.distributed,
        total_profit=state.profit_paid,
        project_irr=_irr(project_flows),
        project_multiple=_multiple(state.distributed, total_contributed),
        distributions=periods,
        partner_summaries=summaries,
        gp_promote_total=gp_promote_total,
        gp_promote_as_percent_of_profit=(
            gp_promote_total / state.profit_paid if state.profit_paid > 0 else 0.0
        ),
        lp_total_distributions=lp_distributions,
        lp_equity_multiple=_multiple(lp_distributions, lp_contributions),
        lp_irr=_irr(lp_flows),
        tier_analysis=tier_analysis,
    )


def standard_structure(name: str) -> List[WaterfallTier]:
    """Copy of a named standard tier structure."""
    if name not in STANDARD_WATERFALL_STRUCTURES:
        raise InvalidParameter(f"Unknown waterfall structure: {name}")
    return [replace(tier) for tier in STANDARD_WATERFALL_STRUCTURES[name]]
