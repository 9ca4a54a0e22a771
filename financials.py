"""
Holdco Engine - Financial Primitives
====================================
Pure functions over business and portfolio data: free cash flow, portfolio
tax with shields, capability bonuses, organic growth, exit valuation and the
derived metrics snapshot. Money is in $k.
"""

import math
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Tuple

from distress import assess_distress, calculate_leverage, get_distress_restrictions
from game_config import (
    BALANCE,
    MAX_ACTIVE_SHARED_SERVICES,
    SHARED_SERVICES,
    SOURCING_TIERS,
    TURNAROUND_PROGRAMS,
    TURNAROUND_TIERS,
)
from models import (
    Business,
    EventType,
    ExitValuation,
    GameState,
    HistoricalMetrics,
    Metrics,
    PortfolioTax,
    TurnaroundStatus,
)
from platforms import platform_multiple_expansion
from rng import SeededRng
from sectors import get_sector

# Sector focus: number of active opcos in one sector -> tier
SECTOR_FOCUS_TIERS = ((4, 3), (3, 2), (2, 1))
SECTOR_FOCUS_GROWTH_BONUS = {0: 0.0, 1: 0.02, 2: 0.04, 3: 0.07}

# Marketing lands harder in brand-driven sectors
BRAND_SECTORS = ("agency", "consumer")
BRAND_SECTOR_EXTRA_GROWTH = 0.01

INTEGRATION_PENALTY_RANGE = (0.03, 0.08)
ROIIC_LOOKBACK = 3
TURNAROUND_PROGRAM_COSTS = {p.id: p.annual_cost for p in TURNAROUND_PROGRAMS}


# ==================== Helpers ====================

def clamp(x, a, b):
    """Clamp value between min and max"""
    return max(a, min(b, x))


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    if denominator == 0:
        return default
    result = numerator / denominator
    return result if math.isfinite(result) else default


def finite_or(value: float, default: float = 0.0) -> float:
    return value if math.isfinite(value) else default


def money(x):
    """Format $k amount as money string"""
    if abs(x) >= 1000:
        return f"${x / 1000:.1f}M"
    return f"${x:,.0f}k"


# ==================== Capabilities ====================

@dataclass
class SharedServicesBenefits:
    capex_reduction: float = 0.0
    cash_conversion_bonus: float = 0.0
    growth_bonus: float = 0.0
    talent_retention_bonus: float = 0.0
    talent_gain_bonus: float = 0.0
    reinvestment_bonus: float = 0.0
    annual_cost: int = 0
    brand_bonus: bool = False


def shared_services_scale(opco_count: int) -> float:
    """Benefits grow with the number of opcos sharing the service"""
    if opco_count >= 6:
        return 1.2
    if opco_count >= 3:
        return 1.0 + (opco_count - 2) * 0.05
    return 1.0


def shared_services_benefits(state: GameState) -> SharedServicesBenefits:
    active = state.active_shared_services()[:MAX_ACTIVE_SHARED_SERVICES]
    scale = shared_services_scale(len(state.active_businesses()))
    benefits = SharedServicesBenefits()
    for service_type in active:
        service = SHARED_SERVICES[service_type]
        benefits.capex_reduction += service.capex_reduction * scale
        benefits.cash_conversion_bonus += service.cash_conversion_bonus * scale
        benefits.growth_bonus += service.growth_bonus * scale
        benefits.talent_retention_bonus += service.talent_retention_bonus * scale
        benefits.talent_gain_bonus += service.talent_gain_bonus * scale
        benefits.reinvestment_bonus += service.reinvestment_bonus * scale
        benefits.annual_cost += service.annual_cost
        if service.growth_bonus > 0:
            benefits.brand_bonus = True
    return benefits


def sourcing_annual_cost(state: GameState) -> int:
    return SOURCING_TIERS[state.ma_sourcing_tier].annual_cost


def turnaround_annual_cost(state: GameState) -> int:
    """Ops team for the unlocked turnaround tier plus every running program"""
    cost = TURNAROUND_TIERS[state.turnaround_tier].annual_cost if state.turnaround_tier else 0
    for t in state.turnarounds:
        if t.status == TurnaroundStatus.ACTIVE:
            cost += TURNAROUND_PROGRAM_COSTS.get(t.program_id, 0)
    return cost


def sector_focus(businesses: Iterable[Business]) -> Tuple[Optional[str], int]:
    """Most concentrated sector and its focus tier (0 when unfocused)"""
    counts = {}
    for b in businesses:
        if b.is_active:
            counts[b.sector_id] = counts.get(b.sector_id, 0) + 1
    if not counts:
        return None, 0
    # ties resolve to the sector first bought into
    sector_id = max(counts, key=lambda s: counts[s])
    count = counts[sector_id]
    for threshold, tier in SECTOR_FOCUS_TIERS:
        if count >= threshold:
            return sector_id, tier
    return sector_id, 0


# ==================== Cash Flow ====================

def calculate_annual_fcf(business: Business, capex_reduction: float = 0.0,
                         cash_conversion_bonus: float = 0.0) -> int:
    """Pre-tax free cash flow attributable to the holdco for one business"""
    capex_rate = get_sector(business.sector_id).capex_rate
    capex = business.ebitda * capex_rate * (1 - clamp(capex_reduction, 0.0, 1.0))
    fcf = (business.ebitda - capex) * (1 + cash_conversion_bonus)
    fcf *= 1 - business.rollover_equity_pct
    return round(finite_or(fcf))


def calculate_portfolio_fcf(businesses: Iterable[Business], capex_reduction: float = 0.0,
                            cash_conversion_bonus: float = 0.0) -> int:
    return sum(
        calculate_annual_fcf(b, capex_reduction, cash_conversion_bonus)
        for b in businesses if b.is_active
    )


def opco_interest(businesses: Iterable[Business], rate_penalty: float = 0.0) -> int:
    total = 0
    for b in businesses:
        if not b.carries_debt:
            continue
        total += b.seller_note.scheduled_interest()
        total += b.bank_debt.scheduled_interest(rate_penalty)
    return total


def calculate_portfolio_tax(businesses: Iterable[Business], holdco_debt: int, holdco_rate: float,
                            shared_services_cost: int = 0, rate_penalty: float = 0.0) -> PortfolioTax:
    """Portfolio tax with loss, interest and shared-services shields

    Deductions are applied in order (losses, interest, shared services) and
    taxable income never drops below zero.
    """
    businesses = list(businesses)
    active = [b for b in businesses if b.is_active]
    gross = sum(b.ebitda for b in active if b.ebitda > 0)
    losses = sum(-b.ebitda for b in active if b.ebitda < 0)
    holdco_interest = round(max(0, holdco_debt) * (holdco_rate + rate_penalty))
    opco = opco_interest(businesses, rate_penalty)
    interest = holdco_interest + opco
    shared = max(0, shared_services_cost)

    remaining = gross
    loss_shield = min(remaining, losses)
    remaining -= loss_shield
    interest_shield = min(remaining, interest)
    remaining -= interest_shield
    shared_shield = min(remaining, shared)
    remaining -= shared_shield

    taxable = max(0, remaining)
    tax = round(taxable * BALANCE.tax_rate)
    return PortfolioTax(
        gross_ebitda=gross,
        loss_offset=losses,
        holdco_interest=holdco_interest,
        opco_interest=opco,
        shared_services_cost=shared,
        taxable_income=taxable,
        tax=tax,
        loss_shield=round(loss_shield * BALANCE.tax_rate),
        interest_shield=round(interest_shield * BALANCE.tax_rate),
        shared_services_shield=round(shared_shield * BALANCE.tax_rate),
        effective_rate=safe_divide(tax, gross),
    )


# ==================== Operations ====================

def scale_business(business: Business, factor: float) -> Business:
    """Scale revenue and EBITDA together (margin unchanged)"""
    factor = finite_or(factor, 1.0)
    revenue = max(0, round(business.revenue * factor))
    ebitda = round(business.ebitda * factor)
    return replace(
        business,
        revenue=revenue,
        ebitda=ebitda,
        peak_ebitda=max(business.peak_ebitda, ebitda),
    )


def shift_margin(business: Business, delta: float) -> Business:
    margin = clamp(business.ebitda_margin + delta, BALANCE.min_margin, BALANCE.max_margin)
    ebitda = round(business.revenue * margin)
    return replace(
        business,
        ebitda_margin=margin,
        ebitda=ebitda,
        peak_ebitda=max(business.peak_ebitda, ebitda),
    )


@dataclass
class GrowthModifiers:
    shared_services_growth: float = 0.0
    brand_bonus: bool = False
    focus_sector_id: Optional[str] = None
    focus_tier: int = 0
    inflation: bool = False


def growth_modifiers_for(state: GameState) -> GrowthModifiers:
    benefits = shared_services_benefits(state)
    focus_sector, tier = sector_focus(state.businesses)
    return GrowthModifiers(
        shared_services_growth=benefits.growth_bonus,
        brand_bonus=benefits.brand_bonus,
        focus_sector_id=focus_sector,
        focus_tier=tier,
        inflation=state.inflation_rounds > 0,
    )


def apply_organic_growth(business: Business, rng: SeededRng, mods: GrowthModifiers) -> Business:
    """One year of organic growth for one business

    Draw order: growth noise, margin noise, then integration penalty when the
    business is still integrating.
    """
    sector = get_sector(business.sector_id)
    growth = clamp(business.organic_growth_rate,
                   BALANCE.min_organic_growth_rate, BALANCE.max_organic_growth_rate)
    growth += sector.volatility * (rng.next() * 2 - 1)
    margin_noise = sector.volatility * 0.1 * (rng.next() * 2 - 1)

    growth += mods.shared_services_growth
    if mods.brand_bonus and business.sector_id in BRAND_SECTORS:
        growth += BRAND_SECTOR_EXTRA_GROWTH
    if mods.focus_sector_id == business.sector_id:
        growth += SECTOR_FOCUS_GROWTH_BONUS[mods.focus_tier]
    integration_rounds = business.integration_rounds_remaining
    if integration_rounds > 0:
        growth -= rng.next_in_range(INTEGRATION_PENALTY_RANGE)
        integration_rounds -= 1
    if mods.inflation:
        growth -= BALANCE.inflation_growth_drag

    revenue = max(1, round(business.revenue * (1 + growth)))
    margin = clamp(business.ebitda_margin + business.margin_drift + margin_noise,
                   BALANCE.min_margin, BALANCE.max_margin)
    ebitda = round(revenue * margin)

    floor = round(business.acquisition_ebitda * BALANCE.ebitda_floor_pct)
    if business.acquisition_ebitda > 0 and ebitda < floor:
        ebitda = floor
        margin = clamp(safe_divide(ebitda, revenue, margin), BALANCE.min_margin, BALANCE.max_margin)

    return replace(
        business,
        revenue=revenue,
        ebitda=ebitda,
        ebitda_margin=margin,
        peak_ebitda=max(business.peak_ebitda, ebitda),
        integration_rounds_remaining=integration_rounds,
    )


# ==================== Exit Valuation ====================

def calculate_size_tier_premium(ebitda: float) -> float:
    """Bigger businesses clear to a deeper buyer pool"""
    def lerp(x, x0, x1, y0, y1):
        return y0 + (x - x0) / (x1 - x0) * (y1 - y0)

    if ebitda < 2000:
        return 0.0
    if ebitda < 5000:
        return lerp(ebitda, 2000, 5000, 0.5, 0.8)
    if ebitda < 10000:
        return lerp(ebitda, 5000, 10000, 0.8, 1.5)
    if ebitda < 20000:
        return lerp(ebitda, 10000, 20000, 1.5, 2.5)
    return lerp(min(ebitda, 30000), 20000, 30000, 2.5, 3.5)


def calculate_de_risking_premium(business: Business) -> float:
    dd = business.due_diligence
    premium = 0.0
    if dd.revenue_concentration == "low":
        premium += 0.3
    if dd.operator_quality == "strong":
        premium += 0.3
    if len(business.improvements) >= 2:
        premium += 0.2
    if dd.customer_retention >= 90:
        premium += 0.2
    return min(1.5, premium)


def calculate_turnaround_premium(business: Business) -> float:
    """Buyers pay up for a proven turnaround of two or more quality tiers"""
    if business.quality_improved_tiers >= BALANCE.turnaround_premium_min_tiers:
        return BALANCE.turnaround_exit_premium
    return 0.0


def calculate_exit_valuation(business: Business, current_round: int,
                             last_event_type: Optional[EventType] = None,
                             restructuring_penalty: float = 0.0,
                             platform_expansion: float = 0.0) -> ExitValuation:
    """Exit multiple and proceeds for selling `business` now

    The multiple is additive over its components and floored at the
    minimum exit multiple whatever the inputs. `platform_expansion` is the
    multiple uplift of the integrated platform the business belongs to.
    """
    base = business.acquisition_multiple or get_sector(business.sector_id).midpoint_multiple

    if business.acquisition_ebitda > 0:
        growth = (business.ebitda - business.acquisition_ebitda) / business.acquisition_ebitda
    else:
        growth = 0.0
    if growth > 0:
        growth_premium = min(2.5, growth * 0.8)
    else:
        growth_premium = max(-1.0, growth * 0.5)

    quality_premium = (business.quality - 3) * 0.4
    platform_premium = business.platform_scale * 0.2 if business.is_platform else 0.0
    years_held = max(0, current_round - business.acquisition_round)
    hold_premium = min(BALANCE.max_hold_premium, years_held * 0.1)
    improvements_premium = len(business.improvements) * BALANCE.improvement_premium

    market_modifier = 0.0
    if last_event_type == EventType.BULL_MARKET:
        market_modifier = BALANCE.market_modifier
    elif last_event_type == EventType.RECESSION:
        market_modifier = -BALANCE.market_modifier

    size_premium = calculate_size_tier_premium(business.ebitda)
    de_risking = calculate_de_risking_premium(business)
    turnaround_premium = calculate_turnaround_premium(business)

    raw = (base + growth_premium + quality_premium + platform_premium + hold_premium
           + improvements_premium + market_modifier + size_premium + de_risking
           + platform_expansion + turnaround_premium - restructuring_penalty)
    total = max(BALANCE.min_exit_multiple, finite_or(raw, BALANCE.min_exit_multiple))

    exit_price = round(max(0, business.ebitda) * total)
    holdco_share = round(exit_price * (1 - business.rollover_equity_pct))
    net = max(0, holdco_share - business.total_debt)
    return ExitValuation(
        business_id=business.id,
        base_multiple=base,
        growth_premium=growth_premium,
        quality_premium=quality_premium,
        platform_premium=platform_premium,
        hold_premium=hold_premium,
        improvements_premium=improvements_premium,
        market_modifier=market_modifier,
        size_tier_premium=size_premium,
        de_risking_premium=de_risking,
        restructuring_penalty=restructuring_penalty,
        total_multiple=total,
        exit_price=exit_price,
        net_proceeds=net,
        integration_premium=platform_expansion,
        turnaround_premium=turnaround_premium,
    )


def exit_valuation_for(state: GameState, business: Business) -> ExitValuation:
    """Exit valuation of an owned business under current market conditions"""
    return calculate_exit_valuation(
        business, state.round, state.last_event_type, state.exit_multiple_penalty,
        platform_multiple_expansion(business, state.integrated_platforms))


def portfolio_exit_value(state: GameState) -> int:
    """Gross exit value of every active business, holdco share"""
    total = 0
    for b in state.active_businesses():
        valuation = exit_valuation_for(state, b)
        total += round(valuation.exit_price * (1 - b.rollover_equity_pct))
    return total


# ==================== Metrics ====================

def calculate_nopat(businesses: List[Business], capex_reduction: float = 0.0) -> int:
    pre_tax = 0
    for b in businesses:
        if not b.is_active:
            continue
        capex = b.ebitda * get_sector(b.sector_id).capex_rate * (1 - capex_reduction)
        pre_tax += (b.ebitda - capex) * (1 - b.rollover_equity_pct)
    return round(max(0.0, pre_tax) * (1 - BALANCE.tax_rate))


def calculate_metrics(state: GameState) -> Metrics:
    """Derived metrics snapshot; every ratio guarded against degenerate inputs"""
    active = state.active_businesses()
    benefits = shared_services_benefits(state)
    distress = assess_distress(state)
    penalty = get_distress_restrictions(distress).interest_penalty

    total_ebitda = state.total_ebitda()
    total_revenue = state.total_revenue()
    total_debt = state.total_debt()
    net_debt = total_debt - state.cash

    portfolio_fcf = calculate_portfolio_fcf(active, benefits.capex_reduction, benefits.cash_conversion_bonus)
    overhead = benefits.annual_cost + sourcing_annual_cost(state) + turnaround_annual_cost(state)
    tax = calculate_portfolio_tax(state.businesses, state.holdco_loan.balance,
                                  state.holdco_loan.rate, benefits.annual_cost, penalty)
    interest = tax.holdco_interest + tax.opco_interest
    net_fcf = portfolio_fcf - overhead - tax.tax - interest

    portfolio_value = portfolio_exit_value(state)
    equity_value = max(0, portfolio_value + state.cash - total_debt)

    nopat = calculate_nopat(active, benefits.capex_reduction)
    invested = state.total_invested_capital
    roic = safe_divide(nopat, invested)

    roiic = 0.0
    if state.metrics_history:
        lookback = state.metrics_history[-ROIIC_LOOKBACK:][0]
        delta_capital = invested - lookback.invested_capital
        if delta_capital > 0:
            roiic = safe_divide(nopat - lookback.nopat, delta_capital)

    equity_in = state.initial_raise + state.total_equity_raised
    moic = safe_divide(equity_value + state.total_distributions, equity_in)

    leverage = calculate_leverage(net_debt, total_ebitda)
    return Metrics(
        round=state.round,
        cash=state.cash,
        total_debt=total_debt,
        net_debt=net_debt,
        total_revenue=total_revenue,
        total_ebitda=total_ebitda,
        avg_margin=safe_divide(total_ebitda, total_revenue),
        portfolio_fcf=portfolio_fcf,
        net_fcf=net_fcf,
        fcf_per_share=safe_divide(net_fcf, state.shares_outstanding),
        interest_expense=interest,
        tax=tax.tax,
        cash_conversion=safe_divide(net_fcf, total_ebitda),
        portfolio_value=portfolio_value,
        intrinsic_value_per_share=safe_divide(equity_value, state.shares_outstanding),
        roic=finite_or(roic),
        roiic=finite_or(roiic),
        moic=finite_or(moic),
        net_debt_to_ebitda=leverage,
        distress_level=distress,
        active_businesses=len(active),
        founder_ownership=state.founder_ownership(),
    )


def record_historical_metrics(state: GameState, metrics: Metrics) -> HistoricalMetrics:
    benefits = shared_services_benefits(state)
    return HistoricalMetrics(
        round=state.round,
        total_ebitda=metrics.total_ebitda,
        nopat=calculate_nopat(state.active_businesses(), benefits.capex_reduction),
        invested_capital=state.total_invested_capital,
        fcf_per_share=metrics.fcf_per_share,
        net_debt_to_ebitda=metrics.net_debt_to_ebitda,
    )

