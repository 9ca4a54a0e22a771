"""
Holdco Engine - Player Actions
==============================
Every player decision as a transition `(state, ...) -> state`.

Each action validates phase, cash and eligibility first. An invalid action
is a no-op: the returned state differs from the input only in `reason`.
Valid actions work on a clone, so the caller's state is never touched.
Actions that need randomness take the round's `RngStreams` explicitly.
"""

import copy
from typing import List, Optional

import structlog

from deals import (
    find_structure,
    generate_outreach_deals,
    generate_sourced_deals,
    max_acquisitions_per_round,
    roll_contested_snatch,
)
from distress import state_restrictions
from events import apply_choice
from financials import (
    calculate_metrics,
    exit_valuation_for,
    money,
    safe_divide,
    shared_services_benefits,
    shift_margin,
)
from game_config import (
    BALANCE,
    IMPROVEMENTS,
    MAX_ACTIVE_SHARED_SERVICES,
    MAX_SOURCING_TIER,
    MAX_TURNAROUND_TIER,
    MIN_OPCOS_FOR_SHARED_SERVICES,
    OUTREACH_MIN_TIER,
    PROACTIVE_OUTREACH_COST,
    SHARED_SERVICES,
    SOURCE_DEALS_COST,
    SOURCING_TIERS,
    TURNAROUND_TIERS,
    ImprovementType,
    SharedServiceType,
)
from models import (
    Business,
    BusinessStatus,
    ChoiceAction,
    DealStructureType,
    DebtInstrument,
    EarnoutTerms,
    GameState,
    MAFocus,
    Phase,
    Turnaround,
)
from platforms import (
    check_platform_eligibility,
    covers_recipe,
    dissolve_broken_platforms,
    forge_integrated_platform,
    integration_cost,
)
from portfolio import dispose_business, record_action, reject, replace_business
from rng import RngStreams
from sectors import SECTOR_IDS
from turnarounds import eligible_programs, get_program, turnaround_cost, turnaround_duration

log = structlog.get_logger(__name__)

PLATFORM_DESIGNATION_COST_PCT = 0.05
PLATFORM_MIN_QUALITY = 3
EMERGENCY_MIN_SHARE_PRICE = 1.0   # $k per share
MA_FOCUS_SIZES = (None, "small", "medium", "large")


# ==================== Guards ====================

def _phase_error(state: GameState, phase: Phase) -> Optional[str]:
    if state.game_over:
        return "The game is over."
    if state.phase != phase:
        return f"Not available during the {state.phase.value} phase."
    return None


def _active_business(state: GameState, business_id: str) -> Optional[Business]:
    business = state.find_business(business_id)
    if business is None or not business.is_active:
        return None
    return business


def _share_price(state: GameState) -> float:
    return calculate_metrics(state).intrinsic_value_per_share


# ==================== Acquisitions ====================

def acquire_business(state: GameState, deal_id: str, structure_type: DealStructureType,
                     streams: RngStreams, platform_id: Optional[str] = None) -> GameState:
    """Buy the business in `deal_id` with the chosen financing

    Args:
        state: Current state (allocate phase)
        deal_id: Deal in the pipeline
        structure_type: One of the structures offered for the deal
        streams: This round's streams; the contested roll forks the market stream
        platform_id: Optional platform to fold the business into as a tuck-in

    Returns:
        New state. A contested deal may be lost to a rival bidder, in which
        case it leaves the pipeline and no business changes hands.
    """
    error = _phase_error(state, Phase.ALLOCATE)
    if error:
        return reject(state, error)
    if not state_restrictions(state).can_acquire:
        return reject(state, "Covenant breach: lenders block new acquisitions.")
    if state.acquisitions_this_round >= max_acquisitions_per_round(state.ma_sourcing_tier):
        return reject(state, "Acquisition capacity for this year is used up.")
    deal = state.find_deal(deal_id)
    if deal is None:
        return reject(state, f"Deal {deal_id} is no longer available.")
    structure = find_structure(deal, state, structure_type)
    if structure is None:
        return reject(state, f"{structure_type.value} financing is not offered for this deal.")
    if structure.cash_required > state.cash:
        return reject(state, f"Need {money(structure.cash_required)} cash at close, have {money(state.cash)}.")

    platform = None
    if platform_id is not None:
        platform = _active_business(state, platform_id)
        if platform is None or not platform.is_platform:
            return reject(state, "Tuck-ins need an active platform company.")
        if platform.sector_id != deal.business.sector_id:
            return reject(state, "Tuck-ins must be in the platform's sector.")

    state = state.clone()
    deal = state.find_deal(deal_id)
    state.deal_pipeline = [d for d in state.deal_pipeline if d.id != deal_id]
    # a lost auction still uses up an acquisition slot
    state.acquisitions_this_round += 1

    if roll_contested_snatch(deal, streams):
        log.info("deal.snatched", round=state.round, deal_id=deal_id)
        record_action(state, f"Outbid on {deal.business.name}: a rival buyer closed first.")
        return state

    business = copy.deepcopy(deal.business)
    business.status = BusinessStatus.ACTIVE
    business.acquisition_round = state.round
    business.acquisition_price = deal.effective_price
    business.seller_note = copy.deepcopy(structure.seller_note) or DebtInstrument()
    business.bank_debt = copy.deepcopy(structure.bank_debt) or DebtInstrument()
    business.earnout = copy.deepcopy(structure.earnout) or EarnoutTerms()
    business.rollover_equity_pct = structure.rollover_equity_pct
    if business.earnout.active:
        business.earnout.baseline_ebitda = business.ebitda
        business.earnout.measured_business_id = business.id

    state.cash -= structure.cash_required
    state.total_invested_capital += deal.effective_price

    if platform is not None:
        platform = state.find_business(platform_id)
        business.status = BusinessStatus.INTEGRATED
        business.parent_platform_id = platform.id
        platform.bolt_on_ids.append(business.id)
        weight = safe_divide(business.ebitda, platform.ebitda + business.ebitda, 0.0)
        platform.rollover_equity_pct = round(
            platform.rollover_equity_pct * (1 - weight) + business.rollover_equity_pct * weight, 4)
        platform.revenue += business.revenue
        platform.ebitda += business.ebitda
        platform.ebitda_margin = safe_divide(platform.ebitda, platform.revenue, platform.ebitda_margin)
        platform.acquisition_ebitda += business.ebitda
        platform.acquisition_revenue += business.revenue
        platform.peak_ebitda = max(platform.peak_ebitda, platform.ebitda)
        platform.platform_scale += 1
        platform.integration_rounds_remaining = max(platform.integration_rounds_remaining,
                                                    BALANCE.integration_rounds)
        if business.earnout.active:
            business.earnout.baseline_ebitda = platform.ebitda
            business.earnout.measured_business_id = platform.id
        message = f"Tucked {business.name} into {platform.name} for {money(deal.effective_price)}."
    else:
        message = f"Acquired {business.name} for {money(deal.effective_price)} ({structure_type.value})."

    state.businesses.append(business)
    log.info("deal.closed", round=state.round, deal_id=deal_id, structure=structure_type.value,
             price=deal.effective_price, cash_paid=structure.cash_required, platform_id=platform_id)
    record_action(state, message)
    return state


def designate_platform(state: GameState, business_id: str) -> GameState:
    error = _phase_error(state, Phase.ALLOCATE)
    if error:
        return reject(state, error)
    business = _active_business(state, business_id)
    if business is None:
        return reject(state, f"No active business {business_id}.")
    if business.is_platform:
        return reject(state, f"{business.name} is already a platform.")
    if business.quality < PLATFORM_MIN_QUALITY:
        return reject(state, f"Platforms need quality {PLATFORM_MIN_QUALITY}+.")
    cost = round(max(0, business.ebitda) * PLATFORM_DESIGNATION_COST_PCT)
    if cost > state.cash:
        return reject(state, f"Need {money(cost)} to stand up the platform team.")

    state = state.clone()
    business = state.find_business(business_id)
    business.is_platform = True
    business.platform_scale = max(1, business.platform_scale)
    state.cash -= cost
    record_action(state, f"{business.name} designated as a platform.")
    return state


def _combine_notes(a: DebtInstrument, b: DebtInstrument) -> DebtInstrument:
    balance = a.balance + b.balance
    if balance <= 0:
        return DebtInstrument()
    rate = safe_divide(a.balance * a.rate + b.balance * b.rate, balance)
    return DebtInstrument(balance=balance, rate=round(rate, 4),
                          rounds_remaining=max(a.rounds_remaining, b.rounds_remaining))


def merge_businesses(state: GameState, first_id: str, second_id: str) -> GameState:
    """Combine two same-sector opcos into one platform under `first_id`"""
    error = _phase_error(state, Phase.ALLOCATE)
    if error:
        return reject(state, error)
    if first_id == second_id:
        return reject(state, "Pick two different businesses to merge.")
    first = _active_business(state, first_id)
    second = _active_business(state, second_id)
    if first is None or second is None:
        return reject(state, "Both businesses must be active.")
    if first.sector_id != second.sector_id:
        return reject(state, "Only businesses in the same sector can merge.")
    cost = round(max(0, first.ebitda + second.ebitda) * BALANCE.merge_cost_pct)
    if cost > state.cash:
        return reject(state, f"Need {money(cost)} to fund the merger.")

    state = state.clone()
    first = state.find_business(first_id)
    second = state.find_business(second_id)

    combined_ebitda = first.ebitda + second.ebitda
    weight = safe_divide(second.ebitda, combined_ebitda, 0.5)
    first.rollover_equity_pct = round(
        first.rollover_equity_pct * (1 - weight) + second.rollover_equity_pct * weight, 4)
    first.organic_growth_rate = round(
        first.organic_growth_rate * (1 - weight) + second.organic_growth_rate * weight, 4)
    first.quality = round((first.quality + second.quality) / 2 + 0.01)
    first.revenue += second.revenue
    first.ebitda = combined_ebitda
    first.ebitda_margin = safe_divide(first.ebitda, first.revenue, first.ebitda_margin)
    first.acquisition_ebitda += second.acquisition_ebitda
    first.acquisition_revenue += second.acquisition_revenue
    first.acquisition_price += second.acquisition_price
    first.acquisition_round = min(first.acquisition_round, second.acquisition_round)
    first.peak_ebitda = max(first.peak_ebitda, combined_ebitda)
    first.seller_note = _combine_notes(first.seller_note, second.seller_note)
    first.bank_debt = _combine_notes(first.bank_debt, second.bank_debt)
    if second.earnout.active:
        first.earnout = EarnoutTerms(
            remaining=first.earnout.remaining + second.earnout.remaining,
            target_growth=max(first.earnout.target_growth, second.earnout.target_growth),
            rounds_remaining=max(first.earnout.rounds_remaining, second.earnout.rounds_remaining),
        )
    if first.earnout.active:
        first.earnout.baseline_ebitda = combined_ebitda
        first.earnout.measured_business_id = first.id
    for improvement in second.improvements:
        if improvement not in first.improvements:
            first.improvements.append(improvement)

    first.is_platform = True
    first.platform_scale = max(1, first.platform_scale) + max(1, second.platform_scale)
    first.integration_rounds_remaining = BALANCE.integration_rounds
    for bolt_on_id in second.bolt_on_ids:
        bolt_on = state.find_business(bolt_on_id)
        if bolt_on is not None:
            bolt_on.parent_platform_id = first.id
            if bolt_on.earnout.measured_business_id == second.id:
                bolt_on.earnout.measured_business_id = first.id
        first.bolt_on_ids.append(bolt_on_id)

    second.seller_note = DebtInstrument()
    second.bank_debt = DebtInstrument()
    second.earnout = EarnoutTerms()
    second.bolt_on_ids = []
    second.status = BusinessStatus.MERGED
    second.exit_round = state.round
    second.parent_platform_id = first.id
    dissolve_broken_platforms(state)

    state.cash -= cost
    record_action(state, f"Merged {second.name} into {first.name}.")
    return state


# ==================== Operations ====================

def improve_business(state: GameState, business_id: str, improvement: ImprovementType,
                     streams: RngStreams) -> GameState:
    """Fund an operational improvement; the margin uplift is drawn per attempt"""
    error = _phase_error(state, Phase.ALLOCATE)
    if error:
        return reject(state, error)
    business = _active_business(state, business_id)
    if business is None:
        return reject(state, f"No active business {business_id}.")
    definition = IMPROVEMENTS[improvement]
    if improvement in business.improvements:
        return reject(state, f"{definition.name} already done at {business.name}.")
    if business.quality > definition.max_quality:
        return reject(state, f"{definition.name} only applies to quality {definition.max_quality} or below.")

    discount = shared_services_benefits(state).reinvestment_bonus
    cost = max(definition.min_cost, round(max(0, business.ebitda) * definition.cost_pct))
    cost = round(cost * max(0.0, 1 - discount))
    if cost > state.cash:
        return reject(state, f"Need {money(cost)} for {definition.name.lower()}.")

    state = state.clone()
    business = state.find_business(business_id)
    rng = streams.simulation.fork(f"improve-{business_id}-{len(business.improvements)}")
    boost = rng.next_in_range(definition.margin_boost_range)
    improved = shift_margin(business, boost)
    improved.organic_growth_rate = round(improved.organic_growth_rate + definition.growth_boost, 4)
    if improvement == ImprovementType.FIX_UNDERPERFORMANCE:
        improved.quality = min(5, improved.quality + 1)
    improved.improvements = business.improvements + [improvement]
    replace_business(state, improved)

    state.cash -= cost
    state.total_invested_capital += cost
    record_action(state, f"{definition.name} at {business.name} for {money(cost)} "
                         f"(margin {boost:+.1%}).")
    return state


def sell_business(state: GameState, business_id: str) -> GameState:
    error = _phase_error(state, Phase.ALLOCATE)
    if error:
        return reject(state, error)
    business = _active_business(state, business_id)
    if business is None:
        return reject(state, f"No active business {business_id}.")

    state = state.clone()
    valuation = exit_valuation_for(state, business)
    proceeds = dispose_business(state, business_id, valuation.exit_price)
    log.info("business.sold", round=state.round, business_id=business_id,
             price=valuation.exit_price, multiple=round(valuation.total_multiple, 2), proceeds=proceeds)
    record_action(state, f"Sold {business.name} at {valuation.total_multiple:.1f}x for "
                         f"{money(valuation.exit_price)}; {money(proceeds)} net.")
    return state


def _debt_with_bolt_ons(state: GameState, business: Business) -> int:
    debt = business.total_debt
    for bolt_on_id in business.bolt_on_ids:
        bolt_on = state.find_business(bolt_on_id)
        if bolt_on is not None and bolt_on.status == BusinessStatus.INTEGRATED:
            debt += bolt_on.total_debt
    return debt


def wind_down_business(state: GameState, business_id: str) -> GameState:
    """Close a business: pay off its debt plus shutdown costs, receive nothing"""
    error = _phase_error(state, Phase.ALLOCATE)
    if error:
        return reject(state, error)
    business = _active_business(state, business_id)
    if business is None:
        return reject(state, f"No active business {business_id}.")
    cost = round(max(0, business.ebitda) * BALANCE.wind_down_cost_pct) + _debt_with_bolt_ons(state, business)
    if cost > state.cash:
        return reject(state, f"Winding down {business.name} costs {money(cost)}.")

    state = state.clone()
    dispose_business(state, business_id, 0, status=BusinessStatus.WOUND_DOWN)
    state.cash -= cost
    record_action(state, f"Wound down {business.name} at a cost of {money(cost)}.")
    return state


# ==================== Capital ====================

def pay_down_debt(state: GameState, amount: int) -> GameState:
    error = _phase_error(state, Phase.ALLOCATE)
    if error:
        return reject(state, error)
    if amount <= 0:
        return reject(state, "Amount must be positive.")
    if state.holdco_loan.balance <= 0:
        return reject(state, "No holdco debt outstanding.")
    if amount > state.cash:
        return reject(state, f"Only {money(state.cash)} cash available.")

    state = state.clone()
    paid = min(amount, state.holdco_loan.balance)
    state.holdco_loan.balance -= paid
    if state.holdco_loan.balance <= 0:
        state.holdco_loan.rounds_remaining = 0
    state.cash -= paid
    record_action(state, f"Repaid {money(paid)} of holdco debt.")
    return state


def issue_equity(state: GameState, amount: int) -> GameState:
    """Sell new shares at intrinsic value; founder must keep majority control"""
    error = _phase_error(state, Phase.ALLOCATE)
    if error:
        return reject(state, error)
    if amount <= 0:
        return reject(state, "Amount must be positive.")
    if state.equity_raises_this_round >= BALANCE.max_equity_raises_per_round:
        return reject(state, "Only one equity raise per year.")
    price = _share_price(state)
    if price <= 0:
        return reject(state, "No investor will buy shares in a holdco with no equity value.")
    new_shares = round(amount / price)
    if new_shares <= 0:
        return reject(state, "Raise is too small to issue a share.")
    ownership_after = safe_divide(state.founder_shares, state.shares_outstanding + new_shares)
    if ownership_after < BALANCE.min_founder_ownership:
        return reject(state, f"Raise would leave the founder with {ownership_after:.0%}; "
                             f"minimum is {BALANCE.min_founder_ownership:.0%}.")

    state = state.clone()
    state.cash += amount
    state.shares_outstanding += new_shares
    state.total_equity_raised += amount
    state.equity_raises_this_round += 1
    state.equity_cashflows.append({'round': state.round, 'amount': -amount})
    record_action(state, f"Issued {new_shares} shares at {money(price)} for {money(amount)}.")
    return state


def buyback_shares(state: GameState, amount: int) -> GameState:
    error = _phase_error(state, Phase.ALLOCATE)
    if error:
        return reject(state, error)
    if amount <= 0:
        return reject(state, "Amount must be positive.")
    if not state_restrictions(state).can_buyback:
        return reject(state, "Covenant breach: buybacks are blocked.")
    if amount > state.cash:
        return reject(state, f"Only {money(state.cash)} cash available.")
    price = _share_price(state)
    if price <= 0:
        return reject(state, "Shares have no intrinsic value to buy back at.")
    shares = round(amount / price)
    outside_shares = state.shares_outstanding - state.founder_shares
    if shares <= 0 or shares > outside_shares:
        return reject(state, f"Only {outside_shares} outside shares can be bought back.")

    state = state.clone()
    state.cash -= amount
    state.shares_outstanding -= shares
    state.total_buybacks += amount
    state.equity_cashflows.append({'round': state.round, 'amount': amount})
    record_action(state, f"Bought back {shares} shares for {money(amount)}.")
    return state


def distribute(state: GameState, amount: int) -> GameState:
    error = _phase_error(state, Phase.ALLOCATE)
    if error:
        return reject(state, error)
    if amount <= 0:
        return reject(state, "Amount must be positive.")
    if not state_restrictions(state).can_distribute:
        return reject(state, "Covenant breach: distributions are blocked.")
    if amount > state.cash:
        return reject(state, f"Only {money(state.cash)} cash available.")

    state = state.clone()
    state.cash -= amount
    state.total_distributions += amount
    state.equity_cashflows.append({'round': state.round, 'amount': amount})
    record_action(state, f"Distributed {money(amount)} to shareholders.")
    return state


# ==================== Capabilities ====================

def unlock_shared_service(state: GameState, service: SharedServiceType) -> GameState:
    """Unlock (or reactivate) a shared service"""
    error = _phase_error(state, Phase.ALLOCATE)
    if error:
        return reject(state, error)
    definition = SHARED_SERVICES[service]
    if state.shared_services.get(service):
        return reject(state, f"{definition.name} is already active.")
    if len(state.active_shared_services()) >= MAX_ACTIVE_SHARED_SERVICES:
        return reject(state, f"At most {MAX_ACTIVE_SHARED_SERVICES} shared services can run at once.")
    if len(state.active_businesses()) < MIN_OPCOS_FOR_SHARED_SERVICES:
        return reject(state, f"Shared services need {MIN_OPCOS_FOR_SHARED_SERVICES}+ opcos.")
    cost = 0 if service in state.shared_services else definition.unlock_cost
    if cost > state.cash:
        return reject(state, f"Need {money(cost)} to unlock {definition.name}.")

    state = state.clone()
    state.shared_services[service] = True
    state.cash -= cost
    record_action(state, f"{definition.name} switched on ({definition.effect}).")
    return state


def deactivate_shared_service(state: GameState, service: SharedServiceType) -> GameState:
    error = _phase_error(state, Phase.ALLOCATE)
    if error:
        return reject(state, error)
    if not state.shared_services.get(service):
        return reject(state, f"{SHARED_SERVICES[service].name} is not active.")
    state = state.clone()
    state.shared_services[service] = False
    record_action(state, f"{SHARED_SERVICES[service].name} switched off.")
    return state


def set_ma_focus(state: GameState, sector_id: Optional[str], size: Optional[str] = None) -> GameState:
    error = _phase_error(state, Phase.ALLOCATE)
    if error:
        return reject(state, error)
    if sector_id is not None and sector_id not in SECTOR_IDS:
        return reject(state, f"Unknown sector {sector_id}.")
    if size not in MA_FOCUS_SIZES:
        return reject(state, f"Unknown deal size {size}.")
    state = state.clone()
    state.ma_focus = MAFocus(sector_id=sector_id, size=size)
    record_action(state, f"M&A focus set to {sector_id or 'any sector'} / {size or 'any size'}.")
    return state


def upgrade_ma_sourcing(state: GameState) -> GameState:
    error = _phase_error(state, Phase.ALLOCATE)
    if error:
        return reject(state, error)
    if state.ma_sourcing_tier >= MAX_SOURCING_TIER:
        return reject(state, "Sourcing is already at the top tier.")
    tier = SOURCING_TIERS[state.ma_sourcing_tier + 1]
    if len(state.active_businesses()) < tier.min_opcos:
        return reject(state, f"Tier {tier.tier} sourcing needs {tier.min_opcos}+ opcos.")
    if tier.upgrade_cost > state.cash:
        return reject(state, f"Need {money(tier.upgrade_cost)} to upgrade sourcing.")
    state = state.clone()
    state.ma_sourcing_tier = tier.tier
    state.cash -= tier.upgrade_cost
    record_action(state, f"M&A sourcing upgraded to tier {tier.tier}.")
    return state


def source_deals(state: GameState, streams: RngStreams) -> GameState:
    """Pay a broker for extra deal flow this round"""
    error = _phase_error(state, Phase.ALLOCATE)
    if error:
        return reject(state, error)
    if SOURCE_DEALS_COST > state.cash:
        return reject(state, f"Sourcing costs {money(SOURCE_DEALS_COST)}.")
    state = state.clone()
    deals = generate_sourced_deals(state, streams)
    state.deal_pipeline.extend(deals)
    state.source_calls_this_round += 1
    state.cash -= SOURCE_DEALS_COST
    record_action(state, f"Sourced {len(deals)} new deals.")
    return state


def proactive_outreach(state: GameState, streams: RngStreams) -> GameState:
    error = _phase_error(state, Phase.ALLOCATE)
    if error:
        return reject(state, error)
    if state.ma_sourcing_tier < OUTREACH_MIN_TIER:
        return reject(state, f"Outreach needs sourcing tier {OUTREACH_MIN_TIER}+.")
    if PROACTIVE_OUTREACH_COST > state.cash:
        return reject(state, f"Outreach costs {money(PROACTIVE_OUTREACH_COST)}.")
    state = state.clone()
    deals = generate_outreach_deals(state, streams)
    state.deal_pipeline.extend(deals)
    state.outreach_calls_this_round += 1
    state.cash -= PROACTIVE_OUTREACH_COST
    record_action(state, f"Outreach found {len(deals)} proprietary deals.")
    return state


# ==================== Turnarounds ====================

def unlock_turnaround_tier(state: GameState) -> GameState:
    error = _phase_error(state, Phase.ALLOCATE)
    if error:
        return reject(state, error)
    if state.turnaround_tier >= MAX_TURNAROUND_TIER:
        return reject(state, "Turnaround capability is already at the top tier.")
    next_tier = state.turnaround_tier + 1
    tier = TURNAROUND_TIERS[next_tier]
    if len(state.active_businesses()) < tier.required_opcos:
        return reject(state, f"{tier.name} needs {tier.required_opcos}+ opcos.")
    if tier.unlock_cost > state.cash:
        return reject(state, f"Need {money(tier.unlock_cost)} to set up {tier.name}.")
    state = state.clone()
    state.turnaround_tier = next_tier
    state.cash -= tier.unlock_cost
    record_action(state, f"{tier.name} set up (turnaround tier {next_tier}).")
    return state


def start_turnaround(state: GameState, business_id: str, program_id: str) -> GameState:
    """Start a program at a business; it resolves at the end of its last round"""
    error = _phase_error(state, Phase.ALLOCATE)
    if error:
        return reject(state, error)
    business = _active_business(state, business_id)
    if business is None:
        return reject(state, f"No active business {business_id}.")
    program = get_program(program_id)
    if program is None:
        return reject(state, f"Unknown turnaround program {program_id}.")
    if program not in eligible_programs(business, state):
        return reject(state, f"{business.name} is not eligible for that program.")
    cost = turnaround_cost(program, business)
    if cost > state.cash:
        return reject(state, f"Need {money(cost)} to start the turnaround.")

    state = state.clone()
    state.turnarounds.append(Turnaround(
        id=f"turnaround-{state.round}-{business_id}",
        business_id=business_id,
        program_id=program.id,
        start_round=state.round,
        end_round=state.round + turnaround_duration(program, state.duration),
    ))
    state.cash -= cost
    state.total_invested_capital += cost
    record_action(state, f"Turnaround started at {business.name} for {money(cost)} "
                         f"(Q{program.source_quality} to Q{program.target_quality}).")
    return state


# ==================== Integrated Platforms ====================

def forge_platform(state: GameState, recipe_id: str, business_ids: List[str]) -> GameState:
    """Integrate matching businesses under a recipe for a one-time cost"""
    error = _phase_error(state, Phase.ALLOCATE)
    if error:
        return reject(state, error)
    eligibility = next((e for e in check_platform_eligibility(state) if e.recipe.id == recipe_id), None)
    if eligibility is None:
        return reject(state, "That platform cannot be forged right now.")
    if not business_ids or any(i not in eligibility.business_ids for i in business_ids):
        return reject(state, "Every business must match the recipe and be unintegrated.")
    recipe = eligibility.recipe
    members = [state.find_business(i) for i in dict.fromkeys(business_ids)]
    if not covers_recipe(recipe, members):
        return reject(state, f"{recipe.name} needs {recipe.min_sub_types}+ distinct sub-types.")
    cost = integration_cost(recipe, members)
    if cost > state.cash:
        return reject(state, f"Need {money(cost)} to integrate {recipe.name}.")

    state = state.clone()
    platform = forge_integrated_platform(recipe, [b.id for b in members], state.round)
    for business_id in platform.constituent_ids:
        integrated = shift_margin(state.find_business(business_id), recipe.margin_boost)
        integrated.organic_growth_rate = round(integrated.organic_growth_rate + recipe.growth_boost, 4)
        integrated.integrated_platform_id = platform.id
        replace_business(state, integrated)
    state.integrated_platforms.append(platform)
    state.cash -= cost
    state.total_invested_capital += cost
    log.info("platform.forged", round=state.round, platform_id=platform.id,
             members=len(platform.constituent_ids), cost=cost)
    record_action(state, f"Forged {recipe.name} from {len(members)} businesses for {money(cost)}.")
    return state


# ==================== Events ====================

def resolve_event_choice(state: GameState, action: ChoiceAction, streams: RngStreams) -> GameState:
    error = _phase_error(state, Phase.EVENT)
    if error:
        return reject(state, error)
    event = state.current_event
    if event is None or not event.pending:
        return reject(state, "No event is waiting for a decision.")
    choice = next((c for c in event.choices if c.action == action), None)
    if choice is None:
        return reject(state, f"{action.value} is not an option for {event.title}.")
    if choice.cost > state.cash:
        return reject(state, f"{choice.label} costs {money(choice.cost)}.")
    target = state.find_business(event.business_id) if event.business_id else None
    if target is None or not target.carries_debt:
        return reject(state, "The business this event concerns is no longer owned.")

    state = apply_choice(state, action, streams.market.fork(f"choice-{event.id}"))
    record_action(state, f"{event.title}: {state.current_event.outcome}")
    return state


# ==================== Restructuring ====================

def distressed_sale(state: GameState, business_id: str) -> GameState:
    """Fire-sale a business at a discount to its exit value"""
    error = _phase_error(state, Phase.RESTRUCTURE)
    if error:
        return reject(state, error)
    business = _active_business(state, business_id)
    if business is None:
        return reject(state, f"No active business {business_id}.")

    state = state.clone()
    valuation = exit_valuation_for(state, business)
    price = round(valuation.exit_price * BALANCE.distressed_sale_discount)
    proceeds = dispose_business(state, business_id, price)
    state.restructure_actions_taken += 1
    log.warning("restructure.distressed_sale", round=state.round, business_id=business_id,
                price=price, proceeds=proceeds)
    record_action(state, f"Distressed sale of {business.name} for {money(price)}; {money(proceeds)} net.")
    return state


def emergency_equity_raise(state: GameState, amount: int) -> GameState:
    """Deeply discounted raise; not bound by the founder ownership floor"""
    error = _phase_error(state, Phase.RESTRUCTURE)
    if error:
        return reject(state, error)
    if amount <= 0:
        return reject(state, "Amount must be positive.")
    price = max(EMERGENCY_MIN_SHARE_PRICE, _share_price(state) * (1 - BALANCE.emergency_equity_discount))
    new_shares = max(1, round(amount / price))

    state = state.clone()
    state.cash += amount
    state.shares_outstanding += new_shares
    state.total_equity_raised += amount
    state.equity_cashflows.append({'round': state.round, 'amount': -amount})
    state.restructure_actions_taken += 1
    log.warning("restructure.emergency_raise", round=state.round, amount=amount, shares=new_shares)
    record_action(state, f"Emergency raise: {new_shares} shares for {money(amount)}.")
    return state


def declare_bankruptcy(state: GameState) -> GameState:
    error = _phase_error(state, Phase.RESTRUCTURE)
    if error:
        return reject(state, error)
    state = state.clone()
    state.bankrupt = True
    state.game_over = True
    log.warning("game.bankrupt", round=state.round, declared=True)
    record_action(state, "Bankruptcy declared.")
    return state


def sellable_by_value(state: GameState) -> List[Business]:
    """Active businesses, least valuable first"""
    return sorted(state.active_businesses(), key=lambda b: (b.ebitda, b.id))
