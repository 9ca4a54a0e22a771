"""
Holdco Engine - Events
======================
One event is drawn per round from a prioritized table:

    global macro -> portfolio (eligible businesses only) -> sector
    -> unsolicited offer -> quiet year

Immediate events change the state the moment they are drawn. Choice events
change nothing until the player picks one of the offered choices; the
outcome of a choice is drawn from a fork of the market stream keyed by the
event id.
"""

import copy
from typing import Callable, Dict, List, Optional, Tuple

import structlog

from financials import (
    clamp,
    exit_valuation_for,
    money,
    scale_business,
    shared_services_benefits,
    shift_margin,
)
from game_config import BALANCE
from models import (
    Business,
    BusinessStatus,
    ChoiceAction,
    EventChoice,
    EventImpact,
    EventType,
    GameEvent,
    GameState,
)
from platforms import platform_recession_modifier
from portfolio import dispose_business, replace_business
from rng import SeededRng
from sectors import CHURN_CONCENTRATION_MULTIPLIER, get_sector

log = structlog.get_logger(__name__)


# ==================== Tables ====================

GLOBAL_EVENT_TABLE = (
    (EventType.BULL_MARKET, 0.06),
    (EventType.RECESSION, 0.05),
    (EventType.INTEREST_HIKE, 0.06),
    (EventType.INTEREST_CUT, 0.05),
    (EventType.INFLATION, 0.04),
    (EventType.CREDIT_TIGHTENING, 0.04),
)

PORTFOLIO_EVENT_TABLE = (
    (EventType.STAR_JOINS, 0.05),
    (EventType.TALENT_LEAVES, 0.05),
    (EventType.CLIENT_SIGNS, 0.05),
    (EventType.CLIENT_CHURN, 0.05),
    (EventType.BREAKTHROUGH, 0.03),
    (EventType.COMPLIANCE, 0.03),
    (EventType.WORKING_CAPITAL_CRUNCH, 0.04),
    (EventType.EQUITY_DEMAND, 0.03),
    (EventType.SELLER_NOTE_RENEGO, 0.04),
    (EventType.KEY_MAN_RISK, 0.03),
    (EventType.EARNOUT_DISPUTE, 0.04),
    (EventType.SUPPLIER_SHIFT, 0.03),
)

SECTOR_EVENT_TABLE = (
    (EventType.SECTOR_TAILWIND, 0.04),
    (EventType.SECTOR_HEADWIND, 0.04),
)

OFFER_NO_INTEREST_PER_BUSINESS = 0.95
OFFER_MULTIPLE_RANGE = (0.9, 1.2)
MACRO_EVENT_ROUNDS = 2
RECENT_ACQUISITION_ROUNDS = 2
MAX_COMPLIANCE_COST = 500

EVENT_TITLES = {
    EventType.BULL_MARKET: "Bull Market",
    EventType.RECESSION: "Recession",
    EventType.INTEREST_HIKE: "Rate Hike",
    EventType.INTEREST_CUT: "Rate Cut",
    EventType.INFLATION: "Inflation Spike",
    EventType.CREDIT_TIGHTENING: "Credit Tightening",
    EventType.QUIET: "Quiet Year",
    EventType.STAR_JOINS: "Star Hire",
    EventType.TALENT_LEAVES: "Key Talent Departs",
    EventType.CLIENT_SIGNS: "Major Client Win",
    EventType.CLIENT_CHURN: "Client Churn",
    EventType.BREAKTHROUGH: "Operational Breakthrough",
    EventType.COMPLIANCE: "Compliance Issue",
    EventType.WORKING_CAPITAL_CRUNCH: "Working Capital Crunch",
    EventType.UNSOLICITED_OFFER: "Unsolicited Offer",
    EventType.EQUITY_DEMAND: "Management Wants Equity",
    EventType.SELLER_NOTE_RENEGO: "Seller Note Renegotiation",
    EventType.KEY_MAN_RISK: "Key-Man Risk",
    EventType.EARNOUT_DISPUTE: "Earn-out Dispute",
    EventType.SUPPLIER_SHIFT: "Supplier Price Shift",
    EventType.SECTOR_TAILWIND: "Sector Tailwind",
    EventType.SECTOR_HEADWIND: "Sector Headwind",
}


# ==================== Eligibility ====================

def _active(state: GameState) -> List[Business]:
    return state.active_businesses()


def _recent_with_debt(state: GameState) -> List[Business]:
    return [b for b in state.active_businesses()
            if state.round - b.acquisition_round <= RECENT_ACQUISITION_ROUNDS and b.total_debt > 0]


def _quality_three_plus(state: GameState) -> List[Business]:
    return [b for b in state.active_businesses() if b.quality >= 3]


def _with_seller_note(state: GameState) -> List[Business]:
    return [b for b in state.active_businesses() if b.seller_note.balance > 0]


def _key_man_exposed(state: GameState) -> List[Business]:
    return [b for b in state.active_businesses() if b.quality >= 2]


def _with_earnout(state: GameState) -> List[Business]:
    return [b for b in state.businesses if b.carries_debt and b.earnout.active]


ELIGIBILITY: Dict[EventType, Callable[[GameState], List[Business]]] = {
    EventType.STAR_JOINS: _active,
    EventType.TALENT_LEAVES: _active,
    EventType.CLIENT_SIGNS: _active,
    EventType.CLIENT_CHURN: _active,
    EventType.BREAKTHROUGH: _active,
    EventType.COMPLIANCE: _active,
    EventType.WORKING_CAPITAL_CRUNCH: _recent_with_debt,
    EventType.EQUITY_DEMAND: _quality_three_plus,
    EventType.SELLER_NOTE_RENEGO: _with_seller_note,
    EventType.KEY_MAN_RISK: _key_man_exposed,
    EventType.EARNOUT_DISPUTE: _with_earnout,
    EventType.SUPPLIER_SHIFT: _active,
}


def portfolio_event_probabilities(state: GameState) -> List[Tuple[EventType, float]]:
    """Portfolio table adjusted for recruiting capability"""
    benefits = shared_services_benefits(state)
    table = []
    for event_type, probability in PORTFOLIO_EVENT_TABLE:
        if event_type == EventType.TALENT_LEAVES:
            probability *= max(0.0, 1 - benefits.talent_retention_bonus)
        elif event_type == EventType.STAR_JOINS:
            probability *= 1 + benefits.talent_gain_bonus
        table.append((event_type, probability))
    return table


# ==================== Generation ====================

def generate_event(state: GameState, rng: SeededRng) -> GameEvent:
    """Draw this round's event; eligibility is judged on `state` as it is now"""
    roll = rng.next()
    cumulative = 0.0
    for event_type, probability in GLOBAL_EVENT_TABLE:
        cumulative += probability
        if roll < cumulative:
            return build_event(event_type, state, rng)

    active = state.active_businesses()
    if active:
        roll = rng.next()
        cumulative = 0.0
        for event_type, probability in portfolio_event_probabilities(state):
            eligible = ELIGIBILITY[event_type](state)
            if not eligible:
                continue
            cumulative += probability
            if roll < cumulative:
                return build_event(event_type, state, rng, business=rng.pick(eligible))

        roll = rng.next()
        cumulative = 0.0
        owned_sectors = []
        for b in active:
            if b.sector_id not in owned_sectors:
                owned_sectors.append(b.sector_id)
        for event_type, probability in SECTOR_EVENT_TABLE:
            cumulative += probability
            if roll < cumulative:
                return build_event(event_type, state, rng, sector_id=rng.pick(owned_sectors))

        offer_chance = 1 - OFFER_NO_INTEREST_PER_BUSINESS ** len(active)
        if rng.next() < offer_chance:
            return build_event(EventType.UNSOLICITED_OFFER, state, rng, business=rng.pick(active))

    return build_event(EventType.QUIET, state, rng)


def build_event(event_type: EventType, state: GameState, rng: SeededRng,
                business: Optional[Business] = None, sector_id: Optional[str] = None) -> GameEvent:
    event = GameEvent(
        id=f"evt-{state.round}",
        type=event_type,
        title=EVENT_TITLES[event_type],
        description="",
        round=state.round,
        business_id=business.id if business else None,
        sector_id=sector_id or (business.sector_id if business else None),
    )
    if event_type in CHOICE_BUILDERS:
        CHOICE_BUILDERS[event_type](event, state, business, rng)
    else:
        event.description = describe_immediate(event, business)
    return event


def describe_immediate(event: GameEvent, business: Optional[Business]) -> str:
    name = business.name if business else ""
    sector = get_sector(event.sector_id).name if event.sector_id else ""
    descriptions = {
        EventType.BULL_MARKET: "Buoyant markets lift earnings across the portfolio.",
        EventType.RECESSION: "Demand contracts; cyclical businesses take the hardest hit.",
        EventType.INTEREST_HIKE: "The central bank raises rates; floating debt costs more.",
        EventType.INTEREST_CUT: "Rates come down; floating debt gets cheaper.",
        EventType.INFLATION: "Input costs surge, dragging on growth for two years.",
        EventType.CREDIT_TIGHTENING: "Banks pull back; no new acquisition debt for two years.",
        EventType.QUIET: "A quiet year. Nothing unusual happens.",
        EventType.STAR_JOINS: f"A star operator joins {name}.",
        EventType.TALENT_LEAVES: f"A key leader leaves {name}.",
        EventType.CLIENT_SIGNS: f"{name} lands a major new client.",
        EventType.CLIENT_CHURN: f"{name} loses a significant client.",
        EventType.BREAKTHROUGH: f"{name} finds a lasting operational improvement.",
        EventType.COMPLIANCE: f"Regulators find problems at {name}; fines and remediation follow.",
        EventType.WORKING_CAPITAL_CRUNCH: f"{name} needs a cash injection to fund working capital after the deal.",
        EventType.SECTOR_TAILWIND: f"{sector} enjoys a strong year.",
        EventType.SECTOR_HEADWIND: f"{sector} is under pressure.",
    }
    return descriptions[event.type]


# ==================== Immediate Effects ====================

def _impact(event: GameEvent, business: Optional[Business], metric: str, before, after) -> None:
    event.impacts.append(EventImpact(
        business_id=business.id if business else None,
        metric=metric, before=before, after=after,
    ))


def _scale_one(state: GameState, event: GameEvent, business: Business, factor: float) -> Business:
    updated = scale_business(business, factor)
    replace_business(state, updated)
    _impact(event, business, "ebitda", business.ebitda, updated.ebitda)
    return updated


def _target(state: GameState, event: GameEvent) -> Business:
    business = state.find_business(event.business_id)
    if business is None:
        raise ValueError(f"event {event.id} targets unknown business {event.business_id}")
    return business


def _bull_market(state, event, rng):
    for b in state.active_businesses():
        _scale_one(state, event, b, rng.next_in_range((1.05, 1.15)))


def _recession(state, event, rng):
    for b in state.active_businesses():
        hit = get_sector(b.sector_id).recession_sensitivity * 0.15
        hit *= platform_recession_modifier(b, state.integrated_platforms)
        _scale_one(state, event, b, max(0.0, 1 - hit))


def _shift_rates(state: GameState, event: GameEvent, delta: float) -> None:
    before = state.interest_rate
    state.interest_rate = round(clamp(state.interest_rate + delta,
                                      BALANCE.min_interest_rate, BALANCE.max_interest_rate), 4)
    if state.holdco_loan.balance > 0:
        state.holdco_loan.rate = round(clamp(state.holdco_loan.rate + delta,
                                             BALANCE.min_interest_rate, BALANCE.max_interest_rate), 4)
    for b in state.businesses:
        if b.carries_debt and b.bank_debt.balance > 0:
            b.bank_debt.rate = round(clamp(b.bank_debt.rate + delta,
                                           BALANCE.min_interest_rate, BALANCE.max_interest_rate), 4)
    _impact(event, None, "interest_rate", before, state.interest_rate)


def _interest_hike(state, event, rng):
    _shift_rates(state, event, rng.next_in_range((0.01, 0.02)))


def _interest_cut(state, event, rng):
    _shift_rates(state, event, -rng.next_in_range((0.01, 0.02)))


def _inflation(state, event, rng):
    state.inflation_rounds = MACRO_EVENT_ROUNDS


def _credit_tightening(state, event, rng):
    state.credit_tightening_rounds = MACRO_EVENT_ROUNDS


def _quiet(state, event, rng):
    pass


def _star_joins(state, event, rng):
    b = _scale_one(state, event, _target(state, event), 1.12)
    b.organic_growth_rate = round(b.organic_growth_rate + 0.02, 4)


def _talent_leaves(state, event, rng):
    b = _scale_one(state, event, _target(state, event), 0.90)
    b.organic_growth_rate = round(b.organic_growth_rate - 0.015, 4)


def _client_signs(state, event, rng):
    _scale_one(state, event, _target(state, event), 1 + rng.next_in_range((0.08, 0.12)))


def _client_churn(state, event, rng):
    b = _target(state, event)
    concentration = CHURN_CONCENTRATION_MULTIPLIER.get(b.due_diligence.revenue_concentration, 1.0)
    _scale_one(state, event, b, 1 - rng.next_in_range((0.12, 0.18)) * concentration)


def _breakthrough(state, event, rng):
    _scale_one(state, event, _target(state, event), 1.06)


def _compliance(state, event, rng):
    _scale_one(state, event, _target(state, event), 0.92)
    cost = min(MAX_COMPLIANCE_COST, state.cash)
    _impact(event, None, "cash", state.cash, state.cash - cost)
    state.cash -= cost


def _working_capital_crunch(state, event, rng):
    b = _target(state, event)
    cost = min(state.cash, round(max(0, b.ebitda) * rng.next_in_range((0.10, 0.20))))
    _impact(event, b, "cash", state.cash, state.cash - cost)
    state.cash -= cost


def _sector_wind(factor_range: Tuple[float, float], sign: int):
    def apply(state, event, rng):
        factor = 1 + sign * rng.next_in_range(factor_range)
        for b in state.active_businesses():
            if b.sector_id == event.sector_id:
                _scale_one(state, event, b, factor)
    return apply


IMMEDIATE_EFFECTS: Dict[EventType, Callable[[GameState, GameEvent, SeededRng], None]] = {
    EventType.BULL_MARKET: _bull_market,
    EventType.RECESSION: _recession,
    EventType.INTEREST_HIKE: _interest_hike,
    EventType.INTEREST_CUT: _interest_cut,
    EventType.INFLATION: _inflation,
    EventType.CREDIT_TIGHTENING: _credit_tightening,
    EventType.QUIET: _quiet,
    EventType.STAR_JOINS: _star_joins,
    EventType.TALENT_LEAVES: _talent_leaves,
    EventType.CLIENT_SIGNS: _client_signs,
    EventType.CLIENT_CHURN: _client_churn,
    EventType.BREAKTHROUGH: _breakthrough,
    EventType.COMPLIANCE: _compliance,
    EventType.WORKING_CAPITAL_CRUNCH: _working_capital_crunch,
    EventType.SECTOR_TAILWIND: _sector_wind((0.05, 0.10), 1),
    EventType.SECTOR_HEADWIND: _sector_wind((0.05, 0.10), -1),
}


def apply_event_effects(state: GameState, event: GameEvent, rng: SeededRng) -> GameState:
    """Record `event` as this round's event and apply it if immediate

    Choice events are recorded with no effect at all.
    """
    state = state.clone()
    event = copy.deepcopy(event)
    if not event.requires_choice:
        IMMEDIATE_EFFECTS[event.type](state, event, rng)
    state.current_event = event
    state.event_history.append(event)
    log.info("event.drawn", round=state.round, event_type=event.type.value,
             business_id=event.business_id, choice=event.requires_choice)
    return state


# ==================== Choice Events ====================

def _offer(event, state, business, rng):
    valuation = exit_valuation_for(state, business)
    multiple = max(BALANCE.min_exit_multiple,
                   valuation.total_multiple * rng.next_in_range(OFFER_MULTIPLE_RANGE))
    event.offer_amount = round(max(0, business.ebitda) * multiple)
    event.description = (f"A strategic buyer offers {money(event.offer_amount)} "
                         f"({multiple:.1f}x EBITDA) for {business.name}.")
    event.choices = [
        EventChoice(ChoiceAction.ACCEPT_OFFER, "Accept the offer",
                    description="Sell now; opco debt is repaid from the proceeds."),
        EventChoice(ChoiceAction.DECLINE_OFFER, "Decline", description="Keep the business."),
    ]


def _equity_demand(event, state, business, rng):
    event.description = f"The management team at {business.name} wants a 5% equity stake."
    event.choices = [
        EventChoice(ChoiceAction.GRANT_EQUITY, "Grant the stake",
                    description="Holdco owns 5 points less of the opco; growth improves."),
        EventChoice(ChoiceAction.REFUSE_EQUITY, "Refuse", success_probability=0.6,
                    description="60% chance the team stays; otherwise key talent leaves."),
    ]


def _seller_note_renego(event, state, business, rng):
    balance = business.seller_note.balance
    event.description = (f"The former owner of {business.name} offers to settle the "
                         f"{money(balance)} seller note at a 20% discount.")
    event.choices = [
        EventChoice(ChoiceAction.PAY_NOTE_EARLY, "Pay off early", cost=round(balance * 0.8),
                    description="Retire the note today at 80 cents on the dollar."),
        EventChoice(ChoiceAction.KEEP_NOTE_TERMS, "Keep current terms"),
    ]


def _key_man(event, state, business, rng):
    ebitda = max(0, business.ebitda)
    event.description = f"The operator who runs {business.name} is being courted by a competitor."
    event.choices = [
        EventChoice(ChoiceAction.GOLDEN_HANDCUFFS, "Golden handcuffs", cost=round(ebitda * 0.15),
                    success_probability=0.55, description="55% chance the operator stays."),
        EventChoice(ChoiceAction.SUCCESSION_PLAN, "Succession plan", cost=round(ebitda * 0.10),
                    description="Quality holds; two years of integration drag."),
        EventChoice(ChoiceAction.ACCEPT_KEY_MAN_LOSS, "Let them go",
                    description="Quality drops one level and EBITDA falls 10%."),
    ]


def _earnout_dispute(event, state, business, rng):
    remaining = business.earnout.remaining
    event.description = (f"The sellers of {business.name} dispute the {money(remaining)} "
                         f"earn-out calculation.")
    event.choices = [
        EventChoice(ChoiceAction.SETTLE_EARNOUT, "Settle at 50%", cost=round(remaining * 0.5),
                    description="Pay half now and close the earn-out."),
        EventChoice(ChoiceAction.FIGHT_EARNOUT, "Fight it", cost=max(50, round(remaining * 0.10)),
                    success_probability=0.70,
                    description="Legal fees; 70% chance the earn-out is voided, else pay in full."),
        EventChoice(ChoiceAction.RENEGOTIATE_EARNOUT, "Renegotiate", success_probability=0.55,
                    description="55% chance the earn-out is halved."),
    ]


def _supplier_shift(event, state, business, rng):
    event.description = f"A key supplier to {business.name} raises prices sharply."
    event.choices = [
        EventChoice(ChoiceAction.ABSORB_SUPPLIER_COST, "Absorb the increase",
                    description="Margin falls 3 points, 2 recovered through pricing."),
        EventChoice(ChoiceAction.SWITCH_SUPPLIER, "Switch suppliers",
                    cost=round(max(0, business.ebitda) * 0.05),
                    description="Margin holds; 5% of revenue lost in the transition."),
    ]
    same_sector = [b for b in state.active_businesses() if b.sector_id == business.sector_id]
    if len(same_sector) >= 2:
        event.choices.append(EventChoice(
            ChoiceAction.VERTICAL_INTEGRATION, "Integrate vertically",
            cost=round(max(0, business.ebitda) * 0.20),
            description="Bring supply in-house across the sector; margin +1 point.",
        ))


CHOICE_BUILDERS: Dict[EventType, Callable] = {
    EventType.UNSOLICITED_OFFER: _offer,
    EventType.EQUITY_DEMAND: _equity_demand,
    EventType.SELLER_NOTE_RENEGO: _seller_note_renego,
    EventType.KEY_MAN_RISK: _key_man,
    EventType.EARNOUT_DISPUTE: _earnout_dispute,
    EventType.SUPPLIER_SHIFT: _supplier_shift,
}


# ==================== Choice Resolution ====================

def _accept_offer(state, event, business, choice, rng):
    proceeds = dispose_business(state, business.id, event.offer_amount)
    return f"Sold {business.name} for {money(event.offer_amount)}; {money(proceeds)} net to the holdco."


def _decline_offer(state, event, business, choice, rng):
    return f"Declined the offer for {business.name}."


def _grant_equity(state, event, business, choice, rng):
    business.rollover_equity_pct = round(min(0.5, business.rollover_equity_pct + 0.05), 4)
    business.organic_growth_rate = round(business.organic_growth_rate + 0.015, 4)
    return f"Management at {business.name} now owns a stake and is motivated."


def _refuse_equity(state, event, business, choice, rng):
    if rng.next() < choice.success_probability:
        return f"The team at {business.name} stays on."
    updated = scale_business(business, 0.90)
    updated.organic_growth_rate = round(updated.organic_growth_rate - 0.015, 4)
    replace_business(state, updated)
    return f"Key managers leave {business.name}; EBITDA falls 10%."


def _pay_note_early(state, event, business, choice, rng):
    business.seller_note.balance = 0
    business.seller_note.rounds_remaining = 0
    return f"Seller note on {business.name} retired early."


def _keep_note_terms(state, event, business, choice, rng):
    return "Seller note unchanged."


def _golden_handcuffs(state, event, business, choice, rng):
    if rng.next() < choice.success_probability:
        return f"The operator at {business.name} signs on for the long haul."
    return _lose_key_man(state, business, 0.92)


def _lose_key_man(state, business, factor):
    updated = scale_business(business, factor)
    updated.quality = max(1, updated.quality - 1)
    replace_business(state, updated)
    return f"The operator leaves {business.name}; quality drops to {updated.quality}."


def _succession_plan(state, event, business, choice, rng):
    business.integration_rounds_remaining = max(business.integration_rounds_remaining, 2)
    return f"A successor is being groomed at {business.name}."


def _accept_key_man_loss(state, event, business, choice, rng):
    return _lose_key_man(state, business, 0.90)


def _settle_earnout(state, event, business, choice, rng):
    business.earnout.remaining = 0
    business.earnout.rounds_remaining = 0
    return f"Earn-out on {business.name} settled."


def _fight_earnout(state, event, business, choice, rng):
    if rng.next() < choice.success_probability:
        business.earnout.remaining = 0
        business.earnout.rounds_remaining = 0
        return f"Court voids the earn-out on {business.name}."
    paid = min(state.cash, business.earnout.remaining)
    state.cash -= paid
    business.earnout.remaining -= paid
    if business.earnout.remaining <= 0:
        business.earnout.rounds_remaining = 0
    return f"Lost the earn-out dispute; paid {money(paid)}."


def _renegotiate_earnout(state, event, business, choice, rng):
    if rng.next() < choice.success_probability:
        business.earnout.remaining = business.earnout.remaining // 2
        return f"Earn-out on {business.name} halved."
    return "The sellers refuse to renegotiate."


def _absorb_supplier_cost(state, event, business, choice, rng):
    replace_business(state, shift_margin(business, -0.01))
    return f"{business.name} absorbs most of the price increase."


def _switch_supplier(state, event, business, choice, rng):
    replace_business(state, scale_business(business, 0.95))
    return f"{business.name} switches suppliers."


def _vertical_integration(state, event, business, choice, rng):
    for b in state.active_businesses():
        if b.sector_id == business.sector_id:
            replace_business(state, shift_margin(b, 0.01))
    return f"Supply brought in-house across {get_sector(business.sector_id).name}."


CHOICE_HANDLERS: Dict[ChoiceAction, Callable] = {
    ChoiceAction.ACCEPT_OFFER: _accept_offer,
    ChoiceAction.DECLINE_OFFER: _decline_offer,
    ChoiceAction.GRANT_EQUITY: _grant_equity,
    ChoiceAction.REFUSE_EQUITY: _refuse_equity,
    ChoiceAction.PAY_NOTE_EARLY: _pay_note_early,
    ChoiceAction.KEEP_NOTE_TERMS: _keep_note_terms,
    ChoiceAction.GOLDEN_HANDCUFFS: _golden_handcuffs,
    ChoiceAction.SUCCESSION_PLAN: _succession_plan,
    ChoiceAction.ACCEPT_KEY_MAN_LOSS: _accept_key_man_loss,
    ChoiceAction.SETTLE_EARNOUT: _settle_earnout,
    ChoiceAction.FIGHT_EARNOUT: _fight_earnout,
    ChoiceAction.RENEGOTIATE_EARNOUT: _renegotiate_earnout,
    ChoiceAction.ABSORB_SUPPLIER_COST: _absorb_supplier_cost,
    ChoiceAction.SWITCH_SUPPLIER: _switch_supplier,
    ChoiceAction.VERTICAL_INTEGRATION: _vertical_integration,
}


def apply_choice(state: GameState, action: ChoiceAction, rng: SeededRng) -> GameState:
    """Resolve the pending choice event with `action`

    Caller validates phase, availability and cash. Cost is charged before
    the outcome is drawn.
    """
    state = state.clone()
    event = state.current_event
    choice = next(c for c in event.choices if c.action == action)
    business = state.find_business(event.business_id) if event.business_id else None
    if business is None or business.status not in (BusinessStatus.ACTIVE, BusinessStatus.INTEGRATED):
        raise ValueError(f"event {event.id} has no live target business")
    state.cash -= choice.cost
    event.outcome = CHOICE_HANDLERS[action](state, event, business, choice, rng)
    event.chosen = action
    log.info("event.resolved", round=state.round, event_type=event.type.value,
             action=action.value, cost=choice.cost)
    return state


# Every event type needs exactly one handler family; every choice needs a handler.
_unhandled = set(EventType) - set(IMMEDIATE_EFFECTS) - set(CHOICE_BUILDERS)
_overlap = set(IMMEDIATE_EFFECTS) & set(CHOICE_BUILDERS)
_missing_choices = set(ChoiceAction) - set(CHOICE_HANDLERS)
if _unhandled or _overlap or _missing_choices or set(ELIGIBILITY) != {t for t, _ in PORTFOLIO_EVENT_TABLE}:
    raise RuntimeError(
        f"event tables out of sync: unhandled={_unhandled} overlap={_overlap} "
        f"missing_choices={_missing_choices}"
    )
