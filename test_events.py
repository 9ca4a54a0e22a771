import dataclasses

import pytest

from events import (
    CHOICE_BUILDERS,
    ELIGIBILITY,
    IMMEDIATE_EFFECTS,
    apply_choice,
    apply_event_effects,
    build_event,
    generate_event,
)
from models import (
    Business,
    BusinessStatus,
    ChoiceAction,
    DebtInstrument,
    EarnoutTerms,
    EventCategory,
    EventType,
    GameState,
)
from rng import SeededRng


def make_business(business_id="biz-1", **overrides):
    fields = dict(
        id=business_id, name="Test Co", sector_id="agency", sub_type="Digital Agency",
        revenue=5000, ebitda=1000, ebitda_margin=0.20, quality=3,
        organic_growth_rate=0.05, margin_drift=0.0,
        acquisition_ebitda=1000, acquisition_multiple=4.0, peak_ebitda=1000,
    )
    fields.update(overrides)
    return Business(**fields)


def make_state(*businesses, **overrides):
    fields = dict(seed=1, round=5, cash=5000, businesses=list(businesses))
    fields.update(overrides)
    return GameState(**fields)


def test_every_event_type_has_one_handler_family():
    for event_type in EventType:
        assert (event_type in IMMEDIATE_EFFECTS) != (event_type in CHOICE_BUILDERS)


def test_choice_event_changes_nothing_until_resolved():
    business = make_business(seller_note=DebtInstrument(balance=1000, rate=0.05, rounds_remaining=4))
    state = make_state(business)
    event = build_event(EventType.SELLER_NOTE_RENEGO, state, SeededRng(1), business=business)
    new_state = apply_event_effects(state, event, SeededRng(2))
    assert event.requires_choice
    assert new_state.businesses == state.businesses
    assert new_state.cash == state.cash
    assert new_state.current_event.pending
    assert new_state.event_history[-1] is new_state.current_event


def test_immediate_event_applies_on_draw():
    state = make_state(make_business())
    event = build_event(EventType.BREAKTHROUGH, state, SeededRng(1), business=state.businesses[0])
    new_state = apply_event_effects(state, event, SeededRng(2))
    assert new_state.businesses[0].ebitda == 1060
    assert new_state.current_event.impacts[0].after == 1060
    assert state.businesses[0].ebitda == 1000
    assert not state.event_history


def test_compliance_cost_capped_by_cash():
    state = make_state(make_business(), cash=300)
    event = build_event(EventType.COMPLIANCE, state, SeededRng(1), business=state.businesses[0])
    new_state = apply_event_effects(state, event, SeededRng(2))
    assert new_state.cash == 0
    assert new_state.businesses[0].ebitda == 920


def test_rate_hike_is_clamped():
    state = make_state(make_business(), interest_rate=0.15)
    event = build_event(EventType.INTEREST_HIKE, state, SeededRng(1))
    assert apply_event_effects(state, event, SeededRng(2)).interest_rate == 0.15


def test_working_capital_crunch_needs_recent_debt_funded_deal():
    old = make_business(acquisition_round=1,
                        bank_debt=DebtInstrument(balance=2000, rate=0.07, rounds_remaining=5))
    assert ELIGIBILITY[EventType.WORKING_CAPITAL_CRUNCH](make_state(old, round=10)) == []
    recent = dataclasses.replace(old, acquisition_round=9)
    assert ELIGIBILITY[EventType.WORKING_CAPITAL_CRUNCH](make_state(recent, round=10)) == [recent]


def test_earnout_dispute_ignores_exited_businesses():
    terms = EarnoutTerms(remaining=500, target_growth=0.1, rounds_remaining=3)
    sold = make_business(status=BusinessStatus.SOLD, earnout=terms)
    assert ELIGIBILITY[EventType.EARNOUT_DISPUTE](make_state(sold)) == []


def test_draw_never_picks_ineligible_events():
    state = make_state(make_business())
    excluded = {EventType.SELLER_NOTE_RENEGO, EventType.EARNOUT_DISPUTE,
                EventType.WORKING_CAPITAL_CRUNCH}
    for seed in range(500):
        assert generate_event(state, SeededRng(seed)).type not in excluded


def test_empty_portfolio_only_draws_global_events():
    state = make_state()
    for seed in range(200):
        assert generate_event(state, SeededRng(seed)).type.category == EventCategory.GLOBAL


def test_vertical_integration_needs_two_same_sector_businesses():
    one = make_state(make_business())
    event = build_event(EventType.SUPPLIER_SHIFT, one, SeededRng(1), business=one.businesses[0])
    assert ChoiceAction.VERTICAL_INTEGRATION not in [c.action for c in event.choices]

    two = make_state(make_business(), make_business("biz-2"))
    event = build_event(EventType.SUPPLIER_SHIFT, two, SeededRng(1), business=two.businesses[0])
    assert ChoiceAction.VERTICAL_INTEGRATION in [c.action for c in event.choices]


def test_apply_choice_charges_cost_and_records_outcome():
    business = make_business(seller_note=DebtInstrument(balance=1000, rate=0.05, rounds_remaining=4))
    state = make_state(business)
    event = build_event(EventType.SELLER_NOTE_RENEGO, state, SeededRng(1), business=business)
    state = apply_event_effects(state, event, SeededRng(2))
    resolved = apply_choice(state, ChoiceAction.PAY_NOTE_EARLY, SeededRng(3))
    assert resolved.cash == 5000 - 800
    assert resolved.businesses[0].seller_note.balance == 0
    assert resolved.current_event.chosen == ChoiceAction.PAY_NOTE_EARLY
    assert resolved.current_event.outcome
    assert state.current_event.pending


def test_apply_choice_rejects_missing_target():
    business = make_business()
    state = make_state(business)
    event = build_event(EventType.KEY_MAN_RISK, state, SeededRng(1), business=business)
    state = apply_event_effects(state, event, SeededRng(2))
    state.businesses[0].status = BusinessStatus.SOLD
    with pytest.raises(ValueError):
        apply_choice(state, ChoiceAction.ACCEPT_KEY_MAN_LOSS, SeededRng(3))
