import dataclasses

from actions import (
    acquire_business,
    buyback_shares,
    designate_platform,
    distribute,
    improve_business,
    issue_equity,
    merge_businesses,
    pay_down_debt,
    proactive_outreach,
    sell_business,
    set_ma_focus,
    source_deals,
    unlock_shared_service,
    upgrade_ma_sourcing,
    wind_down_business,
)
from deals import generate_deal_pipeline, generate_sourced_deals, roll_contested_snatch
from engine import new_game_state
from financials import calculate_exit_valuation
from game_config import ImprovementType, SharedServiceType
from models import BusinessStatus, DealHeat, DealStructureType, DebtInstrument, MAFocus, Phase, SellerArchetype
from rng import create_rng_streams


def allocate_state(seed=21, **overrides):
    state = new_game_state(seed)
    return dataclasses.replace(state, phase=Phase.ALLOCATE, **overrides)


def with_pipeline(state):
    state.deal_pipeline = generate_deal_pipeline(state, create_rng_streams(state.seed, state.round).deals)
    for deal in state.deal_pipeline:
        deal.heat = DealHeat.WARM
    return state


def test_acquire_all_cash():
    state = with_pipeline(allocate_state(cash=1_000_000))
    deal = state.deal_pipeline[0]
    new_state = acquire_business(state, deal.id, DealStructureType.ALL_CASH,
                                 create_rng_streams(state.seed, state.round))
    bought = new_state.find_business(deal.id.replace("deal", "biz", 1))
    assert bought is not None and bought.is_active
    assert new_state.cash == 1_000_000 - deal.effective_price
    assert new_state.find_deal(deal.id) is None
    assert new_state.acquisitions_this_round == 1
    assert bought.acquisition_round == state.round
    assert len(state.businesses) == 1


def test_acquire_with_seller_note():
    state = with_pipeline(allocate_state(cash=1_000_000))
    deal = state.deal_pipeline[0]
    new_state = acquire_business(state, deal.id, DealStructureType.SELLER_NOTE,
                                 create_rng_streams(state.seed, state.round))
    bought = new_state.businesses[-1]
    assert bought.seller_note.balance == deal.effective_price - round(deal.effective_price * 0.40)
    assert new_state.cash == 1_000_000 - round(deal.effective_price * 0.40)


def test_contested_deal_may_be_lost():
    state = with_pipeline(allocate_state(cash=1_000_000))
    deal = state.deal_pipeline[0]
    deal.heat = DealHeat.CONTESTED
    streams = create_rng_streams(state.seed, state.round)
    snatched = roll_contested_snatch(deal, streams)
    new_state = acquire_business(state, deal.id, DealStructureType.ALL_CASH, streams)
    assert new_state.find_deal(deal.id) is None
    if snatched:
        assert len(new_state.businesses) == 1
        assert new_state.cash == 1_000_000
    else:
        assert len(new_state.businesses) == 2


def test_acquire_rejections_are_no_ops():
    state = with_pipeline(allocate_state(cash=0))
    deal = state.deal_pipeline[0]
    streams = create_rng_streams(state.seed, state.round)
    broke = acquire_business(state, deal.id, DealStructureType.ALL_CASH, streams)
    assert broke.businesses == state.businesses
    assert broke.deal_pipeline == state.deal_pipeline
    assert broke.reason != state.reason

    missing = acquire_business(state, "deal-9-p9", DealStructureType.ALL_CASH, streams)
    assert missing.cash == state.cash
    assert "no longer available" in missing.reason


def test_tuck_in_consolidates_into_platform():
    state = allocate_state(cash=1_000_000)
    platform_id = state.businesses[0].id
    state = designate_platform(state, platform_id)
    assert state.find_business(platform_id).is_platform

    state.ma_focus = MAFocus(sector_id=state.businesses[0].sector_id)
    streams = create_rng_streams(state.seed, state.round)
    state.deal_pipeline = generate_sourced_deals(state, streams)
    deal = state.deal_pipeline[0]
    deal.heat = DealHeat.WARM
    ebitda_before = state.total_ebitda()

    new_state = acquire_business(state, deal.id, DealStructureType.ALL_CASH, streams, platform_id=platform_id)
    platform = new_state.find_business(platform_id)
    bolt_on = new_state.businesses[-1]
    assert bolt_on.status == BusinessStatus.INTEGRATED
    assert bolt_on.parent_platform_id == platform_id
    assert platform.bolt_on_ids == [bolt_on.id]
    assert platform.platform_scale == 2
    assert new_state.total_ebitda() == ebitda_before + bolt_on.ebitda


def test_platform_needs_quality():
    state = allocate_state()
    state.businesses[0].quality = 2
    rejected = designate_platform(state, state.businesses[0].id)
    assert not rejected.businesses[0].is_platform
    assert "quality" in rejected.reason


def test_merge_same_sector_businesses():
    state = allocate_state()
    first = state.businesses[0]
    state.businesses.append(dataclasses.replace(
        first, id="biz-1-p0", seller_note=DebtInstrument(), bank_debt=DebtInstrument(), improvements=[], bolt_on_ids=[]))
    merged = merge_businesses(state, first.id, "biz-1-p0")
    assert merged.find_business("biz-1-p0").status == BusinessStatus.MERGED
    combined = merged.find_business(first.id)
    assert combined.ebitda == first.ebitda * 2
    assert combined.is_platform
    assert merged.cash == state.cash - round(first.ebitda * 2 * 0.05)
    assert merge_businesses(state, first.id, first.id).cash == state.cash


def test_improvement_raises_margin_once():
    state = allocate_state()
    business = state.businesses[0]
    streams = create_rng_streams(state.seed, state.round)
    improved = improve_business(state, business.id, ImprovementType.OPERATING_PLAYBOOK, streams)
    after = improved.businesses[0]
    assert after.ebitda_margin > business.ebitda_margin
    assert after.improvements == [ImprovementType.OPERATING_PLAYBOOK]
    assert improved.cash == state.cash - max(100, round(business.ebitda * 0.15))

    again = improve_business(improved, business.id, ImprovementType.OPERATING_PLAYBOOK, streams)
    assert again.cash == improved.cash
    assert again.businesses[0].improvements == [ImprovementType.OPERATING_PLAYBOOK]


def test_fix_underperformance_only_for_weak_businesses():
    state = allocate_state()
    streams = create_rng_streams(state.seed, state.round)
    business_id = state.businesses[0].id
    rejected = improve_business(state, business_id, ImprovementType.FIX_UNDERPERFORMANCE, streams)
    assert rejected.cash == state.cash

    state.businesses[0].quality = 2
    fixed = improve_business(state, business_id, ImprovementType.FIX_UNDERPERFORMANCE, streams)
    assert fixed.businesses[0].quality == 3


def test_sell_business_books_exit_value():
    state = allocate_state()
    business = state.businesses[0]
    valuation = calculate_exit_valuation(business, state.round)
    sold = sell_business(state, business.id)
    assert sold.businesses[0].status == BusinessStatus.SOLD
    assert sold.businesses[0].exit_price == valuation.exit_price
    assert sold.cash == state.cash + valuation.exit_price
    assert sold.total_ebitda() == 0


def test_wind_down_costs_cash():
    state = allocate_state()
    business = state.businesses[0]
    wound = wind_down_business(state, business.id)
    assert wound.businesses[0].status == BusinessStatus.WOUND_DOWN
    assert wound.cash == state.cash - round(business.ebitda * 0.10)


def test_pay_down_debt_requires_debt():
    state = allocate_state()
    assert pay_down_debt(state, 500).cash == state.cash

    levered = allocate_state(holdco_loan=DebtInstrument(balance=2000, rate=0.07, rounds_remaining=10))
    paid = pay_down_debt(levered, 500)
    assert paid.holdco_loan.balance == 1500
    assert paid.cash == levered.cash - 500


def test_equity_issue_respects_founder_floor_and_frequency():
    state = allocate_state()
    too_big = issue_equity(state, 10_000_000)
    assert too_big.shares_outstanding == state.shares_outstanding

    raised = issue_equity(state, 1000)
    assert raised.cash == state.cash + 1000
    assert raised.shares_outstanding > state.shares_outstanding
    assert raised.founder_ownership() >= 0.51
    assert raised.equity_cashflows[-1] == {'round': state.round, 'amount': -1000}
    assert issue_equity(raised, 1000).cash == raised.cash


def test_buyback_limited_to_outside_shares():
    state = allocate_state()
    bought = buyback_shares(state, 500)
    assert bought.shares_outstanding < state.shares_outstanding
    assert bought.shares_outstanding >= bought.founder_shares
    assert bought.equity_cashflows[-1] == {'round': state.round, 'amount': 500}


def test_distribution_blocked_in_breach():
    state = allocate_state(holdco_loan=DebtInstrument(balance=100_000, rate=0.07, rounds_remaining=10))
    blocked = distribute(state, 100)
    assert blocked.total_distributions == 0
    assert blocked.cash == state.cash

    healthy = distribute(allocate_state(), 100)
    assert healthy.total_distributions == 100


def test_shared_services_need_three_opcos():
    state = allocate_state()
    rejected = unlock_shared_service(state, SharedServiceType.PROCUREMENT)
    assert rejected.shared_services == {}


def test_sourcing_calls_extend_pipeline():
    state = allocate_state()
    streams = create_rng_streams(state.seed, state.round)
    once = source_deals(state, streams)
    twice = source_deals(once, streams)
    assert len(twice.deal_pipeline) == 6
    assert twice.cash == state.cash - 1000
    assert {d.id for d in once.deal_pipeline}.isdisjoint(d.id for d in twice.deal_pipeline[3:])


def test_outreach_needs_sourcing_tier():
    state = allocate_state()
    streams = create_rng_streams(state.seed, state.round)
    assert proactive_outreach(state, streams).deal_pipeline == []

    upgraded = upgrade_ma_sourcing(state)
    assert upgraded.ma_sourcing_tier == 1
    reached = proactive_outreach(upgraded, streams)
    assert len(reached.deal_pipeline) == 2


def test_focus_validation():
    state = allocate_state()
    assert set_ma_focus(state, "saas", "small").ma_focus == MAFocus("saas", "small")
    assert set_ma_focus(state, "shipyards").ma_focus == MAFocus()


def test_actions_outside_allocate_are_rejected():
    state = new_game_state(21)
    rejected = distribute(state, 100)
    assert rejected.cash == state.cash
    assert rejected.phase == Phase.COLLECT
    assert "collect" in rejected.reason


def test_lost_auction_uses_an_acquisition_slot(monkeypatch):
    monkeypatch.setattr("actions.roll_contested_snatch", lambda deal, streams: True)
    state = with_pipeline(allocate_state(cash=1_000_000))
    deal = state.deal_pipeline[0]
    new_state = acquire_business(state, deal.id, DealStructureType.ALL_CASH,
                                 create_rng_streams(state.seed, state.round))
    assert len(new_state.businesses) == 1
    assert new_state.cash == 1_000_000
    assert new_state.acquisitions_this_round == 1


def test_rollover_tuck_in_blends_into_platform():
    state = allocate_state(cash=1_000_000)
    platform_id = state.businesses[0].id
    state = designate_platform(state, platform_id)
    state.ma_focus = MAFocus(sector_id=state.businesses[0].sector_id)
    streams = create_rng_streams(state.seed, state.round)
    state.deal_pipeline = generate_sourced_deals(state, streams)
    deal = state.deal_pipeline[0]
    deal.heat = DealHeat.WARM
    deal.business.quality = 4
    deal.seller_archetype = SellerArchetype.RETIRING_FOUNDER
    platform_ebitda = state.find_business(platform_id).ebitda

    new_state = acquire_business(state, deal.id, DealStructureType.ROLLOVER_EQUITY, streams,
                                 platform_id=platform_id)
    platform = new_state.find_business(platform_id)
    expected = round(0.25 * deal.business.ebitda / (platform_ebitda + deal.business.ebitda), 4)
    assert platform.ebitda == platform_ebitda + deal.business.ebitda
    assert platform.rollover_equity_pct == expected
    assert 0 < platform.rollover_equity_pct < 0.25
