import dataclasses

import pytest

from actions import start_turnaround, unlock_turnaround_tier
from financials import calculate_exit_valuation
from game_config import Duration
from models import Business, BusinessStatus, GameState, Phase, Turnaround, TurnaroundStatus
from rng import SeededRng
from turnarounds import (
    TurnaroundOutcome,
    eligible_programs,
    get_program,
    resolve_due_turnarounds,
    resolve_turnaround,
    turnaround_duration,
)
from waterfall import run_collection_waterfall


def make_business(business_id="biz-1", ebitda=1000, **overrides):
    fields = dict(
        id=business_id, name="Test Co", sector_id="agency", sub_type="Digital Agency",
        revenue=ebitda * 5, ebitda=ebitda, ebitda_margin=0.20, quality=2,
        organic_growth_rate=0.05, margin_drift=0.0,
        acquisition_ebitda=ebitda, acquisition_multiple=4.0, peak_ebitda=ebitda,
    )
    fields.update(overrides)
    return Business(**fields)


def make_state(*businesses, **overrides):
    fields = dict(seed=1, round=3, cash=5000, phase=Phase.ALLOCATE, turnaround_tier=1,
                  businesses=list(businesses))
    fields.update(overrides)
    return GameState(**fields)


def running(business_id="biz-1", program_id="t1_plan_b", end_round=7):
    return Turnaround(id=f"turnaround-3-{business_id}", business_id=business_id,
                      program_id=program_id, start_round=3, end_round=end_round)


def test_no_programs_before_a_tier_is_unlocked():
    state = make_state(make_business(), turnaround_tier=0)
    assert eligible_programs(state.businesses[0], state) == []


def test_programs_respect_sector_quality_ceiling():
    agency = make_business()
    clinic = make_business("biz-2", sector_id="healthcare", sub_type="Dental Practice")
    state = make_state(agency, clinic, turnaround_tier=3)
    assert [p.id for p in eligible_programs(agency, state)] == ["t1_plan_b"]
    assert [p.id for p in eligible_programs(clinic, state)] == ["t1_plan_b", "t2_plan_b", "t3_plan_b"]


def test_one_program_per_business_at_a_time():
    state = make_state(make_business(), turnarounds=[running()])
    assert eligible_programs(state.businesses[0], state) == []


def test_resolution_bands():
    program = get_program("t1_plan_a")
    assert resolve_turnaround(program, 1, 0.10) == TurnaroundOutcome(
        TurnaroundStatus.SUCCESS, 1, pytest.approx(1.07), 2)
    assert resolve_turnaround(program, 1, 0.70).status == TurnaroundStatus.PARTIAL
    failed = resolve_turnaround(program, 1, 0.99)
    assert failed.status == TurnaroundStatus.FAILURE
    assert failed.quality_change == 0
    assert failed.ebitda_multiplier == pytest.approx(0.96)


def test_partial_gains_a_single_tier():
    outcome = resolve_turnaround(get_program("t2_plan_a"), 1, 0.80)
    assert outcome.status == TurnaroundStatus.PARTIAL
    assert outcome.target_quality == 2


def test_fatigue_moves_odds_from_success_to_partial():
    program = get_program("t1_plan_a")
    assert resolve_turnaround(program, 2, 0.60).status == TurnaroundStatus.SUCCESS
    assert resolve_turnaround(program, 3, 0.60).status == TurnaroundStatus.PARTIAL
    assert resolve_turnaround(program, 3, 0.97).status == TurnaroundStatus.FAILURE


def test_quick_games_run_shorter_programs():
    program = get_program("t3_plan_a")
    assert turnaround_duration(program, Duration.STANDARD) == 6
    assert turnaround_duration(program, Duration.QUICK) == 3


def test_unlock_needs_enough_opcos():
    lone = make_state(make_business(), turnaround_tier=0)
    rejected = unlock_turnaround_tier(lone)
    assert rejected.turnaround_tier == 0
    assert "opcos" in rejected.reason

    pair = make_state(make_business(), make_business("biz-2"), turnaround_tier=0)
    unlocked = unlock_turnaround_tier(pair)
    assert unlocked.turnaround_tier == 1
    assert unlocked.cash == 5000 - 600
    assert pair.turnaround_tier == 0


def test_start_turnaround_charges_upfront_cost():
    state = make_state(make_business())
    started = start_turnaround(state, "biz-1", "t1_plan_b")
    assert len(started.turnarounds) == 1
    turnaround = started.turnarounds[0]
    assert turnaround.end_round == 7
    assert turnaround.status == TurnaroundStatus.ACTIVE
    assert started.cash == 5000 - 120
    assert started.total_invested_capital == state.total_invested_capital + 120
    assert not state.turnarounds


def test_start_turnaround_rejects_ineligible_program():
    state = make_state(make_business())
    rejected = start_turnaround(state, "biz-1", "t1_plan_a")
    assert rejected.turnarounds == []
    assert rejected.cash == state.cash
    assert "not eligible" in rejected.reason


def test_program_resolves_in_its_last_round(monkeypatch):
    monkeypatch.setattr("turnarounds.resolve_turnaround",
                        lambda program, count, roll: TurnaroundOutcome(TurnaroundStatus.SUCCESS, 1, 1.05, 3))
    state = make_state(make_business(), round=6, turnarounds=[running()])
    resolve_due_turnarounds(state, SeededRng(5))
    assert state.turnarounds[0].status == TurnaroundStatus.ACTIVE
    assert state.businesses[0].quality == 2

    state.round = 7
    resolve_due_turnarounds(state, SeededRng(5))
    business = state.businesses[0]
    assert state.turnarounds[0].status == TurnaroundStatus.SUCCESS
    assert business.quality == 3
    assert business.quality_improved_tiers == 1
    assert business.ebitda == 1050


def test_failed_program_never_lowers_quality(monkeypatch):
    monkeypatch.setattr("turnarounds.resolve_turnaround",
                        lambda program, count, roll: TurnaroundOutcome(TurnaroundStatus.FAILURE, 0, 0.97, 2))
    state = make_state(make_business(quality=3), round=7, turnarounds=[running()])
    resolve_due_turnarounds(state, SeededRng(5))
    assert state.businesses[0].quality == 3
    assert state.businesses[0].ebitda == 970
    assert state.turnarounds[0].status == TurnaroundStatus.FAILURE


def test_program_is_abandoned_when_business_leaves():
    state = make_state(make_business(status=BusinessStatus.SOLD), round=4, turnarounds=[running()])
    resolve_due_turnarounds(state, SeededRng(5))
    assert state.turnarounds[0].status == TurnaroundStatus.ABANDONED


def test_turnaround_overhead_is_paid_at_collection():
    state = GameState(seed=1, cash=1000, businesses=[make_business()])
    with_program = dataclasses.replace(state, turnaround_tier=1, turnarounds=[running()])
    _, report = run_collection_waterfall(state)
    _, program_report = run_collection_waterfall(with_program)
    assert program_report.turnaround_cost == 250 + 75
    assert program_report.pre_tax_fcf == report.pre_tax_fcf - 325


def test_proven_turnaround_earns_exit_premium():
    plain = calculate_exit_valuation(make_business(), 5)
    turned = calculate_exit_valuation(make_business(quality_improved_tiers=2), 5)
    assert plain.turnaround_premium == 0.0
    assert turned.turnaround_premium == 0.25
    assert turned.total_multiple == pytest.approx(plain.total_multiple + 0.25)
