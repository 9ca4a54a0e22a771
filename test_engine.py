import dataclasses

from actions import declare_bankruptcy, distribute, emergency_equity_raise, resolve_event_choice
from engine import (
    advance_to_allocate,
    advance_to_event,
    complete_restructuring,
    end_round,
    get_results,
    is_finished,
    new_game,
    new_game_state,
    run_monte_carlo,
    run_one_simulation,
    step_round,
)
from events import apply_event_effects, build_event
from game_config import Difficulty, Duration
from models import BusinessStatus, ChoiceAction, DebtInstrument, EventType, Phase
from rng import SeededRng, create_rng_streams
from scoring import calculate_score


def settle_event(state):
    """Answer a pending choice with its free option"""
    event = state.current_event
    if event is not None and event.pending:
        free = next(c for c in event.choices if c.cost == 0)
        state = resolve_event_choice(state, free.action, create_rng_streams(state.seed, state.round))
    return state


def with_note_event(state):
    state = dataclasses.replace(state, phase=Phase.EVENT)
    business = state.businesses[0]
    business.seller_note = DebtInstrument(balance=1000, rate=0.05, rounds_remaining=4)
    event = build_event(EventType.SELLER_NOTE_RENEGO, state, SeededRng(1), business=business)
    return apply_event_effects(state, event, SeededRng(2))


def test_new_game_easy_start():
    state = new_game_state(7)
    business = state.businesses[0]
    assert state.round == 1
    assert state.phase == Phase.COLLECT
    assert state.cash == 20_000 - business.acquisition_price
    assert state.founder_ownership() == 0.8
    assert state.holdco_loan.balance == 0
    assert state.equity_cashflows == [{'round': 0, 'amount': -20_000}]
    assert business.id == "biz-0-start"
    assert new_game_state(7) == state


def test_new_game_normal_start():
    state = new_game_state(7, Difficulty.NORMAL, Duration.QUICK)
    assert state.max_rounds == 10
    assert state.holdco_loan.balance == 3000
    assert state.businesses[0].acquisition_multiple <= 4.0
    assert state.initial_raise == 2000


def test_phase_cycle():
    state = new_game_state(11)
    state = advance_to_event(state)
    assert state.phase == Phase.EVENT
    assert state.last_waterfall is not None
    assert state.current_event is not None

    state = advance_to_allocate(settle_event(state))
    assert state.phase == Phase.ALLOCATE
    assert 4 <= len(state.deal_pipeline) <= 8

    state = end_round(state)
    assert state.round == 2
    assert state.phase == Phase.COLLECT
    assert len(state.round_history) == 1
    assert len(state.metrics_history) == 1
    assert state.current_event is None


def test_out_of_order_transitions_are_no_ops():
    state = new_game_state(11)
    assert advance_to_allocate(state).phase == Phase.COLLECT
    assert end_round(state).round == 1
    assert complete_restructuring(state).phase == Phase.COLLECT


def test_invalid_action_leaves_economics_unchanged():
    state = new_game_state(3)
    result = distribute(state, 100)
    assert result.cash == state.cash
    assert result.businesses == state.businesses
    assert result.total_distributions == state.total_distributions
    assert result.reason != state.reason
    assert state.reason.startswith("Easy")


def test_pending_choice_blocks_allocation():
    state = with_note_event(new_game_state(5))
    blocked = advance_to_allocate(state)
    assert blocked.phase == Phase.EVENT

    answered = resolve_event_choice(state, ChoiceAction.KEEP_NOTE_TERMS, create_rng_streams(5, 1))
    assert not answered.current_event.pending
    assert advance_to_allocate(answered).phase == Phase.ALLOCATE


def test_choice_expires_when_target_leaves():
    state = with_note_event(new_game_state(5))
    state.businesses[0].status = BusinessStatus.SOLD
    moved = advance_to_allocate(state)
    assert moved.phase == Phase.ALLOCATE
    assert moved.current_event.expired


def test_choices_only_resolve_in_event_phase():
    state = with_note_event(new_game_state(5))
    state = dataclasses.replace(state, phase=Phase.ALLOCATE)
    result = resolve_event_choice(state, ChoiceAction.KEEP_NOTE_TERMS, create_rng_streams(5, 1))
    assert result.current_event.pending


def test_insolvency_forces_restructuring():
    state = new_game_state(5)
    state = dataclasses.replace(
        state, cash=0, holdco_loan=DebtInstrument(balance=50_000, rate=0.07, rounds_remaining=2))
    state = advance_to_event(state)
    assert state.phase == Phase.RESTRUCTURE
    assert state.requires_restructuring
    assert not state.game_over


def test_restructuring_needs_an_action():
    state = dataclasses.replace(new_game_state(5), phase=Phase.RESTRUCTURE, requires_restructuring=True)
    assert complete_restructuring(state).phase == Phase.RESTRUCTURE

    raised = emergency_equity_raise(state, 2000)
    assert raised.cash == state.cash + 2000
    assert raised.shares_outstanding > state.shares_outstanding
    assert raised.restructure_actions_taken == 1

    done = complete_restructuring(raised)
    assert done.phase == Phase.EVENT
    assert done.has_restructured
    assert not done.requires_restructuring
    assert done.exit_multiple_penalty == 0.5
    assert done.current_event is not None


def test_declared_bankruptcy_scores_zero():
    state = dataclasses.replace(new_game_state(5), phase=Phase.RESTRUCTURE, requires_restructuring=True)
    state = declare_bankruptcy(state)
    assert state.game_over and state.bankrupt
    score = calculate_score(state)
    assert score.total == 0
    assert score.grade == "F"


def test_game_ends_after_last_round():
    engine = new_game(seed=8, duration=Duration.QUICK)
    for _ in range(engine.gs.max_rounds + 1):
        if is_finished(engine):
            break
        step_round(engine)
    assert is_finished(engine)
    if not engine.gs.bankrupt:
        assert engine.gs.round == engine.gs.max_rounds + 1
        assert len(engine.gs.round_history) == engine.gs.max_rounds
    results = get_results(engine)
    assert 0 <= results['score'] <= 100
    assert results['grade'] in ("S", "A", "B", "C", "D", "F")


def test_same_seed_games_are_identical():
    first = run_one_simulation(13, duration=Duration.QUICK)
    second = run_one_simulation(13, duration=Duration.QUICK)
    assert first == second
    assert [h.event_type for h in first['history']] == [h.event_type for h in second['history']]


def test_step_round_with_custom_decisions():
    calls = []
    engine = new_game(seed=4)
    step_round(engine, decide=lambda e: calls.append(e.gs.phase))
    assert calls == [Phase.ALLOCATE]
    assert engine.gs.round == 2


def test_monte_carlo_summary():
    batch = run_monte_carlo(3, duration=Duration.QUICK, first_seed=20)
    assert batch['n'] == 3
    assert 0.0 <= batch['bankruptcy_rate'] <= 1.0
    assert sum(batch['grades'].values()) == 3
    assert [r['seed'] for r in batch['results']] == [20, 21, 22]


def test_prolonged_breach_forces_restructuring_while_solvent():
    state = dataclasses.replace(new_game_state(5), covenant_breach_rounds=2)
    state = advance_to_event(state)
    assert state.phase == Phase.RESTRUCTURE
    assert state.requires_restructuring
    assert "Covenants breached" in state.reason
    assert state.current_event is None
    assert not state.game_over


def test_insolvency_after_restructuring_ends_the_game():
    state = new_game_state(5)
    state = dataclasses.replace(
        state, cash=0, has_restructured=True,
        holdco_loan=DebtInstrument(balance=50_000, rate=0.07, rounds_remaining=2))
    state = advance_to_event(state)
    assert state.game_over
    assert state.bankrupt
    assert state.phase == Phase.COLLECT
    assert state.current_event is None


def test_breach_after_restructuring_is_bankruptcy_at_year_end():
    state = new_game_state(5)
    state = dataclasses.replace(
        state, phase=Phase.ALLOCATE, cash=0, has_restructured=True, covenant_breach_rounds=1,
        holdco_loan=DebtInstrument(balance=1_000_000, rate=0.07, rounds_remaining=5))
    result = end_round(state)
    assert result.covenant_breach_rounds == 2
    assert result.bankrupt and result.game_over
    assert "after restructuring" in result.reason
    assert result.round == state.round
    assert len(result.round_history) == 1
