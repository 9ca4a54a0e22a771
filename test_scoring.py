import pytest

from engine import new_game_state
from models import BusinessStatus, DebtInstrument, GameState
from scoring import (
    IRRStatus,
    balance_sheet_points,
    calculate_enterprise_value,
    calculate_irr_moic,
    calculate_score,
    discipline_points,
    equity_cashflows,
    grade_for,
)


def test_irr_and_moic_for_a_double_in_five_years():
    state = GameState(seed=1, equity_cashflows=[{'round': 0, 'amount': -1000}, {'round': 5, 'amount': 2000}])
    irr, moic, equity_in, equity_out, status = calculate_irr_moic(state)
    assert status == IRRStatus.VALID
    assert irr == pytest.approx(2 ** 0.2 - 1, abs=1e-4)
    assert moic == 2.0
    assert (equity_in, equity_out) == (1000, 2000)


def test_irr_needs_a_sign_change():
    state = GameState(seed=1, equity_cashflows=[{'round': 0, 'amount': -1000}])
    irr, moic, _, _, status = calculate_irr_moic(state)
    assert status == IRRStatus.NO_SIGN_CHANGE
    assert irr == 0.0
    assert moic == 0.0


def test_terminal_equity_added_when_game_over():
    state = GameState(seed=1, round=5, cash=3000, game_over=True,
                      equity_cashflows=[{'round': 0, 'amount': -1000}])
    assert equity_cashflows(state)[-1] == {'round': 5, 'amount': 3000}
    _, moic, _, _, _ = calculate_irr_moic(state)
    assert moic == 3.0

    bankrupt = GameState(seed=1, round=5, cash=3000, game_over=True, bankrupt=True,
                         equity_cashflows=[{'round': 0, 'amount': -1000}])
    assert equity_cashflows(bankrupt) == [{'round': 0, 'amount': -1000}]


def test_enterprise_value():
    state = GameState(seed=1, cash=500, total_distributions=200,
                      holdco_loan=DebtInstrument(balance=100, rate=0.07, rounds_remaining=5))
    assert calculate_enterprise_value(state) == 600


def test_grade_thresholds():
    assert grade_for(90) == "S"
    assert grade_for(89.9) == "A"
    assert grade_for(65) == "B"
    assert grade_for(50) == "C"
    assert grade_for(35) == "D"
    assert grade_for(34.9) == "F"


def test_balance_sheet_points():
    assert balance_sheet_points(0.5, False) == 15.0
    assert balance_sheet_points(0.5, True) == 10.0
    assert balance_sheet_points(5.0, True) == 0.0


def test_wound_down_businesses_cost_discipline():
    state = new_game_state(3)
    baseline = discipline_points(state)
    state.businesses[0].status = BusinessStatus.WOUND_DOWN
    assert discipline_points(state) < baseline


def test_score_is_bounded():
    score = calculate_score(new_game_state(3))
    assert 0 <= score.total <= 100
    assert score.grade == grade_for(score.total)


def test_bankruptcy_scores_zero():
    score = calculate_score(GameState(seed=1, bankrupt=True, game_over=True))
    assert score.total == 0
    assert score.grade == "F"
