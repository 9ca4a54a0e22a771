from distress import (
    UNSERVICEABLE_LEVERAGE,
    breach_forces_restructuring,
    calculate_covenant_headroom,
    calculate_distress_level,
    calculate_leverage,
    get_distress_restrictions,
)
from models import DistressLevel, GameState


def test_leverage_guards():
    assert calculate_leverage(-500, 1000) == 0.0
    assert calculate_leverage(3000, 1000) == 3.0
    assert calculate_leverage(3000, 0) == UNSERVICEABLE_LEVERAGE
    assert calculate_leverage(3000, -200) == UNSERVICEABLE_LEVERAGE


def test_distress_levels():
    assert calculate_distress_level(2.4, 2400, 1000) == DistressLevel.COMFORTABLE
    assert calculate_distress_level(2.5, 2500, 1000) == DistressLevel.ELEVATED
    assert calculate_distress_level(3.5, 3500, 1000) == DistressLevel.STRESSED
    assert calculate_distress_level(4.5, 4500, 1000) == DistressLevel.BREACH
    assert calculate_distress_level(UNSERVICEABLE_LEVERAGE, 100, 0) == DistressLevel.BREACH
    assert calculate_distress_level(0.0, 100, 0) == DistressLevel.COMFORTABLE


def test_restrictions():
    breach = get_distress_restrictions(DistressLevel.BREACH)
    assert not breach.can_acquire
    assert not breach.can_distribute
    assert not breach.can_buyback
    assert breach.interest_penalty == 0.02

    stressed = get_distress_restrictions(DistressLevel.STRESSED)
    assert stressed.can_acquire
    assert not stressed.can_take_debt
    assert stressed.interest_penalty == 0.01

    assert get_distress_restrictions(DistressLevel.ELEVATED).interest_penalty == 0.0


def test_covenant_headroom():
    headroom = calculate_covenant_headroom(2000, 1000)
    assert headroom.leverage == 2.0
    assert headroom.debt_capacity == 2500
    assert headroom.ebitda_cushion == 556


def test_prolonged_breach_forces_restructuring():
    assert not breach_forces_restructuring(GameState(seed=1, covenant_breach_rounds=1))
    assert breach_forces_restructuring(GameState(seed=1, covenant_breach_rounds=2))
