"""
Leverage covenants: distress levels, restrictions and headroom
"""
import math
from dataclasses import dataclass

from game_config import BALANCE
from models import DistressLevel, GameState

# Reported ratio when EBITDA is gone but debt is not
UNSERVICEABLE_LEVERAGE = 99.0


@dataclass
class DistressRestrictions:
    can_acquire: bool = True
    can_take_debt: bool = True
    can_distribute: bool = True
    can_buyback: bool = True
    interest_penalty: float = 0.0


@dataclass
class CovenantHeadroom:
    leverage: float
    breach_leverage: float
    ebitda_cushion: int        # EBITDA that can be lost before breach
    debt_capacity: int         # extra net debt before breach


def calculate_leverage(net_debt: float, ebitda: float) -> float:
    """Net debt / EBITDA with guards for zero or negative EBITDA"""
    if net_debt <= 0:
        return 0.0
    if ebitda <= 0:
        return UNSERVICEABLE_LEVERAGE
    ratio = net_debt / ebitda
    if not math.isfinite(ratio):
        return UNSERVICEABLE_LEVERAGE
    return round(ratio, 2)


def calculate_distress_level(net_debt_to_ebitda: float, total_debt: int, total_ebitda: int) -> DistressLevel:
    if total_ebitda <= 0 and total_debt > 0 and net_debt_to_ebitda > 0:
        return DistressLevel.BREACH
    if net_debt_to_ebitda >= BALANCE.breach_leverage:
        return DistressLevel.BREACH
    if net_debt_to_ebitda >= BALANCE.stressed_leverage:
        return DistressLevel.STRESSED
    if net_debt_to_ebitda >= BALANCE.elevated_leverage:
        return DistressLevel.ELEVATED
    return DistressLevel.COMFORTABLE


def get_distress_restrictions(level: DistressLevel) -> DistressRestrictions:
    if level == DistressLevel.BREACH:
        return DistressRestrictions(
            can_acquire=False,
            can_take_debt=False,
            can_distribute=False,
            can_buyback=False,
            interest_penalty=BALANCE.breach_rate_penalty,
        )
    if level == DistressLevel.STRESSED:
        return DistressRestrictions(
            can_take_debt=False,
            interest_penalty=BALANCE.stressed_rate_penalty,
        )
    return DistressRestrictions()


def calculate_covenant_headroom(net_debt: int, ebitda: int) -> CovenantHeadroom:
    breach = BALANCE.breach_leverage
    leverage = calculate_leverage(net_debt, ebitda)
    min_ebitda = max(0, net_debt) / breach
    return CovenantHeadroom(
        leverage=leverage,
        breach_leverage=breach,
        ebitda_cushion=max(0, round(ebitda - min_ebitda)),
        debt_capacity=max(0, round(ebitda * breach - net_debt)),
    )


# ==================== State helpers ====================

def assess_distress(state: GameState) -> DistressLevel:
    total_debt = state.total_debt()
    ebitda = state.total_ebitda()
    leverage = calculate_leverage(total_debt - state.cash, ebitda)
    return calculate_distress_level(leverage, total_debt, ebitda)


def state_restrictions(state: GameState) -> DistressRestrictions:
    return get_distress_restrictions(assess_distress(state))


def breach_forces_restructuring(state: GameState) -> bool:
    return state.covenant_breach_rounds >= BALANCE.covenant_breach_rounds_threshold
