"""
Holdco Engine - Scoring
=======================
End-of-game valuation, the 100-point score and the shareholders' IRR/MOIC.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple

import numpy as np
from scipy import optimize

from financials import calculate_metrics, clamp, portfolio_exit_value, safe_divide, sector_focus
from models import BusinessStatus, GameState

GRADE_THRESHOLDS = ((90, "S"), (80, "A"), (65, "B"), (50, "C"), (35, "D"))
TARGET_FCF_PER_SHARE_CAGR = 0.15
TARGET_ROIC = 0.20
FULL_MARKS_MOIC = 3.0


class IRRStatus(Enum):
    """Status of IRR calculation"""
    VALID = "valid"
    NO_SIGN_CHANGE = "no_sign_change"
    DID_NOT_CONVERGE = "did_not_converge"


@dataclass
class ScoreBreakdown:
    fcf_per_share_growth: float = 0.0   # out of 25
    roic: float = 0.0                   # out of 20
    capital_deployment: float = 0.0     # out of 20
    balance_sheet: float = 0.0          # out of 15
    strategic_discipline: float = 0.0   # out of 20
    total: float = 0.0
    grade: str = "F"


# ==================== Valuation ====================

def calculate_enterprise_value(state: GameState) -> int:
    """Portfolio exit value plus cash and distributions, less all debt"""
    return portfolio_exit_value(state) + state.cash + state.total_distributions - state.total_debt()


def equity_value(state: GameState) -> int:
    return max(0, portfolio_exit_value(state) + state.cash - state.total_debt())


def founder_equity_value(state: GameState) -> int:
    return round(equity_value(state) * state.founder_ownership())


# ==================== Score ====================

def grade_for(total: float) -> str:
    for threshold, grade in GRADE_THRESHOLDS:
        if total >= threshold:
            return grade
    return "F"


def fcf_per_share_cagr(state: GameState) -> float:
    history = state.metrics_history
    if len(history) < 2:
        return 0.0
    first, last = history[0].fcf_per_share, history[-1].fcf_per_share
    if first <= 0:
        return TARGET_FCF_PER_SHARE_CAGR if last > 0 else 0.0
    if last <= 0:
        return -1.0
    years = len(history) - 1
    return (last / first) ** (1 / years) - 1


def balance_sheet_points(net_debt_to_ebitda: float, has_restructured: bool) -> float:
    if net_debt_to_ebitda <= 1.0:
        points = 15.0
    elif net_debt_to_ebitda <= 2.5:
        points = 12.0
    elif net_debt_to_ebitda <= 3.5:
        points = 7.0
    elif net_debt_to_ebitda < 4.5:
        points = 3.0
    else:
        points = 0.0
    if has_restructured:
        points -= 5.0
    return max(0.0, points)


def discipline_points(state: GameState) -> float:
    """Focus, platforms and avoiding value-destroying exits"""
    _, focus_tier = sector_focus(state.businesses)
    points = 8.0 + focus_tier * 2.0
    if any(b.is_platform and b.is_active for b in state.businesses):
        points += 4.0
    for b in state.businesses:
        if b.status == BusinessStatus.WOUND_DOWN:
            points -= 3.0
        elif b.status == BusinessStatus.SOLD and b.exit_price < b.acquisition_price:
            points -= 2.0
    return clamp(points, 0.0, 20.0)


def calculate_score(state: GameState) -> ScoreBreakdown:
    """Score out of 100 with a letter grade; bankruptcy scores zero"""
    if state.bankrupt:
        return ScoreBreakdown()
    metrics = calculate_metrics(state)
    breakdown = ScoreBreakdown(
        fcf_per_share_growth=25.0 * clamp(fcf_per_share_cagr(state) / TARGET_FCF_PER_SHARE_CAGR, 0.0, 1.0),
        roic=20.0 * clamp(metrics.roic / TARGET_ROIC, 0.0, 1.0),
        capital_deployment=20.0 * clamp((metrics.moic - 1.0) / (FULL_MARKS_MOIC - 1.0), 0.0, 1.0),
        balance_sheet=balance_sheet_points(metrics.net_debt_to_ebitda, state.has_restructured),
        strategic_discipline=discipline_points(state),
    )
    breakdown.total = round(breakdown.fcf_per_share_growth + breakdown.roic + breakdown.capital_deployment
                            + breakdown.balance_sheet + breakdown.strategic_discipline, 1)
    breakdown.grade = grade_for(breakdown.total)
    return breakdown


# ==================== Returns ====================

def equity_cashflows(state: GameState) -> List[dict]:
    """Recorded shareholder flows plus the terminal equity value once the game ends"""
    flows = list(state.equity_cashflows)
    if state.game_over and not state.bankrupt:
        terminal = equity_value(state)
        if terminal > 0:
            flows.append({'round': state.round, 'amount': terminal})
    return flows


def calculate_irr_moic(state: GameState) -> Tuple[float, float, int, int, IRRStatus]:
    """Calculate IRR and MOIC from equity cashflows

    Returns:
        (irr, moic, equity_in, equity_out, status)
    """
    flows = equity_cashflows(state)
    equity_in = sum(-cf['amount'] for cf in flows if cf['amount'] < 0)
    equity_out = sum(cf['amount'] for cf in flows if cf['amount'] > 0)
    moic = safe_divide(equity_out, equity_in)

    if len(flows) < 2:
        return 0.0, moic, equity_in, equity_out, IRRStatus.NO_SIGN_CHANGE

    amounts = [cf['amount'] for cf in flows]
    if not (any(a > 0 for a in amounts) and any(a < 0 for a in amounts)):
        return 0.0, moic, equity_in, equity_out, IRRStatus.NO_SIGN_CHANGE

    try:
        years = np.array([cf['round'] for cf in flows], dtype=float)
        values = np.array(amounts, dtype=float)

        def npv(rate):
            return np.sum(values / (1 + rate) ** years)

        irr = float(optimize.newton(npv, 0.1, maxiter=100))
        if not np.isfinite(irr) or abs(irr) > 10.0:
            return 0.0, moic, equity_in, equity_out, IRRStatus.DID_NOT_CONVERGE
        return irr, moic, equity_in, equity_out, IRRStatus.VALID
    except (RuntimeError, ValueError, OverflowError):
        return 0.0, moic, equity_in, equity_out, IRRStatus.DID_NOT_CONVERGE
