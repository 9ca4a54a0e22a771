"""
State mutation helpers shared by player actions and event choices.

All helpers work on a state the caller already owns (a clone), never on the
caller's input.
"""
from dataclasses import replace

import structlog

from models import Business, BusinessStatus, GameState
from platforms import dissolve_broken_platforms

log = structlog.get_logger(__name__)


def reject(state: GameState, reason: str) -> GameState:
    """No-op result for an invalid action: same economics, new message"""
    log.info("action.rejected", round=state.round, phase=state.phase.value, reason=reason)
    return replace(state, reason=reason)


def record_action(state: GameState, message: str) -> None:
    state.actions_this_round.append(message)
    state.reason = message


def replace_business(state: GameState, business: Business) -> None:
    for i, b in enumerate(state.businesses):
        if b.id == business.id:
            state.businesses[i] = business
            return
    raise ValueError(f"unknown business: {business.id}")


def clear_instruments(business: Business) -> int:
    """Settle a business's acquisition debt; returns the debt retired"""
    debt = business.total_debt
    business.seller_note.balance = 0
    business.seller_note.rounds_remaining = 0
    business.bank_debt.balance = 0
    business.bank_debt.rounds_remaining = 0
    business.earnout.remaining = 0
    business.earnout.rounds_remaining = 0
    return debt


def dispose_business(state: GameState, business_id: str, gross_price: int,
                     status: BusinessStatus = BusinessStatus.SOLD) -> int:
    """Sell (or otherwise exit) a business and its bolt-ons

    Opco debt is repaid out of the holdco's share of the price; proceeds are
    floored at zero. An integrated platform left short of its recipe dissolves.

    Returns:
        Net cash received by the holdco
    """
    business = state.find_business(business_id)
    if business is None:
        raise ValueError(f"unknown business: {business_id}")
    holdco_share = round(max(0, gross_price) * (1 - business.rollover_equity_pct))
    debt = clear_instruments(business)
    for bolt_on_id in business.bolt_on_ids:
        bolt_on = state.find_business(bolt_on_id)
        if bolt_on is not None and bolt_on.status == BusinessStatus.INTEGRATED:
            debt += clear_instruments(bolt_on)
            bolt_on.status = status
            bolt_on.exit_round = state.round

    proceeds = max(0, holdco_share - debt)
    business.status = status
    business.exit_price = gross_price
    business.exit_round = state.round
    state.cash += proceeds
    dissolve_broken_platforms(state)
    return proceeds
