"""
Holdco Engine - Collection Waterfall
====================================
Each round's collection phase, applied in strict order against one cash
balance:

    (a) pre-tax FCF less shared-services, sourcing and turnaround overhead
    (b) portfolio tax
    (c) holdco loan interest + principal
    (d) per-business seller note then bank debt, in portfolio order
    (e) earn-outs that hit their growth target; expired ones are forfeited

Every payment is capped by the cash on hand, interest before principal.
Balances fall only by principal actually paid. Any shortfall marks the
holdco insolvent; cash is never left negative.
"""

from typing import Tuple

import structlog

from distress import state_restrictions
from financials import (
    calculate_portfolio_fcf,
    calculate_portfolio_tax,
    safe_divide,
    shared_services_benefits,
    sourcing_annual_cost,
    turnaround_annual_cost,
)
from models import Business, DebtInstrument, GameState, WaterfallReport

log = structlog.get_logger(__name__)


def pay_instrument(instrument: DebtInstrument, cash: int, rate_penalty: float = 0.0) -> Tuple[int, int, int, int]:
    """Pay one year of interest then principal, capped by cash

    Mutates `instrument` (balance and term).

    Returns:
        (cash_left, interest_paid, principal_paid, shortfall)
    """
    if instrument.balance <= 0:
        return cash, 0, 0, 0

    interest_due = instrument.scheduled_interest(rate_penalty)
    principal_due = instrument.scheduled_principal()

    interest_paid = min(max(0, cash), interest_due)
    cash -= interest_paid
    principal_paid = min(max(0, cash), principal_due)
    cash -= principal_paid

    instrument.balance -= principal_paid
    if instrument.balance <= 0:
        instrument.balance = 0
        instrument.rounds_remaining = 0
    elif instrument.rounds_remaining > 1:
        instrument.rounds_remaining -= 1

    shortfall = (interest_due - interest_paid) + (principal_due - principal_paid)
    return cash, interest_paid, principal_paid, shortfall


def earnout_growth(state: GameState, business: Business) -> float:
    terms = business.earnout
    measured = business
    if terms.measured_business_id and terms.measured_business_id != business.id:
        measured = state.find_business(terms.measured_business_id) or business
    baseline = terms.baseline_ebitda or business.acquisition_ebitda
    if baseline <= 0:
        return 0.0
    return safe_divide(measured.ebitda - baseline, baseline)


def run_collection_waterfall(state: GameState) -> Tuple[GameState, WaterfallReport]:
    """Run the collection waterfall on a copy of `state`

    Args:
        state: State at the start of the collect phase

    Returns:
        (new_state, report). new_state.requires_restructuring is set on a
        first insolvency; a repeat after restructuring ends the game.
    """
    state = state.clone()
    report = WaterfallReport(round=state.round, cash_start=state.cash)
    restrictions = state_restrictions(state)
    penalty = restrictions.interest_penalty
    benefits = shared_services_benefits(state)
    active = state.active_businesses()

    # (a) operating cash flow
    report.portfolio_fcf = calculate_portfolio_fcf(
        active, benefits.capex_reduction, benefits.cash_conversion_bonus)
    report.shared_services_cost = benefits.annual_cost
    report.sourcing_cost = sourcing_annual_cost(state)
    report.turnaround_cost = turnaround_annual_cost(state)
    report.pre_tax_fcf = (report.portfolio_fcf - report.shared_services_cost - report.sourcing_cost
                          - report.turnaround_cost)
    cash = state.cash + report.pre_tax_fcf

    # (b) tax
    report.tax = calculate_portfolio_tax(
        state.businesses, state.holdco_loan.balance, state.holdco_loan.rate,
        benefits.annual_cost, penalty)
    cash -= report.tax.tax
    state.total_tax_paid += report.tax.tax
    if cash < 0:
        report.operating_deficit = -cash
        report.shortfalls["operations"] = -cash
        cash = 0

    # (c) holdco loan
    cash, interest, principal, shortfall = pay_instrument(state.holdco_loan, cash, penalty)
    report.holdco_interest_paid = interest
    report.holdco_principal_paid = principal
    if shortfall:
        report.shortfalls["holdco_loan"] = shortfall

    # (d) opco debt, business by business
    for b in state.businesses:
        if not b.carries_debt:
            continue
        cash, interest, principal, shortfall = pay_instrument(b.seller_note, cash)
        report.opco_interest_paid += interest
        report.opco_principal_paid += principal
        if shortfall:
            report.shortfalls[f"{b.id}:seller_note"] = shortfall
        cash, interest, principal, shortfall = pay_instrument(b.bank_debt, cash, penalty)
        report.opco_interest_paid += interest
        report.opco_principal_paid += principal
        if shortfall:
            report.shortfalls[f"{b.id}:bank_debt"] = shortfall

    # (e) earn-outs
    for b in state.businesses:
        terms = b.earnout
        if not b.carries_debt or not terms.active:
            continue
        if earnout_growth(state, b) >= terms.target_growth:
            paid = min(cash, terms.remaining)
            cash -= paid
            terms.remaining -= paid
            report.earnouts_paid += paid
            if terms.remaining > 0:
                report.shortfalls[f"{b.id}:earnout"] = terms.remaining
            else:
                terms.rounds_remaining = 0
            continue
        terms.rounds_remaining -= 1
        if terms.rounds_remaining <= 0:
            report.earnouts_forfeited += terms.remaining
            log.info("earnout.forfeited", business_id=b.id, amount=terms.remaining)
            terms.remaining = 0
            terms.rounds_remaining = 0

    state.total_interest_paid += report.holdco_interest_paid + report.opco_interest_paid
    state.cash = max(0, cash)
    report.cash_end = state.cash
    report.insolvent = report.total_shortfall > 0
    state.last_waterfall = report

    if report.insolvent:
        if state.has_restructured:
            state.bankrupt = True
            state.game_over = True
            state.reason = "Cash exhausted again after restructuring: bankruptcy."
        else:
            state.requires_restructuring = True
            state.reason = "Cash exhausted: lenders force a restructuring."
        log.warning("waterfall.insolvent", round=state.round,
                    shortfall=report.total_shortfall, bankrupt=state.bankrupt)
    else:
        log.info("waterfall.collected", round=state.round,
                 pre_tax_fcf=report.pre_tax_fcf, tax=report.tax.tax, cash=state.cash)
    return state, report
