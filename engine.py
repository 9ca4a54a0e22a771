"""
Holdco Engine - Game Engine (Pure Logic, No UI)
===============================================
Headless round/phase state machine for the holding company simulation:

    collect -> event -> allocate -> collect ...
                  ^
    collect -> restructure (cash exhausted or prolonged covenant breach)

Each transition is a function `(state) -> state` that returns a new state.
The `Engine` class is a thin facade that holds the current state, an
optional narrator and the autopilot used for headless runs.
"""

from typing import Callable, Dict, List, Optional

import numpy as np
import structlog

from actions import (
    acquire_business,
    distressed_sale,
    declare_bankruptcy,
    emergency_equity_raise,
    improve_business,
    pay_down_debt,
    resolve_event_choice,
    sellable_by_value,
    unlock_shared_service,
)
from deals import generate_business, generate_deal_pipeline, generate_deal_structures, max_acquisitions_per_round
from distress import assess_distress, breach_forces_restructuring, state_restrictions
from events import apply_event_effects, generate_event
from financials import (
    apply_organic_growth,
    calculate_metrics,
    exit_valuation_for,
    growth_modifiers_for,
    money,
    record_historical_metrics,
)
from game_config import (
    BALANCE,
    DIFFICULTY_CONFIG,
    DURATION_CONFIG,
    IMPROVEMENTS,
    MIN_OPCOS_FOR_SHARED_SERVICES,
    SHARED_SERVICES,
    Difficulty,
    Duration,
    ImprovementType,
    SharedServiceType,
)
from models import (
    DealStructureType,
    DebtInstrument,
    DistressLevel,
    EventChoice,
    EventType,
    ChoiceAction,
    GameState,
    Phase,
    RiskTier,
    RoundHistoryEntry,
)
from narrative import NarrativeGenerator, narrate
from portfolio import reject, replace_business
from rng import RngStreams, create_rng_streams, generate_random_seed
from scoring import (
    calculate_enterprise_value,
    calculate_irr_moic,
    calculate_score,
    founder_equity_value,
)
from sectors import SECTOR_IDS, get_sector
from turnarounds import resolve_due_turnarounds
from waterfall import run_collection_waterfall

log = structlog.get_logger(__name__)

STARTING_ROUND_SEED = 0
AUTOPILOT_MIN_RESERVE = 1000
AUTOPILOT_MIN_QUALITY = 3
AUTOPILOT_OFFER_PREMIUM = 1.1
AUTOPILOT_CHOICE_BUDGET = 0.10   # of cash
MAX_STEPS_PER_ROUND = 10


# ==================== Setup ====================

def new_game_state(seed: Optional[int] = None, difficulty: Difficulty = Difficulty.EASY,
                   duration: Duration = Duration.STANDARD) -> GameState:
    """Fresh game: funded holdco owning one starting business

    Args:
        seed: Master seed; a random one is drawn when omitted
        difficulty: Starting capital structure
        duration: Number of rounds

    Returns:
        GameState in round 1, collect phase
    """
    if seed is None:
        seed = generate_random_seed()
    config = DIFFICULTY_CONFIG[difficulty]

    rng = create_rng_streams(seed, STARTING_ROUND_SEED).deals.fork("starting-business")
    sector_id = rng.pick(SECTOR_IDS)
    business = generate_business(rng, "biz-0-start", sector_id, config.starting_ebitda,
                                 config.starting_quality, 0)
    multiple = get_sector(sector_id).midpoint_multiple
    if config.starting_multiple_cap is not None:
        multiple = min(multiple, config.starting_multiple_cap)
    price = round(business.ebitda * multiple)
    business.acquisition_multiple = multiple
    business.acquisition_price = price

    initial_raise = config.initial_cash - config.starting_debt
    state = GameState(
        seed=seed,
        difficulty=difficulty,
        duration=duration,
        max_rounds=DURATION_CONFIG[duration],
        cash=config.initial_cash - price,
        holdco_loan=DebtInstrument(
            balance=config.starting_debt,
            rate=BALANCE.base_interest_rate,
            rounds_remaining=BALANCE.holdco_loan_term if config.starting_debt else 0,
        ),
        interest_rate=BALANCE.base_interest_rate,
        shares_outstanding=config.total_shares,
        founder_shares=config.founder_shares,
        initial_raise=initial_raise,
        initial_ownership=config.founder_shares / config.total_shares,
        total_invested_capital=price,
        equity_cashflows=[{'round': 0, 'amount': -initial_raise}],
        businesses=[business],
    )
    state.reason = f"{config.label}: bought {business.name} for {money(price)}."
    log.info("game.created", seed=seed, difficulty=difficulty.value, duration=duration.value,
             sector=sector_id, cash=state.cash)
    return state


# ==================== Phase Transitions ====================

def _phase_error(state: GameState, phase: Phase) -> Optional[str]:
    if state.game_over:
        return "The game is over."
    if state.phase != phase:
        return f"Cannot leave the {state.phase.value} phase that way."
    return None


def _draw_event(state: GameState) -> GameState:
    streams = create_rng_streams(state.seed, state.round)
    event = generate_event(state, streams.events)
    state = apply_event_effects(state, event, streams.events)
    state.phase = Phase.EVENT
    return state


def advance_to_event(state: GameState) -> GameState:
    """collect -> event (or restructure / game over)"""
    error = _phase_error(state, Phase.COLLECT)
    if error:
        return reject(state, error)

    state, report = run_collection_waterfall(state)
    if state.game_over:
        log.warning("game.bankrupt", round=state.round, declared=False)
        return state

    if report.insolvent or breach_forces_restructuring(state):
        state.requires_restructuring = True
        state.phase = Phase.RESTRUCTURE
        if not report.insolvent:
            state.reason = "Covenants breached for too long: lenders force a restructuring."
        log.warning("round.restructure", round=state.round, insolvent=report.insolvent,
                    breach_rounds=state.covenant_breach_rounds)
        return state

    log.info("round.collected", round=state.round, cash=state.cash)
    return _draw_event(state)


def advance_to_allocate(state: GameState) -> GameState:
    """event -> allocate; refreshes the deal pipeline"""
    error = _phase_error(state, Phase.EVENT)
    if error:
        return reject(state, error)
    event = state.current_event
    if event is not None and event.pending:
        target = state.find_business(event.business_id) if event.business_id else None
        if target is not None and target.carries_debt:
            return reject(state, f"Decide how to respond to {event.title} first.")

    state = state.clone()
    if state.current_event is not None and state.current_event.pending:
        # target left the portfolio before a decision was made
        state.current_event.expired = True
    streams = create_rng_streams(state.seed, state.round)
    state.deal_pipeline = generate_deal_pipeline(state, streams.deals)
    state.phase = Phase.ALLOCATE
    return state


def end_round(state: GameState, narrative: Optional[str] = None) -> GameState:
    """allocate -> collect: grow the portfolio, record history, check end conditions"""
    error = _phase_error(state, Phase.ALLOCATE)
    if error:
        return reject(state, error)

    state = state.clone()
    streams = create_rng_streams(state.seed, state.round)
    modifiers = growth_modifiers_for(state)
    for b in state.active_businesses():
        replace_business(state, apply_organic_growth(b, streams.simulation.fork(b.id), modifiers))
    resolve_due_turnarounds(state, streams.simulation)

    state.credit_tightening_rounds = max(0, state.credit_tightening_rounds - 1)
    state.inflation_rounds = max(0, state.inflation_rounds - 1)
    if assess_distress(state) == DistressLevel.BREACH:
        state.covenant_breach_rounds += 1
    else:
        state.covenant_breach_rounds = 0

    metrics = calculate_metrics(state)
    state.metrics_history.append(record_historical_metrics(state, metrics))
    event = state.current_event
    state.round_history.append(RoundHistoryEntry(
        round=state.round,
        event_type=event.type.value if event else None,
        event_title=event.title if event else "",
        actions=list(state.actions_this_round),
        metrics=metrics,
        waterfall=state.last_waterfall,
        narrative=narrative,
    ))
    log.info("round.completed", round=state.round, ebitda=metrics.total_ebitda, cash=metrics.cash,
             leverage=metrics.net_debt_to_ebitda, actions=len(state.actions_this_round))

    state.acquisitions_this_round = 0
    state.source_calls_this_round = 0
    state.outreach_calls_this_round = 0
    state.equity_raises_this_round = 0
    state.actions_this_round = []
    state.current_event = None

    if state.has_restructured and breach_forces_restructuring(state):
        state.bankrupt = True
        state.game_over = True
        state.reason = "Covenant breach persisted after restructuring: bankruptcy."
        log.warning("game.bankrupt", round=state.round, declared=False)
        return state

    state.round += 1
    state.phase = Phase.COLLECT
    if state.round > state.max_rounds:
        state.game_over = True
        state.reason = f"Final year complete after {state.max_rounds} rounds."
        log.info("game.finished", seed=state.seed, rounds=state.max_rounds)
    return state


def complete_restructuring(state: GameState) -> GameState:
    """restructure -> event, once at least one corrective action was taken"""
    error = _phase_error(state, Phase.RESTRUCTURE)
    if error:
        return reject(state, error)
    if state.restructure_actions_taken < 1:
        return reject(state, "Take at least one corrective action first.")

    state = state.clone()
    state.has_restructured = True
    state.requires_restructuring = False
    state.restructure_actions_taken = 0
    state.covenant_breach_rounds = 0
    state.exit_multiple_penalty = BALANCE.restructuring_exit_penalty
    state.reason = "Restructuring complete. Lenders will not give a second chance."
    log.info("restructure.completed", round=state.round, cash=state.cash)
    return _draw_event(state)


# ==================== Engine Facade ====================

def event_context(state: GameState) -> Dict[str, object]:
    event = state.current_event
    context = {"round": state.round, "title": event.title, "description": event.description}
    business = state.find_business(event.business_id) if event.business_id else None
    if business is not None:
        context["business"] = business.name
    if event.sector_id:
        context["sector"] = get_sector(event.sector_id).name
    if event.offer_amount:
        context["offer"] = money(event.offer_amount)
    return context


def annual_debt_service(state: GameState) -> int:
    instruments = [state.holdco_loan]
    for b in state.businesses:
        if b.carries_debt:
            instruments += [b.seller_note, b.bank_debt]
    return sum(i.scheduled_interest() + i.scheduled_principal() for i in instruments)


class Engine:
    """Pure game logic engine (no UI dependencies)"""

    def __init__(self, seed: Optional[int] = None, difficulty: Difficulty = Difficulty.EASY,
                 duration: Duration = Duration.STANDARD, narrator: Optional[NarrativeGenerator] = None):
        self.gs = new_game_state(seed, difficulty, duration)
        self.narrator = narrator
        self._narrative: Optional[str] = None

    def streams(self) -> RngStreams:
        """This round's streams, freshly derived"""
        return create_rng_streams(self.gs.seed, self.gs.round)

    def apply(self, action: Callable[..., GameState], *args, **kwargs) -> GameState:
        self.gs = action(self.gs, *args, **kwargs)
        return self.gs

    # ==================== Phases ====================

    def collect(self):
        self.apply(advance_to_event)
        self._narrate()

    def begin_allocation(self):
        self.apply(advance_to_allocate)

    def finish_round(self):
        self.apply(end_round, self._narrative)
        self._narrative = None

    def restructure(self):
        self.apply(complete_restructuring)
        self._narrate()

    def _narrate(self):
        gs = self.gs
        if gs.phase == Phase.EVENT and gs.current_event is not None:
            self._narrative = narrate(self.narrator, gs.current_event.type, event_context(gs))

    # ==================== Autopilot ====================

    def cash_reserve(self) -> int:
        return max(AUTOPILOT_MIN_RESERVE, annual_debt_service(self.gs))

    def autopilot_choice(self) -> EventChoice:
        """Deterministic response to the pending choice event"""
        gs = self.gs
        event = gs.current_event
        if event.type == EventType.UNSOLICITED_OFFER:
            business = gs.find_business(event.business_id)
            valuation = exit_valuation_for(gs, business)
            accept = event.offer_amount >= valuation.exit_price * AUTOPILOT_OFFER_PREMIUM
            wanted = ChoiceAction.ACCEPT_OFFER if accept else ChoiceAction.DECLINE_OFFER
            return next(c for c in event.choices if c.action == wanted)
        budget = gs.cash * AUTOPILOT_CHOICE_BUDGET
        for choice in event.choices:
            if 0 < choice.cost <= budget:
                return choice
        return next(c for c in event.choices if c.cost == 0)

    def ai_resolve_event(self):
        gs = self.gs
        if gs.phase != Phase.EVENT or gs.current_event is None or not gs.current_event.pending:
            return
        self.apply(resolve_event_choice, self.autopilot_choice().action, self.streams())

    def ai_restructure(self):
        """One corrective action, then exit restructuring; bankruptcy if that fails"""
        gs = self.gs
        if gs.phase != Phase.RESTRUCTURE or gs.game_over:
            return
        candidates = sellable_by_value(gs)
        if len(candidates) > 1:
            self.apply(distressed_sale, candidates[0].id)
        else:
            shortfall = gs.last_waterfall.total_shortfall if gs.last_waterfall else 0
            self.apply(emergency_equity_raise, max(AUTOPILOT_MIN_RESERVE, shortfall))
        self.restructure()
        if self.gs.phase == Phase.RESTRUCTURE:
            self.apply(declare_bankruptcy)

    def pick_deal(self):
        """Best affordable quality deal and the structure to buy it with"""
        gs = self.gs
        budget = gs.cash - self.cash_reserve()
        comfortable = assess_distress(gs) == DistressLevel.COMFORTABLE
        deals = [d for d in gs.deal_pipeline if d.business.quality >= AUTOPILOT_MIN_QUALITY]
        deals.sort(key=lambda d: (-d.business.quality, d.effective_price / max(1, d.business.ebitda), d.id))
        for deal in deals:
            structures = {s.type: s for s in generate_deal_structures(deal, gs)}
            preferred = [DealStructureType.ALL_CASH]
            if comfortable:
                preferred.insert(0, DealStructureType.SELLER_NOTE)
            for structure_type in preferred:
                structure = structures.get(structure_type)
                if structure and structure.risk != RiskTier.HIGH and structure.cash_required <= budget:
                    return deal, structure
        return None, None

    def ai_decide_actions(self):
        """Autopilot allocation: de-lever, acquire, add services, improve"""
        gs = self.gs
        if gs.game_over or gs.phase != Phase.ALLOCATE:
            return
        streams = self.streams()

        metrics = calculate_metrics(gs)
        if metrics.net_debt_to_ebitda >= BALANCE.elevated_leverage and gs.holdco_loan.balance > 0:
            amount = min(gs.holdco_loan.balance, gs.cash - self.cash_reserve())
            if amount > 0:
                self.apply(pay_down_debt, amount)

        if state_restrictions(self.gs).can_acquire:
            for _ in range(max_acquisitions_per_round(self.gs.ma_sourcing_tier)):
                deal, structure = self.pick_deal()
                if deal is None:
                    break
                self.apply(acquire_business, deal.id, structure.type, streams)

        gs = self.gs
        service = SHARED_SERVICES[SharedServiceType.FINANCE_REPORTING]
        if (len(gs.active_businesses()) >= MIN_OPCOS_FOR_SHARED_SERVICES
                and SharedServiceType.FINANCE_REPORTING not in gs.shared_services
                and gs.cash - service.unlock_cost >= self.cash_reserve()):
            self.apply(unlock_shared_service, SharedServiceType.FINANCE_REPORTING)

        gs = self.gs
        playbook = IMPROVEMENTS[ImprovementType.OPERATING_PLAYBOOK]
        for b in sorted(gs.active_businesses(), key=lambda b: (-b.ebitda, b.id)):
            if ImprovementType.OPERATING_PLAYBOOK in b.improvements:
                continue
            cost = max(playbook.min_cost, round(max(0, b.ebitda) * playbook.cost_pct))
            if gs.cash - cost >= self.cash_reserve():
                self.apply(improve_business, b.id, ImprovementType.OPERATING_PLAYBOOK, streams)
            break


# ==================== Public API ====================

def new_game(seed: Optional[int] = None, difficulty: Difficulty = Difficulty.EASY,
             duration: Duration = Duration.STANDARD,
             narrator: Optional[NarrativeGenerator] = None) -> Engine:
    """Create a new game instance

    Args:
        seed: Master seed for reproducibility (challenge mode); random when omitted
        difficulty: Starting capital structure
        duration: Number of rounds
        narrator: Optional text generator for event narration

    Returns:
        Engine instance ready to play
    """
    return Engine(seed=seed, difficulty=difficulty, duration=duration, narrator=narrator)


def step_round(engine: Engine, decide: Optional[Callable[[Engine], None]] = None) -> Engine:
    """Play one full round

    Args:
        engine: Current engine instance
        decide: Called once in the allocate phase; the autopilot when omitted

    Returns:
        Updated engine instance (same object, new state)
    """
    for _ in range(MAX_STEPS_PER_ROUND):
        gs = engine.gs
        if gs.game_over:
            break
        if gs.phase == Phase.COLLECT:
            engine.collect()
        elif gs.phase == Phase.RESTRUCTURE:
            engine.ai_restructure()
        elif gs.phase == Phase.EVENT:
            engine.ai_resolve_event()
            engine.begin_allocation()
        elif gs.phase == Phase.ALLOCATE:
            if decide is None:
                engine.ai_decide_actions()
            else:
                decide(engine)
            engine.finish_round()
            break
    return engine


def is_finished(engine: Engine) -> bool:
    return engine.gs.game_over


def get_results(engine: Engine) -> dict:
    """Final results: score, grade, IRR/MOIC and headline numbers"""
    gs = engine.gs
    score = calculate_score(gs)
    irr, moic, equity_in, equity_out, irr_status = calculate_irr_moic(gs)
    return {
        'seed': gs.seed,
        'difficulty': gs.difficulty.value,
        'duration': gs.duration.value,
        'round': gs.round,
        'bankrupt': gs.bankrupt,
        'has_restructured': gs.has_restructured,
        'score': score.total,
        'grade': score.grade,
        'score_breakdown': score,
        'enterprise_value': calculate_enterprise_value(gs),
        'founder_equity_value': founder_equity_value(gs),
        'founder_ownership': gs.founder_ownership(),
        'irr': irr,
        'moic': moic,
        'equity_in': equity_in,
        'equity_out': equity_out,
        'irr_status': irr_status.value,
        'cash': gs.cash,
        'total_debt': gs.total_debt(),
        'total_ebitda': gs.total_ebitda(),
        'active_businesses': len(gs.active_businesses()),
        'reason': gs.reason,
    }


def run_one_simulation(seed: int, difficulty: Difficulty = Difficulty.EASY,
                       duration: Duration = Duration.STANDARD) -> dict:
    """Run a single headless game on autopilot

    Args:
        seed: Master seed
        difficulty: Starting capital structure
        duration: Number of rounds

    Returns:
        get_results() dictionary plus the round history
    """
    engine = new_game(seed=seed, difficulty=difficulty, duration=duration)
    for _ in range(engine.gs.max_rounds + 1):
        if is_finished(engine):
            break
        step_round(engine)
    results = get_results(engine)
    results['history'] = engine.gs.round_history
    return results


def run_monte_carlo(n: int, difficulty: Difficulty = Difficulty.EASY,
                    duration: Duration = Duration.STANDARD, first_seed: int = 1) -> dict:
    """Run Monte Carlo simulation over seeds first_seed .. first_seed + n - 1

    Returns:
        Dictionary with aggregate statistics and the per-run results
    """
    results: List[dict] = []
    for seed in range(first_seed, first_seed + n):
        results.append(run_one_simulation(seed, difficulty, duration))

    scores = np.array([r['score'] for r in results], dtype=float)
    moics = np.array([r['moic'] for r in results], dtype=float)
    irrs = np.array([r['irr'] for r in results if r['irr_status'] == 'valid'], dtype=float)
    bankruptcies = sum(1 for r in results if r['bankrupt'])
    grades: Dict[str, int] = {}
    for r in results:
        grades[r['grade']] = grades.get(r['grade'], 0) + 1

    def pct(values, q):
        return float(np.percentile(values, q)) if len(values) else 0.0

    return {
        'n': len(results),
        'bankruptcy_rate': bankruptcies / len(results) if results else 0.0,
        'median_score': pct(scores, 50),
        'p25_score': pct(scores, 25),
        'p75_score': pct(scores, 75),
        'median_moic': pct(moics, 50),
        'median_irr': pct(irrs, 50),
        'grades': grades,
        'results': results,
    }
