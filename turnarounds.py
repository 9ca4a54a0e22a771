"""
Holdco Engine - Turnaround Programs
===================================
Tiered playbooks that lift a weak business's quality over several rounds.
A program resolves at year end with a single roll: success reaches the
target quality, partial gains one tier, failure costs some EBITDA. Running
many programs at once tires the ops team and shifts odds toward partial.
"""

from dataclasses import dataclass
from typing import List, Optional

import structlog

from financials import scale_business
from game_config import (
    DEFAULT_QUALITY_CEILING,
    SECTOR_QUALITY_CEILINGS,
    TURNAROUND_FATIGUE_PENALTY,
    TURNAROUND_FATIGUE_THRESHOLD,
    TURNAROUND_PROGRAMS,
    Duration,
    TurnaroundProgram,
)
from models import Business, GameState, Turnaround, TurnaroundStatus
from portfolio import replace_business
from rng import SeededRng

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TurnaroundOutcome:
    status: TurnaroundStatus
    quality_change: int
    ebitda_multiplier: float
    target_quality: int


def quality_ceiling(sector_id: str) -> int:
    return SECTOR_QUALITY_CEILINGS.get(sector_id, DEFAULT_QUALITY_CEILING)


def get_program(program_id: str) -> Optional[TurnaroundProgram]:
    for program in TURNAROUND_PROGRAMS:
        if program.id == program_id:
            return program
    return None


def active_turnarounds(state: GameState) -> List[Turnaround]:
    return [t for t in state.turnarounds if t.status == TurnaroundStatus.ACTIVE]


def eligible_programs(business: Business, state: GameState) -> List[TurnaroundProgram]:
    """Programs the holdco can start at `business` with its current tier"""
    if state.turnaround_tier == 0:
        return []
    if any(t.business_id == business.id for t in active_turnarounds(state)):
        return []
    ceiling = quality_ceiling(business.sector_id)
    return [p for p in TURNAROUND_PROGRAMS
            if p.tier <= state.turnaround_tier
            and p.source_quality == business.quality
            and p.target_quality <= ceiling]


def turnaround_cost(program: TurnaroundProgram, business: Business) -> int:
    return round(abs(business.ebitda) * program.upfront_cost_pct)


def turnaround_duration(program: TurnaroundProgram, duration: Duration) -> int:
    if duration == Duration.QUICK:
        return program.duration_quick
    return program.duration_standard


def resolve_turnaround(program: TurnaroundProgram, active_count: int, roll: float) -> TurnaroundOutcome:
    success = program.success_rate
    partial = program.partial_rate
    if active_count >= TURNAROUND_FATIGUE_THRESHOLD:
        success = max(0.0, success - TURNAROUND_FATIGUE_PENALTY)
        partial = min(1 - success - program.failure_rate, partial + TURNAROUND_FATIGUE_PENALTY)

    if roll < success:
        return TurnaroundOutcome(
            TurnaroundStatus.SUCCESS,
            program.target_quality - program.source_quality,
            1 + program.ebitda_boost_on_success,
            program.target_quality,
        )
    if roll < success + partial:
        target = min(program.target_quality, program.source_quality + 1)
        return TurnaroundOutcome(
            TurnaroundStatus.PARTIAL,
            target - program.source_quality,
            1 + program.ebitda_boost_on_partial,
            target,
        )
    return TurnaroundOutcome(
        TurnaroundStatus.FAILURE, 0, 1 - program.ebitda_damage_on_failure, program.source_quality)


def resolve_due_turnarounds(state: GameState, rng: SeededRng) -> None:
    """Year end: settle every program whose last round is this one

    Each program rolls on its own fork of `rng`, keyed by its id. Programs
    whose business has left the portfolio are abandoned. Quality never drops
    below where the business already stands.
    """
    running = active_turnarounds(state)
    for turnaround in running:
        business = state.find_business(turnaround.business_id)
        if business is None or not business.is_active:
            turnaround.status = TurnaroundStatus.ABANDONED
            continue
        if state.round < turnaround.end_round:
            continue

        program = get_program(turnaround.program_id)
        outcome = resolve_turnaround(program, len(running), rng.fork(turnaround.id).next())
        updated = scale_business(business, outcome.ebitda_multiplier)
        updated.quality = max(business.quality, outcome.target_quality)
        updated.quality_improved_tiers = business.quality_improved_tiers + updated.quality - business.quality
        replace_business(state, updated)
        turnaround.status = outcome.status
        log.info("turnaround.resolved", round=state.round, business_id=business.id,
                 program_id=program.id, result=outcome.status.value, quality=updated.quality)
