"""
Holdco Engine - Deal Generation & Structuring
=============================================
Builds the acquisition pipeline each round, the extra deals bought with
sourcing actions, and the financing structures offered for a deal.

Every deal draws from its own fork of the deals stream (keyed by deal id),
so adding, removing or reordering one deal never changes another. The
financing terms of a deal come from an RNG seeded by the deal id alone, so
they are identical every time they are computed.
"""

import math
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

import structlog

from distress import state_restrictions
from financials import clamp
from game_config import (
    BALANCE,
    OUTREACH_DEAL_COUNT,
    SOURCED_DEAL_COUNT,
    SOURCING_TIERS,
)
from models import (
    Business,
    DealHeat,
    DealSource,
    DealStructure,
    DealStructureType,
    DebtInstrument,
    Deal,
    DueDiligence,
    EarnoutTerms,
    EventType,
    GameState,
    RiskTier,
    SellerArchetype,
)
from rng import RngStreams, SeededRng, string_hash
from sectors import NAME_SUFFIXES, SECTOR_IDS, SECTORS, STAGE_WEIGHTS, get_sector

log = structlog.get_logger(__name__)


# ==================== Tables ====================

SIZE_RANGES = {
    "small": (500, 1500),
    "medium": (1500, 3000),
    "large": (3000, 8000),
}
SIZE_WEIGHTS = {"small": 0.45, "medium": 0.40, "large": 0.15}
PORTFOLIO_SCALE_BASE = 3000
MAX_PORTFOLIO_SCALE = 2.0

# (threshold, quality): first roll below threshold wins
QUALITY_TABLE = ((0.05, 1), (0.20, 2), (0.60, 3), (0.85, 4), (1.01, 5))

# base heat roll: below 0.25 cold, 0.60 warm, 0.90 hot, else contested
HEAT_ROLL_TABLE = ((0.25, DealHeat.COLD), (0.60, DealHeat.WARM), (0.90, DealHeat.HOT))
HEAT_PREMIUM_RANGES = {
    DealHeat.COLD: (1.0, 1.0),
    DealHeat.WARM: (1.10, 1.15),
    DealHeat.HOT: (1.20, 1.30),
    DealHeat.CONTESTED: (1.20, 1.35),
}
LARGE_DEAL_EBITDA = 4000
MAX_HEAT_COOLING = -3

FOCUS_DEALS = 2
VARIETY_DEALS = 3
EARLY_ROUNDS = 2
EARNOUT_AVAILABILITY_ROLL = 0.4
LATE_GAME_FRACTION = 0.75


@dataclass(frozen=True)
class ArchetypeProfile:
    weight: float
    heat_modifier: int
    price_range: Tuple[float, float]
    growth_bonus: float = 0.0
    caps_at_midpoint: bool = False


ARCHETYPES: Dict[SellerArchetype, ArchetypeProfile] = {
    SellerArchetype.RETIRING_FOUNDER: ArchetypeProfile(0.25, 0, (0.95, 1.05)),
    SellerArchetype.BURNT_OUT_OPERATOR: ArchetypeProfile(0.20, -1, (0.85, 0.95)),
    SellerArchetype.ACCIDENTAL_HOLDCO: ArchetypeProfile(0.12, 0, (0.90, 1.00)),
    SellerArchetype.DISTRESSED_SELLER: ArchetypeProfile(0.10, -1, (0.70, 0.85), caps_at_midpoint=True),
    SellerArchetype.MBO_CANDIDATE: ArchetypeProfile(0.15, 1, (1.00, 1.10)),
    SellerArchetype.FRANCHISE_BREAKAWAY: ArchetypeProfile(0.18, 0, (0.95, 1.05), growth_bonus=0.02),
}


# ==================== Profiles ====================

def roll_quality(rng: SeededRng, min_quality: int = 1) -> int:
    roll = rng.next()
    for threshold, quality in QUALITY_TABLE:
        if roll < threshold:
            return max(min_quality, quality)
    return 5


def archetype_weights(quality: int) -> List[float]:
    weights = []
    for archetype, profile in ARCHETYPES.items():
        w = profile.weight
        if quality <= 2:
            if archetype == SellerArchetype.DISTRESSED_SELLER:
                w *= 2.0
            elif archetype == SellerArchetype.BURNT_OUT_OPERATOR:
                w *= 1.5
        elif quality >= 4:
            if archetype == SellerArchetype.RETIRING_FOUNDER:
                w *= 1.5
            elif archetype == SellerArchetype.MBO_CANDIDATE:
                w *= 1.3
            elif archetype == SellerArchetype.DISTRESSED_SELLER:
                w *= 0.3
        weights.append(w)
    return weights


def portfolio_scale(total_ebitda: int) -> float:
    """Deal sizes grow with the portfolio so late deals still matter"""
    if total_ebitda <= PORTFOLIO_SCALE_BASE:
        return 1.0
    return min(MAX_PORTFOLIO_SCALE, 1.0 + 0.25 * math.log2(total_ebitda / PORTFOLIO_SCALE_BASE))


def roll_size(rng: SeededRng, size: Optional[str], round_number: int, total_ebitda: int) -> int:
    if size is None:
        if round_number <= EARLY_ROUNDS:
            size = "small" if rng.next() < 0.6 else "medium"
        else:
            sizes = list(SIZE_WEIGHTS)
            size = rng.weighted_pick(sizes, [SIZE_WEIGHTS[s] for s in sizes])
    lo, hi = SIZE_RANGES[size]
    return round(rng.next_in_range((lo, hi)) * portfolio_scale(total_ebitda))


def roll_due_diligence(rng: SeededRng, quality: int, concentration: str) -> DueDiligence:
    operator_roll = rng.next() + (quality - 3) * 0.15
    if operator_roll > 0.75:
        operator = "strong"
    elif operator_roll < 0.25:
        operator = "weak"
    else:
        operator = "moderate"
    retention = round(clamp(70 + quality * 4 + rng.next_int(-5, 8), 50, 99))
    return DueDiligence(
        revenue_concentration=concentration,
        operator_quality=operator,
        customer_retention=retention,
    )


def generate_business(rng: SeededRng, business_id: str, sector_id: str, ebitda: int,
                      quality: int, round_number: int,
                      archetype: Optional[SellerArchetype] = None) -> Business:
    """Unowned business snapshot

    Draw order: name, sub-type, margin, growth, drift, due diligence.
    """
    sector = get_sector(sector_id)
    name = f"{rng.pick(sector.name_stems)} {rng.pick(NAME_SUFFIXES)}"
    sub_type = rng.pick(sector.sub_types)
    margin_lo, margin_hi = sector.margin_range
    margin = rng.next_in_range((margin_lo, margin_hi)) + (quality - 3) * 0.01
    margin = clamp(margin, BALANCE.min_margin, BALANCE.max_margin)
    growth = rng.next_in_range(sector.growth_range) + (quality - 3) * 0.01
    if archetype is not None:
        growth += ARCHETYPES[archetype].growth_bonus
    growth = clamp(growth, BALANCE.min_organic_growth_rate, BALANCE.max_organic_growth_rate)
    drift = rng.next_in_range(sector.margin_drift_range)
    dd = roll_due_diligence(rng, quality, sector.client_concentration)

    revenue = max(1, round(ebitda / margin))
    return Business(
        id=business_id,
        name=name,
        sector_id=sector_id,
        sub_type=sub_type,
        revenue=revenue,
        ebitda=ebitda,
        ebitda_margin=margin,
        quality=quality,
        organic_growth_rate=round(growth, 4),
        margin_drift=round(drift, 4),
        acquisition_ebitda=ebitda,
        acquisition_revenue=revenue,
        acquisition_margin=margin,
        acquisition_round=round_number,
        peak_ebitda=ebitda,
        due_diligence=dd,
        seller_archetype=archetype,
    )


# ==================== Heat ====================

def calculate_deal_heat(rng: SeededRng, quality: int, ebitda: int, source: DealSource,
                        archetype: SellerArchetype, state: GameState,
                        sector_id: Optional[str] = None) -> DealHeat:
    """Competitive heat for a new deal

    The sourcing tier only cools deals the holdco found itself; inbound and
    brokered deals are blind to it.
    """
    roll = rng.next()
    heat = DealHeat.CONTESTED
    for threshold, level in HEAT_ROLL_TABLE:
        if roll < threshold:
            heat = level
            break

    shift = 0
    if quality >= 4:
        shift += 1
    elif quality <= 2:
        shift -= 1
    if ebitda >= LARGE_DEAL_EBITDA:
        shift += 1

    last_event = state.last_event_type
    if last_event == EventType.BULL_MARKET:
        shift += 1
    elif last_event == EventType.RECESSION:
        shift -= 1
    if state.credit_tightening_rounds > 0:
        shift -= 1
    if state.round >= math.ceil(state.max_rounds * LATE_GAME_FRACTION):
        shift += 1

    # cooling from source, tier, focus and seller mood stacks to at most -3
    negative = 0
    if source == DealSource.PROPRIETARY:
        negative -= 2
    elif source == DealSource.SOURCED:
        negative -= 1
        if state.ma_sourcing_tier >= 2:
            negative -= 1
    if source.is_sourced and sector_id is not None and sector_id == state.ma_focus.sector_id:
        negative -= 1

    modifier = ARCHETYPES[archetype].heat_modifier
    if modifier < 0:
        negative += modifier
    else:
        shift += modifier
    shift += max(MAX_HEAT_COOLING, negative)
    return DealHeat(int(clamp(int(heat) + shift, DealHeat.COLD, DealHeat.CONTESTED)))


def heat_premium(rng: SeededRng, heat: DealHeat) -> float:
    return rng.next_in_range(HEAT_PREMIUM_RANGES[heat])


# ==================== Deals ====================

def create_deal(rng: SeededRng, deal_id: str, sector_id: str, state: GameState,
                source: DealSource, size: Optional[str] = None, min_quality: int = 1) -> Deal:
    """One deal from its private stream

    Profile, heat and price draw from separate forks so the business itself
    is independent of the competitive situation.
    """
    profile_rng = rng.fork("profile")
    quality = roll_quality(profile_rng, min_quality)
    archetype = profile_rng.weighted_pick(list(ARCHETYPES), archetype_weights(quality))
    ebitda = roll_size(profile_rng, size, state.round, state.total_ebitda())
    business_id = deal_id.replace("deal", "biz", 1)
    business = generate_business(profile_rng, business_id, sector_id, ebitda, quality,
                                 state.round, archetype)

    sector = get_sector(sector_id)
    price_rng = rng.fork("price")
    multiple = price_rng.next_in_range(sector.multiple_range) + (quality - 3) * 0.3
    multiple *= price_rng.next_in_range(ARCHETYPES[archetype].price_range)
    if ARCHETYPES[archetype].caps_at_midpoint:
        multiple = min(multiple, sector.midpoint_multiple)
    multiple = max(BALANCE.min_exit_multiple, round(multiple, 2))
    asking_price = round(ebitda * multiple)

    heat_rng = rng.fork("heat")
    heat = calculate_deal_heat(heat_rng, quality, ebitda, source, archetype, state, sector_id)
    effective_price = round(asking_price * heat_premium(heat_rng, heat))

    business.acquisition_multiple = multiple
    business.acquisition_price = effective_price
    return Deal(
        id=deal_id,
        business=business,
        asking_price=asking_price,
        effective_price=effective_price,
        heat=heat,
        source=source,
        seller_archetype=archetype,
        round_appeared=state.round,
        freshness=BALANCE.deal_freshness_rounds,
    )


def sector_weights(state: GameState) -> List[float]:
    """Deal-flow weight per sector for the current stage of the game"""
    progress = state.round / max(1, state.max_rounds)
    if progress <= 0.3:
        stage = "early"
    elif progress <= 0.7:
        stage = "mid"
    else:
        stage = "late"
    weights = []
    for sector_id in SECTOR_IDS:
        sector = SECTORS[sector_id]
        w = STAGE_WEIGHTS[stage][sector.stage]
        if state.last_event_type == EventType.RECESSION:
            # sellers in cyclical sectors come to market
            w *= 1.0 + max(0.0, sector.recession_sensitivity - 1.0)
        if sector_id == state.ma_focus.sector_id:
            w *= 1.5
        weights.append(w)
    return weights


def age_pipeline(deals: List[Deal]) -> List[Deal]:
    aged = []
    for deal in deals:
        freshness = deal.freshness - 1
        if freshness > 0:
            aged.append(replace(deal, freshness=freshness))
    return aged


def generate_deal_pipeline(state: GameState, rng: SeededRng) -> List[Deal]:
    """Next round's pipeline: surviving deals plus new deal flow

    Order of steps (and so of draws): focus, sourcing tier, portfolio sector,
    variety, weighted fill.
    """
    pipeline = age_pipeline(list(state.deal_pipeline))
    new_deals: List[Deal] = []
    focus = state.ma_focus

    def add(sector_id, source, size=None, min_quality=1):
        deal_id = f"deal-{state.round}-p{len(new_deals)}"
        new_deals.append(create_deal(rng.fork(deal_id), deal_id, sector_id, state,
                                     source, size, min_quality))

    if focus.sector_id:
        for _ in range(FOCUS_DEALS):
            add(focus.sector_id, DealSource.BROKERED, focus.size)

    tier = SOURCING_TIERS[state.ma_sourcing_tier]
    if tier.extra_focus_deals:
        target_sector = focus.sector_id
        active = state.active_businesses()
        if target_sector is None and active:
            target_sector = active[0].sector_id
        for _ in range(tier.extra_focus_deals):
            add(target_sector or rng.pick(SECTOR_IDS), DealSource.SOURCED, focus.size)

    owned_sectors = []
    for b in state.active_businesses():
        if b.sector_id not in owned_sectors:
            owned_sectors.append(b.sector_id)
    if owned_sectors:
        add(rng.pick(owned_sectors), DealSource.INBOUND)

    present = set(owned_sectors) | {d.business.sector_id for d in pipeline + new_deals}
    missing = [s for s in SECTOR_IDS if s not in present]
    for sector_id in rng.shuffle(missing)[:VARIETY_DEALS]:
        add(sector_id, DealSource.INBOUND)

    weights = sector_weights(state)
    target = max(BALANCE.target_deals, BALANCE.min_deals)
    while len(pipeline) + len(new_deals) < target:
        source = DealSource.BROKERED if rng.next() < 0.4 else DealSource.INBOUND
        add(rng.weighted_pick(SECTOR_IDS, weights), source)

    combined = pipeline + new_deals
    if len(combined) > BALANCE.max_deals:
        combined = combined[-BALANCE.max_deals:]
    log.debug("pipeline.generated", round=state.round, new=len(new_deals), total=len(combined))
    return combined


def generate_sourced_deals(state: GameState, streams: RngStreams) -> List[Deal]:
    """Deals from one paid sourcing call (fork key `source-{n}`)

    Two of the three land in the focus sector when one is set.
    """
    n = state.source_calls_this_round
    rng = streams.deals.fork(f"source-{n}")
    deals = []
    for i in range(SOURCED_DEAL_COUNT):
        if state.ma_focus.sector_id and i < 2:
            sector_id = state.ma_focus.sector_id
        else:
            sector_id = rng.weighted_pick(SECTOR_IDS, sector_weights(state))
        deal_id = f"deal-{state.round}-s{n}-{i}"
        deals.append(create_deal(rng.fork(deal_id), deal_id, sector_id, state,
                                 DealSource.SOURCED, state.ma_focus.size))
    return deals


def generate_outreach_deals(state: GameState, streams: RngStreams) -> List[Deal]:
    """Proprietary quality-3+ deals from proactive outreach (`outreach-{n}`)"""
    n = state.outreach_calls_this_round
    rng = streams.deals.fork(f"outreach-{n}")
    deals = []
    for i in range(OUTREACH_DEAL_COUNT):
        sector_id = state.ma_focus.sector_id or rng.weighted_pick(SECTOR_IDS, sector_weights(state))
        deal_id = f"deal-{state.round}-o{n}-{i}"
        deals.append(create_deal(rng.fork(deal_id), deal_id, sector_id, state,
                                 DealSource.PROPRIETARY, state.ma_focus.size, min_quality=3))
    return deals


def roll_contested_snatch(deal: Deal, streams: RngStreams) -> bool:
    """True when a rival outbids the holdco on a contested deal"""
    if deal.heat != DealHeat.CONTESTED:
        return False
    return streams.market.fork(deal.id).next() < BALANCE.contested_snatch_probability


def max_acquisitions_per_round(sourcing_tier: int) -> int:
    return SOURCING_TIERS[sourcing_tier].max_acquisitions


# ==================== Structuring ====================

def structure_rng(deal_id: str) -> SeededRng:
    return SeededRng(string_hash(deal_id)).fork("structure")


def seller_note_term(max_rounds: int) -> int:
    return max(4, math.ceil(max_rounds * 0.25))


def bank_debt_term(max_rounds: int) -> int:
    return max(4, math.ceil(max_rounds * 0.5))


def risk_for_leverage(leverage: float) -> RiskTier:
    if leverage <= 1.5:
        return RiskTier.LOW
    if leverage <= 3.0:
        return RiskTier.MEDIUM
    return RiskTier.HIGH


def bank_debt_available(state: GameState) -> bool:
    return state.credit_tightening_rounds <= 0 and state_restrictions(state).can_take_debt


def generate_deal_structures(deal: Deal, state: GameState) -> List[DealStructure]:
    """Financing options for a deal

    Terms depend only on the deal id, the deal itself and market state, so
    the same deal always offers the same structures. Draws happen in a fixed
    order whatever is available.
    """
    rng = structure_rng(deal.id)
    note_rate = round(rng.next_in_range((0.05, 0.06)), 4)
    earnout_roll = rng.next()
    earnout_target = round(rng.next_in_range((0.07, 0.12)), 4)

    price = deal.effective_price
    ebitda = max(1, deal.business.ebitda)
    bank_rate = state.interest_rate + state_restrictions(state).interest_penalty
    note_term = seller_note_term(state.max_rounds)
    bank_term = bank_debt_term(state.max_rounds)
    can_borrow = bank_debt_available(state)
    quality = deal.business.quality

    def note(amount):
        return DebtInstrument(balance=amount, rate=note_rate, rounds_remaining=note_term)

    def bank(amount):
        return DebtInstrument(balance=amount, rate=round(bank_rate, 4), rounds_remaining=bank_term)

    def leverage(debt):
        return round(debt / ebitda, 1)

    structures = [DealStructure(type=DealStructureType.ALL_CASH, cash_required=price)]

    cash = round(price * 0.40)
    structures.append(DealStructure(
        type=DealStructureType.SELLER_NOTE,
        cash_required=cash,
        seller_note=note(price - cash),
        leverage=leverage(price - cash),
        risk=risk_for_leverage(leverage(price - cash)),
    ))

    if can_borrow:
        cash = round(price * 0.35)
        structures.append(DealStructure(
            type=DealStructureType.BANK_DEBT,
            cash_required=cash,
            bank_debt=bank(price - cash),
            leverage=leverage(price - cash),
            risk=risk_for_leverage(leverage(price - cash)),
        ))

    if quality >= 3 and earnout_roll >= EARNOUT_AVAILABILITY_ROLL:
        cash = round(price * 0.55)
        structures.append(DealStructure(
            type=DealStructureType.EARNOUT,
            cash_required=cash,
            earnout=EarnoutTerms(
                remaining=price - cash,
                target_growth=earnout_target,
                rounds_remaining=BALANCE.earnout_expiration_rounds,
            ),
            risk=RiskTier.MEDIUM,
        ))

    if can_borrow:
        cash = round(price * 0.25)
        note_amount = round(price * 0.35)
        bank_amount = price - cash - note_amount
        structures.append(DealStructure(
            type=DealStructureType.LBO,
            cash_required=cash,
            seller_note=note(note_amount),
            bank_debt=bank(bank_amount),
            leverage=leverage(note_amount + bank_amount),
            risk=risk_for_leverage(leverage(note_amount + bank_amount)),
        ))

    if quality >= 3 and deal.seller_archetype != SellerArchetype.DISTRESSED_SELLER:
        cash = round(price * 0.65)
        note_amount = round(price * 0.10)
        structures.append(DealStructure(
            type=DealStructureType.ROLLOVER_EQUITY,
            cash_required=cash,
            seller_note=note(note_amount),
            rollover_equity_pct=0.25,
            leverage=leverage(note_amount),
            risk=risk_for_leverage(leverage(note_amount)),
        ))

    return structures


def find_structure(deal: Deal, state: GameState, structure_type: DealStructureType) -> Optional[DealStructure]:
    for structure in generate_deal_structures(deal, state):
        if structure.type == structure_type:
            return structure
    return None
