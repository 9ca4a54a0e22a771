"""
Holdco Engine - Integrated Platforms
====================================
Complementary businesses forged under a platform recipe earn a one-time
margin uplift and a permanent growth boost, trade at a higher exit multiple
and take smaller recession hits. A platform dissolves once its remaining
members no longer cover the recipe.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional

import structlog

from game_config import (
    INTEGRATION_THRESHOLD_MULTIPLIER,
    PLATFORM_RECIPES,
    Difficulty,
    Duration,
    PlatformRecipe,
)
from models import Business, GameState, IntegratedPlatform

log = structlog.get_logger(__name__)


@dataclass
class PlatformEligibility:
    recipe: PlatformRecipe
    business_ids: List[str]      # owned businesses matching the recipe
    sector_ebitda: int
    threshold: int


def integration_threshold_multiplier(difficulty: Difficulty, duration: Duration) -> float:
    return INTEGRATION_THRESHOLD_MULTIPLIER[(difficulty, duration)]


def scaled_threshold(base_threshold: int, difficulty: Difficulty, duration: Duration) -> int:
    return round(base_threshold * integration_threshold_multiplier(difficulty, duration))


def matching_businesses(recipe: PlatformRecipe, businesses: Iterable[Business]) -> List[Business]:
    return [b for b in businesses
            if b.sector_id in recipe.sector_ids and b.sub_type in recipe.required_sub_types]


def covers_recipe(recipe: PlatformRecipe, businesses: List[Business]) -> bool:
    """Enough distinct sub-types, and every recipe sector represented"""
    if len({b.sub_type for b in businesses}) < recipe.min_sub_types:
        return False
    sectors = {b.sector_id for b in businesses}
    return all(s in sectors for s in recipe.sector_ids)


def check_platform_eligibility(state: GameState) -> List[PlatformEligibility]:
    """Recipes the holdco could forge right now

    The EBITDA test counts every active business in the recipe's sectors,
    not only the matching ones.
    """
    forged = {p.recipe_id for p in state.integrated_platforms}
    active = state.active_businesses()
    available = [b for b in active if b.integrated_platform_id is None]

    eligible = []
    for recipe in PLATFORM_RECIPES.values():
        if recipe.id in forged:
            continue
        matching = matching_businesses(recipe, available)
        if not covers_recipe(recipe, matching):
            continue
        sector_ebitda = sum(b.ebitda for b in active if b.sector_id in recipe.sector_ids)
        threshold = scaled_threshold(recipe.base_ebitda_threshold, state.difficulty, state.duration)
        if sector_ebitda < threshold:
            continue
        eligible.append(PlatformEligibility(recipe, [b.id for b in matching], sector_ebitda, threshold))
    return eligible


def integration_cost(recipe: PlatformRecipe, businesses: Iterable[Business]) -> int:
    combined = sum(b.ebitda for b in businesses)
    return round(max(0, combined) * recipe.integration_cost_pct)


def forge_integrated_platform(recipe: PlatformRecipe, business_ids: List[str],
                              round_number: int) -> IntegratedPlatform:
    return IntegratedPlatform(
        id=f"platform-{recipe.id}-r{round_number}",
        recipe_id=recipe.id,
        name=recipe.name,
        sector_ids=list(recipe.sector_ids),
        constituent_ids=list(business_ids),
        forged_round=round_number,
        multiple_expansion=recipe.multiple_expansion,
        recession_modifier=recipe.recession_modifier,
    )


def find_platform(business: Business, platforms: List[IntegratedPlatform]) -> Optional[IntegratedPlatform]:
    if business.integrated_platform_id is None:
        return None
    for platform in platforms:
        if platform.id == business.integrated_platform_id:
            return platform
    return None


def platform_multiple_expansion(business: Business, platforms: List[IntegratedPlatform]) -> float:
    platform = find_platform(business, platforms)
    return platform.multiple_expansion if platform else 0.0


def platform_recession_modifier(business: Business, platforms: List[IntegratedPlatform]) -> float:
    platform = find_platform(business, platforms)
    return platform.recession_modifier if platform else 1.0


def dissolve_broken_platforms(state: GameState) -> None:
    """Drop platforms whose remaining members no longer cover their recipe"""
    kept = []
    for platform in state.integrated_platforms:
        members = []
        for business_id in platform.constituent_ids:
            b = state.find_business(business_id)
            if b is not None and b.is_active and b.integrated_platform_id == platform.id:
                members.append(b)
        if covers_recipe(PLATFORM_RECIPES[platform.recipe_id], members):
            platform.constituent_ids = [b.id for b in members]
            kept.append(platform)
            continue
        for b in members:
            b.integrated_platform_id = None
        log.info("platform.dissolved", round=state.round, platform_id=platform.id,
                 remaining=len(members))
    state.integrated_platforms = kept
