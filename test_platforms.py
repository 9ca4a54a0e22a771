import pytest

from actions import forge_platform, merge_businesses, sell_business
from events import apply_event_effects, build_event
from financials import exit_valuation_for
from game_config import PLATFORM_RECIPES, Difficulty, Duration
from models import Business, BusinessStatus, EventType, GameState, Phase
from platforms import check_platform_eligibility, scaled_threshold
from rng import SeededRng
from sectors import SECTOR_IDS, get_sector


def make_business(business_id="biz-1", sub_type="Digital Agency", ebitda=3000, **overrides):
    fields = dict(
        id=business_id, name=f"Test Co {business_id}", sector_id="agency", sub_type=sub_type,
        revenue=ebitda * 5, ebitda=ebitda, ebitda_margin=0.20, quality=3,
        organic_growth_rate=0.05, margin_drift=0.0,
        acquisition_ebitda=ebitda, acquisition_multiple=4.0, peak_ebitda=ebitda,
    )
    fields.update(overrides)
    return Business(**fields)


def agency_pair(ebitda=3000, second_sub_type="Creative Studio", **overrides):
    fields = dict(seed=1, round=4, cash=5000, phase=Phase.ALLOCATE,
                  businesses=[make_business(ebitda=ebitda),
                              make_business("biz-2", sub_type=second_sub_type, ebitda=ebitda)])
    fields.update(overrides)
    return GameState(**fields)


def forged_pair():
    return forge_platform(agency_pair(), "full_funnel_agency", ["biz-1", "biz-2"])


def test_threshold_scales_with_difficulty_and_duration():
    assert scaled_threshold(5000, Difficulty.EASY, Duration.STANDARD) == 5000
    assert scaled_threshold(5000, Difficulty.EASY, Duration.QUICK) == 3500
    assert scaled_threshold(5000, Difficulty.NORMAL, Duration.QUICK) == 2500


def test_eligibility_needs_distinct_sub_types_and_sector_ebitda():
    eligible = check_platform_eligibility(agency_pair())
    assert [e.recipe.id for e in eligible] == ["full_funnel_agency"]
    assert eligible[0].business_ids == ["biz-1", "biz-2"]
    assert eligible[0].sector_ebitda == 6000

    assert check_platform_eligibility(agency_pair(ebitda=2000)) == []
    assert check_platform_eligibility(agency_pair(second_sub_type="Digital Agency")) == []
    assert check_platform_eligibility(agency_pair(ebitda=2000, difficulty=Difficulty.NORMAL))


def test_forging_lifts_margin_and_growth():
    state = agency_pair()
    forged = forge_platform(state, "full_funnel_agency", ["biz-1", "biz-2"])
    assert len(forged.integrated_platforms) == 1
    platform = forged.integrated_platforms[0]
    assert platform.constituent_ids == ["biz-1", "biz-2"]
    assert forged.cash == 5000 - 1200
    for business in forged.businesses:
        assert business.integrated_platform_id == platform.id
        assert business.ebitda_margin == pytest.approx(0.24)
        assert business.ebitda == 3600
        assert business.organic_growth_rate == 0.08
    assert state.integrated_platforms == []
    assert state.businesses[0].ebitda == 3000


def test_forge_rejections_are_no_ops():
    state = agency_pair()
    unknown = forge_platform(state, "vertical_software_suite", ["biz-1", "biz-2"])
    assert unknown.integrated_platforms == []
    assert unknown.cash == state.cash

    again = forge_platform(forged_pair(), "full_funnel_agency", ["biz-1", "biz-2"])
    assert len(again.integrated_platforms) == 1
    assert "cannot be forged" in again.reason

    broke = forge_platform(agency_pair(cash=100), "full_funnel_agency", ["biz-1", "biz-2"])
    assert broke.integrated_platforms == []


def test_platform_members_exit_at_expanded_multiple():
    plain = agency_pair()
    forged = forged_pair()
    member = forged.find_business("biz-1")
    valuation = exit_valuation_for(forged, member)
    unforged = exit_valuation_for(plain, member)
    assert valuation.integration_premium == 1.5
    assert unforged.integration_premium == 0.0
    assert valuation.total_multiple == pytest.approx(unforged.total_multiple + 1.5)


def test_platform_softens_recession():
    forged = forged_pair()
    outsider = make_business("biz-3", sub_type="PR Firm", ebitda=1000)
    member = make_business("biz-4", ebitda=1000, integrated_platform_id=forged.integrated_platforms[0].id)
    state = GameState(seed=1, round=5, businesses=[outsider, member],
                      integrated_platforms=forged.integrated_platforms)
    event = build_event(EventType.RECESSION, state, SeededRng(1))
    hit = apply_event_effects(state, event, SeededRng(2))
    assert hit.find_business("biz-3").ebitda == 790
    assert hit.find_business("biz-4").ebitda == 832


def test_selling_a_member_dissolves_the_platform():
    sold = sell_business(forged_pair(), "biz-1")
    assert sold.find_business("biz-1").status == BusinessStatus.SOLD
    assert sold.integrated_platforms == []
    assert sold.find_business("biz-2").integrated_platform_id is None


def test_merging_members_dissolves_the_platform():
    merged = merge_businesses(forged_pair(), "biz-1", "biz-2")
    assert merged.find_business("biz-2").status == BusinessStatus.MERGED
    assert merged.integrated_platforms == []
    assert merged.find_business("biz-1").integrated_platform_id is None


def test_recipes_reference_known_sectors():
    for recipe in PLATFORM_RECIPES.values():
        for sector_id in recipe.sector_ids:
            assert sector_id in SECTOR_IDS
        known = {s for sector_id in recipe.sector_ids for s in get_sector(sector_id).sub_types}
        assert set(recipe.required_sub_types) <= known
