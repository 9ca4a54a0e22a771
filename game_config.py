"""
Game configuration for the holdco simulation
"""
import os
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv


class Difficulty(Enum):
    EASY = "easy"
    NORMAL = "normal"


class Duration(Enum):
    STANDARD = "standard"
    QUICK = "quick"


@dataclass(frozen=True)
class DifficultyConfig:
    """Starting position for a new holdco"""
    label: str
    initial_cash: int            # $k
    founder_shares: int
    total_shares: int
    starting_debt: int           # holdco bank debt, $k
    starting_ebitda: int         # first business EBITDA, $k
    starting_multiple_cap: Optional[float] = None
    starting_quality: int = 3


DIFFICULTY_CONFIG: Dict[Difficulty, DifficultyConfig] = {
    Difficulty.EASY: DifficultyConfig(
        label="Easy - Institutional Fund",
        initial_cash=20_000,     # $20M from LPs, 80% ownership
        founder_shares=800,
        total_shares=1000,
        starting_debt=0,
        starting_ebitda=1000,
    ),
    Difficulty.NORMAL: DifficultyConfig(
        label="Hard - Self-Funded Search",
        initial_cash=5_000,      # $2M equity + $3M bank debt
        founder_shares=1000,
        total_shares=1000,
        starting_debt=3_000,
        starting_ebitda=800,
        starting_multiple_cap=4.0,
    ),
}

DURATION_CONFIG: Dict[Duration, int] = {
    Duration.STANDARD: 20,
    Duration.QUICK: 10,
}


@dataclass
class BalanceConfig:
    """Economic tuning knobs (money in $k)"""
    # Tax
    tax_rate: float = 0.30

    # Organic growth
    max_organic_growth_rate: float = 0.20
    min_organic_growth_rate: float = -0.10
    ebitda_floor_pct: float = 0.30   # of acquisition EBITDA
    min_margin: float = 0.03
    max_margin: float = 0.80
    inflation_growth_drag: float = 0.03

    # Exit valuation
    min_exit_multiple: float = 2.0
    max_hold_premium: float = 0.5
    improvement_premium: float = 0.15
    market_modifier: float = 0.5
    restructuring_exit_penalty: float = 0.5

    # Holdco capital
    base_interest_rate: float = 0.07
    min_interest_rate: float = 0.03
    max_interest_rate: float = 0.15
    holdco_loan_term: int = 10
    min_founder_ownership: float = 0.51
    emergency_equity_discount: float = 0.50
    max_equity_raises_per_round: int = 1

    # Deals
    max_deals: int = 8
    min_deals: int = 4
    target_deals: int = 5
    deal_freshness_rounds: int = 2
    contested_snatch_probability: float = 0.40
    earnout_expiration_rounds: int = 4

    # Distress (net debt / EBITDA)
    elevated_leverage: float = 2.5
    stressed_leverage: float = 3.5
    breach_leverage: float = 4.5
    stressed_rate_penalty: float = 0.01
    breach_rate_penalty: float = 0.02
    covenant_breach_rounds_threshold: int = 2

    # Portfolio operations
    distressed_sale_discount: float = 0.70
    wind_down_cost_pct: float = 0.10   # of EBITDA, plus debt payoff
    merge_cost_pct: float = 0.05       # of combined EBITDA
    integration_rounds: int = 2

    # Turnarounds
    turnaround_exit_premium: float = 0.25
    turnaround_premium_min_tiers: int = 2


BALANCE = BalanceConfig()


# ==================== Shared Services ====================

class SharedServiceType(Enum):
    FINANCE_REPORTING = "finance_reporting"
    RECRUITING_HR = "recruiting_hr"
    PROCUREMENT = "procurement"
    MARKETING_BRAND = "marketing_brand"
    TECHNOLOGY_SYSTEMS = "technology_systems"


@dataclass(frozen=True)
class SharedServiceDefinition:
    name: str
    unlock_cost: int
    annual_cost: int
    effect: str
    cash_conversion_bonus: float = 0.0
    talent_retention_bonus: float = 0.0
    talent_gain_bonus: float = 0.0
    capex_reduction: float = 0.0
    growth_bonus: float = 0.0
    reinvestment_bonus: float = 0.0


SHARED_SERVICES: Dict[SharedServiceType, SharedServiceDefinition] = {
    SharedServiceType.FINANCE_REPORTING: SharedServiceDefinition(
        name="Finance & Reporting", unlock_cost=560, annual_cost=250,
        effect="+5% cash conversion", cash_conversion_bonus=0.05,
    ),
    SharedServiceType.RECRUITING_HR: SharedServiceDefinition(
        name="Recruiting & HR", unlock_cost=750, annual_cost=320,
        effect="Fewer talent losses, more talent gains",
        talent_retention_bonus=0.5, talent_gain_bonus=0.3,
    ),
    SharedServiceType.PROCUREMENT: SharedServiceDefinition(
        name="Procurement", unlock_cost=600, annual_cost=190,
        effect="-15% capex", capex_reduction=0.15,
    ),
    SharedServiceType.MARKETING_BRAND: SharedServiceDefinition(
        name="Marketing & Brand", unlock_cost=675, annual_cost=250,
        effect="+1.5% organic growth", growth_bonus=0.015,
    ),
    SharedServiceType.TECHNOLOGY_SYSTEMS: SharedServiceDefinition(
        name="Technology & Systems", unlock_cost=900, annual_cost=380,
        effect="+20% improvement efficiency", reinvestment_bonus=0.20,
    ),
}

MIN_OPCOS_FOR_SHARED_SERVICES = 3
MAX_ACTIVE_SHARED_SERVICES = 3


# ==================== M&A Sourcing ====================

@dataclass(frozen=True)
class SourcingTierConfig:
    tier: int
    upgrade_cost: int
    annual_cost: int
    max_acquisitions: int
    extra_focus_deals: int
    min_opcos: int = 0


SOURCING_TIERS: Dict[int, SourcingTierConfig] = {
    0: SourcingTierConfig(tier=0, upgrade_cost=0, annual_cost=0, max_acquisitions=2, extra_focus_deals=0),
    1: SourcingTierConfig(tier=1, upgrade_cost=800, annual_cost=350, max_acquisitions=3, extra_focus_deals=1, min_opcos=1),
    2: SourcingTierConfig(tier=2, upgrade_cost=1200, annual_cost=500, max_acquisitions=3, extra_focus_deals=2, min_opcos=2),
    3: SourcingTierConfig(tier=3, upgrade_cost=1600, annual_cost=700, max_acquisitions=4, extra_focus_deals=2, min_opcos=3),
}

MAX_SOURCING_TIER = 3
SOURCE_DEALS_COST = 500       # $500k per "hire a broker" call
PROACTIVE_OUTREACH_COST = 400
OUTREACH_MIN_TIER = 1
SOURCED_DEAL_COUNT = 3
OUTREACH_DEAL_COUNT = 2


# ==================== Operational Improvements ====================

class ImprovementType(Enum):
    OPERATING_PLAYBOOK = "operating_playbook"
    PRICING_MODEL = "pricing_model"
    SERVICE_EXPANSION = "service_expansion"
    FIX_UNDERPERFORMANCE = "fix_underperformance"


@dataclass(frozen=True)
class ImprovementDefinition:
    name: str
    cost_pct: float                    # of EBITDA
    min_cost: int
    margin_boost_range: Tuple[float, float]
    growth_boost: float = 0.0
    max_quality: int = 5               # only applies at or below this quality


IMPROVEMENTS: Dict[ImprovementType, ImprovementDefinition] = {
    ImprovementType.OPERATING_PLAYBOOK: ImprovementDefinition(
        name="Install operating playbook", cost_pct=0.15, min_cost=100,
        margin_boost_range=(0.01, 0.03),
    ),
    ImprovementType.PRICING_MODEL: ImprovementDefinition(
        name="Overhaul pricing model", cost_pct=0.10, min_cost=75,
        margin_boost_range=(0.01, 0.02), growth_boost=0.01,
    ),
    ImprovementType.SERVICE_EXPANSION: ImprovementDefinition(
        name="Expand service lines", cost_pct=0.20, min_cost=150,
        margin_boost_range=(-0.01, 0.01), growth_boost=0.02,
    ),
    ImprovementType.FIX_UNDERPERFORMANCE: ImprovementDefinition(
        name="Fix underperformance", cost_pct=0.12, min_cost=100,
        margin_boost_range=(0.02, 0.04), max_quality=2,
    ),
}


# ==================== Turnarounds ====================

@dataclass(frozen=True)
class TurnaroundTierConfig:
    name: str
    unlock_cost: int
    annual_cost: int
    required_opcos: int


TURNAROUND_TIERS: Dict[int, TurnaroundTierConfig] = {
    1: TurnaroundTierConfig("Portfolio Operations", unlock_cost=600, annual_cost=250, required_opcos=2),
    2: TurnaroundTierConfig("Transformation Office", unlock_cost=1000, annual_cost=450, required_opcos=3),
    3: TurnaroundTierConfig("Interim Management", unlock_cost=1400, annual_cost=700, required_opcos=4),
}
MAX_TURNAROUND_TIER = 3


@dataclass(frozen=True)
class TurnaroundProgram:
    """A playbook lifting quality from `source_quality` toward `target_quality`

    success_rate + partial_rate + failure_rate == 1.
    """
    id: str
    tier: int
    source_quality: int
    target_quality: int
    duration_standard: int
    duration_quick: int
    success_rate: float
    partial_rate: float
    failure_rate: float
    ebitda_boost_on_success: float
    ebitda_boost_on_partial: float
    ebitda_damage_on_failure: float
    upfront_cost_pct: float            # of EBITDA
    annual_cost: int


TURNAROUND_PROGRAMS: Tuple[TurnaroundProgram, ...] = (
    TurnaroundProgram("t1_plan_a", 1, 1, 2, 4, 2, 0.65, 0.30, 0.05, 0.07, 0.03, 0.04, 0.10, 50),
    TurnaroundProgram("t1_plan_b", 1, 2, 3, 4, 2, 0.60, 0.35, 0.05, 0.05, 0.02, 0.03, 0.12, 75),
    TurnaroundProgram("t2_plan_a", 2, 1, 3, 5, 3, 0.68, 0.27, 0.05, 0.11, 0.05, 0.05, 0.14, 100),
    TurnaroundProgram("t2_plan_b", 2, 2, 4, 5, 3, 0.65, 0.30, 0.05, 0.09, 0.04, 0.04, 0.16, 125),
    TurnaroundProgram("t3_plan_a", 3, 1, 4, 6, 3, 0.73, 0.22, 0.05, 0.15, 0.07, 0.06, 0.18, 150),
    TurnaroundProgram("t3_plan_b", 3, 2, 5, 6, 3, 0.70, 0.25, 0.05, 0.13, 0.06, 0.06, 0.20, 200),
    # faster and dearer than plan A, with worse odds
    TurnaroundProgram("t3_quick", 3, 1, 4, 3, 2, 0.63, 0.32, 0.05, 0.15, 0.07, 0.06, 0.27, 150),
)

# highest quality a business in the sector can reach
SECTOR_QUALITY_CEILINGS: Dict[str, int] = {"saas": 4, "agency": 3, "restaurant": 3, "industrial": 4}
DEFAULT_QUALITY_CEILING = 5

TURNAROUND_FATIGUE_THRESHOLD = 3      # concurrent programs
TURNAROUND_FATIGUE_PENALTY = 0.10     # moved from success to partial


# ==================== Integrated Platforms ====================

@dataclass(frozen=True)
class PlatformRecipe:
    """Complementary sub-types that can be forged into one platform"""
    id: str
    name: str
    sector_ids: Tuple[str, ...]        # more than one for a cross-sector platform
    required_sub_types: Tuple[str, ...]
    min_sub_types: int
    base_ebitda_threshold: int         # sector EBITDA needed, easy/standard
    margin_boost: float
    growth_boost: float
    multiple_expansion: float
    recession_modifier: float          # scales recession EBITDA hits
    integration_cost_pct: float        # of combined EBITDA


PLATFORM_RECIPES: Dict[str, PlatformRecipe] = {r.id: r for r in (
    PlatformRecipe(
        id="full_funnel_agency", name="Full-Funnel Marketing Group", sector_ids=("agency",),
        required_sub_types=("Digital Agency", "Performance Marketing", "Creative Studio"),
        min_sub_types=2, base_ebitda_threshold=5000, margin_boost=0.04, growth_boost=0.03,
        multiple_expansion=1.5, recession_modifier=0.80, integration_cost_pct=0.20,
    ),
    PlatformRecipe(
        id="vertical_software_suite", name="Vertical Software Suite", sector_ids=("saas",),
        required_sub_types=("Practice Management", "Field Service Software", "Compliance Software"),
        min_sub_types=2, base_ebitda_threshold=6000, margin_boost=0.05, growth_boost=0.04,
        multiple_expansion=2.0, recession_modifier=0.80, integration_cost_pct=0.25,
    ),
    PlatformRecipe(
        id="home_services_network", name="Home Services Network", sector_ids=("homeServices",),
        required_sub_types=("HVAC", "Plumbing", "Pest Control", "Roofing"),
        min_sub_types=3, base_ebitda_threshold=6000, margin_boost=0.03, growth_boost=0.02,
        multiple_expansion=1.5, recession_modifier=0.85, integration_cost_pct=0.15,
    ),
    PlatformRecipe(
        id="outpatient_care_group", name="Outpatient Care Group", sector_ids=("healthcare",),
        required_sub_types=("Dental Practice", "Physical Therapy", "Home Health"),
        min_sub_types=2, base_ebitda_threshold=7000, margin_boost=0.03, growth_boost=0.03,
        multiple_expansion=2.0, recession_modifier=0.70, integration_cost_pct=0.20,
    ),
    PlatformRecipe(
        id="industrial_supply_chain", name="Industrial Supply Chain",
        sector_ids=("industrial", "distribution"),
        required_sub_types=("Precision Machining", "Industrial Distribution", "MRO Supplies",
                            "Building Products"),
        min_sub_types=2, base_ebitda_threshold=8000, margin_boost=0.04, growth_boost=0.02,
        multiple_expansion=1.5, recession_modifier=0.85, integration_cost_pct=0.20,
    ),
    PlatformRecipe(
        id="workforce_solutions", name="Workforce Solutions", sector_ids=("insurance", "b2bServices"),
        required_sub_types=("Employee Benefits", "P&C Agency", "Staffing", "IT Managed Services"),
        min_sub_types=2, base_ebitda_threshold=8000, margin_boost=0.05, growth_boost=0.03,
        multiple_expansion=2.0, recession_modifier=0.75, integration_cost_pct=0.25,
    ),
)}

# scales recipe EBITDA thresholds down for harder or shorter games
INTEGRATION_THRESHOLD_MULTIPLIER: Dict[Tuple[Difficulty, Duration], float] = {
    (Difficulty.EASY, Duration.STANDARD): 1.0,
    (Difficulty.EASY, Duration.QUICK): 0.7,
    (Difficulty.NORMAL, Duration.STANDARD): 0.7,
    (Difficulty.NORMAL, Duration.QUICK): 0.5,
}


# ==================== Runtime Settings ====================

@dataclass
class RuntimeSettings:
    """Process-level settings read from the environment / .env"""
    log_level: str = "INFO"
    log_format: str = "json"
    gemini_api_key: Optional[str] = None
    narrative_model: str = "gemini-2.5-flash"
    narrative_enabled: bool = True

    @staticmethod
    def from_env(dotenv_path: Optional[str] = None) -> "RuntimeSettings":
        load_dotenv(dotenv_path=dotenv_path, override=False)
        enabled = os.getenv("HOLDCO_NARRATIVE_ENABLED", "1").strip().lower()
        return RuntimeSettings(
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("LOG_FORMAT", "json").lower(),
            gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
            narrative_model=os.getenv("HOLDCO_NARRATIVE_MODEL", "gemini-2.5-flash"),
            narrative_enabled=enabled not in ("0", "false", "no", "off"),
        )
