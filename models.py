"""
Holdco Engine - Data Model
==========================
Enums and dataclasses shared by every part of the simulation. Pure data:
the only behaviour here is read-only aggregation over the state.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict, List, Optional

from game_config import Difficulty, Duration, ImprovementType, SharedServiceType


# ==================== Enums ====================

class Phase(Enum):
    COLLECT = "collect"
    EVENT = "event"
    ALLOCATE = "allocate"
    RESTRUCTURE = "restructure"


class BusinessStatus(Enum):
    ACTIVE = "active"
    INTEGRATED = "integrated"   # folded into a platform
    SOLD = "sold"
    MERGED = "merged"
    WOUND_DOWN = "wound_down"


class DealHeat(IntEnum):
    COLD = 0
    WARM = 1
    HOT = 2
    CONTESTED = 3


class DealSource(Enum):
    INBOUND = "inbound"
    BROKERED = "brokered"
    SOURCED = "sourced"
    PROPRIETARY = "proprietary"

    @property
    def is_sourced(self) -> bool:
        return self in (DealSource.SOURCED, DealSource.PROPRIETARY)


class SellerArchetype(Enum):
    RETIRING_FOUNDER = "retiring_founder"
    BURNT_OUT_OPERATOR = "burnt_out_operator"
    ACCIDENTAL_HOLDCO = "accidental_holdco"
    DISTRESSED_SELLER = "distressed_seller"
    MBO_CANDIDATE = "mbo_candidate"
    FRANCHISE_BREAKAWAY = "franchise_breakaway"


class DealStructureType(Enum):
    ALL_CASH = "all_cash"
    SELLER_NOTE = "seller_note"
    BANK_DEBT = "bank_debt"
    EARNOUT = "earnout"
    LBO = "lbo"
    ROLLOVER_EQUITY = "rollover_equity"


class RiskTier(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DistressLevel(Enum):
    COMFORTABLE = "comfortable"
    ELEVATED = "elevated"
    STRESSED = "stressed"
    BREACH = "breach"


class EventCategory(Enum):
    GLOBAL = "global"
    PORTFOLIO = "portfolio"
    SECTOR = "sector"


class EventType(Enum):
    # Global macro
    BULL_MARKET = "global_bull_market"
    RECESSION = "global_recession"
    INTEREST_HIKE = "global_interest_hike"
    INTEREST_CUT = "global_interest_cut"
    INFLATION = "global_inflation"
    CREDIT_TIGHTENING = "global_credit_tightening"
    QUIET = "global_quiet"
    # Portfolio, immediate
    STAR_JOINS = "portfolio_star_joins"
    TALENT_LEAVES = "portfolio_talent_leaves"
    CLIENT_SIGNS = "portfolio_client_signs"
    CLIENT_CHURN = "portfolio_client_churn"
    BREAKTHROUGH = "portfolio_breakthrough"
    COMPLIANCE = "portfolio_compliance"
    WORKING_CAPITAL_CRUNCH = "portfolio_working_capital_crunch"
    # Portfolio, choice
    UNSOLICITED_OFFER = "unsolicited_offer"
    EQUITY_DEMAND = "portfolio_equity_demand"
    SELLER_NOTE_RENEGO = "portfolio_seller_note_renego"
    KEY_MAN_RISK = "portfolio_key_man_risk"
    EARNOUT_DISPUTE = "portfolio_earnout_dispute"
    SUPPLIER_SHIFT = "portfolio_supplier_shift"
    # Sector
    SECTOR_TAILWIND = "sector_tailwind"
    SECTOR_HEADWIND = "sector_headwind"

    @property
    def category(self) -> EventCategory:
        if self.value.startswith("global_"):
            return EventCategory.GLOBAL
        if self.value.startswith("sector_"):
            return EventCategory.SECTOR
        return EventCategory.PORTFOLIO


class ChoiceAction(Enum):
    ACCEPT_OFFER = "accept_offer"
    DECLINE_OFFER = "decline_offer"
    GRANT_EQUITY = "grant_equity"
    REFUSE_EQUITY = "refuse_equity"
    PAY_NOTE_EARLY = "pay_note_early"
    KEEP_NOTE_TERMS = "keep_note_terms"
    GOLDEN_HANDCUFFS = "golden_handcuffs"
    SUCCESSION_PLAN = "succession_plan"
    ACCEPT_KEY_MAN_LOSS = "accept_key_man_loss"
    SETTLE_EARNOUT = "settle_earnout"
    FIGHT_EARNOUT = "fight_earnout"
    RENEGOTIATE_EARNOUT = "renegotiate_earnout"
    ABSORB_SUPPLIER_COST = "absorb_supplier_cost"
    SWITCH_SUPPLIER = "switch_supplier"
    VERTICAL_INTEGRATION = "vertical_integration"


class TurnaroundStatus(Enum):
    ACTIVE = "active"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"
    ABANDONED = "abandoned"   # business left the portfolio first


# ==================== Instruments ====================

@dataclass
class DebtInstrument:
    """Amortizing loan: straight-line principal over the remaining term"""
    balance: int = 0
    rate: float = 0.0
    rounds_remaining: int = 0

    @property
    def active(self) -> bool:
        return self.balance > 0

    def scheduled_principal(self) -> int:
        if self.balance <= 0:
            return 0
        if self.rounds_remaining <= 1:
            return self.balance
        return round(self.balance / self.rounds_remaining)

    def scheduled_interest(self, rate_penalty: float = 0.0) -> int:
        if self.balance <= 0:
            return 0
        return round(self.balance * (self.rate + rate_penalty))


@dataclass
class EarnoutTerms:
    """Contingent consideration paid if EBITDA growth hits target in time"""
    remaining: int = 0
    target_growth: float = 0.0
    rounds_remaining: int = 0
    baseline_ebitda: int = 0
    measured_business_id: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.remaining > 0


@dataclass
class DueDiligence:
    revenue_concentration: str = "medium"   # low / medium / high
    operator_quality: str = "moderate"      # strong / moderate / weak
    customer_retention: int = 85            # percent


# ==================== Entities ====================

@dataclass
class Business:
    """An operating company, owned or on offer"""
    id: str
    name: str
    sector_id: str
    sub_type: str
    revenue: int
    ebitda: int
    ebitda_margin: float
    quality: int                       # 1..5
    organic_growth_rate: float
    margin_drift: float

    # Acquisition snapshot
    acquisition_ebitda: int = 0
    acquisition_revenue: int = 0
    acquisition_margin: float = 0.0
    acquisition_price: int = 0
    acquisition_multiple: float = 0.0
    acquisition_round: int = 0
    peak_ebitda: int = 0

    due_diligence: DueDiligence = field(default_factory=DueDiligence)
    seller_archetype: Optional[SellerArchetype] = None

    # Acquisition financing
    seller_note: DebtInstrument = field(default_factory=DebtInstrument)
    bank_debt: DebtInstrument = field(default_factory=DebtInstrument)
    earnout: EarnoutTerms = field(default_factory=EarnoutTerms)
    rollover_equity_pct: float = 0.0

    # Lifecycle
    status: BusinessStatus = BusinessStatus.ACTIVE
    is_platform: bool = False
    platform_scale: int = 0
    bolt_on_ids: List[str] = field(default_factory=list)
    parent_platform_id: Optional[str] = None
    integration_rounds_remaining: int = 0
    improvements: List[ImprovementType] = field(default_factory=list)
    quality_improved_tiers: int = 0      # quality gained through turnarounds
    integrated_platform_id: Optional[str] = None
    exit_price: int = 0
    exit_round: int = 0

    @property
    def is_active(self) -> bool:
        return self.status == BusinessStatus.ACTIVE

    @property
    def total_debt(self) -> int:
        return self.seller_note.balance + self.bank_debt.balance

    @property
    def carries_debt(self) -> bool:
        return self.status in (BusinessStatus.ACTIVE, BusinessStatus.INTEGRATED)


@dataclass
class DealStructure:
    """One financing shape for a deal"""
    type: DealStructureType
    cash_required: int
    seller_note: Optional[DebtInstrument] = None
    bank_debt: Optional[DebtInstrument] = None
    earnout: Optional[EarnoutTerms] = None
    rollover_equity_pct: float = 0.0
    leverage: float = 0.0
    risk: RiskTier = RiskTier.LOW

    @property
    def total_debt(self) -> int:
        total = 0
        if self.seller_note:
            total += self.seller_note.balance
        if self.bank_debt:
            total += self.bank_debt.balance
        return total


@dataclass
class Deal:
    """An acquisition opportunity in the pipeline"""
    id: str
    business: Business
    asking_price: int
    effective_price: int
    heat: DealHeat
    source: DealSource
    seller_archetype: SellerArchetype
    round_appeared: int
    freshness: int


@dataclass
class Turnaround:
    """One run of a turnaround program at one business"""
    id: str
    business_id: str
    program_id: str
    start_round: int
    end_round: int                     # resolves at the end of this round
    status: TurnaroundStatus = TurnaroundStatus.ACTIVE


@dataclass
class IntegratedPlatform:
    """Businesses forged together under a platform recipe"""
    id: str
    recipe_id: str
    name: str
    sector_ids: List[str]
    constituent_ids: List[str]
    forged_round: int
    multiple_expansion: float
    recession_modifier: float


# ==================== Events ====================

@dataclass
class EventChoice:
    action: ChoiceAction
    label: str
    cost: int = 0
    success_probability: float = 1.0
    description: str = ""


@dataclass
class EventImpact:
    business_id: Optional[str]
    metric: str
    before: float
    after: float


@dataclass
class GameEvent:
    id: str
    type: EventType
    title: str
    description: str
    round: int
    business_id: Optional[str] = None
    sector_id: Optional[str] = None
    offer_amount: int = 0
    impacts: List[EventImpact] = field(default_factory=list)
    choices: List[EventChoice] = field(default_factory=list)
    chosen: Optional[ChoiceAction] = None
    outcome: str = ""
    expired: bool = False

    @property
    def requires_choice(self) -> bool:
        return bool(self.choices)

    @property
    def pending(self) -> bool:
        return self.requires_choice and self.chosen is None and not self.expired


# ==================== Reports ====================

@dataclass
class PortfolioTax:
    gross_ebitda: int = 0
    loss_offset: int = 0
    holdco_interest: int = 0
    opco_interest: int = 0
    shared_services_cost: int = 0
    taxable_income: int = 0
    tax: int = 0
    loss_shield: int = 0
    interest_shield: int = 0
    shared_services_shield: int = 0
    effective_rate: float = 0.0


@dataclass
class WaterfallReport:
    """Line-by-line record of one collection phase"""
    round: int
    cash_start: int = 0
    portfolio_fcf: int = 0
    shared_services_cost: int = 0
    sourcing_cost: int = 0
    turnaround_cost: int = 0
    pre_tax_fcf: int = 0
    tax: PortfolioTax = field(default_factory=PortfolioTax)
    operating_deficit: int = 0
    holdco_interest_paid: int = 0
    holdco_principal_paid: int = 0
    opco_interest_paid: int = 0
    opco_principal_paid: int = 0
    earnouts_paid: int = 0
    earnouts_forfeited: int = 0
    shortfalls: Dict[str, int] = field(default_factory=dict)
    cash_end: int = 0
    insolvent: bool = False

    @property
    def total_shortfall(self) -> int:
        return sum(self.shortfalls.values())


@dataclass
class ExitValuation:
    business_id: str
    base_multiple: float
    growth_premium: float
    quality_premium: float
    platform_premium: float
    hold_premium: float
    improvements_premium: float
    market_modifier: float
    size_tier_premium: float
    de_risking_premium: float
    restructuring_penalty: float
    total_multiple: float
    exit_price: int
    net_proceeds: int
    integration_premium: float = 0.0
    turnaround_premium: float = 0.0


@dataclass
class Metrics:
    """Derived snapshot, recomputed from state"""
    round: int = 0
    cash: int = 0
    total_debt: int = 0
    net_debt: int = 0
    total_revenue: int = 0
    total_ebitda: int = 0
    avg_margin: float = 0.0
    portfolio_fcf: int = 0
    net_fcf: int = 0
    fcf_per_share: float = 0.0
    interest_expense: int = 0
    tax: int = 0
    cash_conversion: float = 0.0
    portfolio_value: int = 0
    intrinsic_value_per_share: float = 0.0
    roic: float = 0.0
    roiic: float = 0.0
    moic: float = 0.0
    net_debt_to_ebitda: float = 0.0
    distress_level: DistressLevel = DistressLevel.COMFORTABLE
    active_businesses: int = 0
    founder_ownership: float = 1.0


@dataclass
class HistoricalMetrics:
    round: int
    total_ebitda: int
    nopat: int
    invested_capital: int
    fcf_per_share: float
    net_debt_to_ebitda: float


@dataclass
class RoundHistoryEntry:
    round: int
    event_type: Optional[str]
    event_title: str
    actions: List[str]
    metrics: Metrics
    waterfall: Optional[WaterfallReport] = None
    narrative: Optional[str] = None


@dataclass
class MAFocus:
    sector_id: Optional[str] = None
    size: Optional[str] = None          # small / medium / large


# ==================== Game State ====================

@dataclass
class GameState:
    """Complete game state (pure data, no UI)"""
    seed: int
    difficulty: Difficulty = Difficulty.EASY
    duration: Duration = Duration.STANDARD

    # Time
    round: int = 1
    max_rounds: int = 20
    phase: Phase = Phase.COLLECT

    # Holdco balance sheet ($k)
    cash: int = 0
    holdco_loan: DebtInstrument = field(default_factory=DebtInstrument)
    interest_rate: float = 0.07

    # Cap table
    shares_outstanding: int = 1000
    founder_shares: int = 1000
    initial_raise: int = 0
    initial_ownership: float = 1.0

    # Capital tracking
    total_invested_capital: int = 0     # acquisitions + improvements
    total_distributions: int = 0
    total_buybacks: int = 0
    total_equity_raised: int = 0
    total_interest_paid: int = 0
    total_tax_paid: int = 0
    equity_cashflows: list = field(default_factory=list)  # [{'round': 0, 'amount': -x}, ...]

    # Portfolio
    businesses: List[Business] = field(default_factory=list)
    deal_pipeline: List[Deal] = field(default_factory=list)

    # Capabilities
    ma_focus: MAFocus = field(default_factory=MAFocus)
    ma_sourcing_tier: int = 0
    shared_services: Dict[SharedServiceType, bool] = field(default_factory=dict)  # unlocked -> active
    turnaround_tier: int = 0
    turnarounds: List[Turnaround] = field(default_factory=list)
    integrated_platforms: List[IntegratedPlatform] = field(default_factory=list)

    # Events and market
    current_event: Optional[GameEvent] = None
    event_history: List[GameEvent] = field(default_factory=list)
    credit_tightening_rounds: int = 0
    inflation_rounds: int = 0

    # Distress
    requires_restructuring: bool = False
    has_restructured: bool = False
    restructure_actions_taken: int = 0
    covenant_breach_rounds: int = 0
    exit_multiple_penalty: float = 0.0

    # Per-round counters
    acquisitions_this_round: int = 0
    source_calls_this_round: int = 0
    outreach_calls_this_round: int = 0
    equity_raises_this_round: int = 0
    actions_this_round: List[str] = field(default_factory=list)

    # History
    last_waterfall: Optional[WaterfallReport] = None
    round_history: List[RoundHistoryEntry] = field(default_factory=list)
    metrics_history: List[HistoricalMetrics] = field(default_factory=list)

    # End state
    game_over: bool = False
    bankrupt: bool = False
    reason: str = ""

    def clone(self) -> "GameState":
        return copy.deepcopy(self)

    def active_businesses(self) -> List[Business]:
        return [b for b in self.businesses if b.status == BusinessStatus.ACTIVE]

    def find_business(self, business_id: str) -> Optional[Business]:
        for b in self.businesses:
            if b.id == business_id:
                return b
        return None

    def find_deal(self, deal_id: str) -> Optional[Deal]:
        for d in self.deal_pipeline:
            if d.id == deal_id:
                return d
        return None

    def total_ebitda(self) -> int:
        """Consolidated EBITDA; bolt-ons are already inside their platform"""
        return sum(b.ebitda for b in self.active_businesses())

    def total_revenue(self) -> int:
        return sum(b.revenue for b in self.active_businesses())

    def opco_debt(self) -> int:
        return sum(b.total_debt for b in self.businesses if b.carries_debt)

    def total_debt(self) -> int:
        return self.holdco_loan.balance + self.opco_debt()

    def net_debt(self) -> int:
        return self.total_debt() - self.cash

    def founder_ownership(self) -> float:
        if self.shares_outstanding <= 0:
            return 0.0
        return self.founder_shares / self.shares_outstanding

    def active_shared_services(self) -> List[SharedServiceType]:
        return [s for s, active in self.shared_services.items() if active]

    @property
    def last_event_type(self) -> Optional[EventType]:
        if not self.event_history:
            return None
        return self.event_history[-1].type
