"""
Sector catalogue: static economics for every industry a holdco can buy into
"""
from dataclasses import dataclass
from typing import Dict, Tuple


@dataclass(frozen=True)
class SectorDefinition:
    id: str
    name: str
    multiple_range: Tuple[float, float]      # EV / EBITDA at acquisition
    margin_range: Tuple[float, float]
    growth_range: Tuple[float, float]        # annual organic growth
    margin_drift_range: Tuple[float, float]  # annual margin drift
    capex_rate: float                        # share of EBITDA reinvested
    volatility: float                        # growth noise amplitude
    recession_sensitivity: float             # 1.0 = average
    client_concentration: str                # low / medium / high
    stage: str                               # cheap / mid / premium
    sub_types: Tuple[str, ...]
    name_stems: Tuple[str, ...]

    @property
    def midpoint_multiple(self) -> float:
        return sum(self.multiple_range) / 2


SECTORS: Dict[str, SectorDefinition] = {
    "agency": SectorDefinition(
        id="agency", name="Marketing Agency",
        multiple_range=(2.5, 5.0), margin_range=(0.12, 0.22), growth_range=(0.02, 0.08),
        margin_drift_range=(-0.010, 0.005), capex_rate=0.03, volatility=0.08,
        recession_sensitivity=1.4, client_concentration="high",
        stage="cheap",
        sub_types=("Digital Agency", "Creative Studio", "Performance Marketing", "PR Firm"),
        name_stems=("Brightline", "Northwind", "Signal", "Halcyon", "Copperleaf", "Redwood"),
    ),
    "saas": SectorDefinition(
        id="saas", name="Vertical SaaS",
        multiple_range=(6.0, 12.0), margin_range=(0.20, 0.40), growth_range=(0.08, 0.20),
        margin_drift_range=(0.000, 0.010), capex_rate=0.05, volatility=0.10,
        recession_sensitivity=0.7, client_concentration="low",
        stage="premium",
        sub_types=("Practice Management", "Field Service Software", "Compliance Software"),
        name_stems=("Cloudform", "Stackwise", "Ledgerly", "Vantage", "Relay", "Orbit"),
    ),
    "homeServices": SectorDefinition(
        id="homeServices", name="Home Services",
        multiple_range=(3.0, 6.0), margin_range=(0.10, 0.20), growth_range=(0.03, 0.08),
        margin_drift_range=(-0.005, 0.005), capex_rate=0.06, volatility=0.05,
        recession_sensitivity=0.8, client_concentration="low",
        stage="mid",
        sub_types=("HVAC", "Plumbing", "Pest Control", "Roofing"),
        name_stems=("Keystone", "Blue Ridge", "Hometown", "Ironclad", "Summit", "Patriot"),
    ),
    "consumer": SectorDefinition(
        id="consumer", name="Consumer Brand",
        multiple_range=(3.0, 7.0), margin_range=(0.10, 0.25), growth_range=(0.02, 0.12),
        margin_drift_range=(-0.010, 0.005), capex_rate=0.04, volatility=0.09,
        recession_sensitivity=1.2, client_concentration="medium",
        stage="mid",
        sub_types=("DTC Apparel", "Pet Products", "Specialty Food", "Personal Care"),
        name_stems=("Wildroot", "Maple & Pine", "Harbor", "Goldfinch", "Tidewater", "Juniper"),
    ),
    "industrial": SectorDefinition(
        id="industrial", name="Light Industrial",
        multiple_range=(4.0, 7.0), margin_range=(0.12, 0.20), growth_range=(0.01, 0.06),
        margin_drift_range=(-0.005, 0.005), capex_rate=0.10, volatility=0.06,
        recession_sensitivity=1.3, client_concentration="medium",
        stage="mid",
        sub_types=("Precision Machining", "Industrial Distribution", "Packaging"),
        name_stems=("Anvil", "Steelbridge", "Midwest", "Allied", "Forge", "Titan"),
    ),
    "b2bServices": SectorDefinition(
        id="b2bServices", name="B2B Services",
        multiple_range=(4.0, 7.5), margin_range=(0.12, 0.25), growth_range=(0.03, 0.09),
        margin_drift_range=(-0.005, 0.005), capex_rate=0.03, volatility=0.05,
        recession_sensitivity=1.0, client_concentration="medium",
        stage="mid",
        sub_types=("Staffing", "Facilities Management", "IT Managed Services", "Testing & Inspection"),
        name_stems=("Meridian", "Corestone", "Apex", "Pinnacle", "Bridgeway", "Clearpath"),
    ),
    "healthcare": SectorDefinition(
        id="healthcare", name="Healthcare Services",
        multiple_range=(5.0, 9.0), margin_range=(0.12, 0.22), growth_range=(0.04, 0.10),
        margin_drift_range=(-0.005, 0.005), capex_rate=0.05, volatility=0.04,
        recession_sensitivity=0.4, client_concentration="low",
        stage="premium",
        sub_types=("Dental Practice", "Physical Therapy", "Veterinary Clinic", "Home Health"),
        name_stems=("Evergreen", "Lakeside", "Caring Hands", "Riverbend", "Beacon", "Willow"),
    ),
    "restaurant": SectorDefinition(
        id="restaurant", name="Restaurant Group",
        multiple_range=(2.5, 5.0), margin_range=(0.08, 0.15), growth_range=(0.00, 0.06),
        margin_drift_range=(-0.010, 0.003), capex_rate=0.12, volatility=0.09,
        recession_sensitivity=1.5, client_concentration="low",
        stage="cheap",
        sub_types=("Quick Service", "Fast Casual", "Full Service", "Franchise Portfolio"),
        name_stems=("Smokehouse", "Golden Fork", "Main Street", "Copper Kettle", "Old Mill", "Saltwater"),
    ),
    "realEstate": SectorDefinition(
        id="realEstate", name="Property Services",
        multiple_range=(5.0, 8.0), margin_range=(0.25, 0.45), growth_range=(0.01, 0.05),
        margin_drift_range=(-0.003, 0.003), capex_rate=0.15, volatility=0.04,
        recession_sensitivity=1.1, client_concentration="low",
        stage="premium",
        sub_types=("Self Storage", "Property Management", "Parking Operations"),
        name_stems=("Cornerstone", "Landmark", "Granite", "Heritage", "Fairview", "Oakmont"),
    ),
    "education": SectorDefinition(
        id="education", name="Education & Training",
        multiple_range=(4.0, 7.0), margin_range=(0.12, 0.25), growth_range=(0.03, 0.09),
        margin_drift_range=(-0.005, 0.005), capex_rate=0.05, volatility=0.05,
        recession_sensitivity=0.6, client_concentration="low",
        stage="mid",
        sub_types=("Test Prep", "Vocational School", "Corporate Training", "Early Childhood"),
        name_stems=("Bright Path", "Scholar", "Compass", "Learnwell", "Milestone", "Horizon"),
    ),
    "insurance": SectorDefinition(
        id="insurance", name="Insurance Brokerage",
        multiple_range=(6.0, 10.0), margin_range=(0.20, 0.35), growth_range=(0.04, 0.09),
        margin_drift_range=(0.000, 0.005), capex_rate=0.02, volatility=0.03,
        recession_sensitivity=0.5, client_concentration="low",
        stage="premium",
        sub_types=("P&C Agency", "Employee Benefits", "Specialty Lines"),
        name_stems=("Shield", "Trustmark", "Guardian", "Sentinel", "Harborview", "Liberty"),
    ),
    "autoServices": SectorDefinition(
        id="autoServices", name="Auto Services",
        multiple_range=(3.0, 5.5), margin_range=(0.10, 0.18), growth_range=(0.02, 0.06),
        margin_drift_range=(-0.005, 0.005), capex_rate=0.08, volatility=0.05,
        recession_sensitivity=0.9, client_concentration="low",
        stage="cheap",
        sub_types=("Collision Repair", "Car Wash", "Quick Lube", "Tire Service"),
        name_stems=("Precision", "Route 66", "Gearhead", "Autowerks", "Speedway", "Crossroads"),
    ),
    "distribution": SectorDefinition(
        id="distribution", name="Specialty Distribution",
        multiple_range=(3.5, 6.5), margin_range=(0.06, 0.12), growth_range=(0.02, 0.07),
        margin_drift_range=(-0.005, 0.003), capex_rate=0.04, volatility=0.06,
        recession_sensitivity=1.1, client_concentration="medium",
        stage="mid",
        sub_types=("Food Distribution", "Building Products", "MRO Supplies", "Medical Supplies"),
        name_stems=("Continental", "Fleetwood", "Prairie", "Crescent", "Eastgate", "Pioneer"),
    ),
}

SECTOR_IDS = tuple(SECTORS)

NAME_SUFFIXES = ("Group", "Partners", "Co.", "Holdings", "Services", "& Sons", "Collective")

# Client churn severity by concentration
CHURN_CONCENTRATION_MULTIPLIER = {"high": 1.3, "medium": 1.0, "low": 0.7}

# Sector weighting by game stage (early rounds favour cheaper sectors)
STAGE_WEIGHTS = {
    "early": {"cheap": 1.6, "mid": 1.0, "premium": 0.5},
    "mid": {"cheap": 1.0, "mid": 1.2, "premium": 1.0},
    "late": {"cheap": 0.8, "mid": 1.0, "premium": 1.4},
}


def get_sector(sector_id: str) -> SectorDefinition:
    try:
        return SECTORS[sector_id]
    except KeyError:
        raise ValueError(f"unknown sector: {sector_id}") from None
