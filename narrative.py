"""
Event narration: Gemini-backed flavour text with a deterministic fallback.

Narration never feeds back into the simulation. Any failure of the text
generator (missing key, SDK error, empty reply) falls back to a template
filled from the event context.
"""

from typing import Mapping, Optional, Protocol

import google.generativeai as genai
import structlog

from game_config import RuntimeSettings
from models import EventType

log = structlog.get_logger(__name__)

MAX_NARRATIVE_CHARS = 600


class NarrativeGenerator(Protocol):
    def generate(self, event_type: EventType, context: Mapping[str, object]) -> Optional[str]:
        ...


FALLBACK_TEMPLATES = {
    EventType.BULL_MARKET: "Markets ran hot in year {round}. Buyers paid up and the portfolio rode the wave.",
    EventType.RECESSION: "Year {round} brought a recession. Cyclical businesses felt it first.",
    EventType.INTEREST_HIKE: "Rates rose in year {round}; every floating-rate dollar got more expensive.",
    EventType.INTEREST_CUT: "Rates fell in year {round}, easing the cost of the holdco's debt.",
    EventType.INFLATION: "Inflation bit in year {round}. Costs climbed faster than prices.",
    EventType.CREDIT_TIGHTENING: "Banks shut the window in year {round}. Acquisition debt dried up.",
    EventType.QUIET: "Year {round} was quiet. The businesses simply did their work.",
    EventType.STAR_JOINS: "A star operator joined {business} in year {round}.",
    EventType.TALENT_LEAVES: "{business} lost a key leader in year {round}.",
    EventType.CLIENT_SIGNS: "{business} signed a major new client in year {round}.",
    EventType.CLIENT_CHURN: "{business} lost an important client in year {round}.",
    EventType.BREAKTHROUGH: "{business} found a lasting operational edge in year {round}.",
    EventType.COMPLIANCE: "Regulators came knocking at {business} in year {round}.",
    EventType.WORKING_CAPITAL_CRUNCH: "{business} needed cash to fund its working capital in year {round}.",
    EventType.UNSOLICITED_OFFER: "A buyer made an unsolicited offer for {business} in year {round}.",
    EventType.EQUITY_DEMAND: "Management at {business} asked for a piece of the upside in year {round}.",
    EventType.SELLER_NOTE_RENEGO: "The former owner of {business} wanted to settle the seller note early.",
    EventType.KEY_MAN_RISK: "A competitor tried to poach the operator running {business}.",
    EventType.EARNOUT_DISPUTE: "The sellers of {business} disputed their earn-out in year {round}.",
    EventType.SUPPLIER_SHIFT: "A key supplier to {business} raised prices in year {round}.",
    EventType.SECTOR_TAILWIND: "{sector} had a strong year {round}.",
    EventType.SECTOR_HEADWIND: "{sector} struggled through year {round}.",
}

if set(FALLBACK_TEMPLATES) != set(EventType):
    raise RuntimeError(f"missing narrative templates: {set(EventType) - set(FALLBACK_TEMPLATES)}")


class _Defaults(dict):
    def __missing__(self, key):
        return {"business": "one of the businesses", "sector": "The sector", "round": "?"}.get(key, "")


def fallback_narrative(event_type: EventType, context: Mapping[str, object]) -> str:
    return FALLBACK_TEMPLATES[event_type].format_map(_Defaults(context))


class GeminiNarrator:
    """Text generator backed by Google Gemini"""

    def __init__(self, api_key: str, model_name: str = "gemini-2.5-flash"):
        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(model_name)

    def build_prompt(self, event_type: EventType, context: Mapping[str, object]) -> str:
        facts = "\n".join(f"- {k}: {v}" for k, v in context.items())
        return f"""
You write two-sentence news flashes for a holding company simulation game.

Event: {event_type.value}
Facts:
{facts}

Rules:
- Use only the facts given. Do NOT invent numbers.
- Plain text, no headings, at most two sentences.
"""

    def generate(self, event_type: EventType, context: Mapping[str, object]) -> Optional[str]:
        response = self.model.generate_content(self.build_prompt(event_type, context))
        text = response.text.strip() if hasattr(response, "text") else ""
        return text[:MAX_NARRATIVE_CHARS] or None


def build_narrator(settings: Optional[RuntimeSettings] = None) -> Optional[GeminiNarrator]:
    """Gemini narrator when enabled and keyed, otherwise None (templates only)"""
    settings = settings or RuntimeSettings.from_env()
    if not settings.narrative_enabled or not settings.gemini_api_key:
        return None
    return GeminiNarrator(settings.gemini_api_key, settings.narrative_model)


def narrate(generator: Optional[NarrativeGenerator], event_type: EventType,
            context: Mapping[str, object]) -> str:
    """Generated text for the event, or the template when generation fails"""
    if generator is not None:
        try:
            text = generator.generate(event_type, context)
        except Exception as e:
            log.warning("narrative.failed", event_type=event_type.value, error=str(e))
            text = None
        if text:
            return text
    return fallback_narrative(event_type, context)
