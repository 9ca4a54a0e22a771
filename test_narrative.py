import types

from engine import new_game, step_round
from game_config import RuntimeSettings
from models import EventType
from narrative import FALLBACK_TEMPLATES, GeminiNarrator, build_narrator, fallback_narrative, narrate


class BrokenNarrator:
    def generate(self, event_type, context):
        raise RuntimeError("quota exceeded")


class SilentNarrator:
    def generate(self, event_type, context):
        return None


class FixedNarrator:
    def generate(self, event_type, context):
        return f"Story for {context['round']}"


def test_every_event_has_a_template():
    assert set(FALLBACK_TEMPLATES) == set(EventType)


def test_fallback_fills_context():
    text = fallback_narrative(EventType.CLIENT_SIGNS, {"business": "Keystone Group", "round": 4})
    assert text == "Keystone Group signed a major new client in year 4."


def test_fallback_tolerates_missing_context():
    assert "one of the businesses" in fallback_narrative(EventType.TALENT_LEAVES, {})


def test_generator_failure_falls_back():
    context = {"round": 3}
    assert narrate(BrokenNarrator(), EventType.QUIET, context) == fallback_narrative(EventType.QUIET, context)
    assert narrate(SilentNarrator(), EventType.QUIET, context) == fallback_narrative(EventType.QUIET, context)
    assert narrate(None, EventType.QUIET, context) == fallback_narrative(EventType.QUIET, context)


def test_generated_text_is_used():
    assert narrate(FixedNarrator(), EventType.QUIET, {"round": 3}) == "Story for 3"


def test_narrator_disabled_without_key():
    assert build_narrator(RuntimeSettings(gemini_api_key=None)) is None
    assert build_narrator(RuntimeSettings(gemini_api_key="key", narrative_enabled=False)) is None


def test_settings_from_env(monkeypatch, tmp_path):
    # set first so teardown also removes the value loaded from .env
    monkeypatch.setenv("LOG_LEVEL", "")
    monkeypatch.delenv("LOG_LEVEL")
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("HOLDCO_NARRATIVE_ENABLED", "off")
    dotenv = tmp_path / ".env"
    dotenv.write_text("LOG_LEVEL=debug\n")
    settings = RuntimeSettings.from_env(str(dotenv))
    assert settings.log_level == "DEBUG"
    assert not settings.narrative_enabled
    assert build_narrator(settings) is None


def test_failing_narrator_does_not_affect_the_game():
    plain = new_game(seed=9)
    broken = new_game(seed=9, narrator=BrokenNarrator())
    step_round(plain)
    step_round(broken)
    assert broken.gs.round_history[0].narrative
    assert broken.gs.round_history[0].narrative == plain.gs.round_history[0].narrative
    assert broken.gs.cash == plain.gs.cash


def test_gemini_reply_is_trimmed(monkeypatch):
    prompts = []

    class FakeModel:
        def __init__(self, model_name):
            self.model_name = model_name

        def generate_content(self, prompt):
            prompts.append(prompt)
            return types.SimpleNamespace(text="  " + "x" * 1000)

    monkeypatch.setattr("narrative.genai.configure", lambda api_key: None)
    monkeypatch.setattr("narrative.genai.GenerativeModel", FakeModel)
    narrator = GeminiNarrator("key")
    text = narrator.generate(EventType.RECESSION, {"round": 2, "title": "Recession"})
    assert text == "x" * 600
    assert "- title: Recession" in prompts[0]
