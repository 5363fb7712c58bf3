"""Market draft generation and normalization tests."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import openai

from crowdcast.ai.drafts import (
    DraftProviderError,
    generate_market_draft,
    normalize_category,
    normalize_end_date,
)
from crowdcast.ai.provider import OpenAIDraftProvider

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class StaticProvider:
    def __init__(self, result):
        self.result = result

    def generate(self, free_text, today):
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def test_categories_map_to_fixed_list():
    assert normalize_category("tech") == "Technology"
    assert normalize_category("CRYPTO") == "Crypto"
    assert normalize_category("Gardening") == "Community"
    assert normalize_category(None) == "Community"


def test_end_date_must_be_future():
    assert normalize_end_date("2025-04-01T00:00:00Z", NOW) == datetime(2025, 4, 1, tzinfo=timezone.utc)
    assert normalize_end_date("2020-01-01", NOW) == NOW + timedelta(days=7)
    assert normalize_end_date("next tuesday", NOW, default_days=3) == NOW + timedelta(days=3)
    assert normalize_end_date(None, NOW) == NOW + timedelta(days=7)


def test_provider_output_is_normalized():
    raw = {
        "title": "Will the picnic get rained out?",
        "category": "tech",
        "tags": ["weather", 3, ""],
        "suggestedEndDate": "2019-05-01",
        "options": ["Only one"],
    }
    draft = generate_market_draft("rain at picnic", StaticProvider(raw), now=NOW)
    assert draft.title == "Will the picnic get rained out?"
    assert draft.description == "rain at picnic"
    assert draft.category == "Technology"
    assert draft.tags == ["weather"]
    assert draft.suggested_end_date == NOW + timedelta(days=7)
    assert draft.resolution_method == "Community Vote"
    assert draft.options == ["Yes", "No"]


def test_multiple_choice_options_are_kept():
    draft = generate_market_draft("who wins", StaticProvider({"options": ["Red", "Blue", "Green"]}), now=NOW)
    assert draft.options == ["Red", "Blue", "Green"]


def test_provider_failure_falls_back():
    draft = generate_market_draft("it rains tomorrow", StaticProvider(DraftProviderError("down")), now=NOW)
    assert draft.title == "Will it rains tomorrow?"
    assert draft.options == ["Yes", "No"]
    assert draft.category == "Community"
    assert draft.suggested_end_date > NOW


def test_no_provider_falls_back():
    draft = generate_market_draft("will Sam bake bread", None, now=NOW)
    assert draft.title == "Will Sam bake bread"
    assert "will Sam bake bread" in draft.description


class _Completions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _fake_client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def test_openai_provider_parses_json_object():
    completions = _Completions(content='{"title": "Will it snow?", "options": ["Yes", "No"]}')
    provider = OpenAIDraftProvider(api_key="k", model="m", client=_fake_client(completions))
    assert provider.generate("snow", NOW) == {"title": "Will it snow?", "options": ["Yes", "No"]}
    assert completions.kwargs["response_format"] == {"type": "json_object"}
    assert "2025-03-01" in completions.kwargs["messages"][0]["content"]


def test_openai_provider_wraps_failures():
    bad_json = OpenAIDraftProvider(api_key="k", client=_fake_client(_Completions(content="not json")))
    api_down = OpenAIDraftProvider(api_key="k", client=_fake_client(_Completions(error=openai.OpenAIError("down"))))
    for provider in (bad_json, api_down):
        draft = generate_market_draft("snow", provider, now=NOW)
        assert draft.title == "Will snow?"
