"""Tests for the rule-based fallback templates."""

import pytest

from cortex_insights.core.context_templates import (
    TEMPLATES,
    Archetype,
    classify_archetype,
    fallback,
)
from cortex_insights.core.schemas_context_mirror import (
    ACTION_COUNT,
    HEADLINE_MAX_CHARS,
    INSIGHT_MAX_WORDS,
    INSIGHT_MIN_WORDS,
    LIST_ITEM_MAX_WORDS,
    WATCHOUT_COUNT,
    ContextProfile,
    split_paragraphs,
)
from tests.fixtures_context_mirror import COMPLEX_PROFILE, FAST_PACED_PROFILE, REGULATED_PROFILE


def _profile(**overrides) -> ContextProfile:
    return ContextProfile(**{**REGULATED_PROFILE, **overrides})


class TestClassifyArchetype:
    def test_regulated_profile(self):
        assert classify_archetype(ContextProfile(**REGULATED_PROFILE)) == Archetype.REGULATED

    def test_fast_paced_profile(self):
        assert classify_archetype(ContextProfile(**FAST_PACED_PROFILE)) == Archetype.FAST_PACED

    def test_complex_profile(self):
        assert classify_archetype(ContextProfile(**COMPLEX_PROFILE)) == Archetype.COMPLEX_INTEGRATION

    def test_fast_paced_takes_priority_over_complex(self):
        profile = _profile(clock_speed=3, regulatory_intensity=2, scale_throughput=4, latency_edge=4)
        assert classify_archetype(profile) == Archetype.FAST_PACED

    def test_high_regulation_blocks_fast_paced(self):
        profile = _profile(clock_speed=4, regulatory_intensity=3, scale_throughput=0, latency_edge=0)
        assert classify_archetype(profile) == Archetype.REGULATED

    @pytest.mark.parametrize("field", ["scale_throughput", "latency_edge"])
    def test_either_coupling_signal_is_enough(self, field):
        profile = _profile(**{"clock_speed": 0, "scale_throughput": 0, "latency_edge": 0, field: 2})
        assert classify_archetype(profile) == Archetype.COMPLEX_INTEGRATION


class TestFallback:
    def test_regulated_scenario_matches_template(self):
        payload = fallback(_profile(regulatory_intensity=4, data_sensitivity=4, clock_speed=1))
        template = TEMPLATES[Archetype.REGULATED]
        assert payload.headline == template.headline
        assert payload.disclaimer == template.disclaimer

    @pytest.mark.parametrize("raw", [REGULATED_PROFILE, FAST_PACED_PROFILE, COMPLEX_PROFILE])
    def test_deterministic(self, raw):
        first = fallback(ContextProfile(**raw))
        second = fallback(ContextProfile(**raw))
        assert first.model_dump_json() == second.model_dump_json()

    def test_returns_a_copy(self):
        payload = fallback(ContextProfile(**REGULATED_PROFILE))
        payload.actions.append("mutated")
        assert len(TEMPLATES[Archetype.REGULATED].actions) == ACTION_COUNT


@pytest.mark.parametrize("archetype", list(Archetype))
def test_template_shape(archetype):
    payload = TEMPLATES[archetype]
    paragraphs = split_paragraphs(payload.insight)
    assert len(paragraphs) == 2 and all(paragraphs)
    assert INSIGHT_MIN_WORDS <= len(payload.insight.split()) <= INSIGHT_MAX_WORDS
    assert len(payload.actions) == ACTION_COUNT
    assert len(payload.watchouts) == WATCHOUT_COUNT
    assert len(payload.headline) <= HEADLINE_MAX_CHARS
    for item in [*payload.actions, *payload.watchouts]:
        assert len(item.split()) <= LIST_ITEM_MAX_WORDS
