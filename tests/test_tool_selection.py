"""Tests for relevance-based tool selection."""

from __future__ import annotations

import pytest

from actionflow.orchestration.tools import (
    CATEGORY_KEYWORDS,
    ToolCategory,
    ToolSpec,
    relevance_score,
    select_tools,
    tool_keywords,
)


def _spec(name: str, description: str = "", category: str = ToolCategory.UTILITY) -> ToolSpec:
    return ToolSpec(name=name, description=description, category=category)


CATALOGUE = [
    _spec("weather", "Look up the forecast for a city", ToolCategory.READ),
    _spec("web_search", "Search the web for pages", ToolCategory.SEARCH),
    _spec("calculator", "Add two numbers", ToolCategory.ANALYSIS),
]


# =============================================================================
# Keywords and Scoring
# =============================================================================


class TestKeywords:
    def test_name_parts_and_description_words(self):
        keywords = tool_keywords(_spec("web_search", "Search the web"))

        assert {"web", "search", "the"} <= keywords

    def test_category_words_are_included(self):
        keywords = tool_keywords(_spec("img", "Thumbnails", ToolCategory.MEDIA))

        assert CATEGORY_KEYWORDS[ToolCategory.MEDIA] <= keywords

    def test_every_category_has_an_entry(self):
        categories = {
            ToolCategory.READ,
            ToolCategory.WRITE,
            ToolCategory.SEARCH,
            ToolCategory.ANALYSIS,
            ToolCategory.MEDIA,
            ToolCategory.UTILITY,
        }

        assert set(CATEGORY_KEYWORDS) == categories


class TestRelevanceScore:
    def test_exact_match_outscores_partial_match(self):
        spec = _spec("calculator", "Add two numbers")

        assert relevance_score("add", spec) > relevance_score("calc", spec) > relevance_score("zzz", spec)

    def test_short_words_do_not_match_partially(self):
        spec = _spec("forecast", "Weather")

        assert relevance_score("fo", spec) < 5

    def test_similarity_breaks_ties(self):
        spec = _spec("weather", "Forecast")

        score = relevance_score("qqq", spec)

        assert 0 <= score < 1


# =============================================================================
# Selection
# =============================================================================


class TestSelectTools:
    def test_no_limit_keeps_everything(self):
        assert select_tools("anything", CATALOGUE, None) == CATALOGUE

    def test_catalogue_within_limit_is_unchanged(self):
        assert select_tools("anything", CATALOGUE, 3) == CATALOGUE

    @pytest.mark.parametrize(
        ("query", "expected"),
        [
            ("What is the forecast for Oslo?", "weather"),
            ("search the web for news", "web_search"),
            ("Calculate 5+3", "calculator"),
        ],
    )
    def test_most_relevant_tool_first(self, query, expected):
        selected = select_tools(query, CATALOGUE, 1)

        assert [spec.name for spec in selected] == [expected]

    def test_category_routes_query_without_name_match(self):
        specs = [_spec("helper_one", "Internal helper"), _spec("helper_two", "Internal helper", ToolCategory.MEDIA)]

        selected = select_tools("resize this photo", specs, 1)

        assert [spec.name for spec in selected] == ["helper_two"]

    def test_query_without_words_keeps_registration_order(self):
        selected = select_tools("?!", CATALOGUE, 2)

        assert [spec.name for spec in selected] == ["weather", "web_search"]

    def test_ties_keep_registration_order(self):
        specs = [_spec("tool_b", "x"), _spec("tool_a", "x"), _spec("tool_c", "x")]

        selected = select_tools("zzz", specs, 2)

        assert [spec.name for spec in selected] == ["tool_b", "tool_a"]

    def test_returns_new_list(self):
        selected = select_tools("anything", CATALOGUE, None)

        assert selected is not CATALOGUE
