"""Unit tests for apidex.search: pure functions over a DocumentIndex."""

from __future__ import annotations

import pytest

from apidex.models.index import DocumentIndex, ScoredMatch
from apidex.search import (
    DEFAULT_LISTING_RELEVANCE,
    SearchParams,
    compile_glob,
    expand_keywords,
    filter_by_methods,
    popular_endpoints,
    search,
    search_by_keywords,
    search_by_pattern,
    search_by_tags,
    suggest,
)


def _pairs(results: list[ScoredMatch]) -> list[tuple[str | None, str]]:
    return [(result.method, result.path) for result in results]


# ---------------------------------------------------------------------------
# Strategy selection
# ---------------------------------------------------------------------------


class TestStrategySelection:
    def test_tags_take_priority(self, index: DocumentIndex) -> None:
        results = search(index, SearchParams(tags=["auth"], pattern="/users", keywords=["health"]))
        assert _pairs(results) == [("POST", "/auth/login")]

    def test_pattern_before_keywords(self, index: DocumentIndex) -> None:
        results = search(index, SearchParams(pattern="/health", keywords=["users"]))
        assert _pairs(results) == [("GET", "/health")]

    def test_default_listing_when_nothing_given(self, index: DocumentIndex) -> None:
        results = search(index, SearchParams())
        assert len(results) == 8
        assert all(result.relevance == DEFAULT_LISTING_RELEVANCE for result in results)

    def test_limit_applies_to_every_strategy(self, index: DocumentIndex) -> None:
        assert len(search(index, SearchParams(limit=3))) == 3
        assert len(search(index, SearchParams(keywords=["users"], limit=2))) == 2
        assert len(search(index, SearchParams(pattern="/users", limit=1))) == 1

    def test_results_sorted_by_relevance(self, index: DocumentIndex) -> None:
        results = search(index, SearchParams(keywords=["admin", "settings"]))
        relevances = [result.relevance for result in results]
        assert relevances == sorted(relevances, reverse=True)


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------


class TestTagSearch:
    def test_only_operations_carrying_tag(self, index_from) -> None:
        index = index_from(
            {
                "/admin/settings": {"get": {"summary": "Settings", "tags": ["admin"]}},
                "/users": {"get": {"summary": "Users", "tags": ["users"]}},
            }
        )
        assert index.tag_index == {"admin": ["/admin/settings"], "users": ["/users"]}

        results = search_by_tags(index, ["admin"])
        assert len(results) == 1
        assert results[0].path == "/admin/settings"
        assert results[0].relevance == 1.0
        assert results[0].tag == "admin"

    def test_case_insensitive(self, index: DocumentIndex) -> None:
        assert _pairs(search_by_tags(index, ["ADMIN"])) == _pairs(search_by_tags(index, ["admin"]))

    def test_untagged_sibling_operation_excluded(self, index: DocumentIndex) -> None:
        # GET /users/{id} shares the path with the admin-tagged DELETE
        results = search_by_tags(index, ["admin"])
        assert _pairs(results) == [
            ("DELETE", "/users/{id}"),
            ("GET", "/admin/settings"),
            ("PUT", "/admin/settings"),
        ]

    def test_multiple_tags_deduplicated(self, index: DocumentIndex) -> None:
        results = search_by_tags(index, ["users", "admin"])
        assert len(_pairs(results)) == len(set(_pairs(results))) == 6

    def test_unknown_tag(self, index: DocumentIndex) -> None:
        assert search_by_tags(index, ["billing"]) == []


# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------


class TestCompileGlob:
    def test_wildcards_stay_within_segment(self) -> None:
        regex = compile_glob("/users/*")
        assert regex.fullmatch("/users/42")
        assert not regex.fullmatch("/users/42/posts")

    def test_parameter_placeholder(self) -> None:
        regex = compile_glob("/users/{userId}/posts")
        assert regex.fullmatch("/users/{id}/posts")
        assert not regex.fullmatch("/users//posts")

    def test_question_mark_and_case(self) -> None:
        assert compile_glob("/V?").fullmatch("/v1")

    @pytest.mark.parametrize("pattern", ["/users/{id", "/users/id}", "/a/{b{c}"])
    def test_unbalanced_braces_rejected(self, pattern: str) -> None:
        with pytest.raises(ValueError):
            compile_glob(pattern)


class TestPatternSearch:
    def test_exact_before_contains(self, index: DocumentIndex) -> None:
        results = search_by_pattern(index, "/users")
        assert _pairs(results) == [
            ("GET", "/users"),
            ("POST", "/users"),
            ("GET", "/users/{id}"),
            ("DELETE", "/users/{id}"),
        ]
        assert [result.relevance for result in results] == [1.0, 1.0, 0.8, 0.8]

    def test_glob_tier(self, index: DocumentIndex) -> None:
        results = search_by_pattern(index, "/users/*")
        assert _pairs(results) == [("GET", "/users/{id}"), ("DELETE", "/users/{id}")]
        assert {result.relevance for result in results} == {0.6}

    def test_summary_tier(self, index: DocumentIndex) -> None:
        results = search_by_pattern(index, "health check")
        assert _pairs(results) == [("GET", "/health")]
        assert results[0].relevance == 0.4

    def test_malformed_pattern_falls_back(self, index: DocumentIndex) -> None:
        results = search_by_pattern(index, "/users/{id")
        assert results
        assert {result.path for result in results} == {"/users/{id}"}

    def test_no_match(self, index: DocumentIndex) -> None:
        assert search_by_pattern(index, "/billing") == []


# ---------------------------------------------------------------------------
# Keywords
# ---------------------------------------------------------------------------


class TestKeywordSearch:
    def test_relevant_path_ranks_first(self, index_from) -> None:
        index = index_from(
            {
                "/users": {"get": {"summary": "List users"}},
                "/health": {"get": {"summary": "Health"}},
            }
        )
        results = search_by_keywords(index, ["user"])
        assert results[0].path == "/users"
        assert "/health" not in {result.path for result in results}

    def test_repeat_contributions_are_damped(self, index_from) -> None:
        index = index_from({"/pets": {"get": {}}})
        # path substring 0.5, then the keyword-index hit (segment, 1.0) at 0.3
        [result] = search_by_keywords(index, ["pets"])
        assert result.relevance == pytest.approx(0.8)

    def test_synonyms_widen_the_search(self, index_from) -> None:
        index = index_from({"/accounts": {"get": {"summary": "List accounts"}}})
        assert _pairs(search_by_keywords(index, ["user"])) == [("GET", "/accounts")]

    def test_cap(self, index: DocumentIndex) -> None:
        assert len(search_by_keywords(index, ["users"], cap=1)) == 1

    def test_unknown_keyword(self, index: DocumentIndex) -> None:
        assert search_by_keywords(index, ["zebra"]) == []

    def test_expand_keywords(self) -> None:
        assert expand_keywords(["User", "user", " "]) == ["user", "account", "profile"]


class TestMethodFilter:
    def test_relevance_untouched(self, index: DocumentIndex) -> None:
        results = search(index, SearchParams(pattern="/users", methods=["post"]))
        assert _pairs(results) == [("POST", "/users")]
        assert results[0].relevance == 1.0

    def test_results_without_method_are_kept(self) -> None:
        results = [
            ScoredMatch(path="/a", method="GET", relevance=1.0),
            ScoredMatch(path="/b", method=None, relevance=0.5),
            ScoredMatch(path="/c", method="DELETE", relevance=0.5),
        ]
        assert [result.path for result in filter_by_methods(results, ["get"])] == ["/a", "/b"]


# ---------------------------------------------------------------------------
# Suggestions and popular endpoints
# ---------------------------------------------------------------------------


class TestSuggest:
    def test_path_prefixes(self, index: DocumentIndex) -> None:
        assert suggest(index, "/us") == ["/users", "/users/{id}"]

    def test_tags_containing_partial(self, index: DocumentIndex) -> None:
        assert suggest(index, "adm") == ["admin"]

    def test_fuzzy_match_for_typos(self, index: DocumentIndex) -> None:
        assert suggest(index, "helth")[0] == "health"

    def test_limit(self, index: DocumentIndex) -> None:
        assert len(suggest(index, "/", limit=2)) == 2

    def test_nothing_close(self, index: DocumentIndex) -> None:
        assert suggest(index, "zzzzzz") == []


class TestPopularEndpoints:
    def test_common_fragments_in_order(self, index: DocumentIndex) -> None:
        assert _pairs(popular_endpoints(index)) == [
            ("GET", "/health"),
            ("GET", "/users"),
            ("POST", "/auth/login"),
            ("GET", "/admin/settings"),
        ]

    def test_limit(self, index: DocumentIndex) -> None:
        assert len(popular_endpoints(index, limit=2)) == 2
