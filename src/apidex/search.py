"""Search over a DocumentIndex.

Pure business logic: receives a DocumentIndex, returns ScoredMatch results.
No knowledge of sessions, caching, MCP, or I/O.

Strategy is chosen by priority: tags > pattern > keywords > default listing.
Results are always sorted by relevance descending, ties in discovery order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog
from rapidfuzz import fuzz, process

from apidex.indexer import path_segments
from apidex.models.index import ScoredMatch

if TYPE_CHECKING:
    from apidex.models.index import DocumentIndex, OperationSummary

log = structlog.get_logger()

SYNONYMS: dict[str, tuple[str, ...]] = {
    "get": ("fetch", "retrieve", "read"),
    "post": ("create", "add", "insert"),
    "put": ("update", "modify", "edit"),
    "delete": ("remove", "destroy"),
    "user": ("account", "profile"),
    "list": ("get", "fetch", "retrieve"),
    "info": ("information", "details"),
    "auth": ("authentication", "login"),
    "config": ("configuration", "settings"),
}

# Keyword-search field weights
TAG_WEIGHT = 0.6
PATH_WEIGHT = 0.5
OPERATION_ID_WEIGHT = 0.4
SUMMARY_WEIGHT = 0.3
DESCRIPTION_WEIGHT = 0.2
# Later contributions to an already-matched operation count at this fraction
REPEAT_MATCH_FACTOR = 0.3

DEFAULT_LISTING_RELEVANCE = 0.1

POPULAR_FRAGMENTS: tuple[str, ...] = (
    "/health",
    "/status",
    "/version",
    "/users",
    "/auth",
    "/login",
    "/logout",
    "/profile",
    "/config",
    "/settings",
)


@dataclass(frozen=True)
class SearchParams:
    keywords: list[str] | None = None
    tags: list[str] | None = None
    pattern: str | None = None
    methods: list[str] | None = None
    limit: int = 20
    max_keyword_results: int = 50


def search(index: DocumentIndex, params: SearchParams) -> list[ScoredMatch]:
    """Run the highest-priority strategy the params select, filter, then limit."""
    if params.tags:
        results = search_by_tags(index, params.tags)
    elif params.pattern:
        results = search_by_pattern(index, params.pattern)
    elif params.keywords:
        results = search_by_keywords(index, params.keywords, cap=params.max_keyword_results)
    else:
        results = default_listing(index, params.limit)

    if params.methods:
        results = filter_by_methods(results, params.methods)
    return results[: params.limit]


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


def search_by_tags(index: DocumentIndex, tags: list[str]) -> list[ScoredMatch]:
    """Case-insensitive tag lookup; every operation carrying the tag scores 1.0."""
    by_lower = {tag.lower(): tag for tag in index.tag_index}
    results: list[ScoredMatch] = []
    seen: set[tuple[str, str]] = set()

    for requested in dict.fromkeys(tag.lower() for tag in tags):
        tag = by_lower.get(requested)
        if tag is None:
            continue
        for path in index.tag_index[tag]:
            for operation in index.path_index.values():
                if operation.path != path or tag not in operation.tags:
                    continue
                identity = (operation.method, operation.path)
                if identity in seen:
                    continue
                seen.add(identity)
                results.append(
                    ScoredMatch(
                        path=path,
                        method=operation.method,
                        relevance=1.0,
                        description=operation.description or operation.summary,
                        tag=tag,
                    )
                )

    log.debug("tag_search_complete", tags=tags, results=len(results))
    return results


def compile_glob(pattern: str) -> re.Pattern[str]:
    """Compile a path glob into an anchored, case-insensitive regex.

    ``*`` matches a run of non-``/`` characters, ``?`` one non-``/``
    character and ``{name}`` one non-empty path segment. Raises ValueError on
    unbalanced braces.
    """
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if char == "*":
            parts.append("[^/]*")
        elif char == "?":
            parts.append("[^/]")
        elif char == "{":
            end = pattern.find("}", i + 1)
            if end == -1 or "{" in pattern[i + 1 : end]:
                raise ValueError(f"Unbalanced '{{' in pattern {pattern!r}")
            parts.append("[^/]+")
            i = end
        elif char == "}":
            raise ValueError(f"Unbalanced '}}' in pattern {pattern!r}")
        else:
            parts.append(re.escape(char))
        i += 1
    return re.compile("".join(parts), re.IGNORECASE)


def _pattern_matcher(pattern: str) -> re.Pattern[str]:
    try:
        return compile_glob(pattern)
    except ValueError:
        log.info("pattern_fallback_to_substring", pattern=pattern)
        return re.compile(".*" + re.escape(pattern) + ".*", re.IGNORECASE)


def search_by_pattern(index: DocumentIndex, pattern: str) -> list[ScoredMatch]:
    """Tiered matching: exact 1.0 > contains 0.8 > glob 0.6 > summary/description 0.4."""
    matcher = _pattern_matcher(pattern)
    lowered = pattern.lower()
    results: list[ScoredMatch] = []

    for operation in index.path_index.values():
        if operation.path == pattern:
            relevance = 1.0
        elif lowered in operation.path.lower():
            relevance = 0.8
        elif matcher.fullmatch(operation.path):
            relevance = 0.6
        elif lowered in (operation.description or "").lower() or lowered in (
            operation.summary or ""
        ).lower():
            relevance = 0.4
        else:
            continue
        results.append(_match(operation, relevance))

    results = _rank(results)
    log.debug("pattern_search_complete", pattern=pattern, results=len(results))
    return results


def expand_keywords(keywords: list[str]) -> list[str]:
    """Lowercase, append synonyms, drop duplicates (first occurrence wins)."""
    lowered = [keyword.lower() for keyword in keywords if keyword.strip()]
    expanded = list(lowered)
    for keyword in lowered:
        expanded.extend(SYNONYMS.get(keyword, ()))
    return list(dict.fromkeys(expanded))


def search_by_keywords(
    index: DocumentIndex, keywords: list[str], *, cap: int = 50
) -> list[ScoredMatch]:
    """Weighted field matching plus keyword-index hits.

    The first contribution to an operation counts in full; every later one
    adds REPEAT_MATCH_FACTOR of its weight.
    """
    scores: dict[str, float] = {}
    discovered: dict[str, OperationSummary] = {}

    def contribute(key: str, operation: OperationSummary, weight: float) -> None:
        if key in scores:
            scores[key] += weight * REPEAT_MATCH_FACTOR
        else:
            scores[key] = weight
            discovered[key] = operation

    for keyword in expand_keywords(keywords):
        for key, operation in index.path_index.items():
            if keyword in operation.path.lower():
                contribute(key, operation, PATH_WEIGHT)
            if operation.description and keyword in operation.description.lower():
                contribute(key, operation, DESCRIPTION_WEIGHT)
            if operation.summary and keyword in operation.summary.lower():
                contribute(key, operation, SUMMARY_WEIGHT)
            if operation.operation_id and keyword in operation.operation_id.lower():
                contribute(key, operation, OPERATION_ID_WEIGHT)
            if any(keyword in tag.lower() for tag in operation.tags):
                contribute(key, operation, TAG_WEIGHT)

        for hit in index.keyword_index.get(keyword, []):
            key = f"{hit.method}-{hit.path}"
            operation = index.path_index.get(key)
            if operation is not None:
                contribute(key, operation, hit.relevance)

    results = _rank([_match(discovered[key], score) for key, score in scores.items()])[:cap]
    log.debug("keyword_search_complete", keywords=keywords, results=len(results))
    return results


def default_listing(index: DocumentIndex, limit: int) -> list[ScoredMatch]:
    operations = list(index.path_index.values())[:limit]
    return [_match(operation, DEFAULT_LISTING_RELEVANCE) for operation in operations]


def filter_by_methods(results: list[ScoredMatch], methods: list[str]) -> list[ScoredMatch]:
    """Keep results whose method is listed. Relevance is left untouched."""
    allowed = {method.upper() for method in methods}
    return [result for result in results if result.method is None or result.method in allowed]


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------


def suggest(
    index: DocumentIndex,
    partial: str,
    limit: int = 5,
    *,
    fuzzy_score_cutoff: int = 70,
) -> list[str]:
    """Path prefixes first, then tags containing ``partial``, then fuzzy matches."""
    lowered = partial.lower()
    suggestions: dict[str, None] = {}

    for operation in index.path_index.values():
        if len(suggestions) >= limit:
            break
        if operation.path.lower().startswith(lowered):
            suggestions.setdefault(operation.path)

    for tag in index.metadata.tags:
        if len(suggestions) >= limit:
            break
        if lowered in tag.lower():
            suggestions.setdefault(tag)

    if len(suggestions) < limit and lowered:
        corpus = list(
            dict.fromkeys(
                [*index.metadata.tags]
                + [
                    segment
                    for operation in index.path_index.values()
                    for segment in path_segments(operation.path)
                ]
            )
        )
        matches = process.extract(
            lowered.strip("/"),
            corpus,
            scorer=fuzz.ratio,
            processor=str.lower,
            limit=limit,
            score_cutoff=fuzzy_score_cutoff,
        )
        for term, _score, _idx in matches:
            if len(suggestions) >= limit:
                break
            suggestions.setdefault(term)

    return list(suggestions)[:limit]


def popular_endpoints(index: DocumentIndex, limit: int = 10) -> list[ScoredMatch]:
    """Best pattern match for each common REST fragment, in fragment order."""
    popular: list[ScoredMatch] = []
    seen: set[tuple[str | None, str]] = set()
    for fragment in POPULAR_FRAGMENTS:
        if len(popular) >= limit:
            break
        matches = search_by_pattern(index, fragment)
        if not matches:
            continue
        best = matches[0]
        if (best.method, best.path) not in seen:
            seen.add((best.method, best.path))
            popular.append(best)
    return popular


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _match(operation: OperationSummary, relevance: float) -> ScoredMatch:
    return ScoredMatch(
        path=operation.path,
        method=operation.method,
        relevance=relevance,
        description=operation.description or operation.summary,
    )


def _rank(results: list[ScoredMatch]) -> list[ScoredMatch]:
    # sorted() is stable, so equal scores keep discovery order
    return sorted(results, key=lambda match: match.relevance, reverse=True)
