"""Completion matching strategies.

Each matcher is a pure function ``(completion, candidates) -> record | None``.
Candidates are the *active* records of the completion's own session, in
registry order (oldest first). The registry evaluates the strategies in
the order returned by :func:`default_matchers` and stops at the first hit.
"""
from __future__ import annotations

import functools
from collections.abc import Callable, Sequence

from .models import ActivityRecord, Completion

Matcher = Callable[[Completion, Sequence[ActivityRecord]], "ActivityRecord | None"]

# Absorbs float error in ratio comparisons (0.7 * 10 != 7.0).
_EPSILON = 1e-9


def match_by_correlation_id(
    completion: Completion, candidates: Sequence[ActivityRecord],
) -> ActivityRecord | None:
    if not completion.correlation_id:
        return None
    for record in candidates:
        if record.correlation_id == completion.correlation_id:
            return record
    return None


def match_by_exact_description(
    completion: Completion, candidates: Sequence[ActivityRecord],
) -> ActivityRecord | None:
    """First (oldest) active record whose description is identical."""
    if not completion.description:
        return None
    for record in candidates:
        if record.description == completion.description:
            return record
    return None


def significant_tokens(text: str, min_length: int = 4) -> list[str]:
    """Lowercased whitespace tokens of at least *min_length* characters."""
    return [t for t in text.lower().split() if len(t) >= min_length]


def token_overlap(description: str, candidate: str, min_length: int = 4) -> float:
    """Share of *description*'s significant tokens present in *candidate*."""
    significant = significant_tokens(description, min_length)
    if not significant:
        return 0.0
    candidate_tokens = set(candidate.lower().split())
    hits = sum(1 for token in significant if token in candidate_tokens)
    return hits / len(significant)


def match_by_fuzzy_description(
    completion: Completion,
    candidates: Sequence[ActivityRecord],
    *,
    threshold: float = 0.7,
    min_token_length: int = 4,
) -> ActivityRecord | None:
    """Best token-overlap match at or above *threshold*.

    Ties on overlap go to the most recently started record.
    """
    if not completion.description:
        return None
    if not significant_tokens(completion.description, min_token_length):
        return None

    best: ActivityRecord | None = None
    best_rank: tuple[float, float] | None = None
    for record in candidates:
        overlap = token_overlap(completion.description, record.description, min_token_length)
        if overlap + _EPSILON < threshold:
            continue
        rank = (overlap, record.start_time.timestamp())
        if best_rank is None or rank > best_rank:
            best, best_rank = record, rank
    return best


def match_by_timestamp_proximity(
    completion: Completion,
    candidates: Sequence[ActivityRecord],
    *,
    window_seconds: float = 30.0,
) -> ActivityRecord | None:
    """Most recently started record of the same tool, begun just before the end."""
    if not completion.tool_name:
        return None
    same_tool = [r for r in candidates if r.declared_tool == completion.tool_name]
    if not same_tool:
        return None
    latest = max(same_tool, key=lambda r: r.start_time)
    elapsed = (completion.timestamp - latest.start_time).total_seconds()
    if 0 <= elapsed < window_seconds:
        return latest
    return None


def default_matchers(
    *,
    fuzzy_threshold: float = 0.7,
    min_token_length: int = 4,
    proximity_window_seconds: float = 30.0,
) -> list[tuple[str, Matcher]]:
    """The ordered matching chain, named for logging."""
    return [
        ("correlation_id", match_by_correlation_id),
        ("exact_description", match_by_exact_description),
        (
            "fuzzy_description",
            functools.partial(
                match_by_fuzzy_description,
                threshold=fuzzy_threshold,
                min_token_length=min_token_length,
            ),
        ),
        (
            "timestamp_proximity",
            functools.partial(
                match_by_timestamp_proximity,
                window_seconds=proximity_window_seconds,
            ),
        ),
    ]


def run_matchers(
    completion: Completion,
    candidates: Sequence[ActivityRecord],
    matchers: Sequence[tuple[str, Matcher]],
) -> tuple[ActivityRecord | None, str | None]:
    """Evaluate *matchers* in order; return the first hit and its strategy name."""
    for name, matcher in matchers:
        record = matcher(completion, candidates)
        if record is not None:
            return record, name
    return None, None
