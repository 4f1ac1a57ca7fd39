"""Matching chain: each strategy on its own, then the ordered chain."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from hooktrail.engine.matching import (
    default_matchers,
    match_by_correlation_id,
    match_by_exact_description,
    match_by_fuzzy_description,
    match_by_timestamp_proximity,
    run_matchers,
    significant_tokens,
    token_overlap,
)
from hooktrail.engine.models import ActivityRecord, Completion

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def _record(rid: str, description: str, *, tool: str = "Task", start: datetime = T0,
            correlation_id: str | None = None) -> ActivityRecord:
    return ActivityRecord(
        id=rid,
        session_id="s1",
        start_time=start,
        description=description,
        tools_used=[tool],
        correlation_id=correlation_id,
    )


def _completion(description: str | None, *, tool: str = "Task", at: datetime = T0,
                correlation_id: str | None = None) -> Completion:
    return Completion(
        session_id="s1",
        timestamp=at,
        description=description,
        tool_name=tool,
        correlation_id=correlation_id,
    )


# ── Strategy 1: correlation id ──


def test_correlation_id_match():
    a = _record("a", "Same", correlation_id="corr-1")
    b = _record("b", "Same", correlation_id="corr-2")
    assert match_by_correlation_id(_completion("Same", correlation_id="corr-2"), [a, b]) is b
    assert match_by_correlation_id(_completion("Same"), [a, b]) is None


# ── Strategy 2: exact description ──


def test_exact_description_prefers_oldest():
    a = _record("a", "Run tests")
    b = _record("b", "Run tests", start=T0 + timedelta(seconds=5))
    assert match_by_exact_description(_completion("Run tests"), [a, b]) is a
    assert match_by_exact_description(_completion(None), [a, b]) is None


# ── Strategy 3: fuzzy description ──


def test_significant_tokens_drop_short_words():
    assert significant_tokens("Fix the DB bug in app") == []
    assert significant_tokens("Refactor the pooling") == ["refactor", "pooling"]


def test_fuzzy_accepts_seventy_percent_overlap():
    record = _record("a", "Refactor database connection pooling logic")
    completion = _completion("Refactor database connection pooling")
    assert token_overlap(completion.description, record.description) == 1.0
    assert match_by_fuzzy_description(completion, [record]) is record


def test_fuzzy_rejects_low_overlap():
    record = _record("a", "Refactor database connection pooling logic")
    completion = _completion("Refactor rendering pipeline tests")
    assert match_by_fuzzy_description(completion, [record]) is None


def test_fuzzy_threshold_is_inclusive():
    # 7 of 10 significant tokens present.
    record = _record("a", "alpha bravo charlie delta echoes foxtrot golfer")
    completion = _completion(
        "alpha bravo charlie delta echoes foxtrot golfer hotel india juliet"
    )
    assert match_by_fuzzy_description(completion, [record]) is record


def test_fuzzy_requires_significant_tokens():
    record = _record("a", "a b c")
    assert match_by_fuzzy_description(_completion("a b c"), [record]) is None


def test_fuzzy_tie_goes_to_most_recent_start():
    older = _record("old", "Update user profile page")
    newer = _record("new", "Update user profile page styles", start=T0 + timedelta(seconds=3))
    completion = _completion("Update profile page")
    assert match_by_fuzzy_description(completion, [older, newer]) is newer


# ── Strategy 4: timestamp proximity ──


def test_proximity_within_window():
    record = _record("a", "Bash: ls -la", tool="Bash")
    completion = _completion(None, tool="Bash", at=T0 + timedelta(seconds=10))
    assert match_by_timestamp_proximity(completion, [record]) is record


def test_proximity_outside_window():
    record = _record("a", "Bash: ls -la", tool="Bash")
    completion = _completion(None, tool="Bash", at=T0 + timedelta(seconds=45))
    assert match_by_timestamp_proximity(completion, [record]) is None


def test_proximity_requires_same_tool():
    record = _record("a", "Read: main.py", tool="Read")
    completion = _completion(None, tool="Bash", at=T0 + timedelta(seconds=1))
    assert match_by_timestamp_proximity(completion, [record]) is None


def test_proximity_picks_latest_start():
    first = _record("a", "Bash: one", tool="Bash")
    second = _record("b", "Bash: two", tool="Bash", start=T0 + timedelta(seconds=5))
    completion = _completion(None, tool="Bash", at=T0 + timedelta(seconds=8))
    assert match_by_timestamp_proximity(completion, [first, second]) is second


# ── Chain ──


def test_chain_order_and_names():
    matchers = default_matchers()
    assert [name for name, _ in matchers] == [
        "correlation_id",
        "exact_description",
        "fuzzy_description",
        "timestamp_proximity",
    ]


def test_chain_correlation_beats_description():
    by_description = _record("a", "Write docs")
    by_id = _record("b", "Something else", correlation_id="corr-9")
    completion = _completion("Write docs", correlation_id="corr-9")
    record, strategy = run_matchers(completion, [by_description, by_id], default_matchers())
    assert record is by_id
    assert strategy == "correlation_id"


def test_chain_reports_no_match():
    record, strategy = run_matchers(_completion("Nothing"), [], default_matchers())
    assert record is None
    assert strategy is None


def test_chain_uses_configured_window():
    record = _record("a", "Bash: ls", tool="Bash")
    completion = _completion(None, tool="Bash", at=T0 + timedelta(seconds=45))
    found, strategy = run_matchers(
        completion, [record], default_matchers(proximity_window_seconds=60),
    )
    assert found is record
    assert strategy == "timestamp_proximity"
