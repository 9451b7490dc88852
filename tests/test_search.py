"""Tests for filtering, relevance scoring and the limit-truncated scan."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_thread

from thread_mcp.errors import ValidationError
from thread_mcp.search import (
    FindCriteria,
    age_in_days,
    calculate_relevance,
    count_words,
    extract_topic_hints,
    find_by_title,
    find_by_title_contains,
    matches_filters,
    search_threads,
)
from thread_mcp.types import ThreadDescriptor

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _ago(days: float) -> str:
    return (NOW - timedelta(days=days)).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _descriptor(thread, days_ago: float = 100) -> ThreadDescriptor:
    return ThreadDescriptor(id=thread.id, title=thread.title, format="markdown", saved_at=_ago(days_ago))


class TestMatchesFilters:

    def test_no_criteria_matches_everything(self):
        assert matches_filters(make_thread(), FindCriteria())

    def test_exact_title(self):
        thread = make_thread("Async Python")
        assert matches_filters(thread, FindCriteria(title="Async Python"))
        assert not matches_filters(thread, FindCriteria(title="async python"))

    def test_title_contains_is_case_insensitive(self):
        thread = make_thread("Async Python")
        assert matches_filters(thread, FindCriteria(title_contains="PYTHON"))
        assert not matches_filters(thread, FindCriteria(title_contains="rust"))

    def test_tags_all_required_case_insensitive(self):
        thread = make_thread(tags=["Python", "async"])
        assert matches_filters(thread, FindCriteria(tags=["python"]))
        assert matches_filters(thread, FindCriteria(tags=["python", "ASYNC"]))
        assert not matches_filters(thread, FindCriteria(tags=["python", "rust"]))

    def test_tags_are_exact_not_substring(self):
        assert not matches_filters(make_thread(tags=["python3"]), FindCriteria(tags=["python"]))

    def test_untagged_thread_fails_tag_filter(self):
        assert not matches_filters(make_thread(tags=None), FindCriteria(tags=["python"]))

    def test_source_app(self):
        thread = make_thread(source_app="Claude")
        assert matches_filters(thread, FindCriteria(source_app="Claude"))
        assert not matches_filters(thread, FindCriteria(source_app="ChatGPT"))

    def test_date_range_inclusive(self):
        thread = make_thread(created_at="2026-01-15T10:00:00Z")
        assert matches_filters(thread, FindCriteria(date_from="2026-01-15T10:00:00Z",
                                                    date_to="2026-01-15T10:00:00Z"))
        assert matches_filters(thread, FindCriteria(date_from="2026-01-01", date_to="2026-02-01"))
        assert not matches_filters(thread, FindCriteria(date_from="2026-01-16"))
        assert not matches_filters(thread, FindCriteria(date_to="2026-01-14"))

    def test_unparseable_created_at_excluded(self, caplog):
        thread = make_thread(created_at="last tuesday")
        assert not matches_filters(thread, FindCriteria(date_from="2020-01-01"))
        assert "last tuesday" in caplog.text

    def test_unparseable_created_at_ignored_without_dates(self):
        assert matches_filters(make_thread(created_at="last tuesday"), FindCriteria(query="hi"))

    def test_bad_date_raises(self):
        with pytest.raises(ValidationError):
            matches_filters(make_thread(), FindCriteria(date_from="yesterday"))

    def test_query_matches_title_summary_or_content(self):
        thread = make_thread("Caching", [("user", "What about Redis?")], summary="Talked about TTLs")
        assert matches_filters(thread, FindCriteria(query="caching"))
        assert matches_filters(thread, FindCriteria(query="ttls"))
        assert matches_filters(thread, FindCriteria(query="redis"))
        assert not matches_filters(thread, FindCriteria(query="postgres"))

    def test_criteria_are_anded(self):
        thread = make_thread("Async Python", tags=["python"], source_app="Claude")
        assert matches_filters(thread, FindCriteria(title_contains="async", tags=["python"],
                                                    source_app="Claude"))
        assert not matches_filters(thread, FindCriteria(title_contains="async", tags=["python"],
                                                        source_app="ChatGPT"))


class TestRelevance:

    def test_base_score_without_term(self):
        thread = make_thread()
        assert calculate_relevance(thread, _descriptor(thread), now=NOW) == (50, [])

    def test_recency_bonus(self):
        thread = make_thread()
        assert calculate_relevance(thread, _descriptor(thread, 1), now=NOW)[0] == 60
        assert calculate_relevance(thread, _descriptor(thread, 10), now=NOW)[0] == 55
        assert calculate_relevance(thread, _descriptor(thread, 30), now=NOW)[0] == 50

    def test_all_fields(self):
        thread = make_thread(
            "Python tips", [("user", "python is fun"), ("assistant", "python!")],
            tags=["python3"], summary="python summary",
        )
        score, matched = calculate_relevance(thread, _descriptor(thread), query="Python", now=NOW)
        assert score == 50 + 30 + 20 + 10 + 15
        assert matched == ["title", "summary", "content", "tags"]

    def test_title_contains_skips_content(self):
        thread = make_thread("Python tips", [("user", "python")])
        score, matched = calculate_relevance(
            thread, _descriptor(thread), title_contains="python", now=NOW,
        )
        assert score == 80
        assert matched == ["title"]

    def test_query_takes_precedence_over_title_contains(self):
        thread = make_thread("Python tips", [("user", "about rust")])
        score, matched = calculate_relevance(
            thread, _descriptor(thread), query="rust", title_contains="python", now=NOW,
        )
        assert matched == ["content"]
        assert score == 60


class TestThreadStats:

    def test_word_count(self):
        thread = make_thread(messages=[("user", "one two  three"), ("assistant", "four\nfive")])
        assert count_words(thread) == 5

    def test_topic_hints(self):
        thread = make_thread(
            "Fixing the flaky deploy pipeline",
            [("user", "there is an error"), ("assistant", "```sh\nretry\n```")],
            tags=["ci", "deploy"],
        )
        assert extract_topic_hints(thread) == [
            "ci", "deploy", "fixing", "flaky", "pipeline", "code", "debugging",
        ]

    def test_topic_hints_capped(self):
        tags = [f"tag{i}" for i in range(12)]
        assert len(extract_topic_hints(make_thread(tags=tags))) == 10

    def test_age_in_days(self):
        assert age_in_days(_ago(2.5), NOW) == pytest.approx(2.5)


class TestSearchThreads:

    def test_limit_stops_fetching(self, memory_store):
        threads = [make_thread(f"T{i}") for i in range(5)]
        for t in threads:
            memory_store.add(t)
        results = search_threads(memory_store, FindCriteria(limit=2), now=NOW)
        assert len(results) == 2
        assert len(memory_store.get_calls) == 2

    def test_skips_missing_bodies(self, memory_store):
        present = make_thread("Present")
        memory_store.add(present)
        ghost = make_thread("Ghost")
        memory_store.add(ghost)
        del memory_store.threads[ghost.id]
        results = search_threads(memory_store, FindCriteria(), now=NOW)
        assert [r.thread.id for r in results] == [present.id]

    def test_sorted_by_score_stable(self, memory_store):
        plain_old = make_thread("Alpha notes")
        titled = make_thread("Beta python")
        plain_new = make_thread("Gamma notes", [("user", "python")])
        memory_store.add(plain_old, saved_at=_ago(40))
        memory_store.add(titled, saved_at=_ago(40))
        memory_store.add(plain_new, saved_at=_ago(40))

        results = search_threads(memory_store, FindCriteria(query="python"), now=NOW)
        assert [r.thread.id for r in results] == [titled.id, plain_new.id]
        assert results[0].relevance.score == 80
        assert results[1].relevance.score == 60

        results = search_threads(memory_store, FindCriteria(), now=NOW)
        assert [r.thread.id for r in results] == [plain_new.id, titled.id, plain_old.id]

    def test_title_and_summary_beats_title_only(self, memory_store):
        title_only = make_thread("Redis notes")
        both = make_thread("Redis tuning", summary="Redis eviction policies")
        memory_store.add(both, saved_at=_ago(40))
        memory_store.add(title_only, saved_at=_ago(40))

        results = search_threads(memory_store, FindCriteria(query="redis"), now=NOW)
        assert [r.thread.id for r in results] == [both.id, title_only.id]
        assert results[0].relevance.score > results[1].relevance.score

    def test_unparseable_created_at_skipped_in_scan(self, memory_store):
        good = make_thread("Good")
        memory_store.add(good)
        memory_store.add(make_thread("Bad", created_at="last tuesday"))
        results = search_threads(memory_store, FindCriteria(date_from="2020-01-01"), now=NOW)
        assert [r.thread.id for r in results] == [good.id]

    def test_without_relevance_keeps_list_order(self, memory_store):
        a = make_thread("Aa python")
        b = make_thread("Bb", [("user", "python")])
        memory_store.add(a, saved_at=_ago(40))
        memory_store.add(b, saved_at=_ago(40))
        results = search_threads(memory_store, FindCriteria(query="python"),
                                 include_relevance=False, now=NOW)
        assert [r.thread.id for r in results] == [b.id, a.id]
        assert all(r.relevance is None for r in results)

    def test_relevance_details(self, memory_store):
        thread = make_thread("Deploy", [("user", "a b c")], tags=["ops"])
        memory_store.add(thread, saved_at=_ago(2.6))
        [match] = search_threads(memory_store, FindCriteria(tags=["ops"]), now=NOW)
        assert match.relevance.to_dict() == {
            "score": 60,
            "matchedFields": [],
            "messageCount": 1,
            "wordCount": 3,
            "topicHints": ["ops", "deploy"],
            "ageInDays": 3,
        }

    def test_tag_filter_scenario(self, memory_store):
        both = make_thread("Both", tags=["Python", "async"])
        one = make_thread("One", tags=["python"])
        memory_store.add(both)
        memory_store.add(one)
        results = search_threads(memory_store, FindCriteria(tags=["python", "async"]), now=NOW)
        assert [r.thread.id for r in results] == [both.id]


class TestTitleLookup:

    def test_find_by_title_first_in_list_order(self, memory_store):
        older = make_thread("Same")
        newer = make_thread("Same")
        memory_store.add(older)
        memory_store.add(newer)
        descriptor, thread = find_by_title(memory_store, "Same")
        assert thread.id == newer.id
        assert descriptor.id == newer.id
        assert find_by_title(memory_store, "same") is None

    def test_find_by_title_contains(self, memory_store):
        memory_store.add(make_thread("Redis caching"))
        newer = make_thread("More CACHING ideas")
        memory_store.add(newer)
        _, thread = find_by_title_contains(memory_store, "caching")
        assert thread.id == newer.id
        assert find_by_title_contains(memory_store, "kafka") is None
