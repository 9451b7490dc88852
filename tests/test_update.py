"""Tests for message merging, metadata overrides and update persistence."""

from conftest import make_thread

from thread_mcp.types import Message
from thread_mcp.update import (
    apply_update,
    count_messages_added,
    deduplicate_messages,
    merge_messages,
    persist_update,
)


def _pairs(messages):
    return [(m.role, m.content) for m in messages]


class TestMerge:

    def test_dedup_drops_known_messages(self):
        existing = [Message("user", "hi"), Message("assistant", "hello")]
        incoming = [Message("user", "hi", "2026-01-01T00:00:00Z"), Message("user", "bye")]
        assert _pairs(deduplicate_messages(existing, incoming)) == [("user", "bye")]

    def test_dedup_is_idempotent(self):
        existing = [Message("user", "hi")]
        incoming = [Message("user", "hi"), Message("assistant", "new")]
        once = merge_messages(existing, incoming)
        twice = merge_messages(once, incoming)
        assert once == twice
        assert _pairs(once) == [("user", "hi"), ("assistant", "new")]

    def test_same_content_different_role_is_new(self):
        existing = [Message("user", "ok")]
        merged = merge_messages(existing, [Message("assistant", "ok")])
        assert _pairs(merged) == [("user", "ok"), ("assistant", "ok")]

    def test_append_without_dedup(self):
        existing = [Message("user", "hi")]
        merged = merge_messages(existing, [Message("user", "hi")], deduplicate=False)
        assert _pairs(merged) == [("user", "hi"), ("user", "hi")]

    def test_replace(self):
        existing = [Message("user", "hi"), Message("assistant", "hello")]
        incoming = [Message("system", "reset")]
        assert merge_messages(existing, incoming, mode="replace") == incoming


class TestApplyUpdate:

    def test_append_scenario(self):
        existing = make_thread("Demo", [("user", "hi"), ("assistant", "hello")],
                               source_app="Claude", tags=["a"], summary="old")
        incoming = [Message("assistant", "hello"), Message("user", "how are you?")]
        updated = apply_update(existing, incoming)

        assert _pairs(updated.messages) == [
            ("user", "hi"), ("assistant", "hello"), ("user", "how are you?"),
        ]
        assert count_messages_added(existing, updated, "append") == 1
        assert updated.id == existing.id
        assert updated.metadata.created_at == existing.metadata.created_at
        assert updated.metadata.source_app == "Claude"
        assert updated.metadata.tags == ["a"]
        assert updated.metadata.summary == "old"
        assert updated.metadata.updated_at is not None

    def test_overrides_are_independent(self):
        existing = make_thread("Demo", tags=["a"], summary="old")
        updated = apply_update(existing, [], new_title="Renamed", new_tags=["b", "c"])
        assert updated.metadata.title == "Renamed"
        assert updated.metadata.tags == ["b", "c"]
        assert updated.metadata.summary == "old"

    def test_existing_thread_not_mutated(self):
        existing = make_thread("Demo")
        apply_update(existing, [Message("user", "more")], new_title="X")
        assert existing.title == "Demo"
        assert len(existing.messages) == 2
        assert existing.metadata.updated_at is None

    def test_replace_counts_all(self):
        existing = make_thread("Demo", [("user", "a"), ("user", "b"), ("user", "c")])
        updated = apply_update(existing, [Message("user", "z")], mode="replace")
        assert _pairs(updated.messages) == [("user", "z")]
        assert count_messages_added(existing, updated, "replace") == 1


class TestPersistUpdate:

    def test_delete_then_save_with_original_format(self, memory_store):
        thread = make_thread("Demo")
        descriptor = memory_store.add(thread, format="json")
        persist_update(memory_store, thread, descriptor)

        assert memory_store.deleted == [thread.id]
        [(saved, options)] = memory_store.saved
        assert saved is thread
        assert options.format == "json"
        assert options.include_metadata and options.include_timestamps

    def test_format_override(self, memory_store):
        thread = make_thread("Demo")
        descriptor = memory_store.add(thread, format="json")
        result = persist_update(memory_store, thread, descriptor, format="markdown")
        assert result.format == "markdown"

    def test_default_markdown(self, memory_store):
        thread = make_thread("Demo")
        memory_store.add(thread)
        result = persist_update(memory_store, thread)
        assert result.format == "markdown"
