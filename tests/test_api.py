"""
Tests for ThreadKeeper operations against a temporary local store.

Covers the save/find/update/delete/resume workflows end to end.
"""

from pathlib import Path

import pytest

from thread_mcp.api import StoreTarget, ThreadKeeper
from thread_mcp.config import ServerConfig
from thread_mcp.errors import ValidationError
from thread_mcp.search import FindCriteria

MESSAGES = [
    {"role": "user", "content": "How do I cache API responses?"},
    {"role": "assistant", "content": "Use Redis with a TTL."},
]


def _save(keeper, title="Caching", messages=MESSAGES, **kwargs):
    return keeper.save_thread(title, messages, **kwargs)


class TestSave:

    def test_result_shape(self, keeper, store_dir):
        result = _save(keeper, source_app="Claude", tags=["redis"])
        assert result["success"] is True
        assert result["title"] == "Caching"
        assert result["destination"] == "local"
        assert result["format"] == "markdown"
        assert result["messageCount"] == 2
        assert result["filePath"].startswith(str(store_dir.resolve()))
        assert result["savedAt"].endswith("Z")

    def test_fresh_ids(self, keeper):
        assert _save(keeper)["id"] != _save(keeper)["id"]

    def test_json_format(self, keeper):
        result = _save(keeper, format="json")
        assert result["filePath"].endswith(".json")

    def test_invalid_message(self, keeper):
        with pytest.raises(ValidationError):
            _save(keeper, messages=[{"role": "user"}])

    def test_output_dir_override(self, keeper, tmp_path):
        other = tmp_path / "other"
        result = _save(keeper, target=StoreTarget(output_dir=str(other)))
        assert result["filePath"].startswith(str(other.resolve()))
        assert keeper.list_threads()["totalResults"] == 0
        assert keeper.list_threads(StoreTarget(output_dir=str(other)))["totalResults"] == 1

    def test_blocked_output_dir(self, keeper):
        with pytest.raises(ValidationError):
            _save(keeper, target=StoreTarget(output_dir="/etc/threads"))

    def test_remote_without_url(self, keeper):
        with pytest.raises(ValidationError, match="Remote URL is required"):
            _save(keeper, target=StoreTarget(source="remote"))

    def test_local_store_cached(self, keeper, store_dir):
        assert keeper.local_store(store_dir) is keeper.local_store(store_dir)


class TestFind:

    def test_by_id(self, keeper):
        saved = _save(keeper, tags=["redis"])
        result = keeper.find_threads(id=saved["id"], include_content=True)
        assert result["found"] is True
        thread = result["thread"]
        assert thread["id"] == saved["id"]
        assert thread["tags"] == ["redis"]
        assert thread["relevance"]["score"] == 100
        assert thread["relevance"]["matchedFields"] == ["id"]
        assert [m["content"] for m in thread["content"]["messages"]] == [
            m["content"] for m in MESSAGES
        ]

    def test_by_id_missing(self, keeper):
        assert keeper.find_threads(id="nope") == {"found": False, "id": "nope", "source": "local"}

    def test_search(self, keeper):
        _save(keeper, "Redis caching")
        _save(keeper, "Kafka streams", [{"role": "user", "content": "consumer groups"}])
        result = keeper.find_threads(FindCriteria(query="redis"))
        assert result["totalResults"] == 1
        assert result["filters"] == {"query": "redis"}
        [entry] = result["threads"]
        assert entry["title"] == "Redis caching"
        assert "content" not in entry
        assert entry["relevance"]["matchedFields"] == ["title", "content"]

    def test_without_relevance(self, keeper):
        _save(keeper)
        [entry] = keeper.find_threads(include_relevance_info=False)["threads"]
        assert "relevance" not in entry

    def test_limit(self, keeper):
        for i in range(4):
            _save(keeper, f"T{i}")
        assert keeper.find_threads(FindCriteria(limit=2))["totalResults"] == 2
        with pytest.raises(ValidationError):
            keeper.find_threads(FindCriteria(limit=0))

    def test_missing_file_is_skipped_and_healed(self, keeper):
        kept = _save(keeper, "Kept")
        gone = _save(keeper, "Gone")
        Path(gone["filePath"]).unlink()

        result = keeper.find_threads()
        assert [t["id"] for t in result["threads"]] == [kept["id"]]
        assert [t["id"] for t in keeper.list_threads()["threads"]] == [kept["id"]]


class TestUpdate:

    def test_append_dedup(self, keeper):
        saved = _save(keeper, source_app="Claude")
        result = keeper.update_thread(
            [MESSAGES[1], {"role": "user", "content": "And invalidation?"}],
            id=saved["id"],
        )
        assert result["success"] is True
        assert result["id"] == saved["id"]
        assert result["messagesAdded"] == 1
        assert result["messageCount"] == 3
        assert result["mode"] == "append"

        resumed = keeper.resume_thread(id=saved["id"], format="messages")
        assert [m["content"] for m in resumed["messages"]][-1] == "And invalidation?"

    def test_by_title_with_overrides(self, keeper):
        saved = _save(keeper, tags=["old"], summary="old summary")
        result = keeper.update_thread(
            [], title="Caching", new_title="Caching 2", new_tags=["new"],
        )
        assert result["title"] == "Caching 2"
        thread = keeper.find_threads(id=saved["id"])["thread"]
        assert thread["title"] == "Caching 2"
        assert thread["tags"] == ["new"]
        assert thread["summary"] == "old summary"
        assert "updatedAt" in thread

    def test_replace(self, keeper):
        saved = _save(keeper)
        result = keeper.update_thread(
            [{"role": "user", "content": "fresh start"}], id=saved["id"], mode="replace",
        )
        assert result["messagesAdded"] == 1
        assert result["messageCount"] == 1

    def test_keeps_original_format(self, keeper):
        saved = _save(keeper, format="json")
        result = keeper.update_thread([{"role": "user", "content": "more"}], id=saved["id"])
        assert result["format"] == "json"
        assert keeper.list_threads()["totalResults"] == 1

    def test_not_found(self, keeper):
        result = keeper.update_thread([], id="nope")
        assert result["success"] is False
        assert result["error"] == "Thread with ID 'nope' not found"
        result = keeper.update_thread([], title="Nope")
        assert result["success"] is False
        assert "Nope" in result["error"]

    def test_requires_identifier(self, keeper):
        with pytest.raises(ValidationError):
            keeper.update_thread([])

    def test_bad_mode(self, keeper):
        saved = _save(keeper)
        with pytest.raises(ValidationError):
            keeper.update_thread([], id=saved["id"], mode="merge")


class TestDelete:

    def test_by_id(self, keeper):
        saved = _save(keeper)
        assert keeper.delete_thread(id=saved["id"]) == {
            "deleted": True, "id": saved["id"], "title": "Caching", "source": "local",
        }
        assert keeper.find_threads(id=saved["id"])["found"] is False

    def test_by_title(self, keeper):
        saved = _save(keeper)
        result = keeper.delete_thread(title="Caching")
        assert result["deleted"] is True
        assert result["id"] == saved["id"]

    def test_missing(self, keeper):
        assert keeper.delete_thread(id="nope") == {"deleted": False, "id": "nope", "source": "local"}
        result = keeper.delete_thread(title="Nope")
        assert result["deleted"] is False
        assert "error" in result

    def test_requires_identifier(self, keeper):
        with pytest.raises(ValidationError):
            keeper.delete_thread()


class TestResume:

    def test_structured(self, keeper):
        saved = _save(keeper, summary="Redis TTLs")
        result = keeper.resume_thread(id=saved["id"])
        assert result["found"] is True
        assert result["format"] == "structured"
        assert result["context"]["summary"] == "Redis TTLs"
        assert result["totalMessages"] == 2
        assert result["continuationHint"].startswith("The assistant last responded")

    def test_narrative_by_title_contains(self, keeper):
        _save(keeper, "Redis caching")
        result = keeper.resume_thread(title_contains="CACHING", format="narrative")
        assert result["content"].startswith("# Resuming: Redis caching")

    def test_messages_truncated(self, keeper):
        saved = _save(keeper)
        result = keeper.resume_thread(id=saved["id"], format="messages", max_messages=1)
        [message] = result["messages"]
        assert (message["role"], message["content"]) == ("assistant", "Use Redis with a TTL.")
        assert result["totalMessages"] == 2

    def test_not_found(self, keeper):
        assert keeper.resume_thread(title="Nope") == {
            "found": False, "error": "Thread not found with title 'Nope'", "source": "local",
        }

    def test_validation(self, keeper):
        with pytest.raises(ValidationError):
            keeper.resume_thread()
        with pytest.raises(ValidationError):
            keeper.resume_thread(id="x", format="html")
        with pytest.raises(ValidationError):
            keeper.resume_thread(id="x", max_messages=0)


class TestConfigDefaults:

    def test_configured_format(self, store_dir):
        keeper = ThreadKeeper(ServerConfig(storage_dir=store_dir, format="json"))
        assert _save(keeper)["format"] == "json"


class TestSavedWithoutMetadata:

    @pytest.mark.parametrize("format", ["markdown", "json"])
    def test_update_by_id_keeps_single_entry(self, keeper, format):
        saved = _save(keeper, format=format, include_metadata=False)
        result = keeper.update_thread(
            [{"role": "user", "content": "And invalidation?"}], id=saved["id"],
        )
        assert result["success"] is True
        assert result["id"] == saved["id"]
        assert [t["id"] for t in keeper.list_threads()["threads"]] == [saved["id"]]
        assert keeper.find_threads(id=saved["id"])["thread"]["title"] == "Caching"

    @pytest.mark.parametrize("format", ["markdown", "json"])
    def test_update_by_title(self, keeper, format):
        saved = _save(keeper, format=format, include_metadata=False)
        result = keeper.update_thread([{"role": "user", "content": "more"}], title="Caching")
        assert result["success"] is True
        assert result["id"] == saved["id"]
        assert keeper.list_threads()["totalResults"] == 1
