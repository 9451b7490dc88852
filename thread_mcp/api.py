"""
ThreadKeeper: save, find, update, delete and resume saved threads.

Every operation picks a store from a StoreTarget (tool parameters) layered
over the ServerConfig, runs against the StorageProvider protocol, and
returns a JSON-ready dict with camelCase keys.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional, Sequence, Union

from .config import ServerConfig
from .errors import ValidationError
from .resume import (
    RESUME_MESSAGES,
    RESUME_NARRATIVE,
    RESUME_STRUCTURED,
    format_narrative,
    format_structured,
    last_messages,
    validate_resume_format,
)
from .search import (
    ID_LOOKUP_SCORE,
    FindCriteria,
    Relevance,
    describe_relevance,
    find_by_title,
    find_by_title_contains,
    find_descriptor,
    search_threads,
)
from .storage import LocalStore, RemoteStore, StorageProvider
from .types import (
    FORMAT_MARKDOWN,
    SOURCE_REMOTE,
    Message,
    SaveOptions,
    Thread,
    ThreadDescriptor,
    ThreadMetadata,
    new_thread_id,
    utc_now,
    validate_format,
)
from .update import (
    MODE_APPEND,
    UPDATE_MODES,
    apply_update,
    count_messages_added,
    persist_update,
)

logger = logging.getLogger(__name__)

MessageInput = Union[Message, Mapping[str, Any]]


@dataclass
class StoreTarget:
    """Per-call store selection. Unset fields fall back to the config."""
    source: Optional[str] = None
    output_dir: Optional[str] = None
    remote_url: Optional[str] = None
    api_key: Optional[str] = None
    headers: Optional[dict[str, str]] = None


def _coerce_messages(messages: Sequence[MessageInput]) -> list[Message]:
    return [m if isinstance(m, Message) else Message.from_dict(dict(m)) for m in messages]


def _location(descriptor: ThreadDescriptor) -> dict[str, str]:
    if descriptor.remote_url is not None:
        return {"remoteUrl": descriptor.remote_url}
    if descriptor.file_path is not None:
        return {"filePath": descriptor.file_path}
    return {}


def _thread_summary(
    thread: Thread,
    descriptor: Optional[ThreadDescriptor],
    include_content: bool,
    relevance: Optional[Relevance],
) -> dict[str, Any]:
    """Search result entry: metadata, location and optional extras."""
    meta = thread.metadata
    d: dict[str, Any] = {"id": thread.id, "title": meta.title}
    if meta.source_app is not None:
        d["sourceApp"] = meta.source_app
    d["createdAt"] = meta.created_at
    if meta.updated_at is not None:
        d["updatedAt"] = meta.updated_at
    if meta.tags is not None:
        d["tags"] = list(meta.tags)
    if meta.summary is not None:
        d["summary"] = meta.summary
    if descriptor is not None:
        d.update(_location(descriptor))
        d["format"] = descriptor.format
    else:
        d["format"] = FORMAT_MARKDOWN
    if relevance is not None:
        d["relevance"] = relevance.to_dict()
    if include_content:
        d["content"] = {"messages": [m.to_dict() for m in thread.messages]}
    return d


class ThreadKeeper:
    """
    Thread persistence service.

    Local stores are cached per directory so each directory's index is
    loaded once per process. Remote stores are built per call.

    Example:
        keeper = ThreadKeeper(load_config())
        saved = keeper.save_thread("Demo", [{"role": "user", "content": "hi"}])
        keeper.resume_thread(id=saved["id"], format="narrative")
    """

    def __init__(self, config: Optional[ServerConfig] = None):
        self._config = config or ServerConfig()
        self._local_stores: dict[Path, LocalStore] = {}

    @property
    def config(self) -> ServerConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Store resolution
    # -------------------------------------------------------------------------

    def local_store(self, directory: Optional[Path] = None) -> LocalStore:
        """Cached LocalStore for a directory (default: the configured one)."""
        path = Path(directory or self._config.storage_dir).expanduser().resolve()
        store = self._local_stores.get(path)
        if store is None:
            store = LocalStore(path)
            self._local_stores[path] = store
        return store

    def open_store(self, target: Optional[StoreTarget] = None) -> tuple[str, StorageProvider]:
        """
        Resolve the store for a call.

        Returns:
            (source name, store)

        Raises:
            ValidationError: Blocked directory or URL, or a remote source
                without a remote URL
        """
        target = target or StoreTarget()
        source = self._config.resolve_source(target.source)

        if source == SOURCE_REMOTE:
            url = self._config.resolve_remote_url(target.remote_url)
            if not url:
                raise ValidationError(
                    "Remote URL is required when source is 'remote'. "
                    "Set THREAD_MCP_REMOTE_URL or provide remote_url."
                )
            return source, RemoteStore(
                url,
                api_key=self._config.resolve_api_key(target.api_key),
                headers=self._config.resolve_headers(target.headers),
                timeout=self._config.remote_timeout,
            )

        return source, self.local_store(self._config.resolve_storage_dir(target.output_dir))

    @contextmanager
    def _store(self, target: Optional[StoreTarget]) -> Iterator[tuple[str, StorageProvider]]:
        source, store = self.open_store(target)
        try:
            yield source, store
        finally:
            if isinstance(store, RemoteStore):
                store.close()

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def save_thread(
        self,
        title: str,
        messages: Sequence[MessageInput],
        *,
        source_app: Optional[str] = None,
        tags: Optional[list[str]] = None,
        summary: Optional[str] = None,
        format: Optional[str] = None,
        include_metadata: bool = True,
        include_timestamps: bool = True,
        target: Optional[StoreTarget] = None,
    ) -> dict[str, Any]:
        """Save a new thread under a fresh id."""
        thread = Thread(
            id=new_thread_id(),
            metadata=ThreadMetadata(
                title=title,
                created_at=utc_now(),
                source_app=source_app,
                tags=list(tags) if tags is not None else None,
                summary=summary,
            ),
            messages=_coerce_messages(messages),
        )
        options = SaveOptions(
            format=self._config.resolve_format(format),
            include_metadata=include_metadata,
            include_timestamps=include_timestamps,
        )

        with self._store(target) as (source, store):
            descriptor = store.save(thread, options)

        return {
            "success": True,
            "id": descriptor.id,
            "title": descriptor.title,
            "destination": source,
            **_location(descriptor),
            "format": descriptor.format,
            "savedAt": descriptor.saved_at,
            "messageCount": len(thread.messages),
        }

    def list_threads(self, target: Optional[StoreTarget] = None) -> dict[str, Any]:
        """Index entries only, most recently saved first."""
        with self._store(target) as (source, store):
            descriptors = store.list()
        return {
            "source": source,
            "totalResults": len(descriptors),
            "threads": [d.to_dict() for d in descriptors],
        }

    def find_threads(
        self,
        criteria: Optional[FindCriteria] = None,
        *,
        id: Optional[str] = None,
        include_content: bool = False,
        include_relevance_info: bool = True,
        target: Optional[StoreTarget] = None,
    ) -> dict[str, Any]:
        """
        Look up one thread by id, or search with criteria.

        With an id the criteria are ignored. Otherwise matches are scanned
        in most-recent-first order, up to criteria.limit.
        """
        criteria = criteria or FindCriteria()
        if criteria.limit < 1:
            raise ValidationError("limit must be a positive integer")

        with self._store(target) as (source, store):
            if id:
                return self._find_by_id(store, source, id, include_content, include_relevance_info)

            matches = search_threads(store, criteria, include_relevance=include_relevance_info)

        return {
            "source": source,
            "totalResults": len(matches),
            "filters": criteria.to_dict(),
            "threads": [
                _thread_summary(m.thread, m.descriptor, include_content, m.relevance)
                for m in matches
            ],
        }

    def _find_by_id(
        self,
        store: StorageProvider,
        source: str,
        id: str,
        include_content: bool,
        include_relevance_info: bool,
    ) -> dict[str, Any]:
        thread = store.get(id)
        if thread is None:
            return {"found": False, "id": id, "source": source}

        descriptor = find_descriptor(store, id)
        relevance = None
        if include_relevance_info and descriptor is not None:
            relevance = describe_relevance(thread, descriptor, ID_LOOKUP_SCORE, ["id"])

        return {
            "found": True,
            "source": source,
            "thread": _thread_summary(thread, descriptor, include_content, relevance),
        }

    def locate(
        self,
        *,
        id: Optional[str] = None,
        title: Optional[str] = None,
        target: Optional[StoreTarget] = None,
    ) -> Optional[Thread]:
        """The stored thread with this id, or the first with this exact title."""
        if not id and not title:
            raise ValidationError("Either 'id' or 'title' must be provided to identify the thread")
        with self._store(target) as (_, store):
            if id:
                return store.get(id)
            found = find_by_title(store, title)
            return found[1] if found else None

    def update_thread(
        self,
        messages: Sequence[MessageInput],
        *,
        id: Optional[str] = None,
        title: Optional[str] = None,
        mode: str = MODE_APPEND,
        deduplicate: bool = True,
        new_title: Optional[str] = None,
        new_tags: Optional[list[str]] = None,
        new_summary: Optional[str] = None,
        format: Optional[str] = None,
        target: Optional[StoreTarget] = None,
    ) -> dict[str, Any]:
        """
        Append to or replace a thread's messages and override metadata.

        The thread is found by id, else by exact title. The stored copy is
        deleted and the updated thread saved under the same id.
        """
        if not id and not title:
            raise ValidationError("Either 'id' or 'title' must be provided to identify the thread")
        if mode not in UPDATE_MODES:
            raise ValidationError(f"Unknown update mode {mode!r} (expected one of: {', '.join(UPDATE_MODES)})")
        incoming = _coerce_messages(messages)

        with self._store(target) as (source, store):
            descriptor: Optional[ThreadDescriptor] = None
            if id:
                existing = store.get(id)
                if existing is None:
                    return {
                        "success": False,
                        "error": f"Thread with ID '{id}' not found",
                        "id": id,
                        "source": source,
                    }
                descriptor = find_descriptor(store, id)
            else:
                found = find_by_title(store, title)
                if found is None:
                    return {
                        "success": False,
                        "error": f"Thread with title '{title}' not found",
                        "source": source,
                    }
                descriptor, existing = found

            updated = apply_update(
                existing, incoming, mode, deduplicate,
                new_title=new_title, new_tags=new_tags, new_summary=new_summary,
            )
            saved = persist_update(
                store, updated, descriptor,
                format=validate_format(format) if format else None,
            )

        return {
            "success": True,
            "id": saved.id,
            "title": updated.metadata.title,
            "source": source,
            **_location(saved),
            "format": saved.format,
            "savedAt": saved.saved_at,
            "messageCount": len(updated.messages),
            "messagesAdded": count_messages_added(existing, updated, mode),
            "mode": mode,
        }

    def delete_thread(
        self,
        *,
        id: Optional[str] = None,
        title: Optional[str] = None,
        target: Optional[StoreTarget] = None,
    ) -> dict[str, Any]:
        """Delete a thread by id, or the first with an exact title."""
        if not id and not title:
            raise ValidationError("Either 'id' or 'title' must be provided to identify the thread")

        with self._store(target) as (source, store):
            if id:
                thread = store.get(id)
                thread_title = thread.metadata.title if thread is not None else None
            else:
                found = find_by_title(store, title)
                if found is None:
                    return {
                        "deleted": False,
                        "error": f"Thread with title '{title}' not found",
                        "source": source,
                    }
                id, thread_title = found[0].id, found[1].metadata.title

            deleted = store.delete(id)

        result: dict[str, Any] = {"deleted": deleted, "id": id}
        if thread_title is not None:
            result["title"] = thread_title
        result["source"] = source
        return result

    def resume_thread(
        self,
        *,
        id: Optional[str] = None,
        title: Optional[str] = None,
        title_contains: Optional[str] = None,
        format: str = RESUME_STRUCTURED,
        max_messages: Optional[int] = None,
        include_summary: bool = True,
        target: Optional[StoreTarget] = None,
    ) -> dict[str, Any]:
        """
        Load a thread for continuation.

        Lookup precedence is id, then exact title, then the most recently
        saved thread whose title contains title_contains.
        """
        if not id and not title and not title_contains:
            raise ValidationError("One of 'id', 'title', or 'title_contains' must be provided")
        validate_resume_format(format)
        if max_messages is not None and max_messages < 1:
            raise ValidationError("max_messages must be a positive integer")

        with self._store(target) as (source, store):
            thread: Optional[Thread] = None
            if id:
                thread = store.get(id)
                lookup = f"ID '{id}'"
            else:
                if title:
                    found = find_by_title(store, title)
                    lookup = f"title '{title}'"
                else:
                    found = find_by_title_contains(store, title_contains)
                    lookup = f"title containing '{title_contains}'"
                if found is not None:
                    thread = found[1]

        if thread is None:
            return {"found": False, "error": f"Thread not found with {lookup}", "source": source}

        total = len(thread.messages)

        if format == RESUME_MESSAGES:
            return {
                "found": True,
                "id": thread.id,
                "title": thread.metadata.title,
                "source": source,
                "format": RESUME_MESSAGES,
                "messages": [m.to_dict() for m in last_messages(thread, max_messages)],
                "totalMessages": total,
            }

        if format == RESUME_NARRATIVE:
            return {
                "found": True,
                "id": thread.id,
                "title": thread.metadata.title,
                "source": source,
                "format": RESUME_NARRATIVE,
                "content": format_narrative(thread, max_messages, include_summary),
                "totalMessages": total,
            }

        return {
            "found": True,
            "id": thread.id,
            "source": source,
            "format": RESUME_STRUCTURED,
            **format_structured(thread, max_messages, include_summary),
            "totalMessages": total,
        }
