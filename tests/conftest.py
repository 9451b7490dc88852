"""
Shared pytest fixtures for thread-mcp tests.

Provides an in-memory store that records fetches, thread builders, and a
ThreadKeeper rooted in a temporary directory.
"""

from typing import Optional

import pytest

from thread_mcp.api import ThreadKeeper
from thread_mcp.config import ServerConfig
from thread_mcp.storage import LocalStore
from thread_mcp.types import (
    Message,
    SaveOptions,
    Thread,
    ThreadDescriptor,
    ThreadMetadata,
    new_thread_id,
)


def make_thread(
    title: str = "Demo",
    messages: Optional[list[tuple[str, str]]] = None,
    *,
    id: Optional[str] = None,
    tags: Optional[list[str]] = None,
    summary: Optional[str] = None,
    source_app: Optional[str] = None,
    created_at: str = "2026-01-15T10:00:00.000000Z",
) -> Thread:
    """Build a thread from (role, content) pairs."""
    if messages is None:
        messages = [("user", "hi"), ("assistant", "hello")]
    return Thread(
        id=id or new_thread_id(),
        metadata=ThreadMetadata(
            title=title,
            created_at=created_at,
            source_app=source_app,
            tags=tags,
            summary=summary,
        ),
        messages=[Message(role=r, content=c) for r, c in messages],
    )


class MemoryStore:
    """
    In-memory StorageProvider for engine tests.

    list() returns descriptors in insertion order reversed (most recent
    first) with caller-chosen savedAt values; get() calls are recorded.
    """

    def __init__(self):
        self.threads: dict[str, Thread] = {}
        self.descriptors: list[ThreadDescriptor] = []
        self.get_calls: list[str] = []
        self.deleted: list[str] = []
        self.saved: list[tuple[Thread, SaveOptions]] = []

    def add(self, thread: Thread, saved_at: str = "2026-01-15T10:00:00Z",
            format: str = "markdown") -> ThreadDescriptor:
        self.threads[thread.id] = thread
        descriptor = ThreadDescriptor(
            id=thread.id, title=thread.title, format=format,
            saved_at=saved_at, file_path=f"/mem/{thread.id}",
        )
        self.descriptors.insert(0, descriptor)
        return descriptor

    def save(self, thread: Thread, options: SaveOptions) -> ThreadDescriptor:
        self.saved.append((thread, options))
        self.descriptors = [d for d in self.descriptors if d.id != thread.id]
        return self.add(thread, saved_at="2026-02-01T00:00:00Z", format=options.format)

    def list(self):
        return list(self.descriptors)

    def get(self, id: str) -> Optional[Thread]:
        self.get_calls.append(id)
        return self.threads.get(id)

    def delete(self, id: str) -> bool:
        self.deleted.append(id)
        if id not in self.threads:
            return False
        del self.threads[id]
        self.descriptors = [d for d in self.descriptors if d.id != id]
        return True


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def store_dir(tmp_path):
    return tmp_path / "threads"


@pytest.fixture
def local_store(store_dir):
    return LocalStore(store_dir)


@pytest.fixture
def config(store_dir):
    return ServerConfig(storage_dir=store_dir)


@pytest.fixture
def keeper(config):
    return ThreadKeeper(config)
