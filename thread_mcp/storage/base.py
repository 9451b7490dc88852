"""
Storage provider protocol.

Backends implement save/list/get/delete over Threads. The search and
update engines only depend on this protocol, so a new backend (for
example a database) plugs in without touching them.
"""

from typing import Optional, Protocol, runtime_checkable

from ..types import SaveOptions, Thread, ThreadDescriptor


@runtime_checkable
class StorageProvider(Protocol):
    """
    Persists Threads and their descriptors.

    Not-found is reported as data (None / False), never raised.

    Example implementation:
        class MemoryStore:
            def __init__(self):
                self._threads = {}

            def save(self, thread, options):
                self._threads[thread.id] = thread
                return ThreadDescriptor(id=thread.id, title=thread.title,
                                        format=options.format, saved_at=utc_now())

            def list(self):
                ...
    """

    def save(self, thread: Thread, options: SaveOptions) -> ThreadDescriptor:
        """
        Persist a thread, overwriting any descriptor with the same id.

        Returns:
            The new descriptor, with saved_at set to the current time
        """
        ...

    def list(self) -> list[ThreadDescriptor]:
        """All descriptors, most recently saved first."""
        ...

    def get(self, id: str) -> Optional[Thread]:
        """The full thread, or None if it is not stored."""
        ...

    def delete(self, id: str) -> bool:
        """Remove a thread. Returns False if it was not stored."""
        ...
