"""
thread-mcp: save, search and resume conversation threads over MCP.

Threads are stored as Markdown or JSON files with a JSON index, or on a
remote conversation server.

Example:
    from thread_mcp import ThreadKeeper, load_config

    keeper = ThreadKeeper(load_config())
    keeper.save_thread("Demo", [{"role": "user", "content": "hi"}])
"""

__version__ = "0.4.0"

from .api import StoreTarget, ThreadKeeper
from .config import ServerConfig, load_config
from .errors import RemoteStorageError, StorageError, ThreadError, ValidationError
from .search import FindCriteria
from .types import Message, SaveOptions, Thread, ThreadDescriptor, ThreadMetadata

__all__ = [
    "__version__",
    "FindCriteria",
    "Message",
    "RemoteStorageError",
    "SaveOptions",
    "ServerConfig",
    "StorageError",
    "StoreTarget",
    "Thread",
    "ThreadDescriptor",
    "ThreadError",
    "ThreadKeeper",
    "ThreadMetadata",
    "ValidationError",
    "load_config",
]
