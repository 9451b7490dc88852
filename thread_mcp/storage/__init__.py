"""Storage backends for saved threads."""

from .base import StorageProvider
from .local import INDEX_FILENAME, LocalStore, sanitize_filename
from .remote import RemoteStore

__all__ = [
    "INDEX_FILENAME",
    "LocalStore",
    "RemoteStore",
    "StorageProvider",
    "sanitize_filename",
]
