"""
Local filesystem storage for threads.

One base directory holds the thread files plus a single JSON index
mapping thread id to descriptor. The index is the source of truth for
what is stored:

- It is loaded lazily on the first operation and cached in memory for
  the lifetime of the LocalStore instance.
- Every change is flushed to disk before the operation returns.
- A descriptor whose file has disappeared is dropped (and the index
  flushed) the next time get() touches it.

There is no locking. Two instances on the same directory race and the
last index flush wins, so use one writer at a time.
"""

import json
import logging
import re
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..formatters import get_formatter
from ..types import (
    DEFAULT_TITLE,
    SaveOptions,
    Thread,
    ThreadDescriptor,
    parse_utc_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)

INDEX_FILENAME = ".conversation-index.json"
MAX_FILENAME_STEM = 100

_UNSAFE_RUN_RE = re.compile(r"[^a-z0-9]+")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def sanitize_filename(title: str) -> str:
    """Filesystem-safe stem: lowercase, runs of non [a-z0-9] become '-'."""
    return _UNSAFE_RUN_RE.sub("-", title.lower()).strip("-")[:MAX_FILENAME_STEM]


def _saved_at_key(descriptor: ThreadDescriptor) -> datetime:
    try:
        return parse_utc_timestamp(descriptor.saved_at)
    except ValueError:
        return _EPOCH


def _reconcile(thread: Thread, descriptor: ThreadDescriptor) -> Thread:
    """
    Index entry wins over the file for identity.

    Files written without metadata carry no id (Markdown) or no title
    (JSON); the parser fills those with a fresh id and DEFAULT_TITLE.
    """
    metadata = thread.metadata
    if metadata.title == DEFAULT_TITLE and descriptor.title != DEFAULT_TITLE:
        metadata = replace(metadata, title=descriptor.title)
    if metadata.source_app is None and descriptor.source_app is not None:
        metadata = replace(metadata, source_app=descriptor.source_app)
    if thread.id == descriptor.id and metadata is thread.metadata:
        return thread
    return replace(thread, id=descriptor.id, metadata=metadata)


class LocalStore:
    """
    Index-backed thread store on the local filesystem.

    Layout:
        {base_dir}/.conversation-index.json
        {base_dir}/{sanitized-title}-{id[:8]}{extension}
    """

    def __init__(self, base_dir: Path):
        """
        Args:
            base_dir: Directory for thread files and the index (created on demand)
        """
        self._base_dir = Path(base_dir)
        self._index_path = self._base_dir / INDEX_FILENAME
        self._index: dict[str, ThreadDescriptor] = {}
        self._loaded = False

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    @property
    def index_path(self) -> Path:
        return self._index_path

    # -------------------------------------------------------------------------
    # Index
    # -------------------------------------------------------------------------

    def _load_index(self) -> None:
        """Read the index file once per instance, creating the directory."""
        if self._loaded:
            return

        self._base_dir.mkdir(parents=True, exist_ok=True)

        try:
            raw = self._index_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            self._index = {}
        else:
            entries = json.loads(raw)
            self._index = {}
            for entry in entries:
                descriptor = ThreadDescriptor.from_dict(entry)
                self._index[descriptor.id] = descriptor
            logger.debug("Loaded index with %d entries from %s", len(self._index), self._index_path)

        self._loaded = True

    def _flush_index(self) -> None:
        entries = [d.to_dict() for d in self._index.values()]
        self._index_path.write_text(json.dumps(entries, indent=2, ensure_ascii=False), encoding="utf-8")

    # -------------------------------------------------------------------------
    # Storage contract
    # -------------------------------------------------------------------------

    def save(self, thread: Thread, options: SaveOptions) -> ThreadDescriptor:
        """
        Write the thread file and upsert its descriptor.

        Re-saving an id replaces the descriptor but does not remove the
        previous file; callers replacing a thread delete it first.
        """
        self._load_index()

        formatter = get_formatter(options.format)
        content = formatter.serialize(thread, options)

        filename = f"{sanitize_filename(thread.metadata.title)}-{thread.id[:8]}{formatter.extension}"
        file_path = self._base_dir / filename
        file_path.write_text(content, encoding="utf-8")

        descriptor = ThreadDescriptor(
            id=thread.id,
            title=thread.metadata.title,
            format=options.format,
            saved_at=utc_now(),
            file_path=str(file_path),
            source_app=thread.metadata.source_app,
        )
        self._index[thread.id] = descriptor
        self._flush_index()

        logger.info("Saved thread %s to %s", thread.id, file_path)
        return descriptor

    def list(self) -> list[ThreadDescriptor]:
        """All descriptors, most recently saved first (stable for ties)."""
        self._load_index()
        return sorted(self._index.values(), key=_saved_at_key, reverse=True)

    def get(self, id: str) -> Optional[Thread]:
        """
        Read and parse a thread.

        A descriptor whose file is missing is removed from the index and
        None is returned. Other read errors propagate.
        """
        self._load_index()

        descriptor = self._index.get(id)
        if descriptor is None or not descriptor.file_path:
            return None

        try:
            content = Path(descriptor.file_path).read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.warning("Thread file missing for %s (%s); dropping index entry",
                           id, descriptor.file_path)
            del self._index[id]
            self._flush_index()
            return None

        thread = get_formatter(descriptor.format).deserialize(content)
        return _reconcile(thread, descriptor)

    def delete(self, id: str) -> bool:
        """Remove the thread file (tolerating its absence) and index entry."""
        self._load_index()

        descriptor = self._index.get(id)
        if descriptor is None:
            return False

        if descriptor.file_path:
            try:
                Path(descriptor.file_path).unlink()
            except FileNotFoundError:
                logger.debug("Thread file already gone: %s", descriptor.file_path)

        del self._index[id]
        self._flush_index()

        logger.info("Deleted thread %s", id)
        return True

    # -------------------------------------------------------------------------
    # Extras
    # -------------------------------------------------------------------------

    def file_path(self, id: str) -> Optional[Path]:
        """Path of the file backing a thread, if indexed."""
        self._load_index()
        descriptor = self._index.get(id)
        if descriptor is None or not descriptor.file_path:
            return None
        return Path(descriptor.file_path)

    def __repr__(self) -> str:
        return f"LocalStore({str(self._base_dir)!r})"
