"""
Thread update: message merge, metadata overrides and persistence.

An update never edits a thread in place. apply_update() builds a new
Thread value and persist_update() replaces the stored copy by deleting
the old entry and saving the new one. The two steps are not atomic: if
the save fails after the delete succeeded, the thread is gone.
"""

import logging
from dataclasses import replace
from typing import Optional, Sequence

from .storage.base import StorageProvider
from .types import (
    FORMAT_MARKDOWN,
    Message,
    SaveOptions,
    Thread,
    ThreadDescriptor,
    same_message,
    utc_now,
)

logger = logging.getLogger(__name__)

MODE_APPEND = "append"
MODE_REPLACE = "replace"
UPDATE_MODES = (MODE_APPEND, MODE_REPLACE)


def deduplicate_messages(existing: Sequence[Message], incoming: Sequence[Message]) -> list[Message]:
    """Incoming messages whose (role, content) matches no existing message, in order."""
    return [m for m in incoming if not any(same_message(m, e) for e in existing)]


def merge_messages(
    existing: Sequence[Message],
    incoming: Sequence[Message],
    mode: str = MODE_APPEND,
    deduplicate: bool = True,
) -> list[Message]:
    if mode == MODE_REPLACE:
        return list(incoming)
    if deduplicate:
        return list(existing) + deduplicate_messages(existing, incoming)
    return list(existing) + list(incoming)


def count_messages_added(existing: Thread, updated: Thread, mode: str) -> int:
    if mode == MODE_REPLACE:
        return len(updated.messages)
    return len(updated.messages) - len(existing.messages)


def apply_update(
    existing: Thread,
    incoming: Sequence[Message],
    mode: str = MODE_APPEND,
    deduplicate: bool = True,
    new_title: Optional[str] = None,
    new_tags: Optional[list[str]] = None,
    new_summary: Optional[str] = None,
) -> Thread:
    """
    New thread value with merged messages and overridden metadata.

    id, created_at and source_app are kept; updated_at is set to now.
    Title, tags and summary are each replaced only when given.
    """
    metadata = replace(
        existing.metadata,
        title=new_title if new_title is not None else existing.metadata.title,
        tags=list(new_tags) if new_tags is not None else existing.metadata.tags,
        summary=new_summary if new_summary is not None else existing.metadata.summary,
        updated_at=utc_now(),
    )
    return Thread(
        id=existing.id,
        metadata=metadata,
        messages=merge_messages(existing.messages, incoming, mode, deduplicate),
    )


def persist_update(
    store: StorageProvider,
    updated: Thread,
    descriptor: Optional[ThreadDescriptor] = None,
    format: Optional[str] = None,
) -> ThreadDescriptor:
    """
    Replace the stored thread with `updated`.

    The format is the explicit one, else the existing descriptor's, else
    markdown. Metadata and timestamps are always written.
    """
    if format is None:
        format = descriptor.format if descriptor is not None else FORMAT_MARKDOWN
    options = SaveOptions(format=format, include_metadata=True, include_timestamps=True)

    store.delete(updated.id)
    saved = store.save(updated, options)
    logger.debug("Replaced thread %s (%d messages)", updated.id, len(updated.messages))
    return saved
