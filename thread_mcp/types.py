"""
Data types for saved conversation threads.

Wire dictionaries (thread files, the index file, HTTP bodies and tool
results) use camelCase keys; Python attributes are snake_case.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .errors import ValidationError


MESSAGE_ROLES = ("user", "assistant", "system")

FORMAT_MARKDOWN = "markdown"
FORMAT_JSON = "json"
OUTPUT_FORMATS = (FORMAT_MARKDOWN, FORMAT_JSON)

SOURCE_LOCAL = "local"
SOURCE_REMOTE = "remote"
STORAGE_SOURCES = (SOURCE_LOCAL, SOURCE_REMOTE)

DEFAULT_TITLE = "Untitled Conversation"


def utc_now() -> str:
    """Current UTC timestamp: YYYY-MM-DDTHH:MM:SS.ffffffZ.

    Microsecond precision keeps back-to-back saves ordered by savedAt.
    """
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_utc_timestamp(ts: str) -> datetime:
    """Parse a stored timestamp string to a timezone-aware UTC datetime.

    Accepts 'Z' and '+HH:MM' suffixes, date-only strings and naive
    timestamps (treated as UTC).
    """
    ts = ts.strip().replace("Z", "+00:00").replace("z", "+00:00")
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def new_thread_id() -> str:
    return str(uuid.uuid4())


def validate_format(format: str) -> str:
    if format not in OUTPUT_FORMATS:
        raise ValidationError(
            f"Unknown format {format!r} (expected one of: {', '.join(OUTPUT_FORMATS)})"
        )
    return format


def _require_str(data: dict, key: str, where: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise ValidationError(f"{where}: '{key}' must be a string")
    return value


def _optional_str(data: dict, key: str, where: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{where}: '{key}' must be a string")
    return value


@dataclass(frozen=True)
class Message:
    """A single message. Dedup identity is (role, content); see same_message()."""
    role: str
    content: str
    timestamp: Optional[str] = None

    def __post_init__(self):
        if self.role not in MESSAGE_ROLES:
            raise ValidationError(
                f"Invalid message role {self.role!r} (expected one of: {', '.join(MESSAGE_ROLES)})"
            )

    def to_dict(self, include_timestamp: bool = True) -> dict[str, Any]:
        d: dict[str, Any] = {"role": self.role, "content": self.content}
        if include_timestamp and self.timestamp is not None:
            d["timestamp"] = self.timestamp
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        if not isinstance(data, dict):
            raise ValidationError("message: expected an object")
        return cls(
            role=_require_str(data, "role", "message"),
            content=_require_str(data, "content", "message"),
            timestamp=_optional_str(data, "timestamp", "message"),
        )


def same_message(a: Message, b: Message) -> bool:
    """Messages are the same for dedup when role and content match."""
    return a.role == b.role and a.content == b.content


@dataclass
class ThreadMetadata:
    title: str
    created_at: str
    source_app: Optional[str] = None
    updated_at: Optional[str] = None
    tags: Optional[list[str]] = None
    summary: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"title": self.title}
        if self.source_app is not None:
            d["sourceApp"] = self.source_app
        d["createdAt"] = self.created_at
        if self.updated_at is not None:
            d["updatedAt"] = self.updated_at
        if self.tags is not None:
            d["tags"] = list(self.tags)
        if self.summary is not None:
            d["summary"] = self.summary
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "ThreadMetadata":
        if not isinstance(data, dict):
            raise ValidationError("metadata: expected an object")
        tags = data.get("tags")
        if tags is not None:
            if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
                raise ValidationError("metadata: 'tags' must be a list of strings")
            tags = list(tags)
        return cls(
            title=_require_str(data, "title", "metadata"),
            created_at=_require_str(data, "createdAt", "metadata"),
            source_app=_optional_str(data, "sourceApp", "metadata"),
            updated_at=_optional_str(data, "updatedAt", "metadata"),
            tags=tags,
            summary=_optional_str(data, "summary", "metadata"),
        )


@dataclass
class Thread:
    """A saved conversation: the unit of storage."""
    id: str
    metadata: ThreadMetadata
    messages: list[Message] = field(default_factory=list)

    @property
    def title(self) -> str:
        return self.metadata.title

    def to_dict(
        self,
        include_metadata: bool = True,
        include_timestamps: bool = True,
    ) -> dict[str, Any]:
        d: dict[str, Any] = {"id": self.id}
        if include_metadata:
            d["metadata"] = self.metadata.to_dict()
        d["messages"] = [m.to_dict(include_timestamps) for m in self.messages]
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "Thread":
        """Decode a thread dict.

        A missing metadata block (saved with includeMetadata=false) decodes
        with the default title and the current time as createdAt.
        """
        if not isinstance(data, dict):
            raise ValidationError("thread: expected an object")
        thread_id = _require_str(data, "id", "thread")
        raw_meta = data.get("metadata")
        if raw_meta is None:
            metadata = ThreadMetadata(title=DEFAULT_TITLE, created_at=utc_now())
        else:
            metadata = ThreadMetadata.from_dict(raw_meta)
        raw_messages = data.get("messages")
        if not isinstance(raw_messages, list):
            raise ValidationError("thread: 'messages' must be a list")
        return cls(
            id=thread_id,
            metadata=metadata,
            messages=[Message.from_dict(m) for m in raw_messages],
        )


@dataclass
class SaveOptions:
    format: str = FORMAT_MARKDOWN
    include_metadata: bool = True
    include_timestamps: bool = True

    def __post_init__(self):
        validate_format(self.format)


@dataclass
class ThreadDescriptor:
    """
    Lightweight index entry for a saved thread (no message bodies).

    Exactly one of file_path (local) or remote_url (remote) is set.
    saved_at is the persistence time, distinct from metadata.created_at.
    """
    id: str
    title: str
    format: str
    saved_at: str
    file_path: Optional[str] = None
    remote_url: Optional[str] = None
    source_app: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"id": self.id, "title": self.title}
        if self.file_path is not None:
            d["filePath"] = self.file_path
        if self.remote_url is not None:
            d["remoteUrl"] = self.remote_url
        d["format"] = self.format
        d["savedAt"] = self.saved_at
        if self.source_app is not None:
            d["sourceApp"] = self.source_app
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "ThreadDescriptor":
        if not isinstance(data, dict):
            raise ValidationError("descriptor: expected an object")
        return cls(
            id=_require_str(data, "id", "descriptor"),
            title=_require_str(data, "title", "descriptor"),
            format=validate_format(_require_str(data, "format", "descriptor")),
            saved_at=_require_str(data, "savedAt", "descriptor"),
            file_path=_optional_str(data, "filePath", "descriptor"),
            remote_url=_optional_str(data, "remoteUrl", "descriptor"),
            source_app=_optional_str(data, "sourceApp", "descriptor"),
        )
