"""
Markdown thread encoding with YAML front matter.

Layout:

    ---
    id: 9b2f...
    title: Demo
    created_at: '2026-01-15T10:00:00.000000Z'
    ---

    # Demo

    > One-line summary

    ## Conversation

    ### User _(2026-01-15T10:00:00Z)_

    hi

Message timestamps are written verbatim so they survive a round trip.
Message content is stripped of surrounding whitespace on parse, and a
content line starting with "### User", "### Assistant" or "### System"
would be read as a new message.
"""

import re
from datetime import date, datetime
from typing import Any, Optional

import yaml

from ..types import (
    DEFAULT_TITLE,
    Message,
    SaveOptions,
    Thread,
    ThreadMetadata,
    new_thread_id,
    parse_utc_timestamp,
    utc_now,
)

_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\n(.*?)\n---[ \t]*(?:\n|\Z)", re.DOTALL)
_TITLE_RE = re.compile(r"^#[ \t]+(.+)$", re.MULTILINE)
_SECTION_RE = re.compile(r"^##[ \t]+Conversation[ \t]*$", re.MULTILINE)
_MESSAGE_HEADING_RE = re.compile(
    r"^###[ \t]+(User|Assistant|System)(?:[ \t]+_\((.+?)\)_)?[ \t]*$",
    re.MULTILINE | re.IGNORECASE,
)


def _as_str(value: Any) -> Optional[str]:
    """Front matter scalar as a string (YAML may have typed it)."""
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _format_message(message: Message, include_timestamps: bool) -> str:
    label = message.role.capitalize()
    stamp = f" _({message.timestamp})_" if include_timestamps and message.timestamp else ""
    return f"### {label}{stamp}\n\n{message.content}\n"


def _format_frontmatter(thread: Thread) -> str:
    meta = thread.metadata
    data: dict[str, Any] = {
        "id": thread.id,
        "title": meta.title,
        "created_at": meta.created_at,
    }
    if meta.updated_at is not None:
        data["updated_at"] = meta.updated_at
    if meta.source_app is not None:
        data["source_app"] = meta.source_app
    if meta.tags is not None:
        data["tags"] = list(meta.tags)
    if meta.summary is not None:
        data["summary"] = meta.summary
    body = yaml.safe_dump(data, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return f"---\n{body}---\n"


def _parse_frontmatter(block: str) -> Optional[tuple[str, ThreadMetadata]]:
    try:
        data = yaml.safe_load(block)
    except yaml.YAMLError:
        return None
    if not isinstance(data, dict):
        return None

    thread_id = _as_str(data.get("id"))
    title = _as_str(data.get("title"))
    created_at = _as_str(data.get("created_at"))
    if not thread_id or title is None or not created_at:
        return None

    tags = data.get("tags")
    if isinstance(tags, list):
        tags = [str(t) for t in tags]
    elif isinstance(tags, str):
        tags = [t.strip() for t in tags.strip("[]").split(",") if t.strip()]
    else:
        tags = None

    return thread_id, ThreadMetadata(
        title=title,
        created_at=created_at,
        updated_at=_as_str(data.get("updated_at")),
        source_app=_as_str(data.get("source_app")),
        tags=tags,
        summary=_as_str(data.get("summary")),
    )


def _parse_timestamp(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    try:
        parse_utc_timestamp(raw)
    except ValueError:
        return None
    return raw


def _parse_messages(body: str) -> list[Message]:
    headings = list(_MESSAGE_HEADING_RE.finditer(body))
    messages = []
    for i, match in enumerate(headings):
        end = headings[i + 1].start() if i + 1 < len(headings) else len(body)
        messages.append(Message(
            role=match.group(1).lower(),
            content=body[match.end():end].strip(),
            timestamp=_parse_timestamp(match.group(2)),
        ))
    return messages


def _parse_blockquote(header: str) -> Optional[str]:
    lines = []
    for line in header.splitlines():
        if line.startswith(">"):
            lines.append(line[1:].strip())
        elif lines:
            break
    return "\n".join(lines) if lines else None


class MarkdownFormatter:
    extension = ".md"

    def serialize(self, thread: Thread, options: SaveOptions) -> str:
        parts = []

        if options.include_metadata:
            parts.append(_format_frontmatter(thread))

        parts.append(f"# {thread.metadata.title}\n")

        if thread.metadata.summary:
            quoted = "\n".join(f"> {line}" for line in thread.metadata.summary.splitlines())
            parts.append(f"{quoted}\n")

        parts.append("## Conversation\n")

        for message in thread.messages:
            parts.append(_format_message(message, options.include_timestamps))

        return "\n".join(parts)

    def deserialize(self, text: str) -> Thread:
        text = text.replace("\r\n", "\n")
        thread_id: Optional[str] = None
        metadata: Optional[ThreadMetadata] = None

        fm = _FRONTMATTER_RE.match(text)
        if fm:
            parsed = _parse_frontmatter(fm.group(1))
            if parsed:
                thread_id, metadata = parsed
            text = text[fm.end():]

        # Title and summary live above the conversation section
        section = _SECTION_RE.search(text)
        first_heading = _MESSAGE_HEADING_RE.search(text)
        if section:
            header, body = text[:section.start()], text[section.end():]
        elif first_heading:
            header, body = text[:first_heading.start()], text[first_heading.start():]
        else:
            header, body = text, ""

        if metadata is None:
            title_match = _TITLE_RE.search(header)
            metadata = ThreadMetadata(
                title=title_match.group(1).strip() if title_match else DEFAULT_TITLE,
                created_at=utc_now(),
            )
        if metadata.summary is None:
            metadata.summary = _parse_blockquote(header)

        return Thread(
            id=thread_id or new_thread_id(),
            metadata=metadata,
            messages=_parse_messages(body),
        )
