"""
Render a saved thread so an assistant can pick the conversation back up.
"""

from typing import Any, Optional

from .errors import ValidationError
from .types import Message, Thread

RESUME_STRUCTURED = "structured"
RESUME_NARRATIVE = "narrative"
RESUME_MESSAGES = "messages"
RESUME_FORMATS = (RESUME_STRUCTURED, RESUME_NARRATIVE, RESUME_MESSAGES)

HINT_DEFAULT = "Continue the conversation."
HINT_AWAITING_REPLY = "The user's last message is awaiting a response."
HINT_FOLLOW_UP = "The assistant last responded. The user may have follow-up questions."


def validate_resume_format(format: str) -> str:
    if format not in RESUME_FORMATS:
        raise ValidationError(
            f"Unknown resume format {format!r} (expected one of: {', '.join(RESUME_FORMATS)})"
        )
    return format


def last_messages(thread: Thread, max_messages: Optional[int] = None) -> list[Message]:
    """The last max_messages messages, or all of them."""
    if max_messages is not None and max_messages < 1:
        raise ValidationError("max_messages must be a positive integer")
    if max_messages:
        return thread.messages[-max_messages:]
    return list(thread.messages)


def continuation_hint(messages: list[Message]) -> str:
    if not messages:
        return HINT_DEFAULT
    role = messages[-1].role
    if role == "user":
        return HINT_AWAITING_REPLY
    if role == "assistant":
        return HINT_FOLLOW_UP
    return HINT_DEFAULT


def format_narrative(
    thread: Thread,
    max_messages: Optional[int] = None,
    include_summary: bool = True,
) -> str:
    meta = thread.metadata
    lines = [f"# Resuming: {meta.title}", ""]

    if include_summary and meta.summary:
        lines += [f"**Summary:** {meta.summary}", ""]

    if meta.tags:
        lines += [f"**Topics:** {', '.join(meta.tags)}", ""]

    messages = last_messages(thread, max_messages)
    if len(messages) < len(thread.messages):
        lines += [f"*Showing last {len(messages)} of {len(thread.messages)} messages*", ""]

    lines += ["## Previous Conversation", ""]
    for message in messages:
        lines += [f"**{message.role.capitalize()}:** {message.content}", ""]

    lines += ["---", "*Continue the conversation from here...*"]
    return "\n".join(lines)


def format_structured(
    thread: Thread,
    max_messages: Optional[int] = None,
    include_summary: bool = True,
) -> dict[str, Any]:
    """Context block, trailing messages and a hint keyed on the last speaker."""
    meta = thread.metadata
    messages = last_messages(thread, max_messages)

    context: dict[str, Any] = {"title": meta.title}
    if include_summary and meta.summary is not None:
        context["summary"] = meta.summary
    if meta.tags is not None:
        context["tags"] = list(meta.tags)
    if meta.source_app is not None:
        context["sourceApp"] = meta.source_app
    context["messageCount"] = len(thread.messages)
    context["startedAt"] = meta.created_at
    if meta.updated_at is not None:
        context["lastUpdated"] = meta.updated_at

    return {
        "context": context,
        "messages": [m.to_dict() for m in messages],
        "continuationHint": continuation_hint(messages),
    }
