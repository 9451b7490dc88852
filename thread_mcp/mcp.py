"""
MCP stdio server for thread-mcp: save and resume conversation threads.

Usage:
    thread-mcp mcp                                    # stdio server (via CLI)
    claude mcp add --scope user thread-mcp -- thread-mcp mcp

All ThreadKeeper calls are serialized through a single asyncio.Lock;
the local index has no cross-call locking of its own.
"""

import asyncio
import json
import logging
import os
from typing import Annotated, Any, Literal, Optional

import httpx
from mcp.server.fastmcp import Context, FastMCP
from mcp.types import ToolAnnotations
from pydantic import BaseModel, Field

from .api import StoreTarget, ThreadKeeper
from .config import load_config
from .enrichment import Enricher
from .errors import ThreadError, log_exception
from .logging_config import configure_ops_log, configure_quiet_mode, enable_debug_mode
from .search import FindCriteria
from .types import Message

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Server setup
# ---------------------------------------------------------------------------

mcp = FastMCP(
    "thread-mcp",
    instructions=(
        "Save conversation threads to local files or a remote server. "
        "Find, update, resume and delete them later."
    ),
)

_keeper: Optional[ThreadKeeper] = None
_lock = asyncio.Lock()


def _get_keeper() -> ThreadKeeper:
    """Lazy-init ThreadKeeper from the config file and environment.

    Must be called inside ``async with _lock``.
    """
    global _keeper
    if _keeper is None:
        _keeper = ThreadKeeper(load_config())
    return _keeper


# ---------------------------------------------------------------------------
# Parameter types
# ---------------------------------------------------------------------------

class MessageParam(BaseModel):
    role: Literal["user", "assistant", "system"] = Field(description="Message author role.")
    content: str = Field(description="Message text.")
    timestamp: Optional[str] = Field(default=None, description="ISO 8601 timestamp.")


Source = Literal["local", "remote"]
OutputFormat = Literal["markdown", "json"]

_SOURCE = Field(description="Where the thread is stored (default from THREAD_MCP_DEFAULT_SOURCE).")
_OUTPUT_DIR = Field(description="Directory for local storage (default from THREAD_MCP_STORAGE_DIR).")
_REMOTE_URL = Field(description="Remote server base URL (default from THREAD_MCP_REMOTE_URL).")
_API_KEY = Field(description="API key for the remote server (default from THREAD_MCP_API_KEY).")
_HEADERS = Field(description="Extra headers for the remote server, merged over THREAD_MCP_REMOTE_HEADERS.")


def _message_dicts(messages: list[Any]) -> list[dict]:
    return [m.model_dump(exclude_none=True) if isinstance(m, BaseModel) else dict(m) for m in messages]


def _dump(result: dict) -> str:
    return json.dumps(result, indent=2, ensure_ascii=False)


def _error(keeper: ThreadKeeper, tool: str, exc: Exception) -> str:
    log_exception(exc, tool, keeper.config.storage_dir)
    logger.warning("%s failed: %s", tool, exc)
    return _dump({"error": str(exc)})


_TOOL_ERRORS = (ThreadError, ValueError, OSError, httpx.HTTPError)

# ---------------------------------------------------------------------------
# Tool annotations
# ---------------------------------------------------------------------------

_READ_ONLY = ToolAnnotations(readOnlyHint=True, destructiveHint=False)
_WRITE = ToolAnnotations(readOnlyHint=False, destructiveHint=False, idempotentHint=False)
_UPDATE = ToolAnnotations(readOnlyHint=False, destructiveHint=True, idempotentHint=False)
_DESTRUCTIVE = ToolAnnotations(destructiveHint=True, idempotentHint=True)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool(
    description=(
        "Save a conversation thread to local storage or a remote server. "
        "Supports Markdown and JSON formats with metadata including tags, summary, and timestamps."
    ),
    annotations=_WRITE,
)
async def save_thread(
    title: Annotated[str, Field(description="Title for the thread.")],
    messages: Annotated[list[MessageParam], Field(description="Messages in the thread, oldest first.")],
    source_app: Annotated[Optional[str], Field(
        description="Name of the AI application (e.g. 'Claude', 'ChatGPT').",
    )] = None,
    tags: Annotated[Optional[list[str]], Field(description="Tags for categorization.")] = None,
    summary: Annotated[Optional[str], Field(description="Summary of the thread.")] = None,
    auto_summarize: Annotated[bool, Field(
        description="Generate a summary when none is given.",
    )] = False,
    auto_tag: Annotated[bool, Field(description="Generate tags when none are given.")] = False,
    format: Annotated[Optional[OutputFormat], Field(
        description="Output format (default from THREAD_MCP_FORMAT).",
    )] = None,
    include_metadata: Annotated[bool, Field(description="Write thread metadata into the file.")] = True,
    include_timestamps: Annotated[bool, Field(description="Write per-message timestamps.")] = True,
    destination: Annotated[Optional[Source], _SOURCE] = None,
    output_dir: Annotated[Optional[str], _OUTPUT_DIR] = None,
    remote_url: Annotated[Optional[str], _REMOTE_URL] = None,
    api_key: Annotated[Optional[str], _API_KEY] = None,
    headers: Annotated[Optional[dict[str, str]], _HEADERS] = None,
    ctx: Context = None,
) -> str:
    """Save a new thread."""
    async with _lock:
        keeper = _get_keeper()
        try:
            message_dicts = _message_dicts(messages)
            if (auto_summarize and summary is None) or (auto_tag and tags is None):
                enricher = Enricher(keeper.config, ctx)
                incoming = [Message.from_dict(m) for m in message_dicts]
                if auto_summarize and summary is None:
                    summary = await enricher.summarize(incoming)
                if auto_tag and tags is None:
                    tags = await enricher.tag(incoming)

            result = keeper.save_thread(
                title, message_dicts,
                source_app=source_app, tags=tags, summary=summary, format=format,
                include_metadata=include_metadata, include_timestamps=include_timestamps,
                target=StoreTarget(destination, output_dir, remote_url, api_key, headers),
            )
        except _TOOL_ERRORS as e:
            return _error(keeper, "save_thread", e)
    return _dump(result)


@mcp.tool(
    description=(
        "Find saved threads. Get one by ID, or search by title, text, tags, source app "
        "and creation date. Results are ranked by relevance."
    ),
    annotations=_READ_ONLY,
)
async def find_threads(
    id: Annotated[Optional[str], Field(description="Get a specific thread by ID.")] = None,
    title: Annotated[Optional[str], Field(description="Exact title match.")] = None,
    title_contains: Annotated[Optional[str], Field(
        description="Case-insensitive title substring.",
    )] = None,
    query: Annotated[Optional[str], Field(
        description="Search text (matches title, summary, and message content).",
    )] = None,
    tags: Annotated[Optional[list[str]], Field(
        description="Threads must have ALL of these tags.",
    )] = None,
    source_app: Annotated[Optional[str], Field(description="Filter by source application.")] = None,
    date_from: Annotated[Optional[str], Field(
        description="Threads created at or after this ISO date.",
    )] = None,
    date_to: Annotated[Optional[str], Field(
        description="Threads created at or before this ISO date.",
    )] = None,
    include_content: Annotated[bool, Field(description="Include full messages.")] = False,
    include_relevance_info: Annotated[bool, Field(
        description="Include relevance scores and thread statistics.",
    )] = True,
    limit: Annotated[int, Field(description="Maximum results to return.", gt=0)] = 10,
    source: Annotated[Optional[Source], _SOURCE] = None,
    output_dir: Annotated[Optional[str], _OUTPUT_DIR] = None,
    remote_url: Annotated[Optional[str], _REMOTE_URL] = None,
    api_key: Annotated[Optional[str], _API_KEY] = None,
    headers: Annotated[Optional[dict[str, str]], _HEADERS] = None,
) -> str:
    """Search saved threads."""
    criteria = FindCriteria(
        title=title, title_contains=title_contains, query=query, tags=tags,
        source_app=source_app, date_from=date_from, date_to=date_to, limit=limit,
    )
    async with _lock:
        keeper = _get_keeper()
        try:
            result = keeper.find_threads(
                criteria, id=id,
                include_content=include_content,
                include_relevance_info=include_relevance_info,
                target=StoreTarget(source, output_dir, remote_url, api_key, headers),
            )
        except _TOOL_ERRORS as e:
            return _error(keeper, "find_threads", e)
    return _dump(result)


@mcp.tool(
    description=(
        "Update a saved thread, found by ID or exact title. "
        "'append' adds new messages (skipping ones already present); "
        "'replace' overwrites all messages. Can also change title, tags, and summary."
    ),
    annotations=_UPDATE,
)
async def update_thread(
    messages: Annotated[list[MessageParam], Field(description="Messages to append or replace with.")],
    id: Annotated[Optional[str], Field(description="ID of the thread to update.")] = None,
    title: Annotated[Optional[str], Field(description="Find the thread by exact title.")] = None,
    mode: Annotated[Literal["append", "replace"], Field(
        description="'append' adds messages; 'replace' overwrites them.",
    )] = "append",
    deduplicate: Annotated[bool, Field(
        description="In append mode, skip messages whose role and content already exist.",
    )] = True,
    new_title: Annotated[Optional[str], Field(description="New title.")] = None,
    new_tags: Annotated[Optional[list[str]], Field(description="Replacement tags.")] = None,
    new_summary: Annotated[Optional[str], Field(description="Replacement summary.")] = None,
    auto_summarize: Annotated[bool, Field(
        description="Regenerate the summary from all messages when new_summary is not given.",
    )] = False,
    auto_tag: Annotated[bool, Field(
        description="Regenerate tags from all messages when new_tags is not given.",
    )] = False,
    format: Annotated[Optional[OutputFormat], Field(
        description="Output format (default: the thread's current format).",
    )] = None,
    source: Annotated[Optional[Source], _SOURCE] = None,
    output_dir: Annotated[Optional[str], _OUTPUT_DIR] = None,
    remote_url: Annotated[Optional[str], _REMOTE_URL] = None,
    api_key: Annotated[Optional[str], _API_KEY] = None,
    headers: Annotated[Optional[dict[str, str]], _HEADERS] = None,
    ctx: Context = None,
) -> str:
    """Update an existing thread."""
    target = StoreTarget(source, output_dir, remote_url, api_key, headers)
    async with _lock:
        keeper = _get_keeper()
        try:
            message_dicts = _message_dicts(messages)
            wants_summary = auto_summarize and new_summary is None
            wants_tags = auto_tag and new_tags is None
            if wants_summary or wants_tags:
                existing = keeper.locate(id=id, title=title, target=target)
                if existing is not None:
                    enricher = Enricher(keeper.config, ctx)
                    history = existing.messages + [Message.from_dict(m) for m in message_dicts]
                    if wants_summary:
                        new_summary = await enricher.summarize(history)
                    if wants_tags:
                        new_tags = await enricher.tag(history)

            result = keeper.update_thread(
                message_dicts, id=id, title=title, mode=mode, deduplicate=deduplicate,
                new_title=new_title, new_tags=new_tags, new_summary=new_summary,
                format=format, target=target,
            )
        except _TOOL_ERRORS as e:
            return _error(keeper, "update_thread", e)
    return _dump(result)


@mcp.tool(
    description="Delete a saved thread, found by ID or exact title.",
    annotations=_DESTRUCTIVE,
)
async def delete_thread(
    id: Annotated[Optional[str], Field(description="ID of the thread to delete.")] = None,
    title: Annotated[Optional[str], Field(description="Delete the thread with this exact title.")] = None,
    source: Annotated[Optional[Source], _SOURCE] = None,
    output_dir: Annotated[Optional[str], _OUTPUT_DIR] = None,
    remote_url: Annotated[Optional[str], _REMOTE_URL] = None,
    api_key: Annotated[Optional[str], _API_KEY] = None,
    headers: Annotated[Optional[dict[str, str]], _HEADERS] = None,
) -> str:
    """Delete a thread."""
    async with _lock:
        keeper = _get_keeper()
        try:
            result = keeper.delete_thread(
                id=id, title=title,
                target=StoreTarget(source, output_dir, remote_url, api_key, headers),
            )
        except _TOOL_ERRORS as e:
            return _error(keeper, "delete_thread", e)
    return _dump(result)


@mcp.tool(
    description=(
        "Load a saved thread to continue where you left off. "
        "'structured' returns organized context, 'narrative' a readable recap, "
        "'messages' the raw messages."
    ),
    annotations=_READ_ONLY,
)
async def resume_thread(
    id: Annotated[Optional[str], Field(description="ID of the thread to resume.")] = None,
    title: Annotated[Optional[str], Field(description="Find the thread by exact title.")] = None,
    title_contains: Annotated[Optional[str], Field(
        description="Resume the most recent thread whose title contains this text.",
    )] = None,
    format: Annotated[Literal["structured", "narrative", "messages"], Field(
        description="Shape of the returned context.",
    )] = "structured",
    max_messages: Annotated[Optional[int], Field(
        description="Only the last N messages (default: all).", gt=0,
    )] = None,
    include_summary: Annotated[bool, Field(description="Include the thread summary.")] = True,
    source: Annotated[Optional[Source], _SOURCE] = None,
    output_dir: Annotated[Optional[str], _OUTPUT_DIR] = None,
    remote_url: Annotated[Optional[str], _REMOTE_URL] = None,
    api_key: Annotated[Optional[str], _API_KEY] = None,
    headers: Annotated[Optional[dict[str, str]], _HEADERS] = None,
) -> str:
    """Resume a thread."""
    async with _lock:
        keeper = _get_keeper()
        try:
            result = keeper.resume_thread(
                id=id, title=title, title_contains=title_contains, format=format,
                max_messages=max_messages, include_summary=include_summary,
                target=StoreTarget(source, output_dir, remote_url, api_key, headers),
            )
        except _TOOL_ERRORS as e:
            return _error(keeper, "resume_thread", e)
    return _dump(result)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    """Run the MCP stdio server."""
    import signal
    # The stdio reader blocks in readline and ignores task cancellation,
    # so exit directly on Ctrl+C.
    signal.signal(signal.SIGINT, lambda *_: os._exit(130))

    configure_quiet_mode()
    if os.environ.get("THREAD_MCP_VERBOSE") == "1":
        enable_debug_mode()

    config = load_config()
    configure_ops_log(config.storage_dir)

    global _keeper
    _keeper = ThreadKeeper(config)
    logger.info("Starting thread-mcp server (storage: %s)", config.storage_dir)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
