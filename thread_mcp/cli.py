"""
Command-line access to saved threads.

Usage:
    thread-mcp list
    thread-mcp find "websocket reconnect" --tag python
    thread-mcp show 9b2f0c1e-... --format narrative
    thread-mcp mcp                      # stdio MCP server
"""

import json
import os
from pathlib import Path
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from .api import StoreTarget, ThreadKeeper
from .config import (
    ENV_CONFIG,
    ENV_STORAGE_DIR,
    ServerConfig,
    default_config_path,
    load_config,
    save_config,
)
from .logging_config import configure_quiet_mode, enable_debug_mode
from .resume import RESUME_FORMATS, RESUME_NARRATIVE
from .search import FindCriteria

# Set THREAD_MCP_VERBOSE=1 to enable debug mode via environment
if os.environ.get("THREAD_MCP_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None
_config_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _store_callback(value: Optional[Path]):
    global _store_override
    _store_override = value


def _config_callback(value: Optional[Path]):
    global _config_override
    _config_override = value


app = typer.Typer(
    name="thread-mcp",
    help="Save, search and resume conversation threads.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        help="Local storage directory (overrides config and THREAD_MCP_STORAGE_DIR)",
        callback=_store_callback,
        is_eager=True,
    )] = None,
    config: Annotated[Optional[Path], typer.Option(
        "--config", "-c",
        help="Config file (default: THREAD_MCP_CONFIG or ~/.thread-mcp/thread-mcp.toml)",
        callback=_config_callback,
        is_eager=True,
    )] = None,
):
    """Save, search and resume conversation threads."""


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

SourceOption = Annotated[
    Optional[str],
    typer.Option("--source", help="'local' or 'remote' (default from config)"),
]


def _load() -> ServerConfig:
    try:
        config = load_config(_config_override)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    if _store_override is not None:
        config.storage_dir = _store_override
    return config


def _get_keeper() -> ThreadKeeper:
    return ThreadKeeper(_load())


def _echo_json(result: Any) -> None:
    typer.echo(json.dumps(result, indent=2, ensure_ascii=False))


def _short(id: str) -> str:
    return id[:8]


def _format_thread_line(entry: dict) -> str:
    """One-line listing: short id, date, title, tags."""
    when = (entry.get("savedAt") or entry.get("createdAt") or "")[:10]
    line = f"{_short(entry['id'])}  {when}  {entry['title']}"
    if entry.get("tags"):
        line += f"  [{', '.join(entry['tags'])}]"
    if entry.get("relevance"):
        line += f"  ({entry['relevance']['score']})"
    return line


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command("list")
def list_cmd(
    limit: Annotated[Optional[int], typer.Option(
        "--limit", "-n", help="Maximum threads to show",
    )] = None,
    source: SourceOption = None,
):
    """List saved threads, most recent first."""
    result = _get_keeper().list_threads(StoreTarget(source=source))
    if limit is not None:
        result["threads"] = result["threads"][:limit]

    if _json_output:
        _echo_json(result)
        return
    if not result["threads"]:
        typer.echo("No saved threads.", err=True)
        return
    for entry in result["threads"]:
        typer.echo(_format_thread_line(entry))


@app.command()
def find(
    query: Annotated[Optional[str], typer.Argument(
        help="Text to match in title, summary or messages",
    )] = None,
    title_contains: Annotated[Optional[str], typer.Option(
        "--title-contains", "-t", help="Case-insensitive title substring",
    )] = None,
    tag: Annotated[Optional[list[str]], typer.Option(
        "--tag", help="Required tag (repeatable; all must match)",
    )] = None,
    source_app: Annotated[Optional[str], typer.Option(
        "--app", help="Only threads from this source application",
    )] = None,
    date_from: Annotated[Optional[str], typer.Option(
        "--from", help="Created at or after this ISO date",
    )] = None,
    date_to: Annotated[Optional[str], typer.Option(
        "--to", help="Created at or before this ISO date",
    )] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum results")] = 10,
    content: Annotated[bool, typer.Option("--content", help="Include messages (JSON output)")] = False,
    source: SourceOption = None,
):
    """Search saved threads."""
    criteria = FindCriteria(
        query=query, title_contains=title_contains, tags=tag or None,
        source_app=source_app, date_from=date_from, date_to=date_to, limit=limit,
    )
    result = _get_keeper().find_threads(
        criteria, include_content=content, target=StoreTarget(source=source),
    )

    if _json_output:
        _echo_json(result)
        return
    if not result["threads"]:
        typer.echo("No matching threads.", err=True)
        raise typer.Exit(1)
    for entry in result["threads"]:
        typer.echo(_format_thread_line(entry))


@app.command()
def show(
    id: Annotated[Optional[str], typer.Argument(help="Thread ID")] = None,
    title: Annotated[Optional[str], typer.Option("--title", help="Exact title")] = None,
    contains: Annotated[Optional[str], typer.Option(
        "--contains", help="Most recent thread whose title contains this",
    )] = None,
    format: Annotated[str, typer.Option(
        "--format", "-f", help=f"One of: {', '.join(RESUME_FORMATS)}",
    )] = RESUME_NARRATIVE,
    max_messages: Annotated[Optional[int], typer.Option(
        "--max-messages", "-m", help="Only the last N messages",
    )] = None,
    source: SourceOption = None,
):
    """Show a thread ready to resume."""
    if not (id or title or contains):
        typer.echo("Error: Specify an ID, --title or --contains", err=True)
        raise typer.Exit(1)

    result = _get_keeper().resume_thread(
        id=id, title=title, title_contains=contains, format=format,
        max_messages=max_messages, target=StoreTarget(source=source),
    )

    if not result["found"]:
        if _json_output:
            _echo_json(result)
        else:
            typer.echo(result["error"], err=True)
        raise typer.Exit(1)

    if format == RESUME_NARRATIVE and not _json_output:
        typer.echo(result["content"])
    else:
        _echo_json(result)


@app.command()
def delete(
    id: Annotated[Optional[str], typer.Argument(help="Thread ID")] = None,
    title: Annotated[Optional[str], typer.Option("--title", help="Exact title")] = None,
    source: SourceOption = None,
):
    """Delete a saved thread."""
    if not (id or title):
        typer.echo("Error: Specify an ID or --title", err=True)
        raise typer.Exit(1)

    result = _get_keeper().delete_thread(id=id, title=title, target=StoreTarget(source=source))

    if _json_output:
        _echo_json(result)
    elif result["deleted"]:
        typer.echo(f"Deleted: {result['id']}")
    else:
        typer.echo(result.get("error") or f"Thread not found: {id}", err=True)

    if not result["deleted"]:
        raise typer.Exit(1)


@app.command("config")
def config_cmd(
    init: Annotated[bool, typer.Option(
        "--init", help="Write the current settings to the config file",
    )] = False,
    path: Annotated[bool, typer.Option("--path", help="Print the config file path")] = False,
):
    """Show configuration, or write a config file."""
    config_path = _config_override or default_config_path()

    if path:
        typer.echo(str(config_path))
        return

    config = _load()
    if init:
        if config_path.exists():
            typer.echo(f"Config file already exists: {config_path}", err=True)
            raise typer.Exit(1)
        save_config(config, config_path)
        typer.echo(f"Wrote {config_path}")
        return

    settings = {
        "file": str(config_path),
        "storageDir": str(config.storage_dir),
        "format": config.format,
        "defaultSource": config.default_source,
        "remoteUrl": config.remote_url,
        "apiKey": "(set)" if config.api_key else None,
        "remoteHeaders": sorted(config.remote_headers),
        "summarization": config.summarization.name,
        "tagging": config.tagging.name,
    }
    if _json_output:
        _echo_json(settings)
        return
    for key, value in settings.items():
        typer.echo(f"{key}: {value if value is not None else '-'}")


@app.command()
def mcp():
    """Start MCP stdio server for AI agent integration."""
    if _store_override is not None:
        os.environ[ENV_STORAGE_DIR] = str(_store_override)
    if _config_override is not None:
        os.environ[ENV_CONFIG] = str(_config_override)
    from .mcp import main as mcp_main
    mcp_main()


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="thread-mcp CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
