"""
Enrichment through MCP sampling: the connected client's own model writes
the summary or tags, so the server needs no API keys.

Sampling providers are built per tool call with that call's Context.
"""

from typing import Any, Optional

from mcp.server.fastmcp import Context
from mcp.types import ModelPreferences, SamplingMessage, TextContent

from .base import (
    SUMMARY_MAX_TOKENS,
    SUMMARY_PROMPT,
    TAGS_MAX_TOKENS,
    TAGS_PROMPT,
    build_prompt,
    get_registry,
    parse_tags,
)


def extract_text(content: Any) -> str:
    """Text of a sampling result's content (a block or a list of blocks)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        for block in content:
            if getattr(block, "type", None) == "text":
                return str(block.text)
        return ""
    if getattr(content, "type", None) == "text":
        return str(content.text)
    return ""


class _SamplingRequest:
    def __init__(self, ctx: Optional[Context] = None):
        if ctx is None:
            raise ValueError("Sampling requires an MCP request context")
        self._ctx = ctx

    async def _sample(self, prompt: str, max_tokens: int) -> str:
        result = await self._ctx.session.create_message(
            messages=[
                SamplingMessage(role="user", content=TextContent(type="text", text=prompt)),
            ],
            max_tokens=max_tokens,
            model_preferences=ModelPreferences(costPriority=1),
        )
        return extract_text(result.content).strip()


class SamplingSummarization(_SamplingRequest):
    async def summarize(self, content: str) -> str:
        text = await self._sample(build_prompt(SUMMARY_PROMPT, content), SUMMARY_MAX_TOKENS)
        if not text:
            raise ValueError("Sampling returned empty summary")
        return text


class SamplingTagging(_SamplingRequest):
    async def tag(self, content: str) -> list[str]:
        text = await self._sample(build_prompt(TAGS_PROMPT, content), TAGS_MAX_TOKENS)
        if not text:
            raise ValueError("Sampling returned empty tags response")
        return parse_tags(text)


_registry = get_registry()
_registry.register_summarization("sampling", SamplingSummarization)
_registry.register_tagging("sampling", SamplingTagging)
