"""
Base provider protocols for thread enrichment.

Providers turn a conversation transcript into a short summary or a list
of tags. Using Protocol for structural subtyping - no explicit
inheritance required. A provider method may be a coroutine function
(MCP sampling is); callers await the result when it is awaitable.
"""

import json
import re
from collections.abc import Awaitable, Iterable
from typing import Protocol, Union, runtime_checkable

from ..types import Message


# -----------------------------------------------------------------------------
# Prompts
# -----------------------------------------------------------------------------

SUMMARY_PROMPT = (
    "Summarize the following conversation in 1-2 concise sentences. "
    "Return only the summary text, nothing else."
)

TAGS_PROMPT = (
    "Analyze the following conversation and generate 3-5 short, relevant tags "
    "for categorization. Return ONLY a JSON array of lowercase strings, "
    'e.g. ["python", "debugging", "async"]. No other text.'
)

SUMMARY_MAX_TOKENS = 150
TAGS_MAX_TOKENS = 100

# Providers see at most this much transcript
MAX_TRANSCRIPT_CHARS = 50000

_JSON_ARRAY_RE = re.compile(r"\[.*\]", re.DOTALL)
_TAG_JUNK_RE = re.compile(r"[\[\]\"']")


def format_transcript(messages: Iterable[Message]) -> str:
    """Plain-text transcript: 'role: content' blocks separated by blank lines."""
    return "\n\n".join(f"{m.role}: {m.content}" for m in messages)


def build_prompt(instruction: str, transcript: str) -> str:
    return f"{instruction}\n\n{transcript[:MAX_TRANSCRIPT_CHARS]}"


def parse_tags(text: str) -> list[str]:
    """
    Tags from model output.

    Prefers a JSON array of strings anywhere in the text. Otherwise the
    text is split on commas after removing brackets and quotes.
    """
    text = text.strip()
    match = _JSON_ARRAY_RE.search(text)
    if match:
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list) and all(isinstance(t, str) for t in parsed):
            return parsed

    cleaned = _TAG_JUNK_RE.sub("", text)
    return [t.strip().lower() for t in cleaned.split(",") if t.strip()]


# -----------------------------------------------------------------------------
# Protocols
# -----------------------------------------------------------------------------

@runtime_checkable
class SummarizationProvider(Protocol):
    """
    Generates a one or two sentence summary of a conversation.

    Example implementation:
        class FirstLineSummarization:
            def summarize(self, content: str) -> str:
                return content.splitlines()[0]
    """

    def summarize(self, content: str) -> Union[str, Awaitable[str]]:
        """
        Args:
            content: Transcript from format_transcript()

        Returns:
            Summary text (or an awaitable of it). Empty means no summary.
        """
        ...


@runtime_checkable
class TaggingProvider(Protocol):
    """Generates a few lowercase topic tags for a conversation."""

    def tag(self, content: str) -> Union[list[str], Awaitable[list[str]]]:
        """
        Args:
            content: Transcript from format_transcript()

        Returns:
            List of tags (or an awaitable of it). Empty means no tags.
        """
        ...


# -----------------------------------------------------------------------------
# Provider Registry
# -----------------------------------------------------------------------------

class ProviderRegistry:
    """
    Registry for discovering and instantiating providers.

    Providers are registered by name and created from configuration, so
    the [summarization] and [tagging] sections of the config file select
    providers by name.

    Example:
        registry = get_registry()
        provider = registry.create_summarization("ollama", {"model": "llama3.2"})
    """

    def __init__(self):
        self._summarization_providers: dict[str, type] = {}
        self._tagging_providers: dict[str, type] = {}
        self._lazy_loaded = False

    def _ensure_providers_loaded(self) -> None:
        """Import provider modules so they register themselves."""
        if self._lazy_loaded:
            return
        self._lazy_loaded = True
        from . import llm, sampling  # noqa: F401

    def register_summarization(self, name: str, provider_class: type) -> None:
        self._summarization_providers[name] = provider_class

    def register_tagging(self, name: str, provider_class: type) -> None:
        self._tagging_providers[name] = provider_class

    @staticmethod
    def _create_provider(kind: str, name: str, providers: dict, params: dict | None):
        """Shared factory logic for all provider types."""
        if name not in providers:
            available = ", ".join(providers.keys()) or "none"
            raise ValueError(
                f"Unknown {kind} provider: '{name}'. "
                f"Available providers: {available}."
            )
        try:
            return providers[name](**(params or {}))
        except ImportError as e:
            raise RuntimeError(
                f"Failed to create {kind} provider '{name}': {e}\n"
                f"Install required dependencies."
            ) from e

    def create_summarization(self, name: str, params: dict | None = None) -> SummarizationProvider:
        self._ensure_providers_loaded()
        return self._create_provider("summarization", name, self._summarization_providers, params)

    def create_tagging(self, name: str, params: dict | None = None) -> TaggingProvider:
        self._ensure_providers_loaded()
        return self._create_provider("tagging", name, self._tagging_providers, params)

    def list_summarization_providers(self) -> list[str]:
        self._ensure_providers_loaded()
        return list(self._summarization_providers.keys())

    def list_tagging_providers(self) -> list[str]:
        self._ensure_providers_loaded()
        return list(self._tagging_providers.keys())


# Global registry instance
# Concrete providers register themselves on import
_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    return _registry
