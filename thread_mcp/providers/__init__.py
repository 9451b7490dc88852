"""Summarization and tagging providers."""

from .base import (
    ProviderRegistry,
    SummarizationProvider,
    TaggingProvider,
    format_transcript,
    get_registry,
    parse_tags,
)

__all__ = [
    "ProviderRegistry",
    "SummarizationProvider",
    "TaggingProvider",
    "format_transcript",
    "get_registry",
    "parse_tags",
]
