"""
Optional summary and tag generation for save and update.

Enrichment is best effort. A provider that cannot be built, raises, or
returns nothing is logged at warning level and the caller carries on
without a summary or tags.
"""

import inspect
import logging
from typing import Any, Iterable, Optional

from .config import ProviderConfig, ServerConfig
from .providers.base import ProviderRegistry, format_transcript, get_registry
from .types import Message

logger = logging.getLogger(__name__)

SAMPLING = "sampling"


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class Enricher:
    """
    Builds the configured providers and runs them over a message list.

    Args:
        config: Server configuration naming the providers
        ctx: MCP request context, needed by the sampling providers
        registry: Provider registry (default: the global one)
    """

    def __init__(
        self,
        config: ServerConfig,
        ctx: Any = None,
        registry: Optional[ProviderRegistry] = None,
    ):
        self._config = config
        self._ctx = ctx
        self._registry = registry or get_registry()

    def _params(self, provider: ProviderConfig) -> dict:
        params = dict(provider.params)
        if provider.name == SAMPLING:
            params["ctx"] = self._ctx
        return params

    async def summarize(self, messages: Iterable[Message]) -> Optional[str]:
        """A summary of the messages, or None."""
        provider_config = self._config.summarization
        try:
            provider = self._registry.create_summarization(
                provider_config.name, self._params(provider_config),
            )
            summary = await _resolve(provider.summarize(format_transcript(messages)))
        except Exception as e:
            logger.warning("Summary generation failed (%s): %s", provider_config.name, e)
            return None

        summary = (summary or "").strip()
        if not summary:
            logger.warning("Summary generation returned nothing (%s)", provider_config.name)
            return None
        return summary

    async def tag(self, messages: Iterable[Message]) -> Optional[list[str]]:
        """Tags for the messages, or None."""
        provider_config = self._config.tagging
        try:
            provider = self._registry.create_tagging(
                provider_config.name, self._params(provider_config),
            )
            tags = await _resolve(provider.tag(format_transcript(messages)))
        except Exception as e:
            logger.warning("Tag generation failed (%s): %s", provider_config.name, e)
            return None

        tags = [t for t in (tags or []) if t]
        if not tags:
            logger.debug("Tag generation returned nothing (%s)", provider_config.name)
            return None
        return tags
