"""
Summarization and tagging providers using LLM APIs.

The anthropic and openai client libraries are optional extras; each
provider imports its library when constructed.
"""

import os

import requests

from .base import (
    SUMMARY_MAX_TOKENS,
    SUMMARY_PROMPT,
    TAGS_MAX_TOKENS,
    TAGS_PROMPT,
    build_prompt,
    get_registry,
    parse_tags,
)

DEFAULT_OLLAMA_URL = "http://localhost:11434"


def _anthropic_client(api_key: str | None, owner: str):
    try:
        from anthropic import Anthropic
    except ImportError:
        raise RuntimeError(f"{owner} requires 'anthropic' library")

    key = api_key or os.environ.get("ANTHROPIC_API_KEY")
    if not key:
        raise ValueError("Anthropic authentication required. Set ANTHROPIC_API_KEY")
    return Anthropic(api_key=key)


def _openai_client(api_key: str | None, owner: str):
    try:
        from openai import OpenAI
    except ImportError:
        raise RuntimeError(f"{owner} requires 'openai' library")

    key = api_key or os.environ.get("THREAD_MCP_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")
    if not key:
        raise ValueError("OpenAI API key required. Set THREAD_MCP_OPENAI_API_KEY or OPENAI_API_KEY")
    return OpenAI(api_key=key)


def ollama_base_url(base_url: str | None = None) -> str:
    """Explicit URL, else OLLAMA_HOST, else the local default."""
    url = base_url or os.environ.get("OLLAMA_HOST") or DEFAULT_OLLAMA_URL
    if not url.startswith(("http://", "https://")):
        url = f"http://{url}"
    return url.rstrip("/")


# -----------------------------------------------------------------------------
# Anthropic
# -----------------------------------------------------------------------------

class _AnthropicChat:
    def __init__(self, model: str, api_key: str | None):
        self.model = model
        self._client = _anthropic_client(api_key, type(self).__name__)

    def _complete(self, prompt: str, max_tokens: int) -> str:
        response = self._client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            messages=[{"role": "user", "content": prompt}],
        )
        if response.content:
            return response.content[0].text.strip()
        return ""


class AnthropicSummarization(_AnthropicChat):
    """
    Summaries from Anthropic's Messages API.

    Authentication: api_key parameter, else ANTHROPIC_API_KEY.
    """

    def __init__(self, model: str = "claude-haiku-4-5-20251001", api_key: str | None = None):
        super().__init__(model, api_key)

    def summarize(self, content: str) -> str:
        return self._complete(build_prompt(SUMMARY_PROMPT, content), SUMMARY_MAX_TOKENS)


class AnthropicTagging(_AnthropicChat):
    def __init__(self, model: str = "claude-haiku-4-5-20251001", api_key: str | None = None):
        super().__init__(model, api_key)

    def tag(self, content: str) -> list[str]:
        text = self._complete(build_prompt(TAGS_PROMPT, content), TAGS_MAX_TOKENS)
        return parse_tags(text) if text else []


# -----------------------------------------------------------------------------
# OpenAI
# -----------------------------------------------------------------------------

class _OpenAIChat:
    def __init__(self, model: str, api_key: str | None):
        self.model = model
        self._client = _openai_client(api_key, type(self).__name__)
        # Reasoning models take max_completion_tokens and no temperature
        self._new_api = self.model.startswith(("gpt-5", "o3", "o4"))

    def _complete(self, prompt: str, max_tokens: int) -> str:
        kwargs: dict = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
        }
        if self._new_api:
            kwargs["max_completion_tokens"] = max_tokens
        else:
            kwargs["max_tokens"] = max_tokens
            kwargs["temperature"] = 0.3

        response = self._client.chat.completions.create(**kwargs)
        return (response.choices[0].message.content or "").strip()


class OpenAISummarization(_OpenAIChat):
    """
    Summaries from OpenAI's chat API.

    Requires: THREAD_MCP_OPENAI_API_KEY or OPENAI_API_KEY environment variable.
    """

    def __init__(self, model: str = "gpt-4.1-mini", api_key: str | None = None):
        super().__init__(model, api_key)

    def summarize(self, content: str) -> str:
        return self._complete(build_prompt(SUMMARY_PROMPT, content), SUMMARY_MAX_TOKENS)


class OpenAITagging(_OpenAIChat):
    def __init__(self, model: str = "gpt-4.1-mini", api_key: str | None = None):
        super().__init__(model, api_key)

    def tag(self, content: str) -> list[str]:
        text = self._complete(build_prompt(TAGS_PROMPT, content), TAGS_MAX_TOKENS)
        return parse_tags(text) if text else []


# -----------------------------------------------------------------------------
# Ollama
# -----------------------------------------------------------------------------

class _OllamaChat:
    def __init__(self, model: str, base_url: str | None, timeout: float):
        self.model = model
        self.base_url = ollama_base_url(base_url)
        self.timeout = timeout

    def _complete(self, prompt: str, max_tokens: int) -> str:
        response = requests.post(
            f"{self.base_url}/api/chat",
            json={
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "options": {"num_predict": max_tokens},
                "stream": False,
            },
            timeout=(10, self.timeout),  # (connect, read)
        )
        if not response.ok:
            detail = response.text[:200] if response.text else ""
            raise RuntimeError(
                f"Ollama request failed (model={self.model}): "
                f"HTTP {response.status_code} from {self.base_url}. {detail}"
            )
        return response.json()["message"]["content"].strip()


class OllamaSummarization(_OllamaChat):
    """
    Summaries from a local Ollama server.

    Respects OLLAMA_HOST env var (default: http://localhost:11434).
    """

    def __init__(self, model: str = "llama3.2", base_url: str | None = None, timeout: float = 120):
        super().__init__(model, base_url, timeout)

    def summarize(self, content: str) -> str:
        return self._complete(build_prompt(SUMMARY_PROMPT, content), SUMMARY_MAX_TOKENS)


class OllamaTagging(_OllamaChat):
    def __init__(self, model: str = "llama3.2", base_url: str | None = None, timeout: float = 120):
        super().__init__(model, base_url, timeout)

    def tag(self, content: str) -> list[str]:
        text = self._complete(build_prompt(TAGS_PROMPT, content), TAGS_MAX_TOKENS)
        return parse_tags(text) if text else []


# -----------------------------------------------------------------------------
# No model
# -----------------------------------------------------------------------------

class PassthroughSummarization:
    """
    Summary is the start of the transcript, cut at a word boundary.

    Useful for testing or when no model is available.
    """

    def __init__(self, max_chars: int = 200):
        self.max_chars = max_chars

    def summarize(self, content: str) -> str:
        content = " ".join(content.split())
        if len(content) <= self.max_chars:
            return content
        return content[:self.max_chars].rsplit(" ", 1)[0] + "..."


class NoopTagging:
    """Tagging provider that returns no tags."""

    def tag(self, content: str) -> list[str]:
        return []


_registry = get_registry()
_registry.register_summarization("anthropic", AnthropicSummarization)
_registry.register_summarization("openai", OpenAISummarization)
_registry.register_summarization("ollama", OllamaSummarization)
_registry.register_summarization("passthrough", PassthroughSummarization)
_registry.register_tagging("anthropic", AnthropicTagging)
_registry.register_tagging("openai", OpenAITagging)
_registry.register_tagging("ollama", OllamaTagging)
_registry.register_tagging("noop", NoopTagging)
