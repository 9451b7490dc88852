"""Thread formatters, selected by output format name."""

from ..errors import ValidationError
from ..types import FORMAT_JSON, FORMAT_MARKDOWN
from .base import Formatter
from .json_format import JsonFormatter
from .markdown import MarkdownFormatter

_FORMATTERS: dict[str, Formatter] = {
    FORMAT_MARKDOWN: MarkdownFormatter(),
    FORMAT_JSON: JsonFormatter(),
}


def get_formatter(format: str) -> Formatter:
    try:
        return _FORMATTERS[format]
    except KeyError:
        raise ValidationError(f"Unknown format: {format!r}") from None


__all__ = ["Formatter", "JsonFormatter", "MarkdownFormatter", "get_formatter"]
