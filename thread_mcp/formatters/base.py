"""
Formatter protocol.

A formatter converts a Thread to a text blob and back. The JSON and
Markdown formatters are interchangeable behind this contract.
"""

from typing import Protocol, runtime_checkable

from ..types import SaveOptions, Thread


@runtime_checkable
class Formatter(Protocol):
    """
    Bidirectional serializer between a Thread and a text encoding.

    Round-trip law: deserialize(serialize(t, opts)) reproduces t when
    opts.include_metadata and opts.include_timestamps are both true. With
    either flag false the omitted fields may come back absent.
    """

    extension: str

    def serialize(self, thread: Thread, options: SaveOptions) -> str:
        ...

    def deserialize(self, text: str) -> Thread:
        """
        Raises:
            ValidationError: If the text is not a valid encoded thread
        """
        ...
