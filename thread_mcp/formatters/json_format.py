"""JSON thread encoding."""

import json

from ..errors import ValidationError
from ..types import SaveOptions, Thread


class JsonFormatter:
    extension = ".json"

    def serialize(self, thread: Thread, options: SaveOptions) -> str:
        data = thread.to_dict(
            include_metadata=options.include_metadata,
            include_timestamps=options.include_timestamps,
        )
        return json.dumps(data, indent=2, ensure_ascii=False)

    def deserialize(self, text: str) -> Thread:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid thread JSON: {e}") from e
        return Thread.from_dict(data)
