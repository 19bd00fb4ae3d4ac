import json
from typing import Any, Dict, List

from relay_service.core.errors import ArgumentParseError


class PartialJsonAccumulator:
    """
    Rebuilds tool-call arguments from the ordered fragments of a stream.

    Fragments are concatenated exactly as received; the single-producer
    stream already guarantees their order. One buffer exists per
    outstanding call and is dropped as soon as it parses.
    """

    def __init__(self):
        self._buffers: Dict[str, List[str]] = {}

    def feed(self, call_id: str, fragment: str) -> None:
        self._buffers.setdefault(call_id, []).append(fragment)

    def has(self, call_id: str) -> bool:
        return call_id in self._buffers

    def text(self, call_id: str) -> str:
        return "".join(self._buffers.get(call_id, ()))

    def finalize(self, call_id: str) -> Any:
        """
        Parse what has been buffered for `call_id`, whether or not the stream
        ever marked it done. An empty buffer means no arguments.
        """
        raw = self.text(call_id)
        if not raw.strip():
            self._buffers.pop(call_id, None)
            return {}
        try:
            value = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ArgumentParseError(call_id, str(e)) from e
        self._buffers.pop(call_id, None)
        return value

    def discard(self, call_id: str) -> None:
        self._buffers.pop(call_id, None)

    def clear(self) -> None:
        self._buffers.clear()
