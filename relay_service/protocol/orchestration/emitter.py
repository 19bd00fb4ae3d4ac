import json
from typing import Any, Dict

from relay_service.core.logging import logger
from relay_service.core.types import TurnEvent

DONE_FRAME = b"data: [DONE]\n\n"


class SseEmitter:
    """Encodes normalized turn events as `data: {...}\\n\\n` text-stream frames"""

    def frame(self, payload: Dict[str, Any]) -> bytes:
        return f"data: {json.dumps(payload, default=str)}\n\n".encode("utf-8")

    def emit(self, event: TurnEvent) -> bytes:
        try:
            return self.frame(event.to_dict())
        except (TypeError, ValueError) as e:
            logger.error(f"Error serializing {event.type} event: {e}")
            return self.error(f"Failed to serialize {event.type} event: {e}")

    def error(self, message: str, **extra: Any) -> bytes:
        return self.frame({"event": "error", "data": {"message": message, **extra}})

    def done(self) -> bytes:
        return DONE_FRAME
