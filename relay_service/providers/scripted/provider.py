import asyncio
import json
from typing import Any, AsyncGenerator, Dict, List, Optional, Sequence

from relay_service.core.interfaces import ModelProvider
from relay_service.core.types import Message


class ScriptedProvider(ModelProvider):
    """
    Replays canned upstream events. Each call to `stream` consumes the next
    segment; once the script runs out the last segment is repeated. Segments
    may be given inline or loaded from a JSON file holding a list of them.
    """

    def __init__(
        self,
        segments: Optional[List[List[Dict[str, Any]]]] = None,
        script_path: Optional[str] = None,
        delay: float = 0.0,
    ):
        if segments is None and script_path:
            with open(script_path, "r", encoding="utf-8") as f:
                segments = json.load(f)
        self.segments = segments or [[
            {"type": "response.output_text.delta", "item_id": "msg_1", "output_index": 0, "delta": "Hello"},
            {"type": "response.output_text.done", "item_id": "msg_1", "output_index": 0, "text": "Hello"},
            {"type": "response.completed", "response": {"id": "resp_scripted", "usage": None}},
        ]]
        self.delay = delay
        self.requests: List[Dict[str, Any]] = []
        self.closed = 0

    async def stream(
        self,
        messages: Sequence[Message],
        tools: Optional[List[Dict[str, Any]]] = None,
        instructions: Optional[str] = None,
        model: Optional[str] = None,
    ) -> AsyncGenerator[Dict[str, Any], None]:
        index = min(len(self.requests), len(self.segments) - 1)
        self.requests.append({
            "messages": list(messages),
            "tools": tools,
            "instructions": instructions,
            "model": model,
        })
        try:
            for event in self.segments[index]:
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield event
        finally:
            self.closed += 1
