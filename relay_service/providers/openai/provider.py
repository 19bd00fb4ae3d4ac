import os
from typing import Any, AsyncGenerator, Dict, List, Optional, Sequence

import httpx
from openai import AsyncOpenAI

from relay_service.core.interfaces import ModelProvider
from relay_service.core.logging import logger
from relay_service.core.types import (
    ApprovalResponsePart,
    CallKind,
    Message,
    Role,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    dumps_output,
)


def _arguments_text(arguments: Any) -> str:
    if arguments is None:
        return "{}"
    return dumps_output(arguments)


def _call_item(part: ToolCallPart) -> Dict[str, Any]:
    if part.kind is CallKind.FUNCTION_CALL:
        return {
            "type": "function_call",
            "call_id": part.call_id,
            "name": part.name,
            "arguments": _arguments_text(part.arguments),
        }
    item = {
        "type": str(part.kind),
        "id": part.call_id,
        "server_label": part.server_label or "",
        "name": part.name,
        "arguments": _arguments_text(part.arguments),
    }
    if part.kind is CallKind.MCP_CALL and part.output is not None:
        item["output"] = dumps_output(part.output)
    return item


def to_input_items(messages: Sequence[Message]) -> List[Dict[str, Any]]:
    """
    Map conversation history onto Responses API input items. Text parts
    become role messages; calls, results and approval responses become
    their own typed items, in the order they appear.
    """
    items: List[Dict[str, Any]] = []
    for message in messages:
        text: List[str] = []

        def flush_text():
            if text and message.role is not Role.TOOL:
                items.append({"role": str(message.role), "content": "".join(text)})
            text.clear()

        for part in message.parts:
            if isinstance(part, TextPart):
                text.append(part.text)
                continue
            flush_text()
            if isinstance(part, ToolCallPart):
                items.append(_call_item(part))
            elif isinstance(part, ToolResultPart):
                items.append({
                    "type": "function_call_output",
                    "call_id": part.call_id,
                    "output": dumps_output(part.output),
                })
            elif isinstance(part, ApprovalResponsePart):
                item = {
                    "type": "mcp_approval_response",
                    "approval_request_id": part.call_id,
                    "approve": part.approved,
                }
                if part.reason and not part.approved:
                    item["reason"] = part.reason
                items.append(item)
        flush_text()
    return items


class OpenAIResponsesProvider(ModelProvider):
    """Streams turns from the OpenAI Responses API"""

    def __init__(
        self,
        model: str = "gpt-4.1",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        connect_timeout: float = 10.0,
        max_output_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ):
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.connect_timeout = connect_timeout
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature
        self._client: Optional[AsyncOpenAI] = None

    @property
    def client(self) -> AsyncOpenAI:
        # created on first use so the service starts without credentials
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.api_key or os.getenv("OPENAI_API_KEY"),
                base_url=self.base_url or os.getenv("OPENAI_BASE_URL"),
                # streams stay open while the user decides on approvals
                timeout=httpx.Timeout(None, connect=self.connect_timeout),
            )
        return self._client

    def build_request(
        self,
        messages: Sequence[Message],
        tools: Optional[List[Dict[str, Any]]] = None,
        instructions: Optional[str] = None,
        model: Optional[str] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "model": model or self.model,
            "input": to_input_items(messages),
            "stream": True,
            "parallel_tool_calls": False,
        }
        if tools:
            params["tools"] = tools
        if instructions:
            params["instructions"] = instructions
        if self.max_output_tokens is not None:
            params["max_output_tokens"] = self.max_output_tokens
        if self.temperature is not None:
            params["temperature"] = self.temperature
        return params

    async def stream(
        self,
        messages: Sequence[Message],
        tools: Optional[List[Dict[str, Any]]] = None,
        instructions: Optional[str] = None,
        model: Optional[str] = None,
    ) -> AsyncGenerator[Dict[str, Any], None]:
        params = self.build_request(messages, tools, instructions, model)
        logger.info(f"Opening upstream stream: model={params['model']}, items={len(params['input'])}, tools={len(tools or [])}")
        stream = await self.client.responses.create(**params)
        try:
            async for event in stream:
                yield event.model_dump()
        finally:
            await stream.close()
            logger.debug("Upstream stream closed")
