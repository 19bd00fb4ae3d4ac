from unittest.mock import AsyncMock, MagicMock

import pytest

from relay_service.core.types import (
    ApprovalResponsePart,
    CallKind,
    Message,
    Role,
    TextPart,
    ToolCallPart,
    ToolResultPart,
)
from relay_service.providers.openai.provider import OpenAIResponsesProvider, to_input_items


def test_history_maps_to_input_items():
    history = [
        Message.text("system", "be brief"),
        Message.text("user", "weather and repos?"),
        Message(Role.ASSISTANT, (
            TextPart("Checking."),
            ToolCallPart("call_1", "get_weather", {"location": "Dublin"}),
            ToolCallPart("mcpr_1", "list_repos", {}, server_label="github", kind=CallKind.MCP_APPROVAL_REQUEST),
        )),
        Message(Role.TOOL, (ToolResultPart("call_1", "get_weather", {"temperature": "12°C"}),)),
        Message(Role.TOOL, (ApprovalResponsePart("mcpr_1", approved=False, reason="no"),)),
    ]
    items = to_input_items(history)
    assert items == [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "weather and repos?"},
        {"role": "assistant", "content": "Checking."},
        {"type": "function_call", "call_id": "call_1", "name": "get_weather", "arguments": '{"location": "Dublin"}'},
        {"type": "mcp_approval_request", "id": "mcpr_1", "server_label": "github", "name": "list_repos", "arguments": "{}"},
        {"type": "function_call_output", "call_id": "call_1", "output": '{"temperature": "12\\u00b0C"}'},
        {"type": "mcp_approval_response", "approval_request_id": "mcpr_1", "approve": False, "reason": "no"},
    ]


def test_executed_remote_call_keeps_its_output():
    part = ToolCallPart("mcp_1", "search", {"q": "x"}, server_label="docs", kind=CallKind.MCP_CALL, output="found")
    [item] = to_input_items([Message(Role.ASSISTANT, (part,))])
    assert item["type"] == "mcp_call"
    assert item["output"] == "found"


def test_request_parameters():
    provider = OpenAIResponsesProvider(model="gpt-4.1", max_output_tokens=256)
    params = provider.build_request(
        [Message.text("user", "hi")],
        tools=[{"type": "web_search"}],
        instructions="be nice",
        model="gpt-4.1-mini",
    )
    assert params["model"] == "gpt-4.1-mini"
    assert params["stream"] is True
    assert params["parallel_tool_calls"] is False
    assert params["tools"] == [{"type": "web_search"}]
    assert params["instructions"] == "be nice"
    assert params["max_output_tokens"] == 256
    assert "temperature" not in params


@pytest.mark.asyncio
async def test_stream_yields_dicts_and_closes():
    event = MagicMock()
    event.model_dump.return_value = {"type": "response.completed", "response": {"id": "r"}}

    class FakeStream:
        def __init__(self):
            self.close = AsyncMock()

        def __aiter__(self):
            return self._gen()

        async def _gen(self):
            yield event

    fake = FakeStream()
    client = MagicMock()
    client.responses.create = AsyncMock(return_value=fake)
    provider = OpenAIResponsesProvider()
    provider._client = client

    events = [e async for e in provider.stream([Message.text("user", "hi")])]

    assert events == [{"type": "response.completed", "response": {"id": "r"}}]
    fake.close.assert_awaited_once()
    kwargs = client.responses.create.call_args.kwargs
    assert kwargs["input"] == [{"role": "user", "content": "hi"}]
    assert "tools" not in kwargs
