"""Builders for raw Responses API stream events used across the tests."""
import json
from typing import Any, Dict, List, Optional


def text_delta(delta: str, item_id: str = "msg_1", output_index: int = 0) -> Dict[str, Any]:
    return {"type": "response.output_text.delta", "item_id": item_id, "output_index": output_index, "delta": delta}


def text_done(text: str, item_id: str = "msg_1", output_index: int = 0) -> Dict[str, Any]:
    return {"type": "response.output_text.done", "item_id": item_id, "output_index": output_index, "text": text}


def function_call_added(call_id: str, name: str, output_index: int = 0, item_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "type": "response.output_item.added",
        "output_index": output_index,
        "item": {"type": "function_call", "id": item_id or f"fc_{call_id}", "call_id": call_id, "name": name, "arguments": ""},
    }


def function_args_delta(call_id: str, delta: str, output_index: int = 0, item_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "type": "response.function_call_arguments.delta",
        "item_id": item_id or f"fc_{call_id}",
        "output_index": output_index,
        "delta": delta,
    }


def function_call_done(call_id: str, name: str, arguments: str, output_index: int = 0, item_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "type": "response.output_item.done",
        "output_index": output_index,
        "item": {"type": "function_call", "id": item_id or f"fc_{call_id}", "call_id": call_id, "name": name, "arguments": arguments},
    }


def function_call(call_id: str, name: str, fragments: List[str], output_index: int = 0) -> List[Dict[str, Any]]:
    """A complete function call: added, one delta per fragment, done."""
    events = [function_call_added(call_id, name, output_index)]
    events += [function_args_delta(call_id, f, output_index) for f in fragments]
    events.append(function_call_done(call_id, name, "".join(fragments), output_index))
    return events


def approval_request_added(item_id: str, name: str, server_label: str, output_index: int = 0) -> Dict[str, Any]:
    return {
        "type": "response.output_item.added",
        "output_index": output_index,
        "item": {"type": "mcp_approval_request", "id": item_id, "name": name, "server_label": server_label},
    }


def mcp_args_delta(item_id: str, delta: str, output_index: int = 0) -> Dict[str, Any]:
    return {"type": "response.mcp_call_arguments.delta", "item_id": item_id, "output_index": output_index, "delta": delta}


def approval_request_done(item_id: str, name: str, server_label: str, arguments: str, output_index: int = 0) -> Dict[str, Any]:
    return {
        "type": "response.output_item.done",
        "output_index": output_index,
        "item": {
            "type": "mcp_approval_request",
            "id": item_id,
            "name": name,
            "server_label": server_label,
            "arguments": arguments,
        },
    }


def mcp_call_done(item_id: str, name: str, server_label: str, arguments: Any, output: Any, output_index: int = 0) -> Dict[str, Any]:
    return {
        "type": "response.output_item.done",
        "output_index": output_index,
        "item": {
            "type": "mcp_call",
            "id": item_id,
            "name": name,
            "server_label": server_label,
            "arguments": json.dumps(arguments),
            "output": output,
            "error": None,
        },
    }


def completed(response_id: str = "resp_1") -> Dict[str, Any]:
    return {"type": "response.completed", "response": {"id": response_id, "usage": {"total_tokens": 42}}}


def failed(message: Optional[str] = "server exploded") -> Dict[str, Any]:
    error = {"code": "server_error", "message": message} if message else None
    return {"type": "response.failed", "response": {"id": "resp_x", "error": error}}


def text_segment(text: str, response_id: str = "resp_text") -> List[Dict[str, Any]]:
    """A segment that only answers with text."""
    half = len(text) // 2
    return [text_delta(text[:half]), text_delta(text[half:]), text_done(text), completed(response_id)]
