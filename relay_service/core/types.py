from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Dict, List, Optional, Tuple, Union


class Role(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class UpstreamEventType(StrEnum):
    """Discriminants of the raw events produced by the upstream turn API."""

    ITEM_ADDED = "response.output_item.added"
    ITEM_DONE = "response.output_item.done"
    TEXT_DELTA = "response.output_text.delta"
    TEXT_DONE = "response.output_text.done"
    FUNCTION_ARGS_DELTA = "response.function_call_arguments.delta"
    FUNCTION_ARGS_DONE = "response.function_call_arguments.done"
    MCP_ARGS_DELTA = "response.mcp_call_arguments.delta"
    MCP_ARGS_DONE = "response.mcp_call_arguments.done"
    COMPLETED = "response.completed"
    FAILED = "response.failed"
    INCOMPLETE = "response.incomplete"
    ERROR = "error"
    UNRECOGNIZED = "unrecognized"

    @classmethod
    def parse(cls, value: Any) -> "UpstreamEventType":
        try:
            member = cls(value)
        except ValueError:
            return cls.UNRECOGNIZED
        # never let a raw event claim the sentinel
        if member is cls.UNRECOGNIZED:
            return cls.UNRECOGNIZED
        return member


class TurnEventType(StrEnum):
    """Normalized event vocabulary delivered to the downstream consumer."""

    CONTENT_DELTA = "content.delta"
    CONTENT_DONE = "content.done"
    TOOL_CALL_CREATED = "tool_call.created"
    TOOL_CALL_ARGUMENT_DELTA = "tool_call.argument.delta"
    TOOL_CALL_READY = "tool_call.ready"
    TOOL_CALL_OUTPUT = "tool_call.output"
    APPROVAL_REQUIRED = "approval.required"
    APPROVAL_RESOLVED = "approval.resolved"
    TURN_COMPLETED = "turn.completed"
    TURN_FAILED = "turn.failed"
    TURN_CANCELLED = "turn.cancelled"
    PASSTHROUGH = "passthrough"
    ERROR = "error"


class TurnState(StrEnum):
    IDLE = "idle"
    STREAMING = "streaming"
    AWAITING_APPROVAL = "awaiting_approval"
    DISPATCHING_LOCAL_TOOL = "dispatching_local_tool"
    RESUMING = "resuming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (TurnState.COMPLETED, TurnState.FAILED, TurnState.CANCELLED)


class ApprovalDecision(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"


class CallKind(StrEnum):
    FUNCTION_CALL = "function_call"
    MCP_CALL = "mcp_call"
    MCP_APPROVAL_REQUEST = "mcp_approval_request"


# --- Message content parts ---

@dataclass(frozen=True)
class TextPart:
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ToolCallPart:
    call_id: str
    name: str
    arguments: Any = None
    server_label: Optional[str] = None
    kind: CallKind = CallKind.FUNCTION_CALL
    # only set for calls the upstream executed itself
    output: Any = None

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "type": "tool_call",
            "call_id": self.call_id,
            "name": self.name,
            "arguments": self.arguments,
            "server_label": self.server_label,
            "kind": str(self.kind),
        }
        if self.output is not None:
            out["output"] = self.output
        return out


@dataclass(frozen=True)
class ToolResultPart:
    call_id: str
    name: str
    output: Any
    is_error: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "tool_result",
            "call_id": self.call_id,
            "name": self.name,
            "output": self.output,
            "is_error": self.is_error,
        }


@dataclass(frozen=True)
class ApprovalResponsePart:
    call_id: str
    approved: bool
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "approval_response",
            "call_id": self.call_id,
            "approved": self.approved,
            "reason": self.reason,
        }


ContentPart = Union[TextPart, ToolCallPart, ToolResultPart, ApprovalResponsePart]


@dataclass(frozen=True)
class Message:
    role: Role
    parts: Tuple[ContentPart, ...] = ()

    @classmethod
    def text(cls, role: Role | str, text: str) -> "Message":
        return cls(role=Role(role), parts=(TextPart(text),))

    @property
    def content(self) -> str:
        """Concatenated text of the message, ignoring structured parts."""
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    def to_dict(self) -> Dict[str, Any]:
        return {"role": str(self.role), "content": [p.to_dict() for p in self.parts]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        """
        Accepts both the compact `{"role": "user", "content": "hi"}` form and the
        part list produced by `to_dict()`.
        """
        role = Role(data.get("role", "user"))
        content = data.get("content", "")
        if isinstance(content, str):
            return cls(role=role, parts=(TextPart(content),))
        parts: List[ContentPart] = []
        for raw in content or []:
            if isinstance(raw, str):
                parts.append(TextPart(raw))
                continue
            ptype = raw.get("type", "text")
            if ptype in ("text", "input_text", "output_text"):
                parts.append(TextPart(raw.get("text", "")))
            elif ptype == "tool_call":
                parts.append(ToolCallPart(
                    call_id=raw["call_id"],
                    name=raw["name"],
                    arguments=raw.get("arguments"),
                    server_label=raw.get("server_label"),
                    kind=CallKind(raw.get("kind", CallKind.FUNCTION_CALL)),
                    output=raw.get("output"),
                ))
            elif ptype == "tool_result":
                parts.append(ToolResultPart(
                    call_id=raw["call_id"],
                    name=raw.get("name", ""),
                    output=raw.get("output"),
                    is_error=bool(raw.get("is_error", False)),
                ))
            elif ptype == "approval_response":
                parts.append(ApprovalResponsePart(
                    call_id=raw["call_id"],
                    approved=bool(raw["approved"]),
                    reason=raw.get("reason"),
                ))
            else:
                raise ValueError(f"Unknown content part type: {ptype!r}")
        return cls(role=role, parts=tuple(parts))


# --- Turn bookkeeping ---

@dataclass
class PendingToolCall:
    call_id: str
    name: str
    kind: CallKind
    server_label: Optional[str] = None
    output_index: Optional[int] = None
    item_id: Optional[str] = None
    done: bool = False


@dataclass
class ApprovalRequest:
    call_id: str
    tool_name: str
    server_label: Optional[str] = None
    arguments: Any = None
    decision: ApprovalDecision = ApprovalDecision.PENDING
    reason: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.decision is not ApprovalDecision.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "call_id": self.call_id,
            "tool_name": self.tool_name,
            "server_label": self.server_label,
            "arguments": self.arguments,
            "decision": str(self.decision),
            "reason": self.reason,
        }


@dataclass
class TurnEvent:
    type: TurnEventType
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"event": str(self.type), "data": self.data}


def dumps_output(output: Any) -> str:
    """Tool outputs travel upstream as JSON text."""
    if isinstance(output, str):
        return output
    return json.dumps(output, default=str)
