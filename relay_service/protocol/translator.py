"""
Maps raw upstream stream events onto the normalized turn vocabulary.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from relay_service.core.catalog import ToolCatalog
from relay_service.core.errors import ArgumentParseError
from relay_service.core.logging import logger
from relay_service.core.types import (
    CallKind,
    PendingToolCall,
    TurnEvent,
    TurnEventType as E,
    UpstreamEventType as U,
)
from relay_service.protocol.accumulator import PartialJsonAccumulator

GENERIC_FAILURE = "unknown upstream failure"

_CALL_ITEM_TYPES = {k.value: k for k in CallKind}


def _failure_message(error: Any) -> str:
    if isinstance(error, dict):
        message = error.get("message")
        if message:
            return str(message)
    elif isinstance(error, str) and error:
        return error
    return GENERIC_FAILURE


class EventTranslator:
    """
    One translator lives for one turn. `translate` is total over
    UpstreamEventType: every discriminant has a handler and anything the
    enum does not know is forwarded as a passthrough event.
    """

    HANDLERS: Dict[U, str] = {
        U.ITEM_ADDED: "_on_item_added",
        U.ITEM_DONE: "_on_item_done",
        U.TEXT_DELTA: "_on_text_delta",
        U.TEXT_DONE: "_on_text_done",
        U.FUNCTION_ARGS_DELTA: "_on_args_delta",
        U.FUNCTION_ARGS_DONE: "_on_args_done",
        U.MCP_ARGS_DELTA: "_on_args_delta",
        U.MCP_ARGS_DONE: "_on_args_done",
        U.COMPLETED: "_on_completed",
        U.FAILED: "_on_failed",
        U.INCOMPLETE: "_on_incomplete",
        U.ERROR: "_on_error",
        U.UNRECOGNIZED: "_on_unrecognized",
    }

    def __init__(self, catalog: ToolCatalog, accumulator: Optional[PartialJsonAccumulator] = None):
        self.catalog = catalog
        self.accumulator = accumulator or PartialJsonAccumulator()
        self.calls: Dict[str, PendingToolCall] = {}
        self._by_item: Dict[str, str] = {}
        self._by_index: Dict[int, str] = {}
        self._ready: set[str] = set()
        self._dispatch: Dict[U, Callable[[Dict[str, Any]], List[TurnEvent]]] = {
            kind: getattr(self, name) for kind, name in self.HANDLERS.items()
        }

    def translate(self, raw: Dict[str, Any]) -> List[TurnEvent]:
        kind = U.parse(raw.get("type"))
        return self._dispatch[kind](raw)

    def reset(self) -> None:
        """Forget per-segment call routing; ready call ids stay remembered for the turn."""
        for call_id in self.calls:
            self.accumulator.discard(call_id)
        self.calls.clear()
        self._by_item.clear()
        self._by_index.clear()

    # --- helpers ---

    def _resolve_call(self, raw: Dict[str, Any]) -> Optional[PendingToolCall]:
        call_id = self._by_item.get(raw.get("item_id") or "")
        if call_id is None and raw.get("output_index") is not None:
            call_id = self._by_index.get(raw["output_index"])
        return self.calls.get(call_id) if call_id else None

    @staticmethod
    def _call_id_for(item: Dict[str, Any], kind: CallKind) -> str:
        # function calls are answered by call_id; mcp items by their item id
        if kind is CallKind.FUNCTION_CALL:
            return item.get("call_id") or item.get("id") or ""
        return item.get("id") or item.get("call_id") or ""

    def _track(self, raw: Dict[str, Any], item: Dict[str, Any], kind: CallKind) -> PendingToolCall:
        call_id = self._call_id_for(item, kind)
        call = self.calls.get(call_id)
        if call is None:
            call = PendingToolCall(
                call_id=call_id,
                name=item.get("name", ""),
                kind=kind,
                server_label=item.get("server_label"),
                output_index=raw.get("output_index"),
                item_id=item.get("id"),
            )
            self.calls[call_id] = call
            if call.item_id:
                self._by_item[call.item_id] = call_id
            if call.output_index is not None:
                self._by_index[call.output_index] = call_id
        return call

    def _passthrough(self, raw: Dict[str, Any]) -> List[TurnEvent]:
        return [TurnEvent(E.PASSTHROUGH, {"upstream_type": raw.get("type"), "event": raw})]

    # --- handlers ---

    def _on_item_added(self, raw: Dict[str, Any]) -> List[TurnEvent]:
        item = raw.get("item") or {}
        kind = _CALL_ITEM_TYPES.get(item.get("type"))
        if kind is None:
            return self._passthrough(raw)
        call = self._track(raw, item, kind)
        events = [TurnEvent(E.TOOL_CALL_CREATED, {
            "call_id": call.call_id,
            "name": call.name,
            "server_label": call.server_label,
            "kind": str(kind),
        })]
        # approval requests arrive with their arguments already complete
        arguments = item.get("arguments")
        if arguments and not self.accumulator.has(call.call_id):
            self.accumulator.feed(call.call_id, arguments)
        return events

    def _on_args_delta(self, raw: Dict[str, Any]) -> List[TurnEvent]:
        call = self._resolve_call(raw)
        if call is None:
            logger.warning(f"Argument delta for unknown item {raw.get('item_id')!r}; forwarding as passthrough")
            return self._passthrough(raw)
        delta = raw.get("delta") or ""
        self.accumulator.feed(call.call_id, delta)
        return [TurnEvent(E.TOOL_CALL_ARGUMENT_DELTA, {"call_id": call.call_id, "delta": delta})]

    def _on_args_done(self, raw: Dict[str, Any]) -> List[TurnEvent]:
        call = self._resolve_call(raw)
        if call is None:
            return self._passthrough(raw)
        arguments = raw.get("arguments")
        if arguments and not self.accumulator.has(call.call_id):
            self.accumulator.feed(call.call_id, arguments)
        return []

    def _on_item_done(self, raw: Dict[str, Any]) -> List[TurnEvent]:
        item = raw.get("item") or {}
        kind = _CALL_ITEM_TYPES.get(item.get("type"))
        if kind is None:
            return self._passthrough(raw)
        call = self._track(raw, item, kind)
        call.done = True
        if call.call_id in self._ready:
            logger.warning(f"Duplicate completion for call {call.call_id}; ignoring")
            return []

        arguments = item.get("arguments")
        if arguments and not self.accumulator.has(call.call_id):
            self.accumulator.feed(call.call_id, arguments)
        try:
            parsed = self.accumulator.finalize(call.call_id)
        except ArgumentParseError as e:
            logger.error(str(e))
            return [TurnEvent(E.TURN_FAILED, {
                "message": str(e),
                "call_id": call.call_id,
                "error_type": type(e).__name__,
            })]
        output = None
        if kind is CallKind.MCP_CALL:
            output = item.get("output") if item.get("error") is None else {"error": item.get("error")}
        return self._ready_events(call, parsed, output)

    def flush(self) -> List[TurnEvent]:
        """
        Complete calls whose stream ended before their done event. A call with
        no buffered arguments gets `{}`; one whose arguments do not parse fails
        the turn.
        """
        events: List[TurnEvent] = []
        for call in list(self.calls.values()):
            if call.call_id in self._ready:
                continue
            try:
                parsed = self.accumulator.finalize(call.call_id)
            except ArgumentParseError as e:
                logger.error(f"Incomplete call {call.call_id} at end of stream: {e}")
                self.accumulator.discard(call.call_id)
                events.append(TurnEvent(E.TURN_FAILED, {
                    "message": str(e),
                    "call_id": call.call_id,
                    "error_type": type(e).__name__,
                }))
                return events
            logger.info(f"Completed call {call.call_id} from buffered arguments")
            call.done = True
            events.extend(self._ready_events(call, parsed, None))
        return events

    def _ready_events(self, call: PendingToolCall, parsed: Any, output: Any) -> List[TurnEvent]:
        self._ready.add(call.call_id)
        data = {
            "call_id": call.call_id,
            "name": call.name,
            "server_label": call.server_label,
            "kind": str(call.kind),
            "arguments": parsed,
        }
        if output is not None:
            data["output"] = output
        events = [TurnEvent(E.TOOL_CALL_READY, data)]
        if self.needs_approval(call):
            events.append(TurnEvent(E.APPROVAL_REQUIRED, {
                "call_id": call.call_id,
                "name": call.name,
                "server_label": call.server_label,
                "arguments": parsed,
            }))
        return events

    def needs_approval(self, call: PendingToolCall) -> bool:
        # mcp_call items are executed upstream after any approval already happened
        if call.kind is CallKind.MCP_CALL:
            return False
        return self.catalog.requires_approval(call.name, call.server_label)

    def _on_text_delta(self, raw: Dict[str, Any]) -> List[TurnEvent]:
        delta = raw.get("delta") or ""
        if not delta:
            return []
        return [TurnEvent(E.CONTENT_DELTA, {"item_id": raw.get("item_id"), "delta": delta})]

    def _on_text_done(self, raw: Dict[str, Any]) -> List[TurnEvent]:
        return [TurnEvent(E.CONTENT_DONE, {"item_id": raw.get("item_id"), "text": raw.get("text", "")})]

    def _on_completed(self, raw: Dict[str, Any]) -> List[TurnEvent]:
        response = raw.get("response") or {}
        return [TurnEvent(E.TURN_COMPLETED, {
            "response_id": response.get("id"),
            "usage": response.get("usage"),
        })]

    def _on_failed(self, raw: Dict[str, Any]) -> List[TurnEvent]:
        response = raw.get("response") or {}
        error = response.get("error") or {}
        return [TurnEvent(E.TURN_FAILED, {
            "message": _failure_message(error),
            "code": error.get("code") if isinstance(error, dict) else None,
            "error_type": "UpstreamFailure",
        })]

    def _on_incomplete(self, raw: Dict[str, Any]) -> List[TurnEvent]:
        details = (raw.get("response") or {}).get("incomplete_details") or {}
        reason = details.get("reason")
        message = f"response incomplete: {reason}" if reason else GENERIC_FAILURE
        return [TurnEvent(E.TURN_FAILED, {"message": message, "error_type": "UpstreamFailure"})]

    def _on_error(self, raw: Dict[str, Any]) -> List[TurnEvent]:
        return [TurnEvent(E.TURN_FAILED, {
            "message": _failure_message(raw),
            "code": raw.get("code"),
            "error_type": "UpstreamFailure",
        })]

    def _on_unrecognized(self, raw: Dict[str, Any]) -> List[TurnEvent]:
        logger.debug(f"Unrecognized upstream event {raw.get('type')!r}; forwarding")
        return self._passthrough(raw)
