import json

from relay_service.core.types import TurnEvent, TurnEventType as E
from relay_service.protocol.orchestration.emitter import SseEmitter


def parse_frame(b: bytes) -> dict:
    """Helper to decode a `data: {...}` frame into a dict"""
    text = b.decode("utf-8")
    assert text.startswith("data: ")
    assert text.endswith("\n\n")
    return json.loads(text[len("data: "):].strip())


def test_event_frame():
    emitter = SseEmitter()
    frame = parse_frame(emitter.emit(TurnEvent(E.CONTENT_DELTA, {"item_id": "msg_1", "delta": "hi"})))
    assert frame == {"event": "content.delta", "data": {"item_id": "msg_1", "delta": "hi"}}


def test_error_frame():
    emitter = SseEmitter()
    frame = parse_frame(emitter.error("boom", call_id="c1"))
    assert frame == {"event": "error", "data": {"message": "boom", "call_id": "c1"}}


def test_done_sentinel():
    assert SseEmitter().done() == b"data: [DONE]\n\n"


def test_unserializable_payload_becomes_error_frame():
    circular = {}
    circular["self"] = circular
    frame = parse_frame(SseEmitter().emit(TurnEvent(E.TOOL_CALL_OUTPUT, {"output": circular})))
    assert frame["event"] == "error"
    assert "tool_call.output" in frame["data"]["message"]


def test_frames_are_single_line():
    frame = SseEmitter().emit(TurnEvent(E.CONTENT_DONE, {"text": "line one\nline two"}))
    assert frame.count(b"\n") == 2
