import pytest

from relay_service.core.types import TurnEventType as E, UpstreamEventType as U
from relay_service.protocol.accumulator import PartialJsonAccumulator
from relay_service.protocol.translator import EventTranslator
from tests.upstream_events import (
    approval_request_added,
    approval_request_done,
    completed,
    failed,
    function_args_delta,
    function_call,
    function_call_added,
    function_call_done,
    mcp_args_delta,
    mcp_call_done,
    text_delta,
    text_done,
)


def translate_all(translator, raws):
    events = []
    for raw in raws:
        events.extend(translator.translate(raw))
    return events


@pytest.fixture
def translator(catalog):
    return EventTranslator(catalog)


class TestVocabulary:
    def test_every_upstream_type_has_a_handler(self, translator):
        assert set(EventTranslator.HANDLERS) == set(U)
        for name in EventTranslator.HANDLERS.values():
            assert callable(getattr(translator, name))

    def test_unknown_type_is_forwarded(self, translator):
        raw = {"type": "response.reasoning_summary_text.delta", "delta": "hmm"}
        [event] = translator.translate(raw)
        assert event.type is E.PASSTHROUGH
        assert event.data["upstream_type"] == "response.reasoning_summary_text.delta"
        assert event.data["event"] is raw

    def test_raw_event_cannot_claim_the_sentinel(self, translator):
        [event] = translator.translate({"type": "unrecognized"})
        assert event.type is E.PASSTHROUGH

    def test_missing_type_is_forwarded(self, translator):
        [event] = translator.translate({"foo": 1})
        assert event.type is E.PASSTHROUGH


class TestFunctionCalls:
    def test_order_is_preserved_and_ready_emitted_once(self, translator):
        fragments = ['{"loc', 'ation": ', '"Dub', 'lin"}']
        events = translate_all(translator, function_call("call_1", "get_weather", fragments))

        types = [e.type for e in events]
        assert types == [E.TOOL_CALL_CREATED] + [E.TOOL_CALL_ARGUMENT_DELTA] * 4 + [E.TOOL_CALL_READY]
        assert [e.data["delta"] for e in events[1:5]] == fragments
        ready = events[-1]
        assert ready.data["call_id"] == "call_1"
        assert ready.data["arguments"] == {"location": "Dublin"}
        assert ready.data["kind"] == "function_call"
        assert not translator.accumulator.has("call_1")

    def test_gated_function_requires_approval_after_ready(self, translator):
        events = translate_all(translator, function_call("call_9", "delete_repo", ['{"repo": "x"}']))
        assert [e.type for e in events][-2:] == [E.TOOL_CALL_READY, E.APPROVAL_REQUIRED]
        assert events[-1].data == {"call_id": "call_9", "name": "delete_repo", "server_label": None, "arguments": {"repo": "x"}}

    def test_duplicate_done_is_ignored(self, translator):
        events = translate_all(translator, function_call("call_1", "get_weather", ["{}"]))
        again = translator.translate(function_call_done("call_1", "get_weather", "{}"))
        assert again == []
        assert sum(1 for e in events if e.type is E.TOOL_CALL_READY) == 1

    def test_deltas_route_by_output_index(self, translator):
        translator.translate(function_call_added("call_1", "get_weather", output_index=3))
        [event] = translator.translate({
            "type": "response.function_call_arguments.delta",
            "output_index": 3,
            "delta": '{"a": 1}',
        })
        assert event.type is E.TOOL_CALL_ARGUMENT_DELTA
        assert event.data["call_id"] == "call_1"

    def test_delta_for_unknown_item_is_forwarded(self, translator):
        [event] = translator.translate(function_args_delta("ghost", "{", output_index=7))
        assert event.type is E.PASSTHROUGH

    def test_done_arguments_used_when_no_deltas_arrived(self, translator):
        translator.translate(function_call_added("call_1", "get_weather"))
        [ready] = translator.translate(function_call_done("call_1", "get_weather", '{"location": "Cork"}'))
        assert ready.data["arguments"] == {"location": "Cork"}

    def test_malformed_arguments_fail_the_turn(self, translator):
        translator.translate(function_call_added("call_1", "get_weather"))
        translator.translate(function_args_delta("call_1", '{"location": '))
        [event] = translator.translate(function_call_done("call_1", "get_weather", '{"location": '))
        assert event.type is E.TURN_FAILED
        assert event.data["call_id"] == "call_1"
        assert event.data["error_type"] == "ArgumentParseError"
        assert "call_1" in event.data["message"]


class TestRemoteCalls:
    def test_approval_request_from_gated_server(self, translator):
        events = translate_all(translator, [
            approval_request_added("mcpr_1", "list_repos", "github"),
            mcp_args_delta("mcpr_1", "{}"),
            approval_request_done("mcpr_1", "list_repos", "github", "{}"),
        ])
        assert [e.type for e in events] == [
            E.TOOL_CALL_CREATED,
            E.TOOL_CALL_ARGUMENT_DELTA,
            E.TOOL_CALL_READY,
            E.APPROVAL_REQUIRED,
        ]
        assert events[0].data["call_id"] == "mcpr_1"
        assert events[2].data["kind"] == "mcp_approval_request"
        assert events[3].data["server_label"] == "github"

    def test_executed_remote_call_carries_output_and_is_not_gated(self, translator):
        events = translator.translate(mcp_call_done("mcp_1", "list_repos", "github", {"org": "x"}, "[\"a\", \"b\"]"))
        [ready] = events
        assert ready.type is E.TOOL_CALL_READY
        assert ready.data["output"] == "[\"a\", \"b\"]"
        assert ready.data["arguments"] == {"org": "x"}

    def test_ungated_server_needs_no_approval(self, translator):
        events = translate_all(translator, [
            approval_request_added("mcpr_2", "search", "docs"),
            approval_request_done("mcpr_2", "search", "docs", '{"q": "x"}'),
        ])
        assert E.APPROVAL_REQUIRED not in [e.type for e in events]


class TestTextAndTerminals:
    def test_text_events(self, translator):
        assert translator.translate(text_delta("")) == []
        [delta] = translator.translate(text_delta("Hel"))
        [done] = translator.translate(text_done("Hello"))
        assert delta.type is E.CONTENT_DELTA and delta.data["delta"] == "Hel"
        assert done.type is E.CONTENT_DONE and done.data["text"] == "Hello"

    def test_completed(self, translator):
        [event] = translator.translate(completed("resp_7"))
        assert event.type is E.TURN_COMPLETED
        assert event.data["response_id"] == "resp_7"

    def test_failed_with_message(self, translator):
        [event] = translator.translate(failed("rate limited"))
        assert event.type is E.TURN_FAILED
        assert event.data["message"] == "rate limited"

    def test_failed_without_message_gets_generic_text(self, translator):
        [event] = translator.translate(failed(None))
        assert event.data["message"] == "unknown upstream failure"

    def test_incomplete_and_error(self, translator):
        [incomplete] = translator.translate({
            "type": "response.incomplete",
            "response": {"incomplete_details": {"reason": "max_output_tokens"}},
        })
        [error] = translator.translate({"type": "error", "message": "bad request", "code": "400"})
        assert incomplete.data["message"] == "response incomplete: max_output_tokens"
        assert error.type is E.TURN_FAILED
        assert error.data["message"] == "bad request"


class TestFlushAndReset:
    def test_flush_completes_calls_whose_arguments_parse(self, catalog):
        acc = PartialJsonAccumulator()
        translator = EventTranslator(catalog, acc)
        translator.translate(function_call_added("good", "get_weather", output_index=0))
        translator.translate(function_args_delta("good", '{"location": "Galway"}', output_index=0))
        translator.translate(function_call_added("empty", "get_weather", output_index=1))

        events = translator.flush()
        assert [e.type for e in events] == [E.TOOL_CALL_READY, E.TOOL_CALL_READY]
        assert events[0].data["arguments"] == {"location": "Galway"}
        # a call that never received a fragment has no arguments
        assert events[1].data["call_id"] == "empty"
        assert events[1].data["arguments"] == {}
        assert not acc.has("good")

    def test_flush_fails_on_truncated_arguments(self, catalog):
        acc = PartialJsonAccumulator()
        translator = EventTranslator(catalog, acc)
        translator.translate(function_call_added("bad", "get_weather"))
        translator.translate(function_args_delta("bad", '{"loc'))

        [event] = translator.flush()
        assert event.type is E.TURN_FAILED
        assert event.data["call_id"] == "bad"
        assert event.data["error_type"] == "ArgumentParseError"
        assert not acc.has("bad")

    def test_reset_forgets_routing_but_not_ready_calls(self, translator):
        translate_all(translator, function_call("call_1", "get_weather", ["{}"]))
        translator.translate(function_call_added("call_2", "get_weather", output_index=1))
        translator.translate(function_args_delta("call_2", "{", output_index=1))
        translator.reset()
        assert translator.calls == {}
        assert not translator.accumulator.has("call_2")
        assert translator.translate(function_call_done("call_1", "get_weather", "{}")) == []
