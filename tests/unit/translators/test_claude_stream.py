"""
Tests unitaires de l'encodeur SSE Claude (discipline des blocs).
"""
import json

from llm_gateway.core.models import EventType, StreamEvent, ToolCall, Usage
from llm_gateway.translators.claude import ClaudeStreamEncoder


def _parse(frames):
    events = []
    for frame in frames:
        head, data = frame.strip().split("\n", 1)
        assert head.startswith("event: ")
        payload = json.loads(data[len("data: "):])
        assert payload["type"] == head[len("event: "):]
        events.append(payload)
    return events


def _encode(encoder, events):
    frames = encoder.start()
    for event in events:
        frames += encoder.encode(event)
    frames += encoder.finish()
    return _parse(frames)


def _assert_block_discipline(events):
    open_index = None
    expected = 0
    for event in events:
        if event["type"] == "content_block_start":
            assert open_index is None, "bloc ouvert avant la fermeture du précédent"
            assert event["index"] == expected
            open_index = event["index"]
        elif event["type"] == "content_block_delta":
            assert event["index"] == open_index
        elif event["type"] == "content_block_stop":
            assert event["index"] == open_index
            open_index = None
            expected += 1
    assert open_index is None


def test_thinking_text_tool_sequence():
    encoder = ClaudeStreamEncoder("claude-sonnet-4-5")
    events = _encode(encoder, [
        StreamEvent.thinking_delta("Let me"),
        StreamEvent.thinking_delta(" think"),
        StreamEvent.text_delta("Answer"),
        StreamEvent.tool_use(ToolCall(id="toolu_1", name="lookup", arguments="{\"q\": 1}")),
        StreamEvent.text_delta("After"),
        StreamEvent(type=EventType.USAGE, usage=Usage(10, 7, 17)),
        StreamEvent(type=EventType.MESSAGE_DELTA, stop_reason="tool_use"),
        StreamEvent(type=EventType.MESSAGE_STOP),
    ])

    _assert_block_discipline(events)
    types = [e["type"] for e in events]
    assert types[0] == "message_start"
    assert types[-2:] == ["message_delta", "message_stop"]
    assert types.count("message_stop") == 1

    starts = [e["content_block"] for e in events if e["type"] == "content_block_start"]
    assert [b["type"] for b in starts] == ["thinking", "text", "tool_use", "text"]
    assert starts[2] == {"type": "tool_use", "id": "toolu_1", "name": "lookup", "input": {}}

    tool_delta = next(e for e in events if e["type"] == "content_block_delta" and e["index"] == 2)
    assert json.loads(tool_delta["delta"]["partial_json"]) == {"q": 1}

    message_delta = events[-2]
    assert message_delta["delta"]["stop_reason"] == "tool_use"
    assert message_delta["usage"]["output_tokens"] == 7


def test_message_start_announces_requested_model():
    encoder = ClaudeStreamEncoder("my-alias")

    start = _parse(encoder.start())[0]

    assert start["message"]["model"] == "my-alias"
    assert encoder.start() == []


def test_signature_only_sent_when_enabled():
    event = StreamEvent.thinking_delta("x", signature="sig-123")

    hidden = _encode(ClaudeStreamEncoder("m"), [event])
    shown = _encode(ClaudeStreamEncoder("m", pass_signature=True), [event])

    assert not any(e.get("delta", {}).get("type") == "signature_delta" for e in hidden)
    assert any(e.get("delta", {}).get("signature") == "sig-123" for e in shown)


def test_consecutive_text_deltas_share_one_block():
    events = _encode(ClaudeStreamEncoder("m"), [StreamEvent.text_delta("a"), StreamEvent.text_delta("b")])

    assert [e["type"] for e in events].count("content_block_start") == 1
    assert events[-2]["delta"]["stop_reason"] == "end_turn"


def test_empty_stream_still_well_formed():
    events = _encode(ClaudeStreamEncoder("m"), [])

    assert [e["type"] for e in events] == ["message_start", "message_delta", "message_stop"]


def test_error_event():
    encoder = ClaudeStreamEncoder("m")
    encoder.start()

    error = _parse(encoder.error("upstream broke", 502))[0]

    assert error["error"]["message"] == "upstream broke"
    assert encoder.finish() == []


def test_malformed_tool_arguments_degrade_to_empty_object():
    encoder = ClaudeStreamEncoder("m")
    events = _encode(encoder, [
        StreamEvent.text_delta("Calling"),
        StreamEvent.tool_use(ToolCall(id="toolu_bad", name="lookup", arguments="{not json")),
        StreamEvent.text_delta("Done"),
    ])

    _assert_block_discipline(events)
    tool_delta = next(
        e for e in events
        if e["type"] == "content_block_delta" and e["delta"]["type"] == "input_json_delta"
    )
    assert tool_delta["delta"]["partial_json"] == "{}"
    assert events[-2]["delta"]["stop_reason"] == "tool_use"
    assert events[-1]["type"] == "message_stop"
