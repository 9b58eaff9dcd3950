"""
Tests unitaires du parseur de flux Gemini et de l'encodeur client Gemini.
"""
import json

from llm_gateway.core.models import BlockType, EventType, StreamEvent, Usage
from llm_gateway.translators.gemini import GeminiStreamEncoder, GeminiStreamParser, is_thinking_model


def _chunk(parts, finish=None, usage=None):
    candidate = {"content": {"role": "model", "parts": parts}}
    if finish:
        candidate["finishReason"] = finish
    response = {"candidates": [candidate]}
    if usage:
        response["usageMetadata"] = usage
    return {"response": response}


def test_parser_thinking_text_and_calls():
    parser = GeminiStreamParser()
    events = []
    events += parser.feed(_chunk([{"text": "plan", "thought": True}]))
    events += parser.feed(_chunk([{"text": "", "thoughtSignature": "sig"}]))
    events += parser.feed(_chunk([{"text": "Hello"}]))
    events += parser.feed(_chunk(
        [{"functionCall": {"name": "f", "args": {"a": 1}}}],
        finish="STOP",
        usage={"promptTokenCount": 4, "candidatesTokenCount": 2, "thoughtsTokenCount": 3},
    ))
    events += parser.finish()

    assert events[0].block_type == BlockType.THINKING and events[0].text == "plan"
    assert events[1].signature == "sig"
    assert events[2].text == "Hello"
    assert json.loads(events[3].tool_call.arguments) == {"a": 1}
    assert events[4].usage.completion_tokens == 5
    assert events[5].stop_reason == "tool_use"
    assert events[6].type == EventType.MESSAGE_STOP


def test_parser_max_tokens():
    parser = GeminiStreamParser()
    parser.feed(_chunk([{"text": "x"}], finish="MAX_TOKENS"))

    assert parser.stop_reason == "max_tokens"


def test_thinking_models():
    assert is_thinking_model("gemini-2.5-pro")
    assert is_thinking_model("gemini-2.0-flash-thinking")
    assert not is_thinking_model("gemini-2.0-flash")


def test_encoder_frames():
    encoder = GeminiStreamEncoder("gemini-2.5-flash")

    frames = encoder.encode(StreamEvent.text_delta("Hi"))
    frames += encoder.encode(StreamEvent(type=EventType.USAGE, usage=Usage(1, 2, 3)))
    frames += encoder.encode(StreamEvent(type=EventType.MESSAGE_DELTA, stop_reason="end_turn"))
    frames += encoder.finish()

    payloads = [json.loads(f[len("data: "):]) for f in frames]
    assert len(payloads) == 2
    assert payloads[0]["candidates"][0]["content"]["parts"] == [{"text": "Hi"}]
    assert payloads[1]["candidates"][0]["finishReason"] == "STOP"
    assert payloads[1]["usageMetadata"]["totalTokenCount"] == 3
