import json

import pytest

from llmgate.cache import CacheStore
from llmgate.normalizer import ResponseNormalizer
from llmgate.streaming import RESPONSE_CACHE, StreamReconstructor, body_cache_key

from conftest import ndjson


async def agen(items):
    for item in items:
        yield item


async def collect(events):
    return [event async for event in events]


@pytest.fixture
def reconstructor():
    return StreamReconstructor(ResponseNormalizer("ollama", "llama3.2"), cache=CacheStore())


class TestBatchReconstruction:

    def test_concatenates_fragments(self, reconstructor):
        body = '{"message":{"content":"Hi"}}\n{"message":{"content":" there"}}\n{"done":true}'
        assert reconstructor.reconstruct(body)["content"] == "Hi there"

    def test_unparseable_body_is_empty(self, reconstructor):
        assert reconstructor.reconstruct("not json") == {"content": ""}
        assert reconstructor.reconstruct("") == {"content": ""}

    def test_invalid_lines_are_skipped(self, reconstructor):
        body = '{"message":{"content":"a"}}\n{broken\n{"message":{"content":"b"}}\n'
        assert reconstructor.reconstruct(body)["content"] == "ab"

    def test_terminal_payload_supplies_metadata(self, reconstructor):
        body = ndjson(
            {"model": "llama3.2", "message": {"content": "Hel"}, "done": False},
            {"model": "llama3.2", "message": {"content": "lo"}, "done": False},
            {"model": "llama3.2", "message": {"content": ""}, "done": True,
             "done_reason": "length", "prompt_eval_count": 4, "eval_count": 2},
        )
        result = reconstructor.reconstruct(body)
        assert result["content"] == "Hello"
        assert result["model"] == "llama3.2"
        assert result["finish_reason"] == "length"
        assert result["prompt_eval_count"] == 4
        assert "message" not in result

        response = reconstructor.normalizer.normalize(result)
        assert response.content == "Hello"
        assert response.usage.output_tokens == 2

    def test_single_object_is_fragment_and_terminal(self, reconstructor):
        body = json.dumps({"message": {"content": "only"}, "done": True, "eval_count": 1})
        result = reconstructor.reconstruct(body)
        assert result["content"] == "only"
        assert result["eval_count"] == 1

    def test_bytes_body(self, reconstructor):
        body = ndjson({"response": "é"}, {"done": True}).encode("utf-8")
        assert reconstructor.reconstruct(body)["content"] == "é"

    def test_result_is_cached(self, reconstructor):
        body = ndjson({"response": "cached"}, {"done": True})
        first = reconstructor.reconstruct(body)
        first["content"] = "mutated"

        assert reconstructor.cache.get(RESPONSE_CACHE, body_cache_key(body))["content"] == "cached"
        assert reconstructor.reconstruct(body)["content"] == "cached"
        assert reconstructor.cache.stats(RESPONSE_CACHE)["hits"] >= 1

    def test_cache_key_includes_length(self):
        prefix = "x" * 100
        assert body_cache_key(prefix + "a") != body_cache_key(prefix + "ab")

    def test_same_head_and_length_are_not_confused(self, reconstructor):
        head = json.dumps({"response": "x" * 120}) + "\n"
        first = head + ndjson({"response": "A"}, {"done": True})
        second = head + ndjson({"response": "B"}, {"done": True})
        assert len(first) == len(second)

        assert reconstructor.reconstruct(first)["content"].endswith("A")
        assert reconstructor.reconstruct(second)["content"].endswith("B")

    def test_nested_values_are_not_shared_with_cache(self, reconstructor):
        body = ndjson({"response": "hi"}, {"done": True, "usage": {"prompt_tokens": 1}})
        first = reconstructor.reconstruct(body)
        first["usage"]["prompt_tokens"] = 99

        assert reconstructor.reconstruct(body)["usage"] == {"prompt_tokens": 1}
        again = reconstructor.reconstruct(body)
        again["usage"]["prompt_tokens"] = 42
        assert reconstructor.reconstruct(body)["usage"] == {"prompt_tokens": 1}

    def test_server_sent_events_body(self, reconstructor):
        body = (
            ": keep-alive\n"
            "event: chunk\n"
            'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\n'
            'data: {"choices":[{"delta":{"content":" there"},"finish_reason":"length"}]}\n\n'
            "data: [DONE]\n\n"
        )
        result = reconstructor.reconstruct(body)
        assert result["content"] == "Hi there"
        assert result["finish_reason"] == "length"


class TestLiveReconstruction:

    @pytest.mark.asyncio
    async def test_done_marker_ends_server_sent_events(self, reconstructor):
        chunks = [
            'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\n',
            "data: [DONE]\n\n",
            'data: {"choices":[{"delta":{"content":"late"}}]}\n\n',
        ]
        events = await collect(reconstructor.events(agen(chunks), model="gpt-4"))

        assert [e["type"] for e in events] == ["partial", "complete"]
        assert events[-1]["content"] == "Hi"
        assert events[-1]["model"] == "gpt-4"

    @pytest.mark.asyncio
    async def test_partial_then_single_complete(self, reconstructor):
        chunks = [
            '{"message":{"content":"Hi"},"done":false}\n',
            '{"message":{"content":" there"},"done":false}\n',
            '{"done":true,"prompt_eval_count":3,"eval_count":2,"model":"llama3.2"}\n',
        ]
        events = await collect(reconstructor.events(agen(chunks)))

        assert [e["type"] for e in events] == ["partial", "partial", "complete"]
        assert [e["fragment"] for e in events[:2]] == ["Hi", " there"]
        assert [e["token_count"] for e in events[:2]] == [1, 2]
        complete = events[-1]
        assert complete["content"] == "Hi there"
        assert complete["done"] is True
        assert complete["usage"] == {"input_tokens": 3, "output_tokens": 2, "total_tokens": 5}
        assert complete["response"].content == "Hi there"

    @pytest.mark.asyncio
    async def test_object_split_across_chunks(self, reconstructor):
        line = '{"message":{"content":"split"},"done":false}\n'
        chunks = [line[:10], line[10:25], line[25:], '{"done":true}']
        events = await collect(reconstructor.events(agen(chunks)))

        assert events[0] == {
            "type": "partial",
            "provider": "ollama",
            "fragment": "split",
            "token_count": 1,
            "done": False,
        }
        assert events[-1]["type"] == "complete"

    @pytest.mark.asyncio
    async def test_multibyte_character_split_across_byte_chunks(self, reconstructor):
        raw = '{"response":"héllo"}\n{"done":true}\n'.encode("utf-8")
        cut = raw.index("é".encode("utf-8")) + 1
        events = await collect(reconstructor.events(agen([raw[:cut], raw[cut:]])))
        assert events[0]["fragment"] == "héllo"

    @pytest.mark.asyncio
    async def test_complete_synthesized_when_stream_closes_early(self, reconstructor):
        chunks = ['{"message":{"content":"a"}}\n', '{"message":{"content":"b"}}']
        events = await collect(reconstructor.events(agen(chunks), model="llama3.2", input_tokens=2))

        assert [e["type"] for e in events] == ["partial", "partial", "complete"]
        assert events[-1]["content"] == "ab"
        # No usage reported: prompt size and fragment count stand in
        assert events[-1]["usage"]["input_tokens"] == 2
        assert events[-1]["usage"]["output_tokens"] == 2
        assert events[-1]["model"] == "llama3.2"

    @pytest.mark.asyncio
    async def test_nothing_after_terminal_is_emitted(self, reconstructor):
        chunks = ['{"response":"x"}\n{"done":true}\n{"response":"late"}\n']
        events = await collect(reconstructor.events(agen(chunks)))
        assert [e["type"] for e in events] == ["partial", "complete"]
        assert events[-1]["content"] == "x"

    @pytest.mark.asyncio
    async def test_bad_lines_in_stream_are_skipped(self, reconstructor):
        chunks = ['garbage\n{"response":"ok"}\n', '{"done":true}\n']
        events = await collect(reconstructor.events(agen(chunks)))
        assert [e["type"] for e in events] == ["partial", "complete"]

    @pytest.mark.asyncio
    async def test_empty_stream_still_completes(self, reconstructor):
        events = await collect(reconstructor.events(agen([])))
        assert len(events) == 1
        assert events[0]["type"] == "complete"
        assert events[0]["content"] == ""

    @pytest.mark.asyncio
    async def test_sdk_payloads(self, reconstructor):
        payloads = [
            {"choices": [{"delta": {"content": "Hey"}, "finish_reason": None}]},
            {"choices": [{"delta": {}, "finish_reason": "stop"}], "model": "gpt-4"},
        ]
        events = await collect(reconstructor.events_from_payloads(agen(payloads)))
        assert [e["type"] for e in events] == ["partial", "complete"]
        assert events[-1]["model"] == "gpt-4"
        assert events[-1]["finish_reason"] == "stop"
