import json

import httpx
import pytest

from llmgate.errors import TransportError
from llmgate.retry import is_retryable_error

from conftest import make_transport


class TestHttpTransport:

    @pytest.mark.asyncio
    async def test_post_returns_parsed_json(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"message": {"content": "hi"}})

        transport = make_transport(handler)
        result = await transport.post(
            "http://ollama.test/api/chat", {"model": "m"}, headers={"Authorization": "Bearer k"}
        )

        assert result.status == 200
        assert result.data == {"message": {"content": "hi"}}
        assert seen == {"body": {"model": "m"}, "auth": "Bearer k"}
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_ndjson_body_returned_as_text(self):
        body = '{"response":"a"}\n{"done":true}\n'
        transport = make_transport(lambda request: httpx.Response(200, text=body))

        result = await transport.post("http://ollama.test/api/chat", {})
        assert result.data == body

    @pytest.mark.asyncio
    async def test_error_status_raises_with_detail(self):
        transport = make_transport(
            lambda request: httpx.Response(503, json={"error": {"message": "model loading"}})
        )

        with pytest.raises(TransportError) as exc_info:
            await transport.post("http://ollama.test/api/chat", {})
        assert exc_info.value.status == 503
        assert exc_info.value.message == "model loading"
        assert is_retryable_error(exc_info.value)

    @pytest.mark.asyncio
    async def test_string_error_body(self):
        transport = make_transport(lambda request: httpx.Response(404, json={"error": "model not found"}))

        with pytest.raises(TransportError) as exc_info:
            await transport.get("http://ollama.test/api/tags")
        assert exc_info.value.status == 404
        assert exc_info.value.message == "model not found"
        assert not is_retryable_error(exc_info.value)

    @pytest.mark.asyncio
    async def test_connection_failure_is_retryable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        transport = make_transport(handler)
        with pytest.raises(TransportError) as exc_info:
            await transport.post("http://ollama.test/api/chat", {})
        assert exc_info.value.code == "connection-refused"
        assert isinstance(exc_info.value.original_error, httpx.ConnectError)
        assert is_retryable_error(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout_is_retryable(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        transport = make_transport(handler)
        with pytest.raises(TransportError) as exc_info:
            await transport.get("http://ollama.test/api/tags")
        assert exc_info.value.code == "timed-out"
        assert is_retryable_error(exc_info.value)

    @pytest.mark.asyncio
    async def test_stream_chunks(self):
        body = '{"response":"a"}\n{"response":"b"}\n{"done":true}\n'
        transport = make_transport(lambda request: httpx.Response(200, text=body))

        response = await transport.open_stream("http://ollama.test/api/chat", {"stream": True})
        text = "".join([chunk async for chunk in transport.iter_text(response)])
        assert text == body
        assert response.is_closed

    @pytest.mark.asyncio
    async def test_stream_error_status(self):
        transport = make_transport(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(TransportError) as exc_info:
            await transport.open_stream("http://ollama.test/api/chat", {})
        assert exc_info.value.status == 500
        assert exc_info.value.body == "boom"
