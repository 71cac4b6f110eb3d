import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from .errors import TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransportResponse:
    """
    Status and decoded body of a completed request.

    `data` is the parsed JSON document when the body is a single JSON value,
    otherwise the raw text (e.g. newline-delimited JSON).
    """
    status: int
    data: Any


def _decode_body(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return text


def _error_detail(response: httpx.Response) -> str:
    """
    Pull a readable message out of an error response body.
    """
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str):
        return error
    return response.text.strip() or response.reason_phrase


def _wrap_httpx_error(error: httpx.HTTPError, url: str) -> TransportError:
    if isinstance(error, httpx.TimeoutException):
        code = "timed-out"
    elif isinstance(error, httpx.ConnectError):
        code = "connection-refused"
    elif isinstance(error, (httpx.ReadError, httpx.WriteError, httpx.RemoteProtocolError)):
        code = "connection-reset"
    else:
        code = None
    return TransportError(
        f"Request to {url} failed: {error.__class__.__name__}: {error}",
        code=code,
        original_error=error,
    )


class HttpTransport:
    """
    Pooled async HTTP transport shared by every HTTP-style provider.

    One instance is created per process (or per client) and passed to the
    providers; connection reuse is left to `httpx`.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        max_connections: int = 10,
        max_keepalive_connections: int = 5,
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.timeout = timeout
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            headers=headers,
            follow_redirects=True,
            max_redirects=5,
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_keepalive_connections,
            ),
        )

    async def post(
        self,
        url: str,
        json: Any,
        timeout: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> TransportResponse:
        """
        POST a JSON body.

        Raises:
            TransportError: On connection failure, timeout or an error status.
        """
        try:
            response = await self.client.post(
                url, json=json, headers=headers, timeout=timeout or self.timeout
            )
        except httpx.HTTPError as e:
            raise _wrap_httpx_error(e, url) from e
        return self._to_result(url, response)

    async def get(
        self,
        url: str,
        timeout: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> TransportResponse:
        try:
            response = await self.client.get(url, headers=headers, timeout=timeout or self.timeout)
        except httpx.HTTPError as e:
            raise _wrap_httpx_error(e, url) from e
        return self._to_result(url, response)

    async def open_stream(
        self,
        url: str,
        json: Any,
        timeout: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """
        POST a JSON body and return the response before its body is read.

        The caller must consume it with `iter_text`, which closes it.
        """
        request = self.client.build_request(
            "POST", url, json=json, headers=headers, timeout=timeout or self.timeout
        )
        try:
            response = await self.client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise _wrap_httpx_error(e, url) from e

        if response.status_code >= 400:
            try:
                await response.aread()
            finally:
                await response.aclose()
            raise self._status_error(url, response)
        return response

    async def iter_text(self, response: httpx.Response) -> AsyncIterator[str]:
        try:
            async for chunk in response.aiter_text():
                yield chunk
        except httpx.HTTPError as e:
            raise _wrap_httpx_error(e, str(response.request.url)) from e
        finally:
            await response.aclose()

    def _to_result(self, url: str, response: httpx.Response) -> TransportResponse:
        if response.status_code >= 400:
            raise self._status_error(url, response)
        return TransportResponse(status=response.status_code, data=_decode_body(response.text))

    @staticmethod
    def _status_error(url: str, response: httpx.Response) -> TransportError:
        detail = _error_detail(response)
        logger.debug("HTTP %d from %s: %s", response.status_code, url, detail)
        return TransportError(
            detail,
            status=response.status_code,
            body=response.text,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()
