"""
Tests for HttpxTransport error mapping, against a mocked httpx.

Test plan:
- Success: JSON body returned for GET and POST, POST sends JSON
- Network failures -> TransportError
- 502/503/504 -> TransportError
- Other error statuses -> ProtocolRejection with JSON or text body
- Non-JSON success body -> ProtocolRejection
"""

import json

import httpx
import pytest
from pytest_httpx import HTTPXMock

from tzops.errors import ProtocolRejection, TransportError
from tzops.rpc.transport import HttpxTransport, NodeTransport

URL = "https://node.example/chains/main/blocks/head/header"


class TestHttpxTransport:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(HttpxTransport(), NodeTransport)

    @pytest.mark.asyncio
    async def test_get_json(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=URL, json={"level": 12})
        assert await HttpxTransport().request("GET", URL) == {"level": 12}

    @pytest.mark.asyncio
    async def test_post_sends_json(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(method="POST", url=URL, json="ooHash")
        assert await HttpxTransport().request("POST", URL, "abcd") == "ooHash"
        request = httpx_mock.get_request()
        assert request is not None
        assert json.loads(request.content) == "abcd"
        assert request.headers["Content-Type"] == "application/json"

    @pytest.mark.asyncio
    async def test_connect_error(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_exception(httpx.ConnectError("connection refused"))
        with pytest.raises(TransportError) as exc_info:
            await HttpxTransport().request("GET", URL)
        assert exc_info.value.url == URL

    @pytest.mark.asyncio
    async def test_timeout(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_exception(httpx.ReadTimeout("slow"))
        with pytest.raises(TransportError, match="ReadTimeout"):
            await HttpxTransport().request("GET", URL)

    @pytest.mark.asyncio
    async def test_gateway_status_is_transport_error(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=URL, status_code=503, text="unavailable")
        with pytest.raises(TransportError):
            await HttpxTransport().request("GET", URL)

    @pytest.mark.asyncio
    async def test_rejection_with_json_body(self, httpx_mock: HTTPXMock) -> None:
        body = [{"kind": "temporary", "id": "proto.alpha.contract.balance_too_low"}]
        httpx_mock.add_response(method="POST", url=URL, status_code=500, json=body)
        with pytest.raises(ProtocolRejection) as exc_info:
            await HttpxTransport().request("POST", URL, [])
        assert exc_info.value.status_code == 500
        assert exc_info.value.body == body

    @pytest.mark.asyncio
    async def test_rejection_with_text_body(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=URL, status_code=400, text="Failed to parse the request body")
        with pytest.raises(ProtocolRejection) as exc_info:
            await HttpxTransport().request("GET", URL)
        assert exc_info.value.body == "Failed to parse the request body"

    @pytest.mark.asyncio
    async def test_non_json_success(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=URL, text="<html>")
        with pytest.raises(ProtocolRejection):
            await HttpxTransport().request("GET", URL)
