import json

import httpx
import pytest

from turnstile import HttpxTransport, RequestDescriptor, TransportError


@pytest.mark.asyncio
async def test_httpx_transport_sends_descriptor():
    seen = {}

    def handler(request: httpx.Request):
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["token"] = request.headers.get("x-access-token")
        seen["body"] = json.loads(request.content) if request.content else None
        return httpx.Response(
            201,
            headers={"X-Trace": "abc", "Content-Type": "application/json"},
            json={"ok": True},
        )

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.example.com"
    ) as client:
        transport = HttpxTransport(client=client)
        resp = await transport.send(
            RequestDescriptor(
                "POST", "/users/7", headers={"x-access-token": "A"}, body={"name": "x"}
            )
        )

    assert seen == {
        "method": "POST",
        "url": "https://api.example.com/users/7",
        "token": "A",
        "body": {"name": "x"},
    }
    assert resp.status == 201  # noqa: PLR2004
    assert resp.header("X-Trace") == "abc"
    assert resp.content_type == "application/json"
    assert json.loads(resp.content) == {"ok": True}


@pytest.mark.asyncio
async def test_httpx_transport_query_params():
    seen = {}

    def handler(request: httpx.Request):
        seen["params"] = dict(request.url.params)
        return httpx.Response(200)

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.example.com"
    ) as client:
        await HttpxTransport(client=client).send(
            RequestDescriptor("GET", "/comments", params={"postId": 1})
        )

    assert seen["params"] == {"postId": "1"}


@pytest.mark.asyncio
async def test_httpx_transport_wraps_network_errors():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.example.com"
    ) as client:
        with pytest.raises(TransportError) as exc_info:
            await HttpxTransport(client=client).send(RequestDescriptor("GET", "/x"))

    assert isinstance(exc_info.value.cause, httpx.ConnectError)


@pytest.mark.asyncio
async def test_httpx_transport_owns_internal_client():
    transport = HttpxTransport(base_url="https://api.example.com")
    client = transport._client()
    assert isinstance(client, httpx.AsyncClient)
    assert transport._client() is client
    await transport.aclose()
    assert client.is_closed
    assert transport._internal_client is None


@pytest.mark.asyncio
async def test_httpx_transport_leaves_injected_client_open():
    client = httpx.AsyncClient()
    transport = HttpxTransport(client=client)
    await transport.aclose()
    assert not client.is_closed
    await client.aclose()
