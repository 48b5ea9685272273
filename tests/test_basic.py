import pytest

from turnstile import (
    AiohttpTransport,
    AsyncRefreshingClient,
    HttpxTransport,
    RefreshState,
)


def test_construct_defaults():
    client = AsyncRefreshingClient()
    assert isinstance(client.transport, HttpxTransport)
    assert client.coordinator.state is RefreshState.IDLE


@pytest.mark.asyncio
async def test_construct_with_aiohttp_transport():
    pytest.importorskip("aiohttp")
    transport = AiohttpTransport(base_url="https://x.test")
    async with AsyncRefreshingClient(transport=transport) as client:
        assert client.transport is transport
