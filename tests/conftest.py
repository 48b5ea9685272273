import asyncio
import json

import pytest

from turnstile import (
    AsyncRefreshingClient,
    MemoryCredentialStore,
    RateLimiter,
    RequestDescriptor,
    TransportResponse,
)


class ScriptedTransport:
    """Transport fake: refresh calls and data calls are answered by callables."""

    def __init__(self, refresh=None, data=None):
        self.refresh = refresh or (lambda d: tokens_response("new-access", "new-refresh"))
        self.data = data or (lambda d: json_response({"url": d.url}))
        self.calls: list[RequestDescriptor] = []
        self.closed = False

    @property
    def refresh_calls(self):
        return [d for d in self.calls if d.url == "/refreshToken"]

    @property
    def data_calls(self):
        return [d for d in self.calls if d.url != "/refreshToken"]

    async def send(self, descriptor):
        self.calls.append(descriptor)
        # give other tasks a chance to run, like real I/O would
        await asyncio.sleep(0)
        handler = self.refresh if descriptor.url == "/refreshToken" else self.data
        result = handler(descriptor)
        if asyncio.iscoroutine(result):
            result = await result
        if isinstance(result, Exception):
            raise result
        return result

    async def aclose(self):
        self.closed = True


def json_response(payload, status=200, headers=None):
    return TransportResponse(
        status=status,
        headers={"content-type": "application/json", **(headers or {})},
        content=json.dumps(payload).encode(),
        content_type="application/json",
    )


def tokens_response(access, refresh):
    return TransportResponse(
        status=200,
        headers={"x-access-token": access, "x-refresh-token": refresh},
    )


def unauthorized():
    return TransportResponse(status=401, content=b"")


def accept_token(token):
    """Data handler: 200 when the request carries ``token``, 401 otherwise."""

    def _handler(d):
        if d.headers.get("x-access-token") == token:
            return json_response({"url": d.url})
        return unauthorized()

    return _handler


class RecordingNotifier:
    def __init__(self):
        self.messages: list[str] = []

    def notify(self, message):
        self.messages.append(message)


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def credentials():
    return MemoryCredentialStore(
        {"access_token": "old-access", "refresh_token": "old-refresh", "token": "token"}
    )


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_client(credentials, notifier, clock):
    def _make(transport, **kwargs):
        kwargs.setdefault("rate_limiter", RateLimiter(max_attempts=5, window=60.0, clock=clock))
        return AsyncRefreshingClient(
            transport=transport,
            credentials=credentials,
            notifier=notifier,
            **kwargs,
        )

    return _make
