import contextlib
import logging
from typing import Protocol, Union

from .errors import TransportError
from .types import DEFAULT_TIMEOUT, RequestDescriptor, TransportResponse

logger = logging.getLogger("turnstile")


class Transport(Protocol):
    async def send(self, descriptor: RequestDescriptor) -> TransportResponse: ...

    async def aclose(self) -> None: ...


def _body_kwargs(descriptor: RequestDescriptor) -> dict:
    body = descriptor.body
    if body is None:
        return {}
    if isinstance(body, (bytes, str)):
        return {"content": body}
    return {"json": body}


# ---------- httpx (async) ----------
class HttpxTransport:
    """Sends descriptors through an httpx.AsyncClient.

    A client created here is owned (and closed) by the transport; an injected one
    is left open for the caller.
    """

    def __init__(
        self,
        client=None,
        base_url: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        headers: Union[dict[str, str], None] = None,
    ):
        self.client = client
        self.base_url = base_url
        self.timeout = timeout
        self.headers = dict(headers or {})
        self._internal_client = None

    def _client(self):
        import httpx  # noqa: PLC0415

        client = self.client or self._internal_client
        if client is None:
            self._internal_client = client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers=self.headers,
            )
        return client

    async def send(self, descriptor: RequestDescriptor) -> TransportResponse:
        import httpx  # noqa: PLC0415

        client = self._client()
        kwargs = _body_kwargs(descriptor)
        if descriptor.timeout is not None:
            kwargs["timeout"] = descriptor.timeout
        try:
            resp = await client.request(
                descriptor.method.upper(),
                descriptor.url,
                headers=descriptor.headers,
                params=descriptor.params,
                **kwargs,
            )
        except httpx.TransportError as e:
            logger.debug(f"transport error on {descriptor.method} {descriptor.url}: {e!r}")
            raise TransportError(str(e) or type(e).__name__, cause=e) from e
        return TransportResponse(
            status=resp.status_code,
            headers={k.lower(): v for k, v in resp.headers.items()},
            content=resp.content,
            content_type=resp.headers.get("content-type", ""),
        )

    async def aclose(self) -> None:
        if self._internal_client is not None:
            with contextlib.suppress(Exception):
                await self._internal_client.aclose()
            self._internal_client = None


# ---------- aiohttp (async) ----------
class AiohttpTransport:
    """Sends descriptors through an aiohttp.ClientSession (install the 'aiohttp' extra)."""

    def __init__(
        self,
        session=None,
        base_url: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        headers: Union[dict[str, str], None] = None,
    ):
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = dict(headers or {})
        self._own_session = False

    def _session(self):
        if self.session is None:
            import aiohttp  # noqa: PLC0415

            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers=self.headers,
            )
            self._own_session = True
        return self.session

    def _url(self, url: str) -> str:
        if self.base_url and not url.startswith(("http://", "https://")):
            return f"{self.base_url}/{url.lstrip('/')}"
        return url

    async def send(self, descriptor: RequestDescriptor) -> TransportResponse:
        import aiohttp  # noqa: PLC0415

        session = self._session()
        body = descriptor.body
        kwargs = {}
        if isinstance(body, (bytes, str)):
            kwargs["data"] = body
        elif body is not None:
            kwargs["json"] = body
        if descriptor.params:
            kwargs["params"] = {k: str(v) for k, v in descriptor.params.items()}
        if descriptor.timeout is not None:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=descriptor.timeout)
        try:
            resp = await session.request(
                descriptor.method.upper(),
                self._url(descriptor.url),
                headers=descriptor.headers,
                **kwargs,
            )
            # read() releases the connection back to the pool
            try:
                content = await resp.read()
            except BaseException:
                resp.close()
                raise
        except aiohttp.ClientError as e:
            logger.debug(f"transport error on {descriptor.method} {descriptor.url}: {e!r}")
            raise TransportError(str(e) or type(e).__name__, cause=e) from e
        headers = {k.lower(): v for k, v in resp.headers.items()}
        return TransportResponse(
            status=resp.status,
            headers=headers,
            content=content,
            content_type=headers.get("content-type", ""),
        )

    async def aclose(self) -> None:
        if self._own_session and self.session is not None:
            await self.session.close()
            self.session = None
            self._own_session = False
