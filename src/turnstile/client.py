import logging
from typing import Any, Callable, Union

from .adapters import HttpxTransport
from .coordinator import RefreshCoordinator
from .env import load_config_from_env, load_credential_from_env
from .errors import ClassifiedError, ErrorClassifier, ErrorReporter, FailureKind, TransportError
from .pipeline import (
    PipelineContext,
    build_request_pipeline,
    build_response_pipeline,
    coerce_stages,
)
from .ratelimit import RateLimiter
from .stores import MemoryCredentialStore, MemoryPreferenceStore, StaticConnectivity
from .types import HeaderConfig, RefreshConfig, RequestDescriptor, ResponseContext


class AsyncRefreshingClient:
    """HTTP client that attaches credentials and recovers from expired ones.

    Outgoing calls run through the request pipeline, then the transport. Error
    responses are classified; an Unauthorized one starts (or joins) a single
    token refresh and the call is replayed once new tokens are stored. Other
    failures are reported once through the notifier and raised as
    ClassifiedError.

    Other keywords for kwargs:
    - refresh_config: RefreshConfig object
    - base_url: str
    - refresh_path: str
    - max_refresh_attempts: int
    - refresh_window: float
    - timeout: float
    - keep_url_params: bool
    - header_config: HeaderConfig object
    - access_header: str
    - refresh_header: str
    - locale_header: str
    - currency_header: str
    """

    def __init__(
        self,
        transport=None,
        credentials=None,
        preferences=None,
        connectivity=None,
        notifier=None,
        on_logout: Union[Callable[[ClassifiedError], Any], None] = None,
        request_stages=None,
        response_stages=None,
        rate_limiter: Union[RateLimiter, None] = None,
        log_level: Union[int, None] = None,
        **kwargs,
    ):
        # Prefer config objects, fall back to individual keyword arguments
        if kwargs.get("refresh_config") is not None:
            self.refresh_config: RefreshConfig = kwargs["refresh_config"]
        else:
            defaults = RefreshConfig()
            self.refresh_config = RefreshConfig(
                base_url=kwargs.get("base_url", defaults.base_url),
                refresh_path=kwargs.get("refresh_path", defaults.refresh_path),
                max_refresh_attempts=kwargs.get(
                    "max_refresh_attempts", defaults.max_refresh_attempts
                ),
                refresh_window=kwargs.get("refresh_window", defaults.refresh_window),
                timeout=kwargs.get("timeout", defaults.timeout),
                keep_url_params=kwargs.get("keep_url_params", defaults.keep_url_params),
            )
        if kwargs.get("header_config") is not None:
            self.header_config: HeaderConfig = kwargs["header_config"]
        else:
            defaults = HeaderConfig()
            self.header_config = HeaderConfig(
                access_header=kwargs.get("access_header", defaults.access_header),
                refresh_header=kwargs.get("refresh_header", defaults.refresh_header),
                locale_header=kwargs.get("locale_header", defaults.locale_header),
                currency_header=kwargs.get("currency_header", defaults.currency_header),
            )

        self.transport = transport or HttpxTransport(
            base_url=self.refresh_config.base_url,
            timeout=self.refresh_config.timeout,
            headers={"Content-Type": self.header_config.content_type},
        )
        self.credentials = credentials if credentials is not None else MemoryCredentialStore()
        self.preferences = preferences if preferences is not None else MemoryPreferenceStore()
        self.connectivity = connectivity if connectivity is not None else StaticConnectivity()
        self.reporter = ErrorReporter(notifier)
        self.classifier = ErrorClassifier(is_online=self.connectivity.is_online)
        self._on_logout = on_logout
        self._rate_limiter = rate_limiter
        self._request_stages = coerce_stages(request_stages)
        self._response_stages = coerce_stages(response_stages)

        self._logger = logging.getLogger("turnstile")
        if log_level is not None:
            self._logger.setLevel(log_level)
        self.reset()

    def reset(self) -> None:
        """Start over with a fresh coordinator (IDLE, empty queue, new rate window)."""
        previous = getattr(self, "coordinator", None)
        if previous is not None:
            previous.reset()
        self.coordinator = RefreshCoordinator(
            self.transport,
            self.credentials,
            replay=self._dispatch,
            reporter=self.reporter,
            classifier=self.classifier,
            refresh_config=self.refresh_config,
            header_config=self.header_config,
            rate_limiter=self._rate_limiter,
            on_logout=self._on_logout,
        )
        context = PipelineContext(
            credentials=self.credentials,
            preferences=self.preferences,
            connectivity=self.connectivity,
            headers=self.header_config,
            is_refreshing=self.coordinator.is_refreshing,
        )
        self.request_pipeline = build_request_pipeline(context, self._request_stages)
        self.response_pipeline = build_response_pipeline(context, self._response_stages)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
        return False

    async def aclose(self) -> None:
        await self.coordinator.join()
        await self.transport.aclose()

    # ---------- dispatch ----------
    async def request(
        self,
        method: str,
        url: str,
        body: Any = None,
        params: Union[dict[str, Any], None] = None,
        headers: Union[dict[str, str], None] = None,
        needs_auth: bool = False,
        keep_url_params: Union[bool, None] = None,
        timeout: Union[float, None] = None,
    ) -> Any:
        """Send a request and return the decoded response body.

        ``body`` is a JSON-able dict for write methods; for reads its fields
        become query parameters. ``{name}`` placeholders in ``url`` are filled from
        ``body``.
        """
        descriptor = RequestDescriptor(
            method=method.upper(),
            url=url,
            headers=dict(headers or {}),
            body=body,
            params=dict(params) if params else None,
            needs_auth=needs_auth,
            keep_url_params=(
                self.refresh_config.keep_url_params if keep_url_params is None else keep_url_params
            ),
            timeout=timeout,
        )
        return await self._dispatch(descriptor)

    async def _dispatch(self, descriptor: RequestDescriptor) -> Any:
        outcome = await self.request_pipeline.process(descriptor)
        if isinstance(outcome, ClassifiedError):
            if outcome.kind is FailureKind.REFRESH_IN_PROGRESS:
                return await self.coordinator.recover(outcome)
            # offline and precondition failures go straight back to the caller
            raise outcome

        self._logger.debug(f"req start method={outcome.method} url={outcome.url}")
        try:
            response = await self.transport.send(outcome)
        except TransportError as e:
            failure = self.classifier.classify_transport_error(outcome, e)
            return await self._recover(failure)
        self._logger.debug(
            f"req done method={outcome.method} url={outcome.url} status={response.status}"
        )
        if response.status >= 400:  # noqa: PLR2004, http status code can be constant
            failure = self.classifier.classify_response(outcome, response)
            return await self._recover(failure)

        context = await self.response_pipeline.process(ResponseContext(outcome, response))
        if isinstance(context, ClassifiedError):
            raise context
        return context.data

    async def _recover(self, failure: ClassifiedError) -> Any:
        if failure.kind is FailureKind.UNAUTHORIZED:
            if failure.descriptor is not None and failure.descriptor.is_retry:
                self._logger.warning(
                    f"replayed request {failure.descriptor.method} {failure.descriptor.url} "
                    f"was rejected again with {failure.status}"
                )
                self.reporter.report(failure)
                raise failure
            return await self.coordinator.recover(failure)
        if failure.kind is not FailureKind.OFFLINE:
            self.reporter.report(failure)
        raise failure

    # sugar
    async def get(self, url: str, **kw):
        return await self.request("GET", url, **kw)

    async def post(self, url: str, **kw):
        return await self.request("POST", url, **kw)

    async def put(self, url: str, **kw):
        return await self.request("PUT", url, **kw)

    async def patch(self, url: str, **kw):
        return await self.request("PATCH", url, **kw)

    async def delete(self, url: str, **kw):
        return await self.request("DELETE", url, **kw)

    # ---------- convenience: build from env ----------
    @classmethod
    def from_env(
        cls,
        prefix: str = "TURNSTILE_",
        env_path: Union[str, None] = None,
        **kwargs,
    ):
        """Create a client configured from ``{prefix}*`` environment variables.

        Tokens found in ``{prefix}ACCESS_TOKEN`` / ``{prefix}REFRESH_TOKEN`` seed a
        MemoryCredentialStore unless a ``credentials`` store is passed in.
        """
        if kwargs.get("refresh_config") is None:
            kwargs["refresh_config"] = load_config_from_env(prefix=prefix, env_path=env_path)
        if kwargs.get("credentials") is None:
            header_config = kwargs.get("header_config") or HeaderConfig()
            credential = load_credential_from_env(prefix=prefix, env_path=env_path)
            values = {}
            if credential is not None:
                values = {
                    header_config.access_key: credential.access_token,
                    header_config.refresh_key: credential.refresh_token,
                    header_config.login_key: header_config.login_value,
                }
            kwargs["credentials"] = MemoryCredentialStore(values)
        return cls(**kwargs)
