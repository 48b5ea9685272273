"""Single-flight token refresh.

Only one refresh runs at a time. Requests that fail with an expired credential
while it runs wait in a :class:`~turnstile.queue.RequestQueue` and are replayed,
in order, once new tokens are stored.

All of this runs on one event loop. The IDLE -> REFRESHING check-and-set in
:meth:`RefreshCoordinator.recover` has no ``await`` between the read and the
write, which is what makes the refresh single-flight; there are no locks.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Union

from .errors import ClassifiedError, ErrorClassifier, ErrorReporter, FailureKind, TransportError
from .queue import RequestQueue
from .ratelimit import RateLimiter
from .state import RefreshState
from .stores import CredentialStore
from .tokens import token_expiry
from .types import Credential, HeaderConfig, RefreshConfig, RequestDescriptor

logger = logging.getLogger("turnstile")

TOO_MANY_REFRESHES_MESSAGE = "Too many sign-in refreshes, please sign in again"


class RefreshCoordinator:
    def __init__(
        self,
        transport,
        credentials: CredentialStore,
        replay: Callable[[RequestDescriptor], Awaitable[Any]],
        reporter: Union[ErrorReporter, None] = None,
        classifier: Union[ErrorClassifier, None] = None,
        refresh_config: Union[RefreshConfig, None] = None,
        header_config: Union[HeaderConfig, None] = None,
        rate_limiter: Union[RateLimiter, None] = None,
        on_logout: Union[Callable[[ClassifiedError], Any], None] = None,
    ):
        """Initialize a RefreshCoordinator.

        Args:
            transport: object with ``async send(descriptor) -> TransportResponse``
            credentials (CredentialStore): token storage shared with the pipeline
            replay: coroutine function re-dispatching a queued descriptor
            reporter (ErrorReporter | None): user notification, shown once per failure
            classifier (ErrorClassifier | None): classifies refresh call failures
            refresh_config (RefreshConfig | None): refresh path and rate limit settings
            header_config (HeaderConfig | None): header names and store keys
            rate_limiter (RateLimiter | None): overrides the limiter built from config
            on_logout (callable | None): called after a forced logout, may be async
        """
        self.transport = transport
        self.credentials = credentials
        self.replay = replay
        self.reporter = reporter or ErrorReporter()
        self.classifier = classifier or ErrorClassifier()
        self.refresh_config = refresh_config or RefreshConfig()
        self.header_config = header_config or HeaderConfig()
        self.rate_limiter = rate_limiter or RateLimiter(
            max_attempts=self.refresh_config.max_refresh_attempts,
            window=self.refresh_config.refresh_window,
        )
        self.on_logout = on_logout
        self.queue = RequestQueue()
        self._state = RefreshState.IDLE
        self._cycle: Union[asyncio.Task, None] = None

    @property
    def state(self) -> RefreshState:
        return self._state

    def is_refreshing(self) -> bool:
        return self._state is RefreshState.REFRESHING

    # ---------- entry points ----------
    async def recover(self, error: ClassifiedError) -> Any:
        """Resolve an Unauthorized or RefreshInProgress failure.

        Starts a refresh when none is running, otherwise joins the queue. Returns
        whatever the replayed request returns, or raises its failure.
        """
        descriptor = error.descriptor
        if error.kind not in (FailureKind.UNAUTHORIZED, FailureKind.REFRESH_IN_PROGRESS):
            raise error
        if descriptor is None or descriptor.is_retry:
            # replays that fail again go straight back to their caller
            raise error

        if self._state is RefreshState.REFRESHING:
            return await self.queue.enqueue(descriptor)
        if error.kind is FailureKind.REFRESH_IN_PROGRESS:
            # the refresh finished before this request got here; just go again
            return await self.replay(descriptor)

        # check-and-set; nothing below may await before the cycle is scheduled
        self._state = RefreshState.REFRESHING
        pending = self.queue.enqueue(descriptor)
        self._cycle = asyncio.create_task(self._refresh_cycle())
        return await pending

    async def join(self) -> None:
        """Wait for the running refresh cycle, if any."""
        if self._cycle is not None and not self._cycle.done():
            await asyncio.shield(self._cycle)

    def reset(self) -> None:
        """Back to a clean IDLE coordinator; anything still queued is rejected."""
        if self._cycle is not None and not self._cycle.done():
            self._cycle.cancel()
        self._cycle = None
        if self.queue:
            self.queue.reject_all(ClassifiedError.unauthorized("Refresh state was reset"))
        self._state = RefreshState.IDLE
        self.rate_limiter.reset()

    # ---------- refresh cycle ----------
    async def _refresh_cycle(self) -> None:
        try:
            self.rate_limiter.record_attempt()
            if self.rate_limiter.should_force_logout():
                error = ClassifiedError.unauthorized(TOO_MANY_REFRESHES_MESSAGE)
                await self.force_logout("refresh rate limit exceeded", error)
                self.queue.reject_all(error)
                return

            try:
                credential = await self._request_new_credential()
            except ClassifiedError as e:
                await self.force_logout("token refresh failed", e)
                self.queue.reject_all(e)
                return

            await self._store_credential(credential)
            logger.info("token refresh succeeded")
            await self.queue.drain(self.replay)
        except Exception as e:
            # nobody awaits this task; waiting callers receive the failure instead
            logger.exception("refresh cycle failed unexpectedly")
            failure = ClassifiedError(FailureKind.UNCLASSIFIED, str(e) or type(e).__name__, cause=e)
            self.queue.reject_all(failure)
        finally:
            self._state = RefreshState.IDLE

    async def _request_new_credential(self) -> Credential:
        hc = self.header_config
        access = await self.credentials.get(hc.access_key) or "noAccess"
        refresh = await self.credentials.get(hc.refresh_key) or "noRefresh"
        logged_in = await self.credentials.get(hc.login_key) == hc.login_value

        headers = {"Content-Type": hc.content_type}
        if logged_in:
            headers[hc.access_header] = access
            headers[hc.refresh_header] = refresh
        descriptor = RequestDescriptor(
            method="GET",
            url=self.refresh_config.refresh_path,
            headers=headers,
            is_retry=True,
            is_preprocessed=True,
        )
        logger.info(f"refreshing tokens via {descriptor.url}")
        try:
            response = await self.transport.send(descriptor)
        except TransportError as e:
            raise self.classifier.classify_transport_error(descriptor, e) from e
        if response.status >= 400:  # noqa: PLR2004, http status code can be constant
            raise self.classifier.classify_response(descriptor, response)

        new_access = response.header(hc.access_header)
        new_refresh = response.header(hc.refresh_header)
        if not new_access or not new_refresh:
            raise ClassifiedError.unauthorized(
                "Token refresh response did not carry new tokens", descriptor
            )
        return Credential(new_access, new_refresh, token_expiry(new_refresh))

    async def _store_credential(self, credential: Credential) -> None:
        hc = self.header_config
        await self.credentials.set(hc.access_key, credential.access_token)
        await self.credentials.set(
            hc.refresh_key, credential.refresh_token, expires=credential.refresh_expires_at
        )

    async def force_logout(self, reason: str, error: Union[ClassifiedError, None] = None) -> None:
        """Clear stored credentials, show one message and call the logout hook."""
        logger.warning(f"clearing credentials: {reason}")
        hc = self.header_config
        for key in (hc.access_key, hc.refresh_key, hc.login_key):
            await self.credentials.remove(key)
        error = error or ClassifiedError.unauthorized()
        self.reporter.report(error)
        if self.on_logout is not None:
            result = self.on_logout(error)
            if asyncio.iscoroutine(result):
                await result
