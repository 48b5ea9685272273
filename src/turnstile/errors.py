import enum
import json
import logging
from dataclasses import dataclass
from typing import Callable, Protocol, Union

from .types import RequestDescriptor, TransportResponse

UNKNOWN_ERROR_MESSAGE = "Unknown error"
NO_TRACE_ID = "N/A"

KNOWN_STATUS_MESSAGES = {
    401: "Your session has expired, please sign in again",
    408: "The request timed out, please try again later",
    429: "Too many requests, please try again shortly",
    500: "Server error, please try again later",
    504: "The gateway timed out, please try again later",
}

logger = logging.getLogger("turnstile")


class FailureKind(enum.Enum):
    OFFLINE = "offline"
    UNAUTHORIZED = "unauthorized"
    # flow-control signal: the request was blocked by an in-flight refresh
    REFRESH_IN_PROGRESS = "refresh_in_progress"
    KNOWN_HTTP = "known_http"
    UNCLASSIFIED = "unclassified"


class TransportError(Exception):
    """Raised by transports when no HTTP response could be obtained."""

    def __init__(self, message: str, cause: Union[BaseException, None] = None):
        super().__init__(message)
        self.cause = cause


class ClassifiedError(Exception):
    """A request failure normalized into one of the FailureKind variants.

    ``handled`` flips to True exactly once, when the failure was shown to the
    user (or deliberately kept silent), so it is never displayed twice while it
    propagates.
    """

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        descriptor: Union[RequestDescriptor, None] = None,
        status: Union[int, None] = None,
        trace_id: Union[str, None] = None,
        response: Union[TransportResponse, None] = None,
        cause: Union[BaseException, None] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.descriptor = descriptor
        self.status = status
        self.trace_id = trace_id
        self.response = response
        self.cause = cause
        self.handled = False

    @property
    def display_message(self) -> str:
        if self.trace_id:
            return f"{self.message} ({self.trace_id})"
        return self.message

    def __str__(self) -> str:
        return self.display_message

    def __repr__(self) -> str:
        return (
            f"ClassifiedError(kind={self.kind.value}, status={self.status}, "
            f"message={self.message!r}, trace_id={self.trace_id!r})"
        )

    @classmethod
    def offline(cls, descriptor=None) -> "ClassifiedError":
        return cls(
            FailureKind.OFFLINE,
            "The device is offline, please check the network connection",
            descriptor,
        )

    @classmethod
    def unauthorized(
        cls, message: str = KNOWN_STATUS_MESSAGES[401], descriptor=None
    ) -> "ClassifiedError":
        return cls(FailureKind.UNAUTHORIZED, message, descriptor, status=401)

    @classmethod
    def refresh_in_progress(cls, descriptor=None) -> "ClassifiedError":
        return cls(
            FailureKind.REFRESH_IN_PROGRESS,
            "A token refresh is in progress",
            descriptor,
        )


@dataclass
class DecodedBody:
    message: str
    trace_id: str = NO_TRACE_ID
    code: Union[int, None] = None


def decode_error_body(content: Union[bytes, str, None]) -> DecodedBody:
    """Decode an opaque error body into a message and a trace id.

    JSON objects contribute ``message``, ``traceId`` and ``code``. Anything else
    (empty, not JSON, not UTF-8) degrades to a generic message.
    """
    if not content:
        return DecodedBody(UNKNOWN_ERROR_MESSAGE)
    try:
        text = content.decode("utf-8") if isinstance(content, bytes) else content
        payload = json.loads(text)
    except (UnicodeDecodeError, ValueError) as e:
        logger.warning(f"could not decode error body: {e}")
        return DecodedBody(UNKNOWN_ERROR_MESSAGE)
    if not isinstance(payload, dict):
        return DecodedBody(UNKNOWN_ERROR_MESSAGE)

    message = payload.get("message")
    trace_id = payload.get("traceId")
    code = payload.get("code")
    return DecodedBody(
        message=str(message) if message else UNKNOWN_ERROR_MESSAGE,
        trace_id=str(trace_id) if trace_id else NO_TRACE_ID,
        code=code if isinstance(code, int) and not isinstance(code, bool) else None,
    )


class ErrorClassifier:
    """Turns transport failures and error responses into ClassifiedError.

    Classification never raises.
    """

    def __init__(
        self,
        is_online: Callable[[], bool] = lambda: True,
        known_messages: Union[dict[int, str], None] = None,
    ):
        self._is_online = is_online
        self.known_messages = dict(known_messages or KNOWN_STATUS_MESSAGES)

    def classify_transport_error(
        self, descriptor: Union[RequestDescriptor, None], error: BaseException
    ) -> ClassifiedError:
        try:
            online = self._is_online()
        except Exception as e:  # noqa: BLE001, a broken probe must not mask the failure
            logger.warning(f"connectivity probe failed: {e}")
            online = True
        if not online:
            failure = ClassifiedError.offline(descriptor)
        else:
            failure = ClassifiedError(
                FailureKind.UNCLASSIFIED,
                str(error) or UNKNOWN_ERROR_MESSAGE,
                descriptor,
            )
        failure.cause = error
        return failure

    def classify_response(
        self, descriptor: Union[RequestDescriptor, None], response: TransportResponse
    ) -> ClassifiedError:
        decoded = decode_error_body(response.content)
        status = response.status or decoded.code
        if decoded.message != UNKNOWN_ERROR_MESSAGE:
            message = decoded.message
        else:
            message = self.known_messages.get(status, UNKNOWN_ERROR_MESSAGE)

        if status == 401:  # noqa: PLR2004, http status code can be constant
            kind = FailureKind.UNAUTHORIZED
        elif status in self.known_messages:
            kind = FailureKind.KNOWN_HTTP
        else:
            kind = FailureKind.UNCLASSIFIED
        return ClassifiedError(
            kind,
            message,
            descriptor,
            status=status,
            trace_id=decoded.trace_id,
            response=response,
        )


class Notifier(Protocol):
    def notify(self, message: str) -> None: ...


class LoggingNotifier:
    """Default sink: user-facing messages go to the 'turnstile' logger."""

    def notify(self, message: str) -> None:
        logger.error(message)


class ErrorReporter:
    def __init__(
        self,
        notifier: Union[Notifier, None] = None,
        known_messages: Union[dict[int, str], None] = None,
    ):
        self.notifier = notifier or LoggingNotifier()
        self.known_messages = dict(known_messages or KNOWN_STATUS_MESSAGES)

    def report(self, error: ClassifiedError, silent: bool = False) -> None:
        """Show ``error`` once. Already handled errors and refresh signals are ignored."""
        if error.handled or error.kind is FailureKind.REFRESH_IN_PROGRESS:
            return
        message = None
        if error.response is not None:
            message = self.known_messages.get(error.status)
        message = message or error.display_message
        if not silent:
            self.notifier.notify(message)
        error.handled = True
