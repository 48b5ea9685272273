from .adapters import AiohttpTransport, HttpxTransport, Transport
from .client import AsyncRefreshingClient
from .coordinator import RefreshCoordinator
from .env import load_config_from_env, load_credential_from_env
from .errors import (
    KNOWN_STATUS_MESSAGES,
    ClassifiedError,
    ErrorClassifier,
    ErrorReporter,
    FailureKind,
    LoggingNotifier,
    TransportError,
    decode_error_body,
)
from .pipeline import (
    DEFAULT_REQUEST_STAGES,
    DEFAULT_RESPONSE_STAGES,
    PipelineContext,
    RequestPipeline,
    ResponsePipeline,
)
from .queue import RequestQueue
from .ratelimit import RateLimiter
from .state import RefreshState
from .stores import MemoryCredentialStore, MemoryPreferenceStore, StaticConnectivity
from .tokens import is_expired, token_expiry
from .types import (
    Credential,
    HeaderConfig,
    RefreshConfig,
    RequestDescriptor,
    ResponseContext,
    TransportResponse,
)

__all__ = [
    "AsyncRefreshingClient",
    "RefreshCoordinator",
    "RequestQueue",
    "RateLimiter",
    "RefreshState",
    "RequestPipeline",
    "ResponsePipeline",
    "PipelineContext",
    "DEFAULT_REQUEST_STAGES",
    "DEFAULT_RESPONSE_STAGES",
    "ClassifiedError",
    "FailureKind",
    "ErrorClassifier",
    "ErrorReporter",
    "LoggingNotifier",
    "TransportError",
    "KNOWN_STATUS_MESSAGES",
    "decode_error_body",
    "Transport",
    "HttpxTransport",
    "AiohttpTransport",
    "MemoryCredentialStore",
    "MemoryPreferenceStore",
    "StaticConnectivity",
    "RequestDescriptor",
    "Credential",
    "TransportResponse",
    "ResponseContext",
    "HeaderConfig",
    "RefreshConfig",
    "token_expiry",
    "is_expired",
    "load_config_from_env",
    "load_credential_from_env",
]
