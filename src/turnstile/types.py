from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

# Effectively disables timeout-driven cancellation (24h)
DEFAULT_TIMEOUT = 24 * 60 * 60.0


@dataclass
class RequestDescriptor:
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    params: dict[str, Any] | None = None
    is_retry: bool = False
    is_preprocessed: bool = False
    needs_auth: bool = False
    # keep `{name}` fields in the body after they were substituted into the url
    keep_url_params: bool = False
    timeout: float | None = None

    @property
    def is_write(self) -> bool:
        return self.method.upper() in WRITE_METHODS


@dataclass
class Credential:
    access_token: str
    refresh_token: str
    refresh_expires_at: datetime | None = None


@dataclass
class TransportResponse:
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    content: bytes = b""
    content_type: str = ""

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())


@dataclass
class ResponseContext:
    descriptor: RequestDescriptor
    response: TransportResponse
    data: Any = None


@dataclass(frozen=True)
class HeaderConfig:
    access_header: str = "x-access-token"
    refresh_header: str = "x-refresh-token"
    locale_header: str = "x-locale"
    currency_header: str = "currency"
    content_type: str = "application/json;charset=UTF-8"

    # credential store keys
    access_key: str = "access_token"
    refresh_key: str = "refresh_token"
    login_key: str = "token"
    login_value: str = "token"

    # preference store keys
    language_key: str = "language"
    currency_key: str = "currency"


@dataclass(frozen=True)
class RefreshConfig:
    base_url: str = ""
    refresh_path: str = "/refreshToken"
    # refresh attempts allowed per window before forcing a logout
    max_refresh_attempts: int = 5
    refresh_window: float = 60.0
    timeout: float = DEFAULT_TIMEOUT
    keep_url_params: bool = False
