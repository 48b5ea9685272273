from datetime import datetime, timezone
from typing import Protocol, Union


class CredentialStore(Protocol):
    """Cookie-like key/value storage for tokens. Writes replace whole values."""

    async def get(self, key: str) -> Union[str, None]: ...

    async def set(self, key: str, value: str, expires: Union[datetime, None] = None) -> None: ...

    async def remove(self, key: str) -> None: ...


class PreferenceStore(Protocol):
    async def get(self, key: str) -> Union[str, None]: ...


class Connectivity(Protocol):
    def is_online(self) -> bool: ...


class MemoryCredentialStore:
    """In-process credential store. Entries past their expiry read as absent."""

    def __init__(self, values: Union[dict[str, str], None] = None):
        self._values: dict[str, tuple[str, Union[datetime, None]]] = {
            k: (v, None) for k, v in (values or {}).items()
        }

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def get(self, key: str) -> Union[str, None]:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires = entry
        if expires is not None and self._now() >= expires:
            self._values.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, expires: Union[datetime, None] = None) -> None:
        self._values[key] = (value, expires)

    async def remove(self, key: str) -> None:
        self._values.pop(key, None)

    def expiry(self, key: str) -> Union[datetime, None]:
        entry = self._values.get(key)
        return entry[1] if entry else None

    def __contains__(self, key: str) -> bool:
        return key in self._values


class MemoryPreferenceStore:
    def __init__(self, values: Union[dict[str, str], None] = None):
        self.values: dict[str, str] = dict(values or {})

    async def get(self, key: str) -> Union[str, None]:
        return self.values.get(key)


class StaticConnectivity:
    """Connectivity flag flipped by the application (e.g. from OS network events)."""

    def __init__(self, online: bool = True):
        self.online = online

    def is_online(self) -> bool:
        return self.online

    def set_online(self, online: bool) -> None:
        self.online = online
