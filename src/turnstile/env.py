import os
from typing import Union

from .tokens import token_expiry
from .types import Credential, RefreshConfig


def _parse_env_file(env_path: str) -> dict[str, str]:
    """Read ``TURNSTILE_*`` style settings from a .env file; os.environ is left alone.

    Lines are ``KEY=VALUE``, optionally prefixed with ``export``. Comments, blank
    lines and lines without ``=`` are skipped; one layer of quotes is removed
    from values. A missing file yields no settings.
    """
    try:
        with open(env_path) as f:
            lines = f.read().splitlines()
    except FileNotFoundError:
        return {}

    settings: dict[str, str] = {}
    for line in lines:
        line = line.strip()
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        settings[key] = value.strip().strip('"').strip("'")
    return settings


def _env_map(env_path: Union[str, None]) -> dict[str, str]:
    # actual environment takes precedence over the .env file
    file_env = _parse_env_file(env_path) if env_path else {}
    return {**file_env, **os.environ}


def _as_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def load_config_from_env(
    prefix: str = "TURNSTILE_",
    env_path: Union[str, None] = None,
    **overrides,
) -> RefreshConfig:
    """Build a RefreshConfig from environment variables.

    Recognised names (after ``prefix``): BASE_URL, REFRESH_PATH,
    MAX_REFRESH_ATTEMPTS, REFRESH_WINDOW, TIMEOUT, KEEP_URL_PARAMS. Unset
    variables keep the RefreshConfig defaults; keyword ``overrides`` win over
    both.

    Raises:
        ValueError: if a numeric variable cannot be parsed
    """
    env_map = _env_map(env_path)
    defaults = RefreshConfig()

    def _get(name: str):
        return env_map.get(f"{prefix}{name}")

    values: dict = {}
    if _get("BASE_URL"):
        values["base_url"] = _get("BASE_URL")
    if _get("REFRESH_PATH"):
        values["refresh_path"] = _get("REFRESH_PATH")
    try:
        if _get("MAX_REFRESH_ATTEMPTS"):
            values["max_refresh_attempts"] = int(_get("MAX_REFRESH_ATTEMPTS"))
        if _get("REFRESH_WINDOW"):
            values["refresh_window"] = float(_get("REFRESH_WINDOW"))
        if _get("TIMEOUT"):
            values["timeout"] = float(_get("TIMEOUT"))
    except ValueError as e:
        raise ValueError(f"invalid numeric value in {prefix}* environment: {e}") from e
    if _get("KEEP_URL_PARAMS"):
        values["keep_url_params"] = _as_bool(_get("KEEP_URL_PARAMS"))
    values.update(overrides)

    return RefreshConfig(
        base_url=values.get("base_url", defaults.base_url),
        refresh_path=values.get("refresh_path", defaults.refresh_path),
        max_refresh_attempts=values.get("max_refresh_attempts", defaults.max_refresh_attempts),
        refresh_window=values.get("refresh_window", defaults.refresh_window),
        timeout=values.get("timeout", defaults.timeout),
        keep_url_params=values.get("keep_url_params", defaults.keep_url_params),
    )


def load_credential_from_env(
    prefix: str = "TURNSTILE_",
    env_path: Union[str, None] = None,
) -> Union[Credential, None]:
    """Read ``{prefix}ACCESS_TOKEN`` and ``{prefix}REFRESH_TOKEN``; None unless both are set."""
    env_map = _env_map(env_path)
    access = env_map.get(f"{prefix}ACCESS_TOKEN")
    refresh = env_map.get(f"{prefix}REFRESH_TOKEN")
    if not (access and refresh):
        return None
    return Credential(access, refresh, token_expiry(refresh))
