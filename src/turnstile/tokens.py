from datetime import datetime, timezone

import jwt


def _claims(token: str) -> dict:
    return jwt.decode(
        token,
        options={
            "verify_signature": False,
            "verify_exp": False,
            "verify_aud": False,
        },
    )


def token_expiry(token: str | None) -> datetime | None:
    """Return the ``exp`` claim of a JWT as an aware UTC datetime.

    The signature is NOT verified; the value is only used to give the stored
    refresh token a matching lifetime. Returns None for missing, malformed or
    exp-less tokens.
    """
    if not token:
        return None
    try:
        exp = _claims(token).get("exp")
    except jwt.PyJWTError:
        return None
    if not isinstance(exp, (int, float)):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)


def is_expired(token: str | None, now: datetime | None = None) -> bool:
    """True when the token is missing, undecodable, has no exp, or exp has passed."""
    expiry = token_expiry(token)
    if expiry is None:
        return True
    now = now or datetime.now(timezone.utc)
    return now >= expiry
