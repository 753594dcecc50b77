from typing import Any, Dict

import jwt

from ..config import settings


class InvalidTokenError(Exception):
    """Raised when a token cannot be parsed or is malformed."""


class ExpiredTokenError(Exception):
    """Raised when a token has expired."""


def decode_access_token(token: str) -> Dict[str, Any]:
    """Verify the signature and expiry of a bearer token and return its claims.

    Claim layout is not checked here; identity resolution walks the claims.
    """
    if not token or not isinstance(token, str):
        raise InvalidTokenError()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except jwt.ExpiredSignatureError as exc:
        raise ExpiredTokenError from exc
    except jwt.InvalidTokenError as exc:
        raise InvalidTokenError from exc

    if not isinstance(payload, dict):
        raise InvalidTokenError()
    return payload
