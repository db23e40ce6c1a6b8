from __future__ import annotations

import jwt

from app.core.config import settings


class TokenError(Exception):
    pass


def decode_token(token: str) -> dict:
    """Verify a bearer token issued by the platform; claims carry ``sub`` and ``role``."""
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.ExpiredSignatureError as e:
        raise TokenError("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise TokenError("Invalid token") from e
