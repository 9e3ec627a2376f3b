from __future__ import annotations

import hashlib
import hmac

import jwt

from certconsole.core.config import settings


class TokenError(Exception):
    pass


# -------------------------
# Caller identity
# -------------------------
def token_fingerprint(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:32]


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.ExpiredSignatureError as e:
        raise TokenError("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise TokenError("Invalid token") from e


def caller_identity(token: str) -> str:
    """Stable owner key for the dialogs opened with ``token``.

    With JWT_SECRET set the token must be a valid JWT and the owner is its
    subject, so dialogs survive a token refresh. Otherwise the token is opaque
    to the console and the owner is its fingerprint.
    """
    if not settings.JWT_SECRET:
        return f"tok:{token_fingerprint(token)}"

    payload = decode_token(token)
    user_id = payload.get("sub") or payload.get("user_id") or payload.get("id")
    if user_id is None:
        raise TokenError("Token missing user id (sub/user_id)")
    return f"user:{user_id}"


def same_owner(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
