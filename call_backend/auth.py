import hashlib
import hmac
from typing import Optional

from call_backend.errors import CallBackendError


def sign(secret: str, user_id: int) -> str:
    return hmac.new(secret.encode(), str(user_id).encode(), hashlib.sha256).hexdigest()


def verify_token(authorization: Optional[str], secret: str) -> int:
    """User id from ``Bearer <user_id>.<signature>``; anything else is unauthenticated."""
    if not secret:
        raise CallBackendError("INTERNAL", "Backend secret is not configured.")

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise CallBackendError("UNAUTHENTICATED", "The function must be called while authenticated.")

    raw_user_id, _, signature = token.strip().partition(".")
    try:
        user_id = int(raw_user_id)
    except ValueError:
        raise CallBackendError("UNAUTHENTICATED", "The function must be called while authenticated.") from None

    if not signature or not hmac.compare_digest(signature, sign(secret, user_id)):
        raise CallBackendError("UNAUTHENTICATED", "The function must be called while authenticated.")
    return user_id
