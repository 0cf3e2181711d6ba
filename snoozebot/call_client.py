import hashlib
import hmac
from typing import Optional

import httpx

from snoozebot import config


class CallError(RuntimeError):
    code = "internal"
    retryable = True


class CallUnauthenticatedError(CallError):
    code = "unauthenticated"
    retryable = False


class CallNotFoundError(CallError):
    code = "not-found"
    retryable = False


class CallResourceExhaustedError(CallError):
    code = "resource-exhausted"
    retryable = True


class CallInternalError(CallError):
    code = "internal"
    retryable = True


STATUS_TO_ERROR = {
    "UNAUTHENTICATED": CallUnauthenticatedError,
    "NOT_FOUND": CallNotFoundError,
    "RESOURCE_EXHAUSTED": CallResourceExhaustedError,
    "INTERNAL": CallInternalError,
}

HTTP_STATUS_TO_ERROR = {
    401: CallUnauthenticatedError,
    403: CallUnauthenticatedError,
    404: CallNotFoundError,
    429: CallResourceExhaustedError,
}


def mint_token(secret: str, user_id: int) -> str:
    signature = hmac.new(secret.encode(), str(user_id).encode(), hashlib.sha256).hexdigest()
    return f"{user_id}.{signature}"


class CallBackendClient:
    """Client for the call backend's callable endpoints.

    Every failure surfaces as a ``CallError`` subclass; retry policy belongs
    to the caller.
    """

    def __init__(self, base_url: str, secret: str, logger) -> None:
        self.base_url = str(base_url or "").rstrip("/")
        self.secret = secret
        self.logger = logger
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(connect=5.0, read=float(config.HTTP_TIMEOUT_SEC), write=10.0, pool=5.0),
            headers={"User-Agent": "snoozebot/1.0"},
            follow_redirects=True,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _require_config(self) -> None:
        if not self.base_url or not self.secret:
            raise CallInternalError("CALL_BACKEND_URL/CALL_BACKEND_SECRET are not set.")

    async def _request(self, method: str, path: str, user_id: int, data: Optional[dict] = None) -> dict:
        self._require_config()
        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {"Authorization": f"Bearer {mint_token(self.secret, user_id)}"}

        self.logger.info("CALL_BACKEND_REQUEST method=%s path=%s user=%s", method, path, user_id)
        try:
            response = await self._client.request(method, url, json={"data": data or {}}, headers=headers)
        except httpx.HTTPError as exc:
            self.logger.warning(
                "CALL_BACKEND_EXCEPTION method=%s path=%s error_type=%s error=%s",
                method,
                path,
                type(exc).__name__,
                exc,
            )
            raise CallInternalError("transport_error") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        error = payload.get("error") if isinstance(payload, dict) else None
        if response.status_code >= 400 or error:
            status = str(error.get("status") or "").upper() if isinstance(error, dict) else ""
            message = str(error.get("message") or "") if isinstance(error, dict) else response.text[:300]
            error_cls = STATUS_TO_ERROR.get(status) or HTTP_STATUS_TO_ERROR.get(response.status_code, CallInternalError)
            self.logger.warning(
                "CALL_BACKEND_ERROR method=%s path=%s status=%s error_status=%s message=%s",
                method,
                path,
                response.status_code,
                status or "—",
                message,
            )
            raise error_cls(message or error_cls.code)

        if not isinstance(payload, dict):
            self.logger.error("CALL_BACKEND_BAD_JSON method=%s path=%s body=%s", method, path, response.text[:300])
            raise CallInternalError("bad_response")
        return payload

    async def place_call(self, user_id: int) -> str:
        payload = await self._request("POST", "placeCall", user_id)
        result = payload.get("result")
        if isinstance(result, dict):
            result = result.get("result")
        return str(result or "")

    async def register_phone(self, user_id: int, phone: str) -> dict:
        payload = await self._request("PUT", "users/me/phone", user_id, {"phone": phone})
        result = payload.get("result")
        return result if isinstance(result, dict) else {}
