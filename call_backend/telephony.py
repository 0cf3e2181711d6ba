import logging
from typing import Optional

import httpx

from call_backend import config

logger = logging.getLogger(__name__)


class TelephonyError(RuntimeError):
    pass


class TwilioClient:
    """Places outbound calls through the Twilio REST API."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        *,
        message_url: str = config.TWILIO_MESSAGE_URL,
        api_base: str = config.TWILIO_API_BASE,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.account_sid = account_sid
        self.from_number = from_number
        self.message_url = message_url
        self.api_base = api_base.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=config.TWILIO_TIMEOUT_SEC)
        self._auth = httpx.BasicAuth(account_sid, auth_token)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def place_call(self, to_number: str) -> str:
        url = f"{self.api_base}/Accounts/{self.account_sid}/Calls.json"
        form = {"To": to_number, "From": self.from_number, "Url": self.message_url}
        try:
            response = await self._client.post(url, data=form, auth=self._auth)
        except httpx.HTTPError as exc:
            logger.warning("TWILIO_EXCEPTION error_type=%s error=%s", type(exc).__name__, exc)
            raise TelephonyError(str(exc) or type(exc).__name__) from exc

        if response.status_code >= 400:
            logger.warning("TWILIO_ERROR status=%s body=%s", response.status_code, response.text[:300])
            raise TelephonyError(f"twilio_status_{response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise TelephonyError("twilio_bad_json") from exc

        sid = str(payload.get("sid") or "") if isinstance(payload, dict) else ""
        logger.info("TWILIO_CALL_CREATED sid=%s", sid or "—")
        return sid
