import asyncio
import logging
import re
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from call_backend import config
from call_backend.auth import verify_token
from call_backend.debounce import CallDebouncer, debounce_key
from call_backend.directory import PhoneDirectory
from call_backend.errors import CallBackendError
from call_backend.telephony import TwilioClient

logger = logging.getLogger(__name__)

E164_RE = re.compile(r"^\+[1-9]\d{7,14}$")


# -------------------- Pydantic schemas --------------------


class CallableIn(BaseModel):
    data: dict[str, Any] = Field(default_factory=dict)


class PhoneData(BaseModel):
    phone: str


class PhoneIn(BaseModel):
    data: PhoneData


# -------------------- App --------------------


def _default_telephony() -> TwilioClient:
    if not (config.TWILIO_ACCOUNT_SID and config.TWILIO_AUTH_TOKEN and config.TWILIO_FROM_NUMBER):
        raise RuntimeError("TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_FROM_NUMBER are required.")
    return TwilioClient(config.TWILIO_ACCOUNT_SID, config.TWILIO_AUTH_TOKEN, config.TWILIO_FROM_NUMBER)


def create_app(
    *,
    secret: Optional[str] = None,
    directory: Optional[PhoneDirectory] = None,
    telephony=None,
    debouncer: Optional[CallDebouncer] = None,
    debounce_scope: Optional[str] = None,
) -> FastAPI:
    secret = config.CALL_BACKEND_SECRET if secret is None else secret
    if not secret:
        raise RuntimeError("CALL_BACKEND_SECRET is empty.")

    directory = directory or PhoneDirectory(config.BACKEND_DB_PATH)
    telephony = telephony or _default_telephony()
    debouncer = debouncer or CallDebouncer()
    scope = (debounce_scope or config.CALL_DEBOUNCE_SCOPE).strip().lower()
    if scope not in {"global", "user"}:
        raise RuntimeError(f"CALL_DEBOUNCE_SCOPE must be global or user, got {scope!r}.")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        directory.initialize()
        logger.info("CALL_BACKEND_READY scope=%s", scope)
        yield
        aclose = getattr(telephony, "aclose", None)
        if aclose is not None:
            await aclose()

    app = FastAPI(title="SnoozeLane call backend", lifespan=lifespan)
    app.state.directory = directory
    app.state.telephony = telephony
    app.state.debouncer = debouncer
    app.state.debounce_scope = scope

    @app.exception_handler(CallBackendError)
    async def handle_callable_error(request: Request, exc: CallBackendError) -> JSONResponse:
        return JSONResponse(status_code=exc.http_status, content=exc.to_payload())

    @app.get("/health")
    def health():
        return {"ok": True, "debounce_scope": scope}

    @app.post("/placeCall")
    async def place_call(body: Optional[CallableIn] = None, authorization: Optional[str] = Header(default=None)):
        user_id = verify_token(authorization, secret)

        key = debounce_key(scope, user_id)
        token = debouncer.try_acquire(key)
        if token is None:
            logger.warning("CALL_ALREADY_IN_PROGRESS user=%s key=%s", user_id, key)
            raise CallBackendError("RESOURCE_EXHAUSTED", "Call already in progress.")

        try:
            phone = await asyncio.to_thread(directory.get_phone, user_id)
            if not phone:
                logger.error("CALL_NO_PHONE user=%s", user_id)
                raise CallBackendError("NOT_FOUND", "No phone number available for the user.")

            sid = await telephony.place_call(phone)
            logger.info("CALL_INITIATED user=%s sid=%s", user_id, sid or "—")
            return {"result": {"result": f"Call initiated to {phone}"}}
        except CallBackendError:
            raise
        except Exception as exc:
            logger.error("CALL_FAILED user=%s error_type=%s error=%s", user_id, type(exc).__name__, exc)
            raise CallBackendError("INTERNAL", "Failed to initiate call.") from exc
        finally:
            debouncer.release(key, token)

    @app.put("/users/me/phone")
    def register_phone(body: PhoneIn, authorization: Optional[str] = Header(default=None)):
        user_id = verify_token(authorization, secret)

        phone = body.data.phone.strip()
        if not E164_RE.match(phone):
            raise CallBackendError("INVALID_ARGUMENT", "Phone number must be in E.164 format.")

        directory.set_phone(user_id, phone)
        return {"result": {"phone": phone}}

    return app
