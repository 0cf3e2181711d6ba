import os

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

HOST = os.getenv("CALL_BACKEND_HOST", "0.0.0.0")
PORT = int(os.getenv("CALL_BACKEND_PORT", "8080"))

# shared with the bot, signs the bearer tokens
CALL_BACKEND_SECRET = os.getenv("CALL_BACKEND_SECRET", "")

TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID", "")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN", "")
TWILIO_FROM_NUMBER = os.getenv("TWILIO_FROM_NUMBER", "")
TWILIO_API_BASE = os.getenv("TWILIO_API_BASE", "https://api.twilio.com/2010-04-01")
TWILIO_MESSAGE_URL = os.getenv(
    "TWILIO_MESSAGE_URL",
    "http://twimlets.com/message?Message%5B0%5D=This%20is%20Snooze%20Lane.%20You%20are%20arriving%20at%20your%20stop",
)
TWILIO_TIMEOUT_SEC = float(os.getenv("TWILIO_TIMEOUT_SEC", "15"))

BACKEND_DB_PATH = os.getenv("BACKEND_DB_PATH", "call_backend.db")

# global: one call per process; user: one call per user
CALL_DEBOUNCE_SCOPE = os.getenv("CALL_DEBOUNCE_SCOPE", "global").strip().lower()
DEBOUNCE_RESET_SEC = float(os.getenv("DEBOUNCE_RESET_SEC", "5"))
