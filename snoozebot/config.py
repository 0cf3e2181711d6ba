import os

BOT_TOKEN = os.getenv("BOT_TOKEN", "")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

CALL_BACKEND_URL = os.getenv("CALL_BACKEND_URL", "http://127.0.0.1:8080")
CALL_BACKEND_SECRET = os.getenv("CALL_BACKEND_SECRET", "")

# Alarm radius: the UI offers 0.3-2.0 miles, the engine accepts any value > 0
METERS_PER_MILE = 1609.34
DEFAULT_ALARM_RADIUS_M = float(os.getenv("DEFAULT_ALARM_RADIUS_M", "500"))
MIN_ALARM_RADIUS_M = 482.81
MAX_ALARM_RADIUS_M = 3218.68
RADIUS_CHOICES_MILES = (0.3, 0.5, 1.0, 1.5, 2.0)

# Geolocation feed sampling policy
FEED_MIN_DISPLACEMENT_M = float(os.getenv("FEED_MIN_DISPLACEMENT_M", "30"))
FEED_MIN_INTERVAL_SEC = float(os.getenv("FEED_MIN_INTERVAL_SEC", "60"))
FEED_FAST_SPEED_MPS = float(os.getenv("FEED_FAST_SPEED_MPS", "10"))
FEED_FAST_DISPLACEMENT_M = float(os.getenv("FEED_FAST_DISPLACEMENT_M", "50"))
FEED_FAST_INTERVAL_SEC = float(os.getenv("FEED_FAST_INTERVAL_SEC", "30"))
ACCURACY_MAX_M = int(os.getenv("ACCURACY_MAX_M", "100"))

# Alarm
ALARM_TITLE = "Wake up! You're almost there!"
ALARM_BODY = "You're approaching your stop📍"
NOTIFY_DELAY_SEC = float(os.getenv("NOTIFY_DELAY_SEC", "1"))
FOREGROUND_WINDOW_SEC = int(os.getenv("FOREGROUND_WINDOW_SEC", "60"))

CALL_MAX_RETRIES = int(os.getenv("CALL_MAX_RETRIES", "3"))
CALL_RETRY_DELAY_SEC = float(os.getenv("CALL_RETRY_DELAY_SEC", "2"))
REPORT_CALL_FAILURE = os.getenv("REPORT_CALL_FAILURE", "0") in {"1", "true", "True"}

CALL_COUNT_DB_PATH = os.getenv("CALL_COUNT_DB_PATH", "snoozebot.db")
CALL_COUNT_MAX_RETRIES = int(os.getenv("CALL_COUNT_MAX_RETRIES", "5"))

HTTP_TIMEOUT_SEC = int(os.getenv("HTTP_TIMEOUT_SEC", "20"))

ENABLE_STALE_CHECK = os.getenv("ENABLE_STALE_CHECK", "1") not in {"0", "false", "False"}
STALE_CHECK_EVERY_SEC = int(os.getenv("STALE_CHECK_EVERY_SEC", "60"))
STALE_AFTER_SEC = int(os.getenv("STALE_AFTER_SEC", "180"))
STALE_NOTIFY_COOLDOWN_SEC = int(os.getenv("STALE_NOTIFY_COOLDOWN_SEC", "600"))

REG_CONTACT = 0
