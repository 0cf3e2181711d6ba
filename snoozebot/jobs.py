import time

from telegram.ext import ContextTypes

from snoozebot import config
from snoozebot.location_feed import LocationFeedError
from snoozebot.models import TripState


def build_job_check_stale(registry, logger):
    async def job_check_stale(context: ContextTypes.DEFAULT_TYPE) -> None:
        if registry.is_empty():
            return

        now = time.time()
        for traveler in list(registry.values()):
            session = traveler.session
            if traveler.engine.snapshot().state != TripState.ACTIVE:
                continue
            if session.last_live_update_ts <= 0:
                continue

            age = now - session.last_live_update_ts
            if age < config.STALE_AFTER_SEC:
                continue
            if (now - session.last_stale_notify_ts) < config.STALE_NOTIFY_COOLDOWN_SEC:
                continue

            session.last_stale_notify_ts = now
            expired = 0 < session.live_period_until_ts <= now
            reason = "live_period_ended" if expired else "no_updates"

            # sensing error only: the trip stays active
            traveler.feed.report_error(LocationFeedError(f"live_location_stale age={age:.0f}s reason={reason}"))
            logger.info("STALE user=%s age=%.1f reason=%s", session.user_id, age, reason)

            if expired:
                text = (
                    "⚠️ Your Live Location sharing has ended, but the trip is still on.\n"
                    "Share your Live Location again so the alarm can fire."
                )
            else:
                text = (
                    "⚠️ I haven't seen your location for a while.\n"
                    "Check that Live Location is still being shared and Telegram can use GPS."
                )
            try:
                await context.bot.send_message(chat_id=session.chat_id, text=text)
            except Exception as exc:
                logger.error("STALE_NOTIFY_FAIL chat_id=%s error=%s", session.chat_id, exc)

    return job_check_stale
