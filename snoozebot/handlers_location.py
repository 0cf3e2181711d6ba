import time

from telegram import Update
from telegram.ext import ContextTypes, MessageHandler, filters

from snoozebot import config
from snoozebot.handlers_trip import format_distance, radius_keyboard
from snoozebot.models import (
    MODE_AWAITING_DESTINATION,
    MODE_AWAITING_LIVE_LOCATION,
    MODE_CHOOSE_RADIUS,
    MODE_IDLE,
    Coordinate,
)


STATIC_PIN_HINT = (
    "That looks like a dropped pin, not your position.\n"
    "To set a stop send /trip first. To be tracked share your Live Location "
    "(📎 → Location → Share Live Location)."
)


def _message_ts(message) -> float:
    stamp = message.edit_date or message.date
    return stamp.timestamp() if stamp is not None else time.time()


def build_location_handlers(registry, logger):
    async def handle_location_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        user = update.effective_user
        chat = update.effective_chat
        if not message or not message.location or not user or not chat:
            return

        location = message.location
        traveler = registry.get_or_create(user.id, chat.id)
        session = traveler.session
        is_edit = update.edited_message is not None
        is_live = bool(location.live_period) or is_edit

        if not is_edit:
            registry.touch(traveler)

        if not is_live:
            if session.mode == MODE_AWAITING_DESTINATION:
                await handle_destination(message, traveler, location)
                return
            # a dropped pin is not where the traveler is
            logger.info("STATIC_LOCATION_IGNORED user=%s mode=%s", user.id, session.mode)
            await message.reply_text(STATIC_PIN_HINT)
            return

        now = time.time()
        session.last_live_update_ts = now
        if session.mode == MODE_AWAITING_LIVE_LOCATION:
            session.mode = MODE_IDLE
        if location.live_period and message.date is not None:
            session.live_period_until_ts = message.date.timestamp() + float(location.live_period)

        accuracy = getattr(location, "horizontal_accuracy", None)
        logger.info(
            "LOCATION user=%s live=%s edit=%s lat=%s lon=%s acc=%s",
            user.id,
            is_live,
            is_edit,
            location.latitude,
            location.longitude,
            accuracy,
        )

        await traveler.feed.push(
            latitude=location.latitude,
            longitude=location.longitude,
            timestamp=_message_ts(message),
            accuracy_m=accuracy,
        )
        session.last_stale_notify_ts = 0.0

        if not is_edit:
            snapshot = traveler.engine.snapshot()
            if snapshot.is_tracking:
                await message.reply_text(
                    f"📡 Tracking. Distance to stop: {format_distance(snapshot.distance_m)}."
                )
            else:
                await message.reply_text("📡 Got your live location. Send /trip to set a stop.")

    async def handle_destination(message, traveler, location) -> None:
        session = traveler.session
        session.pending_destination = Coordinate(float(location.latitude), float(location.longitude))
        session.mode = MODE_CHOOSE_RADIUS
        logger.info(
            "DESTINATION_SELECTED user=%s lat=%s lon=%s",
            session.user_id,
            location.latitude,
            location.longitude,
        )
        default_radius = session.alarm_radius_m or config.DEFAULT_ALARM_RADIUS_M
        await message.reply_text(
            f"📍 Stop saved. How early should I wake you? (last used: {format_distance(default_radius)})",
            reply_markup=radius_keyboard(),
        )

    return [
        MessageHandler(filters.UpdateType.MESSAGE & filters.LOCATION, handle_location_message),
        MessageHandler(filters.UpdateType.EDITED_MESSAGE & filters.LOCATION, handle_location_message),
    ]
