from telegram import InlineKeyboardButton, InlineKeyboardMarkup, KeyboardButton, ReplyKeyboardMarkup, Update
from telegram.ext import CallbackQueryHandler, CommandHandler, ContextTypes, MessageHandler, filters

from snoozebot import config
from snoozebot.models import (
    MODE_AWAITING_DESTINATION,
    MODE_AWAITING_LIVE_LOCATION,
    MODE_CHOOSE_RADIUS,
    TripSnapshot,
    TripState,
)
from snoozebot.trip_engine import TripError

BTN_NEW_TRIP = "🧭 New trip"
BTN_CANCEL_TRIP = "❌ Cancel trip"
BTN_STATUS = "📍 Status"
BTN_RADIUS = "🎯 Alarm radius"
BTN_HELP = "❓ Help"

HELP_TEXT = (
    "How it works:\n"
    "1) /trip and send your stop as a location (📎 → Location).\n"
    "2) Pick the alarm radius.\n"
    "3) Share your Live Location (📎 → Location → Share Live Location).\n"
    "When you get close I'll alert you here and call your phone.\n\n"
    "Commands: /trip /status /radius /cancel /newtrip /phone"
)


def main_menu_keyboard() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        [
            [KeyboardButton(BTN_NEW_TRIP), KeyboardButton(BTN_CANCEL_TRIP)],
            [KeyboardButton(BTN_STATUS), KeyboardButton(BTN_RADIUS)],
            [KeyboardButton(BTN_HELP)],
        ],
        resize_keyboard=True,
        one_time_keyboard=False,
    )


def radius_keyboard() -> InlineKeyboardMarkup:
    rows = []
    for miles in config.RADIUS_CHOICES_MILES:
        meters = min(max(miles * config.METERS_PER_MILE, config.MIN_ALARM_RADIUS_M), config.MAX_ALARM_RADIUS_M)
        rows.append([InlineKeyboardButton(f"{miles:.1f} mi", callback_data=f"radius:{meters:.2f}")])
    return InlineKeyboardMarkup(rows)


def format_distance(meters: float) -> str:
    return f"{meters:.0f} m ({meters / config.METERS_PER_MILE:.2f} mi)"


def format_status(snapshot: TripSnapshot) -> str:
    if snapshot.state == TripState.IDLE:
        return f"No active trip. Alarm radius: {format_distance(snapshot.threshold_m)}.\nSend /trip to start."

    lines = [
        f"State: {snapshot.state.value}",
        f"Distance to stop: {format_distance(snapshot.distance_m)}",
        f"Alarm radius: {format_distance(snapshot.threshold_m)}",
        f"Progress: {snapshot.progress * 100:.0f}%",
    ]
    if snapshot.call_made:
        lines.append("Wake-up call: placed ✅")
    elif snapshot.call_in_progress:
        lines.append("Wake-up call: dialing…")
    elif snapshot.call_failed:
        lines.append("Wake-up call: failed")
    return "\n".join(lines)


def snapshot_text(snapshot: TripSnapshot, previous_state: str | None, previous_call_made: bool) -> str | None:
    state = snapshot.state
    if state == TripState.ACTIVE and previous_state != TripState.ACTIVE.value:
        text = (
            f"🚆 Trip started. Alarm radius {format_distance(snapshot.threshold_m)}.\n"
            "Share your Live Location so I can follow you."
        )
        if snapshot.progress >= 1.0:
            text += (
                "\n⚠️ You're already inside the alarm radius. "
                "The alarm fires on your next live location update, so keep sharing it."
            )
        return text
    if state == TripState.CANCELLED:
        return "❌ Trip cancelled."
    if state == TripState.COMPLETED:
        return "🏁 Trip completed. Send /trip for the next one."
    if snapshot.call_made and not previous_call_made:
        return "📞 Wake-up call placed."
    return None


def build_snapshot_renderer(bot, logger):
    """Subscriber that turns trip snapshots into chat messages."""

    def factory(traveler):
        session = traveler.session

        async def render(snapshot: TripSnapshot) -> None:
            text = snapshot_text(snapshot, session.last_rendered_state, session.last_rendered_call_made)
            session.last_rendered_state = snapshot.state.value
            session.last_rendered_call_made = snapshot.call_made
            if not text:
                return
            try:
                await bot.send_message(chat_id=session.chat_id, text=text)
            except Exception as exc:
                logger.error("SNAPSHOT_RENDER_FAILED user=%s state=%s error=%s", session.user_id, snapshot.state.value, exc)

        return render

    return factory


def build_trip_handlers(registry, logger):
    def traveler_for(update: Update):
        user = update.effective_user
        chat = update.effective_chat
        if not user or not chat:
            return None
        traveler = registry.get_or_create(user.id, chat.id)
        registry.touch(traveler)
        return traveler

    async def reply(update: Update, text: str, **kwargs) -> None:
        target = update.effective_message
        if target:
            await target.reply_text(text, **kwargs)

    async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        traveler = traveler_for(update)
        if traveler is None:
            return
        registry.reset_flow(traveler.session)
        text = "Hi! I'll wake you up before your stop.\n\n" + HELP_TEXT
        if not traveler.session.phone_registered:
            text += "\n\nSend /phone first so I can call you."
        await reply(update, text, reply_markup=main_menu_keyboard())

    async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if traveler_for(update) is None:
            return
        await reply(update, HELP_TEXT, reply_markup=main_menu_keyboard())

    async def cmd_trip(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        traveler = traveler_for(update)
        if traveler is None:
            return
        if traveler.engine.snapshot().is_tracking:
            await reply(update, "A trip is already running. /cancel it or /newtrip after arriving.")
            return
        traveler.session.mode = MODE_AWAITING_DESTINATION
        traveler.session.pending_destination = None
        logger.info("TRIP_SETUP user=%s mode=%s", traveler.session.user_id, traveler.session.mode)
        await reply(update, "Send your stop as a location (📎 → Location → pick a point on the map).")

    async def cmd_radius(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        traveler = traveler_for(update)
        if traveler is None:
            return
        current = traveler.engine.snapshot().threshold_m
        await reply(update, f"Current alarm radius: {format_distance(current)}.\nPick a new one:", reply_markup=radius_keyboard())

    async def cmd_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        traveler = traveler_for(update)
        if traveler is None:
            return
        await reply(update, format_status(traveler.engine.snapshot()))

    async def cmd_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        traveler = traveler_for(update)
        if traveler is None:
            return
        registry.reset_flow(traveler.session)
        cancelled = await traveler.engine.cancel_trip()
        if cancelled:
            traveler.feed.reset()
        else:
            await reply(update, "No active trip.", reply_markup=main_menu_keyboard())

    async def cmd_new_trip(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        traveler = traveler_for(update)
        if traveler is None:
            return
        if await traveler.engine.start_new_trip():
            traveler.feed.reset()
            return
        if traveler.engine.snapshot().state == TripState.ACTIVE:
            await reply(update, "You haven't arrived yet. /cancel to abort the trip.")
            return
        await cmd_trip(update, context)

    async def radius_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        traveler = traveler_for(update)
        if not query or traveler is None:
            return
        await query.answer()

        try:
            radius_m = float(query.data.split(":", maxsplit=1)[1])
        except (IndexError, ValueError):
            logger.warning("RADIUS_CALLBACK_BAD_DATA user=%s data=%s", traveler.session.user_id, query.data)
            return

        session = traveler.session
        session.alarm_radius_m = radius_m

        if session.mode == MODE_CHOOSE_RADIUS and session.pending_destination is not None:
            try:
                await traveler.engine.start_trip(session.pending_destination, radius_m)
            except TripError as exc:
                logger.warning("TRIP_START_REJECTED user=%s reason=%s", session.user_id, exc)
                await query.message.reply_text(f"Couldn't start the trip: {exc}")
                registry.reset_flow(session)
                return
            traveler.feed.reset()
            session.pending_destination = None
            session.mode = MODE_AWAITING_LIVE_LOCATION
            return

        try:
            await traveler.engine.update_threshold(radius_m)
        except TripError as exc:
            await query.message.reply_text(f"Couldn't change the radius: {exc}")
            return
        await query.message.reply_text(f"Alarm radius set to {format_distance(radius_m)}.")

    async def alarm_ack_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        traveler = traveler_for(update)
        if not query or traveler is None:
            return
        await query.answer("👍")
        if await traveler.engine.acknowledge_completion():
            traveler.feed.reset()

    async def new_trip_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        if query:
            await query.answer()
        await cmd_new_trip(update, context)

    return [
        CommandHandler("start", cmd_start),
        CommandHandler("help", cmd_help),
        CommandHandler("trip", cmd_trip),
        CommandHandler("radius", cmd_radius),
        CommandHandler("status", cmd_status),
        CommandHandler("cancel", cmd_cancel),
        CommandHandler("newtrip", cmd_new_trip),
        MessageHandler(filters.Regex(f"^{BTN_NEW_TRIP}$"), cmd_trip),
        MessageHandler(filters.Regex(f"^{BTN_CANCEL_TRIP}$"), cmd_cancel),
        MessageHandler(filters.Regex(f"^{BTN_STATUS}$"), cmd_status),
        MessageHandler(filters.Regex(f"^{BTN_RADIUS}$"), cmd_radius),
        MessageHandler(filters.Regex(f"^{BTN_HELP}$"), cmd_help),
        CallbackQueryHandler(radius_callback, pattern=r"^radius:[0-9.]+$"),
        CallbackQueryHandler(alarm_ack_callback, pattern=r"^alarm_ack$"),
        CallbackQueryHandler(new_trip_callback, pattern=r"^new_trip$"),
    ]
