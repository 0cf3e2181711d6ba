from telegram import BotCommand, Update
from telegram.ext import Application

from snoozebot import config
from snoozebot.call_client import CallBackendClient
from snoozebot.call_count_store import CallCountStore
from snoozebot.handlers_location import build_location_handlers
from snoozebot.handlers_trip import build_snapshot_renderer, build_trip_handlers
from snoozebot.jobs import build_job_check_stale
from snoozebot.notifier import TelegramNotifier
from snoozebot.registration import build_registration_handler
from snoozebot.trip_registry import TripRegistry


class SnoozeBotApp:
    def __init__(self, logger) -> None:
        self.logger = logger

        if not config.BOT_TOKEN:
            raise RuntimeError("BOT_TOKEN is empty.")
        if not config.CALL_BACKEND_URL or not config.CALL_BACKEND_SECRET:
            raise RuntimeError("CALL_BACKEND_URL and CALL_BACKEND_SECRET are required.")

        self.call_client = CallBackendClient(config.CALL_BACKEND_URL, config.CALL_BACKEND_SECRET, logger)
        self.counter_store = CallCountStore(config.CALL_COUNT_DB_PATH, logger)

        self.application = (
            Application.builder()
            .token(config.BOT_TOKEN)
            .post_init(self._post_init)
            .post_shutdown(self._post_shutdown)
            .build()
        )
        self.notifier = TelegramNotifier(self.application)
        self.registry = TripRegistry(
            self.notifier,
            self.call_client,
            self.counter_store,
            logger,
            subscriber_factory=build_snapshot_renderer(self.application.bot, logger),
        )

    async def _post_init(self, app: Application) -> None:
        commands = [
            BotCommand("start", "Open the menu"),
            BotCommand("trip", "Set a stop and start a trip"),
            BotCommand("status", "Distance and progress"),
            BotCommand("radius", "Change the alarm radius"),
            BotCommand("cancel", "Cancel the trip"),
            BotCommand("newtrip", "Finish and start a new trip"),
            BotCommand("phone", "Register the number to call"),
            BotCommand("help", "How it works"),
        ]
        await app.bot.set_my_commands(commands)
        self.counter_store.initialize()

    async def _post_shutdown(self, app: Application) -> None:
        for traveler in list(self.registry.values()):
            await traveler.alarm_trigger.wait_idle()
        await self.call_client.aclose()

    def register_handlers(self, app: Application) -> None:
        app.add_handler(build_registration_handler(self.registry, self.call_client, self.logger))

        for handler in build_trip_handlers(self.registry, self.logger):
            app.add_handler(handler)

        for handler in build_location_handlers(self.registry, self.logger):
            app.add_handler(handler)

        if app.job_queue is None:
            raise RuntimeError(
                "JobQueue is missing. Install it with:\n"
                "python -m pip install \"python-telegram-bot[job-queue]\""
            )
        if config.ENABLE_STALE_CHECK:
            app.job_queue.run_repeating(
                build_job_check_stale(self.registry, self.logger),
                interval=config.STALE_CHECK_EVERY_SEC,
                first=config.STALE_CHECK_EVERY_SEC,
            )

    def run(self) -> None:
        self.register_handlers(self.application)
        print("Bot started (polling). Ctrl+C to stop.")
        self.application.run_polling(
            allowed_updates=[Update.MESSAGE, Update.EDITED_MESSAGE, Update.CALLBACK_QUERY],
        )
