import logging

from telegram import InlineKeyboardButton, InlineKeyboardMarkup
from telegram.ext import ContextTypes

from snoozebot import config

logger = logging.getLogger(__name__)

ALARM_JOB_PREFIX = "alarm_notify"


def alarm_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        [
            [InlineKeyboardButton("OK", callback_data="alarm_ack")],
            [InlineKeyboardButton("🏁 Start new trip", callback_data="new_trip")],
        ]
    )


def alarm_text(title: str, body: str) -> str:
    return f"⏰ {title}\n{body}"


class TelegramNotifier:
    """Delivers the alarm over Telegram.

    Foreground: in-app alert sent right away. Background: a notification
    scheduled on the job queue, which ``cancel_pending`` can still withdraw.
    """

    def __init__(self, application) -> None:
        self.application = application

    @staticmethod
    def job_name(user_id: int) -> str:
        return f"{ALARM_JOB_PREFIX}:{user_id}"

    async def deliver(self, *, user_id: int, chat_id: int, title: str, body: str, foreground: bool) -> None:
        text = alarm_text(title, body)
        if foreground:
            logger.info("ALARM_ALERT_FOREGROUND user=%s chat_id=%s", user_id, chat_id)
            await self.application.bot.send_message(chat_id=chat_id, text=text, reply_markup=alarm_keyboard())
            return

        job_queue = self.application.job_queue
        if job_queue is None:
            logger.warning("ALARM_NOTIFY_NO_JOB_QUEUE user=%s -> send now", user_id)
            await self.application.bot.send_message(chat_id=chat_id, text=text, reply_markup=alarm_keyboard())
            return

        job_queue.run_once(
            self._send_scheduled,
            when=config.NOTIFY_DELAY_SEC,
            data={"text": text},
            name=self.job_name(user_id),
            chat_id=chat_id,
            user_id=user_id,
        )
        logger.info(
            "ALARM_NOTIFY_SCHEDULED user=%s chat_id=%s delay_sec=%s",
            user_id,
            chat_id,
            config.NOTIFY_DELAY_SEC,
        )

    async def _send_scheduled(self, context: ContextTypes.DEFAULT_TYPE) -> None:
        job = context.job
        try:
            await context.bot.send_message(chat_id=job.chat_id, text=job.data["text"], reply_markup=alarm_keyboard())
        except Exception as exc:
            logger.error("ALARM_NOTIFY_SEND_FAILED chat_id=%s error=%s", job.chat_id, exc)
            return
        logger.info("ALARM_NOTIFY_SENT user=%s chat_id=%s", job.user_id, job.chat_id)

    def cancel_pending(self, user_id: int) -> int:
        job_queue = self.application.job_queue
        if job_queue is None:
            return 0
        jobs = job_queue.get_jobs_by_name(self.job_name(user_id))
        for job in jobs:
            job.schedule_removal()
        if jobs:
            logger.info("ALARM_NOTIFY_CANCELLED user=%s jobs=%s", user_id, len(jobs))
        return len(jobs)

    async def send_text(self, chat_id: int, text: str) -> None:
        await self.application.bot.send_message(chat_id=chat_id, text=text)
