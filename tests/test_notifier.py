import unittest
from types import SimpleNamespace

from snoozebot import config
from snoozebot.notifier import TelegramNotifier


class DummyBot:
    def __init__(self):
        self.messages = []

    async def send_message(self, chat_id, text, **kwargs):
        self.messages.append((chat_id, text))


class DummyJob:
    def __init__(self, callback, when, data, name, chat_id, user_id):
        self.callback = callback
        self.when = when
        self.data = data
        self.name = name
        self.chat_id = chat_id
        self.user_id = user_id
        self.removed = False

    def schedule_removal(self):
        self.removed = True


class DummyJobQueue:
    def __init__(self):
        self.jobs = []

    def run_once(self, callback, when, data=None, name=None, chat_id=None, user_id=None):
        job = DummyJob(callback, when, data, name, chat_id, user_id)
        self.jobs.append(job)
        return job

    def get_jobs_by_name(self, name):
        return [job for job in self.jobs if job.name == name and not job.removed]


class NotifierTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.bot = DummyBot()
        self.job_queue = DummyJobQueue()
        self.notifier = TelegramNotifier(SimpleNamespace(bot=self.bot, job_queue=self.job_queue))

    async def deliver(self, foreground):
        await self.notifier.deliver(
            user_id=1,
            chat_id=10,
            title=config.ALARM_TITLE,
            body=config.ALARM_BODY,
            foreground=foreground,
        )

    async def test_foreground_alert_is_sent_now(self):
        await self.deliver(foreground=True)

        self.assertEqual(len(self.bot.messages), 1)
        self.assertIn(config.ALARM_TITLE, self.bot.messages[0][1])
        self.assertEqual(self.job_queue.jobs, [])

    async def test_background_notification_is_scheduled_then_sent(self):
        await self.deliver(foreground=False)

        self.assertEqual(self.bot.messages, [])
        job = self.job_queue.jobs[0]
        self.assertEqual(job.when, config.NOTIFY_DELAY_SEC)

        await job.callback(SimpleNamespace(job=job, bot=self.bot))
        self.assertEqual(self.bot.messages[0][0], 10)
        self.assertIn(config.ALARM_BODY, self.bot.messages[0][1])

    async def test_cancel_pending_withdraws_scheduled_notification(self):
        await self.deliver(foreground=False)

        self.assertEqual(self.notifier.cancel_pending(1), 1)
        self.assertTrue(self.job_queue.jobs[0].removed)
        self.assertEqual(self.notifier.cancel_pending(1), 0)
        self.assertEqual(self.notifier.cancel_pending(2), 0)


if __name__ == "__main__":
    unittest.main()
