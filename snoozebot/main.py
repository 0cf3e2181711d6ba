from snoozebot.app import SnoozeBotApp
from snoozebot.logging_setup import setup_logging


def main() -> None:
    logger = setup_logging()
    SnoozeBotApp(logger).run()
