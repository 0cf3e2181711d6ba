import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from snoozebot import config
from snoozebot.alarm_trigger import AlarmTrigger
from snoozebot.location_feed import LocationFeed
from snoozebot.models import MODE_IDLE, TravelerSession
from snoozebot.trip_engine import TripEngine


@dataclass
class Traveler:
    session: TravelerSession
    engine: TripEngine
    alarm_trigger: AlarmTrigger
    feed: LocationFeed


def is_foreground(session: TravelerSession, now: Optional[float] = None) -> bool:
    now = time.time() if now is None else now
    if session.last_interaction_ts <= 0:
        return False
    return (now - session.last_interaction_ts) <= config.FOREGROUND_WINDOW_SEC


class TripRegistry:
    """Owns one engine, alarm trigger and feed per traveler."""

    def __init__(
        self,
        notifier,
        call_client,
        counter_store,
        logger,
        *,
        subscriber_factory: Optional[Callable[[Traveler], Callable]] = None,
    ) -> None:
        self.notifier = notifier
        self.call_client = call_client
        self.counter_store = counter_store
        self.logger = logger
        self.subscriber_factory = subscriber_factory
        self._travelers: Dict[int, Traveler] = {}

    def _build(self, user_id: int, chat_id: int) -> Traveler:
        session = TravelerSession(user_id=user_id, chat_id=chat_id)
        alarm_trigger = AlarmTrigger(
            user_id=user_id,
            chat_id=chat_id,
            notifier=self.notifier,
            call_client=self.call_client,
            counter_store=self.counter_store,
            logger=self.logger,
            is_foreground=lambda: is_foreground(session),
        )
        engine = TripEngine(user_id, alarm_trigger, self.logger)
        traveler = Traveler(
            session=session,
            engine=engine,
            alarm_trigger=alarm_trigger,
            feed=LocationFeed(engine, self.logger),
        )
        if self.subscriber_factory is not None:
            engine.subscribe(self.subscriber_factory(traveler))
        self.logger.info("TRAVELER_CREATED user=%s chat_id=%s", user_id, chat_id)
        return traveler

    def get_or_create(self, user_id: int, chat_id: int) -> Traveler:
        traveler = self._travelers.get(user_id)
        if not traveler:
            traveler = self._build(user_id, chat_id)
            self._travelers[user_id] = traveler
        else:
            traveler.session.chat_id = chat_id
            traveler.alarm_trigger.chat_id = chat_id
        return traveler

    def get(self, user_id: int) -> Optional[Traveler]:
        return self._travelers.get(user_id)

    def touch(self, traveler: Traveler, now: Optional[float] = None) -> None:
        traveler.session.last_interaction_ts = time.time() if now is None else now

    def reset_flow(self, session: TravelerSession) -> None:
        session.mode = MODE_IDLE
        session.pending_destination = None

    def values(self):
        return self._travelers.values()

    def is_empty(self) -> bool:
        return not self._travelers
