import inspect
from typing import Awaitable, Callable, Optional, Union

from snoozebot.models import TripSnapshot

TripSubscriber = Callable[[TripSnapshot], Optional[Awaitable[None]]]


class TripEventBus:
    """Typed observer list for trip snapshots.

    Subscribers may be plain functions or coroutines. A failing subscriber is
    logged and never breaks trip processing.
    """

    def __init__(self, logger) -> None:
        self.logger = logger
        self._subscribers: list[TripSubscriber] = []

    def subscribe(self, callback: TripSubscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def publish(self, snapshot: TripSnapshot) -> None:
        for callback in list(self._subscribers):
            try:
                result: Union[None, Awaitable[None]] = callback(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                self.logger.error(
                    "TRIP_EVENT_SUBSCRIBER_FAILED user=%s state=%s error=%s",
                    snapshot.user_id,
                    snapshot.state.value,
                    exc,
                )
