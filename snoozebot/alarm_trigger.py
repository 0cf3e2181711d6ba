import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from snoozebot import config
from snoozebot.call_client import CallError
from snoozebot.trip_engine import CALL_EVENT_FAILED, CALL_EVENT_PLACED, CALL_EVENT_STARTED

CallEventCallback = Callable[[int, str], Awaitable[None]]

CALL_FAILED_TEXT = "📵 We couldn't place your wake-up call. Keep an eye on your stop!"


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = config.CALL_MAX_RETRIES
    delay_sec: float = config.CALL_RETRY_DELAY_SEC

    @property
    def max_attempts(self) -> int:
        return max(self.max_retries, 0) + 1


class AlarmTrigger:
    """Threshold side effects for one traveler: notification and phone call.

    ``call_in_progress`` lives here rather than on the trip, so a call that
    is still running after its trip was cancelled keeps blocking new calls.
    """

    def __init__(
        self,
        *,
        user_id: int,
        chat_id: int,
        notifier,
        call_client,
        counter_store,
        logger,
        is_foreground: Optional[Callable[[], bool]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        report_call_failure: bool = config.REPORT_CALL_FAILURE,
    ) -> None:
        self.user_id = user_id
        self.chat_id = chat_id
        self.notifier = notifier
        self.call_client = call_client
        self.counter_store = counter_store
        self.logger = logger
        self.is_foreground = is_foreground or (lambda: False)
        self.retry_policy = retry_policy or RetryPolicy()
        self.sleep = sleep
        self.report_call_failure = report_call_failure

        self.call_in_progress = False
        self.fire_count = 0
        # trip ids only grow, so the last placed one is enough
        self._last_placed_trip_id = 0
        self._tasks: set[asyncio.Task] = set()
        self._notify_tasks: set[asyncio.Task] = set()

    def _already_placed(self, trip_id: int) -> bool:
        return trip_id <= self._last_placed_trip_id

    def fire(self, trip, on_call_event: Optional[CallEventCallback] = None) -> None:
        if trip.destination is None:
            self.logger.error("ALARM_FIRE_NO_DESTINATION user=%s trip_id=%s", self.user_id, trip.trip_id)
            assert trip.destination is not None, "fire() needs a trip with a destination"
            return

        self.fire_count += 1
        trip_id = trip.trip_id
        self.logger.info(
            "ALARM_FIRE user=%s trip_id=%s fire_count=%s call_made=%s",
            self.user_id,
            trip_id,
            self.fire_count,
            trip.call_made,
        )

        notify_task = self._spawn(self._notify(trip_id))
        self._notify_tasks.add(notify_task)
        notify_task.add_done_callback(self._notify_tasks.discard)
        if trip.call_made or self._already_placed(trip_id):
            self.logger.info("CALL_SKIPPED_ALREADY_MADE user=%s trip_id=%s", self.user_id, trip_id)
            return
        self._spawn(self.trigger_call(trip_id, on_call_event))

    def cancel_pending_notification(self) -> None:
        # a notify task that has not scheduled its job yet is cancelled here,
        # the already scheduled job is withdrawn below
        for task in list(self._notify_tasks):
            if not task.done():
                task.cancel()
                self.logger.info("ALARM_NOTIFY_TASK_CANCELLED user=%s", self.user_id)
        self._notify_tasks.clear()
        try:
            self.notifier.cancel_pending(self.user_id)
        except Exception as exc:
            self.logger.warning("ALARM_NOTIFY_CANCEL_FAILED user=%s error=%s", self.user_id, exc)

    async def trigger_call(self, trip_id: int, on_call_event: Optional[CallEventCallback] = None) -> bool:
        if self.call_in_progress:
            self.logger.info("CALL_ALREADY_IN_PROGRESS user=%s trip_id=%s -> skip", self.user_id, trip_id)
            return False
        if self._already_placed(trip_id):
            self.logger.info("CALL_SKIPPED_ALREADY_MADE user=%s trip_id=%s", self.user_id, trip_id)
            return False

        self.call_in_progress = True
        try:
            await self._emit(on_call_event, trip_id, CALL_EVENT_STARTED)
            placed = await self._call_with_retries(trip_id)
            if placed:
                self._last_placed_trip_id = max(self._last_placed_trip_id, trip_id)
        finally:
            self.call_in_progress = False

        if placed:
            await self._emit(on_call_event, trip_id, CALL_EVENT_PLACED)
            await self._increment_call_count()
            return True

        await self._emit(on_call_event, trip_id, CALL_EVENT_FAILED)
        await self._report_failure()
        return False

    async def _call_with_retries(self, trip_id: int) -> bool:
        policy = self.retry_policy
        for attempt in range(1, policy.max_attempts + 1):
            self.logger.info(
                "CALL_ATTEMPT user=%s trip_id=%s attempt=%s/%s",
                self.user_id,
                trip_id,
                attempt,
                policy.max_attempts,
            )
            try:
                result = await self.call_client.place_call(self.user_id)
            except CallError as exc:
                self.logger.warning(
                    "CALL_ATTEMPT_FAILED user=%s trip_id=%s attempt=%s code=%s error=%s",
                    self.user_id,
                    trip_id,
                    attempt,
                    exc.code,
                    exc,
                )
                if not exc.retryable:
                    self.logger.error(
                        "CALL_GIVE_UP user=%s trip_id=%s attempts=%s reason=%s",
                        self.user_id,
                        trip_id,
                        attempt,
                        exc.code,
                    )
                    return False
                if attempt < policy.max_attempts:
                    self.logger.info(
                        "CALL_RETRY_SCHEDULED user=%s trip_id=%s delay_sec=%s next_attempt=%s",
                        self.user_id,
                        trip_id,
                        policy.delay_sec,
                        attempt + 1,
                    )
                    await self.sleep(policy.delay_sec)
                continue

            self.logger.info("CALL_PLACED user=%s trip_id=%s attempt=%s result=%s", self.user_id, trip_id, attempt, result)
            return True

        self.logger.error(
            "CALL_GIVE_UP user=%s trip_id=%s attempts=%s reason=retries_exhausted",
            self.user_id,
            trip_id,
            policy.max_attempts,
        )
        return False

    async def _notify(self, trip_id: int) -> None:
        foreground = bool(self.is_foreground())
        try:
            await self.notifier.deliver(
                user_id=self.user_id,
                chat_id=self.chat_id,
                title=config.ALARM_TITLE,
                body=config.ALARM_BODY,
                foreground=foreground,
            )
        except Exception as exc:
            self.logger.error(
                "ALARM_NOTIFY_FAILED user=%s trip_id=%s foreground=%s error=%s",
                self.user_id,
                trip_id,
                foreground,
                exc,
            )

    async def _increment_call_count(self) -> None:
        if self.counter_store is None:
            return
        try:
            await self.counter_store.increment_call_count(self.user_id)
        except Exception as exc:
            self.logger.error("CALL_COUNT_INCREMENT_FAILED user=%s error=%s", self.user_id, exc)

    async def _report_failure(self) -> None:
        if not self.report_call_failure:
            return
        try:
            await self.notifier.send_text(self.chat_id, CALL_FAILED_TEXT)
        except Exception as exc:
            self.logger.error("CALL_FAILED_NOTIFY_FAIL chat_id=%s error=%s", self.chat_id, exc)

    async def _emit(self, callback: Optional[CallEventCallback], trip_id: int, event: str) -> None:
        if callback is None:
            return
        try:
            await callback(trip_id, event)
        except Exception as exc:
            self.logger.error("CALL_EVENT_CALLBACK_FAILED user=%s trip_id=%s event=%s error=%s", self.user_id, trip_id, event, exc)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("ALARM_TASK_FAILED user=%s error=%s", self.user_id, exc)

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
