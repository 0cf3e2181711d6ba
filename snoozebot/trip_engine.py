import asyncio
from typing import Optional

from snoozebot import config
from snoozebot.events import TripEventBus
from snoozebot.geo import distance
from snoozebot.models import Coordinate, PositionSample, Trip, TripSnapshot, TripState

CALL_EVENT_STARTED = "started"
CALL_EVENT_PLACED = "placed"
CALL_EVENT_FAILED = "failed"

TRACKING_STATES = (TripState.ACTIVE, TripState.THRESHOLD_REACHED)


class TripError(RuntimeError):
    pass


def compute_progress(distance_m: float, threshold_m: float) -> float:
    """Progress towards the alarm radius: 0 far away, 1 at or inside it."""
    remaining = max(0.0, distance_m - threshold_m)
    total = max(distance_m, threshold_m)
    if total <= 0:
        return 1.0
    return max(0.0, min(1.0 - remaining / total, 1.0))


class TripEngine:
    """Trip state machine for one traveler.

    All mutations go through ``self._lock`` so position samples are applied
    one at a time in arrival order. Snapshots are published to ``self.bus``
    while the lock is held, which keeps subscriber order equal to update
    order.
    """

    def __init__(
        self,
        user_id: int,
        alarm_trigger,
        logger,
        *,
        bus: Optional[TripEventBus] = None,
        default_threshold_m: float = config.DEFAULT_ALARM_RADIUS_M,
    ) -> None:
        if default_threshold_m <= 0:
            raise ValueError("default_threshold_m must be positive")
        self.user_id = user_id
        self.alarm_trigger = alarm_trigger
        self.logger = logger
        self.bus = bus or TripEventBus(logger)
        self.trip = Trip(alarm_threshold_m=float(default_threshold_m))
        self.last_known_location: Optional[Coordinate] = None
        self._lock = asyncio.Lock()
        self._last_trip_id = 0
        self._fired_trip_id: Optional[int] = None

    @property
    def state(self) -> TripState:
        return self.trip.state

    def subscribe(self, callback):
        return self.bus.subscribe(callback)

    def snapshot(self) -> TripSnapshot:
        trip = self.trip
        return TripSnapshot(
            user_id=self.user_id,
            trip_id=trip.trip_id,
            state=trip.state,
            progress=trip.progress,
            distance_m=trip.distance_m,
            call_made=trip.call_made,
            call_in_progress=trip.call_in_progress,
            call_failed=trip.call_failed,
            threshold_m=trip.alarm_threshold_m,
            destination=trip.destination,
        )

    async def start_trip(self, destination: Optional[Coordinate], threshold_m: Optional[float] = None) -> TripSnapshot:
        if destination is None:
            raise TripError("destination_required")

        async with self._lock:
            trip = self.trip
            if trip.state in TRACKING_STATES:
                raise TripError("trip_already_active")

            threshold = trip.alarm_threshold_m if threshold_m is None else float(threshold_m)
            if threshold <= 0:
                raise TripError("threshold_must_be_positive")

            self._clear_trip(keep_threshold=threshold)
            self._last_trip_id += 1
            trip.trip_id = self._last_trip_id
            trip.destination = destination
            trip.initial_location = self.last_known_location
            trip.state = TripState.ACTIVE

            if self.last_known_location is not None:
                trip.current_location = self.last_known_location
                self._recompute(trip)

            self.logger.info(
                "TRIP_START user=%s trip_id=%s dest=%s,%s threshold_m=%.1f initial=%s",
                self.user_id,
                trip.trip_id,
                destination.latitude,
                destination.longitude,
                threshold,
                trip.initial_location,
            )
            snapshot = self.snapshot()
            await self.bus.publish(snapshot)
            return snapshot

    async def on_position_update(self, sample: PositionSample) -> TripSnapshot:
        async with self._lock:
            self.last_known_location = sample.coordinate
            trip = self.trip
            if trip.state != TripState.ACTIVE:
                self.logger.debug(
                    "POSITION_IGNORED user=%s state=%s",
                    self.user_id,
                    trip.state.value,
                )
                return self.snapshot()

            trip.current_location = sample.coordinate
            if trip.initial_location is None:
                trip.initial_location = sample.coordinate

            crossed = self._recompute(trip)
            self.logger.info(
                "POSITION_UPDATE user=%s trip_id=%s dist_m=%.1f threshold_m=%.1f progress=%.3f",
                self.user_id,
                trip.trip_id,
                trip.distance_m,
                trip.alarm_threshold_m,
                trip.progress,
            )
            if crossed:
                self._enter_threshold_reached(trip)

            snapshot = self.snapshot()
            await self.bus.publish(snapshot)
            return snapshot

    def on_location_error(self, error) -> None:
        # GPS dropouts are transient: the trip keeps waiting for the next sample
        self.logger.warning(
            "LOCATION_ERROR user=%s state=%s error=%s",
            self.user_id,
            self.trip.state.value,
            error,
        )

    async def update_threshold(self, threshold_m: float) -> TripSnapshot:
        threshold = float(threshold_m)
        if threshold <= 0:
            raise TripError("threshold_must_be_positive")

        async with self._lock:
            trip = self.trip
            trip.alarm_threshold_m = threshold
            self.logger.info(
                "THRESHOLD_UPDATE user=%s trip_id=%s threshold_m=%.1f state=%s",
                self.user_id,
                trip.trip_id,
                threshold,
                trip.state.value,
            )
            if trip.state == TripState.ACTIVE and trip.current_location is not None:
                if self._recompute(trip):
                    self._enter_threshold_reached(trip)

            snapshot = self.snapshot()
            await self.bus.publish(snapshot)
            return snapshot

    async def cancel_trip(self) -> bool:
        async with self._lock:
            trip = self.trip
            if trip.state not in TRACKING_STATES:
                self.logger.info("TRIP_CANCEL_IGNORED user=%s state=%s", self.user_id, trip.state.value)
                return False

            trip.state = TripState.CANCELLED
            self.logger.info("TRIP_CANCEL user=%s trip_id=%s", self.user_id, trip.trip_id)
            await self.bus.publish(self.snapshot())

            # an in-flight call is left to finish on its own
            self.alarm_trigger.cancel_pending_notification()
            self._clear_trip()
            await self.bus.publish(self.snapshot())
            return True

    async def start_new_trip(self) -> bool:
        async with self._lock:
            trip = self.trip
            if trip.state != TripState.THRESHOLD_REACHED:
                self.logger.info("TRIP_COMPLETE_IGNORED user=%s state=%s", self.user_id, trip.state.value)
                return False

            trip.state = TripState.COMPLETED
            self.logger.info(
                "TRIP_COMPLETE user=%s trip_id=%s call_made=%s",
                self.user_id,
                trip.trip_id,
                trip.call_made,
            )
            await self.bus.publish(self.snapshot())
            self._clear_trip()
            await self.bus.publish(self.snapshot())
            return True

    async def acknowledge_completion(self) -> bool:
        return await self.start_new_trip()

    async def reset(self) -> None:
        async with self._lock:
            self.logger.info("TRIP_RESET user=%s trip_id=%s state=%s", self.user_id, self.trip.trip_id, self.trip.state.value)
            self.alarm_trigger.cancel_pending_notification()
            self._clear_trip()
            await self.bus.publish(self.snapshot())

    async def on_call_event(self, trip_id: int, event: str) -> None:
        async with self._lock:
            trip = self.trip
            if trip_id != trip.trip_id or trip.state not in TRACKING_STATES:
                self.logger.info(
                    "CALL_EVENT_STALE user=%s trip_id=%s current_trip_id=%s event=%s",
                    self.user_id,
                    trip_id,
                    trip.trip_id,
                    event,
                )
                return

            if event == CALL_EVENT_STARTED:
                trip.call_in_progress = True
            elif event == CALL_EVENT_PLACED:
                trip.call_in_progress = False
                trip.call_made = True
                trip.call_failed = False
            elif event == CALL_EVENT_FAILED:
                trip.call_in_progress = False
                trip.call_failed = not trip.call_made
            else:
                self.logger.warning("CALL_EVENT_UNKNOWN user=%s event=%s", self.user_id, event)
                return

            await self.bus.publish(self.snapshot())

    def _recompute(self, trip: Trip) -> bool:
        dist_m = max(0.0, distance(trip.current_location, trip.destination))
        trip.distance_m = dist_m
        trip.progress = max(trip.progress, compute_progress(dist_m, trip.alarm_threshold_m))
        return dist_m <= trip.alarm_threshold_m

    def _enter_threshold_reached(self, trip: Trip) -> None:
        if self._fired_trip_id == trip.trip_id:
            return

        # guard is set before anything async is dispatched
        self._fired_trip_id = trip.trip_id
        trip.state = TripState.THRESHOLD_REACHED
        trip.progress = 1.0
        self.logger.info(
            "THRESHOLD_REACHED user=%s trip_id=%s dist_m=%.1f threshold_m=%.1f",
            self.user_id,
            trip.trip_id,
            trip.distance_m,
            trip.alarm_threshold_m,
        )
        self.alarm_trigger.fire(trip, self.on_call_event)

    def _clear_trip(self, keep_threshold: Optional[float] = None) -> None:
        trip = self.trip
        trip.trip_id = 0
        trip.destination = None
        trip.initial_location = None
        trip.current_location = None
        trip.distance_m = 0.0
        trip.progress = 0.0
        trip.state = TripState.IDLE
        trip.call_made = False
        trip.call_in_progress = False
        trip.call_failed = False
        if keep_threshold is not None:
            trip.alarm_threshold_m = keep_threshold
