from typing import Optional

from snoozebot import config
from snoozebot.geo import distance
from snoozebot.models import Coordinate, PositionSample


class LocationFeedError(RuntimeError):
    pass


def build_sample(latitude, longitude, timestamp: float, accuracy_m=None) -> PositionSample:
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError) as exc:
        raise LocationFeedError("bad_coordinates") from exc
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        raise LocationFeedError(f"coordinates_out_of_range lat={lat} lon={lon}")

    acc = float(accuracy_m) if accuracy_m is not None else None
    if acc is not None and acc > config.ACCURACY_MAX_M:
        raise LocationFeedError(f"accuracy_too_low acc={acc:.0f}")

    return PositionSample(coordinate=Coordinate(lat, lon), timestamp=float(timestamp), accuracy_m=acc)


class SampleFilter:
    """Noise suppression: a sample passes when it moved far enough or enough
    time has elapsed since the last accepted one. Fast movement tightens the
    time window and widens the displacement step.
    """

    def __init__(
        self,
        *,
        min_displacement_m: float = config.FEED_MIN_DISPLACEMENT_M,
        min_interval_sec: float = config.FEED_MIN_INTERVAL_SEC,
        fast_speed_mps: float = config.FEED_FAST_SPEED_MPS,
        fast_displacement_m: float = config.FEED_FAST_DISPLACEMENT_M,
        fast_interval_sec: float = config.FEED_FAST_INTERVAL_SEC,
    ) -> None:
        self.min_displacement_m = min_displacement_m
        self.min_interval_sec = min_interval_sec
        self.fast_speed_mps = fast_speed_mps
        self.fast_displacement_m = fast_displacement_m
        self.fast_interval_sec = fast_interval_sec
        self._last: Optional[PositionSample] = None

    def thresholds(self, speed_mps: float) -> tuple[float, float]:
        if speed_mps > self.fast_speed_mps:
            return self.fast_displacement_m, self.fast_interval_sec
        return self.min_displacement_m, self.min_interval_sec

    def accept(self, sample: PositionSample) -> bool:
        last = self._last
        if last is None:
            self._last = sample
            return True

        displacement = distance(sample.coordinate, last.coordinate)
        elapsed = sample.timestamp - last.timestamp
        speed = displacement / elapsed if elapsed > 0 else 0.0
        min_displacement, min_interval = self.thresholds(speed)

        if displacement > min_displacement or elapsed > min_interval:
            self._last = sample
            return True
        return False

    def reset(self) -> None:
        self._last = None


class LocationFeed:
    """Turns raw fixes into accepted samples for one traveler's engine."""

    def __init__(self, sink, logger, sample_filter: Optional[SampleFilter] = None) -> None:
        self.sink = sink
        self.logger = logger
        self.sample_filter = sample_filter or SampleFilter()

    async def push(self, *, latitude, longitude, timestamp: float, accuracy_m=None) -> bool:
        try:
            sample = build_sample(latitude, longitude, timestamp, accuracy_m)
        except LocationFeedError as exc:
            self.sink.on_location_error(exc)
            return False

        if not self.sample_filter.accept(sample):
            self.logger.debug(
                "FEED_SAMPLE_DROPPED lat=%s lon=%s ts=%s",
                sample.coordinate.latitude,
                sample.coordinate.longitude,
                sample.timestamp,
            )
            return False

        await self.sink.on_position_update(sample)
        return True

    def report_error(self, error) -> None:
        self.sink.on_location_error(error)

    def reset(self) -> None:
        self.sample_filter.reset()
