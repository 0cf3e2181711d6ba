import unittest

from snoozebot import config
from snoozebot.location_feed import LocationFeed, LocationFeedError, SampleFilter, build_sample


class DummyLogger:
    def debug(self, *args, **kwargs):
        pass

    def info(self, *args, **kwargs):
        pass


class DummySink:
    def __init__(self):
        self.samples = []
        self.errors = []

    async def on_position_update(self, sample):
        self.samples.append(sample)

    def on_location_error(self, error):
        self.errors.append(error)


# ~1 m of latitude
DEG_PER_M = 1 / 111195.0


class SampleFilterTests(unittest.TestCase):
    def test_first_sample_always_accepted(self):
        sample_filter = SampleFilter()
        self.assertTrue(sample_filter.accept(build_sample(55.0, 37.0, 0.0)))

    def test_small_quick_moves_are_dropped(self):
        sample_filter = SampleFilter()
        sample_filter.accept(build_sample(55.0, 37.0, 0.0))

        self.assertFalse(sample_filter.accept(build_sample(55.0 + 10 * DEG_PER_M, 37.0, 5.0)))
        self.assertTrue(sample_filter.accept(build_sample(55.0 + 40 * DEG_PER_M, 37.0, 10.0)))

    def test_time_alone_lets_a_sample_through(self):
        sample_filter = SampleFilter()
        sample_filter.accept(build_sample(55.0, 37.0, 0.0))

        self.assertTrue(sample_filter.accept(build_sample(55.0, 37.0, config.FEED_MIN_INTERVAL_SEC + 1)))

    def test_fast_movement_uses_fast_thresholds(self):
        sample_filter = SampleFilter()
        self.assertEqual(sample_filter.thresholds(5.0), (config.FEED_MIN_DISPLACEMENT_M, config.FEED_MIN_INTERVAL_SEC))
        self.assertEqual(sample_filter.thresholds(20.0), (config.FEED_FAST_DISPLACEMENT_M, config.FEED_FAST_INTERVAL_SEC))

        sample_filter.accept(build_sample(55.0, 37.0, 0.0))
        # 40 m in 2 s is 20 m/s: below the 50 m fast step
        self.assertFalse(sample_filter.accept(build_sample(55.0 + 40 * DEG_PER_M, 37.0, 2.0)))


class BuildSampleTests(unittest.TestCase):
    def test_rejects_bad_input(self):
        with self.assertRaises(LocationFeedError):
            build_sample(95.0, 37.0, 0.0)
        with self.assertRaises(LocationFeedError):
            build_sample("north", 37.0, 0.0)
        with self.assertRaises(LocationFeedError):
            build_sample(55.0, 37.0, 0.0, accuracy_m=config.ACCURACY_MAX_M + 1)


class LocationFeedTests(unittest.IsolatedAsyncioTestCase):
    async def test_push_forwards_accepted_and_reports_errors(self):
        sink = DummySink()
        feed = LocationFeed(sink, DummyLogger())

        self.assertTrue(await feed.push(latitude=55.0, longitude=37.0, timestamp=0.0))
        self.assertFalse(await feed.push(latitude=55.0, longitude=37.0, timestamp=1.0))
        self.assertFalse(await feed.push(latitude=55.0, longitude=37.0, timestamp=2.0, accuracy_m=500))

        self.assertEqual(len(sink.samples), 1)
        self.assertEqual(len(sink.errors), 1)

        feed.reset()
        self.assertTrue(await feed.push(latitude=55.0, longitude=37.0, timestamp=3.0))


if __name__ == "__main__":
    unittest.main()
