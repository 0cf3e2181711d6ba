import math
import unittest

from snoozebot.geo import EARTH_RADIUS_M, distance, haversine_m
from snoozebot.models import Coordinate


class DistanceTests(unittest.TestCase):
    def test_same_point_is_zero(self):
        a = Coordinate(37.7749, -122.4194)
        self.assertEqual(distance(a, a), 0.0)

    def test_symmetric(self):
        a = Coordinate(37.7749, -122.4194)
        b = Coordinate(37.8044, -122.2712)
        self.assertAlmostEqual(distance(a, b), distance(b, a), places=6)

    def test_one_mile_fixture_within_one_percent(self):
        a = Coordinate(37.7749, -122.4194)
        # one mile due north along the meridian
        b = Coordinate(a.latitude + math.degrees(1609.34 / EARTH_RADIUS_M), a.longitude)
        self.assertAlmostEqual(distance(a, b), 1609.34, delta=1609.34 * 0.01)

    def test_antipodal_points_do_not_blow_up(self):
        d = haversine_m(0.0, 0.0, 0.0, 180.0)
        self.assertAlmostEqual(d, math.pi * EARTH_RADIUS_M, delta=1.0)


if __name__ == "__main__":
    unittest.main()
